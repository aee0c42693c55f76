#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Blueprint registry
Imports and registers every blueprint module
"""
from flask import Flask


def register_blueprints(app: Flask):
    """
    Register all blueprints on the Flask application

    Args:
        app: Flask application instance

    Registration order:
        1. auth - sessions (base module)
        2. staff - staff records
        3. themes - training themes and assignments
        4. evaluations - evaluation forms and drafts
        5. reports - dashboards and analytics
        6. data_io - Excel/JSON transfer, queue and sync
        7. admin - accounts, settings, audit, backups
    """

    from .auth import auth_bp
    from .staff import staff_bp
    from .themes import themes_bp, trainings_bp
    from .evaluations import evaluations_bp
    from .reports import reports_bp
    from .data_io import data_io_bp
    from .admin import admin_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(staff_bp)
    app.register_blueprint(themes_bp)
    app.register_blueprint(trainings_bp)
    app.register_blueprint(evaluations_bp)
    app.register_blueprint(reports_bp)
    app.register_blueprint(data_io_bp)
    app.register_blueprint(admin_bp)

    app.logger.info('All blueprints registered successfully')
