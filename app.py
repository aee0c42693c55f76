#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
CFPT Ivato - staff training evaluation manager
Application factory and entry point
"""
import os

from flask import Flask, jsonify, session

from config.settings import APP_TITLE, EXPORT_DIR, UPLOAD_DIR, SecurityConfig, get_config
from models.database import bootstrap_data, close_db, configure_database, init_database
from utils.errors import register_error_handlers
from utils.logger import log_request, setup_logging


def create_app(config_name=None, **overrides):
    """
    Build the Flask application

    Args:
        config_name: development, production or testing (FLASK_ENV by default)
        **overrides: config keys applied last, e.g. DATABASE for tests

    Returns:
        Flask: configured application
    """
    app = Flask(__name__)
    app.config.from_object(get_config(config_name))
    app.config.update(overrides)

    setup_logging(app)
    log_request(app)
    register_error_handlers(app)

    # ==================== Database ====================

    configure_database(app.config['DATABASE'])
    with app.app_context():
        init_database()
        bootstrap_data()

        from services.app_config_service import AppConfigService
        from services.audit_service import AuditLogService
        AppConfigService.clear_cache()
        AuditLogService.delete_old_audit_logs()

    @app.teardown_appcontext
    def teardown_db(exception=None):
        """Close the thread's database connection at the end of the context"""
        close_db()

    # ==================== Security headers ====================

    @app.after_request
    def set_security_headers(response):
        """Add security headers to all responses"""
        response.headers['X-Frame-Options'] = SecurityConfig.X_FRAME_OPTIONS
        response.headers['X-Content-Type-Options'] = SecurityConfig.X_CONTENT_TYPE_OPTIONS
        response.headers['X-XSS-Protection'] = SecurityConfig.X_XSS_PROTECTION
        response.headers['Referrer-Policy'] = SecurityConfig.REFERRER_POLICY
        response.headers['Content-Security-Policy'] = '; '.join(
            f"{directive} {value}" for directive, value in SecurityConfig.CSP.items()
        )
        return response

    # ==================== Blueprints ====================

    from blueprints import register_blueprints
    register_blueprints(app)

    from services.operation_queue import OperationQueue
    app.extensions['operation_queue'] = OperationQueue(app, autostart=app.config['START_QUEUE_WORKER'])

    @app.route('/')
    def index():
        return jsonify({
            'success': True,
            'name': APP_TITLE,
            'logged_in': bool(session.get('logged_in')),
        })

    @app.route('/api/health')
    def health():
        from services.app_config_service import AppConfigService
        return jsonify({
            'success': True,
            'status': 'ok',
            'company_name': AppConfigService.get_config()['company_name'],
            'queue': app.extensions['operation_queue'].get_status()['queue_length'],
        })

    return app


# ==================== Entry point ====================

if __name__ == "__main__":
    os.makedirs(UPLOAD_DIR, exist_ok=True)
    os.makedirs(EXPORT_DIR, exist_ok=True)

    application = create_app()
    application.run(
        host="0.0.0.0",
        port=int(os.environ.get("PORT", 5001)),
        debug=application.config.get('DEBUG', False)
    )
