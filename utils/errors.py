#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Error handling module
Custom exceptions and error handlers for the application
"""
from flask import jsonify, request
from werkzeug.exceptions import HTTPException
import sqlite3
import traceback


# ========== Custom Exceptions ==========

class AppError(Exception):
    """Base application error"""
    status_code = 500
    message = "Erreur de l'application"

    def __init__(self, message=None, status_code=None, payload=None):
        super().__init__(message or self.message)
        if message is not None:
            self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['success'] = False
        rv['error'] = self.message
        rv['status'] = self.status_code
        return rv


class ValidationError(AppError):
    """Data validation error"""
    status_code = 400
    message = "Données invalides"


class AuthenticationError(AppError):
    """Authentication error"""
    status_code = 401
    message = "Authentification requise"


class AuthorizationError(AppError):
    """Authorization error"""
    status_code = 403
    message = "Permissions insuffisantes"


class ResourceNotFoundError(AppError):
    """Resource not found error"""
    status_code = 404
    message = "Ressource introuvable"


class ConflictError(AppError):
    """Unique constraint or state conflict"""
    status_code = 409
    message = "Conflit avec les données existantes"


class DatabaseError(AppError):
    """Database operation error"""
    status_code = 500
    message = "Erreur de base de données"


class FileOperationError(AppError):
    """File operation error"""
    status_code = 500
    message = "Erreur de fichier"


class OperationTimeoutError(AppError):
    """Queued operation exceeded its time budget"""
    status_code = 504
    message = "Délai d'exécution dépassé"


class OperationCancelledError(AppError):
    """Queued operation dropped before it ran"""
    status_code = 409
    message = "Opération annulée - queue vidée"


# ========== Error Handlers ==========

def _rollback_db():
    from models.database import get_db
    get_db().rollback()


def register_error_handlers(app):
    """Register JSON error handlers for the application"""

    @app.errorhandler(AppError)
    def handle_app_error(error):
        """Handle custom application errors"""
        if error.status_code >= 500:
            app.logger.error(f"Application Error: {error.message}", exc_info=True)
            _rollback_db()
        else:
            app.logger.warning(f"{type(error).__name__}: {error.message} ({request.path})")

        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        """Handle werkzeug HTTP errors (404, 405, 413...)"""
        app.logger.info(f"HTTP {error.code}: {request.method} {request.url}")
        return error_response(error.description or error.name, error.code)

    @app.errorhandler(sqlite3.Error)
    def handle_database_error(error):
        """sqlite3 failures that escaped a service"""
        return handle_app_error(DatabaseError(payload={'type': type(error).__name__}))

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        """Handle unexpected errors"""
        app.logger.critical(f"Unexpected error: {error}", exc_info=True)
        app.logger.critical(traceback.format_exc())

        _rollback_db()

        return error_response(
            "Une erreur inattendue s'est produite", 500,
            type=type(error).__name__,
            details=str(error) if app.config.get('DEBUG') else None
        )


# ========== Response Helpers ==========

def error_response(message, status_code=400, **kwargs):
    """Generate standardized error response"""
    response = {
        'success': False,
        'error': message,
        'status': status_code
    }
    response.update(kwargs)
    return jsonify(response), status_code
