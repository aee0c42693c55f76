#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Logging and audit module
Logging setup, access log and audit trail (file + audit_logs table)
"""
import logging
import os
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from datetime import datetime
from functools import wraps
from flask import request, session, has_request_context
import json


# ========== Logging Configuration ==========

def setup_logging(app):
    """Setup application logging configuration"""

    log_dir = app.config.get('LOG_DIR') or os.path.join(app.root_path, 'logs')
    os.makedirs(log_dir, exist_ok=True)

    log_level = logging.DEBUG if app.config.get('DEBUG') else logging.INFO

    detailed_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s (%(funcName)s:%(lineno)d): %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    simple_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # ===== Application Log =====
    app_handler = RotatingFileHandler(
        os.path.join(log_dir, 'app.log'),
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=10,
        encoding='utf-8'
    )
    app_handler.setLevel(log_level)
    app_handler.setFormatter(detailed_formatter)

    # ===== Error Log =====
    error_handler = RotatingFileHandler(
        os.path.join(log_dir, 'error.log'),
        maxBytes=5 * 1024 * 1024,  # 5MB
        backupCount=5,
        encoding='utf-8'
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(detailed_formatter)

    # ===== Access Log =====
    access_handler = TimedRotatingFileHandler(
        os.path.join(log_dir, 'access.log'),
        when='midnight',
        interval=1,
        backupCount=30,
        encoding='utf-8'
    )
    access_handler.setLevel(logging.INFO)
    access_handler.setFormatter(simple_formatter)

    # ===== Audit Log =====
    audit_handler = TimedRotatingFileHandler(
        os.path.join(log_dir, 'audit.log'),
        when='midnight',
        interval=1,
        backupCount=90,
        encoding='utf-8'
    )
    audit_handler.setLevel(logging.INFO)
    audit_handler.setFormatter(simple_formatter)

    # Services log through the 'app' logger, Flask through app.logger
    service_logger = logging.getLogger('app')
    for logger in (app.logger, service_logger):
        for handler in list(logger.handlers):
            if getattr(handler, '_cfpt_handler', False):
                logger.removeHandler(handler)
                handler.close()

    handlers = [app_handler, error_handler]
    if app.config.get('DEBUG'):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG)
        console_handler.setFormatter(simple_formatter)
        handlers.append(console_handler)

    for handler in handlers + [access_handler, audit_handler]:
        handler._cfpt_handler = True

    for logger in (app.logger, service_logger):
        for handler in handlers:
            logger.addHandler(handler)
        logger.setLevel(log_level)
    service_logger.propagate = False

    access_logger = logging.getLogger('access')
    _replace_handlers(access_logger, access_handler)
    access_logger.setLevel(logging.INFO)
    access_logger.propagate = False

    audit_logger = logging.getLogger('audit')
    _replace_handlers(audit_logger, audit_handler)
    audit_logger.setLevel(logging.INFO)
    audit_logger.propagate = False

    app.logger.info('=' * 80)
    app.logger.info(f'Application started - {app.name}')
    app.logger.info(f'Debug mode: {app.config.get("DEBUG")}')
    app.logger.info(f'Log directory: {log_dir}')
    app.logger.info('=' * 80)


def _replace_handlers(logger, handler):
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    logger.addHandler(handler)


# ========== Access Logging ==========

def log_request(app):
    """Log HTTP requests"""

    @app.before_request
    def before_request_logging():
        """Log request details before processing"""
        access_logger = logging.getLogger('access')

        if request.path.startswith('/static/'):
            return

        user_id = session.get('user_id', 'anonymous')
        username = session.get('username', 'anonymous')

        access_logger.info(
            f"{request.method} {request.path} | "
            f"User: {username} ({user_id}) | "
            f"IP: {request.remote_addr} | "
            f"UA: {request.headers.get('User-Agent', 'Unknown')[:100]}"
        )

    @app.after_request
    def after_request_logging(response):
        """Log response details after processing"""
        access_logger = logging.getLogger('access')

        if request.path.startswith('/static/'):
            return response

        user_id = session.get('user_id', 'anonymous')

        access_logger.info(
            f"Response: {response.status_code} | "
            f"User: {user_id} | "
            f"Path: {request.path} | "
            f"Size: {response.content_length or 0} bytes"
        )

        return response


# ========== Audit Trail ==========

def _request_identity():
    """(user_id, username, ip, user_agent) of the current request, or system"""
    if not has_request_context():
        return None, 'system', 'system', None
    return (
        session.get('user_id'),
        session.get('username', 'anonymous'),
        request.remote_addr,
        (request.headers.get('User-Agent') or '')[:200] or None,
    )


class AuditLogger:
    """Audit logger for tracking user actions"""

    @staticmethod
    def log(action, resource, details=None, status='success', user_id=None,
            table_name=None, record_id=None, old_value=None, new_value=None):
        """Log an audit event to audit.log and, when enabled, to audit_logs"""
        audit_logger = logging.getLogger('audit')

        session_user_id, username, ip_address, user_agent = _request_identity()
        if user_id is None:
            user_id = session_user_id

        audit_data = {
            'timestamp': datetime.now().isoformat(),
            'user_id': user_id if user_id is not None else 'system',
            'username': username,
            'ip_address': ip_address,
            'action': action,
            'resource': resource,
            'status': status,
            'details': details or {}
        }

        audit_logger.info(json.dumps(audit_data, ensure_ascii=False, default=str))

        if table_name is None:
            return

        from services.app_config_service import AppConfigService
        if not AppConfigService.audit_enabled():
            return

        from services.audit_service import AuditLogService
        AuditLogService.record(
            action=action,
            table_name=table_name,
            record_id=record_id,
            old_value=old_value,
            new_value=new_value,
            user_id=user_id,
            user_name=username,
            ip_address=ip_address,
            user_agent=user_agent
        )

    @staticmethod
    def login(username, success=True, reason=None):
        """Log login attempt"""
        status = 'success' if success else 'failed'
        details = {'reason': reason} if reason else {}

        AuditLogger.log(
            action='login',
            resource='authentication',
            details=details,
            status=status
        )

    @staticmethod
    def logout(username):
        """Log logout"""
        AuditLogger.log(
            action='logout',
            resource='authentication',
            details={'username': username},
            status='success'
        )

    @staticmethod
    def create(resource_type, resource_id, new_value=None):
        """Log resource creation"""
        AuditLogger.log(
            action='create',
            resource=f"{resource_type}/{resource_id}",
            table_name=resource_type,
            record_id=resource_id,
            new_value=new_value
        )

    @staticmethod
    def update(resource_type, resource_id, old_value=None, new_value=None):
        """Log resource update"""
        AuditLogger.log(
            action='update',
            resource=f"{resource_type}/{resource_id}",
            table_name=resource_type,
            record_id=resource_id,
            old_value=old_value,
            new_value=new_value
        )

    @staticmethod
    def delete(resource_type, resource_id, old_value=None):
        """Log resource deletion"""
        AuditLogger.log(
            action='delete',
            resource=f"{resource_type}/{resource_id}",
            table_name=resource_type,
            record_id=resource_id,
            old_value=old_value
        )


# ========== Performance Logging ==========

def log_slow_queries(threshold_ms=1000):
    """Decorator to log slow database queries"""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            import time
            start_time = time.time()

            result = func(*args, **kwargs)

            duration_ms = (time.time() - start_time) * 1000

            if duration_ms > threshold_ms:
                logging.getLogger('app').warning(
                    f"Slow query detected: {func.__name__} took {duration_ms:.2f}ms "
                    f"(threshold: {threshold_ms}ms)"
                )

            return result

        return wrapper
    return decorator


# ========== Security Logging ==========

class SecurityLogger:
    """Security event logger"""

    @staticmethod
    def suspicious_activity(event_type, details):
        """Log suspicious activity"""
        _, username, ip_address, _ = _request_identity()
        logger = logging.getLogger('app')
        logger.warning(
            f"SECURITY: {event_type} | "
            f"User: {username} | "
            f"IP: {ip_address} | "
            f"Details: {json.dumps(details, ensure_ascii=False)}"
        )

        AuditLogger.log(
            action='security_event',
            resource=event_type,
            details=details,
            status='suspicious'
        )

    @staticmethod
    def failed_login(username, reason):
        """Log failed login attempt"""
        SecurityLogger.suspicious_activity(
            'failed_login',
            {'username': username, 'reason': reason}
        )

    @staticmethod
    def unauthorized_access(resource):
        """Log unauthorized access attempt"""
        SecurityLogger.suspicious_activity(
            'unauthorized_access',
            {'resource': resource}
        )
