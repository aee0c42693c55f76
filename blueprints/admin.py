#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Administration module
Accounts, application settings and labels, audit trail, backups, import history
"""
import json

from flask import Blueprint, Response, current_app, request, send_file

from config.settings import EvaluationConfig
from models.database import get_db
from services.app_config_service import AppConfigService
from services.audit_service import AuditLogService
from services.sync_events import event_bus
from services.user_service import UserService
from utils.backup import BackupManager, get_backup_statistics
from utils.errors import ResourceNotFoundError
from utils.logger import AuditLogger
from .decorators import admin_required, login_required
from .helpers import json_body, ok, safe_int

admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')


def _backup_manager():
    return BackupManager(backup_dir=current_app.config.get('BACKUP_DIR'))


# ========== Users ==========

@admin_bp.route('/users', methods=['GET'])
@admin_required
def list_users():
    return ok(users=UserService.list_users())


@admin_bp.route('/users', methods=['POST'])
@admin_required
def create_user():
    return ok(201, user=UserService.create_user(json_body()))


@admin_bp.route('/users/<int:user_id>', methods=['PUT', 'PATCH'])
@admin_required
def update_user(user_id):
    return ok(user=UserService.update_user(user_id, json_body()))


@admin_bp.route('/users/<int:user_id>', methods=['DELETE'])
@admin_required
def delete_user(user_id):
    UserService.delete_user(user_id)
    return ok(message='Utilisateur supprimé')


# ========== Settings ==========

@admin_bp.route('/config', methods=['GET'])
@login_required
def get_config():
    return ok(config=AppConfigService.get_config())


@admin_bp.route('/config', methods=['PUT', 'PATCH'])
@admin_required
def update_config():
    return ok(config=AppConfigService.update_config(json_body()))


@admin_bp.route('/config/initialize', methods=['POST'])
@admin_required
def initialize_config():
    return ok(config=AppConfigService.initialize_config(json_body()))


# ========== Labels ==========

@admin_bp.route('/labels', methods=['GET'])
@login_required
def get_labels():
    return ok(labels=AppConfigService.get_labels())


@admin_bp.route('/labels', methods=['PUT', 'PATCH'])
@admin_required
def save_labels():
    return ok(labels=AppConfigService.save_labels(json_body()))


@admin_bp.route('/labels/reset', methods=['POST'])
@admin_required
def reset_labels():
    return ok(labels=AppConfigService.reset_labels())


@admin_bp.route('/labels/export', methods=['GET'])
@login_required
def export_labels():
    return Response(
        AppConfigService.export_labels(),
        mimetype='application/json',
        headers={'Content-Disposition': 'attachment; filename=libelles.json'}
    )


@admin_bp.route('/labels/import', methods=['POST'])
@admin_required
def import_labels():
    """Accepts an uploaded JSON file or the raw JSON text as body"""
    upload = request.files.get('file')
    text = upload.read().decode('utf-8') if upload else request.get_data(as_text=True)
    return ok(labels=AppConfigService.import_labels(text))


# ========== Audit ==========

@admin_bp.route('/audit', methods=['GET'])
@admin_required
def audit_logs():
    """
    Audit trail

    Query: user_id, action, table, start, end (YYYY-MM-DD), limit
    """
    user_id = request.args.get('user_id')
    logs = AuditLogService.get_audit_logs(
        user_id=safe_int(user_id, None) if user_id else None,
        action=request.args.get('action'),
        table_name=request.args.get('table'),
        start=request.args.get('start'),
        end=request.args.get('end'),
        limit=safe_int(request.args.get('limit'), 100),
    )
    return ok(logs=logs, total=len(logs))


@admin_bp.route('/audit/purge', methods=['POST'])
@admin_required
def purge_audit_logs():
    days = safe_int(json_body().get('days'), EvaluationConfig.AUDIT_RETENTION_DAYS)
    deleted = AuditLogService.delete_old_audit_logs(days)
    return ok(deleted=deleted)


# ========== Backups ==========

@admin_bp.route('/backups', methods=['GET'])
@admin_required
def backups():
    manager = _backup_manager()
    return ok(backups=manager.list_backups(), stats=get_backup_statistics(manager))


@admin_bp.route('/backups', methods=['POST'])
@admin_required
def create_backup():
    description = (json_body().get('description') or '').strip()
    backup_info = _backup_manager().create_backup(description, backup_type='manual')
    AuditLogger.log('backup', f"backups/{backup_info['name']}", details={'description': description})
    return ok(201, backup=backup_info)


@admin_bp.route('/backups/<backup_name>/restore', methods=['POST'])
@admin_required
def restore_backup(backup_name):
    restore_info = _backup_manager().restore_backup(backup_name)
    AppConfigService.clear_cache()
    event_bus.force_sync_all()
    AuditLogger.log('restore', f"backups/{backup_name}", details={'safety_backup': restore_info['safety_backup']})
    return ok(restore_info=restore_info)


@admin_bp.route('/backups/<backup_name>', methods=['DELETE'])
@admin_required
def delete_backup(backup_name):
    _backup_manager().delete_backup(backup_name)
    AuditLogger.log('delete', f"backups/{backup_name}")
    return ok(message=f'Sauvegarde supprimée: {backup_name}')


@admin_bp.route('/backups/<backup_name>/download', methods=['GET'])
@admin_required
def download_backup(backup_name):
    backup_path = _backup_manager().backup_path(backup_name)
    return send_file(backup_path, as_attachment=True, download_name=backup_name, mimetype='application/zip')


# ========== Import history ==========

@admin_bp.route('/import-logs', methods=['GET'])
@admin_required
def import_logs():
    """Import history, newest first; query: module, limit"""
    sql = "SELECT * FROM import_logs"
    params = []
    if request.args.get('module'):
        sql += " WHERE module = ?"
        params.append(request.args['module'])
    sql += " ORDER BY created_at DESC, id DESC LIMIT ?"
    params.append(safe_int(request.args.get('limit'), 100))

    cur = get_db().cursor()
    cur.execute(sql, params)
    logs = [dict(row) for row in cur.fetchall()]
    return ok(logs=logs, total=len(logs))


@admin_bp.route('/import-logs/<int:log_id>', methods=['GET'])
@admin_required
def import_log_detail(log_id):
    cur = get_db().cursor()
    cur.execute("SELECT * FROM import_logs WHERE id = ?", (log_id,))
    row = cur.fetchone()
    if not row:
        raise ResourceNotFoundError(f"Journal d'import {log_id} introuvable")

    log = dict(row)
    if log['import_details']:
        try:
            log['import_details'] = json.loads(log['import_details'])
        except ValueError:
            # plain-text details stay as stored
            pass
    return ok(log=log)
