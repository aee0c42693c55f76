#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Shared helper functions
Helpers used by several blueprints
"""
import json
import logging
import os

from flask import current_app, jsonify, request, session

from config.settings import ALLOWED_EXTENSIONS
from models.database import get_db
from utils.errors import ValidationError

logger = logging.getLogger('app')


def current_user_id():
    """
    Id of the logged-in user

    Returns:
        int: user id, None when not logged in
    """
    return session.get('user_id')


def current_username():
    """
    Display name of the logged-in user

    Returns:
        str: username, None when not logged in
    """
    return session.get('username')


def current_user_role():
    """
    Role of the logged-in user

    Returns:
        str: 'admin' or 'user', None when not logged in
    """
    return session.get('role')


def is_logged_in():
    return session.get('logged_in', False)


def is_admin():
    return is_logged_in() and current_user_role() == 'admin'


def safe_int(value, default=0):
    """
    Convert to int

    Args:
        value: value to convert
        default: returned when conversion fails

    Returns:
        int: converted value
    """
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


def json_body():
    """Request JSON body as a dict, ValidationError otherwise"""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Corps JSON invalide")
    return data


def ok(status_code=200, **payload):
    """jsonify({'success': True, **payload}) with a status code"""
    body = {'success': True}
    body.update(payload)
    return jsonify(body), status_code


def get_operation_queue():
    return current_app.extensions['operation_queue']


def uploaded_file(field='file', extensions=None):
    """
    Uploaded file from request.files, checked against the allowed extensions

    Returns:
        FileStorage: the uploaded file
    """
    upload = request.files.get(field)
    if upload is None or not upload.filename:
        raise ValidationError("Aucun fichier fourni")

    allowed = extensions or ALLOWED_EXTENSIONS
    extension = os.path.splitext(upload.filename)[1].lower().lstrip('.')
    if extension not in allowed:
        raise ValidationError(
            f"Format de fichier non supporté: .{extension}",
            payload={'allowed': sorted(allowed)}
        )
    return upload


def log_import_operation(module, operation, file_name=None, total_rows=0,
                         success_rows=0, failed_rows=0, skipped_rows=0,
                         error_message=None, import_details=None):
    """
    Record a data import in import_logs

    Args:
        module: imported domain (staff/evaluations/themes/all)
        operation: import kind (excel_import/template_import/json_import)
        file_name: uploaded file name
        total_rows: rows read
        success_rows: rows saved
        failed_rows: rows rejected
        skipped_rows: rows ignored (duplicates, empty rows)
        error_message: error summary
        import_details: details, dicts are stored as JSON

    Returns:
        int: log id
    """
    details_json = None
    if import_details:
        if isinstance(import_details, dict):
            details_json = json.dumps(import_details, ensure_ascii=False, default=str)
        else:
            details_json = str(import_details)

    conn = get_db()
    cur = conn.cursor()
    cur.execute("""
        INSERT INTO import_logs (
            module, operation, user_id, user_name, file_name,
            total_rows, success_rows, failed_rows, skipped_rows,
            error_message, import_details, ip_address
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (
        module, operation, current_user_id(), current_username(), file_name,
        total_rows, success_rows, failed_rows, skipped_rows,
        error_message, details_json, request.remote_addr
    ))
    conn.commit()

    logger.info(
        f"Import logged: {module}/{operation} file={file_name} "
        f"total={total_rows} success={success_rows} failed={failed_rows} skipped={skipped_rows}"
    )
    return cur.lastrowid
