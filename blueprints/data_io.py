#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Data transfer module
Excel and JSON import/export, consistency checks, operation queue and sync
"""
import json
import logging
from datetime import datetime
from io import BytesIO

from flask import Blueprint, request, send_file

from services.excel_export_service import XLSX_MIMETYPE, build_export_workbook, build_template_workbook
from services.excel_import_service import (
    import_template_rows, import_workbook, parse_template_workbook, save_imported_data
)
from services.maintenance_service import DataMaintenanceService
from services.sync_events import event_bus, on_user_action
from utils.errors import ValidationError
from .decorators import admin_required, login_required
from .helpers import get_operation_queue, json_body, log_import_operation, ok, safe_int, uploaded_file

logger = logging.getLogger('app')

data_io_bp = Blueprint('data_io', __name__, url_prefix='/api')

EXCEL_EXTENSIONS = {'xlsx', 'xls'}


# ========== Excel ==========

@data_io_bp.route('/export/excel', methods=['GET'])
@login_required
def export_excel():
    """Download the workbook for ?type=all|staff|evaluations|themes"""
    buffer, filename = build_export_workbook(request.args.get('type', 'all'))
    return send_file(buffer, as_attachment=True, download_name=filename, mimetype=XLSX_MIMETYPE)


@data_io_bp.route('/export/template', methods=['GET'])
@login_required
def export_template():
    buffer, filename = build_template_workbook()
    return send_file(buffer, as_attachment=True, download_name=filename, mimetype=XLSX_MIMETYPE)


@data_io_bp.route('/import/excel/preview', methods=['POST'])
@login_required
def preview_excel_import():
    """Parse an uploaded workbook without saving anything"""
    upload = uploaded_file(extensions=EXCEL_EXTENSIONS)
    result = import_workbook(upload.stream, upload.filename)
    return ok(**result.to_dict())


@data_io_bp.route('/import/excel', methods=['POST'])
@login_required
def import_excel():
    """
    Parse an uploaded workbook and save it through the operation queue

    Returns the parse diagnostics plus the saved counts.
    """
    upload = uploaded_file(extensions=EXCEL_EXTENSIONS)
    result = import_workbook(upload.stream, upload.filename)

    saved = None
    if result.total_imported:
        saved = save_imported_data(result, queue=get_operation_queue())

    total_rows = result.total_imported + result.summary['duplicates_ignored']
    success_rows = sum(saved[k] for k in ('staff', 'themes', 'evaluations')) if saved else 0
    log_import_operation(
        'all', 'excel_import',
        file_name=upload.filename,
        total_rows=total_rows,
        success_rows=success_rows,
        failed_rows=(saved['failed'] if saved else 0) + len(result.errors),
        skipped_rows=(saved['skipped'] if saved else 0) + result.summary['duplicates_ignored'],
        error_message='; '.join(result.errors)[:1000] or None,
        import_details={'summary': result.summary, 'warnings': result.warnings, 'saved': saved},
    )
    if saved:
        on_user_action('excel_import')

    body = result.to_dict()
    body.pop('data')
    success = body.pop('success')
    return ok(200 if success else 400, imported=success, saved=saved, **body)


@data_io_bp.route('/import/template', methods=['POST'])
@login_required
def import_template():
    """
    Import a filled entry template

    Form field preview=1 only validates the rows.
    """
    upload = uploaded_file(extensions=EXCEL_EXTENSIONS)
    parsed = parse_template_workbook(upload.stream, upload.filename)

    if request.form.get('preview') in ('1', 'true'):
        return ok(**parsed)

    summary = None
    if parsed['rows']:
        summary = import_template_rows(parsed['rows'], queue=get_operation_queue())
        on_user_action('template_import')

    log_import_operation(
        'evaluations', 'template_import',
        file_name=upload.filename,
        total_rows=parsed['total_rows'],
        success_rows=summary['evaluations_created'] if summary else 0,
        failed_rows=len(parsed['errors']),
        import_details={'errors': parsed['errors'], 'summary': summary},
    )
    return ok(summary=summary, errors=parsed['errors'], total_rows=parsed['total_rows'])


# ========== JSON ==========

@data_io_bp.route('/export/json', methods=['GET'])
@login_required
def export_json():
    export_type = request.args.get('type', 'all')
    document = DataMaintenanceService.export_data(export_type)
    buffer = BytesIO(json.dumps(document, ensure_ascii=False, indent=2).encode('utf-8'))
    filename = f"CFP-Manager-{export_type}-{datetime.now().strftime('%Y-%m-%d')}.json"
    return send_file(buffer, as_attachment=True, download_name=filename, mimetype='application/json')


@data_io_bp.route('/import/json', methods=['POST'])
@login_required
def import_json():
    """Accepts an uploaded .json file or the document as the request body"""
    if request.files:
        upload = uploaded_file(extensions={'json'})
        document, file_name = upload.read(), upload.filename
    else:
        document, file_name = json_body(), None
        if not document:
            raise ValidationError("Aucun document JSON fourni")

    counts = DataMaintenanceService.import_data(document, request.args.get('type'))
    log_import_operation(
        'all', 'json_import',
        file_name=file_name,
        total_rows=sum(c['created'] + c['updated'] for c in counts.values()),
        success_rows=sum(c['created'] + c['updated'] for c in counts.values()),
        import_details=counts,
    )
    on_user_action('json_import')
    return ok(counts=counts)


# ========== Maintenance ==========

@data_io_bp.route('/data/consistency', methods=['GET'])
@login_required
def consistency():
    return ok(report=DataMaintenanceService.verify_data_consistency())


@data_io_bp.route('/data/clear', methods=['POST'])
@admin_required
def clear_data():
    deleted = DataMaintenanceService.clear_all_data()
    return ok(message='Toutes les données ont été supprimées', deleted=deleted)


# ========== Queue ==========

@data_io_bp.route('/queue/status', methods=['GET'])
@login_required
def queue_status():
    return ok(status=get_operation_queue().get_status())


@data_io_bp.route('/queue/clear', methods=['POST'])
@login_required
def queue_clear():
    cancelled = get_operation_queue().clear_queue()
    return ok(cancelled=cancelled)


# ========== Sync ==========

@data_io_bp.route('/sync/force', methods=['POST'])
@login_required
def force_sync():
    events = event_bus.force_sync_all()
    return ok(events=events)


@data_io_bp.route('/sync/events', methods=['GET'])
@login_required
def sync_events():
    limit = min(max(safe_int(request.args.get('limit'), 100), 1), 100)
    return ok(events=event_bus.recent_events(limit))
