#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Data maintenance service
Consistency checks, JSON export/import and full data reset
"""
import json
import logging
from datetime import datetime, timedelta
from typing import Optional

from config.settings import EvaluationConfig
from models.database import DatabaseManager, get_db
from services.evaluation_service import COLUMN_FIELDS, EvaluationService
from services.staff_service import STAFF_FIELDS
from services.sync_events import event_bus
from utils.dates import now_str, parse_timestamp
from utils.errors import ValidationError
from utils.logger import AuditLogger
from utils.validators import EmailValidator, StringValidator

logger = logging.getLogger('app')

EXPORT_VERSION = '1.0'
EXPORT_TYPES = ('all', 'staff', 'evaluations', 'themes')

# Export type -> collections included in the document
EXPORT_COLLECTIONS = {
    'all': ('staff', 'evaluations', 'themes', 'staff_trainings'),
    'staff': ('staff',),
    'evaluations': ('evaluations',),
    'themes': ('themes',),
}

THEME_FIELDS = ['name', 'description', 'created_at', 'updated_at']
TRAINING_FIELDS = ['staff_id', 'theme_id', 'status', 'assigned_date', 'created_at', 'updated_at']

# Child tables first
DOMAIN_TABLES = ('staff_trainings', 'evaluations', 'staff', 'themes', 'import_logs')


def _upsert(cur, table: str, record: dict, fields) -> str:
    """Insert or update a row by id; returns 'created' or 'updated'"""
    values = {field: record.get(field) for field in fields if field in record}
    record_id = record.get('id')

    if record_id is not None:
        cur.execute(f"SELECT 1 FROM {table} WHERE id = ?", (record_id,))
        if cur.fetchone():
            if values:
                assignments = ', '.join(f"{name} = ?" for name in values)
                cur.execute(
                    f"UPDATE {table} SET {assignments} WHERE id = ?",
                    list(values.values()) + [record_id]
                )
            return 'updated'
        values = dict(values, id=record_id)

    names = list(values)
    cur.execute(
        f"INSERT INTO {table}({', '.join(names)}) VALUES({', '.join('?' for _ in names)})",
        [values[n] for n in names]
    )
    return 'created'


class DataMaintenanceService:
    """Whole-dataset operations"""

    # ========== Consistency ==========

    @classmethod
    def verify_data_consistency(cls, now: Optional[datetime] = None) -> dict:
        """
        Scan staff and evaluations for integrity problems

        Checks:
            - staff without first name, last name or a valid email
            - staff sharing the same email
            - evaluations pointing at a missing staff member
            - drafts older than EvaluationConfig.STALE_DRAFT_DAYS

        Returns:
            dict: {is_consistent, issues, stats}
        """
        now = now or datetime.now()
        conn = get_db()
        cur = conn.cursor()
        issues = []

        cur.execute("SELECT * FROM staff ORDER BY id")
        staff = [dict(row) for row in cur.fetchall()]

        invalid_staff = [
            s for s in staff
            if StringValidator.is_empty(s.get('first_name'))
            or StringValidator.is_empty(s.get('last_name'))
            or not EmailValidator.is_valid(s.get('email'))
        ]
        if invalid_staff:
            issues.append({
                'type': 'invalid_staff',
                'message': f"{len(invalid_staff)} membre(s) du personnel avec des données invalides",
                'ids': [s['id'] for s in invalid_staff],
            })

        by_email = {}
        for s in staff:
            email = EmailValidator.normalize(s.get('email'))
            if email:
                by_email.setdefault(email, []).append(s['id'])
        duplicates = {email: ids for email, ids in by_email.items() if len(ids) > 1}
        duplicate_count = sum(len(ids) - 1 for ids in duplicates.values())
        if duplicates:
            issues.append({
                'type': 'duplicate_staff',
                'message': f"{duplicate_count} doublon(s) d'email détecté(s)",
                'emails': sorted(duplicates),
            })

        cur.execute("""
            SELECT e.id FROM evaluations e
            WHERE e.staff_id IS NOT NULL
              AND NOT EXISTS (SELECT 1 FROM staff s WHERE s.id = e.staff_id)
            ORDER BY e.id
        """)
        orphan_ids = [row['id'] for row in cur.fetchall()]
        if orphan_ids:
            issues.append({
                'type': 'orphan_evaluations',
                'message': f"{len(orphan_ids)} évaluation(s) sans membre du personnel associé",
                'ids': orphan_ids,
            })

        cur.execute("SELECT id, created_at, updated_at FROM evaluations WHERE status = 'draft'")
        drafts = [dict(row) for row in cur.fetchall()]
        limit = now - timedelta(days=EvaluationConfig.STALE_DRAFT_DAYS)
        stale_ids = []
        for draft in drafts:
            touched = parse_timestamp(draft.get('updated_at') or draft.get('created_at'))
            if touched is not None and touched < limit:
                stale_ids.append(draft['id'])
        if stale_ids:
            issues.append({
                'type': 'stale_drafts',
                'message': f"{len(stale_ids)} brouillon(s) de plus de {EvaluationConfig.STALE_DRAFT_DAYS} jours",
                'ids': stale_ids,
            })

        cur.execute("SELECT COUNT(1) FROM evaluations")
        total_evaluations = cur.fetchone()[0]

        report = {
            'is_consistent': not issues,
            'issues': issues,
            'stats': {
                'total_staff': len(staff),
                'total_evaluations': total_evaluations,
                'total_drafts': len(drafts),
                'orphan_evaluations': len(orphan_ids),
                'duplicate_staff': duplicate_count,
            },
            'checked_at': now.strftime('%Y-%m-%d %H:%M:%S'),
        }
        if issues:
            logger.info(f"Consistency check: {len(issues)} issue type(s) found")
        return report

    # ========== JSON Export / Import ==========

    @classmethod
    def export_data(cls, export_type: str = 'all') -> dict:
        """Build the JSON backup document for export_type"""
        if export_type not in EXPORT_TYPES:
            raise ValidationError(
                f"Type d'export invalide: {export_type}",
                payload={'allowed': list(EXPORT_TYPES)}
            )

        conn = get_db()
        cur = conn.cursor()
        document = {
            'version': EXPORT_VERSION,
            'exported_at': now_str(),
            'type': export_type,
        }

        collections = EXPORT_COLLECTIONS[export_type]
        if 'staff' in collections:
            cur.execute("SELECT * FROM staff ORDER BY id")
            document['staff'] = [dict(row) for row in cur.fetchall()]
        if 'evaluations' in collections:
            cur.execute("SELECT * FROM evaluations ORDER BY id")
            document['evaluations'] = [EvaluationService._from_row(row) for row in cur.fetchall()]
        if 'themes' in collections:
            cur.execute("SELECT * FROM themes ORDER BY id")
            document['themes'] = [dict(row) for row in cur.fetchall()]
        if 'staff_trainings' in collections:
            cur.execute("SELECT * FROM staff_trainings ORDER BY id")
            document['staff_trainings'] = [dict(row) for row in cur.fetchall()]

        AuditLogger.log('export', f"json/{export_type}", details={
            name: len(document[name]) for name in collections
        })
        return document

    @classmethod
    def import_data(cls, document, import_type: Optional[str] = None) -> dict:
        """
        Upsert the collections of a JSON export document by id

        Args:
            document: parsed document or raw JSON text
            import_type: restrict to one collection type, defaults to document['type']

        Returns:
            dict: {collection: {created, updated}}
        """
        if isinstance(document, (str, bytes)):
            try:
                document = json.loads(document)
            except ValueError:
                raise ValidationError("Fichier JSON invalide")
        if not isinstance(document, dict):
            raise ValidationError("Le document importé doit être un objet JSON")

        import_type = import_type or document.get('type') or 'all'
        if import_type not in EXPORT_TYPES:
            raise ValidationError(f"Type d'import invalide: {import_type}")

        collections = [
            name for name in EXPORT_COLLECTIONS[import_type]
            if isinstance(document.get(name), list)
        ]
        if not collections:
            raise ValidationError("Aucune donnée à importer dans ce document")

        counts = cls._write_document(document, collections)

        logger.info(f"JSON import ({import_type}): {counts}")
        AuditLogger.log('import', f"json/{import_type}", details=counts)
        for name in counts:
            event_bus.emit(f"{name.replace('_', '-')}-updated", {'action': 'import'})
        event_bus.emit('data-updated', {'source': 'import', 'type': import_type})
        return counts

    @staticmethod
    @DatabaseManager.transaction
    def _write_document(document: dict, collections) -> dict:
        cur = get_db().cursor()
        counts = {}

        # Parents before children so foreign keys resolve
        for name in ('staff', 'themes', 'staff_trainings', 'evaluations'):
            if name not in collections:
                continue
            result = {'created': 0, 'updated': 0}
            for record in document[name]:
                if not isinstance(record, dict):
                    continue
                if name == 'staff':
                    outcome = _upsert(cur, 'staff', record, STAFF_FIELDS + ['created_at', 'updated_at'])
                elif name == 'themes':
                    outcome = _upsert(cur, 'themes', record, THEME_FIELDS)
                elif name == 'staff_trainings':
                    outcome = _upsert(cur, 'staff_trainings', record, TRAINING_FIELDS)
                else:
                    columns, form_json = EvaluationService._split(record)
                    row = dict(columns, id=record.get('id'), form_data=form_json)
                    row['formation_theme'] = row.get('formation_theme') or 'Non spécifié'
                    row['evaluation_type'] = row.get('evaluation_type') or 'initial'
                    row['status'] = row.get('status') or 'completed'
                    row['created_at'] = row.get('created_at') or now_str()
                    outcome = _upsert(cur, 'evaluations', row, COLUMN_FIELDS + ['form_data'])
                result[outcome] += 1
            counts[name] = result
        return counts

    # ========== Reset ==========

    @classmethod
    def clear_all_data(cls) -> dict:
        """Delete every domain row; users, settings and audit trail are kept"""
        deleted = {}
        for table in DOMAIN_TABLES:
            deleted[table] = DatabaseManager.execute_query(f"DELETE FROM {table}")

        logger.warning(f"All domain data cleared: {deleted}")
        AuditLogger.log('clear', 'all-data', details=deleted)
        event_bus.emit('data-cleared', deleted)
        return deleted
