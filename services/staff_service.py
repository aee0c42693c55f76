#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Staff service
Staff records: CRUD, email de-duplication and cascading deletes
"""
import logging
import sqlite3
from datetime import date
from typing import Dict, List, Optional, Tuple

from models.database import DatabaseManager, get_db
from services.sync_events import event_bus, read_cache
from utils.dates import epoch_ms, now_str
from utils.errors import ConflictError, ResourceNotFoundError
from utils.logger import AuditLogger
from utils.validators import EmailValidator, FormValidator, Sanitizer

logger = logging.getLogger('app')

MATRICULE_ATTEMPTS = 3

STAFF_FIELDS = [
    'matricule',
    'first_name',
    'last_name',
    'position',
    'email',
    'phone',
    'establishment',
    'formation_year',
]


class StaffService:
    """Staff records backed by the staff table"""

    @staticmethod
    def _clean(data: dict) -> dict:
        cleaned = {}
        for field in STAFF_FIELDS:
            if field in data:
                value = Sanitizer.clean_string(data.get(field))
                cleaned[field] = value if value != '' else None
        if 'email' in cleaned:
            cleaned['email'] = EmailValidator.normalize(cleaned['email'])
        return cleaned

    @classmethod
    def list_staff(cls, search: Optional[str] = None) -> List[dict]:
        """
        List staff ordered by last name, first name

        Args:
            search: optional case-insensitive filter on name, email, matricule

        Returns:
            list: staff dictionaries
        """
        if not search:
            cached = read_cache.get('staff')
            if cached is not None:
                return [dict(s) for s in cached]

        generation = read_cache.generation('staff')
        conn = get_db()
        cur = conn.cursor()
        if search:
            pattern = f"%{search.strip()}%"
            cur.execute("""
                SELECT * FROM staff
                WHERE first_name LIKE ? OR last_name LIKE ? OR email LIKE ? OR matricule LIKE ?
                ORDER BY last_name COLLATE NOCASE, first_name COLLATE NOCASE
            """, (pattern, pattern, pattern, pattern))
        else:
            cur.execute("SELECT * FROM staff ORDER BY last_name COLLATE NOCASE, first_name COLLATE NOCASE")

        staff = [dict(row) for row in cur.fetchall()]
        if not search:
            read_cache.set('staff', staff, generation)
            return [dict(s) for s in staff]
        return staff

    @classmethod
    def find_staff(cls, staff_id) -> Optional[dict]:
        conn = get_db()
        cur = conn.cursor()
        cur.execute("SELECT * FROM staff WHERE id = ?", (staff_id,))
        row = cur.fetchone()
        return dict(row) if row else None

    @classmethod
    def get_staff(cls, staff_id) -> dict:
        staff = cls.find_staff(staff_id)
        if not staff:
            raise ResourceNotFoundError(f"Membre du personnel {staff_id} introuvable")
        return staff

    @classmethod
    def get_staff_by_email(cls, email) -> Optional[dict]:
        email = EmailValidator.normalize(email)
        if not email:
            return None
        conn = get_db()
        cur = conn.cursor()
        cur.execute(
            "SELECT * FROM staff WHERE LOWER(email) = ? ORDER BY created_at DESC, id DESC LIMIT 1",
            (email,)
        )
        row = cur.fetchone()
        return dict(row) if row else None

    @classmethod
    def find_by_name(cls, first_name, last_name) -> Optional[dict]:
        """Case-insensitive first+last name lookup"""
        if not first_name or not last_name:
            return None
        conn = get_db()
        cur = conn.cursor()
        cur.execute("""
            SELECT * FROM staff
            WHERE LOWER(first_name) = LOWER(?) AND LOWER(last_name) = LOWER(?)
            ORDER BY id LIMIT 1
        """, (first_name.strip(), last_name.strip()))
        row = cur.fetchone()
        return dict(row) if row else None

    @classmethod
    def _matricule_owner(cls, matricule) -> Optional[int]:
        cur = get_db().cursor()
        cur.execute("SELECT id FROM staff WHERE matricule = ?", (matricule,))
        row = cur.fetchone()
        return row['id'] if row else None

    @classmethod
    def _new_matricule(cls) -> str:
        """MAT<epoch ms>, suffixed -2, -3... while the value is taken"""
        base = f"MAT{epoch_ms()}"
        matricule, suffix = base, 1
        while cls._matricule_owner(matricule) is not None:
            suffix += 1
            matricule = f"{base}-{suffix}"
        return matricule

    @classmethod
    def _check_matricule(cls, matricule, staff_id=None) -> None:
        owner = cls._matricule_owner(matricule)
        if owner is not None and owner != staff_id:
            raise ConflictError(f"Le matricule {matricule} est déjà utilisé")

    @classmethod
    def create_staff(cls, data: dict, strict: bool = True) -> Tuple[dict, bool]:
        """
        Create a staff member

        An email already on file returns the existing record untouched.

        Args:
            data: staff fields
            strict: require email and position (imports only need names)

        Returns:
            Tuple[dict, bool]: (record, created)
        """
        validator = FormValidator(data)
        validator.require('first_name', "Le prénom est obligatoire")
        validator.require('last_name', "Le nom est obligatoire")
        if strict:
            validator.require('email', "L'email est obligatoire")
            validator.require('position', "Le poste est obligatoire")
        validator.validate_email('email', optional=not strict)
        validator.raise_if_invalid("Données du personnel invalides")

        record = cls._clean(data)

        if record.get('email'):
            existing = cls.get_staff_by_email(record['email'])
            if existing:
                logger.info(f"Staff with email {record['email']} already exists (id={existing['id']})")
                return existing, False

        now = now_str()
        generated = not record.get('matricule')
        if generated:
            record['matricule'] = cls._new_matricule()
        else:
            cls._check_matricule(record['matricule'])
        if not record.get('formation_year'):
            record['formation_year'] = str(date.today().year)

        created_at = data.get('created_at') or now
        conn = get_db()
        cur = conn.cursor()

        for attempt in range(MATRICULE_ATTEMPTS):
            columns = [f for f in STAFF_FIELDS if f in record]
            try:
                cur.execute(
                    f"INSERT INTO staff({', '.join(columns)}, created_at, updated_at) "
                    f"VALUES({', '.join('?' for _ in columns)}, ?, ?)",
                    [record[f] for f in columns] + [created_at, now]
                )
                break
            except sqlite3.IntegrityError:
                conn.rollback()
                # another writer took the matricule between check and insert
                if not generated or attempt == MATRICULE_ATTEMPTS - 1:
                    raise ConflictError(f"Le matricule {record['matricule']} est déjà utilisé")
                record['matricule'] = cls._new_matricule()
        conn.commit()

        staff = cls.get_staff(cur.lastrowid)
        logger.info(f"Staff created: {staff['first_name']} {staff['last_name']} (id={staff['id']})")
        AuditLogger.create('staff', staff['id'], new_value=staff)
        event_bus.notify_change('staff', {'action': 'create', 'id': staff['id']})
        return staff, True

    @classmethod
    def update_staff(cls, staff_id, data: dict) -> dict:
        """Partial update; email stays unique"""
        current = cls.get_staff(staff_id)
        changes = cls._clean(data)

        validator = FormValidator({**current, **changes})
        validator.require('first_name', "Le prénom est obligatoire")
        validator.require('last_name', "Le nom est obligatoire")
        if 'email' in changes:
            validator.validate_email('email', optional=True)
        validator.raise_if_invalid("Données du personnel invalides")

        if changes.get('email') and changes['email'] != (current.get('email') or '').lower():
            other = cls.get_staff_by_email(changes['email'])
            if other and other['id'] != current['id']:
                raise ConflictError(f"L'email {changes['email']} est déjà utilisé")

        if 'matricule' in changes:
            if not changes['matricule']:
                # matricule is an identifier, it cannot be blanked
                changes.pop('matricule')
            else:
                cls._check_matricule(changes['matricule'], current['id'])

        if not changes:
            return current

        assignments = ', '.join(f"{field} = ?" for field in changes)
        conn = get_db()
        cur = conn.cursor()
        cur.execute(
            f"UPDATE staff SET {assignments}, updated_at = ? WHERE id = ?",
            list(changes.values()) + [now_str(), staff_id]
        )
        conn.commit()

        updated = cls.get_staff(staff_id)
        AuditLogger.update('staff', staff_id, old_value=current, new_value=updated)
        event_bus.notify_change('staff', {'action': 'update', 'id': staff_id})
        return updated

    @classmethod
    def delete_staff(cls, staff_id) -> Dict[str, int]:
        """
        Delete a staff member and everything attached to them

        Evaluations are matched by staff_id or by exact first+last name.

        Returns:
            dict: counts of deleted evaluations and trainings
        """
        staff = cls.get_staff(staff_id)
        conn = get_db()
        cur = conn.cursor()

        cur.execute("""
            DELETE FROM evaluations
            WHERE staff_id = ? OR (first_name = ? AND last_name = ?)
        """, (staff_id, staff['first_name'], staff['last_name']))
        evaluations_deleted = cur.rowcount

        cur.execute("DELETE FROM staff_trainings WHERE staff_id = ?", (staff_id,))
        trainings_deleted = cur.rowcount

        cur.execute("DELETE FROM staff WHERE id = ?", (staff_id,))
        conn.commit()

        logger.info(
            f"Staff {staff_id} deleted with {evaluations_deleted} evaluation(s) "
            f"and {trainings_deleted} training assignment(s)"
        )
        AuditLogger.delete('staff', staff_id, old_value=staff)
        event_bus.notify_change('staff', {'action': 'delete', 'id': staff_id})
        if evaluations_deleted:
            event_bus.notify_change('evaluations', {'action': 'cascade-delete', 'staff_id': staff_id})

        return {
            'evaluations_deleted': evaluations_deleted,
            'trainings_deleted': trainings_deleted
        }

    @classmethod
    def find_duplicate_groups(cls) -> Dict[str, List[dict]]:
        """Staff sharing an email, newest first within each group"""
        conn = get_db()
        cur = conn.cursor()
        cur.execute("""
            SELECT * FROM staff
            WHERE email IS NOT NULL AND TRIM(email) != ''
              AND LOWER(email) IN (
                  SELECT LOWER(email) FROM staff
                  WHERE email IS NOT NULL AND TRIM(email) != ''
                  GROUP BY LOWER(email) HAVING COUNT(*) > 1
              )
            ORDER BY LOWER(email), created_at DESC, id DESC
        """)
        groups: Dict[str, List[dict]] = {}
        for row in cur.fetchall():
            groups.setdefault(row['email'].lower(), []).append(dict(row))
        return groups

    @staticmethod
    @DatabaseManager.transaction
    def _merge_duplicates(relinks):
        """Re-point then delete, all or nothing; relinks are (kept id, duplicate id)"""
        DatabaseManager.execute_many("UPDATE evaluations SET staff_id = ? WHERE staff_id = ?", relinks, commit=False)
        DatabaseManager.execute_many("UPDATE staff_trainings SET staff_id = ? WHERE staff_id = ?", relinks, commit=False)
        DatabaseManager.execute_many("DELETE FROM staff WHERE id = ?", [(old,) for _, old in relinks], commit=False)

    @classmethod
    def remove_duplicate_staff(cls) -> Dict[str, int]:
        """
        Keep the newest record per email and drop the others

        Evaluations and trainings of removed duplicates move to the kept record.
        """
        groups = cls.find_duplicate_groups()

        relinks = []
        for email, members in groups.items():
            keep, duplicates = members[0], members[1:]
            relinks.extend((keep['id'], duplicate['id']) for duplicate in duplicates)
            logger.info(f"Duplicates for {email}: kept {keep['id']}, removed {len(duplicates)}")

        removed = len(relinks)
        if relinks:
            cls._merge_duplicates(relinks)

        cur = get_db().cursor()
        cur.execute("SELECT COUNT(1) FROM staff")
        remaining = cur.fetchone()[0]

        if removed:
            event_bus.notify_change('staff', {'action': 'deduplicate', 'removed': removed})
            event_bus.notify_change('evaluations', {'action': 'relink'})

        return {'duplicates_removed': removed, 'remaining_staff': remaining}

    @classmethod
    def get_staff_history(cls, staff_id) -> dict:
        """Staff record with its evaluations in chronological order"""
        from services.evaluation_service import EvaluationService

        staff = cls.get_staff(staff_id)
        evaluations = EvaluationService.list_for_staff(staff_id)
        timeline = [
            {
                'id': e['id'],
                'formation_theme': e['formation_theme'],
                'evaluation_type': e['evaluation_type'],
                'status': e['status'],
                'date': e.get('fu_date') or e.get('fill_date') or e.get('completed_at') or e['created_at'],
            }
            for e in evaluations
        ]
        timeline.sort(key=lambda item: item['date'] or '')
        return {'staff': staff, 'evaluations': evaluations, 'timeline': timeline}
