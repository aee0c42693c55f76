#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Training themes and theme assignments
"""
import logging
import sqlite3
from typing import List, Optional

from models.database import get_db, seed_default_themes
from services.sync_events import event_bus, read_cache
from utils.dates import now_str, today_str
from utils.errors import ConflictError, ResourceNotFoundError
from utils.logger import AuditLogger
from utils.validators import FormValidator, Sanitizer

logger = logging.getLogger('app')

TRAINING_STATUSES = ('active', 'completed', 'cancelled')


class ThemeService:
    """Named training subjects"""

    @classmethod
    def list_themes(cls) -> List[dict]:
        cached = read_cache.get('themes')
        if cached is not None:
            return [dict(t) for t in cached]

        generation = read_cache.generation('themes')
        conn = get_db()
        if seed_default_themes(conn):
            logger.info("Default training themes seeded")

        cur = conn.cursor()
        cur.execute("SELECT * FROM themes ORDER BY name COLLATE NOCASE")
        themes = [dict(row) for row in cur.fetchall()]
        read_cache.set('themes', themes, generation)
        return [dict(t) for t in themes]

    @classmethod
    def get_theme(cls, theme_id) -> dict:
        conn = get_db()
        cur = conn.cursor()
        cur.execute("SELECT * FROM themes WHERE id = ?", (theme_id,))
        row = cur.fetchone()
        if not row:
            raise ResourceNotFoundError(f"Thème {theme_id} introuvable")
        return dict(row)

    @classmethod
    def find_by_name(cls, name) -> Optional[dict]:
        if not name:
            return None
        conn = get_db()
        cur = conn.cursor()
        cur.execute("SELECT * FROM themes WHERE name = ? COLLATE NOCASE", (name.strip(),))
        row = cur.fetchone()
        return dict(row) if row else None

    @classmethod
    def create_theme(cls, data: dict) -> dict:
        validator = FormValidator(data)
        validator.require('name', "Le nom du thème est obligatoire")
        validator.validate_length('name', 1, 200)
        validator.raise_if_invalid("Données du thème invalides")

        name = Sanitizer.clean_string(data['name'])
        description = Sanitizer.clean_string(data.get('description')) or ''

        conn = get_db()
        cur = conn.cursor()
        try:
            cur.execute(
                "INSERT INTO themes(name, description, created_at) VALUES(?, ?, ?)",
                (name, description, data.get('created_at') or now_str())
            )
            conn.commit()
        except sqlite3.IntegrityError:
            conn.rollback()
            raise ConflictError(f"Le thème '{name}' existe déjà")

        theme = cls.get_theme(cur.lastrowid)
        AuditLogger.create('themes', theme['id'], new_value=theme)
        event_bus.notify_change('themes', {'action': 'create', 'id': theme['id']})
        return theme

    @classmethod
    def update_theme(cls, theme_id, data: dict) -> dict:
        current = cls.get_theme(theme_id)
        name = Sanitizer.clean_string(data.get('name', current['name']))
        description = Sanitizer.clean_string(data.get('description', current['description']))

        validator = FormValidator({'name': name})
        validator.require('name', "Le nom du thème est obligatoire")
        validator.raise_if_invalid("Données du thème invalides")

        conn = get_db()
        cur = conn.cursor()
        try:
            cur.execute(
                "UPDATE themes SET name = ?, description = ?, updated_at = ? WHERE id = ?",
                (name, description, now_str(), theme_id)
            )
            conn.commit()
        except sqlite3.IntegrityError:
            conn.rollback()
            raise ConflictError(f"Le thème '{name}' existe déjà")

        updated = cls.get_theme(theme_id)
        AuditLogger.update('themes', theme_id, old_value=current, new_value=updated)
        event_bus.notify_change('themes', {'action': 'update', 'id': theme_id})
        return updated

    @classmethod
    def delete_theme(cls, theme_id) -> None:
        current = cls.get_theme(theme_id)
        conn = get_db()
        conn.execute("DELETE FROM themes WHERE id = ?", (theme_id,))
        conn.commit()

        AuditLogger.delete('themes', theme_id, old_value=current)
        event_bus.notify_change('themes', {'action': 'delete', 'id': theme_id})
        event_bus.notify_change('staff-trainings', {'action': 'cascade-delete', 'theme_id': theme_id})


class StaffTrainingService:
    """Assignments of training themes to staff members"""

    _SELECT = """
        SELECT st.*, s.first_name, s.last_name, t.name AS theme_name
        FROM staff_trainings st
        JOIN staff s ON s.id = st.staff_id
        JOIN themes t ON t.id = st.theme_id
    """

    @classmethod
    def list_trainings(cls) -> List[dict]:
        conn = get_db()
        cur = conn.cursor()
        cur.execute(cls._SELECT + " ORDER BY st.assigned_date DESC, st.id DESC")
        return [dict(row) for row in cur.fetchall()]

    @classmethod
    def list_for_staff(cls, staff_id) -> List[dict]:
        conn = get_db()
        cur = conn.cursor()
        cur.execute(cls._SELECT + " WHERE st.staff_id = ? ORDER BY st.assigned_date DESC, st.id DESC", (staff_id,))
        return [dict(row) for row in cur.fetchall()]

    @classmethod
    def get_training(cls, training_id) -> dict:
        conn = get_db()
        cur = conn.cursor()
        cur.execute(cls._SELECT + " WHERE st.id = ?", (training_id,))
        row = cur.fetchone()
        if not row:
            raise ResourceNotFoundError(f"Affectation {training_id} introuvable")
        return dict(row)

    @classmethod
    def create_training(cls, data: dict) -> dict:
        from services.staff_service import StaffService

        validator = FormValidator(data)
        validator.validate_integer('staff_id', message="staff_id doit être un identifiant valide")
        validator.validate_integer('theme_id', message="theme_id doit être un identifiant valide")
        validator.validate_choice('status', TRAINING_STATUSES)
        validator.validate_date('assigned_date')
        validator.raise_if_invalid("Données d'affectation invalides")

        StaffService.get_staff(data['staff_id'])
        ThemeService.get_theme(data['theme_id'])

        now = now_str()
        conn = get_db()
        cur = conn.cursor()
        cur.execute("""
            INSERT INTO staff_trainings(staff_id, theme_id, status, assigned_date, created_at, updated_at)
            VALUES(?, ?, ?, ?, ?, ?)
        """, (
            int(data['staff_id']),
            int(data['theme_id']),
            data.get('status') or 'active',
            data.get('assigned_date') or today_str(),
            now,
            now
        ))
        conn.commit()

        training = cls.get_training(cur.lastrowid)
        AuditLogger.create('staff_trainings', training['id'], new_value=training)
        event_bus.notify_change('staff-trainings', {'action': 'create', 'id': training['id']})
        return training

    @classmethod
    def update_training(cls, training_id, data: dict) -> dict:
        current = cls.get_training(training_id)

        validator = FormValidator(data)
        validator.validate_choice('status', TRAINING_STATUSES)
        validator.validate_date('assigned_date')
        if 'theme_id' in data:
            validator.validate_integer('theme_id')
        validator.raise_if_invalid("Données d'affectation invalides")

        if 'theme_id' in data:
            ThemeService.get_theme(data['theme_id'])

        conn = get_db()
        conn.execute("""
            UPDATE staff_trainings
            SET theme_id = ?, status = ?, assigned_date = ?, updated_at = ?
            WHERE id = ?
        """, (
            int(data.get('theme_id', current['theme_id'])),
            data.get('status') or current['status'],
            data.get('assigned_date') or current['assigned_date'],
            now_str(),
            training_id
        ))
        conn.commit()

        updated = cls.get_training(training_id)
        AuditLogger.update('staff_trainings', training_id, old_value=current, new_value=updated)
        event_bus.notify_change('staff-trainings', {'action': 'update', 'id': training_id})
        return updated

    @classmethod
    def delete_training(cls, training_id) -> None:
        current = cls.get_training(training_id)
        conn = get_db()
        conn.execute("DELETE FROM staff_trainings WHERE id = ?", (training_id,))
        conn.commit()
        AuditLogger.delete('staff_trainings', training_id, old_value=current)
        event_bus.notify_change('staff-trainings', {'action': 'delete', 'id': training_id})
