#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Application settings service
Singleton app_config row plus the customizable French UI labels
"""
import json
import logging
import threading
import time
from typing import Optional

from config.settings import COMPANY_NAME, SyncConfig
from models.database import get_db
from services.sync_events import event_bus
from utils.dates import now_str
from utils.errors import ValidationError
from utils.logger import AuditLogger
from utils.validators import FormValidator, Sanitizer

logger = logging.getLogger('app')

USER_MODES = ('single', 'multi')

CONFIG_FIELDS = ['company_name', 'company_logo', 'theme_color', 'audit_logging', 'setup_completed', 'user_mode']

DEFAULT_LABELS = {
    # Application
    'appName': "Centre de Formation Professionnelle et Technique d'Ivato",
    'appShortName': 'CFPT Ivato',

    # Sections
    'dashboard': 'Tableau de Bord',
    'staff': 'Personnel',
    'evaluation': 'Évaluation',
    'statistics': 'Statistiques',
    'settings': 'Paramètres',

    # Staff
    'staffMember': 'Membre du personnel',
    'staffMembers': 'Membres du personnel',
    'addStaff': 'Ajouter un membre',
    'editStaff': 'Modifier le membre',
    'deleteStaff': 'Supprimer le membre',

    # Evaluations
    'evaluationForm': "Formulaire d'évaluation",
    'evaluations': 'Évaluations',
    'newEvaluation': 'Nouvelle évaluation',

    # Actions
    'save': 'Enregistrer',
    'cancel': 'Annuler',
    'edit': 'Modifier',
    'delete': 'Supprimer',
    'search': 'Rechercher',
    'filter': 'Filtrer',
    'export': 'Exporter',
    'import': 'Importer',

    # Staff fields
    'firstName': 'Prénom',
    'lastName': 'Nom',
    'email': 'Email',
    'phone': 'Téléphone',
    'position': 'Poste',
    'establishment': 'Établissement',
    'formationYear': 'Année de formation',
    'matricule': 'Matricule',
}


class AppConfigService:
    """Settings row with a short-lived read cache"""

    _cache = None
    _cached_at = 0.0
    _lock = threading.Lock()

    @staticmethod
    def _from_row(row) -> dict:
        config = dict(row)
        config['audit_logging'] = bool(config['audit_logging'])
        config['setup_completed'] = bool(config['setup_completed'])
        config.pop('labels', None)
        return config

    @classmethod
    def clear_cache(cls) -> None:
        with cls._lock:
            cls._cache = None
            cls._cached_at = 0.0

    @classmethod
    def get_config(cls) -> dict:
        with cls._lock:
            if cls._cache is not None and time.time() - cls._cached_at < SyncConfig.CACHE_TTL:
                return dict(cls._cache)

        conn = get_db()
        cur = conn.cursor()
        cur.execute("SELECT * FROM app_config WHERE id = 1")
        row = cur.fetchone()
        if row is None:
            cur.execute("INSERT INTO app_config(id, company_name) VALUES(1, ?)", (COMPANY_NAME,))
            conn.commit()
            cur.execute("SELECT * FROM app_config WHERE id = 1")
            row = cur.fetchone()

        config = cls._from_row(row)
        with cls._lock:
            cls._cache = config
            cls._cached_at = time.time()
        return dict(config)

    @classmethod
    def audit_enabled(cls) -> bool:
        return cls.get_config()['audit_logging']

    @staticmethod
    def _clean(data: dict) -> dict:
        validator = FormValidator(data)
        if 'company_name' in data:
            validator.require('company_name', "Le nom de l'établissement est obligatoire")
            validator.validate_length('company_name', 1, 200)
        validator.validate_choice('user_mode', USER_MODES)
        validator.raise_if_invalid("Configuration invalide")

        cleaned = {}
        for field in CONFIG_FIELDS:
            if field not in data:
                continue
            value = data[field]
            if field in ('audit_logging', 'setup_completed'):
                cleaned[field] = 1 if value in (True, 1, '1', 'true', 'on') else 0
            else:
                cleaned[field] = Sanitizer.clean_string(value) or None
        return cleaned

    @classmethod
    def update_config(cls, data: dict) -> dict:
        current = cls.get_config()
        cleaned = cls._clean(data)
        if cleaned:
            assignments = ', '.join(f"{name} = ?" for name in cleaned)
            conn = get_db()
            conn.execute(
                f"UPDATE app_config SET {assignments}, updated_at = ? WHERE id = 1",
                list(cleaned.values()) + [now_str()]
            )
            conn.commit()
            cls.clear_cache()

        updated = cls.get_config()
        AuditLogger.update('app_config', 1, old_value=current, new_value=updated)
        event_bus.emit('config-updated', updated)
        return updated

    @classmethod
    def initialize_config(cls, data: dict) -> dict:
        """First-run setup: store the settings and mark setup as completed"""
        return cls.update_config(dict(data, setup_completed=True))

    # ========== Labels ==========

    @classmethod
    def _stored_labels(cls) -> dict:
        cur = get_db().cursor()
        cur.execute("SELECT labels FROM app_config WHERE id = 1")
        row = cur.fetchone()
        if not row or not row['labels']:
            return {}
        try:
            stored = json.loads(row['labels'])
        except ValueError:
            logger.error("Stored labels are not valid JSON, using defaults")
            return {}
        return stored if isinstance(stored, dict) else {}

    @classmethod
    def _store_labels(cls, labels: Optional[dict]) -> None:
        cls.get_config()
        conn = get_db()
        conn.execute(
            "UPDATE app_config SET labels = ?, updated_at = ? WHERE id = 1",
            (json.dumps(labels, ensure_ascii=False) if labels is not None else None, now_str())
        )
        conn.commit()

    @classmethod
    def get_labels(cls) -> dict:
        """Defaults overlaid with the stored overrides"""
        return dict(DEFAULT_LABELS, **cls._stored_labels())

    @classmethod
    def get_label(cls, key: str, fallback: Optional[str] = None) -> str:
        return cls.get_labels().get(key) or DEFAULT_LABELS.get(key) or fallback or key

    @classmethod
    def save_labels(cls, labels: dict) -> dict:
        if not isinstance(labels, dict):
            raise ValidationError("Les libellés doivent être un objet JSON")

        cleaned = {}
        for key, value in labels.items():
            if not isinstance(value, str):
                raise ValidationError(f"Libellé invalide pour '{key}'")
            cleaned[str(key)] = value.strip()

        merged = dict(cls.get_labels(), **cleaned)
        cls._store_labels(merged)
        AuditLogger.log('update', 'labels', details={'keys': sorted(cleaned)})
        event_bus.emit('app-labels-updated', merged)
        return merged

    @classmethod
    def reset_labels(cls) -> dict:
        cls._store_labels(None)
        labels = dict(DEFAULT_LABELS)
        AuditLogger.log('reset', 'labels')
        event_bus.emit('app-labels-updated', labels)
        return labels

    @classmethod
    def export_labels(cls) -> str:
        return json.dumps(cls.get_labels(), ensure_ascii=False, indent=2)

    @classmethod
    def import_labels(cls, text) -> dict:
        try:
            labels = json.loads(text)
        except (TypeError, ValueError):
            raise ValidationError("Format de fichier invalide")
        if not isinstance(labels, dict):
            raise ValidationError("Format de fichier invalide")
        return cls.save_labels(labels)
