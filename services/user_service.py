#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Application accounts
"""
import logging
import sqlite3
from typing import List, Optional

from werkzeug.security import check_password_hash, generate_password_hash

from models.database import get_db
from utils.dates import now_str
from utils.errors import (
    AuthenticationError, ConflictError, ResourceNotFoundError, ValidationError
)
from utils.logger import AuditLogger, SecurityLogger
from utils.validators import EmailValidator, FormValidator, Sanitizer

logger = logging.getLogger('app')

ROLES = ('admin', 'user')
MIN_PASSWORD_LENGTH = 6

PUBLIC_FIELDS = ('id', 'email', 'first_name', 'last_name', 'role', 'created_at', 'updated_at')


def _public(row) -> dict:
    return {field: row[field] for field in PUBLIC_FIELDS}


class UserService:
    """CRUD and authentication on the users table"""

    @staticmethod
    def _fetch(user_id) -> sqlite3.Row:
        cur = get_db().cursor()
        cur.execute("SELECT * FROM users WHERE id = ?", (user_id,))
        row = cur.fetchone()
        if not row:
            raise ResourceNotFoundError(f"Utilisateur {user_id} introuvable")
        return row

    @staticmethod
    def _check_password(password) -> None:
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Le mot de passe doit contenir au moins {MIN_PASSWORD_LENGTH} caractères",
                payload={'fields': {'password': 'trop court'}}
            )

    @staticmethod
    def _admin_count() -> int:
        cur = get_db().cursor()
        cur.execute("SELECT COUNT(1) FROM users WHERE role = 'admin'")
        return cur.fetchone()[0]

    @classmethod
    def list_users(cls) -> List[dict]:
        cur = get_db().cursor()
        cur.execute("SELECT * FROM users ORDER BY id")
        return [_public(row) for row in cur.fetchall()]

    @classmethod
    def get_user(cls, user_id) -> dict:
        return _public(cls._fetch(user_id))

    @classmethod
    def create_user(cls, data: dict) -> dict:
        validator = FormValidator(data)
        validator.require('email', "L'email est obligatoire")
        validator.require('first_name', "Le prénom est obligatoire")
        validator.require('last_name', "Le nom est obligatoire")
        validator.validate_email('email')
        validator.validate_choice('role', ROLES)
        validator.raise_if_invalid("Données utilisateur invalides")
        cls._check_password(data.get('password'))

        email = EmailValidator.normalize(data['email'])
        now = now_str()
        conn = get_db()
        cur = conn.cursor()
        try:
            cur.execute("""
                INSERT INTO users(email, password_hash, first_name, last_name, role, created_at, updated_at)
                VALUES(?, ?, ?, ?, ?, ?, ?)
            """, (
                email,
                generate_password_hash(data['password']),
                Sanitizer.clean_string(data['first_name']),
                Sanitizer.clean_string(data['last_name']),
                data.get('role') or 'user',
                now,
                now,
            ))
            conn.commit()
        except sqlite3.IntegrityError:
            conn.rollback()
            raise ConflictError(f"Un utilisateur avec l'email {email} existe déjà")

        user = cls.get_user(cur.lastrowid)
        AuditLogger.create('users', user['id'], new_value=user)
        logger.info(f"User created: {email} ({user['role']})")
        return user

    @classmethod
    def update_user(cls, user_id, data: dict) -> dict:
        current = cls.get_user(user_id)

        validator = FormValidator(data)
        if 'email' in data:
            validator.validate_email('email')
        validator.validate_choice('role', ROLES)
        validator.raise_if_invalid("Données utilisateur invalides")

        role = data.get('role') or current['role']
        if current['role'] == 'admin' and role != 'admin' and cls._admin_count() <= 1:
            raise ValidationError("Impossible de retirer le rôle du dernier administrateur")

        fields = {
            'email': EmailValidator.normalize(data.get('email')) or current['email'],
            'first_name': Sanitizer.clean_string(data.get('first_name')) or current['first_name'],
            'last_name': Sanitizer.clean_string(data.get('last_name')) or current['last_name'],
            'role': role,
        }
        if data.get('password'):
            cls._check_password(data['password'])
            fields['password_hash'] = generate_password_hash(data['password'])

        assignments = ', '.join(f"{name} = ?" for name in fields)
        conn = get_db()
        try:
            conn.execute(
                f"UPDATE users SET {assignments}, updated_at = ? WHERE id = ?",
                list(fields.values()) + [now_str(), user_id]
            )
            conn.commit()
        except sqlite3.IntegrityError:
            conn.rollback()
            raise ConflictError(f"Un utilisateur avec l'email {fields['email']} existe déjà")

        updated = cls.get_user(user_id)
        AuditLogger.update('users', user_id, old_value=current, new_value=updated)
        return updated

    @classmethod
    def delete_user(cls, user_id) -> None:
        current = cls.get_user(user_id)
        if current['role'] == 'admin' and cls._admin_count() <= 1:
            raise ValidationError("Impossible de supprimer le dernier administrateur")

        conn = get_db()
        conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
        conn.commit()
        AuditLogger.delete('users', user_id, old_value=current)

    @classmethod
    def authenticate(cls, email, password) -> dict:
        """Return the user for valid credentials, AuthenticationError otherwise"""
        email = EmailValidator.normalize(email)
        cur = get_db().cursor()
        cur.execute("SELECT * FROM users WHERE email = ?", (email,))
        row = cur.fetchone()

        if not row or not password or not check_password_hash(row['password_hash'], password):
            SecurityLogger.failed_login(email, 'invalid credentials')
            raise AuthenticationError("Email ou mot de passe incorrect")

        AuditLogger.log('login', 'authentication', user_id=row['id'], details={'email': email})
        return _public(row)

    @classmethod
    def change_password(cls, user_id, old_password: Optional[str], new_password: str) -> None:
        row = cls._fetch(user_id)
        if not old_password or not check_password_hash(row['password_hash'], old_password):
            raise AuthenticationError("Mot de passe actuel incorrect")
        cls._check_password(new_password)

        conn = get_db()
        conn.execute(
            "UPDATE users SET password_hash = ?, updated_at = ? WHERE id = ?",
            (generate_password_hash(new_password), now_str(), user_id)
        )
        conn.commit()
        AuditLogger.log('change_password', f"users/{user_id}", user_id=user_id)
