#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Shared route decorators
Authentication and authorization checks for the JSON API
"""
from functools import wraps
from flask import session, request
from utils.errors import AuthenticationError, AuthorizationError
from utils.logger import SecurityLogger


def login_required(f):
    """
    Require a logged-in session

    Raises AuthenticationError (401) otherwise.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not session.get('logged_in'):
            raise AuthenticationError("Veuillez vous connecter")
        return f(*args, **kwargs)
    return decorated_function


def admin_required(f):
    """
    Require a logged-in administrator

    The role is re-read from the database so a demoted account loses
    access without logging out.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not session.get('logged_in'):
            raise AuthenticationError("Veuillez vous connecter")

        from models.database import get_db

        user_id = session.get('user_id')
        conn = get_db()
        cur = conn.cursor()
        cur.execute("SELECT role FROM users WHERE id = ?", (user_id,))
        row = cur.fetchone()

        if not row or row['role'] != 'admin':
            SecurityLogger.unauthorized_access(request.path)
            raise AuthorizationError("Droits administrateur requis")

        return f(*args, **kwargs)
    return decorated_function
