#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Authentication module
Login, logout, current user and password change
"""
from flask import Blueprint, jsonify, session

from services.user_service import UserService
from utils.logger import AuditLogger
from utils.validators import validate_json
from .decorators import login_required
from .helpers import current_user_id, json_body

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')


@auth_bp.route('/login', methods=['POST'])
@validate_json('email', 'password')
def login():
    """
    Open a session

    Body: {email, password}
    """
    data = json_body()
    user = UserService.authenticate(data['email'], data['password'])

    session.clear()
    session['logged_in'] = True
    session['user_id'] = user['id']
    session['username'] = f"{user['first_name']} {user['last_name']}"
    session['email'] = user['email']
    session['role'] = user['role'] or 'user'
    session.permanent = True

    return jsonify({'success': True, 'user': user})


@auth_bp.route('/logout', methods=['POST'])
def logout():
    username = session.get('username', 'unknown')
    if session.get('logged_in'):
        AuditLogger.logout(username)
    session.clear()
    return jsonify({'success': True, 'message': 'Déconnecté'})


@auth_bp.route('/me')
@login_required
def me():
    return jsonify({'success': True, 'user': UserService.get_user(current_user_id())})


@auth_bp.route('/change-password', methods=['POST'])
@login_required
@validate_json('old_password', 'new_password')
def change_password():
    """
    Change the password of the logged-in user

    The session is closed afterwards, the user logs in again.
    """
    data = json_body()
    UserService.change_password(current_user_id(), data['old_password'], data['new_password'])
    session.clear()
    return jsonify({'success': True, 'message': 'Mot de passe modifié, veuillez vous reconnecter'})
