#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Authentication, administration and data endpoints
"""
import json
from io import BytesIO

from conftest import ADMIN_EMAIL, ADMIN_PASSWORD


def login(test_client, email, password):
    return test_client.post('/api/auth/login', json={'email': email, 'password': password})


def create_user(client, email='agent@cfpt.mg', role='user'):
    response = client.post('/api/admin/users', json={
        'email': email, 'first_name': 'Agent', 'last_name': 'Test', 'password': 'secret1', 'role': role,
    })
    assert response.status_code == 201
    return response.get_json()['user']


# ========== Auth ==========

def test_health_is_public(anonymous):
    response = anonymous.get('/api/health')
    assert response.status_code == 200


def test_login_failure(anonymous):
    response = login(anonymous, ADMIN_EMAIL, 'wrong')
    assert response.status_code == 401
    assert response.get_json()['error'] == 'Email ou mot de passe incorrect'


def test_login_requires_fields(anonymous):
    response = anonymous.post('/api/auth/login', json={'email': ADMIN_EMAIL})
    assert response.status_code == 400


def test_me_and_logout(client):
    user = client.get('/api/auth/me').get_json()['user']
    assert user['email'] == ADMIN_EMAIL
    assert user['role'] == 'admin'
    assert 'password_hash' not in user

    client.post('/api/auth/logout')
    assert client.get('/api/auth/me').status_code == 401


def test_change_password(client, anonymous):
    response = client.post('/api/auth/change-password', json={
        'old_password': 'nope', 'new_password': 'nouveau123'
    })
    assert response.status_code == 401

    response = client.post('/api/auth/change-password', json={
        'old_password': ADMIN_PASSWORD, 'new_password': 'nouveau123'
    })
    assert response.status_code == 200
    assert login(anonymous, ADMIN_EMAIL, 'nouveau123').status_code == 200


def test_security_headers(client):
    response = client.get('/api/health')
    assert response.headers['X-Frame-Options'] == 'DENY'
    assert response.headers['X-Content-Type-Options'] == 'nosniff'


# ========== Users ==========

def test_user_management(client, app):
    user = create_user(client)
    assert user['role'] == 'user'

    duplicate = client.post('/api/admin/users', json={
        'email': 'AGENT@cfpt.mg', 'first_name': 'A', 'last_name': 'B', 'password': 'secret1'
    })
    assert duplicate.status_code == 409

    short = client.post('/api/admin/users', json={
        'email': 'other@cfpt.mg', 'first_name': 'A', 'last_name': 'B', 'password': '123'
    })
    assert short.status_code == 400

    response = client.put(f"/api/admin/users/{user['id']}", json={'first_name': 'Renommé'})
    assert response.get_json()['user']['first_name'] == 'Renommé'

    users = client.get('/api/admin/users').get_json()['users']
    assert len(users) == 2

    assert client.delete(f"/api/admin/users/{user['id']}").status_code == 200


def test_last_admin_is_protected(client):
    admin_id = client.get('/api/auth/me').get_json()['user']['id']

    assert client.delete(f'/api/admin/users/{admin_id}').status_code == 400
    response = client.put(f'/api/admin/users/{admin_id}', json={'role': 'user'})
    assert response.status_code == 400


def test_non_admin_is_forbidden(client, app):
    create_user(client)
    agent = app.test_client()
    assert login(agent, 'agent@cfpt.mg', 'secret1').status_code == 200

    assert agent.get('/api/staff').status_code == 200
    assert agent.get('/api/admin/users').status_code == 403
    assert agent.post('/api/data/clear').status_code == 403
    assert agent.put('/api/admin/config', json={'company_name': 'X'}).status_code == 403


# ========== Settings and labels ==========

def test_config_update(client):
    config = client.get('/api/admin/config').get_json()['config']
    assert config['company_name'] == 'CFPT Ivato'
    assert config['setup_completed'] is False

    response = client.put('/api/admin/config', json={'company_name': 'CFPT Ivato Nord', 'user_mode': 'multi'})
    assert response.get_json()['config']['company_name'] == 'CFPT Ivato Nord'

    assert client.put('/api/admin/config', json={'user_mode': 'team'}).status_code == 400
    assert client.put('/api/admin/config', json={'company_name': ''}).status_code == 400

    response = client.post('/api/admin/config/initialize', json={'theme_color': '#0011EF'})
    config = response.get_json()['config']
    assert config['setup_completed'] is True
    assert config['theme_color'] == '#0011EF'


def test_labels_lifecycle(client):
    labels = client.get('/api/admin/labels').get_json()['labels']
    assert labels['dashboard'] == 'Tableau de Bord'

    labels = client.put('/api/admin/labels', json={'dashboard': 'Accueil'}).get_json()['labels']
    assert labels['dashboard'] == 'Accueil'
    assert labels['staff'] == 'Personnel'

    exported = client.get('/api/admin/labels/export')
    assert exported.mimetype == 'application/json'
    assert json.loads(exported.data)['dashboard'] == 'Accueil'

    labels = client.post('/api/admin/labels/reset').get_json()['labels']
    assert labels['dashboard'] == 'Tableau de Bord'

    response = client.post(
        '/api/admin/labels/import',
        data={'file': (BytesIO(exported.data), 'libelles.json')},
        content_type='multipart/form-data',
    )
    assert response.get_json()['labels']['dashboard'] == 'Accueil'

    response = client.post('/api/admin/labels/import', data='pas du json', content_type='text/plain')
    assert response.status_code == 400

    assert client.put('/api/admin/labels', json={'dashboard': 3}).status_code == 400


# ========== Audit ==========

def test_audit_trail_records_mutations(client):
    staff_id = client.post('/api/staff', json={
        'first_name': 'Tiana', 'last_name': 'Ravelo', 'email': 'tiana@cfpt.mg', 'position': 'Formateur'
    }).get_json()['staff']['id']
    client.delete(f'/api/staff/{staff_id}')

    logs = client.get('/api/admin/audit', query_string={'table': 'staff'}).get_json()['logs']
    assert [log['action'] for log in logs] == ['delete', 'create']
    assert logs[1]['new_value']['email'] == 'tiana@cfpt.mg'
    assert logs[0]['user_name'] == 'Admin CFPT'

    deleted = client.get('/api/admin/audit', query_string={'action': 'delete'}).get_json()['logs']
    assert len(deleted) == 1

    assert client.post('/api/admin/audit/purge', json={'days': 30}).get_json()['deleted'] == 0


def test_audit_can_be_disabled(client):
    client.put('/api/admin/config', json={'audit_logging': False})
    client.post('/api/staff', json={
        'first_name': 'Lova', 'last_name': 'Andria', 'email': 'lova@cfpt.mg', 'position': 'Agent'
    })
    logs = client.get('/api/admin/audit', query_string={'table': 'staff'}).get_json()['logs']
    assert logs == []


# ========== Backups ==========

def test_backup_create_restore_delete(client):
    client.post('/api/staff', json={
        'first_name': 'Avant', 'last_name': 'Sauvegarde', 'email': 'avant@cfpt.mg', 'position': 'Agent'
    })
    response = client.post('/api/admin/backups', json={'description': 'avant essai'})
    assert response.status_code == 201
    backup = response.get_json()['backup']
    assert backup['type'] == 'manual'

    client.post('/api/staff', json={
        'first_name': 'Apres', 'last_name': 'Sauvegarde', 'email': 'apres@cfpt.mg', 'position': 'Agent'
    })
    assert client.get('/api/staff').get_json()['total'] == 2

    response = client.post(f"/api/admin/backups/{backup['name']}/restore")
    assert response.status_code == 200
    assert response.get_json()['restore_info']['safety_backup'].startswith('backup_safety_')

    staff = client.get('/api/staff').get_json()['staff']
    assert [s['email'] for s in staff] == ['avant@cfpt.mg']

    listing = client.get('/api/admin/backups').get_json()
    assert listing['stats']['total_backups'] == 2
    assert listing['stats']['backup_types'] == {'manual': 1, 'safety': 1}

    download = client.get(f"/api/admin/backups/{backup['name']}/download")
    assert download.status_code == 200
    assert download.mimetype == 'application/zip'

    assert client.delete(f"/api/admin/backups/{backup['name']}").status_code == 200
    assert client.delete(f"/api/admin/backups/{backup['name']}").status_code == 404
    assert client.post('/api/admin/backups/../app.db/restore').status_code in (400, 404)


# ========== Data endpoints ==========

def test_json_export_import_endpoints(client):
    client.post('/api/staff', json={
        'first_name': 'Tiana', 'last_name': 'Ravelo', 'email': 'tiana@cfpt.mg', 'position': 'Formateur'
    })
    exported = client.get('/api/export/json', query_string={'type': 'staff'})
    assert exported.status_code == 200
    document = json.loads(exported.data)
    assert document['type'] == 'staff'

    response = client.post('/api/import/json', json=document)
    assert response.get_json()['counts'] == {'staff': {'created': 0, 'updated': 1}}

    assert client.post('/api/import/json', json={}).status_code == 400

    logs = client.get('/api/admin/import-logs', query_string={'module': 'all'}).get_json()['logs']
    assert logs[0]['operation'] == 'json_import'
    detail = client.get(f"/api/admin/import-logs/{logs[0]['id']}").get_json()['log']
    assert detail['import_details'] == {'staff': {'created': 0, 'updated': 1}}


def test_consistency_and_clear_endpoints(client):
    client.post('/api/staff', json={
        'first_name': 'Tiana', 'last_name': 'Ravelo', 'email': 'tiana@cfpt.mg', 'position': 'Formateur'
    })
    report = client.get('/api/data/consistency').get_json()['report']
    assert report['is_consistent'] is True

    deleted = client.post('/api/data/clear').get_json()['deleted']
    assert deleted['staff'] == 1
    assert client.get('/api/staff').get_json()['total'] == 0
    # the session survives the reset
    assert client.get('/api/auth/me').status_code == 200


def test_unknown_route_returns_json(client):
    response = client.get('/api/nothing-here')
    assert response.status_code == 404
    assert response.get_json()['success'] is False


def test_sqlite_error_becomes_database_error(app):
    import sqlite3

    @app.route('/api/broken')
    def broken():
        raise sqlite3.OperationalError('database is locked')

    response = app.test_client().get('/api/broken')
    assert response.status_code == 500
    body = response.get_json()
    assert body['error'] == 'Erreur de base de données'
    assert body['type'] == 'OperationalError'
