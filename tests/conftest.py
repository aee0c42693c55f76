#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Shared fixtures: one throwaway SQLite database per test
"""
import pytest

from app import create_app
from models.database import close_db
from services.sync_events import reset_sync_state

ADMIN_EMAIL = 'admin@cfpt-ivato.mg'
ADMIN_PASSWORD = 'admin123'


@pytest.fixture
def app(tmp_path, monkeypatch):
    monkeypatch.delenv('APP_USER', raising=False)
    monkeypatch.delenv('APP_PASS', raising=False)
    reset_sync_state()

    application = create_app(
        'testing',
        DATABASE=str(tmp_path / 'test.db'),
        LOG_DIR=str(tmp_path / 'logs'),
        BACKUP_DIR=str(tmp_path / 'backups'),
        SECRET_KEY='test-secret',
    )
    yield application

    application.extensions['operation_queue'].shutdown()
    close_db()
    reset_sync_state()


@pytest.fixture
def ctx(app):
    """Application context for calling services directly"""
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    """Test client logged in as the bootstrap administrator"""
    test_client = app.test_client()
    response = test_client.post('/api/auth/login', json={'email': ADMIN_EMAIL, 'password': ADMIN_PASSWORD})
    assert response.status_code == 200
    return test_client


@pytest.fixture
def anonymous(app):
    return app.test_client()


@pytest.fixture
def staff_member(ctx):
    from services.staff_service import StaffService

    staff, _ = StaffService.create_staff({
        'first_name': 'Hery',
        'last_name': 'Rakoto',
        'email': 'hery.rakoto@cfpt.mg',
        'position': 'Formateur',
        'establishment': 'CFPT Ivato',
    })
    return staff


def full_scores(value=4):
    from services.evaluation_service import SCORE_FIELDS
    return {field: value for field in SCORE_FIELDS}
