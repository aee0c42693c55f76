#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Staff records
"""
import sqlite3

import pytest

from models.database import get_db
from services.evaluation_service import EvaluationService
from services.staff_service import StaffService
from services.sync_events import event_bus
from services.theme_service import StaffTrainingService, ThemeService
from utils.errors import ConflictError, ResourceNotFoundError, ValidationError


def test_create_staff_defaults(staff_member):
    assert staff_member['id']
    assert staff_member['email'] == 'hery.rakoto@cfpt.mg'
    assert staff_member['matricule'].startswith('MAT')
    assert len(staff_member['formation_year']) == 4


def test_create_staff_requires_fields(ctx):
    with pytest.raises(ValidationError) as excinfo:
        StaffService.create_staff({'first_name': 'Solo'})
    fields = excinfo.value.payload['fields']
    assert {'last_name', 'email', 'position'} <= set(fields)


def test_create_staff_rejects_bad_email(ctx):
    with pytest.raises(ValidationError):
        StaffService.create_staff({
            'first_name': 'A', 'last_name': 'B', 'email': 'not-an-email', 'position': 'Formateur'
        })


def test_existing_email_returns_existing_record(staff_member):
    again, created = StaffService.create_staff({
        'first_name': 'Autre',
        'last_name': 'Nom',
        'email': 'HERY.RAKOTO@cfpt.mg',
        'position': 'Manager',
    })
    assert created is False
    assert again['id'] == staff_member['id']
    assert again['first_name'] == 'Hery'
    assert len(StaffService.list_staff()) == 1


def test_update_staff_email_conflict(staff_member):
    other, _ = StaffService.create_staff({
        'first_name': 'Voahangy', 'last_name': 'Rabe', 'email': 'voahangy@cfpt.mg', 'position': 'Assistant'
    })
    with pytest.raises(ConflictError):
        StaffService.update_staff(other['id'], {'email': 'hery.rakoto@cfpt.mg'})

    updated = StaffService.update_staff(other['id'], {'phone': '034 00 000 00'})
    assert updated['phone'] == '034 00 000 00'


def test_generated_matricules_are_unique(ctx, monkeypatch):
    # every record created within the same millisecond
    monkeypatch.setattr('services.staff_service.epoch_ms', lambda: 1735725600000)

    matricules = [
        StaffService.create_staff({'first_name': f'Agent{i}', 'last_name': 'Test'}, strict=False)[0]['matricule']
        for i in range(20)
    ]

    assert len(set(matricules)) == 20
    assert matricules[:3] == ['MAT1735725600000', 'MAT1735725600000-2', 'MAT1735725600000-3']


def test_supplied_matricule_must_be_free(staff_member):
    with pytest.raises(ConflictError):
        StaffService.create_staff({
            'first_name': 'Voahangy', 'last_name': 'Rabe', 'email': 'voahangy@cfpt.mg',
            'position': 'Assistant', 'matricule': staff_member['matricule'],
        })

    other, _ = StaffService.create_staff({
        'first_name': 'Voahangy', 'last_name': 'Rabe', 'email': 'voahangy@cfpt.mg',
        'position': 'Assistant', 'matricule': 'CFPT-042',
    })
    with pytest.raises(ConflictError):
        StaffService.update_staff(other['id'], {'matricule': staff_member['matricule']})

    # keeping its own matricule is not a conflict
    assert StaffService.update_staff(other['id'], {'matricule': 'CFPT-042'})['matricule'] == 'CFPT-042'


def test_get_missing_staff(ctx):
    with pytest.raises(ResourceNotFoundError):
        StaffService.get_staff(999)


def test_delete_staff_cascades(staff_member):
    theme = ThemeService.list_themes()[0]
    StaffTrainingService.create_training({'staff_id': staff_member['id'], 'theme_id': theme['id']})
    EvaluationService.create_evaluation({'staff_id': staff_member['id'], 'formation_theme': theme['name']})
    # Matched by name only
    EvaluationService.create_evaluation(
        {'first_name': 'Hery', 'last_name': 'Rakoto', 'formation_theme': theme['name']},
        require_staff=False
    )

    counts = StaffService.delete_staff(staff_member['id'])

    assert counts == {'evaluations_deleted': 2, 'trainings_deleted': 1}
    assert EvaluationService.list_evaluations() == []
    assert StaffTrainingService.list_trainings() == []


def test_remove_duplicate_staff_keeps_newest(ctx):
    conn = get_db()
    conn.execute(
        "INSERT INTO staff(first_name, last_name, email, created_at) VALUES('Old', 'One', 'dup@cfpt.mg', '2024-01-01 08:00:00')"
    )
    conn.execute(
        "INSERT INTO staff(first_name, last_name, email, created_at) VALUES('New', 'One', 'DUP@cfpt.mg', '2024-06-01 08:00:00')"
    )
    conn.commit()
    old_id, new_id = [row['id'] for row in conn.execute("SELECT id FROM staff ORDER BY id")]
    EvaluationService.create_evaluation({'staff_id': old_id, 'formation_theme': 'Gestion de Projet'})

    result = StaffService.remove_duplicate_staff()

    assert result == {'duplicates_removed': 1, 'remaining_staff': 1}
    assert StaffService.list_staff()[0]['id'] == new_id
    assert EvaluationService.list_evaluations()[0]['staff_id'] == new_id


def test_remove_duplicate_staff_is_all_or_nothing(ctx):
    conn = get_db()
    conn.execute("INSERT INTO staff(first_name, last_name, email, created_at) VALUES('Old', 'One', 'dup@cfpt.mg', '2024-01-01 08:00:00')")
    conn.execute("INSERT INTO staff(first_name, last_name, email, created_at) VALUES('New', 'One', 'dup@cfpt.mg', '2024-06-01 08:00:00')")
    conn.execute("CREATE TEMP TRIGGER block_staff_delete BEFORE DELETE ON staff BEGIN SELECT RAISE(ABORT, 'blocked'); END")
    conn.commit()
    old_id = conn.execute("SELECT id FROM staff WHERE first_name = 'Old'").fetchone()['id']
    EvaluationService.create_evaluation({'staff_id': old_id, 'formation_theme': 'Gestion de Projet'})

    with pytest.raises(sqlite3.Error):
        StaffService.remove_duplicate_staff()

    assert conn.execute("SELECT COUNT(1) FROM staff").fetchone()[0] == 2
    assert conn.execute("SELECT staff_id FROM evaluations").fetchone()['staff_id'] == old_id


def test_staff_history_is_chronological(staff_member):
    EvaluationService.create_evaluation({
        'staff_id': staff_member['id'], 'formation_theme': 'B', 'fill_date': '2024-05-01'
    })
    EvaluationService.create_evaluation({
        'staff_id': staff_member['id'], 'formation_theme': 'A', 'fill_date': '2024-01-01'
    })

    history = StaffService.get_staff_history(staff_member['id'])

    assert history['staff']['id'] == staff_member['id']
    assert [item['formation_theme'] for item in history['timeline']] == ['A', 'B']


def test_mutations_publish_events(ctx):
    received = []
    event_bus.add_global_callback(lambda event, payload: received.append(event))

    StaffService.create_staff({
        'first_name': 'Lova', 'last_name': 'Andria', 'email': 'lova@cfpt.mg', 'position': 'Manager'
    })

    assert received[:2] == ['staff-updated', 'data-updated']


def test_search_filters(staff_member):
    assert len(StaffService.list_staff('rakoto')) == 1
    assert StaffService.list_staff('inconnu') == []


# ========== HTTP ==========

def test_staff_api_crud(client):
    response = client.post('/api/staff', json={
        'first_name': 'Tiana', 'last_name': 'Ravelo', 'email': 'tiana@cfpt.mg', 'position': 'Coordinatrice'
    })
    assert response.status_code == 201
    staff_id = response.get_json()['staff']['id']

    response = client.post('/api/staff', json={
        'first_name': 'Tiana', 'last_name': 'Ravelo', 'email': 'tiana@cfpt.mg', 'position': 'Coordinatrice'
    })
    assert response.status_code == 200
    assert response.get_json()['created'] is False

    response = client.put(f'/api/staff/{staff_id}', json={'establishment': 'CFPT Ivato'})
    assert response.get_json()['staff']['establishment'] == 'CFPT Ivato'

    assert client.get('/api/staff').get_json()['total'] == 1

    response = client.delete(f'/api/staff/{staff_id}')
    assert response.status_code == 200
    assert client.get(f'/api/staff/{staff_id}').status_code == 404


def test_staff_api_requires_login(anonymous):
    response = anonymous.get('/api/staff')
    assert response.status_code == 401
    assert response.get_json()['success'] is False
