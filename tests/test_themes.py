#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Themes and training assignments
"""
import pytest

from models.database import DEFAULT_THEMES
from services.theme_service import StaffTrainingService, ThemeService
from utils.errors import ConflictError, ResourceNotFoundError, ValidationError


def test_default_themes_seeded(ctx):
    names = {theme['name'] for theme in ThemeService.list_themes()}
    assert names == {name for name, _ in DEFAULT_THEMES}


def test_theme_name_unique_case_insensitive(ctx):
    ThemeService.create_theme({'name': 'Sécurité Incendie', 'description': 'Prévention'})
    with pytest.raises(ConflictError):
        ThemeService.create_theme({'name': 'sécurité incendie'})


def test_theme_name_required(ctx):
    with pytest.raises(ValidationError):
        ThemeService.create_theme({'description': 'sans nom'})


def test_theme_list_cache_invalidated_on_write(ctx):
    before = len(ThemeService.list_themes())
    ThemeService.create_theme({'name': 'Bureautique'})
    assert len(ThemeService.list_themes()) == before + 1


def test_training_lifecycle(staff_member):
    theme = ThemeService.find_by_name('Gestion de Projet')
    training = StaffTrainingService.create_training({'staff_id': staff_member['id'], 'theme_id': theme['id']})

    assert training['status'] == 'active'
    assert training['theme_name'] == 'Gestion de Projet'
    assert training['assigned_date']

    updated = StaffTrainingService.update_training(training['id'], {'status': 'completed'})
    assert updated['status'] == 'completed'

    with pytest.raises(ValidationError):
        StaffTrainingService.update_training(training['id'], {'status': 'unknown'})

    assert len(StaffTrainingService.list_for_staff(staff_member['id'])) == 1


def test_training_requires_existing_staff(ctx):
    theme = ThemeService.list_themes()[0]
    with pytest.raises(ResourceNotFoundError):
        StaffTrainingService.create_training({'staff_id': 404, 'theme_id': theme['id']})


def test_deleting_theme_cascades_assignments(staff_member):
    theme = ThemeService.create_theme({'name': 'Anglais'})
    StaffTrainingService.create_training({'staff_id': staff_member['id'], 'theme_id': theme['id']})

    ThemeService.delete_theme(theme['id'])

    assert StaffTrainingService.list_trainings() == []


def test_themes_api(client):
    response = client.post('/api/themes', json={'name': 'Excel avancé'})
    assert response.status_code == 201

    response = client.post('/api/themes', json={'name': 'excel avancé'})
    assert response.status_code == 409

    themes = client.get('/api/themes').get_json()['themes']
    assert 'Excel avancé' in [t['name'] for t in themes]
