#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Evaluations and the draft lifecycle
"""
import re

import pytest

from conftest import full_scores
from services.evaluation_service import (
    FOLLOW_UP_FIELDS, EvaluationService, draft_group_key, draft_version, follow_up_summary, generate_draft_key
)
from utils.errors import ResourceNotFoundError, ValidationError


# ========== Helpers ==========

def test_follow_up_summary_full_marks():
    record = {field: 5 for field in FOLLOW_UP_FIELDS}
    assert follow_up_summary(record) == {
        'fu_total60': 60,
        'fu_appreciation_code': 5,
        'fu_appreciation_label': 'Excellent',
    }


def test_follow_up_summary_partial_counts_missing_as_zero():
    record = {FOLLOW_UP_FIELDS[0]: 4, FOLLOW_UP_FIELDS[1]: 4}
    summary = follow_up_summary(record)
    # 8 / 75 * 60 = 6.4
    assert summary['fu_total60'] == 6
    # average 0.53 clamps to the lowest code
    assert summary['fu_appreciation_code'] == 1
    assert summary['fu_appreciation_label'] == 'Très insuffisant'


def test_follow_up_summary_empty():
    assert follow_up_summary({}) is None


def test_draft_key_format():
    assert re.match(r'^draft_\d+_[a-z0-9]{6}$', generate_draft_key())


def test_draft_group_key():
    key = draft_group_key({
        'email': 'Hery.Rakoto@cfpt.mg',
        'formation_theme': 'Gestion de Projet',
        'evaluation_type': 'followUp',
        'initial_evaluation_id': 12,
    })
    assert key == 'hery.rakoto@cfpt.mg__gestion_de_projet__followup_12'

    key = draft_group_key({'first_name': 'Hery', 'last_name': 'Rakoto', 'formation_theme': 'Excel'})
    assert key == 'hery_rakoto__excel__initial'

    key = draft_group_key({'email': 'faly@cfpt.mg', 'formation_theme': '  '})
    assert key == 'faly@cfpt.mg__formation_generale__initial'


def test_draft_version():
    assert draft_version('2024-01-01 08:00:00', None) == 'v1.0'
    assert draft_version('2024-01-01 08:00:00', '2024-01-01 08:00:00') == 'v1.0'
    assert draft_version('2024-01-01 08:00:00', '2024-01-02 11:00:00') == 'v2.3'
    assert draft_version('2025-01-01 10:00:00', '2025-01-01 10:10:00') == 'v1.1'
    assert draft_version('2025-01-01 10:00:00', '2025-01-02 10:30:00') == 'v2.1'


# ========== Creation and validation ==========

def test_create_copies_staff_snapshot(staff_member):
    evaluation = EvaluationService.create_evaluation({
        'staff_id': staff_member['id'],
        'formation_theme': 'Leadership',
        **full_scores(4),
    })

    assert evaluation['status'] == 'completed'
    assert evaluation['completed_at']
    assert evaluation['first_name'] == 'Hery'
    assert evaluation['email'] == 'hery.rakoto@cfpt.mg'
    assert evaluation['skills_acquisition'] == 4


def test_create_requires_staff_and_theme(ctx):
    with pytest.raises(ValidationError) as excinfo:
        EvaluationService.create_evaluation({})
    assert set(excinfo.value.payload['fields']) == {'staff_id', 'formation_theme'}


def test_create_rejects_unknown_staff(ctx):
    with pytest.raises(ResourceNotFoundError):
        EvaluationService.create_evaluation({'staff_id': 999, 'formation_theme': 'Leadership'})


def test_scores_out_of_range(staff_member):
    with pytest.raises(ValidationError) as excinfo:
        EvaluationService.create_evaluation({
            'staff_id': staff_member['id'],
            'formation_theme': 'Leadership',
            'skills_acquisition': 6,
            'recommendation_score': 11,
        })
    assert set(excinfo.value.payload['fields']) == {'skills_acquisition', 'recommendation_score'}


def test_numbers_and_lists_are_normalized(staff_member):
    evaluation = EvaluationService.create_evaluation({
        'staff_id': staff_member['id'],
        'formation_theme': 'Leadership',
        'course_clarity': '3,5',
        'observed_changes': 'Productivité, Leadership',
        'needs_additional_training': 'oui',
    })
    assert evaluation['course_clarity'] == 3.5
    assert evaluation['observed_changes'] == ['Productivité', 'Leadership']
    assert evaluation['needs_additional_training'] is True


def test_listed_evaluations_do_not_share_cached_lists(staff_member):
    EvaluationService.create_evaluation({
        'staff_id': staff_member['id'],
        'formation_theme': 'Leadership',
        'observed_changes': 'Productivité, Leadership',
    })

    first = EvaluationService.list_evaluations()
    first[0]['observed_changes'].append('Autre')

    assert EvaluationService.list_evaluations()[0]['observed_changes'] == ['Productivité', 'Leadership']


def test_follow_up_totals_are_derived(staff_member):
    initial = EvaluationService.create_evaluation({'staff_id': staff_member['id'], 'formation_theme': 'Leadership'})
    follow_up = EvaluationService.create_evaluation({
        'staff_id': staff_member['id'],
        'formation_theme': 'Leadership',
        'evaluation_type': 'followUp',
        'initial_evaluation_id': initial['id'],
        **{field: 4 for field in FOLLOW_UP_FIELDS},
    })

    assert follow_up['evaluation_type'] == 'followUp'
    assert follow_up['initial_evaluation_id'] == initial['id']
    assert follow_up['fu_total60'] == 48
    assert follow_up['fu_appreciation_label'] == 'Bon'


def test_filters(staff_member):
    EvaluationService.create_evaluation({'staff_id': staff_member['id'], 'formation_theme': 'Leadership'})
    EvaluationService.save_draft({'staff_id': staff_member['id'], 'formation_theme': 'Excel'})

    assert len(EvaluationService.list_evaluations()) == 2
    assert len(EvaluationService.get_evaluations_by_status('draft')) == 1
    assert len(EvaluationService.list_evaluations(theme='leadership')) == 1
    with pytest.raises(ValidationError):
        EvaluationService.get_evaluations_by_status('archived')


# ========== Draft lifecycle ==========

def test_save_draft_then_update_in_place(staff_member):
    draft = EvaluationService.save_draft({'staff_id': staff_member['id'], 'formation_theme': 'Excel'})
    assert draft['status'] == 'draft'
    assert draft['draft_key'].startswith('draft_')
    assert draft['draft_group_key'] == 'hery.rakoto@cfpt.mg__excel__initial'
    assert draft['completed_at'] is None

    again = EvaluationService.save_draft({'id': draft['id'], 'skills_acquisition': 2})
    assert again['id'] == draft['id']
    assert again['skills_acquisition'] == 2
    assert again['draft_key'] == draft['draft_key']
    assert len(EvaluationService.list_evaluations()) == 1


def test_save_draft_over_completed_creates_new_draft(staff_member):
    done = EvaluationService.create_evaluation({'staff_id': staff_member['id'], 'formation_theme': 'Excel'})
    draft = EvaluationService.save_draft({
        'id': done['id'], 'staff_id': staff_member['id'], 'formation_theme': 'Excel'
    })
    assert draft['id'] != done['id']
    assert EvaluationService.get_evaluation(done['id'])['status'] == 'completed'


def test_complete_draft(staff_member):
    draft = EvaluationService.save_draft({'staff_id': staff_member['id'], 'formation_theme': 'Excel'})

    completed = EvaluationService.complete_evaluation(draft['id'], full_scores(5))

    assert completed['status'] == 'completed'
    assert completed['completed_at']
    assert completed['presentation'] == 5
    assert EvaluationService.get_evaluations_by_status('draft') == []


def test_delete_draft_only_accepts_drafts(staff_member):
    done = EvaluationService.create_evaluation({'staff_id': staff_member['id'], 'formation_theme': 'Excel'})
    with pytest.raises(ValidationError):
        EvaluationService.delete_draft(done['id'])

    draft = EvaluationService.save_draft({'staff_id': staff_member['id'], 'formation_theme': 'Excel'})
    EvaluationService.delete_draft(draft['id'])
    with pytest.raises(ResourceNotFoundError):
        EvaluationService.get_evaluation(draft['id'])


def test_restore_draft(staff_member):
    draft = EvaluationService.save_draft({
        'staff_id': staff_member['id'], 'formation_theme': 'Excel', 'rhythm': 3
    })

    restored = EvaluationService.restore_draft(draft['id'])

    assert restored['id'] != draft['id']
    assert restored['status'] == 'draft'
    assert restored['rhythm'] == 3
    assert restored['draft_key'].startswith(f"{draft['draft_key']}_restored_")


def test_drafts_with_details_and_grouping(staff_member):
    EvaluationService.save_draft({'staff_id': staff_member['id'], 'formation_theme': 'Excel'})
    EvaluationService.save_draft({'first_name': 'Voahangy', 'last_name': 'Rabe', 'formation_theme': 'Excel',
                                  'staff_id': staff_member['id'], 'email': 'voahangy@cfpt.mg'})

    details = EvaluationService.get_drafts_with_details()
    assert len(details) == 2
    assert all(d['version'] == 'v1.0' for d in details)
    assert {d['person_name'] for d in details} == {'Hery Rakoto', 'Voahangy Rabe'}

    grouped = EvaluationService.get_drafts_by_person()
    assert set(grouped) == {'hery.rakoto@cfpt.mg', 'voahangy@cfpt.mg'}
    assert len(EvaluationService.get_staff_drafts(staff_member['id'])) == 2


# ========== HTTP ==========

def test_evaluation_api_flow(client, staff_member):
    response = client.post('/api/evaluations/drafts', json={
        'staff_id': staff_member['id'], 'formation_theme': 'Leadership'
    })
    assert response.status_code == 200
    draft = response.get_json()['draft']

    assert len(client.get('/api/evaluations/drafts').get_json()['drafts']) == 1

    response = client.post(f"/api/evaluations/{draft['id']}/complete", json=full_scores(3))
    assert response.status_code == 200
    assert response.get_json()['evaluation']['status'] == 'completed'

    response = client.get('/api/evaluations', query_string={'status': 'completed'})
    assert len(response.get_json()['evaluations']) == 1

    response = client.delete(f"/api/evaluations/drafts/{draft['id']}")
    assert response.status_code == 400


def test_evaluation_api_validation_error(client, staff_member):
    response = client.post('/api/evaluations', json={
        'staff_id': staff_member['id'], 'formation_theme': 'Leadership', 'rhythm': 9
    })
    assert response.status_code == 400
    body = response.get_json()
    assert body['success'] is False
    assert 'rhythm' in body['fields']
