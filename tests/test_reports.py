#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Reporting and analytics
"""
from datetime import datetime

import pytest

from conftest import full_scores
from services.evaluation_service import EvaluationService
from services.report_service import (
    ReportService, overall_score, predict_trend, recommendation_level, section_averages
)
from services.staff_service import StaffService


@pytest.mark.parametrize('score,level', [
    (10, 'excellent'),
    (9, 'excellent'),
    (7.5, 'good'),
    (5, 'average'),
    (3, 'below'),
    (2, 'poor'),
    (None, 'poor'),
])
def test_recommendation_level(score, level):
    assert recommendation_level(score)['level'] == level


def test_section_averages_ignore_empty_scores():
    evaluation = {'skills_acquisition': 4, 'course_clarity': 2, 'presentation': 0}
    averages = section_averages(evaluation)
    assert averages['content'] == 3.0
    assert averages['methods'] == 0
    assert overall_score(evaluation) == 0.6


def test_predict_trend():
    assert predict_trend([1, 2, 3]) == {'trend': 'improving', 'slope': 1.0, 'predicted_score': 4.0}
    assert predict_trend([5, 4, 3])['trend'] == 'declining'
    assert predict_trend([3, 3.05])['trend'] == 'stable'
    assert predict_trend([3]) == {'trend': 'stable', 'slope': 0.0, 'predicted_score': 3}
    # clamped to the 0-5 scale
    assert predict_trend([3, 4, 5])['predicted_score'] == 5.0


def test_follow_up_candidates(staff_member):
    EvaluationService.create_evaluation({
        'staff_id': staff_member['id'], 'formation_theme': 'Leadership',
        'completed_at': '2024-01-01 08:00:00',
    })
    EvaluationService.create_evaluation({
        'staff_id': staff_member['id'], 'formation_theme': 'Excel',
        'completed_at': '2024-03-01 08:00:00',
    })
    # drafts are not scheduled
    EvaluationService.save_draft({'staff_id': staff_member['id'], 'formation_theme': 'Anglais'})

    candidates = ReportService.get_follow_up_candidates()

    assert len(candidates) == 1
    candidate = candidates[0]
    assert candidate['initial_evaluation']['formation_theme'] == 'Excel'
    assert candidate['due_date'] == '2024-08-28 08:00:00'
    assert candidate['is_due'] is True


def test_comparisons_compute_deltas(staff_member):
    initial = EvaluationService.create_evaluation({
        'staff_id': staff_member['id'], 'formation_theme': 'Leadership', 'curiosity': 3,
        **{'skills_acquisition': 4},
    })
    EvaluationService.create_evaluation({
        'staff_id': staff_member['id'], 'formation_theme': 'Leadership',
        'evaluation_type': 'followUp', 'initial_evaluation_id': initial['id'], 'fu_curiosity': 5,
    })

    comparisons = ReportService.get_initial_follow_up_comparisons(staff_member['id'])

    assert len(comparisons) == 1
    comparison = comparisons[0]
    assert comparison['person_name'] == 'Hery Rakoto'
    assert comparison['deltas']['curiosity']['delta'] == 2
    assert comparison['initial_average'] == 3.5
    assert comparison['follow_up_total60'] == 4


def test_completed_with_stats_and_theme_stats(staff_member):
    EvaluationService.create_evaluation({
        'staff_id': staff_member['id'], 'formation_theme': 'Leadership',
        'recommendation_score': 8, **full_scores(4),
    })
    EvaluationService.create_evaluation({
        'staff_id': staff_member['id'], 'formation_theme': 'Leadership', **full_scores(2),
    })

    completed = ReportService.get_completed_with_stats()
    assert len(completed) == 2
    assert {e['overall_score'] for e in completed} == {4.0, 2.0}
    assert {e['recommendation_level']['level'] for e in completed} == {'good', 'poor'}

    stats = ReportService.get_evaluation_stats()
    assert stats == [{'formation_theme': 'Leadership', 'total_evaluations': 2, 'average_score': 3.0}]


def test_advanced_analytics(ctx):
    weak, _ = StaffService.create_staff({
        'first_name': 'Faly', 'last_name': 'Rasoa', 'email': 'faly@cfpt.mg', 'position': 'Agent'
    })
    strong, _ = StaffService.create_staff({
        'first_name': 'Mamy', 'last_name': 'Randria', 'email': 'mamy@cfpt.mg', 'position': 'Agent'
    })
    EvaluationService.create_evaluation({
        'staff_id': weak['id'], 'formation_theme': 'Leadership', 'fill_date': '2025-01-15', **full_scores(2)
    })
    EvaluationService.create_evaluation({
        'staff_id': strong['id'], 'formation_theme': 'Leadership', 'fill_date': '2025-01-15', **full_scores(5)
    })

    analytics = ReportService.get_advanced_analytics(now=datetime(2025, 1, 31))

    # 40 (average < 2.5) + 15 (stable and weak) + 10 (single evaluation)
    medium = analytics['risk_matrix']['medium_risk']
    assert [(e['name'], e['risk_score']) for e in medium] == [('Faly Rasoa', 65)]
    assert analytics['risk_matrix']['high_risk'] == []

    categories = {(r['employee_name'], r['category']) for r in analytics['recommendations']}
    assert ('Faly Rasoa', 'training') in categories
    assert ('Mamy Randria', 'development') in categories
    assert analytics['recommendations'][0]['priority'] == 'high'

    overall = analytics['performance_trends']['overall']
    assert overall['current'] == 3.5
    assert overall['trend'] == 'stable'
    assert analytics['generated_at'] == '2025-01-31 00:00:00'


def test_dashboard_api(client, staff_member):
    EvaluationService.create_evaluation({'staff_id': staff_member['id'], 'formation_theme': 'Leadership'})
    EvaluationService.save_draft({'staff_id': staff_member['id'], 'formation_theme': 'Excel'})

    summary = client.get('/api/reports/dashboard').get_json()['summary']

    assert summary['total_staff'] == 1
    assert summary['total_evaluations'] == 2
    assert summary['evaluations_by_status'] == {'completed': 1, 'draft': 1}
    assert summary['follow_ups_scheduled'] == 1
    assert summary['follow_ups_due'] == 0

    response = client.get('/api/reports/follow-ups', query_string={'due_only': '1'})
    assert response.get_json()['total'] == 0
