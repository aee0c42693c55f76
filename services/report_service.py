#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Reporting service
Follow-up scheduling, initial/follow-up comparisons, statistics and analytics
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from config.settings import EvaluationConfig
from models.database import get_db
from services.evaluation_service import (
    EvaluationService,
    FOLLOW_UP_CRITERIA,
    SCORE_FIELDS,
    SECTION_FIELDS,
    score_values,
)
from utils.dates import first_timestamp
from utils.logger import log_slow_queries

logger = logging.getLogger('app')

EPOCH = datetime(1970, 1, 1)

RECOMMENDATION_LEVELS = [
    (9, {'level': 'excellent', 'color': 'green', 'label': 'Excellente'}),
    (7, {'level': 'good', 'color': 'blue', 'label': 'Bonne'}),
    (5, {'level': 'average', 'color': 'orange', 'label': 'Moyenne'}),
    (3, {'level': 'below', 'color': 'red', 'label': 'Faible'}),
]
RECOMMENDATION_NONE = {'level': 'poor', 'color': 'gray', 'label': 'Non évaluée'}

TREND_THRESHOLD = 0.1
TREND_WINDOW_DAYS = 90


def recommendation_level(score) -> dict:
    """Level/color/label bucket for a 0-10 recommendation score"""
    if isinstance(score, (int, float)) and not isinstance(score, bool):
        for threshold, level in RECOMMENDATION_LEVELS:
            if score >= threshold:
                return dict(level)
    return dict(RECOMMENDATION_NONE)


def section_averages(evaluation: dict) -> Dict[str, float]:
    """Mean of each section's values > 0, one decimal; 0 for empty sections"""
    averages = {}
    for section, fields in SECTION_FIELDS.items():
        values = score_values(evaluation, fields)
        averages[section] = round(sum(values) / len(values), 1) if values else 0
    return averages


def overall_score(evaluation: dict) -> float:
    """Mean of the five section averages"""
    averages = section_averages(evaluation)
    return round(sum(averages.values()) / len(averages), 2)


def average_score(evaluation: dict) -> Optional[float]:
    """Mean of the 28 scores > 0, None when none is filled"""
    values = score_values(evaluation, SCORE_FIELDS)
    return sum(values) / len(values) if values else None


def _completion_time(evaluation: dict) -> datetime:
    return first_timestamp(evaluation, 'completed_at', 'updated_at', 'created_at') or EPOCH


def _follow_up_time(evaluation: dict) -> datetime:
    return first_timestamp(evaluation, 'fu_date', 'completed_at', 'updated_at', 'created_at') or EPOCH


def _evaluation_time(evaluation: dict) -> datetime:
    return first_timestamp(evaluation, 'fill_date', 'completed_at', 'created_at') or EPOCH


def _person_name(evaluation: dict) -> str:
    return f"{evaluation.get('first_name') or ''} {evaluation.get('last_name') or ''}".strip()


def _trend_data(current: List[float], previous: List[float]) -> dict:
    current_avg = sum(current) / len(current) if current else 0
    previous_avg = sum(previous) / len(previous) if previous else current_avg
    change = current_avg - previous_avg
    change_percent = change / previous_avg * 100 if previous_avg > 0 else 0

    if abs(change) < TREND_THRESHOLD:
        trend = 'stable'
    else:
        trend = 'up' if change > 0 else 'down'

    return {
        'current': round(current_avg, 2),
        'previous': round(previous_avg, 2),
        'change': round(change, 2),
        'change_percent': round(change_percent, 1),
        'trend': trend,
        'confidence': min(95, max(50, (len(current) + len(previous)) * 10)),
    }


def _variance(values: List[float]) -> float:
    mean = sum(values) / len(values)
    return sum((v - mean) ** 2 for v in values) / len(values)


def predict_trend(scores: List[float]) -> dict:
    """
    Linear regression over chronological scores

    The slope classifies the trend (declining < -0.1 < stable < 0.1 < improving);
    the prediction is the next point, clamped to 0-5.
    """
    import numpy as np

    if len(scores) < 2:
        current = scores[0] if scores else 0
        return {'trend': 'stable', 'slope': 0.0, 'predicted_score': round(current, 2)}

    x = np.arange(len(scores))
    slope, intercept = np.polyfit(x, np.array(scores, dtype=float), 1)
    predicted = float(max(0.0, min(5.0, intercept + slope * len(scores))))

    if slope < -TREND_THRESHOLD:
        trend = 'declining'
    elif slope > TREND_THRESHOLD:
        trend = 'improving'
    else:
        trend = 'stable'

    return {'trend': trend, 'slope': round(float(slope), 3), 'predicted_score': round(predicted, 2)}


class ReportService:
    """Read-only reporting over staff and evaluations"""

    # ========== Follow-up scheduling ==========

    @classmethod
    def get_latest_initial_by_staff(cls) -> Dict[int, dict]:
        """Latest completed initial evaluation per staff_id"""
        latest: Dict[int, dict] = {}
        for evaluation in EvaluationService.list_evaluations(status='completed', evaluation_type='initial'):
            staff_id = evaluation.get('staff_id')
            if staff_id is None:
                continue
            current = latest.get(staff_id)
            if current is None or _completion_time(evaluation) > _completion_time(current):
                latest[staff_id] = evaluation
        return latest

    @classmethod
    def get_follow_up_candidates(cls, months: int = EvaluationConfig.FOLLOW_UP_MONTHS) -> List[dict]:
        """
        Staff whose 6-month follow-up is scheduled, soonest due first

        Returns:
            list: {staff, initial_evaluation, last_date, due_date, is_due, days_remaining}
        """
        from services.staff_service import StaffService

        now = datetime.now()
        staff_by_id = {s['id']: s for s in StaffService.list_staff()}
        candidates = []

        for staff_id, evaluation in cls.get_latest_initial_by_staff().items():
            staff = staff_by_id.get(staff_id)
            if staff is None:
                continue
            last_date = _completion_time(evaluation)
            due_date = last_date + timedelta(days=months * EvaluationConfig.DAYS_PER_MONTH)
            candidates.append({
                'staff': staff,
                'initial_evaluation': evaluation,
                'last_date': last_date.strftime('%Y-%m-%d %H:%M:%S'),
                'due_date': due_date.strftime('%Y-%m-%d %H:%M:%S'),
                'is_due': now >= due_date,
                'days_remaining': (due_date - now).days,
            })

        candidates.sort(key=lambda c: c['due_date'])
        return candidates

    @classmethod
    def get_initial_follow_up_comparisons(cls, staff_id=None) -> List[dict]:
        """Latest initial vs latest follow-up per staff member, with per-criterion deltas"""
        initials = cls.get_latest_initial_by_staff()

        follow_ups: Dict[int, dict] = {}
        for evaluation in EvaluationService.list_evaluations(evaluation_type='followUp'):
            sid = evaluation.get('staff_id')
            if sid is None or evaluation['status'] == 'draft':
                continue
            current = follow_ups.get(sid)
            if current is None or _follow_up_time(evaluation) > _follow_up_time(current):
                follow_ups[sid] = evaluation

        staff_ids = set(initials) | set(follow_ups)
        if staff_id is not None:
            staff_ids &= {int(staff_id)}

        comparisons = []
        for sid in sorted(staff_ids):
            initial = initials.get(sid)
            follow_up = follow_ups.get(sid)

            deltas = {}
            if initial and follow_up:
                for key, label in FOLLOW_UP_CRITERIA:
                    before = initial.get(key)
                    after = follow_up.get(f"fu_{key}")
                    if isinstance(before, (int, float)) and isinstance(after, (int, float)):
                        deltas[key] = {
                            'label': label,
                            'initial': before,
                            'follow_up': after,
                            'delta': round(after - before, 2),
                        }

            reference = follow_up or initial
            initial_average = average_score(initial) if initial else None
            comparisons.append({
                'staff_id': sid,
                'person_name': _person_name(reference),
                'initial': initial,
                'follow_up': follow_up,
                'initial_average': round(initial_average, 2) if initial_average is not None else None,
                'follow_up_total60': follow_up.get('fu_total60') if follow_up else None,
                'deltas': deltas,
            })
        return comparisons

    # ========== Statistics ==========

    @classmethod
    def get_completed_with_stats(cls) -> List[dict]:
        """Completed evaluations with section averages, newest first"""
        results = []
        for evaluation in EvaluationService.list_evaluations(status='completed'):
            averages = section_averages(evaluation)
            evaluation['section_averages'] = averages
            evaluation['overall_score'] = round(sum(averages.values()) / len(averages), 2)
            evaluation['person_name'] = _person_name(evaluation)
            evaluation['has_observations'] = bool((evaluation.get('justification_observations') or '').strip())
            evaluation['recommendation_level'] = recommendation_level(evaluation.get('recommendation_score'))
            results.append(evaluation)

        results.sort(key=_completion_time, reverse=True)
        return results

    @classmethod
    def get_evaluation_stats(cls) -> List[dict]:
        """Per formation theme: evaluation count and mean of average scores"""
        grouped: Dict[str, List[Optional[float]]] = {}
        for evaluation in EvaluationService.list_evaluations():
            grouped.setdefault(evaluation['formation_theme'], []).append(average_score(evaluation))

        stats = []
        for theme, averages in grouped.items():
            scored = [a for a in averages if a is not None]
            stats.append({
                'formation_theme': theme,
                'total_evaluations': len(averages),
                'average_score': round(sum(scored) / len(scored), 2) if scored else 0,
            })
        stats.sort(key=lambda s: s['formation_theme'].lower())
        return stats

    @classmethod
    def get_dashboard_summary(cls) -> dict:
        conn = get_db()
        cur = conn.cursor()

        cur.execute("SELECT COUNT(1) FROM staff")
        total_staff = cur.fetchone()[0]
        cur.execute("SELECT COUNT(1) FROM themes")
        total_themes = cur.fetchone()[0]

        cur.execute("SELECT status, COUNT(1) AS n FROM evaluations GROUP BY status")
        by_status = {row['status']: row['n'] for row in cur.fetchall()}
        cur.execute("SELECT evaluation_type, COUNT(1) AS n FROM evaluations GROUP BY evaluation_type")
        by_type = {row['evaluation_type']: row['n'] for row in cur.fetchall()}

        candidates = cls.get_follow_up_candidates()
        recent = cls.get_completed_with_stats()[:EvaluationConfig.RECENT_EVALUATIONS]

        return {
            'total_staff': total_staff,
            'total_themes': total_themes,
            'total_evaluations': sum(by_status.values()),
            'evaluations_by_status': by_status,
            'evaluations_by_type': by_type,
            'follow_ups_due': sum(1 for c in candidates if c['is_due']),
            'follow_ups_scheduled': len(candidates),
            'recent_evaluations': [
                {
                    'id': e['id'],
                    'person_name': e['person_name'],
                    'formation_theme': e['formation_theme'],
                    'overall_score': e['overall_score'],
                    'completed_at': e.get('completed_at'),
                }
                for e in recent
            ],
            'theme_stats': cls.get_evaluation_stats(),
        }

    # ========== Advanced analytics ==========

    @staticmethod
    def _employee_statistics(evaluations: List[dict]) -> List[dict]:
        employees: Dict[str, dict] = {}
        for evaluation in sorted(evaluations, key=_evaluation_time):
            name = _person_name(evaluation) or f"#{evaluation.get('staff_id')}"
            employee = employees.setdefault(name, {
                'name': name,
                'staff_id': evaluation.get('staff_id'),
                'position': evaluation.get('position'),
                'establishment': evaluation.get('establishment') or 'Non spécifié',
                'scores': [],
                'last_evaluation': None,
            })
            employee['scores'].append(overall_score(evaluation))
            employee['last_evaluation'] = _evaluation_time(evaluation)

        for employee in employees.values():
            employee['evaluation_count'] = len(employee['scores'])
            employee['average_score'] = sum(employee['scores']) / employee['evaluation_count']
            employee['prediction'] = predict_trend(employee['scores'])
        return list(employees.values())

    @staticmethod
    def _risk(employee: dict, now: datetime):
        score = 0
        factors = []
        average = employee['average_score']
        trend = employee['prediction']['trend']

        if average < 2.5:
            score += 40
        elif average < 3:
            score += 25
        elif average < 3.5:
            score += 10
        if average < 3:
            factors.append('Performance en dessous de la moyenne')

        if trend == 'declining':
            score += 30
            factors.append('Tendance déclinante prédite')
        elif trend == 'stable' and average < 3:
            score += 15

        if employee['evaluation_count'] < 2:
            score += 10
            factors.append('Manque de données historiques')

        if (now - employee['last_evaluation']).days > TREND_WINDOW_DAYS:
            score += 20
            factors.append('Dernière évaluation trop ancienne')

        return min(100, score), factors

    @staticmethod
    def _opportunity(employee: dict) -> int:
        score = 0
        if employee['average_score'] >= 4:
            score += 40
        elif employee['average_score'] >= 3.5:
            score += 25
        if employee['evaluation_count'] >= 3 and _variance(employee['scores']) < 0.5:
            score += 20
        if employee['evaluation_count'] >= 2 and employee['scores'][-1] > employee['scores'][0]:
            score += 20
        return min(100, score)

    @classmethod
    def _risk_matrix(cls, employees: List[dict], now: datetime) -> dict:
        matrix = {'high_risk': [], 'medium_risk': [], 'low_risk': [], 'opportunities': []}

        for employee in employees:
            risk_score, factors = cls._risk(employee, now)
            if risk_score > 70:
                matrix['high_risk'].append({
                    'name': employee['name'], 'risk_score': risk_score, 'risk_factors': factors,
                    'urgency': 'immediate',
                    'recommendation': "Action immédiate requise: entretien d'urgence, plan d'amélioration intensif et suivi quotidien.",
                })
            elif risk_score >= 50:
                matrix['medium_risk'].append({
                    'name': employee['name'], 'risk_score': risk_score, 'risk_factors': factors,
                    'urgency': 'short-term',
                    'recommendation': "Surveillance renforcée: entretien dans les 2 semaines, plan d'action personnalisé.",
                })
            elif risk_score >= 30:
                matrix['low_risk'].append({
                    'name': employee['name'], 'risk_score': risk_score, 'risk_factors': factors,
                    'urgency': 'long-term',
                    'recommendation': "Monitoring: évaluation dans le mois et ajustements selon les besoins.",
                })

            opportunity_score = cls._opportunity(employee)
            if opportunity_score > 60:
                areas = []
                if employee['average_score'] >= 4:
                    areas.append('Leadership et mentoring')
                if employee['evaluation_count'] >= 3:
                    areas.append('Formations avancées')
                areas.extend(['Projets transversaux', 'Responsabilités accrues'])
                matrix['opportunities'].append({
                    'name': employee['name'],
                    'opportunity_score': opportunity_score,
                    'potential_areas': areas,
                    'development_plan': (
                        "Plan de développement accéléré: formation leadership, projets stratégiques, mentoring."
                        if opportunity_score > 80 else
                        "Développement progressif: nouvelles responsabilités, formations spécialisées."
                    ),
                })

        for bucket in ('high_risk', 'medium_risk', 'low_risk'):
            matrix[bucket].sort(key=lambda e: e['risk_score'], reverse=True)
        matrix['opportunities'].sort(key=lambda e: e['opportunity_score'], reverse=True)
        return matrix

    @staticmethod
    def _performance_trends(evaluations: List[dict], now: datetime) -> dict:
        current_start = now - timedelta(days=TREND_WINDOW_DAYS)
        previous_start = now - timedelta(days=2 * TREND_WINDOW_DAYS)

        def period_of(evaluation):
            when = _evaluation_time(evaluation)
            if current_start <= when <= now:
                return 'current'
            if previous_start <= when < current_start:
                return 'previous'
            return None

        def trend_for(group: List[dict]) -> dict:
            current = [overall_score(e) for e in group if period_of(e) == 'current']
            previous = [overall_score(e) for e in group if period_of(e) == 'previous']
            return _trend_data(current, previous)

        by_formation: Dict[str, List[dict]] = {}
        by_establishment: Dict[str, List[dict]] = {}
        for evaluation in evaluations:
            by_formation.setdefault(evaluation['formation_theme'], []).append(evaluation)
            by_establishment.setdefault(evaluation.get('establishment') or 'Non spécifié', []).append(evaluation)

        return {
            'overall': trend_for(evaluations),
            'by_formation': {name: trend_for(group) for name, group in by_formation.items()},
            'by_establishment': {name: trend_for(group) for name, group in by_establishment.items()},
        }

    @staticmethod
    def _recommendations(employees: List[dict]) -> List[dict]:
        recommendations = []
        for employee in employees:
            average = employee['average_score']
            prediction = employee['prediction']

            if average < 3:
                recommendations.append({
                    'employee_name': employee['name'], 'priority': 'high', 'category': 'training',
                    'title': 'Formation de remise à niveau urgente',
                    'description': f"Performance actuelle de {average:.1f}/5 nécessite une intervention immédiate",
                    'expected_impact': 85, 'timeframe': '2-4 semaines',
                    'resources': ['Formation intensive', 'Coaching individuel', 'Suivi hebdomadaire'],
                })
            elif average >= 4:
                recommendations.append({
                    'employee_name': employee['name'], 'priority': 'medium', 'category': 'development',
                    'title': 'Développement des compétences de leadership',
                    'description': f"Excellente performance ({average:.1f}/5) - Potentiel de leader",
                    'expected_impact': 75, 'timeframe': '3-6 mois',
                    'resources': ['Formation leadership', 'Mentoring', 'Projets spéciaux'],
                })

            if prediction['trend'] == 'declining':
                recommendations.append({
                    'employee_name': employee['name'], 'priority': 'high', 'category': 'coaching',
                    'title': 'Intervention préventive - Tendance déclinante',
                    'description': f"Prédiction: baisse vers {prediction['predicted_score']:.1f}/5",
                    'expected_impact': 80, 'timeframe': '1-3 mois',
                    'resources': ['Entretien individuel', "Plan d'action personnalisé", 'Suivi renforcé'],
                })
            elif prediction['trend'] == 'improving':
                recommendations.append({
                    'employee_name': employee['name'], 'priority': 'low', 'category': 'recognition',
                    'title': "Reconnaissance de l'amélioration",
                    'description': f"Progression positive prédite vers {prediction['predicted_score']:.1f}/5",
                    'expected_impact': 60, 'timeframe': '1 mois',
                    'resources': ['Reconnaissance publique', 'Responsabilités accrues'],
                })

        order = {'high': 3, 'medium': 2, 'low': 1}
        recommendations.sort(key=lambda r: order[r['priority']], reverse=True)
        return recommendations

    @classmethod
    @log_slow_queries(threshold_ms=500)
    def get_advanced_analytics(cls, now: Optional[datetime] = None) -> dict:
        """
        Risk matrix, opportunities, period trends and recommendations
        computed from completed initial evaluations

        Args:
            now: reference time (defaults to the current time)
        """
        now = now or datetime.now()
        evaluations = EvaluationService.list_evaluations(status='completed', evaluation_type='initial')
        employees = cls._employee_statistics(evaluations)

        logger.info(f"Advanced analytics over {len(evaluations)} evaluation(s), {len(employees)} person(s)")

        return {
            'risk_matrix': cls._risk_matrix(employees, now),
            'performance_trends': cls._performance_trends(evaluations, now),
            'predictions': [
                {
                    'name': e['name'],
                    'staff_id': e['staff_id'],
                    'current_score': round(e['scores'][-1], 2),
                    'average_score': round(e['average_score'], 2),
                    'evaluation_count': e['evaluation_count'],
                    **e['prediction'],
                }
                for e in employees
            ],
            'recommendations': cls._recommendations(employees),
            'generated_at': now.strftime('%Y-%m-%d %H:%M:%S'),
        }
