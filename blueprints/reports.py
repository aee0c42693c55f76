#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Reports module
Dashboard, follow-up scheduling, statistics and analytics
"""
from flask import Blueprint, request

from config.settings import EvaluationConfig
from services.report_service import ReportService
from .decorators import login_required
from .helpers import ok, safe_int

reports_bp = Blueprint('reports', __name__, url_prefix='/api/reports')


@reports_bp.route('/dashboard', methods=['GET'])
@login_required
def dashboard():
    return ok(summary=ReportService.get_dashboard_summary())


@reports_bp.route('/latest-initial', methods=['GET'])
@login_required
def latest_initial():
    latest = ReportService.get_latest_initial_by_staff()
    return ok(evaluations=[latest[staff_id] for staff_id in sorted(latest)])


@reports_bp.route('/follow-ups', methods=['GET'])
@login_required
def follow_up_candidates():
    """
    Staff due for their follow-up evaluation

    Query: months (default 6), due_only=1 to keep overdue entries only
    """
    months = safe_int(request.args.get('months'), EvaluationConfig.FOLLOW_UP_MONTHS)
    candidates = ReportService.get_follow_up_candidates(months)
    if request.args.get('due_only') in ('1', 'true'):
        candidates = [c for c in candidates if c['is_due']]
    return ok(candidates=candidates, total=len(candidates))


@reports_bp.route('/comparisons', methods=['GET'])
@login_required
def comparisons():
    staff_id = request.args.get('staff_id')
    result = ReportService.get_initial_follow_up_comparisons(safe_int(staff_id, None) if staff_id else None)
    return ok(comparisons=result, total=len(result))


@reports_bp.route('/completed', methods=['GET'])
@login_required
def completed_with_stats():
    evaluations = ReportService.get_completed_with_stats()
    return ok(evaluations=evaluations, total=len(evaluations))


@reports_bp.route('/theme-stats', methods=['GET'])
@login_required
def theme_stats():
    return ok(stats=ReportService.get_evaluation_stats())


@reports_bp.route('/analytics', methods=['GET'])
@login_required
def advanced_analytics():
    return ok(analytics=ReportService.get_advanced_analytics())
