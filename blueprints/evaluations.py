#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Evaluations module
Initial and follow-up evaluation forms, drafts and completion
"""
from flask import Blueprint, request

from services.evaluation_service import EvaluationService
from .decorators import login_required
from .helpers import json_body, ok, safe_int

evaluations_bp = Blueprint('evaluations', __name__, url_prefix='/api/evaluations')


@evaluations_bp.route('', methods=['GET'])
@login_required
def list_evaluations():
    """
    List evaluations

    Query: status, type (initial/followUp), staff_id, theme
    """
    staff_id = request.args.get('staff_id')
    evaluations = EvaluationService.list_evaluations(
        status=request.args.get('status'),
        evaluation_type=request.args.get('type'),
        staff_id=safe_int(staff_id, None) if staff_id else None,
        theme=request.args.get('theme'),
    )
    return ok(evaluations=evaluations, total=len(evaluations))


@evaluations_bp.route('', methods=['POST'])
@login_required
def create_evaluation():
    return ok(201, evaluation=EvaluationService.create_evaluation(json_body()))


@evaluations_bp.route('/<int:evaluation_id>', methods=['GET'])
@login_required
def get_evaluation(evaluation_id):
    return ok(evaluation=EvaluationService.get_evaluation(evaluation_id))


@evaluations_bp.route('/<int:evaluation_id>', methods=['PUT', 'PATCH'])
@login_required
def update_evaluation(evaluation_id):
    return ok(evaluation=EvaluationService.update_evaluation(evaluation_id, json_body()))


@evaluations_bp.route('/<int:evaluation_id>', methods=['DELETE'])
@login_required
def delete_evaluation(evaluation_id):
    EvaluationService.delete_evaluation(evaluation_id)
    return ok(message='Évaluation supprimée')


@evaluations_bp.route('/<int:evaluation_id>/complete', methods=['POST'])
@login_required
def complete_evaluation(evaluation_id):
    return ok(evaluation=EvaluationService.complete_evaluation(evaluation_id, json_body()))


@evaluations_bp.route('/status/<status>', methods=['GET'])
@login_required
def evaluations_by_status(status):
    evaluations = EvaluationService.get_evaluations_by_status(status)
    return ok(evaluations=evaluations, total=len(evaluations))


# ========== Drafts ==========

@evaluations_bp.route('/drafts', methods=['GET'])
@login_required
def list_drafts():
    drafts = EvaluationService.get_drafts_with_details()
    return ok(drafts=drafts, total=len(drafts))


@evaluations_bp.route('/drafts', methods=['POST'])
@login_required
def save_draft():
    """Create a draft, or update the draft named by body.id"""
    return ok(draft=EvaluationService.save_draft(json_body()))


@evaluations_bp.route('/drafts/by-person', methods=['GET'])
@login_required
def drafts_by_person():
    return ok(drafts=EvaluationService.get_drafts_by_person())


@evaluations_bp.route('/drafts/staff/<int:staff_id>', methods=['GET'])
@login_required
def staff_drafts(staff_id):
    drafts = EvaluationService.get_staff_drafts(staff_id)
    return ok(drafts=drafts, total=len(drafts))


@evaluations_bp.route('/drafts/<int:evaluation_id>', methods=['DELETE'])
@login_required
def delete_draft(evaluation_id):
    EvaluationService.delete_draft(evaluation_id)
    return ok(message='Brouillon supprimé')


@evaluations_bp.route('/drafts/<int:evaluation_id>/restore', methods=['POST'])
@login_required
def restore_draft(evaluation_id):
    return ok(201, draft=EvaluationService.restore_draft(evaluation_id))
