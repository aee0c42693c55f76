#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Themes module
Training themes and their assignment to staff members
"""
from flask import Blueprint

from services.theme_service import StaffTrainingService, ThemeService
from .decorators import login_required
from .helpers import json_body, ok

themes_bp = Blueprint('themes', __name__, url_prefix='/api/themes')
trainings_bp = Blueprint('trainings', __name__, url_prefix='/api/trainings')


# ========== Themes ==========

@themes_bp.route('', methods=['GET'])
@login_required
def list_themes():
    themes = ThemeService.list_themes()
    return ok(themes=themes, total=len(themes))


@themes_bp.route('', methods=['POST'])
@login_required
def create_theme():
    return ok(201, theme=ThemeService.create_theme(json_body()))


@themes_bp.route('/<int:theme_id>', methods=['GET'])
@login_required
def get_theme(theme_id):
    return ok(theme=ThemeService.get_theme(theme_id))


@themes_bp.route('/<int:theme_id>', methods=['PUT', 'PATCH'])
@login_required
def update_theme(theme_id):
    return ok(theme=ThemeService.update_theme(theme_id, json_body()))


@themes_bp.route('/<int:theme_id>', methods=['DELETE'])
@login_required
def delete_theme(theme_id):
    ThemeService.delete_theme(theme_id)
    return ok(message='Thème supprimé')


# ========== Assignments ==========

@trainings_bp.route('', methods=['GET'])
@login_required
def list_trainings():
    trainings = StaffTrainingService.list_trainings()
    return ok(trainings=trainings, total=len(trainings))


@trainings_bp.route('', methods=['POST'])
@login_required
def create_training():
    return ok(201, training=StaffTrainingService.create_training(json_body()))


@trainings_bp.route('/<int:training_id>', methods=['GET'])
@login_required
def get_training(training_id):
    return ok(training=StaffTrainingService.get_training(training_id))


@trainings_bp.route('/<int:training_id>', methods=['PUT', 'PATCH'])
@login_required
def update_training(training_id):
    return ok(training=StaffTrainingService.update_training(training_id, json_body()))


@trainings_bp.route('/<int:training_id>', methods=['DELETE'])
@login_required
def delete_training(training_id):
    StaffTrainingService.delete_training(training_id)
    return ok(message='Affectation supprimée')
