#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Staff module
Staff CRUD, duplicate cleanup and personal formation history
"""
from flask import Blueprint, request

from services.staff_service import StaffService
from services.sync_events import on_user_action
from services.theme_service import StaffTrainingService
from .decorators import login_required
from .helpers import json_body, ok

staff_bp = Blueprint('staff', __name__, url_prefix='/api/staff')


@staff_bp.route('', methods=['GET'])
@login_required
def list_staff():
    staff = StaffService.list_staff(request.args.get('search'))
    return ok(staff=staff, total=len(staff))


@staff_bp.route('', methods=['POST'])
@login_required
def create_staff():
    """
    Create a staff member

    An email already on file answers 200 with the existing record.
    """
    staff, created = StaffService.create_staff(json_body())
    return ok(201 if created else 200, staff=staff, created=created)


@staff_bp.route('/<int:staff_id>', methods=['GET'])
@login_required
def get_staff(staff_id):
    return ok(staff=StaffService.get_staff(staff_id))


@staff_bp.route('/<int:staff_id>', methods=['PUT', 'PATCH'])
@login_required
def update_staff(staff_id):
    return ok(staff=StaffService.update_staff(staff_id, json_body()))


@staff_bp.route('/<int:staff_id>', methods=['DELETE'])
@login_required
def delete_staff(staff_id):
    deleted = StaffService.delete_staff(staff_id)
    on_user_action('delete_staff')
    return ok(message='Membre du personnel supprimé', **deleted)


@staff_bp.route('/<int:staff_id>/history', methods=['GET'])
@login_required
def staff_history(staff_id):
    return ok(**StaffService.get_staff_history(staff_id))


@staff_bp.route('/<int:staff_id>/trainings', methods=['GET'])
@login_required
def staff_trainings(staff_id):
    StaffService.get_staff(staff_id)
    return ok(trainings=StaffTrainingService.list_for_staff(staff_id))


@staff_bp.route('/duplicates', methods=['GET'])
@login_required
def duplicates():
    groups = StaffService.find_duplicate_groups()
    return ok(groups=groups, total=sum(len(members) - 1 for members in groups.values()))


@staff_bp.route('/duplicates/remove', methods=['POST'])
@login_required
def remove_duplicates():
    result = StaffService.remove_duplicate_staff()
    on_user_action('remove_duplicates')
    return ok(**result)
