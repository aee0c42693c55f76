#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Service layer
Business rules and data access for the blueprints
"""

from services.staff_service import StaffService
from services.theme_service import ThemeService, StaffTrainingService
from services.evaluation_service import EvaluationService
from services.report_service import ReportService
from services.maintenance_service import DataMaintenanceService
from services.app_config_service import AppConfigService
from services.user_service import UserService
from services.audit_service import AuditLogService

__all__ = [
    'StaffService',
    'ThemeService',
    'StaffTrainingService',
    'EvaluationService',
    'ReportService',
    'DataMaintenanceService',
    'AppConfigService',
    'UserService',
    'AuditLogService',
]
