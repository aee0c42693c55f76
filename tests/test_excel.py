#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Excel import heuristics, export workbooks and the entry template
"""
from io import BytesIO

import pytest
from openpyxl import Workbook, load_workbook

from conftest import full_scores
from services.evaluation_service import EvaluationService, OBSERVED_CHANGE_OPTIONS
from services.excel_export_service import (
    TEMPLATE_HEADERS, TEMPLATE_SHEET, build_export_workbook, build_template_workbook
)
from services.excel_import_service import (
    STAFF_COLUMN_MAPPER,
    detect_content_type,
    detect_sheet_type,
    import_template_rows,
    import_workbook,
    map_columns,
    normalize_string,
    parse_template_workbook,
    save_imported_data,
)
from services.staff_service import StaffService
from services.theme_service import ThemeService
from utils.errors import FileOperationError, ValidationError


def workbook_bytes(sheets):
    """sheets: list of (title, rows)"""
    workbook = Workbook()
    workbook.remove(workbook.active)
    for title, rows in sheets:
        sheet = workbook.create_sheet(title)
        for row in rows:
            sheet.append(row)
    buffer = BytesIO()
    workbook.save(buffer)
    buffer.seek(0)
    return buffer


SAMPLE_SHEETS = [
    ('Personnel', [
        ['Prénom', 'Nom', 'Email', 'Poste'],
        ['Hery', 'Rakoto', 'hery@cfpt.mg', 'Formateur'],
        ['Voahangy', 'Rabe', 'voahangy@cfpt.mg', 'Assistant'],
        ['Autre', 'Nom', 'HERY@cfpt.mg', 'Manager'],
        [None, 'Sans prénom', 'sans@cfpt.mg', 'Agent'],
    ]),
    ('Évaluations', [
        ['Prénom', 'Nom', 'Thème formation', 'Date évaluation', 'Acquisition compétences', 'Statut'],
        ['Hery', 'Rakoto', 'Gestion de Projet', '15/03/2024', 5, 'Brouillon'],
        ['Inconnu', 'Personne', 'Excel', None, 8, None],
    ]),
    ('Thèmes', [
        ['Nom', 'Description'],
        ['Bureautique', 'Word et Excel'],
        ['Gestion de Projet', 'Déjà présent'],
    ]),
    ('Feuil1', [
        ['seule ligne'],
    ]),
]


# ========== Header matching ==========

def test_normalize_string():
    assert normalize_string('  Thème   Formation! ') == 'theme formation'
    assert normalize_string(None) == ''
    assert normalize_string('Ponctualité & Assiduité') == 'ponctualite assiduite'


def test_map_columns_exact_before_fuzzy():
    column_map = map_columns(['Prénom', 'Nom', 'E-mail', '', 'Téléphone mobile'], STAFF_COLUMN_MAPPER)
    assert column_map['first_name'] == 0
    assert column_map['last_name'] == 1
    assert column_map['email'] == 2
    assert column_map['phone'] == 4
    assert 3 not in column_map.values()


def test_detect_sheet_type():
    assert detect_sheet_type('Liste du Personnel') == 'staff'
    assert detect_sheet_type('Notes 2024') == 'evaluations'
    assert detect_sheet_type('Thèmes Formation') == 'themes'
    assert detect_sheet_type('Feuil1') == 'unknown'


def test_detect_content_type():
    assert detect_content_type(['Prénom', 'Nom', 'Email', 'Poste']) == 'staff'
    assert detect_content_type(['Nom', 'Description']) == 'themes'
    assert detect_content_type(SAMPLE_SHEETS[1][1][0]) == 'evaluations'
    assert detect_content_type(
        ['Prénom', 'Nom', 'Date suivi', 'Comportement général', "Intégration dans l'équipe", 'Curiosité']
    ) == 'follow_ups'
    assert detect_content_type([]) == 'unknown'


# ========== Workbook import ==========

def test_import_workbook_parses_every_sheet(ctx):
    result = import_workbook(workbook_bytes(SAMPLE_SHEETS), 'import.xlsx')

    summary = result.summary
    assert summary['staff_imported'] == 2
    assert summary['evaluations_imported'] == 2
    assert summary['themes_imported'] == 1
    assert summary['duplicates_ignored'] == 2
    assert summary['evaluations_linked'] == 1
    assert summary['sheets_processed'] == 4
    assert len(result.errors) == 1
    assert result.success is True
    assert any('Feuil1' in w for w in result.warnings)

    hery_eval = result.data['evaluations'][0]
    assert hery_eval['status'] == 'draft'
    assert hery_eval['fill_date'] == '2024-03-15'
    assert hery_eval['skills_acquisition'] == 5
    # missing scores default to 3, out-of-range ones are clamped
    assert hery_eval['course_clarity'] == 3
    assert result.data['evaluations'][1]['skills_acquisition'] == 5


def test_save_imported_data(ctx):
    result = import_workbook(workbook_bytes(SAMPLE_SHEETS), 'import.xlsx')

    counts = save_imported_data(result)

    assert counts['staff'] == 2
    assert counts['themes'] == 1
    assert counts['evaluations'] == 2
    assert counts['unlinked_evaluations'] == 1
    assert counts['failed'] == 0

    hery = StaffService.get_staff_by_email('hery@cfpt.mg')
    drafts = EvaluationService.get_staff_drafts(hery['id'])
    assert len(drafts) == 1
    assert drafts[0]['draft_key'].startswith('draft_')
    assert ThemeService.find_by_name('Bureautique')


def test_save_imported_data_through_queue(app):
    queue = app.extensions['operation_queue']
    with app.app_context():
        result = import_workbook(workbook_bytes(SAMPLE_SHEETS[:1]), 'staff.xlsx')
        counts = save_imported_data(result, queue=queue)
        assert counts['staff'] == 2
        assert len(StaffService.list_staff()) == 2


def test_unreadable_workbook(ctx):
    with pytest.raises(FileOperationError) as excinfo:
        import_workbook(BytesIO(b'definitely not a workbook'), 'broken.xlsx')
    assert excinfo.value.status_code == 400


# ========== Export ==========

def test_export_workbook_sheets(staff_member):
    EvaluationService.create_evaluation({
        'staff_id': staff_member['id'], 'formation_theme': 'Leadership',
        'observed_changes': ['Productivité', 'Leadership'], **full_scores(4),
    })

    buffer, filename = build_export_workbook('all')
    workbook = load_workbook(buffer)

    assert filename.startswith('CFP-Manager-all-') and filename.endswith('.xlsx')
    assert workbook.sheetnames == ['Personnel', 'Évaluations', 'Suivi 6 mois', 'Thèmes Formation']

    staff_rows = list(workbook['Personnel'].iter_rows(values_only=True))
    assert staff_rows[0][:4] == ('ID', 'Matricule', 'Prénom', 'Nom')
    assert staff_rows[1][2] == 'Hery'

    evaluation_rows = list(workbook['Évaluations'].iter_rows(values_only=True))
    assert len(evaluation_rows) == 2


def test_export_single_type_and_invalid_type(ctx):
    buffer, _ = build_export_workbook('themes')
    assert load_workbook(buffer).sheetnames == ['Thèmes Formation']

    with pytest.raises(ValidationError):
        build_export_workbook('everything')


def test_exported_workbook_can_be_imported_back(staff_member):
    buffer, _ = build_export_workbook('staff')
    StaffService.delete_staff(staff_member['id'])

    result = import_workbook(buffer, 'export.xlsx')
    save_imported_data(result)

    restored = StaffService.get_staff_by_email('hery.rakoto@cfpt.mg')
    assert restored['matricule'] == staff_member['matricule']
    assert restored['establishment'] == 'CFPT Ivato'


# ========== Entry template ==========

def test_template_layout(ctx):
    buffer, filename = build_template_workbook()
    workbook = load_workbook(buffer)

    assert filename.endswith('.xlsx')
    assert workbook.sheetnames == ['Instructions', 'Référentiels', TEMPLATE_SHEET]
    headers = [cell.value for cell in workbook[TEMPLATE_SHEET][2]]
    assert headers == TEMPLATE_HEADERS


def test_template_parse_and_import(ctx):
    buffer, _ = build_template_workbook()
    workbook = load_workbook(buffer)
    sheet = workbook[TEMPLATE_SHEET]
    bad_row = [''] * len(TEMPLATE_HEADERS)
    bad_row[TEMPLATE_HEADERS.index('Prénom')] = 'Lova'
    bad_row[TEMPLATE_HEADERS.index('Email')] = 'pas-un-email'
    bad_row[TEMPLATE_HEADERS.index('Nom de la formation')] = 'Excel'
    bad_row[TEMPLATE_HEADERS.index('Rythme (0-5)')] = 7
    sheet.append(bad_row)
    filled = BytesIO()
    workbook.save(filled)
    filled.seek(0)

    parsed = parse_template_workbook(filled, 'modele.xlsx')

    assert parsed['total_rows'] == 2
    assert [e['row'] for e in parsed['errors']] == [4]
    assert len(parsed['errors'][0]['errors']) == 3

    example = parsed['rows'][0]
    assert example['email'] == 'jean.dupont@email.com'
    assert example['observed_changes'] == OBSERVED_CHANGE_OPTIONS[:3]
    assert example['needs_additional_training'] is True
    assert example['requested_trainings'] == ['Gestion de Projet', 'Communication Efficace']

    summary = import_template_rows(parsed['rows'])
    assert summary == {'staff_created': 1, 'staff_existing': 0, 'evaluations_created': 1}

    evaluation = EvaluationService.list_evaluations()[0]
    assert evaluation['status'] == 'completed'
    assert evaluation['recommendation_score'] == 8
    assert evaluation['rhythm'] == 4


# ========== HTTP ==========

def test_excel_import_endpoint_logs_the_import(client):
    response = client.post(
        '/api/import/excel',
        data={'file': (workbook_bytes(SAMPLE_SHEETS), 'import.xlsx')},
        content_type='multipart/form-data',
    )
    assert response.status_code == 200
    body = response.get_json()
    assert body['imported'] is True
    assert body['saved']['staff'] == 2

    logs = client.get('/api/admin/import-logs').get_json()['logs']
    assert logs[0]['operation'] == 'excel_import'
    assert logs[0]['file_name'] == 'import.xlsx'


def test_excel_import_rejects_other_extensions(client):
    response = client.post(
        '/api/import/excel',
        data={'file': (BytesIO(b'a,b'), 'data.csv')},
        content_type='multipart/form-data',
    )
    assert response.status_code == 400


def test_export_endpoint(client):
    response = client.get('/api/export/excel', query_string={'type': 'staff'})
    assert response.status_code == 200
    assert response.mimetype == 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
