#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Excel export service
Data export workbooks and the evaluation entry template (openpyxl)
"""
import logging
from datetime import datetime
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.datavalidation import DataValidation

from services.evaluation_service import (
    EvaluationService,
    FOLLOW_UP_CRITERIA,
    OBSERVED_CHANGE_OPTIONS,
    SCORE_FIELDS,
    SCORE_LABELS,
    SCORE_SECTIONS,
)
from services.staff_service import StaffService
from services.theme_service import ThemeService
from utils.errors import ValidationError

logger = logging.getLogger('app')

XLSX_MIMETYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
EXPORT_TYPES = ('all', 'staff', 'evaluations', 'themes')

HEADER_FONT = Font(bold=True, color='FFFFFF')
HEADER_FILL = PatternFill('solid', fgColor='0011EF')
REQUIRED_FILL = PatternFill('solid', fgColor='2563EB')

DEFAULT_POSITIONS = ['Manager', 'Formateur', 'Coordinatrice', 'Assistant']
GENDERS = ['Homme', 'Femme']

# ========== Export sheet layouts: (header, field) ==========

STAFF_COLUMNS = [
    ('ID', 'id'),
    ('Matricule', 'matricule'),
    ('Prénom', 'first_name'),
    ('Nom', 'last_name'),
    ('Poste', 'position'),
    ('Email', 'email'),
    ('Téléphone', 'phone'),
    ('Établissement', 'establishment'),
    ('Année Formation', 'formation_year'),
    ('Date de création', 'created_at'),
]

EVALUATION_COLUMNS = [
    ('ID', 'id'),
    ('Staff ID', 'staff_id'),
    ('Prénom', 'first_name'),
    ('Nom', 'last_name'),
    ('Date évaluation', 'fill_date'),
    ('Thème formation', 'formation_theme'),
    ('Statut', 'status'),
] + [(SCORE_LABELS[field], field) for field in SCORE_FIELDS] + [
    ('Score recommandation', 'recommendation_score'),
    ('Justifications', 'justification_observations'),
    ('Date de création', 'created_at'),
]

FOLLOW_UP_COLUMNS = [
    ('ID', 'id'),
    ('Staff ID', 'staff_id'),
    ('Prénom', 'first_name'),
    ('Nom', 'last_name'),
    ('Date suivi', 'fu_date'),
    ('Évaluation initiale', 'initial_evaluation_id'),
    ('Total /60', 'fu_total60'),
    ('Appréciation (code)', 'fu_appreciation_code'),
    ('Appréciation', 'fu_appreciation_label'),
]
for _key, _label in FOLLOW_UP_CRITERIA:
    FOLLOW_UP_COLUMNS.append((_label, f'fu_{_key}'))
    FOLLOW_UP_COLUMNS.append((f'Commentaire - {_label}', f'fu_{_key}_comment'))
FOLLOW_UP_COLUMNS += [
    ('Conclusion personnel', 'fu_conclusion_staff'),
    ('Conclusion directeur', 'fu_conclusion_director'),
]

THEME_COLUMNS = [
    ('ID', 'id'),
    ('Nom', 'name'),
    ('Description', 'description'),
    ('Date de création', 'created_at'),
]

# ========== Entry template: (group, [(header, field, kind)]) ==========
# kinds: text, date, year, gender, position, theme, note, recommendation,
#        change (Oui/Non per observed change), yesno, wish (requested training)

TEMPLATE_GROUPS = [
    ('Informations personnelles', 'E3F2FD', [
        ('Matricule', 'matricule', 'text'),
        ('Prénom', 'first_name', 'text'),
        ('Nom', 'last_name', 'text'),
        ('Genre', 'gender', 'gender'),
        ('Téléphone', 'phone', 'text'),
        ('Email', 'email', 'text'),
        ('Poste/Fonction', 'position', 'position'),
        ('Établissement', 'establishment', 'text'),
        ('Année formation', 'formation_year', 'year'),
    ]),
    ('Détails formation', 'E8F5E9', [
        ('Nom de la formation', 'formation_theme', 'theme'),
        ('Centre de formation', 'training_center', 'text'),
        ('Formateurs', 'trainers', 'text'),
        ('Date début (AAAA-MM-JJ)', 'start_date', 'date'),
        ('Date fin (AAAA-MM-JJ)', 'end_date', 'date'),
        ('Objectifs', 'objectives', 'text'),
        ('Modules', 'modules', 'text'),
        ('Résultats attendus', 'expected_results', 'text'),
    ]),
    ('Notes (0-5)', 'FFF8E1', [
        (f'{label} (0-5)', field, 'note')
        for _, _, fields in SCORE_SECTIONS for field, label in fields
    ]),
    ('Impact de la formation', 'FCE4EC', [
        (f'Changement: {option}', option, 'change') for option in OBSERVED_CHANGE_OPTIONS
    ] + [
        ('Suggestions amélioration', 'improvement_suggestions', 'text'),
        ('Actions post-formation', 'post_formation_actions', 'text'),
        ('Satisfaction actions', 'actions_satisfaction', 'text'),
        ('Recommandation (0-10)', 'recommendation_score', 'recommendation'),
    ]),
    ('Besoins et commentaires', 'F3E5F5', [
        ('Besoin de formation supplémentaire (Oui/Non)', 'needs_additional_training', 'yesno'),
        ('Détails besoin supplémentaire', 'additional_training_details', 'text'),
        ('Formation souhaitée 1', 'requested_trainings', 'wish'),
        ('Formation souhaitée 2', 'requested_trainings', 'wish'),
        ('Formation souhaitée 3', 'requested_trainings', 'wish'),
        ("Si 'Non', raison", 'no_additional_training_reason', 'text'),
        ('Justifications / Observations', 'justification_observations', 'text'),
    ]),
]

TEMPLATE_COLUMNS = [column for _, _, columns in TEMPLATE_GROUPS for column in columns]
TEMPLATE_HEADERS = [header for header, _, _ in TEMPLATE_COLUMNS]
TEMPLATE_REQUIRED = ['Prénom', 'Nom', 'Email', 'Nom de la formation']
TEMPLATE_SHEET = 'Évaluations'

TEMPLATE_INSTRUCTIONS = [
    "1) Ouvrez l'onglet « Évaluations » et remplissez une ligne par personne évaluée.",
    "2) Les champs en bleu foncé sont obligatoires : Prénom, Nom, Email, Nom de la formation.",
    "3) Les notes doivent être comprises entre 0 et 5 (décimales autorisées).",
    "4) La recommandation est notée de 0 à 10.",
    "5) Utilisez les listes déroulantes pour Genre, Poste et Formation.",
    "6) Les dates doivent être au format AAAA-MM-JJ.",
    "7) Consultez l'onglet « Référentiels » pour les listes de valeurs.",
]


def _export_value(value):
    if isinstance(value, bool):
        return 'Oui' if value else 'Non'
    if isinstance(value, (list, tuple)):
        return ', '.join(str(v) for v in value)
    return value


def _write_sheet(workbook, title, columns, records):
    sheet = workbook.create_sheet(title)
    sheet.append([header for header, _ in columns])
    for record in records:
        sheet.append([_export_value(record.get(field)) for _, field in columns])

    for cell in sheet[1]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(vertical='center', wrap_text=True)

    for index, (header, _) in enumerate(columns, start=1):
        sheet.column_dimensions[get_column_letter(index)].width = max(12, min(40, len(header) + 4))

    sheet.freeze_panes = 'A2'
    return sheet


def build_export_workbook(export_type: str = 'all'):
    """
    Build the data export workbook

    Args:
        export_type: all, staff, evaluations or themes

    Returns:
        tuple: (BytesIO buffer, download filename)
    """
    if export_type not in EXPORT_TYPES:
        raise ValidationError(
            f"Type d'export invalide: {export_type}",
            payload={'allowed': list(EXPORT_TYPES)}
        )

    workbook = Workbook()
    workbook.remove(workbook.active)

    if export_type in ('all', 'staff'):
        _write_sheet(workbook, 'Personnel', STAFF_COLUMNS, StaffService.list_staff())

    if export_type in ('all', 'evaluations'):
        evaluations = EvaluationService.list_evaluations()
        _write_sheet(
            workbook, 'Évaluations', EVALUATION_COLUMNS,
            [e for e in evaluations if e['evaluation_type'] == 'initial']
        )
        _write_sheet(
            workbook, 'Suivi 6 mois', FOLLOW_UP_COLUMNS,
            [e for e in evaluations if e['evaluation_type'] == 'followUp']
        )

    if export_type in ('all', 'themes'):
        _write_sheet(workbook, 'Thèmes Formation', THEME_COLUMNS, ThemeService.list_themes())

    buffer = BytesIO()
    workbook.save(buffer)
    buffer.seek(0)

    filename = f"CFP-Manager-{export_type}-{datetime.now().strftime('%Y-%m-%d')}.xlsx"
    logger.info(f"Excel export built: {filename} ({', '.join(workbook.sheetnames)})")
    return buffer, filename


# ========== Entry template ==========

def _template_example():
    example = {
        'Matricule': 'MAT001', 'Prénom': 'Jean', 'Nom': 'Dupont', 'Genre': 'Homme',
        'Téléphone': '0341234567', 'Email': 'jean.dupont@email.com', 'Poste/Fonction': 'Formateur',
        'Établissement': 'CFPT Ivato', 'Année formation': datetime.now().year,
        'Nom de la formation': 'Leadership Management', 'Centre de formation': 'CFPT Ivato',
        'Formateurs': 'Mme Rakoto', 'Date début (AAAA-MM-JJ)': '2024-03-10',
        'Date fin (AAAA-MM-JJ)': '2024-03-12', 'Objectifs': "Renforcer le management d'équipe",
        'Modules': 'Communication, Délégation', 'Résultats attendus': 'Meilleure coordination',
        'Suggestions amélioration': 'Prévoir un mentorat', 'Actions post-formation': 'Appliquer au quotidien',
        'Satisfaction actions': 'Satisfait', 'Recommandation (0-10)': 8,
        'Besoin de formation supplémentaire (Oui/Non)': 'Oui',
        'Détails besoin supplémentaire': 'Approfondir la gestion de conflits',
        'Formation souhaitée 1': 'Gestion de Projet', 'Formation souhaitée 2': 'Communication Efficace',
        'Justifications / Observations': 'Formation très utile au quotidien.',
    }
    row = []
    for header, field, kind in TEMPLATE_COLUMNS:
        if kind == 'note':
            row.append(4)
        elif kind == 'change':
            row.append('Oui' if field in OBSERVED_CHANGE_OPTIONS[:3] else 'Non')
        else:
            row.append(example.get(header, ''))
    return row


def _add_list_validation(sheet, column_letter, formula, last_row):
    validation = DataValidation(type='list', formula1=formula, allow_blank=True)
    sheet.add_data_validation(validation)
    validation.add(f'{column_letter}3:{column_letter}{last_row}')


def build_template_workbook():
    """
    Build the evaluation entry template

    Sheets: Instructions, Référentiels (lists behind the drop-downs) and
    Évaluations (group row, header row, example row).

    Returns:
        tuple: (BytesIO buffer, download filename)
    """
    positions = sorted({(s.get('position') or '').strip() for s in StaffService.list_staff()} - {''})
    positions = positions or list(DEFAULT_POSITIONS)
    themes = sorted({t['name'] for t in ThemeService.list_themes()})
    notes = [str(n) for n in range(6)]

    workbook = Workbook()

    # Instructions
    info = workbook.active
    info.title = 'Instructions'
    info.sheet_view.showGridLines = False
    info.column_dimensions['A'].width = 120
    info.append(['Modèle Excel - Évaluations de formation'])
    info['A1'].font = Font(size=16, bold=True, color='0011EF')
    info.append([''])
    for line in TEMPLATE_INSTRUCTIONS:
        info.append([line])

    # Référentiels
    reference = workbook.create_sheet('Référentiels')
    reference.append(['Genres', 'Postes', 'Notes (0-5)', 'Thèmes formation'])
    for cell in reference[1]:
        cell.font = Font(bold=True)
        cell.fill = PatternFill('solid', fgColor='F3F4F6')
    for i in range(max(len(GENDERS), len(positions), len(notes), len(themes))):
        reference.append([
            GENDERS[i] if i < len(GENDERS) else None,
            positions[i] if i < len(positions) else None,
            notes[i] if i < len(notes) else None,
            themes[i] if i < len(themes) else None,
        ])
    for letter, width in zip('ABCD', (18, 24, 14, 40)):
        reference.column_dimensions[letter].width = width

    # Évaluations
    sheet = workbook.create_sheet(TEMPLATE_SHEET)
    column = 1
    for title, color, columns in TEMPLATE_GROUPS:
        last = column + len(columns) - 1
        cell = sheet.cell(row=1, column=column, value=title)
        cell.font = Font(bold=True)
        cell.fill = PatternFill('solid', fgColor=color)
        cell.alignment = Alignment(horizontal='center', vertical='center')
        if last > column:
            sheet.merge_cells(start_row=1, start_column=column, end_row=1, end_column=last)
        column = last + 1

    for index, header in enumerate(TEMPLATE_HEADERS, start=1):
        cell = sheet.cell(row=2, column=index, value=header)
        cell.font = HEADER_FONT
        cell.fill = REQUIRED_FILL if header in TEMPLATE_REQUIRED else HEADER_FILL
        cell.alignment = Alignment(horizontal='center', vertical='center', wrap_text=True)
        sheet.column_dimensions[get_column_letter(index)].width = 16 if len(header) < 20 else 24
    sheet.row_dimensions[2].height = 30

    for index, value in enumerate(_template_example(), start=1):
        sheet.cell(row=3, column=index, value=value).font = Font(color='374151')

    # Validations, from the example row down
    last_row = 1000
    yes_no = DataValidation(type='list', formula1='"Oui,Non"', allow_blank=True)
    note = DataValidation(type='decimal', operator='between', formula1='0', formula2='5', allow_blank=True,
                          showErrorMessage=True, error='La note doit être entre 0 et 5')
    recommendation = DataValidation(type='decimal', operator='between', formula1='0', formula2='10',
                                    allow_blank=True, showErrorMessage=True,
                                    error='La recommandation doit être entre 0 et 10')
    year = DataValidation(type='whole', operator='between', formula1='1900', formula2='2100', allow_blank=True,
                          showErrorMessage=True, error='Entrez une année entre 1900 et 2100')
    for validation in (yes_no, note, recommendation, year):
        sheet.add_data_validation(validation)

    for index, (header, field, kind) in enumerate(TEMPLATE_COLUMNS, start=1):
        letter = get_column_letter(index)
        cells = f'{letter}3:{letter}{last_row}'
        if kind == 'gender':
            _add_list_validation(sheet, letter, f"'Référentiels'!$A$2:$A${len(GENDERS) + 1}", last_row)
        elif kind == 'position':
            _add_list_validation(sheet, letter, f"'Référentiels'!$B$2:$B${len(positions) + 1}", last_row)
        elif kind == 'theme' and themes:
            _add_list_validation(sheet, letter, f"'Référentiels'!$D$2:$D${len(themes) + 1}", last_row)
        elif kind in ('change', 'yesno'):
            yes_no.add(cells)
        elif kind == 'note':
            note.add(cells)
        elif kind == 'recommendation':
            recommendation.add(cells)
        elif kind == 'year':
            year.add(cells)
        elif kind == 'date':
            sheet.cell(row=3, column=index).number_format = 'yyyy-mm-dd'

    sheet.freeze_panes = 'A3'
    sheet.auto_filter.ref = f'A2:{get_column_letter(len(TEMPLATE_HEADERS))}2'

    workbook.active = workbook.sheetnames.index(TEMPLATE_SHEET)

    buffer = BytesIO()
    workbook.save(buffer)
    buffer.seek(0)
    filename = f"Modele_Evaluations_{datetime.now().strftime('%Y-%m-%d')}.xlsx"
    return buffer, filename
