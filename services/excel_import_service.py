#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Excel import service
Reads .xlsx (openpyxl) and .xls (xlrd) workbooks, detects what each sheet
holds from its name and headers, and maps columns by fuzzy header matching.
"""
import logging
import re
from datetime import date, datetime
from io import BytesIO
from typing import Dict, List, Optional

import xlrd
from openpyxl import load_workbook

from services.evaluation_service import (
    EvaluationService,
    FOLLOW_UP_CRITERIA,
    SCORE_FIELDS,
    SCORE_LABELS,
)
from services.excel_export_service import TEMPLATE_COLUMNS, TEMPLATE_SHEET
from services.staff_service import StaffService
from services.theme_service import ThemeService
from utils.dates import normalize_date
from utils.errors import AppError, FileOperationError, ValidationError
from utils.validators import EmailValidator, NumberValidator

logger = logging.getLogger('app')

# ========== Column mappers: field -> header aliases ==========

STAFF_COLUMN_MAPPER = {
    'id': ['id', 'identifiant', 'staff_id'],
    'matricule': ['matricule', 'number', 'num', 'employee_number'],
    'first_name': ['prénom', 'prenom', 'firstname', 'first_name', 'first name'],
    'last_name': ['nom', 'nom de famille', 'lastname', 'last_name', 'last name', 'surname', 'family_name'],
    'position': ['poste', 'position', 'job', 'title', 'fonction', 'role'],
    'email': ['email', 'e-mail', 'mail', 'adresse email', 'courriel'],
    'phone': ['téléphone', 'telephone', 'phone', 'tel', 'mobile', 'contact'],
    'establishment': ['établissement', 'etablissement', 'establishment', 'company', 'organisation', 'site'],
    'formation_year': ['année formation', 'annee formation', 'formation year', 'year', 'année', 'annee'],
    'created_at': ['date de création', 'date creation', 'created at', 'created_at', 'date'],
}

THEMES_COLUMN_MAPPER = {
    'id': ['id', 'identifiant', 'theme_id'],
    'name': ['nom', 'name', 'title', 'intitulé', 'intitule', 'thème', 'theme'],
    'description': ['description', 'desc', 'details', 'détails', 'contenu'],
    'created_at': ['date de création', 'date creation', 'created at', 'created_at', 'date'],
}

# Alternative names per score field; the form label comes first
SCORE_ALIASES = {
    'skills_acquisition': ['acquisition competences', 'skills acquisition'],
    'personal_development': ['developpement personnel', 'personal development'],
    'course_clarity': ['clarté cours', 'clarte cours', 'course clarity'],
    'theory_practice': ['theorie pratique', 'theory practice'],
    'syllabus_adequacy': ['adéquation programme', 'adequation programme', 'syllabus adequacy'],
    'practical_cases': ['practical cases'],
    'objectives_achieved': ['objectives achieved'],
    'adapted_knowledge': ['connaissances adaptees', 'adapted knowledge'],
    'pedagogical_support': ['support pedagogique', 'pedagogical support'],
    'techniques_used': ['techniques utilisees', 'techniques used'],
    'presentation': ['presentation'],
    'logistics_conditions': ['logistics conditions'],
    'rhythm': ['rythme', 'rhythm'],
    'punctuality': ['punctualite', 'punctuality'],
    'punctuality_assiduity': ['assiduité', 'assiduity', 'attendance'],
    'teamwork_sense': ['esprit équipe', 'esprit equipe', 'teamwork sense'],
    'motivation_enthusiasm': ['motivation', 'enthusiasm'],
    'communication_sociable': ['sociable communication'],
    'communication_general': ['communication generale', 'general communication'],
    'aptitude_change_ideas': ['aptitude échanges', 'aptitude echanges', 'aptitude exchanges'],
    'curiosity': ['curiosite', 'curiosity'],
    'initiative_spirit': ['initiative', 'initiative spirit'],
    'responsibility_sense': ['responsabilité', 'responsabilite', 'responsibility'],
    'critical_analysis': ['critical analysis'],
    'work_execution': ['exécution travail', 'execution travail', 'work execution'],
    'directives_comprehension': ['comprehension directives', 'directives comprehension'],
    'work_quality': ['qualité travail', 'qualite travail', 'work quality'],
    'subject_mastery': ['maîtrise sujet', 'maitrise sujet', 'subject mastery'],
}

EVALUATION_COLUMN_MAPPER = {
    'staff_id': ['staff id', 'staff_id', 'id personnel', 'employee_id'],
    'first_name': ['prénom', 'prenom', 'firstname', 'first_name', 'first name'],
    'last_name': ['nom', 'lastname', 'last_name', 'last name', 'surname'],
    'fill_date': ['date évaluation', 'date evaluation', 'fill date', 'date', 'evaluation_date'],
    'formation_theme': ['thème formation', 'theme formation', 'formation theme', 'theme', 'formation'],
}
for _field in SCORE_FIELDS:
    EVALUATION_COLUMN_MAPPER[_field] = [SCORE_LABELS[_field]] + SCORE_ALIASES.get(_field, [])
EVALUATION_COLUMN_MAPPER.update({
    'recommendation_score': ['score recommandation', 'recommendation score', 'recommandation'],
    'justification_observations': ['justifications', 'observations', 'comments', 'commentaires'],
    'status': ['statut', 'status', 'state', 'état', 'etat', 'completion'],
    'created_at': ['date de création', 'date creation', 'created at', 'created_at'],
})

FOLLOW_UP_COLUMN_MAPPER = {
    'staff_id': ['staff id', 'staff_id', 'id personnel', 'employee_id'],
    'first_name': ['prénom', 'prenom', 'firstname', 'first_name'],
    'last_name': ['nom', 'lastname', 'last_name', 'surname'],
    'fu_date': ['date suivi', 'follow up date', 'date'],
    'initial_evaluation_id': ['évaluation initiale', 'evaluation initiale', 'initial evaluation'],
    'formation_theme': ['thème formation', 'theme formation', 'formation theme'],
}
for _key, _label in FOLLOW_UP_CRITERIA:
    FOLLOW_UP_COLUMN_MAPPER[f'fu_{_key}'] = [_label]
    FOLLOW_UP_COLUMN_MAPPER[f'fu_{_key}_comment'] = [f'commentaire - {_label}', f'commentaire {_label}']
FOLLOW_UP_COLUMN_MAPPER.update({
    'fu_conclusion_staff': ['conclusion personnel', 'staff conclusion'],
    'fu_conclusion_director': ['conclusion directeur', 'director conclusion'],
})

SHEET_NAME_KEYWORDS = [
    ('staff', ['personnel', 'staff', 'employé', 'membre', 'team']),
    ('evaluations', ['évaluation', 'evaluation', 'assessment', 'score', 'note']),
    ('themes', ['thème', 'theme', 'formation', 'cours', 'sujet']),
]

STATUS_VALUES = {
    'completed': 'completed', 'complete': 'completed', 'termine': 'completed', 'terminee': 'completed',
    'finalise': 'completed', 'valide': 'completed',
    'draft': 'draft', 'brouillon': 'draft', 'en cours': 'draft',
    'incomplete': 'incomplete', 'incomplet': 'incomplete',
}

YES_VALUES = ('oui', 'yes', 'o', 'y', 'true', 'vrai', '1', 'x')

_ACCENTS = [
    ('àáâãäå', 'a'),
    ('èéêë', 'e'),
    ('ìíîï', 'i'),
    ('òóôõö', 'o'),
    ('ùúûü', 'u'),
    ('ç', 'c'),
]


# ========== Header matching ==========

def normalize_string(value) -> str:
    """Lower-case, strip accents, non-alphanumerics to single spaces"""
    text = str(value if value is not None else '').lower().strip()
    for accented, plain in _ACCENTS:
        text = re.sub(f'[{accented}]', plain, text)
    text = re.sub(r'[^a-z0-9]', ' ', text)
    return re.sub(r'\s+', ' ', text).strip()


def map_columns(headers: List, mapper: Dict[str, List[str]]) -> Dict[str, int]:
    """
    Map each field to a header index

    Exact matches are resolved first; then a field takes the first unclaimed
    header that contains one of its aliases or is contained in one. A column
    is claimed by at most one field and empty headers never match.
    """
    normalized = [normalize_string(h) for h in headers]
    aliases = {field: [normalize_string(a) for a in names] for field, names in mapper.items()}
    column_map: Dict[str, int] = {}
    claimed = set()

    for field, names in aliases.items():
        for alias in names:
            index = next(
                (i for i, h in enumerate(normalized) if h and i not in claimed and h == alias),
                None
            )
            if index is not None:
                column_map[field] = index
                claimed.add(index)
                break

    for field, names in aliases.items():
        if field in column_map:
            continue
        for i, header in enumerate(normalized):
            if not header or i in claimed:
                continue
            if any(alias and (alias in header or header in alias) for alias in names):
                column_map[field] = i
                claimed.add(i)
                break

    return column_map


def detect_sheet_type(sheet_name: str) -> str:
    name = (sheet_name or '').lower().strip()
    for sheet_type, keywords in SHEET_NAME_KEYWORDS:
        if any(keyword in name for keyword in keywords):
            return sheet_type
    return 'unknown'


def _alias_hits(normalized_headers: List[str], mapper: Dict[str, List[str]]) -> int:
    hits = 0
    for names in mapper.values():
        for alias in names:
            alias = normalize_string(alias)
            if alias and any(alias in h for h in normalized_headers):
                hits += 1
    return hits


def detect_content_type(headers: List) -> str:
    """
    Guess the sheet type from its headers

    Counts the aliases of each mapper found in some header. Ties go to staff,
    then evaluations, then themes; follow-ups must strictly win.
    """
    normalized = [normalize_string(h) for h in headers or []]
    if not any(normalized):
        return 'unknown'

    staff = _alias_hits(normalized, STAFF_COLUMN_MAPPER)
    evaluations = _alias_hits(normalized, EVALUATION_COLUMN_MAPPER)
    themes = _alias_hits(normalized, THEMES_COLUMN_MAPPER)
    follow_ups = _alias_hits(normalized, FOLLOW_UP_COLUMN_MAPPER)

    if follow_ups > max(staff, evaluations, themes):
        return 'follow_ups'
    if staff >= evaluations and staff >= themes and staff > 0:
        return 'staff'
    if evaluations >= themes and evaluations > 0:
        return 'evaluations'
    if themes > 0:
        return 'themes'
    return 'unknown'


# ========== Workbook reading ==========

def _cell_value(value):
    if isinstance(value, float) and value == int(value):
        return int(value)
    if isinstance(value, datetime):
        return value.strftime('%Y-%m-%d %H:%M:%S') if (value.hour or value.minute) else value.strftime('%Y-%m-%d')
    if isinstance(value, date):
        return value.strftime('%Y-%m-%d')
    if isinstance(value, str):
        return value.strip()
    return value


def _trim_row(row) -> list:
    values = [_cell_value(v) for v in row]
    while values and values[-1] in (None, ''):
        values.pop()
    return values


def read_workbook(file_obj, filename: Optional[str] = None) -> List[tuple]:
    """
    Read every sheet of an .xlsx or .xls workbook

    Returns:
        list: (sheet name, rows) with trailing empty cells trimmed
    """
    content = file_obj.read() if hasattr(file_obj, 'read') else file_obj
    name = (filename or getattr(file_obj, 'filename', '') or '').lower()
    is_xls = name.endswith('.xls') or (not name.endswith('.xlsx') and not content[:2] == b'PK')

    sheets = []
    try:
        if is_xls:
            book = xlrd.open_workbook(file_contents=content, formatting_info=False)
            for sheet in book.sheets():
                rows = []
                for r in range(sheet.nrows):
                    row = []
                    for c in range(sheet.ncols):
                        value = sheet.cell_value(r, c)
                        if sheet.cell_type(r, c) == xlrd.XL_CELL_DATE:
                            value = xlrd.xldate_as_datetime(value, book.datemode)
                        row.append(value)
                    rows.append(_trim_row(row))
                sheets.append((sheet.name, rows))
        else:
            book = load_workbook(BytesIO(content), data_only=True)
            for sheet in book.worksheets:
                sheets.append((sheet.title, [_trim_row(row) for row in sheet.iter_rows(values_only=True)]))
    except Exception as e:
        logger.error(f"Unreadable workbook {name or '<upload>'}: {e}")
        raise FileOperationError(f"Impossible de lire le fichier Excel: {e}", status_code=400)

    return sheets


# ========== Import result ==========

class ImportResult:
    """Parsed rows plus the diagnostics of one workbook import"""

    def __init__(self):
        self.data = {'staff': [], 'evaluations': [], 'themes': []}
        self.errors: List[str] = []
        self.warnings: List[str] = []
        self.summary = {
            'staff_imported': 0,
            'evaluations_imported': 0,
            'follow_ups_imported': 0,
            'themes_imported': 0,
            'duplicates_ignored': 0,
            'evaluations_linked': 0,
            'sheets_processed': 0,
            'unrecognized_sheets': [],
        }

    @property
    def total_imported(self) -> int:
        return (self.summary['staff_imported'] + self.summary['evaluations_imported']
                + self.summary['follow_ups_imported'] + self.summary['themes_imported'])

    @property
    def success(self) -> bool:
        return not self.errors or self.total_imported > 0

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'data': self.data,
            'errors': self.errors,
            'warnings': self.warnings,
            'summary': self.summary,
        }


# ========== Row parsing ==========

def _getter(row, column_map):
    def get(field, default=None):
        index = column_map.get(field)
        if index is None or index >= len(row):
            return default
        value = row[index]
        return default if value in (None, '') else value
    return get


def _text(value) -> str:
    return '' if value is None else str(value).strip()


def _score(value):
    """Score clamped to 1-5, 3 when missing or not numeric"""
    number = NumberValidator.clamp(value, 0, 5)
    if not number:
        return 3
    number = max(1.0, number)
    return int(number) if number.is_integer() else number


def _status(value) -> str:
    return STATUS_VALUES.get(normalize_string(value), 'completed') if value else 'completed'


def _parse_staff_row(row, column_map) -> dict:
    get = _getter(row, column_map)
    first_name = _text(get('first_name'))
    last_name = _text(get('last_name'))
    if not first_name or not last_name:
        raise ValueError(f"Prénom et nom requis (trouvé: '{first_name}', '{last_name}')")

    return {
        'source_id': get('id'),
        'matricule': _text(get('matricule')) or None,
        'first_name': first_name,
        'last_name': last_name,
        'position': _text(get('position')),
        'email': EmailValidator.normalize(get('email')),
        'phone': _text(get('phone')),
        'establishment': _text(get('establishment')),
        'formation_year': _text(get('formation_year')) or str(date.today().year),
        'created_at': _text(get('created_at')) or None,
    }


def _parse_evaluation_row(row, column_map) -> dict:
    get = _getter(row, column_map)
    first_name = _text(get('first_name'))
    last_name = _text(get('last_name'))
    if not first_name or not last_name:
        raise ValueError(f"Prénom et nom requis pour l'évaluation (trouvé: '{first_name}', '{last_name}')")

    evaluation = {
        'staff_id': get('staff_id'),
        'first_name': first_name,
        'last_name': last_name,
        'fill_date': normalize_date(get('fill_date')) or date.today().strftime('%Y-%m-%d'),
        'formation_theme': _text(get('formation_theme')) or 'Non spécifié',
        'evaluation_type': 'initial',
        'status': _status(get('status')),
        'justification_observations': _text(get('justification_observations')),
        'created_at': _text(get('created_at')) or None,
    }
    for field in SCORE_FIELDS:
        evaluation[field] = _score(get(field))

    recommendation = NumberValidator.clamp(get('recommendation_score'), 0, 10)
    if recommendation is not None:
        evaluation['recommendation_score'] = int(recommendation) if recommendation.is_integer() else recommendation
    return evaluation


def _parse_follow_up_row(row, column_map) -> dict:
    get = _getter(row, column_map)
    first_name = _text(get('first_name'))
    last_name = _text(get('last_name'))
    if not first_name or not last_name:
        raise ValueError(f"Prénom et nom requis pour le suivi (trouvé: '{first_name}', '{last_name}')")

    follow_up = {
        'staff_id': get('staff_id'),
        'first_name': first_name,
        'last_name': last_name,
        'fu_date': normalize_date(get('fu_date')),
        'initial_evaluation_id': get('initial_evaluation_id'),
        'formation_theme': _text(get('formation_theme')),
        'evaluation_type': 'followUp',
        'status': 'completed',
        'fu_conclusion_staff': _text(get('fu_conclusion_staff')),
        'fu_conclusion_director': _text(get('fu_conclusion_director')),
    }
    for key, _ in FOLLOW_UP_CRITERIA:
        value = NumberValidator.clamp(get(f'fu_{key}'), 0, 5)
        follow_up[f'fu_{key}'] = (int(value) if value.is_integer() else value) if value is not None else None
        follow_up[f'fu_{key}_comment'] = _text(get(f'fu_{key}_comment'))
    return follow_up


def _data_rows(rows):
    for number, row in enumerate(rows[1:], start=2):
        if not row or all(v in (None, '') for v in row):
            continue
        yield number, row


def _import_staff_sheet(rows, result: ImportResult, sheet_name: str) -> None:
    column_map = map_columns(rows[0], STAFF_COLUMN_MAPPER)
    missing = [f for f in ('first_name', 'last_name') if f not in column_map]
    if missing:
        result.errors.append(
            f"Feuille '{sheet_name}': Colonnes manquantes pour le personnel: {', '.join(missing)}"
        )
        return

    seen_emails = {s['email'] for s in result.data['staff'] if s.get('email')}
    for number, row in _data_rows(rows):
        try:
            staff = _parse_staff_row(row, column_map)
        except ValueError as e:
            result.errors.append(f"Feuille '{sheet_name}' ligne {number}: {e}")
            continue

        email = staff.get('email')
        if email and (email in seen_emails or StaffService.get_staff_by_email(email)):
            result.summary['duplicates_ignored'] += 1
            result.warnings.append(f"Personnel ligne {number}: Email '{email}' déjà existant, ignoré")
            continue

        result.data['staff'].append(staff)
        if email:
            seen_emails.add(email)
        result.summary['staff_imported'] += 1


def _import_evaluation_sheet(rows, result: ImportResult, sheet_name: str, follow_ups: bool = False) -> None:
    mapper = FOLLOW_UP_COLUMN_MAPPER if follow_ups else EVALUATION_COLUMN_MAPPER
    required = ('first_name', 'last_name') if follow_ups else ('first_name', 'last_name', 'formation_theme')
    column_map = map_columns(rows[0], mapper)
    missing = [f for f in required if f not in column_map]
    if missing:
        result.warnings.append(
            f"Feuille '{sheet_name}': Colonnes manquantes pour les évaluations: {', '.join(missing)} - Import partiel"
        )

    parse = _parse_follow_up_row if follow_ups else _parse_evaluation_row
    counter = 'follow_ups_imported' if follow_ups else 'evaluations_imported'
    for number, row in _data_rows(rows):
        try:
            result.data['evaluations'].append(parse(row, column_map))
            result.summary[counter] += 1
        except ValueError as e:
            result.errors.append(f"Feuille '{sheet_name}' ligne {number}: {e}")


def _import_theme_sheet(rows, result: ImportResult, sheet_name: str) -> None:
    column_map = map_columns(rows[0], THEMES_COLUMN_MAPPER)
    if 'name' not in column_map:
        result.errors.append(f"Feuille '{sheet_name}': Colonnes manquantes pour les thèmes: name")
        return

    seen = {t['name'].lower() for t in result.data['themes']}
    for number, row in _data_rows(rows):
        get = _getter(row, column_map)
        name = _text(get('name'))
        if not name:
            result.errors.append(f"Feuille '{sheet_name}' ligne {number}: Nom du thème requis")
            continue
        if name.lower() in seen or ThemeService.find_by_name(name):
            result.summary['duplicates_ignored'] += 1
            result.warnings.append(f"Thème ligne {number}: '{name}' déjà existant, ignoré")
            continue
        result.data['themes'].append({
            'name': name,
            'description': _text(get('description')),
            'created_at': _text(get('created_at')) or None,
        })
        seen.add(name.lower())
        result.summary['themes_imported'] += 1


def _link_evaluations(result: ImportResult) -> None:
    """Link evaluations without staff_id to imported staff by first+last name"""
    by_name = {
        (s['first_name'].lower(), s['last_name'].lower()): index
        for index, s in enumerate(result.data['staff'])
    }
    for evaluation in result.data['evaluations']:
        if evaluation.get('staff_id'):
            continue
        index = by_name.get((evaluation['first_name'].lower(), evaluation['last_name'].lower()))
        if index is not None:
            evaluation['staff_ref'] = index
            result.summary['evaluations_linked'] += 1


def import_workbook(file_obj, filename: Optional[str] = None) -> ImportResult:
    """
    Parse a workbook into staff, evaluations and themes

    Nothing is written to the database; see save_imported_data().
    """
    result = ImportResult()
    sheets = read_workbook(file_obj, filename)

    for sheet_name, rows in sheets:
        result.summary['sheets_processed'] += 1

        if len(rows) < 2:
            result.warnings.append(f"Feuille '{sheet_name}' vide ou sans données")
            continue
        if not any(v not in (None, '') for v in rows[0]):
            result.warnings.append(f"Feuille '{sheet_name}' sans en-têtes")
            continue

        by_name = detect_sheet_type(sheet_name)
        by_content = detect_content_type(rows[0])
        sheet_type = by_content if by_content != 'unknown' else by_name
        logger.info(f"Sheet '{sheet_name}' detected as {sheet_type} (name: {by_name}, content: {by_content})")

        if sheet_type == 'staff':
            _import_staff_sheet(rows, result, sheet_name)
        elif sheet_type == 'evaluations':
            _import_evaluation_sheet(rows, result, sheet_name)
        elif sheet_type == 'follow_ups':
            _import_evaluation_sheet(rows, result, sheet_name, follow_ups=True)
        elif sheet_type == 'themes':
            _import_theme_sheet(rows, result, sheet_name)
        else:
            result.summary['unrecognized_sheets'].append(sheet_name)
            result.warnings.append(f"Feuille '{sheet_name}' non reconnue - contenu ignoré")

    if result.total_imported == 0 and result.summary['sheets_processed'] > 0:
        result.warnings.append("Aucune donnée n'a pu être importée des feuilles trouvées")
    if result.summary['duplicates_ignored']:
        result.warnings.append(f"{result.summary['duplicates_ignored']} doublon(s) ignoré(s)")

    _link_evaluations(result)

    logger.info(
        f"Workbook parsed: {result.summary['staff_imported']} staff, "
        f"{result.summary['evaluations_imported']} evaluation(s), "
        f"{result.summary['follow_ups_imported']} follow-up(s), "
        f"{result.summary['themes_imported']} theme(s), {len(result.errors)} error(s)"
    )
    return result


# ========== Persistence ==========

def _run(queue, op_type, fn, *args, **kwargs):
    if queue is None:
        return fn(*args, **kwargs)
    return queue.run(op_type, fn, *args, **kwargs)


def _as_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _resolve_staff_id(evaluation: dict, staff_refs: List[Optional[int]], source_ids: Dict) -> Optional[int]:
    ref = evaluation.get('staff_ref')
    if ref is not None and ref < len(staff_refs) and staff_refs[ref]:
        return staff_refs[ref]

    source = _as_int(evaluation.get('staff_id'))
    if source is not None:
        if source in source_ids:
            return source_ids[source]
        existing = StaffService.find_staff(source)
        if existing and existing['first_name'].lower() == evaluation['first_name'].lower() \
                and existing['last_name'].lower() == evaluation['last_name'].lower():
            return existing['id']

    match = StaffService.find_by_name(evaluation['first_name'], evaluation['last_name'])
    return match['id'] if match else None


def _initial_evaluation(evaluation_id, staff_id) -> Optional[dict]:
    """The initial evaluation a follow-up points at, when it belongs to the same staff"""
    if evaluation_id is None or staff_id is None:
        return None
    for evaluation in EvaluationService.list_for_staff(staff_id):
        if evaluation['id'] == evaluation_id and evaluation['evaluation_type'] == 'initial':
            return evaluation
    return None


def save_imported_data(result: ImportResult, queue=None) -> dict:
    """
    Persist a parsed import through the operation queue

    Staff first, then themes, then evaluations so links resolve against
    the freshly created staff. A rejected record is counted in 'failed'
    and reported in 'errors'; the rest of the import continues.

    Returns:
        dict: created counts
    """
    counts = {
        'staff': 0, 'themes': 0, 'evaluations': 0, 'unlinked_evaluations': 0,
        'skipped': 0, 'failed': 0, 'errors': [],
    }

    def failed(label, error):
        counts['failed'] += 1
        counts['errors'].append(f"{label}: {error.message}")
        logger.warning(f"Import of {label} rejected: {error.message}")

    staff_refs: List[Optional[int]] = []
    source_ids: Dict[int, int] = {}
    for staff in result.data['staff']:
        payload = {k: v for k, v in staff.items() if k != 'source_id' and v is not None}
        try:
            record, created = _run(queue, 'CREATE_staff', StaffService.create_staff, payload, strict=False)
        except AppError as e:
            staff_refs.append(None)
            failed(f"{staff['first_name']} {staff['last_name']}", e)
            continue
        staff_refs.append(record['id'])
        source = _as_int(staff.get('source_id'))
        if source is not None:
            source_ids[source] = record['id']
        counts['staff' if created else 'skipped'] += 1

    for theme in result.data['themes']:
        if ThemeService.find_by_name(theme['name']):
            counts['skipped'] += 1
            continue
        payload = {k: v for k, v in theme.items() if v is not None}
        try:
            _run(queue, 'CREATE_theme', ThemeService.create_theme, payload)
        except AppError as e:
            failed(theme['name'], e)
            continue
        counts['themes'] += 1

    for evaluation in result.data['evaluations']:
        payload = {k: v for k, v in evaluation.items() if k != 'staff_ref' and v is not None}
        payload['staff_id'] = _resolve_staff_id(evaluation, staff_refs, source_ids)

        if payload['evaluation_type'] == 'followUp':
            initial_id = _as_int(payload.get('initial_evaluation_id'))
            initial = _initial_evaluation(initial_id, payload['staff_id'])
            payload['initial_evaluation_id'] = initial['id'] if initial else None
            if not payload.get('formation_theme'):
                payload['formation_theme'] = initial['formation_theme'] if initial else 'Non spécifié'

        try:
            _run(queue, 'CREATE_evaluation', EvaluationService.create_evaluation, payload, require_staff=False)
        except AppError as e:
            failed(f"évaluation {evaluation['first_name']} {evaluation['last_name']}", e)
            continue
        if payload['staff_id'] is None:
            counts['unlinked_evaluations'] += 1
        counts['evaluations'] += 1

    logger.info(
        f"Import saved: {counts['staff']} staff, {counts['themes']} theme(s), "
        f"{counts['evaluations']} evaluation(s), {counts['failed']} failed"
    )
    return counts


# ========== Entry template ==========

def _find_template_header(rows) -> Optional[int]:
    expected = {normalize_string('Prénom'), normalize_string('Email')}
    for index, row in enumerate(rows[:5]):
        if expected <= {normalize_string(v) for v in row}:
            return index
    return None


def parse_template_workbook(file_obj, filename: Optional[str] = None) -> dict:
    """
    Read the filled 'Évaluations' sheet of the entry template

    Returns:
        dict: {rows: [...valid rows...], errors: [{row, errors}], total_rows}
    """
    sheets = read_workbook(file_obj, filename)
    target = next((rows for name, rows in sheets if normalize_string(name) == normalize_string(TEMPLATE_SHEET)), None)
    if target is None:
        target = next((rows for _, rows in sheets if _find_template_header(rows) is not None), None)
    if target is None:
        raise ValidationError("Feuille « Évaluations » introuvable dans le modèle")

    header_index = _find_template_header(target)
    if header_index is None:
        raise ValidationError("Ligne d'en-tête du modèle introuvable")

    positions = {normalize_string(h): i for i, h in enumerate(target[header_index]) if normalize_string(h)}

    parsed, row_errors, total = [], [], 0
    for number, row in enumerate(target[header_index + 1:], start=header_index + 2):
        if not row or all(v in (None, '') for v in row):
            continue
        total += 1

        record = {'observed_changes': [], 'requested_trainings': []}
        errors = []
        for header, field, kind in TEMPLATE_COLUMNS:
            index = positions.get(normalize_string(header))
            value = row[index] if index is not None and index < len(row) else None
            if value in (None, ''):
                continue

            if kind in ('note', 'recommendation'):
                high = 10 if kind == 'recommendation' else 5
                if not NumberValidator.in_range(value, 0, high):
                    errors.append(f"La note pour « {header} » doit être entre 0 et {high}")
                    continue
                number_value = float(value)
                record[field] = int(number_value) if number_value.is_integer() else number_value
            elif kind == 'change':
                if normalize_string(value) in YES_VALUES:
                    record['observed_changes'].append(field)
            elif kind == 'yesno':
                record[field] = normalize_string(value) in YES_VALUES
            elif kind == 'wish':
                record['requested_trainings'].append(_text(value))
            elif kind == 'date':
                record[field] = normalize_date(value) or _text(value)
            else:
                record[field] = _text(value)

        if not record.get('first_name'):
            errors.append('Le prénom est obligatoire')
        if not record.get('last_name'):
            errors.append('Le nom est obligatoire')
        if not record.get('email'):
            errors.append("L'email est obligatoire")
        elif not EmailValidator.is_valid(record['email']):
            errors.append('Format email invalide')
        if not record.get('formation_theme'):
            errors.append('Le nom de la formation est obligatoire')

        if errors:
            row_errors.append({'row': number, 'errors': errors})
        else:
            record['row'] = number
            parsed.append(record)

    return {'rows': parsed, 'errors': row_errors, 'total_rows': total}


def _create_template_row(row: dict) -> tuple:
    staff_fields = ('matricule', 'first_name', 'last_name', 'position', 'email',
                    'phone', 'establishment', 'formation_year')
    staff, created = StaffService.create_staff(
        {k: row[k] for k in staff_fields if row.get(k)}, strict=False
    )

    evaluation = {k: v for k, v in row.items() if k not in ('row', 'matricule', 'formation_year')}
    evaluation.update({
        'staff_id': staff['id'],
        'evaluation_type': 'initial',
        'status': 'completed',
    })
    evaluation.setdefault('fill_date', date.today().strftime('%Y-%m-%d'))
    EvaluationService.create_evaluation(evaluation)
    return staff['id'], created


def import_template_rows(rows: List[dict], queue=None) -> dict:
    """Create staff (deduplicated by email) and completed initial evaluations"""
    summary = {'staff_created': 0, 'staff_existing': 0, 'evaluations_created': 0}
    for row in rows:
        _, created = _run(queue, 'CREATE_template_row', _create_template_row, row)
        summary['staff_created' if created else 'staff_existing'] += 1
        summary['evaluations_created'] += 1

    logger.info(f"Template import: {summary}")
    return summary
