#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Evaluation service
Initial and 6-month follow-up evaluations, draft lifecycle (draft -> completed)
"""
import copy
import json
import logging
import math
import random
import string
from typing import Dict, List, Optional

from models.database import get_db
from services.sync_events import event_bus, read_cache
from utils.dates import epoch_ms, now_str, parse_timestamp
from utils.errors import ResourceNotFoundError, ValidationError
from utils.logger import AuditLogger
from utils.validators import EmailValidator, NumberValidator

logger = logging.getLogger('app')


# ==================== Field definitions ====================

SCORE_SECTIONS = [
    ('content', 'Contenu et pédagogie', [
        ('skills_acquisition', 'Acquisition compétences'),
        ('personal_development', 'Développement personnel'),
        ('course_clarity', 'Clarté du cours'),
        ('theory_practice', 'Théorie/Pratique'),
        ('syllabus_adequacy', 'Adéquation syllabus/besoins'),
        ('practical_cases', 'Cas pratiques'),
        ('objectives_achieved', 'Objectifs atteints'),
        ('adapted_knowledge', 'Connaissances adaptées'),
    ]),
    ('methods', 'Méthodes et supports', [
        ('pedagogical_support', 'Support pédagogique'),
        ('techniques_used', 'Techniques utilisées'),
        ('presentation', 'Présentation'),
    ]),
    ('organization', 'Organisation et logistique', [
        ('logistics_conditions', 'Conditions logistiques'),
        ('rhythm', 'Rythme'),
        ('punctuality', 'Ponctualité'),
        ('punctuality_assiduity', 'Ponctualité & Assiduité'),
    ]),
    ('behavior', 'Comportement et collaboration', [
        ('teamwork_sense', 'Travail en équipe'),
        ('motivation_enthusiasm', 'Motivation/Enthousiasme'),
        ('communication_sociable', 'Communication sociable'),
        ('communication_general', 'Communication générale'),
        ('aptitude_change_ideas', 'Aptitude à changer les idées'),
        ('curiosity', 'Curiosité'),
        ('initiative_spirit', "Esprit d'initiative"),
        ('responsibility_sense', 'Sens de responsabilité'),
    ]),
    ('cognitive', 'Compétences cognitives', [
        ('critical_analysis', 'Analyse critique'),
        ('work_execution', 'Exécution du travail'),
        ('directives_comprehension', 'Compréhension directives'),
        ('work_quality', 'Qualité du travail'),
        ('subject_mastery', 'Maîtrise du sujet'),
    ]),
]

SCORE_FIELDS = [field for _, _, fields in SCORE_SECTIONS for field, _ in fields]
SCORE_LABELS = {field: label for _, _, fields in SCORE_SECTIONS for field, label in fields}
SECTION_FIELDS = {key: [field for field, _ in fields] for key, _, fields in SCORE_SECTIONS}

FOLLOW_UP_CRITERIA = [
    ('behavior_general', 'Comportement général'),
    ('team_integration', "Intégration dans l'équipe"),
    ('motivation_tenacity', 'Motivation – Ténacité au travail'),
    ('communication', 'Communication et relationnel'),
    ('curiosity', 'Curiosité'),
    ('initiative_creativity', 'Initiative – Imagination – Créativité'),
    ('adapted_knowledge', 'Connaissances et pratiques adaptées'),
    ('critical_analysis', 'Esprit critique et analyse'),
    ('technical_mastery', 'Maîtrise des compétences techniques et opérationnelles'),
    ('hierarchy_respect', 'Respect de la hiérarchie et instructions'),
    ('work_quality', 'Qualité du travail'),
    ('efficiency', 'Efficacité'),
    ('productivity', 'Productivité'),
    ('values_respect', 'Respect des valeurs du Centre'),
    ('commitment', 'Engagement envers le Centre'),
]

FOLLOW_UP_FIELDS = [f"fu_{key}" for key, _ in FOLLOW_UP_CRITERIA]
FOLLOW_UP_COMMENT_FIELDS = [f"fu_{key}_comment" for key, _ in FOLLOW_UP_CRITERIA]

APPRECIATION_LABELS = {
    1: 'Très insuffisant',
    2: 'Insuffisant',
    3: 'Moyen',
    4: 'Bon',
    5: 'Excellent',
}

OBSERVED_CHANGE_OPTIONS = [
    'Compétences techniques',
    'Communication équipe',
    'Productivité',
    'Leadership',
    'Innovation',
    'Gestion du temps',
]

EVALUATION_TYPES = ('initial', 'followUp')
STATUSES = ('draft', 'incomplete', 'completed')

# Indexed columns of the evaluations table
COLUMN_FIELDS = [
    'staff_id',
    'formation_theme',
    'evaluation_type',
    'initial_evaluation_id',
    'status',
    'draft_key',
    'draft_group_key',
    'first_name',
    'last_name',
    'email',
    'fill_date',
    'fu_date',
    'completed_at',
    'created_at',
    'updated_at',
]

TEXT_FIELDS = [
    'gender',
    'phone',
    'position',
    'establishment',
    'training_center',
    'trainers',
    'start_date',
    'end_date',
    'objectives',
    'modules',
    'expected_results',
    'improvement_suggestions',
    'post_formation_actions',
    'actions_satisfaction',
    'additional_training_details',
    'no_additional_training_reason',
    'justification_observations',
    'fu_appreciation_label',
    'fu_conclusion_staff',
    'fu_conclusion_director',
] + FOLLOW_UP_COMMENT_FIELDS

LIST_FIELDS = ['observed_changes', 'requested_trainings']
BOOL_FIELDS = ['needs_additional_training']

# field -> (min, max)
NUMERIC_RANGES = dict(
    [(field, (0, 5)) for field in SCORE_FIELDS]
    + [(field, (0, 5)) for field in FOLLOW_UP_FIELDS]
    + [('recommendation_score', (0, 10)), ('fu_total60', (0, 60)), ('fu_appreciation_code', (1, 5))]
)

FORM_FIELDS = TEXT_FIELDS + LIST_FIELDS + BOOL_FIELDS + list(NUMERIC_RANGES)

# Identity snapshot copied from the staff record when missing
STAFF_SNAPSHOT_FIELDS = ['first_name', 'last_name', 'email', 'phone', 'position', 'establishment']


# ==================== Helpers ====================

def round_half_up(value: float) -> int:
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


def follow_up_summary(record: dict) -> Optional[dict]:
    """
    Total /60 and appreciation derived from the 15 follow-up criteria

    Missing criteria count as 0. Returns None when no criterion is filled.
    """
    values = [record.get(field) for field in FOLLOW_UP_FIELDS]
    if all(v is None for v in values):
        return None

    total = sum(v or 0 for v in values)
    average = total / len(FOLLOW_UP_FIELDS)
    code = max(1, min(5, round_half_up(average)))
    return {
        'fu_total60': round_half_up(total / (len(FOLLOW_UP_FIELDS) * 5) * 60),
        'fu_appreciation_code': code,
        'fu_appreciation_label': APPRECIATION_LABELS[code],
    }


def score_values(evaluation: dict, fields=None) -> List[float]:
    """Numeric values > 0 among the given score fields"""
    values = []
    for field in fields or SCORE_FIELDS:
        value = evaluation.get(field)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
            values.append(float(value))
    return values


def generate_draft_key() -> str:
    suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"draft_{epoch_ms()}_{suffix}"


def person_key(record: dict) -> str:
    """Email when known, otherwise first_last, lower-cased"""
    email = EmailValidator.normalize(record.get('email'))
    if email:
        return email
    first = (record.get('first_name') or '').strip()
    last = (record.get('last_name') or '').strip()
    return f"{first}_{last}".lower().replace(' ', '_')


def draft_group_key(record: dict) -> str:
    """<person>__<theme>__<type>[_<initial id>], lower-case, spaces as '_'"""
    theme = (record.get('formation_theme') or '').strip() or 'formation_generale'
    evaluation_type = record.get('evaluation_type') or 'initial'
    key = f"{person_key(record)}__{theme}__{evaluation_type}"
    if evaluation_type == 'followUp' and record.get('initial_evaluation_id'):
        key += f"_{record['initial_evaluation_id']}"
    return key.lower().replace(' ', '_')


def draft_version(created_at, last_modified) -> str:
    """v1.0 for untouched drafts, else v<days+1>.<hours mod 24>"""
    created = parse_timestamp(created_at)
    modified = parse_timestamp(last_modified)
    if created is None or modified is None or modified <= created:
        return 'v1.0'
    # partial hours round up
    hours = math.ceil((modified - created).total_seconds() / 3600)
    return f"v{hours // 24 + 1}.{hours % 24}"


def _coerce_number(value):
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        return int(value)
    try:
        number = float(str(value).replace(',', '.'))
    except ValueError:
        return value  # left for range validation to reject
    return int(number) if number.is_integer() else number


def _coerce_bool(value):
    if isinstance(value, bool) or value is None:
        return value
    return str(value).strip().lower() in ('1', 'true', 'oui', 'yes', 'o', 'y')


def _coerce_list(value):
    if value is None or value == '':
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [part.strip() for part in str(value).split(',') if part.strip()]


def _coerce_id(value):
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Identifiant invalide: {value}")


def normalize_evaluation(data: dict, existing: Optional[dict] = None) -> dict:
    """
    Merge data over existing and normalize types

    Unknown keys are dropped. Raises ValidationError on out-of-range values.
    """
    record = dict(existing or {})
    for key, value in data.items():
        if key in COLUMN_FIELDS or key in FORM_FIELDS:
            record[key] = value

    evaluation_type = record.get('evaluation_type')
    record['evaluation_type'] = 'followUp' if evaluation_type in ('followUp', 'follow_up', 'followup') else 'initial'

    record['staff_id'] = _coerce_id(record.get('staff_id'))
    if record['evaluation_type'] == 'followUp':
        record['initial_evaluation_id'] = _coerce_id(record.get('initial_evaluation_id'))
    else:
        record['initial_evaluation_id'] = None

    record['status'] = record.get('status') or 'completed'
    if record['status'] not in STATUSES:
        raise ValidationError(
            f"Statut invalide: {record['status']}",
            payload={'fields': {'status': f"valeurs possibles: {', '.join(STATUSES)}"}}
        )

    if 'email' in record:
        record['email'] = EmailValidator.normalize(record.get('email'))
    if record.get('formation_theme') is not None:
        record['formation_theme'] = str(record['formation_theme']).strip()

    errors = {}
    for field, (low, high) in NUMERIC_RANGES.items():
        if field not in record:
            continue
        value = _coerce_number(record[field])
        if value is not None and not NumberValidator.in_range(value, low, high):
            errors[field] = f"doit être compris entre {low} et {high}"
        record[field] = value
    if errors:
        raise ValidationError("Notes hors limites", payload={'fields': errors})

    for field in LIST_FIELDS:
        if field in record:
            record[field] = _coerce_list(record[field])
    for field in BOOL_FIELDS:
        if field in record:
            record[field] = _coerce_bool(record[field])

    if record['evaluation_type'] == 'followUp':
        summary = follow_up_summary(record)
        if summary:
            record.update(summary)

    return record


def _require(record: dict, require_staff: bool = True) -> None:
    fields = {}
    if require_staff and not record.get('staff_id'):
        fields['staff_id'] = 'obligatoire'
    if not record.get('formation_theme'):
        fields['formation_theme'] = 'obligatoire'
    if fields:
        raise ValidationError("Champs obligatoires manquants", payload={'fields': fields})


# ==================== Service ====================

class EvaluationService:
    """Evaluation records: indexed columns plus a JSON form body"""

    @staticmethod
    def _from_row(row) -> dict:
        record = json.loads(row['form_data'] or '{}')
        for field in ('id',) + tuple(COLUMN_FIELDS):
            record[field] = row[field]
        return record

    @staticmethod
    def _split(record: dict):
        columns = {field: record.get(field) for field in COLUMN_FIELDS}
        form = {field: record[field] for field in FORM_FIELDS if field in record}
        return columns, json.dumps(form, ensure_ascii=False)

    @classmethod
    def _fill_from_staff(cls, record: dict) -> None:
        from services.staff_service import StaffService

        if not record.get('staff_id'):
            return
        staff = StaffService.get_staff(record['staff_id'])
        for field in STAFF_SNAPSHOT_FIELDS:
            if not record.get(field):
                record[field] = staff.get(field)

    @classmethod
    def _insert(cls, record: dict) -> dict:
        now = now_str()
        record['created_at'] = record.get('created_at') or now
        record['updated_at'] = record.get('updated_at') or None
        if record['status'] == 'completed' and not record.get('completed_at'):
            record['completed_at'] = now

        columns, form_json = cls._split(record)
        names = list(columns)
        conn = get_db()
        cur = conn.cursor()
        cur.execute(
            f"INSERT INTO evaluations({', '.join(names)}, form_data) "
            f"VALUES({', '.join('?' for _ in names)}, ?)",
            [columns[n] for n in names] + [form_json]
        )
        conn.commit()
        return cls.get_evaluation(cur.lastrowid)

    @classmethod
    def _write(cls, evaluation_id, record: dict) -> dict:
        record['updated_at'] = now_str()
        columns, form_json = cls._split(record)
        assignments = ', '.join(f"{name} = ?" for name in columns)
        conn = get_db()
        conn.execute(
            f"UPDATE evaluations SET {assignments}, form_data = ? WHERE id = ?",
            list(columns.values()) + [form_json, evaluation_id]
        )
        conn.commit()
        return cls.get_evaluation(evaluation_id)

    # ---------- Queries ----------

    @classmethod
    def list_evaluations(cls, status=None, evaluation_type=None, staff_id=None, theme=None) -> List[dict]:
        """All evaluations (cached), optionally filtered"""
        evaluations = read_cache.get('evaluations')
        if evaluations is None:
            generation = read_cache.generation('evaluations')
            conn = get_db()
            cur = conn.cursor()
            cur.execute("SELECT * FROM evaluations ORDER BY created_at DESC, id DESC")
            evaluations = [cls._from_row(row) for row in cur.fetchall()]
            read_cache.set('evaluations', evaluations, generation)

        result = []
        for evaluation in evaluations:
            if status and evaluation['status'] != status:
                continue
            if evaluation_type and evaluation['evaluation_type'] != evaluation_type:
                continue
            if staff_id is not None and evaluation['staff_id'] != int(staff_id):
                continue
            if theme and (evaluation['formation_theme'] or '').lower() != theme.lower():
                continue
            result.append(copy.deepcopy(evaluation))
        return result

    @classmethod
    def get_evaluation(cls, evaluation_id) -> dict:
        conn = get_db()
        cur = conn.cursor()
        cur.execute("SELECT * FROM evaluations WHERE id = ?", (evaluation_id,))
        row = cur.fetchone()
        if not row:
            raise ResourceNotFoundError(f"Évaluation {evaluation_id} introuvable")
        return cls._from_row(row)

    @classmethod
    def get_evaluations_by_status(cls, status) -> List[dict]:
        if status not in STATUSES:
            raise ValidationError(f"Statut invalide: {status}")
        return cls.list_evaluations(status=status)

    @classmethod
    def list_for_staff(cls, staff_id) -> List[dict]:
        return cls.list_evaluations(staff_id=staff_id)

    # ---------- Mutations ----------

    @classmethod
    def create_evaluation(cls, data: dict, require_staff: bool = True) -> dict:
        """
        Create an evaluation (status defaults to completed)

        Args:
            data: evaluation fields
            require_staff: staff_id must reference an existing staff member

        Returns:
            dict: stored evaluation
        """
        record = normalize_evaluation(data)
        _require(record, require_staff)
        if require_staff or record.get('staff_id'):
            cls._fill_from_staff(record)
        if record['status'] == 'draft':
            record['draft_key'] = record.get('draft_key') or generate_draft_key()
            record['draft_group_key'] = draft_group_key(record)

        evaluation = cls._insert(record)
        logger.info(
            f"Evaluation {evaluation['id']} created "
            f"({evaluation['evaluation_type']}, {evaluation['status']}, staff={evaluation['staff_id']})"
        )
        AuditLogger.create('evaluations', evaluation['id'], new_value={
            'staff_id': evaluation['staff_id'],
            'formation_theme': evaluation['formation_theme'],
            'status': evaluation['status'],
        })
        event_bus.notify_change('evaluations', {'action': 'create', 'id': evaluation['id']})
        return evaluation

    @classmethod
    def update_evaluation(cls, evaluation_id, data: dict) -> dict:
        current = cls.get_evaluation(evaluation_id)
        record = normalize_evaluation(data, existing=current)
        _require(record, require_staff=False)
        if record['status'] == 'completed' and not record.get('completed_at'):
            record['completed_at'] = now_str()
        if record['status'] == 'draft':
            record['draft_group_key'] = draft_group_key(record)

        updated = cls._write(evaluation_id, record)
        AuditLogger.update('evaluations', evaluation_id,
                           old_value={'status': current['status']},
                           new_value={'status': updated['status']})
        event_bus.notify_change('evaluations', {'action': 'update', 'id': evaluation_id})
        return updated

    @classmethod
    def delete_evaluation(cls, evaluation_id) -> None:
        current = cls.get_evaluation(evaluation_id)
        conn = get_db()
        conn.execute("DELETE FROM evaluations WHERE id = ?", (evaluation_id,))
        conn.commit()
        AuditLogger.delete('evaluations', evaluation_id, old_value={
            'staff_id': current['staff_id'],
            'formation_theme': current['formation_theme'],
            'status': current['status'],
        })
        event_bus.notify_change('evaluations', {'action': 'delete', 'id': evaluation_id})

    # ---------- Draft lifecycle ----------

    @classmethod
    def save_draft(cls, data: dict) -> dict:
        """
        Save an evaluation as draft

        Updates the draft named by data['id'] when it exists and is still a
        draft, otherwise creates a new draft with a fresh draft_key.
        """
        payload = dict(data)
        draft_id = payload.pop('id', None)
        payload['status'] = 'draft'
        payload.pop('completed_at', None)

        if draft_id:
            conn = get_db()
            cur = conn.cursor()
            cur.execute("SELECT status FROM evaluations WHERE id = ?", (draft_id,))
            row = cur.fetchone()
            if row and row['status'] == 'draft':
                draft = cls.update_evaluation(draft_id, payload)
                logger.info(f"Draft {draft_id} updated")
                return draft

        payload['draft_key'] = generate_draft_key()
        draft = cls.create_evaluation(payload)
        logger.info(f"Draft {draft['id']} saved ({draft['draft_key']})")
        return draft

    @classmethod
    def complete_evaluation(cls, evaluation_id, data: Optional[dict] = None) -> dict:
        """Merge the final answers and mark the evaluation completed"""
        payload = dict(data or {})
        payload.pop('id', None)
        payload['status'] = 'completed'
        payload['completed_at'] = now_str()
        evaluation = cls.update_evaluation(evaluation_id, payload)
        logger.info(f"Evaluation {evaluation_id} completed")
        return evaluation

    @classmethod
    def get_staff_drafts(cls, staff_id) -> List[dict]:
        return cls.list_evaluations(status='draft', staff_id=staff_id)

    @classmethod
    def get_drafts_by_person(cls) -> Dict[str, List[dict]]:
        grouped: Dict[str, List[dict]] = {}
        for draft in cls.list_evaluations(status='draft'):
            grouped.setdefault(person_key(draft), []).append(draft)
        return grouped

    @classmethod
    def delete_draft(cls, evaluation_id) -> None:
        current = cls.get_evaluation(evaluation_id)
        if current['status'] != 'draft':
            raise ValidationError("Seuls les brouillons peuvent être supprimés par cette action")
        cls.delete_evaluation(evaluation_id)

    @classmethod
    def restore_draft(cls, evaluation_id) -> dict:
        """Copy a draft into a new draft keyed '<old key>_restored_<ms>'"""
        source = cls.get_evaluation(evaluation_id)
        if source['status'] != 'draft':
            raise ValidationError("Seuls les brouillons peuvent être restaurés")

        copy = {k: v for k, v in source.items() if k not in ('id', 'created_at', 'updated_at', 'completed_at')}
        copy['draft_key'] = f"{source.get('draft_key') or 'draft'}_restored_{epoch_ms()}"
        record = normalize_evaluation(copy)
        record['draft_group_key'] = draft_group_key(record)

        restored = cls._insert(record)
        logger.info(f"Draft {evaluation_id} restored as {restored['id']}")
        event_bus.notify_change('evaluations', {'action': 'restore', 'id': restored['id']})
        return restored

    @classmethod
    def get_drafts_with_details(cls) -> List[dict]:
        drafts = []
        for draft in cls.list_evaluations(status='draft'):
            last_modified = draft.get('updated_at') or draft['created_at']
            draft['person_name'] = f"{draft.get('first_name') or ''} {draft.get('last_name') or ''}".strip()
            draft['last_modified'] = last_modified
            draft['version'] = draft_version(draft['created_at'], draft.get('updated_at'))
            drafts.append(draft)

        drafts.sort(key=lambda d: parse_timestamp(d['last_modified']) or parse_timestamp('1970-01-01'), reverse=True)
        return drafts
