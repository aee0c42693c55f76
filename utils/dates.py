#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Date and timestamp helpers
Stored timestamps use '%Y-%m-%d %H:%M:%S' local time
"""
from datetime import date, datetime
from typing import Optional

TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'

_DATETIME_FORMATS = [
    '%Y-%m-%d %H:%M:%S',
    '%Y-%m-%dT%H:%M:%S',
    '%Y-%m-%dT%H:%M:%S.%f',
    '%Y-%m-%d %H:%M:%S.%f',
    '%Y-%m-%dT%H:%M',
]

_DATE_FORMATS = [
    '%Y-%m-%d',
    '%Y/%m/%d',
    '%d/%m/%Y',
    '%d-%m-%Y',
    '%Y.%m.%d',
    '%Y%m%d',
]


def now_str() -> str:
    return datetime.now().strftime(TIMESTAMP_FORMAT)


def today_str() -> str:
    return date.today().strftime('%Y-%m-%d')


def parse_timestamp(value) -> Optional[datetime]:
    """Parse a stored timestamp or a date string, None when unparseable"""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    raw = str(value).strip()
    if not raw:
        return None

    # ISO strings with a trailing Z or offset
    if raw.endswith('Z'):
        raw = raw[:-1]
    try:
        parsed = datetime.fromisoformat(raw)
        return parsed.replace(tzinfo=None)
    except ValueError:
        pass

    for fmt in _DATETIME_FORMATS + _DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt)
        except ValueError:
            continue
    return None


def normalize_date(value) -> Optional[str]:
    """Normalize an Excel cell or string date to YYYY-MM-DD"""
    parsed = parse_timestamp(value)
    return parsed.strftime('%Y-%m-%d') if parsed else None


def first_timestamp(record: dict, *fields) -> Optional[datetime]:
    """Return the first parseable timestamp among fields, in order"""
    for field in fields:
        parsed = parse_timestamp(record.get(field))
        if parsed is not None:
            return parsed
    return None


def epoch_ms() -> int:
    return int(datetime.now().timestamp() * 1000)
