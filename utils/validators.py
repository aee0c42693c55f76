#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Input validation and data sanitization module
Validation utilities for staff, theme and evaluation payloads
"""
import re
from datetime import datetime
from functools import wraps
from flask import request
from utils.errors import ValidationError


EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')


# ========== String Validation ==========

class StringValidator:
    """String validation utilities"""

    @staticmethod
    def is_empty(value):
        """Check if value is missing, empty or whitespace"""
        if value is None:
            return True
        return not str(value).strip()

    @staticmethod
    def length_between(value, min_length=0, max_length=None):
        """Check if string length is within range"""
        if value is None:
            return False

        length = len(str(value))

        if length < min_length:
            return False

        if max_length and length > max_length:
            return False

        return True


class EmailValidator:
    """Email validation utilities"""

    @staticmethod
    def is_valid(value):
        if not value:
            return False
        return bool(EMAIL_PATTERN.match(str(value).strip()))

    @staticmethod
    def normalize(value):
        """Lower-case and trim an email, None when empty"""
        if value is None:
            return None
        cleaned = str(value).strip().lower()
        return cleaned or None


# ========== Number Validation ==========

class NumberValidator:
    """Number validation utilities"""

    @staticmethod
    def is_integer(value):
        """Check if value is integer"""
        try:
            int(value)
            return True
        except (ValueError, TypeError):
            return False

    @staticmethod
    def in_range(value, min_value=None, max_value=None):
        """Check if number is within range"""
        try:
            num = float(value)

            if min_value is not None and num < min_value:
                return False

            if max_value is not None and num > max_value:
                return False

            return True

        except (ValueError, TypeError):
            return False

    @staticmethod
    def clamp(value, min_value, max_value, default=None):
        """Coerce value to float and clamp it, default when not numeric"""
        try:
            num = float(value)
        except (ValueError, TypeError):
            return default
        return max(min_value, min(max_value, num))


# ========== Date Validation ==========

class DateValidator:
    """Date validation utilities"""

    @staticmethod
    def is_valid_date(date_string, format='%Y-%m-%d'):
        """Check if string is valid date"""
        try:
            datetime.strptime(str(date_string), format)
            return True
        except (ValueError, TypeError):
            return False


# ========== Data Sanitization ==========

class Sanitizer:
    """Data sanitization utilities"""

    @staticmethod
    def clean_string(value, strip=True, lower=False, upper=False):
        """Clean string value"""
        if value is None:
            return None

        result = str(value)

        if strip:
            result = result.strip()

        if lower:
            result = result.lower()

        if upper:
            result = result.upper()

        return result


# ========== Form Validation ==========

class FormValidator:
    """Payload validation helper"""

    def __init__(self, data):
        self.data = data or {}
        self.errors = {}

    def require(self, field, message=None):
        """Require field to be present and non-empty"""
        value = self.data.get(field)

        if StringValidator.is_empty(value):
            self.errors[field] = message or f"Le champ {field} est obligatoire"
            return False

        return True

    def validate_length(self, field, min_length=0, max_length=None, message=None):
        """Validate field length"""
        value = self.data.get(field, '')

        if not StringValidator.length_between(value, min_length, max_length):
            if message:
                self.errors[field] = message
            elif max_length:
                self.errors[field] = f"{field} doit contenir entre {min_length} et {max_length} caractères"
            else:
                self.errors[field] = f"{field} doit contenir au moins {min_length} caractères"

            return False

        return True

    def validate_integer(self, field, min_value=None, max_value=None, message=None):
        """Validate integer field"""
        value = self.data.get(field)

        if not NumberValidator.is_integer(value):
            self.errors[field] = message or f"{field} doit être un entier"
            return False

        if not NumberValidator.in_range(value, min_value, max_value):
            self.errors[field] = message or f"{field} hors limites"
            return False

        return True

    def validate_email(self, field, message=None, optional=False):
        """Validate email format"""
        value = self.data.get(field)

        if optional and StringValidator.is_empty(value):
            return True

        if not EmailValidator.is_valid(value):
            self.errors[field] = message or "Format email invalide"
            return False

        return True

    def validate_choice(self, field, choices, message=None, optional=True):
        """Validate that the field is one of the allowed values"""
        value = self.data.get(field)

        if optional and value in (None, ''):
            return True

        if value not in choices:
            self.errors[field] = message or f"{field} doit être l'une des valeurs: {', '.join(map(str, choices))}"
            return False

        return True

    def validate_date(self, field, format='%Y-%m-%d', message=None, optional=True):
        """Validate date field"""
        value = self.data.get(field)

        if optional and StringValidator.is_empty(value):
            return True

        if not DateValidator.is_valid_date(value, format):
            self.errors[field] = message or f"{field}: format de date invalide (AAAA-MM-JJ)"
            return False

        return True

    def is_valid(self):
        """Check if form is valid"""
        return len(self.errors) == 0

    def get_errors(self):
        """Get validation errors"""
        return self.errors

    def raise_if_invalid(self, message="Données invalides"):
        """Raise ValidationError carrying the collected field errors"""
        if not self.is_valid():
            raise ValidationError(message, payload={'fields': self.get_errors()})


# ========== Request Validation Decorators ==========

def validate_json(*required_fields):
    """Decorator to validate required JSON fields"""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            if not request.is_json:
                raise ValidationError("La requête doit être au format JSON")

            data = request.get_json(silent=True)
            if not isinstance(data, dict):
                raise ValidationError("Corps JSON invalide")

            missing_fields = [
                field for field in required_fields
                if StringValidator.is_empty(data.get(field))
            ]

            if missing_fields:
                raise ValidationError(
                    f"Champs obligatoires manquants: {', '.join(missing_fields)}",
                    payload={'fields': {f: 'obligatoire' for f in missing_fields}}
                )

            return func(*args, **kwargs)

        return wrapper
    return decorator
