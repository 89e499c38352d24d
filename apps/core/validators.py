"""
Input validation helpers.
"""
import re
from typing import Any, Dict, List, Mapping

from apps.core.exceptions import ValidationError


class InputValidator:
    """
    Common input validation utilities for account data.
    """

    EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

    # Local mobile numbers are exactly 11 digits
    PHONE_PATTERN = re.compile(r'^\d{11}$')

    @staticmethod
    def validate_email(email: str) -> bool:
        if not email:
            return False
        return bool(InputValidator.EMAIL_PATTERN.match(email))

    @staticmethod
    def validate_password_strength(password: str) -> Dict[str, Any]:
        """
        Validate password strength.

        Requirements:
        - At least 8 characters
        - Contains uppercase letter
        - Contains lowercase letter
        - Contains digit

        Returns:
            dict: ``{'valid': bool, 'errors': [str, ...]}``
        """
        errors = []
        if len(password) < 8:
            errors.append('Password must be at least 8 characters long')
        if not re.search(r'[A-Z]', password):
            errors.append('Password must contain at least one uppercase letter')
        if not re.search(r'[a-z]', password):
            errors.append('Password must contain at least one lowercase letter')
        if not re.search(r'\d', password):
            errors.append('Password must contain at least one number')
        return {'valid': not errors, 'errors': errors}

    @staticmethod
    def validate_phone(phone: str) -> bool:
        return bool(InputValidator.PHONE_PATTERN.match(phone or ''))


def validate_registration_data(data: Mapping[str, Any]) -> None:
    """
    Check registration input, collecting every problem per field.

    Raises:
        ValidationError: with ``details`` mapping field name to a list of
            messages; the message is the first problem found
    """
    errors: Dict[str, List[str]] = {}

    name = (data.get('name') or '').strip()
    email = (data.get('email') or '').strip()
    password = data.get('password') or ''
    phone = data.get('phone') or ''

    if not name:
        errors.setdefault('name', []).append('Full Name is required')
    if not email:
        errors.setdefault('email', []).append('Email is required')
    elif not InputValidator.validate_email(email):
        errors.setdefault('email', []).append('Please enter a valid email address')
    if not password:
        errors.setdefault('password', []).append('Password is required')
    else:
        strength = InputValidator.validate_password_strength(password)
        if not strength['valid']:
            errors['password'] = strength['errors']
    if phone and not InputValidator.validate_phone(phone):
        errors.setdefault('phone', []).append('Phone number must be exactly 11 digits')

    if errors:
        first_message = next(iter(errors.values()))[0]
        raise ValidationError(first_message, details=errors)
