# validation.py
"""Strict checks for user-submitted forms (registration, events).

Unlike the normalizers these reject bad input with a message meant for the
person filling in the form.
"""
import re

from models import DEFAULT_ROLE, ROLES

USN_PATTERN = re.compile(r'[0-9][A-Z]{2}[0-9]{2}[A-Z]{2}[0-9]{3}')
EMAIL_DOMAIN = '@bmsce.ac.in'
PASSWORD_SYMBOLS = '@$!%*?&'
PASSWORD_PATTERN = re.compile(
    r'(?=.*[a-z])(?=.*[A-Z])(?=.*[0-9])(?=.*[@$!%*?&])[A-Za-z0-9@$!%*?&]{8,}'
)


class ValidationError(ValueError):
    pass


def is_valid_usn(usn):
    return bool(USN_PATTERN.fullmatch(usn or ''))


def is_valid_email(email):
    return (email or '').endswith(EMAIL_DOMAIN)


def is_valid_password(password):
    return bool(PASSWORD_PATTERN.fullmatch(password or ''))


def validate_registration(name, usn, email, password, role=DEFAULT_ROLE):
    name = str(name or '').strip()
    usn = str(usn or '').strip().upper()
    email = str(email or '').strip()
    password = str(password or '')

    if not name or not usn or not email or not password:
        raise ValidationError('Please fill in all fields.')
    if not is_valid_usn(usn):
        raise ValidationError('Invalid USN format. Expected format: e.g., 1BM24CS001')
    if not is_valid_email(email):
        raise ValidationError('Invalid domain name')
    if not is_valid_password(password):
        raise ValidationError(
            'Password must be at least 8 characters long and contain at least one uppercase letter, '
            f'one lowercase letter, one number, and one special character ({PASSWORD_SYMBOLS}).'
        )

    role = str(role or DEFAULT_ROLE).strip().lower()
    return {
        'name': name,
        'usn': usn,
        'email': email,
        'password': password,
        'role': role if role in ROLES else DEFAULT_ROLE,
    }


def validate_event_form(data):
    """Check the fields a person must fill in when creating or editing an event."""
    for field, label in (('clubName', 'Club Name'), ('title', 'Event Name'), ('description', 'Event Description')):
        if not str(data.get(field) or '').strip():
            raise ValidationError(f'{label} is required.')

    if data.get('attendanceAllowed') and not str(data.get('attendanceTiming') or '').strip():
        raise ValidationError('Please provide attendance timing when attendance is allowed.')

    start, end = data.get('startDate'), data.get('endDate')
    if isinstance(start, (int, float)) and isinstance(end, (int, float)) and end < start:
        raise ValidationError('End Time cannot be earlier than Start Time.')
