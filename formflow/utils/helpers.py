"""
Utility helpers for the form graph engine

Small functions for id generation and phone normalisation.
"""

import re
import uuid


MIN_PHONE_DIGITS = 7

_NON_DIGITS = re.compile(r"\D")


def generate_id(prefix, short=True):
    """
    Generate a unique, prefixed identifier

    Args:
        prefix (str): Id prefix, e.g. 'step', 'choice', 'qc'
        short (bool): If True, use an 8-char hex suffix. If False, a full UUID.

    Returns:
        str: Identifier

    Examples:
        >>> generate_id('step')
        'step-a3f7e2b9'
    """
    full_id = uuid.uuid4().hex
    suffix = full_id[:8] if short else full_id
    return f"{prefix}-{suffix}"


def generate_session_id(short=True):
    """Generate a fill-session identifier (8-char hex by default)."""
    full_id = uuid.uuid4().hex
    return full_id[:8] if short else full_id


def digits_only(value):
    """Strip every non-digit character: '+1 (555) 123-4567' -> '15551234567'."""
    return _NON_DIGITS.sub("", value or "")


def is_valid_phone(value, min_digits=MIN_PHONE_DIGITS):
    """True when the phone has at least min_digits digits once formatting is removed."""
    return len(digits_only(value)) >= min_digits
