"""
Unit tests for formatting helpers and the error taxonomy.
"""

import pytest
from datetime import datetime

from farm_tenancy.exceptions import (
    ConflictError, InvalidTransitionError, NotFoundError, SaasError, StoreUnavailableError, ValidationError
)
from farm_tenancy.utils.formatters import generate_slug, is_valid_email, parse_datetime, rupees


class TestGenerateSlug:
    """Tests for slug generation."""

    def test_basic_name(self):
        assert generate_slug('Green Valley Dairy') == 'green-valley-dairy'

    def test_punctuation_collapses(self):
        assert generate_slug('  Khan & Sons -- Dairy!! ') == 'khan-sons-dairy'

    def test_accents_are_stripped(self):
        assert generate_slug('Café Lácteo') == 'cafe-lacteo'

    def test_empty_result_falls_back(self):
        assert generate_slug('!!!') == 'farm'

    def test_length_is_capped(self):
        slug = generate_slug('a' * 80)
        assert len(slug) == 50


class TestParseDatetime:
    """Tests for timestamp parsing used by imports and JSON bodies."""

    def test_iso_with_z(self):
        assert parse_datetime('2024-03-01T10:00:00Z') == datetime(2024, 3, 1, 10, 0)

    def test_offset_is_converted_to_utc(self):
        assert parse_datetime('2024-03-01T15:00:00+05:00') == datetime(2024, 3, 1, 10, 0)

    def test_exported_timestamp(self):
        assert parse_datetime({'_seconds': 0, '_nanoseconds': 0}) == datetime(1970, 1, 1)

    def test_none_and_empty(self):
        assert parse_datetime(None) is None
        assert parse_datetime('') is None

    def test_garbage_raises(self):
        with pytest.raises(ValueError):
            parse_datetime('next tuesday')


class TestMisc:

    def test_rupees(self):
        assert rupees(499900) == 'Rs. 4,999'
        assert rupees(150) == 'Rs. 1.50'
        assert rupees(None) == '-'

    def test_email_validation(self):
        assert is_valid_email('owner@example.com') is True
        assert is_valid_email('owner@') is False
        assert is_valid_email(None) is False


class TestExceptions:
    """Tests for the error taxonomy."""

    def test_validation_error_payload(self):
        error = ValidationError('Bad plan', payload={'field': 'plan'})
        assert error.status_code == 400
        assert isinstance(error, SaasError)
        assert error.to_dict() == {
            'field': 'plan',
            'message': 'Bad plan',
            'error': 'validation_error',
            'status': 'error',
        }

    def test_invalid_transition_default_message(self):
        error = InvalidTransitionError('pending', 'approved')
        assert error.status_code == 409
        assert error.current_status == 'pending'
        assert error.target_status == 'approved'
        assert "'pending'" in error.message and "'approved'" in error.message

    def test_status_codes(self):
        assert NotFoundError().status_code == 404
        assert ConflictError().status_code == 409
        assert StoreUnavailableError().status_code == 503
