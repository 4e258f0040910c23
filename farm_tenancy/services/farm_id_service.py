"""
Farm ID allocation.

Farm IDs look like MTD-2024-0001: prefix, calendar year, per-year sequence.
The sequence is advanced with one INSERT ... ON CONFLICT DO UPDATE ...
RETURNING statement, evaluated by the database, so concurrent callers can
never read the same counter value.
"""

import logging
import re
from typing import Optional, Tuple

from flask import current_app, has_app_context
from sqlalchemy.orm import Session

from farm_tenancy.models import FarmIdSequence
from farm_tenancy.services.store_service import dialect_insert
from farm_tenancy.utils.formatters import utcnow

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = 'MTD'
_FARM_ID_RE = re.compile(r'^(?P<prefix>[A-Z]+)-(?P<year>\d{4})-(?P<number>\d{4,})$')


def _prefix() -> str:
    if has_app_context():
        return current_app.config.get('FARM_ID_PREFIX', DEFAULT_PREFIX)
    return DEFAULT_PREFIX


def format_farm_id(year: int, number: int, prefix: Optional[str] = None) -> str:
    """
    Format a sequence number as a Farm ID.

    Examples:
        format_farm_id(2024, 1) -> "MTD-2024-0001"
        format_farm_id(2024, 12345) -> "MTD-2024-12345"
    """
    return f"{prefix or _prefix()}-{year}-{number:04d}"


def parse_farm_id(farm_id: str) -> Tuple[str, int, int]:
    """Split a Farm ID into (prefix, year, number)."""
    match = _FARM_ID_RE.match(farm_id or '')
    if not match:
        raise ValueError(f"Malformed Farm ID: {farm_id!r}")
    return match.group('prefix'), int(match.group('year')), int(match.group('number'))


def next_sequence_number(session: Session, year: int) -> int:
    """
    Atomically increment and return the counter for `year`.

    Creates the year's row on first use (so the first number issued is 1).
    Runs inside the caller's transaction: if that transaction rolls back,
    so does the increment and the number is never handed out.
    """
    statement = dialect_insert(session, FarmIdSequence).values(year=year, last_number=1)
    statement = statement.on_conflict_do_update(
        index_elements=['year'],
        set_={'last_number': FarmIdSequence.__table__.c.last_number + 1},
    ).returning(FarmIdSequence.__table__.c.last_number)
    return session.execute(statement).scalar_one()


def next_farm_id(session: Session, year: Optional[int] = None) -> str:
    """Allocate the next Farm ID for `year` (defaults to the current UTC year)."""
    year = year or utcnow().year
    number = next_sequence_number(session, year)
    farm_id = format_farm_id(year, number)
    logger.info(f"[FARM_ID] Allocated {farm_id}")
    return farm_id
