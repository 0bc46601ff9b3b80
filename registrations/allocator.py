"""
Registration ID allocation: ORG/{unit_code}/{year}/{sequence}.

Sequences are per (unit code, year) and never reused. The caller must run
allocate() and the insert of the new registration inside one store.atomic()
block; the database backend additionally relies on the unique constraint on
registration_id, and RegistrationService retries on a collision.
"""
import logging

from django.db import DatabaseError
from django.utils import timezone

from .exceptions import AllocationFailed, ValidationError
from .utils import (
    UNKNOWN_UNIT_CODE,
    format_registration_id,
    max_sequence,
    registration_id_prefix,
    resolve_unit_code,
)

logger = logging.getLogger(__name__)


class IdentifierAllocator:

    def __init__(self, store, prefix='ORG', strict=False, clock=timezone.now):
        self.store = store
        self.prefix = prefix
        self.strict = strict
        self.clock = clock

    def resolve_unit_code(self, unit):
        """
        Map a unit slug or name to its code. Unknown units become UNK,
        or are rejected when strict unit codes are enabled.
        """
        code = resolve_unit_code(unit)
        if code is not None:
            return code
        if self.strict:
            raise ValidationError(f'Unknown unit: {unit}', field='rocimUnit')
        logger.warning(f"Unknown unit {unit!r}, allocating under {UNKNOWN_UNIT_CODE}")
        return UNKNOWN_UNIT_CODE

    def current_year(self):
        now = self.clock()
        if timezone.is_aware(now):
            now = timezone.localtime(now)
        return now.year

    def allocate(self, unit):
        """
        Return the next registration ID for the unit in the current year.
        """
        unit_code = self.resolve_unit_code(unit)
        year = self.current_year()
        prefix = registration_id_prefix(self.prefix, unit_code, year)
        try:
            existing = self.store.registration_ids_with_prefix(prefix)
        except DatabaseError as e:
            logger.error(f"Sequence lookup failed for {prefix}: {e}")
            raise AllocationFailed(unit_code) from e
        return format_registration_id(self.prefix, unit_code, year, max_sequence(existing) + 1)
