"""Utility modules for cross-cutting concerns."""

from utils.timezone import now_utc, to_utc, to_local, local_date, from_unix, parse_iso
from utils.money import round2, percent_of, to_minor_units, from_minor_units
