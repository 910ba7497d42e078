"""
Resolution of free-text dosing frequencies into times of day.

Explicit HH:MM times win when every one of them is well formed. Otherwise the
frequency text is matched against a fixed rule table, first match wins.
"""

import re
from typing import Iterable, List, Optional, Sequence, Tuple

from medreminder.core.errors import TimingValidationError
from medreminder.core.models import MedicationSource
from medreminder.utils.logger import get_logger


logger = get_logger(__name__)


TIME_PATTERN = re.compile(r'^([01]?\d|2[0-3]):([0-5]\d)$')

DEFAULT_TIMING = ['08:00']

# Order matters: the first matching rule wins.
FREQUENCY_RULES: Tuple[Tuple[str, re.Pattern, List[str]], ...] = (
    (
        'once_daily',
        re.compile(r'\b(once|one time|1 time|1x|od|qd)\b'),
        ['08:00'],
    ),
    (
        'twice_daily',
        re.compile(r'\b(twice|two times|2 times|2x|bid|bd)\b'),
        ['08:00', '20:00'],
    ),
    (
        'three_times_daily',
        re.compile(r'\b(three times|3 times|3x|thrice|tid|tds)\b'),
        ['08:00', '14:00', '20:00'],
    ),
    (
        'four_times_daily',
        re.compile(r'\b(four times|4 times|4x|qid|qds)\b'),
        ['08:00', '12:00', '18:00', '22:00'],
    ),
    (
        'morning_only',
        re.compile(r'^(?!.*\b(evening|afternoon)\b).*\bmorning\b'),
        ['08:00'],
    ),
    (
        'evening_only',
        re.compile(r'^(?!.*\b(morning|afternoon)\b).*\bevening\b'),
        ['20:00'],
    ),
    (
        'night',
        re.compile(r'\b(night|nightly|bedtime|before sleep|hs)\b'),
        ['22:00'],
    ),
    (
        'as_needed',
        re.compile(r'\b(as needed|as required|when needed|when required|if needed|prn|sos)\b'),
        [],
    ),
)


def normalize_time(value) -> Optional[str]:
    """
    Normalize a time-of-day value to zero-padded HH:MM.

    Args:
        value: Candidate time such as "8:00" or "20:30"

    Returns:
        Normalized "HH:MM" string, or None if the value is not a valid time
    """
    if not isinstance(value, str):
        return None

    match = TIME_PATTERN.match(value.strip())
    if not match:
        return None

    hours, minutes = match.groups()
    return f"{int(hours):02d}:{minutes}"


def is_valid_time(value) -> bool:
    return normalize_time(value) is not None


def _parse_time(value) -> str:
    normalized = normalize_time(value)
    if normalized is None:
        raise TimingValidationError(f"Invalid time of day: {value!r}")
    return normalized


def _sorted_unique(times: Iterable[str]) -> List[str]:
    return sorted(set(times))


def match_frequency(frequency: Optional[str]) -> List[str]:
    """
    Map frequency text to default times using the rule table.

    Args:
        frequency: Free-text frequency, e.g. "Twice daily after meals"

    Returns:
        Sorted list of HH:MM times. Empty for as-needed frequencies,
        [08:00] when nothing matches.
    """
    normalized = (frequency or '').lower().strip()

    for name, pattern, times in FREQUENCY_RULES:
        if pattern.search(normalized):
            logger.debug(f"Frequency {frequency!r} matched rule {name}")
            return list(times)

    return list(DEFAULT_TIMING)


def resolve_timing(
    frequency: Optional[str],
    explicit_times: Optional[Sequence[str]] = None
) -> List[str]:
    """
    Resolve the canonical set of reminder times for a medication.

    Explicit times are used only when every entry is a valid HH:MM value;
    a single malformed entry discards the explicit list in favour of the
    frequency rules.

    Args:
        frequency: Free-text dosing frequency
        explicit_times: Optional list of HH:MM strings

    Returns:
        Sorted, duplicate-free list of HH:MM strings
    """
    if explicit_times:
        try:
            return _sorted_unique(_parse_time(t) for t in explicit_times)
        except TimingValidationError as e:
            logger.debug(f"Ignoring explicit times {list(explicit_times)!r}: {e}")

    return match_frequency(frequency)


def fallback_timing(
    frequency: Optional[str],
    raw_times: Optional[Sequence] = None
) -> List[str]:
    """
    Fail-open recovery for timing extracted from uploaded documents.

    Keeps whatever entries are well formed and drops the rest. If nothing
    survives, falls back to the frequency rules.

    Args:
        frequency: Free-text dosing frequency
        raw_times: Untrusted list of time values

    Returns:
        Sorted, duplicate-free list of HH:MM strings
    """
    valid = []
    for value in raw_times or []:
        try:
            valid.append(_parse_time(value))
        except TimingValidationError as e:
            logger.debug(f"Dropping extracted time: {e}")

    if valid:
        return _sorted_unique(valid)

    return match_frequency(frequency)


def resolve_medication_timing(medication) -> List[str]:
    """
    Times of day for a medication. Stored timing overrides the frequency.

    Manually entered timing must be entirely valid to be used; timing
    extracted from a document goes through the lenient fallback.
    """
    if medication.source == MedicationSource.EXTRACTED:
        return fallback_timing(medication.frequency, medication.timing)
    return resolve_timing(medication.frequency, medication.timing)
