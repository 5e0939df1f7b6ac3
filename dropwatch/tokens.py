"""Date token resolution for path and filename patterns.

Patterns carry placeholders such as ``{yyyy}`` or ``{yyyymmdd}`` that are
replaced with the date of a reference instant, observed in a timezone.
Placeholders are matched case-insensitively. Anything in braces that is
not a known token is left in the output untouched, so a misconfigured
pattern yields a visibly wrong path instead of an exception.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Callable, Dict, List, Optional, Union
from zoneinfo import ZoneInfo

from dropwatch.clock import ensure_utc

_BRACE_PATTERN = re.compile(r"\{([^{}]+)\}")

_TOKEN_FORMATTERS: Dict[str, Callable[[datetime], str]] = {
    "yyyy": lambda d: f"{d.year:04d}",
    "yy": lambda d: f"{d.year % 100:02d}",
    "mm": lambda d: f"{d.month:02d}",
    "dd": lambda d: f"{d.day:02d}",
    "yyyymmdd": lambda d: f"{d.year:04d}{d.month:02d}{d.day:02d}",
    "yymmdd": lambda d: f"{d.year % 100:02d}{d.month:02d}{d.day:02d}",
    "yyyy-mm-dd": lambda d: f"{d.year:04d}-{d.month:02d}-{d.day:02d}",
}

SUPPORTED_TOKENS = tuple(f"{{{name}}}" for name in _TOKEN_FORMATTERS)


def as_zone(zone: Union[str, tzinfo, None]) -> tzinfo:
    """Return a tzinfo for an IANA name or pass an existing tzinfo through."""
    if zone is None:
        return ZoneInfo("UTC")
    if isinstance(zone, str):
        return ZoneInfo(zone)
    return zone


def resolve(template: str, at: datetime, zone: Union[str, tzinfo, None] = "UTC") -> str:
    """Replace date tokens in ``template`` with the date of ``at`` in ``zone``.

    Args:
        template: Pattern containing tokens like ``{yyyy}/{mm}/{dd}``
        at: Reference instant (naive values are taken as UTC)
        zone: Timezone in which the calendar date is observed

    Returns:
        The template with recognised tokens replaced
    """
    if not template:
        return template

    local = ensure_utc(at).astimezone(as_zone(zone))

    def _replace(match: re.Match) -> str:
        formatter = _TOKEN_FORMATTERS.get(match.group(1).lower())
        if formatter is None:
            return match.group(0)
        return formatter(local)

    return _BRACE_PATTERN.sub(_replace, template)


def contains_tokens(pattern: Optional[str]) -> bool:
    """Check whether ``pattern`` contains at least one recognised token."""
    if not pattern:
        return False
    return any(
        match.group(1).lower() in _TOKEN_FORMATTERS
        for match in _BRACE_PATTERN.finditer(pattern)
    )


def invalid_tokens(pattern: Optional[str]) -> List[str]:
    """List brace groups in ``pattern`` that are not recognised tokens."""
    if not pattern:
        return []
    found: List[str] = []
    for match in _BRACE_PATTERN.finditer(pattern):
        if match.group(1).lower() not in _TOKEN_FORMATTERS and match.group(0) not in found:
            found.append(match.group(0))
    return found


@dataclass
class PatternValidation:
    """Result of validating a location and its patterns."""

    is_valid: bool
    error: Optional[str] = None


def validate_patterns(
    host: Optional[str],
    path_pattern: Optional[str],
    name_pattern: Optional[str],
) -> PatternValidation:
    """Check token placement for a configuration.

    Tokens may appear in the path and filename only. The server or host
    portion must be literal.
    """
    if host and (contains_tokens(host) or "{" in host):
        return PatternValidation(
            False, "Server name/host cannot contain date tokens like {yyyy}, {mm}, {dd}"
        )

    bad = invalid_tokens(path_pattern)
    if bad:
        return PatternValidation(
            False, f"File path pattern contains invalid tokens: {', '.join(bad)}"
        )

    bad = invalid_tokens(name_pattern)
    if bad:
        return PatternValidation(
            False, f"Filename pattern contains invalid tokens: {', '.join(bad)}"
        )

    return PatternValidation(True)


class TokenResolver:
    """Resolves a configuration's path and name patterns for one instant."""

    def resolve(self, template: str, at: datetime, zone: Union[str, tzinfo, None] = "UTC") -> str:
        return resolve(template, at, zone)

    def resolve_pair(
        self,
        path_pattern: str,
        name_pattern: str,
        at: datetime,
        zone: Union[str, tzinfo, None] = "UTC",
    ) -> tuple[str, str]:
        return resolve(path_pattern, at, zone), resolve(name_pattern, at, zone)
