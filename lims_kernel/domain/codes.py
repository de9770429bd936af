"""
Human-readable sample and document codes (``PREFIX NNN``).

Pure helpers shared by the allocator, the sample ID workflow, the
crosscheck and the configuration validator.  A prefix is 2-6 uppercase
letters; numbers are zero-padded to a minimum width and never truncated.
Every code ``format_code`` produces from a normalized prefix is accepted
by ``parse_code``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from lims_kernel.exceptions import InvalidSampleCodeError

DEFAULT_PADDING = 3

_PREFIX = r"[A-Z]{2,6}"
PREFIX_RE = re.compile(rf"^{_PREFIX}$")
_CODE_RE = re.compile(rf"^({_PREFIX})\s*[- ]?\s*(\d+)$")
_SEPARATOR_RE = re.compile(r"[\s\-_.]")


@dataclass(frozen=True)
class ParsedCode:
    prefix: str
    number: int


def normalize_prefix(prefix: str) -> str:
    """Uppercase, drop separators and check the prefix grammar.

    Raises:
        InvalidSampleCodeError: if the result is not 2-6 letters.
    """
    normalized = _SEPARATOR_RE.sub("", str(prefix or "").upper())
    if not PREFIX_RE.match(normalized):
        raise InvalidSampleCodeError(str(prefix))
    return normalized


def format_code(prefix: str, number: int, padding: int = DEFAULT_PADDING) -> str:
    return f"{prefix} {str(number).zfill(padding)}"


def parse_code(code: str) -> ParsedCode:
    """Parse ``"ABC 007"``, ``"ABC-007"`` or ``"abc007"``.

    Raises:
        InvalidSampleCodeError: if the value is not a sample code.
    """
    match = _CODE_RE.match(str(code or "").strip().upper())
    if match is None:
        raise InvalidSampleCodeError(str(code))
    return ParsedCode(prefix=match.group(1), number=int(match.group(2)))


def normalize_code(code: str, padding: int = DEFAULT_PADDING) -> str:
    """Canonical ``PREFIX NNN`` form of any parseable code."""
    parsed = parse_code(code)
    return format_code(parsed.prefix, parsed.number, padding)


def codes_match(entered: str | None, expected: str | None) -> bool:
    """Case-insensitive exact comparison after trimming."""
    if entered is None or expected is None:
        return False
    return entered.strip().upper() == expected.strip().upper()
