"""!
@brief GUID helpers for Windows Installer product codes.
@details Product codes appear in three places: as an exact target supplied by
the operator, inside ``MsiExec.exe /I{...}`` uninstall strings, and as the
subkey name of an uninstall record. The helpers here validate, normalise and
extract them.

@note Windows Installer product codes use the standard
``{XXXXXXXX-XXXX-XXXX-XXXX-XXXXXXXXXXXX}`` form (38 chars with braces).
"""

from __future__ import annotations

import re
from typing import Final

# Hyphenated GUID, braces optional on input.
_GUID_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^\{?([0-9A-Fa-f]{8})-([0-9A-Fa-f]{4})-([0-9A-Fa-f]{4})-"
    r"([0-9A-Fa-f]{4})-([0-9A-Fa-f]{12})\}?$"
)

# Braced GUID embedded anywhere in a larger string.
_EMBEDDED_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"\{[0-9A-Fa-f]{8}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{12}\}"
)


class GuidError(ValueError):
    """!
    @brief Raised when a product code fails validation.
    """


def is_valid_guid(guid: str) -> bool:
    """!
    @brief Check if a string is a valid hyphenated GUID.
    @param guid String to validate (braces optional).
    @return True if valid GUID format, False otherwise.
    """
    text = guid.strip()
    if text.startswith("{") != text.endswith("}"):
        return False
    return _GUID_PATTERN.match(text) is not None


def normalize_guid(guid: str) -> str:
    """!
    @brief Convert a GUID to the upper-case braced form ``msiexec`` expects.
    @param guid GUID with or without braces.
    @return ``{XXXXXXXX-XXXX-XXXX-XXXX-XXXXXXXXXXXX}``.
    @throws GuidError If the input is not a valid GUID.
    """
    text = guid.strip().strip("\0")
    match = _GUID_PATTERN.match(text) if is_valid_guid(text) else None
    if match is None:
        raise GuidError(f"Invalid GUID format: {guid}")
    return "{" + "-".join(group.upper() for group in match.groups()) + "}"


def find_guid(text: str) -> str | None:
    """!
    @brief Return the first braced GUID embedded in ``text``, normalised.
    """
    match = _EMBEDDED_PATTERN.search(text or "")
    if match is None:
        return None
    return normalize_guid(match.group(0))


__all__ = ["GuidError", "find_guid", "is_valid_guid", "normalize_guid"]
