"""!
@brief Parser for registry ``UninstallString`` values.
@details Uninstall strings are free-form command lines written by installers.
They are parsed with a small explicit grammar instead of ``shlex`` because
unquoted paths containing spaces are common and the argument tail must be
preserved byte for byte::

    command := WS* (QUOTED | BARE) (WS+ TAIL)?
    QUOTED  := '"' path '"'
    BARE    := text up to and including the first ".exe" followed by
               whitespace or end of input; otherwise the first
               whitespace-delimited token
    TAIL    := remainder, verbatim

Empty input, an unterminated quote, or an empty quoted path raise
:class:`CommandParseError`. MSI-driven commands are recognised and rewritten
into a silent, no-restart ``msiexec /x`` invocation.
"""
from __future__ import annotations

import ntpath
import re
import subprocess
from dataclasses import dataclass
from typing import List

from . import constants, guid_utils

_EXE_BOUNDARY = re.compile(r"\.exe(?=\s|$)", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")
_MSI_SWITCH = re.compile(r"(?:^|\s)[/-](?:i|x|uninstall|package)\b", re.IGNORECASE)
_MSIEXEC_NAMES = frozenset({"msiexec", "msiexec.exe"})
_MSI_INSTALL_SWITCHES = frozenset({"/i", "-i", "/package", "-package", "/f", "-f"})
_MSI_UNINSTALL_SWITCHES = frozenset({"/x", "-x", "/uninstall", "-uninstall"})
_ARGUMENT = re.compile(r'(?:"[^"]*"|[^\s"]+)+')


class CommandParseError(ValueError):
    """!
    @brief Raised for uninstall strings that do not fit the grammar.
    """


@dataclass(frozen=True)
class ParsedCommand:
    """!
    @brief Executable path and verbatim argument tail.
    """

    executable: str
    arguments: str = ""

    @property
    def executable_name(self) -> str:
        return ntpath.basename(self.executable)

    def command_line(self) -> str:
        """!
        @brief Recompose a Windows command line with the executable quoted as needed.
        """

        head = subprocess.list2cmdline([self.executable])
        return f"{head} {self.arguments}" if self.arguments else head


def parse_uninstall_command(raw: str) -> ParsedCommand:
    """!
    @brief Split ``raw`` into executable and argument tail.
    @throws CommandParseError For empty or malformed strings.
    """

    text = (raw or "").strip()
    if not text:
        raise CommandParseError("Uninstall command is empty")

    if text.startswith('"'):
        closing = text.find('"', 1)
        if closing == -1:
            raise CommandParseError(f"Unterminated quote in uninstall command: {raw}")
        executable = text[1:closing].strip()
        if not executable:
            raise CommandParseError(f"Empty executable path in uninstall command: {raw}")
        return ParsedCommand(executable=executable, arguments=text[closing + 1 :].lstrip())

    boundary = _EXE_BOUNDARY.search(text)
    if boundary is not None:
        return ParsedCommand(executable=text[: boundary.end()], arguments=text[boundary.end() :].lstrip())

    parts = _WHITESPACE.split(text, maxsplit=1)
    return ParsedCommand(executable=parts[0], arguments=parts[1] if len(parts) > 1 else "")


def is_msi_command(command: ParsedCommand) -> bool:
    """!
    @brief True for ``msiexec`` launches or tails carrying ``/I``/``/X`` with a product code.
    """

    if command.executable_name.lower() in _MSIEXEC_NAMES:
        return True
    return guid_utils.find_guid(command.arguments) is not None and _MSI_SWITCH.search(command.arguments) is not None


def to_silent_msi_uninstall(command: ParsedCommand) -> List[str]:
    """!
    @brief Rewrite an MSI-driven command to ``msiexec.exe /x {CODE} /qn /norestart``.
    @details When the tail carries no product code (for example ``/i package.msi``)
    an install or repair switch is turned into ``/x``. Quoted package paths stay
    single arguments and missing silent flags are appended.
    """

    code = guid_utils.find_guid(command.arguments)
    if code is not None:
        return msi_uninstall_command(code)

    tail = [token.replace('"', "") for token in _ARGUMENT.findall(command.arguments)]
    switched = False
    for index, token in enumerate(tail):
        lowered = token.lower()
        if lowered in _MSI_INSTALL_SWITCHES:
            tail[index] = "/x"
            switched = True
        elif lowered in _MSI_UNINSTALL_SWITCHES:
            switched = True
    if not switched:
        tail.insert(0, "/x")

    present = {token.lower() for token in tail}
    tail.extend(flag for flag in constants.MSI_SILENT_ARGS if flag not in present)
    return [constants.MSIEXEC, *tail]


def msi_uninstall_command(product_code: str) -> List[str]:
    """!
    @brief Silent, no-restart removal command for an exact product code.
    @throws guid_utils.GuidError For malformed codes.
    """

    return [constants.MSIEXEC, "/x", guid_utils.normalize_guid(product_code), *constants.MSI_SILENT_ARGS]


__all__ = [
    "CommandParseError",
    "ParsedCommand",
    "is_msi_command",
    "msi_uninstall_command",
    "parse_uninstall_command",
    "to_silent_msi_uninstall",
]
