"""!
@brief Interactive confirmation for gated actions.
@details The gate asks this module before running any destructive operation
that was neither dry-run nor forced. Non-interactive sessions decline, so an
unattended run without ``--force`` never removes anything by accident.
"""

from __future__ import annotations

import sys
from typing import Callable

CONFIRM_PROMPT = "Proceed with: {description}? [y/N]"


def _stdin_is_interactive() -> bool:
    stdin = getattr(sys, "stdin", None)
    isatty = getattr(stdin, "isatty", None)
    try:
        return bool(isatty and isatty())
    except ValueError:  # closed stream
        return False


def request_confirmation(
    description: str,
    *,
    input_func: Callable[[str], str] | None = None,
    interactive: bool | None = None,
) -> bool:
    """!
    @brief Ask the operator to approve ``description``.
    @param description Action text shown in the prompt.
    @param input_func Optional input function override for tests and UIs.
    @param interactive Optional override of TTY detection.
    @returns ``True`` only for an explicit ``y``/``yes`` answer.
    """

    if interactive is None:
        interactive = _stdin_is_interactive()

    if not interactive:
        return False

    if input_func is None:
        input_func = input

    try:
        response = input_func(CONFIRM_PROMPT.format(description=description) + " ")
    except EOFError:
        return False

    return response.strip().lower() in ("y", "yes")


def make_confirmer(
    *,
    interactive: bool | None = None,
    input_func: Callable[[str], str] | None = None,
) -> Callable[[str], bool]:
    """!
    @brief Bind prompt settings into the ``description -> bool`` callable the gate expects.
    """

    def _confirm(description: str) -> bool:
        return request_confirmation(description, input_func=input_func, interactive=interactive)

    return _confirm


__all__ = ["CONFIRM_PROMPT", "make_confirmer", "request_confirmation"]
