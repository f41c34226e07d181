"""Tiny terminal UI helpers (prompt_toolkit-based).

Kept apart from the core so the prompts can be driven in tests through a
pipe input and a dummy output.
"""

from __future__ import annotations

from collections.abc import Sequence

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.validation import ValidationError, Validator

from .consolidation import is_valid_consolidation_pattern
from .normalize import MIN_PATTERN_LENGTH


def _session_with(session: PromptSession | None, kb: KeyBindings) -> PromptSession:
    if session is None:
        return PromptSession(key_bindings=kb)
    return PromptSession(
        input=getattr(session, "input", None),
        output=getattr(session, "output", None),
        key_bindings=kb,
    )


def prompt_match_pattern(
    match_values: Sequence[str],
    *,
    initial: str = "",
    session: PromptSession | None = None,
    message: str = "Pattern (Enter to accept • Esc to skip): ",
) -> str | None:
    """Let the user accept or edit a replacement ``contains`` pattern.

    The pattern must be at least four characters and occur in every one of
    ``match_values``. Returns the stripped pattern, or ``None`` when skipped.
    """

    kb = KeyBindings()

    @kb.add("escape")
    def _(event) -> None:  # pragma: no cover - exercised indirectly
        event.app.exit(result=None)

    @kb.add("c-c", eager=True)
    def _(event) -> None:  # pragma: no cover - exercised indirectly
        event.app.exit(result=None)

    class _PatternValidator(Validator):
        def validate(self, document) -> None:
            text = document.text.strip()
            if len(text) < MIN_PATTERN_LENGTH:
                raise ValidationError(
                    message=f"Pattern must be at least {MIN_PATTERN_LENGTH} characters."
                )
            if not is_valid_consolidation_pattern(text, match_values):
                raise ValidationError(message="Pattern must appear in every current pattern.")

    sess = _session_with(session, kb)
    value = sess.prompt(
        message,
        default=initial,
        validator=_PatternValidator(),
        validate_while_typing=False,
        key_bindings=kb,
    )
    return value.strip() if value is not None else None


_YES = {"y", "yes"}
_NO = {"n", "no"}


def prompt_confirm(
    message: str,
    *,
    default: bool = False,
    session: PromptSession | None = None,
) -> bool:
    """Ask a yes/no question; Enter on an empty answer takes ``default``."""

    kb = KeyBindings()
    suffix = " [Y/n] " if default else " [y/N] "

    class _YesNo(Validator):
        def validate(self, document) -> None:
            text = document.text.strip().lower()
            if text and text not in _YES | _NO:
                raise ValidationError(message="Answer y or n.")

    sess = _session_with(session, kb)
    answer = sess.prompt(
        message + suffix,
        completer=WordCompleter(["yes", "no"], ignore_case=True),
        validator=_YesNo(),
        validate_while_typing=False,
    )
    text = (answer or "").strip().lower()
    if not text:
        return default
    return text in _YES


__all__ = ["prompt_confirm", "prompt_match_pattern"]
