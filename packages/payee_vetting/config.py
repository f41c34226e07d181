"""Environment-driven settings.

Values are resolved lazily on each call so tests (and the CLI after loading a
``.env``) can change the environment without re-importing anything. Nothing
here reads files or creates clients at import time.
"""

from __future__ import annotations

import os
from pathlib import Path

RULES_PATH_ENV = "PAYEE_VETTING_RULES_PATH"
CONCURRENCY_ENV = "PAYEE_VETTING_LLM_CONCURRENCY"
MODEL_ENV = "PAYEE_VETTING_MODEL"
REVIEW_MODEL_ENV = "PAYEE_VETTING_REVIEW_MODEL"

DEFAULT_RULES_FILENAME = "vetted-rules.json"
DEFAULT_LLM_CONCURRENCY = 5
_MAX_LLM_CONCURRENCY = 32

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_REVIEW_MODEL = "gpt-4o"


def vetted_rules_path() -> Path:
    """Return the vetted store location.

    Default: ``./vetted-rules.json`` under the current working directory.
    Override: ``PAYEE_VETTING_RULES_PATH`` (absolute or relative).
    """

    raw = os.getenv(RULES_PATH_ENV)
    if raw and raw.strip():
        return Path(raw.strip()).expanduser().resolve()
    return (Path.cwd() / DEFAULT_RULES_FILENAME).resolve()


def llm_concurrency() -> int:
    """Resolve the worker ceiling for proposal calls.

    Honors ``PAYEE_VETTING_LLM_CONCURRENCY`` when it parses as a positive
    integer, capped at 32; otherwise returns the default of 5.
    """

    raw = os.getenv(CONCURRENCY_ENV)
    try:
        value = int(raw) if raw else None
    except ValueError:
        value = None
    if value is None or value < 1:
        return DEFAULT_LLM_CONCURRENCY
    return min(value, _MAX_LLM_CONCURRENCY)


def model_name() -> str:
    return (os.getenv(MODEL_ENV) or "").strip() or DEFAULT_MODEL


def review_model_name() -> str:
    return (os.getenv(REVIEW_MODEL_ENV) or "").strip() or DEFAULT_REVIEW_MODEL


__all__ = [
    "DEFAULT_LLM_CONCURRENCY",
    "llm_concurrency",
    "model_name",
    "review_model_name",
    "vetted_rules_path",
]
