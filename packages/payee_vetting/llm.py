"""OpenAI-backed proposal, review and consolidation sources.

:class:`OpenAIAdapter` satisfies :class:`~payee_vetting.external.ProposalSource`,
:class:`~payee_vetting.external.ReviewSource` and
:class:`~payee_vetting.external.SuggestionSource`. No client is created and no
environment is read at import time.

Transport errors are retried only for HTTP 429 and 5xx; parsing and
validation failures are terminal.
"""

from __future__ import annotations

import json
import random
import time
from collections.abc import Mapping, Sequence
from typing import Any

from openai import OpenAI
from openai.types.responses.response_format_text_json_schema_config_param import (
    ResponseFormatTextJSONSchemaConfigParam,
)
from pydantic import TypeAdapter, ValidationError

from . import config, prompting
from .consolidation import SuggestionFormatError
from .logging_setup import get_logger
from .models import ConsolidationGroup, ConsolidationSuggestion, GroupForReview, Suggestion

_MAX_ATTEMPTS: int = 3
_BACKOFF_SCHEDULE_SEC: tuple[float, ...] = (0.5, 2.0)
_JITTER_PCT: float = 0.20

_logger = get_logger("payee_vetting.llm")

_SUGGESTION_ADAPTER: TypeAdapter[Suggestion] = TypeAdapter(Suggestion)
_CONSOLIDATION_ADAPTER: TypeAdapter[list[ConsolidationSuggestion]] = TypeAdapter(
    list[ConsolidationSuggestion]
)


def _extract_response_json_mapping(resp: Any) -> Mapping[str, Any]:
    """Decode the JSON object from a Responses API result.

    Prefers ``resp.output_text``; falls back to ``resp.output[0].content[0].text``.
    Raises ``ValueError`` when no text is found or it is not valid JSON.
    """

    text: str | None = getattr(resp, "output_text", None)
    if not text:
        try:
            first = resp.output[0] if getattr(resp, "output", None) else None
            content = getattr(first, "content", None)
            if content:
                txt_obj = getattr(content[0], "text", None)
                if isinstance(txt_obj, str):
                    text = txt_obj
                else:
                    maybe_val = getattr(txt_obj, "value", None)
                    if isinstance(maybe_val, str):
                        text = maybe_val
        except (AttributeError, IndexError, TypeError):
            text = None
    if not text or not isinstance(text, str):
        raise ValueError("Unexpected Responses API shape; unable to locate text output")

    try:
        decoded = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError("Model output was not valid JSON per the requested schema") from e
    if not isinstance(decoded, Mapping):
        raise ValueError("Model output was not a JSON object")
    return decoded


def _is_retryable(exc: BaseException) -> bool:
    """Return True only for HTTP 429 and 5xx errors."""

    sc = getattr(exc, "status_code", None)
    return isinstance(sc, int) and (sc == 429 or 500 <= sc < 600)


def _sleep_backoff(attempt_no: int) -> None:
    if attempt_no - 1 < len(_BACKOFF_SCHEDULE_SEC):
        base = _BACKOFF_SCHEDULE_SEC[attempt_no - 1]
    else:
        base = _BACKOFF_SCHEDULE_SEC[-1]
    jitter = base * _JITTER_PCT
    time.sleep(max(0.0, base + random.uniform(-jitter, jitter)))


class OpenAIAdapter:
    """Language-model oracle over the OpenAI Responses API.

    ``model`` serves the cheap per-payee calls; ``review_model`` the batch
    review and consolidation calls. Both default from the environment.
    """

    def __init__(
        self,
        client: OpenAI | None = None,
        *,
        model: str | None = None,
        review_model: str | None = None,
    ) -> None:
        self._client = client
        self.model = model or config.model_name()
        self.review_model = review_model or config.review_model_name()

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI()
        return self._client

    def _call(
        self,
        event: str,
        *,
        model: str,
        user_content: str,
        text_format: ResponseFormatTextJSONSchemaConfigParam,
    ) -> Mapping[str, Any]:
        attempt = 1
        while True:
            t0 = time.perf_counter()
            try:
                resp = self.client.responses.create(
                    model=model,
                    input=user_content,
                    text={"format": text_format},
                )
                decoded = _extract_response_json_mapping(resp)
                _logger.debug(
                    "llm:%s_done model=%s latency_ms=%.2f",
                    event,
                    model,
                    (time.perf_counter() - t0) * 1000.0,
                )
                return decoded
            except Exception as e:  # noqa: BLE001
                dt_ms = (time.perf_counter() - t0) * 1000.0
                if attempt >= _MAX_ATTEMPTS or not _is_retryable(e):
                    _logger.error(
                        "llm:%s_failed_terminal model=%s latency_ms=%.2f error=%s attempt=%d",
                        event,
                        model,
                        dt_ms,
                        e.__class__.__name__,
                        attempt,
                    )
                    raise
                _logger.warning(
                    "llm:%s_retry model=%s latency_ms=%.2f error=%s attempt=%d",
                    event,
                    model,
                    dt_ms,
                    e.__class__.__name__,
                    attempt,
                )
                _sleep_backoff(attempt)
                attempt += 1

    # ------------------------------------------------------------------
    # ProposalSource
    # ------------------------------------------------------------------

    def propose_payee(self, raw_payee: str, known_payees: Sequence[str]) -> str:
        decoded = self._call(
            "propose_payee",
            model=self.model,
            user_content=prompting.build_propose_payee_prompt(raw_payee, known_payees),
            text_format=prompting.payee_response_format(),
        )
        name = decoded.get("name")
        return name.strip() if isinstance(name, str) and name.strip() else raw_payee

    def propose_category(self, clean_payee: str, categories: Sequence[str]) -> str:
        if not categories:
            return ""
        decoded = self._call(
            "propose_category",
            model=self.model,
            user_content=prompting.build_propose_category_prompt(clean_payee, categories),
            text_format=prompting.category_response_format(categories),
        )
        category = decoded.get("category")
        return category.strip() if isinstance(category, str) else ""

    # ------------------------------------------------------------------
    # ReviewSource
    # ------------------------------------------------------------------

    def review_groupings(self, groups: Sequence[GroupForReview]) -> list[Suggestion]:
        """Ask for anomalies in multi-payee groups; singletons are never sent.

        Individually malformed suggestions are dropped with a warning.
        """

        multi = [g for g in groups if len(g.raw_payees) > 1]
        if not multi:
            return []
        decoded = self._call(
            "review_groupings",
            model=self.review_model,
            user_content=prompting.build_review_groupings_prompt(multi),
            text_format=prompting.review_response_format(),
        )
        items = decoded.get("suggestions")
        if not isinstance(items, list):
            raise ValueError("review response is missing 'suggestions'")

        out: list[Suggestion] = []
        for item in items:
            try:
                out.append(_SUGGESTION_ADAPTER.validate_python(item))
            except ValidationError as e:
                _logger.warning("llm:review_dropped item=%s errors=%d", item, e.error_count())
        _logger.info("llm:review_done groups=%d suggestions=%d", len(multi), len(out))
        return out

    # ------------------------------------------------------------------
    # SuggestionSource
    # ------------------------------------------------------------------

    def suggest_consolidation(
        self, groups: Sequence[ConsolidationGroup]
    ) -> list[ConsolidationSuggestion]:
        if not groups:
            return []
        decoded = self._call(
            "suggest_consolidation",
            model=self.review_model,
            user_content=prompting.build_suggest_consolidation_prompt(groups),
            text_format=prompting.consolidation_response_format(),
        )
        try:
            return _CONSOLIDATION_ADAPTER.validate_python(decoded.get("consolidations"))
        except ValidationError as e:
            raise SuggestionFormatError(f"invalid consolidation response: {e}") from e


__all__ = ["OpenAIAdapter"]
