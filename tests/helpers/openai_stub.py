"""Test helpers to stub the OpenAI Responses client used by ``payee_vetting.llm``.

The stub records each ``responses.create`` call and answers from a queue of
canned outputs. An output may be a mapping (serialized as the JSON text of
the response) or an exception instance (raised from ``create``).
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from typing import Any


class _Resp:
    def __init__(self, output_text: str) -> None:
        self.output_text = output_text


class StatusError(Exception):
    """Mimics the ``status_code`` attribute of ``openai.APIStatusError``."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


class OpenAIStub:
    """Minimal stand-in for ``openai.OpenAI`` exposing ``responses.create``."""

    def __init__(self, outputs: Iterable[Mapping[str, Any] | Exception | str]) -> None:
        self._outputs = list(outputs)
        self.calls: list[dict[str, Any]] = []

        class _Responses:
            def __init__(self, outer: OpenAIStub) -> None:
                self._outer = outer

            def create(self, **kwargs: Any) -> _Resp:
                self._outer.calls.append(kwargs)
                if not self._outer._outputs:
                    raise AssertionError("OpenAIStub: no more canned outputs")
                out = self._outer._outputs.pop(0)
                if isinstance(out, Exception):
                    raise out
                if isinstance(out, str):
                    return _Resp(out)
                return _Resp(json.dumps(out))

        self.responses = _Responses(self)
