"""Prompt text and strict response formats for the OpenAI Responses API.

Every call asks for JSON matching a strict schema so the adapter can parse
the output with pydantic instead of scraping free text.
"""

from __future__ import annotations

from collections.abc import Sequence

from openai.types.responses.response_format_text_json_schema_config_param import (
    ResponseFormatTextJSONSchemaConfigParam,
)

from .models import ConsolidationGroup, GroupForReview


def build_propose_payee_prompt(raw_payee: str, known_payees: Sequence[str]) -> str:
    known = (
        "Known payees (prefer reusing these if appropriate):\n" + ", ".join(known_payees)
        if known_payees
        else ""
    )
    return (
        "Convert this raw bank transaction payee name to a clean, human-readable name.\n"
        "Return only the clean name.\n\n"
        f'Raw payee: "{raw_payee}"\n'
        f"{known}"
    )


def build_propose_category_prompt(clean_payee: str, categories: Sequence[str]) -> str:
    return (
        "Which category best fits this payee? Return only the category name.\n\n"
        f'Payee: "{clean_payee}"\n'
        f"Categories: {', '.join(categories)}"
    )


def format_review_groups(groups: Sequence[GroupForReview]) -> str:
    return "\n".join(
        f'- "{g.clean_payee}" ({g.category or "no category"}): ' + " | ".join(g.raw_payees)
        for g in groups
    )


def build_review_groupings_prompt(groups: Sequence[GroupForReview]) -> str:
    return (
        "You are reviewing bank transaction payee groupings for a personal finance app. "
        "Each line shows: clean name (category): raw bank strings that map to it.\n\n"
        "Actively look for and flag these patterns:\n\n"
        "- SPLIT: raw payees in the same group that represent meaningfully different "
        'merchants or expense types (e.g. "AMAZON FRESH" mixed with "AMAZON MKTPL": '
        "groceries vs shopping; or distinct gas station brands collapsed under one name). "
        "Each brand should be its own payee.\n"
        '- RENAME: the clean name is a generic category word ("Gas Station", "Restaurant", '
        '"Store") instead of the actual merchant name, or is unclear or too abbreviated.\n'
        "- CATEGORY: the assigned category seems wrong for the merchant type.\n"
        '- FLAG: transfers between accounts disguised as expenses (e.g. "AUTOMATIC PAYMENT", '
        '"ONLINE PAYMENT"), or other notable issues.\n\n'
        "Different businesses should never share a clean name, even in the same industry.\n"
        "For split suggestions, rawPayees must repeat the raw strings exactly.\n\n"
        "Be thorough. Flag every issue you find.\n\n"
        f"{format_review_groups(groups)}"
    )


def format_consolidation_groups(groups: Sequence[ConsolidationGroup]) -> str:
    lines: list[str] = []
    for g in groups:
        lines.append(f'"{g.action_value}":')
        lines.extend(f'  - "{mv}"' for mv in g.match_values)
    return "\n".join(lines)


def build_suggest_consolidation_prompt(groups: Sequence[ConsolidationGroup]) -> str:
    return (
        "You are reviewing bank transaction payee import rules. Each entry shows a clean "
        'payee name that is currently matched by multiple distinct "contains" patterns. '
        'Suggest a single, shorter "contains" pattern that would match all variants.\n\n'
        "Look for the stable base string shared by all variants, typically the longest "
        "meaningful prefix after removing trailing transaction codes, session IDs, store "
        "numbers, or random suffixes. The suggested pattern must be a real substring present "
        "in every listed variant. Use the clean payee name exactly as given for actionValue.\n\n"
        f"{format_consolidation_groups(groups)}"
    )


def _strict(name: str, schema: dict) -> ResponseFormatTextJSONSchemaConfigParam:
    return {"type": "json_schema", "name": name, "schema": schema, "strict": True}


def payee_response_format() -> ResponseFormatTextJSONSchemaConfigParam:
    return _strict(
        "clean_payee",
        {
            "type": "object",
            "properties": {"name": {"type": "string"}},
            "required": ["name"],
            "additionalProperties": False,
        },
    )


def category_response_format(
    categories: Sequence[str],
) -> ResponseFormatTextJSONSchemaConfigParam:
    """Category choice constrained to ``categories``."""

    allowed = list(dict.fromkeys(c for c in categories if c.strip()))
    if not allowed:
        raise ValueError("categories must contain at least one non-blank name")
    return _strict(
        "payee_category",
        {
            "type": "object",
            "properties": {"category": {"type": "string", "enum": allowed}},
            "required": ["category"],
            "additionalProperties": False,
        },
    )


def review_response_format() -> ResponseFormatTextJSONSchemaConfigParam:
    item = {
        "type": "object",
        "properties": {
            "type": {"type": "string", "enum": ["split", "rename", "category", "flag"]},
            "cleanPayee": {"type": "string"},
            "rawPayees": {"type": ["array", "null"], "items": {"type": "string"}},
            "suggestedName": {"type": ["string", "null"]},
            "suggestedCategory": {"type": ["string", "null"]},
            "reason": {"type": "string"},
        },
        "required": [
            "type",
            "cleanPayee",
            "rawPayees",
            "suggestedName",
            "suggestedCategory",
            "reason",
        ],
        "additionalProperties": False,
    }
    return _strict(
        "report_anomalies",
        {
            "type": "object",
            "properties": {"suggestions": {"type": "array", "items": item}},
            "required": ["suggestions"],
            "additionalProperties": False,
        },
    )


def consolidation_response_format() -> ResponseFormatTextJSONSchemaConfigParam:
    item = {
        "type": "object",
        "properties": {
            "actionValue": {"type": "string"},
            "suggestedMatchValue": {"type": "string"},
            "reason": {"type": "string"},
        },
        "required": ["actionValue", "suggestedMatchValue", "reason"],
        "additionalProperties": False,
    }
    return _strict(
        "report_consolidations",
        {
            "type": "object",
            "properties": {"consolidations": {"type": "array", "items": item}},
            "required": ["consolidations"],
            "additionalProperties": False,
        },
    )


__all__ = [
    "build_propose_category_prompt",
    "build_propose_payee_prompt",
    "build_review_groupings_prompt",
    "build_suggest_consolidation_prompt",
    "category_response_format",
    "consolidation_response_format",
    "payee_response_format",
    "review_response_format",
]
