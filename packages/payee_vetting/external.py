"""Boundaries to collaborators outside the core.

The budgeting backend, the language model and the terminal are all reached
through the small protocols below so the core can be driven by real adapters
(:mod:`payee_vetting.llm`) or by plain test doubles.

The backend itself is not contacted from here: its rules and id->name maps
are read from JSON exports with :func:`load_rules_file` and
:func:`load_names_file`.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .models import ConsolidationGroup, ConsolidationSuggestion, GroupForReview, Rule, Suggestion


@runtime_checkable
class ProposalSource(Protocol):
    """Proposes default clean names and categories. Never needed for correctness."""

    def propose_payee(self, raw_payee: str, known_payees: Sequence[str]) -> str: ...

    def propose_category(self, clean_payee: str, categories: Sequence[str]) -> str: ...


@runtime_checkable
class ReviewSource(Protocol):
    def review_groupings(self, groups: Sequence[GroupForReview]) -> list[Suggestion]: ...


@runtime_checkable
class SuggestionSource(Protocol):
    """Proposes one replacement pattern per consolidation group."""

    def suggest_consolidation(
        self, groups: Sequence[ConsolidationGroup]
    ) -> list[ConsolidationSuggestion]: ...


@runtime_checkable
class RuleSource(Protocol):
    """Read access to the backend's ordered rule list and its id->name maps."""

    def get_rules(self) -> list[Rule]: ...

    def get_payee_names(self) -> dict[str, str]: ...


class Category(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    group_id: str | None = None
    hidden: bool = False


class CategoryGroup(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    hidden: bool = False
    is_income: bool = False
    categories: list[Category] = Field(default_factory=list)


def flat_category_names(groups: Iterable[CategoryGroup]) -> list[str]:
    """Category names across all groups, in group then category order."""

    return [c.name for g in groups for c in g.categories]


_RULES_ADAPTER: TypeAdapter[list[Rule]] = TypeAdapter(list[Rule])
_GROUPS_ADAPTER: TypeAdapter[list[CategoryGroup]] = TypeAdapter(list[CategoryGroup])


def _read_json(path: Path | str) -> Any:
    p = Path(path)
    try:
        return json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"{p}: not valid JSON: {e}") from e


def _unwrap(doc: Any, key: str) -> Any:
    if isinstance(doc, Mapping) and key in doc:
        return doc[key]
    return doc


def load_rules_file(path: Path | str) -> list[Rule]:
    """Read a rules export: a JSON list of rules or ``{"rules": [...]}``.

    Order is preserved; it decides which rule wins.
    """

    doc = _unwrap(_read_json(path), "rules")
    try:
        return _RULES_ADAPTER.validate_python(doc)
    except ValidationError as e:
        raise ValueError(f"{path}: invalid rules export: {e}") from e


def load_names_file(path: Path | str) -> dict[str, str]:
    """Read an id->name map.

    Accepts a plain ``{"<id>": "<name>"}`` object or exports shaped like
    ``{"payees": [{"id", "name"}], "categories": [...]}`` / a bare list of
    ``{"id", "name"}`` records. All sections are merged into one map.
    """

    doc = _read_json(path)
    records: list[Any] = []
    if isinstance(doc, list):
        records = doc
    elif isinstance(doc, Mapping):
        if all(isinstance(v, str) for v in doc.values()):
            return {str(k): v for k, v in doc.items()}
        for section in doc.values():
            if isinstance(section, list):
                records.extend(section)
    else:
        raise ValueError(f"{path}: expected an object or a list of {{id, name}} records")

    names: dict[str, str] = {}
    for rec in records:
        if isinstance(rec, Mapping) and "id" in rec and "name" in rec:
            names[str(rec["id"])] = str(rec["name"])
    return names


def load_category_groups_file(path: Path | str) -> list[CategoryGroup]:
    """Read category groups: a list or ``{"categoryGroups": [...]}``."""

    doc = _unwrap(_read_json(path), "categoryGroups")
    try:
        return _GROUPS_ADAPTER.validate_python(doc)
    except ValidationError as e:
        raise ValueError(f"{path}: invalid category groups export: {e}") from e


class ExportedRuleSource:
    """:class:`RuleSource` over a rules export and a names export on disk."""

    def __init__(self, rules_path: Path | str, names_path: Path | str | None = None) -> None:
        self.rules_path = Path(rules_path)
        self.names_path = Path(names_path) if names_path is not None else None

    def get_rules(self) -> list[Rule]:
        return load_rules_file(self.rules_path)

    def get_payee_names(self) -> dict[str, str]:
        if self.names_path is None:
            return {}
        return load_names_file(self.names_path)


__all__ = [
    "Category",
    "CategoryGroup",
    "ExportedRuleSource",
    "ProposalSource",
    "ReviewSource",
    "RuleSource",
    "SuggestionSource",
    "flat_category_names",
    "load_category_groups_file",
    "load_names_file",
    "load_rules_file",
]
