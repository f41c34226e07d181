"""Partition raw payees by how completely the external rules already handle them.

A payee is *covered* when a pre-stage rule maps it to a payee entity and a
categorize-stage rule targets that entity; *needs_category* when only the
first half exists; *uncovered* otherwise.

Categorize rules are recognized by identity, not structure: rules written by
this package carry an id-typed ``payee`` condition, while rules authored in the
backend's own UI carry the payee's display name as a plain string.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

from .engine import find_pre_rule
from .logging_setup import get_logger
from .models import CoverageResult, Rule

_logger = get_logger("payee_vetting.coverage")


def _payee_entity_id(rule: Rule) -> str | None:
    for action in rule.actions:
        if action.field == "payee" and action.value:
            return action.value
    return None


def _has_category_rule(
    rules: Sequence[Rule], entity_id: str, entity_name: str | None
) -> bool:
    name = entity_name.casefold() if entity_name else None
    for rule in rules:
        if rule.stage != "categorize":
            continue
        for c in rule.conditions:
            if c.field != "payee":
                continue
            if c.value_type == "id" and c.value == entity_id:
                return True
            # Unresolvable names only ever match by id.
            if c.value_type == "string" and name is not None and c.value.casefold() == name:
                return True
    return False


def classify_by_rule_coverage(
    rules: Sequence[Rule],
    raw_payees: Iterable[str],
    payee_names: Mapping[str, str],
) -> CoverageResult:
    """Bucket each raw payee into covered / needs_category / uncovered.

    ``payee_names`` maps external payee id to display name. Input order is
    preserved within each bucket; duplicates are classified once.
    """

    covered: list[str] = []
    needs_category: list[str] = []
    uncovered: list[str] = []
    seen: set[str] = set()

    for raw in raw_payees:
        if raw in seen:
            continue
        seen.add(raw)

        pre = find_pre_rule(rules, raw)
        entity_id = _payee_entity_id(pre) if pre is not None else None
        if entity_id is None:
            uncovered.append(raw)
            continue

        if _has_category_rule(rules, entity_id, payee_names.get(entity_id)):
            covered.append(raw)
        else:
            needs_category.append(raw)

    _logger.debug(
        "coverage:done covered=%d needs_category=%d uncovered=%d",
        len(covered),
        len(needs_category),
        len(uncovered),
    )
    return CoverageResult(
        covered=tuple(covered),
        needs_category=tuple(needs_category),
        uncovered=tuple(uncovered),
    )


__all__ = ["classify_by_rule_coverage"]
