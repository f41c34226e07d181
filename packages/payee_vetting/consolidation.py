"""Merge redundant pre-stage rules that resolve to the same clean name.

Patterns derived independently from slightly different raw strings tend to
pile up under one clean name (``CAPITAL ONE CRCARDPMT 123`` and
``CAPITAL ONE CRCARDPMT 456`` both mapping to ``Capital One``). A group is
collapsed into one rule carrying a single replacement pattern.
"""

from __future__ import annotations

from collections.abc import Sequence

from pydantic import TypeAdapter, ValidationError

from .external import SuggestionSource
from .logging_setup import get_logger
from .models import ConsolidationGroup, ConsolidationSuggestion
from .vetted import StorePersistenceError, VettedRuleStore, make_pre_rule

_logger = get_logger("payee_vetting.consolidation")


class ConsolidationError(RuntimeError):
    """A group could not be merged; its original rules were left in place."""


class SuggestionFormatError(ValueError):
    """A suggestion source returned structurally invalid output."""


_SUGGESTIONS_ADAPTER: TypeAdapter[list[ConsolidationSuggestion]] = TypeAdapter(
    list[ConsolidationSuggestion]
)


def build_consolidation_groups(store: VettedRuleStore) -> list[ConsolidationGroup]:
    """Groups of 2+ pre-stage rules sharing a clean name (case-insensitive).

    A group keeps the spelling of the first rule seen.
    """

    by_name: dict[str, tuple[str, list[str]]] = {}
    for rule in store.get_all_rules():
        if rule.stage != "pre":
            continue
        k = rule.action_value.casefold()
        if k not in by_name:
            by_name[k] = (rule.action_value, [])
        by_name[k][1].append(rule.match_value)

    return [
        ConsolidationGroup(action_value=name, match_values=tuple(values))
        for name, values in by_name.values()
        if len(values) > 1
    ]


def request_consolidation_suggestions(
    groups: Sequence[ConsolidationGroup],
    source: SuggestionSource,
) -> dict[str, ConsolidationSuggestion]:
    """Ask ``source`` for replacement patterns, keyed by group clean name.

    Only structure is checked. Suggestions for unknown groups are dropped and
    the first suggestion per group wins.
    """

    if not groups:
        return {}
    raw = source.suggest_consolidation(groups)
    try:
        suggestions = _SUGGESTIONS_ADAPTER.validate_python(
            [s.model_dump() if isinstance(s, ConsolidationSuggestion) else s for s in raw]
        )
    except ValidationError as e:
        raise SuggestionFormatError(f"invalid consolidation suggestions: {e}") from e

    wanted = {g.action_value.casefold(): g.action_value for g in groups}
    out: dict[str, ConsolidationSuggestion] = {}
    for s in suggestions:
        name = wanted.get(s.action_value.casefold())
        if name is None:
            _logger.debug("consolidate:unknown_group action_value=%s", s.action_value)
            continue
        out.setdefault(name, s)
    return out


def is_valid_consolidation_pattern(pattern: str, match_values: Sequence[str]) -> bool:
    """Whether ``pattern`` occurs (case-insensitively) in every original pattern.

    The merge itself does not call this; callers decide whether to trust a
    pattern that fails the check.
    """

    needle = pattern.strip().casefold()
    return bool(needle) and all(needle in mv.casefold() for mv in match_values)


def apply_consolidation(
    store: VettedRuleStore,
    group: ConsolidationGroup,
    pattern: str,
) -> str:
    """Replace every pre-rule of ``group`` with one rule for ``pattern``.

    Removal and approval land in a single store write, so the group is either
    fully merged or untouched. Returns the new rule key.
    """

    pattern = pattern.strip()
    name = group.action_value.casefold()
    old_keys = [
        r.key
        for r in store.get_all_rules()
        if r.stage == "pre"
        and r.action_value.casefold() == name
        and r.match_value in group.match_values
    ]
    try:
        new_rule = make_pre_rule(pattern, group.action_value)
        store.apply_batch(remove=old_keys, approve=[new_rule])
    except (StorePersistenceError, ValueError) as e:
        _logger.error(
            "consolidate:failed action_value=%s pattern=%s error=%s",
            group.action_value,
            pattern,
            e.__class__.__name__,
        )
        raise ConsolidationError(
            f"could not consolidate {group.action_value!r} into {pattern!r}: {e}"
        ) from e

    _logger.info(
        "consolidate:applied action_value=%s pattern=%s removed=%d",
        group.action_value,
        pattern,
        len(old_keys),
    )
    return new_rule.key


__all__ = [
    "ConsolidationError",
    "SuggestionFormatError",
    "apply_consolidation",
    "build_consolidation_groups",
    "is_valid_consolidation_pattern",
    "request_consolidation_suggestions",
]
