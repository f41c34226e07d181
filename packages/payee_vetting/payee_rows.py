"""Session rows: raw payees grouped by match pattern, plus the decision on each.

Rows are immutable. Every edit takes a sequence of rows and returns a new
tuple; nothing here mutates a row handed in by the caller. Only
:func:`save_decisions` and the session review helpers at the bottom touch the
store.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

from .engine import (
    find_pre_rule,
    first_action_value,
    first_condition_value,
    pre_rule_key,
    rule_key,
)
from .logging_setup import get_logger
from .models import (
    CategorySuggestion,
    FlagSuggestion,
    GroupForReview,
    PayeeRow,
    RawMeta,
    RawTransaction,
    RenameSuggestion,
    Rule,
    SplitSuggestion,
    Suggestion,
    VettedRule,
)
from .normalize import extract_match_value
from .vetted import VettedRuleStore, make_category_rule, make_pre_rule

_logger = get_logger("payee_vetting.payee_rows")


# ---------------------------------------------------------------------------
# Building rows
# ---------------------------------------------------------------------------


def compute_vetted_meta(
    raw_payee: str,
    rules: Sequence[Rule],
    store: VettedRuleStore,
    payee_names: Mapping[str, str],
    tx: RawTransaction | None = None,
) -> RawMeta | None:
    """Resolve a raw payee without asking a proposal source.

    In order: a prior local decision matching the raw string; a local decision
    recorded under the matching external rule's key; the matching external
    rule itself (payee id resolved through ``payee_names``). Returns ``None``
    when the payee is unknown and a name must be proposed.
    """

    matched = find_pre_rule(rules, tx if tx is not None else raw_payee)
    key = rule_key(matched) if matched is not None and matched.actions else None

    prior = store.find_by_raw_payee(raw_payee)
    if prior is not None:
        return RawMeta(
            match_value=prior.match_value,
            clean_payee=prior.action_value,
            pre_rule_key=prior.key,
            was_vetted=True,
        )

    if key is not None and (stored := store.get(key)) is not None:
        return RawMeta(
            match_value=stored.match_value,
            clean_payee=stored.action_value,
            pre_rule_key=key,
            was_vetted=True,
        )

    if matched is not None:
        target = first_action_value(matched, "payee") or raw_payee
        clean = payee_names.get(target, target)
        match_value = first_condition_value(matched, "imported_payee") or raw_payee
        return RawMeta(
            match_value=match_value,
            clean_payee=clean,
            pre_rule_key=key or pre_rule_key(match_value, clean),
            was_vetted=False,
        )

    return None


def build_proposed_meta(raw_payee: str, proposed_name: str) -> RawMeta:
    """Meta for an unknown payee whose clean name came from a proposal."""

    match_value = extract_match_value(raw_payee)
    return RawMeta(
        match_value=match_value,
        clean_payee=proposed_name,
        pre_rule_key=pre_rule_key(match_value, proposed_name),
        was_vetted=False,
    )


def build_payee_rows(
    raw_payees: Iterable[str],
    metas: Mapping[str, RawMeta],
    tx_counts: Mapping[str, int],
    store: VettedRuleStore,
) -> tuple[PayeeRow, ...]:
    """Group raw payees sharing a match pattern into one row each.

    The first raw payee seen for a pattern decides the row's clean name;
    category and tag are seeded from the store.
    """

    by_match: dict[str, PayeeRow] = {}
    for raw in raw_payees:
        meta = metas[raw]
        existing = by_match.get(meta.match_value)
        if existing is not None:
            by_match[meta.match_value] = dataclasses.replace(
                existing,
                raw_payees=(*existing.raw_payees, raw),
                tx_count=existing.tx_count + tx_counts.get(raw, 0),
            )
            continue

        cat_rule = store.find_by_clean_name(meta.clean_payee)
        tag_decided = store.has_tag(meta.clean_payee)
        by_match[meta.match_value] = PayeeRow(
            raw_payees=(raw,),
            tx_count=tx_counts.get(raw, 0),
            match_value=meta.match_value,
            clean_payee=meta.clean_payee,
            category=cat_rule.action_value if cat_rule is not None else None,
            tag=store.get_tag(meta.clean_payee) if tag_decided else None,
            tag_decided=tag_decided,
            pre_rule_key=meta.pre_rule_key,
            was_vetted=meta.was_vetted,
        )
    return tuple(by_match.values())


def aggregate_groups_for_review(rows: Iterable[PayeeRow]) -> list[GroupForReview]:
    """Merge rows by clean name (case-insensitive) for a batch review."""

    groups: dict[str, GroupForReview] = {}
    for row in rows:
        k = row.clean_payee.casefold()
        g = groups.get(k)
        if g is None:
            groups[k] = GroupForReview(
                clean_payee=row.clean_payee,
                category=row.category,
                raw_payees=tuple(row.raw_payees),
            )
        else:
            groups[k] = dataclasses.replace(g, raw_payees=(*g.raw_payees, *row.raw_payees))
    return list(groups.values())


# ---------------------------------------------------------------------------
# Edits
# ---------------------------------------------------------------------------


def _replace_at(rows: Sequence[PayeeRow], index: int, row: PayeeRow) -> tuple[PayeeRow, ...]:
    out = list(rows)
    out[index] = row
    return tuple(out)


def rename_row(rows: Sequence[PayeeRow], index: int, clean_payee: str) -> tuple[PayeeRow, ...]:
    row = rows[index]
    return _replace_at(
        rows,
        index,
        dataclasses.replace(
            row,
            clean_payee=clean_payee,
            pre_rule_key=pre_rule_key(row.match_value, clean_payee),
            touched=True,
            skipped=False,
        ),
    )


def set_row_match_value(
    rows: Sequence[PayeeRow], index: int, match_value: str
) -> tuple[PayeeRow, ...]:
    """Change a row's pattern; the pattern must still occur in every raw payee."""

    row = rows[index]
    needle = match_value.casefold()
    missing = [r for r in row.raw_payees if needle not in r.casefold()]
    if not match_value.strip() or missing:
        raise ValueError(
            f"match value {match_value!r} does not occur in raw payees: {', '.join(missing)}"
        )
    return _replace_at(
        rows,
        index,
        dataclasses.replace(
            row,
            match_value=match_value,
            pre_rule_key=pre_rule_key(match_value, row.clean_payee),
            touched=True,
            skipped=False,
        ),
    )


def set_row_category(
    rows: Sequence[PayeeRow], index: int, category: str | None
) -> tuple[PayeeRow, ...]:
    row = dataclasses.replace(rows[index], category=category, touched=True, skipped=False)
    return _replace_at(rows, index, row)


def set_row_tag(rows: Sequence[PayeeRow], index: int, tag: str | None) -> tuple[PayeeRow, ...]:
    """Record a tag decision; ``None`` is an explicit "no tag"."""

    return _replace_at(
        rows,
        index,
        dataclasses.replace(rows[index], tag=tag, tag_decided=True, touched=True, skipped=False),
    )


def skip_row(rows: Sequence[PayeeRow], index: int) -> tuple[PayeeRow, ...]:
    return _replace_at(rows, index, dataclasses.replace(rows[index], skipped=True))


@dataclass(frozen=True, slots=True)
class SuggestionOutcome:
    applied: bool
    rows: tuple[PayeeRow, ...]


def _count(raw_payees: Iterable[str], tx_counts: Mapping[str, int]) -> int:
    return sum(tx_counts.get(r, 0) for r in raw_payees)


def apply_suggestion(
    suggestion: Suggestion,
    rows: Sequence[PayeeRow],
    tx_counts: Mapping[str, int],
) -> SuggestionOutcome:
    """Apply one review suggestion to rows whose clean name matches it.

    A split moves the named raw payees into a new row appended at the end;
    source rows may be left empty and are cleaned up by :func:`save_decisions`.
    Flags never change state.
    """

    target = suggestion.clean_payee.casefold()
    hits = [i for i, r in enumerate(rows) if r.clean_payee.casefold() == target]
    out = list(rows)

    match suggestion:
        case SplitSuggestion():
            wanted = {r.casefold() for r in suggestion.raw_payees}
            moved: list[str] = []
            for i in hits:
                row = out[i]
                taken = [r for r in row.raw_payees if r.casefold() in wanted]
                if not taken:
                    continue
                moved.extend(taken)
                kept = tuple(r for r in row.raw_payees if r.casefold() not in wanted)
                out[i] = dataclasses.replace(
                    row, raw_payees=kept, tx_count=_count(kept, tx_counts), touched=True
                )
            if not moved:
                return SuggestionOutcome(applied=False, rows=tuple(rows))
            match_value = extract_match_value(moved[0])
            out.append(
                PayeeRow(
                    raw_payees=tuple(moved),
                    tx_count=_count(moved, tx_counts),
                    match_value=match_value,
                    clean_payee=suggestion.suggested_name,
                    category=suggestion.suggested_category,
                    tag=None,
                    tag_decided=False,
                    pre_rule_key=pre_rule_key(match_value, suggestion.suggested_name),
                    was_vetted=False,
                    touched=True,
                )
            )
            return SuggestionOutcome(applied=True, rows=tuple(out))

        case RenameSuggestion():
            for i in hits:
                row = out[i]
                out[i] = dataclasses.replace(
                    row,
                    clean_payee=suggestion.suggested_name,
                    pre_rule_key=pre_rule_key(row.match_value, suggestion.suggested_name),
                    touched=True,
                )
            return SuggestionOutcome(applied=bool(hits), rows=tuple(out))

        case CategorySuggestion():
            for i in hits:
                out[i] = dataclasses.replace(
                    out[i], category=suggestion.suggested_category, touched=True
                )
            return SuggestionOutcome(applied=bool(hits), rows=tuple(out))

        case FlagSuggestion():
            return SuggestionOutcome(applied=False, rows=tuple(rows))

    raise TypeError(f"unsupported suggestion: {type(suggestion).__name__}")


# ---------------------------------------------------------------------------
# Persisting
# ---------------------------------------------------------------------------


def _stale_pre_rule(
    store: VettedRuleStore, match_value: str, keep_key: str | None = None
) -> VettedRule | None:
    for r in store.get_all_rules():
        if r.stage == "pre" and r.match_value == match_value and r.key != keep_key:
            return r
    return None


def save_decisions(
    rows: Iterable[PayeeRow],
    store: VettedRuleStore,
    known_payees: list[str] | None = None,
) -> dict[str, str]:
    """Persist row decisions and return the ``raw payee -> clean name`` map.

    Skipped rows are ignored. Rows emptied by a split drop their old rule.
    Rows that were already vetted and not edited are mapped but not rewritten.
    New clean names are appended to ``known_payees`` when given.
    """

    payee_map: dict[str, str] = {}
    approved = 0

    for row in rows:
        if row.skipped:
            continue

        if not row.raw_payees:
            stale = _stale_pre_rule(store, row.match_value)
            if stale is not None:
                store.remove(stale.key)
            continue

        for raw in row.raw_payees:
            payee_map[raw] = row.clean_payee
        if known_payees is not None and row.clean_payee not in known_payees:
            known_payees.append(row.clean_payee)

        if row.was_vetted and not row.touched:
            continue

        stale = _stale_pre_rule(store, row.match_value, keep_key=row.pre_rule_key)
        batch = [make_pre_rule(row.match_value, row.clean_payee, key=row.pre_rule_key)]
        if row.category is not None:
            batch.append(make_category_rule(row.clean_payee, row.category))
        store.apply_batch(remove=[stale.key] if stale is not None else [], approve=batch)
        approved += 1

        if row.tag_decided:
            store.set_tag(row.clean_payee, row.tag)

    _logger.info("rows:saved approved=%d mapped=%d", approved, len(payee_map))
    return payee_map


# ---------------------------------------------------------------------------
# Session review
# ---------------------------------------------------------------------------


def _session_rules_for(
    store: VettedRuleStore, clean_payee: str
) -> tuple[list[VettedRule], VettedRule | None]:
    """This session's pre rules targeting ``clean_payee`` and its category rule."""

    name = clean_payee.casefold()
    pres: list[VettedRule] = []
    cat = None
    for r in store.get_session_rules():
        if r.stage == "pre" and r.action_value.casefold() == name:
            pres.append(r)
        elif cat is None and r.stage == "categorize" and r.match_value.casefold() == name:
            cat = r
    return pres, cat


def rename_clean_payee(
    store: VettedRuleStore,
    clean_payee: str,
    new_name: str,
    payee_map: Mapping[str, str],
) -> dict[str, str]:
    """Re-key this session's rules for ``clean_payee`` under ``new_name``.

    Every pre rule for the name moves in one batch, together with the
    category rule. The tag decision moves with the name. Returns the updated
    payee map.
    """

    new_name = new_name.strip()
    pres, cat = _session_rules_for(store, clean_payee)
    if not pres or not new_name or new_name == clean_payee:
        return dict(payee_map)

    remove = [r.key for r in pres]
    approve = [make_pre_rule(r.match_value, new_name) for r in pres]
    if cat is not None:
        remove.append(cat.key)
        approve.append(make_category_rule(new_name, cat.action_value))
    store.apply_batch(remove=remove, approve=approve)

    if store.has_tag(clean_payee):
        store.set_tag(new_name, store.get_tag(clean_payee))
        store.remove_tag(clean_payee)

    _logger.info("session:rename from=%s to=%s rules=%d", clean_payee, new_name, len(pres))
    return {raw: new_name if name == clean_payee else name for raw, name in payee_map.items()}


def change_category(store: VettedRuleStore, clean_payee: str, category: str | None) -> None:
    """Replace this session's category decision; ``None`` removes it."""

    _, cat = _session_rules_for(store, clean_payee)
    remove = [cat.key] if cat is not None else []
    approve = [make_category_rule(clean_payee, category)] if category else []
    if remove or approve:
        store.apply_batch(remove=remove, approve=approve)


def remove_decisions(
    store: VettedRuleStore, clean_payee: str, payee_map: Mapping[str, str]
) -> dict[str, str]:
    """Forget every decision made this session for ``clean_payee``."""

    pres, cat = _session_rules_for(store, clean_payee)
    remove = [r.key for r in pres]
    if cat is not None:
        remove.append(cat.key)
    if remove:
        store.apply_batch(remove=remove)
    if store.has_tag(clean_payee):
        store.remove_tag(clean_payee)
    return {raw: name for raw, name in payee_map.items() if name != clean_payee}


__all__ = [
    "SuggestionOutcome",
    "aggregate_groups_for_review",
    "apply_suggestion",
    "build_payee_rows",
    "build_proposed_meta",
    "change_category",
    "compute_vetted_meta",
    "remove_decisions",
    "rename_clean_payee",
    "rename_row",
    "save_decisions",
    "set_row_category",
    "set_row_match_value",
    "set_row_tag",
    "skip_row",
]
