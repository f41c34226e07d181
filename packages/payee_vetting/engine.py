"""Rule evaluation and content keys.

Rules come from the external backend as an ordered sequence and evaluation is
first-match: the order of ``rules`` is a correctness-relevant input, so every
finder here walks it front to back and never re-sorts.

Keys are derived from rule content (stage, first condition, first action) so
they survive external id churn. Rules that differ only in ``conditions[1:]``
or ``actions[1:]`` therefore share a key; that collision is a known,
preserved limitation of the key format.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from functools import lru_cache

from .models import Condition, ConditionField, RawTransaction, Rule, Stage


class MalformedConditionError(ValueError):
    """A ``matches`` condition whose value is not a valid regular expression."""

    def __init__(self, condition: Condition, error: re.error) -> None:
        super().__init__(f"invalid regex in 'matches' condition {condition.value!r}: {error}")
        self.condition = condition


@dataclass(frozen=True, slots=True)
class MatchSubject:
    """Field values a condition can be evaluated against.

    Build one from a transaction with :meth:`from_transaction` or from a
    clean payee name with :meth:`from_clean_name`. Absent fields compare as
    the empty string.
    """

    imported_payee: str = ""
    payee: str = ""
    notes: str = ""
    amount: str = ""

    @classmethod
    def from_transaction(cls, tx: RawTransaction) -> MatchSubject:
        return cls(imported_payee=tx.raw_payee, amount=str(tx.amount))

    @classmethod
    def from_clean_name(cls, name: str) -> MatchSubject:
        return cls(payee=name)

    def get(self, field: ConditionField) -> str:
        return getattr(self, field)


def _as_subject(subject: MatchSubject | RawTransaction | str) -> MatchSubject:
    if isinstance(subject, MatchSubject):
        return subject
    if isinstance(subject, RawTransaction):
        return MatchSubject.from_transaction(subject)
    return MatchSubject.from_clean_name(subject)


@lru_cache(maxsize=512)
def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


def rule_key(rule: Rule) -> str:
    """Stable content key: ``stage:field:op:value:actionField:actionValue``.

    Only the first condition and first action participate.
    """

    if not rule.conditions or not rule.actions:
        raise ValueError("rule_key requires at least one condition and one action")
    c = rule.conditions[0]
    a = rule.actions[0]
    return f"{rule.stage}:{c.field}:{c.op}:{c.value}:{a.field}:{a.value}"


def pre_rule_key(match_value: str, clean_payee: str) -> str:
    """Key of the ``contains`` pre-rule this package writes for a pattern."""

    return f"pre:imported_payee:contains:{match_value}:payee:{clean_payee}"


def category_rule_key(clean_payee: str, category: str) -> str:
    return f"categorize:payee:is:{clean_payee}:category:{category}"


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


def matches_condition(
    condition: Condition, subject: MatchSubject | RawTransaction | str
) -> bool:
    """Evaluate one condition.

    ``contains``/``is``/``starts-with``/``ends-with`` compare case-insensitively.
    ``matches`` runs ``value`` as a case-insensitive regex search against the
    untransformed field; an invalid regex raises :class:`MalformedConditionError`.
    A plain ``str`` subject is treated as a clean payee name.
    """

    text = _as_subject(subject).get(condition.field)
    if condition.op == "matches":
        try:
            regex = _compile(condition.value)
        except re.error as e:
            raise MalformedConditionError(condition, e) from e
        return regex.search(text) is not None

    s = text.casefold()
    value = condition.value.casefold()
    match condition.op:
        case "contains":
            return value in s
        case "is":
            return s == value
        case "starts-with":
            return s.startswith(value)
        case "ends-with":
            return s.endswith(value)
    raise ValueError(f"unsupported condition op: {condition.op!r}")


def matches_rule(rule: Rule, subject: MatchSubject | RawTransaction | str) -> bool:
    """``and`` needs every condition, ``or`` at least one.

    A rule without conditions never matches.
    """

    if not rule.conditions:
        return False
    subj = _as_subject(subject)
    if rule.conditions_op == "and":
        return all(matches_condition(c, subj) for c in rule.conditions)
    return any(matches_condition(c, subj) for c in rule.conditions)


def find_first_match(
    rules: Sequence[Rule],
    subject: MatchSubject | RawTransaction | str,
    stage: Stage,
) -> Rule | None:
    """Return the first rule of ``stage`` (in input order) that matches."""

    subj = _as_subject(subject)
    for rule in rules:
        if rule.stage == stage and matches_rule(rule, subj):
            return rule
    return None


def find_pre_rule(rules: Sequence[Rule], raw: RawTransaction | str) -> Rule | None:
    """First pre-stage rule matching a transaction or a raw payee string."""

    subject = (
        MatchSubject.from_transaction(raw)
        if isinstance(raw, RawTransaction)
        else MatchSubject(imported_payee=raw)
    )
    return find_first_match(rules, subject, "pre")


def find_category_rule(rules: Sequence[Rule], clean_payee: str) -> Rule | None:
    """First categorize-stage rule matching a clean payee name."""

    return find_first_match(rules, MatchSubject.from_clean_name(clean_payee), "categorize")


def first_action_value(rule: Rule, field: str) -> str | None:
    """Value of the first action on ``field``, or ``None``."""

    for action in rule.actions:
        if action.field == field:
            return action.value
    return None


def first_condition_value(rule: Rule, field: str) -> str | None:
    for condition in rule.conditions:
        if condition.field == field:
            return condition.value
    return None


__all__ = [
    "MalformedConditionError",
    "MatchSubject",
    "category_rule_key",
    "find_category_rule",
    "find_first_match",
    "find_pre_rule",
    "first_action_value",
    "first_condition_value",
    "matches_condition",
    "matches_rule",
    "pre_rule_key",
    "rule_key",
]
