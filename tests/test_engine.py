from datetime import date
from decimal import Decimal

import pytest

from payee_vetting.engine import (
    MalformedConditionError,
    MatchSubject,
    find_category_rule,
    find_first_match,
    find_pre_rule,
    matches_condition,
    matches_rule,
    rule_key,
)
from payee_vetting.models import Condition, RawTransaction, Rule


def pre_rule(op: str, value: str, payee_id: str = "p-1") -> Rule:
    return Rule.model_validate(
        {
            "stage": "pre",
            "conditionsOp": "and",
            "conditions": [{"op": op, "field": "imported_payee", "value": value, "type": "string"}],
            "actions": [{"op": "set", "field": "payee", "value": payee_id, "type": "id"}],
        }
    )


def cat_rule(value: str, category_id: str = "c-1", stage: str | None = None) -> Rule:
    return Rule.model_validate(
        {
            "stage": stage,
            "conditionsOp": "and",
            "conditions": [{"op": "is", "field": "payee", "value": value, "type": "id"}],
            "actions": [{"op": "set", "field": "category", "value": category_id, "type": "id"}],
        }
    )


def tx(raw_payee: str) -> RawTransaction:
    return RawTransaction(
        id="T1", date=date(2026, 1, 1), amount=Decimal("-10.00"), raw_payee=raw_payee, account="A1"
    )


# ---- rule_key ----------------------------------------------------------------


def test_rule_key_is_built_from_content() -> None:
    expected = "pre:imported_payee:contains:AMAZON:payee:p-1"
    assert rule_key(pre_rule("contains", "AMAZON")) == expected


def test_rule_key_for_null_stage_uses_categorize() -> None:
    assert rule_key(cat_rule("Amazon")) == "categorize:payee:is:Amazon:category:c-1"


def test_rule_key_ignores_external_id() -> None:
    a = pre_rule("contains", "AMAZON").model_copy(update={"id": "abc"})
    b = pre_rule("contains", "AMAZON").model_copy(update={"id": "xyz"})
    assert rule_key(a) == rule_key(b)


def test_rule_key_differs_by_condition_value() -> None:
    assert rule_key(pre_rule("contains", "AMAZON")) != rule_key(pre_rule("contains", "STARBUCKS"))


def test_rule_key_only_reflects_first_condition() -> None:
    rule = Rule.model_validate(
        {
            "stage": "pre",
            "conditions": [
                {"op": "contains", "field": "imported_payee", "value": "AMAZON"},
                {"op": "contains", "field": "imported_payee", "value": "MKTPL"},
            ],
            "actions": [{"field": "payee", "value": "p-1", "type": "id"}],
        }
    )
    assert rule_key(rule) == "pre:imported_payee:contains:AMAZON:payee:p-1"
    assert "MKTPL" not in rule_key(rule)


def test_rule_key_requires_condition_and_action() -> None:
    with pytest.raises(ValueError):
        rule_key(Rule.model_validate({"stage": "pre", "conditions": [], "actions": []}))


# ---- condition operators -----------------------------------------------------


@pytest.mark.parametrize(
    ("op", "value", "payee", "expected"),
    [
        ("contains", "amazon", "AMAZON MKTPL 123", True),
        ("contains", "AMAZON", "amazon mktpl 123", True),
        ("contains", "amazon", "STARBUCKS", False),
        ("is", "starbucks", "STARBUCKS", True),
        ("is", "STARBUCKS", "STARBUCKS #123", False),
        ("starts-with", "TST*", "TST* CHIRINGUITO", True),
        ("starts-with", "TST*", "NOTST*", False),
        ("ends-with", "LLC", "CHIRINGUITO LLC", True),
        ("ends-with", "LLC", "LLC CHIRINGUITO", False),
        ("matches", "AMAZON.*MKTPL", "AMAZON MKTPL 123", True),
        ("matches", r"^CHASE\d+", "chase001", True),
        ("matches", r"^CHASE\d+", "NOT CHASE001", False),
    ],
)
def test_condition_operators(op: str, value: str, payee: str, expected: bool) -> None:
    assert (find_pre_rule([pre_rule(op, value)], tx(payee)) is not None) is expected


def test_invalid_regex_raises_malformed_condition() -> None:
    cond = Condition(op="matches", field="imported_payee", value="AMAZON[")
    with pytest.raises(MalformedConditionError) as exc:
        matches_condition(cond, MatchSubject(imported_payee="AMAZON"))
    assert exc.value.condition is cond


def test_missing_field_compares_as_empty() -> None:
    cond = Condition(op="contains", field="notes", value="x")
    assert matches_condition(cond, tx("ANYTHING")) is False


def test_amount_field_is_matched_as_text() -> None:
    cond = Condition(op="is", field="amount", value="-10.00")
    assert matches_condition(cond, tx("ANYTHING")) is True


# ---- combinators -------------------------------------------------------------


def _two_condition_rule(op: str) -> Rule:
    return Rule.model_validate(
        {
            "stage": "pre",
            "conditionsOp": op,
            "conditions": [
                {"op": "contains", "field": "imported_payee", "value": "AMAZON"},
                {"op": "contains", "field": "imported_payee", "value": "MKTPL"},
            ],
            "actions": [{"field": "payee", "value": "p-1", "type": "id"}],
        }
    )


def test_and_requires_every_condition() -> None:
    rule = _two_condition_rule("and")
    assert matches_rule(rule, tx("AMAZON MKTPL 123"))
    assert not matches_rule(rule, tx("AMAZON FRESH"))
    assert not matches_rule(rule, tx("MKTPL ONLY"))


def test_or_requires_any_condition() -> None:
    rule = _two_condition_rule("or")
    assert matches_rule(rule, tx("AMAZON FRESH"))
    assert matches_rule(rule, tx("MKTPL ONLY"))
    assert not matches_rule(rule, tx("UNRELATED"))


def test_rule_without_conditions_never_matches() -> None:
    rule = Rule.model_validate(
        {"stage": "pre", "conditions": [], "actions": [{"field": "payee", "value": "p"}]}
    )
    assert not matches_rule(rule, tx("ANYTHING"))


# ---- finders -----------------------------------------------------------------


def test_find_pre_rule_returns_first_match_in_order() -> None:
    r1 = pre_rule("contains", "AMAZON", "p-1")
    r2 = pre_rule("contains", "AMAZON", "p-2")
    assert find_pre_rule([r1, r2], "AMAZON MKTPL") is r1
    assert find_pre_rule([r2, r1], "AMAZON MKTPL") is r2


def test_find_pre_rule_ignores_other_stages() -> None:
    rules = [cat_rule("AMAZON"), pre_rule("contains", "AMAZON")]
    found = find_pre_rule(rules, tx("AMAZON"))
    assert found is not None and found.stage == "pre"
    assert find_pre_rule([cat_rule("Amazon")], tx("Amazon")) is None


def test_find_category_rule_matches_clean_name_case_insensitively() -> None:
    assert find_category_rule([cat_rule("amazon")], "Amazon") is not None
    assert find_category_rule([cat_rule("Amazon")], "Starbucks") is None


def test_find_category_rule_ignores_pre_and_post_stages() -> None:
    assert find_category_rule([pre_rule("contains", "AMAZON")], "AMAZON") is None
    assert find_category_rule([cat_rule("Amazon", stage="post")], "Amazon") is None


def test_find_category_rule_returns_first_match() -> None:
    r1 = cat_rule("Amazon", "c-1")
    r2 = cat_rule("Amazon", "c-2")
    assert find_category_rule([r1, r2], "Amazon") is r1


def test_find_first_match_with_no_rules() -> None:
    assert find_first_match([], "Amazon", "categorize") is None
