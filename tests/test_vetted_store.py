import json
import os
from pathlib import Path

import pytest

from payee_vetting.models import Rule
from payee_vetting.vetted import (
    StoreFormatError,
    StorePersistenceError,
    VettedRuleStore,
    make_category_rule,
    make_pre_rule,
)


def test_missing_file_is_an_empty_store(store_path: Path) -> None:
    store = VettedRuleStore()
    assert store.path == store_path.resolve()
    assert store.get_all_rules() == []
    assert not store_path.exists()


def test_approve_writes_through_to_disk(store_path: Path) -> None:
    store = VettedRuleStore()
    stored = store.approve(make_pre_rule("AMAZON MKTPL", "Amazon"))

    assert store.is_vetted(stored.key)
    doc = json.loads(store_path.read_text(encoding="utf-8"))
    assert doc["version"] == 1
    entry = doc["rules"][stored.key]
    assert entry["matchValue"] == "AMAZON MKTPL"
    assert entry["actionValue"] == "Amazon"

    reopened = VettedRuleStore()
    assert reopened.get(stored.key) == stored


def test_approve_overwrites_by_key() -> None:
    store = VettedRuleStore()
    first = store.approve(make_pre_rule("AMAZON MKTPL", "Amazon"))
    second = store.approve(make_pre_rule("AMAZON MKTPL", "Amazon"))
    assert first.key == second.key
    assert len(store.get_all_rules()) == 1


def test_categorize_stage_round_trips_and_null_is_accepted(store_path: Path) -> None:
    store = VettedRuleStore()
    rule = store.approve(make_category_rule("Amazon", "Shopping"))
    assert rule.key == "categorize:payee:is:Amazon:category:Shopping"

    doc = json.loads(store_path.read_text(encoding="utf-8"))
    doc["rules"][rule.key]["stage"] = None
    store_path.write_text(json.dumps(doc), encoding="utf-8")

    reloaded = VettedRuleStore()
    assert reloaded.get(rule.key).stage == "categorize"
    assert reloaded.find_by_clean_name("amazon").action_value == "Shopping"


def test_remove() -> None:
    store = VettedRuleStore()
    rule = store.approve(make_pre_rule("AMAZON MKTPL", "Amazon"))
    assert store.remove(rule.key) is True
    assert store.remove(rule.key) is False
    assert not store.is_vetted(rule.key)
    assert VettedRuleStore().get_all_rules() == []


def test_find_by_raw_payee_is_case_insensitive_substring() -> None:
    store = VettedRuleStore()
    store.approve(make_pre_rule("AMAZON MKTPL", "Amazon"))
    store.approve(make_category_rule("Amazon", "Shopping"))

    assert store.find_by_raw_payee("amazon mktpl*0C2091XO3").action_value == "Amazon"
    assert store.find_by_raw_payee("STARBUCKS") is None


def test_short_pre_pattern_is_rejected() -> None:
    store = VettedRuleStore()
    with pytest.raises(ValueError):
        store.approve(make_pre_rule("AMZ", "Amazon"))
    assert store.get_all_rules() == []


def test_apply_batch_removes_and_approves_in_one_write(store_path: Path) -> None:
    store = VettedRuleStore()
    old = store.approve(make_pre_rule("AMAZON MKTPL", "Amazon"))

    stored = store.apply_batch(
        remove=[old.key],
        approve=[make_pre_rule("AMAZON", "Amazon"), make_category_rule("Amazon", "Shopping")],
    )

    assert [r.key for r in stored] == [
        "pre:imported_payee:contains:AMAZON:payee:Amazon",
        "categorize:payee:is:Amazon:category:Shopping",
    ]
    assert stored[0].vetted_at == stored[1].vetted_at
    assert set(json.loads(store_path.read_text(encoding="utf-8"))["rules"]) == {
        r.key for r in stored
    }


def test_session_keys_are_per_instance() -> None:
    a = VettedRuleStore()
    rule = a.approve(make_pre_rule("AMAZON MKTPL", "Amazon"))
    b = VettedRuleStore()

    assert [r.key for r in a.get_session_rules()] == [rule.key]
    assert b.get_session_rules() == []
    assert [r.key for r in b.get_all_rules()] == [rule.key]

    a.remove(rule.key)
    assert a.get_session_rules() == []


def test_session_rules_follow_approval_order() -> None:
    store = VettedRuleStore()
    names = [f"MERCHANT{n:02d}" for n in range(12)]
    for name in names:
        store.approve(make_pre_rule(name, name.title()))
    store.approve(make_pre_rule("MERCHANT03", "Merchant03"))

    assert [r.match_value for r in store.get_session_rules()] == names

    store.remove(make_pre_rule("MERCHANT05", "Merchant05").key)
    store.approve(make_pre_rule("MERCHANT05", "Merchant05"))
    assert [r.match_value for r in store.get_session_rules()] == [
        *names[:5],
        *names[6:],
        "MERCHANT05",
    ]


def test_tags_distinguish_none_from_undecided() -> None:
    store = VettedRuleStore()
    assert store.has_tag("Amazon") is False

    store.set_tag("Amazon", None)
    assert store.has_tag("Amazon") is True
    assert store.get_tag("Amazon") is None

    store.set_tag("Netflix", "subscription")
    reopened = VettedRuleStore()
    assert reopened.has_tag("Amazon") and reopened.get_tag("Amazon") is None
    assert reopened.get_tag("Netflix") == "subscription"

    assert reopened.remove_tag("Netflix") is True
    assert reopened.remove_tag("Netflix") is False
    assert VettedRuleStore().has_tag("Netflix") is False


def test_file_without_tags_loads_with_empty_tags(store_path: Path) -> None:
    store_path.write_text(json.dumps({"version": 1, "rules": {}}), encoding="utf-8")
    store = VettedRuleStore()
    assert store.has_tag("anything") is False
    store.set_tag("Amazon", "shopping")
    assert json.loads(store_path.read_text(encoding="utf-8"))["tags"] == {"Amazon": "shopping"}


def test_invalid_file_raises_format_error(store_path: Path) -> None:
    store_path.write_text("{not json", encoding="utf-8")
    with pytest.raises(StoreFormatError):
        VettedRuleStore()


def test_failed_write_leaves_state_unchanged(
    store_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    store = VettedRuleStore()
    kept = store.approve(make_pre_rule("AMAZON MKTPL", "Amazon"))
    before = store_path.read_text(encoding="utf-8")

    def _fail(src, dst):  # noqa: ANN001
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", _fail)

    with pytest.raises(StorePersistenceError):
        store.apply_batch(remove=[kept.key], approve=[make_pre_rule("STARBUCKS", "Starbucks")])

    assert store.is_vetted(kept.key)
    assert len(store.get_all_rules()) == 1
    assert list(store.session_keys) == [kept.key]
    assert store_path.read_text(encoding="utf-8") == before
    assert not store_path.with_suffix(".json.tmp").exists()

    with pytest.raises(StorePersistenceError):
        store.set_tag("Amazon", "shopping")
    assert store.has_tag("Amazon") is False


# ---- reconciliation ----------------------------------------------------------

NAMES = {"p-amz": "Amazon", "c-shop": "Shopping", "p-other": "Other"}


def _ext_pre(value: str, payee_id: str, op: str = "contains") -> Rule:
    return Rule.model_validate(
        {
            "stage": "pre",
            "conditions": [{"op": op, "field": "imported_payee", "value": value}],
            "actions": [{"field": "payee", "value": payee_id, "type": "id"}],
        }
    )


def _ext_cat(payee_id: str, category_id: str, notes: str | None = None) -> Rule:
    actions = [{"field": "category", "value": category_id, "type": "id"}]
    if notes is not None:
        actions.append({"op": "set", "field": "notes", "value": notes})
    return Rule.model_validate(
        {
            "stage": None,
            "conditions": [{"op": "is", "field": "payee", "value": payee_id, "type": "id"}],
            "actions": actions,
        }
    )


def _seed() -> tuple[VettedRuleStore, str, str]:
    store = VettedRuleStore()
    pre = store.approve(make_pre_rule("AMAZON MKTPL", "Amazon"))
    cat = store.approve(make_category_rule("Amazon", "Shopping"))
    store.set_tag("Amazon", "online")
    return store, pre.key, cat.key


def test_reconcile_drops_rules_fully_present_externally() -> None:
    store, pre_key, cat_key = _seed()
    external = [_ext_pre("amazon mktpl", "p-amz"), _ext_cat("p-amz", "c-shop", notes="#online")]

    removed = store.reconcile_against_external(external, NAMES)

    assert removed == [pre_key, cat_key]
    assert store.get_all_rules() == []
    assert store.has_tag("Amazon") is False
    assert VettedRuleStore().get_all_rules() == []


def test_reconcile_keeps_category_when_external_differs() -> None:
    store, pre_key, cat_key = _seed()
    names = {**NAMES, "c-food": "Food"}
    external = [_ext_pre("AMAZON MKTPL", "p-amz"), _ext_cat("p-amz", "c-food")]

    assert store.reconcile_against_external(external, names) == [pre_key]
    assert store.is_vetted(cat_key)
    assert store.get_tag("Amazon") == "online"


def test_reconcile_requires_same_target_and_condition() -> None:
    store, pre_key, _ = _seed()
    external = [
        _ext_pre("AMAZON MKTPL", "p-other"),
        _ext_pre("AMAZON MKTPL", "p-missing"),
        _ext_pre("AMAZON MKTPL", "p-amz", op="starts-with"),
        _ext_pre("AMAZON", "p-amz"),
    ]
    assert store.reconcile_against_external(external, NAMES) == []
    assert store.is_vetted(pre_key)


def test_reconcile_ignores_multi_condition_external_rules() -> None:
    store, pre_key, _ = _seed()
    multi = Rule.model_validate(
        {
            "stage": "pre",
            "conditions": [
                {"op": "contains", "field": "imported_payee", "value": "AMAZON MKTPL"},
                {"op": "contains", "field": "notes", "value": "x"},
            ],
            "actions": [{"field": "payee", "value": "p-amz", "type": "id"}],
        }
    )
    assert store.reconcile_against_external([multi], NAMES) == []
    assert store.is_vetted(pre_key)
