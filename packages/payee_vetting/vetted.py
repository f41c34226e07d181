"""Durable, content-addressed store of approved rules and tag decisions.

The store is a single JSON document::

    {"version": 1, "rules": {<key>: VettedRule}, "tags": {<clean name>: str | null}}

Every mutation is write-through: the next document is built, written to a
``.tmp`` sibling, moved into place with ``os.replace`` and only then swapped
into memory. A failed write raises :class:`StorePersistenceError` and leaves
both the file and the in-memory state as they were.
"""

from __future__ import annotations

import contextlib
import os
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime
from pathlib import Path

from pydantic import ValidationError

from . import config
from .engine import category_rule_key, first_action_value, pre_rule_key
from .logging_setup import get_logger
from .models import Rule, VettedRule, VettedStoreFile
from .normalize import MIN_PATTERN_LENGTH

_logger = get_logger("payee_vetting.vetted")


class StorePersistenceError(RuntimeError):
    """The store file could not be written; nothing was changed."""


class StoreFormatError(ValueError):
    """The store file exists but is not a valid store document."""


def _now() -> datetime:
    return datetime.now(UTC)


def make_pre_rule(match_value: str, clean_payee: str, *, key: str | None = None) -> VettedRule:
    """Build the ``imported_payee contains <pattern> -> payee`` rule.

    ``key`` overrides the derived key, e.g. to keep the key of a backend rule
    the decision was adopted from.
    """

    return VettedRule(
        key=key or pre_rule_key(match_value, clean_payee),
        stage="pre",
        match_field="imported_payee",
        match_op="contains",
        match_value=match_value,
        action_field="payee",
        action_value=clean_payee,
        vetted_at=_now(),
    )


def make_category_rule(clean_payee: str, category: str) -> VettedRule:
    """Build the ``payee is <name> -> category`` rule."""

    return VettedRule(
        key=category_rule_key(clean_payee, category),
        stage="categorize",
        match_field="payee",
        match_op="is",
        match_value=clean_payee,
        action_field="category",
        action_value=category,
        vetted_at=_now(),
    )


def _validate_rule(rule: VettedRule) -> None:
    if rule.stage == "pre" and len(rule.match_value.strip()) < MIN_PATTERN_LENGTH:
        raise ValueError(
            f"pre-stage match value must be at least {MIN_PATTERN_LENGTH} characters: "
            f"{rule.match_value!r}"
        )


class VettedRuleStore:
    """Approved rules keyed by content, plus per-clean-name tag decisions.

    ``session_keys`` tracks keys approved through *this instance*, in approval
    order; two stores over the same path never share it.
    """

    def __init__(self, path: Path | str | None = None) -> None:
        self.path = Path(path) if path is not None else config.vetted_rules_path()
        self.session_keys: dict[str, None] = {}
        self._data = self._load()

    # ------------------------------------------------------------------
    # I/O
    # ------------------------------------------------------------------

    def _load(self) -> VettedStoreFile:
        if not self.path.exists():
            return VettedStoreFile()
        try:
            text = self.path.read_text(encoding="utf-8")
            return VettedStoreFile.model_validate_json(text)
        except (UnicodeDecodeError, ValidationError) as e:
            raise StoreFormatError(f"invalid vetted store file {os.fspath(self.path)}: {e}") from e

    def _commit(self, data: VettedStoreFile) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(
                data.model_dump_json(by_alias=True, indent=2) + "\n",
                encoding="utf-8",
            )
            os.replace(tmp, self.path)
        except OSError as e:
            with contextlib.suppress(FileNotFoundError):
                tmp.unlink()
            _logger.error("vetted:write_failed path=%s error=%s", os.fspath(self.path), e)
            raise StorePersistenceError(
                f"failed to write vetted store {os.fspath(self.path)}: {e}"
            ) from e
        self._data = data

    def _with(
        self,
        *,
        rules: dict[str, VettedRule] | None = None,
        tags: dict[str, str | None] | None = None,
    ) -> VettedStoreFile:
        return VettedStoreFile(
            version=1,
            rules=self._data.rules if rules is None else rules,
            tags=self._data.tags if tags is None else tags,
        )

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def is_vetted(self, key: str) -> bool:
        return key in self._data.rules

    def get(self, key: str) -> VettedRule | None:
        return self._data.rules.get(key)

    def find_by_raw_payee(self, raw_payee: str) -> VettedRule | None:
        """First pre-stage rule whose pattern is a substring of ``raw_payee``."""

        s = raw_payee.casefold()
        for rule in self._data.rules.values():
            if (
                rule.stage == "pre"
                and rule.match_field == "imported_payee"
                and rule.match_value.casefold() in s
            ):
                return rule
        return None

    def find_by_clean_name(self, clean_payee: str) -> VettedRule | None:
        """Categorize-stage rule for ``clean_payee`` (case-insensitive)."""

        name = clean_payee.casefold()
        for rule in self._data.rules.values():
            if (
                rule.stage == "categorize"
                and rule.match_field == "payee"
                and rule.match_value.casefold() == name
            ):
                return rule
        return None

    def approve(self, rule: VettedRule) -> VettedRule:
        """Insert or overwrite ``rule`` by key and persist immediately."""

        (stored,) = self.apply_batch(approve=[rule])
        return stored

    def remove(self, key: str) -> bool:
        """Delete ``key``; returns whether it existed. Persists immediately."""

        if key not in self._data.rules:
            self.session_keys.pop(key, None)
            return False
        self.apply_batch(remove=[key])
        return True

    def apply_batch(
        self,
        *,
        remove: Iterable[str] = (),
        approve: Sequence[VettedRule] = (),
    ) -> list[VettedRule]:
        """Remove then approve in a single write.

        Either the whole batch lands on disk or nothing changes. Returns the
        approved rules as stored (with a fresh ``vetted_at``).
        """

        for rule in approve:
            _validate_rule(rule)

        rules = dict(self._data.rules)
        removed = [k for k in remove if rules.pop(k, None) is not None]
        stamp = _now()
        stored = [r.model_copy(update={"vetted_at": stamp}) for r in approve]
        for r in stored:
            rules[r.key] = r

        self._commit(self._with(rules=rules))

        for k in removed:
            self.session_keys.pop(k, None)
        for r in stored:
            self.session_keys.setdefault(r.key)
        for k in removed:
            _logger.info("vetted:remove key=%s", k)
        for r in stored:
            _logger.info("vetted:approve key=%s", r.key)
        return stored

    def get_session_rules(self) -> list[VettedRule]:
        return [self._data.rules[k] for k in self.session_keys if k in self._data.rules]

    def get_all_rules(self) -> list[VettedRule]:
        return list(self._data.rules.values())

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def has_tag(self, clean_payee: str) -> bool:
        """Whether a tag decision (including an explicit "no tag") exists."""

        return clean_payee in self._data.tags

    def get_tag(self, clean_payee: str) -> str | None:
        return self._data.tags.get(clean_payee)

    def set_tag(self, clean_payee: str, tag: str | None) -> None:
        tags = dict(self._data.tags)
        tags[clean_payee] = tag
        self._commit(self._with(tags=tags))

    def remove_tag(self, clean_payee: str) -> bool:
        if clean_payee not in self._data.tags:
            return False
        tags = dict(self._data.tags)
        del tags[clean_payee]
        self._commit(self._with(tags=tags))
        return True

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile_against_external(
        self,
        external_rules: Sequence[Rule],
        id_to_name: Mapping[str, str],
    ) -> list[str]:
        """Drop local entries that the external rule set already encodes.

        A local pre-stage rule is dropped only when an external pre-stage rule
        has the same single ``(op, field, value)`` condition and sets ``payee``
        to an entity whose resolved name equals the local clean name. External
        rules whose target cannot be resolved never count. The matching
        categorize rule and tag go with it when they are externally
        represented too. Returns the removed rule keys.
        """

        rules = dict(self._data.rules)
        tags = dict(self._data.tags)
        removed: list[str] = []
        dropped_tags: list[str] = []

        for key, local in list(rules.items()):
            if local.stage != "pre":
                continue
            entity_id = _external_pre_target(external_rules, local, id_to_name)
            if entity_id is None:
                continue
            del rules[key]
            removed.append(key)

            clean = local.action_value
            cat = next(
                (
                    r
                    for r in rules.values()
                    if r.stage == "categorize" and r.match_value.casefold() == clean.casefold()
                ),
                None,
            )
            if cat is not None and _external_category_matches(
                external_rules, entity_id, clean, cat.action_value, id_to_name
            ):
                del rules[cat.key]
                removed.append(cat.key)

            tag = tags.get(clean)
            if tag is not None and _external_tag_matches(external_rules, entity_id, clean, tag):
                del tags[clean]
                dropped_tags.append(clean)

        if not removed and not dropped_tags:
            _logger.debug("vetted:reconcile removed=0")
            return []

        self._commit(self._with(rules=rules, tags=tags))
        for k in removed:
            self.session_keys.pop(k, None)
        _logger.info(
            "vetted:reconcile removed=%d tags_removed=%d keys=%s",
            len(removed),
            len(dropped_tags),
            ",".join(removed),
        )
        return removed


def _names_equal(a: str | None, b: str | None) -> bool:
    return a is not None and b is not None and a.casefold() == b.casefold()


def _external_pre_target(
    external_rules: Sequence[Rule],
    local: VettedRule,
    id_to_name: Mapping[str, str],
) -> str | None:
    for rule in external_rules:
        if rule.stage != "pre" or len(rule.conditions) != 1:
            continue
        c = rule.conditions[0]
        if (
            c.op != local.match_op
            or c.field != local.match_field
            or c.value.casefold() != local.match_value.casefold()
        ):
            continue
        entity_id = first_action_value(rule, "payee")
        if entity_id and _names_equal(id_to_name.get(entity_id), local.action_value):
            return entity_id
    return None


def _targets_entity(rule: Rule, entity_id: str, clean_payee: str) -> bool:
    for c in rule.conditions:
        if c.field != "payee":
            continue
        if c.value_type == "id" and c.value == entity_id:
            return True
        if c.value_type == "string" and c.value.casefold() == clean_payee.casefold():
            return True
    return False


def _external_category_matches(
    external_rules: Sequence[Rule],
    entity_id: str,
    clean_payee: str,
    category: str,
    id_to_name: Mapping[str, str],
) -> bool:
    for rule in external_rules:
        if rule.stage != "categorize" or not _targets_entity(rule, entity_id, clean_payee):
            continue
        for action in rule.actions:
            if action.field != "category":
                continue
            name = id_to_name.get(action.value) if action.value_type == "id" else action.value
            if _names_equal(name, category):
                return True
    return False


def _external_tag_matches(
    external_rules: Sequence[Rule], entity_id: str, clean_payee: str, tag: str
) -> bool:
    wanted = f"#{tag}".casefold()
    for rule in external_rules:
        if not _targets_entity(rule, entity_id, clean_payee):
            continue
        for action in rule.actions:
            if action.field == "notes" and action.value.strip().casefold() == wanted:
                return True
    return False


__all__ = [
    "StoreFormatError",
    "StorePersistenceError",
    "VettedRuleStore",
    "make_category_rule",
    "make_pre_rule",
]
