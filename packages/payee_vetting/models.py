"""Data models and type aliases for ``payee_vetting``.

Two families live here:

- Wire/persisted shapes (pydantic): external rules (:class:`Rule`,
  :class:`Condition`, :class:`Action`), vetted store entries
  (:class:`VettedRule`, :class:`VettedStoreFile`) and oracle outputs
  (:data:`Suggestion`, :class:`ConsolidationSuggestion`). Field aliases keep
  the budgeting backend's camelCase JSON readable as-is.
- Session values (frozen dataclasses): :class:`RawTransaction`,
  :class:`PayeeRow`, :class:`RawMeta`, :class:`TransferPair` and friends.
  Operations over them return new values instead of mutating in place.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, NamedTuple

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

Stage = Literal["pre", "categorize", "post"]
ConditionOp = Literal["contains", "is", "starts-with", "ends-with", "matches"]
ConditionField = Literal["imported_payee", "payee", "notes", "amount"]
ActionField = Literal["payee", "category", "notes"]
ActionOp = Literal["set", "append-notes", "prepend-notes"]
ValueType = Literal["string", "id"]
Combinator = Literal["and", "or"]


def _stage_from_wire(v: Any) -> Any:
    # The backend encodes the categorize stage as ``null``.
    return "categorize" if v is None else v


def _value_to_str(v: Any) -> Any:
    if v is None:
        return ""
    if isinstance(v, (int, float, Decimal)) and not isinstance(v, bool):
        return str(v)
    return v


WireStr = Annotated[str, BeforeValidator(_value_to_str)]
WireStage = Annotated[Stage, BeforeValidator(_stage_from_wire)]

# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RawTransaction:
    """A bank transaction as parsed from an export file.

    ``amount`` is signed (negative = debit). Identity is ``id`` within the
    ``account`` stream.
    """

    id: str
    date: date
    amount: Decimal
    raw_payee: str
    account: str


# ---------------------------------------------------------------------------
# External rules (consumed, never produced, by the core)
# ---------------------------------------------------------------------------


class Condition(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    op: ConditionOp
    field: ConditionField
    value: WireStr
    value_type: ValueType = Field(default="string", alias="type")


class Action(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    op: ActionOp = "set"
    field: ActionField
    value: WireStr
    value_type: ValueType = Field(default="string", alias="type")


class Rule(BaseModel):
    """A rule as stored by the external budgeting backend.

    ``id`` is assigned externally and is unstable across resets/re-imports; it
    is never used as a key by this package (see :func:`engine.rule_key`).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str | None = None
    stage: WireStage
    conditions_op: Combinator = Field(default="and", alias="conditionsOp")
    conditions: tuple[Condition, ...] = ()
    actions: tuple[Action, ...] = ()


# ---------------------------------------------------------------------------
# Vetted store (persisted)
# ---------------------------------------------------------------------------


class VettedRule(BaseModel):
    """A locally approved rule, keyed by content rather than external id."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    key: str
    stage: WireStage
    match_field: ConditionField = Field(alias="matchField")
    match_op: ConditionOp = Field(alias="matchOp")
    match_value: str = Field(alias="matchValue")
    action_field: ActionField = Field(alias="actionField")
    action_value: str = Field(alias="actionValue")
    vetted_at: datetime = Field(alias="vettedAt")


class VettedStoreFile(BaseModel):
    """Top-level schema of the vetted store JSON document.

    Older files lack ``tags``; they load with an empty mapping.
    """

    model_config = ConfigDict(extra="ignore")

    version: Literal[1] = 1
    rules: dict[str, VettedRule] = Field(default_factory=dict)
    tags: dict[str, str | None] = Field(default_factory=dict)

    @field_validator("tags", mode="before")
    @classmethod
    def _tags_default(cls, v: Any) -> Any:
        return {} if v is None else v


# ---------------------------------------------------------------------------
# Session rows
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RawMeta:
    """Resolved pattern/name for one raw payee before rows are grouped."""

    match_value: str
    clean_payee: str
    pre_rule_key: str
    was_vetted: bool


@dataclass(frozen=True, slots=True)
class PayeeRow:
    """One match pattern (one pre-rule) and the decision attached to it.

    ``tag`` is only meaningful when ``tag_decided`` is set; ``tag=None`` with
    ``tag_decided=True`` is an explicit "no tag".
    """

    raw_payees: tuple[str, ...]
    tx_count: int
    match_value: str
    clean_payee: str
    category: str | None
    tag: str | None
    tag_decided: bool
    pre_rule_key: str
    was_vetted: bool
    touched: bool = False
    skipped: bool = False


@dataclass(frozen=True, slots=True)
class GroupForReview:
    clean_payee: str
    category: str | None
    raw_payees: tuple[str, ...]


# ---------------------------------------------------------------------------
# Oracle outputs
# ---------------------------------------------------------------------------


class _SuggestionBase(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    clean_payee: str = Field(alias="cleanPayee", min_length=1)
    reason: str = ""


class SplitSuggestion(_SuggestionBase):
    """Move specific raw payees out of a group into a new clean name."""

    type: Literal["split"] = "split"
    raw_payees: tuple[str, ...] = Field(alias="rawPayees", min_length=1)
    suggested_name: str = Field(alias="suggestedName", min_length=1)
    suggested_category: str | None = Field(default=None, alias="suggestedCategory")


class RenameSuggestion(_SuggestionBase):
    type: Literal["rename"] = "rename"
    suggested_name: str = Field(alias="suggestedName", min_length=1)


class CategorySuggestion(_SuggestionBase):
    type: Literal["category"] = "category"
    suggested_category: str = Field(alias="suggestedCategory", min_length=1)


class FlagSuggestion(_SuggestionBase):
    """Informational only; never changes state."""

    type: Literal["flag"] = "flag"


Suggestion = Annotated[
    SplitSuggestion | RenameSuggestion | CategorySuggestion | FlagSuggestion,
    Field(discriminator="type"),
]


@dataclass(frozen=True, slots=True)
class ConsolidationGroup:
    """Pre-rules sharing one clean name but matched by 2+ patterns."""

    action_value: str
    match_values: tuple[str, ...]


class ConsolidationSuggestion(BaseModel):
    model_config = ConfigDict(
        frozen=True, populate_by_name=True, extra="ignore", str_strip_whitespace=True
    )

    action_value: str = Field(alias="actionValue", min_length=1)
    suggested_match_value: str = Field(alias="suggestedMatchValue", min_length=1)
    reason: str = ""


# ---------------------------------------------------------------------------
# Derived results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CoverageResult:
    """Disjoint partition of raw payees by how much existing rules handle."""

    covered: tuple[str, ...]
    needs_category: tuple[str, ...]
    uncovered: tuple[str, ...]


class TransferPair(NamedTuple):
    """Two transactions in different accounts representing one movement.

    ``out_tx`` is always the negative (outflow) side.
    """

    out_tx: RawTransaction
    in_tx: RawTransaction
    out_account_id: str
    in_account_id: str
    out_account_name: str
    in_account_name: str


__all__ = [
    "Action",
    "ActionField",
    "CategorySuggestion",
    "Condition",
    "ConditionField",
    "ConditionOp",
    "ConsolidationGroup",
    "ConsolidationSuggestion",
    "CoverageResult",
    "FlagSuggestion",
    "GroupForReview",
    "PayeeRow",
    "RawMeta",
    "RawTransaction",
    "RenameSuggestion",
    "Rule",
    "SplitSuggestion",
    "Stage",
    "Suggestion",
    "TransferPair",
    "VettedRule",
    "VettedStoreFile",
]
