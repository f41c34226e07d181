"""Fill session defaults from a proposal source with bounded concurrency.

Proposals are conveniences: a failed call only loses the default for that one
payee. Results are collected per key so grouping downstream does not depend
on completion order.
"""

from __future__ import annotations

import dataclasses
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from . import config
from .external import ProposalSource
from .logging_setup import get_logger
from .models import PayeeRow, RawMeta, RawTransaction, Rule
from .normalize import extract_match_value
from .payee_rows import build_proposed_meta, compute_vetted_meta
from .pmap import p_map_keyed
from .vetted import VettedRuleStore

_logger = get_logger("payee_vetting.proposals")


@dataclass
class CleanNameProposals:
    """``metas`` has an entry for every input payee; ``failures`` only for fallbacks."""

    metas: dict[str, RawMeta]
    failures: dict[str, Exception] = field(default_factory=dict)
    proposed: int = 0
    resolved: int = 0


def propose_clean_names(
    raw_payees: Sequence[str],
    rules: Sequence[Rule],
    store: VettedRuleStore,
    proposer: ProposalSource,
    *,
    known_payees: Sequence[str] = (),
    payee_names: Mapping[str, str] | None = None,
    transactions: Mapping[str, RawTransaction] | None = None,
    concurrency: int | None = None,
) -> CleanNameProposals:
    """Resolve a :class:`RawMeta` for every raw payee.

    Payees already decided locally or matched by a backend rule are resolved
    without a proposal. The rest go to ``proposer.propose_payee``; a failed or
    empty proposal falls back to the payee's match pattern as its name.
    """

    names = payee_names or {}
    txs = transactions or {}
    metas: dict[str, RawMeta | None] = {}
    for raw in dict.fromkeys(raw_payees):
        metas[raw] = compute_vetted_meta(raw, rules, store, names, tx=txs.get(raw))

    unknown = [raw for raw, meta in metas.items() if meta is None]
    resolved = len(metas) - len(unknown)
    known = list(known_payees)

    t0 = time.perf_counter()
    results = p_map_keyed(
        unknown,
        lambda raw: proposer.propose_payee(raw, known),
        concurrency=concurrency or config.llm_concurrency(),
    )

    for raw in unknown:
        name = (results.values.get(raw) or "").strip()
        if not name:
            if raw not in results.errors:
                results.errors[raw] = ValueError("empty proposal")
            name = extract_match_value(raw)
        metas[raw] = build_proposed_meta(raw, name)

    for raw, err in results.errors.items():
        _logger.warning("proposals:payee_failed raw=%s error=%s", raw, err.__class__.__name__)
    _logger.info(
        "proposals:names_done total=%d resolved=%d proposed=%d failed=%d latency_ms=%.2f",
        len(metas),
        resolved,
        len(unknown),
        len(results.errors),
        (time.perf_counter() - t0) * 1000.0,
    )
    return CleanNameProposals(
        metas={raw: meta for raw, meta in metas.items() if meta is not None},
        failures=dict(results.errors),
        proposed=len(unknown),
        resolved=resolved,
    )


def _canonical_category(proposal: str, categories: Sequence[str]) -> str | None:
    wanted = proposal.strip().casefold()
    if not wanted:
        return None
    for name in categories:
        if name.casefold() == wanted:
            return name
    return None


def propose_categories(
    rows: Sequence[PayeeRow],
    proposer: ProposalSource,
    categories: Sequence[str],
    *,
    concurrency: int | None = None,
) -> tuple[tuple[PayeeRow, ...], dict[int, Exception]]:
    """Default a category for new rows that have none.

    Proposals outside ``categories`` are dropped. Returns the new rows and the
    failures keyed by row index.
    """

    todo = [i for i, r in enumerate(rows) if not r.was_vetted and r.category is None]
    if not todo or not categories:
        return tuple(rows), {}

    results = p_map_keyed(
        todo,
        lambda i: proposer.propose_category(rows[i].clean_payee, categories),
        concurrency=concurrency or config.llm_concurrency(),
    )

    out = list(rows)
    for i, proposal in results.values.items():
        category = _canonical_category(proposal, categories)
        if category is not None:
            out[i] = dataclasses.replace(out[i], category=category)
        else:
            _logger.debug(
                "proposals:category_rejected row=%s value=%s", rows[i].clean_payee, proposal
            )

    for i, err in results.errors.items():
        _logger.warning(
            "proposals:category_failed row=%s error=%s", rows[i].clean_payee, err.__class__.__name__
        )
    return tuple(out), dict(results.errors)


__all__ = ["CleanNameProposals", "propose_categories", "propose_clean_names"]
