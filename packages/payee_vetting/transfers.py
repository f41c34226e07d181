"""Find cross-account transfer candidates.

Two transactions in different accounts form a pair when their amounts are
exact, non-zero negatives of each other and their dates are at most
:data:`DATE_TOLERANCE_DAYS` apart. Matching is greedy and first-found; a
transaction is marked used as soon as it is paired, so it can never be
claimed twice.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from .logging_setup import get_logger
from .models import RawTransaction, TransferPair

_logger = get_logger("payee_vetting.transfers")

DATE_TOLERANCE_DAYS: int = 5


def days_between(a: date, b: date) -> int:
    return abs((a - b).days)


def find_transfer_pairs(
    txs_by_account: Mapping[str, Sequence[RawTransaction]],
    account_names: Mapping[str, str] | None = None,
) -> list[TransferPair]:
    """Pair opposite-signed, equal-magnitude transactions across accounts.

    Accounts are visited as unordered pairs in mapping order. The negative
    side of a pair is always ``out_tx``. Account names fall back to ids.
    """

    names = account_names or {}
    accounts = list(txs_by_account)
    used: set[tuple[str, str]] = set()
    pairs: list[TransferPair] = []

    for i, acct_a in enumerate(accounts):
        for acct_b in accounts[i + 1 :]:
            for tx_a in txs_by_account[acct_a]:
                if (acct_a, tx_a.id) in used or tx_a.amount == 0:
                    continue
                for tx_b in txs_by_account[acct_b]:
                    if (acct_b, tx_b.id) in used:
                        continue
                    if tx_a.amount != -tx_b.amount:
                        continue
                    if days_between(tx_a.date, tx_b.date) > DATE_TOLERANCE_DAYS:
                        continue

                    if tx_a.amount < 0:
                        out_tx, out_acct, in_tx, in_acct = tx_a, acct_a, tx_b, acct_b
                    else:
                        out_tx, out_acct, in_tx, in_acct = tx_b, acct_b, tx_a, acct_a
                    pairs.append(
                        TransferPair(
                            out_tx=out_tx,
                            in_tx=in_tx,
                            out_account_id=out_acct,
                            in_account_id=in_acct,
                            out_account_name=names.get(out_acct, out_acct),
                            in_account_name=names.get(in_acct, in_acct),
                        )
                    )
                    used.add((acct_a, tx_a.id))
                    used.add((acct_b, tx_b.id))
                    break

    _logger.info("transfers:done accounts=%d pairs=%d", len(accounts), len(pairs))
    return pairs


def group_pairs_by_accounts(
    pairs: Sequence[TransferPair],
) -> dict[tuple[str, str], list[TransferPair]]:
    """Bucket pairs by ``(out_account_id, in_account_id)``, first-seen order."""

    out: dict[tuple[str, str], list[TransferPair]] = {}
    for p in pairs:
        out.setdefault((p.out_account_id, p.in_account_id), []).append(p)
    return out


def format_amount(cents: int | Decimal) -> str:
    """``-19900`` -> ``"$199.00"``; sign is dropped."""

    value = abs(Decimal(cents)) / 100
    return f"${value:.2f}"


def to_cents(amount: Decimal) -> int:
    """Convert a signed currency amount to integer cents (half-up)."""

    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


__all__ = [
    "DATE_TOLERANCE_DAYS",
    "days_between",
    "find_transfer_pairs",
    "format_amount",
    "group_pairs_by_accounts",
    "to_cents",
]
