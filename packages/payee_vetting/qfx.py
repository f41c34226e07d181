"""Read bank transactions from QFX/OFX (SGML-style) exports.

Only the fields the vetting flow needs are read from each ``<STMTTRN>``
block: ``FITID`` (id), ``NAME`` (raw payee), ``TRNAMT`` (signed amount) and
``DTPOSTED`` (first eight characters, ``YYYYMMDD``). The account is the
file's first ``<ACCTID>``. Blocks missing any field, or with an unparseable
date or amount, are skipped.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from os import PathLike
from pathlib import Path

from .logging_setup import get_logger
from .models import RawTransaction

_logger = get_logger("payee_vetting.qfx")

_ACCTID_RE = re.compile(r"<ACCTID>([^\n<]+)")
_FIELD_RES = {
    name: re.compile(rf"<{name}>([^\n<]+)") for name in ("FITID", "NAME", "TRNAMT", "DTPOSTED")
}


def _field(block: str, name: str) -> str | None:
    m = _FIELD_RES[name].search(block)
    if m is None:
        return None
    value = m.group(1).strip()
    return value or None


def _parse_date(value: str) -> date | None:
    try:
        return datetime.strptime(value[:8], "%Y%m%d").date()
    except ValueError:
        return None


def _parse_amount(value: str) -> Decimal | None:
    try:
        return Decimal(value.replace(",", ""))
    except InvalidOperation:
        return None


def _iter_transactions(text: str, account: str) -> Iterator[RawTransaction]:
    for block in text.split("<STMTTRN>")[1:]:
        fitid = _field(block, "FITID")
        name = _field(block, "NAME")
        amount_raw = _field(block, "TRNAMT")
        posted = _field(block, "DTPOSTED")
        if not (fitid and name and amount_raw and posted):
            continue
        amount = _parse_amount(amount_raw)
        day = _parse_date(posted)
        if amount is None or day is None:
            _logger.debug("qfx:skip_block fitid=%s", fitid)
            continue
        yield RawTransaction(id=fitid, date=day, amount=amount, raw_payee=name, account=account)


def parse_qfx(text: str, default_account: str = "unknown") -> list[RawTransaction]:
    """Parse QFX ``text``; ``default_account`` is used when no ACCTID is present."""

    m = _ACCTID_RE.search(text)
    account = m.group(1).strip() if m else default_account
    return list(_iter_transactions(text, account or default_account))


def parse_qfx_file(path: str | PathLike[str]) -> list[RawTransaction]:
    p = Path(path)
    # Bank exports are frequently latin-1; tolerate stray bytes.
    text = p.read_text(encoding="utf-8", errors="replace")
    txs = parse_qfx(text, default_account=p.stem)
    _logger.info("qfx:parsed path=%s transactions=%d", p.name, len(txs))
    return txs


def parse_qfx_files(paths: Iterable[str | PathLike[str]]) -> list[RawTransaction]:
    out: list[RawTransaction] = []
    for path in paths:
        out.extend(parse_qfx_file(path))
    return out


__all__ = ["parse_qfx", "parse_qfx_file", "parse_qfx_files"]
