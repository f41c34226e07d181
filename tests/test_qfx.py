from datetime import date
from decimal import Decimal
from pathlib import Path

from payee_vetting.qfx import parse_qfx, parse_qfx_file, parse_qfx_files

CHECKING_QFX = """OFXHEADER:100
DATA:OFXSGML
<OFX>
<BANKMSGSRSV1><STMTTRNRS><STMTRS>
<BANKACCTFROM>
<BANKID>123456789
<ACCTID>000111222
<ACCTTYPE>CHECKING
</BANKACCTFROM>
<BANKTRANLIST>
<STMTTRN>
<TRNTYPE>DEBIT
<DTPOSTED>20260301120000[-5:EST]
<TRNAMT>-1,199.00
<FITID>2026030101
<NAME>CAPITAL ONE CRCARDPMT 2149
</STMTTRN>
<STMTTRN>
<TRNTYPE>DEBIT
<DTPOSTED>20260302
<TRNAMT>-4.75
<FITID>2026030201
<NAME>STARBUCKS #4567
</STMTTRN>
<STMTTRN>
<TRNTYPE>DEBIT
<DTPOSTED>not-a-date
<TRNAMT>-1.00
<FITID>2026030301
<NAME>BROKEN DATE
</STMTTRN>
<STMTTRN>
<TRNTYPE>CREDIT
<DTPOSTED>20260304
<TRNAMT>12.00
<FITID>2026030401
</STMTTRN>
</BANKTRANLIST>
</STMTRS></STMTTRNRS></BANKMSGSRSV1>
</OFX>
"""


def test_parses_transactions_and_skips_incomplete_blocks() -> None:
    txs = parse_qfx(CHECKING_QFX)

    assert [t.id for t in txs] == ["2026030101", "2026030201"]
    first = txs[0]
    assert first.account == "000111222"
    assert first.date == date(2026, 3, 1)
    assert first.amount == Decimal("-1199.00")
    assert first.raw_payee == "CAPITAL ONE CRCARDPMT 2149"
    assert txs[1].amount == Decimal("-4.75")


def test_default_account_when_acctid_missing() -> None:
    text = "<STMTTRN><DTPOSTED>20260101\n<TRNAMT>5\n<FITID>x1\n<NAME>PAYROLL\n</STMTTRN>"
    (tx,) = parse_qfx(text, default_account="savings")
    assert tx.account == "savings"
    assert tx.raw_payee == "PAYROLL"


def test_file_helpers_use_stem_as_fallback_account(tmp_path: Path) -> None:
    with_acct = tmp_path / "checking.qfx"
    with_acct.write_text(CHECKING_QFX, encoding="utf-8")
    without = tmp_path / "card.qfx"
    without.write_bytes(
        b"<STMTTRN>\n<DTPOSTED>20260303\n<TRNAMT>1199.00\n<FITID>c1\n"
        b"<NAME>PAYMENT \xe9\n</STMTTRN>\n"
    )

    (card_tx,) = parse_qfx_file(without)
    assert card_tx.account == "card"
    assert card_tx.raw_payee.startswith("PAYMENT ")

    all_txs = parse_qfx_files([with_acct, without])
    assert [t.account for t in all_txs] == ["000111222", "000111222", "card"]
