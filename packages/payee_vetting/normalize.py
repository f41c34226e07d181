"""Derive a stable match pattern from a raw bank payee string.

Banks append variable noise to the merchant name (transaction/session codes,
store numbers, location codes). Stripping it yields a prefix that many future
occurrences of the same merchant share, which makes a good ``contains``
pattern for a pre-stage rule.

Examples::

    "AMAZON MKTPL*0C2091XO3"      -> "AMAZON MKTPL"
    "TST* CORIANDER GOLDEN - N"   -> "TST* CORIANDER GOLDEN"
    "TST* JAMBA JUICE - 1286 -"   -> "TST* JAMBA JUICE"
    "TST* CHIRINGUITO LLC  ARL"   -> "TST* CHIRINGUITO LLC"
    "A-B PETROLEUM #34"           -> "A-B PETROLEUM"
    "2ND AND CHARLES 2149"        -> "2ND AND CHARLES"

The transform is pure and total: it never raises, and in the worst case
returns the trimmed input unchanged. Surrounding whitespace is always
trimmed, so the length guard applies to the trimmed input.
"""

from __future__ import annotations

import re

# A strip is applied only when at least this many characters survive.
MIN_PATTERN_LENGTH: int = 4

# Ordered; each pass applies every rule once.
_STRIP_RULES: tuple[re.Pattern[str], ...] = (
    # *XXXXXXXX transaction/session code glued to the name
    re.compile(r"\*[A-Za-z0-9]{3,}$"),
    # isolated trailing dash left by truncation
    re.compile(r"\s+-\s*$"),
    # " - CODE" or " - CODE -" location/store code
    re.compile(r"\s+-\s+[A-Z0-9]{1,6}\s*(?:-\s*)?$", re.IGNORECASE),
    # "#1234" store number
    re.compile(r"\s+#[0-9A-Z]{1,6}$", re.IGNORECASE),
    # bank padding followed by an airport/branch code
    re.compile(r"\s{2,}[A-Z]{2,4}$"),
    # bare 4+ digit store id (also eats embedded dates; accepted)
    re.compile(r"\s+\d{4,}$"),
)


def _strip_once(s: str, pattern: re.Pattern[str]) -> str:
    candidate = pattern.sub("", s).strip()
    return candidate if len(candidate) >= MIN_PATTERN_LENGTH else s


def extract_match_value(raw_payee: str) -> str:
    """Return the stable match pattern for ``raw_payee``.

    Strip rules run in order, repeatedly, until a full pass changes nothing.
    Every applied strip shortens the string, so the loop always ends and the
    result is a fixed point: normalizing it again returns it unchanged.
    """

    s = raw_payee.strip()
    while True:
        prev = s
        for pattern in _STRIP_RULES:
            s = _strip_once(s, pattern)
        if s == prev:
            return s


# Short alias used by callers that think of this as "the normalizer".
normalize = extract_match_value


__all__ = ["MIN_PATTERN_LENGTH", "extract_match_value", "normalize"]
