import pytest

from payee_vetting.normalize import MIN_PATTERN_LENGTH, extract_match_value, normalize


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        # *CODE transaction/session id
        ("AMAZON MKTPL*0C2091XO3", "AMAZON MKTPL"),
        ("Amazon.com*0K3MH0VR3", "Amazon.com"),
        ("Amazon Kids+*4R0KO2MY3", "Amazon Kids+"),
        # trailing dash
        ("TST* THE HAMPTON SOCIAL -", "TST* THE HAMPTON SOCIAL"),
        # " - CODE" / " - CODE -"
        ("TST* CORIANDER GOLDEN - N", "TST* CORIANDER GOLDEN"),
        ("TST* JAMBA JUICE - 1286 -", "TST* JAMBA JUICE"),
        # store number
        ("A-B PETROLEUM #34", "A-B PETROLEUM"),
        ("WHOLEFDS #1234", "WHOLEFDS"),
        # padded branch/airport code
        ("TST* CHIRINGUITO LLC  ARL", "TST* CHIRINGUITO LLC"),
        ("TST* SOME PLACE  BWI", "TST* SOME PLACE"),
        # bare numeric id
        ("2ND AND CHARLES 2149", "2ND AND CHARLES"),
        ("PAYROLL 20261215", "PAYROLL"),
    ],
)
def test_strips_known_noise_suffixes(raw: str, expected: str) -> None:
    assert extract_match_value(raw) == expected


@pytest.mark.parametrize(
    "raw",
    ["STARBUCKS", "NETFLIX.COM", "A-B PETROLEUM", "STORE 24", "HWY 41", "7-ELEVEN", "1234"],
)
def test_clean_payees_are_unchanged(raw: str) -> None:
    assert extract_match_value(raw) == raw


def test_trims_surrounding_whitespace() -> None:
    assert extract_match_value("  STARBUCKS  ") == "STARBUCKS"


def test_length_guard_applies_to_trimmed_input() -> None:
    # trimming alone may leave fewer than MIN_PATTERN_LENGTH characters
    assert normalize("  ab  ") == "ab"
    assert normalize("  GAS #1 ") == "GAS #1"
    assert normalize("   ") == ""


def test_guard_keeps_original_when_result_would_be_too_short() -> None:
    assert normalize("GAS #1") == "GAS #1"
    assert normalize("T*0C2091XO3") == "T*0C2091XO3"


def test_strips_when_exactly_min_length_remains() -> None:
    assert normalize("FUEL #123") == "FUEL"
    assert len("FUEL") == MIN_PATTERN_LENGTH


def test_multiple_passes_until_stable() -> None:
    # store number, then numeric id, then *code
    assert normalize("SQ *BLUE BOTTLE*ABC123 4455 #12") == "SQ *BLUE BOTTLE"


def test_strips_any_number_of_repeated_suffixes() -> None:
    raw = "ABCD " + " ".join(str(n) * 4 for n in range(1, 10))
    assert normalize(raw) == "ABCD"


SAMPLES = [
    "AMAZON MKTPL*0C2091XO3",
    "TST* JAMBA JUICE - 1286 -",
    "SQ *BLUE BOTTLE*ABC123 4455 #12",
    "GAS #1",
    "UBER   TRIP",
    "CAPITAL ONE CRCARDPMT 2149 - X",
    "ABCD 12345678",
    "X - 1",
    "SHELL OIL 57444  SFO",
    "ABCD 1111 2222 3333 4444 5555 6666 7777",
    "WHOLEFDS #12 #34 #56 #78 #90 #11 #22",
    "",
]


@pytest.mark.parametrize("raw", SAMPLES)
def test_normalize_is_idempotent(raw: str) -> None:
    once = normalize(raw)
    assert normalize(once) == once


@pytest.mark.parametrize("raw", [s for s in SAMPLES if len(s) >= MIN_PATTERN_LENGTH])
def test_never_shrinks_below_min_length(raw: str) -> None:
    assert len(normalize(raw)) >= MIN_PATTERN_LENGTH
