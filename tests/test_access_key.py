from __future__ import annotations

import random
from datetime import date

import pytest

from nfebr.access_key import (
    AccessKeyBuilder,
    build_access_key,
    format_access_key,
    mod11_check_digit,
    parse_access_key,
    validate_access_key,
)
from nfebr.errors import ChecksumMismatch, InvalidField, MalformedKey
from nfebr.regions import DocumentModel, EmissionType, Region

from tests.fakes import KNOWN_KEY


def test_known_manual_key_parses() -> None:
    key = parse_access_key(KNOWN_KEY)

    assert key.region == "52"
    assert key.year_month == "0604"
    assert key.issuer_id == "33009911002506"
    assert key.model == "55"
    assert key.series == "012"
    assert key.number == "000000780"
    assert key.random_code == "26730161"
    assert key.check_digit == "5"
    assert key.issuing_region is Region.GO
    assert key.document_model is DocumentModel.NFE
    assert str(key) == KNOWN_KEY


def test_mod11_zero_for_small_remainders() -> None:
    assert mod11_check_digit("0") == 0
    # 6 * 2 = 12, remainder 1
    assert mod11_check_digit("6") == 0
    assert mod11_check_digit("1") == 9


@pytest.mark.parametrize(
    "fields",
    [
        (Region.SP, "12345678000195", DocumentModel.NFE, 1, 1, EmissionType.NORMAL),
        ("43", "12345678000195", "65", "999", "999999999", "9"),
        (Region.BA, "12345678901", 55, 0, 42, EmissionType.SVC_RS),
    ],
)
def test_build_then_parse_round_trip(fields) -> None:
    built = build_access_key(*fields, issue_date=date(2024, 5, 1), random_code="12345670")

    parsed = parse_access_key(built.digits)

    assert parsed == built
    assert len(built.digits) == 44
    assert built.year_month == "2405"
    assert validate_access_key(str(built)) == built.digits


def test_random_code_is_generated_and_differs_from_number() -> None:
    key = build_access_key(Region.SP, "12345678000195", 55, 1, 12345678, 1, issue_date=date(2024, 1, 1))

    assert len(key.random_code) == 8
    assert key.random_code != key.number[-8:]
    parse_access_key(key.digits)


def test_explicit_random_code_equal_to_number_is_rejected() -> None:
    with pytest.raises(InvalidField) as excinfo:
        build_access_key(Region.SP, "12345678000195", 55, 1, 12345678, 1, random_code="12345678")
    assert excinfo.value.field == "random_code"


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"issuer_id": "123456789012345"}, "issuer_id"),
        ({"series": "1000"}, "series"),
        ({"number": "12A"}, "number"),
        ({"emission_type": ""}, "emission_type"),
        ({"region": None}, "region"),
    ],
)
def test_invalid_fields(overrides, field) -> None:
    values = {
        "region": "35",
        "issuer_id": "12345678000195",
        "model": "55",
        "series": "1",
        "number": "1",
        "emission_type": "1",
    }
    values.update(overrides)

    with pytest.raises(InvalidField) as excinfo:
        build_access_key(**values, issue_date=date(2024, 1, 1))
    assert excinfo.value.field == field


def test_invalid_month_is_rejected() -> None:
    with pytest.raises(InvalidField):
        build_access_key("35", "12345678000195", "55", "1", "1", "1", year_month="2413")


@pytest.mark.parametrize("value", ["123", KNOWN_KEY + "0", KNOWN_KEY[:-1] + "X"])
def test_malformed_keys(value) -> None:
    with pytest.raises(MalformedKey):
        parse_access_key(value)


def test_single_digit_mutations_fail_checksum() -> None:
    rng = random.Random(2024)
    for _ in range(100):
        position = rng.randrange(44)
        original = KNOWN_KEY[position]
        replacement = rng.choice([digit for digit in "0123456789" if digit != original])
        mutated = KNOWN_KEY[:position] + replacement + KNOWN_KEY[position + 1 :]

        with pytest.raises(ChecksumMismatch):
            parse_access_key(mutated)


def test_checksum_mismatch_reports_expected_digit() -> None:
    with pytest.raises(ChecksumMismatch) as excinfo:
        parse_access_key(KNOWN_KEY[:-1] + "7")
    assert excinfo.value.expected == 5
    assert excinfo.value.found == 7
    assert excinfo.value.kind == "checksum_mismatch"


def test_format_access_key_groups_of_four() -> None:
    formatted = format_access_key(KNOWN_KEY)

    assert formatted.split(" ")[0] == "5206"
    assert len(formatted.split(" ")) == 11
    assert formatted.replace(" ", "") == KNOWN_KEY


def test_builder_is_immutable() -> None:
    base = AccessKeyBuilder().with_issuer(region=Region.GO, issuer_id="33009911002506", model=55)
    first = base.with_document(series=1, number=10).with_issue_date(date(2024, 2, 1)).with_random_code(11111111)
    second = base.with_document(series=2, number=20).with_issue_date(date(2024, 2, 1)).with_random_code(22222222)

    assert base.series is None
    assert first.build().series == "001"
    assert second.build().series == "002"
    assert first.build().issue_month == 2
    assert first.build().issue_year == 2024
