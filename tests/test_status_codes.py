from __future__ import annotations

import pytest

from nfebr.status_codes import (
    AUTHORIZED_CODES,
    CANCELLED_CODES,
    EVENT_REGISTERED_CODES,
    StatusCode,
    describe,
    status_table,
)


@pytest.mark.parametrize("code", [100, "100", " 100 "])
def test_from_code_accepts_text(code) -> None:
    assert StatusCode.from_code(code) is StatusCode.AUTHORIZED


@pytest.mark.parametrize("code", [None, "", "abc", 999])
def test_unknown_codes(code) -> None:
    assert StatusCode.from_code(code) is StatusCode.UNKNOWN


def test_describe() -> None:
    assert describe(135) == "Evento registrado e vinculado à NFe"
    assert describe(999) == "Status desconhecido: 999"


def test_status_table_is_sorted_and_excludes_unknown() -> None:
    table = status_table()

    assert 0 not in table
    assert list(table) == sorted(table)
    assert table[573].startswith("Evento já existe")


def test_code_groups_do_not_overlap() -> None:
    assert not AUTHORIZED_CODES & CANCELLED_CODES
    assert 135 in EVENT_REGISTERED_CODES
