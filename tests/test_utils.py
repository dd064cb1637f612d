from datetime import date, datetime

import pytest

from app.salescrm.utils import (
    format_axis_amount,
    format_currency,
    format_date,
    is_valid_email,
    paginate,
    parse_amount,
    parse_date,
    parse_flag,
    parse_int,
    parse_page,
    rank_mark,
)


@pytest.mark.parametrize(
    "raw,expected",
    [("¥1,234,000", 1234000), ("500000", 500000), ("", 0), (None, 0), ("abc", 0), (" 12 000 ", 12000)],
)
def test_parse_amount(raw, expected):
    assert parse_amount(raw) == expected


def test_format_currency():
    assert format_currency(1_000_000) == "¥1,000,000"
    assert format_currency(-1500) == "-¥1,500"
    assert format_currency(None) == "¥0"
    assert format_currency("abc") == "¥0"
    assert format_currency("2500.6") == "¥2,501"


def test_format_axis_amount():
    assert format_axis_amount(2_000_000) == "2百万"
    assert format_axis_amount(25_000) == "25千"
    assert format_axis_amount(999) == "999"
    assert format_axis_amount(12.5) == "12.5"
    assert format_axis_amount(None) == "0"


def test_format_date():
    assert format_date(date(2026, 3, 5)) == "2026/03/05"
    assert format_date(datetime(2026, 3, 5, 9, 30)) == "2026/03/05"
    assert format_date("2026-03-05T09:30:00") == "2026/03/05"
    assert format_date("garbage") == ""
    assert format_date(None) == ""


def test_parse_helpers():
    assert parse_int(" 42 ") == 42
    assert parse_int("4x") is None
    assert parse_date("2026-02-30") is None
    assert parse_date("2026-02-28") == date(2026, 2, 28)
    assert parse_page({"page": "0"}) == 1
    assert parse_page({"page": "3"}) == 3
    assert parse_flag({"all": "on"}, "all") is True
    assert parse_flag({}, "all") is False


def test_paginate():
    items = list(range(30))
    p = paginate(items, 3, per_page=12)
    assert p.items == list(range(24, 30))
    assert p.pages == 3
    assert p.has_prev and not p.has_next

    empty = paginate([], 1)
    assert empty.pages == 1
    assert empty.items == []
    assert not empty.has_next


def test_rank_mark():
    assert rank_mark(1) == "🏆"
    assert rank_mark(3) == "🥉"
    assert rank_mark(4) == ""


def test_is_valid_email():
    assert is_valid_email("a.b@example.co.jp")
    assert not is_valid_email("no-at-sign")
