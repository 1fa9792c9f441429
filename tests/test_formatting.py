from datetime import datetime, timezone
from decimal import Decimal

from formatting import (
    format_currency,
    format_transaction_date,
    is_over_a_month_old,
    signed_currency,
)
from schemas import amount_to_text, parse_amount, parse_timestamp
from tokens import (
    generate_csrf_token,
    issue_view_token,
    read_view_token,
    validate_csrf_token,
)


def test_currency_formatting():
    assert format_currency(Decimal("-1234.5")) == "£1,234.50"
    assert signed_currency(Decimal("-1234.5")) == "-£1,234.50"
    assert signed_currency(Decimal("0")) == "+£0.00"
    assert format_currency(None) == "-"


def test_transaction_date_formatting():
    assert format_transaction_date("2024-08-19T14:23:11Z") == "19/08/2024"
    assert format_transaction_date("soon") == "Invalid date"


def test_over_a_month_old_clamps_short_months():
    now = datetime(2024, 3, 31, 12, tzinfo=timezone.utc)
    assert is_over_a_month_old("2024-02-28T00:00:00Z", now=now) is True
    assert is_over_a_month_old("2024-03-01", now=now) is False
    assert is_over_a_month_old("", now=now) is False
    january = datetime(2024, 1, 15, tzinfo=timezone.utc)
    assert is_over_a_month_old("2023-12-14", now=january) is True
    non_leap = datetime(2023, 3, 31, tzinfo=timezone.utc)
    assert is_over_a_month_old("2023-02-27", now=non_leap) is True
    assert is_over_a_month_old("2023-02-28T12:00:00Z", now=non_leap) is False
    year_end = datetime(2024, 1, 31, tzinfo=timezone.utc)
    assert is_over_a_month_old("2023-12-30", now=year_end) is True


def test_parse_amount_is_tolerant():
    assert parse_amount("£1,200.50") == Decimal("1200.50")
    assert parse_amount(-3) == Decimal("-3")
    assert parse_amount("NaN") is None
    assert parse_amount(True) is None
    assert parse_amount("") is None


def test_amount_text_matches_plain_number_rendering():
    assert amount_to_text(Decimal("100.00")) == "100"
    assert amount_to_text(Decimal("-12.50")) == "-12.5"
    assert amount_to_text(Decimal("0.05")) == "0.05"


def test_parse_timestamp_reads_naive_values_as_utc():
    assert parse_timestamp("2024-01-02").tzinfo == timezone.utc
    assert parse_timestamp("2024-01-02T03:04:05Z").hour == 3
    assert parse_timestamp("02/01/2024") is None


def test_csrf_tokens():
    token = generate_csrf_token(secret="one")
    assert validate_csrf_token(token, secret="one") is True
    assert validate_csrf_token(token, secret="two") is False
    assert validate_csrf_token(token, user_id=2, secret="one") is False
    assert validate_csrf_token("garbage", secret="one") is False
    expired = generate_csrf_token(max_age_hours=-1, secret="one")
    assert validate_csrf_token(expired, secret="one") is False


def test_view_tokens():
    token = issue_view_token("abc123", secret="one")
    assert read_view_token(token, secret="one") == "abc123"
    assert read_view_token(token, secret="two") is None
    assert read_view_token(token + "x", secret="one") is None
