from datetime import datetime, timezone
from decimal import Decimal

import pytest

import filters
from filters import (
    FilterSet,
    category_filter,
    date_range_filter,
    expense_filter,
    income_filter,
    period_filter,
    search_filter,
)
from periods import Period
from schemas import TransactionRecord


def _record(id, amount="10", category="General", description="Shop", date="2024-08-01"):
    return TransactionRecord(
        id=id, amount=amount, category=category, description=description, date=date
    )


def _ids(records):
    return [r.id for r in records]


LEDGER = [
    _record("1", "-12.50", "Bills", "Electric Co"),
    _record("2", "120", "Salary", "Acme Payroll"),
    _record("3", "12", "Groceries", "Corner Shop"),
    _record("4", "-45", "Dining Out", "Bistro"),
    _record("5", "0", "bills", "Zero Rated"),
]


def test_empty_filter_set_returns_input_in_order():
    assert _ids(filters.execute(LEDGER, FilterSet())) == ["1", "2", "3", "4", "5"]
    assert filters.execute([], FilterSet()) == []


def test_category_filter_is_case_insensitive():
    result = filters.execute(LEDGER, [category_filter("bills")])
    assert _ids(result) == ["1", "5"]
    assert category_filter("Bills").name == "category:bills"


def test_search_matches_description_category_and_amount_text():
    assert _ids(filters.execute(LEDGER, [search_filter("BISTRO")])) == ["4"]
    assert _ids(filters.execute(LEDGER, [search_filter("salary")])) == ["2"]
    # "12" is substring-matched against the amount text: -12.5, 120 and 12.
    assert _ids(filters.execute(LEDGER, [search_filter("12")])) == ["1", "2", "3"]


def test_blank_search_matches_everything():
    assert len(filters.execute(LEDGER, [search_filter("   ")])) == len(LEDGER)


def test_income_and_expense_exclude_zero():
    assert _ids(filters.execute(LEDGER, [income_filter()])) == ["2", "3"]
    assert _ids(filters.execute(LEDGER, [expense_filter()])) == ["1", "4"]


def test_date_range_is_inclusive_on_both_bounds():
    records = [
        _record("a", date="2024-01-31T23:59:59Z"),
        _record("b", date="2024-02-01"),
        _record("c", date="2024-02-29T12:00:00+00:00"),
        _record("d", date="2024-03-01T00:00:00Z"),
    ]
    start = datetime(2024, 2, 1, tzinfo=timezone.utc)
    end = datetime(2024, 3, 1, tzinfo=timezone.utc)
    assert _ids(filters.execute(records, [date_range_filter(start, end)])) == [
        "b",
        "c",
        "d",
    ]


def test_date_range_rejects_inverted_bounds():
    start = datetime(2024, 3, 1, tzinfo=timezone.utc)
    with pytest.raises(ValueError, match="Start date"):
        date_range_filter(start, datetime(2024, 1, 1, tzinfo=timezone.utc))


def test_period_filter_covers_whole_days():
    records = [_record("late", date="2024-02-29T23:30:00"), _record("next", date="2024-03-01")]
    period = Period("custom", datetime(2024, 2, 1).date(), datetime(2024, 2, 29).date())
    assert _ids(filters.execute(records, [period_filter(period)])) == ["late"]


def test_malformed_rows_only_fail_filters_that_read_the_bad_field():
    broken = [
        _record("bad-date", "5", date="not a date"),
        _record("bad-amount", "abc", description="Corner Shop"),
    ]
    assert broken[1].amount is None
    start = datetime(2000, 1, 1, tzinfo=timezone.utc)
    end = datetime(2100, 1, 1, tzinfo=timezone.utc)

    assert _ids(filters.execute(broken, [date_range_filter(start, end)])) == ["bad-amount"]
    assert _ids(filters.execute(broken, [income_filter()])) == ["bad-date"]
    assert _ids(filters.execute(broken, [search_filter("corner")])) == ["bad-amount"]
    assert _ids(filters.execute(broken, FilterSet())) == ["bad-date", "bad-amount"]


def test_filter_set_replaces_family_members_instead_of_stacking():
    active = FilterSet()
    for term in ("c", "co", "cor"):
        active.add(search_filter(term))
    active.add(category_filter("bills"))
    active.add(category_filter("groceries"))
    active.add(income_filter())

    assert list(active) == ["search:cor", "category:groceries", "income"]
    assert active.family("search:").display_name == "Search: cor"


def test_filter_set_reinstall_replaces_by_name():
    active = FilterSet([income_filter()])
    replacement = filters.FilterStrategy("income", "Big income", lambda r: r.amount > 100)
    active.add(replacement)
    assert len(active) == 1
    assert _ids(filters.execute(LEDGER, active)) == ["2"]


def test_remove_and_clear():
    active = FilterSet([income_filter(), category_filter("bills")])
    assert active.remove("income") is True
    assert active.remove("income") is False
    active.clear()
    assert len(active) == 0


def test_filtering_is_idempotent_and_composable():
    f1, f2 = search_filter("o"), expense_filter()
    once = filters.execute(LEDGER, [f1, f2])
    assert filters.execute(once, [f1, f2]) == once
    assert filters.execute(filters.execute(LEDGER, [f1]), [f2]) == once
    assert filters.execute(filters.execute(LEDGER, [f2]), [f1]) == once


def test_records_are_not_mutated():
    before = [r.model_dump() for r in LEDGER]
    filters.execute(LEDGER, [search_filter("shop"), income_filter()])
    assert [r.model_dump() for r in LEDGER] == before
    assert LEDGER[0].amount == Decimal("-12.50")


def test_pot_categories_also_match_on_description():
    records = [
        _record("pot", "-50", "Transfer", "Transfer to Pot: Holiday"),
        _record("out", "20", "General", "Pot withdrawal"),
        _record("plain", "-10", "Groceries", "Tesco"),
    ]
    assert _ids(filters.execute(records, [category_filter("Savings")])) == ["pot"]
    assert _ids(filters.execute(records, [category_filter("withdrawal")])) == ["out"]
    # Ordinary categories still compare the stored value only.
    assert _ids(filters.execute(records, [category_filter("transfer")])) == ["pot"]
    assert _ids(filters.execute(records, [category_filter("general")])) == ["out"]
