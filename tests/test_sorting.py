import pytest

import sorting
from ledger_view import StrategyRegistry, UnknownStrategyError
from schemas import TransactionRecord
from sorting import SortKey, build_sort_strategies, collation_key


def _record(id, amount=None, description="", date=""):
    return TransactionRecord(id=id, amount=amount, description=description, date=date)


def _ids(records):
    return [r.id for r in records]


STRATEGIES = build_sort_strategies()
TIERED = [
    _record("1", "-5"),
    _record("2", "100"),
    _record("3", "-500"),
    _record("4", "20"),
]


def test_highest_puts_income_first_then_smallest_outflows():
    result = sorting.execute(TIERED, STRATEGIES[SortKey.highest])
    assert _ids(result) == ["2", "4", "1", "3"]


def test_lowest_is_the_mirror_image():
    result = sorting.execute(TIERED, STRATEGIES[SortKey.lowest])
    assert _ids(result) == ["3", "1", "4", "2"]


def test_zero_counts_as_income():
    records = [_record("neg", "-1"), _record("zero", "0"), _record("pos", "3")]
    assert _ids(sorting.execute(records, STRATEGIES[SortKey.highest])) == [
        "pos",
        "zero",
        "neg",
    ]
    assert _ids(sorting.execute(records, STRATEGIES[SortKey.lowest])) == [
        "neg",
        "zero",
        "pos",
    ]


def test_latest_and_oldest_order_by_timestamp():
    records = [
        _record("mid", date="2024-05-10"),
        _record("new", date="2024-06-01T08:00:00Z"),
        _record("old", date="2023-12-31"),
    ]
    assert _ids(sorting.execute(records, STRATEGIES[SortKey.latest])) == [
        "new",
        "mid",
        "old",
    ]
    assert _ids(sorting.execute(records, STRATEGIES[SortKey.oldest])) == [
        "old",
        "mid",
        "new",
    ]


def test_unparsable_dates_sort_last_in_both_directions():
    records = [
        _record("bad-1", date="yesterday"),
        _record("a", date="2024-01-01"),
        _record("bad-2", date=""),
        _record("b", date="2024-02-01"),
    ]
    assert _ids(sorting.execute(records, STRATEGIES[SortKey.latest])) == [
        "b",
        "a",
        "bad-1",
        "bad-2",
    ]
    assert _ids(sorting.execute(records, STRATEGIES[SortKey.oldest])) == [
        "a",
        "b",
        "bad-1",
        "bad-2",
    ]


def test_unparsable_amounts_sort_last():
    records = [_record("x", "n/a"), _record("y", "-3"), _record("z", "7")]
    assert _ids(sorting.execute(records, STRATEGIES[SortKey.highest])) == ["z", "y", "x"]
    assert _ids(sorting.execute(records, STRATEGIES[SortKey.lowest])) == ["y", "z", "x"]


def test_alphabetical_sort_ignores_case_and_accents():
    records = [
        _record("1", description="zebra"),
        _record("2", description="Éclair"),
        _record("3", description="apple"),
        _record("4", description="Banana"),
    ]
    assert _ids(sorting.execute(records, STRATEGIES[SortKey.a_z])) == ["3", "4", "2", "1"]
    assert _ids(sorting.execute(records, STRATEGIES[SortKey.z_a])) == ["1", "2", "4", "3"]


def test_sort_is_stable_for_equal_keys():
    records = [
        _record("first", "10", "Same"),
        _record("second", "10", "same"),
        _record("third", "10", "Same"),
    ]
    assert _ids(sorting.execute(records, STRATEGIES[SortKey.highest])) == [
        "first",
        "second",
        "third",
    ]
    assert _ids(sorting.execute(records, STRATEGIES[SortKey.latest])) == [
        "first",
        "second",
        "third",
    ]


def test_sort_returns_a_new_list():
    result = sorting.execute(TIERED, STRATEGIES[SortKey.highest])
    assert result is not TIERED
    assert _ids(TIERED) == ["1", "2", "3", "4"]


def test_collation_key_folds_accents_before_case():
    assert collation_key("école")[0] == "ecole"
    assert collation_key("Apple")[:2] == collation_key("apple")[:2]


def test_registry_rejects_unknown_sort_key():
    registry = StrategyRegistry.default()
    assert registry.sort("a-z").key is SortKey.a_z
    with pytest.raises(UnknownStrategyError):
        registry.sort("cheapest")
    assert [option.value for option in registry.sort_options()] == [
        "latest",
        "oldest",
        "a-z",
        "z-a",
        "highest",
        "lowest",
    ]
