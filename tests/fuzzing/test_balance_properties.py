"""
Property-based tests for the balance fold.

Properties:
- Conservation: cartons == sum(in) - sum(out) for any movement list.
- Order independence of the carton total.
- Projection is idempotent: folding the same movements twice agrees.
- Last non-null wins for every captured ratio.
- Pallet rounding always covers the cartons with fewer than one spare pallet.
"""

from dataclasses import dataclass
from datetime import date
from uuid import uuid4

from hypothesis import given, settings
from hypothesis import strategies as st

from inventory_kernel.domain.balance import (
    LedgerKey,
    build_balance,
    fold_transactions,
    pallets_for,
)


@dataclass
class Move:
    cartons_in: int
    cartons_out: int
    units_per_carton: int | None
    storage_cartons_per_pallet: int | None
    shipping_cartons_per_pallet: int | None
    transaction_date: date = date(2024, 3, 1)
    created_at: None = None


ratios = st.one_of(st.none(), st.integers(min_value=1, max_value=200))

moves = st.builds(
    lambda inbound, cartons, upc, storage, shipping: Move(
        cartons_in=cartons if inbound else 0,
        cartons_out=0 if inbound else cartons,
        units_per_carton=upc,
        storage_cartons_per_pallet=storage,
        shipping_cartons_per_pallet=shipping,
    ),
    st.booleans(),
    st.integers(min_value=1, max_value=99_999),
    ratios,
    ratios,
    ratios,
)


@settings(max_examples=200)
@given(st.lists(moves, max_size=60))
def test_conservation(movements):
    acc = fold_transactions(movements)
    assert acc.cartons == sum(m.cartons_in for m in movements) - sum(
        m.cartons_out for m in movements
    )
    assert acc.transaction_count == len(movements)


@settings(max_examples=100)
@given(st.lists(moves, max_size=40), st.randoms())
def test_carton_total_is_order_independent(movements, rnd):
    shuffled = list(movements)
    rnd.shuffle(shuffled)
    assert fold_transactions(shuffled).cartons == fold_transactions(movements).cartons


@settings(max_examples=100)
@given(st.lists(moves, max_size=40))
def test_projection_is_idempotent(movements):
    key = LedgerKey(uuid4(), uuid4(), "LOT")
    first = build_balance(key, fold_transactions(movements), sku_units_per_carton=12)
    second = build_balance(key, fold_transactions(movements), sku_units_per_carton=12)
    assert first == second


@settings(max_examples=200)
@given(st.lists(moves, max_size=40))
def test_last_non_null_wins(movements):
    acc = fold_transactions(movements)
    for attr in ("units_per_carton", "storage_cartons_per_pallet", "shipping_cartons_per_pallet"):
        captured = [getattr(m, attr) for m in movements if getattr(m, attr) is not None]
        assert getattr(acc, attr) == (captured[-1] if captured else None)


@given(st.integers(min_value=1, max_value=10**6), st.integers(min_value=1, max_value=500))
def test_pallets_cover_cartons(cartons, ratio):
    pallets = pallets_for(cartons, ratio)
    assert pallets * ratio >= cartons
    assert (pallets - 1) * ratio < cartons
