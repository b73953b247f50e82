from datetime import date
from decimal import Decimal

import pytest

from ledger import LedgerRow, MalformedTemplateError, Template
from models import TransactionKind
from recurrence import (
    days_in_month,
    expand,
    expected_dates,
    inspect_expansion,
    missing_installments,
    roll_date,
    roll_forward,
)


def _template(
    anchor: date = date(2024, 1, 31),
    duration: int = 3,
    value: Decimal = Decimal("-500"),
) -> Template:
    return Template.from_row(
        LedgerRow(
            kind=TransactionKind.expense,
            cost_center_id="c1",
            value=value,
            date=anchor,
            description="Rent",
            category="aluguel",
            is_template=True,
            duration_months=duration,
            installment_number=1,
            id="t1",
        )
    )


def _installment(number, on: date, value: Decimal = Decimal("-500")) -> LedgerRow:
    return LedgerRow(
        kind=TransactionKind.expense,
        cost_center_id="c1",
        value=value,
        date=on,
        description="Rent",
        installment_number=number,
        id=f"i{number}-{on.isoformat()}",
    )


def test_days_in_month_handles_leap_years():
    assert days_in_month(2024, 2) == 29
    assert days_in_month(2023, 2) == 28
    assert days_in_month(2024, 12) == 31


def test_roll_forward_clamps_february_without_drift():
    assert roll_forward(2023, 1, 31, 1) == date(2023, 2, 28)
    assert roll_forward(2024, 1, 31, 1) == date(2024, 2, 29)
    # Clamping in February must not carry into March.
    assert roll_forward(2024, 1, 31, 2) == date(2024, 3, 31)
    assert roll_forward(2024, 1, 31, 3) == date(2024, 4, 30)


def test_roll_forward_wraps_years():
    assert roll_forward(2024, 11, 15, 3) == date(2025, 2, 15)
    assert roll_forward(2024, 12, 31, 13) == date(2026, 1, 31)
    assert roll_forward(2024, 12, 1, 24) == date(2026, 12, 1)


def test_roll_forward_zero_offset_keeps_valid_dates():
    assert roll_forward(2024, 5, 10, 0) == date(2024, 5, 10)
    assert roll_date(date(2024, 5, 10), 0) == date(2024, 5, 10)


def test_roll_forward_rejects_negative_offsets():
    with pytest.raises(ValueError):
        roll_forward(2024, 1, 1, -1)


@pytest.mark.parametrize("day", [1, 15, 28, 29, 30, 31])
def test_roll_forward_is_strictly_monotonic(day):
    seen = set()
    for months in range(0, 37):
        rolled = roll_forward(2023, 1, day, months)
        assert rolled.year * 12 + rolled.month == 2023 * 12 + 1 + months
        assert rolled not in seen
        seen.add(rolled)


def test_expand_basic_rent_template():
    rows = expand(_template())

    assert [(r.installment_number, r.date) for r in rows] == [
        (2, date(2024, 2, 29)),
        (3, date(2024, 3, 31)),
    ]
    for row in rows:
        assert row.value == Decimal("-500")
        assert row.description == "Rent"
        assert row.cost_center_id == "c1"
        assert row.category == "aluguel"
        assert row.is_template is False
        assert row.duration_months is None
        assert row.id is None


@pytest.mark.parametrize("duration", [1, 2, 12, 24, 60])
def test_expand_returns_one_row_per_remaining_month(duration):
    rows = expand(_template(duration=duration))
    assert len(rows) == duration - 1
    assert [r.installment_number for r in rows] == list(range(2, duration + 1))


def test_expand_is_deterministic():
    template = _template(anchor=date(2024, 8, 30), duration=18)
    assert expand(template) == expand(template)


def test_template_requires_usable_duration():
    row = _template().row
    with pytest.raises(MalformedTemplateError):
        Template.from_row(row.with_fields(duration_months=None))
    with pytest.raises(MalformedTemplateError):
        Template.from_row(row.with_fields(duration_months=0))
    with pytest.raises(ValueError, match="not a template"):
        Template.from_row(row.with_fields(is_template=False))


def test_expected_dates_include_the_template_itself():
    dates = expected_dates(_template(duration=4))
    assert dates == {
        1: date(2024, 1, 31),
        2: date(2024, 2, 29),
        3: date(2024, 3, 31),
        4: date(2024, 4, 30),
    }


def test_inspect_expansion_accepts_a_clean_expansion():
    template = _template(duration=6)
    check = inspect_expansion(template, expand(template))
    assert check.consistent


def test_inspect_expansion_flags_drifted_and_missing_rows():
    template = _template(duration=4)
    rows = [
        _installment(2, date(2024, 2, 29)),
        # Drifted: day carried over from the clamped February date.
        _installment(3, date(2024, 3, 29)),
    ]

    check = inspect_expansion(template, rows)

    assert not check.consistent
    assert check.missing_numbers == [4]
    assert [r.installment_number for r in check.mismatched] == [3]
    assert check.surplus == []


def test_inspect_expansion_flags_surplus_and_month_collisions():
    template = _template(duration=3)
    rows = expand(template) + [
        _installment(None, date(2024, 2, 10)),
        _installment(3, date(2024, 3, 31)),
    ]

    check = inspect_expansion(template, rows)

    assert len(check.surplus) == 2
    assert set(check.month_collisions) == {(2024, 2), (2024, 3)}


def test_missing_installments_respects_legacy_rows_by_month():
    template = _template(duration=4)
    rows = [
        _installment(2, date(2024, 2, 29)),
        _installment(None, date(2024, 4, 30)),
    ]

    missing = missing_installments(template, rows)

    assert [(r.installment_number, r.date) for r in missing] == [(3, date(2024, 3, 31))]
