from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date

from ledger import LedgerRow, Template


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def roll_forward(year: int, month: int, day: int, months: int) -> date:
    """Move an anchor ``months`` months ahead, clamping to the month's last day.

    The day is always clamped from the original anchor day, never from a
    previously clamped result, so a 31st anchor returns to the 31st whenever
    the target month has one.
    """
    if months < 0:
        raise ValueError(f"Month offset must be >= 0, got {months}")
    target_month = month + months
    target_year = year
    while target_month > 12:
        target_month -= 12
        target_year += 1

    dim = days_in_month(target_year, target_month)
    if day > dim:
        return date(target_year, target_month, dim)
    return date(target_year, target_month, day)


def roll_date(anchor: date, months: int) -> date:
    return roll_forward(anchor.year, anchor.month, anchor.day, months)


def expand(template: Template) -> list[LedgerRow]:
    """Build installments 2..N for a template; the template itself is #1."""
    anchor = template.anchor
    return [
        template.row.with_fields(
            id=None,
            created_at=None,
            is_template=False,
            duration_months=None,
            installment_number=offset + 1,
            date=roll_date(anchor, offset),
        )
        for offset in range(1, template.duration_months)
    ]


def expected_dates(template: Template) -> dict[int, date]:
    return {
        offset + 1: roll_date(template.anchor, offset)
        for offset in range(template.duration_months)
    }


def claims(template: Template, row: LedgerRow) -> bool:
    """True when ``row`` is exactly one of the installments ``template`` implies."""
    if row.is_template or row.series_key != template.row.series_key:
        return False
    if row.value != template.value or row.installment_number is None:
        return False
    if not 2 <= row.installment_number <= template.duration_months:
        return False
    return row.date == roll_date(template.anchor, row.installment_number - 1)


@dataclass
class ExpansionCheck:
    template: Template
    missing_numbers: list[int] = field(default_factory=list)
    mismatched: list[LedgerRow] = field(default_factory=list)
    surplus: list[LedgerRow] = field(default_factory=list)
    month_collisions: dict[tuple[int, int], list[LedgerRow]] = field(
        default_factory=dict
    )

    @property
    def consistent(self) -> bool:
        return not (
            self.missing_numbers
            or self.mismatched
            or self.surplus
            or self.month_collisions
        )


def inspect_expansion(template: Template, rows: list[LedgerRow]) -> ExpansionCheck:
    """Compare a template's stored installments against its expected expansion.

    ``rows`` are the non-template rows sharing the template's description and
    cost center.
    """
    expected = expected_dates(template)
    check = ExpansionCheck(template=template)
    by_month: dict[tuple[int, int], list[LedgerRow]] = defaultdict(list)
    seen_numbers: set[int] = set()

    for row in rows:
        by_month[(row.date.year, row.date.month)].append(row)
        number = row.installment_number
        if number is None or number < 2 or number > template.duration_months:
            check.surplus.append(row)
            continue
        if number in seen_numbers:
            check.surplus.append(row)
            continue
        seen_numbers.add(number)
        if row.date != expected[number] or row.value != template.value:
            check.mismatched.append(row)

    check.missing_numbers = [
        n for n in range(2, template.duration_months + 1) if n not in seen_numbers
    ]
    check.month_collisions = {
        month: items for month, items in by_month.items() if len(items) > 1
    }
    return check


def missing_installments(template: Template, rows: list[LedgerRow]) -> list[LedgerRow]:
    """Expected installments with neither their number nor their month present."""
    numbers = {r.installment_number for r in rows if r.installment_number is not None}
    months = {(r.date.year, r.date.month) for r in rows}
    return [
        inst
        for inst in expand(template)
        if inst.installment_number not in numbers
        and (inst.date.year, inst.date.month) not in months
    ]
