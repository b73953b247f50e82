import logging
from dataclasses import dataclass, field
from typing import Optional

from ledger import LedgerRow, Template
from ledger_client import LedgerClient, LedgerQuery, WriteResult
from models import TransactionKind
from recurrence import expand
from schemas import TemplateIn

logger = logging.getLogger(__name__)


@dataclass
class CreatedFixedExpense:
    template: Optional[LedgerRow]
    results: list[WriteResult] = field(default_factory=list)

    @property
    def installments(self) -> list[LedgerRow]:
        return [r.row for r in self.results if r.ok and r.row is not None]

    @property
    def failures(self) -> list[WriteResult]:
        return [r for r in self.results if not r.ok]


class FixedExpenseService:
    def __init__(self, client: LedgerClient) -> None:
        self.client = client

    def create(self, data: TemplateIn) -> CreatedFixedExpense:
        """Insert a template and the installments it implies.

        Installment failures are returned, not raised; the backfill job
        inserts whatever is still missing on its next run.
        """
        row = LedgerRow(
            kind=data.kind,
            status=data.status,
            cost_center_id=data.cost_center_id,
            equipment_id=data.equipment_id,
            value=data.value,
            date=data.date,
            category=data.category,
            sector=data.sector,
            description=data.description,
            payment_method=data.payment_method,
            reference=data.reference,
            is_template=True,
            duration_months=data.duration_months,
            installment_number=1,
        )
        existing = self.client.query(
            LedgerQuery()
            .eq("kind", data.kind)
            .eq("description", data.description)
            .eq("cost_center_id", data.cost_center_id)
            .eq("is_template", True)
            .limit(1)
        )
        if existing:
            raise ValueError(
                f"A fixed {data.kind.name} named {data.description!r} already exists "
                f"for cost center {data.cost_center_id}"
            )

        inserted = self.client.insert(row)
        if not inserted.ok:
            logger.error(f"fixed_expense_create_failed: {inserted.error}")
            return CreatedFixedExpense(template=None, results=[inserted])

        template = Template.from_row(inserted.row)
        created = CreatedFixedExpense(template=inserted.row)
        for installment in expand(template):
            created.results.append(self.client.insert(installment))
        logger.info(
            f"fixed_expense_created: id={inserted.row.id} description={data.description!r} "
            f"installments={len(created.installments)} failed={len(created.failures)}"
        )
        return created

    def list_templates(
        self, kind: TransactionKind = TransactionKind.expense
    ) -> list[LedgerRow]:
        return self.client.query(
            LedgerQuery().eq("kind", kind).eq("is_template", True).order("description")
        )
