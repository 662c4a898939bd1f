"""
Two-phase order commit.

Phase 1 submits the order to the ERP (the system of record). Phase 2 records
it in the local store. The phases are not atomic and nothing is rolled back:
when phase 2 fails the ERP already holds the order, and PartialCommitError
carries its id and sequence. The accepted submission stays on the staged
order so a retry records it locally without creating a second ERP order.
"""
import logging
import threading
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fieldsales.blueprints.metrics import order_commits_total
from fieldsales.compose.builder import LineItemBuilder
from fieldsales.compose.resolver import SelectionResolver
from fieldsales.compose.staged_order import StagedOrder
from fieldsales.compose.types import (
    CENT, CommitResult, OperatorProfile, OrderLine, OrderReceipt, SelectionContext, to_wire,
)
from fieldsales.exceptions import (
    CommitInProgressError, EmptyOrderError, FieldSalesError, InvalidStateError,
    OrderRejectedError, PartialCommitError,
)

logger = logging.getLogger(__name__)

SENT = 'sent'


def build_order_payload(profile: OperatorProfile, context: SelectionContext, lines: List[OrderLine]) -> Dict[str, Any]:
    """The composite order as the ERP expects it, draft line first."""
    customer = context.customer
    return {
        'partner_id': customer.id,
        'territory_id': customer.territory_id if customer.territory_id is not None else context.territory.id,
        'policy_type': context.policy_type.type,
        'employee_id': profile.employee_id,
        'company_id': profile.company_id,
        'warehouse_id': context.warehouse.id,
        'order_id': 0,
        'lines': [line.to_order_payload() for line in lines],
    }


@dataclass
class PreparedCommit:
    """What one commit sends: frozen before phase 1, reused when only phase 2 is retried."""

    lines: List[OrderLine]
    total: Decimal
    payload: Dict[str, Any]
    local_payload: Dict[str, Any]
    receipt: Optional[OrderReceipt] = None


class CommitOrchestrator:
    """Commits the composed order: ERP first, then the local store."""

    def __init__(
        self,
        profile: OperatorProfile,
        resolver: SelectionResolver,
        builder: LineItemBuilder,
        staged: StagedOrder,
        backend,
        gateway,
    ):
        self.profile = profile
        self.resolver = resolver
        self.builder = builder
        self.staged = staged
        self.backend = backend
        self.gateway = gateway

    def commit(self) -> CommitResult:
        """
        Run both phases.

        Raises:
            ValidationError: context or lines incomplete; nothing was sent.
            CommitInProgressError: another commit of this order is outstanding.
            NetworkError: phase 1 failed; staged lines are kept.
            OrderRejectedError: phase 1 answered without id or sequence.
            PartialCommitError: phase 1 succeeded, phase 2 failed. The next
                commit retries phase 2 only.
        """
        return self.submit(self.prepare())

    def prepare(self) -> PreparedCommit:
        """Take the in-flight guard, then freeze the lines and payloads."""
        self.staged.begin_commit()
        if self.staged.submission is not None:
            logger.info(
                f"[COMMIT] Retrying local store for {self.staged.submission.receipt.order_sequence}"
            )
            return self.staged.submission
        try:
            context = self.resolver.context()
            lines = self.builder.lines_for_commit()
            payload = build_order_payload(self.profile, context, lines)
        except Exception:
            self.staged.abort_commit()
            raise

        total = sum((line.total for line in lines), Decimal('0'))
        local_payload = {
            **payload,
            'lines': [line.to_local_payload() for line in lines],
            'status': SENT,
            'total': to_wire(total),
            'partner_name': context.customer.name,
            'territory_name': context.territory.name,
        }
        logger.info(
            f"[COMMIT] Submitting order for customer {context.customer.id}: "
            f"{len(lines)} lines, total {total.quantize(CENT)}"
        )
        return PreparedCommit(lines, total, payload, local_payload)

    def submit(self, prepared: PreparedCommit) -> CommitResult:
        """Send a prepared commit; the in-flight guard is released on every outcome."""
        try:
            if prepared.receipt is None:
                self._submit_to_erp(prepared)
            sales_order_id = self._store_locally(prepared)
        except Exception:
            self.staged.fail_commit()
            raise

        self.staged.complete_commit()
        self.builder.discard_all()
        receipt = prepared.receipt
        order_commits_total.labels(kind='compose', outcome='committed').inc()
        logger.info(f"[COMMIT] Order {receipt.order_sequence} committed (local #{sales_order_id})")
        return CommitResult(
            order_id=receipt.order_id,
            order_sequence=receipt.order_sequence,
            sales_order_id=sales_order_id,
            total=prepared.total,
            line_count=len(prepared.lines),
        )

    def _submit_to_erp(self, prepared: PreparedCommit) -> None:
        try:
            receipt = self.gateway.post_order(prepared.payload)
        except Exception:
            order_commits_total.labels(kind='compose', outcome='failed').inc()
            logger.warning("[COMMIT] Phase 1 failed; staged lines kept for retry")
            raise

        if not receipt.is_complete:
            order_commits_total.labels(kind='compose', outcome='rejected').inc()
            logger.error(f"[COMMIT] Phase 1 answered without identity: {receipt}")
            raise OrderRejectedError(receipt.order_id, receipt.order_sequence)

        prepared.receipt = receipt
        self.staged.record_submission(prepared)

    def _store_locally(self, prepared: PreparedCommit) -> int:
        receipt = prepared.receipt
        local_payload = {
            **prepared.local_payload,
            'order_id': receipt.order_id,
            'order_sequence': receipt.order_sequence,
        }
        try:
            return self.backend.create_sales_order(local_payload)
        except Exception as e:
            order_commits_total.labels(kind='compose', outcome='partial').inc()
            logger.error(
                f"[COMMIT] Order {receipt.order_sequence} (#{receipt.order_id}) exists in the ERP "
                f"but was not stored locally: {e}"
            )
            raise PartialCommitError(receipt.order_id, receipt.order_sequence, cause=e) from e


class WarehouseAssignmentOrchestrator:
    """
    Confirms a stored order without a warehouse: ERP submission first, then
    the local warehouse assignment.
    """

    def __init__(self, backend, gateway):
        self.backend = backend
        self.gateway = gateway
        self._lock = threading.Lock()
        self._in_flight = set()

    def assign(self, sales_order_id: int, warehouse_id: int, employee_id: int, company_id: int) -> CommitResult:
        """At most one assignment per stored order is outstanding at a time."""
        with self._lock:
            if sales_order_id in self._in_flight:
                raise CommitInProgressError()
            self._in_flight.add(sales_order_id)
        try:
            return self._assign(sales_order_id, warehouse_id, employee_id, company_id)
        finally:
            with self._lock:
                self._in_flight.discard(sales_order_id)

    def _assign(self, sales_order_id, warehouse_id, employee_id, company_id) -> CommitResult:
        order = self.backend.get_sales_order(sales_order_id)
        if order.warehouse_id:
            raise InvalidStateError(f'Sales order {sales_order_id} already has a warehouse')
        if not order.lines:
            raise EmptyOrderError()

        payload = {
            'partner_id': order.partner_id,
            'territory_id': order.territory_id,
            'policy_type': order.policy_type,
            'employee_id': employee_id,
            'company_id': company_id,
            'warehouse_id': warehouse_id,
            'order_id': order.order_id or 0,
            'lines': [line.to_order_payload() for line in order.lines],
        }
        try:
            receipt = self.gateway.post_order(payload)
        except FieldSalesError:
            order_commits_total.labels(kind='warehouse', outcome='failed').inc()
            raise
        if not receipt.is_complete:
            order_commits_total.labels(kind='warehouse', outcome='rejected').inc()
            raise OrderRejectedError(receipt.order_id, receipt.order_sequence)

        try:
            self.backend.assign_warehouse(
                sales_order_id, warehouse_id,
                order_id=receipt.order_id, order_sequence=receipt.order_sequence,
            )
        except FieldSalesError as e:
            order_commits_total.labels(kind='warehouse', outcome='partial').inc()
            logger.error(
                f"[COMMIT] Order {receipt.order_sequence} confirmed in the ERP but warehouse "
                f"was not stored on #{sales_order_id}: {e.message}"
            )
            raise PartialCommitError(receipt.order_id, receipt.order_sequence, cause=e) from e

        order_commits_total.labels(kind='warehouse', outcome='committed').inc()
        logger.info(f"[COMMIT] Warehouse {warehouse_id} assigned to #{sales_order_id} ({receipt.order_sequence})")
        total = sum(
            (Decimal(line.qty) * line.price_unit * (1 - line.discount / 100) for line in order.lines),
            Decimal('0'),
        )
        return CommitResult(
            order_id=receipt.order_id,
            order_sequence=receipt.order_sequence,
            sales_order_id=sales_order_id,
            total=total,
            line_count=len(order.lines),
        )
