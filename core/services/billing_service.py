"""
Billing service: invoice and payment records for completed requests.

`finalize` runs inside the completion transaction and creates exactly one
payment and one invoice per request. "Exactly one" is enforced by the
store's unique index on invoices.service_request_id, not by a pre-check,
so two concurrent completions cannot both bill.

Payments are bookkeeping entries only; nothing here talks to a gateway.
"""

import logging
from uuid import UUID, uuid4

from auth.types import Actor, Role
from core.access import AccessGuard, AccessIntent
from core.audit import AuditLogger, AuditAction, compute_changes
from core.config import CoreConfig
from core.errors import (
    AlreadyCompletedError,
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
)
from core.event_bus import EventBus
from core.events import PaymentStatusChanged
from core.ledger import BillTotals, compute_bill, compute_ledger_total
from core.models import (
    CompletionRequest,
    Invoice,
    InvoiceStatus,
    LedgerItem,
    Payment,
    PaymentMethod,
    PaymentStatus,
    ServiceRequest,
)
from utils.timezone import day_stamp, now_utc, second_stamp

logger = logging.getLogger(__name__)

_P = PaymentStatus

# current status -> statuses a system admin may move a payment to
_PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    _P.PENDING: frozenset({_P.COMPLETED, _P.FAILED, _P.CANCELLED}),
    _P.FAILED: frozenset({_P.PENDING, _P.COMPLETED, _P.CANCELLED}),
    _P.COMPLETED: frozenset({_P.REFUNDED}),
    _P.REFUNDED: frozenset(),
    _P.CANCELLED: frozenset(),
}


class BillingService:
    """Service for invoice and payment operations."""

    def __init__(
        self,
        store,
        guard: AccessGuard,
        audit: AuditLogger,
        event_bus: EventBus,
        config: CoreConfig,
    ):
        self.store = store
        self.guard = guard
        self.audit = audit
        self.event_bus = event_bus
        self.config = config

    def _generate_invoice_number(self) -> str:
        """
        Generate the next invoice number.

        Format: INV-YYYYMMDD-XXXX where XXXX is a per-day sequence number
        (it widens past 9999). Call inside the billing transaction.
        """
        prefix = f"{self.config.invoice_prefix}-{day_stamp()}-"
        sequence = self.store.next_invoice_sequence(prefix)
        return f"{prefix}{sequence:04d}"

    @staticmethod
    def _generate_transaction_id() -> str:
        """Bookkeeping reference, e.g. TXN-20260101120000-3F2A9C1B."""
        return f"TXN-{second_stamp()}-{uuid4().hex[:8].upper()}"

    def preview(self, items: list[LedgerItem], data: CompletionRequest | None = None) -> BillTotals:
        """
        Compute what finalize would bill for these items, without writing.

        Raises:
            InvalidError: If the discount exceeds the billable amount
        """
        data = data or CompletionRequest()
        return compute_bill(
            compute_ledger_total(items),
            self.config.tax_rate_bps,
            additional_charges_cents=data.additional_charges_cents,
            discount_cents=data.discount_cents,
        )

    def finalize(
        self,
        request: ServiceRequest,
        items: list[LedgerItem],
        data: CompletionRequest,
        actor_id: UUID,
    ) -> tuple[Invoice, Payment]:
        """
        Create the payment and invoice for a request being completed.

        Must run inside the caller's store.transaction() so that a failure
        here rolls back the status flip as well.

        Args:
            request: The request being completed
            items: All ledger items of the request
            data: Payment method and adjustments
            actor_id: Who completed the request

        Returns:
            (invoice, payment)

        Raises:
            AlreadyCompletedError: An invoice already exists for the request
            ConflictError: Invoice number taken by a concurrent completion
            InvalidError: Discount exceeds the billable amount
        """
        totals = self.preview(items, data)
        method = data.payment_method or self.config.default_payment_method
        now = now_utc()

        payment = self.store.insert_payment(Payment(
            id=uuid4(),
            service_request_id=request.id,
            customer_id=request.customer_id,
            garage_id=request.garage_id,
            amount_cents=totals.total_amount_cents,
            method=method,
            status=PaymentStatus.PENDING,
            transaction_id=self._generate_transaction_id(),
            paid_at=None,
            notes=data.notes,
            created_at=now,
            updated_at=now,
        ))

        invoice = self.store.insert_invoice(Invoice(
            id=uuid4(),
            invoice_number=self._generate_invoice_number(),
            service_request_id=request.id,
            payment_id=payment.id,
            customer_id=request.customer_id,
            garage_id=request.garage_id,
            subtotal_cents=totals.subtotal_cents,
            additional_charges_cents=totals.additional_charges_cents,
            discount_cents=totals.discount_cents,
            tax_rate_bps=totals.tax_rate_bps,
            tax_amount_cents=totals.tax_amount_cents,
            total_amount_cents=totals.total_amount_cents,
            status=InvoiceStatus.UNPAID,
            issued_at=now,
            paid_at=None,
            notes=data.notes,
            created_at=now,
            updated_at=now,
        ))

        if invoice is None:
            if self.store.get_invoice_for_request(request.id) is not None:
                logger.warning(f"Duplicate completion of request {request.id} refused")
                raise AlreadyCompletedError(f"Service request {request.id} is already completed")
            raise ConflictError("Invoice number already taken, retry the completion")

        self.audit.log_change(
            entity_type="payment",
            entity_id=payment.id,
            action=AuditAction.CREATE,
            changes={"created": payment.model_dump(mode="json")},
            actor_id=actor_id,
        )
        self.audit.log_change(
            entity_type="invoice",
            entity_id=invoice.id,
            action=AuditAction.CREATE,
            changes={
                "created": {
                    "service_request_id": str(request.id),
                    "invoice_number": invoice.invoice_number,
                    "subtotal_cents": invoice.subtotal_cents,
                    "tax_rate_bps": invoice.tax_rate_bps,
                    "total_amount_cents": invoice.total_amount_cents,
                }
            },
            actor_id=actor_id,
        )

        logger.info(
            f"Billed request {request.id}: invoice {invoice.invoice_number} "
            f"total {invoice.total_amount_cents}"
        )
        return invoice, payment

    # =========================================================================
    # PAYMENT BOOKKEEPING
    # =========================================================================

    def settle_payment(
        self, actor: Actor, payment_id: UUID, method: PaymentMethod | None = None
    ) -> Payment:
        """
        Record that the customer paid.

        Args:
            actor: The payment's customer
            payment_id: Payment UUID
            method: How they paid (defaults to the method on record)

        Returns:
            Payment in COMPLETED status; its invoice becomes paid

        Raises:
            NotFoundError: Payment not found
            ForbiddenError: Actor is not the payment's customer
            InvalidTransitionError: Payment is not pending or failed
        """
        payment = self.store.get_payment(payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")

        if actor.role != Role.CUSTOMER or actor.id != payment.customer_id:
            raise ForbiddenError(f"Only the customer can settle payment {payment_id}")

        return self._apply_status(actor, payment, PaymentStatus.COMPLETED, method=method)

    def update_payment_status(
        self,
        actor: Actor,
        payment_id: UUID,
        status: PaymentStatus,
        notes: str | None = None,
    ) -> Payment:
        """
        Move a payment to a new status (system admin bookkeeping).

        Raises:
            ForbiddenError: Actor is not a system admin
            NotFoundError: Payment not found
            InvalidTransitionError: Move not allowed from the current status
        """
        if not actor.is_system_admin:
            raise ForbiddenError("Only system administrators can change payment status")

        payment = self.store.get_payment(payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")

        return self._apply_status(actor, payment, status, notes=notes)

    def _apply_status(
        self,
        actor: Actor,
        payment: Payment,
        status: PaymentStatus,
        method: PaymentMethod | None = None,
        notes: str | None = None,
    ) -> Payment:
        if status not in _PAYMENT_TRANSITIONS[payment.status]:
            raise InvalidTransitionError(
                f"Cannot move payment from {payment.status.value} to {status.value}"
            )

        now = now_utc()
        with self.store.transaction():
            updated = self.store.update_payment_status(
                payment.id,
                expected_status=payment.status,
                status=status,
                method=method or payment.method,
                paid_at=now if status == PaymentStatus.COMPLETED else payment.paid_at,
                notes=notes if notes is not None else payment.notes,
                now=now,
            )
            if updated is None:
                raise ConflictError(f"Payment {payment.id} was changed concurrently")

            self.audit.log_change(
                entity_type="payment",
                entity_id=payment.id,
                action=AuditAction.UPDATE,
                changes=compute_changes(
                    payment.model_dump(mode="json"), updated.model_dump(mode="json")
                ),
                actor_id=actor.id,
            )

            invoice = self.store.get_invoice_for_payment(payment.id)
            if invoice is not None:
                invoice = self._sync_invoice(actor, invoice, status, now)

        logger.info(f"Payment {payment.id}: {payment.status.value} -> {status.value}")
        self.event_bus.publish(PaymentStatusChanged.create(
            payment=updated, invoice=invoice, previous_status=payment.status, actor_id=actor.id
        ))
        return updated

    def _sync_invoice(self, actor: Actor, invoice: Invoice, status: PaymentStatus, now) -> Invoice:
        """Invoice follows its payment: completed -> paid, refunded -> unpaid."""
        if status == PaymentStatus.COMPLETED and invoice.status != InvoiceStatus.PAID:
            new_status, paid_at = InvoiceStatus.PAID, now
        elif status == PaymentStatus.REFUNDED and invoice.status == InvoiceStatus.PAID:
            new_status, paid_at = InvoiceStatus.UNPAID, None
        else:
            return invoice

        updated = self.store.set_invoice_status(invoice.id, status=new_status, paid_at=paid_at, now=now)
        self.audit.log_change(
            entity_type="invoice",
            entity_id=invoice.id,
            action=AuditAction.UPDATE,
            changes={"status": {"old": invoice.status.value, "new": new_status.value}},
            actor_id=actor.id,
        )
        return updated

    # =========================================================================
    # READS
    # =========================================================================

    def get_invoice(self, actor: Actor, invoice_id: UUID) -> Invoice:
        """
        Get an invoice the actor may see.

        Raises:
            NotFoundError: Invoice not found
            ForbiddenError: Actor may not see it
        """
        invoice = self.store.get_invoice(invoice_id)
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        self.guard.require_billing(actor, invoice)
        return invoice

    def get_invoice_for_request(self, actor: Actor, request_id: UUID) -> Invoice:
        """
        Get the invoice of a request the actor may read.

        Raises:
            NotFoundError: Request not found, or not billed yet
            ForbiddenError: Actor may not read the request
        """
        request = self.store.get_service_request(request_id)
        if request is None:
            raise NotFoundError(f"Service request {request_id} not found")
        self.guard.require(actor, request, AccessIntent.READ)

        invoice = self.store.get_invoice_for_request(request_id)
        if invoice is None:
            raise NotFoundError(f"No invoice for service request {request_id}")
        return invoice

    def get_payment(self, actor: Actor, payment_id: UUID) -> Payment:
        """
        Get a payment the actor may see.

        Raises:
            NotFoundError: Payment not found
            ForbiddenError: Actor may not see it
        """
        payment = self.store.get_payment(payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        self.guard.require_billing(actor, payment)
        return payment

    def _billing_scope(self, actor: Actor) -> dict:
        if actor.is_system_admin:
            return {}
        if actor.role == Role.CUSTOMER:
            return {"customer_id": actor.id}
        if actor.role == Role.GARAGE_ADMIN:
            return {"garage_ids": self.store.list_garage_ids_for_admin(actor.id)}
        raise ForbiddenError("Mechanics have no access to billing records")

    def list_invoices(self, actor: Actor, limit: int | None = None) -> list[Invoice]:
        """Invoices visible to the actor, newest first."""
        return self.store.list_invoices(
            **self._billing_scope(actor), limit=limit or self.config.list_limit
        )

    def list_payments(self, actor: Actor, limit: int | None = None) -> list[Payment]:
        """Payments visible to the actor, newest first."""
        return self.store.list_payments(
            **self._billing_scope(actor), limit=limit or self.config.list_limit
        )
