"""
Entity store over PostgreSQL.

The single authoritative store every actor polls. Services never hold
cached copies of request state across calls; they read, guard, and write
through this class.

Concurrency primitives live here, expressed in SQL:
- transition_service_request: compare-and-set on the current status
- get_service_request(for_update=True): row lock for completion
- insert_ledger_item / insert_invoice: unique constraints with
  ON CONFLICT DO NOTHING, returning None when the row already exists
- delete_unfinished_ledger_item: conditional delete

Usage:
    store = PostgresStore(PostgresClient(get_database_url()))

    with store.transaction():
        request = store.get_service_request(request_id, for_update=True)
        store.transition_service_request(...)
        store.insert_invoice(invoice)
"""

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Iterable
from uuid import UUID

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient, Transaction
from core.models import (
    CatalogService,
    Garage,
    Invoice,
    InvoiceStatus,
    LedgerItem,
    MechanicMembership,
    Notification,
    Payment,
    PaymentMethod,
    PaymentStatus,
    ServiceRequest,
    ServiceRequestStatus,
    StatusUpdate,
    Vehicle,
)

logger = logging.getLogger(__name__)

# (store, open transaction) for the current call stack
_active_transaction: ContextVar[tuple["PostgresStore", Transaction] | None] = ContextVar(
    "fixflow_active_transaction", default=None
)


def _uuid_list(ids: Iterable[UUID]) -> list[str]:
    return [str(i) for i in ids]


class PostgresStore:
    """Entity read/write/transaction primitives for the coordination core."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    @contextmanager
    def transaction(self):
        """
        Group every store call in the block into one atomic transaction.

        Nested calls join the outer transaction. Commits when the outermost
        block exits normally; rolls back on any exception.
        """
        current = _active_transaction.get()
        if current is not None and current[0] is self:
            yield self
            return

        with self.postgres.transaction() as tx:
            token = _active_transaction.set((self, tx))
            try:
                yield self
            finally:
                _active_transaction.reset(token)

    @property
    def _db(self) -> PostgresClient | Transaction:
        current = _active_transaction.get()
        if current is not None and current[0] is self:
            return current[1]
        return self.postgres

    # =========================================================================
    # REFERENCE DATA (read-only)
    # =========================================================================

    def get_garage(self, garage_id: UUID) -> Garage | None:
        row = self._db.execute_single("SELECT * FROM garages WHERE id = %s", (garage_id,))
        return Garage.model_validate(row) if row else None

    def list_garage_ids_for_admin(self, admin_id: UUID) -> list[UUID]:
        rows = self._db.execute(
            "SELECT id FROM garages WHERE admin_id = %s AND removed = false",
            (admin_id,)
        )
        return [UUID(str(row["id"])) for row in rows]

    def get_mechanic_membership(self, user_id: UUID) -> MechanicMembership | None:
        row = self._db.execute_single("SELECT * FROM mechanics WHERE user_id = %s", (user_id,))
        return MechanicMembership.model_validate(row) if row else None

    def list_garage_mechanic_ids(self, garage_id: UUID) -> list[UUID]:
        """Approved, non-removed mechanics of a garage."""
        rows = self._db.execute(
            """
            SELECT user_id FROM mechanics
            WHERE garage_id = %s AND approved = true AND removed = false
            ORDER BY created_at
            """,
            (garage_id,)
        )
        return [UUID(str(row["user_id"])) for row in rows]

    def get_vehicle(self, vehicle_id: UUID) -> Vehicle | None:
        row = self._db.execute_single("SELECT * FROM vehicles WHERE id = %s", (vehicle_id,))
        return Vehicle.model_validate(row) if row else None

    def get_catalog_service(self, service_id: UUID) -> CatalogService | None:
        row = self._db.execute_single(
            "SELECT * FROM catalog_services WHERE id = %s", (service_id,)
        )
        return CatalogService.model_validate(row) if row else None

    # =========================================================================
    # SERVICE REQUESTS
    # =========================================================================

    def insert_service_request(self, request: ServiceRequest) -> ServiceRequest:
        row = self._db.execute_returning(
            """
            INSERT INTO service_requests (
                id, customer_id, garage_id, vehicle_id, mechanic_id,
                latitude, longitude, description, status, cancel_reason,
                created_at, updated_at
            ) VALUES (
                %s, %s, %s, %s, %s,
                %s, %s, %s, %s, %s,
                %s, %s
            )
            RETURNING *
            """,
            (
                request.id, request.customer_id, request.garage_id, request.vehicle_id,
                request.mechanic_id, request.latitude, request.longitude, request.description,
                request.status.value, request.cancel_reason,
                request.created_at, request.updated_at
            )
        )[0]
        return ServiceRequest.model_validate(row)

    def get_service_request(self, request_id: UUID, for_update: bool = False) -> ServiceRequest | None:
        """
        Get a request by ID.

        With for_update=True the row stays locked until the enclosing
        transaction ends; only meaningful inside transaction().
        """
        query = "SELECT * FROM service_requests WHERE id = %s"
        if for_update:
            query += " FOR UPDATE"
        row = self._db.execute_single(query, (request_id,))
        return ServiceRequest.model_validate(row) if row else None

    def transition_service_request(
        self,
        request_id: UUID,
        *,
        from_statuses: Iterable[ServiceRequestStatus],
        to_status: ServiceRequestStatus,
        mechanic_id: UUID | None,
        now: datetime,
        cancel_reason: str | None = None,
    ) -> ServiceRequest | None:
        """
        Compare-and-set the status of a request.

        Returns:
            The updated request, or None if its status was no longer one of
            from_statuses (someone else moved it first).
        """
        rows = self._db.execute_returning(
            """
            UPDATE service_requests
            SET status = %s, mechanic_id = %s, cancel_reason = %s, updated_at = %s
            WHERE id = %s AND status = ANY(%s)
            RETURNING *
            """,
            (
                to_status.value, mechanic_id, cancel_reason, now,
                request_id, [s.value for s in from_statuses]
            )
        )
        return ServiceRequest.model_validate(rows[0]) if rows else None

    def list_requests_for_customer(self, customer_id: UUID, limit: int) -> list[ServiceRequest]:
        rows = self._db.execute(
            """
            SELECT * FROM service_requests
            WHERE customer_id = %s
            ORDER BY created_at DESC
            LIMIT %s
            """,
            (customer_id, limit)
        )
        return [ServiceRequest.model_validate(row) for row in rows]

    def list_requests_for_garages(self, garage_ids: list[UUID], limit: int) -> list[ServiceRequest]:
        if not garage_ids:
            return []
        rows = self._db.execute(
            """
            SELECT * FROM service_requests
            WHERE garage_id = ANY(%s::uuid[])
            ORDER BY created_at DESC
            LIMIT %s
            """,
            (_uuid_list(garage_ids), limit)
        )
        return [ServiceRequest.model_validate(row) for row in rows]

    def list_requests_for_mechanic(
        self, mechanic_id: UUID, garage_id: UUID | None, limit: int
    ) -> list[ServiceRequest]:
        """Requests assigned to the mechanic plus those of their garage."""
        rows = self._db.execute(
            """
            SELECT * FROM service_requests
            WHERE mechanic_id = %s OR garage_id = %s
            ORDER BY created_at DESC
            LIMIT %s
            """,
            (mechanic_id, garage_id, limit)
        )
        return [ServiceRequest.model_validate(row) for row in rows]

    def list_all_requests(self, limit: int) -> list[ServiceRequest]:
        rows = self._db.execute(
            "SELECT * FROM service_requests ORDER BY created_at DESC LIMIT %s",
            (limit,)
        )
        return [ServiceRequest.model_validate(row) for row in rows]

    def delete_service_request(self, request_id: UUID) -> bool:
        """
        Hard-delete a request with its status updates and ledger items.

        Billing records are detached (service_request_id set to NULL) rather
        than deleted. Call inside transaction().
        """
        self._db.execute_rowcount(
            """
            DELETE FROM ledger_items
            WHERE status_update_id IN (
                SELECT id FROM status_updates WHERE service_request_id = %s
            )
            """,
            (request_id,)
        )
        self._db.execute_rowcount(
            "DELETE FROM status_updates WHERE service_request_id = %s", (request_id,)
        )
        self._db.execute_rowcount(
            "UPDATE invoices SET service_request_id = NULL WHERE service_request_id = %s",
            (request_id,)
        )
        self._db.execute_rowcount(
            "UPDATE payments SET service_request_id = NULL WHERE service_request_id = %s",
            (request_id,)
        )
        deleted = self._db.execute_rowcount(
            "DELETE FROM service_requests WHERE id = %s", (request_id,)
        )
        return deleted > 0

    # =========================================================================
    # STATUS UPDATES
    # =========================================================================

    def insert_status_update(self, update: StatusUpdate) -> StatusUpdate:
        row = self._db.execute_returning(
            """
            INSERT INTO status_updates (
                id, service_request_id, mechanic_id, description, approved, created_at
            ) VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                update.id, update.service_request_id, update.mechanic_id,
                update.description, update.approved, update.created_at
            )
        )[0]
        return StatusUpdate.model_validate(row)

    def get_status_update(self, update_id: UUID) -> StatusUpdate | None:
        row = self._db.execute_single("SELECT * FROM status_updates WHERE id = %s", (update_id,))
        return StatusUpdate.model_validate(row) if row else None

    def set_status_update_approval(self, update_id: UUID, approved: bool) -> StatusUpdate | None:
        rows = self._db.execute_returning(
            "UPDATE status_updates SET approved = %s WHERE id = %s RETURNING *",
            (approved, update_id)
        )
        return StatusUpdate.model_validate(rows[0]) if rows else None

    def list_status_updates(self, request_id: UUID) -> list[StatusUpdate]:
        rows = self._db.execute(
            """
            SELECT * FROM status_updates
            WHERE service_request_id = %s
            ORDER BY created_at, id
            """,
            (request_id,)
        )
        return [StatusUpdate.model_validate(row) for row in rows]

    # =========================================================================
    # LEDGER ITEMS
    # =========================================================================

    def insert_ledger_item(self, item: LedgerItem) -> LedgerItem | None:
        """Insert an item. Returns None if the service is already booked under the update."""
        rows = self._db.execute_returning(
            """
            INSERT INTO ledger_items (
                id, status_update_id, service_id, kind, expected_date,
                unit_price_cents, total_price_cents, finished, finished_at,
                created_at, updated_at
            ) VALUES (
                %s, %s, %s, %s, %s,
                %s, %s, %s, %s,
                %s, %s
            )
            ON CONFLICT (status_update_id, service_id) DO NOTHING
            RETURNING *
            """,
            (
                item.id, item.status_update_id, item.service_id, item.kind.value,
                item.expected_date, item.unit_price_cents, item.total_price_cents,
                item.finished, item.finished_at, item.created_at, item.updated_at
            )
        )
        return LedgerItem.model_validate(rows[0]) if rows else None

    def get_ledger_item(self, item_id: UUID) -> LedgerItem | None:
        row = self._db.execute_single("SELECT * FROM ledger_items WHERE id = %s", (item_id,))
        return LedgerItem.model_validate(row) if row else None

    def update_ledger_item(
        self,
        item_id: UUID,
        *,
        finished: bool,
        total_price_cents: int,
        finished_at: datetime | None,
        now: datetime,
    ) -> LedgerItem | None:
        rows = self._db.execute_returning(
            """
            UPDATE ledger_items
            SET finished = %s, total_price_cents = %s, finished_at = %s, updated_at = %s
            WHERE id = %s
            RETURNING *
            """,
            (finished, total_price_cents, finished_at, now, item_id)
        )
        return LedgerItem.model_validate(rows[0]) if rows else None

    def delete_unfinished_ledger_item(self, item_id: UUID) -> bool:
        """Delete an item only if it is still unfinished. Returns whether a row was deleted."""
        deleted = self._db.execute_rowcount(
            "DELETE FROM ledger_items WHERE id = %s AND finished = false",
            (item_id,)
        )
        return deleted > 0

    def list_ledger_items(self, update_id: UUID) -> list[LedgerItem]:
        rows = self._db.execute(
            "SELECT * FROM ledger_items WHERE status_update_id = %s ORDER BY created_at, id",
            (update_id,)
        )
        return [LedgerItem.model_validate(row) for row in rows]

    def list_ledger_items_for_request(self, request_id: UUID) -> list[LedgerItem]:
        rows = self._db.execute(
            """
            SELECT li.* FROM ledger_items li
            JOIN status_updates su ON su.id = li.status_update_id
            WHERE su.service_request_id = %s
            ORDER BY li.created_at, li.id
            """,
            (request_id,)
        )
        return [LedgerItem.model_validate(row) for row in rows]

    # =========================================================================
    # PAYMENTS
    # =========================================================================

    def insert_payment(self, payment: Payment) -> Payment:
        row = self._db.execute_returning(
            """
            INSERT INTO payments (
                id, service_request_id, customer_id, garage_id, amount_cents,
                method, status, transaction_id, paid_at, notes,
                created_at, updated_at
            ) VALUES (
                %s, %s, %s, %s, %s,
                %s, %s, %s, %s, %s,
                %s, %s
            )
            RETURNING *
            """,
            (
                payment.id, payment.service_request_id, payment.customer_id,
                payment.garage_id, payment.amount_cents, payment.method.value,
                payment.status.value, payment.transaction_id, payment.paid_at,
                payment.notes, payment.created_at, payment.updated_at
            )
        )[0]
        return Payment.model_validate(row)

    def get_payment(self, payment_id: UUID) -> Payment | None:
        row = self._db.execute_single("SELECT * FROM payments WHERE id = %s", (payment_id,))
        return Payment.model_validate(row) if row else None

    def update_payment_status(
        self,
        payment_id: UUID,
        *,
        expected_status: PaymentStatus,
        status: PaymentStatus,
        method: PaymentMethod,
        paid_at: datetime | None,
        notes: str | None,
        now: datetime,
    ) -> Payment | None:
        """Compare-and-set a payment's status. Returns None if it changed underneath."""
        rows = self._db.execute_returning(
            """
            UPDATE payments
            SET status = %s, method = %s, paid_at = %s, notes = %s, updated_at = %s
            WHERE id = %s AND status = %s
            RETURNING *
            """,
            (status.value, method.value, paid_at, notes, now, payment_id, expected_status.value)
        )
        return Payment.model_validate(rows[0]) if rows else None

    def list_payments(
        self,
        *,
        customer_id: UUID | None = None,
        garage_ids: list[UUID] | None = None,
        limit: int = 50,
    ) -> list[Payment]:
        """List payments. No filter means every payment (system admin view)."""
        where, params = self._billing_filter(customer_id, garage_ids)
        rows = self._db.execute(
            f"SELECT * FROM payments {where} ORDER BY created_at DESC LIMIT %s",
            (*params, limit)
        )
        return [Payment.model_validate(row) for row in rows]

    # =========================================================================
    # INVOICES
    # =========================================================================

    def insert_invoice(self, invoice: Invoice) -> Invoice | None:
        """Insert an invoice. Returns None on a unique-constraint conflict."""
        rows = self._db.execute_returning(
            """
            INSERT INTO invoices (
                id, invoice_number, service_request_id, payment_id,
                customer_id, garage_id,
                subtotal_cents, additional_charges_cents, discount_cents,
                tax_rate_bps, tax_amount_cents, total_amount_cents,
                status, issued_at, paid_at, notes,
                created_at, updated_at
            ) VALUES (
                %s, %s, %s, %s,
                %s, %s,
                %s, %s, %s,
                %s, %s, %s,
                %s, %s, %s, %s,
                %s, %s
            )
            ON CONFLICT DO NOTHING
            RETURNING *
            """,
            (
                invoice.id, invoice.invoice_number, invoice.service_request_id, invoice.payment_id,
                invoice.customer_id, invoice.garage_id,
                invoice.subtotal_cents, invoice.additional_charges_cents, invoice.discount_cents,
                invoice.tax_rate_bps, invoice.tax_amount_cents, invoice.total_amount_cents,
                invoice.status.value, invoice.issued_at, invoice.paid_at, invoice.notes,
                invoice.created_at, invoice.updated_at
            )
        )
        return Invoice.model_validate(rows[0]) if rows else None

    def get_invoice(self, invoice_id: UUID) -> Invoice | None:
        row = self._db.execute_single("SELECT * FROM invoices WHERE id = %s", (invoice_id,))
        return Invoice.model_validate(row) if row else None

    def get_invoice_for_request(self, request_id: UUID) -> Invoice | None:
        row = self._db.execute_single(
            "SELECT * FROM invoices WHERE service_request_id = %s", (request_id,)
        )
        return Invoice.model_validate(row) if row else None

    def get_invoice_for_payment(self, payment_id: UUID) -> Invoice | None:
        row = self._db.execute_single(
            "SELECT * FROM invoices WHERE payment_id = %s", (payment_id,)
        )
        return Invoice.model_validate(row) if row else None

    def set_invoice_status(
        self,
        invoice_id: UUID,
        *,
        status: InvoiceStatus,
        paid_at: datetime | None,
        now: datetime,
    ) -> Invoice | None:
        rows = self._db.execute_returning(
            """
            UPDATE invoices SET status = %s, paid_at = %s, updated_at = %s
            WHERE id = %s
            RETURNING *
            """,
            (status.value, paid_at, now, invoice_id)
        )
        return Invoice.model_validate(rows[0]) if rows else None

    def list_invoices(
        self,
        *,
        customer_id: UUID | None = None,
        garage_ids: list[UUID] | None = None,
        limit: int = 50,
    ) -> list[Invoice]:
        """List invoices. No filter means every invoice (system admin view)."""
        where, params = self._billing_filter(customer_id, garage_ids)
        rows = self._db.execute(
            f"SELECT * FROM invoices {where} ORDER BY created_at DESC LIMIT %s",
            (*params, limit)
        )
        return [Invoice.model_validate(row) for row in rows]

    def next_invoice_sequence(self, prefix: str) -> int:
        """
        Allocate the next sequence number for an invoice prefix.

        The upsert keeps the counter row locked until the enclosing
        transaction ends: concurrent completions of different requests get
        distinct numbers, and a rolled-back completion hands its number back.
        """
        return self._db.execute_scalar(
            """
            INSERT INTO invoice_counters (prefix, last_value) VALUES (%s, 1)
            ON CONFLICT (prefix) DO UPDATE SET last_value = invoice_counters.last_value + 1
            RETURNING last_value
            """,
            (prefix,)
        )

    @staticmethod
    def _billing_filter(
        customer_id: UUID | None, garage_ids: list[UUID] | None
    ) -> tuple[str, tuple[Any, ...]]:
        conditions = []
        params: list[Any] = []
        if customer_id is not None:
            conditions.append("customer_id = %s")
            params.append(customer_id)
        if garage_ids is not None:
            conditions.append("garage_id = ANY(%s::uuid[])")
            params.append(_uuid_list(garage_ids))
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        return where, tuple(params)

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    def insert_notification(self, notification: Notification) -> Notification:
        row = self._db.execute_returning(
            """
            INSERT INTO notifications (
                id, sender_id, receiver_id, type, title, message, read, created_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                notification.id, notification.sender_id, notification.receiver_id,
                notification.type.value, notification.title, notification.message,
                notification.read, notification.created_at
            )
        )[0]
        return Notification.model_validate(row)

    def list_notifications(
        self,
        receiver_id: UUID,
        *,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Notification]:
        query = "SELECT * FROM notifications WHERE receiver_id = %s"
        if unread_only:
            query += " AND read = false"
        query += " ORDER BY created_at DESC, id LIMIT %s OFFSET %s"
        rows = self._db.execute(query, (receiver_id, limit, offset))
        return [Notification.model_validate(row) for row in rows]

    def count_notifications(self, receiver_id: UUID, *, unread_only: bool = False) -> int:
        query = "SELECT COUNT(*) FROM notifications WHERE receiver_id = %s"
        if unread_only:
            query += " AND read = false"
        return self._db.execute_scalar(query, (receiver_id,)) or 0

    def mark_notifications_read(self, receiver_id: UUID, ids: list[UUID] | None) -> int:
        """Mark the receiver's notifications read. ids=None means all of them."""
        if ids is None:
            return self._db.execute_rowcount(
                "UPDATE notifications SET read = true WHERE receiver_id = %s AND read = false",
                (receiver_id,)
            )
        return self._db.execute_rowcount(
            """
            UPDATE notifications SET read = true
            WHERE receiver_id = %s AND id = ANY(%s::uuid[]) AND read = false
            """,
            (receiver_id, _uuid_list(ids))
        )

    def delete_notifications(self, receiver_id: UUID, ids: list[UUID] | None) -> int:
        """Delete the receiver's notifications. ids=None means all of them."""
        if ids is None:
            return self._db.execute_rowcount(
                "DELETE FROM notifications WHERE receiver_id = %s", (receiver_id,)
            )
        return self._db.execute_rowcount(
            "DELETE FROM notifications WHERE receiver_id = %s AND id = ANY(%s::uuid[])",
            (receiver_id, _uuid_list(ids))
        )

    # =========================================================================
    # AUDIT LOG
    # =========================================================================

    def insert_audit_entry(
        self,
        *,
        entry_id: UUID,
        actor_id: UUID | None,
        entity_type: str,
        entity_id: UUID,
        action: str,
        changes: dict[str, Any],
        created_at: datetime,
    ) -> None:
        self._db.execute(
            """
            INSERT INTO audit_log (id, actor_id, entity_type, entity_id, action, changes, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            """,
            (entry_id, actor_id, entity_type, entity_id, action, Json(changes), created_at)
        )

    def list_audit_entries(self, entity_type: str, entity_id: UUID) -> list[dict[str, Any]]:
        """Audit history for an entity, newest first."""
        return self._db.execute(
            """
            SELECT id, actor_id, entity_type, entity_id, action, changes, created_at
            FROM audit_log
            WHERE entity_type = %s AND entity_id = %s
            ORDER BY created_at DESC
            """,
            (entity_type, entity_id)
        )
