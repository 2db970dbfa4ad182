# store.py
# The hold engine only talks to TicketStore; both stores return records from domain.py

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from domain import Hold, Purchase
from errors import ConflictError, LotteryError, StorageError
from logging_config import get_logger
from models import HeldTicketRow, PurchaseRow, db

logger = get_logger(__name__)


class TicketStore(ABC):
    """Interface for purchase and hold persistence."""

    @abstractmethod
    @contextmanager
    def transaction(self):
        """Run the enclosed reads and writes as one unit of work.

        Either every write inside the block is applied or none is. Nested
        blocks join the outermost one.
        """
        ...

    @abstractmethod
    def get_hold(self, ticket_number: int) -> Hold | None:
        ...

    @abstractmethod
    def list_holds(self) -> list[Hold]:
        ...

    @abstractmethod
    def put_hold(self, hold: Hold) -> None:
        """Insert a hold.

        Raises:
            ConflictError: If a row already exists for the ticket.
        """
        ...

    @abstractmethod
    def delete_hold(self, ticket_number: int) -> bool:
        """Delete a hold row. Returns False when there was none."""
        ...

    @abstractmethod
    def get_purchases(self) -> list[Purchase]:
        """Oldest first."""
        ...

    @abstractmethod
    def get_purchase_by_reference(self, reference_id: str) -> Purchase | None:
        ...

    @abstractmethod
    def put_purchase(self, purchase: Purchase) -> None:
        ...

    @abstractmethod
    def update_purchase(self, purchase: Purchase) -> None:
        """Persist a purchase's payment status."""
        ...

    @abstractmethod
    def clear(self) -> None:
        ...

    def reference_exists(self, reference_id: str) -> bool:
        return self.get_purchase_by_reference(reference_id) is not None


class MemoryTicketStore(TicketStore):
    """Process-local store guarded by a re-entrant lock.

    Records are immutable, so a transaction snapshot is just a shallow copy
    of the two containers, restored if the block raises.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._depth = 0
        self._holds: dict[int, Hold] = {}
        self._purchases: list[Purchase] = []

    @contextmanager
    def transaction(self):
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return

            holds = dict(self._holds)
            purchases = list(self._purchases)
            self._depth = 1
            try:
                yield self
            except BaseException:
                self._holds = holds
                self._purchases = purchases
                raise
            finally:
                self._depth = 0

    def get_hold(self, ticket_number):
        with self._lock:
            return self._holds.get(ticket_number)

    def list_holds(self):
        with self._lock:
            return [self._holds[n] for n in sorted(self._holds)]

    def put_hold(self, hold):
        with self._lock:
            if hold.ticket_number in self._holds:
                raise ConflictError([hold.ticket_number])
            self._holds[hold.ticket_number] = hold

    def delete_hold(self, ticket_number):
        with self._lock:
            return self._holds.pop(ticket_number, None) is not None

    def get_purchases(self):
        with self._lock:
            return list(self._purchases)

    def get_purchase_by_reference(self, reference_id):
        with self._lock:
            for purchase in self._purchases:
                if purchase.reference_id == reference_id:
                    return purchase
            return None

    def put_purchase(self, purchase):
        with self._lock:
            for existing in self._purchases:
                if existing.id == purchase.id or existing.reference_id == purchase.reference_id:
                    raise StorageError()
            self._purchases.append(purchase)

    def update_purchase(self, purchase):
        with self._lock:
            for index, existing in enumerate(self._purchases):
                if existing.id == purchase.id:
                    self._purchases[index] = purchase
                    return
            raise StorageError()

    def clear(self):
        with self._lock:
            self._holds.clear()
            self._purchases.clear()


def _hold_from_row(row: HeldTicketRow) -> Hold:
    return Hold(
        ticket_number=row.ticket_number,
        reference_id=row.reference_id,
        hold_start_time=row.hold_start_time,
        hold_expiry=row.hold_expiry,
        is_confirmed=bool(row.is_confirmed),
    )


def _purchase_from_row(row: PurchaseRow) -> Purchase:
    return Purchase(
        id=row.id,
        reference_id=row.reference_id,
        tickets=tuple(row.tickets or ()),
        total_cost=row.total_cost,
        purchase_date=row.purchase_date,
        hold_expiry=row.hold_expiry,
        payment_status=row.payment_status or {},
    )


def _status_to_json(purchase: Purchase) -> dict:
    return {str(t): bool(paid) for t, paid in purchase.payment_status.items()}


class SqlTicketStore(TicketStore):
    """Flask-SQLAlchemy backed store. Must be used inside an app context."""

    def __init__(self) -> None:
        # db.session is scoped per thread, so nesting depth is too
        self._local = threading.local()

    @contextmanager
    def transaction(self):
        depth = getattr(self._local, 'depth', 0)
        if depth:
            self._local.depth = depth + 1
            try:
                yield self
            finally:
                self._local.depth -= 1
            return

        self._local.depth = 1
        try:
            yield self
            db.session.commit()
        except LotteryError:
            db.session.rollback()
            raise
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error('Ticket store transaction failed', exc_info=exc)
            raise StorageError() from exc
        except BaseException:
            db.session.rollback()
            raise
        finally:
            self._local.depth = 0

    def get_hold(self, ticket_number):
        row = db.session.execute(
            db.select(HeldTicketRow).where(HeldTicketRow.ticket_number == ticket_number)
        ).scalar_one_or_none()
        return _hold_from_row(row) if row else None

    def list_holds(self):
        rows = db.session.execute(
            db.select(HeldTicketRow).order_by(HeldTicketRow.ticket_number)
        ).scalars()
        return [_hold_from_row(row) for row in rows]

    def put_hold(self, hold):
        if self.get_hold(hold.ticket_number) is not None:
            raise ConflictError([hold.ticket_number])
        db.session.add(HeldTicketRow(
            ticket_number=hold.ticket_number,
            reference_id=hold.reference_id,
            hold_start_time=hold.hold_start_time,
            hold_expiry=hold.hold_expiry,
            is_confirmed=hold.is_confirmed,
        ))
        try:
            db.session.flush()
        except IntegrityError:
            raise ConflictError([hold.ticket_number])

    def delete_hold(self, ticket_number):
        result = db.session.execute(
            db.delete(HeldTicketRow).where(HeldTicketRow.ticket_number == ticket_number)
        )
        return result.rowcount > 0

    def get_purchases(self):
        rows = db.session.execute(
            db.select(PurchaseRow).order_by(PurchaseRow.row_id)
        ).scalars()
        return [_purchase_from_row(row) for row in rows]

    def get_purchase_by_reference(self, reference_id):
        row = db.session.execute(
            db.select(PurchaseRow).where(PurchaseRow.reference_id == reference_id)
        ).scalar_one_or_none()
        return _purchase_from_row(row) if row else None

    def put_purchase(self, purchase):
        db.session.add(PurchaseRow(
            id=purchase.id,
            reference_id=purchase.reference_id,
            tickets=list(purchase.tickets),
            total_cost=purchase.total_cost,
            purchase_date=purchase.purchase_date,
            hold_expiry=purchase.hold_expiry,
            payment_status=_status_to_json(purchase),
        ))
        db.session.flush()

    def update_purchase(self, purchase):
        row = db.session.execute(
            db.select(PurchaseRow).where(PurchaseRow.id == purchase.id)
        ).scalar_one_or_none()
        if row is None:
            raise StorageError()
        # Assign a new dict; in-place edits of a JSON column are not tracked
        row.payment_status = _status_to_json(purchase)
        db.session.flush()

    def clear(self):
        db.session.execute(db.delete(HeldTicketRow))
        db.session.execute(db.delete(PurchaseRow))
