"""Ticket pricing: the current unit price plus a history of changes."""

from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError

from domain import PriceChange, PricingRecord, to_price
from errors import StorageError
from holds import utcnow
from logging_config import get_logger
from models import PriceChangeRow, TicketPricingRow, db

logger = get_logger(__name__)

DEFAULT_TICKET_PRICE = Decimal("5.00")
SYSTEM_USER = "System"


def _record(row: TicketPricingRow) -> PricingRecord:
    return PricingRecord(price=row.price, last_updated=row.last_updated, updated_by=row.updated_by)


class PricingLedger:
    """Single current pricing row, created with the default price on first read."""

    def __init__(self, default_price=DEFAULT_TICKET_PRICE, clock=utcnow):
        self.default_price = to_price(default_price)
        self.clock = clock

    def _current_row(self):
        return db.session.execute(
            db.select(TicketPricingRow).order_by(TicketPricingRow.id)
        ).scalars().first()

    def _commit(self):
        try:
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Pricing update failed", exc_info=exc)
            raise StorageError() from exc

    def _write(self, price, updated_by):
        row = self._current_row()
        previous = row.price if row is not None else None
        now = self.clock()
        if row is None:
            row = TicketPricingRow()
            db.session.add(row)
        row.price = price
        row.last_updated = now
        row.updated_by = updated_by
        db.session.add(PriceChangeRow(
            price=price, previous_price=previous, changed_at=now, changed_by=updated_by,
        ))
        self._commit()
        return _record(row)

    def get_pricing(self) -> PricingRecord:
        row = self._current_row()
        if row is None:
            row = TicketPricingRow(
                price=self.default_price, last_updated=self.clock(), updated_by=SYSTEM_USER,
            )
            db.session.add(row)
            self._commit()
        return _record(row)

    def get_unit_price(self) -> Decimal:
        return self.get_pricing().price

    def set_price(self, price, updated_by=SYSTEM_USER) -> PricingRecord:
        """Raises ValidationError unless price is a positive amount."""
        price = to_price(price)
        updated_by = str(updated_by or SYSTEM_USER).strip()[:100] or SYSTEM_USER
        record = self._write(price, updated_by)
        logger.info("Ticket price updated", extra={"price": str(price), "updated_by": updated_by})
        return record

    def reset_pricing(self) -> PricingRecord:
        record = self._write(self.default_price, SYSTEM_USER)
        logger.info("Ticket price reset", extra={"price": str(self.default_price)})
        return record

    def history(self, limit=50) -> list:
        rows = db.session.execute(
            db.select(PriceChangeRow)
            .order_by(PriceChangeRow.changed_at.desc(), PriceChangeRow.id.desc())
            .limit(limit)
        ).scalars()
        return [
            PriceChange(
                price=row.price,
                previous_price=row.previous_price,
                changed_at=row.changed_at,
                changed_by=row.changed_by,
            )
            for row in rows
        ]
