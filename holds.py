"""Ticket hold lifecycle.

A purchase reserves its tickets with one hold each. A hold ends in exactly
one of three ways: the admin confirms payment (the ticket becomes sold and
the hold row is deleted), the admin releases it, or it expires and is swept.
Expiry is lazy: every read applies ``is_hold_active`` so rows past their
expiry are invisible even before a sweep deletes them.
"""

import secrets
import string
import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from domain import (
    Classification,
    Hold,
    HoldInfo,
    Purchase,
    TOTAL_TICKETS,
    is_hold_active,
    is_hold_expired,
    to_price,
    validate_ticket_number,
    validate_ticket_numbers,
)
from errors import ConflictError, NotFoundError
from logging_config import get_logger

logger = get_logger(__name__)

HOLD_DURATION_MINUTES = 30
REFERENCE_PREFIX = 'REF-'

_REFERENCE_ALPHABET = string.ascii_uppercase + string.digits
_ID_ALPHABET = string.ascii_lowercase + string.digits


def utcnow() -> datetime:
    """Naive UTC now; SQLite hands datetimes back without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_reference_id() -> str:
    return REFERENCE_PREFIX + ''.join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(9))


def generate_purchase_id() -> str:
    return ''.join(secrets.choice(_ID_ALPHABET) for _ in range(9))


class HoldEngine:
    def __init__(self, store, hold_duration=None, clock=utcnow):
        self.store = store
        self.hold_duration = hold_duration or timedelta(minutes=HOLD_DURATION_MINUTES)
        self.clock = clock
        # Serialises check-then-insert; the store's unique key is the backstop
        self._purchase_lock = threading.Lock()

    # -- internal helpers -------------------------------------------------

    def _sold_tickets(self) -> set:
        sold = set()
        for purchase in self.store.get_purchases():
            sold.update(purchase.sold_tickets)
        return sold

    def _active_holds(self, now) -> dict:
        return {
            hold.ticket_number: hold
            for hold in self.store.list_holds()
            if is_hold_active(hold, now)
        }

    def _sweep(self, now) -> int:
        removed = 0
        for hold in self.store.list_holds():
            # Confirmed rows should already be gone; purge any leftovers too
            if hold.is_confirmed or is_hold_expired(hold, now):
                if self.store.delete_hold(hold.ticket_number):
                    removed += 1
        return removed

    def _new_reference_id(self) -> str:
        reference_id = generate_reference_id()
        while self.store.reference_exists(reference_id):
            reference_id = generate_reference_id()
        return reference_id

    def _purchase_for_ticket(self, ticket_number):
        """The purchase a ticket's payment belongs to.

        A released ticket can be bought again, so several purchases may list
        it. The current hold names the live one; without a hold the latest
        purchase_date wins, ties going to the later insert.
        """
        hold = self.store.get_hold(ticket_number)
        candidates = [p for p in self.store.get_purchases() if ticket_number in p.tickets]
        if not candidates:
            return None
        if hold is not None:
            for purchase in candidates:
                if purchase.reference_id == hold.reference_id:
                    return purchase
        return max(enumerate(candidates), key=lambda item: (item[1].purchase_date, item[0]))[1]

    # -- lifecycle operations ---------------------------------------------

    def purchase_and_hold(self, ticket_numbers, unit_price) -> Purchase:
        """Record a purchase and hold each of its tickets.

        Raises:
            ValidationError: Empty selection, bad ticket numbers or price.
            ConflictError: Some tickets are already sold or actively held.
            StorageError: The store failed; nothing was written.
        """
        tickets = validate_ticket_numbers(ticket_numbers)
        price = to_price(unit_price)

        with self._purchase_lock, self.store.transaction():
            now = self.clock()
            self._sweep(now)
            unavailable = self._sold_tickets() | set(self._active_holds(now))
            conflicts = sorted(set(tickets) & unavailable)
            if conflicts:
                logger.warning('Purchase rejected', extra={'tickets': conflicts})
                raise ConflictError(conflicts)

            reference_id = self._new_reference_id()
            expiry = now + self.hold_duration
            purchase = Purchase(
                id=generate_purchase_id(),
                reference_id=reference_id,
                tickets=tickets,
                total_cost=price * len(tickets),
                purchase_date=now,
                hold_expiry=expiry,
            )
            self.store.put_purchase(purchase)
            for ticket_number in tickets:
                self.store.put_hold(Hold(
                    ticket_number=ticket_number,
                    reference_id=reference_id,
                    hold_start_time=now,
                    hold_expiry=expiry,
                ))

        logger.info(
            'Tickets held',
            extra={
                'reference_id': reference_id,
                'tickets': list(tickets),
                'total_cost': str(purchase.total_cost),
                'hold_expiry': expiry.isoformat(),
            },
        )
        return purchase

    def confirm_payment(self, ticket_number) -> Purchase:
        """Mark a ticket paid and drop its hold in the same unit of work.

        Raises:
            NotFoundError: No purchase contains the ticket.
        """
        ticket_number = validate_ticket_number(ticket_number)
        with self.store.transaction():
            purchase = self._purchase_for_ticket(ticket_number)
            if purchase is None:
                raise NotFoundError(f'No purchase contains ticket {ticket_number}')
            if not purchase.is_paid(ticket_number):
                purchase = purchase.with_payment_confirmed(ticket_number)
                self.store.update_purchase(purchase)
            self.store.delete_hold(ticket_number)

        logger.info(
            'Payment confirmed',
            extra={'ticket': ticket_number, 'reference_id': purchase.reference_id},
        )
        return purchase

    def release_ticket(self, ticket_number) -> bool:
        """Drop a ticket's hold. Never touches payment status."""
        ticket_number = validate_ticket_number(ticket_number)
        with self.store.transaction():
            removed = self.store.delete_hold(ticket_number)
        if removed:
            logger.info('Hold released', extra={'ticket': ticket_number})
        return removed

    def cleanup_expired_holds(self) -> int:
        with self.store.transaction():
            removed = self._sweep(self.clock())
        if removed:
            logger.info('Expired holds removed', extra={'count': removed})
        return removed

    def get_hold_info(self, ticket_number) -> HoldInfo | None:
        ticket_number = validate_ticket_number(ticket_number)
        hold = self.store.get_hold(ticket_number)
        if hold is None:
            return None
        remaining = max(timedelta(0), hold.hold_expiry - self.clock())
        return HoldInfo(hold=hold, time_remaining=remaining)

    def load_purchases(self, purchases) -> int:
        """Insert prebuilt purchases that do not clash with current state.

        A purchase is skipped when its reference is taken or any of its
        tickets is already sold or actively held. Returns the number added.
        """
        added = 0
        with self._purchase_lock, self.store.transaction():
            current = self.classify()
            unavailable = set(current.sold | current.held)
            for purchase in purchases:
                if self.store.reference_exists(purchase.reference_id):
                    continue
                clashes = sorted(unavailable & set(purchase.tickets))
                if clashes:
                    logger.warning(
                        'Purchase skipped',
                        extra={'reference_id': purchase.reference_id, 'tickets': clashes},
                    )
                    continue
                self.store.put_purchase(purchase)
                unavailable.update(purchase.sold_tickets)
                added += 1
        return added

    def reset_all(self) -> None:
        with self.store.transaction():
            self.store.clear()
        logger.warning('All purchases and holds deleted')

    # -- derived reads ----------------------------------------------------

    def classify(self) -> Classification:
        with self.store.transaction():
            now = self.clock()
            self._sweep(now)
            sold = self._sold_tickets()
            held = set(self._active_holds(now)) - sold
        return Classification(sold=frozenset(sold), held=frozenset(held))

    def ticket_status(self, ticket_number) -> str:
        ticket_number = validate_ticket_number(ticket_number)
        now = self.clock()
        for purchase in self.store.get_purchases():
            if purchase.is_paid(ticket_number):
                return 'sold'
        if is_hold_active(self.store.get_hold(ticket_number), now):
            return 'held'
        return 'available'

    def list_purchases(self, ticket_filter=None) -> list:
        """Purchases newest first, optionally only those with a matching ticket."""
        purchases = list(reversed(self.store.get_purchases()))
        needle = (ticket_filter or '').strip()
        if not needle:
            return purchases
        return [p for p in purchases if any(needle in str(t) for t in p.tickets)]

    def find_purchase(self, reference_id) -> Purchase:
        purchase = self.store.get_purchase_by_reference(reference_id)
        if purchase is None:
            raise NotFoundError(f'Purchase {reference_id} not found')
        return purchase

    def statistics(self) -> dict:
        classification = self.classify()
        purchases = self.store.get_purchases()
        purchased = set()
        total_revenue = Decimal('0.00')
        confirmed_revenue = Decimal('0.00')
        for purchase in purchases:
            purchased.update(purchase.tickets)
            total_revenue += purchase.total_cost
            confirmed_revenue += purchase.unit_price * len(purchase.sold_tickets)
        pending = purchased - classification.sold - classification.held
        return {
            'total_purchases': len(purchases),
            'total_revenue': total_revenue,
            'confirmed_revenue': confirmed_revenue,
            'sold_count': len(classification.sold),
            'held_count': len(classification.held),
            'available_count': classification.available_count,
            'pending_count': len(pending),
            'total_tickets': TOTAL_TICKETS,
        }
