# domain.py
# Frozen records with no persistence concerns; tables live in models.py

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation

from errors import ValidationError

TICKET_MIN = 0
TICKET_MAX = 9999
TOTAL_TICKETS = TICKET_MAX - TICKET_MIN + 1

CENTS = Decimal('0.01')


def validate_ticket_number(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f'Ticket number must be an integer, got {value!r}')
    if not TICKET_MIN <= value <= TICKET_MAX:
        raise ValidationError(
            f'Ticket number {value} is outside {TICKET_MIN}..{TICKET_MAX}'
        )
    return value


def validate_ticket_numbers(values) -> tuple:
    if values is None or isinstance(values, (str, bytes)):
        raise ValidationError('Tickets must be a list of ticket numbers')
    try:
        numbers = {validate_ticket_number(v) for v in values}
    except TypeError:
        raise ValidationError('Tickets must be a list of ticket numbers')
    if not numbers:
        raise ValidationError('Select at least one ticket')
    return tuple(sorted(numbers))


def to_price(value) -> Decimal:
    """Parse a unit price, rejecting anything that is not a positive amount."""
    if isinstance(value, bool):
        raise ValidationError('Price must be a number')
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f'Price must be a number, got {value!r}')
    if not price.is_finite():
        raise ValidationError('Price must be greater than zero')
    # Compare the rounded amount; 0.004 would be stored as 0.00
    try:
        price = price.quantize(CENTS)
    except InvalidOperation:
        raise ValidationError(f'Price {value!r} is too large')
    if price <= 0:
        raise ValidationError('Price must be greater than zero')
    return price


@dataclass(frozen=True)
class Hold:
    ticket_number: int
    reference_id: str
    hold_start_time: datetime
    hold_expiry: datetime
    is_confirmed: bool = False

    def __post_init__(self) -> None:
        validate_ticket_number(self.ticket_number)
        if self.hold_expiry < self.hold_start_time:
            raise ValueError('Hold cannot expire before it starts')


def is_hold_active(hold, now: datetime) -> bool:
    """The one test for "this ticket is held" used by every read path."""
    return hold is not None and not hold.is_confirmed and now <= hold.hold_expiry


def is_hold_expired(hold, now: datetime) -> bool:
    return not hold.is_confirmed and hold.hold_expiry < now


@dataclass(frozen=True)
class Purchase:
    id: str
    reference_id: str
    tickets: tuple
    total_cost: Decimal
    purchase_date: datetime
    hold_expiry: datetime | None = None
    payment_status: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        tickets = tuple(validate_ticket_number(t) for t in self.tickets)
        if len(set(tickets)) != len(tickets):
            raise ValueError('Purchase tickets must be unique')
        object.__setattr__(self, 'tickets', tickets)
        object.__setattr__(self, 'total_cost', Decimal(self.total_cost).quantize(CENTS))
        # Missing entries default to unpaid; keys may arrive as strings from JSON.
        status = {int(k): bool(v) for k, v in (self.payment_status or {}).items()}
        object.__setattr__(
            self, 'payment_status', {t: status.get(t, False) for t in tickets}
        )

    @property
    def unit_price(self) -> Decimal:
        if not self.tickets:
            return Decimal('0.00')
        return (self.total_cost / len(self.tickets)).quantize(CENTS)

    @property
    def sold_tickets(self) -> tuple:
        return tuple(t for t in self.tickets if self.payment_status.get(t))

    def is_paid(self, ticket_number: int) -> bool:
        return self.payment_status.get(ticket_number, False)

    def with_payment_confirmed(self, ticket_number: int) -> 'Purchase':
        status = dict(self.payment_status)
        status[ticket_number] = True
        return replace(self, payment_status=status)


@dataclass(frozen=True)
class PricingRecord:
    price: Decimal
    last_updated: datetime
    updated_by: str


@dataclass(frozen=True)
class PriceChange:
    price: Decimal
    previous_price: Decimal | None
    changed_at: datetime
    changed_by: str


@dataclass(frozen=True)
class HoldInfo:
    """A hold plus the time left on it; zero means expired, pending cleanup."""

    hold: Hold
    time_remaining: timedelta

    @property
    def ticket_number(self) -> int:
        return self.hold.ticket_number

    @property
    def is_expired(self) -> bool:
        return self.time_remaining <= timedelta(0)


@dataclass(frozen=True)
class Classification:
    sold: frozenset
    held: frozenset

    @property
    def available_count(self) -> int:
        return TOTAL_TICKETS - len(self.sold) - len(self.held)

    def status_of(self, ticket_number: int) -> str:
        if ticket_number in self.sold:
            return 'sold'
        if ticket_number in self.held:
            return 'held'
        return 'available'
