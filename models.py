# models.py
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


class PurchaseRow(db.Model):
    __tablename__ = 'purchases'

    # Insertion order; purchases made within the same instant stay ordered
    row_id = db.Column(db.Integer, primary_key=True)
    id = db.Column(db.String(16), unique=True, nullable=False)
    reference_id = db.Column(db.String(20), unique=True, nullable=False)
    tickets = db.Column(db.JSON, nullable=False)
    total_cost = db.Column(db.Numeric(10, 2), nullable=False)
    purchase_date = db.Column(db.DateTime, nullable=False, index=True)
    hold_expiry = db.Column(db.DateTime)
    # {"<ticket number>": bool}; JSON object keys are always strings
    payment_status = db.Column(db.JSON, nullable=False, default=dict)


class HeldTicketRow(db.Model):
    __tablename__ = 'held_tickets'

    # Primary key doubles as the one-hold-per-ticket constraint
    ticket_number = db.Column(db.Integer, primary_key=True, autoincrement=False)
    reference_id = db.Column(db.String(20), nullable=False, index=True)
    hold_start_time = db.Column(db.DateTime, nullable=False)
    hold_expiry = db.Column(db.DateTime, nullable=False, index=True)
    is_confirmed = db.Column(db.Boolean, nullable=False, default=False)


class TicketPricingRow(db.Model):
    __tablename__ = 'ticket_pricing'

    id = db.Column(db.Integer, primary_key=True)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    last_updated = db.Column(db.DateTime, nullable=False)
    updated_by = db.Column(db.String(100), nullable=False)


class PriceChangeRow(db.Model):
    __tablename__ = 'price_changes'

    id = db.Column(db.Integer, primary_key=True)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    previous_price = db.Column(db.Numeric(10, 2))
    changed_at = db.Column(db.DateTime, nullable=False, index=True)
    changed_by = db.Column(db.String(100), nullable=False)
