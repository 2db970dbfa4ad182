"""Hold lifecycle against the Flask-SQLAlchemy store.

Run with: pytest tests/test_sql_store.py -v
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from domain import Hold
from errors import ConflictError, StorageError
from models import HeldTicketRow, PurchaseRow, db


def _count(model):
    return db.session.execute(db.select(db.func.count()).select_from(model)).scalar_one()


class TestSqlTicketStore:

    def test_purchase_persists_rows(self, sql_engine):
        purchase = sql_engine.purchase_and_hold({1, 2, 3}, Decimal("5.00"))

        row = db.session.execute(
            db.select(PurchaseRow).where(PurchaseRow.reference_id == purchase.reference_id)
        ).scalar_one()
        assert row.total_cost == Decimal("15.00")
        assert row.tickets == [1, 2, 3]
        assert row.payment_status == {"1": False, "2": False, "3": False}
        assert _count(HeldTicketRow) == 3

    def test_round_trip_matches_domain_record(self, sql_engine):
        purchase = sql_engine.purchase_and_hold([8, 3], "4.25")

        assert sql_engine.find_purchase(purchase.reference_id) == purchase

    def test_confirm_updates_json_status_and_deletes_hold(self, sql_engine):
        sql_engine.purchase_and_hold({5, 6}, "5.00")

        sql_engine.confirm_payment(5)

        db.session.expire_all()
        row = db.session.execute(db.select(PurchaseRow)).scalar_one()
        assert row.payment_status == {"5": True, "6": False}
        assert db.session.get(HeldTicketRow, 5) is None
        assert sql_engine.classify().sold == {5}

    def test_duplicate_hold_insert_fails_loudly(self, sql_engine, clock):
        store = sql_engine.store
        hold = Hold(
            ticket_number=5,
            reference_id="REF-AAAAAAAAA",
            hold_start_time=clock.now,
            hold_expiry=clock.now + timedelta(minutes=30),
        )
        with store.transaction():
            store.put_hold(hold)

        with pytest.raises(ConflictError):
            with store.transaction():
                store.put_hold(hold)

        assert store.get_hold(5) == hold

    def test_storage_failure_rolls_back_purchase_and_holds(self, sql_engine, monkeypatch):
        store = sql_engine.store
        original_put_hold = store.put_hold
        inserted = []

        def flaky_put_hold(hold):
            if inserted:
                raise OperationalError("INSERT INTO held_tickets", {}, Exception("disk I/O error"))
            inserted.append(hold)
            original_put_hold(hold)

        monkeypatch.setattr(store, "put_hold", flaky_put_hold)

        with pytest.raises(StorageError):
            sql_engine.purchase_and_hold({1, 2, 3}, "5.00")

        assert _count(PurchaseRow) == 0
        assert _count(HeldTicketRow) == 0

    def test_expired_rows_swept_on_purchase(self, sql_engine, clock):
        sql_engine.purchase_and_hold({5}, "5.00")
        clock.advance(minutes=31)

        second = sql_engine.purchase_and_hold({5}, "5.00")

        assert _count(HeldTicketRow) == 1
        assert sql_engine.store.get_hold(5).reference_id == second.reference_id
        assert _count(PurchaseRow) == 2

    def test_purchases_keep_insertion_order(self, sql_engine):
        first = sql_engine.purchase_and_hold({1}, "5.00")
        second = sql_engine.purchase_and_hold({2}, "5.00")

        assert [p.reference_id for p in sql_engine.store.get_purchases()] == [
            first.reference_id,
            second.reference_id,
        ]

    def test_reset_all_empties_tables(self, sql_engine):
        sql_engine.purchase_and_hold({1, 2}, "5.00")
        sql_engine.confirm_payment(2)

        sql_engine.reset_all()

        assert _count(PurchaseRow) == 0
        assert _count(HeldTicketRow) == 0
