# commands.py
from datetime import datetime
from decimal import Decimal

import click
from flask import current_app

from domain import Purchase
from errors import LotteryError
from logging_config import get_logger
from models import db

logger = get_logger(__name__)

# Sample purchases for demonstrating the admin dashboard
SAMPLE_PURCHASES = [
    {
        'id': 'sample1',
        'tickets': (42, 123, 456),
        'total_cost': Decimal('17.50'),
        'purchase_date': datetime(2024, 1, 15, 10, 30),
        'reference_id': 'REF-ABC123DEF',
        'payment_status': {42: True, 123: False, 456: True},
    },
    {
        'id': 'sample2',
        'tickets': (7, 77, 777),
        'total_cost': Decimal('17.50'),
        'purchase_date': datetime(2024, 1, 14, 14, 22),
        'reference_id': 'REF-XYZ789GHI',
        'payment_status': {7: True, 77: True, 777: False},
    },
    {
        'id': 'sample3',
        'tickets': (1, 100, 500, 999),
        'total_cost': Decimal('22.50'),
        'purchase_date': datetime(2024, 1, 13, 9, 15),
        'reference_id': 'REF-JKL456MNO',
        'payment_status': {1: False, 100: True, 500: True, 999: False},
    },
    {
        'id': 'sample4',
        'tickets': (25, 250),
        'total_cost': Decimal('12.50'),
        'purchase_date': datetime(2024, 1, 12, 16, 45),
        'reference_id': 'REF-PQR789STU',
        'payment_status': {25: True, 250: True},
    },
]


def register_commands(app):

    @app.cli.command('init-db')
    def init_db():
        """Create the database tables."""
        db.create_all()
        click.echo('Database tables created.')

    @app.cli.command('cleanup-holds')
    def cleanup_holds():
        """Delete holds whose expiry has passed."""
        removed = current_app.extensions['hold_engine'].cleanup_expired_holds()
        click.echo(f'Removed {removed} expired hold(s).')

    @app.cli.command('reset-system')
    @click.option('--yes', is_flag=True, help='Skip the confirmation prompt.')
    def reset_system(yes):
        """Delete every purchase and hold. Pricing is kept."""
        if not yes:
            click.confirm(
                'Delete all purchased and held tickets? This cannot be undone', abort=True
            )
        current_app.extensions['hold_engine'].reset_all()
        click.echo('All purchases and holds cleared.')

    @app.cli.command('seed-example-data')
    def seed_example_data():
        """Load sample purchases so the admin dashboard has something to show."""
        engine = current_app.extensions['hold_engine']
        # Samples touching tickets that are already sold or held are skipped
        added = engine.load_purchases(Purchase(**sample) for sample in SAMPLE_PURCHASES)
        logger.info("Sample purchases loaded", extra={"count": added})
        click.echo(f'Added {added} sample purchase(s).')

    @app.cli.command('set-price')
    @click.argument('price')
    @click.option('--by', 'updated_by', default='System', help='Who is changing the price.')
    def set_price(price, updated_by):
        """Set the price per ticket for future purchases."""
        try:
            record = current_app.extensions['pricing_ledger'].set_price(price, updated_by)
        except LotteryError as error:
            raise click.ClickException(error.message)
        click.echo(f'Ticket price set to {record.price} by {record.updated_by}.')
