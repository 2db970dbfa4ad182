# settings.py
import os
from decimal import Decimal


class Config:
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', 'sqlite:///lottery.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SECRET_KEY = os.environ.get('SECRET_KEY', 'change-me')

    # Shared passphrase for the admin dashboard
    ADMIN_PASSWORD = os.environ.get('ADMIN_PASSWORD', 'admin123')
    ADMIN_SESSION_MINUTES = int(os.environ.get('ADMIN_SESSION_MINUTES', 30))

    HOLD_DURATION_MINUTES = int(os.environ.get('HOLD_DURATION_MINUTES', 30))
    DEFAULT_TICKET_PRICE = Decimal(os.environ.get('DEFAULT_TICKET_PRICE', '5.00'))

    # "sql" keeps purchases and holds in the database, "memory" in the process
    TICKET_STORE = os.environ.get('TICKET_STORE', 'sql')

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
