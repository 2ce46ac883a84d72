import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or (
        'dev-secret-key-change-in-production'
    )
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or (
        'sqlite:///storefront.db'
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Logging. Set LOG_FILE / AUDIT_LOG_FILE to an empty string to disable
    # the file handlers.
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FILE = os.environ.get('LOG_FILE', 'storefront.log')
    AUDIT_LOG_FILE = os.environ.get('AUDIT_LOG_FILE', 'major_events.log')

    # Pagination configuration
    ITEMS_PER_PAGE = 20
    MAX_ITEMS_PER_PAGE = 100

    # Unpaid bank transfers are cancelled after this many days
    PAYMENT_DEADLINE_DAYS = int(os.environ.get('PAYMENT_DEADLINE_DAYS', 5))

    # Share of the order total credited back to the wallet on delivery
    CASHBACK_RATE = os.environ.get('CASHBACK_RATE', '0.03')

    # Payment settings defaults, editable at runtime from the admin
    COD_ENABLED_DEFAULT = (
        os.environ.get('COD_ENABLED', 'true').lower() == 'true'
    )
    COD_FEE_DEFAULT = os.environ.get('COD_FEE', '30')
    COD_INSTRUCTIONS_DEFAULT = (
        'Have the exact amount ready in cash on delivery'
    )
    BANK_ACCOUNT_DEFAULT = {
        'account_owner': os.environ.get('BANK_ACCOUNT_OWNER', ''),
        'bank_name': os.environ.get('BANK_NAME', ''),
        'account_number': os.environ.get('BANK_ACCOUNT_NUMBER', ''),
        'rib': os.environ.get('BANK_RIB', ''),
        'swift': os.environ.get('BANK_SWIFT', ''),
        'additional_instructions': (
            'Put your order number in the transfer reference'
        ),
    }

    GIFT_CARD_BATCH_MAX = 100


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = 'test-secret-key'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    LOG_FILE = ''
    AUDIT_LOG_FILE = ''
