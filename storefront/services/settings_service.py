from copy import deepcopy
from flask import current_app
from storefront.extensions import db
from storefront.errors import ValidationError
from storefront.models import StoreSetting
from storefront.services.pricing import to_money, ZERO
import logging

logger = logging.getLogger(__name__)

PAYMENT_SETTINGS_KEY = 'payment'

BANK_ACCOUNT_FIELDS = (
    'account_owner',
    'bank_name',
    'account_number',
    'rib',
    'swift',
    'additional_instructions',
)


def default_payment_settings():
    config = current_app.config
    return {
        'bank_account': deepcopy(config['BANK_ACCOUNT_DEFAULT']),
        'cash_on_delivery': {
            'enabled': bool(config['COD_ENABLED_DEFAULT']),
            'fee': float(to_money(config['COD_FEE_DEFAULT'])),
            'additional_instructions': config['COD_INSTRUCTIONS_DEFAULT'],
        },
    }


def get_payment_settings():
    settings = default_payment_settings()
    row = StoreSetting.query.filter_by(key=PAYMENT_SETTINGS_KEY).first()
    if row:
        stored = row.get_value()
        for section in ('bank_account', 'cash_on_delivery'):
            settings[section].update(stored.get(section) or {})
    return settings


def cod_fee():
    """Fee added to cash-on-delivery orders, or None when COD is off."""
    cod = get_payment_settings()['cash_on_delivery']
    if not cod.get('enabled'):
        return None
    return to_money(cod.get('fee') or 0)


def update_payment_settings(bank_account=None, cash_on_delivery=None):
    """Partially merge new values into the stored payment settings."""
    row = StoreSetting.query.filter_by(key=PAYMENT_SETTINGS_KEY).first()
    if row is None:
        row = StoreSetting(key=PAYMENT_SETTINGS_KEY)
        db.session.add(row)
    stored = row.get_value() if row.value_json else {}

    if bank_account is not None:
        if not isinstance(bank_account, dict):
            raise ValidationError('bank_account must be an object')
        section = stored.get('bank_account') or {}
        for field in BANK_ACCOUNT_FIELDS:
            if field in bank_account:
                section[field] = str(bank_account[field] or '').strip()
        stored['bank_account'] = section

    if cash_on_delivery is not None:
        if not isinstance(cash_on_delivery, dict):
            raise ValidationError('cash_on_delivery must be an object')
        section = stored.get('cash_on_delivery') or {}
        if 'enabled' in cash_on_delivery:
            section['enabled'] = bool(cash_on_delivery['enabled'])
        if 'fee' in cash_on_delivery:
            try:
                fee = to_money(cash_on_delivery['fee'])
            except (ArithmeticError, ValueError, TypeError):
                raise ValidationError('Invalid cash on delivery fee')
            if fee < ZERO:
                raise ValidationError('Cash on delivery fee cannot be negative')
            section['fee'] = float(fee)
        if 'additional_instructions' in cash_on_delivery:
            section['additional_instructions'] = str(
                cash_on_delivery['additional_instructions'] or '').strip()
        stored['cash_on_delivery'] = section

    row.set_value(stored)
    db.session.flush()
    return get_payment_settings()
