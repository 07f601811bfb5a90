from __future__ import annotations

import gettext
from contextvars import ContextVar
from pathlib import Path

from core.logging_config import get_logger

_current_locale: ContextVar[str] = ContextVar("current_locale", default="en")
_translators: dict[str, gettext.NullTranslations] = {}
_logger = get_logger(__name__)

# English fallback for message keys without a compiled catalog entry
DEFAULT_MESSAGES: dict[str, str] = {
    "welcome": "Storefront Payments API",
    "health.ok": "OK",
    "validation.failed": "Validation failed: {reason}",
    "validation.domain": "Invalid data",
    "error.internal": "Internal server error",
    "error.storage": "Storage failure",
    "auth.unauthorized": "Unauthorized",
    "auth.token.expired": "Token expired",
    "auth.forbidden": "Permission denied",
    "order.created": "Order created",
    "order.detail": "Order detail",
    "order.list": "Orders",
    "order.transitioned": "Order status updated",
    "order.cancelled": "Order cancelled",
    "order.not_found": "Order not found",
    "order.transition.invalid": "Cannot move order from {current} to {target}",
    "order.closed": "Order {code} is closed ({status})",
    "order.already_paid": "Order {code} is already fully paid",
    "order.total.not_final": "Order total is not finalized",
    "payment.not_found": "Payment not found",
    "payment.duplicate": "Payment already recorded",
    "payment.recorded": "Payment recorded",
    "payment.status.updated": "Payment status updated",
    "payment.list": "Payments",
    "payments.vnpay.checkout_created": "Payment URL created",
    "payments.vnpay.return_processed": "Payment result processed",
    "payments.vnpay.query": "Gateway transaction status",
    "payments.invalid_request": "Invalid payment request",
    "payments.invalid_callback": "Invalid gateway callback",
    "payments.invalid_signature": "Invalid payment signature",
    "voucher.created": "Voucher created",
    "voucher.detail": "Voucher detail",
    "voucher.quote": "Voucher applicable",
    "voucher.not_found": "Voucher {code} not found",
    "voucher.not_applicable": "Voucher {code} cannot be applied: {reason}",
    "voucher.exists": "Voucher already exists",
    "conflict.concurrent_modification": "The resource was modified concurrently, please retry",
}


def set_locale(locale: str) -> None:
    """Set current request locale (fallback to 'en')."""
    _current_locale.set(locale or "en")


def get_locale() -> str:
    """Get current request locale (default 'en')."""
    return _current_locale.get()


def _get_translator(locale: str) -> gettext.NullTranslations:
    tr = _translators.get(locale)
    if tr is not None:
        return tr
    localedir = Path(__file__).resolve().parent.parent / "locales"
    tr = gettext.translation(
        domain="messages",
        localedir=str(localedir),
        languages=[locale],
        fallback=True,
    )
    _translators[locale] = tr
    return tr


def t(msgid: str, **params) -> str:
    """Translate msgid using current locale and format with params.

    Missing catalog entries fall back to DEFAULT_MESSAGES, then to msgid.
    """
    text = _get_translator(get_locale()).gettext(msgid)
    if text == msgid:
        text = DEFAULT_MESSAGES.get(msgid, msgid)
    if not params:
        return text
    try:
        return text.format(**params)
    except (KeyError, IndexError, ValueError) as exc:
        # keep the unformatted text rather than failing the response
        _logger.warning("i18n_format_failed", msgid=msgid, params=list(params.keys()), error=str(exc))
        return text
