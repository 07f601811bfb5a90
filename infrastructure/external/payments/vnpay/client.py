"""
VNPay adapter: signed redirect URLs, return/IPN verification and querydr.

URL building and callback verification are pure given the clock; only
``query_transaction`` talks to the network.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Mapping, Optional
from zoneinfo import ZoneInfo

import httpx

from application.dtos.payments import (
    CallbackResult,
    CallbackVerification,
    GatewayTransactionDTO,
    PaymentRequest,
)
from core.logging_config import get_logger
from core.settings import VNPaySettings, payment_settings
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    InvalidPaymentRequestException,
    MalformedCallbackException,
    PaymentProviderError,
    PaymentRecoverableError,
    PaymentSignatureError,
)
from shared.codes.payment_codes import VNPAY_RESPONSE_MESSAGES
from . import signature


logger = get_logger(__name__)

DATE_FORMAT = "%Y%m%d%H%M%S"
LOCALHOST = "127.0.0.1"

# Field order of the querydr checksums; the API signs "|"-joined values.
_QUERY_REQUEST_FIELDS = (
    "vnp_RequestId", "vnp_Version", "vnp_Command", "vnp_TmnCode", "vnp_TxnRef",
    "vnp_TransactionDate", "vnp_CreateDate", "vnp_IpAddr", "vnp_OrderInfo",
)
_QUERY_RESPONSE_FIELDS = (
    "vnp_ResponseId", "vnp_Command", "vnp_ResponseCode", "vnp_Message", "vnp_TmnCode",
    "vnp_TxnRef", "vnp_Amount", "vnp_BankCode", "vnp_PayDate", "vnp_TransactionNo",
    "vnp_TransactionType", "vnp_TransactionStatus", "vnp_OrderInfo",
    "vnp_PromotionCode", "vnp_PromotionAmount",
)


def normalize_client_ip(ip: Optional[str]) -> str:
    """Reduce a raw client address to the IPv4 form the gateway accepts."""
    if not ip:
        return LOCALHOST
    candidate = ip.split(",")[0].strip()
    if not candidate or candidate.lower() == "unknown":
        return LOCALHOST
    if candidate == "::1":
        return LOCALHOST
    if candidate.lower().startswith("::ffff:"):
        return candidate[7:]
    return candidate


def to_gateway_amount(amount: Decimal) -> int:
    """Display units to the gateway's minor units (x100); must be integral."""
    scaled = Decimal(amount) * 100
    if scaled != scaled.to_integral_value():
        raise ValueError(f"amount {amount} has more than two decimals")
    return int(scaled)


def from_gateway_amount(raw: Any) -> Decimal:
    text = str(raw).strip()
    if not (text.isascii() and text.isdigit()):
        raise ValueError(f"not an integer amount: {raw!r}")
    return Decimal(text) / 100


def gateway_transaction_no(raw: Any) -> Optional[str]:
    """The gateway transaction number, or None for the all-zero placeholder.

    Cancelled and declined transactions come back with ``vnp_TransactionNo=0``,
    which identifies nothing and must not be treated as a dedup key.
    """
    text = str(raw or "").strip()
    if not text or not text.strip("0"):
        return None
    return text


class VNPayClient(BasePaymentClient):
    provider = "vnpay"

    def __init__(
        self,
        config: Optional[VNPaySettings] = None,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            timeouts=payment_settings.timeouts.model_dump(),
            retry={"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff},
            transport=transport,
        )
        self.config = config or payment_settings.vnpay
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._tz = ZoneInfo(self.config.timezone)

    @property
    def _secret(self) -> Optional[str]:
        return self.config.hash_secret.get_secret_value() if self.config.hash_secret else None

    def _format_date(self, dt: datetime) -> str:
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(self._tz).strftime(DATE_FORMAT)

    def _parse_date(self, value: str) -> datetime:
        return datetime.strptime(value, DATE_FORMAT).replace(tzinfo=self._tz).astimezone(timezone.utc)

    def _hmac(self, data: str) -> str:
        return signature.sign(data, self._secret or "", self.config.hash_algorithm)

    # ------------------------------------------------------------------
    # Redirect URL
    # ------------------------------------------------------------------
    def build_payment_url(self, req: PaymentRequest) -> str:  # type: ignore[override]
        cfg = self.config
        if not cfg.tmn_code:
            raise InvalidPaymentRequestException("tmn_code", "VNPay merchant code is not configured")
        secret = self._secret
        if not secret:
            raise InvalidPaymentRequestException("hash_secret", "VNPay hash secret is not configured")
        if req.amount is None or req.amount <= 0:
            raise InvalidPaymentRequestException("amount", f"Amount must be positive: {req.amount}")
        try:
            gateway_amount = to_gateway_amount(req.amount)
        except (ValueError, InvalidOperation):
            raise InvalidPaymentRequestException("amount", f"Amount is not payable: {req.amount}") from None
        if not (req.txn_ref or "").strip():
            raise InvalidPaymentRequestException("txn_ref", "Transaction reference is required")
        if not (req.order_info or "").strip():
            raise InvalidPaymentRequestException("order_info", "Order info is required")
        return_url = req.return_url or cfg.return_url
        if not return_url:
            raise InvalidPaymentRequestException("return_url", "Return URL is required")

        created_at = req.created_at or self._clock()
        expire_at = req.expire_at
        if expire_at is None and cfg.expire_minutes:
            expire_at = created_at + timedelta(minutes=cfg.expire_minutes)

        params: dict[str, Any] = {
            "vnp_Version": cfg.version,
            "vnp_Command": cfg.command,
            "vnp_TmnCode": cfg.tmn_code,
            "vnp_Locale": req.locale or cfg.locale,
            "vnp_CurrCode": cfg.currency,
            "vnp_TxnRef": req.txn_ref,
            "vnp_OrderInfo": req.order_info,
            "vnp_OrderType": cfg.order_type,
            "vnp_Amount": gateway_amount,
            "vnp_ReturnUrl": return_url,
            "vnp_IpAddr": normalize_client_ip(req.client_ip),
            "vnp_CreateDate": self._format_date(created_at),
        }
        if expire_at is not None:
            params["vnp_ExpireDate"] = self._format_date(expire_at)
        if req.bank_code:
            params["vnp_BankCode"] = req.bank_code

        canonical = signature.canonicalize(params)
        secure_hash = signature.sign(canonical, secret, cfg.hash_algorithm)
        self._log(
            "vnpay_payment_url_built",
            txn_ref=req.txn_ref,
            amount=gateway_amount,
            ip=params["vnp_IpAddr"],
        )
        return f"{cfg.pay_url}?{canonical}&{signature.SECURE_HASH_FIELD}={secure_hash}"

    # ------------------------------------------------------------------
    # Return / IPN
    # ------------------------------------------------------------------
    def verify_callback(self, raw: Mapping[str, str]) -> CallbackVerification:  # type: ignore[override]
        params = {str(k): ("" if v is None else str(v)) for k, v in raw.items()}
        candidate = params.get(signature.SECURE_HASH_FIELD)
        secret = self._secret
        if not secret:
            logger.error("vnpay_secret_missing", provider=self.provider)
            return CallbackVerification(authentic=False)

        vnp_params = {k: v for k, v in params.items() if k.startswith("vnp_")}
        canonical = signature.canonicalize(vnp_params)
        if not signature.verify(canonical, secret, candidate, self.config.hash_algorithm):
            logger.warning(
                "vnpay_callback_rejected",
                provider=self.provider,
                txn_ref=params.get("vnp_TxnRef"),
                has_hash=bool(candidate),
            )
            return CallbackVerification(authentic=False)

        result = self._parse_callback(vnp_params, candidate or "")
        self._log(
            "vnpay_callback_verified",
            txn_ref=result.txn_ref,
            response_code=result.response_code,
            transaction_no=result.transaction_no,
        )
        return CallbackVerification(authentic=True, result=result)

    def _parse_callback(self, params: dict[str, str], secure_hash: str) -> CallbackResult:
        txn_ref = params.get("vnp_TxnRef", "")
        if not txn_ref:
            raise MalformedCallbackException("vnp_TxnRef", txn_ref)
        raw_amount = params.get("vnp_Amount")
        try:
            amount = from_gateway_amount(raw_amount)
        except ValueError:
            raise MalformedCallbackException("vnp_Amount", raw_amount) from None
        pay_date = None
        raw_date = params.get("vnp_PayDate")
        if raw_date:
            try:
                pay_date = self._parse_date(raw_date)
            except ValueError:
                raise MalformedCallbackException("vnp_PayDate", raw_date) from None
        return CallbackResult(
            txn_ref=txn_ref,
            transaction_no=gateway_transaction_no(params.get("vnp_TransactionNo")),
            amount=amount,
            response_code=params.get("vnp_ResponseCode", ""),
            transaction_status=params.get("vnp_TransactionStatus") or None,
            bank_code=params.get("vnp_BankCode") or None,
            bank_tran_no=params.get("vnp_BankTranNo") or None,
            card_type=params.get("vnp_CardType") or None,
            pay_date=pay_date,
            order_info=params.get("vnp_OrderInfo") or None,
            secure_hash=secure_hash,
            raw=params,
        )

    # ------------------------------------------------------------------
    # querydr
    # ------------------------------------------------------------------
    async def query_transaction(  # type: ignore[override]
        self,
        txn_ref: str,
        transaction_date: datetime,
        *,
        client_ip: Optional[str] = None,
        order_info: Optional[str] = None,
    ) -> GatewayTransactionDTO:
        cfg = self.config
        if not cfg.tmn_code:
            raise InvalidPaymentRequestException("tmn_code", "VNPay merchant code is not configured")
        if not self._secret:
            raise InvalidPaymentRequestException("hash_secret", "VNPay hash secret is not configured")

        body: dict[str, str] = {
            "vnp_RequestId": uuid.uuid4().hex,
            "vnp_Version": cfg.version,
            "vnp_Command": "querydr",
            "vnp_TmnCode": cfg.tmn_code,
            "vnp_TxnRef": txn_ref,
            "vnp_TransactionDate": self._format_date(transaction_date),
            "vnp_CreateDate": self._format_date(self._clock()),
            "vnp_IpAddr": normalize_client_ip(client_ip),
            "vnp_OrderInfo": order_info or f"Query transaction {txn_ref}",
        }
        body[signature.SECURE_HASH_FIELD] = self._hmac(
            "|".join(body[name] for name in _QUERY_REQUEST_FIELDS)
        )

        async def _call() -> httpx.Response:
            async with self.client() as http:
                return await http.post(cfg.api_url, json=body)

        try:
            resp = await self._retry(_call)
        except httpx.HTTPError as exc:
            logger.warning("vnpay_query_unreachable", txn_ref=txn_ref, error=str(exc))
            raise PaymentRecoverableError(str(exc), provider=self.provider) from exc

        if resp.status_code >= 400:
            raise PaymentProviderError(
                f"querydr failed with HTTP {resp.status_code}",
                provider=self.provider,
                details={"status_code": resp.status_code},
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise PaymentProviderError("querydr returned a non-JSON body", provider=self.provider) from exc

        checksum_data = "|".join(str(data.get(name) or "") for name in _QUERY_RESPONSE_FIELDS)
        if not signature.verify(
            checksum_data, self._secret or "", data.get(signature.SECURE_HASH_FIELD), self.config.hash_algorithm
        ):
            logger.warning("vnpay_query_signature_mismatch", txn_ref=txn_ref)
            raise PaymentSignatureError("querydr response checksum mismatch", provider=self.provider)

        return self._to_transaction(txn_ref, data)

    def _to_transaction(self, txn_ref: str, data: Mapping[str, Any]) -> GatewayTransactionDTO:
        code = str(data.get("vnp_ResponseCode") or "")
        amount = None
        if data.get("vnp_Amount") not in (None, ""):
            try:
                amount = from_gateway_amount(data["vnp_Amount"])
            except ValueError:
                raise MalformedCallbackException("vnp_Amount", str(data["vnp_Amount"])) from None
        pay_date = None
        if data.get("vnp_PayDate"):
            try:
                pay_date = self._parse_date(str(data["vnp_PayDate"]))
            except ValueError:
                raise MalformedCallbackException("vnp_PayDate", str(data["vnp_PayDate"])) from None
        status = data.get("vnp_TransactionStatus")
        self._log("vnpay_query_completed", txn_ref=txn_ref, response_code=code, transaction_status=status)
        return GatewayTransactionDTO(
            txn_ref=str(data.get("vnp_TxnRef") or txn_ref),
            response_code=code,
            message=data.get("vnp_Message") or VNPAY_RESPONSE_MESSAGES.get(code),
            transaction_no=gateway_transaction_no(data.get("vnp_TransactionNo")),
            transaction_status=status or None,
            amount=amount,
            bank_code=data.get("vnp_BankCode") or None,
            pay_date=pay_date,
            internal_status=self._map_status(status),
            raw=dict(data),
        )
