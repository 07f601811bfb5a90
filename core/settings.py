"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Merchant credentials only ever come from the environment, e.g.
``VNPAY__TMN_CODE`` and ``VNPAY__HASH_SECRET``.
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, SecretStr, field_validator


class PaymentTimeouts(BaseModel):
    connect: float = 1.0
    read: float = 3.0
    write: float = 3.0
    total: float = 5.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class IpnSettings(BaseModel):
    ip_allowlist: list[str] | None = None  # Optional IPs/CIDRs allowed to call the IPN endpoint


class VNPaySettings(BaseModel):
    tmn_code: Optional[str] = None
    hash_secret: Optional[SecretStr] = None
    hash_algorithm: str = "sha512"
    pay_url: str = "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html"
    api_url: str = "https://sandbox.vnpayment.vn/merchant_webapi/api/transaction"
    return_url: Optional[str] = None
    version: str = "2.1.0"
    command: str = "pay"
    locale: str = "vn"
    currency: str = "VND"
    order_type: str = "other"
    timezone: str = "Asia/Ho_Chi_Minh"
    expire_minutes: Optional[int] = 15

    @field_validator("hash_algorithm")
    @classmethod
    def _lower_algorithm(cls, v: str) -> str:
        name = (v or "").lower().replace("-", "")
        if name not in {"sha256", "sha512"}:
            raise ValueError("hash_algorithm must be sha256 or sha512")
        return name


class PaymentSettings(BaseSettings):
    default_provider: str = Field(default="vnpay")
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    # Attempts for a reconciliation unit that lost an optimistic-lock race
    reconcile_retry: int = 3
    ipn: IpnSettings = Field(default_factory=IpnSettings)

    vnpay: VNPaySettings = Field(default_factory=VNPaySettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
