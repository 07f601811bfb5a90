"""
Payment gateway codes and VNPay status tables.
"""
from __future__ import annotations

from enum import Enum, IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    RATE_LIMITED = 60004
    INVALID_REQUEST = 60005
    INVALID_CALLBACK = 60006


class IpnResponseCode(str, Enum):
    """RspCode values VNPay expects in the IPN acknowledgement body."""

    CONFIRM_SUCCESS = "00"
    ORDER_NOT_FOUND = "01"
    ALREADY_CONFIRMED = "02"
    INVALID_AMOUNT = "04"
    INVALID_SIGNATURE = "97"
    UNKNOWN_ERROR = "99"


IPN_MESSAGES = {
    IpnResponseCode.CONFIRM_SUCCESS: "Confirm Success",
    IpnResponseCode.ORDER_NOT_FOUND: "Order not found",
    IpnResponseCode.ALREADY_CONFIRMED: "Order already confirmed",
    IpnResponseCode.INVALID_AMOUNT: "Invalid amount",
    IpnResponseCode.INVALID_SIGNATURE: "Invalid signature",
    IpnResponseCode.UNKNOWN_ERROR: "Unknown error",
}


VNPAY_SUCCESS_CODE = "00"

# vnp_ResponseCode descriptions (payment page result)
VNPAY_RESPONSE_MESSAGES = {
    "00": "Transaction successful",
    "07": "Amount deducted, transaction flagged as suspicious",
    "09": "Card/account not registered for internet banking",
    "10": "Card/account verification failed more than 3 times",
    "11": "Payment window expired",
    "12": "Card/account is locked",
    "13": "Wrong one-time password",
    "24": "Customer cancelled the transaction",
    "51": "Insufficient balance",
    "65": "Daily transaction limit exceeded",
    "75": "Issuing bank under maintenance",
    "79": "Wrong payment password too many times",
    "99": "Other error",
}


# Provider→internal payment status mapping
PROVIDER_STATUS_TO_INTERNAL = {
    "vnpay": {
        # Per vnp_TransactionStatus / vnp_ResponseCode
        "00": "COMPLETED",
        "01": "PENDING",
        "02": "FAILED",
        "04": "FAILED",
        "05": "PENDING",
        "06": "PENDING",
        "07": "FAILED",
        "09": "FAILED",
        "24": "FAILED",
    },
}
