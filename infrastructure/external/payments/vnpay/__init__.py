"""VNPay gateway adapter."""
from .client import VNPayClient, gateway_transaction_no, normalize_client_ip

__all__ = ["VNPayClient", "gateway_transaction_no", "normalize_client_ip"]
