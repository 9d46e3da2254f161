"""
Payment provider gateway clients.
"""
from tenantpay.gateways.base import PaymentGateway, InitiatedPayment
from tenantpay.gateways.factory import build_gateway, get_gateway, check_connection

__all__ = [
    "PaymentGateway",
    "InitiatedPayment",
    "build_gateway",
    "get_gateway",
    "check_connection",
]
