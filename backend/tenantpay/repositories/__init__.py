"""
Repository layer for database operations.
Provides higher-level abstractions for payment queries.
"""
from tenantpay.repositories.payment_repository import PaymentRepository

__all__ = ["PaymentRepository"]
