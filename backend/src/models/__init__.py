"""
Database models for the storefront auth backend.

Product, order and customer data live in Shopify; this service only owns
the local user row and its cached Shopify credentials.
"""

from src.models.base import TimestampMixin
from src.models.user import User, SocialProvider

__all__ = [
    "TimestampMixin",
    "User",
    "SocialProvider",
]
