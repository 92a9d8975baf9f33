"""
Database models for the referral graph engine.
Import all models here for easy access.
"""

# Base and mixins
from models.base import Base, AuditMixin

# Core models
from models.partner import Partner
from models.product import Product

__all__ = [
    # Base
    'Base',
    'AuditMixin',

    # Core
    'Partner',
    'Product',
]
