from app.models.ab_test import ABTest, ABTestVariant
from app.models.base import Base, TimestampMixin

__all__ = [
    "Base",
    "TimestampMixin",
    "ABTest",
    "ABTestVariant",
]
