"""Database module for driverpack."""

from .connection import Database
from .models import PackageRecord, SupportedModel
from .schema import create_schema

__all__ = [
    "Database",
    "create_schema",
    "PackageRecord",
    "SupportedModel",
]
