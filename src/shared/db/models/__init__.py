"""
Database models for the application.
"""

from sqlalchemy.orm import declarative_base

Base = declarative_base()

from .models import ShipmentFinancialEventRecord, TaskRecord  # noqa: E402

__all__ = ["Base", "ShipmentFinancialEventRecord", "TaskRecord"]
