"""
Schemas shared between the pipeline components.
"""

from .dto import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    DomainEvent,
    FinancialEventsPage,
    ScopedCredentials,
    SellerCredential,
    ShipmentFinancialEvent,
    Task,
    TaskOutcome,
    TaskStatus,
    WorkerInvocation,
)
