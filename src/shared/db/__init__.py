"""
Persistence for the Task Store and the Shipment Event Store.
"""

from .database import Database, db
from .event_store import ShipmentEventStore
from .task_store import TaskStore
