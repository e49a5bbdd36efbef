from .credential_store import SellerCredentialStore
from .event_bus import EventBridgePublisher
from .finances_client import FinancesClient
from .role_service import RoleService
from .task_queue import LambdaTaskQueue, LocalTaskQueue
