"""Farm Ledger - reconciles farm chat logs into an activity ledger and payroll."""

__version__ = "0.1.0"

from farm_ledger.abuse import AbuseDetector, ActivityScreen
from farm_ledger.config import configure_logging, get_settings
from farm_ledger.context import FarmContext
from farm_ledger.errors import FarmLedgerError, OperationResult, run_operation
from farm_ledger.ledger import ActivityLedger, BalanceTracker
from farm_ledger.managers import ManagerReconciler
from farm_ledger.models import Activity, ActivityKind, RawLogRecord, Role, WorkerProfile
from farm_ledger.operations import LedgerOperations
from farm_ledger.parser import MessageParser
from farm_ledger.payments import PayrollService
from farm_ledger.pipeline import IngestReport, ReconciliationPipeline, open_context
from farm_ledger.rules import GameRules, get_rules
from farm_ledger.storage import InMemoryStore, JsonFileStore

__all__ = [
    # Version
    "__version__",
    # Models
    "Activity",
    "ActivityKind",
    "RawLogRecord",
    "Role",
    "WorkerProfile",
    # Ingestion
    "MessageParser",
    "ReconciliationPipeline",
    "IngestReport",
    "open_context",
    # State
    "FarmContext",
    "ActivityLedger",
    "BalanceTracker",
    "InMemoryStore",
    "JsonFileStore",
    # Services
    "PayrollService",
    "AbuseDetector",
    "ActivityScreen",
    "ManagerReconciler",
    "LedgerOperations",
    # Errors
    "FarmLedgerError",
    "OperationResult",
    "run_operation",
    # Config
    "GameRules",
    "get_rules",
    "get_settings",
    "configure_logging",
]
