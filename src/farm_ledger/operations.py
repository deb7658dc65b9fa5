"""Named entry points that report outcomes as OperationResult instead of raising."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from typing import Any

from farm_ledger.abuse import AbuseDetector, ActivityScreen
from farm_ledger.config import get_logger
from farm_ledger.context import FarmContext
from farm_ledger.errors import EntityNotFound, OperationResult, run_operation
from farm_ledger.evaluation import WorkerEvaluator
from farm_ledger.managers import ManagerReconciler
from farm_ledger.models import AbuseCategory, AbuseDecision, ServiceType
from farm_ledger.payments import PayrollService
from farm_ledger.pipeline import ReconciliationPipeline

logger = get_logger(__name__, component="operations")


def _when(value: str | datetime | None) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _plain(value: Any) -> Any:
    """Reduce service return values to JSON-friendly data."""
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, list):
        return [_plain(item) for item in value]
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, Decimal):
        return float(value)
    return value


class LedgerOperations:
    """Dispatches named operations to the payroll, manager and ingest services.

    Every call returns an OperationResult; reconciliation errors arrive as
    failures carrying their code and details.
    """

    def __init__(self, context: FarmContext, screen: ActivityScreen | None = None):
        self.context = context
        abuse = AbuseDetector(context)
        self.evaluator = WorkerEvaluator(context, abuse=abuse)
        self.payroll = PayrollService(context, abuse=abuse, evaluator=self.evaluator)
        self.managers = ManagerReconciler(context)
        self.pipeline = ReconciliationPipeline(context, screen=screen)
        self._handlers: dict[str, Callable[..., Any]] = {
            # Ingestion
            "ingest": self._ingest,
            # Workers
            "worker_statement": self._worker_statement,
            "payment_history": self._payment_history,
            "pay_all": self._pay_all,
            "pay_all_workers": self._pay_all_workers,
            "pay_service": self._pay_service,
            "pay_transaction": self._pay_transaction,
            "unpay_transaction": self._unpay_transaction,
            "unpay_all": self._unpay_all,
            "delete_payment": self._delete_payment,
            "evaluate_worker": self._evaluate_worker,
            # Abuse
            "abuse_report": self._abuse_report,
            "record_abuse_action": self._record_abuse_action,
            # Managers
            "distribution": self._distribution,
            "pay_manager": self._pay_manager,
            "pay_all_managers": self._pay_all_managers,
            "adjust_credit": self._adjust_credit,
            "reset_negative_balances": self._reset_negative_balances,
            "sync_expectations": self._sync_expectations,
        }

    @property
    def operations(self) -> list[str]:
        return sorted(self._handlers)

    def execute(self, operation: str, arguments: dict[str, Any] | None = None) -> OperationResult:
        """Run an operation by name with keyword arguments."""
        handler = self._handlers.get(operation)
        if handler is None:
            logger.warning("unknown_operation", operation=operation)
            return OperationResult.fail(
                EntityNotFound(f"Unknown operation: {operation}", {"operation": operation})
            )

        logger.info("executing_operation", operation=operation, args=sorted(arguments or {}))
        result = run_operation(operation, handler, **(arguments or {}))
        logger.info("operation_executed", operation=operation, success=result.success)
        return result

    # === Ingestion Handlers ===

    def _ingest(self, records: list[dict[str, Any]], now: str | None = None) -> dict[str, Any]:
        return self.pipeline.ingest(records, now=_when(now)).to_dict()

    # === Worker Handlers ===

    def _worker_statement(self, worker_id: str) -> dict[str, Any]:
        return self.payroll.worker_statement(worker_id).to_dict()

    def _payment_history(self, worker_id: str | None = None) -> list[dict[str, Any]]:
        return _plain(self.payroll.payment_history(worker_id))

    def _pay_all(self, worker_id: str, now: str | None = None) -> dict[str, Any]:
        return self.payroll.pay_all(worker_id, now=_when(now)).to_dict()

    def _pay_all_workers(self, now: str | None = None) -> list[dict[str, Any]]:
        return _plain(self.payroll.pay_all_workers(now=_when(now)))

    def _pay_service(
        self, worker_id: str, service_type: str, now: str | None = None
    ) -> dict[str, Any]:
        record = self.payroll.pay_service(worker_id, ServiceType(service_type), now=_when(now))
        return record.to_dict()

    def _pay_transaction(self, activity_id: str, now: str | None = None) -> dict[str, Any]:
        return self.payroll.pay_transaction(activity_id, now=_when(now)).to_dict()

    def _unpay_transaction(self, activity_id: str) -> bool:
        return self.payroll.unpay_transaction(activity_id)

    def _unpay_all(self, worker_id: str) -> int:
        return self.payroll.unpay_all(worker_id)

    def _delete_payment(self, payment_id: str, restore_activities: bool = False) -> dict[str, Any]:
        return self.payroll.delete_payment(payment_id, restore_activities).to_dict()

    def _evaluate_worker(self, worker_id: str, now: str | None = None) -> dict[str, Any]:
        return self.evaluator.evaluate(worker_id, now=_when(now)).to_dict()

    # === Abuse Handlers ===

    def _abuse_report(self, worker_id: str) -> dict[str, Any]:
        self.context.directory.require(worker_id)
        return self.payroll.abuse.report(worker_id).to_dict()

    def _record_abuse_action(
        self,
        worker_id: str,
        decision: str,
        category: str,
        item: str | None = None,
        now: str | None = None,
    ) -> dict[str, Any]:
        self.context.directory.require(worker_id)
        action = self.payroll.abuse.record_action(
            worker_id, AbuseDecision(decision), AbuseCategory(category), item, now=_when(now)
        )
        return action.to_dict()

    # === Manager Handlers ===

    def _distribution(self) -> list[dict[str, Any]]:
        return _plain(self.managers.distribution())

    def _pay_manager(
        self,
        manager_id: str,
        amount: str | float | None = None,
        description: str = "",
        now: str | None = None,
    ) -> dict[str, Any]:
        requested = Decimal(str(amount)) if amount is not None else None
        record = self.managers.pay_manager(manager_id, requested, description, now=_when(now))
        return record.to_dict()

    def _pay_all_managers(self, now: str | None = None) -> list[dict[str, Any]]:
        return _plain(self.managers.pay_all_managers(now=_when(now)))

    def _adjust_credit(
        self, manager_id: str, amount: str | float, reason: str, now: str | None = None
    ) -> float:
        balance = self.managers.adjust_credit(
            manager_id, Decimal(str(amount)), reason, now=_when(now)
        )
        return float(balance)

    def _reset_negative_balances(self, now: str | None = None) -> dict[str, float]:
        return _plain(self.managers.reset_negative_balances(now=_when(now)))

    def _sync_expectations(self, now: str | None = None) -> list[dict[str, Any]]:
        return _plain(self.managers.sync_expectations(now=_when(now)))
