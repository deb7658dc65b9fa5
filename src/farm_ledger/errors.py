"""Error taxonomy and result wrapper for public ledger operations."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class FarmLedgerError(Exception):
    """Base exception for reconciliation errors."""

    code = "error"

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.details = details


class ParseFailure(FarmLedgerError):
    """A raw log record could not be turned into an activity."""

    code = "parse_failure"


class DuplicateActivity(FarmLedgerError):
    """An activity with the same identity is already in the ledger."""

    code = "duplicate_activity"


class InsufficientFunds(FarmLedgerError):
    """A payroll action asked for more than the available balance or pool."""

    code = "insufficient_funds"


class EntityNotFound(FarmLedgerError):
    """Unknown worker, activity, payment or expectation id."""

    code = "not_found"


class NothingToPay(FarmLedgerError):
    """No unpaid activity or pool share for the requested payee."""

    code = "nothing_to_pay"


class NotPayable(FarmLedgerError):
    """The activity or profile is not eligible for service pay."""

    code = "not_payable"


class PersistenceFailure(FarmLedgerError):
    """A document could not be written; memory and storage have diverged."""

    code = "persistence_failure"


@dataclass
class OperationResult:
    """Outcome of a public operation: either data or an error with a reason."""

    success: bool
    data: Any = None
    error: str | None = None
    code: str | None = None
    details: Any = None

    @classmethod
    def ok(cls, data: Any = None) -> OperationResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: FarmLedgerError | str, details: Any = None) -> OperationResult:
        if isinstance(error, FarmLedgerError):
            return cls(
                success=False,
                error=str(error),
                code=error.code,
                details=error.details if details is None else details,
            )
        return cls(success=False, error=error, code="error", details=details)

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "result": self.data}
        return {
            "success": False,
            "error": self.error,
            "code": self.code,
            "details": self.details,
        }


def run_operation(
    name: str, func: Callable[..., Any], *args: Any, **kwargs: Any
) -> OperationResult:
    """Run a service call and convert raised errors into an OperationResult.

    Duplicates count as success. Reconciliation errors become failures with
    their code and details. Anything else is logged with its traceback and
    reported as a generic failure.
    """
    try:
        result = func(*args, **kwargs)
    except DuplicateActivity as e:
        logger.info("operation_duplicate", operation=name, details=e.details)
        return OperationResult.ok(None)
    except FarmLedgerError as e:
        logger.warning(
            "operation_failed",
            operation=name,
            code=e.code,
            error=str(e),
            details=e.details,
        )
        return OperationResult.fail(e)
    except Exception as e:
        logger.exception("operation_error", operation=name)
        return OperationResult.fail(str(e))
    return OperationResult.ok(result)
