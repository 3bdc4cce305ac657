"""
Best-effort batch execution shared by the stores.

Operations run in order. A failing operation is recorded with its error
code and the batch continues; nothing is rolled back. Failures that are
not store errors are reported as ``StoreError``.
"""

from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from hinata.core.validation import validate_model
from hinata.models.query import (
    BatchOperation,
    BatchOperationResult,
    BatchOperationType,
    BatchResult,
)
from hinata.utils.exceptions import HiNATAError, StoreError, ValidationError
from hinata.utils.logger import get_logger

logger = get_logger(__name__)

BatchHandler = Callable[[BatchOperation], Awaitable[Any]]


async def run_batch(
    operations: Iterable[BatchOperation | dict],
    handlers: dict[BatchOperationType, BatchHandler],
    store_name: str,
) -> BatchResult:
    """
    Apply a heterogeneous list of operations.

    Args:
        operations: Operations (models or mappings)
        handlers: Coroutine per operation type
        store_name: Used in log messages

    Returns:
        BatchResult with one entry per operation, in input order
    """
    results: list[BatchOperationResult] = []

    for raw in operations:
        try:
            operation = (
                raw if isinstance(raw, BatchOperation) else validate_model(BatchOperation, raw)
            )
        except HiNATAError as e:
            results.append(
                BatchOperationResult(
                    operation=BatchOperation(type=BatchOperationType.CREATE, data={"raw": raw}),
                    success=False,
                    error=e.message,
                    code=e.code,
                )
            )
            continue

        try:
            handler = handlers.get(operation.type)
            if handler is None:
                raise StoreError(
                    f"{store_name} does not support {operation.type.value} operations",
                    context={"store": store_name, "operation": operation.type.value},
                )
            result = await handler(operation)
            results.append(BatchOperationResult(operation=operation, success=True, result=result))
        except HiNATAError as e:
            results.append(
                BatchOperationResult(
                    operation=operation, success=False, error=e.message, code=e.code
                )
            )
        except Exception as e:
            logger.error(
                "Unexpected error in {} batch {}: {}",
                store_name,
                operation.type.value,
                e,
                extra={"store": store_name, "operation": operation.type.value, "error": str(e)},
            )
            failure = StoreError(str(e), context={"store": store_name})
            results.append(
                BatchOperationResult(
                    operation=operation, success=False, error=failure.message, code=failure.code
                )
            )

    failed = sum(1 for r in results if not r.success)
    logger.info(
        "{} batch finished: {} succeeded, {} failed",
        store_name,
        len(results) - failed,
        failed,
        extra={"store": store_name, "failed": failed},
    )
    return BatchResult(success=failed == 0, results=results)


def require_id(operation: BatchOperation) -> str:
    """The operation's target id, or a ValidationError."""
    if not operation.id:
        raise ValidationError(f"{operation.type.value} operation requires an id")
    return operation.id
