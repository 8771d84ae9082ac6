"""Service layer logging utilities.

Provides structured logging functions for service operations, enabling
consistent log format and context across purchase, waste, production and
metrics operations.

Usage:
    from kitchen_ledger.services.logging_utils import get_service_logger, log_operation

    logger = get_service_logger(__name__)

    # Log successful operation
    log_operation(
        logger,
        operation="record_purchase",
        outcome="success",
        purchase_record_id=12,
        inventory_item_id=3,
    )

    # Log validation failure
    log_operation(
        logger,
        operation="execute_production",
        outcome="insufficient_stock",
        recipe_id=45,
        shortages=["Mutton", "Ghee"],
    )
"""

import logging
from typing import Any


def get_service_logger(name: str) -> logging.Logger:
    """
    Get a logger configured for service operations.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Configured logger instance with the 'kitchen_ledger.services' prefix.

    Example:
        >>> logger = get_service_logger(__name__)
        >>> logger.name
        'kitchen_ledger.services.production_service'
    """
    if "." in name:
        name = name.split(".")[-1]
    return logging.getLogger(f"kitchen_ledger.services.{name}")


def log_operation(
    logger: logging.Logger,
    operation: str,
    outcome: str,
    level: int = logging.INFO,
    **context: Any,
) -> None:
    """
    Log a service operation with structured context.

    The operation name and outcome form the message; the context is passed
    via the 'extra' parameter so handlers can emit it as structured fields.

    Args:
        logger: Logger instance to use
        operation: Operation name (e.g., "record_waste", "apply_delta")
        outcome: Outcome description (e.g., "success", "validation_failed", "conflict")
        level: Log level (default: INFO). Use DEBUG for verbose/frequent logs.
        **context: Additional context fields (entity IDs, error details, etc.)
            Common fields:
            - inventory_item_id: Item whose stock changed
            - recipe_id: Recipe being produced
            - usage_log_id: ID of created usage log
            - date_key: Daily metrics record touched
            - error: Error message if outcome is "error"
    """
    extra = {
        "operation": operation,
        "outcome": outcome,
        **context,
    }
    logger.log(level, f"{operation}: {outcome}", extra=extra)
