"""
Logging utilities for the Governance Proposal Watcher.
Provides helper functions for consistent log lines.
"""

import logging
from typing import Any, Dict


def log_data_processing(operation: str, input_count: int, output_count: int, details: str = None) -> None:
    """
    Log data processing operations.

    Args:
        operation: Description of the operation
        input_count: Number of input records
        output_count: Number of output records
        details: Additional details
    """
    logger = logging.getLogger(__name__)
    logger.info(f"DATA {operation}: {input_count} → {output_count} records")
    if details:
        logger.debug(f"DATA {operation} details: {details}")


def log_error_with_context(error: Exception, context: str, additional_data: Dict[str, Any] = None,
                           exc_info: bool = True) -> None:
    """
    Log error with additional context.

    Args:
        error: Exception that occurred
        context: Context where the error occurred
        additional_data: Additional data for debugging
        exc_info: Include the traceback (off for expected, recoverable errors)
    """
    logger = logging.getLogger(__name__)
    logger.error(f"ERROR in {context}: {str(error)}", exc_info=exc_info)

    if additional_data:
        logger.error(f"ERROR context data: {additional_data}")
