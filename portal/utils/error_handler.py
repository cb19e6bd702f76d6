"""
Error Handler Utility - safe HTTP error responses

Internal exception details are logged with their traceback while API
consumers only see a generic message.

Usage:
    from portal.utils.error_handler import safe_error_response

    try:
        portal.update_profile(updates)
    except OSError as e:
        raise safe_error_response(503, "saving profile", e, logger)
"""

import logging
from fastapi import HTTPException


def safe_error_response(
    status_code: int,
    operation: str,
    exception: Exception,
    logger: logging.Logger
) -> HTTPException:
    """
    Create an HTTPException that does not expose internal details.

    Args:
        status_code: HTTP status code (e.g., 500, 503)
        operation: What was being done (e.g., "creating session")
        exception: The caught exception
        logger: Logger used to record the full error

    Returns:
        HTTPException with a generic message
    """
    logger.error(f"{operation} failed: {exception}", exc_info=exception)

    if status_code >= 500:
        detail = f"An internal error occurred while {operation}. Please try again later."
    else:
        detail = f"Error while {operation}. Please check your request and try again."

    return HTTPException(status_code=status_code, detail=detail)
