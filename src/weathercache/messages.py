"""Human-readable messages and recovery suggestions for classified errors.

Both lookups are pure and total: unknown codes fall back to a generic
message and generic actions.
"""

from typing import Dict, List, Tuple

from weathercache.errors import ErrorCode, HistoricalWeatherError

GENERIC_MESSAGE = "Unable to fetch weather data. Please try again."
GENERIC_ACTIONS: Tuple[str, ...] = (
    "Try again",
    "Refresh the page",
    "Contact support if the problem persists",
)

USER_MESSAGES: Dict[ErrorCode, str] = {
    ErrorCode.DATE_VALIDATION_ERROR: (
        "Please select a valid date. Historical data is only available for past "
        "dates within the last year."
    ),
    ErrorCode.DATA_UNAVAILABLE_ERROR: (
        "Weather data is not available for the selected date. Try a more recent "
        "date or check if the location is valid."
    ),
    ErrorCode.NETWORK_ERROR: (
        "Unable to connect to weather service. Please check your internet "
        "connection and try again."
    ),
    ErrorCode.INVALID_API_KEY: (
        "Weather service configuration error. Please contact support."
    ),
    ErrorCode.ACCESS_FORBIDDEN: (
        "Historical weather data access is not available with your current plan."
    ),
    ErrorCode.SERVICE_UNAVAILABLE: (
        "Weather service is temporarily unavailable. Please try again later."
    ),
}

SUGGESTED_ACTIONS: Dict[ErrorCode, Tuple[str, ...]] = {
    ErrorCode.DATE_VALIDATION_ERROR: (
        "Select a date within the past year",
        "Ensure the date is not in the future",
    ),
    ErrorCode.API_LIMIT_ERROR: (
        "Wait a few minutes before trying again",
        "Reduce the frequency of requests",
    ),
    ErrorCode.DATA_UNAVAILABLE_ERROR: (
        "Try a more recent date",
        "Verify the location is correct",
        "Check if data exists for nearby dates",
    ),
    ErrorCode.NETWORK_ERROR: (
        "Check your internet connection",
        "Try refreshing the page",
        "Disable any VPN or proxy",
    ),
    ErrorCode.INVALID_API_KEY: ("Contact support for assistance",),
    ErrorCode.ACCESS_FORBIDDEN: ("Contact support for assistance",),
    ErrorCode.SERVICE_UNAVAILABLE: (
        "Try again in a few minutes",
        "Check service status",
    ),
}


def user_message(error: HistoricalWeatherError) -> str:
    """Get a short message suitable for display.

    Args:
        error: Classified error

    Returns:
        Message text

    Examples:
        >>> from weathercache.errors import api_limit_error
        >>> user_message(api_limit_error(retry_after=30))
        'Too many requests. Please try again in 30 seconds.'
    """
    if error.code is ErrorCode.API_LIMIT_ERROR:
        if error.retry_after:
            return f"Too many requests. Please try again in {error.retry_after} seconds."
        return "Too many requests. Please try again in a few minutes."
    return USER_MESSAGES.get(error.code, GENERIC_MESSAGE)


def suggested_actions(error: HistoricalWeatherError) -> List[str]:
    """Get recovery suggestions, never empty."""
    return list(SUGGESTED_ACTIONS.get(error.code, GENERIC_ACTIONS))


def describe_code(code: str) -> Tuple[str, List[str]]:
    """Message and actions for a raw code string (CLI helper).

    Unrecognised codes map to the generic fallback.
    """
    try:
        error_code = ErrorCode(code.upper())
    except ValueError:
        return GENERIC_MESSAGE, list(GENERIC_ACTIONS)
    error = HistoricalWeatherError(GENERIC_MESSAGE, error_code)
    return user_message(error), suggested_actions(error)
