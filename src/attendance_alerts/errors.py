"""Error hierarchy for the attendance data source and session handling.

Transient failures (network timeouts, 5xx) may succeed on a later attempt and
are the only ones tenacity retries. Permanent failures mean the relay answered
but the answer is unusable. Anything raised while fetching upstream data is
also a DataSourceError, which is what the scheduler catches to abort a run
before touching already armed alerts.

Example usage with tenacity:
    @retry(retry=retry_if_exception_type(TransientError), stop=stop_after_attempt(2))
    async def refresh(self) -> str:
        ...
"""


class AttendanceAlertsError(Exception):
    """Base exception for all attendance alert errors."""

    pass


class DataSourceError(AttendanceAlertsError):
    """An upstream fetch (timetable, courses, lectures) did not produce data."""

    pass


class TransientError(DataSourceError):
    """Temporary failure that may succeed on retry.

    Examples: connection reset, request timeout, 502/503/504 from the relay.
    """

    pass


class RateLimitError(TransientError):
    """Relay answered 429 - needs longer backoff.

    Inherits from TransientError so tenacity will retry it.
    """

    pass


class PermanentError(DataSourceError):
    """Failure that won't succeed on retry.

    Examples: `success: false` envelope, payload missing the nested data list.
    """

    pass


class AuthenticationError(PermanentError):
    """Invalid credentials or a failed token refresh.

    Requires a new login, cannot be fixed by retry.
    """

    pass


class SessionExpiredError(AuthenticationError):
    """No usable token is held and no stored credentials can renew it."""

    pass
