"""Error taxonomy shared by the batch engine and the workload clients."""


class ExternalApiError(Exception):
    """The external API answered, but not with a usable success response."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        self.message = message
        if status_code is not None:
            message = f"HTTP {status_code}: {message}"
        super().__init__(message)


class ExternalTimeoutError(Exception):
    """The external API did not answer within the attempt timeout."""


class ExternalConnectionError(Exception):
    """The external API could not be reached."""


class CredentialError(Exception):
    """Credentials for a tenant are missing, revoked or cannot be refreshed."""


class InvalidItemError(Exception):
    """The item itself cannot be processed, no matter how often it is retried."""


class StoreUnavailableError(Exception):
    """The persistence layer is unreachable. Fatal for a running batch."""


class RetryExhaustedError(Exception):
    def __init__(self, context: str, attempts: int, last_error: BaseException):
        self.context = context
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{context} failed after {attempts} attempts: {last_error}")
