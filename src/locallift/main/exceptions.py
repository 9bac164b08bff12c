from enum import Enum


class ErrorCodes(int, Enum):
    NOT_FOUND = 9000
    BAD_REQUEST = 9001
    BATCH_CONFLICT = 9002
    NOTHING_TO_PROCESS = 9003
    NOT_READY = 9004


class NotFoundException(Exception):
    pass


class BadRequestException(Exception):
    pass


class BatchConflictException(Exception):
    """Raised when a batch of the same workload is already running."""

    def __init__(self, workload: str, running_batch_id=None):
        self.workload = workload
        self.running_batch_id = running_batch_id
        message = f"A {workload} batch is already running"
        if running_batch_id is not None:
            message = f"{message} ({running_batch_id})"
        super().__init__(message)


class NothingToProcessException(Exception):
    pass


class NotReadyException(Exception):
    pass


# Map exceptions to response codes
# The first argument is the error code, the second is the error message
# If the error message is None, the message will be the message of the exception
EXCEPTION_MAP = {
    NotFoundException: (404, None, ErrorCodes.NOT_FOUND),
    BadRequestException: (400, None, ErrorCodes.BAD_REQUEST),
    BatchConflictException: (409, None, ErrorCodes.BATCH_CONFLICT),
    NothingToProcessException: (404, None, ErrorCodes.NOTHING_TO_PROCESS),
    NotReadyException: (503, "Service is not ready", ErrorCodes.NOT_READY),
}
