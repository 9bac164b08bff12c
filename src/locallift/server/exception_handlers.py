from fastapi import FastAPI
from fastapi.responses import JSONResponse

from locallift.batches.errors import StoreUnavailableError
from locallift.main.exceptions import EXCEPTION_MAP, ErrorCodes
from locallift.main.logging import get_logger
from locallift.main.models import GeneralError

logger = get_logger(__name__)


def add_exception_handlers(app: FastAPI):
    for exception, (status_code, error_message, error_code) in EXCEPTION_MAP.items():

        def handler(
            request,
            exc,
            status_code=status_code,
            error_message=error_message,
            error_code=error_code,
        ):
            message = error_message or str(exc)

            if status_code >= 500:
                logger.warning(
                    f"{request.method} {request.url.path} answered {status_code}: {exc}",
                    extra={"status_code": status_code, "error_code": int(error_code)},
                )

            return JSONResponse(
                status_code=status_code,
                content=GeneralError(
                    message=message, locallift_error_code=error_code
                ).model_dump(),
            )

        app.add_exception_handler(exception, handler)

    def store_unavailable_handler(request, exc):
        logger.error(
            f"{request.method} {request.url.path} failed, store unavailable",
            extra={"status_code": 503, "error_code": int(ErrorCodes.NOT_READY)},
        )
        return JSONResponse(
            status_code=503,
            content=GeneralError(
                message="Storage is temporarily unavailable",
                locallift_error_code=ErrorCodes.NOT_READY,
            ).model_dump(),
        )

    app.add_exception_handler(StoreUnavailableError, store_unavailable_handler)
