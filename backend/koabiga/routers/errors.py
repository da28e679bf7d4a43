from contextlib import contextmanager

from fastapi import HTTPException, status

from koabiga.core.exceptions import NotFound, PreconditionFailed, ValidationFailed

STATUS_BY_ERROR = {
    ValidationFailed: status.HTTP_422_UNPROCESSABLE_ENTITY,
    PreconditionFailed: status.HTTP_409_CONFLICT,
    NotFound: status.HTTP_404_NOT_FOUND,
}


@contextmanager
def service_errors():
    """Turn expected fee-engine errors into HTTP errors. PersistenceError is left to the app handler."""
    try:
        yield
    except (ValidationFailed, PreconditionFailed, NotFound) as exc:
        raise HTTPException(status_code=STATUS_BY_ERROR[type(exc)], detail=exc.to_dict()) from exc
