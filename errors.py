import functools
import logging
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable)


class ServiceError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInput(ServiceError):
    status_code = 400


class Unauthorized(ServiceError):
    status_code = 401


class Forbidden(ServiceError):
    status_code = 403


class NotFound(ServiceError):
    status_code = 404


class Conflict(ServiceError):
    status_code = 409


class InternalFailure(ServiceError):
    status_code = 500


def guarded(message: str) -> Callable[[F], F]:
    """Re-raise anything that is not a ServiceError as InternalFailure(message).

    Meant for methods of services holding a ``session``: the session is rolled
    back before the generic failure is raised and the original cause logged.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            try:
                return func(self, *args, **kwargs)
            except ServiceError:
                raise
            except Exception as exc:
                session = getattr(self, "session", None)
                if session is not None:
                    session.rollback()
                logger.exception(f"{func.__qualname__} failed: {message}")
                raise InternalFailure(message) from exc

        return wrapper  # type: ignore[return-value]

    return decorator
