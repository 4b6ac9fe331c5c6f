"""Domain level exceptions and helpers for repository layers."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from sqlalchemy import exc as sa_exc

__all__ = [
    "AppError",
    "RepositoryError",
    "NotFoundError",
    "IntegrityConstraintViolation",
    "DatabaseOperationError",
    "UnauthorizedError",
    "InvalidRequestError",
    "PlanLimitExceededError",
    "FormatNotAllowedError",
    "ConfigurationError",
    "TokenRefreshError",
    "OAuthExchangeError",
    "PipelineError",
    "CredentialsMissingError",
    "ReauthorizationRequiredError",
    "SourceUnavailableError",
    "CompositionFailedError",
    "CompositionTimeoutError",
    "PublishFailedError",
    "InsufficientPrivilegeError",
    "describe_failure",
    "ensure_found",
    "handle_sqlalchemy_errors",
]


class AppError(Exception):
    """Base class for application specific errors."""


class RepositoryError(AppError):
    """Base class for persistence layer failures."""


class NotFoundError(RepositoryError):
    """Raised when a record could not be located."""


class IntegrityConstraintViolation(RepositoryError):
    """Raised when a database constraint is violated."""


class DatabaseOperationError(RepositoryError):
    """Raised for unexpected database errors."""


class UnauthorizedError(AppError):
    """Raised when a principal acts on a record it does not own."""


class InvalidRequestError(AppError):
    """Raised when intake input fails validation."""


class PlanLimitExceededError(AppError):
    """Raised when the principal used up the uploads of the current period."""


class FormatNotAllowedError(AppError):
    """Raised when the audio format is not part of the principal's plan."""


class ConfigurationError(AppError):
    """Raised when a required deployment setting is missing."""


class TokenRefreshError(AppError):
    """Transient refresh failure; stored credentials are left untouched."""


class OAuthExchangeError(AppError):
    """Raised when an authorization code cannot be exchanged for tokens."""


class PipelineError(AppError):
    """Failure that ends one processing attempt of an upload."""


class CredentialsMissingError(PipelineError):
    """The owner has no stored YouTube credentials."""


class ReauthorizationRequiredError(PipelineError):
    """The refresh token was revoked; the owner has to reconnect."""


class SourceUnavailableError(PipelineError):
    """The audio asset cannot be turned into a fetchable URL."""


class CompositionFailedError(PipelineError):
    """ffmpeg or one of the downloads feeding it failed."""


class CompositionTimeoutError(CompositionFailedError):
    """ffmpeg ran past its timeout and was killed."""


class PublishFailedError(PipelineError):
    """The video host rejected or errored on a request."""


class InsufficientPrivilegeError(PublishFailedError):
    """The channel is not allowed to perform the call (custom thumbnails)."""


@dataclass(slots=True)
class _EntityContext:
    """Internal helper describing the entity for error messages."""

    entity: str | None = None

    def format(self, message: str) -> str:
        if self.entity:
            return f"{self.entity}: {message}"
        return message


def describe_failure(exc: BaseException) -> str:
    """Return the human readable message stored on a failed upload."""
    message = str(exc).strip()
    return message or exc.__class__.__name__


def ensure_found(record: object | None, *, entity: str, identifier: str) -> object:
    """Ensure a record exists, otherwise raise :class:`NotFoundError`."""

    if record is None:
        raise NotFoundError(f"{entity} '{identifier}' not found")
    return record


def _translate_sqlalchemy_error(exc: Exception, *, context: _EntityContext) -> RepositoryError:
    if isinstance(exc, sa_exc.IntegrityError):
        return IntegrityConstraintViolation(context.format("integrity constraint violated"))
    if isinstance(exc, sa_exc.DBAPIError):
        return DatabaseOperationError(context.format("database operation failed"))
    return RepositoryError(context.format(str(exc)))


@contextmanager
def handle_sqlalchemy_errors(*, entity: str | None = None) -> Iterator[None]:
    """Translate SQLAlchemy errors into domain specific ones."""

    context = _EntityContext(entity)
    try:
        yield
    except (sa_exc.IntegrityError, sa_exc.DBAPIError) as exc:
        raise _translate_sqlalchemy_error(exc, context=context) from exc
