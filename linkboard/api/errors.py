from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import HTTPException, status

from linkboard.services.repository import (
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
)


@contextmanager
def repository_errors(*, not_found_detail: str | None = None) -> Iterator[None]:
    """Translate repository failures raised inside the block into HTTP errors."""
    try:
        yield
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=not_found_detail or str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
