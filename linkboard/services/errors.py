class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested link does not exist."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


class DependencyFailure(Exception):
    """An external collaborator failed; callers log it and carry on."""


class ScanDispatchError(DependencyFailure):
    """The scan engine could not be reached or refused the job."""


class MetadataFetchError(DependencyFailure):
    """The link preview could not be fetched."""
