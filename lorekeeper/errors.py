class LoreError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(LoreError):
    status_code = 404


class ConflictError(LoreError):
    """The requested state already holds (e.g. source already assigned)."""

    status_code = 409


class UnsupportedFileError(LoreError):
    status_code = 415


class CascadeDeleteError(LoreError):
    """A transactional delete failed and was rolled back in full."""

    status_code = 500


class GenerationError(LoreError):
    status_code = 502


class CacheUnavailableError(Exception):
    """Remote context caching failed or is not supported by the provider.

    Never surfaced to clients; the caller falls back to inline content.
    """
