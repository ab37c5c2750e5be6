"""
Exception classes for kite-sync.

This module defines all custom exceptions used throughout the application.
Each exception distinguishes a failure mode and tells the caller how far
the failure is allowed to travel.

Exception Hierarchy:
    KiteSyncError (base)
        ConfigError - Configuration file issues
        DatabaseError - SQLite database issues
        CacheError - Local song cache issues
        RemoteServiceError - Remote storage API issues (delta, link, download)
        MalformedURLError - Temporary link that is not a usable URL
        ExtractionError - Metadata retriever initialization or tag parsing
        ArtworkError - Embedded artwork decoding/caching
        ConsistencyError - Song/Entry identity mismatch

Propagation Policy:
    - RemoteServiceError raised while fetching a delta page terminates the
      sync run and reaches the caller.
    - Everything raised while enriching a single entry is caught and logged
      by the metadata sync worker and never stops the queue.
"""


class KiteSyncError(Exception):
    """
    Base exception for all kite-sync errors.

    All custom exceptions in this project inherit from this class,
    allowing callers to catch all kite-sync errors with a single
    except clause if desired.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context (e.g., path, URL).

    Example:
        try:
            # some operation
        except KiteSyncError as e:
            logger.error(f"Operation failed: {e.message}")
            if e.details:
                logger.debug(f"Details: {e.details}")
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error description.
            details: Optional dictionary containing additional context about the error.
                     Common keys include:
                     - 'path': Remote path involved in the error
                     - 'url': URL that caused the error
                     - 'original_error': The underlying exception if wrapping another error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return the error message for display."""
        return self.message


class ConfigError(KiteSyncError):
    """
    Raised when there's an issue with the configuration file.

    This is a CRITICAL error that should stop program execution.

    Common causes:
        - config.yaml not found
        - config.yaml has invalid YAML syntax
        - Required fields missing (remote.access_token)
        - Invalid field values (e.g., negative cache capacity)
    """
    pass


class DatabaseError(KiteSyncError):
    """
    Raised when there's an issue with the SQLite database.

    This is a CRITICAL error that should stop program execution.

    Common causes:
        - Parent directory of the database file does not exist
        - Schema version mismatch
        - Disk full or permission denied
    """
    pass


class CacheError(KiteSyncError):
    """
    Raised when the local song cache cannot be used at all.

    Individual failed downloads into the cache are NOT reported with this
    exception; they simply produce no file. CacheError is reserved for
    setup problems such as an unusable cache directory.
    """
    pass


class RemoteServiceError(KiteSyncError):
    """
    Raised when a call to the remote storage service fails.

    Covers delta page listing, temporary link generation and file download.
    When raised from the delta sync loop it aborts the run; the persisted
    cursor still points at the end of the last fully processed page, so
    a retried run resumes incrementally.

    Attributes:
        is_auth_error: True if the access token was rejected (HTTP 401).
        is_rate_limit: True if the service asked us to slow down (HTTP 429).

    Example:
        raise RemoteServiceError(
            "Failed to fetch delta page",
            details={'cursor': cursor, 'status_code': 500}
        )
    """

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        is_auth_error: bool = False,
        is_rate_limit: bool = False
    ) -> None:
        """
        Initialize remote service error with additional flags.

        Args:
            message: Human-readable error description.
            details: Optional dictionary with additional context.
            is_auth_error: Set to True if this is an authentication failure.
            is_rate_limit: Set to True if this is a rate limit error.
        """
        super().__init__(message, details)
        self.is_auth_error = is_auth_error
        self.is_rate_limit = is_rate_limit


class MalformedURLError(KiteSyncError):
    """
    Raised when the remote service returns a temporary link that is not
    a usable http(s) URL.

    NON-CRITICAL: treated as "no URL available" for that song.
    """
    pass


class ExtractionError(KiteSyncError):
    """
    Raised when a metadata retriever cannot be initialized for a file.

    NON-CRITICAL: the song is left with partial or no metadata.
    Per-field parse failures are logged rather than raised.
    """
    pass


class ArtworkError(KiteSyncError):
    """
    Raised when embedded artwork cannot be decoded or cached, or when a
    file flagged as having artwork turns out to carry no image data.

    NON-CRITICAL for the sync worker: the song's artwork is marked invalid.
    """
    pass


class ConsistencyError(KiteSyncError):
    """
    Raised when a sync request carries a Song that does not belong to its
    Entry (missing song or mismatching entry id).

    NON-CRITICAL: the request is dropped without touching the database.
    """
    pass
