class CagMinutesError(Exception):
    """Base error for all user-facing cagminutes exceptions."""


class ConfigurationError(CagMinutesError):
    """Raised when configuration is invalid or incomplete."""


class ProjectNotInitializedError(CagMinutesError):
    """Raised when the .cagminutes data directory or database is missing."""


class DownloadError(CagMinutesError):
    """Raised when a document cannot be fetched."""


class DocumentDecodeError(CagMinutesError):
    """Raised when a downloaded document cannot be decoded into page text."""


class PersistenceError(CagMinutesError):
    """Raised when the results datastore cannot be opened or queried."""
