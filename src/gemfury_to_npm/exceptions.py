"""
gemfury-to-npm Exceptions

Error taxonomy for the migration pipeline. Each error carries an optional
remediation hint that the CLI prints next to the message.
"""

from typing import Optional


class MigrationError(Exception):
    """Base exception for all migration errors."""

    def __init__(
        self,
        message: str,
        remediation: Optional[str] = None,
        details: Optional[str] = None
    ):
        """Initialize the error.

        Args:
            message: Human-readable error message
            remediation: Suggested fix for the user
            details: Technical details for debugging
        """
        super().__init__(message)
        self.message = message
        self.remediation = remediation
        self.details = details

    def __str__(self) -> str:
        parts = [self.message]
        if self.details:
            parts.append(f"Details: {self.details}")
        if self.remediation:
            parts.append(f"To fix: {self.remediation}")
        return "\n".join(parts)


class ConfigError(MigrationError):
    """Configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        remediation: Optional[str] = None,
        details: Optional[str] = None
    ):
        self.config_key = config_key
        if not remediation and config_key:
            remediation = f"Set '{config_key}' in your config file, .env or the matching command line option"
        super().__init__(message, remediation, details)


class ListingError(MigrationError):
    """The source module listing could not be fetched. Fatal for the run."""

    def __init__(
        self,
        message: str,
        remediation: Optional[str] = None,
        details: Optional[str] = None
    ):
        if not remediation:
            remediation = "Check the Gemfury user and API key, then try again"
        super().__init__(message, remediation, details)


class NotFoundError(MigrationError):
    """A registry answered that the requested resource does not exist."""

    def __init__(
        self,
        message: str,
        resource: Optional[str] = None,
        remediation: Optional[str] = None,
        details: Optional[str] = None
    ):
        self.resource = resource
        super().__init__(message, remediation, details)


class ModuleFetchError(MigrationError):
    """Source metadata or destination versions could not be fetched."""

    def __init__(
        self,
        message: str,
        module: Optional[str] = None,
        remediation: Optional[str] = None,
        details: Optional[str] = None
    ):
        self.module = module
        super().__init__(message, remediation, details)


class DownloadError(MigrationError):
    """Transport failure while streaming a version archive."""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        remediation: Optional[str] = None,
        details: Optional[str] = None
    ):
        self.url = url
        if not remediation:
            remediation = "Check your internet connection and run the migration again; finished versions are skipped"
        super().__init__(message, remediation, details)


class ArchiveError(MigrationError):
    """The archive stream could not be decompressed or parsed as tar."""
    pass


class MalformedManifest(ArchiveError):
    """The package manifest inside the archive is not a valid JSON object."""

    def __init__(
        self,
        message: str,
        entry: Optional[str] = None,
        remediation: Optional[str] = None,
        details: Optional[str] = None
    ):
        self.entry = entry
        super().__init__(message, remediation, details)


class PublishError(MigrationError):
    """The destination refused or failed the publish."""

    def __init__(
        self,
        message: str,
        module: Optional[str] = None,
        version: Optional[str] = None,
        remediation: Optional[str] = None,
        details: Optional[str] = None
    ):
        self.module = module
        self.version = version
        super().__init__(message, remediation, details)


class PublishConflict(PublishError):
    """The version already exists at the destination."""
    pass


# Error code mapping for CLI exit codes
ERROR_CODES = {
    ConfigError: 10,
    ListingError: 11,
    ModuleFetchError: 12,
    DownloadError: 13,
    MalformedManifest: 14,
    ArchiveError: 15,
    PublishConflict: 16,
    PublishError: 17,
    NotFoundError: 18,
    MigrationError: 1,
}


def get_error_code(error: Exception) -> int:
    """Get the exit code for an error type."""
    for error_type, code in ERROR_CODES.items():
        if isinstance(error, error_type):
            return code
    return 1
