"""
Exception hierarchy for Jellyfin2Samsung.
"""


class ProvisioningError(Exception):
    """Base class for all provisioning failures."""
    pass


class OperationCancelledError(ProvisioningError):
    """Raised when the caller cancelled the operation."""
    pass


class ScanCancelledError(OperationCancelledError):
    """Raised when a manual address validation is cancelled before a result exists."""
    pass


class EnrollmentError(ProvisioningError):
    """Vendor enrollment failed or returned something unusable. Safe to retry."""

    def __init__(self, message: str, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class KeyGenerationError(ProvisioningError):
    """The cryptographic provider could not produce a key pair. Not retryable."""
    pass


class ArchiveError(ProvisioningError):
    """The package archive is missing, corrupt, or could not be repacked."""
    pass


class ToolMissingError(ProvisioningError):
    """The vendor installer CLI could not be found."""
    pass
