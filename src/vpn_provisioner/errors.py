"""Exceptions raised by the provisioning engine."""


class ProvisioningError(Exception):
    """Base class for provisioning failures."""
    pass


class ToolInvocationError(ProvisioningError):
    """Raised when an issuance, render, or system command fails."""
    pass


class MissingExpectedArtifactError(ProvisioningError):
    """Raised when an artifact that must exist is absent."""

    def __init__(self, path, message: str = None):
        self.path = path
        super().__init__(message or f"Expected artifact is missing: {path}")


class StorageAccessError(ProvisioningError):
    """Raised when the identity store cannot be read or written."""
    pass


class PreconditionError(ProvisioningError):
    """Raised when a step runs before the steps it depends on."""
    pass


class InvalidClientNameError(ProvisioningError):
    """Raised for roster entries that cannot name a client identity."""
    pass


class BundleNotFoundError(MissingExpectedArtifactError):
    """Raised when a client bundle has not been rendered."""

    def __init__(self, name: str, path):
        self.name = name
        super().__init__(path, f"Bundle for client '{name}' not found: {path}")
