"""Error taxonomy for the reconciliation engine."""


class ClusterScanError(Exception):
    """Base exception for operator errors"""


class ConfigurationError(ClusterScanError):
    """Input contract violation; retrying will not help"""


class ObjectNotFound(ClusterScanError):
    """Requested cluster object (or its kind) does not exist"""


class DeadlineExceeded(ClusterScanError):
    """Reconcile deadline expired before a cluster call was made"""


class RegistryError(ClusterScanError):
    """Image registry lookup failure"""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class CredentialError(RegistryError):
    """Registry credential helper failure"""
