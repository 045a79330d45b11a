"""Exception hierarchy for MosqOS."""


class MosqosError(Exception):
    """Base exception for all MosqOS errors."""


class DataLayerError(MosqosError):
    """Raised when the backing store is unreachable or a lookup fails."""


class UnknownPermissionError(MosqosError, KeyError):
    """Raised when code refers to a permission key outside the catalog."""


class PermissionGroupNotFound(MosqosError):
    """Raised when a permission group does not exist in the organization."""


class SystemGroupError(MosqosError):
    """Raised on an attempt to modify or delete a system permission group."""


class ConfigError(MosqosError):
    """Raised when configuration is invalid."""


class MembershipRequiredError(MosqosError):
    """Raised when a permission group is assigned to a principal outside the organization."""
