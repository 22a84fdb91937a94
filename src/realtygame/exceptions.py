"""Exception hierarchy for the simulation core."""


class RealtyGameError(Exception):
    """Base exception for all realtygame errors."""


class ConfigurationError(RealtyGameError):
    """Raised when reference configuration is missing or was not loaded yet."""


class SnapshotLoadError(RealtyGameError):
    """Raised when a persisted snapshot is missing or malformed."""


class InvariantViolationError(RealtyGameError):
    """Raised when player state is internally inconsistent (corrupted snapshot)."""


class EntityNotFoundError(RealtyGameError):
    """Raised when an action references an unknown property or loan."""
