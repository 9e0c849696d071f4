class PoolEngineError(Exception):
    """Base class for pool engine errors."""


class ConfigurationError(PoolEngineError, ValueError):
    """
    A static table, rarity, evolution family or query parameter is missing or invalid.

    Never retried and never defaulted: a guessed value would silently corrupt
    every downstream probability and cost estimate.
    """


class IncompleteSnapshot(PoolEngineError):
    """A snapshot produced no rarity-resolvable consumption at all."""

    def __init__(self, message: str, unresolved_units: int = 0):
        super().__init__(message)
        self.unresolved_units = unresolved_units
