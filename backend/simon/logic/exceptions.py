"""Typed domain exceptions for the match engine.

Selection and lifecycle failures use subclasses of SimonSaysError rather
than raw ValueError, so the orchestrator can log and surface them through
the event bus without masking programming errors.
"""


class SimonSaysError(Exception):
    """Base exception for match engine failures."""


class ConfigurationError(SimonSaysError):
    """Configuration cannot produce a valid selection (missing patterns, empty tables)."""


class NoEligibleRoundTypeError(ConfigurationError):
    """No configured round type accepts the current player count."""


class NoVariantsConfiguredError(ConfigurationError):
    """A round type has an empty variant list."""


class InsufficientPlayersError(SimonSaysError):
    """Not enough active players for the requested activity or match."""


class MatchStateError(SimonSaysError):
    """Match lifecycle method called in a state that does not allow it."""


class NoActiveBlockError(MatchStateError):
    """complete_block called while no block is in progress."""


class PlayerRegistryError(SimonSaysError):
    """Base exception for player registry misuse."""


class DuplicatePlayerNameError(PlayerRegistryError):
    """Name already taken by a non-departed player (case-insensitive)."""


class PlayerLimitError(PlayerRegistryError):
    """Registry is full."""


class UnknownPlayerError(PlayerRegistryError):
    """Player id is not registered."""


class BlockIndexError(SimonSaysError):
    """Block cursor moved outside the pattern."""


class OrchestratorError(SimonSaysError):
    """Orchestrator used before initialisation or while a match is already running."""
