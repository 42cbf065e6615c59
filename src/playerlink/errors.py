"""Exception types shared across PlayerLink."""


class PlayerLinkError(Exception):
    """Base class for PlayerLink errors."""
    pass


class RecordNotFoundError(PlayerLinkError):
    """Raised when a player record expected to exist is missing."""
    pass


class DispatchError(PlayerLinkError):
    """
    Raised by a completion sink when its side effect could not be applied.

    The verification state machine treats this as "not delivered" and leaves
    the reward flag unset so the sequence is retried later.
    """

    def __init__(self, sink: str, message: str):
        super().__init__(f"{sink}: {message}")
        self.sink = sink
