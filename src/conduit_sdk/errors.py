"""Exception hierarchy for the Conduit SDK."""


class ConduitError(Exception):
    """Base exception for Conduit SDK errors."""
    pass


class ParameterError(ConduitError):
    """Raised when in-proxy parameters are out of range or malformed."""
    pass


class EngineStartError(ConduitError):
    """Raised when the tunneling engine refuses to start with the given parameters."""
    pass


class SnapshotFormatError(ConduitError):
    """Raised when an activity snapshot or event does not match the wire contract."""
    pass


class FrameError(ConduitError):
    """Raised when a binary feed frame cannot be decoded (bad magic, version, length)."""
    pass


class FeedError(ConduitError):
    """Raised when the activity feed server reports an error."""
    pass
