"""Exception taxonomy for the mirroring service.

Only ``ConfigurationError`` is fatal.  Everything raised while processing
individual paths is recoverable: it is recorded against that path and the
path is retried on a later cycle.
"""


class MirrorError(Exception):
    """Base class for all mirroring errors."""


class AccessError(MirrorError):
    """A path is locked, permission-denied, or unreachable right now.

    Attributes:
        path: The path that could not be accessed.
    """

    def __init__(self, path: str, message: str = "path not accessible") -> None:
        self.path = path
        super().__init__(f"{message}: {path}")


class CopyError(MirrorError):
    """A copy was refused (destination exists) or failed part-way."""


class ConfigurationError(MirrorError, ValueError):
    """Configuration is invalid or a tree root is unreachable at startup."""


class TransientCycleError(MirrorError):
    """Wraps an unexpected exception raised during one poll iteration.

    Attributes:
        cycle: Sequence number of the failed cycle.
    """

    def __init__(self, cycle: int, cause: BaseException) -> None:
        self.cycle = cycle
        self.cause = cause
        super().__init__(f"cycle {cycle} failed: {cause!r}")
