"""
Exception hierarchy for the guestfs_ctypes bindings.

Every public operation either returns a typed value or raises one of the
exceptions below. Native failures are always reported as NativeOperationError.
"""


class GuestFSError(Exception):
    """Base exception for all guestfs_ctypes errors."""

    def __init__(
        self,
        message: str,
        errno: int = 0,
        op: str | None = None,
        path: str | None = None,
    ):
        self.errno = errno
        self.op = op
        self.path = path
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.op:
            parts.append(f"op={self.op}")
        if self.path:
            parts.append(f"path={self.path}")
        if self.errno:
            parts.append(f"errno={self.errno}")
        return " ".join(parts)


class LifecycleError(GuestFSError):
    """Invalid handle state transition (second launch, use after close)."""

    pass


class PathEncodingError(GuestFSError):
    """A path or string argument cannot be passed to the engine."""

    pass


class InvalidArgumentError(GuestFSError):
    """An integer argument does not fit the native parameter type."""

    pass


class DecodingError(GuestFSError):
    """A string returned by the engine is not valid UTF-8."""

    pass


class NativeOperationError(GuestFSError):
    """The engine reported failure through the call's sentinel value."""

    pass
