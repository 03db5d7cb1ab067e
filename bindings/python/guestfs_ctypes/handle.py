"""
Ownership of the native guestfs_h handle and its launch state machine.
"""

from __future__ import annotations

import logging
from typing import Any

from . import _ffi
from .errors import LifecycleError
from .types import LaunchState

logger = logging.getLogger(__name__)


class LaunchGuard:
    """Two-state launch machine: CREATED -> LAUNCHED, exactly once.

    Closing moves any state to CLOSED, after which every check fails. No
    method touches the native library.
    """

    def __init__(self) -> None:
        self._state = LaunchState.CREATED

    @property
    def state(self) -> LaunchState:
        return self._state

    def check_open(self) -> None:
        if self._state is LaunchState.CLOSED:
            raise LifecycleError("handle is closed")

    def check_launch(self) -> None:
        """Reject a launch before any native call is made."""
        self.check_open()
        if self._state is LaunchState.LAUNCHED:
            raise LifecycleError("already launched", op="launch")

    def mark_launched(self) -> None:
        self.check_launch()
        self._state = LaunchState.LAUNCHED

    def mark_closed(self) -> None:
        self._state = LaunchState.CLOSED


class NativeHandle:
    """Exclusive owner of one guestfs_h pointer.

    The pointer is passed to guestfs_close exactly once, from close(), the
    context manager exit or the finalizer, whichever comes first.
    """

    def __init__(self, ptr: int, lib: Any):
        self._ptr = ptr
        self._lib = lib
        self.guard = LaunchGuard()

    @classmethod
    def create(cls) -> "NativeHandle":
        """Create a new handle. Failure here is not recoverable."""
        lib = _ffi.get_lib()
        ptr = lib.guestfs_create()
        if not ptr:
            raise RuntimeError("guestfs_create failed to allocate a handle")
        logger.debug("Created guestfs handle %#x", ptr)
        return cls(ptr, lib)

    def __del__(self) -> None:
        # __init__ may not have run to completion
        if getattr(self, "_ptr", None):
            self.close()

    def __enter__(self) -> "NativeHandle":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    @property
    def lib(self) -> Any:
        return self._lib

    @property
    def ptr(self) -> int:
        """The raw guestfs_h pointer; raises once the handle is closed."""
        self.guard.check_open()
        return self._ptr

    @property
    def closed(self) -> bool:
        return self.guard.state is LaunchState.CLOSED

    def close(self) -> None:
        """Release the native handle. Later calls are no-ops."""
        if self.closed:
            return
        ptr, self._ptr = self._ptr, 0
        self.guard.mark_closed()
        self._lib.guestfs_close(ptr)
        logger.debug("Closed guestfs handle %#x", ptr)
