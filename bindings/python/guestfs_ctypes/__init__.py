"""
Python bindings for libguestfs.

This package wraps the libguestfs C library with ctypes. It manages the
native handle, encodes host and guest paths, copies native results into
Python values (freeing the native memory), and raises structured exceptions
when the engine reports failure.

Example:
    import guestfs_ctypes as gfs

    with gfs.GuestFS() as g:
        g.add_drive("disk.img")
        g.launch()

        g.mkfs("ext4", "/dev/sda")
        g.mount("/dev/sda", "/")
        g.touch("/hello")
        g.chmod(0o644, "/hello")
        print(g.statns("/hello").mode)
"""

from .errors import (
    DecodingError,
    GuestFSError,
    InvalidArgumentError,
    LifecycleError,
    NativeOperationError,
    PathEncodingError,
)
from .types import (
    ErrorCallback,
    HandleOptions,
    LaunchState,
    MkfsOptions,
    StatRecord,
)
from .paths import GuestPath, HostPath
from .handle import LaunchGuard
from .guestfs import GuestFS, guest_device_name

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Handle
    "GuestFS",
    "HandleOptions",
    "LaunchState",
    "LaunchGuard",
    "guest_device_name",
    # Paths
    "HostPath",
    "GuestPath",
    # Results and options
    "StatRecord",
    "MkfsOptions",
    "ErrorCallback",
    # Errors
    "GuestFSError",
    "LifecycleError",
    "PathEncodingError",
    "InvalidArgumentError",
    "DecodingError",
    "NativeOperationError",
]
