"""
Type definitions and enums for the guestfs_ctypes bindings.
"""

from dataclasses import dataclass, fields
from enum import IntEnum
from typing import Any, Callable


class LaunchState(IntEnum):
    """Lifecycle state of a handle."""

    CREATED = 0
    LAUNCHED = 1
    CLOSED = 2


# Bits of struct guestfs_mkfs_opts_argv.bitmask
MKFS_OPTS_BLOCKSIZE = 1 << 0
MKFS_OPTS_FEATURES = 1 << 1
MKFS_OPTS_INODE = 1 << 2
MKFS_OPTS_SECTORSIZE = 1 << 3
MKFS_OPTS_LABEL = 1 << 4


@dataclass(frozen=True)
class StatRecord:
    """Extended stat of a guest file (struct guestfs_statns)."""

    dev: int
    ino: int
    mode: int
    nlink: int
    uid: int
    gid: int
    rdev: int
    size: int
    blksize: int
    blocks: int
    atime_sec: int
    atime_nsec: int
    mtime_sec: int
    mtime_nsec: int
    ctime_sec: int
    ctime_nsec: int
    spare1: int = 0
    spare2: int = 0
    spare3: int = 0
    spare4: int = 0
    spare5: int = 0
    spare6: int = 0

    @classmethod
    def from_struct(cls, st: Any) -> "StatRecord":
        """Copy every field of a native statns struct by value."""
        return cls(**{f.name: int(getattr(st, "st_" + f.name)) for f in fields(cls)})


@dataclass
class MkfsOptions:
    """Optional arguments for mkfs. None means "let the engine choose"."""

    blocksize: int | None = None
    features: str | None = None
    inode: int | None = None
    sectorsize: int | None = None
    label: str | None = None


# Type alias for engine error callbacks, called with the error message
ErrorCallback = Callable[[str], None]


@dataclass
class HandleOptions:
    """Handle configuration applied right after creation."""

    verbose: bool = False
    trace: bool = False
    forward_errors: bool = True  # log engine errors instead of printing to stderr
