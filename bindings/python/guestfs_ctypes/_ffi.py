"""
Low-level ctypes bindings to libguestfs.

This module provides direct bindings to the C API and the helpers that turn
failure sentinels into exceptions. Users should prefer the GuestFS class.
"""

import ctypes
import ctypes.util
import logging
import os
import platform
from ctypes import (
    CFUNCTYPE,
    POINTER,
    Structure,
    c_char_p,
    c_int,
    c_int64,
    c_uint64,
    c_void_p,
)
from typing import Any

from .errors import NativeOperationError

logger = logging.getLogger(__name__)

# ==========================================================================
# Library loading
# ==========================================================================


def _find_library() -> str:
    """Find the libguestfs shared library."""
    # Check for explicit path via environment
    if "GUESTFS_CTYPES_LIBRARY" in os.environ:
        return os.environ["GUESTFS_CTYPES_LIBRARY"]

    system = platform.system()
    if system == "Linux":
        lib_names = ["libguestfs.so.0", "libguestfs.so"]
    elif system == "Darwin":
        lib_names = ["libguestfs.0.dylib", "libguestfs.dylib"]
    else:
        raise RuntimeError(f"Unsupported platform: {system}")

    search_paths = []
    if "LD_LIBRARY_PATH" in os.environ:
        search_paths.extend(os.environ["LD_LIBRARY_PATH"].split(os.pathsep))
    search_paths.extend(
        [
            "/usr/local/lib",
            "/usr/lib64",
            "/usr/lib",
            "/usr/lib/x86_64-linux-gnu",
            "/usr/lib/aarch64-linux-gnu",
        ]
    )

    for path in search_paths:
        for lib_name in lib_names:
            lib_path = os.path.join(path, lib_name)
            if os.path.exists(lib_path):
                return lib_path

    # Try ctypes.util.find_library as last resort
    found = ctypes.util.find_library("guestfs")
    if found:
        return found

    raise RuntimeError(
        "Could not find libguestfs. Install it or set the "
        "GUESTFS_CTYPES_LIBRARY environment variable to its path."
    )


# Loaded lazily; tests replace these with in-process fakes.
_lib: Any = None
_libc: Any = None


def _get_lib() -> Any:
    """Get the loaded library, loading it if necessary."""
    global _lib
    if _lib is None:
        lib_path = _find_library()
        lib = ctypes.CDLL(lib_path)
        _setup_functions(lib)
        logger.debug("Loaded libguestfs from %s", lib_path)
        _lib = lib
    return _lib


def _get_libc() -> Any:
    """Get the C runtime that libguestfs allocates its results with."""
    global _libc
    if _libc is None:
        libc = ctypes.CDLL(ctypes.util.find_library("c"))
        libc.free.argtypes = [c_void_p]
        libc.free.restype = None
        _libc = libc
    return _libc


# ==========================================================================
# Structures
# ==========================================================================


class StatNSStruct(Structure):
    """struct guestfs_statns"""

    _fields_ = [
        ("st_dev", c_int64),
        ("st_ino", c_int64),
        ("st_mode", c_int64),
        ("st_nlink", c_int64),
        ("st_uid", c_int64),
        ("st_gid", c_int64),
        ("st_rdev", c_int64),
        ("st_size", c_int64),
        ("st_blksize", c_int64),
        ("st_blocks", c_int64),
        ("st_atime_sec", c_int64),
        ("st_atime_nsec", c_int64),
        ("st_mtime_sec", c_int64),
        ("st_mtime_nsec", c_int64),
        ("st_ctime_sec", c_int64),
        ("st_ctime_nsec", c_int64),
        ("st_spare1", c_int64),
        ("st_spare2", c_int64),
        ("st_spare3", c_int64),
        ("st_spare4", c_int64),
        ("st_spare5", c_int64),
        ("st_spare6", c_int64),
    ]


class MkfsOptsArgvStruct(Structure):
    """struct guestfs_mkfs_opts_argv"""

    _fields_ = [
        ("bitmask", c_uint64),
        ("blocksize", c_int),
        ("features", c_char_p),
        ("inode", c_int),
        ("sectorsize", c_int),
        ("label", c_char_p),
    ]


# void (*guestfs_error_handler_cb) (guestfs_h *g, void *opaque, const char *msg)
ErrorHandlerType = CFUNCTYPE(None, c_void_p, c_void_p, c_char_p)


# ==========================================================================
# Function setup
# ==========================================================================


def _setup_functions(lib: Any) -> None:
    """Set up function signatures for the library.

    Every function that returns memory the caller must free is declared with
    a c_void_p restype so the original pointer survives for the release.
    """

    # Handle lifecycle
    lib.guestfs_create.argtypes = []
    lib.guestfs_create.restype = c_void_p

    lib.guestfs_close.argtypes = [c_void_p]
    lib.guestfs_close.restype = None

    lib.guestfs_launch.argtypes = [c_void_p]
    lib.guestfs_launch.restype = c_int

    lib.guestfs_shutdown.argtypes = [c_void_p]
    lib.guestfs_shutdown.restype = c_int

    # Error state (message is owned by the handle)
    lib.guestfs_last_error.argtypes = [c_void_p]
    lib.guestfs_last_error.restype = c_char_p

    lib.guestfs_last_errno.argtypes = [c_void_p]
    lib.guestfs_last_errno.restype = c_int

    lib.guestfs_set_error_handler.argtypes = [c_void_p, ErrorHandlerType, c_void_p]
    lib.guestfs_set_error_handler.restype = None

    # Configuration
    lib.guestfs_set_verbose.argtypes = [c_void_p, c_int]
    lib.guestfs_set_verbose.restype = c_int

    lib.guestfs_set_trace.argtypes = [c_void_p, c_int]
    lib.guestfs_set_trace.restype = c_int

    # Drives
    lib.guestfs_add_drive.argtypes = [c_void_p, c_char_p]
    lib.guestfs_add_drive.restype = c_int

    lib.guestfs_add_drive_ro.argtypes = [c_void_p, c_char_p]
    lib.guestfs_add_drive_ro.restype = c_int

    # Inspection (char ** results)
    lib.guestfs_list_partitions.argtypes = [c_void_p]
    lib.guestfs_list_partitions.restype = c_void_p

    lib.guestfs_list_filesystems.argtypes = [c_void_p]
    lib.guestfs_list_filesystems.restype = c_void_p

    lib.guestfs_available_all_groups.argtypes = [c_void_p]
    lib.guestfs_available_all_groups.restype = c_void_p

    lib.guestfs_available.argtypes = [c_void_p, POINTER(c_char_p)]
    lib.guestfs_available.restype = c_int

    # Mounts
    lib.guestfs_mount.argtypes = [c_void_p, c_char_p, c_char_p]
    lib.guestfs_mount.restype = c_int

    lib.guestfs_umount_all.argtypes = [c_void_p]
    lib.guestfs_umount_all.restype = c_int

    # Files
    lib.guestfs_statns.argtypes = [c_void_p, c_char_p]
    lib.guestfs_statns.restype = c_void_p

    lib.guestfs_free_statns.argtypes = [c_void_p]
    lib.guestfs_free_statns.restype = None

    lib.guestfs_touch.argtypes = [c_void_p, c_char_p]
    lib.guestfs_touch.restype = c_int

    lib.guestfs_chmod.argtypes = [c_void_p, c_int, c_char_p]
    lib.guestfs_chmod.restype = c_int

    lib.guestfs_chown.argtypes = [c_void_p, c_int, c_int, c_char_p]
    lib.guestfs_chown.restype = c_int

    lib.guestfs_base64_in.argtypes = [c_void_p, c_char_p, c_char_p]
    lib.guestfs_base64_in.restype = c_int

    lib.guestfs_base64_out.argtypes = [c_void_p, c_char_p, c_char_p]
    lib.guestfs_base64_out.restype = c_int

    # Command execution (char * result)
    lib.guestfs_command.argtypes = [c_void_p, POINTER(c_char_p)]
    lib.guestfs_command.restype = c_void_p

    # Block devices
    lib.guestfs_blockdev_getro.argtypes = [c_void_p, c_char_p]
    lib.guestfs_blockdev_getro.restype = c_int

    lib.guestfs_blockdev_setro.argtypes = [c_void_p, c_char_p]
    lib.guestfs_blockdev_setro.restype = c_int

    lib.guestfs_blockdev_setrw.argtypes = [c_void_p, c_char_p]
    lib.guestfs_blockdev_setrw.restype = c_int

    # Filesystem creation
    lib.guestfs_mkfs_opts_argv.argtypes = [
        c_void_p,
        c_char_p,
        c_char_p,
        POINTER(MkfsOptsArgvStruct),
    ]
    lib.guestfs_mkfs_opts_argv.restype = c_int


# ==========================================================================
# Error translation
# ==========================================================================


def last_error(lib: Any, g: Any, op: str, path: str | None = None) -> NativeOperationError:
    """Build an exception from the handle's last-error state.

    Must be called immediately after the failing call: the next call on the
    same handle overwrites the state. The message buffer belongs to the
    handle and is copied, never freed here.
    """
    raw = lib.guestfs_last_error(g)
    errno = lib.guestfs_last_errno(g)

    message = raw.decode("utf-8", errors="replace") if raw else ""
    if not message:
        message = f"{op}: unknown error"
    return NativeOperationError(message, errno=errno, op=op, path=path)


def check_status(lib: Any, g: Any, op: str, rc: int, path: str | None = None) -> int:
    """Raise if a status-returning call reported failure (negative status)."""
    if rc < 0:
        raise last_error(lib, g, op, path)
    return rc


def check_pointer(lib: Any, g: Any, op: str, ptr: Any, path: str | None = None) -> Any:
    """Raise if a pointer-returning call reported failure (NULL)."""
    if not ptr:
        raise last_error(lib, g, op, path)
    return ptr


# Convenience functions to get the libraries for use in other modules
def get_lib() -> Any:
    """Get the loaded libguestfs instance."""
    return _get_lib()


def get_libc() -> Any:
    """Get the C runtime used to release strings and string arrays."""
    return _get_libc()
