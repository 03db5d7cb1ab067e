"""
GuestFS class: typed wrappers over the libguestfs C API.
"""

from __future__ import annotations

import logging
import os
from ctypes import byref
from typing import Any, Iterable, Sequence

from . import _ffi, paths
from ._decode import take_string, take_string_list, take_struct
from .errors import InvalidArgumentError
from .handle import NativeHandle
from .paths import PathArg
from .types import (
    MKFS_OPTS_BLOCKSIZE,
    MKFS_OPTS_FEATURES,
    MKFS_OPTS_INODE,
    MKFS_OPTS_LABEL,
    MKFS_OPTS_SECTORSIZE,
    ErrorCallback,
    HandleOptions,
    LaunchState,
    MkfsOptions,
    StatRecord,
)

logger = logging.getLogger(__name__)


def guest_device_name(index: int) -> str:
    """Name of the guest block device backing the index-th added drive.

    0 -> /dev/sda, 25 -> /dev/sdz, 26 -> /dev/sdaa.
    """
    if index < 0:
        raise ValueError(f"drive index must be non-negative, got {index}")
    name = ""
    index += 1
    while index > 0:
        index, rem = divmod(index - 1, 26)
        name = chr(ord("a") + rem) + name
    return "/dev/sd" + name


def _shown(encoded: bytes) -> str:
    return os.fsdecode(encoded)


_INT_MIN = -(1 << 31)
_INT_MAX = (1 << 31) - 1


def _c_int(op: str, name: str, value: Any) -> int:
    """Check that value fits a C int before it reaches ctypes."""
    if not isinstance(value, int):
        raise InvalidArgumentError(f"{name} must be an integer, got {type(value).__name__}", op=op)
    if not _INT_MIN <= value <= _INT_MAX:
        raise InvalidArgumentError(f"{name} {value} is out of range for a C int", op=op)
    return value


class GuestFS:
    """A libguestfs handle.

    Drives are added while the handle is in the CREATED state, then launch()
    boots the appliance once and the remaining operations act on the disks.
    A handle is meant to be driven from one thread at a time.

    Example:
        with GuestFS() as g:
            g.add_drive_ro("disk.img")
            g.launch()
            print(g.list_filesystems())
    """

    def __init__(self, options: HandleOptions | None = None):
        """Create a new handle.

        Args:
            options: Handle configuration applied right after creation
        """
        # Initialize state first to prevent __del__ errors if __init__ fails
        self._handle: NativeHandle | None = None
        self._error_callback: Any = None
        self._drives: list[str] = []

        self._handle = NativeHandle.create()
        self._lib = self._handle.lib
        self._free = _ffi.get_libc().free

        options = options or HandleOptions()
        try:
            if options.forward_errors:
                self.set_error_handler(self._log_engine_error)
            if options.verbose:
                self.set_verbose(True)
            if options.trace:
                self.set_trace(True)
        except BaseException:
            self.close()
            raise

    def __del__(self) -> None:
        self.close()

    def __enter__(self) -> "GuestFS":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def close(self) -> None:
        """Close the handle, shutting the appliance down if it is running."""
        handle = getattr(self, "_handle", None)
        if handle is not None and not handle.closed:
            handle.close()
        # The engine may report errors while closing; drop the callback after.
        self._error_callback = None

    @property
    def closed(self) -> bool:
        return self._handle is None or self._handle.closed

    @property
    def state(self) -> LaunchState:
        """Current lifecycle state of the handle."""
        if self._handle is None:
            return LaunchState.CLOSED
        return self._handle.guard.state

    @property
    def drives(self) -> tuple[str, ...]:
        """Canonical host paths of the added drives, in guest device order."""
        return tuple(self._drives)

    @property
    def _g(self) -> int:
        if self._handle is None:
            raise RuntimeError("GuestFS handle was never created")
        return self._handle.ptr

    # ========== Call composition ==========

    def _call_status(self, op: str, *args: Any, path: str | None = None) -> int:
        g = self._g
        rc = getattr(self._lib, "guestfs_" + op)(g, *args)
        return _ffi.check_status(self._lib, g, op, rc, path)

    def _call_string(self, op: str, *args: Any) -> str:
        g = self._g
        ptr = getattr(self._lib, "guestfs_" + op)(g, *args)
        _ffi.check_pointer(self._lib, g, op, ptr)
        return take_string(ptr, self._free)

    def _call_string_list(self, op: str, *args: Any) -> list[str]:
        g = self._g
        ptr = getattr(self._lib, "guestfs_" + op)(g, *args)
        _ffi.check_pointer(self._lib, g, op, ptr)
        return take_string_list(ptr, self._free)

    # ========== Configuration ==========

    def set_error_handler(self, callback: ErrorCallback | None) -> None:
        """Route engine error messages to callback instead of stderr.

        The callback runs inside the failing native call and must not call
        back into this handle. None silences engine error output; errors are
        still raised as NativeOperationError.
        """
        g = self._g
        if callback is None:
            c_callback = _ffi.ErrorHandlerType()  # null function pointer
        else:

            def _error_wrapper(_g, _opaque, msg):
                try:
                    callback(msg.decode("utf-8", errors="replace") if msg else "")
                except Exception:
                    logger.exception("guestfs error handler raised")

            c_callback = _ffi.ErrorHandlerType(_error_wrapper)

        self._lib.guestfs_set_error_handler(g, c_callback, None)
        # Must outlive the handle's use of it
        self._error_callback = c_callback

    @staticmethod
    def _log_engine_error(message: str) -> None:
        logger.debug("libguestfs: %s", message)

    def set_verbose(self, verbose: bool) -> None:
        self._call_status("set_verbose", int(bool(verbose)))

    def set_trace(self, trace: bool) -> None:
        self._call_status("set_trace", int(bool(trace)))

    # ========== Drives and lifecycle ==========

    def add_drive(self, path: PathArg, readonly: bool = False) -> None:
        """Add a host disk image; the n-th drive becomes guest_device_name(n)."""
        filename = paths.encode_host(path)
        op = "add_drive_ro" if readonly else "add_drive"
        self._call_status(op, filename, path=_shown(filename))
        self._drives.append(_shown(filename))

    def add_drive_ro(self, path: PathArg) -> None:
        """Add a host disk image read-only."""
        self.add_drive(path, readonly=True)

    def launch(self) -> None:
        """Boot the appliance. Allowed once per handle."""
        if self._handle is None:
            raise RuntimeError("GuestFS handle was never created")
        guard = self._handle.guard
        guard.check_launch()
        self._call_status("launch")
        guard.mark_launched()
        logger.debug("Launched appliance with %d drive(s)", len(self._drives))

    def shutdown(self) -> None:
        """Stop the appliance without closing the handle."""
        self._call_status("shutdown")

    # ========== Inspection ==========

    def list_partitions(self) -> list[str]:
        """List partition devices, e.g. ["/dev/sda1", "/dev/sda2"]."""
        return self._call_string_list("list_partitions")

    def list_filesystems(self) -> list[str]:
        """List filesystems as a flat [device, type, device, type, ...] list."""
        return self._call_string_list("list_filesystems")

    def filesystems(self) -> dict[str, str]:
        """List filesystems as a {device: type} mapping."""
        items = self.list_filesystems()
        return dict(zip(items[0::2], items[1::2]))

    def available_all_groups(self) -> list[str]:
        """List every optional feature group the appliance may support."""
        return self._call_string_list("available_all_groups")

    def available(self, groups: Iterable[str]) -> None:
        """Raise NativeOperationError unless all groups are available."""
        array = paths.encode_string_array(groups)
        self._call_status("available", array)

    # ========== Mounts ==========

    def mount(self, mountable: PathArg, mountpoint: PathArg) -> None:
        device = paths.encode_guest(mountable)
        target = paths.encode_guest(mountpoint)
        self._call_status("mount", device, target, path=_shown(target))

    def umount_all(self) -> None:
        self._call_status("umount_all")

    # ========== Files ==========

    def statns(self, path: PathArg) -> StatRecord:
        """Extended stat with nanosecond timestamps."""
        encoded = paths.encode_guest(path)
        g = self._g
        ptr = self._lib.guestfs_statns(g, encoded)
        _ffi.check_pointer(self._lib, g, "statns", ptr, _shown(encoded))
        return take_struct(ptr, _ffi.StatNSStruct, self._lib.guestfs_free_statns, StatRecord.from_struct)

    def touch(self, path: PathArg) -> None:
        encoded = paths.encode_guest(path)
        self._call_status("touch", encoded, path=_shown(encoded))

    def chmod(self, mode: int, path: PathArg) -> None:
        mode = _c_int("chmod", "mode", mode)
        encoded = paths.encode_guest(path)
        self._call_status("chmod", mode, encoded, path=_shown(encoded))

    def chown(self, owner: int, group: int, path: PathArg) -> None:
        owner = _c_int("chown", "owner", owner)
        group = _c_int("chown", "group", group)
        encoded = paths.encode_guest(path)
        self._call_status("chown", owner, group, encoded, path=_shown(encoded))

    def base64_in(self, base64file: PathArg, filename: PathArg) -> None:
        """Upload a base64-encoded host file, decoded, to a guest path."""
        source = paths.encode_host(base64file)
        target = paths.encode_guest(filename)
        self._call_status("base64_in", source, target, path=_shown(target))

    def base64_out(self, filename: PathArg, base64file: PathArg) -> None:
        """Download a guest file base64-encoded into a host file."""
        source = paths.encode_guest(filename)
        target = paths.encode_host_target(base64file)
        self._call_status("base64_out", source, target, path=_shown(source))

    # ========== Commands ==========

    def command(self, arguments: Sequence[str]) -> str:
        """Run a command inside the appliance and return its stdout."""
        array = paths.encode_string_array(arguments)
        return self._call_string("command", array)

    # ========== Block devices ==========

    def blockdev_getro(self, device: PathArg) -> bool:
        encoded = paths.encode_guest(device)
        return bool(self._call_status("blockdev_getro", encoded, path=_shown(encoded)))

    def blockdev_setro(self, device: PathArg) -> None:
        encoded = paths.encode_guest(device)
        self._call_status("blockdev_setro", encoded, path=_shown(encoded))

    def blockdev_setrw(self, device: PathArg) -> None:
        encoded = paths.encode_guest(device)
        self._call_status("blockdev_setrw", encoded, path=_shown(encoded))

    # ========== Filesystem creation ==========

    def mkfs(self, fstype: str, device: PathArg, options: MkfsOptions | None = None) -> None:
        """Create a filesystem of type fstype on device."""
        fs = paths.encode_string(fstype)
        dev = paths.encode_guest(device)

        optargs = _ffi.MkfsOptsArgvStruct()
        if options:
            if options.blocksize is not None:
                optargs.bitmask |= MKFS_OPTS_BLOCKSIZE
                optargs.blocksize = _c_int("mkfs", "blocksize", options.blocksize)
            if options.features is not None:
                optargs.bitmask |= MKFS_OPTS_FEATURES
                optargs.features = paths.encode_string(options.features)
            if options.inode is not None:
                optargs.bitmask |= MKFS_OPTS_INODE
                optargs.inode = _c_int("mkfs", "inode", options.inode)
            if options.sectorsize is not None:
                optargs.bitmask |= MKFS_OPTS_SECTORSIZE
                optargs.sectorsize = _c_int("mkfs", "sectorsize", options.sectorsize)
            if options.label is not None:
                optargs.bitmask |= MKFS_OPTS_LABEL
                optargs.label = paths.encode_string(options.label)

        self._call_status("mkfs_opts_argv", fs, dev, byref(optargs), path=_shown(dev))
