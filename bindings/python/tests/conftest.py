"""
Shared fixtures: an in-process stand-in for libguestfs.

FakeGuestFSLibrary exposes the guestfs_* functions the bindings call and a
FakeHeap that hands out real ctypes memory, so ownership rules (every native
pointer freed exactly once, nothing read after free) are checked against an
allocation ledger instead of a live appliance.
"""

import base64
import ctypes
import errno
import os
import sys

import pytest

# Add the parent directory to the path so we can import guestfs_ctypes
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from guestfs_ctypes import _ffi
from guestfs_ctypes.guestfs import GuestFS

S_IFREG = 0o100000


class FakeHeap:
    """malloc/free ledger backed by ctypes buffers."""

    def __init__(self):
        self.live = {}
        # Freed objects stay referenced so a stray read cannot crash the run
        self.graveyard = []
        self.freed = []

    def alloc(self, obj) -> int:
        addr = ctypes.addressof(obj)
        self.live[addr] = obj
        return addr

    def alloc_string(self, data) -> int:
        if isinstance(data, str):
            data = data.encode("utf-8")
        return self.alloc(ctypes.create_string_buffer(data))

    def alloc_string_list(self, items) -> int:
        ptrs = [self.alloc_string(item) for item in items]
        vector = (ctypes.c_void_p * (len(ptrs) + 1))(*ptrs)
        return self.alloc(vector)

    def free(self, ptr) -> None:
        addr = int(ptr)
        if addr not in self.live:
            raise AssertionError(f"free() of unknown or already freed pointer {addr:#x}")
        self.graveyard.append(self.live.pop(addr))
        self.freed.append(addr)


class FakeGuestFSLibrary:
    """Python implementation of the subset of libguestfs the bindings use."""

    HANDLE = 0x6E57

    def __init__(self):
        self.heap = FakeHeap()
        self.calls = []
        self.failures = {}
        self.closed = []
        self.create_returns_null = False

        self.drives = []
        self.launches = 0
        self.verbose = 0
        self.trace = 0
        self.error_handler = None

        self.partitions = []
        self.filesystems = []
        self.groups = ["augeas", "inotify", "xfs"]
        self.files = {}
        self.readonly_devices = set()
        self.mkfs_calls = []
        self.mounts = []
        self.command_argv = None
        self.command_output = None
        self.statns_freed = []

        self._last_error = None
        self._last_errno = 0

    # libc
    def free(self, ptr) -> None:
        self.heap.free(ptr)

    def fail(self, op: str, err: int = errno.EIO, message: str = "") -> None:
        """Make the next calls to op report failure."""
        self.failures[op] = (err, (message or f"{op}: simulated failure").encode("utf-8"))

    def _enter(self, g, op: str) -> bool:
        assert g == self.HANDLE, f"{op} called with unknown handle {g!r}"
        assert g not in self.closed, f"{op} called on a closed handle"
        self.calls.append(op)
        if op in self.failures:
            self._set_error(g, *self.failures[op])
            return True
        return False

    def _set_error(self, g, err: int, message: bytes) -> None:
        self._last_errno = err
        self._last_error = message
        if self.error_handler:
            self.error_handler(g, None, message)

    def native_calls(self) -> int:
        return len(self.calls)

    # Handle lifecycle

    def guestfs_create(self):
        self.calls.append("create")
        return None if self.create_returns_null else self.HANDLE

    def guestfs_close(self, g):
        assert g not in self.closed, "guestfs_close called twice"
        self.calls.append("close")
        self.closed.append(g)

    def guestfs_launch(self, g):
        if self._enter(g, "launch"):
            return -1
        self.launches += 1
        return 0

    def guestfs_shutdown(self, g):
        return -1 if self._enter(g, "shutdown") else 0

    def guestfs_last_error(self, g):
        self.calls.append("last_error")
        return self._last_error

    def guestfs_last_errno(self, g):
        self.calls.append("last_errno")
        return self._last_errno

    def guestfs_set_error_handler(self, g, cb, opaque):
        self._enter(g, "set_error_handler")
        self.error_handler = cb if cb else None

    def guestfs_set_verbose(self, g, flag):
        if self._enter(g, "set_verbose"):
            return -1
        self.verbose = flag
        return 0

    def guestfs_set_trace(self, g, flag):
        if self._enter(g, "set_trace"):
            return -1
        self.trace = flag
        return 0

    # Drives

    def guestfs_add_drive(self, g, filename):
        if self._enter(g, "add_drive"):
            return -1
        self.drives.append((filename, False))
        return 0

    def guestfs_add_drive_ro(self, g, filename):
        if self._enter(g, "add_drive_ro"):
            return -1
        self.drives.append((filename, True))
        return 0

    # Inspection

    def guestfs_list_partitions(self, g):
        if self._enter(g, "list_partitions"):
            return None
        return self.heap.alloc_string_list(self.partitions)

    def guestfs_list_filesystems(self, g):
        if self._enter(g, "list_filesystems"):
            return None
        return self.heap.alloc_string_list(self.filesystems)

    def guestfs_available_all_groups(self, g):
        if self._enter(g, "available_all_groups"):
            return None
        return self.heap.alloc_string_list(self.groups)

    def guestfs_available(self, g, groups):
        if self._enter(g, "available"):
            return -1
        for name in _argv(groups):
            if name.decode("utf-8") not in self.groups:
                self._set_error(g, errno.ENOENT, b"available: " + name + b": group not available")
                return -1
        return 0

    # Mounts

    def guestfs_mount(self, g, mountable, mountpoint):
        if self._enter(g, "mount"):
            return -1
        self.mounts.append((mountable, mountpoint))
        return 0

    def guestfs_umount_all(self, g):
        if self._enter(g, "umount_all"):
            return -1
        self.mounts.clear()
        return 0

    # Files

    def guestfs_touch(self, g, path):
        if self._enter(g, "touch"):
            return -1
        self.files.setdefault(path, {"mode": S_IFREG | 0o644, "uid": 0, "gid": 0, "data": b""})
        return 0

    def _lookup(self, g, op, path):
        if path not in self.files:
            self._set_error(g, errno.ENOENT, f"{op}: {path.decode()}: No such file or directory".encode())
            return None
        return self.files[path]

    def guestfs_chmod(self, g, mode, path):
        if self._enter(g, "chmod"):
            return -1
        entry = self._lookup(g, "chmod", path)
        if entry is None:
            return -1
        entry["mode"] = (entry["mode"] & ~0o7777) | mode
        return 0

    def guestfs_chown(self, g, owner, group, path):
        if self._enter(g, "chown"):
            return -1
        entry = self._lookup(g, "chown", path)
        if entry is None:
            return -1
        entry["uid"], entry["gid"] = owner, group
        return 0

    def guestfs_statns(self, g, path):
        if self._enter(g, "statns"):
            return None
        entry = self._lookup(g, "statns", path)
        if entry is None:
            return None
        st = _ffi.StatNSStruct()
        st.st_dev = 2049
        st.st_ino = 12
        st.st_mode = entry["mode"]
        st.st_nlink = 1
        st.st_uid = entry["uid"]
        st.st_gid = entry["gid"]
        st.st_size = len(entry["data"])
        st.st_blksize = 4096
        st.st_mtime_sec = 1700000000
        st.st_mtime_nsec = 123456789
        return self.heap.alloc(st)

    def guestfs_free_statns(self, ptr):
        self.heap.free(ptr)
        self.statns_freed.append(ptr)

    def guestfs_base64_in(self, g, base64file, filename):
        if self._enter(g, "base64_in"):
            return -1
        with open(base64file, "rb") as f:
            data = base64.b64decode(f.read())
        self.files[filename] = {"mode": S_IFREG | 0o644, "uid": 0, "gid": 0, "data": data}
        return 0

    def guestfs_base64_out(self, g, filename, base64file):
        if self._enter(g, "base64_out"):
            return -1
        entry = self._lookup(g, "base64_out", filename)
        if entry is None:
            return -1
        with open(base64file, "wb") as f:
            f.write(base64.b64encode(entry["data"]))
        return 0

    # Commands

    def guestfs_command(self, g, argv):
        if self._enter(g, "command"):
            return None
        self.command_argv = list(_argv(argv))
        output = self.command_output
        if output is None:
            output = b" ".join(self.command_argv[1:]) + b"\n"
        return self.heap.alloc_string(output)

    # Block devices

    def guestfs_blockdev_getro(self, g, device):
        if self._enter(g, "blockdev_getro"):
            return -1
        return 1 if device in self.readonly_devices else 0

    def guestfs_blockdev_setro(self, g, device):
        if self._enter(g, "blockdev_setro"):
            return -1
        self.readonly_devices.add(device)
        return 0

    def guestfs_blockdev_setrw(self, g, device):
        if self._enter(g, "blockdev_setrw"):
            return -1
        self.readonly_devices.discard(device)
        return 0

    def guestfs_mkfs_opts_argv(self, g, fstype, device, optargs):
        if self._enter(g, "mkfs_opts_argv"):
            return -1
        opts = optargs._obj
        self.mkfs_calls.append(
            {
                "fstype": fstype,
                "device": device,
                "bitmask": opts.bitmask,
                "blocksize": opts.blocksize,
                "features": opts.features,
                "inode": opts.inode,
                "sectorsize": opts.sectorsize,
                "label": opts.label,
            }
        )
        self.filesystems = [device.decode(), fstype.decode()]
        return 0


def _argv(array):
    """Iterate a NULL-terminated char *[] built by the bindings."""
    i = 0
    while array[i] is not None:
        yield array[i]
        i += 1


@pytest.fixture
def fake_lib(monkeypatch):
    """Install a fresh fake libguestfs (and libc) for the test."""
    lib = FakeGuestFSLibrary()
    monkeypatch.setattr(_ffi, "_lib", lib)
    monkeypatch.setattr(_ffi, "_libc", lib)
    return lib


@pytest.fixture
def heap():
    return FakeHeap()


@pytest.fixture
def g(fake_lib):
    """An open GuestFS handle on the fake library."""
    handle = GuestFS()
    yield handle
    handle.close()
