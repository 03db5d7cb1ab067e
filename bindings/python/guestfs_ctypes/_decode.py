"""
Decoding of native-heap results into owned Python values.

libguestfs hands back strings, NULL-terminated string arrays and structs
allocated on its own heap. Each allocation is wrapped in a NativeBuffer with
a single release point, so every pointer is freed exactly once on every exit
path, including decode failures.
"""

from __future__ import annotations

import ctypes
from contextlib import ExitStack
from ctypes import POINTER, c_void_p
from typing import Any, Callable, Iterator, TypeVar

from .errors import DecodingError

T = TypeVar("T")

Release = Callable[[Any], None]


class NativeBuffer:
    """Ownership of one native allocation.

    The buffer is released through the deallocator that matches the
    allocation. Releasing twice or reading after release is a bug in this
    package and raises RuntimeError instead of touching freed memory.
    """

    __slots__ = ("_ptr", "_release", "_released")

    def __init__(self, ptr: int, release: Release):
        if not ptr:
            raise ValueError("NativeBuffer requires a non-NULL pointer")
        self._ptr = ptr
        self._release = release
        self._released = False

    def __enter__(self) -> "NativeBuffer":
        return self

    def __exit__(self, *args: Any) -> None:
        self.release()

    @property
    def address(self) -> int:
        if self._released:
            raise RuntimeError(f"native buffer {self._ptr:#x} used after release")
        return self._ptr

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            raise RuntimeError(f"native buffer {self._ptr:#x} released twice")
        self._released = True
        self._release(self._ptr)

    def string(self) -> str:
        """Copy the NUL-terminated contents and decode them as UTF-8."""
        data = ctypes.string_at(self.address)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodingError(f"engine returned invalid UTF-8: {data!r}") from exc


def _address(ptr: Any) -> int:
    # c_void_p restypes give int or None; fakes and casts may give c_void_p
    if isinstance(ptr, c_void_p):
        return ptr.value or 0
    return int(ptr or 0)


def iter_until_null(ptr: int) -> Iterator[int]:
    """Yield the entries of a NULL-terminated pointer vector.

    The terminating NULL is tested before any entry is handed out.
    """
    vector = ctypes.cast(ptr, POINTER(c_void_p))
    i = 0
    while True:
        entry = vector[i]
        if not entry:
            return
        yield entry
        i += 1


def take_string(ptr: Any, free: Release) -> str:
    """Take ownership of a char * result, decode it and free it."""
    with NativeBuffer(_address(ptr), free) as buf:
        return buf.string()


def take_string_list(ptr: Any, free: Release) -> list[str]:
    """Take ownership of a char ** result, decode it and free it.

    Every entry and the vector itself (N + 1 buffers) are freed, in reverse
    order of acquisition, whether or not decoding succeeds.
    """
    with ExitStack() as stack:
        vector = stack.enter_context(NativeBuffer(_address(ptr), free))
        entries = [
            stack.enter_context(NativeBuffer(entry, free))
            for entry in iter_until_null(vector.address)
        ]
        return [entry.string() for entry in entries]


def take_struct(ptr: Any, struct_type: Any, release: Release, convert: Callable[[Any], T]) -> T:
    """Take ownership of a struct result, copy it with convert() and free it.

    convert() must copy every field it needs; the struct is gone once this
    returns.
    """
    with NativeBuffer(_address(ptr), release) as buf:
        return convert(struct_type.from_address(buf.address))
