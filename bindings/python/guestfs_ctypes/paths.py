"""
Path and string encoding for native calls.

Host paths name real files handed to the engine (drive images, transfer
files) and are canonicalized against the host filesystem. Guest paths name
locations inside the appliance and are passed through untouched. Both end up
as NUL-terminated byte strings, so an embedded NUL is always rejected.
"""

from __future__ import annotations

import os
from ctypes import c_char_p
from pathlib import Path
from typing import Iterable, Union

from .errors import PathEncodingError


class HostPath:
    """A path on the host filesystem."""

    __slots__ = ("value",)

    def __init__(self, value: Union[str, bytes, os.PathLike]):
        self.value = value

    def __fspath__(self):
        return os.fspath(self.value)

    def __repr__(self) -> str:
        return f"HostPath({self.value!r})"


class GuestPath:
    """A path inside the appliance; never checked against the host."""

    __slots__ = ("value",)

    def __init__(self, value: Union[str, bytes]):
        self.value = value

    def __repr__(self) -> str:
        return f"GuestPath({self.value!r})"


PathArg = Union[str, bytes, os.PathLike, HostPath, GuestPath]


def _check_nul(data: bytes, what: str) -> bytes:
    if b"\0" in data:
        raise PathEncodingError(f"{what} contains an embedded NUL byte", path=repr(data))
    return data


def _encode_text(text: str, what: str) -> bytes:
    # surrogateescape maps os.fsdecode output back to the original bytes
    try:
        data = text.encode("utf-8", "surrogateescape")
    except UnicodeEncodeError as exc:
        raise PathEncodingError(f"{what} is not encodable as UTF-8: {exc.reason}", path=repr(text)) from exc
    return _check_nul(data, what)


def encode_host(path: PathArg) -> bytes:
    """Canonicalize an existing host path and encode it.

    Symlinks and relative segments are resolved; the path must exist.
    """
    if isinstance(path, GuestPath):
        raise PathEncodingError("guest path given where a host path is required", path=repr(path.value))
    raw = os.fspath(path)
    if isinstance(raw, bytes):
        _check_nul(raw, "host path")
    elif "\0" in raw:
        raise PathEncodingError("host path contains an embedded NUL byte", path=raw)

    try:
        resolved = Path(os.fsdecode(raw)).resolve(strict=True)
    except OSError as exc:
        raise PathEncodingError(f"cannot resolve host path: {exc.strerror or exc}", path=os.fsdecode(raw)) from exc
    return _check_nul(os.fsencode(resolved), "host path")


def encode_host_target(path: PathArg) -> bytes:
    """Encode a host path the engine will create.

    Only the parent directory has to exist; the final component is kept as
    given.
    """
    if isinstance(path, GuestPath):
        raise PathEncodingError("guest path given where a host path is required", path=repr(path.value))
    raw = os.fsdecode(os.fspath(path))
    if "\0" in raw:
        raise PathEncodingError("host path contains an embedded NUL byte", path=raw)

    target = Path(raw)
    if not target.name:
        raise PathEncodingError("host target path has no file name", path=raw)
    try:
        parent = target.parent.resolve(strict=True)
    except OSError as exc:
        raise PathEncodingError(f"cannot resolve host directory: {exc.strerror or exc}", path=raw) from exc
    return _check_nul(os.fsencode(parent / target.name), "host path")


def encode_guest(path: PathArg) -> bytes:
    """Encode a guest path as an opaque byte string."""
    if isinstance(path, HostPath):
        raise PathEncodingError("host path given where a guest path is required", path=repr(path.value))
    if isinstance(path, GuestPath):
        path = path.value
    if isinstance(path, bytes):
        return _check_nul(path, "guest path")
    if isinstance(path, os.PathLike):
        path = os.fspath(path)
        if isinstance(path, bytes):
            return _check_nul(path, "guest path")
    return _encode_text(path, "guest path")


def encode_string(value: Union[str, bytes]) -> bytes:
    """Encode a non-path string argument (fs type, label, command argument)."""
    if isinstance(value, (HostPath, GuestPath)):
        raise PathEncodingError("path wrapper given where a plain string is required", path=repr(value.value))
    if isinstance(value, bytes):
        return _check_nul(value, "string argument")
    return _encode_text(str(value), "string argument")


def encode_string_array(values: Iterable[Union[str, bytes]]):
    """Build a NULL-terminated char *[] for calls taking string lists.

    The returned ctypes array keeps the encoded bytes alive; hold on to it
    until the native call returns.
    """
    encoded = [encode_string(v) for v in values]
    array = (c_char_p * (len(encoded) + 1))()
    for i, item in enumerate(encoded):
        array[i] = item
    array[len(encoded)] = None
    return array
