"""
Big-endian reader/writer used by the CCQ wire layout.
"""
import struct

from ..exceptions import WireFormatError

_U8 = struct.Struct(">B")
_U16 = struct.Struct(">H")
_U32 = struct.Struct(">I")
_U64 = struct.Struct(">Q")


class Writer:
    """Accumulates fixed-width integers and length-prefixed byte strings."""

    def __init__(self):
        self._parts = []

    def u8(self, value: int) -> "Writer":
        self._parts.append(_U8.pack(value))
        return self

    def u16(self, value: int) -> "Writer":
        self._parts.append(_U16.pack(value))
        return self

    def u32(self, value: int) -> "Writer":
        self._parts.append(_U32.pack(value))
        return self

    def u64(self, value: int) -> "Writer":
        self._parts.append(_U64.pack(value))
        return self

    def raw(self, data: bytes) -> "Writer":
        self._parts.append(bytes(data))
        return self

    def sized(self, data: bytes) -> "Writer":
        """Write a u32 length prefix followed by the bytes."""
        self.u32(len(data))
        return self.raw(data)

    def getvalue(self) -> bytes:
        return b"".join(self._parts)


class Reader:
    """
    Consumes a byte string front to back.

    Every read raises WireFormatError on truncation, so callers never
    see struct.error or short slices.
    """

    def __init__(self, data: bytes, what: str = "message"):
        self._data = bytes(data)
        self._pos = 0
        self._what = what

    def _take(self, n: int) -> bytes:
        end = self._pos + n
        if end > len(self._data):
            raise WireFormatError(
                f"truncated {self._what}: need {n} bytes at offset {self._pos}, "
                f"only {len(self._data) - self._pos} left"
            )
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def u8(self) -> int:
        return _U8.unpack(self._take(1))[0]

    def u16(self) -> int:
        return _U16.unpack(self._take(2))[0]

    def u32(self) -> int:
        return _U32.unpack(self._take(4))[0]

    def u64(self) -> int:
        return _U64.unpack(self._take(8))[0]

    def raw(self, n: int) -> bytes:
        return self._take(n)

    def sized(self) -> bytes:
        return self._take(self.u32())

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def finish(self) -> None:
        """Reject trailing bytes."""
        if self.remaining:
            raise WireFormatError(f"{self.remaining} excess bytes after {self._what}")
