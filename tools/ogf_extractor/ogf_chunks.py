"""Chunk container reader/writer for OGF files.

An OGF file is a flat sequence of chunk records:

    id (u32) + size (u32) + payload[size]

A payload may itself be a chunk sequence (LODDATA, LODS, CHILDREN,
S_MOTIONS), so readers nest: every sub-reader is bounded to its chunk and
can never read into sibling data.
"""
import struct
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from ogf_errors import StructuralError, UnimplementedFormat
from ogf_types import CHUNK_COMPRESSED, CHUNK_HEADER_SIZE, OgfChunk, Vector2, Vector3, chunk_name, f32

STRING_ENCODING = "cp1251"


class ChunkReader:
    """Bounded reader over one chunk payload (or a whole file)."""

    def __init__(self, data: bytes, start: int = 0, end: Optional[int] = None,
                 chunk_id: Optional[int] = None):
        """Initialize reader.

        Args:
            data: Underlying buffer, shared with parent and child readers
            start: First byte of this reader's range
            end: One past the last byte (defaults to len(data))
            chunk_id: Id of the chunk this reader covers, for error messages
        """
        self._data = data
        self._start = start
        self._end = len(data) if end is None else end
        self._pos = start
        self.chunk_id = chunk_id
        self._chunks: Optional[List[OgfChunk]] = None
        self._requested: Set[int] = set()

    def __repr__(self) -> str:
        return f"ChunkReader(chunk={self._where()}, size={self.size}, pos={self.tell()})"

    def _where(self) -> str:
        return "root" if self.chunk_id is None else chunk_name(self.chunk_id)

    # ------------------------------------------------------------------
    # Position

    @property
    def size(self) -> int:
        return self._end - self._start

    def tell(self) -> int:
        """Position relative to the start of this reader."""
        return self._pos - self._start

    def remaining(self) -> int:
        return self._end - self._pos

    def eof(self) -> bool:
        return self._pos >= self._end

    def expect_eof(self):
        """Raise if this bounded reader still has unread payload bytes."""
        if self._pos != self._end:
            raise StructuralError(
                f"Chunk {self._where()}: {self._end - self._pos} unread trailing bytes "
                f"(read {self.tell()} of {self.size})",
                chunk_id=self.chunk_id,
            )

    # ------------------------------------------------------------------
    # Chunk scanning

    def _parse_chunks(self) -> List[OgfChunk]:
        if self._chunks is not None:
            return self._chunks

        chunks = []
        pos = self._start
        while pos < self._end:
            if pos + CHUNK_HEADER_SIZE > self._end:
                raise StructuralError(
                    f"Chunk {self._where()}: truncated chunk header at offset {pos - self._start}",
                    chunk_id=self.chunk_id,
                )
            chunk_id, size = struct.unpack_from("<II", self._data, pos)
            payload = pos + CHUNK_HEADER_SIZE
            if payload + size > self._end:
                raise StructuralError(
                    f"Chunk {chunk_name(chunk_id)} declares {size} bytes but only "
                    f"{self._end - payload} remain in {self._where()}",
                    chunk_id=chunk_id,
                )
            chunks.append(OgfChunk(id=chunk_id, offset=payload, size=size))
            pos = payload + size

        self._chunks = chunks
        return chunks

    @property
    def chunks(self) -> List[OgfChunk]:
        """All sibling chunk records in this container."""
        return list(self._parse_chunks())

    def _lookup(self, chunk_id: int) -> Optional[OgfChunk]:
        self._requested.add(chunk_id)
        for chunk in self._parse_chunks():
            if chunk.id == chunk_id:
                return chunk
            if chunk.compressed and chunk.id & ~CHUNK_COMPRESSED == chunk_id:
                raise UnimplementedFormat(
                    f"Compressed chunk {chunk_name(chunk_id)} is not supported",
                    chunk_id=chunk_id,
                )
        return None

    def has_chunk(self, chunk_id: int) -> bool:
        return any(c.id & ~CHUNK_COMPRESSED == chunk_id for c in self._parse_chunks())

    def open_chunk(self, chunk_id: int) -> Optional["ChunkReader"]:
        """Open an optional chunk; returns None when it is absent."""
        chunk = self._lookup(chunk_id)
        if chunk is None:
            return None
        return ChunkReader(self._data, chunk.offset, chunk.end, chunk_id=chunk_id)

    def find_chunk(self, chunk_id: int) -> "ChunkReader":
        """Open a required chunk.

        Raises:
            StructuralError: If the chunk is absent
        """
        reader = self.open_chunk(chunk_id)
        if reader is None:
            raise StructuralError(
                f"Required chunk {chunk_name(chunk_id)} not found in {self._where()}",
                chunk_id=chunk_id,
            )
        return reader

    def iter_chunks(self) -> Iterator[Tuple[int, "ChunkReader"]]:
        """Yield sub-readers for chunk ids 0, 1, 2, ... up to the first gap."""
        chunk_id = 0
        while True:
            reader = self.open_chunk(chunk_id)
            if reader is None:
                return
            yield chunk_id, reader
            chunk_id += 1

    def unhandled_chunks(self) -> List[int]:
        """Ids of chunks present in this container that nobody asked for."""
        return [c.id for c in self._parse_chunks() if c.id not in self._requested]

    # ------------------------------------------------------------------
    # Primitives

    def read_raw(self, size: int) -> bytes:
        if size < 0 or self._pos + size > self._end:
            raise StructuralError(
                f"Chunk {self._where()}: read of {size} bytes at offset {self.tell()} "
                f"overruns {self.size}-byte payload",
                chunk_id=self.chunk_id,
            )
        data = bytes(self._data[self._pos:self._pos + size])
        self._pos += size
        return data

    def _unpack(self, fmt: str) -> tuple:
        size = struct.calcsize(fmt)
        if self._pos + size > self._end:
            raise StructuralError(
                f"Chunk {self._where()}: read of {size} bytes at offset {self.tell()} "
                f"overruns {self.size}-byte payload",
                chunk_id=self.chunk_id,
            )
        values = struct.unpack_from(fmt, self._data, self._pos)
        self._pos += size
        return values

    def read_struct(self, fmt: str) -> tuple:
        """Unpack a fixed struct layout at the current position."""
        return self._unpack(fmt)

    def read_u8(self) -> int:
        return self._unpack("<B")[0]

    def read_u16(self) -> int:
        return self._unpack("<H")[0]

    def read_s16(self) -> int:
        return self._unpack("<h")[0]

    def read_u32(self) -> int:
        return self._unpack("<I")[0]

    def read_s32(self) -> int:
        return self._unpack("<i")[0]

    def read_float(self) -> float:
        return self._unpack("<f")[0]

    def read_bool(self) -> bool:
        return self.read_u8() != 0

    def read_floats(self, count: int) -> Tuple[float, ...]:
        return self._unpack(f"<{count}f")

    def read_u16s(self, count: int) -> List[int]:
        return list(self._unpack(f"<{count}H"))

    def read_u32s(self, count: int) -> List[int]:
        return list(self._unpack(f"<{count}I"))

    def read_vector3(self) -> Vector3:
        return self._unpack("<3f")

    def read_vector2(self) -> Vector2:
        return self._unpack("<2f")

    def read_sz(self) -> str:
        """Read a zero-terminated string."""
        end = self._data.find(b"\x00", self._pos, self._end)
        if end < 0:
            raise StructuralError(
                f"Chunk {self._where()}: unterminated string at offset {self.tell()}",
                chunk_id=self.chunk_id,
            )
        value = bytes(self._data[self._pos:end]).decode(STRING_ENCODING, errors="replace")
        self._pos = end + 1
        return value

    def read_float_q16(self, min_value: float = 0.0, max_value: float = 1.0) -> float:
        """Read a 16-bit fixed point value mapped onto [min_value, max_value].

        Every step is rounded to single precision, so results match
        files written by the X-Ray tools bit for bit.
        """
        q = self.read_u16()
        scaled = f32(q * f32(f32(max_value) - f32(min_value)))
        return f32(f32(scaled / 65535.0) + f32(min_value))


class ChunkWriter:
    """Growable buffer that writes nested chunk records.

    Lengths are backpatched when a chunk is closed. Use the `chunk()`
    context manager so every opened chunk is closed on every exit path.
    """

    def __init__(self):
        self._buffer = bytearray()
        self._open_chunks: List[int] = []

    def tell(self) -> int:
        return len(self._buffer)

    @property
    def depth(self) -> int:
        """Number of chunks currently open."""
        return len(self._open_chunks)

    def getvalue(self) -> bytes:
        if self._open_chunks:
            raise StructuralError(f"Writer has {len(self._open_chunks)} unclosed chunks")
        return bytes(self._buffer)

    # ------------------------------------------------------------------
    # Chunks

    def open_chunk(self, chunk_id: int):
        self.write_u32(chunk_id)
        self._open_chunks.append(len(self._buffer))
        self.write_u32(0)  # size, patched in close_chunk()

    def close_chunk(self):
        if not self._open_chunks:
            raise StructuralError("close_chunk() without a matching open_chunk()")
        size_pos = self._open_chunks.pop()
        size = len(self._buffer) - size_pos - 4
        struct.pack_into("<I", self._buffer, size_pos, size)

    @contextmanager
    def chunk(self, chunk_id: int):
        self.open_chunk(chunk_id)
        try:
            yield self
        finally:
            self.close_chunk()

    def write_raw_chunk(self, chunk_id: int, data: bytes):
        with self.chunk(chunk_id):
            self.write_raw(data)

    def write_chunks(self, items: Iterable, write: Callable[["ChunkWriter", object], None]):
        """Write each item as its own chunk with ids 0, 1, 2, ..."""
        for chunk_id, item in enumerate(items):
            with self.chunk(chunk_id):
                write(self, item)

    # ------------------------------------------------------------------
    # Primitives

    def write_raw(self, data: bytes):
        self._buffer += data

    def write_u8(self, value: int):
        self._buffer += struct.pack("<B", value & 0xFF)

    def write_u16(self, value: int):
        self._buffer += struct.pack("<H", value & 0xFFFF)

    def write_s16(self, value: int):
        self._buffer += struct.pack("<h", value)

    def write_u32(self, value: int):
        self._buffer += struct.pack("<I", value & 0xFFFFFFFF)

    def write_s32(self, value: int):
        self._buffer += struct.pack("<i", value)

    def write_float(self, value: float):
        self._buffer += struct.pack("<f", value)

    def write_bool(self, value: bool):
        self.write_u8(1 if value else 0)

    def write_floats(self, values: Sequence[float]):
        self._buffer += struct.pack(f"<{len(values)}f", *values)

    def write_u16s(self, values: Sequence[int]):
        self._buffer += struct.pack(f"<{len(values)}H", *values)

    def write_u32s(self, values: Sequence[int]):
        self._buffer += struct.pack(f"<{len(values)}I", *values)

    def write_vector3(self, value: Vector3):
        self._buffer += struct.pack("<3f", *value)

    def write_vector2(self, value: Vector2):
        self._buffer += struct.pack("<2f", *value)

    def write_sz(self, value: str):
        self._buffer += value.encode(STRING_ENCODING) + b"\x00"

    def write_float_q16(self, value: float, min_value: float = 0.0, max_value: float = 1.0):
        """Write a value as 16-bit fixed point over [min_value, max_value].

        Rounds to the nearest step so that decode/encode is stable.
        """
        q = int(round((value - min_value) * 65535.0 / (max_value - min_value)))
        self.write_u16(min(max(q, 0), 65535))
