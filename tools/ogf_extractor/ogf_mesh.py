"""Vertex and index buffers of OGF visuals.

VERTICES chunk:
- vertex format (u32), vertex count (u32)
- FVF (0x112), 32 bytes per vertex: position (3f), normal (3f), uv (2f)
- FVF_1L (0x12071980), 36 bytes per vertex: position, normal, uv, bone (u32)
- FVF_2L (0x240E3300): two-bone vertices, not supported

INDICES chunk: count (u32) + u16 indices, three per triangle.

A visual may instead reference a slice of a shared vertex pool
(VCONTAINER chunk); its vertices are then a bounded view into that pool.
"""
import struct
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union

from ogf_chunks import ChunkReader, ChunkWriter
from ogf_errors import StructuralError, UnimplementedFormat
from ogf_types import Vector2, Vector3, VertexFormat

VERTEX_FORMATS = {
    VertexFormat.FVF: "<3f3f2f",
    VertexFormat.FVF_1L: "<3f3f2fI",
}


@dataclass
class VertexBuffer:
    """Vertex storage owned by a visual."""
    vertex_format: int = VertexFormat.FVF
    positions: List[Vector3] = field(default_factory=list)
    normals: List[Vector3] = field(default_factory=list)
    uvs: List[Vector2] = field(default_factory=list)
    bones: List[int] = field(default_factory=list)  # FVF_1L only

    def __len__(self) -> int:
        return len(self.positions)

    @property
    def size(self) -> int:
        return len(self.positions)

    @property
    def skinned(self) -> bool:
        return self.vertex_format == VertexFormat.FVF_1L

    def append(self, position: Vector3, normal: Vector3 = (0.0, 0.0, 1.0),
               uv: Vector2 = (0.0, 0.0), bone: Optional[int] = None):
        self.positions.append(tuple(position))
        self.normals.append(tuple(normal))
        self.uvs.append(tuple(uv))
        if bone is not None:
            self.bones.append(bone)

    @classmethod
    def read(cls, r: ChunkReader) -> "VertexBuffer":
        fmt = r.read_u32()
        count = r.read_u32()
        layout = VERTEX_FORMATS.get(fmt)
        if layout is None:
            if fmt == VertexFormat.FVF_2L:
                raise UnimplementedFormat("Two-bone vertex format (FVF_2L) is not supported")
            raise StructuralError(f"Unknown vertex format {fmt:#x}")

        vb = cls(vertex_format=fmt)
        stride = struct.calcsize(layout)
        data = r.read_raw(stride * count)
        for values in struct.iter_unpack(layout, data):
            vb.positions.append(values[0:3])
            vb.normals.append(values[3:6])
            vb.uvs.append(values[6:8])
            if fmt == VertexFormat.FVF_1L:
                vb.bones.append(values[8])
        return vb

    def write(self, w: ChunkWriter):
        layout = VERTEX_FORMATS.get(self.vertex_format)
        if layout is None:
            raise UnimplementedFormat(f"Cannot write vertex format {self.vertex_format:#x}")
        if self.skinned and len(self.bones) != len(self.positions):
            raise StructuralError(
                f"Skinned vertex buffer has {len(self.bones)} bone indices for "
                f"{len(self.positions)} vertices"
            )
        w.write_u32(self.vertex_format)
        w.write_u32(len(self.positions))
        for i in range(len(self.positions)):
            extra = (self.bones[i],) if self.skinned else ()
            w.write_raw(struct.pack(layout, *self.positions[i], *self.normals[i], *self.uvs[i], *extra))


class VertexBufferView:
    """Bounded, read-only window into a pooled vertex buffer."""

    def __init__(self, pool: VertexBuffer, offset: int, count: int):
        if offset + count > len(pool):
            raise StructuralError(
                f"Vertex range [{offset}, {offset + count}) exceeds pool of {len(pool)} vertices"
            )
        self.pool = pool
        self.offset = offset
        self.count = count

    def __len__(self) -> int:
        return self.count

    @property
    def size(self) -> int:
        return self.count

    @property
    def vertex_format(self) -> int:
        return self.pool.vertex_format

    @property
    def skinned(self) -> bool:
        return self.pool.skinned

    def _slice(self, values: list) -> list:
        return values[self.offset:self.offset + self.count]

    @property
    def positions(self) -> List[Vector3]:
        return self._slice(self.pool.positions)

    @property
    def normals(self) -> List[Vector3]:
        return self._slice(self.pool.normals)

    @property
    def uvs(self) -> List[Vector2]:
        return self._slice(self.pool.uvs)

    @property
    def bones(self) -> List[int]:
        return self._slice(self.pool.bones)


AnyVertexBuffer = Union[VertexBuffer, VertexBufferView]


@dataclass
class ExternalVertexRef:
    """VCONTAINER chunk: slice of a shared vertex pool."""
    pool_index: int
    offset: int
    count: int

    @classmethod
    def read(cls, r: ChunkReader) -> "ExternalVertexRef":
        pool_index, offset, count = r.read_u32s(3)
        return cls(pool_index=pool_index, offset=offset, count=count)

    def write(self, w: ChunkWriter):
        w.write_u32s([self.pool_index, self.offset, self.count])

    def resolve(self, pools: Sequence[VertexBuffer]) -> VertexBufferView:
        if self.pool_index >= len(pools):
            raise StructuralError(
                f"Vertex pool {self.pool_index} requested, only {len(pools)} available"
            )
        return VertexBufferView(pools[self.pool_index], self.offset, self.count)


def read_indices(r: ChunkReader) -> List[int]:
    return r.read_u16s(r.read_u32())


def write_indices(w: ChunkWriter, indices: Sequence[int]):
    w.write_u32(len(indices))
    w.write_u16s(indices)


def triangles(indices: Sequence[int]) -> List[Tuple[int, int, int]]:
    """Group a flat index list into triangles."""
    return [tuple(indices[i:i + 3]) for i in range(0, len(indices) - 2, 3)]
