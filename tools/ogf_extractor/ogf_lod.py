"""Progressive mesh (Hoppe vertex split) LOD data.

The LODDATA chunk nests three sub-chunks:
- HOPPE_HEADER: min_vertices (u32), min_indices (u32)
- VERT_SPLITS: one 4-byte record per vertex beyond min_vertices:
  vert (u16), new_tris (u8), fix_faces (u8)
- FIX_FACES: count (u32) + index-buffer slots (u16 each)

Replaying the splits over a copy of the full index buffer yields the base
LOD index buffer, usable when only the first min_vertices are resident.
"""
import struct
from dataclasses import dataclass, field
from typing import List, Sequence

from ogf_chunks import ChunkReader, ChunkWriter
from ogf_errors import ConsistencyError
from ogf_types import LodChunkId

VSPLIT_FORMAT = "<HBB"


@dataclass
class VSplit:
    """One vertex split record."""
    vert: int
    new_tris: int
    fix_faces: int


@dataclass
class ProgressiveLod:
    min_vertices: int = 0
    min_indices: int = 0
    vsplits: List[VSplit] = field(default_factory=list)
    fix_faces: List[int] = field(default_factory=list)
    base_indices: List[int] = field(default_factory=list)


def build_base_indices(indices: Sequence[int], vertex_count: int, min_vertices: int,
                       vsplits: Sequence[VSplit], fix_faces: Sequence[int]) -> List[int]:
    """Replay the vertex split log against the full index buffer.

    Args:
        indices: Full-resolution triangle indices
        vertex_count: Total vertex count V
        min_vertices: Base LOD vertex count M
        vsplits: V - M split records
        fix_faces: Flat index-buffer slots, consumed in split order

    Returns:
        Base LOD index buffer

    Raises:
        ConsistencyError: If the split log does not exactly cover
            fix_faces or does not end at vertex_count
    """
    if len(vsplits) != vertex_count - min_vertices:
        raise ConsistencyError(
            f"Expected {vertex_count - min_vertices} vertex splits "
            f"({vertex_count} vertices, {min_vertices} in base LOD), got {len(vsplits)}"
        )
    total_fixes = sum(split.fix_faces for split in vsplits)
    if total_fixes != len(fix_faces):
        raise ConsistencyError(
            f"Vertex splits fix {total_fixes} faces but {len(fix_faces)} fix-face entries are stored"
        )

    base = list(indices)
    fix_idx = 0
    active_vertices = min_vertices
    for split in vsplits:
        for slot in fix_faces[fix_idx:fix_idx + split.fix_faces]:
            if slot >= len(base):
                raise ConsistencyError(
                    f"Fix-face slot {slot} is outside the {len(base)}-entry index buffer"
                )
            base[slot] = active_vertices
        fix_idx += split.fix_faces
        active_vertices += 1

    if active_vertices != vertex_count:
        raise ConsistencyError(
            f"Progressive mesh replay ended at {active_vertices} vertices, expected {vertex_count}"
        )
    return base


def read_lod_data(r: ChunkReader, indices: Sequence[int], vertex_count: int) -> ProgressiveLod:
    """Decode a LODDATA chunk and reconstruct the base LOD indices."""
    lod = ProgressiveLod()

    s = r.find_chunk(LodChunkId.HOPPE_HEADER)
    lod.min_vertices = s.read_u32()
    lod.min_indices = s.read_u32()
    s.expect_eof()

    if lod.min_vertices > vertex_count:
        raise ConsistencyError(
            f"Base LOD needs {lod.min_vertices} vertices but the model has {vertex_count}"
        )

    s = r.find_chunk(LodChunkId.VERT_SPLITS)
    num_vsplits = vertex_count - lod.min_vertices
    for _ in range(num_vsplits):
        vert = s.read_u16()
        new_tris = s.read_u8()
        fix_faces = s.read_u8()
        lod.vsplits.append(VSplit(vert=vert, new_tris=new_tris, fix_faces=fix_faces))
    s.expect_eof()

    s = r.find_chunk(LodChunkId.FIX_FACES)
    lod.fix_faces = s.read_u16s(s.read_u32())
    s.expect_eof()

    lod.base_indices = build_base_indices(
        indices, vertex_count, lod.min_vertices, lod.vsplits, lod.fix_faces
    )
    return lod


def write_lod_data(w: ChunkWriter, lod: ProgressiveLod):
    with w.chunk(LodChunkId.HOPPE_HEADER):
        w.write_u32(lod.min_vertices)
        w.write_u32(lod.min_indices)
    with w.chunk(LodChunkId.VERT_SPLITS):
        for split in lod.vsplits:
            w.write_raw(struct.pack(VSPLIT_FORMAT, split.vert, split.new_tris, split.fix_faces))
    with w.chunk(LodChunkId.FIX_FACES):
        w.write_u32(len(lod.fix_faces))
        w.write_u16s(lod.fix_faces)
