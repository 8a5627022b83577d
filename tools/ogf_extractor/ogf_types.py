"""Type definitions for the OGF (version 3) model format."""
import struct
from dataclasses import dataclass
from enum import IntEnum, IntFlag
from typing import Tuple

Vector3 = Tuple[float, float, float]
Vector2 = Tuple[float, float]

OGF3_VERSION = 3

# High bit of a chunk id marks a compressed chunk
CHUNK_COMPRESSED = 0x80000000
CHUNK_HEADER_SIZE = 8  # id(4) + size(4)


class ChunkId(IntEnum):
    """Top-level chunk ids of an OGF v3 container."""
    HEADER = 0x1
    TEXTURE = 0x2
    TEXTURE_L = 0x3
    CHILD_REFS = 0x5
    BBOX = 0x6
    VERTICES = 0x7
    INDICES = 0x8
    LODDATA = 0x9
    VCONTAINER = 0xA
    BSPHERE = 0xB
    CHILDREN_L = 0xC
    S_BONE_NAMES = 0xD
    S_MOTIONS = 0xE
    DPATCH = 0xF
    LODS = 0x10
    CHILDREN = 0x11
    S_SMPARAMS = 0x12


class LodChunkId(IntEnum):
    """Sub-chunks of the LODDATA chunk (Hoppe progressive mesh)."""
    HOPPE_HEADER = 0x1
    VERT_SPLITS = 0x2
    FIX_FACES = 0x3


class ModelType(IntEnum):
    """Model type tag stored in the header chunk."""
    NORMAL = 0x0
    HIERARCHY = 0x1
    PROGRESSIVE = 0x2
    SKELETON_GEOMDEF_PM = 0x3
    SKELETON_ANIM = 0x4
    DETAIL_PATCH = 0x6
    SKELETON_GEOMDEF_ST = 0x7
    CACHED = 0x8
    PARTICLE = 0x9
    PROGRESSIVE2 = 0xA


class VertexFormat(IntEnum):
    """Vertex layouts found in VERTICES chunks."""
    FVF = 0x112            # D3DFVF_XYZ | D3DFVF_NORMAL | D3DFVF_TEX1
    FVF_1L = 0x12071980    # one bone per vertex
    FVF_2L = 0x240E3300    # two bones per vertex


class ModelFlags(IntFlag):
    NONE = 0
    PROGRESSIVE = 0x1
    DYNAMIC = 0x2


@dataclass
class OgfHeader:
    """OGF header chunk."""

    version: int
    model_type: int
    reserved: int = 0

    STRUCT_FORMAT = "<BBH"
    STRUCT_SIZE = struct.calcsize(STRUCT_FORMAT)


@dataclass
class OgfChunk:
    """One chunk record inside a container.

    `offset` is the absolute position of the payload in the underlying
    buffer, `size` the declared payload length.
    """

    id: int
    offset: int
    size: int

    @property
    def end(self) -> int:
        return self.offset + self.size

    @property
    def compressed(self) -> bool:
        return bool(self.id & CHUNK_COMPRESSED)


@dataclass
class BoundingBox:
    min: Vector3 = (0.0, 0.0, 0.0)
    max: Vector3 = (0.0, 0.0, 0.0)


@dataclass
class BoundingSphere:
    center: Vector3 = (0.0, 0.0, 0.0)
    radius: float = 0.0


def f32(value: float) -> float:
    """Round a Python float to the nearest IEEE 754 single."""
    return struct.unpack("<f", struct.pack("<f", value))[0]


def chunk_name(chunk_id: int) -> str:
    """Readable name for a top-level chunk id (used in error messages)."""
    try:
        return f"{ChunkId(chunk_id).name}({chunk_id:#x})"
    except ValueError:
        return f"{chunk_id:#x}"
