"""Tests for OGF vertex and index buffers."""
import struct
import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ogf_chunks import ChunkReader, ChunkWriter
from ogf_errors import StructuralError, UnimplementedFormat
from ogf_mesh import ExternalVertexRef, VertexBuffer, VertexBufferView, read_indices, triangles
from ogf_types import VertexFormat


def create_vertices(fmt, vertices):
    """Pack a VERTICES payload.

    Args:
        fmt: Vertex format tag
        vertices: List of (position, normal, uv[, bone]) tuples
    """
    data = struct.pack("<II", fmt, len(vertices))
    for v in vertices:
        data += struct.pack("<3f3f2f", *v[0], *v[1], *v[2])
        if fmt == VertexFormat.FVF_1L:
            data += struct.pack("<I", v[3])
    return data


def test_read_static_vertices():
    data = create_vertices(VertexFormat.FVF, [
        ((0, 0, 0), (0, 0, 1), (0, 0)),
        ((1, 0, 0), (0, 0, 1), (1, 0)),
    ])
    r = ChunkReader(data)

    vb = VertexBuffer.read(r)

    assert r.eof()
    assert len(vb) == 2
    assert not vb.skinned
    assert vb.positions[1] == (1.0, 0.0, 0.0)
    assert vb.uvs[1] == (1.0, 0.0)
    assert vb.bones == []


def test_read_skinned_vertices():
    data = create_vertices(VertexFormat.FVF_1L, [
        ((0, 0, 0), (0, 1, 0), (0.5, 0.5), 3),
    ])

    vb = VertexBuffer.read(ChunkReader(data))

    assert vb.skinned
    assert vb.bones == [3]


def test_two_bone_vertices_unimplemented():
    data = struct.pack("<II", VertexFormat.FVF_2L, 0)
    with pytest.raises(UnimplementedFormat):
        VertexBuffer.read(ChunkReader(data))


def test_unknown_vertex_format():
    data = struct.pack("<II", 0x1234, 0)
    with pytest.raises(StructuralError):
        VertexBuffer.read(ChunkReader(data))


def test_truncated_vertex_data():
    data = struct.pack("<II", VertexFormat.FVF, 2) + b"\x00" * 32
    with pytest.raises(StructuralError):
        VertexBuffer.read(ChunkReader(data))


def test_vertex_buffer_round_trip():
    data = create_vertices(VertexFormat.FVF_1L, [
        ((0, 0, 0), (0, 0, 1), (0, 0), 0),
        ((0.5, 1.5, -2), (1, 0, 0), (0.25, 0.75), 7),
    ])
    vb = VertexBuffer.read(ChunkReader(data))

    w = ChunkWriter()
    vb.write(w)

    assert w.getvalue() == data


def test_skinned_buffer_needs_bone_per_vertex():
    vb = VertexBuffer(vertex_format=VertexFormat.FVF_1L)
    vb.append((0, 0, 0))
    with pytest.raises(StructuralError):
        vb.write(ChunkWriter())


def test_vertex_view_slices_pool():
    pool = VertexBuffer()
    for i in range(5):
        pool.append((float(i), 0.0, 0.0))

    view = ExternalVertexRef(pool_index=0, offset=1, count=3).resolve([pool])

    assert isinstance(view, VertexBufferView)
    assert len(view) == 3
    assert [p[0] for p in view.positions] == [1.0, 2.0, 3.0]
    assert view.vertex_format == VertexFormat.FVF


def test_vertex_view_out_of_range():
    pool = VertexBuffer()
    pool.append((0.0, 0.0, 0.0))

    with pytest.raises(StructuralError):
        ExternalVertexRef(pool_index=0, offset=0, count=2).resolve([pool])
    with pytest.raises(StructuralError):
        ExternalVertexRef(pool_index=1, offset=0, count=1).resolve([pool])


def test_read_indices_and_triangles():
    data = struct.pack("<I6H", 6, 0, 1, 2, 0, 2, 3)

    indices = read_indices(ChunkReader(data))

    assert indices == [0, 1, 2, 0, 2, 3]
    assert triangles(indices) == [(0, 1, 2), (0, 2, 3)]
