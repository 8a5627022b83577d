"""Tests for OGF model decode/encode dispatch."""
import io
import json
import logging
import os
import struct
import subprocess
import sys
import tempfile
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ogf_chunks import ChunkReader
from ogf_errors import ConsistencyError, StructuralError, UnimplementedFormat
from ogf_filesystem import MemoryFileSystem
from ogf_mesh import VertexBuffer
from ogf_model import Model, MotionSource, OgfParser, OgfSerializer, load_ogf, save_ogf
from ogf_types import ChunkId, ModelFlags, ModelType, VertexFormat

TRIANGLE = [(0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (0.0, 1.0, 0.0)]
QUAD = [(0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (1.0, 1.0, 0.0), (0.0, 1.0, 0.0)]
QUAD_INDICES = [0, 1, 2, 0, 2, 3]
IDENTITY_OBB = struct.pack("<9f", 1, 0, 0, 0, 1, 0, 0, 0, 1) + struct.pack("<6f", 0, 0, 0, 0.1, 0.1, 0.1)


def chunk(chunk_id, payload):
    return struct.pack("<II", chunk_id, len(payload)) + payload


def header(model_type, version=3, reserved=0):
    return chunk(ChunkId.HEADER, struct.pack("<BBH", version, model_type, reserved))


def bbox():
    return chunk(ChunkId.BBOX, struct.pack("<6f", 0, 0, 0, 1, 1, 0))


def texture(name="", shader=""):
    return chunk(ChunkId.TEXTURE, name.encode() + b"\x00" + shader.encode() + b"\x00")


def vertices(positions, bones=None):
    fmt = VertexFormat.FVF if bones is None else VertexFormat.FVF_1L
    data = struct.pack("<II", fmt, len(positions))
    for i, p in enumerate(positions):
        data += struct.pack("<3f3f2f", *p, 0.0, 0.0, 1.0, p[0], p[1])
        if bones is not None:
            data += struct.pack("<I", bones[i])
    return chunk(ChunkId.VERTICES, data)


def indices(values):
    return chunk(ChunkId.INDICES, struct.pack(f"<I{len(values)}H", len(values), *values))


def create_normal_model(positions=TRIANGLE, index_values=(0, 1, 2), extra=b""):
    return (
        header(ModelType.NORMAL) + bbox() + texture()
        + vertices(positions) + indices(list(index_values)) + extra
    )


def create_skinned_model(model_type=ModelType.SKELETON_GEOMDEF_ST, bones=(0, 1, 1)):
    return header(model_type) + bbox() + texture("act\\stalker", "models\\model") + \
        vertices(TRIANGLE, list(bones)) + indices([0, 1, 2])


def loddata(min_vertices, vsplits, fix_faces):
    splits = b"".join(struct.pack("<HBB", *s) for s in vsplits)
    fixes = struct.pack(f"<I{len(fix_faces)}H", len(fix_faces), *fix_faces)
    payload = chunk(1, struct.pack("<II", min_vertices, min_vertices)) + chunk(2, splits) + chunk(3, fixes)
    return chunk(ChunkId.LODDATA, payload)


def sequence(chunk_id, models):
    return chunk(chunk_id, b"".join(chunk(i, m) for i, m in enumerate(models)))


def bone_names(bones):
    data = struct.pack("<I", len(bones))
    for name, parent in bones:
        data += name.encode() + b"\x00" + parent.encode() + b"\x00" + IDENTITY_OBB
    return chunk(ChunkId.S_BONE_NAMES, data)


def smparams():
    data = struct.pack("<H", 1) + b"default\x00" + struct.pack("<H2I", 2, 0, 1)
    data += struct.pack("<H", 1) + b"idle\x00" + struct.pack("<BHH4fB", 0, 0, 0, 1.0, 1.0, 2.0, 2.0, 0)
    return chunk(ChunkId.S_SMPARAMS, data)


def motion_keys(name="idle", num_bones=2):
    payload = name.encode() + b"\x00" + struct.pack("<I", 2)
    for bone in range(num_bones):
        for frame in range(2):
            payload += struct.pack("<4h3f", 0, 0, 0, 32767, 0.0, float(frame), float(bone))
    return chunk(ChunkId.S_MOTIONS, chunk(0, struct.pack("<I", 1)) + chunk(1, payload))


def create_skeleton_model(with_params=True):
    data = header(ModelType.SKELETON_ANIM) + bbox()
    data += sequence(ChunkId.CHILDREN, [create_skinned_model()])
    data += bone_names([("root", ""), ("spine", "root")])
    if with_params:
        data += smparams()
    data += motion_keys()
    return data


SIDECAR = b"""\
[partition]
default
[default]
root
spine
[cycle]
idle
[fx]
[idle]
motion = idle
part = --none--
speed = 1
power = 1
accrue = 2
falloff = 2
stop@end = off
"""


def test_decode_minimal_normal_model():
    model = OgfParser().parse(create_normal_model())

    assert model.model_type == ModelType.NORMAL
    assert model.flags == ModelFlags.NONE
    assert model.vertex_count == 3
    assert model.vertices.positions == TRIANGLE
    assert model.triangles == [(0, 1, 2)]
    assert model.texture == ""
    assert model.unhandled_chunks == []
    assert not model.has_transform


def test_normal_model_round_trip():
    data = create_normal_model()
    model = OgfParser().parse(data)

    encoded = OgfSerializer().serialize(model)
    again = OgfParser().parse(encoded)

    assert encoded == data
    assert again.vertices.positions == model.vertices.positions
    assert again.indices == model.indices


def test_unsupported_version():
    data = header(ModelType.NORMAL, version=4) + bbox()
    with pytest.raises(UnimplementedFormat):
        OgfParser().parse(data)


def test_reserved_header_field_must_be_zero():
    data = create_normal_model().replace(
        header(ModelType.NORMAL), header(ModelType.NORMAL, reserved=1)
    )
    with pytest.raises(StructuralError, match="Reserved"):
        OgfParser().parse(data)


def test_unknown_model_type():
    with pytest.raises(StructuralError, match="model type 5"):
        OgfParser().parse(header(5) + bbox())


def test_missing_header():
    with pytest.raises(StructuralError, match="HEADER"):
        OgfParser().parse(bbox())


def test_missing_required_chunk():
    data = header(ModelType.NORMAL) + bbox() + vertices(TRIANGLE)
    with pytest.raises(StructuralError, match="INDICES"):
        OgfParser().parse(data)


def test_trailing_bytes_in_chunk():
    data = header(ModelType.PARTICLE) + chunk(ChunkId.BBOX, struct.pack("<7f", 0, 0, 0, 1, 1, 1, 9))
    with pytest.raises(StructuralError, match="unread"):
        OgfParser().parse(data)


def test_unhandled_chunks_reported(caplog):
    data = create_normal_model(extra=chunk(0x20, b"\x01\x02"))

    with caplog.at_level(logging.WARNING):
        model = OgfParser().parse(data)

    assert model.unhandled_chunks == [0x20]
    assert "unhandled chunks" in caplog.text


def test_texture_l_takes_precedence():
    data = create_normal_model(extra=chunk(ChunkId.TEXTURE_L, struct.pack("<II", 3, 7)))

    model = OgfParser().parse(data)

    assert model.texture_l == 3
    assert model.shader_l == 7
    assert model.texture is None
    assert model.unhandled_chunks == [ChunkId.TEXTURE]


def test_bounding_sphere():
    data = create_normal_model(extra=chunk(ChunkId.BSPHERE, struct.pack("<4f", 0.5, 0.5, 0, 2)))

    model = OgfParser().parse(data)

    assert model.bsphere.center == (0.5, 0.5, 0.0)
    assert model.bsphere.radius == 2.0


def test_hierarchy_with_inline_children():
    data = header(ModelType.HIERARCHY) + bbox() + sequence(
        ChunkId.CHILDREN, [create_normal_model(), create_normal_model(QUAD, QUAD_INDICES)]
    )

    model = OgfParser().parse(data)

    assert model.hierarchical
    assert model.child_form == ChunkId.CHILDREN
    assert [c.vertex_count for c in model.children] == [3, 4]
    assert len(list(model.iter_models())) == 3
    assert OgfSerializer().serialize(model) == data


def test_hierarchy_with_child_ids():
    data = header(ModelType.HIERARCHY) + bbox() + chunk(ChunkId.CHILDREN_L, struct.pack("<3I", 2, 10, 11))

    model = OgfParser().parse(data)

    assert model.child_ids == [10, 11]
    assert model.children == []
    assert OgfSerializer().serialize(model) == data


def test_hierarchy_needs_exactly_one_child_form():
    no_children = header(ModelType.HIERARCHY) + bbox()
    with pytest.raises(StructuralError, match="none"):
        OgfParser().parse(no_children)

    two_forms = no_children + chunk(ChunkId.CHILDREN_L, struct.pack("<I", 0)) + sequence(ChunkId.CHILDREN, [])
    with pytest.raises(StructuralError, match="exactly one"):
        OgfParser().parse(two_forms)


def test_child_refs_loaded_through_file_system(caplog):
    refs = struct.pack("<I", 2) + b"part_a.ogf\x00" + b"missing.ogf\x00"
    data = header(ModelType.HIERARCHY) + bbox() + chunk(ChunkId.CHILD_REFS, refs)
    fs = MemoryFileSystem({"meshes/part_a.ogf": create_normal_model()})

    with caplog.at_level(logging.WARNING):
        model = OgfParser(fs=fs).parse(data, path="meshes/group.ogf")

    assert model.child_refs == ["part_a.ogf", "missing.ogf"]
    assert len(model.children) == 1
    assert model.children[0].path == "meshes/part_a.ogf"
    assert "missing.ogf" in caplog.text
    assert OgfSerializer().serialize(model) == data


def test_child_refs_need_file_system():
    refs = struct.pack("<I", 1) + b"part_a.ogf\x00"
    data = header(ModelType.HIERARCHY) + bbox() + chunk(ChunkId.CHILD_REFS, refs)
    with pytest.raises(StructuralError, match="file system"):
        OgfParser().parse(data, path="meshes/group.ogf")


def test_child_refs_resolved_through_alias():
    refs = struct.pack("<I", 2) + b"part_a.ogf\x00" + b"$level$wall.ogf\x00"
    data = header(ModelType.HIERARCHY) + bbox() + chunk(ChunkId.CHILD_REFS, refs)
    fs = MemoryFileSystem(
        {"data/meshes/props/part_a.ogf": create_normal_model(), "levels/l01/wall.ogf": create_normal_model()},
        aliases={"$game_meshes$": "data/meshes/", "$level$": "levels/l01/"},
    )

    model = OgfParser(fs=fs).parse(data, path="$game_meshes$props/group.ogf")

    assert [child.path for child in model.children] == [
        "$game_meshes$props/part_a.ogf",
        "$level$wall.ogf",
    ]
    assert OgfSerializer().serialize(model) == data


def test_child_refs_unknown_alias():
    refs = struct.pack("<I", 1) + b"part_a.ogf\x00"
    data = header(ModelType.HIERARCHY) + bbox() + chunk(ChunkId.CHILD_REFS, refs)
    fs = MemoryFileSystem({"meshes/part_a.ogf": create_normal_model()})

    with pytest.raises(StructuralError, match="Unknown path alias"):
        OgfParser(fs=fs).parse(data, path="$game_meshes$group.ogf")


def test_child_cannot_read_past_its_chunk():
    broken_child = header(ModelType.NORMAL) + bbox() + vertices(TRIANGLE) + \
        struct.pack("<II", ChunkId.INDICES, 64) + struct.pack("<I3H", 3, 0, 1, 2)
    data = header(ModelType.HIERARCHY) + bbox() + sequence(ChunkId.CHILDREN, [broken_child]) + b"\x00" * 64

    with pytest.raises(StructuralError):
        OgfParser().parse(data)


def test_proxied_vertices():
    data = header(ModelType.NORMAL) + bbox() + \
        chunk(ChunkId.VCONTAINER, struct.pack("<3I", 0, 1, 3)) + indices([0, 1, 2])

    model = OgfParser().parse(data)

    assert model.proxied
    assert model.vertex_count == 3
    assert model.vertices is None

    pool = VertexBuffer()
    for i in range(5):
        pool.append((float(i), 0.0, 0.0))
    model.set_ext_geom([pool])

    assert [p[0] for p in model.vertices.positions] == [1.0, 2.0, 3.0]
    assert OgfSerializer().serialize(model) == data

    with pytest.raises(StructuralError):
        model.set_ext_geom([])


def test_progressive_model():
    data = header(ModelType.PROGRESSIVE) + bbox() + texture() + vertices(QUAD) + \
        indices(QUAD_INDICES) + loddata(3, [(2, 1, 1)], [5])

    model = OgfParser().parse(data)

    assert model.progressive
    assert model.flags == ModelFlags.PROGRESSIVE
    assert model.lod.min_vertices == 3
    assert model.lod.base_indices == [0, 1, 2, 0, 2, 3]
    assert OgfSerializer().serialize(model) == data


def test_progressive_model_inconsistent_lod():
    data = header(ModelType.PROGRESSIVE) + bbox() + vertices(QUAD) + \
        indices(QUAD_INDICES) + loddata(3, [(2, 1, 2)], [5])
    with pytest.raises(ConsistencyError):
        OgfParser().parse(data)


def test_progressive_lod_uses_proxy_count():
    data = header(ModelType.PROGRESSIVE) + bbox() + \
        chunk(ChunkId.VCONTAINER, struct.pack("<3I", 0, 0, 4)) + \
        indices(QUAD_INDICES) + loddata(3, [(2, 1, 1)], [5])

    model = OgfParser().parse(data)

    assert len(model.lod.vsplits) == 1


def test_skinned_static_geometry():
    model = OgfParser().parse(create_skinned_model())

    assert model.vertices.skinned
    assert model.vertices.bones == [0, 1, 1]
    assert model.texture == "act\\stalker"
    assert model.shader == "models\\model"


def test_skinned_geometry_needs_one_bone_vertices():
    data = header(ModelType.SKELETON_GEOMDEF_ST) + bbox() + vertices(TRIANGLE) + indices([0, 1, 2])
    with pytest.raises(StructuralError, match="vertex format"):
        OgfParser().parse(data)


def test_skinned_progressive_geometry():
    data = header(ModelType.SKELETON_GEOMDEF_PM) + bbox() + vertices(QUAD, [0, 0, 1, 1]) + \
        indices(QUAD_INDICES) + loddata(4, [], [])

    model = OgfParser().parse(data)

    assert model.flags == ModelFlags.PROGRESSIVE
    assert model.lod.base_indices == QUAD_INDICES
    assert OgfSerializer().serialize(model) == data


def test_skeleton_model_with_inline_params():
    data = create_skeleton_model()

    model = OgfParser().parse(data)

    assert model.skeletal
    assert model.flags == ModelFlags.DYNAMIC
    assert model.motion_source == MotionSource.INLINE
    assert model.skeleton.root.name == "root"
    assert [m.name for m in model.motions] == ["idle"]
    idle = model.motions[0]
    assert idle.frame_end == 2
    assert [k.value for k in idle.bone_motions[1].envelopes[1].keys] == [0.0, 1.0]
    assert model.children[0].vertices.skinned
    assert model.unhandled_chunks == []
    assert OgfSerializer().serialize(model) == data


def test_skeleton_model_with_sidecar():
    data = create_skeleton_model(with_params=False)
    fs = MemoryFileSystem({"meshes/stalker.ltx": SIDECAR})

    model = OgfParser(fs=fs).parse(data, path="meshes/stalker.ogf")

    assert model.motion_source == MotionSource.SIDECAR
    assert model.motions[0].all_partitions
    assert model.skeleton.partitions[0].bones == ["root", "spine"]

    encoded = OgfSerializer().serialize(model)
    assert encoded == data
    assert not ChunkReader(encoded).has_chunk(ChunkId.S_SMPARAMS)


def test_skeleton_model_sidecar_follows_alias():
    data = create_skeleton_model(with_params=False)
    files = {"gamedata/meshes/actors/stalker.ltx": SIDECAR, "actors/stalker.ltx": b"[broken"}

    fs = MemoryFileSystem(files, aliases={"$game_meshes$": "gamedata/meshes/"})
    model = OgfParser(fs=fs).parse(data, path="$game_meshes$actors/stalker.ogf")
    assert model.skeleton.partitions[0].bones == ["root", "spine"]

    fs = MemoryFileSystem(files, aliases={"$game_meshes$": "mods/meshes/"})
    with pytest.raises(StructuralError, match="stalker.ltx"):
        OgfParser(fs=fs).parse(data, path="$game_meshes$actors/stalker.ogf")


def test_skeleton_model_missing_sidecar():
    data = create_skeleton_model(with_params=False)
    with pytest.raises(StructuralError, match="stalker.ltx"):
        OgfParser(fs=MemoryFileSystem()).parse(data, path="meshes/stalker.ogf")


def test_skeleton_model_without_file_system():
    with pytest.raises(StructuralError, match="sidecar"):
        OgfParser().parse(create_skeleton_model(with_params=False))


def test_skeleton_model_motion_count_mismatch():
    data = header(ModelType.SKELETON_ANIM) + bbox() + chunk(ChunkId.CHILDREN_L, struct.pack("<I", 0)) + \
        bone_names([("root", ""), ("spine", "root")]) + smparams() + \
        chunk(ChunkId.S_MOTIONS, chunk(0, struct.pack("<I", 2)))
    with pytest.raises(StructuralError):
        OgfParser().parse(data)


def test_detail_patch_unimplemented():
    data = header(ModelType.DETAIL_PATCH) + bbox() + chunk(ChunkId.DPATCH, b"\x00" * 4)
    with pytest.raises(UnimplementedFormat):
        OgfParser().parse(data)

    with pytest.raises(UnimplementedFormat):
        OgfSerializer().serialize(Model(model_type=ModelType.DETAIL_PATCH))


def test_cached_model():
    data = header(ModelType.CACHED) + bbox() + vertices(TRIANGLE) + indices([0, 1, 2])

    model = OgfParser().parse(data)

    assert model.vertex_count == 3
    assert OgfSerializer().serialize(model) == data


def test_cached_model_rejects_vcontainer():
    data = header(ModelType.CACHED) + bbox() + \
        chunk(ChunkId.VCONTAINER, struct.pack("<3I", 0, 0, 3)) + indices([0, 1, 2])
    with pytest.raises(StructuralError, match="VERTICES"):
        OgfParser().parse(data)


def test_particle_model():
    data = header(ModelType.PARTICLE) + bbox() + texture("fx\\spark", "particles\\add")

    model = OgfParser().parse(data)

    assert model.texture == "fx\\spark"
    assert model.vertices is None
    assert OgfSerializer().serialize(model) == data


def test_multi_lod_model():
    lods = [create_normal_model(QUAD, QUAD_INDICES), create_normal_model()]
    data = header(ModelType.PROGRESSIVE2) + bbox() + sequence(ChunkId.LODS, lods)

    model = OgfParser().parse(data)

    assert model.flags == ModelFlags.PROGRESSIVE
    assert [lod.vertex_count for lod in model.lods] == [4, 3]
    assert OgfSerializer().serialize(model) == data


def test_multi_lod_requires_lods_chunk():
    with pytest.raises(StructuralError, match="LODS"):
        OgfParser().parse(header(ModelType.PROGRESSIVE2) + bbox())


def test_serializer_needs_owned_vertices():
    with pytest.raises(StructuralError):
        OgfSerializer().serialize(Model(model_type=ModelType.NORMAL))


def test_load_ogf_sources():
    data = create_normal_model()

    assert load_ogf(data).vertex_count == 3
    assert load_ogf(io.BytesIO(data)).vertex_count == 3

    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, "tri.ogf")
        with open(path, "wb") as f:
            f.write(data)

        model = load_ogf(path)
        assert model.path == path

        out_path = os.path.join(tmpdir, "copy.ogf")
        assert save_ogf(model, out_path) == data
        with open(out_path, "rb") as f:
            assert f.read() == data


def test_to_dict():
    info = OgfParser().parse(create_skeleton_model()).to_dict()

    assert info["type"] == "SKELETON_ANIM"
    assert info["children"][0]["vertices"] == 3
    assert [b["name"] for b in info["bones"]] == ["root", "spine"]
    assert info["motions"][0]["name"] == "idle"
    json.dumps(info)


def test_cli_json():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, "tri.ogf")
        with open(path, "wb") as f:
            f.write(create_normal_model())

        result = subprocess.run(
            [sys.executable, "ogf_model.py", path, "--json"],
            capture_output=True,
            text=True,
            cwd=os.path.dirname(os.path.dirname(os.path.abspath(__file__))),
        )

        assert result.returncode == 0
        info = json.loads(result.stdout)
        assert info["vertices"] == 3
        assert info["triangles"] == 1


def test_cli_reports_failure():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, "bad.ogf")
        with open(path, "wb") as f:
            f.write(header(ModelType.NORMAL, version=2))

        result = subprocess.run(
            [sys.executable, "ogf_model.py", path],
            capture_output=True,
            text=True,
            cwd=os.path.dirname(os.path.dirname(os.path.abspath(__file__))),
        )

        assert result.returncode == 1
        assert "Failed:" in result.stderr


def test_parse_file_through_alias():
    fs = MemoryFileSystem({"gamedata/meshes/tri.ogf": create_normal_model()},
                          aliases={"$game_meshes$": "gamedata/meshes/"})

    model = OgfParser(fs=fs).parse_file("$game_meshes$tri.ogf")

    assert model.path == "$game_meshes$tri.ogf"
    assert model.vertex_count == 3
    with pytest.raises(FileNotFoundError):
        OgfParser(fs=fs).parse_file("$game_meshes$missing.ogf")


def test_cli_alias_input():
    with tempfile.TemporaryDirectory() as tmpdir:
        with open(os.path.join(tmpdir, "tri.ogf"), "wb") as f:
            f.write(create_normal_model())

        result = subprocess.run(
            [sys.executable, "ogf_model.py", "$meshes$tri.ogf", "--alias", f"$meshes$={tmpdir}", "--json"],
            capture_output=True,
            text=True,
            cwd=os.path.dirname(os.path.dirname(os.path.abspath(__file__))),
        )

        assert result.returncode == 0
        assert json.loads(result.stdout)["vertices"] == 3
