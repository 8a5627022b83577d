#!/usr/bin/env python3
"""OGF v3 model tree: decode dispatcher, mirrored encoder and inspection CLI.

Usage:
    python ogf_model.py <file.ogf> [--hierarchy] [--json]

Every model starts with a HEADER chunk (version, model type, reserved).
The model type selects which chunks follow:

    NORMAL               render visual + VCONTAINER|VERTICES + INDICES
    HIERARCHY            render visual + one of CHILDREN_L/CHILDREN/CHILD_REFS
    PROGRESSIVE          NORMAL + LODDATA
    SKELETON_ANIM        HIERARCHY + S_BONE_NAMES + [S_SMPARAMS] + S_MOTIONS
    SKELETON_GEOMDEF_PM  skinned VERTICES + PROGRESSIVE
    SKELETON_GEOMDEF_ST  skinned VERTICES + NORMAL
    DETAIL_PATCH         render visual + DPATCH (not supported)
    CACHED               render visual + VERTICES + INDICES
    PARTICLE             render visual
    PROGRESSIVE2         render visual + LODS

The render visual is BBOX plus optional BSPHERE and TEXTURE_L or TEXTURE.
"""
import argparse
import json
import logging
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from ltx_config import LtxConfig, TextConfig
from ogf_chunks import ChunkReader, ChunkWriter
from ogf_errors import StructuralError, UnimplementedFormat
from ogf_filesystem import FileSystem, LocalFileSystem, expand_path, split_alias, split_path
from ogf_lod import ProgressiveLod, read_lod_data, write_lod_data
from ogf_mesh import (
    AnyVertexBuffer,
    ExternalVertexRef,
    VertexBuffer,
    read_indices,
    triangles,
    write_indices,
)
from ogf_motion import (
    Motion,
    read_motion_keys,
    read_sidecar_params,
    read_smparams,
    write_motion_keys,
    write_smparams,
)
from ogf_skeleton import Skeleton, read_bone_names, write_bone_names
from ogf_types import (
    OGF3_VERSION,
    BoundingBox,
    BoundingSphere,
    ChunkId,
    ModelFlags,
    ModelType,
    OgfHeader,
    VertexFormat,
    chunk_name,
)

logger = logging.getLogger(__name__)

CHILD_FORMS = (ChunkId.CHILDREN_L, ChunkId.CHILDREN, ChunkId.CHILD_REFS)

MODEL_FLAGS = {
    ModelType.PROGRESSIVE: ModelFlags.PROGRESSIVE,
    ModelType.SKELETON_ANIM: ModelFlags.DYNAMIC,
    ModelType.SKELETON_GEOMDEF_PM: ModelFlags.PROGRESSIVE,
    ModelType.PROGRESSIVE2: ModelFlags.PROGRESSIVE,
}


class MotionSource(Enum):
    """Where the motion parameters of a skeletal model came from."""
    INLINE = "inline"
    SIDECAR = "sidecar"


@dataclass
class Model:
    """One decoded OGF visual, possibly owning child and LOD models."""
    version: int = OGF3_VERSION
    model_type: int = ModelType.NORMAL
    flags: int = ModelFlags.NONE
    bbox: BoundingBox = field(default_factory=BoundingBox)
    bsphere: Optional[BoundingSphere] = None
    texture: Optional[str] = None
    shader: Optional[str] = None
    texture_l: Optional[int] = None
    shader_l: Optional[int] = None
    vertices: Optional[AnyVertexBuffer] = None
    vertex_ref: Optional[ExternalVertexRef] = None
    indices: List[int] = field(default_factory=list)
    lod: Optional[ProgressiveLod] = None
    children: List["Model"] = field(default_factory=list)
    child_ids: List[int] = field(default_factory=list)
    child_refs: List[str] = field(default_factory=list)
    child_form: Optional[ChunkId] = None
    lods: List["Model"] = field(default_factory=list)
    skeleton: Optional[Skeleton] = None
    motions: List[Motion] = field(default_factory=list)
    motion_source: Optional[MotionSource] = None
    # Local-to-parent transform, row-major 4x4; v3 files never store one
    transform: Optional[List[float]] = None
    path: Optional[str] = None
    unhandled_chunks: List[int] = field(default_factory=list)

    @property
    def has_transform(self) -> bool:
        return self.transform is not None

    @property
    def hierarchical(self) -> bool:
        return self.model_type in (ModelType.HIERARCHY, ModelType.SKELETON_ANIM)

    @property
    def skeletal(self) -> bool:
        return self.model_type == ModelType.SKELETON_ANIM

    @property
    def progressive(self) -> bool:
        return self.model_type in (ModelType.PROGRESSIVE, ModelType.SKELETON_GEOMDEF_PM)

    @property
    def proxied(self) -> bool:
        return self.vertex_ref is not None

    @property
    def vertex_count(self) -> int:
        if self.vertices is not None:
            return len(self.vertices)
        if self.vertex_ref is not None:
            return self.vertex_ref.count
        return 0

    @property
    def triangles(self) -> List[Tuple[int, int, int]]:
        return triangles(self.indices)

    @property
    def has_geometry(self) -> bool:
        return self.vertices is not None and len(self.vertices) > 0 and len(self.indices) > 0

    def set_ext_geom(self, pools: Sequence[VertexBuffer]):
        """Bind a proxied model to its slice of a shared vertex pool."""
        if self.vertex_ref is not None:
            self.vertices = self.vertex_ref.resolve(pools)

    def iter_models(self) -> Iterator["Model"]:
        """Yield this model and every child and LOD model, depth first."""
        yield self
        for child in self.children:
            yield from child.iter_models()
        for lod in self.lods:
            yield from lod.iter_models()

    def to_dict(self) -> Dict:
        """Summary of the model tree for JSON output."""
        info = {
            "path": self.path,
            "version": self.version,
            "type": ModelType(self.model_type).name,
            "flags": int(self.flags),
            "bbox": {"min": list(self.bbox.min), "max": list(self.bbox.max)},
            "texture": self.texture,
            "shader": self.shader,
            "vertices": self.vertex_count,
            "triangles": len(self.indices) // 3,
        }
        if self.bsphere is not None:
            info["bsphere"] = {"center": list(self.bsphere.center), "radius": self.bsphere.radius}
        if self.texture_l is not None:
            info["texture_l"] = self.texture_l
            info["shader_l"] = self.shader_l
        if self.vertex_ref is not None:
            info["vcontainer"] = {
                "pool": self.vertex_ref.pool_index,
                "offset": self.vertex_ref.offset,
                "count": self.vertex_ref.count,
            }
        if self.lod is not None:
            info["lod"] = {
                "min_vertices": self.lod.min_vertices,
                "min_indices": self.lod.min_indices,
                "vsplits": len(self.lod.vsplits),
                "fix_faces": len(self.lod.fix_faces),
            }
        if self.child_ids:
            info["child_ids"] = list(self.child_ids)
        if self.child_refs:
            info["child_refs"] = list(self.child_refs)
        if self.children:
            info["children"] = [child.to_dict() for child in self.children]
        if self.lods:
            info["lods"] = [lod.to_dict() for lod in self.lods]
        if self.skeleton is not None:
            info["bones"] = self.skeleton.to_dict_list()
            info["partitions"] = [
                {"name": p.name, "bones": list(p.bones)} for p in self.skeleton.partitions
            ]
        if self.motions:
            info["motion_source"] = self.motion_source.value if self.motion_source else None
            info["motions"] = [
                {
                    "name": m.name,
                    "type": m.motion_type.name,
                    "target": m.bone_or_part,
                    "speed": m.speed,
                    "power": m.power,
                    "accrue": m.accrue,
                    "falloff": m.falloff,
                    "stop_at_end": m.stop_at_end,
                    "frames": m.frame_end - m.frame_start,
                }
                for m in self.motions
            ]
        if self.unhandled_chunks:
            info["unhandled_chunks"] = [chunk_name(c) for c in self.unhandled_chunks]
        return info

    def print_hierarchy(self, indent: int = 0):
        """Print the model tree to console."""
        prefix = "  " * indent
        name = Path(self.path).name if self.path else "<model>"
        print(f"{prefix}{name}: {ModelType(self.model_type).name}, "
              f"{self.vertex_count} vertices, {len(self.indices) // 3} triangles")
        if self.texture:
            print(f"{prefix}  texture: {self.texture} ({self.shader})")
        if self.skeleton is not None:
            print(f"{prefix}  {self.skeleton.bone_count} bones, {len(self.motions)} motions")
        for child in self.children:
            child.print_hierarchy(indent + 1)
        for level, lod in enumerate(self.lods):
            print(f"{prefix}  lod {level}:")
            lod.print_hierarchy(indent + 2)


class OgfParser:
    """Decodes OGF v3 byte streams into Model trees.

    External files (CHILD_REFS children, LTX motion sidecars) are read
    through the file-system collaborator. Without one, models needing
    them fail with StructuralError; everything else decodes in memory.
    """

    def __init__(self, fs: Optional[FileSystem] = None,
                 config_factory: Callable[[bytes], TextConfig] = LtxConfig.from_bytes):
        self.fs = fs
        self.config_factory = config_factory

    def parse(self, data: bytes, path: Optional[str] = None) -> Model:
        """Decode a whole OGF file.

        Args:
            data: File contents
            path: Location of the file, used to find sibling files

        Returns:
            Fully assembled Model

        Raises:
            StructuralError: Missing/unexpected chunk or bad reference
            ConsistencyError: Self-contradicting data
            UnimplementedFormat: Recognised but unsupported sub-format
        """
        return self._load(ChunkReader(bytes(data)), path)

    def parse_file(self, path: Union[str, Path]) -> Model:
        """Read and decode a file; `$alias$` paths need a file system."""
        path = str(path)
        if self.fs is None:
            with open(path, "rb") as f:
                data = f.read()
        else:
            real_path = expand_path(self.fs, path)
            data = self.fs.open_read(real_path)
            if data is None:
                raise FileNotFoundError(f"No such file: {real_path}")
        return self.parse(data, path)

    def _load(self, r: ChunkReader, path: Optional[str]) -> Model:
        model = Model(path=path)

        s = r.find_chunk(ChunkId.HEADER)
        self._load_header(s, model)
        s.expect_eof()

        logger.debug("Loading %s model %s", model.model_type.name, path or "<memory>")
        self._LOADERS[model.model_type](self, r, model)
        model.flags = MODEL_FLAGS.get(model.model_type, ModelFlags.NONE)

        model.unhandled_chunks = r.unhandled_chunks()
        if model.unhandled_chunks:
            logger.warning(
                "%s: unhandled chunks %s",
                path or "<memory>",
                ", ".join(chunk_name(c) for c in model.unhandled_chunks),
            )
        return model

    def _load_header(self, r: ChunkReader, model: Model):
        header = OgfHeader(*r.read_struct(OgfHeader.STRUCT_FORMAT))
        if header.version != OGF3_VERSION:
            raise UnimplementedFormat(
                f"OGF version {header.version} is not supported (expected {OGF3_VERSION})",
                chunk_id=ChunkId.HEADER,
            )
        try:
            model_type = ModelType(header.model_type)
        except ValueError:
            raise StructuralError(
                f"Unknown model type {header.model_type}", chunk_id=ChunkId.HEADER
            ) from None
        if header.reserved != 0:
            raise StructuralError(
                f"Reserved header field is {header.reserved:#x}, expected 0",
                chunk_id=ChunkId.HEADER,
            )
        model.version = header.version
        model.model_type = model_type

    # ------------------------------------------------------------------
    # Shared pieces

    def _load_render_visual(self, r: ChunkReader, model: Model):
        s = r.find_chunk(ChunkId.BBOX)
        model.bbox = BoundingBox(min=s.read_vector3(), max=s.read_vector3())
        s.expect_eof()

        s = r.open_chunk(ChunkId.BSPHERE)
        if s is not None:
            model.bsphere = BoundingSphere(center=s.read_vector3(), radius=s.read_float())
            s.expect_eof()

        s = r.open_chunk(ChunkId.TEXTURE_L)
        if s is not None:
            model.texture_l, model.shader_l = s.read_u32s(2)
            s.expect_eof()
            return
        s = r.open_chunk(ChunkId.TEXTURE)
        if s is not None:
            model.texture = s.read_sz()
            model.shader = s.read_sz()
            s.expect_eof()

    def _load_vertices(self, r: ChunkReader, model: Model):
        s = r.find_chunk(ChunkId.VERTICES)
        model.vertices = VertexBuffer.read(s)
        s.expect_eof()

    def _load_indices(self, r: ChunkReader, model: Model):
        s = r.find_chunk(ChunkId.INDICES)
        model.indices = read_indices(s)
        s.expect_eof()

    def _load_sequence(self, r: ChunkReader, path: Optional[str]) -> List[Model]:
        models = [self._load(s, path) for _, s in r.iter_chunks()]
        extra = r.unhandled_chunks()
        if extra:
            logger.warning(
                "%s: chunks after the %d sequential models ignored: %s",
                chunk_name(r.chunk_id), len(models), ", ".join(f"{c:#x}" for c in extra),
            )
        return models

    def _load_child_refs(self, r: ChunkReader, model: Model):
        if self.fs is None:
            raise StructuralError(
                "Child file references need a file system", chunk_id=ChunkId.CHILD_REFS
            )
        folder, _, _ = split_path(model.path or "")
        for _ in range(r.read_u32()):
            name = r.read_sz()
            model.child_refs.append(name)
            child_path = name if split_alias(name) else folder + name
            data = self.fs.open_read(expand_path(self.fs, child_path))
            if data is None:
                logger.warning("Child model %s not found, skipped", child_path)
                continue
            model.children.append(self._load(ChunkReader(bytes(data)), child_path))

    def _open_sidecar(self, model: Model) -> TextConfig:
        if self.fs is None or not model.path:
            raise StructuralError(
                "Motion parameters are not embedded and no file system or path "
                "is available to read the sidecar",
                chunk_id=ChunkId.S_SMPARAMS,
            )
        folder, name, _ = split_path(model.path)
        ltx_path = f"{folder}{name}.ltx"
        data = self.fs.open_read(expand_path(self.fs, ltx_path))
        if data is None:
            raise StructuralError(f"Cannot open motion sidecar {ltx_path}", chunk_id=ChunkId.S_SMPARAMS)
        logger.debug("Reading motion parameters from %s", ltx_path)
        return self.config_factory(data)

    def _check_skinned_vertices(self, r: ChunkReader):
        fmt = r.find_chunk(ChunkId.VERTICES).read_u32()
        if fmt == VertexFormat.FVF_2L:
            raise UnimplementedFormat(
                "Two-bone vertex format (FVF_2L) is not supported", chunk_id=ChunkId.VERTICES
            )
        if fmt != VertexFormat.FVF_1L:
            raise StructuralError(
                f"Skinned geometry needs vertex format {VertexFormat.FVF_1L:#x}, found {fmt:#x}",
                chunk_id=ChunkId.VERTICES,
            )

    # ------------------------------------------------------------------
    # Per-type sequences

    def _load_visual(self, r: ChunkReader, model: Model):
        self._load_render_visual(r, model)
        s = r.open_chunk(ChunkId.VCONTAINER)
        if s is not None:
            model.vertex_ref = ExternalVertexRef.read(s)
            s.expect_eof()
        else:
            self._load_vertices(r, model)
        self._load_indices(r, model)

    def _load_hierarchy_visual(self, r: ChunkReader, model: Model):
        self._load_render_visual(r, model)

        forms = [chunk_id for chunk_id in CHILD_FORMS if r.has_chunk(chunk_id)]
        if len(forms) != 1:
            found = ", ".join(chunk_name(c) for c in forms) or "none"
            raise StructuralError(
                f"Hierarchy visual needs exactly one of CHILDREN_L, CHILDREN, CHILD_REFS; found {found}"
            )
        model.child_form = forms[0]

        s = r.find_chunk(model.child_form)
        if model.child_form == ChunkId.CHILDREN_L:
            model.child_ids = s.read_u32s(s.read_u32())
            s.expect_eof()
        elif model.child_form == ChunkId.CHILDREN:
            model.children = self._load_sequence(s, model.path)
        else:
            self._load_child_refs(s, model)
            s.expect_eof()

    def _load_progressive_fixed_visual(self, r: ChunkReader, model: Model):
        self._load_visual(r, model)
        s = r.find_chunk(ChunkId.LODDATA)
        model.lod = read_lod_data(s, model.indices, model.vertex_count)

    def _load_kinematics(self, r: ChunkReader, model: Model):
        self._load_hierarchy_visual(r, model)

        s = r.find_chunk(ChunkId.S_BONE_NAMES)
        model.skeleton = read_bone_names(s)
        s.expect_eof()

        s = r.open_chunk(ChunkId.S_SMPARAMS)
        if s is not None:
            model.motions = read_smparams(s, model.skeleton)
            s.expect_eof()
            model.motion_source = MotionSource.INLINE
        else:
            model.motions = read_sidecar_params(self._open_sidecar(model), model.skeleton)
            model.motion_source = MotionSource.SIDECAR

        read_motion_keys(r.find_chunk(ChunkId.S_MOTIONS), model.motions, model.skeleton)

    def _load_skeletonx_pm(self, r: ChunkReader, model: Model):
        self._check_skinned_vertices(r)
        self._load_progressive_fixed_visual(r, model)

    def _load_skeletonx_st(self, r: ChunkReader, model: Model):
        self._check_skinned_vertices(r)
        self._load_visual(r, model)

    def _load_detail_patch(self, r: ChunkReader, model: Model):
        self._load_render_visual(r, model)
        r.find_chunk(ChunkId.DPATCH)
        raise UnimplementedFormat("Detail patch visuals are not supported", chunk_id=ChunkId.DPATCH)

    def _load_cached(self, r: ChunkReader, model: Model):
        self._load_render_visual(r, model)
        self._load_vertices(r, model)
        self._load_indices(r, model)

    def _load_particle(self, r: ChunkReader, model: Model):
        self._load_render_visual(r, model)

    def _load_progressive(self, r: ChunkReader, model: Model):
        self._load_render_visual(r, model)
        model.lods = self._load_sequence(r.find_chunk(ChunkId.LODS), model.path)

    _LOADERS = {
        ModelType.NORMAL: _load_visual,
        ModelType.HIERARCHY: _load_hierarchy_visual,
        ModelType.PROGRESSIVE: _load_progressive_fixed_visual,
        ModelType.SKELETON_ANIM: _load_kinematics,
        ModelType.SKELETON_GEOMDEF_PM: _load_skeletonx_pm,
        ModelType.DETAIL_PATCH: _load_detail_patch,
        ModelType.SKELETON_GEOMDEF_ST: _load_skeletonx_st,
        ModelType.CACHED: _load_cached,
        ModelType.PARTICLE: _load_particle,
        ModelType.PROGRESSIVE2: _load_progressive,
    }


class OgfSerializer:
    """Encodes Model trees back to OGF v3 bytes, mirroring OgfParser."""

    def serialize(self, model: Model) -> bytes:
        w = ChunkWriter()
        self._save(w, model)
        return w.getvalue()

    def _save(self, w: ChunkWriter, model: Model):
        if model.version != OGF3_VERSION:
            raise UnimplementedFormat(f"Cannot write OGF version {model.version}")
        saver = self._SAVERS.get(model.model_type)
        if saver is None:
            raise StructuralError(f"Unknown model type {model.model_type}")

        with w.chunk(ChunkId.HEADER):
            w.write_u8(model.version)
            w.write_u8(model.model_type)
            w.write_u16(0)
        saver(self, w, model)

    # ------------------------------------------------------------------
    # Shared pieces

    def _save_render_visual(self, w: ChunkWriter, model: Model):
        with w.chunk(ChunkId.BBOX):
            w.write_vector3(model.bbox.min)
            w.write_vector3(model.bbox.max)
        if model.bsphere is not None:
            with w.chunk(ChunkId.BSPHERE):
                w.write_vector3(model.bsphere.center)
                w.write_float(model.bsphere.radius)
        if model.texture_l is not None:
            with w.chunk(ChunkId.TEXTURE_L):
                w.write_u32s([model.texture_l, model.shader_l or 0])
        elif model.texture is not None:
            with w.chunk(ChunkId.TEXTURE):
                w.write_sz(model.texture)
                w.write_sz(model.shader or "")

    def _save_vertices(self, w: ChunkWriter, model: Model):
        if not isinstance(model.vertices, VertexBuffer):
            raise StructuralError(
                f"{ModelType(model.model_type).name} model has no owned vertex buffer to write"
            )
        with w.chunk(ChunkId.VERTICES):
            model.vertices.write(w)

    def _save_indices(self, w: ChunkWriter, model: Model):
        with w.chunk(ChunkId.INDICES):
            write_indices(w, model.indices)

    def _check_skinned_vertices(self, model: Model):
        if not isinstance(model.vertices, VertexBuffer) or not model.vertices.skinned:
            raise StructuralError("Skinned geometry needs an owned FVF_1L vertex buffer")

    # ------------------------------------------------------------------
    # Per-type sequences

    def _save_visual(self, w: ChunkWriter, model: Model):
        self._save_render_visual(w, model)
        if model.vertex_ref is not None:
            with w.chunk(ChunkId.VCONTAINER):
                model.vertex_ref.write(w)
        else:
            self._save_vertices(w, model)
        self._save_indices(w, model)

    def _save_hierarchy_visual(self, w: ChunkWriter, model: Model):
        self._save_render_visual(w, model)

        form = model.child_form
        if form is None:
            if model.child_refs:
                form = ChunkId.CHILD_REFS
            elif model.child_ids:
                form = ChunkId.CHILDREN_L
            else:
                form = ChunkId.CHILDREN

        with w.chunk(form):
            if form == ChunkId.CHILDREN_L:
                w.write_u32(len(model.child_ids))
                w.write_u32s(model.child_ids)
            elif form == ChunkId.CHILDREN:
                w.write_chunks(model.children, self._save)
            else:
                # referenced children live in their own files
                w.write_u32(len(model.child_refs))
                for name in model.child_refs:
                    w.write_sz(name)

    def _save_progressive_fixed_visual(self, w: ChunkWriter, model: Model):
        self._save_visual(w, model)
        if model.lod is None:
            raise StructuralError("Progressive model has no LOD data", chunk_id=ChunkId.LODDATA)
        with w.chunk(ChunkId.LODDATA):
            write_lod_data(w, model.lod)

    def _save_kinematics(self, w: ChunkWriter, model: Model):
        self._save_hierarchy_visual(w, model)
        if model.skeleton is None:
            raise StructuralError("Skeletal model has no skeleton", chunk_id=ChunkId.S_BONE_NAMES)

        with w.chunk(ChunkId.S_BONE_NAMES):
            write_bone_names(w, model.skeleton.bones)
        # sidecar parameters stay in the sidecar
        if model.motion_source != MotionSource.SIDECAR:
            with w.chunk(ChunkId.S_SMPARAMS):
                write_smparams(w, model.skeleton, model.motions)
        with w.chunk(ChunkId.S_MOTIONS):
            write_motion_keys(w, model.motions, model.skeleton)

    def _save_skeletonx_pm(self, w: ChunkWriter, model: Model):
        self._check_skinned_vertices(model)
        self._save_progressive_fixed_visual(w, model)

    def _save_skeletonx_st(self, w: ChunkWriter, model: Model):
        self._check_skinned_vertices(model)
        self._save_visual(w, model)

    def _save_detail_patch(self, w: ChunkWriter, model: Model):
        raise UnimplementedFormat("Detail patch visuals are not supported", chunk_id=ChunkId.DPATCH)

    def _save_cached(self, w: ChunkWriter, model: Model):
        self._save_render_visual(w, model)
        self._save_vertices(w, model)
        self._save_indices(w, model)

    def _save_particle(self, w: ChunkWriter, model: Model):
        self._save_render_visual(w, model)

    def _save_progressive(self, w: ChunkWriter, model: Model):
        self._save_render_visual(w, model)
        with w.chunk(ChunkId.LODS):
            w.write_chunks(model.lods, self._save)

    _SAVERS = {
        ModelType.NORMAL: _save_visual,
        ModelType.HIERARCHY: _save_hierarchy_visual,
        ModelType.PROGRESSIVE: _save_progressive_fixed_visual,
        ModelType.SKELETON_ANIM: _save_kinematics,
        ModelType.SKELETON_GEOMDEF_PM: _save_skeletonx_pm,
        ModelType.DETAIL_PATCH: _save_detail_patch,
        ModelType.SKELETON_GEOMDEF_ST: _save_skeletonx_st,
        ModelType.CACHED: _save_cached,
        ModelType.PARTICLE: _save_particle,
        ModelType.PROGRESSIVE2: _save_progressive,
    }


def load_ogf(source: Union[str, Path, bytes, BinaryIO], fs: Optional[FileSystem] = None,
             config_factory: Callable[[bytes], TextConfig] = LtxConfig.from_bytes,
             path: Optional[str] = None) -> Model:
    """Decode an OGF model from a path, a byte string or a binary file object."""
    parser = OgfParser(fs=fs, config_factory=config_factory)
    if isinstance(source, (str, Path)):
        return parser.parse_file(source)
    if isinstance(source, (bytes, bytearray, memoryview)):
        return parser.parse(bytes(source), path)
    source.seek(0)
    return parser.parse(source.read(), path)


def save_ogf(model: Model, destination: Optional[Union[str, Path]] = None) -> bytes:
    """Encode a model; also writes it to destination when given."""
    data = OgfSerializer().serialize(model)
    if destination is not None:
        with open(destination, "wb") as f:
            f.write(data)
    return data


def parse_aliases(values: Sequence[str]) -> Dict[str, str]:
    """Turn NAME=PATH command line values into an alias table."""
    aliases = {}
    for value in values:
        name, sep, folder = value.partition("=")
        if not sep or not name:
            raise ValueError(f"Bad alias {value!r}, expected NAME=PATH")
        aliases[name] = folder
    return aliases


def main():
    parser = argparse.ArgumentParser(description="Inspect an OGF v3 model")
    parser.add_argument("input", help="Input OGF file")
    parser.add_argument("--hierarchy", action="store_true", help="Print the model and bone trees")
    parser.add_argument("--json", action="store_true", help="Print the model tree as JSON")
    parser.add_argument(
        "--alias", action="append", default=[], metavar="NAME=PATH",
        help="Path alias for the file system (repeatable)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    args = parser.parse_args()
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        fs = LocalFileSystem(parse_aliases(args.alias))
        model = OgfParser(fs=fs).parse_file(args.input)
    except (OSError, ValueError) as e:
        print(f"Failed: {args.input} - {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(model.to_dict(), indent=2))
    elif args.hierarchy:
        model.print_hierarchy()
        for sub in model.iter_models():
            if sub.skeleton is not None:
                sub.skeleton.print_hierarchy()
    else:
        print(f"File: {args.input}")
        print(f"Type: {ModelType(model.model_type).name} (version {model.version})")
        print(f"Vertices: {model.vertex_count}")
        print(f"Triangles: {len(model.indices) // 3}")
        print(f"Children: {len(model.children)}, LODs: {len(model.lods)}")
        if model.skeleton is not None:
            print(f"Bones: {model.skeleton.bone_count}, Motions: {len(model.motions)}")
        if model.unhandled_chunks:
            print(f"Unhandled chunks: {', '.join(chunk_name(c) for c in model.unhandled_chunks)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
