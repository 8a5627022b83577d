"""glTF exporter for OGF model trees."""
import struct
from pathlib import Path
from typing import BinaryIO, Callable, List, Optional, Sequence, Tuple, Union

from pygltflib import (
    GLTF2,
    Buffer,
    BufferView,
    Accessor,
    Mesh,
    Primitive,
    Node,
    Scene,
    Asset,
    Skin,
    Animation,
    AnimationChannel,
    AnimationChannelTarget,
    AnimationSampler,
)

from ltx_config import LtxConfig, TextConfig
from ogf_filesystem import FileSystem
from ogf_model import Model, load_ogf
from ogf_motion import Motion
from ogf_skeleton import Skeleton
from ogf_types import ModelType

ARRAY_BUFFER = 34962
ELEMENT_ARRAY_BUFFER = 34963

FLOAT = 5126
UNSIGNED_SHORT = 5123
UNSIGNED_INT = 5125

TRIANGLES = 4


class GLTFExporter:
    """Exports OGF model data to glTF/GLB format."""

    def __init__(self, source: Union[str, Path, bytes, BinaryIO, Model],
                 fs: Optional[FileSystem] = None,
                 config_factory: Callable[[bytes], TextConfig] = LtxConfig.from_bytes):
        """Initialize exporter with an OGF file, its contents, or a decoded Model.

        Args:
            source: Path to OGF file, bytes, file-like object or Model
            fs: File system for child references and motion sidecars
            config_factory: Parser for motion sidecar files
        """
        self.source = source
        self.fs = fs
        self.config_factory = config_factory
        self._model: Optional[Model] = source if isinstance(source, Model) else None

        self._gltf: Optional[GLTF2] = None
        self._buffer = bytearray()

    def _load_model(self) -> Model:
        """Load and cache the model tree."""
        if self._model is None:
            self._model = load_ogf(self.source, fs=self.fs, config_factory=self.config_factory)
        return self._model

    def _compute_bounds(self, vertices: Sequence[Tuple[float, float, float]]) -> Tuple[List[float], List[float]]:
        """Compute min/max bounds for vertices."""
        if not vertices:
            return [0, 0, 0], [0, 0, 0]

        min_bounds = [float("inf")] * 3
        max_bounds = [float("-inf")] * 3

        for v in vertices:
            for i in range(3):
                min_bounds[i] = min(min_bounds[i], v[i])
                max_bounds[i] = max(max_bounds[i], v[i])

        return min_bounds, max_bounds

    def _create_identity_matrix(self) -> List[float]:
        """Create a 4x4 identity matrix as a flat list."""
        return [
            1.0, 0.0, 0.0, 0.0,
            0.0, 1.0, 0.0, 0.0,
            0.0, 0.0, 1.0, 0.0,
            0.0, 0.0, 0.0, 1.0,
        ]

    def _find_skeleton(self, model: Model) -> Optional[Skeleton]:
        return next((m.skeleton for m in model.iter_models() if m.skeleton is not None), None)

    def _find_motions(self, model: Model) -> List[Motion]:
        return next((m.motions for m in model.iter_models() if m.motions), [])

    # ------------------------------------------------------------------
    # Binary buffer

    def _add_view(self, data: bytes, target: Optional[int] = None) -> int:
        """Append data (4-byte aligned) and return the new buffer view index."""
        offset = len(self._buffer)
        self._buffer += data
        if len(self._buffer) % 4 != 0:
            self._buffer += b"\x00" * (4 - len(self._buffer) % 4)

        self._gltf.bufferViews.append(
            BufferView(buffer=0, byteOffset=offset, byteLength=len(data), target=target)
        )
        return len(self._gltf.bufferViews) - 1

    def _add_accessor(self, data: bytes, component_type: int, count: int, type_: str,
                      target: Optional[int] = None, min_values=None, max_values=None) -> int:
        view = self._add_view(data, target)
        self._gltf.accessors.append(
            Accessor(
                bufferView=view,
                componentType=component_type,
                count=count,
                type=type_,
                min=min_values,
                max=max_values,
            )
        )
        return len(self._gltf.accessors) - 1

    # ------------------------------------------------------------------
    # Meshes

    def _add_mesh(self, model: Model, skeleton: Optional[Skeleton], use_base_lod: bool) -> int:
        vb = model.vertices
        positions = vb.positions
        indices = model.lod.base_indices if use_base_lod and model.lod is not None else model.indices

        min_bounds, max_bounds = self._compute_bounds(positions)
        attributes = {
            "POSITION": self._add_accessor(
                b"".join(struct.pack("<3f", *p) for p in positions),
                FLOAT, len(positions), "VEC3", ARRAY_BUFFER, min_bounds, max_bounds,
            ),
            "NORMAL": self._add_accessor(
                b"".join(struct.pack("<3f", *n) for n in vb.normals),
                FLOAT, len(positions), "VEC3", ARRAY_BUFFER,
            ),
            "TEXCOORD_0": self._add_accessor(
                b"".join(struct.pack("<2f", *uv) for uv in vb.uvs),
                FLOAT, len(positions), "VEC2", ARRAY_BUFFER,
            ),
        }

        if skeleton is not None and vb.skinned:
            for bone in vb.bones:
                if bone >= skeleton.bone_count:
                    raise ValueError(
                        f"Vertex references bone {bone}, skeleton has {skeleton.bone_count}"
                    )
            # one bone per vertex, full weight
            attributes["JOINTS_0"] = self._add_accessor(
                b"".join(struct.pack("<4H", bone, 0, 0, 0) for bone in vb.bones),
                UNSIGNED_SHORT, len(positions), "VEC4", ARRAY_BUFFER,
            )
            attributes["WEIGHTS_0"] = self._add_accessor(
                struct.pack("<4f", 1.0, 0.0, 0.0, 0.0) * len(positions),
                FLOAT, len(positions), "VEC4", ARRAY_BUFFER,
            )

        if max(indices, default=0) > 0xFFFF:
            index_data = b"".join(struct.pack("<I", i) for i in indices)
            index_type = UNSIGNED_INT
        else:
            index_data = b"".join(struct.pack("<H", i) for i in indices)
            index_type = UNSIGNED_SHORT
        index_accessor = self._add_accessor(
            index_data, index_type, len(indices), "SCALAR", ELEMENT_ARRAY_BUFFER
        )

        self._gltf.meshes.append(
            Mesh(
                name=model.texture or None,
                primitives=[
                    Primitive(
                        attributes=attributes,
                        indices=index_accessor,
                        mode=TRIANGLES,
                    )
                ],
            )
        )
        return len(self._gltf.meshes) - 1

    def _add_model_node(self, model: Model, name: str, skeleton: Optional[Skeleton],
                        use_base_lod: bool, skinned_nodes: List[int]) -> int:
        """Create the node for a model and, recursively, its children and LODs."""
        node = Node(name=name)
        node_index = len(self._gltf.nodes)
        self._gltf.nodes.append(node)

        if model.has_geometry:
            node.mesh = self._add_mesh(model, skeleton, use_base_lod)
            if skeleton is not None and model.vertices.skinned:
                skinned_nodes.append(node_index)

        if model.has_transform:
            # row-major to glTF column-major
            m = model.transform
            node.matrix = [m[row * 4 + col] for col in range(4) for row in range(4)]

        children = []
        for i, child in enumerate(model.children):
            children.append(
                self._add_model_node(child, f"{name}_child_{i}", skeleton, use_base_lod, skinned_nodes)
            )
        for i, lod in enumerate(model.lods):
            children.append(
                self._add_model_node(lod, f"{name}_lod_{i}", skeleton, use_base_lod, skinned_nodes)
            )
        if children:
            node.children = children
        return node_index

    # ------------------------------------------------------------------
    # Skeleton and animation

    def _add_skeleton(self, skeleton: Skeleton) -> Tuple[int, List[int]]:
        """Create joint nodes and the skin; returns (skin index, joint node indices)."""
        joint_start_index = len(self._gltf.nodes)
        joint_nodes = [joint_start_index + bone.index for bone in skeleton.bones]

        for bone in skeleton.bones:
            child_node_indices = [joint_start_index + child.index for child in bone.children]
            self._gltf.nodes.append(
                Node(
                    name=bone.name,
                    translation=list(bone.bind_offset),
                    children=child_node_indices if child_node_indices else None,
                )
            )

        # Create inverse bind matrices (identity, v3 stores no bind pose)
        ibm_data = struct.pack("<16f", *self._create_identity_matrix()) * skeleton.bone_count
        ibm_accessor_index = self._add_accessor(ibm_data, FLOAT, skeleton.bone_count, "MAT4")

        root = skeleton.root
        self._gltf.skins.append(
            Skin(
                name="skeleton",
                joints=joint_nodes,
                skeleton=joint_start_index + root.index if root is not None else joint_start_index,
                inverseBindMatrices=ibm_accessor_index,
            )
        )
        return len(self._gltf.skins) - 1, joint_nodes

    def _add_animation(self, motion: Motion, skeleton: Skeleton, joint_nodes: List[int]):
        samplers = []
        channels = []

        for bone, bm in zip(skeleton.bones, motion.bone_motions):
            num_keys = bm.key_count
            if num_keys == 0:
                continue
            node_idx = joint_nodes[bone.index]

            times = [key.time for key in bm.envelopes[0].keys]
            time_acc_idx = self._add_accessor(
                struct.pack(f"<{num_keys}f", *times),
                FLOAT, num_keys, "SCALAR", min_values=[min(times)], max_values=[max(times)],
            )
            trans_acc_idx = self._add_accessor(
                b"".join(struct.pack("<3f", *bm.translation_at(i)) for i in range(num_keys)),
                FLOAT, num_keys, "VEC3",
            )
            rot_acc_idx = self._add_accessor(
                b"".join(struct.pack("<4f", *bm.rotation_at(i)) for i in range(num_keys)),
                FLOAT, num_keys, "VEC4",
            )

            for output, path in ((trans_acc_idx, "translation"), (rot_acc_idx, "rotation")):
                samplers.append(
                    AnimationSampler(input=time_acc_idx, output=output, interpolation="LINEAR")
                )
                channels.append(
                    AnimationChannel(
                        sampler=len(samplers) - 1,
                        target=AnimationChannelTarget(node=node_idx, path=path),
                    )
                )

        if channels:
            self._gltf.animations.append(
                Animation(name=motion.name, samplers=samplers, channels=channels)
            )

    def export(self, output_path: str, include_skeleton: bool = False,
               include_animations: bool = False, use_base_lod: bool = False):
        """Export OGF data to glTF/GLB file.

        Args:
            output_path: Path for output .glb file
            include_skeleton: Whether to include skeleton/bones
            include_animations: Whether to include motions (needs the skeleton)
            use_base_lod: Use the reconstructed base LOD indices of
                progressive meshes instead of the full index buffer

        Raises:
            ValueError: If no model in the tree has mesh data
        """
        model = self._load_model()
        if not any(m.has_geometry for m in model.iter_models()):
            raise ValueError(f"No mesh data found in {ModelType(model.model_type).name} OGF model")

        self._gltf = GLTF2()
        self._gltf.asset = Asset(version="2.0", generator="OGF Extractor")
        self._buffer = bytearray()

        skeleton = self._find_skeleton(model) if include_skeleton else None
        if skeleton is not None and skeleton.bone_count == 0:
            skeleton = None

        skinned_nodes: List[int] = []
        name = Path(model.path).stem if model.path else "model"
        root_node = self._add_model_node(model, name, skeleton, use_base_lod, skinned_nodes)
        scene_nodes = [root_node]

        if skeleton is not None:
            skin_index, joint_nodes = self._add_skeleton(skeleton)
            for node_index in skinned_nodes:
                self._gltf.nodes[node_index].skin = skin_index
            scene_nodes.append(joint_nodes[skeleton.root.index])

            if include_animations:
                for motion in self._find_motions(model):
                    self._add_animation(motion, skeleton, joint_nodes)

        self._gltf.scenes = [Scene(nodes=scene_nodes)]
        self._gltf.scene = 0

        # Set binary data and save
        self._gltf.buffers = [Buffer(byteLength=len(self._buffer))]
        self._gltf.set_binary_blob(bytes(self._buffer))
        self._gltf.save(output_path)
