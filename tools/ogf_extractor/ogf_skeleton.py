"""Skeleton/bone data for skeletal OGF models.

OGF v3 stores bones as a flat list in the S_BONE_NAMES chunk:
- count (u32)
- per bone:
  - name (sz)
  - parent name (sz, empty for the root)
  - oriented bounding box: rotate (9 floats), translate (3), halfsize (3)

Parents are linked by name. v3 does not store a bind pose, so bones get an
identity bind transform and a fixed bind length.
"""
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List, Optional, Sequence

from ogf_chunks import ChunkReader, ChunkWriter
from ogf_errors import StructuralError
from ogf_types import Vector3

DEFAULT_BIND_LENGTH = 0.5


class BoneShapeType(IntEnum):
    NONE = 0
    BOX = 1
    SPHERE = 2
    CYLINDER = 3


@dataclass
class Obb:
    """Oriented bounding box."""
    rotate: List[float] = field(default_factory=lambda: [1.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 1.0])
    translate: Vector3 = (0.0, 0.0, 0.0)
    halfsize: Vector3 = (0.0, 0.0, 0.0)

    @classmethod
    def read(cls, r: ChunkReader) -> "Obb":
        rotate = list(r.read_floats(9))
        return cls(rotate=rotate, translate=r.read_vector3(), halfsize=r.read_vector3())

    def write(self, w: ChunkWriter):
        w.write_floats(self.rotate)
        w.write_vector3(self.translate)
        w.write_vector3(self.halfsize)


@dataclass
class BoneShape:
    type: int = BoneShapeType.NONE
    flags: int = 0
    box: Obb = field(default_factory=Obb)


@dataclass
class Bone:
    """Represents a bone in the skeleton hierarchy."""
    name: str
    parent_name: str = ""
    vmap_name: str = ""
    bind_offset: Vector3 = (0.0, 0.0, 0.0)
    bind_rotate: Vector3 = (0.0, 0.0, 0.0)
    bind_length: float = DEFAULT_BIND_LENGTH
    shape: BoneShape = field(default_factory=BoneShape)
    index: int = -1
    # Name-resolved links, filled by Skeleton.setup_bones()
    parent: Optional["Bone"] = field(default=None, repr=False, compare=False)
    children: List["Bone"] = field(default_factory=list, repr=False, compare=False)

    @property
    def is_root(self) -> bool:
        return self.parent_name == "" or self.parent_name == self.name

    @classmethod
    def read(cls, r: ChunkReader) -> "Bone":
        name = r.read_sz()
        parent_name = r.read_sz()
        shape = BoneShape(type=BoneShapeType.BOX, flags=0, box=Obb.read(r))
        return cls(name=name, parent_name=parent_name, vmap_name=name, shape=shape)

    def write(self, w: ChunkWriter):
        w.write_sz(self.name)
        w.write_sz(self.parent_name)
        self.shape.box.write(w)


@dataclass
class Partition:
    """Named group of bones (by name) used for motion blending."""
    name: str
    bones: List[str] = field(default_factory=list)
    index: int = -1


@dataclass
class Skeleton:
    """Bone list plus partitions of one skeletal model."""
    bones: List[Bone] = field(default_factory=list)
    partitions: List[Partition] = field(default_factory=list)

    def __post_init__(self):
        self._by_name: Dict[str, Bone] = {}

    @property
    def bone_count(self) -> int:
        return len(self.bones)

    @property
    def root(self) -> Optional[Bone]:
        return next((b for b in self.bones if b.is_root), None)

    @property
    def root_bones(self) -> List[Bone]:
        return [b for b in self.bones if b.is_root]

    def get_bone(self, index: int) -> Optional[Bone]:
        """Get bone by index."""
        if 0 <= index < len(self.bones):
            return self.bones[index]
        return None

    def find_bone(self, name: str) -> Optional[Bone]:
        if not self._by_name and self.bones:
            return next((b for b in self.bones if b.name == name), None)
        return self._by_name.get(name)

    def find_partition(self, name: str) -> Optional[Partition]:
        return next((p for p in self.partitions if p.name == name), None)

    def get_children(self, bone: Bone) -> List[Bone]:
        """Get direct children of a bone."""
        return [b for b in self.bones if b.parent is bone]

    def get_hierarchy_depth(self, bone: Bone) -> int:
        """Get depth of bone in hierarchy (0 for root)."""
        depth = 0
        current = bone
        while current.parent is not None:
            depth += 1
            current = current.parent
        return depth

    def setup_bones(self):
        """Index bones and link each one to its parent by name.

        Raises:
            StructuralError: On duplicate names, unknown parents, a root
                count other than one, or bones unreachable from the root
        """
        by_name: Dict[str, Bone] = {}
        for index, bone in enumerate(self.bones):
            if bone.name in by_name:
                raise StructuralError(f"Duplicate bone name {bone.name!r}")
            bone.index = index
            bone.parent = None
            bone.children = []
            by_name[bone.name] = bone

        roots = [b for b in self.bones if b.is_root]
        if len(roots) != 1:
            raise StructuralError(
                f"Skeleton must have exactly one root bone, found {len(roots)}"
                + (f" ({', '.join(b.name for b in roots)})" if roots else "")
            )

        for bone in self.bones:
            if bone.is_root:
                continue
            parent = by_name.get(bone.parent_name)
            if parent is None:
                raise StructuralError(f"Unknown parent {bone.parent_name!r} of bone {bone.name!r}")
            bone.parent = parent
            parent.children.append(bone)

        reachable = 0
        stack = [roots[0]]
        while stack:
            bone = stack.pop()
            reachable += 1
            stack.extend(bone.children)
        if reachable != len(self.bones):
            raise StructuralError(
                f"{len(self.bones) - reachable} bones are not connected to root {roots[0].name!r}"
            )

        self._by_name = by_name

    def setup_partitions(self):
        """Number partitions and check their bone names resolve."""
        for index, part in enumerate(self.partitions):
            part.index = index
            for bone_name in part.bones:
                if self.find_bone(bone_name) is None:
                    raise StructuralError(f"Unknown bone {bone_name!r} in partition {part.name!r}")

    def read_partition(self, r: ChunkReader) -> Partition:
        """Read a binary partition: name, u16 count, u32 bone indices."""
        name = r.read_sz()
        bones = []
        for bone_index in r.read_u32s(r.read_u16()):
            bone = self.get_bone(bone_index)
            if bone is None:
                raise StructuralError(
                    f"Partition {name!r} references bone {bone_index}, "
                    f"skeleton has {len(self.bones)}"
                )
            bones.append(bone.name)
        return Partition(name=name, bones=bones)

    def write_partition(self, w: ChunkWriter, part: Partition):
        w.write_sz(part.name)
        w.write_u16(len(part.bones))
        w.write_u32s([self.find_bone(name).index for name in part.bones])

    def to_dict_list(self) -> List[Dict]:
        """Convert to list of dictionaries for JSON/glTF export."""
        return [
            {
                "id": bone.index,
                "name": bone.name,
                "parent": bone.parent_name,
                "parent_id": bone.parent.index if bone.parent else -1,
                "bind_offset": list(bone.bind_offset),
                "bind_rotate": list(bone.bind_rotate),
                "bind_length": bone.bind_length,
            }
            for bone in self.bones
        ]

    def print_hierarchy(self):
        """Print bone hierarchy to console."""
        print(f"Skeleton: {self.bone_count} bones, {len(self.partitions)} partitions")

        def print_bone(bone: Bone, indent: int = 0):
            prefix = "  " * indent
            print(f"{prefix}[{bone.index}] {bone.name}")
            for child in bone.children:
                print_bone(child, indent + 1)

        if self.root is not None:
            print_bone(self.root)
        for part in self.partitions:
            print(f"partition [{part.index}] {part.name}: {', '.join(part.bones)}")


def read_bone_names(r: ChunkReader) -> Skeleton:
    """Decode the S_BONE_NAMES chunk into a linked skeleton."""
    skeleton = Skeleton(bones=[Bone.read(r) for _ in range(r.read_u32())])
    skeleton.setup_bones()
    return skeleton


def write_bone_names(w: ChunkWriter, bones: Sequence[Bone]):
    w.write_u32(len(bones))
    for bone in bones:
        bone.write(w)
