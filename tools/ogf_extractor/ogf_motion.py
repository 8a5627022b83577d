"""Skeletal motions of OGF v3 models.

Motion parameters come from the S_SMPARAMS chunk or, when that chunk is
absent, from an LTX sidecar next to the model. Keyframes always come from
the S_MOTIONS chunk:
- sub-chunk 0: motion count (u32)
- sub-chunks 1..N: name (sz), key count (u32), then per bone in skeleton
  order, per key: quaternion (4x s16, /32767) + translation (3f)

Keys are sampled at 30 fps. Each bone motion keeps six envelopes:
translation x/y/z and rotation heading/pitch/bank.
"""
import math
import struct
from dataclasses import dataclass, field
from enum import IntEnum, IntFlag
from typing import Dict, List, Optional, Sequence, Tuple

from ltx_config import TextConfig
from ogf_chunks import ChunkReader, ChunkWriter
from ogf_envelope import Envelope, EnvelopeKind
from ogf_errors import ConsistencyError, StructuralError, UnimplementedFormat
from ogf_skeleton import Bone, Partition, Skeleton

MOTION_FPS = 30.0
KEY_QUANT = 32767.0
ALL_PARTITIONS = 0xFFFF
NONE_PARTITION = "--none--"

KEY_FORMAT = "<4h3f"
KEY_SIZE = struct.calcsize(KEY_FORMAT)

MOTION_VERSION_LEGACY = 5
MOTION_VERSION = 6

# Envelope slots of a bone motion
ENV_TX, ENV_TY, ENV_TZ, ENV_HEADING, ENV_PITCH, ENV_BANK = range(6)

FLT_EPSILON = 1.192092896e-07

Quaternion = Tuple[float, float, float, float]  # x, y, z, w
Matrix3 = Tuple[Tuple[float, float, float], ...]


class MotionType(IntEnum):
    CYCLE = 0
    FX = 1


class MotionFlags(IntFlag):
    NONE = 0
    FX = 0x1
    STOP_AT_END = 0x2


# ----------------------------------------------------------------------
# Rotation conversions (row-major matrix, rows i, j, k)

def quat_to_matrix(q: Quaternion) -> Matrix3:
    x, y, z, w = q
    xx, yy, zz = x * x, y * y, z * z
    xy, xz, yz = x * y, x * z, y * z
    wx, wy, wz = w * x, w * y, w * z
    return (
        (1 - 2 * (yy + zz), 2 * (xy - wz), 2 * (xz + wy)),
        (2 * (xy + wz), 1 - 2 * (xx + zz), 2 * (yz - wx)),
        (2 * (xz - wy), 2 * (yz + wx), 1 - 2 * (xx + yy)),
    )


def matrix_to_quat(m: Matrix3) -> Quaternion:
    trace = m[0][0] + m[1][1] + m[2][2]
    if trace > 0:
        s = 0.5 / math.sqrt(trace + 1.0)
        return ((m[2][1] - m[1][2]) * s, (m[0][2] - m[2][0]) * s,
                (m[1][0] - m[0][1]) * s, 0.25 / s)
    if m[0][0] > m[1][1] and m[0][0] > m[2][2]:
        s = 2.0 * math.sqrt(1.0 + m[0][0] - m[1][1] - m[2][2])
        return (0.25 * s, (m[0][1] + m[1][0]) / s, (m[0][2] + m[2][0]) / s,
                (m[2][1] - m[1][2]) / s)
    if m[1][1] > m[2][2]:
        s = 2.0 * math.sqrt(1.0 + m[1][1] - m[0][0] - m[2][2])
        return ((m[0][1] + m[1][0]) / s, 0.25 * s, (m[1][2] + m[2][1]) / s,
                (m[0][2] - m[2][0]) / s)
    s = 2.0 * math.sqrt(1.0 + m[2][2] - m[0][0] - m[1][1])
    return ((m[0][2] + m[2][0]) / s, (m[1][2] + m[2][1]) / s, 0.25 * s,
            (m[1][0] - m[0][1]) / s)


def matrix_to_hpb(m: Matrix3) -> Tuple[float, float, float]:
    """Heading/pitch/bank of a rotation matrix."""
    i, j, k = m
    cy = math.sqrt(j[1] * j[1] + i[1] * i[1])
    if cy > 16.0 * FLT_EPSILON:
        h = -math.atan2(k[0], k[2])
        p = -math.atan2(-k[1], cy)
        b = -math.atan2(i[1], j[1])
    else:
        h = -math.atan2(-i[2], i[0])
        p = -math.atan2(-k[1], cy)
        b = 0.0
    return h, p, b


def hpb_to_matrix(h: float, p: float, b: float) -> Matrix3:
    sh, ch = math.sin(h), math.cos(h)
    sp, cp = math.sin(p), math.cos(p)
    sb, cb = math.sin(b), math.cos(b)
    cc, cs, sc, ss = ch * cb, ch * sb, sh * cb, sh * sb
    return (
        (cc - sp * ss, -cp * sb, sp * cs + sc),
        (sp * sc + cs, cp * cb, ss - sp * cc),
        (-cp * sh, sp, cp * ch),
    )


def quat_to_hpb(q: Quaternion) -> Tuple[float, float, float]:
    norm = math.sqrt(sum(c * c for c in q))
    if norm == 0.0:
        return 0.0, 0.0, 0.0
    return matrix_to_hpb(quat_to_matrix(tuple(c / norm for c in q)))


def hpb_to_quat(h: float, p: float, b: float) -> Quaternion:
    return matrix_to_quat(hpb_to_matrix(h, p, b))


def dequantize_quat(qx: int, qy: int, qz: int, qw: int) -> Quaternion:
    return qx / KEY_QUANT, qy / KEY_QUANT, qz / KEY_QUANT, qw / KEY_QUANT


def quantize_quat(q: Quaternion) -> Tuple[int, int, int, int]:
    return tuple(max(-32767, min(32767, int(round(c * KEY_QUANT)))) for c in q)


# ----------------------------------------------------------------------
# Motions

@dataclass
class BoneMotion:
    """Per-bone animation: three translation and three rotation envelopes."""
    name: str
    flags: int = 0
    envelopes: List[Envelope] = field(default_factory=lambda: [
        Envelope(kind=EnvelopeKind.TRANSLATION if i < 3 else EnvelopeKind.ROTATION)
        for i in range(6)
    ])

    @property
    def key_count(self) -> int:
        return len(self.envelopes[ENV_TX].keys)

    def insert_translation(self, time: float, t: Sequence[float]):
        for axis in range(3):
            self.envelopes[ENV_TX + axis].insert_key(time, t[axis])

    def insert_rotation(self, time: float, q: Quaternion):
        for axis, angle in enumerate(quat_to_hpb(q)):
            self.envelopes[ENV_HEADING + axis].insert_key(time, angle)

    def rebuild(self):
        for env in self.envelopes:
            env.rebuild()

    def translation_at(self, index: int) -> Tuple[float, float, float]:
        return tuple(self.envelopes[ENV_TX + axis].keys[index].value for axis in range(3))

    def rotation_at(self, index: int) -> Quaternion:
        h, p, b = (self.envelopes[ENV_HEADING + axis].keys[index].value for axis in range(3))
        return hpb_to_quat(h, p, b)

    def save(self, w: ChunkWriter):
        w.write_sz(self.name)
        w.write_u8(self.flags)
        for env in self.envelopes:
            env.save(w)


@dataclass
class Motion:
    """Named skeletal motion with playback parameters."""
    name: str
    bone_or_part: int = ALL_PARTITIONS
    flags: int = MotionFlags.NONE
    speed: float = 1.0
    power: float = 1.0
    accrue: float = 2.0
    falloff: float = 2.0
    fps: float = MOTION_FPS
    frame_start: int = 0
    frame_end: int = 0
    bone_motions: List[BoneMotion] = field(default_factory=list)

    @property
    def is_fx(self) -> bool:
        return bool(self.flags & MotionFlags.FX)

    @property
    def motion_type(self) -> MotionType:
        return MotionType.FX if self.is_fx else MotionType.CYCLE

    @property
    def stop_at_end(self) -> bool:
        return bool(self.flags & MotionFlags.STOP_AT_END)

    @property
    def all_partitions(self) -> bool:
        return not self.is_fx and self.bone_or_part == ALL_PARTITIONS

    @property
    def duration(self) -> float:
        return (self.frame_end - self.frame_start) / self.fps if self.fps else 0.0

    def validate_target(self, skeleton: Skeleton):
        """Check the bone (fx) or partition (cycle) index resolves."""
        if self.is_fx:
            if skeleton.get_bone(self.bone_or_part) is None:
                raise StructuralError(
                    f"Motion {self.name!r} targets bone {self.bone_or_part}, "
                    f"skeleton has {skeleton.bone_count}"
                )
        elif self.bone_or_part != ALL_PARTITIONS and self.bone_or_part >= len(skeleton.partitions):
            raise StructuralError(
                f"Motion {self.name!r} targets partition {self.bone_or_part}, "
                f"model has {len(skeleton.partitions)}"
            )

    # -- S_SMPARAMS entries

    @classmethod
    def read_params(cls, r: ChunkReader) -> Tuple["Motion", int]:
        motion = cls(name=r.read_sz())
        motion.flags = MotionFlags.FX if r.read_u8() == MotionType.FX else MotionFlags.NONE
        motion.bone_or_part = r.read_u16()
        slot = r.read_u16()
        motion.speed, motion.power, motion.accrue, motion.falloff = r.read_floats(4)
        if r.read_bool():
            motion.flags |= MotionFlags.STOP_AT_END
        return motion, slot

    def write_params(self, w: ChunkWriter, slot: int):
        w.write_sz(self.name)
        w.write_u8(self.motion_type)
        w.write_u16(self.bone_or_part)
        w.write_u16(slot)
        w.write_floats([self.speed, self.power, self.accrue, self.falloff])
        w.write_bool(self.stop_at_end)

    # -- sidecar

    @classmethod
    def from_config(cls, config: TextConfig, motion_type: MotionType, section: str,
                    name: str, skeleton: Skeleton) -> "Motion":
        motion = cls(name=name)
        if motion_type == MotionType.CYCLE:
            part_name = config.get_string(section, "part")
            if NONE_PARTITION in part_name:
                motion.bone_or_part = ALL_PARTITIONS
            else:
                part = skeleton.find_partition(part_name)
                if part is None:
                    raise StructuralError(f"Unknown partition {part_name!r} in motion {name!r}")
                motion.bone_or_part = part.index
            motion.flags = MotionFlags.NONE
        else:
            bone_name = config.get_string(section, "bone")
            bone = skeleton.find_bone(bone_name)
            if bone is None:
                raise StructuralError(f"Unknown bone {bone_name!r} in motion {name!r}")
            motion.bone_or_part = bone.index
            motion.flags = MotionFlags.FX
        motion.speed = config.get_float(section, "speed")
        motion.power = config.get_float(section, "power")
        motion.accrue = config.get_float(section, "accrue")
        motion.falloff = config.get_float(section, "falloff")
        if config.get_bool(section, "stop@end"):
            motion.flags |= MotionFlags.STOP_AT_END
        return motion

    # -- S_MOTIONS keys

    def import_bone_motions(self, r: ChunkReader, bones: Sequence[Bone]):
        num_keys = r.read_u32()
        self.frame_start = 0
        self.frame_end = num_keys & 0x7FFFFFFF

        self.bone_motions = []
        for bone in bones:
            bm = BoneMotion(name=bone.name)
            data = r.read_raw(num_keys * KEY_SIZE)
            for i, values in enumerate(struct.iter_unpack(KEY_FORMAT, data)):
                time = i / self.fps
                bm.insert_rotation(time, dequantize_quat(*values[0:4]))
                bm.insert_translation(time, values[4:7])
            bm.rebuild()
            self.bone_motions.append(bm)

    def export_bone_motions(self, w: ChunkWriter, bones: Sequence[Bone]):
        if len(self.bone_motions) != len(bones):
            raise StructuralError(
                f"Motion {self.name!r} animates {len(self.bone_motions)} bones, "
                f"skeleton has {len(bones)}"
            )
        num_keys = self.bone_motions[0].key_count if self.bone_motions else 0
        w.write_u32(num_keys)
        for bone, bm in zip(bones, self.bone_motions):
            if bm.name != bone.name:
                raise StructuralError(
                    f"Motion {self.name!r}: bone motion {bm.name!r} is out of skeleton order "
                    f"(expected {bone.name!r})"
                )
            if any(len(env.keys) != num_keys for env in bm.envelopes):
                raise StructuralError(
                    f"Motion {self.name!r}: bone {bm.name!r} envelopes do not all have {num_keys} keys"
                )
            for i in range(num_keys):
                q = quantize_quat(bm.rotation_at(i))
                w.write_raw(struct.pack(KEY_FORMAT, *q, *bm.translation_at(i)))

    # -- standalone motion record

    def save(self, w: ChunkWriter):
        w.write_sz(self.name)
        w.write_s32(self.frame_start)
        w.write_s32(self.frame_end)
        w.write_float(self.fps)
        w.write_u16(MOTION_VERSION)
        w.write_u8(self.flags)
        w.write_u16(self.bone_or_part)
        w.write_floats([self.speed, self.accrue, self.falloff, self.power])
        w.write_u16(len(self.bone_motions))
        for bm in self.bone_motions:
            bm.save(w)

    @classmethod
    def load(cls, r: ChunkReader) -> "Motion":
        motion = cls(name=r.read_sz())
        motion.frame_start = r.read_s32()
        motion.frame_end = r.read_s32()
        motion.fps = r.read_float()
        version = r.read_u16()
        load_envelope = ENVELOPE_LOADERS.get(version)
        if load_envelope is None:
            raise UnimplementedFormat(f"Motion {motion.name!r}: unsupported version {version}")
        motion.flags = r.read_u8()
        motion.bone_or_part = r.read_u16()
        motion.speed, motion.accrue, motion.falloff, motion.power = r.read_floats(4)
        for _ in range(r.read_u16()):
            bm = BoneMotion(name=r.read_sz(), flags=r.read_u8())
            for env in bm.envelopes:
                load_envelope(env, r)
            motion.bone_motions.append(bm)
        return motion


ENVELOPE_LOADERS = {
    MOTION_VERSION_LEGACY: Envelope.load_legacy,
    MOTION_VERSION: Envelope.load,
}


# ----------------------------------------------------------------------
# Resolver

def read_smparams(r: ChunkReader, skeleton: Skeleton) -> List[Motion]:
    """Decode S_SMPARAMS: partitions, then motions placed by slot id.

    Sets skeleton.partitions. Returns motions in slot order.
    """
    skeleton.partitions = [skeleton.read_partition(r) for _ in range(r.read_u16())]
    skeleton.setup_partitions()

    count = r.read_u16()
    slots: List[Optional[Motion]] = [None] * count
    for _ in range(count):
        motion, slot = Motion.read_params(r)
        if slot >= count:
            raise StructuralError(f"Motion {motion.name!r} slot {slot} out of range (0..{count - 1})")
        if slots[slot] is not None:
            raise StructuralError(
                f"Motion {motion.name!r} slot {slot} already taken by {slots[slot].name!r}"
            )
        motion.validate_target(skeleton)
        slots[slot] = motion

    missing = [i for i, motion in enumerate(slots) if motion is None]
    if missing:
        raise StructuralError(f"Motion slots {missing} were never filled")
    return slots


def write_smparams(w: ChunkWriter, skeleton: Skeleton, motions: Sequence[Motion]):
    w.write_u16(len(skeleton.partitions))
    for part in skeleton.partitions:
        skeleton.write_partition(w, part)
    w.write_u16(len(motions))
    for slot, motion in enumerate(motions):
        motion.write_params(w, slot)


def _read_motion_defs(config: TextConfig, motion_type: MotionType, section: str,
                      skeleton: Skeleton) -> List[Motion]:
    if not config.section_exists(section):
        raise StructuralError(f"Missing motion definitions section [{section}]")
    motions = []
    for i in range(config.line_count(section)):
        name, params_section = config.read_line(section, i)
        # sometimes there is no right side
        if not params_section:
            params_section = name
        declared = config.get_string(params_section, "motion")
        if declared.lower() != name.lower():
            raise StructuralError(
                f"Motion section [{params_section}] declares motion {declared!r}, expected {name!r}"
            )
        motions.append(Motion.from_config(config, motion_type, params_section, name, skeleton))
    return motions


def read_sidecar_params(config: TextConfig, skeleton: Skeleton) -> List[Motion]:
    """Resolve partitions and motion parameters from an LTX sidecar.

    Cycle motions come first, then fx motions, each in line order.
    """
    num_parts = config.line_count("partition")
    if num_parts == 0:
        raise ConsistencyError("Sidecar has an empty [partition] section")

    partitions = []
    for i in range(num_parts):
        part_name, _ = config.read_line("partition", i)
        num_bones = config.line_count(part_name)
        if num_bones == 0:
            raise ConsistencyError(f"Empty partition section [{part_name}]")
        part = Partition(name=part_name)
        for j in range(num_bones):
            bone_name, _ = config.read_line(part_name, j)
            if skeleton.find_bone(bone_name) is None:
                raise StructuralError(f"Unknown bone {bone_name!r} in partition {part_name!r}")
            part.bones.append(bone_name)
        partitions.append(part)

    skeleton.partitions = partitions
    skeleton.setup_partitions()

    motions = _read_motion_defs(config, MotionType.CYCLE, "cycle", skeleton)
    motions += _read_motion_defs(config, MotionType.FX, "fx", skeleton)
    return motions


def read_motion_keys(r: ChunkReader, motions: Sequence[Motion], skeleton: Skeleton):
    """Decode S_MOTIONS into the bone motions of already-resolved motions."""
    s = r.find_chunk(0)
    count = s.read_u32()
    s.expect_eof()
    if count != len(motions):
        raise StructuralError(
            f"Motion data holds {count} motions, parameters define {len(motions)}",
            chunk_id=0,
        )

    by_name: Dict[str, Motion] = {}
    for motion in motions:
        if motion.name in by_name:
            raise StructuralError(f"Motion {motion.name!r} is defined twice")
        by_name[motion.name] = motion

    filled = set()
    for motion_id in range(1, count + 1):
        s = r.find_chunk(motion_id)
        name = s.read_sz()
        motion = by_name.get(name)
        if motion is None:
            raise StructuralError(f"Unknown motion {name!r} in motion data", chunk_id=motion_id)
        if name in filled:
            raise StructuralError(f"Motion {name!r} appears twice in motion data", chunk_id=motion_id)
        filled.add(name)
        motion.import_bone_motions(s, skeleton.bones)
        s.expect_eof()

    extra = r.unhandled_chunks()
    if extra:
        raise StructuralError(f"Unexpected motion data chunks {[hex(c) for c in extra]}")


def write_motion_keys(w: ChunkWriter, motions: Sequence[Motion], skeleton: Skeleton):
    with w.chunk(0):
        w.write_u32(len(motions))
    for motion_id, motion in enumerate(motions, start=1):
        with w.chunk(motion_id):
            w.write_sz(motion.name)
            motion.export_bone_motions(w, skeleton.bones)
