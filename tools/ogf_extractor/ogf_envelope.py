"""Animation envelopes (keyframed curves) and their two wire encodings.

Legacy keys are stored at full precision:
    value(f32) time(f32) shape(u32) tension continuity bias (f32) param[4] (f32)
Current keys drop everything after the shape for STEP keys and quantize
the rest to 16 bits over [-32, 32]:
    value(f32) time(f32) shape(u8) [tension continuity bias param[4] (q16)]
"""
import math
import sys
from dataclasses import dataclass, field
from enum import IntEnum
from typing import List

from ogf_chunks import ChunkReader, ChunkWriter
from ogf_types import f32

KEY_PARAM_MIN = -32.0
KEY_PARAM_MAX = 32.0

TWO_PI_F32 = f32(math.pi * 2)


class Shape(IntEnum):
    """Interpolation shape of a key."""
    TCB = 0
    HERMITE = 1
    BEZIER = 2
    LINEAR = 3
    STEP = 4
    BEZIER2 = 5


class Behaviour(IntEnum):
    """Extrapolation before the first / after the last key."""
    RESET = 0
    CONSTANT = 1
    REPEAT = 2
    OSCILLATE = 3
    OFFSET = 4
    LINEAR = 5


class EnvelopeKind(IntEnum):
    TRANSLATION = 0
    ROTATION = 1


@dataclass
class Key:
    """One keyframe of an envelope."""
    time: float = 0.0
    value: float = 0.0
    shape: int = Shape.STEP
    tension: float = 0.0
    continuity: float = 0.0
    bias: float = 0.0
    params: List[float] = field(default_factory=lambda: [0.0, 0.0, 0.0, 0.0])

    @property
    def is_step(self) -> bool:
        return self.shape == Shape.STEP

    @classmethod
    def read_legacy(cls, r: ChunkReader) -> "Key":
        value = r.read_float()
        time = r.read_float()
        shape = r.read_u32() & 0xFF
        tension, continuity, bias = r.read_floats(3)
        params = list(r.read_floats(4))
        return cls(time=time, value=value, shape=shape, tension=tension,
                   continuity=continuity, bias=bias, params=params)

    @classmethod
    def read(cls, r: ChunkReader) -> "Key":
        key = cls(value=r.read_float(), time=r.read_float(), shape=r.read_u8())
        if key.shape != Shape.STEP:
            key.tension = r.read_float_q16(KEY_PARAM_MIN, KEY_PARAM_MAX)
            key.continuity = r.read_float_q16(KEY_PARAM_MIN, KEY_PARAM_MAX)
            key.bias = r.read_float_q16(KEY_PARAM_MIN, KEY_PARAM_MAX)
            key.params = [r.read_float_q16(KEY_PARAM_MIN, KEY_PARAM_MAX) for _ in range(4)]
        return key

    def write(self, w: ChunkWriter):
        w.write_float(self.value)
        w.write_float(self.time)
        w.write_u8(self.shape)
        if self.shape != Shape.STEP:
            w.write_float_q16(self.tension, KEY_PARAM_MIN, KEY_PARAM_MAX)
            w.write_float_q16(self.continuity, KEY_PARAM_MIN, KEY_PARAM_MAX)
            w.write_float_q16(self.bias, KEY_PARAM_MIN, KEY_PARAM_MAX)
            for param in self.params:
                w.write_float_q16(param, KEY_PARAM_MIN, KEY_PARAM_MAX)


@dataclass
class Envelope:
    """Animation curve: ordered keys plus pre/post extrapolation."""
    kind: int = EnvelopeKind.TRANSLATION
    pre_behaviour: int = Behaviour.CONSTANT
    post_behaviour: int = Behaviour.CONSTANT
    keys: List[Key] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.keys)

    @property
    def is_rotation(self) -> bool:
        return self.kind == EnvelopeKind.ROTATION

    def insert_key(self, time: float, value: float) -> Key:
        """Append a STEP key."""
        key = Key(time=f32(time), value=f32(value), shape=Shape.STEP)
        self.keys.append(key)
        return key

    def load_legacy(self, r: ChunkReader):
        self.pre_behaviour = r.read_u32() & 0xFF
        self.post_behaviour = r.read_u32() & 0xFF
        self.keys = [Key.read_legacy(r) for _ in range(r.read_u32())]

    def load(self, r: ChunkReader):
        self.pre_behaviour = r.read_u8()
        self.post_behaviour = r.read_u8()
        self.keys = [Key.read(r) for _ in range(r.read_u16())]

    def save(self, w: ChunkWriter):
        w.write_u8(self.pre_behaviour)
        w.write_u8(self.post_behaviour)
        w.write_u16(len(self.keys))
        for key in self.keys:
            key.write(w)

    def rebuild(self):
        """Sort keys by time and unwrap rotation discontinuities.

        For each consecutive pair (prev, next) of a rotation envelope:
        a prev value sitting exactly on +-pi with the opposite sign to next
        is mirrored; a pair straddling the +-pi wrap (both within pi/4 of
        pi, sum within pi/4 of zero) shifts every key from next onwards by
        2*pi towards the other side.
        """
        self.keys.sort(key=lambda k: k.time)
        if not self.is_rotation:
            return

        keys = self.keys
        for i in range(1, len(keys)):
            prev, nxt = keys[i - 1], keys[i]
            if _is_mirrored(prev.value, nxt.value):
                prev.value = -prev.value
            if _is_twisted(prev.value, nxt.value):
                for key in keys[i:]:
                    if math.copysign(1.0, key.value) < 0:
                        key.value = f32(key.value + TWO_PI_F32)
                    else:
                        key.value = f32(key.value - TWO_PI_F32)


def _is_mirrored(ang0: float, ang1: float) -> bool:
    if abs(abs(ang0) - math.pi) <= sys.float_info.epsilon:
        return math.copysign(1.0, ang0) != math.copysign(1.0, ang1)
    return False


def _is_twisted(ang0: float, ang1: float) -> bool:
    quarter = math.pi / 4
    if abs(ang0 + ang1) < quarter:
        return math.pi - abs(ang0) < quarter and math.pi - abs(ang1) < quarter
    return False
