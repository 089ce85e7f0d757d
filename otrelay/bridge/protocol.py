"""OpenTherm Gateway stream classification and instruction-frame decoding.

The gateway multiplexes two things over one stream: human-oriented status
lines and a compact echo of the OpenTherm instruction frames it sees, e.g.
``B40190A00`` (direction letter + 8 hex digits). Only the frames carry the raw
payload needed for value extraction; only the status lines are relayed.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, Optional

FRAME_PATTERN = re.compile(r"[BTARE][0-9ABCDEF,]{8}")
FRAME_LENGTH = 9

_HEX_PREFIX = re.compile(r"[+-]?[0-9A-Fa-f]+")
_DEC_PREFIX = re.compile(r"[+-]?[0-9]+")


class ChunkKind(Enum):
    """Route taken by a piece of upstream text."""
    FRAME = auto()   # instruction echo, never relayed
    STATUS = auto()  # status/log line, relayed downstream


class MessageType(Enum):
    """OpenTherm message type (3 bits after the parity bit)."""
    READ_DATA = 0
    WRITE_DATA = 1
    READ_ACK = 4
    WRITE_ACK = 5
    OTHER = -1

    @classmethod
    def from_nibble(cls, value: int) -> "MessageType":
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


class ValueKind(Enum):
    """How the payload of a known data-id is rendered."""
    FLOAT = auto()
    FLAGS = auto()
    REMOTE_OVERRIDE = auto()
    UNSIGNED = auto()
    SIGNED = auto()
    DEFAULT = auto()


@dataclass(frozen=True)
class DataIdInfo:
    name: str
    kind: ValueKind


KNOWN_DATA_IDS: Dict[int, DataIdInfo] = {
    0: DataIdInfo("Master and slave status flags", ValueKind.FLAGS),
    1: DataIdInfo("Control Setpoint", ValueKind.FLOAT),
    5: DataIdInfo("Application Specific Flags", ValueKind.FLAGS),
    6: DataIdInfo("Remote Parameter Flags", ValueKind.FLAGS),
    9: DataIdInfo("Remote Override Room Setpoint", ValueKind.FLOAT),
    14: DataIdInfo("Maximum Relative Modulation Level", ValueKind.FLOAT),
    15: DataIdInfo("Boiler Capacity and Modulation Limits", ValueKind.DEFAULT),
    16: DataIdInfo("Room Setpoint", ValueKind.FLOAT),
    17: DataIdInfo("Relative Modulation Level", ValueKind.FLOAT),
    18: DataIdInfo("Water Pressure", ValueKind.FLOAT),
    24: DataIdInfo("Room Temperature", ValueKind.FLOAT),
    25: DataIdInfo("Boiler Water Temperature", ValueKind.FLOAT),
    26: DataIdInfo("DHW Temperature", ValueKind.FLOAT),
    27: DataIdInfo("Outside Temperature", ValueKind.FLOAT),
    28: DataIdInfo("Return Water Temperature", ValueKind.FLOAT),
    29: DataIdInfo("Solar Boiler Temperature", ValueKind.FLOAT),
    48: DataIdInfo("DHW Setpoint Boundaries", ValueKind.DEFAULT),
    49: DataIdInfo("Max CH Setpoint Boundaries", ValueKind.DEFAULT),
    56: DataIdInfo("DHW Setpoint", ValueKind.FLOAT),
    57: DataIdInfo("Max CH water Setpoint", ValueKind.FLOAT),
    100: DataIdInfo("Remote Override Function", ValueKind.REMOTE_OVERRIDE),
    116: DataIdInfo("Burner Starts", ValueKind.UNSIGNED),
    117: DataIdInfo("CH Pump Starts", ValueKind.UNSIGNED),
    118: DataIdInfo("DHW Pump/Valve Starts", ValueKind.UNSIGNED),
    119: DataIdInfo("DHW Burner Starts", ValueKind.UNSIGNED),
    120: DataIdInfo("Burner Operation Hours", ValueKind.UNSIGNED),
    121: DataIdInfo("CH Pump Operation Hours", ValueKind.UNSIGNED),
    122: DataIdInfo("DHW Pump/Valve Operation Hours", ValueKind.UNSIGNED),
    123: DataIdInfo("DHW Burner Operation Hours", ValueKind.UNSIGNED),
}


@dataclass
class InstructionFrame:
    """A decoded instruction frame such as ``B40190A00``."""
    raw: str
    message_type: MessageType
    data_id: Optional[int]
    as_float: float
    as_uint: Optional[int]
    as_sint: Optional[int]
    as_flags: str
    status: str = ""
    recognized: bool = False
    name: str = ""
    value: object = None
    value_str: str = ""

    @property
    def direction(self) -> str:
        return self.raw[:1]

    @property
    def is_ack(self) -> bool:
        return self.message_type in (MessageType.READ_ACK, MessageType.WRITE_ACK)

    @property
    def float_str(self) -> str:
        if math.isnan(self.as_float):
            return "NaN"
        return f"{self.as_float:.2f}"


def classify(text: str) -> ChunkKind:
    """Decide whether upstream text is an instruction frame or a status line."""
    if FRAME_PATTERN.search(text):
        return ChunkKind.FRAME
    return ChunkKind.STATUS


def parse_int(text: str, base: int = 16) -> Optional[int]:
    """Parse the longest leading run of digits, ``None`` if there is none.

    Frames may carry commas in digit positions; a lenient prefix parse keeps
    decoding total instead of raising.
    """
    pattern = _HEX_PREFIX if base == 16 else _DEC_PREFIX
    match = pattern.match(text.strip())
    if match is None or match.group(0) in ("+", "-"):
        return None
    try:
        return int(match.group(0), base)
    except ValueError:
        return None


def format_flags(value: Optional[int]) -> str:
    """Render a 16-bit value as two 8-bit binary groups, e.g. ``00000011/00001010``."""
    value = value or 0
    return f"{(value >> 8) & 0xFF:08b}/{value & 0xFF:08b}"


def remote_override_status(value: Optional[int]) -> str:
    """The ``TC``/``TT`` token carried in bits 8-9 of data-id 100."""
    value = value or 0
    if value & 0x0300:
        return "TC" if value & 0x0100 else "TT"
    return ""


def _decode_float(high: str, low: str) -> float:
    # sign from a decimal read of the high byte digits, magnitude from hex
    sign_source = parse_int(high, 10) or 0
    sign = -1 if sign_source & 0x80 else 1
    # an unreadable high byte counts as 0, an unreadable low byte poisons the value
    high_val = parse_int(high, 16) or 0
    low_val = parse_int(low, 16)
    if low_val is None:
        return math.nan
    return sign * ((high_val & 0x7F) + low_val / 256.0)


def parse_frame(token: str) -> InstructionFrame:
    """Decode an instruction frame token. Never raises.

    Garbage input yields garbage (``None``/NaN) numeric fields rather than an
    exception; an unparseable data-id is simply not recognized.
    """
    token = token[:FRAME_LENGTH]
    nibble = (parse_int(token[1:2], 16) or 0) & 0x7
    data = token[:1] + str(nibble) + token[2:]

    data_id = parse_int(data[3:5], 16)
    as_uint = parse_int(data[5:9], 16)
    as_sint = None
    if as_uint is not None:
        as_sint = as_uint - 0x10000 if as_uint >= 0x8000 else as_uint

    frame = InstructionFrame(
        raw=data,
        message_type=MessageType.from_nibble(nibble),
        data_id=data_id,
        as_float=_decode_float(data[5:7], data[7:9]),
        as_uint=as_uint,
        as_sint=as_sint,
        as_flags=format_flags(as_uint),
    )

    info = KNOWN_DATA_IDS.get(data_id) if data_id is not None else None
    if info is None:
        return frame

    frame.recognized = True
    frame.name = info.name
    kind = info.kind
    if kind is ValueKind.FLOAT:
        frame.value = frame.as_float
        frame.value_str = frame.float_str
    elif kind is ValueKind.FLAGS:
        frame.value = as_uint
        frame.value_str = frame.as_flags
    elif kind is ValueKind.REMOTE_OVERRIDE:
        frame.status = remote_override_status(as_uint)
        frame.value = frame.as_flags
        frame.value_str = frame.as_flags
    elif kind is ValueKind.UNSIGNED:
        frame.value = as_uint
        frame.value_str = str(as_uint)
    elif kind is ValueKind.SIGNED:
        frame.value = as_sint
        frame.value_str = str(as_sint)
    else:
        frame.value = as_uint
        frame.value_str = str(as_uint)
    return frame
