"""otrelay bridge - share one OpenTherm Gateway between several TCP clients.

The relay sits between the gateway (or otmonitor's relay port) and any number
of clients, forwarding client commands upstream and the gateway's status lines
downstream, while repairing known line defects, optionally substituting one
PS=1 summary field and returning the gateway to its default reporting mode
after a client's summary request.
"""

from .bridge import Relay
from .downstream import ClientSession, DownstreamServer
from .pipeline import RelayPipeline, RelaySession, ResetHandshake, UpstreamResult
from .protocol import (
    ChunkKind,
    InstructionFrame,
    KNOWN_DATA_IDS,
    MessageType,
    ValueKind,
    classify,
    parse_frame,
)
from .status import PS1_FIELDS, StatusLineRepairer
from .upstream import GatewayConnection

__all__ = [
    "Relay",
    "RelayPipeline",
    "RelaySession",
    "ResetHandshake",
    "UpstreamResult",
    "GatewayConnection",
    "DownstreamServer",
    "ClientSession",
    "ChunkKind",
    "InstructionFrame",
    "KNOWN_DATA_IDS",
    "MessageType",
    "ValueKind",
    "classify",
    "parse_frame",
    "PS1_FIELDS",
    "StatusLineRepairer",
]
