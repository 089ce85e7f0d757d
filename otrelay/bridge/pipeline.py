"""Relay pipeline - classification, repair, substitution and the reset handshake.

Upstream text is processed line by line:
  1. Classify - instruction frame or status line
  2. Frame path - decode and cache the watched value (never relayed)
  3. Status path - repair, substitute, hand to the line hooks, relay
  4. Reset handshake - answer a completed PS=1 dump with ``PS=0``

Downstream commands go through the prefix rewrite and the command hooks
before they are written to the gateway.
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from otrelay.config import RelayConfig

from .protocol import ChunkKind, InstructionFrame, classify, parse_frame
from .status import StatusLineRepairer

logger = logging.getLogger("otrelay.bridge.pipeline")

ENCODING = "latin-1"
RESET_COMMAND = b"PS=0\r\n"
RESET_MARKER = "PS: 1"
CONFIRMATION_PATTERN = re.compile(r"[01]{7,9}/[01]{7,9},.*")


def decode(data: bytes) -> str:
    return data.decode(ENCODING)


def encode(text: str) -> bytes:
    return text.encode(ENCODING)


def printable(text: str) -> str:
    """Single-line rendering of a chunk for logs."""
    return re.sub(r"[\r\n]*$", "", text).replace("\r\n", ",")


@dataclass
class RelaySession:
    """All mutable relay state, owned by the pipeline."""
    replacement_value: str = "0"
    reset_pending: bool = False
    started: float = field(default_factory=time.time)
    stats: Dict[str, int] = field(default_factory=lambda: {
        "frames_seen": 0,
        "lines_relayed": 0,
        "substitutions": 0,
        "value_updates": 0,
        "resets_sent": 0,
        "commands_forwarded": 0,
    })


@dataclass
class UpstreamResult:
    """What the bridge must do for one piece of upstream text."""
    relay: List[bytes] = field(default_factory=list)
    commands: List[bytes] = field(default_factory=list)


class ResetHandshake:
    """Returns the gateway to its default reporting mode after a PS=1 dump.

    A client asks for the summary with ``PS=1``; the gateway echoes ``PS: 1``
    and then emits the summary line. Once that line shows up, ``PS=0`` is
    sent so that otmonitor keeps receiving the normal message stream.
    """

    def __init__(self, session: RelaySession, enabled: bool = True):
        self.session = session
        self.enabled = enabled

    @property
    def awaiting(self) -> bool:
        return self.session.reset_pending

    def observe(self, line: str) -> bool:
        """Feed a processed line; True when the reset command must be sent."""
        if RESET_MARKER in line:
            self.session.reset_pending = self.enabled
        if self.session.reset_pending and CONFIRMATION_PATTERN.search(line):
            self.session.reset_pending = False
            return True
        return False


LineHook = Callable[[str, RelaySession], None]
CommandHook = Callable[[str, RelaySession], None]
FrameHook = Callable[[InstructionFrame, RelaySession], None]


class RelayPipeline:
    """Processes gateway and client traffic for the relay."""

    def __init__(self, config: Optional[RelayConfig] = None):
        self.config = config or RelayConfig()
        self.session = RelaySession()
        self.repairer = StatusLineRepairer(
            field_index=self.config.field_index,
            substitute=self.config.replace_field,
        )
        self.handshake = ResetHandshake(self.session, enabled=self.config.reset_ps_state)

        self._line_hooks: List[LineHook] = []
        self._command_hooks: List[CommandHook] = []
        self._frame_hooks: List[FrameHook] = []

    # --- Hook Registration ---

    def add_line_hook(self, hook: LineHook) -> None:
        """Add hook called with every status line relayed to clients."""
        self._line_hooks.append(hook)

    def add_command_hook(self, hook: CommandHook) -> None:
        """Add hook called with every client command forwarded upstream."""
        self._command_hooks.append(hook)

    def add_frame_hook(self, hook: FrameHook) -> None:
        """Add hook called with every decoded instruction frame."""
        self._frame_hooks.append(hook)

    # --- Downstream -> Upstream ---

    def process_downstream(self, data: bytes) -> bytes:
        text = decode(data)
        logger.debug("DOM: %s", printable(text))
        if self.config.rewrite_prefix:
            text = text.replace(self.config.prefix_from, self.config.prefix_to, 1)
        self.session.stats["commands_forwarded"] += 1
        for hook in self._command_hooks:
            hook(text, self.session)
        return encode(text)

    # --- Upstream -> Downstream ---

    def process_upstream(self, data: bytes) -> UpstreamResult:
        """Process one upstream read, line by line, in arrival order."""
        result = UpstreamResult()
        # bytes.splitlines only breaks on \r and \n
        for raw_line in data.splitlines(keepends=True):
            self._process_line(decode(raw_line), result)
        return result

    def _process_line(self, line: str, result: UpstreamResult) -> None:
        if classify(line) is ChunkKind.FRAME:
            self.session.stats["frames_seen"] += 1
            if self.watching:
                self.inspect_frame(line)
        else:
            logger.debug("OTGW : %s", printable(line))
            line = self.repair(line)
            self.session.stats["lines_relayed"] += 1
            for hook in self._line_hooks:
                hook(line, self.session)
            result.relay.append(encode(line))

        if self.handshake.observe(line):
            logger.info("PS=1 output delivered, sending PS=0 to the gateway")
            self.session.stats["resets_sent"] += 1
            result.commands.append(RESET_COMMAND)

    @property
    def watching(self) -> bool:
        return self.config.replace_field or self.config.trace_frames

    def inspect_frame(self, token: str) -> InstructionFrame:
        frame = parse_frame(token)
        cfg = self.config
        if cfg.replace_field and frame.is_ack and frame.data_id == cfg.watched_id:
            self.session.replacement_value = frame.value_str if frame.recognized else frame.float_str
            self.session.stats["value_updates"] += 1
            logger.info(
                "New replacement value found: (msgid %s: '%s') : %s",
                frame.data_id,
                frame.name,
                self.session.replacement_value,
            )

        # control setpoint traffic is too chatty to trace; all operands are evaluated
        if (frame.data_id != 1) & frame.is_ack & cfg.trace_frames:
            if frame.recognized:
                logger.debug("%s (%s) %s : %s", frame.raw, frame.data_id, frame.name, frame.value_str)
            else:
                logger.debug("%s : %r", frame.raw, frame)

        for hook in self._frame_hooks:
            hook(frame, self.session)
        return frame

    def repair(self, line: str) -> str:
        repaired = self.repairer.normalize(line)
        if self.repairer.substitute_enabled:
            repaired, changed = self.repairer.substitute(repaired, self.session.replacement_value)
            if changed:
                self.session.stats["substitutions"] += 1
                logger.debug("RPLC : %s", printable(repaired))
        return repaired

    # --- Statistics ---

    def get_stats(self) -> Dict[str, int]:
        return dict(self.session.stats)

    def reset_stats(self) -> None:
        for key in self.session.stats:
            self.session.stats[key] = 0
