"""Status-line repair and PS=1 summary field substitution.

The gateway occasionally emits malformed status lines (a stray comma after
``PR:``, a missing comma inside the PS=1 summary). These are normalized before
the line is relayed, and one field of the 25-field summary can be replaced by
a value learned from the instruction frames.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Tuple

FIELD_SEPARATOR = ","
PS1_FIELD_COUNT = 25


@dataclass(frozen=True)
class SummaryField:
    index: int       # 1-based position in the PS=1 line
    data_id: int
    description: str
    rendering: str


PS1_FIELDS: Tuple[SummaryField, ...] = (
    SummaryField(1, 0, "Status", "two 8-bit bitfields"),
    SummaryField(2, 1, "Control setpoint", "floating point"),
    SummaryField(3, 6, "Remote parameter flags", "two 8-bit bitfields"),
    SummaryField(4, 14, "Maximum relative modulation level", "floating point"),
    SummaryField(5, 15, "Boiler capacity and modulation limits", "two bytes"),
    SummaryField(6, 16, "Room setpoint", "floating point"),
    SummaryField(7, 17, "Relative modulation level", "floating point"),
    SummaryField(8, 18, "CH water pressure", "floating point"),
    SummaryField(9, 24, "Room temperature", "floating point"),
    SummaryField(10, 25, "Boiler water temperature", "floating point"),
    SummaryField(11, 26, "DHW temperature", "floating point"),
    SummaryField(12, 27, "Outside temperature", "floating point"),
    SummaryField(13, 28, "Return water temperature", "floating point"),
    SummaryField(14, 48, "DHW setpoint boundaries", "two bytes"),
    SummaryField(15, 49, "Max CH setpoint boundaries", "two bytes"),
    SummaryField(16, 56, "DHW setpoint", "floating point"),
    SummaryField(17, 57, "Max CH water setpoint", "floating point"),
    SummaryField(18, 116, "Burner starts", "decimal"),
    SummaryField(19, 117, "CH pump starts", "decimal"),
    SummaryField(20, 118, "DHW pump/valve starts", "decimal"),
    SummaryField(21, 119, "DHW burner starts", "decimal"),
    SummaryField(22, 120, "Burner operation hours", "decimal"),
    SummaryField(23, 121, "CH pump operation hours", "decimal"),
    SummaryField(24, 122, "DHW pump/valve operation hours", "decimal"),
    SummaryField(25, 123, "DHW burner operation hours", "decimal"),
)

_PR_SPACED_COMMA = re.compile(r"PR:[ ]*,")
_PR_COMMA = "PR, "
_PR_CANONICAL = "PR: "

# flags,float,flags glued to the next float
_MISSING_COMMA_AFTER_FLAGS = re.compile(
    r"([01]{8}/[01]{8},[0-9.]{4,6},[01]{8}/[01]{8})([0-9.]{4,6}.*)"
)
# flags,float glued to a second two-decimal float
_MISSING_COMMA_AFTER_FLOAT = re.compile(
    r"([01]{8}/[01]{8},[0-9]+\.[0-9]{2})([0-9]+\.[0-9]{2}.*)"
)


def split_fields(line: str) -> List[str]:
    return line.split(FIELD_SEPARATOR)


def is_summary_line(line: str) -> bool:
    return len(split_fields(line)) == PS1_FIELD_COUNT


class StatusLineRepairer:
    """Normalizes status lines and substitutes one PS=1 field.

    Args:
        field_index: 1-based index of the PS=1 field to overwrite.
        substitute: Enable field substitution.
    """

    def __init__(self, field_index: int = 11, substitute: bool = False):
        self.field_index = field_index
        self.substitute_enabled = substitute

    @staticmethod
    def normalize(line: str) -> str:
        line = _PR_SPACED_COMMA.sub(_PR_CANONICAL, line)
        line = line.replace(_PR_COMMA, _PR_CANONICAL)
        line = _MISSING_COMMA_AFTER_FLAGS.sub(r"\1,\2", line, count=1)
        line = _MISSING_COMMA_AFTER_FLOAT.sub(r"\1,\2", line, count=1)
        return line

    def substitute(self, line: str, value: str) -> Tuple[str, bool]:
        """Overwrite the configured field of a 25-field line.

        Returns the (possibly) rewritten line and whether it was changed.
        """
        fields = split_fields(line)
        if len(fields) != PS1_FIELD_COUNT:
            return line, False
        fields[self.field_index - 1] = value
        return FIELD_SEPARATOR.join(fields), True

    def repair(self, line: str, value: str = "0") -> str:
        line = self.normalize(line)
        if self.substitute_enabled:
            line, _ = self.substitute(line, value)
        return line
