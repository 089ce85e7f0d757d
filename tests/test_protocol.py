"""Tests for otrelay.bridge.protocol module."""

import math

import pytest
from otrelay.bridge.protocol import (
    ChunkKind,
    KNOWN_DATA_IDS,
    MessageType,
    ValueKind,
    classify,
    format_flags,
    parse_frame,
    parse_int,
    remote_override_status,
)


class TestClassify:
    """Tests for classify function."""

    def test_frames(self):
        assert classify("B40190A00\r\n") is ChunkKind.FRAME
        assert classify("T00000000") is ChunkKind.FRAME
        assert classify("R90380000\r\n") is ChunkKind.FRAME
        assert classify("A10100000") is ChunkKind.FRAME
        assert classify("E40190A00") is ChunkKind.FRAME

    def test_commas_allowed_in_frame_positions(self):
        assert classify("T,,,,,,,,") is ChunkKind.FRAME

    def test_status_lines(self):
        assert classify("PS: 1\r\n") is ChunkKind.STATUS
        assert classify("PR: I=00\r\n") is ChunkKind.STATUS
        assert classify("00000011/00001010,10.00,00000011/00000000,100.00\r\n") is ChunkKind.STATUS
        assert classify("") is ChunkKind.STATUS

    def test_lowercase_hex_is_not_a_frame(self):
        assert classify("B40190a00") is ChunkKind.STATUS

    def test_other_letters_are_not_frames(self):
        assert classify("X40190A00") is ChunkKind.STATUS


class TestParseInt:
    """Tests for the lenient prefix parser."""

    def test_hex(self):
        assert parse_int("0A", 16) == 10
        assert parse_int("ff", 16) == 255

    def test_prefix_only(self):
        assert parse_int("1,", 16) == 1
        assert parse_int("0A", 10) == 0

    def test_no_digits(self):
        assert parse_int(",,", 16) is None
        assert parse_int("", 16) is None
        assert parse_int("A0", 10) is None


class TestParseFrame:
    """Tests for parse_frame function."""

    def test_read_ack_float(self):
        frame = parse_frame("B40190A00\r\n")
        assert frame.message_type is MessageType.READ_ACK
        assert frame.is_ack
        assert frame.direction == "B"
        assert frame.data_id == 25
        assert frame.as_uint == 0x0A00
        assert frame.as_float == 10.0
        assert frame.recognized
        assert frame.name == "Boiler Water Temperature"
        assert frame.value_str == "10.00"

    def test_parity_bit_is_masked(self):
        frame = parse_frame("BC0190A80")
        assert frame.raw == "B40190A80"
        assert frame.message_type is MessageType.READ_ACK
        assert frame.value_str == "10.50"

    def test_message_types(self):
        assert parse_frame("T00000000").message_type is MessageType.READ_DATA
        assert parse_frame("T10000000").message_type is MessageType.WRITE_DATA
        assert parse_frame("B40000000").message_type is MessageType.READ_ACK
        assert parse_frame("B50000000").message_type is MessageType.WRITE_ACK
        assert parse_frame("B70000000").message_type is MessageType.OTHER
        assert not parse_frame("B60000000").is_ack

    def test_every_nibble_maps_to_a_known_type(self):
        allowed = set(MessageType)
        for nibble in "0123456789ABCDEF":
            frame = parse_frame(f"B{nibble}0190A00")
            assert frame.message_type in allowed

    def test_truncates_to_nine_characters(self):
        frame = parse_frame("B40190A00EXTRA")
        assert frame.raw == "B40190A00"

    def test_unsigned_and_signed(self):
        frame = parse_frame("B4078FFFF")
        assert frame.as_uint == 0xFFFF
        assert frame.as_sint == -1
        assert frame.data_id == 120
        assert frame.value_str == "65535"

    def test_sign_uses_decimal_read_of_high_byte(self):
        # 0x80 would be negative in f8.8, but the sign comes from a decimal read ("80")
        frame = parse_frame("B40198000")
        assert frame.as_float == 0.0
        assert frame.as_sint == -32768
        frame = parse_frame("B4019F600")
        assert frame.as_float == pytest.approx(118.0)

    def test_flags(self):
        frame = parse_frame("B40000302")
        assert frame.recognized
        assert frame.value_str == "00000011/00000010"
        assert frame.value == 0x0302

    def test_remote_override_function(self):
        tc = parse_frame("B40640100")
        assert KNOWN_DATA_IDS[100].kind is ValueKind.REMOTE_OVERRIDE
        assert tc.status == "TC"
        assert tc.value_str == "00000001/00000000"
        assert parse_frame("B40640200").status == "TT"
        assert parse_frame("B40640300").status == "TC"
        assert parse_frame("B40640000").status == ""

    def test_default_kind_renders_raw_value(self):
        frame = parse_frame("B400F6400")
        assert KNOWN_DATA_IDS[15].kind is ValueKind.DEFAULT
        assert frame.value_str == str(0x6400)

    def test_unknown_id(self):
        frame = parse_frame("B40030A80")
        assert frame.data_id == 3
        assert not frame.recognized
        assert frame.value_str == ""
        assert frame.float_str == "10.50"

    @pytest.mark.parametrize(
        "token",
        ["", "B", "T,,,,,,,,", "Z", "B4", "B4019", "\r\n", "BGGGGGGGG", "????????????"],
    )
    def test_never_raises_on_garbage(self, token):
        frame = parse_frame(token)
        assert frame.message_type in set(MessageType)

    def test_garbage_payload(self):
        frame = parse_frame("T,,,,,,,,")
        assert frame.message_type is MessageType.READ_DATA
        assert frame.data_id is None
        assert frame.as_uint is None
        assert math.isnan(frame.as_float)
        assert not frame.recognized

    def test_unreadable_high_byte_counts_as_zero(self):
        frame = parse_frame("B401D,,80")
        assert frame.data_id == 29
        assert frame.as_float == 0.5
        assert frame.value_str == "0.50"

    def test_unreadable_low_byte_renders_nan(self):
        frame = parse_frame("B401D1A,,")
        assert math.isnan(frame.as_float)
        assert frame.float_str == "NaN"

    def test_float_rendering_is_deterministic(self):
        for data_id, info in KNOWN_DATA_IDS.items():
            if info.kind is not ValueKind.FLOAT:
                continue
            token = f"B40{data_id:02X}1B40"
            assert parse_frame(token).value_str == parse_frame(token).value_str == "27.25"


class TestRendering:

    def test_format_flags_zero_padded(self):
        assert format_flags(0x0102) == "00000001/00000010"
        assert format_flags(None) == "00000000/00000000"

    def test_remote_override_status(self):
        assert remote_override_status(0x0100) == "TC"
        assert remote_override_status(0x0200) == "TT"
        assert remote_override_status(0x00FF) == ""
