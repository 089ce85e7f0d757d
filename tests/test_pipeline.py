"""Tests for otrelay.bridge.pipeline module."""

import logging

from otrelay.bridge.pipeline import (
    RESET_COMMAND,
    RelayPipeline,
    RelaySession,
    ResetHandshake,
    printable,
)
from otrelay.bridge.status import split_fields
from otrelay.config import RelayConfig

SUMMARY = (
    "00000011/00001010,10.00,00000011/00000000,100.00,100/0,20.00,0.00,1.50,20.50,"
    "45.00,50.00,10.00,40.00,60/40,90/20,55.00,80.00,1000,2000,300,400,5000,6000,700,800\r\n"
)


def _pipeline(**kwargs) -> RelayPipeline:
    return RelayPipeline(RelayConfig(**kwargs))


class TestResetHandshake:

    def test_marker_then_confirmation_resets_once(self):
        pipeline = _pipeline()
        first = pipeline.process_upstream(b"PS: 1\r\n")
        assert first.commands == []
        assert pipeline.session.reset_pending

        second = pipeline.process_upstream(SUMMARY.encode())
        assert second.commands == [RESET_COMMAND]
        assert not pipeline.session.reset_pending

        third = pipeline.process_upstream(SUMMARY.encode())
        assert third.commands == []
        assert pipeline.get_stats()["resets_sent"] == 1

    def test_confirmation_without_marker_does_nothing(self):
        pipeline = _pipeline()
        result = pipeline.process_upstream(b"01010101/10101010,20.00\r\n")
        assert result.commands == []
        assert not pipeline.session.reset_pending

    def test_disabled(self):
        pipeline = _pipeline(reset_ps_state=False)
        pipeline.process_upstream(b"PS: 1\r\n")
        result = pipeline.process_upstream(SUMMARY.encode())
        assert result.commands == []

    def test_marker_and_confirmation_in_one_read(self):
        pipeline = _pipeline()
        result = pipeline.process_upstream(b"PS: 1\r\n" + SUMMARY.encode())
        assert result.commands == [RESET_COMMAND]
        assert len(result.relay) == 2

    def test_state_machine_standalone(self):
        session = RelaySession()
        handshake = ResetHandshake(session)
        assert not handshake.observe("01010101/10101010,1")
        assert not handshake.observe("PS: 1")
        assert handshake.awaiting
        assert handshake.observe("01010101/10101010,1")
        assert not handshake.awaiting


class TestUpstream:

    def test_frames_are_not_relayed(self):
        pipeline = _pipeline()
        result = pipeline.process_upstream(b"B40190A00\r\n")
        assert result.relay == []
        assert pipeline.get_stats()["frames_seen"] == 1

    def test_status_lines_are_repaired_and_relayed(self):
        pipeline = _pipeline()
        result = pipeline.process_upstream(b"B40190A00\r\nPR:   ,I=00\r\n")
        assert result.relay == [b"PR: I=00\r\n"]

    def test_bytes_are_relayed_transparently(self):
        pipeline = _pipeline()
        result = pipeline.process_upstream(b"\xff\xfe status\r\n")
        assert result.relay == [b"\xff\xfe status\r\n"]

    def test_watched_value_substituted(self):
        pipeline = _pipeline(replace_field=True, watched_id=25, field_index=10)
        pipeline.process_upstream(b"B40190A80\r\n")
        assert pipeline.session.replacement_value == "10.50"

        result = pipeline.process_upstream(SUMMARY.encode())
        fields = split_fields(result.relay[0].decode())
        assert fields[9] == "10.50"
        assert pipeline.get_stats()["substitutions"] == 1

    def test_only_cr_and_lf_end_a_line(self):
        pipeline = _pipeline(replace_field=True, field_index=11)
        line = SUMMARY.replace("1000", "10\x0c00").replace("2000", "20\x8500")
        result = pipeline.process_upstream(line.encode("latin-1"))
        assert len(result.relay) == 1
        fields = split_fields(result.relay[0].decode("latin-1"))
        assert fields[10] == "0"
        assert fields[17:19] == ["10\x0c00", "20\x8500"]

    def test_initial_replacement_value(self):
        pipeline = _pipeline(replace_field=True, field_index=11)
        result = pipeline.process_upstream(SUMMARY.encode())
        assert split_fields(result.relay[0].decode())[10] == "0"

    def test_non_ack_frames_do_not_update(self):
        pipeline = _pipeline(replace_field=True, watched_id=25)
        pipeline.process_upstream(b"T00190A80\r\n")
        assert pipeline.session.replacement_value == "0"

    def test_other_ids_do_not_update(self):
        pipeline = _pipeline(replace_field=True, watched_id=29)
        pipeline.process_upstream(b"B40190A80\r\n")
        assert pipeline.session.replacement_value == "0"

    def test_unrecognized_watched_id_uses_float(self):
        pipeline = _pipeline(replace_field=True, watched_id=3)
        pipeline.process_upstream(b"B50030A80\r\n")
        assert pipeline.session.replacement_value == "10.50"

    def test_substitution_disabled_leaves_summary(self):
        pipeline = _pipeline(replace_field=False)
        pipeline.process_upstream(b"B401D1400\r\n")
        result = pipeline.process_upstream(SUMMARY.encode())
        assert result.relay == [SUMMARY.encode()]

    def test_frames_not_parsed_unless_watching(self):
        pipeline = _pipeline()
        seen = []
        pipeline.add_frame_hook(lambda frame, session: seen.append(frame))
        pipeline.process_upstream(b"B40190A00\r\n")
        assert seen == []

        tracing = _pipeline(trace_frames=True)
        tracing.add_frame_hook(lambda frame, session: seen.append(frame))
        tracing.process_upstream(b"B40190A00\r\n")
        assert [f.data_id for f in seen] == [25]

    def test_trace_logs_acks(self, caplog):
        pipeline = _pipeline(trace_frames=True)
        with caplog.at_level(logging.DEBUG, logger="otrelay.bridge.pipeline"):
            pipeline.process_upstream(b"B40190A00\r\n")
            pipeline.process_upstream(b"B40010A00\r\n")
        messages = [r.getMessage() for r in caplog.records]
        assert any("Boiler Water Temperature" in m for m in messages)
        assert not any("Control Setpoint" in m for m in messages)

    def test_line_hooks(self):
        pipeline = _pipeline()
        lines = []
        pipeline.add_line_hook(lambda line, session: lines.append(line))
        pipeline.process_upstream(b"PR, I=00\r\nB40190A00\r\n")
        assert lines == ["PR: I=00\r\n"]


class TestDownstream:

    def test_prefix_rewrite(self):
        pipeline = _pipeline()
        assert pipeline.process_downstream(b"TT=20.5\r\n") == b"TC=20.5\r\n"

    def test_only_first_occurrence_rewritten(self):
        pipeline = _pipeline()
        assert pipeline.process_downstream(b"TT=20\r\nTT=21\r\n") == b"TC=20\r\nTT=21\r\n"

    def test_rewrite_disabled(self):
        pipeline = _pipeline(rewrite_prefix=False)
        assert pipeline.process_downstream(b"TT=20.5\r\n") == b"TT=20.5\r\n"

    def test_other_commands_untouched(self):
        pipeline = _pipeline()
        assert pipeline.process_downstream(b"PS=1\r\n") == b"PS=1\r\n"

    def test_command_hooks_and_stats(self):
        pipeline = _pipeline()
        commands = []
        pipeline.add_command_hook(lambda cmd, session: commands.append(cmd))
        pipeline.process_downstream(b"TT=19\r\n")
        assert commands == ["TC=19\r\n"]
        assert pipeline.get_stats()["commands_forwarded"] == 1
        pipeline.reset_stats()
        assert pipeline.get_stats()["commands_forwarded"] == 0


def test_printable():
    assert printable("PS: 1\r\n") == "PS: 1"
    assert printable("a\r\nb\r\n") == "a,b"
