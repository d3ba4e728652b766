"""
Connection Session Tests
========================

Tests for the decode-dispatch-shutdown loop of one connection.
"""

import asyncio
import struct

from conftest import FakeEncoderFactory, build_stream, make_reader
from telemetry_recorder.models.session import EndReason, SessionState
from telemetry_recorder.protocol.framing import (
    OPCODE_ONLY,
    OPCODE_SPEEDS,
    pack_header,
    pack_video,
)
from telemetry_recorder.protocol.decoder import FrameDecoder
from telemetry_recorder.storage import OutputLayout
from telemetry_recorder.stream.session import ConnectionSession


def run_session(session_dir, data, factory=None, eof=True, variant=OPCODE_SPEEDS, **kwargs):
    factory = factory or FakeEncoderFactory()

    async def run():
        session = ConnectionSession(
            session_id="test-session",
            reader=make_reader(data, eof=eof),
            output_dir=session_dir,
            decoder=FrameDecoder(variant=variant),
            encoder_factory=factory,
            **kwargs,
        )
        result = await session.run()
        return session, result

    session, result = asyncio.run(run())
    return session, result, factory


def read_lines(path):
    return path.read_text().splitlines()


class TestConnectionSession:
    """Tests for ConnectionSession.run."""

    def test_end_of_stream(self, session_dir):
        data = build_stream(
            frames=[10.1, 10.9, 11.0, 11.4],
            commands=[(10.5, ord("f"), 120, 120), (11.2, ord("s"), 0, 0)],
        )
        session, result, factory = run_session(session_dir, data)

        assert result.ok
        assert result.state == SessionState.COMPLETED
        assert result.end_reason == EndReason.END_OF_STREAM
        assert result.frames == 4
        assert result.commands == 2
        assert result.errors == []
        assert read_lines(session_dir / "sync.txt") == ["10,2", "11,2"]
        assert read_lines(session_dir / "commands.txt") == [
            "10.50,f,120,120",
            "11.20,s,0,0",
        ]

    def test_end_of_stream_without_connection_close(self, session_dir):
        data = build_stream(frames=[5.0])
        session, result, factory = run_session(session_dir, data, eof=False)

        assert result.end_reason == EndReason.END_OF_STREAM
        assert read_lines(session_dir / "sync.txt") == ["5,1"]

    def test_bytes_after_end_of_stream_are_ignored(self, session_dir):
        data = build_stream(frames=[1.0]) + pack_video(2.0, b"late")
        session, result, factory = run_session(session_dir, data)

        assert result.frames == 1
        assert len(factory.last.chunks) == 1

    def test_connection_closed_without_end_of_stream(self, session_dir):
        data = build_stream(frames=[3.1, 3.2], end_of_stream=False)
        session, result, factory = run_session(session_dir, data)

        assert result.ok
        assert result.end_reason == EndReason.CONNECTION_CLOSED
        assert read_lines(session_dir / "sync.txt") == ["3,2"]

    def test_empty_connection(self, session_dir):
        session, result, factory = run_session(session_dir, b"")

        assert result.ok
        assert result.frames == 0
        assert (session_dir / "sync.txt").read_text() == ""
        assert (session_dir / "commands.txt").read_text() == ""
        assert factory.last.closed

    def test_truncated_payload_fails_session(self, session_dir):
        data = (
            build_stream(frames=[1.0, 1.5], end_of_stream=False)
            + pack_header(0, 2.0)
            + struct.pack("<I", 1000)
            + b"x" * 500
        )
        session, result, factory = run_session(session_dir, data)

        assert result.state == SessionState.FAILED
        assert result.end_reason == EndReason.FRAMING_ERROR
        assert result.frames == 2
        assert len(result.errors) == 1
        assert result.errors[0].kind == "FramingError"
        assert result.errors[0].stage == "decoder"
        assert "500 of 1000" in result.errors[0].message
        # Nothing partial reached the encoder, and prior output is flushed
        assert all(b"x" * 500 not in chunk for chunk in factory.last.chunks)
        assert len(factory.last.chunks) == 2
        assert read_lines(session_dir / "sync.txt") == ["1,2"]

    def test_counts_match_outputs(self, session_dir):
        frames = [100 + i * 0.1 for i in range(37)]
        commands = [(100.05 + i * 0.3, ord("f"), i, i) for i in range(11)]
        data = build_stream(frames=frames, commands=commands)
        session, result, factory = run_session(session_dir, data)

        assert result.frames == 37
        assert result.commands == 11
        assert len(factory.last.chunks) == 37
        assert len(read_lines(session_dir / "commands.txt")) == 11
        sync_total = sum(int(line.split(",")[1]) for line in read_lines(session_dir / "sync.txt"))
        assert sync_total == 37
        assert result.video_bytes == sum(len(chunk) for chunk in factory.last.chunks)

    def test_frames_reach_encoder_in_wire_order(self, session_dir):
        frames = [1.0, 1.1, 1.2, 2.5, 3.0]
        data = build_stream(frames=frames, commands=[(1.15, ord("l"), 1, 2)])
        session, result, factory = run_session(session_dir, data)

        assert factory.last.chunks == [b"\xff\xd8jpeg\xff\xd9" + str(ts).encode() for ts in frames]

    def test_run_returns_after_sinks_closed(self, session_dir):
        data = build_stream(frames=[1.0], commands=[(1.5, ord("s"), 0, 0)])
        session, result, factory = run_session(session_dir, data)

        assert factory.last.closed
        assert not session.video_sink.running
        assert not session.command_sink.running
        assert session.video_sink.inbox.closed
        assert session.command_sink.inbox.closed
        assert result.finished_at is not None
        assert session.snapshot() is result

    def test_encoder_failure_aborts_session(self, session_dir):
        factory = FakeEncoderFactory(fail_on_accept=1)
        data = build_stream(
            frames=[1.0, 1.5, 2.0, 2.5, 3.0],
            commands=[(0.5, ord("f"), 10, 10)],
        )
        session, result, factory = run_session(session_dir, data, factory=factory)

        assert result.state == SessionState.FAILED
        assert result.end_reason == EndReason.SINK_ERROR
        assert [e.kind for e in result.errors] == ["EncoderError"]
        assert result.errors[0].diagnostics
        # The command sink was still shut down and flushed
        assert read_lines(session_dir / "commands.txt") == ["0.50,f,10,10"]
        assert read_lines(session_dir / "sync.txt") == ["1,1"]

    def test_encoder_bad_exit_fails_session(self, session_dir):
        factory = FakeEncoderFactory(fail_on_close=True)
        data = build_stream(frames=[1.0])
        session, result, factory = run_session(session_dir, data, factory=factory)

        assert result.state == SessionState.FAILED
        assert result.end_reason == EndReason.END_OF_STREAM
        assert result.errors[0].kind == "EncoderError"
        assert result.errors[0].stage == "encoder"

    def test_opcode_only_commands(self, session_dir):
        data = build_stream(
            frames=[1.0],
            commands=[(1.2, ord("f"), 0, 0), (1.4, ord("s"), 0, 0)],
            variant=OPCODE_ONLY,
        )
        session, result, factory = run_session(session_dir, data, variant=OPCODE_ONLY)

        assert result.commands == 2
        assert read_lines(session_dir / "commands.txt") == ["1.20,f", "1.40,s"]

    def test_int_opcode_style(self, session_dir):
        data = build_stream(frames=[], commands=[(1.0, ord("f"), 3, 4)])
        session, result, factory = run_session(session_dir, data, opcode_style="int")

        assert read_lines(session_dir / "commands.txt") == ["1.00,102,3,4"]

    def test_cancelled_session_still_shuts_down(self, session_dir):
        factory = FakeEncoderFactory()

        async def run():
            reader = make_reader(build_stream(frames=[7.1, 7.2], end_of_stream=False), eof=False)
            session = ConnectionSession(
                session_id="cancel-me",
                reader=reader,
                output_dir=session_dir,
                decoder=FrameDecoder(),
                encoder_factory=factory,
            )
            task = asyncio.create_task(session.run())
            while session.metrics.frames_dispatched < 2:
                await asyncio.sleep(0.01)
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            return session

        session = asyncio.run(run())

        assert session.result is not None
        assert session.result.end_reason == EndReason.CANCELLED
        assert session.result.state == SessionState.COMPLETED
        assert factory.last.closed
        assert read_lines(session_dir / "sync.txt") == ["7,2"]

    def test_command_log_failure_stops_video_only_stream(self, session_dir):
        frames = [50 + i * 0.1 for i in range(30)]
        data = build_stream(frames=frames)
        session, result, factory = run_session(
            session_dir,
            data,
            layout=OutputLayout(command_filename="missing/commands.txt"),
        )

        assert result.state == SessionState.FAILED
        assert result.end_reason == EndReason.SINK_ERROR
        assert [e.kind for e in result.errors] == ["StorageError"]
        assert result.frames < 30
        assert factory.last.closed

    def test_sink_failure_ends_stalled_connection(self, session_dir):
        factory = FakeEncoderFactory(fail_on_accept=0)

        async def run():
            # One frame, then the peer goes quiet without closing
            reader = make_reader(build_stream(frames=[8.0], end_of_stream=False), eof=False)
            session = ConnectionSession(
                session_id="stalled",
                reader=reader,
                output_dir=session_dir,
                decoder=FrameDecoder(),
                encoder_factory=factory,
            )
            return await asyncio.wait_for(session.run(), 5.0)

        result = asyncio.run(run())

        assert result.end_reason == EndReason.SINK_ERROR
        assert [e.kind for e in result.errors] == ["EncoderError"]

    def test_cancel_during_shutdown_still_closes_sinks(self, session_dir):
        factory = FakeEncoderFactory(close_delay=0.3)

        async def run():
            session = ConnectionSession(
                session_id="cancel-in-barrier",
                reader=make_reader(build_stream(frames=[9.2, 9.4])),
                output_dir=session_dir,
                decoder=FrameDecoder(),
                encoder_factory=factory,
            )
            task = asyncio.create_task(session.run())
            while not factory.encoders or not factory.last.closing:
                await asyncio.sleep(0.01)
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                return session, True
            return session, False

        session, cancelled = asyncio.run(run())

        assert cancelled
        assert factory.last.closed
        assert not session.video_sink.running
        assert session.result is not None
        assert session.result.end_reason == EndReason.END_OF_STREAM
        assert read_lines(session_dir / "sync.txt") == ["9,2"]
