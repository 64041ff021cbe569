"""
Unit tests for output relay.
"""

import io

import pytest

from retz_engine.jobs.errors import RelayIOError, TransportError
from retz_engine.jobs.log_relay import BufferSink, TeeSink, drain
from retz_engine.jobs.models import FileChunk, JobState


@pytest.fixture
def job_id(scheduler, spec):
    with scheduler.client() as client:
        job = client.submit(spec)
    scheduler.set_state(job.id, JobState.STARTED)
    return job.id


class TestDrain:
    """Test draining a stream from an offset."""

    def test_missing_stream_reads_nothing(self, scheduler, sink, job_id):
        """Test a stream that does not exist yet."""
        with scheduler.client() as client:
            assert drain(client, job_id, "stdout", 0, sink) == 0
        assert sink.getvalue() == b""

    def test_reads_everything_in_chunks(self, scheduler, sink, job_id):
        """Test a long stream is read in chunks."""
        scheduler.append(job_id, "stdout", b"abcdefghij")
        with scheduler.client() as client:
            assert drain(client, job_id, "stdout", 0, sink, max_length=3) == 10
        assert sink.getvalue() == b"abcdefghij"
        assert sink.chunks == [b"abc", b"def", b"ghi", b"j"]

    def test_resumes_from_offset(self, scheduler, sink, job_id):
        """Test reading resumes from an offset."""
        scheduler.append(job_id, "stdout", b"hello world")
        with scheduler.client() as client:
            assert drain(client, job_id, "stdout", 6, sink) == 5
        assert sink.getvalue() == b"world"

    def test_offset_at_end_reads_nothing(self, scheduler, sink, job_id):
        """Test an offset at the end of the stream."""
        scheduler.append(job_id, "stdout", b"hello")
        with scheduler.client() as client:
            assert drain(client, job_id, "stdout", 5, sink) == 0

    def test_bytes_are_not_decoded(self, scheduler, sink, job_id):
        """Test bytes reach the sink undecoded."""
        data = "日本語\n".encode("utf-8")[:-2] + b"\xff\x00"
        scheduler.append(job_id, "stdout", data)
        with scheduler.client() as client:
            drain(client, job_id, "stdout", 0, sink, max_length=2)
        assert sink.getvalue() == data

    def test_unexpected_response_type(self, sink):
        """Test a chunk response of the wrong type."""
        class BrokenClient:
            def get_file_chunk(self, job_id, stream, offset, max_length):
                return {"data": "nope"}

        with pytest.raises(RelayIOError) as exc_info:
            drain(BrokenClient(), 42, "stdout", 0, sink)
        assert isinstance(exc_info.value, TransportError)
        assert exc_info.value.job_id == 42

    def test_empty_present_chunk_stops(self, sink):
        """Test an empty chunk ends the drain."""
        class EmptyClient:
            calls = 0

            def get_file_chunk(self, job_id, stream, offset, max_length):
                EmptyClient.calls += 1
                return FileChunk(present=True, data=b"")

        assert drain(EmptyClient(), 1, "stderr", 0, sink) == 0
        assert EmptyClient.calls == 1


class TestSinks:
    """Test sink helpers."""

    def test_buffer_sink(self):
        """Test the in-memory sink."""
        sink = BufferSink()
        sink.write(b"ab")
        sink.write(bytearray(b"c"))
        assert sink.getvalue() == b"abc"
        assert len(sink) == 3

    def test_tee_sink_writes_in_order_and_flushes(self):
        """Test the tee sink writes to every target in order."""
        first = io.BytesIO()
        second = BufferSink()
        tee = TeeSink(first, second)
        assert tee.write(b"one") == 3
        tee.write(b"two")
        assert first.getvalue() == b"onetwo"
        assert second.getvalue() == b"onetwo"
