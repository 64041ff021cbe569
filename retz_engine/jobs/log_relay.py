"""
Incremental relay of remote job output streams.

``drain`` reads a stream from a byte offset until the remote service has no
more bytes buffered, writing every chunk to a sink in receipt order. The
caller persists ``offset + bytes_read`` so the next tick resumes exactly
where this one stopped.
"""

import logging
from typing import BinaryIO, List, Protocol

from core.constants import MAX_FETCH_FILE_LENGTH
from retz_engine.jobs.client import RemoteJobClient
from retz_engine.jobs.errors import RelayIOError
from retz_engine.jobs.models import FileChunk

logger = logging.getLogger(__name__)


class Sink(Protocol):
    """Append-only ordered byte consumer."""

    def write(self, data: bytes) -> object:
        ...


class TeeSink:
    """
    Forward every write to several sinks, in order, without buffering.

    Example:
        >>> sink = TeeSink(sys.stdout.buffer, log_file)
        >>> sink.write(b"hello\\n")
    """

    def __init__(self, *sinks: Sink):
        self.sinks = list(sinks)

    def write(self, data: bytes) -> int:
        for sink in self.sinks:
            sink.write(data)
            flush = getattr(sink, "flush", None)
            if flush is not None:
                flush()
        return len(data)


class BufferSink:
    """Collect written bytes in memory."""

    def __init__(self):
        self.chunks: List[bytes] = []

    def write(self, data: bytes) -> int:
        self.chunks.append(bytes(data))
        return len(data)

    def getvalue(self) -> bytes:
        return b"".join(self.chunks)

    def __len__(self) -> int:
        return sum(len(chunk) for chunk in self.chunks)


def drain(
    client: RemoteJobClient,
    job_id: int,
    stream: str,
    start_offset: int,
    sink: Sink,
    max_length: int = MAX_FETCH_FILE_LENGTH
) -> int:
    """
    Relay everything currently available in a job output stream.

    Args:
        client: Open client session
        job_id: Job whose stream to read
        stream: Stream name ("stdout" or "stderr")
        start_offset: First byte not yet relayed
        sink: Destination for the bytes
        max_length: Largest chunk to request per call

    Returns:
        Number of bytes written to the sink

    Raises:
        RelayIOError: If the remote returns something other than a file chunk
    """
    current = start_offset

    while True:
        chunk = client.get_file_chunk(job_id, stream, current, max_length)
        if not isinstance(chunk, FileChunk):
            logger.error("Job(id=%s) unexpected %s response: %r", job_id, stream, chunk)
            raise RelayIOError(
                f"Job(id={job_id}) unexpected response reading {stream}: {chunk!r}",
                job_id=job_id,
            )

        # Stream not created yet
        if not chunk.present:
            return current - start_offset

        # Everything buffered so far has been read
        if not chunk.data:
            return current - start_offset

        data = bytes(chunk.data)
        logger.debug("Fetched %s data length=%d, current=%d", stream, len(data), current)
        sink.write(data)
        current += len(data)
