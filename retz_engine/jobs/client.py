"""
Remote job client capability.

The driver talks to the remote job-scheduling service only through this
interface. The wire transport and authentication belong to the concrete
implementation supplied by the caller; a client instance is one session and
is opened and closed once per tick.
"""

from abc import ABC, abstractmethod
from typing import Callable

from retz_engine.jobs.models import FileChunk, JobSpec, RemoteJob


class RemoteJobClient(ABC):
    """
    Abstract base class for remote job-scheduling clients.

    Example:
        class HttpJobClient(RemoteJobClient):
            def submit(self, spec):
                response = self.session.post("/job", json=...)
                ...

        with HttpJobClient(uri) as client:
            job = client.get(42)
    """

    def __enter__(self) -> "RemoteJobClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        """Release the session. Default is a no-op."""

    @abstractmethod
    def submit(self, spec: JobSpec) -> RemoteJob:
        """
        Schedule a new job.

        Args:
            spec: Job to submit

        Returns:
            The scheduled job, with its id assigned

        Raises:
            SubmitError: On transport failure or a non-success response
        """

    @abstractmethod
    def get(self, job_id: int) -> RemoteJob:
        """
        Fetch a job by id.

        Raises:
            NotFoundError: If the remote reports no such job
            TransportError: On any other failure
        """

    @abstractmethod
    def get_file_chunk(self, job_id: int, stream: str, offset: int, max_length: int) -> FileChunk:
        """
        Read up to ``max_length`` bytes of a job output stream from ``offset``.

        Returns:
            FileChunk with ``present=False`` if the stream does not exist yet,
            or with empty data when no new bytes are available

        Raises:
            TransportError: On failure
        """

    @abstractmethod
    def kill(self, job_id: int) -> None:
        """
        Kill a job.

        Raises:
            TransportError: On failure
        """


# Zero-argument callable opening a new client session
ClientFactory = Callable[[], RemoteJobClient]
