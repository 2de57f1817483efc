"""
Module containing the base class for execution backends.
"""

import abc


class ExecutionBackend(abc.ABC):
    """
    Base class for backends that run scan jobs.
    """
    @abc.abstractmethod
    async def submit(self, job, secrets):
        """
        Submit the given job description, creating the given secrets before the job
        can start, and return a handle for the submitted job.
        """

    @abc.abstractmethod
    async def wait(self, handle):
        """
        Wait for the job to reach a terminal state and return a ``JobStatus``.

        Waiting for a job that no longer exists must return promptly with a failed status.
        """

    @abc.abstractmethod
    async def delete(self, handle):
        """
        Delete the job and any secrets that were created with it.
        """

    @abc.abstractmethod
    async def logs(self, handle, container_name):
        """
        Return a readable binary stream containing the logs of the task for the named
        container, or raise ``LogsUnavailable``.

        The caller is responsible for closing the stream.
        """
