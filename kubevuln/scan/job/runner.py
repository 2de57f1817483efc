"""
Module containing the runner for scan jobs.
"""

import asyncio
import contextlib
import logging

from ..exceptions import JobFailed, JobTimeout


logger = logging.getLogger(__name__)


async def delete_quietly(backend, handle):
    """
    Delete the job for the given handle, logging rather than raising any errors.
    """
    try:
        # Shield the deletion so that a second cancellation does not interrupt it
        await asyncio.shield(backend.delete(handle))
    except Exception:
        logger.exception(f'Failed to delete scan job {handle.namespace}/{handle.name}')


@contextlib.asynccontextmanager
async def run(backend, job, secrets = (), timeout = None):
    """
    Async context manager that runs the given job to completion using the given
    execution backend and yields the handle of the completed job.

    The job is deleted when the context exits, so logs must be read inside the context.

    Raises ``JobFailed`` if the job fails and ``JobTimeout`` if it does not finish
    within ``timeout`` seconds. If the caller is cancelled while submitting or waiting,
    the job is deleted before the cancellation propagates. Jobs are never re-submitted.
    """
    # The job may be created before submit returns, so submit runs to completion
    # even if the caller is cancelled and the job is then deleted
    submission = asyncio.ensure_future(backend.submit(job, list(secrets)))
    try:
        handle = await asyncio.shield(submission)
    except asyncio.CancelledError:
        logger.warning(f'Cancelled while submitting scan job {job.namespace}/{job.name}')
        try:
            handle = await submission
        except Exception:
            logger.exception(f'Failed to submit scan job {job.namespace}/{job.name}')
        else:
            await delete_quietly(backend, handle)
        raise
    try:
        try:
            status = await asyncio.wait_for(backend.wait(handle), timeout)
        except asyncio.TimeoutError:
            raise JobTimeout(handle.name, timeout) from None
        if not status.succeeded:
            raise JobFailed(handle.name, status.failed_tasks, status.message)
        logger.info(f'Scan job {handle.namespace}/{handle.name} completed successfully')
        yield handle
    except asyncio.CancelledError:
        logger.warning(f'Cancelled while running scan job {handle.namespace}/{handle.name}')
        raise
    finally:
        await delete_quietly(backend, handle)
