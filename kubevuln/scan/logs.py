"""
Module containing functions for reading the scan output of each container from a job.
"""

import contextlib
import json
import logging

from .exceptions import ConfigurationError, LogsUnavailable
from .job.models import ANNOTATION_CONTAINER_IMAGES


logger = logging.getLogger(__name__)


def images_of(job):
    """
    Returns a dictionary of container name -> image reference for the containers
    scanned by the given job.
    """
    try:
        images = job.container_images
    except KeyError:
        raise ConfigurationError(f'job {job.name} has no {ANNOTATION_CONTAINER_IMAGES} annotation')
    except ValueError as exc:
        raise ConfigurationError(f'job {job.name} has an invalid {ANNOTATION_CONTAINER_IMAGES} annotation: {exc}')
    if not isinstance(images, dict):
        raise ConfigurationError(f'job {job.name} has an invalid {ANNOTATION_CONTAINER_IMAGES} annotation')
    return images


@contextlib.asynccontextmanager
async def open_logs(backend, handle, container_name):
    """
    Async context manager that yields a readable binary stream of the logs for the
    named container and closes it on exit.

    Raises ``LogsUnavailable`` if the logs cannot be retrieved.
    """
    try:
        stream = await backend.logs(handle, container_name)
    except LogsUnavailable as exc:
        exc.container = exc.container or container_name
        raise
    except OSError as exc:
        raise LogsUnavailable(repr(exc), container = container_name) from exc
    try:
        yield stream
    finally:
        stream.close()
