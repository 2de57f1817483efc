"""
Module containing functions that assemble vulnerability reports from scan output.
"""

import asyncio
import logging

from .exceptions import ContainerError, LogsUnavailable, ParseError
from .logs import images_of, open_logs
from .models import (
    LABEL_CONTAINER_NAME,
    LABEL_RESOURCE_KIND,
    LABEL_RESOURCE_NAME,
    LABEL_RESOURCE_NAMESPACE,
    LABEL_SCAN_RUN,
    VulnerabilityReport,
    label_value,
    report_name
)


logger = logging.getLogger(__name__)


def assemble(plugin, context, image, stream):
    """
    Parse the scan output for the given image from the given stream using the plugin.

    Any error is raised as a ``ParseError``.
    """
    try:
        return plugin.parse(context, image, stream)
    except ParseError:
        raise
    except Exception as exc:
        # Plugins should raise parse errors, but some failures may escape
        raise ParseError(f'{plugin.name}: {exc!r}') from exc


def make_report(workload, container_name, run_id, data):
    """
    Wrap the report data for the given container into a labelled report.
    """
    ref = workload.ref
    return VulnerabilityReport(
        name = report_name(ref, container_name, run_id),
        namespace = ref.namespace,
        labels = {
            LABEL_CONTAINER_NAME: container_name,
            LABEL_RESOURCE_KIND: label_value(ref.kind),
            LABEL_RESOURCE_NAME: label_value(ref.name),
            LABEL_RESOURCE_NAMESPACE: label_value(ref.namespace),
            LABEL_SCAN_RUN: label_value(run_id),
        },
        report = data
    )


async def assemble_container(plugin, context, backend, handle, workload, container_name, image, run_id):
    """
    Returns the report for a single container of the workload.
    """
    async with open_logs(backend, handle, container_name) as stream:
        try:
            data = assemble(plugin, context, image, stream)
        except ParseError as exc:
            exc.container = container_name
            raise
    logger.info(
        f'Parsed {len(data.vulnerabilities)} vulnerabilities for container {container_name} ({image})'
    )
    return make_report(workload, container_name, run_id, data)


async def assemble_reports(plugin, context, backend, handle, job, workload, run_id):
    """
    Returns a tuple of ``(reports, errors)`` for the containers of the workload.

    The containers are processed concurrently and independently, so a failure to fetch
    or parse the logs for one container does not prevent the others from being reported.
    Each error is a ``ContainerError`` naming the container it affects.
    """
    images = images_of(job)
    names = [container.name for container in workload.containers]

    async def missing(name):
        raise LogsUnavailable('container is not part of the scan job', container = name)

    tasks = [
        assemble_container(plugin, context, backend, handle, workload, name, images[name], run_id)
        if name in images
        else missing(name)
        for name in names
    ]
    results = await asyncio.gather(*tasks, return_exceptions = True)
    reports = []
    errors = []
    for name, result in zip(names, results):
        if isinstance(result, ContainerError):
            logger.error(f'Failed to scan container {name}: {result}', exc_info = result)
            errors.append(result)
        elif isinstance(result, BaseException):
            # All other exceptions are unexpected and should be re-raised
            raise result
        else:
            reports.append(result)
    return reports, errors
