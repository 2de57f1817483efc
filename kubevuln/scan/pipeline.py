"""
Module containing the end-to-end scan of a workload.
"""

import logging
import uuid
from typing import List

from pydantic import BaseModel, ConfigDict

from .assembler import assemble_reports
from .exceptions import ContainerError, ScanIncomplete
from .job import builder, runner
from .models import VulnerabilityReport


logger = logging.getLogger(__name__)


class ScanOutcome(BaseModel):
    """
    Model for the result of scanning a workload.
    """
    model_config = ConfigDict(arbitrary_types_allowed = True, frozen = True)

    #: The id of the scan run
    run_id: str
    #: The reports for the containers that were scanned successfully
    reports: List[VulnerabilityReport]
    #: The errors for the containers that could not be scanned
    errors: List[ContainerError]

    @property
    def complete(self):
        return not self.errors

    def raise_for_errors(self):
        """
        Raise ``ScanIncomplete`` if any containers could not be scanned.
        """
        if self.errors:
            raise ScanIncomplete(self.errors)


async def scan_workload(workload,
                        plugin,
                        plugin_context,
                        backend,
                        store,
                        *,
                        namespace = None,
                        registry_credentials = None,
                        default_registry = None,
                        timeout = None,
                        run_id = None):
    """
    Scan the images of the given workload and persist the reports.

    Configuration and job errors abort the scan. Errors for individual containers
    do not; they are collected in the returned outcome.
    """
    run_id = run_id or uuid.uuid4().hex
    plugin.init(plugin_context)
    config = dict(
        plugin = plugin,
        workload = workload,
        plugin_context = plugin_context,
        namespace = namespace,
        run_id = run_id,
        registry_credentials = registry_credentials or {},
        # The backend fails the job itself shortly after the timeout
        active_deadline = int(timeout) + 60 if timeout else None
    )
    if default_registry:
        config.update(default_registry = default_registry)
    job, secrets = builder.build(builder.ScanJobConfig(**config))
    ref = workload.ref
    logger.info(f'Scanning {len(job.tasks)} container(s) of {ref.kind} {ref.namespace}/{ref.name}')
    async with runner.run(backend, job, secrets, timeout = timeout) as handle:
        reports, errors = await assemble_reports(
            plugin,
            plugin_context,
            backend,
            handle,
            job,
            workload,
            run_id
        )
    await store.write(reports)
    logger.info(
        f'Scan {run_id} produced {len(reports)} report(s) with {len(errors)} container error(s)'
    )
    return ScanOutcome(run_id = run_id, reports = reports, errors = errors)
