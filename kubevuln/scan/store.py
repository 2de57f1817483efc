"""
Module providing report store implementations.
"""

import abc
import logging

from kubernetes_asyncio import client
from kubernetes_asyncio.client.rest import ApiException

from .exceptions import ConfigurationError, PersistenceError


logger = logging.getLogger(__name__)


class ReportStore(abc.ABC):
    """
    Base class for all report store implementations.

    Writing the same report twice must leave a single copy of the report, so that
    callers can safely retry.
    """
    @abc.abstractmethod
    async def write(self, reports):
        """
        Persist the given reports, raising ``PersistenceError`` on failure.
        """


class DummyReportStore(ReportStore):
    """
    Dummy store implementation that fulfils the interface without doing anything.
    """
    async def write(self, reports):
        pass


class MemoryReportStore(ReportStore):
    """
    Store implementation that uses an in-memory dictionary, indexed by report identity.
    """
    def __init__(self):
        self.reports = {}

    async def write(self, reports):
        for report in reports:
            self.reports[report.identity] = report


class CustomResourceReportStore(ReportStore):
    """
    Store implementation that writes reports as VulnerabilityReport custom resources.
    """
    group = 'kubevuln.io'
    version = 'v1alpha1'
    plural = 'vulnerabilityreports'
    kind = 'VulnerabilityReport'

    def __init__(self, api_client):
        self.api = client.CustomObjectsApi(api_client)

    def manifest(self, report):
        return {
            'apiVersion': f'{self.group}/{self.version}',
            'kind': self.kind,
            'metadata': {
                'name': report.name,
                'namespace': report.namespace,
                'labels': dict(report.labels),
            },
            'report': report.report.model_dump(mode = 'json', by_alias = True),
        }

    async def write_one(self, report):
        body = self.manifest(report)
        args = (self.group, self.version, report.namespace, self.plural)
        try:
            await self.api.create_namespaced_custom_object(*args, body)
        except ApiException as exc:
            if exc.status != 409:
                raise
            # The report already exists, so replace it with the new content
            existing = await self.api.get_namespaced_custom_object(*args, report.name)
            body['metadata']['resourceVersion'] = existing['metadata']['resourceVersion']
            await self.api.replace_namespaced_custom_object(*args, report.name, body)

    async def write(self, reports):
        for report in reports:
            try:
                await self.write_one(report)
            except ApiException as exc:
                raise PersistenceError(
                    f'{report.namespace}/{report.name}: {exc.status} {exc.reason}'
                )
            logger.debug(f'Wrote report {report.namespace}/{report.name}')


def from_settings(settings, api_client = None):
    """
    Create a report store from the given settings.
    """
    store_type = settings.report_store.lower()
    if store_type == 'memory':
        return MemoryReportStore()
    elif store_type in {'kubernetes', 'crd'}:
        if api_client is None:
            raise ConfigurationError(f'report store "{store_type}" requires a Kubernetes API client')
        return CustomResourceReportStore(api_client)
    else:
        return DummyReportStore()
