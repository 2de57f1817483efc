"""
Module providing a scanner plugin for Grype.
"""

import datetime
import json

from dateutil.parser import parse as dateutil_parse

from pydantic import constr

from ..docker import parse_image
from ..models import (
    Severity,
    Vulnerability,
    Scanner,
    Registry,
    Artifact,
    VulnerabilityReportData
)
from ..job.models import EnvVar, TaskSpec
from ..util import parse_errors

from .base import Plugin as BasePlugin, PluginConfig


#: Grype severities that do not have a direct equivalent
SEVERITY_ALIASES = {
    'negligible': Severity.LOW,
}


class Config(PluginConfig):
    """
    Configuration for the Grype plugin.
    """
    image_ref: constr(min_length = 1) = 'anchore/grype:v0.74.7'
    #: Whether to ignore vulnerabilities that have no fix
    only_fixed: bool = False


class Plugin(BasePlugin):
    """
    Scanner plugin for Anchore Grype.
    """
    kind = "Grype"
    vendor = "Anchore"
    config_model = Config
    username_env = 'GRYPE_REGISTRY_AUTH_USERNAME'
    password_env = 'GRYPE_REGISTRY_AUTH_PASSWORD'

    def credentials_env(self, secret_name, container, registry):
        # Grype needs to be told which registry the credentials are for
        return (EnvVar(name = 'GRYPE_REGISTRY_AUTH_AUTHORITY', value = registry), ) + \
            super().credentials_env(secret_name, container, registry)

    def build_task(self, context, container):
        self.check_image(container.image)
        config = self.get_config(context)
        args = [
            # Always pull from the registry, as there is no container runtime in the task
            f'registry:{container.image}',
            '--output', 'json',
            '--quiet',
        ]
        if config.only_fixed:
            args.append('--only-fixed')
        return TaskSpec(
            name = container.name,
            image = config.image_ref,
            args = tuple(args),
            env = (EnvVar(name = 'GRYPE_CHECK_FOR_APP_UPDATE', value = 'false'), ),
            resources = config.resources
        )

    def severity(self, value):
        """
        Return the severity for a Grype severity string.
        """
        try:
            return SEVERITY_ALIASES[value.lower()]
        except (KeyError, AttributeError):
            return Severity.parse(value)

    @parse_errors
    def parse(self, context, image, stream):
        output = json.loads(stream.read())
        descriptor = output.get('descriptor') or {}
        target = (output.get('source') or {}).get('target') or {}
        reference = parse_image(image)
        digest = reference.digest
        repo_digests = target.get('repoDigests') or []
        if not digest and repo_digests:
            digest = repo_digests[0].partition('@')[2] or None
        timestamp = descriptor.get('timestamp')
        version = descriptor.get('version')
        if not version:
            version = (parse_image(self.get_config(context).image_ref).tag or 'unknown').lstrip('v')
        vulnerabilities = []
        for match in output.get('matches') or []:
            vuln = match['vulnerability']
            artifact = match['artifact']
            links = vuln.get('urls') or []
            fix_versions = (vuln.get('fix') or {}).get('versions') or []
            vulnerabilities.append(
                Vulnerability(
                    vulnerability_id = vuln['id'],
                    severity = self.severity(vuln.get('severity')),
                    resource = artifact['name'],
                    installed_version = artifact.get('version') or '',
                    fixed_version = ', '.join(fix_versions) or None,
                    title = vuln.get('description'),
                    primary_link = vuln.get('dataSource') or next(iter(links), None),
                    links = links
                )
            )
        return VulnerabilityReportData(
            update_timestamp = (
                dateutil_parse(timestamp)
                if timestamp
                else datetime.datetime.now(datetime.timezone.utc)
            ),
            scanner = Scanner(name = self.kind, vendor = self.vendor, version = version),
            registry = Registry(server = reference.registry),
            artifact = Artifact(
                repository = reference.repository,
                tag = reference.tag,
                digest = digest
            ),
            vulnerabilities = vulnerabilities
        )
