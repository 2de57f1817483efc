"""
Module providing a scanner plugin for Trivy.
"""

import datetime
import itertools
import json
import re
from typing import List, Optional

from dateutil.parser import parse as dateutil_parse

from pydantic import constr, field_validator

from ..docker import parse_image
from ..models import (
    Severity,
    Vulnerability,
    Scanner,
    Registry,
    Artifact,
    VulnerabilityReportData
)
from ..job.models import EnvVar, TaskSpec, VolumeMount
from ..util import parse_errors

from .base import Plugin as BasePlugin, PluginConfig


# The preferred references, in order of preference
PREFERRED_REFERENCES = [
    'cve.mitre.org',
    'nvd.nist.gov',
    'redhat.com',
    'debian.org',
    'ubuntu.com',
    'gentoo.org',
    'opensuse.org',
    'suse.com',
    'python.org',
    'oracle.com',
]

# Super-simple regex to extract a URL
URL_REGEX = re.compile(r'(https?://\S+)')

#: The volume that the vulnerability database is shared through
CACHE_VOLUME = 'scan-cache'
CACHE_DIR = '/var/lib/trivy'


def select_reference(references):
    """
    Extracts the preferred URL from the references for a vulnerability.
    """
    # Some Trivy references aren't just URLs, but do have URLs embedded in them
    # So extract the urls from the references
    reference_urls = list(itertools.chain.from_iterable(
        URL_REGEX.findall(reference)
        for reference in references
    ))
    # Return one of the preferred URLs if possible
    for pref in PREFERRED_REFERENCES:
        try:
            return next(url for url in reference_urls if pref in url)
        except StopIteration:
            pass
    # By default, return the first url
    return next(iter(reference_urls), None)


class Config(PluginConfig):
    """
    Configuration for the Trivy plugin.
    """
    image_ref: constr(min_length = 1) = 'ghcr.io/aquasecurity/trivy:0.50.1'
    #: The severities to report
    severity: List[str] = ['UNKNOWN', 'LOW', 'MEDIUM', 'HIGH', 'CRITICAL']
    #: Whether to ignore vulnerabilities that have no fix
    ignore_unfixed: bool = False
    #: The timeout for a single image scan, as a Go duration
    scan_timeout: constr(min_length = 1) = '5m0s'
    #: The repository to download the vulnerability database from
    db_repository: Optional[str] = None

    @field_validator('severity')
    @classmethod
    def check_severity(cls, severity):
        # The NONE severity is never emitted by Trivy
        valid = {s.name for s in Severity if s != Severity.NONE}
        invalid = [s for s in severity if s.upper() not in valid]
        if invalid or not severity:
            raise ValueError(f"invalid severities {invalid} (valid: {', '.join(sorted(valid))})")
        return [s.upper() for s in severity]


class Plugin(BasePlugin):
    """
    Scanner plugin for Trivy.

    The vulnerability database is downloaded once per job by an init task and shared
    with the scan tasks through an empty directory.
    """
    kind = "Trivy"
    vendor = "Aqua Security"
    config_model = Config
    username_env = 'TRIVY_USERNAME'
    password_env = 'TRIVY_PASSWORD'

    #: The name of the init task that downloads the database
    db_task_name = 'kubevuln-trivy-db'

    def _common_env(self, config):
        env = [EnvVar(name = 'TRIVY_CACHE_DIR', value = CACHE_DIR)]
        if config.db_repository:
            env.append(EnvVar(name = 'TRIVY_DB_REPOSITORY', value = config.db_repository))
        return tuple(env)

    def _mounts(self):
        return (VolumeMount(name = CACHE_VOLUME, mount_path = CACHE_DIR), )

    def volumes(self, context):
        return ({'name': CACHE_VOLUME, 'emptyDir': {}}, )

    def init_tasks(self, context):
        config = self.get_config(context)
        return (
            TaskSpec(
                name = self.db_task_name,
                image = config.image_ref,
                command = ('trivy', ),
                args = ('--quiet', 'image', '--download-db-only'),
                env = self._common_env(config),
                volume_mounts = self._mounts(),
                resources = config.resources
            ),
        )

    def build_task(self, context, container):
        self.check_image(container.image)
        config = self.get_config(context)
        return TaskSpec(
            name = container.name,
            image = config.image_ref,
            command = ('trivy', ),
            args = (
                '--quiet',
                'image',
                '--skip-db-update',
                '--format', 'json',
                container.image,
            ),
            env = self._common_env(config) + (
                EnvVar(name = 'TRIVY_SEVERITY', value = ','.join(config.severity)),
                EnvVar(name = 'TRIVY_IGNORE_UNFIXED', value = str(config.ignore_unfixed).lower()),
                EnvVar(name = 'TRIVY_TIMEOUT', value = config.scan_timeout),
            ),
            volume_mounts = self._mounts(),
            resources = config.resources
        )

    def scanner_version(self, context, output):
        """
        Returns the version of Trivy that produced the given output.
        """
        # Recent versions of Trivy include their version in the output
        # Otherwise, fall back to the tag of the configured image
        version = (output.get('Trivy') or {}).get('Version')
        if version:
            return version
        tag = parse_image(self.get_config(context).image_ref).tag
        return (tag or 'unknown').lstrip('v')

    @parse_errors
    def parse(self, context, image, stream):
        output = json.loads(stream.read())
        # Old versions of Trivy emit a list of results rather than a report object
        if isinstance(output, list):
            output = dict(Results = output)
        reference = parse_image(image)
        digest = reference.digest
        # When the image is referenced by tag, use the digest of the image that was scanned
        repo_digests = (output.get('Metadata') or {}).get('RepoDigests') or []
        if not digest and repo_digests:
            digest = repo_digests[0].partition('@')[2] or None
        created_at = output.get('CreatedAt')
        return VulnerabilityReportData(
            update_timestamp = (
                dateutil_parse(created_at)
                if created_at
                else datetime.datetime.now(datetime.timezone.utc)
            ),
            scanner = Scanner(
                name = self.kind,
                vendor = self.vendor,
                version = self.scanner_version(context, output)
            ),
            registry = Registry(server = reference.registry),
            artifact = Artifact(
                repository = reference.repository,
                tag = reference.tag,
                digest = digest
            ),
            vulnerabilities = [
                Vulnerability(
                    vulnerability_id = vuln['VulnerabilityID'],
                    severity = Severity.parse(vuln.get('Severity')),
                    resource = vuln['PkgName'],
                    installed_version = vuln.get('InstalledVersion') or '',
                    fixed_version = vuln.get('FixedVersion') or None,
                    title = vuln.get('Title'),
                    primary_link = (
                        vuln.get('PrimaryURL') or
                        select_reference(vuln.get('References') or [])
                    ),
                    links = vuln.get('References') or []
                )
                for result in output.get('Results') or []
                for vuln in result.get('Vulnerabilities') or []
            ]
        )
