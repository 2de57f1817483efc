"""
Module containing the vulnerability report models.
"""

import datetime
import enum
import functools
import hashlib
import re
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, constr, model_validator
from pydantic.alias_generators import to_camel


#: Label holding the name of the container a report is for
LABEL_CONTAINER_NAME = 'kubevuln.io/container-name'
#: Labels identifying the workload a report is for
LABEL_RESOURCE_KIND = 'kubevuln.io/resource-kind'
LABEL_RESOURCE_NAME = 'kubevuln.io/resource-name'
LABEL_RESOURCE_NAMESPACE = 'kubevuln.io/resource-namespace'
#: Label holding the id of the scan run that produced a report
LABEL_SCAN_RUN = 'kubevuln.io/scan-run'


def label_value(value):
    """
    Returns the given value truncated and cleaned so that it is a valid label value.
    """
    value = re.sub(r'[^A-Za-z0-9._-]', '-', value)[:63]
    return value.strip('._-')


def report_name(workload, container_name, run_id):
    """
    Returns the name of the report for the given workload ref, container and scan run.

    If the name has to be altered to be a valid object name, a hash of the original
    values is added so that names remain unique.
    """
    raw = f'{workload.kind}-{workload.name}-{container_name}'.lower()
    name = re.sub(r'[^a-z0-9.-]+', '-', raw).strip('.-')[:200]
    if name != raw:
        digest = hashlib.sha256(
            f'{workload.kind}/{workload.name}/{container_name}'.encode()
        ).hexdigest()
        name = f'{name}-{digest[:8]}'.lstrip('-')
    return f'{name}-{run_id[:8]}'


@functools.total_ordering
class Severity(enum.Enum):
    """
    Enum of vulnerability severities, ordered from least to most severe.
    """
    NONE = 'NONE'
    UNKNOWN = 'UNKNOWN'
    LOW = 'LOW'
    MEDIUM = 'MEDIUM'
    HIGH = 'HIGH'
    CRITICAL = 'CRITICAL'

    @property
    def rank(self):
        """
        The display position of the severity, with zero being the most severe.
        """
        return _SEVERITY_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        # A higher rank means less severe
        return self.rank > other.rank

    @classmethod
    def parse(cls, value):
        """
        Return the severity for a scanner-emitted string, ignoring case.

        Empty or missing values give ``UNKNOWN``.
        """
        if not value:
            return cls.UNKNOWN
        return cls[value.strip().upper()]


_SEVERITY_ORDER = (
    Severity.CRITICAL,
    Severity.HIGH,
    Severity.MEDIUM,
    Severity.LOW,
    Severity.UNKNOWN,
    Severity.NONE,
)


class ReportModel(BaseModel):
    """
    Base class for report models, serialised with camel-case keys.
    """
    model_config = ConfigDict(
        alias_generator = to_camel,
        populate_by_name = True,
        frozen = True
    )


class Vulnerability(ReportModel):
    """
    Model for a single vulnerability found in an image.
    """
    #: The id of the vulnerability, e.g. a CVE id
    vulnerability_id: constr(min_length = 1)
    #: The severity of the vulnerability
    severity: Severity
    #: The affected package
    resource: constr(min_length = 1)
    #: The installed version of the affected package
    installed_version: str = ""
    #: The version that fixes the vulnerability, if known
    fixed_version: Optional[str] = None
    #: A short title for the vulnerability
    title: Optional[str] = None
    #: The preferred link for more information
    primary_link: Optional[str] = None
    #: All the links for the vulnerability
    links: List[str] = Field(default_factory = list)


class Scanner(ReportModel):
    """
    Model for the scanner that produced a report.
    """
    name: constr(min_length = 1)
    vendor: constr(min_length = 1)
    version: constr(min_length = 1)


class Registry(ReportModel):
    """
    Model for the registry of the scanned image.
    """
    server: constr(min_length = 1)


class Artifact(ReportModel):
    """
    Model for the scanned image.
    """
    repository: constr(min_length = 1)
    tag: Optional[str] = None
    digest: Optional[str] = None


class Summary(ReportModel):
    """
    Model for the number of vulnerabilities of each severity in a report.
    """
    critical_count: int = 0
    high_count: int = 0
    medium_count: int = 0
    low_count: int = 0
    unknown_count: int = 0
    none_count: int = 0

    @classmethod
    def from_vulnerabilities(cls, vulnerabilities):
        counts = {}
        for vulnerability in vulnerabilities:
            key = f'{vulnerability.severity.value.lower()}_count'
            counts[key] = counts.get(key, 0) + 1
        return cls(**counts)


class VulnerabilityReportData(ReportModel):
    """
    Model for the parsed output of a scan of a single image.
    """
    #: The time that the scan was performed
    update_timestamp: datetime.datetime
    #: The scanner that performed the scan
    scanner: Scanner
    #: The registry of the scanned image
    registry: Registry
    #: The scanned image
    artifact: Artifact
    #: The number of vulnerabilities per severity, derived from the vulnerabilities
    summary: Summary = None
    #: The vulnerabilities, in the order they were emitted by the scanner
    vulnerabilities: List[Vulnerability] = Field(default_factory = list)

    @model_validator(mode = 'before')
    @classmethod
    def default_summary(cls, data):
        # The summary always reflects the vulnerabilities
        if isinstance(data, dict):
            vulnerabilities = data.get('vulnerabilities') or []
            vulnerabilities = [
                v if isinstance(v, Vulnerability) else Vulnerability.model_validate(v)
                for v in vulnerabilities
            ]
            data = dict(
                data,
                vulnerabilities = vulnerabilities,
                summary = Summary.from_vulnerabilities(vulnerabilities)
            )
        return data


class VulnerabilityReport(ReportModel):
    """
    Model for the vulnerability report of one container of a workload.

    Reports are never modified once created; a rescan produces new reports.
    """
    #: The name of the report, unique per workload, container and scan run
    name: constr(min_length = 1)
    #: The namespace of the report
    namespace: constr(min_length = 1)
    #: Labels identifying the container and workload
    labels: Dict[str, str]
    #: The report data
    report: VulnerabilityReportData

    @property
    def container_name(self):
        return self.labels.get(LABEL_CONTAINER_NAME)

    @property
    def identity(self):
        """
        The key identifying the report in a report store.
        """
        return (self.namespace, self.name)
