"""
Module containing functions that render vulnerability reports for a workload.
"""

import datetime
import html
import json
import logging

from sortedcontainers import SortedDict

from pydantic import BaseModel, ConfigDict

from .exceptions import ConfigurationError
from .models import Severity
from .workload import WorkloadRef


logger = logging.getLogger(__name__)


#: The supported page formats
FORMATS = ('html', 'json')


def sort_by_severity(vulnerabilities):
    """
    Returns the given vulnerabilities sorted from most to least severe.

    The sort is stable, so vulnerabilities with the same severity keep the order
    they were emitted in by the scanner.
    """
    return sorted(vulnerabilities, key = lambda v: v.severity, reverse = True)


class WorkloadReport(BaseModel):
    """
    Model used to render the vulnerability reports for the containers of a workload.
    """
    model_config = ConfigDict(arbitrary_types_allowed = True, frozen = True)

    #: The workload the reports are for
    workload: WorkloadRef
    #: The time the model was generated
    generated_at: datetime.datetime
    #: Dictionary of container name -> report data, ordered by container name
    vulns_reports: SortedDict


def render(workload, reports, generated_at = None):
    """
    Returns a ``WorkloadReport`` for the given workload ref and reports.

    Reports without a container name label are skipped. If there is more than one
    report for a container, the most recent is used, with ties going to the greatest
    report name. The vulnerabilities for each container are sorted by severity; the
    given reports are not modified.
    """
    latest = {}
    for report in reports:
        container_name = report.container_name
        if not container_name:
            logger.debug(f'Skipping report {report.namespace}/{report.name} with no container name')
            continue
        current = latest.get(container_name)
        if current:
            logger.warning(
                f'Found reports {current.name} and {report.name} for container '
                f'{container_name}, using the most recent'
            )
            if (current.report.update_timestamp, current.name) >= (report.report.update_timestamp, report.name):
                continue
        latest[container_name] = report
    vulns_reports = SortedDict(
        (
            container_name,
            report.report.model_copy(
                update = dict(vulnerabilities = sort_by_severity(report.report.vulnerabilities))
            )
        )
        for container_name, report in latest.items()
    )
    return WorkloadReport(
        workload = workload,
        generated_at = generated_at or datetime.datetime.now(datetime.timezone.utc),
        vulns_reports = vulns_reports
    )


def _html_container(container_name, data):
    e = html.escape
    lines = [
        f'<h2>Container {e(container_name)}</h2>',
        '<p>',
        f'Image: {e(data.registry.server)}/{e(data.artifact.repository)}'
        + (f':{e(data.artifact.tag)}' if data.artifact.tag else '')
        + (f'@{e(data.artifact.digest)}' if data.artifact.digest else ''),
        '<br>',
        f'Scanner: {e(data.scanner.name)} {e(data.scanner.version)} ({e(data.scanner.vendor)})'
        f', scanned at {e(data.update_timestamp.isoformat())}',
        '</p>',
        '<table class="summary"><tr>',
    ]
    for severity in sorted(Severity, reverse = True):
        count = getattr(data.summary, f'{severity.value.lower()}_count')
        lines.append(f'<td class="{severity.value.lower()}">{severity.value.title()}: {count}</td>')
    lines.append('</tr></table>')
    if not data.vulnerabilities:
        lines.append('<p>No vulnerabilities found.</p>')
        return lines
    lines.append('<table class="vulnerabilities">')
    lines.append(
        '<thead><tr><th>ID</th><th>Severity</th><th>Resource</th>'
        '<th>Installed version</th><th>Fixed version</th><th>Title</th></tr></thead>'
    )
    lines.append('<tbody>')
    for vuln in data.vulnerabilities:
        if vuln.primary_link:
            vuln_id = f'<a href="{e(vuln.primary_link)}">{e(vuln.vulnerability_id)}</a>'
        else:
            vuln_id = e(vuln.vulnerability_id)
        lines.append(
            f'<tr class="{vuln.severity.value.lower()}">'
            f'<td>{vuln_id}</td>'
            f'<td>{vuln.severity.value}</td>'
            f'<td>{e(vuln.resource)}</td>'
            f'<td>{e(vuln.installed_version)}</td>'
            f'<td>{e(vuln.fixed_version or "")}</td>'
            f'<td>{e(vuln.title or "")}</td>'
            '</tr>'
        )
    lines.append('</tbody></table>')
    return lines


def html_page(report):
    """
    Returns an HTML page for the given workload report.
    """
    workload = report.workload
    title = html.escape(f'{workload.kind} {workload.namespace}/{workload.name}')
    lines = [
        '<!doctype html>',
        '<html><head><meta charset="utf-8">',
        f'<title>Vulnerability report: {title}</title>',
        '<style>'
        'body{font-family:Arial,Helvetica,sans-serif;margin:20px}'
        'table{border-collapse:collapse;width:100%;margin-bottom:1em}'
        'th,td{border:1px solid #ddd;padding:6px;text-align:left}'
        'th{background:#f2f2f2}'
        '.critical{color:#b00020}.high{color:#d9480f}.medium{color:#c28e00}'
        '.low{color:#2f6f9f}.unknown,.none{color:#666}'
        '</style>',
        '</head><body>',
        f'<h1>Vulnerability report: {title}</h1>',
        f'<p>Generated at {html.escape(report.generated_at.isoformat())}</p>',
    ]
    if not report.vulns_reports:
        lines.append('<p>No container reports available.</p>')
    for container_name, data in report.vulns_reports.items():
        lines.extend(_html_container(container_name, data))
    lines.append('</body></html>')
    return '\n'.join(lines) + '\n'


def json_page(report):
    """
    Returns a JSON document for the given workload report.
    """
    workload = report.workload
    return json.dumps(
        {
            'workload': {
                'kind': workload.kind,
                'name': workload.name,
                'namespace': workload.namespace,
            },
            'generatedAt': report.generated_at.isoformat(),
            'vulnsReports': {
                container_name: data.model_dump(mode = 'json', by_alias = True)
                for container_name, data in report.vulns_reports.items()
            },
        },
        indent = 2
    ) + '\n'


def write_page(report, stream, format = 'html'):
    """
    Write the page for the given workload report to the given text stream.
    """
    if format == 'html':
        page = html_page(report)
    elif format == 'json':
        page = json_page(report)
    else:
        raise ConfigurationError(f"unknown format \"{format}\" (available: {', '.join(FORMATS)})")
    stream.write(page)
    stream.flush()
