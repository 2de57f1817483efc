"""Tests for rendering workload reports."""

import datetime
import io
import json

import pytest

from kubevuln.scan.assembler import make_report
from kubevuln.scan.exceptions import ConfigurationError
from kubevuln.scan.models import (
    Artifact,
    Registry,
    Scanner,
    Severity,
    Vulnerability,
    VulnerabilityReport,
    VulnerabilityReportData,
)
from kubevuln.scan.render import render, sort_by_severity, write_page

GENERATED_AT = datetime.datetime(2024, 3, 1, 12, 0, tzinfo=datetime.timezone.utc)


def vuln(vuln_id, severity):
    return Vulnerability(vulnerability_id=vuln_id, severity=severity, resource="openssl")


def make_data(*vulnerabilities):
    return VulnerabilityReportData(
        update_timestamp=GENERATED_AT,
        scanner=Scanner(name="Trivy", vendor="Aqua Security", version="0.50.1"),
        registry=Registry(server="index.docker.io"),
        artifact=Artifact(repository="library/nginx", tag="1.25"),
        vulnerabilities=list(vulnerabilities),
    )


@pytest.fixture
def reports(workload):
    return [
        make_report(
            workload,
            "b",
            "run0001",
            make_data(),
        ),
        make_report(
            workload,
            "a",
            "run0001",
            make_data(
                vuln("CVE-1", Severity.LOW),
                vuln("CVE-2", Severity.CRITICAL),
                vuln("CVE-3", Severity.CRITICAL),
                vuln("CVE-4", Severity.MEDIUM),
            ),
        ),
    ]


class TestSortBySeverity:
    """Tests for sort_by_severity."""

    def test_most_severe_first(self) -> None:
        vulns = [
            vuln("CVE-1", Severity.LOW),
            vuln("CVE-2", Severity.CRITICAL),
            vuln("CVE-3", Severity.CRITICAL),
            vuln("CVE-4", Severity.MEDIUM),
        ]

        result = sort_by_severity(vulns)

        assert [v.severity for v in result] == [
            Severity.CRITICAL,
            Severity.CRITICAL,
            Severity.MEDIUM,
            Severity.LOW,
        ]
        # Equal severities keep their emitted order
        assert [v.vulnerability_id for v in result[:2]] == ["CVE-2", "CVE-3"]

    def test_idempotent(self) -> None:
        vulns = [vuln(f"CVE-{i}", s) for i, s in enumerate(Severity)]

        once = sort_by_severity(vulns)

        assert sort_by_severity(once) == once

    def test_empty(self) -> None:
        assert sort_by_severity([]) == []


class TestRender:
    """Tests for render and write_page."""

    def test_containers_are_ordered(self, workload, reports) -> None:
        page = render(workload.ref, reports, GENERATED_AT)

        assert list(page.vulns_reports.keys()) == ["a", "b"]
        assert [v.severity for v in page.vulns_reports["a"].vulnerabilities] == [
            Severity.CRITICAL,
            Severity.CRITICAL,
            Severity.MEDIUM,
            Severity.LOW,
        ]
        assert page.vulns_reports["b"].vulnerabilities == []

    def test_reports_are_not_modified(self, workload, reports) -> None:
        render(workload.ref, reports, GENERATED_AT)

        assert reports[1].report.vulnerabilities[0].vulnerability_id == "CVE-1"

    def test_report_without_container_is_skipped(self, workload, reports) -> None:
        unlabelled = VulnerabilityReport(
            name="orphan", namespace="shop", labels={}, report=make_data(vuln("CVE-9", Severity.HIGH))
        )

        page = render(workload.ref, reports + [unlabelled], GENERATED_AT)

        assert list(page.vulns_reports.keys()) == ["a", "b"]

    @pytest.mark.parametrize("reverse", [False, True])
    def test_duplicate_container_uses_latest(self, workload, reverse, caplog) -> None:
        older = make_report(workload, "a", "run0001", make_data(vuln("CVE-1", Severity.LOW)))
        newer = make_report(
            workload,
            "a",
            "run0002",
            make_data(vuln("CVE-2", Severity.HIGH)).model_copy(
                update=dict(update_timestamp=GENERATED_AT + datetime.timedelta(hours=1))
            ),
        )
        duplicates = [newer, older] if reverse else [older, newer]

        page = render(workload.ref, duplicates, GENERATED_AT)

        assert [v.vulnerability_id for v in page.vulns_reports["a"].vulnerabilities] == ["CVE-2"]
        assert "container a" in caplog.text

    @pytest.mark.parametrize("reverse", [False, True])
    def test_duplicate_container_same_time_uses_name(self, workload, reverse) -> None:
        first = make_report(workload, "a", "run0001", make_data(vuln("CVE-1", Severity.LOW)))
        second = make_report(workload, "a", "run0002", make_data(vuln("CVE-2", Severity.HIGH)))
        duplicates = [second, first] if reverse else [first, second]

        page = render(workload.ref, duplicates, GENERATED_AT)

        assert second.name > first.name
        assert [v.vulnerability_id for v in page.vulns_reports["a"].vulnerabilities] == ["CVE-2"]

    def test_html(self, workload, reports) -> None:
        stream = io.StringIO()

        write_page(render(workload.ref, reports, GENERATED_AT), stream, "html")

        html = stream.getvalue()
        assert html.index("Container a") < html.index("Container b")
        assert html.index("CVE-2") < html.index("CVE-4") < html.index("CVE-1")
        assert "No vulnerabilities found." in html
        assert "Deployment shop/web" in html
        assert html.index("Critical: 2") < html.index("Medium: 1") < html.index("None: 0")

    def test_html_escapes(self, workload) -> None:
        report = make_report(
            workload,
            "a",
            "run0001",
            make_data(
                Vulnerability(
                    vulnerability_id="CVE-1",
                    severity=Severity.HIGH,
                    resource="pkg",
                    title="<script>alert(1)</script>",
                )
            ),
        )
        stream = io.StringIO()

        write_page(render(workload.ref, [report], GENERATED_AT), stream, "html")

        assert "<script>" not in stream.getvalue()

    def test_json(self, workload, reports) -> None:
        stream = io.StringIO()

        write_page(render(workload.ref, reports, GENERATED_AT), stream, "json")

        document = json.loads(stream.getvalue())
        assert document["workload"] == {"kind": "Deployment", "name": "web", "namespace": "shop"}
        assert list(document["vulnsReports"]) == ["a", "b"]
        severities = [v["severity"] for v in document["vulnsReports"]["a"]["vulnerabilities"]]
        assert severities == ["CRITICAL", "CRITICAL", "MEDIUM", "LOW"]
        assert document["vulnsReports"]["a"]["summary"]["criticalCount"] == 2

    @pytest.mark.parametrize("format", ["html", "json"])
    def test_output_is_deterministic(self, workload, reports, format) -> None:
        first, second = io.StringIO(), io.StringIO()

        write_page(render(workload.ref, reports, GENERATED_AT), first, format)
        write_page(render(workload.ref, list(reversed(reports)), GENERATED_AT), second, format)

        assert first.getvalue() == second.getvalue()

    def test_unknown_format(self, workload, reports) -> None:
        with pytest.raises(ConfigurationError):
            write_page(render(workload.ref, reports, GENERATED_AT), io.StringIO(), "pdf")
