"""Pytest configuration and fixtures."""

import asyncio
import io
import json

import pytest

from kubevuln.scan.backend.base import ExecutionBackend
from kubevuln.scan.exceptions import LogsUnavailable
from kubevuln.scan.job.models import JobHandle, JobPhase, JobStatus
from kubevuln.scan.plugins import grype, trivy
from kubevuln.scan.plugins.base import PluginContext
from kubevuln.scan.workload import Container, Workload


class TrackedStream(io.BytesIO):
    """BytesIO that remembers it was closed, even after close."""

    def close(self):
        self.was_closed = True
        super().close()


class FakeBackend(ExecutionBackend):
    """In-memory execution backend.

    ``logs`` maps container name -> output text, or an exception to raise.
    With ``hang`` set, waiting only returns once the job is deleted.
    """

    def __init__(self, logs=None, status=None, hang=False):
        self.container_logs = dict(logs or {})
        self.status = status or JobStatus(phase=JobPhase.SUCCEEDED)
        self.hang = hang
        self.submitted = []
        self.secrets = []
        self.deleted = []
        self.streams = []
        self._deleted = {}

    async def submit(self, job, secrets):
        self.submitted.append(job)
        self.secrets.extend(secrets)
        handle = JobHandle(name=job.name, namespace=job.namespace, uid=f"uid-{len(self.submitted)}")
        self._deleted[handle.name] = asyncio.Event()
        return handle

    async def wait(self, handle):
        deleted = self._deleted[handle.name]
        if self.hang:
            await deleted.wait()
        if deleted.is_set():
            return JobStatus(phase=JobPhase.FAILED, message="job no longer exists")
        return self.status

    async def delete(self, handle):
        self.deleted.append(handle)
        self._deleted[handle.name].set()

    async def logs(self, handle, container_name):
        if self._deleted[handle.name].is_set():
            raise LogsUnavailable("job has been deleted", container=container_name)
        value = self.container_logs.get(container_name)
        if value is None:
            raise LogsUnavailable("no logs", container=container_name)
        if isinstance(value, BaseException):
            raise value
        stream = TrackedStream(value.encode("utf-8"))
        self.streams.append(stream)
        return stream


def make_trivy_output(*vulnerabilities, digest="sha256:abc123", created_at="2024-03-01T10:00:00Z"):
    """Trivy JSON output with the given (id, severity) pairs, in order."""
    return json.dumps(
        {
            "SchemaVersion": 2,
            "CreatedAt": created_at,
            "ArtifactName": "nginx:1.25",
            "Metadata": {"RepoDigests": [f"nginx@{digest}"]},
            "Trivy": {"Version": "0.50.1"},
            "Results": [
                {
                    "Target": "nginx:1.25 (debian 12.5)",
                    "Vulnerabilities": [
                        {
                            "VulnerabilityID": vuln_id,
                            "PkgName": "openssl",
                            "InstalledVersion": "3.0.11-1",
                            "FixedVersion": "3.0.13-1",
                            "Severity": severity,
                            "Title": f"{vuln_id} in openssl",
                            "References": [
                                "https://security-tracker.debian.org/tracker/" + vuln_id,
                                "https://nvd.nist.gov/vuln/detail/" + vuln_id,
                            ],
                        }
                        for vuln_id, severity in vulnerabilities
                    ],
                }
            ],
        }
    )


@pytest.fixture
def workload() -> Workload:
    """A deployment with two containers."""
    return Workload(
        kind="Deployment",
        name="web",
        namespace="shop",
        containers=(
            Container(name="a", image="nginx:1.25"),
            Container(name="b", image="registry.example.com/team/api:2.0"),
        ),
    )


@pytest.fixture
def trivy_plugin():
    return trivy.Plugin()


@pytest.fixture
def grype_plugin():
    return grype.Plugin()


@pytest.fixture
def plugin_context() -> PluginContext:
    return PluginContext(name="Trivy", namespace="scans")


@pytest.fixture
def trivy_output():
    """Factory for Trivy JSON output."""
    return make_trivy_output


@pytest.fixture
def make_backend():
    """Factory for in-memory execution backends."""
    return FakeBackend
