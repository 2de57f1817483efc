"""Tests for reading scan output and assembling reports."""

import pytest

from kubevuln.scan.assembler import assemble_reports
from kubevuln.scan.exceptions import ConfigurationError, LogsUnavailable, ParseError
from kubevuln.scan.job import builder
from kubevuln.scan.job.models import ANNOTATION_CONTAINER_IMAGES, JobHandle
from kubevuln.scan.logs import images_of, open_logs
from kubevuln.scan.models import LABEL_CONTAINER_NAME, LABEL_SCAN_RUN


@pytest.fixture
def job(trivy_plugin, workload, plugin_context):
    job, _ = builder.build(
        builder.ScanJobConfig(
            plugin=trivy_plugin,
            workload=workload,
            plugin_context=plugin_context,
            run_id="run0001",
        )
    )
    return job


async def assemble(backend, job, plugin, context, workload):
    handle = await backend.submit(job, [])
    return await assemble_reports(plugin, context, backend, handle, job, workload, "run0001")


class TestImagesOf:
    """Tests for images_of."""

    def test_images(self, job) -> None:
        assert images_of(job) == {"a": "nginx:1.25", "b": "registry.example.com/team/api:2.0"}

    def test_missing_annotation(self, job) -> None:
        bare = job.model_copy(update={"annotations": {}})

        with pytest.raises(ConfigurationError):
            images_of(bare)

    def test_invalid_annotation(self, job) -> None:
        broken = job.model_copy(update={"annotations": {ANNOTATION_CONTAINER_IMAGES: "not json"}})

        with pytest.raises(ConfigurationError):
            images_of(broken)


class TestOpenLogs:
    """Tests for open_logs."""

    @pytest.mark.asyncio
    async def test_stream_is_closed(self, make_backend, job) -> None:
        backend = make_backend(logs={"a": "output"})
        handle = await backend.submit(job, [])

        async with open_logs(backend, handle, "a") as stream:
            assert stream.read() == b"output"

        assert backend.streams[0].was_closed

    @pytest.mark.asyncio
    async def test_io_error_names_container(self, make_backend, job) -> None:
        backend = make_backend(logs={"a": ConnectionResetError("reset")})
        handle = await backend.submit(job, [])

        with pytest.raises(LogsUnavailable) as exc_info:
            async with open_logs(backend, handle, "a"):
                pass

        assert exc_info.value.container == "a"
        assert exc_info.value.stage == "logs"

    @pytest.mark.asyncio
    async def test_unknown_job(self, make_backend, job) -> None:
        backend = make_backend(logs={"a": "output"})
        await backend.submit(job, [])
        await backend.delete(JobHandle(name=job.name, namespace=job.namespace))

        with pytest.raises(LogsUnavailable):
            async with open_logs(backend, JobHandle(name=job.name, namespace=job.namespace), "a"):
                pass


class TestAssembleReports:
    """Tests for assemble_reports."""

    @pytest.mark.asyncio
    async def test_report_per_container(
        self, make_backend, job, trivy_plugin, plugin_context, workload, trivy_output
    ) -> None:
        backend = make_backend(
            logs={
                "a": trivy_output(("CVE-1", "HIGH")),
                "b": trivy_output(("CVE-2", "LOW"), ("CVE-3", "MEDIUM")),
            }
        )

        reports, errors = await assemble(backend, job, trivy_plugin, plugin_context, workload)

        assert errors == []
        assert [r.container_name for r in reports] == ["a", "b"]
        assert [len(r.report.vulnerabilities) for r in reports] == [1, 2]
        assert reports[1].report.registry.server == "registry.example.com"
        assert reports[1].report.artifact.repository == "team/api"
        assert reports[0].namespace == "shop"
        assert reports[0].labels[LABEL_SCAN_RUN] == "run0001"
        assert len({r.name for r in reports}) == 2
        assert all(stream.was_closed for stream in backend.streams)

    @pytest.mark.asyncio
    async def test_logs_failure_is_per_container(
        self, make_backend, job, trivy_plugin, plugin_context, workload, trivy_output
    ) -> None:
        backend = make_backend(logs={"a": trivy_output(("CVE-1", "HIGH"))})

        reports, errors = await assemble(backend, job, trivy_plugin, plugin_context, workload)

        assert [r.labels[LABEL_CONTAINER_NAME] for r in reports] == ["a"]
        (error,) = errors
        assert isinstance(error, LogsUnavailable)
        assert error.container == "b"
        assert '"b"' in str(error)

    @pytest.mark.asyncio
    async def test_parse_failure_is_per_container(
        self, make_backend, job, trivy_plugin, plugin_context, workload, trivy_output
    ) -> None:
        backend = make_backend(logs={"a": "FATAL: unable to pull image", "b": trivy_output()})

        reports, errors = await assemble(backend, job, trivy_plugin, plugin_context, workload)

        assert [r.container_name for r in reports] == ["b"]
        assert reports[0].report.vulnerabilities == []
        (error,) = errors
        assert isinstance(error, ParseError)
        assert error.container == "a"
        assert error.stage == "parse"

    @pytest.mark.asyncio
    async def test_unexpected_plugin_error_is_parse_error(
        self, make_backend, job, trivy_plugin, plugin_context, workload, trivy_output, monkeypatch
    ) -> None:
        def explode(context, image, stream):
            raise RuntimeError("plugin bug")

        monkeypatch.setattr(trivy_plugin, "parse", explode)
        backend = make_backend(logs={"a": trivy_output(), "b": trivy_output()})

        reports, errors = await assemble(backend, job, trivy_plugin, plugin_context, workload)

        assert reports == []
        assert [e.container for e in errors] == ["a", "b"]
        assert all(isinstance(e, ParseError) for e in errors)
