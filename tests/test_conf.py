"""Tests for the scanner settings."""

import pytest

from kubevuln.scan import conf
from kubevuln.scan.exceptions import ConfigurationError
from kubevuln.scan.plugins import grype, plugin_class, trivy


class TestPlugins:
    """Tests for resolving plugins from entry points."""

    def test_plugin_class(self) -> None:
        assert plugin_class("trivy") is trivy.Plugin
        assert plugin_class("Grype") is grype.Plugin

    def test_unknown_kind(self) -> None:
        with pytest.raises(ConfigurationError, match="available"):
            plugin_class("clair")


class TestSettings:
    """Tests for ScanSettings."""

    def test_defaults(self) -> None:
        settings = conf.ScanSettings()

        assert settings.plugin.kind is trivy.Plugin
        assert settings.report_store == "dummy"
        assert settings.job_timeout == 600

    def test_plugin_context(self) -> None:
        settings = conf.ScanSettings(
            namespace="scans",
            service_account_name="scanner",
            plugin={"kind": "grype", "params": {"only_fixed": True}},
        )

        plugin = settings.build_plugin()
        context = settings.plugin_context(plugin)

        assert isinstance(plugin, grype.Plugin)
        assert context.name == "Grype"
        assert context.namespace == "scans"
        assert context.service_account_name == "scanner"
        assert context.config == {"only_fixed": True}

    def test_invalid_report_store(self) -> None:
        with pytest.raises(ValueError):
            conf.ScanSettings(report_store="s3")


class TestFromFile:
    """Tests for loading settings from files."""

    def test_from_file(self, tmp_path) -> None:
        path = tmp_path / "scan.py"
        path.write_text(
            "namespace = 'scans'\n"
            "job_timeout = 120\n"
            "report_store = 'memory'\n"
            "plugin = dict(kind = 'grype')\n"
            "registry_credentials = {\n"
            "    'registry.example.com': dict(username = 'robot', password = 's3cr3t'),\n"
            "}\n"
        )

        settings = conf.from_file(str(path))

        assert settings.namespace == "scans"
        assert settings.job_timeout == 120
        assert settings.plugin.kind is grype.Plugin
        credentials = settings.registry_credentials["registry.example.com"]
        assert credentials.password.get_secret_value() == "s3cr3t"
        assert "s3cr3t" not in repr(settings)

    def test_invalid_file(self, tmp_path) -> None:
        path = tmp_path / "scan.py"
        path.write_text("job_timeout = -1\n")

        with pytest.raises(ConfigurationError):
            conf.from_file(str(path))

    def test_env_var(self, tmp_path, monkeypatch) -> None:
        path = tmp_path / "scan.py"
        path.write_text("namespace = 'from-env'\n")
        monkeypatch.setenv(conf.CONFIG_ENV_VAR, str(path))

        assert conf.from_env_file().namespace == "from-env"

    def test_defaults_without_file(self, tmp_path, monkeypatch) -> None:
        monkeypatch.delenv(conf.CONFIG_ENV_VAR, raising=False)

        settings = conf.from_env_file(default_file=str(tmp_path / "missing.conf"))

        assert settings == conf.ScanSettings()
