"""
Settings for the workload vulnerability scanner.
"""

import os
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, confloat, constr, field_validator

from flexi_settings import include

from .docker import DEFAULT_REGISTRY
from .exceptions import ConfigurationError
from .job.builder import RegistryCredentials
from .plugins import plugin_class
from .plugins.base import PluginContext


#: Environment variable naming the settings file
CONFIG_ENV_VAR = 'KUBEVULN_SCAN_CONFIG'
#: The settings file used if the environment variable is not set
DEFAULT_CONFIG_FILE = '/etc/kubevuln/scan.conf'


class PluginSpec(BaseModel):
    """
    Model for a plugin specification.
    """
    model_config = ConfigDict(validate_default = True)

    #: The name of the plugin, defaults to the kind
    name: Optional[constr(min_length = 1)] = None
    #: The kind of the plugin
    #: This must correspond to an entrypoint in the kubevuln.scan.plugin group
    kind: constr(min_length = 1) = 'trivy'
    #: The configuration for the plugin
    params: Dict[str, Any] = Field(default_factory = dict)

    @field_validator('kind')
    @classmethod
    def resolve_kind(cls, kind):
        """
        Resolves the given kind to a plugin class.
        """
        try:
            return plugin_class(kind)
        except ConfigurationError as exc:
            raise ValueError(exc.detail)


class ScanSettings(BaseModel):
    """
    Model defining settings for a workload scan.
    """
    #: The plugin used to scan images
    plugin: PluginSpec = Field(default_factory = PluginSpec)
    #: The namespace that scan jobs run in
    namespace: constr(min_length = 1) = 'default'
    #: The service account that scan jobs run as
    service_account_name: Optional[constr(min_length = 1)] = None
    #: The number of seconds to wait for a scan job to complete, or None to wait forever
    job_timeout: Optional[confloat(gt = 0)] = 600
    #: The number of seconds between checks of the scan job status
    poll_interval: confloat(gt = 0) = 2.0
    #: Credentials for private registries, indexed by registry server
    registry_credentials: Dict[str, RegistryCredentials] = Field(default_factory = dict)
    #: The registry for images without a registry
    default_registry: constr(min_length = 1) = DEFAULT_REGISTRY
    #: The kind of report store to use - one of dummy, memory or kubernetes
    report_store: constr(min_length = 1) = 'dummy'

    @field_validator('report_store')
    @classmethod
    def check_report_store(cls, report_store):
        if report_store.lower() not in {'dummy', 'memory', 'kubernetes', 'crd'}:
            raise ValueError('must be one of dummy, memory or kubernetes')
        return report_store.lower()

    def build_plugin(self):
        """
        Returns a plugin instance for the configured plugin.
        """
        return self.plugin.kind(self.plugin.name)

    def plugin_context(self, plugin):
        """
        Returns the context for the given plugin.
        """
        return PluginContext(
            name = plugin.name,
            namespace = self.namespace,
            service_account_name = self.service_account_name,
            config = self.plugin.params
        )


def from_file(config_file):
    """
    Build a settings object from a config file.
    """
    config = dict()
    include(config_file, config)
    try:
        return ScanSettings(**config)
    except ValidationError as exc:
        raise ConfigurationError(f'invalid settings in {config_file}: {exc}')


def from_env_file(var_name = CONFIG_ENV_VAR, default_file = DEFAULT_CONFIG_FILE):
    """
    Build a settings object from a config file specified by an environment variable.

    If the variable is not set and the default file does not exist, the defaults are used.
    """
    config_file = os.environ.get(var_name)
    if config_file:
        return from_file(config_file)
    elif os.path.exists(default_file):
        return from_file(default_file)
    else:
        return ScanSettings()
