"""
Module containing the base class for scanner plugins.
"""

import abc
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, constr

from ..docker import transport_of
from ..exceptions import ConfigurationError
from ..job.models import EnvVar, SecretKeyRef


logger = logging.getLogger(__name__)


class PluginContext(BaseModel):
    """
    Model for the context passed to every plugin operation.
    """
    model_config = ConfigDict(frozen = True)

    #: The name of the plugin
    name: constr(min_length = 1)
    #: The namespace that scan jobs run in
    namespace: constr(min_length = 1) = 'default'
    #: The service account that scan jobs run as
    service_account_name: Optional[str] = None
    #: The plugin-specific configuration
    config: Dict[str, Any] = Field(default_factory = dict)


class PluginConfig(BaseModel):
    """
    Base class for plugin configurations.
    """
    model_config = ConfigDict(extra = 'forbid')

    #: The image of the scanner
    image_ref: constr(min_length = 1)
    #: Resource requests and limits for each scan task
    resources: Dict[str, Dict[str, str]] = Field(default_factory = dict)


class Plugin(abc.ABC):
    """
    Base class for scanner plugins.

    A plugin knows how to run its scanner against an image as a task of a scan job
    and how to parse the output that the task writes to its log.
    """
    #: The kind of the plugin
    kind = None
    #: The vendor of the scanner
    vendor = None
    #: The configuration model for the plugin
    config_model = PluginConfig
    #: The environment variables used to pass registry credentials to the scanner
    username_env = None
    password_env = None

    def __init__(self, name = None):
        self.name = name or self.kind

    def get_config(self, context):
        """
        Return the validated configuration from the given context.
        """
        try:
            return self.config_model.model_validate(context.config)
        except ValidationError as exc:
            raise ConfigurationError(f'invalid configuration for plugin "{self.name}": {exc}')

    def init(self, context):
        """
        Initialise the plugin for the given context, raising ``ConfigurationError``
        if the configuration is not valid.
        """
        config = self.get_config(context)
        logger.info(f'Initialised plugin {self.name} ({self.kind}) using {config.image_ref}')

    def check_image(self, image):
        """
        Raise ``ConfigurationError`` if the plugin cannot scan the given image.

        By default, only images that are pulled from a registry can be scanned.
        """
        transport = transport_of(image)
        if transport:
            raise ConfigurationError(
                f'plugin "{self.name}" cannot scan image "{image}" (unsupported scheme "{transport}")'
            )

    def init_tasks(self, context):
        """
        Return the tasks that must complete before the scan tasks start.
        """
        return ()

    def volumes(self, context):
        """
        Return the volumes shared by the tasks of a scan job.
        """
        return ()

    def credentials_env(self, secret_name, container, registry):
        """
        Return the environment variables that pass the registry credentials stored
        in the given secret to the task for the given container.
        """
        if not self.username_env or not self.password_env:
            raise ConfigurationError(f'plugin "{self.name}" does not support registry credentials')
        return (
            EnvVar(
                name = self.username_env,
                secret_key_ref = SecretKeyRef(name = secret_name, key = f'{container.name}.username')
            ),
            EnvVar(
                name = self.password_env,
                secret_key_ref = SecretKeyRef(name = secret_name, key = f'{container.name}.password')
            ),
        )

    @abc.abstractmethod
    def build_task(self, context, container):
        """
        Return the task that scans the image of the given container.

        The task must be named after the container. If the plugin cannot scan the image,
        ``ConfigurationError`` should be raised.
        """

    @abc.abstractmethod
    def parse(self, context, image, stream):
        """
        Parse the scan output for the given image from the given binary stream and
        return the vulnerability report data.

        If the output cannot be parsed, ``ParseError`` should be raised.
        """
