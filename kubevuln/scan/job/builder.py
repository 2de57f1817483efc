"""
Module containing the builder for scan jobs.
"""

import collections
import hashlib
import json
import logging
import uuid
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, conint, constr

from ..docker import DEFAULT_REGISTRY, parse_image
from ..exceptions import ConfigurationError
from ..models import (
    LABEL_RESOURCE_KIND,
    LABEL_RESOURCE_NAME,
    LABEL_RESOURCE_NAMESPACE,
    LABEL_SCAN_RUN,
    label_value
)
from ..plugins.base import Plugin, PluginContext
from ..workload import Workload

from .models import (
    ANNOTATION_CONTAINER_IMAGES,
    LABEL_JOB_TYPE,
    LABEL_PLUGIN,
    JobDescription,
    Secret
)


logger = logging.getLogger(__name__)


#: Prefix for the names of scan jobs
JOB_NAME_PREFIX = 'scan-vulnerabilityreport'


class RegistryCredentials(BaseModel):
    """
    Model for the credentials used to pull images from a registry.
    """
    username: constr(min_length = 1)
    password: SecretStr


class ScanJobConfig(BaseModel):
    """
    Model listing everything needed to build a scan job.
    """
    model_config = ConfigDict(arbitrary_types_allowed = True, frozen = True)

    #: The plugin that scans the images
    plugin: Plugin
    #: The workload whose images are scanned
    workload: Workload
    #: The context for the plugin
    plugin_context: PluginContext
    #: The namespace to run the job in, defaults to the namespace of the plugin context
    namespace: Optional[constr(min_length = 1)] = None
    #: The id of the scan run
    run_id: constr(min_length = 1) = Field(default_factory = lambda: uuid.uuid4().hex)
    #: Credentials for private registries, indexed by registry server
    registry_credentials: Dict[str, RegistryCredentials] = Field(default_factory = dict)
    #: The registry used for images that do not specify one
    default_registry: constr(min_length = 1) = DEFAULT_REGISTRY
    #: The number of seconds the backend may run the job for
    active_deadline: Optional[conint(gt = 0)] = None


def job_name(workload, run_id):
    """
    Returns the name of the scan job for the given workload and scan run.
    """
    ref = workload.ref
    digest = hashlib.sha256(f'{ref.kind}/{ref.namespace}/{ref.name}/{run_id}'.encode()).hexdigest()
    return f'{JOB_NAME_PREFIX}-{digest[:10]}'


def build(config):
    """
    Returns a tuple of ``(job description, secrets)`` for the given scan job config.

    The secrets are not applied, they must be created by the job runner before the
    job starts.
    """
    plugin = config.plugin
    context = config.plugin_context
    workload = config.workload
    ref = workload.ref
    if not workload.containers:
        raise ConfigurationError(f'{ref.kind} {ref.namespace}/{ref.name} has no containers')
    duplicates = [
        name
        for name, count in collections.Counter(c.name for c in workload.containers).items()
        if count > 1
    ]
    if duplicates:
        raise ConfigurationError(f"duplicate container names: {', '.join(duplicates)}")
    init_tasks = tuple(plugin.init_tasks(context))
    clashes = {t.name for t in init_tasks} & {c.name for c in workload.containers}
    if clashes:
        raise ConfigurationError(f"container names clash with plugin tasks: {', '.join(sorted(clashes))}")
    namespace = config.namespace or context.namespace
    name = job_name(workload, config.run_id)
    secret_name = f'{name}-credentials'
    labels = {
        LABEL_RESOURCE_KIND: label_value(ref.kind),
        LABEL_RESOURCE_NAME: label_value(ref.name),
        LABEL_RESOURCE_NAMESPACE: label_value(ref.namespace),
        LABEL_SCAN_RUN: label_value(config.run_id),
        LABEL_PLUGIN: label_value(plugin.name),
        LABEL_JOB_TYPE: 'vulnerability-scan',
    }
    tasks = []
    secret_data = {}
    for container in workload.containers:
        try:
            task = plugin.build_task(context, container)
        except ConfigurationError as exc:
            raise ConfigurationError(f'container "{container.name}": {exc.detail}')
        if task.name != container.name:
            raise ConfigurationError(
                f'plugin "{plugin.name}" named the task for container "{container.name}" "{task.name}"'
            )
        # If there are credentials for the registry of the image, inject them via the secret
        registry = parse_image(container.image, config.default_registry).registry
        credentials = config.registry_credentials.get(registry)
        if credentials:
            secret_data[f'{container.name}.username'] = credentials.username
            secret_data[f'{container.name}.password'] = credentials.password.get_secret_value()
            task = task.with_env(*plugin.credentials_env(secret_name, container, registry))
        tasks.append(task)
    secrets = []
    if secret_data:
        secrets.append(
            Secret(
                name = secret_name,
                namespace = namespace,
                labels = labels,
                string_data = secret_data
            )
        )
    job = JobDescription(
        name = name,
        namespace = namespace,
        labels = labels,
        annotations = {
            # Record the image for each container so that logs can be matched to images
            ANNOTATION_CONTAINER_IMAGES: json.dumps({
                container.name: container.image
                for container in workload.containers
            }),
        },
        tasks = tasks,
        init_tasks = init_tasks,
        volumes = tuple(plugin.volumes(context)),
        service_account_name = context.service_account_name,
        active_deadline_seconds = config.active_deadline
    )
    logger.debug(
        f'Built scan job {namespace}/{name} for {ref.kind} {ref.namespace}/{ref.name} '
        f'with {len(tasks)} task(s) and {len(secrets)} secret(s)'
    )
    return job, secrets
