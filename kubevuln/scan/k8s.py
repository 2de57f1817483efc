"""
Kubernetes integrations for the scanner.
"""

import contextlib
import os

import yaml

from kubernetes_asyncio import client, config
from kubernetes_asyncio.client import ApiClient, Configuration
from kubernetes_asyncio.client.rest import ApiException

from .exceptions import ConfigurationError
from .workload import Workload


#: Map of lower-cased kind -> (API class, read method, kind) for the supported workloads
WORKLOAD_READERS = {
    'pod': ('CoreV1Api', 'read_namespaced_pod', 'Pod'),
    'replicationcontroller': ('CoreV1Api', 'read_namespaced_replication_controller', 'ReplicationController'),
    'deployment': ('AppsV1Api', 'read_namespaced_deployment', 'Deployment'),
    'daemonset': ('AppsV1Api', 'read_namespaced_daemon_set', 'DaemonSet'),
    'statefulset': ('AppsV1Api', 'read_namespaced_stateful_set', 'StatefulSet'),
    'replicaset': ('AppsV1Api', 'read_namespaced_replica_set', 'ReplicaSet'),
    'job': ('BatchV1Api', 'read_namespaced_job', 'Job'),
    'cronjob': ('BatchV1Api', 'read_namespaced_cron_job', 'CronJob'),
}


@contextlib.asynccontextmanager
async def api_client(kubeconfig = None, context = None):
    """
    Async context manager that yields an API client configured from a kubeconfig file,
    or from the service account when running in a pod.
    """
    client_config = Configuration()
    in_cluster = 'KUBERNETES_SERVICE_HOST' in os.environ and 'KUBECONFIG' not in os.environ
    try:
        if in_cluster and not kubeconfig:
            config.load_incluster_config(client_configuration = client_config)
        else:
            await config.load_kube_config(
                config_file = kubeconfig,
                context = context,
                client_configuration = client_config
            )
    except (config.ConfigException, OSError) as exc:
        raise ConfigurationError(f'could not load cluster configuration: {exc}')
    async with ApiClient(configuration = client_config) as api:
        yield api


async def fetch_workload(api, kind, name, namespace):
    """
    Returns the workload with the given kind, name and namespace from the cluster.
    """
    try:
        api_class, method, kind = WORKLOAD_READERS[kind.lower()]
    except KeyError:
        available = ', '.join(sorted(WORKLOAD_READERS))
        raise ConfigurationError(f'unsupported workload kind "{kind}" (available: {available})')
    read = getattr(getattr(client, api_class)(api), method)
    try:
        obj = await read(name, namespace)
    except ApiException as exc:
        if exc.status == 404:
            raise ConfigurationError(f'{kind} {namespace}/{name} not found')
        raise ConfigurationError(f'could not read {kind} {namespace}/{name}: {exc.status} {exc.reason}')
    # Convert to the same form as a manifest, making sure that the kind is set
    manifest = api.sanitize_for_serialization(obj)
    manifest['kind'] = kind
    return Workload.from_manifest(manifest, namespace)


def load_workload(path, default_namespace = 'default'):
    """
    Returns the workload defined by the first document in the given YAML manifest file.
    """
    try:
        with open(path) as f:
            manifest = next(
                (doc for doc in yaml.safe_load_all(f) if doc),
                None
            )
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f'could not load manifest {path}: {exc}')
    if not isinstance(manifest, dict):
        raise ConfigurationError(f'manifest {path} does not contain a resource')
    return Workload.from_manifest(manifest, default_namespace)
