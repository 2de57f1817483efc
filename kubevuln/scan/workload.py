"""
Module containing models for the workloads that are scanned.
"""

from typing import Tuple

from pydantic import constr
from pydantic.dataclasses import dataclass

from .exceptions import ConfigurationError


@dataclass(eq = True, frozen = True)
class Container:
    """
    Model representing a container of a workload.
    """
    #: The name of the container
    name: constr(min_length = 1)
    #: The image reference of the container
    image: constr(min_length = 1)


@dataclass(eq = True, frozen = True)
class WorkloadRef:
    """
    Model representing a reference to a workload.
    """
    #: The kind of the workload
    kind: constr(min_length = 1)
    #: The name of the workload
    name: constr(min_length = 1)
    #: The namespace of the workload
    namespace: constr(min_length = 1)


@dataclass(eq = True, frozen = True)
class Workload:
    """
    Model representing a workload whose container images are scanned.
    """
    #: The kind of the workload
    kind: constr(min_length = 1)
    #: The name of the workload
    name: constr(min_length = 1)
    #: The namespace of the workload
    namespace: constr(min_length = 1)
    #: The containers of the workload, in the order they are declared
    containers: Tuple[Container, ...] = ()

    @property
    def ref(self):
        return WorkloadRef(kind = self.kind, name = self.name, namespace = self.namespace)

    @classmethod
    def from_manifest(cls, obj, default_namespace = 'default'):
        """
        Return a workload for the given resource, as returned by the Kubernetes API
        or loaded from a YAML manifest.
        """
        try:
            kind = obj['kind']
            metadata = obj['metadata']
            if kind == 'Pod':
                pod_spec = obj['spec']
            elif kind == 'CronJob':
                pod_spec = obj['spec']['jobTemplate']['spec']['template']['spec']
            elif kind in POD_TEMPLATE_KINDS:
                pod_spec = obj['spec']['template']['spec']
            else:
                raise ConfigurationError(f'kind "{kind}" does not have a pod spec')
            containers = tuple(
                Container(name = c['name'], image = c['image'])
                for c in pod_spec.get('containers') or []
            )
            return cls(
                kind = kind,
                name = metadata['name'],
                namespace = metadata.get('namespace') or default_namespace,
                containers = containers
            )
        except KeyError as exc:
            raise ConfigurationError(f'invalid workload manifest: missing {exc}')
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f'invalid workload manifest: {exc}')


#: Kinds that embed a pod template at spec.template
POD_TEMPLATE_KINDS = {
    'Deployment',
    'DaemonSet',
    'StatefulSet',
    'ReplicaSet',
    'ReplicationController',
    'Job',
}
