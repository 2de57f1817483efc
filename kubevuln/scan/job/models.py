"""
Module containing models for scan jobs and the objects they depend on.
"""

import enum
import json
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, constr


#: Annotation recording the image of each container scanned by a job
ANNOTATION_CONTAINER_IMAGES = 'kubevuln.io/container-images'
#: Labels identifying the scan job
LABEL_PLUGIN = 'kubevuln.io/plugin'
LABEL_JOB_TYPE = 'kubevuln.io/job-type'


class SecretKeyRef(BaseModel):
    """
    Model for a reference to a key of a secret.
    """
    model_config = ConfigDict(frozen = True)

    name: constr(min_length = 1)
    key: constr(min_length = 1)


class EnvVar(BaseModel):
    """
    Model for an environment variable of a task, either a literal value or a secret reference.
    """
    model_config = ConfigDict(frozen = True)

    name: constr(min_length = 1)
    value: Optional[str] = None
    secret_key_ref: Optional[SecretKeyRef] = None

    def manifest(self):
        if self.secret_key_ref:
            return {
                'name': self.name,
                'valueFrom': {
                    'secretKeyRef': {
                        'name': self.secret_key_ref.name,
                        'key': self.secret_key_ref.key,
                        'optional': False,
                    },
                },
            }
        return {'name': self.name, 'value': self.value or ''}


class VolumeMount(BaseModel):
    """
    Model for a volume mounted into a task.
    """
    model_config = ConfigDict(frozen = True)

    name: constr(min_length = 1)
    mount_path: constr(min_length = 1)
    read_only: bool = False

    def manifest(self):
        return {'name': self.name, 'mountPath': self.mount_path, 'readOnly': self.read_only}


class TaskSpec(BaseModel):
    """
    Model for a single task of a scan job, which runs as one container.
    """
    model_config = ConfigDict(frozen = True)

    #: The name of the task, which is the name of the scanned container
    name: constr(min_length = 1)
    #: The image to run the task with, i.e. the scanner image
    image: constr(min_length = 1)
    command: Tuple[str, ...] = ()
    args: Tuple[str, ...] = ()
    env: Tuple[EnvVar, ...] = ()
    volume_mounts: Tuple[VolumeMount, ...] = ()
    #: Resource requests and limits, in Kubernetes format
    resources: Dict[str, Dict[str, str]] = Field(default_factory = dict)

    def with_env(self, *env):
        return self.model_copy(update = dict(env = self.env + tuple(env)))

    def manifest(self):
        container = {
            'name': self.name,
            'image': self.image,
            'imagePullPolicy': 'IfNotPresent',
            'env': [e.manifest() for e in self.env],
            'volumeMounts': [m.manifest() for m in self.volume_mounts],
        }
        if self.command:
            container['command'] = list(self.command)
        if self.args:
            container['args'] = list(self.args)
        if self.resources:
            container['resources'] = self.resources
        return container


class Secret(BaseModel):
    """
    Model for a secret that must exist before a scan job starts.
    """
    model_config = ConfigDict(frozen = True)

    name: constr(min_length = 1)
    namespace: constr(min_length = 1)
    labels: Dict[str, str] = Field(default_factory = dict)
    string_data: Dict[str, str] = Field(default_factory = dict)

    def manifest(self):
        return {
            'apiVersion': 'v1',
            'kind': 'Secret',
            'metadata': {
                'name': self.name,
                'namespace': self.namespace,
                'labels': dict(self.labels),
            },
            'type': 'Opaque',
            'stringData': dict(self.string_data),
        }

    def __repr__(self):
        # Never include the secret data in logs
        return f'Secret(name={self.name!r}, namespace={self.namespace!r}, keys={sorted(self.string_data)!r})'

    __str__ = __repr__


class JobDescription(BaseModel):
    """
    Model for a scan job, with one task per scanned container.
    """
    model_config = ConfigDict(frozen = True)

    name: constr(min_length = 1)
    namespace: constr(min_length = 1)
    labels: Dict[str, str] = Field(default_factory = dict)
    annotations: Dict[str, str] = Field(default_factory = dict)
    tasks: Tuple[TaskSpec, ...]
    #: Tasks that run to completion before the scan tasks start
    init_tasks: Tuple[TaskSpec, ...] = ()
    #: Volumes available to the tasks, in Kubernetes format
    volumes: Tuple[Dict[str, Any], ...] = ()
    service_account_name: Optional[str] = None
    #: The number of seconds the job may run for before it is failed by the backend
    active_deadline_seconds: Optional[int] = None

    @property
    def container_images(self):
        """
        The container name -> image mapping recorded on the job.
        """
        return json.loads(self.annotations[ANNOTATION_CONTAINER_IMAGES])

    def manifest(self):
        """
        Return the job as a Kubernetes batch/v1 Job.
        """
        pod_spec = {
            'restartPolicy': 'Never',
            'automountServiceAccountToken': False,
            'containers': [task.manifest() for task in self.tasks],
            'volumes': [dict(v) for v in self.volumes],
        }
        if self.init_tasks:
            pod_spec['initContainers'] = [task.manifest() for task in self.init_tasks]
        if self.service_account_name:
            pod_spec['serviceAccountName'] = self.service_account_name
        job_spec = {
            # Retries are not wanted, a failed scan is reported as such
            'backoffLimit': 0,
            'completions': 1,
            'template': {
                'metadata': {
                    'labels': dict(self.labels),
                    'annotations': dict(self.annotations),
                },
                'spec': pod_spec,
            },
        }
        if self.active_deadline_seconds:
            job_spec['activeDeadlineSeconds'] = self.active_deadline_seconds
        return {
            'apiVersion': 'batch/v1',
            'kind': 'Job',
            'metadata': {
                'name': self.name,
                'namespace': self.namespace,
                'labels': dict(self.labels),
                'annotations': dict(self.annotations),
            },
            'spec': job_spec,
        }


class JobHandle(BaseModel):
    """
    Model for a job that has been submitted to an execution backend.
    """
    model_config = ConfigDict(frozen = True)

    name: constr(min_length = 1)
    namespace: constr(min_length = 1)
    uid: Optional[str] = None


class JobPhase(enum.Enum):
    """
    Enum of the terminal phases of a job.
    """
    SUCCEEDED = 'Succeeded'
    FAILED = 'Failed'


class JobStatus(BaseModel):
    """
    Model for the terminal state of a job.
    """
    model_config = ConfigDict(frozen = True)

    phase: JobPhase
    #: The names of the tasks that failed, if known
    failed_tasks: List[str] = Field(default_factory = list)
    #: A message from the backend describing the state
    message: Optional[str] = None

    @property
    def succeeded(self):
        return self.phase == JobPhase.SUCCEEDED
