"""
Module providing an execution backend that runs scan jobs as Kubernetes jobs.
"""

import asyncio
import io
import logging

from kubernetes_asyncio import client
from kubernetes_asyncio.client.rest import ApiException

from ..exceptions import JobRunError, LogsUnavailable
from ..job.models import JobHandle, JobPhase, JobStatus

from .base import ExecutionBackend


logger = logging.getLogger(__name__)


class KubernetesBackend(ExecutionBackend):
    """
    Execution backend that runs scan jobs as Kubernetes jobs.

    Each task of the job is a container of a single pod, so the logs for a task are
    the logs of the container with the same name.
    """
    def __init__(self, api_client, poll_interval = 2.0):
        self.api_client = api_client
        self.poll_interval = poll_interval
        self.batch = client.BatchV1Api(api_client)
        self.core = client.CoreV1Api(api_client)
        # The names of the secrets created for each job, indexed by (namespace, name)
        self._secrets = {}

    async def _delete_secrets(self, namespace, names):
        for name in names:
            try:
                await self.core.delete_namespaced_secret(name, namespace)
            except ApiException as exc:
                # The secrets are owned by the job, so may already have been removed
                if exc.status != 404:
                    logger.warning(f'Failed to delete secret {namespace}/{name}: {exc.status} {exc.reason}')

    async def submit(self, job, secrets):
        # The secrets are created first so that they exist when the pod starts
        created_secrets = []
        try:
            for secret in secrets:
                await self.core.create_namespaced_secret(secret.namespace, secret.manifest())
                created_secrets.append(secret.name)
            created = await self.batch.create_namespaced_job(job.namespace, job.manifest())
        except ApiException as exc:
            await self._delete_secrets(job.namespace, created_secrets)
            raise JobRunError(f'could not submit {job.namespace}/{job.name}: {exc.status} {exc.reason}')
        handle = JobHandle(
            name = created.metadata.name,
            namespace = created.metadata.namespace,
            uid = created.metadata.uid
        )
        self._secrets[(handle.namespace, handle.name)] = created_secrets
        # Make the job own the secrets so they are garbage collected with it
        owner_reference = {
            'apiVersion': 'batch/v1',
            'kind': 'Job',
            'name': handle.name,
            'uid': handle.uid,
            'controller': True,
            'blockOwnerDeletion': False,
        }
        for name in created_secrets:
            try:
                await self.core.patch_namespaced_secret(
                    name,
                    handle.namespace,
                    {'metadata': {'ownerReferences': [owner_reference]}}
                )
            except ApiException as exc:
                logger.warning(f'Failed to set owner of secret {handle.namespace}/{name}: {exc.status} {exc.reason}')
        logger.info(f'Submitted scan job {handle.namespace}/{handle.name}')
        return handle

    async def _failed_tasks(self, handle):
        """
        Returns the names of the tasks that terminated with a non-zero exit code.
        """
        try:
            pods = await self.core.list_namespaced_pod(
                handle.namespace,
                label_selector = f'job-name={handle.name}'
            )
        except ApiException:
            logger.exception(f'Failed to list pods for job {handle.namespace}/{handle.name}')
            return []
        failed = []
        for pod in pods.items:
            statuses = (pod.status.init_container_statuses or []) + (pod.status.container_statuses or [])
            for status in statuses:
                terminated = status.state.terminated if status.state else None
                if terminated and terminated.exit_code != 0 and status.name not in failed:
                    failed.append(status.name)
        return failed

    async def wait(self, handle):
        while True:
            try:
                job = await self.batch.read_namespaced_job_status(handle.name, handle.namespace)
            except ApiException as exc:
                if exc.status == 404:
                    return JobStatus(phase = JobPhase.FAILED, message = 'job no longer exists')
                raise JobRunError(f'could not read {handle.namespace}/{handle.name}: {exc.status} {exc.reason}')
            # A job with the same name but a different uid is not our job
            if handle.uid and job.metadata.uid != handle.uid:
                return JobStatus(phase = JobPhase.FAILED, message = 'job no longer exists')
            for condition in job.status.conditions or []:
                if condition.status != 'True':
                    continue
                if condition.type == 'Complete':
                    return JobStatus(phase = JobPhase.SUCCEEDED)
                elif condition.type == 'Failed':
                    return JobStatus(
                        phase = JobPhase.FAILED,
                        failed_tasks = await self._failed_tasks(handle),
                        message = f'{condition.reason}: {condition.message}'
                    )
            await asyncio.sleep(self.poll_interval)

    async def delete(self, handle):
        try:
            # Background propagation removes the pods and the owned secrets too
            await self.batch.delete_namespaced_job(
                handle.name,
                handle.namespace,
                propagation_policy = 'Background'
            )
        except ApiException as exc:
            if exc.status != 404:
                raise JobRunError(f'could not delete {handle.namespace}/{handle.name}: {exc.status} {exc.reason}')
        await self._delete_secrets(handle.namespace, self._secrets.pop((handle.namespace, handle.name), []))
        logger.info(f'Deleted scan job {handle.namespace}/{handle.name}')

    async def logs(self, handle, container_name):
        try:
            pods = await self.core.list_namespaced_pod(
                handle.namespace,
                label_selector = f'job-name={handle.name}'
            )
            if not pods.items:
                raise LogsUnavailable(f'no pods found for job {handle.name}', container = container_name)
            # With a backoff limit of zero there is only one pod, but prefer the newest
            pod = max(pods.items, key = lambda p: p.metadata.creation_timestamp)
            # The body must be read raw, the "str" deserializer does not preserve JSON
            response = await self.core.read_namespaced_pod_log(
                pod.metadata.name,
                handle.namespace,
                container = container_name,
                _preload_content = False
            )
        except ApiException as exc:
            raise LogsUnavailable(f'{exc.status} {exc.reason}', container = container_name)
        try:
            if not 200 <= response.status <= 299:
                raise LogsUnavailable(f'{response.status} {response.reason}', container = container_name)
            body = await response.read()
        finally:
            response.release()
        return io.BytesIO(body)
