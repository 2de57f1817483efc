"""
Command line interface for scanning the images of a workload.
"""

import argparse
import asyncio
import contextlib
import logging
import sys

from . import conf, k8s, pipeline, render, store
from .backend.k8s import KubernetesBackend
from .exceptions import ConfigurationError, JobRunError, PersistenceError


logger = logging.getLogger(__name__)


#: Exit code when every container was scanned
EXIT_OK = 0
#: Exit code when the page was rendered but some containers could not be scanned
EXIT_INCOMPLETE = 1
#: Exit code when the scan could not be run
EXIT_ERROR = 2


def make_parser():
    parser = argparse.ArgumentParser(
        prog = 'kubevuln-scan',
        description = 'Scan the container images of a Kubernetes workload for vulnerabilities.'
    )
    parser.add_argument(
        '--config',
        help = f'Settings file (default: ${conf.CONFIG_ENV_VAR} or {conf.DEFAULT_CONFIG_FILE})'
    )
    source = parser.add_mutually_exclusive_group(required = True)
    source.add_argument('--manifest', metavar = 'FILE', help = 'YAML manifest of the workload')
    source.add_argument('--kind', help = 'Kind of the workload to fetch from the cluster')
    parser.add_argument('--name', help = 'Name of the workload to fetch from the cluster')
    parser.add_argument('--namespace', help = 'Namespace of the workload (default: default)')
    parser.add_argument('--kubeconfig', help = 'Kubeconfig file to use')
    parser.add_argument('--context', help = 'Kubeconfig context to use')
    parser.add_argument('--output', '-o', help = 'File to write the report page to (default: stdout)')
    parser.add_argument(
        '--format',
        choices = render.FORMATS,
        default = 'html',
        help = 'Format of the report page (default: html)'
    )
    parser.add_argument(
        '--timeout',
        type = float,
        help = 'Seconds to wait for the scan job (default: from settings)'
    )
    parser.add_argument('-v', '--verbose', action = 'store_true', help = 'Enable debug logging')
    return parser


@contextlib.contextmanager
def open_output(path):
    if path:
        with open(path, 'w') as f:
            yield f
    else:
        yield sys.stdout


async def scan(args, settings):
    """
    Scan the workload given by the arguments and write the page.

    Returns the outcome of the scan.
    """
    namespace = args.namespace or 'default'
    if args.manifest:
        workload = k8s.load_workload(args.manifest, namespace)
    async with k8s.api_client(args.kubeconfig, args.context) as api:
        if not args.manifest:
            workload = await k8s.fetch_workload(api, args.kind, args.name, namespace)
        plugin = settings.build_plugin()
        timeout = args.timeout if args.timeout is not None else settings.job_timeout
        outcome = await pipeline.scan_workload(
            workload,
            plugin,
            settings.plugin_context(plugin),
            KubernetesBackend(api, settings.poll_interval),
            store.from_settings(settings, api),
            namespace = settings.namespace,
            registry_credentials = settings.registry_credentials,
            default_registry = settings.default_registry,
            timeout = timeout
        )
    page = render.render(workload.ref, outcome.reports)
    with open_output(args.output) as stream:
        render.write_page(page, stream, args.format)
    return outcome


def main(argv = None):
    parser = make_parser()
    args = parser.parse_args(argv)
    if args.kind and not args.name:
        parser.error('--name is required with --kind')
    logging.basicConfig(
        level = logging.DEBUG if args.verbose else logging.INFO,
        format = '%(asctime)s %(levelname)s %(name)s: %(message)s',
        stream = sys.stderr
    )
    try:
        settings = conf.from_file(args.config) if args.config else conf.from_env_file()
        outcome = asyncio.run(scan(args, settings))
    except (ConfigurationError, JobRunError, PersistenceError) as exc:
        logger.error(str(exc))
        return EXIT_ERROR
    for error in outcome.errors:
        logger.error(str(error))
    return EXIT_OK if outcome.complete else EXIT_INCOMPLETE


if __name__ == '__main__':
    sys.exit(main())
