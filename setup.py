#!/usr/bin/env python3

import os
from setuptools import setup, find_namespace_packages


here = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(here, 'README.md')) as f:
    README = f.read()


if __name__ == "__main__":
    setup(
        name = 'kubevuln-scan',
        version = '0.1.0',
        description = 'Tool for scanning the container images of Kubernetes workloads for vulnerabilities.',
        long_description = README,
        long_description_content_type = 'text/markdown',
        classifiers = [
            "Programming Language :: Python",
        ],
        keywords = 'container kubernetes image scan security vulnerability trivy grype',
        packages = find_namespace_packages(include = ['kubevuln.*']),
        include_package_data = True,
        zip_safe = False,
        python_requires = '>=3.10',
        install_requires = [
            'django-flexi-settings',
            'wrapt',
            'pydantic>=2',
            'python-dateutil',
            'sortedcontainers',
            'kubernetes_asyncio',
            'pyyaml',
        ],
        extras_require = {
            'test': [
                'pytest',
                'pytest-asyncio',
            ],
        },
        entry_points = {
            'console_scripts': [
                'kubevuln-scan = kubevuln.scan.cli:main',
            ],
            # Entrypoint defining the scanner plugins available in the core package
            'kubevuln.scan.plugin': [
                'trivy = kubevuln.scan.plugins.trivy:Plugin',
                'grype = kubevuln.scan.plugins.grype:Plugin',
            ]
        }
    )
