"""
Utilities for working with Docker image references.
"""

import re
from collections import namedtuple

from .exceptions import ConfigurationError


class ImageReference(namedtuple('ImageReference', [
    'registry',
    'repository',
    'tag',
    'digest'
])):
    """
    Class representing a reference to an image in a registry.

    Attributes:
      registry: The registry for the image.
      repository: The repository for the image.
      tag: The tag for the image. Can be ``None`` if the image is referenced by digest.
      digest: The digest for the image. Can be ``None`` if the image is referenced by tag.
    """


#: The default registry, used when no other registry is specified
DEFAULT_REGISTRY = "index.docker.io"

#: Regex matching a URL-style scheme, e.g. docker://
SCHEME_REGEX = re.compile(r'^(?P<scheme>[a-z][a-z0-9+.-]*)://')

#: Transports that refer to images outside of a registry
# A bare "name:" prefix is ambiguous with "repository:tag", so only these are recognised
LOCAL_TRANSPORTS = {
    'containers-storage',
    'dir',
    'docker-archive',
    'docker-daemon',
    'file',
    'oci-archive',
    'oci-dir',
    'oci-layout',
    'sif',
    'singularity',
}


def transport_of(image):
    """
    Return the transport prefix of the given image string, or ``None`` if there is none.
    """
    match = SCHEME_REGEX.match(image)
    if match:
        return match.group('scheme')
    prefix, sep, _ = image.partition(':')
    if sep and prefix in LOCAL_TRANSPORTS:
        return prefix
    return None


def parse_image(image, default_registry = DEFAULT_REGISTRY):
    """
    Return an `ImageReference` for the given image string.

    The image should be of the form `[registry '/']repository[':' tag]['@' digest]`.
    """
    if not image or image != image.strip():
        raise ConfigurationError(f'invalid image reference "{image}"')
    # First, determine if we have a registry component
    # For our purposes, the first component is a registry if it contains a dot
    # (DNS name or IP address), a colon (port) or is the string "localhost"
    remainder, registry, *notused = image.split('/', 1)[::-1] + [None]
    if not registry:
        remainder = f'library/{remainder}'
        registry = default_registry
    elif all(c not in registry for c in {'.', ':'}) and registry != "localhost":
        remainder = f'{registry}/{remainder}'
        registry = default_registry
    # docker.io isn't a real registry, so use the default registry instead
    if registry == "docker.io":
        registry = default_registry
        if '/' not in remainder:
            remainder = f'library/{remainder}'
    # Next, split off the digest and tag
    tag = None
    digest = None
    if '@' in remainder:
        # Images containing @ are digests
        remainder, digest = remainder.split('@', 1)
    if ':' in remainder:
        # Images containing : are tags
        repository, tag = remainder.rsplit(':', 1)
    elif digest:
        repository = remainder
    else:
        # Otherwise, assume the latest tag
        repository, tag = (remainder, 'latest')
    if not repository or (digest is not None and not digest) or (tag is not None and not tag):
        raise ConfigurationError(f'invalid image reference "{image}"')
    return ImageReference(registry, repository, tag, digest)
