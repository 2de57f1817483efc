"""
Module containing utilities for scanner plugins.
"""

import wrapt

from .exceptions import ParseError


@wrapt.decorator
def parse_errors(wrapped, instance, args, kwargs):
    """
    Decorator that converts decode failures raised by the wrapped parse method
    into a ``ParseError``.

    JSON errors, Pydantic validation errors and Unicode errors are all value errors,
    and missing or mistyped keys in the scanner output give key and type errors.
    """
    try:
        return wrapped(*args, **kwargs)
    except ParseError:
        raise
    except (ValueError, KeyError, TypeError) as exc:
        name = getattr(instance, 'name', None) or wrapped.__name__
        raise ParseError(f'{name}: {exc.__class__.__name__}: {exc}') from exc
