"""
Root module for the scanner plugin package.
"""

from importlib.metadata import entry_points

from ..exceptions import ConfigurationError


#: The entrypoint group that plugins are registered in
ENTRY_POINT_GROUP = 'kubevuln.scan.plugin'


def plugin_class(kind):
    """
    Returns the plugin class for the given kind.
    """
    # Use the plugin kind as an entrypoint name
    available = entry_points(group = ENTRY_POINT_GROUP)
    try:
        return next(ep for ep in available if ep.name == kind.lower()).load()
    except StopIteration:
        names = ', '.join(sorted(ep.name for ep in available))
        raise ConfigurationError(f'"{kind}" is not a valid plugin kind (available: {names})')
