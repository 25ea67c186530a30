"""Module for building the variables used to render a workload template."""

from collections.abc import Iterable, Mapping
import logging

from .manifest import Assignment, Environment, Workload

__all__ = [
    "merge_values",
    "assignment_values",
]

_LOGGER = logging.getLogger(__name__)

CLUSTER_NAME_KEY = "clusterName"

DEFAULT_PLATFORM_VALUES = {
    "cloud": "azure",
    "cloudRegion": "eastus2",
}


def merge_values(layers: Iterable[Mapping[str, str] | None]) -> dict[str, str]:
    """Merge layers of variables, ordered from lowest to highest precedence."""
    values: dict[str, str] = {}
    for layer in layers:
        if layer:
            values.update(layer)
    return values


def assignment_values(
    workload: Workload,
    assignment: Assignment,
    environment: Environment | None = None,
    platform_values: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Return the resolved variables for rendering an assignment.

    Layers are applied in increasing precedence: platform defaults (including
    the cluster name), workload values, environment values then assignment
    values.
    """
    platform = {
        **(DEFAULT_PLATFORM_VALUES if platform_values is None else platform_values),
        CLUSTER_NAME_KEY: assignment.cluster,
    }
    values = merge_values(
        [
            platform,
            workload.values,
            environment.values if environment else None,
            assignment.values,
        ]
    )
    _LOGGER.debug(
        "Resolved %d template values for %s", len(values), assignment.namespaced_name
    )
    return values
