"""Library for selecting the clusters a workload is assigned to.

Each `AssignmentRule` of a workload selects the clusters whose labels match
all of its `LabelMatchRule`s, capped at `max_assignments`. Selection is
deterministic for a given candidate set so that repeated reconciliations
always arrive at the same answer.

Example usage:

```python
from assignment_operator import selector

for rule_id, clusters in selector.select_workload_clusters(workload, clusters).items():
    print(f"Rule {rule_id} selects {[cluster.name for cluster in clusters]}")
```
"""

from collections.abc import Callable, Iterable
import logging
from typing import Any

from .manifest import AssignmentRule, Cluster, Workload

__all__ = [
    "select_clusters",
    "select_workload_clusters",
]

_LOGGER = logging.getLogger(__name__)


def cluster_name(cluster: Cluster) -> str:
    """Default ordering key for candidate clusters."""
    return cluster.name


def select_clusters(
    rule: AssignmentRule,
    clusters: Iterable[Cluster],
    key: Callable[[Cluster], Any] = cluster_name,
) -> list[Cluster]:
    """Return the clusters selected by the rule.

    Matching clusters are ordered by `key` (a stable sort, so ties keep their
    candidate order) and then truncated to `max_assignments` when it is set.
    """
    matched = sorted((cluster for cluster in clusters if rule.matches(cluster)), key=key)
    if rule.max_assignments is not None and len(matched) > rule.max_assignments:
        _LOGGER.debug(
            "Rule %s matched %d clusters, limiting to %d",
            rule.id,
            len(matched),
            rule.max_assignments,
        )
        matched = matched[: rule.max_assignments]
    return matched


def select_workload_clusters(
    workload: Workload,
    clusters: Iterable[Cluster],
    key: Callable[[Cluster], Any] = cluster_name,
) -> dict[str, list[Cluster]]:
    """Return the clusters selected by each assignment rule of the workload."""
    candidates = list(clusters)
    return {
        rule.id: select_clusters(rule, candidates, key=key)
        for rule in workload.assignments
    }
