"""Assignment-operator select action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import pathlib
import sys
from typing import Any, cast

import yaml

from assignment_operator import selector
from assignment_operator.exceptions import UserInputError
from assignment_operator.manifest import CLUSTER_KIND, WORKLOAD_KIND, Cluster, Workload

_LOGGER = logging.getLogger(__name__)


def _read_docs(path: pathlib.Path) -> list[dict[str, Any]]:
    try:
        with path.open() as fd:
            return [doc for doc in yaml.safe_load_all(fd) if isinstance(doc, dict)]
    except OSError as err:
        raise UserInputError(f"Unable to read {path}: {err}") from err
    except yaml.YAMLError as err:
        raise UserInputError(f"{path} failed to parse as yaml: {err}") from err


class SelectAction:
    """Assignment-operator select action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "select",
                help="Print the clusters selected by the rules of a workload",
                description="""Evaluate every assignment rule of a Workload
                    against a set of Cluster resources and print the selected
                    cluster names per rule as yaml.""",
            ),
        )
        args.add_argument(
            "--workload",
            type=pathlib.Path,
            required=True,
            help="File containing the Workload resource",
        )
        args.add_argument(
            "--clusters",
            type=pathlib.Path,
            required=True,
            help="File containing one or more Cluster resources",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        workload: pathlib.Path,
        clusters: pathlib.Path,
        **kwargs: Any,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        workloads = [
            Workload.parse_doc(doc)
            for doc in _read_docs(workload)
            if doc.get("kind") == WORKLOAD_KIND
        ]
        if len(workloads) != 1:
            raise UserInputError(
                f"Expected exactly one {WORKLOAD_KIND} in {workload}, found {len(workloads)}"
            )
        candidates = [
            Cluster.parse_doc(doc)
            for doc in _read_docs(clusters)
            if doc.get("kind") == CLUSTER_KIND
        ]
        _LOGGER.debug("Evaluating %d candidate clusters", len(candidates))
        selected = selector.select_workload_clusters(workloads[0], candidates)
        result = {
            rule_id: [cluster.name for cluster in matches]
            for rule_id, matches in selected.items()
        }
        yaml.dump(result, sys.stdout, sort_keys=False, default_flow_style=False)
