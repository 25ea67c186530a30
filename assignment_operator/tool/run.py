"""Assignment-operator run action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import pathlib
from typing import Any, cast

from assignment_operator.config import OperatorConfig
from assignment_operator.controller import AssignmentTarget, Operator, Reconciler
from assignment_operator.exceptions import UserInputError
from assignment_operator.gitops import GitOpsSynchronizer
from assignment_operator.store.kubernetes import KubernetesResourceStore

_LOGGER = logging.getLogger(__name__)


class RunAction:
    """Assignment-operator run action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "run",
                help="Run the operator against a Kubernetes cluster",
                description="""Watch WorkloadAssignment resources and materialize
                    each of them into the GitOps repository. Settings not given
                    as flags are read from ASSIGNMENT_OPERATOR_* environment
                    variables.""",
            ),
        )
        args.add_argument(
            "--gitops-repo",
            dest="gitops_repo_url",
            type=str,
            help="URL of the GitOps repository to publish to",
        )
        args.add_argument(
            "--branch", type=str, help="Branch of the GitOps repository"
        )
        args.add_argument(
            "--namespace",
            type=str,
            help="Namespace to watch, defaults to all namespaces",
        )
        args.add_argument(
            "--ssh-key",
            dest="ssh_key_path",
            type=pathlib.Path,
            help="Private key used for ssh git remotes",
        )
        args.add_argument(
            "--requeue-interval",
            type=float,
            help="Seconds before a reconciled assignment is checked again",
        )
        args.add_argument(
            "--error-backoff",
            type=float,
            help="Seconds before a failed reconciliation is retried",
        )
        args.add_argument(
            "--file-template-root",
            type=pathlib.Path,
            help="Directory that local `file` template sources may be read from",
        )
        args.add_argument(
            "--kubeconfig",
            type=str,
            default=None,
            help="Kubeconfig file to use instead of the in-cluster configuration",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        kubeconfig: str | None,
        **kwargs: Any,
    ) -> None:
        """Async Action implementation."""
        config = OperatorConfig.from_env().update(
            gitops_repo_url=kwargs.get("gitops_repo_url"),
            branch=kwargs.get("branch"),
            namespace=kwargs.get("namespace"),
            ssh_key_path=kwargs.get("ssh_key_path"),
            requeue_interval=kwargs.get("requeue_interval"),
            error_backoff=kwargs.get("error_backoff"),
            file_template_root=kwargs.get("file_template_root"),
        )
        if not config.gitops_repo_url:
            raise UserInputError(
                "A GitOps repository is required, use --gitops-repo or "
                "ASSIGNMENT_OPERATOR_GITOPS_REPO_URL"
            )
        _LOGGER.info("Starting operator with %s", config)

        store = await KubernetesResourceStore.create(kubeconfig=kubeconfig)
        target = AssignmentTarget(store, GitOpsSynchronizer(config))
        operator = Operator(store, Reconciler(target, config), config)
        try:
            await operator.run()
        finally:
            await operator.close()
            await store.close()
