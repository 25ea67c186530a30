"""Configuration objects for assignment-operator."""

from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
import logging
import os
from pathlib import Path
from typing import Any

from .exceptions import UserInputError
from .values import DEFAULT_PLATFORM_VALUES

_LOGGER = logging.getLogger(__name__)

ENV_PREFIX = "ASSIGNMENT_OPERATOR_"

DEFAULT_BRANCH = "main"
DEFAULT_REQUEUE_INTERVAL = 60.0
DEFAULT_ERROR_BACKOFF = 5.0
DEFAULT_STEP_TIMEOUT = 120.0


def _parse_mapping(value: str) -> dict[str, str]:
    """Parse a `key=value,key=value` string."""
    result: dict[str, str] = {}
    for item in value.split(","):
        if not item:
            continue
        if "=" not in item:
            raise UserInputError(f"Expected key=value format from '{item}'")
        key, val = item.split("=", 1)
        result[key.strip()] = val.strip()
    return result


def _parse_list(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class OperatorConfig:
    """Configuration for the operator and its GitOps synchronizer."""

    gitops_repo_url: str = ""
    """URL of the destination GitOps repository."""

    branch: str = DEFAULT_BRANCH
    """Branch of the destination repository that commits are pushed to."""

    requeue_interval: float = DEFAULT_REQUEUE_INTERVAL
    """Seconds before a successfully reconciled resource is checked again."""

    error_backoff: float = DEFAULT_ERROR_BACKOFF
    """Seconds before a failed reconciliation is retried."""

    step_timeout: float = DEFAULT_STEP_TIMEOUT
    """Deadline in seconds for each clone, commit or push."""

    ssh_key_path: Path | None = None
    """Private key used for ssh remotes."""

    token: str | None = field(default=None, repr=False)
    """Token used for https remotes."""

    namespace: str | None = None
    """Namespace to watch, or all namespaces when unset."""

    commit_author_name: str = "Assignment Operator"
    commit_author_email: str = "assignment-operator@localhost"

    platform_values: Mapping[str, str] = field(
        default_factory=lambda: dict(DEFAULT_PLATFORM_VALUES)
    )
    """Lowest precedence template variables."""

    reserved_dirs: tuple[str, ...] = ("flux-system",)
    """Cluster subdirectories never listed in the aggregation manifest."""

    base_resources: tuple[str, ...] = ()
    """Resources listed first in every aggregation manifest."""

    file_template_root: Path | None = None
    """Directory that local `file` template sources must reside in.

    Local template sources are rejected when unset.
    """

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "OperatorConfig":
        """Build a configuration from `ASSIGNMENT_OPERATOR_*` variables."""
        if environ is None:
            environ = os.environ
        kwargs: dict[str, Any] = {}
        for config_field in fields(cls):
            env_key = f"{ENV_PREFIX}{config_field.name.upper()}"
            if (value := environ.get(env_key)) is None:
                continue
            kwargs[config_field.name] = _convert(config_field.name, value)
        return cls(**kwargs)

    def update(self, **kwargs: Any) -> "OperatorConfig":
        """Return a copy with the non-None values overridden."""
        return replace(self, **{k: v for k, v in kwargs.items() if v is not None})


def _convert(name: str, value: str) -> Any:
    try:
        if name in ("requeue_interval", "error_backoff", "step_timeout"):
            return float(value)
    except ValueError as err:
        raise UserInputError(f"Invalid number for {name}: '{value}'") from err
    if name in ("ssh_key_path", "file_template_root"):
        return Path(value).expanduser()
    if name == "platform_values":
        return _parse_mapping(value)
    if name in ("reserved_dirs", "base_resources"):
        return _parse_list(value)
    return value
