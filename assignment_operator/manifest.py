"""Representation of the resources watched by the operator.

These objects are parsed from the raw documents returned by the resource store
(e.g. the Kubernetes API) and carry only the fields the reconciler needs. A
`Workload` describes how to render a deployment from a template repository and
which clusters it may be assigned to, and a `Assignment` binds one workload to
one cluster.

Example usage:

```python
from assignment_operator.manifest import Assignment

assignment = Assignment.parse_doc(doc)
if assignment.deletion_requested:
    print(f"Assignment {assignment.namespaced_name} is being deleted")
```
"""

from dataclasses import dataclass, field
from functools import cached_property
import logging
import re
from typing import Any, ClassVar

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig

from .exceptions import UserInputError

__all__ = [
    "NamedResource",
    "Cluster",
    "LabelMatchRule",
    "AssignmentRule",
    "TemplateSource",
    "Workload",
    "Environment",
    "Assignment",
]

_LOGGER = logging.getLogger(__name__)


API_GROUP = "fleet.gitops.io"
API_VERSION = "v1alpha1"
WORKLOAD_KIND = "Workload"
ASSIGNMENT_KIND = "WorkloadAssignment"
ENVIRONMENT_KIND = "WorkloadEnvironment"
CLUSTER_KIND = "Cluster"

# Plural names used by the Kubernetes API for each custom resource kind.
PLURALS = {
    WORKLOAD_KIND: "workloads",
    ASSIGNMENT_KIND: "workloadassignments",
    ENVIRONMENT_KIND: "workloadenvironments",
    CLUSTER_KIND: "clusters",
}

FINALIZER = "workload-assignments.fleet.gitops.io"

TEMPLATE_METHOD_GIT = "git"
TEMPLATE_METHOD_FILE = "file"
TEMPLATE_METHODS = (TEMPLATE_METHOD_GIT, TEMPLATE_METHOD_FILE)


def _check_version(doc: dict[str, Any], group: str) -> None:
    """Assert that the resource belongs to the expected api group."""
    if not (api_version := doc.get("apiVersion")):
        raise UserInputError(f"Invalid object missing apiVersion: {doc}")
    if not api_version.startswith(group):
        raise UserInputError(f"Invalid object expected '{group}': {doc}")


def _parse_metadata(cls: type, doc: dict[str, Any]) -> dict[str, Any]:
    if not (metadata := doc.get("metadata")):
        raise UserInputError(f"Invalid {cls.__name__} missing metadata: {doc}")
    if not metadata.get("name"):
        raise UserInputError(f"Invalid {cls.__name__} missing metadata.name: {doc}")
    return metadata


def _parse_values(cls: type, name: str, values: Any) -> dict[str, str]:
    """Parse a mapping of override variables, coercing scalars to strings."""
    if values is None:
        return {}
    if not isinstance(values, dict):
        raise UserInputError(f"Invalid {cls.__name__} {name} values must be a mapping")
    result: dict[str, str] = {}
    for key, value in values.items():
        if isinstance(value, (dict, list)):
            raise UserInputError(
                f"Invalid {cls.__name__} {name} value for '{key}' must be a scalar"
            )
        result[str(key)] = "" if value is None else str(value)
    return result


class BaseManifest(DataClassDictMixin):
    """Base class for all resource objects."""

    class Config(BaseConfig):
        omit_none = True


@dataclass(frozen=True, order=True)
class NamedResource:
    """Identifier for a watched resource."""

    kind: str
    namespace: str | None
    name: str

    @property
    def namespaced_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> "NamedResource":
        """Return the identity of a raw resource document."""
        if not (kind := doc.get("kind")):
            raise UserInputError(f"Invalid object missing kind: {doc}")
        metadata = doc.get("metadata") or {}
        if not (name := metadata.get("name")):
            raise UserInputError(f"Invalid object missing metadata.name: {doc}")
        return cls(kind=kind, namespace=metadata.get("namespace"), name=name)

    def __str__(self) -> str:
        """Return the kind and namespaced name concatenated as an id."""
        return f"{self.kind}/{self.namespaced_name}"


@dataclass(frozen=True)
class Cluster(BaseManifest):
    """A snapshot of a target cluster and its labels."""

    kind: ClassVar[str] = CLUSTER_KIND
    """The kind of the object."""

    name: str
    """The unique name of the cluster."""

    labels: dict[str, str] = field(default_factory=dict)
    """Labels used to match the cluster against assignment rules."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Cluster":
        """Parse a Cluster from a resource document."""
        _check_version(doc, API_GROUP)
        metadata = _parse_metadata(cls, doc)
        labels = metadata.get("labels") or {}
        return cls(
            name=metadata["name"],
            labels={str(k): str(v) for k, v in labels.items()},
        )


@dataclass(frozen=True)
class LabelMatchRule(BaseManifest):
    """Matches clusters carrying a label whose value matches a regex."""

    label: str
    """The label key that must be present on the cluster."""

    regex: str
    """The pattern searched for in the label value."""

    @cached_property
    def pattern(self) -> re.Pattern[str]:
        """The compiled regex."""
        return re.compile(self.regex)

    @classmethod
    def check_doc(cls, doc: Any) -> None:
        """Validate a LabelMatchRule document, including its regex."""
        if not isinstance(doc, dict):
            raise UserInputError(f"Invalid {cls.__name__} must be a mapping: {doc}")
        if not (label := doc.get("label")):
            raise UserInputError(f"Invalid {cls.__name__} missing label: {doc}")
        if (regex := doc.get("regex")) is None:
            raise UserInputError(f"Invalid {cls.__name__} missing regex: {doc}")
        if not isinstance(label, str) or not isinstance(regex, str):
            raise UserInputError(
                f"Invalid {cls.__name__} label and regex must be strings: {doc}"
            )
        try:
            re.compile(regex)
        except re.error as err:
            raise UserInputError(
                f"Invalid {cls.__name__} regex '{regex}' for label '{label}': {err}"
            ) from err

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "LabelMatchRule":
        """Parse a LabelMatchRule, validating the regex."""
        cls.check_doc(doc)
        return cls.from_dict(doc)

    def matches(self, cluster: Cluster) -> bool:
        """Return True if the cluster carries the label and the value matches.

        The regex is searched for anywhere in the value, so it is only
        anchored when the pattern itself uses `^` or `$`.
        """
        if (value := cluster.labels.get(self.label)) is None:
            return False
        return self.pattern.search(value) is not None


@dataclass(frozen=True)
class AssignmentRule(BaseManifest):
    """A set of label rules selecting the clusters a workload is assigned to."""

    id: str
    """Identifier of the rule within the workload."""

    labels: list[LabelMatchRule] = field(default_factory=list)
    """All of these rules must match for a cluster to be selected."""

    max_assignments: int | None = field(
        metadata=field_options(alias="maxAssignments"), default=None
    )
    """The maximum number of clusters to select, or unbounded when unset."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "AssignmentRule":
        """Parse an AssignmentRule from a workload spec entry."""
        if not (rule_id := doc.get("id")):
            raise UserInputError(f"Invalid {cls.__name__} missing id: {doc}")
        max_assignments = doc.get("maxAssignments")
        if max_assignments is not None:
            if not isinstance(max_assignments, int) or max_assignments < 0:
                raise UserInputError(
                    f"Invalid {cls.__name__} {rule_id} maxAssignments must be a "
                    f"non-negative integer: {max_assignments}"
                )
        labels = doc.get("labels") or []
        if not isinstance(labels, list):
            raise UserInputError(f"Invalid {cls.__name__} {rule_id} labels must be a list")
        for subdoc in labels:
            LabelMatchRule.check_doc(subdoc)
        return cls.from_dict({**doc, "id": str(rule_id), "labels": labels})

    def matches(self, cluster: Cluster) -> bool:
        """Return True if every label rule matches the cluster."""
        return all(rule.matches(cluster) for rule in self.labels)


@dataclass(frozen=True)
class TemplateSource(BaseManifest):
    """Location of a template tree to render."""

    source: str
    """The repository URL, or a local directory for the file method."""

    path: str
    """The path of the template tree within the source."""

    method: str | None = None
    """How to fetch the source, defaults to git."""

    ref: str | None = None
    """The branch or tag to clone, defaults to the remote default branch."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "TemplateSource":
        """Parse a TemplateSource from a workload spec."""
        if not (source := doc.get("source")):
            raise UserInputError(f"Invalid {cls.__name__} missing source: {doc}")
        if (path := doc.get("path")) is None:
            raise UserInputError(f"Invalid {cls.__name__} missing path: {doc}")
        method = doc.get("method")
        if method is not None and method not in TEMPLATE_METHODS:
            raise UserInputError(
                f"Invalid {cls.__name__} method '{method}', expected one of {TEMPLATE_METHODS}"
            )
        return cls.from_dict({**doc, "source": str(source), "path": str(path)})

    @property
    def fetch_method(self) -> str:
        """The effective fetch method."""
        return self.method or TEMPLATE_METHOD_GIT


@dataclass
class Workload(BaseManifest):
    """A workload definition: a template and the rules for where it runs."""

    kind: ClassVar[str] = WORKLOAD_KIND
    """The kind of the object."""

    name: str
    """The name of the Workload."""

    namespace: str | None
    """The namespace that owns the Workload."""

    template: TemplateSource
    """The template rendered into each assigned cluster."""

    global_template: TemplateSource | None = None
    """An optional template for the control plane clusters."""

    assignments: list[AssignmentRule] = field(default_factory=list)
    """Rules selecting the clusters this workload is assigned to."""

    values: dict[str, str] = field(default_factory=dict)
    """Workload level template variable overrides."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Workload":
        """Parse a Workload from a resource document."""
        _check_version(doc, API_GROUP)
        metadata = _parse_metadata(cls, doc)
        name = metadata["name"]
        if not (spec := doc.get("spec")):
            raise UserInputError(f"Invalid {cls.__name__} missing spec: {doc}")
        if not (templates := spec.get("templates")):
            raise UserInputError(f"Invalid {cls.__name__} missing spec.templates: {doc}")
        if not (workload_template := templates.get("workload")):
            raise UserInputError(
                f"Invalid {cls.__name__} missing spec.templates.workload: {doc}"
            )
        global_template = None
        if global_doc := templates.get("global"):
            global_template = TemplateSource.parse_doc(global_doc)
        return cls(
            name=name,
            namespace=metadata.get("namespace"),
            template=TemplateSource.parse_doc(workload_template),
            global_template=global_template,
            assignments=[
                AssignmentRule.parse_doc(subdoc)
                for subdoc in spec.get("assignments") or ()
            ],
            values=_parse_values(cls, name, spec.get("values")),
        )

    @property
    def namespaced_name(self) -> str:
        """Return the namespace and name concatenated as an id."""
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name


@dataclass
class Environment(BaseManifest):
    """An intermediate set of overrides shared by several assignments."""

    kind: ClassVar[str] = ENVIRONMENT_KIND
    """The kind of the object."""

    name: str
    namespace: str | None
    values: dict[str, str] = field(default_factory=dict)

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Environment":
        """Parse an Environment from a resource document."""
        _check_version(doc, API_GROUP)
        metadata = _parse_metadata(cls, doc)
        spec = doc.get("spec") or {}
        return cls(
            name=metadata["name"],
            namespace=metadata.get("namespace"),
            values=_parse_values(cls, metadata["name"], spec.get("values")),
        )


@dataclass
class Assignment(BaseManifest):
    """Binds a workload to one target cluster."""

    kind: ClassVar[str] = ASSIGNMENT_KIND
    """The kind of the object."""

    name: str
    """The name of the assignment, also the output directory name."""

    namespace: str | None
    """The namespace of the assignment, required for reconciliation."""

    workload: str
    """The name of the Workload in the same namespace."""

    cluster: str
    """The name of the target cluster."""

    environment: str | None = None
    """An optional WorkloadEnvironment supplying intermediate overrides."""

    values: dict[str, str] = field(default_factory=dict)
    """Assignment level template variable overrides."""

    finalizers: list[str] = field(default_factory=list)
    """Finalizers present on the resource."""

    deletion_timestamp: str | None = None
    """Set by the resource store once deletion has been requested."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Assignment":
        """Parse an Assignment from a resource document."""
        _check_version(doc, API_GROUP)
        metadata = _parse_metadata(cls, doc)
        name = metadata["name"]
        if not (spec := doc.get("spec")):
            raise UserInputError(f"Invalid {cls.__name__} missing spec: {doc}")
        if not (workload := spec.get("workload")):
            raise UserInputError(f"Invalid {cls.__name__} missing spec.workload: {doc}")
        if not (cluster := spec.get("cluster")):
            raise UserInputError(f"Invalid {cls.__name__} missing spec.cluster: {doc}")
        deletion_timestamp = metadata.get("deletionTimestamp")
        return cls(
            name=name,
            namespace=metadata.get("namespace"),
            workload=workload,
            cluster=cluster,
            environment=spec.get("environment"),
            values=_parse_values(cls, name, spec.get("values")),
            finalizers=list(metadata.get("finalizers") or ()),
            deletion_timestamp=str(deletion_timestamp) if deletion_timestamp else None,
        )

    @property
    def has_finalizer(self) -> bool:
        """Return True if the operator's finalizer is present."""
        return FINALIZER in self.finalizers

    @property
    def deletion_requested(self) -> bool:
        """Return True if the store has marked the resource for deletion."""
        return self.deletion_timestamp is not None

    @property
    def resource_id(self) -> NamedResource:
        """The identity of the assignment in the store."""
        return NamedResource(self.kind, self.namespace, self.name)

    @property
    def namespaced_name(self) -> str:
        """Return the namespace and name concatenated as an id."""
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name
