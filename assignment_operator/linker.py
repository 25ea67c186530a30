"""Library for regenerating the aggregation manifest of a cluster directory.

Each assignment of a cluster is rendered into its own subdirectory, and the
cluster directory holds a `kustomization.yaml` referencing every one of them
so the sync agent picks them all up. The manifest is always regenerated from
the directory contents, never merged.
"""

from collections.abc import Iterable
import logging
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os
from aiofiles.ospath import isdir
import yaml

from .exceptions import FilesystemError

__all__ = [
    "link",
    "KUSTOMIZATION_FILE",
]

_LOGGER = logging.getLogger(__name__)

KUSTOMIZATION_FILE = "kustomization.yaml"
KUSTOMIZE_API_VERSION = "kustomize.config.k8s.io/v1beta1"
KUSTOMIZE_KIND = "Kustomization"

# Indent of the entries of the resources list.
MANIFEST_INDENT = 4

# The sync agent keeps its own control files in this directory.
DEFAULT_RESERVED = ("flux-system",)


class _ManifestDumper(yaml.SafeDumper):
    """Dumper indenting list entries under their key."""

    def increase_indent(self, flow: bool = False, indentless: bool = False) -> None:
        super().increase_indent(flow, False)


def kustomization_content(resources: Iterable[str]) -> str:
    """Return the serialized aggregation manifest for the resources."""
    doc: dict[str, Any] = {
        "apiVersion": KUSTOMIZE_API_VERSION,
        "kind": KUSTOMIZE_KIND,
        "resources": list(resources),
    }
    return yaml.dump(
        doc,
        Dumper=_ManifestDumper,
        indent=MANIFEST_INDENT,
        sort_keys=False,
        default_flow_style=False,
    )


async def list_subdirectories(
    directory: Path, reserved: Iterable[str] = DEFAULT_RESERVED
) -> list[str]:
    """Return the sorted names of the subdirectories that should be linked."""
    excluded = set(reserved)
    try:
        names = sorted(await aiofiles.os.listdir(directory))
    except OSError as err:
        raise FilesystemError(f"Unable to list {directory}: {err}") from err
    return [
        name
        for name in names
        if name not in excluded
        and not name.startswith(".")
        and await isdir(directory / name)
    ]


async def link(
    directory: Path,
    reserved: Iterable[str] = DEFAULT_RESERVED,
    base_resources: Iterable[str] = (),
) -> Path:
    """Regenerate the aggregation manifest for the directory.

    The manifest lists `base_resources` followed by every subdirectory of
    `directory` other than reserved or hidden ones. Any existing manifest is
    overwritten. Returns the path to the manifest.
    """
    resources = [*base_resources, *await list_subdirectories(directory, reserved)]
    manifest_path = directory / KUSTOMIZATION_FILE
    _LOGGER.debug("Linking %d resources in %s", len(resources), manifest_path)
    try:
        async with aiofiles.open(manifest_path, mode="w", encoding="utf-8") as f:
            await f.write(kustomization_content(resources))
    except OSError as err:
        raise FilesystemError(f"Unable to write {manifest_path}: {err}") from err
    return manifest_path
