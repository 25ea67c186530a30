"""Library for rendering a template tree into an output tree.

A template tree is a directory of text files containing `{{ name }}`
references. Rendering mirrors the directory structure under an output
directory, substituting the supplied variables into every file:

```python
from pathlib import Path
from assignment_operator.render import render

paths = await render(
    Path("templates/deploy"),
    Path("/tmp/gitops"),
    Path("az-eastus2-1/myworkload"),
    {"clusterName": "az-eastus2-1"},
)
for path in paths:
    print(f"Rendered {path}")
```

Directories starting with `.` are skipped entirely, which lets a template
repository keep control files next to the deployed templates. Symbolic links
are never followed, so only regular files inside the tree are rendered. A
reference to a variable that is not supplied is an error rather than an empty
string.
"""

from collections.abc import Mapping
import logging
from pathlib import Path

import aiofiles
import aiofiles.os
from aiofiles.ospath import isdir, isfile, islink
import jinja2

from .exceptions import FilesystemError, TemplateError

__all__ = [
    "render",
]

_LOGGER = logging.getLogger(__name__)

HIDDEN_PREFIX = "."

_ENV = jinja2.Environment(
    undefined=jinja2.StrictUndefined,
    keep_trailing_newline=True,
    autoescape=False,
)


def render_text(content: str, variables: Mapping[str, str], name: str = "") -> str:
    """Render a single template string."""
    try:
        return _ENV.from_string(content).render(variables)
    except jinja2.TemplateError as err:
        raise TemplateError(f"Unable to render template {name}: {err}") from err


async def _render_file(
    template_path: Path, output_path: Path, variables: Mapping[str, str]
) -> None:
    try:
        async with aiofiles.open(template_path, encoding="utf-8", newline="") as f:
            content = await f.read()
    except UnicodeDecodeError as err:
        raise TemplateError(f"Template {template_path} is not valid text: {err}") from err
    except OSError as err:
        raise FilesystemError(f"Unable to read template {template_path}: {err}") from err

    rendered = render_text(content, variables, name=str(template_path))

    try:
        async with aiofiles.open(output_path, mode="w", encoding="utf-8", newline="") as f:
            await f.write(rendered)
    except OSError as err:
        raise FilesystemError(f"Unable to write {output_path}: {err}") from err


async def render(
    template_dir: Path,
    output_root: Path,
    relative_output_dir: Path,
    variables: Mapping[str, str],
) -> list[Path]:
    """Render the template tree into `output_root / relative_output_dir`.

    Args:
        template_dir: The root of the template tree.
        output_root: The root of the output tree, e.g. a repository checkout.
        relative_output_dir: Where to place the rendered tree within the root.
        variables: The variables substituted into every template.

    Returns:
        The paths of every file written, relative to `output_root`, in the
        order they were visited. Entries are visited in name order.

    Raises:
        TemplateError: If a template is malformed or references a variable
            that is not supplied.
        FilesystemError: On I/O failures reading or writing the trees.
    """
    output_dir = output_root / relative_output_dir
    try:
        await aiofiles.os.makedirs(output_dir, exist_ok=True)
        names = sorted(await aiofiles.os.listdir(template_dir))
    except OSError as err:
        raise FilesystemError(
            f"Unable to render {template_dir} into {output_dir}: {err}"
        ) from err

    paths: list[Path] = []
    for name in names:
        entry_path = template_dir / name
        relative_path = relative_output_dir / name
        if await islink(entry_path):
            _LOGGER.warning("Skipping symbolic link in template tree %s", entry_path)
            continue
        if await isdir(entry_path):
            if name.startswith(HIDDEN_PREFIX):
                _LOGGER.debug("Skipping hidden template directory %s", entry_path)
                continue
            paths.extend(await render(entry_path, output_root, relative_path, variables))
        elif await isfile(entry_path):
            _LOGGER.debug("Rendering %s to %s", entry_path, relative_path)
            await _render_file(entry_path, output_root / relative_path, variables)
            paths.append(relative_path)
    return paths
