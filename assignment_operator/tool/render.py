"""Assignment-operator render action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import pathlib
from typing import Any, cast

from assignment_operator import linker
from assignment_operator.exceptions import UserInputError
from assignment_operator.render import render

_LOGGER = logging.getLogger(__name__)


def parse_assignments(values: list[str] | None) -> dict[str, str]:
    """Parse `key=value` command line assignments."""
    result: dict[str, str] = {}
    for value in values or ():
        if "=" not in value:
            raise UserInputError(f"Expected key=value format from '{value}'")
        key, val = value.split("=", 1)
        result[key] = val
    return result


class RenderAction:
    """Assignment-operator render action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "render",
                help="Render a template directory locally",
                description="""Render a template directory into an output
                    directory the same way the operator renders an assignment,
                    then print the paths of the rendered files.""",
            ),
        )
        args.add_argument(
            "template_dir", type=pathlib.Path, help="Path to the template tree"
        )
        args.add_argument(
            "output_dir", type=pathlib.Path, help="Directory to render into"
        )
        args.add_argument(
            "--set",
            dest="values",
            action="append",
            metavar="KEY=VALUE",
            help="Template variable, may be repeated",
        )
        args.add_argument(
            "--link",
            action="store_true",
            help="Regenerate the kustomization.yaml of the parent of the output directory",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        template_dir: pathlib.Path,
        output_dir: pathlib.Path,
        values: list[str] | None,
        link: bool,
        **kwargs: Any,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        if not template_dir.is_dir():
            raise UserInputError(f"Template directory {template_dir} does not exist")
        variables = parse_assignments(values)
        paths = await render(template_dir, output_dir, pathlib.Path(), variables)
        for path in paths:
            print(output_dir / path)
        if link:
            manifest = await linker.link(output_dir.resolve().parent)
            print(manifest)
