"""CLI entry point — Click group with global options."""

from __future__ import annotations

import logging

import click

from policyscan import __version__
from policyscan.config import ScannerConfig


@click.group()
@click.version_option(version=__version__, prog_name="policyscan")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """policyscan — platform usage policy scanner for local and GitHub source trees."""
    ctx.ensure_object(dict)
    config = ScannerConfig.load()
    config.verbose = verbose
    ctx.obj["config"] = config
    ctx.obj["verbose"] = verbose

    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _register_commands() -> None:
    from policyscan.cli.rules import rules  # noqa: F811
    from policyscan.cli.scan import scan  # noqa: F811

    main.add_command(scan)
    main.add_command(rules)


_register_commands()
