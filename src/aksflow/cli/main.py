"""aksflow command-line entry point."""

from __future__ import annotations

import click

from aksflow import __version__
from aksflow.cli.commands.image import image
from aksflow.cli.commands.infra import infra
from aksflow.cli.commands.release import release
from aksflow.cli.commands.run import run


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="aksflow")
@click.pass_context
def main(ctx: click.Context) -> None:
    """aksflow - Provision AKS and roll out container releases.

    Every command reads pipeline.yaml from the current directory unless
    --config is given.

    Commands:

        run      Provision, publish and deploy in one fail-fast pipeline
        infra    Plan and apply the cluster infrastructure
        image    Build and publish the release image
        release  Roll out, inspect and roll back the release
    """
    ctx.ensure_object(dict)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


main.add_command(run)
main.add_command(infra)
main.add_command(image)
main.add_command(release)


if __name__ == "__main__":
    main()
