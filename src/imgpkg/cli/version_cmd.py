"""imgpkg.cli.version_cmd — imgpkg version command."""

import click


@click.command("version")
def version_cmd():
    """Print client version."""
    from imgpkg import __version__

    click.echo(f"imgpkg version {__version__}")
