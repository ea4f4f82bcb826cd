"""
imgpkg.cli.tag_cmd — imgpkg tag command.

  imgpkg tag list -i dkalinin/app1-config
"""

import sys
import click

from imgpkg.cli.registry_flags import registry_options


@click.group("tag")
def tag_cmd():
    """Tag operations."""
    pass


@tag_cmd.command("list")
@click.option("--image", "-i", required=True, help="Set image (e.g. docker.io/dkalinin/app1-config)")
@registry_options
def tag_list(image, **registry_flags):
    """List tags for image."""
    from imgpkg.cli.registry_flags import open_registry_from_flags
    from imgpkg.errors import ImgpkgError
    from imgpkg.oci.reference import Reference

    try:
        # a tag or digest on the input is ignored
        repository = Reference.parse(image).repository
        tags = open_registry_from_flags(registry_flags).list_tags(repository)
    except ImgpkgError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if not tags:
        click.echo("No tags found.", err=True)
        return

    for tag in tags:
        click.echo(tag)
