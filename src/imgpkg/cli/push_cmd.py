"""
imgpkg.cli.push_cmd — imgpkg push command.

  # Push bundle dkalinin/app1-config with contents of config/ directory
  imgpkg push -b dkalinin/app1-config -f config/

  # Push image dkalinin/app1-config with contents from multiple locations
  imgpkg push -i dkalinin/app1-config -f config/ -f additional-config.yml
"""

import sys
import click

from imgpkg.cli.registry_flags import registry_options


@click.command("push")
@click.option("--bundle", "-b", default=None, help="Set bundle (e.g. docker.io/dkalinin/app1-bundle)")
@click.option("--image", "-i", default=None, help="Set image (e.g. docker.io/dkalinin/app1-config)")
@click.option("--file", "-f", "files", multiple=True, required=True,
              help="Set file (e.g. /tmp/foo) (can be specified multiple times)")
@click.option("--file-exclusion", "file_exclusions", multiple=True, default=(".git",),
              show_default=True, help="Exclude file whose path, relative to the "
                                      "input root, matches (can be specified multiple times)")
@click.option("--lock-output", default=None, help="Location to output the generated lockfile")
@registry_options
def push_cmd(bundle, image, files, file_exclusions, lock_output, **registry_flags):
    """Push files as image."""
    from imgpkg.bundle.contents import Contents
    from imgpkg.bundle.push import push
    from imgpkg.cli.registry_flags import open_registry_from_flags
    from imgpkg.errors import ImgpkgError, InvalidReferenceError
    from imgpkg.logger import Logger
    from imgpkg.oci.reference import Reference

    if image and bundle:
        _fail("Expected only one of image or bundle")
    if image and lock_output:
        _fail("Lock output is not compatible with image, use bundle for lock output")
    if not image and not bundle:
        _fail("Expected either image or bundle")

    input_ref = bundle or image
    try:
        destination = Reference.parse(input_ref)
    except InvalidReferenceError as e:
        _fail(f"Parsing '{input_ref}': {e}")

    try:
        contents = Contents(files, excluded_paths=file_exclusions)
        push(
            contents,
            destination,
            open_registry_from_flags(registry_flags),
            is_bundle=bool(bundle),
            lock_output=lock_output,
            logger=Logger(),
        )
    except ImgpkgError as e:
        _fail(str(e))


def _fail(message: str):
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)
