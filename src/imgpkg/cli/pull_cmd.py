"""
imgpkg.cli.pull_cmd — imgpkg pull command.

  imgpkg pull -b dkalinin/app1-bundle:v1 -o /tmp/app1-bundle
  imgpkg pull -i dkalinin/app1-config@sha256:... -o /tmp/app1-config
  imgpkg pull --lock bundle.lock.yml -o /tmp/app1-bundle
"""

import sys
import click

from imgpkg.cli.registry_flags import registry_options


@click.command("pull")
@click.option("--bundle", "-b", default=None, help="Set bundle (e.g. docker.io/dkalinin/app1-bundle)")
@click.option("--image", "-i", default=None, help="Set image (e.g. docker.io/dkalinin/app1-config)")
@click.option("--lock", "lock_path", default=None, help="Set lock file with image or bundle to pull")
@click.option("--output", "-o", required=True, help="Output directory path")
@registry_options
def pull_cmd(bundle, image, lock_path, output, **registry_flags):
    """Pull files from bundle or image."""
    from imgpkg.bundle.pull import Kind, pull, resolve_source
    from imgpkg.cli.registry_flags import open_registry_from_flags
    from imgpkg.errors import ImgpkgError
    from imgpkg.logger import Logger

    given = [x for x in (bundle, image, lock_path) if x]
    if len(given) != 1:
        click.echo("Error: Expected exactly one of image, bundle or lock", err=True)
        sys.exit(1)

    try:
        reference, kind = resolve_source(reference=bundle or image, lock_path=lock_path)
        if bundle:
            kind = Kind.BUNDLE
        elif image:
            kind = Kind.IMAGE

        result = pull(
            reference,
            output,
            open_registry_from_flags(registry_flags),
            expected_kind=kind,
            logger=Logger(),
        )
    except ImgpkgError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"✓ Pulled {result.kind.value} '{result.reference}' into {output}", err=True)
