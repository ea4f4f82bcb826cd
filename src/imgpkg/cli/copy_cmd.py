"""
imgpkg.cli.copy_cmd — imgpkg copy command.

  # Copy bundle and every image it references to another registry
  imgpkg copy -b dkalinin/app1-bundle:v1 --to-repo registry.corp/mirror/app1

  # Copy the images of an ImagesLock, writing the relocated lock
  imgpkg copy --lock images.yml --to-repo registry.corp/mirror/app1 \
      --lock-output relocated-images.yml
"""

import sys
import click

from imgpkg.cli.registry_flags import registry_options


@click.command("copy")
@click.option("--bundle", "-b", default=None, help="Set bundle to copy")
@click.option("--image", "-i", default=None, help="Set image to copy")
@click.option("--lock", "lock_path", default=None, help="BundleLock or ImagesLock of images to copy")
@click.option("--to-repo", required=True, help="Location to upload assets (e.g. registry.corp/mirror/app1)")
@click.option("--lock-output", default=None, help="Location to output the relocated lock file")
@click.option("--concurrency", type=click.IntRange(min=1), default=None, help="Number of concurrent uploads")
@click.option("--include-non-distributable-layers", is_flag=True, default=False,
              help="Include non-distributable (foreign) layers when copying")
@click.option("--recursive/--no-recursive", default=True, show_default=True,
              help="Copy images of nested bundles")
@registry_options
def copy_cmd(bundle, image, lock_path, to_repo, lock_output, concurrency,
             include_non_distributable_layers, recursive, **registry_flags):
    """Copy a bundle or images from one location to another."""
    from imgpkg.bundle.copy import CopySource, copy
    from imgpkg.bundle.pull import Kind
    from imgpkg.cli.registry_flags import load_config_with_flags
    from imgpkg.errors import ImgpkgError
    from imgpkg.logger import Logger
    from imgpkg.oci.registry import open_registry

    given = [x for x in (bundle, image, lock_path) if x]
    if len(given) != 1:
        click.echo("Error: Expected exactly one of image, bundle or lock", err=True)
        sys.exit(1)

    try:
        if bundle:
            source = CopySource.from_reference(bundle, Kind.BUNDLE)
        elif image:
            source = CopySource.from_reference(image, Kind.IMAGE)
        else:
            source = CopySource.from_lock(lock_path)

        cfg = load_config_with_flags(registry_flags)
        result = copy(
            source,
            to_repo,
            open_registry(cfg.registry),
            recursive=recursive,
            concurrency=concurrency or cfg.concurrency,
            include_non_distributable=include_non_distributable_layers,
            lock_output=lock_output,
            logger=Logger(),
        )
    except ImgpkgError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    for ref in result.destination:
        click.echo(str(ref))
