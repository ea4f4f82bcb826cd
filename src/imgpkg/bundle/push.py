"""
imgpkg.bundle.push — Publish a bundle or plain image.

  contents ─ pack ─→ layer ─ build_image ─→ config + manifest
                                  │
      blobs first, manifest under the tag last (registry)
                                  │
                    repository@sha256:... (+ BundleLock)

Validation failures are raised before any network call. The tag is
written in the last request, so a failed push never leaves the tag
pointing at a manifest with missing blobs.
"""

from __future__ import annotations

from pathlib import Path

from imgpkg.bundle.contents import Contents
from imgpkg.bundle.lock import BundleLock, write_bundle_lock
from imgpkg.errors import ConsistencyError, PushError, RegistryError, ValidationError
from imgpkg.logger import Logger
from imgpkg.oci.manifest import build_image
from imgpkg.oci.reference import Reference
from imgpkg.oci.registry import ImageWriter


def push(
    contents: Contents,
    destination: Reference | str,
    registry: ImageWriter,
    is_bundle: bool,
    lock_output: str | Path | None = None,
    logger: Logger | None = None,
) -> Reference:
    """Pack contents and upload them to destination.

    Args:
        contents: input paths to pack
        destination: tag reference to push to (digest references are
            rejected, a push always produces a new digest)
        registry: anything that can write blobs and manifests
        is_bundle: mark the artifact as a bundle (requires .imgpkg)
        lock_output: write a BundleLock here (bundles only)

    Returns:
        The pushed artifact as repository@digest
    """
    if isinstance(destination, str):
        destination = Reference.parse(destination)
    if destination.digest is not None or destination.tag is None:
        raise PushError(
            f"Expected a tag reference to push to, got '{destination}'"
        )
    if lock_output and not is_bundle:
        raise ValidationError(
            "Lock output is not compatible with image, use bundle for lock output"
        )

    out = (logger or Logger.discard()).prefixed("")
    repository = destination.repository

    layer = contents.pack(is_bundle)
    image = build_image(layer, is_bundle)

    try:
        for digest, data in image.blobs():
            if registry.blob_exists(repository, digest):
                out.writef("Blob %s already present", digest)
                continue
            registry.put_blob(repository, digest, data)

        digest = registry.put_manifest(
            repository,
            image.manifest.raw,
            image.manifest.media_type,
            destination.tag,
        )
    except RegistryError as e:
        raise RegistryError(f"Writing '{destination}': {e}") from e

    if digest != image.manifest.digest:
        raise ConsistencyError(
            f"Registry stored '{destination}' as {digest}, "
            f"expected {image.manifest.digest}"
        )

    pushed = Reference(repository, digest=digest)
    out.writef("Pushed '%s'", pushed)

    if lock_output:
        write_bundle_lock(BundleLock(url=str(pushed), tag=destination.tag), lock_output)
        out.writef("Lock written: %s", lock_output)

    return pushed
