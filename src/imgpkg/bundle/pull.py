"""
imgpkg.bundle.pull — Materialize one bundle or image on disk.

  imgpkg pull -b ghcr.io/org/app-bundle:v1 -o ./out
  imgpkg pull -i ghcr.io/org/config-image:v1 -o ./out
  imgpkg pull --lock bundle.lock.yml -o ./out

The caller states what it expects. Pulling a bundle as an image (or
the other way round) is an error, never a silent conversion: a bundle
flattened into a plain directory loses its dependency graph.

Only the requested artifact is extracted; images listed in a
bundle's ImagesLock are not pulled.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from imgpkg.bundle.contents import unpack_layer
from imgpkg.bundle.lock import BundleLock, read_lock
from imgpkg.errors import (
    ConsistencyError, KindMismatchError, LockError, PullError, ValidationError,
)
from imgpkg.logger import Logger
from imgpkg.oci.manifest import Manifest, config_marks_bundle
from imgpkg.oci.reference import Reference
from imgpkg.oci.registry import ImageReader


class Kind(str, Enum):
    BUNDLE = "bundle"
    IMAGE = "image"


@dataclass
class PullResult:
    reference: Reference        # digest form
    kind: Kind
    files: list[str] = field(default_factory=list)


def resolve_source(
    reference: Reference | str | None = None,
    lock_path: str | Path | None = None,
) -> tuple[Reference, Kind | None]:
    """Turn a reference or a lock file into what to pull.

    A BundleLock implies a bundle; an ImagesLock with a single
    image implies an image. A bare reference implies nothing.
    """
    if (reference is None) == (lock_path is None):
        raise ValidationError("Expected either a reference or a lock file")

    if lock_path is None:
        if isinstance(reference, str):
            reference = Reference.parse(reference)
        return reference, None

    lock = read_lock(lock_path)
    if isinstance(lock, BundleLock):
        return lock.reference, Kind.BUNDLE
    if len(lock.images) != 1:
        raise LockError(
            f"Expected ImagesLock to have exactly one image to pull, "
            f"got {len(lock.images)}"
        )
    return lock.images[0].reference, Kind.IMAGE


def classify(registry: ImageReader, repository: str, manifest: Manifest) -> Kind:
    """Bundle or image, judged by the manifest annotation first and
    the config labels second."""
    if manifest.is_index:
        return Kind.IMAGE
    if manifest.is_bundle:
        return Kind.BUNDLE
    cfg = manifest.config
    if cfg is not None and config_marks_bundle(registry.get_blob(repository, cfg.digest)):
        return Kind.BUNDLE
    return Kind.IMAGE


def check_kind(expected: Kind, actual: Kind, action: str = "pulling") -> None:
    if expected == actual:
        return
    if actual == Kind.BUNDLE:
        raise KindMismatchError(
            f"Expected bundle flag when {action} a bundle, "
            f"please use -b instead of --image",
            expected=expected.value, actual=actual.value,
        )
    raise KindMismatchError(
        f"Expected image flag when {action} a image or index, "
        f"please use --image instead of -b",
        expected=expected.value, actual=actual.value,
    )


def pull(
    source: Reference | str,
    destination: str | Path,
    registry: ImageReader,
    expected_kind: Kind,
    logger: Logger | None = None,
) -> PullResult:
    """Fetch source, check its kind, and extract it into destination.

    Raises:
        KindMismatchError: the artifact is not of expected_kind
        ConsistencyError: fetched bytes do not match their digest
    """
    if isinstance(source, str):
        source = Reference.parse(source)
    out = (logger or Logger.discard()).prefixed("")

    manifest = registry.get_manifest(source.repository, source.identifier)
    if source.digest is not None and manifest.digest != source.digest:
        raise ConsistencyError(
            f"Fetched manifest for '{source}' has digest {manifest.digest}"
        )

    kind = classify(registry, source.repository, manifest)
    check_kind(expected_kind, kind)

    if manifest.is_index:
        raise PullError(
            f"Unable to pull image index '{source}', "
            f"pull one of its manifests by digest instead"
        )

    pinned = Reference(source.repository, digest=manifest.digest)
    out.writef("Pulling %s '%s'", kind.value, pinned)

    files: set[str] = set()
    for layer in manifest.layers:
        if not layer.is_distributable:
            out.writef("Skipping non-distributable layer %s", layer.digest)
            continue
        data = registry.get_blob(source.repository, layer.digest)
        if not layer.digest.matches(data):
            raise ConsistencyError(
                f"Layer {layer.digest} of '{pinned}' does not match its digest"
            )
        files.update(unpack_layer(data, destination))

    out.writef("Extracted %d files to %s", len(files), destination)
    return PullResult(reference=pinned, kind=kind, files=sorted(files))
