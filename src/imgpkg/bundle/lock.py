"""
imgpkg.bundle.lock — ImagesLock and BundleLock documents.

.imgpkg/images.yml (written by the bundle author):

    apiVersion: imgpkg.carvel.dev/v1alpha1
    kind: ImagesLock
    images:
    - image: ghcr.io/org/app@sha256:abc123...
      annotations:
        kbld.carvel.dev/id: app

BundleLock (written by push --lock-output):

    apiVersion: imgpkg.k14s.io/v1alpha1
    kind: BundleLock
    spec:
      image:
        url: ghcr.io/org/bundle@sha256:def456...
        tag: v1.0.0

Every image in an ImagesLock is pinned by digest. Relocation only
ever changes the repository part of an entry, never the digest.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from imgpkg.errors import InvalidReferenceError, LockError
from imgpkg.oci.reference import Reference

IMGPKG_DIR = ".imgpkg"
IMAGES_LOCK_FILE = "images.yml"
BUNDLE_FILE = "bundle.yml"

IMAGES_LOCK_KIND = "ImagesLock"
IMAGES_LOCK_API_VERSION = "imgpkg.carvel.dev/v1alpha1"
BUNDLE_LOCK_KIND = "BundleLock"
BUNDLE_LOCK_API_VERSION = "imgpkg.k14s.io/v1alpha1"

SUPPORTED_API_VERSIONS = (
    "imgpkg.carvel.dev/v1alpha1",
    "imgpkg.k14s.io/v1alpha1",
)


@dataclass(frozen=True)
class ImageRef:
    """One pinned dependency of a bundle."""
    image: str
    annotations: dict[str, str] | None = None
    metadata: dict[str, Any] | None = None

    @property
    def reference(self) -> Reference:
        return _digest_reference(self.image)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"image": self.image}
        if self.annotations:
            d["annotations"] = self.annotations
        if self.metadata:
            d["metadata"] = self.metadata
        return d


@dataclass
class ImagesLock:
    """Parsed images.yml."""
    images: list[ImageRef] = field(default_factory=list)
    api_version: str = IMAGES_LOCK_API_VERSION

    @property
    def references(self) -> list[Reference]:
        return [img.reference for img in self.images]

    def relocate(self, repository: str) -> ImagesLock:
        """Point every entry at repository, keeping its digest.

        Entries that share a digest collapse onto the same location;
        only the first of them is kept, with its annotations.
        """
        relocated: list[ImageRef] = []
        seen: set[Reference] = set()
        for img in self.images:
            ref = img.reference.digest_only().in_repository(repository)
            if ref in seen:
                continue
            seen.add(ref)
            relocated.append(replace(img, image=str(ref)))
        return ImagesLock(images=relocated, api_version=self.api_version)

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "kind": IMAGES_LOCK_KIND,
            "images": [img.to_dict() for img in self.images],
        }


@dataclass
class BundleLock:
    """What a push actually uploaded."""
    url: str
    tag: str | None = None
    api_version: str = BUNDLE_LOCK_API_VERSION

    @property
    def reference(self) -> Reference:
        return _digest_reference(self.url)

    def to_dict(self) -> dict[str, Any]:
        image: dict[str, Any] = {"url": self.url}
        if self.tag:
            image["tag"] = self.tag
        return {
            "apiVersion": self.api_version,
            "kind": BUNDLE_LOCK_KIND,
            "spec": {"image": image},
        }


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# PARSING
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
def parse_images_lock(path: str | Path) -> ImagesLock:
    """Parse an ImagesLock file."""
    return images_lock_from_yaml(_read(path), source=str(path))


def images_lock_from_yaml(text: str | bytes, source: str = "<ImagesLock>") -> ImagesLock:
    data = _load(text, source)
    api_version = _check_header(data, IMAGES_LOCK_KIND, source)

    raw_images = data.get("images") or []
    if not isinstance(raw_images, list):
        raise LockError(f"{source}: 'images' must be a list")

    images: list[ImageRef] = []
    seen: dict[Reference, str] = {}
    for i, entry in enumerate(raw_images):
        if not isinstance(entry, dict) or not entry.get("image"):
            raise LockError(f"{source}: images[{i}] must have an 'image' field")
        for key in ("annotations", "metadata"):
            if entry.get(key) is not None and not isinstance(entry[key], dict):
                raise LockError(f"{source}: images[{i}].{key} must be a mapping")

        img = ImageRef(
            image=str(entry["image"]),
            annotations=entry.get("annotations"),
            metadata=entry.get("metadata"),
        )
        try:
            ref = img.reference
        except LockError as e:
            raise LockError(f"{source}: images[{i}]: {e}") from e

        if ref in seen:
            raise LockError(
                f"{source}: duplicate image entries: '{seen[ref]}' and '{img.image}'"
            )
        seen[ref] = img.image
        images.append(img)

    return ImagesLock(images=images, api_version=api_version)


def parse_bundle_lock(path: str | Path) -> BundleLock:
    """Parse a BundleLock file."""
    return bundle_lock_from_yaml(_read(path), source=str(path))


def bundle_lock_from_yaml(text: str | bytes, source: str = "<BundleLock>") -> BundleLock:
    data = _load(text, source)
    api_version = _check_header(data, BUNDLE_LOCK_KIND, source)

    spec = data.get("spec") or {}
    if not isinstance(spec, dict):
        raise LockError(f"{source}: 'spec' must be a mapping")
    image = spec.get("image") or {}
    if not isinstance(image, dict):
        raise LockError(f"{source}: 'spec.image' must be a mapping")
    url = image.get("url")
    if not url:
        raise LockError(f"{source}: BundleLock must specify spec.image.url")

    _digest_reference(str(url))
    return BundleLock(url=str(url), tag=image.get("tag"), api_version=api_version)


def read_lock(path: str | Path) -> ImagesLock | BundleLock:
    """Parse either lock kind, dispatching on 'kind'."""
    text = _read(path)
    kind = _load(text, str(path)).get("kind")
    if kind == BUNDLE_LOCK_KIND:
        return bundle_lock_from_yaml(text, source=str(path))
    if kind == IMAGES_LOCK_KIND:
        return images_lock_from_yaml(text, source=str(path))
    raise LockError(
        f"{path}: expected kind {BUNDLE_LOCK_KIND} or {IMAGES_LOCK_KIND}, got '{kind}'"
    )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# WRITING
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
def dump_lock(lock: ImagesLock | BundleLock) -> str:
    body = yaml.dump(lock.to_dict(), default_flow_style=False, sort_keys=False)
    return "---\n" + body


def write_images_lock(lock: ImagesLock, path: str | Path) -> None:
    """Write an ImagesLock file."""
    _write(dump_lock(lock), path)


def write_bundle_lock(lock: BundleLock, path: str | Path) -> None:
    """Write a BundleLock file."""
    _write(dump_lock(lock), path)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# HELPERS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
def _read(path: str | Path) -> str:
    p = Path(path)
    if not p.exists():
        raise LockError(f"Lock file not found: {p}")
    return p.read_text()


def _write(text: str, path: str | Path) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text)


def _load(text: str | bytes, source: str) -> dict[str, Any]:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise LockError(f"{source}: invalid YAML: {e}") from e
    if not isinstance(data, dict):
        raise LockError(f"Lock file must be a YAML mapping: {source}")
    return data


def _check_header(data: dict[str, Any], kind: str, source: str) -> str:
    if data.get("kind") != kind:
        raise LockError(f"{source}: expected kind {kind}, got '{data.get('kind')}'")
    api_version = data.get("apiVersion")
    if api_version not in SUPPORTED_API_VERSIONS:
        raise LockError(
            f"{source}: unsupported apiVersion '{api_version}' "
            f"(supported: {', '.join(SUPPORTED_API_VERSIONS)})"
        )
    return api_version


def _digest_reference(text: str) -> Reference:
    try:
        ref = Reference.parse(text)
    except InvalidReferenceError as e:
        raise LockError(str(e)) from e
    if ref.digest is None:
        raise LockError(f"Expected ref to be in digest form, got '{text}'")
    return ref
