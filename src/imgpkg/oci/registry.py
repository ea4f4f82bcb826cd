"""
imgpkg.oci.registry — Registry capabilities.

Push, pull and copy each declare the smallest capability they need:

  ManifestReader   get_manifest, manifest_exists
  BlobReader       get_blob
  ManifestWriter   put_manifest
  BlobWriter       put_blob, blob_exists
  TagLister        list_tags

Two backends implement all of them:
  1. LocalRegistry — a registry on the filesystem (development,
     tests, air-gapped transfers)
  2. OrasRegistry  — remote OCI registries (ghcr.io, harbor, ...)
     via oras-py, see imgpkg.oci.remote

LocalRegistry layout:

  <root>/<registry host>/<path>/
    ├── blobs/sha256/<hex>
    ├── manifests/sha256/<hex>
    └── tags/<tag>              ← contains the manifest digest
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from imgpkg.errors import ConsistencyError, NotFoundError, RegistryError
from imgpkg.oci.manifest import Manifest
from imgpkg.oci.reference import Digest

if TYPE_CHECKING:
    from imgpkg.oci.config import RegistryOpts


@runtime_checkable
class ManifestReader(Protocol):
    def get_manifest(self, repository: str, ref: str) -> Manifest:
        """Fetch a manifest or index by tag or digest.

        Raises:
            NotFoundError: nothing under that tag/digest
        """
        ...

    def manifest_exists(self, repository: str, digest: Digest) -> bool:
        ...


@runtime_checkable
class BlobReader(Protocol):
    def get_blob(self, repository: str, digest: Digest) -> bytes:
        ...


@runtime_checkable
class ManifestWriter(Protocol):
    def put_manifest(
        self, repository: str, raw: bytes, media_type: str, ref: str,
    ) -> Digest:
        """Store manifest bytes under a tag or their digest.

        Returns:
            The digest the registry assigned to the bytes
        """
        ...


@runtime_checkable
class BlobWriter(Protocol):
    def put_blob(self, repository: str, digest: Digest, data: bytes) -> None:
        ...

    def blob_exists(self, repository: str, digest: Digest) -> bool:
        ...


@runtime_checkable
class TagLister(Protocol):
    def list_tags(self, repository: str) -> list[str]:
        ...


@runtime_checkable
class ImageReader(ManifestReader, BlobReader, Protocol):
    pass


@runtime_checkable
class ImageWriter(ManifestWriter, BlobWriter, Protocol):
    pass


@runtime_checkable
class ImageCopier(ImageReader, ImageWriter, Protocol):
    pass


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# LOCAL REGISTRY (filesystem-based)
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
class LocalRegistry:
    """A registry stored in a directory.

    Enforces what a distribution registry enforces: blob bytes must
    match their digest and a manifest is only accepted once every
    blob (or child manifest) it points to is present.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def __repr__(self) -> str:
        return f"LocalRegistry({str(self.root)!r})"

    # ── manifests ──
    def get_manifest(self, repository: str, ref: str) -> Manifest:
        digest = self._resolve(repository, ref)
        path = self._manifest_path(repository, digest)
        if not path.exists():
            raise NotFoundError(f"Manifest not found: {repository}@{digest}")
        raw = path.read_bytes()
        if not digest.matches(raw):
            raise ConsistencyError(
                f"Stored manifest {repository}@{digest} does not match its digest"
            )
        return Manifest.from_bytes(raw)

    def manifest_exists(self, repository: str, digest: Digest) -> bool:
        return self._manifest_path(repository, digest).exists()

    def put_manifest(
        self, repository: str, raw: bytes, media_type: str, ref: str,
    ) -> Digest:
        manifest = Manifest.from_bytes(raw, media_type)
        digest = manifest.digest

        if ref.partition(":")[0] in ("sha256", "sha512"):
            if Digest.parse(ref) != digest:
                raise RegistryError(
                    f"Manifest digest {digest} does not match reference {ref}"
                )
            tag = None
        else:
            tag = ref

        for blob in manifest.blobs(include_non_distributable=False):
            if not self.blob_exists(repository, blob.digest):
                raise RegistryError(
                    f"Manifest blob unknown to {repository}: {blob.digest}"
                )
        for child in manifest.manifests:
            if not self.manifest_exists(repository, child.digest):
                raise RegistryError(
                    f"Manifest unknown to {repository}: {child.digest}"
                )

        _atomic_write(self._manifest_path(repository, digest), raw)
        if tag is not None:
            _atomic_write(self._repo(repository) / "tags" / tag, str(digest).encode())
        return digest

    # ── blobs ──
    def get_blob(self, repository: str, digest: Digest) -> bytes:
        path = self._blob_path(repository, digest)
        if not path.exists():
            raise NotFoundError(f"Blob not found: {repository}@{digest}")
        return path.read_bytes()

    def put_blob(self, repository: str, digest: Digest, data: bytes) -> None:
        if not digest.matches(data):
            raise RegistryError(
                f"Blob upload to {repository} rejected: content does not match {digest}"
            )
        _atomic_write(self._blob_path(repository, digest), data)

    def blob_exists(self, repository: str, digest: Digest) -> bool:
        return self._blob_path(repository, digest).exists()

    # ── tags ──
    def list_tags(self, repository: str) -> list[str]:
        tags_dir = self._repo(repository) / "tags"
        if not tags_dir.exists():
            return []
        return sorted(p.name for p in tags_dir.iterdir() if p.is_file())

    # ── helpers ──
    def _resolve(self, repository: str, ref: str) -> Digest:
        if ref.partition(":")[0] in ("sha256", "sha512"):
            return Digest.parse(ref)
        tag_file = self._repo(repository) / "tags" / ref
        if not tag_file.exists():
            raise NotFoundError(f"Tag not found: {repository}:{ref}")
        return Digest.parse(tag_file.read_text())

    def _repo(self, repository: str) -> Path:
        parts = repository.split("/")
        if any(p in ("", ".", "..") for p in parts):
            raise RegistryError(f"Invalid repository path: '{repository}'")
        return self.root.joinpath(*parts)

    def _manifest_path(self, repository: str, digest: Digest) -> Path:
        return self._repo(repository) / "manifests" / digest.algorithm / digest.hex

    def _blob_path(self, repository: str, digest: Digest) -> Path:
        return self._repo(repository) / "blobs" / digest.algorithm / digest.hex


def _atomic_write(path: Path, data: bytes) -> None:
    """Write via a temp file in the same directory, then rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# PUBLIC API (routes local vs remote)
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
def open_registry(opts: RegistryOpts) -> ImageCopier:
    """Return the registry backend selected by the options.

    A configured local root wins; otherwise talk to remote
    registries over oras-py.
    """
    if opts.local_root:
        return LocalRegistry(opts.local_root)

    from imgpkg.oci.remote import OrasRegistry
    return OrasRegistry(opts)
