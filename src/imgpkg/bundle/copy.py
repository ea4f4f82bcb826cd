"""
imgpkg.bundle.copy — Relocate a bundle and everything it references.

  imgpkg copy -b ghcr.io/org/app-bundle:v1 --to-repo registry.corp/mirror/app

Closure of a bundle:

  app-bundle ──images.yml──→ nginx@sha256:aa..
      │                      nested-bundle@sha256:bb.. ──images.yml──→ redis@sha256:cc..
      └──────────────────────────────────────────────────────────────→ (diamonds are copied once)

Everything lands in the one destination repository under its source
digest. Bytes are copied as-is, so every digest, and every digest
written inside a lock file, stays valid at the new location.

Ordering:
  - nodes are copied in dependency waves (referenced images first)
  - a node's manifest is written only after all of its blobs
  - the destination tag is the very last write
A failed copy leaves finished nodes behind; running it again skips
whatever already exists.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path

from imgpkg.bundle.contents import images_lock_from_layer
from imgpkg.bundle.lock import (
    BundleLock, ImageRef, ImagesLock, read_lock,
    write_bundle_lock, write_images_lock,
)
from imgpkg.bundle.pull import Kind, check_kind, classify
from imgpkg.errors import CancelledError, ConsistencyError, NotFoundError
from imgpkg.logger import Logger
from imgpkg.oci.config import DEFAULT_CONCURRENCY
from imgpkg.oci.manifest import Descriptor, Manifest
from imgpkg.oci.reference import Digest, Reference, parse_repository
from imgpkg.oci.registry import ImageReader, ImageWriter


@dataclass(frozen=True)
class CopySource:
    """What to copy: one reference, or the contents of a lock file."""
    references: tuple[Reference, ...]
    tag: str | None = None
    kind: Kind | None = None
    images_lock: ImagesLock | None = None

    @classmethod
    def from_reference(cls, reference: Reference | str, kind: Kind | None = None) -> CopySource:
        if isinstance(reference, str):
            reference = Reference.parse(reference)
        return cls(references=(reference,), tag=reference.tag, kind=kind)

    @classmethod
    def from_lock(cls, path: str | Path) -> CopySource:
        lock = read_lock(path)
        if isinstance(lock, BundleLock):
            return cls(references=(lock.reference,), tag=lock.tag, kind=Kind.BUNDLE)
        return cls(references=tuple(lock.references), images_lock=lock)


@dataclass
class Node:
    """One manifest (or index) in the closure."""
    reference: Reference          # source location, digest form
    manifest: Manifest
    kind: Kind
    dependencies: list[Digest] = field(default_factory=list)
    images_lock: ImagesLock | None = None

    @property
    def digest(self) -> Digest:
        return self.manifest.digest


@dataclass
class Closure:
    nodes: list[Node]             # dependencies before dependents
    roots: list[Digest]

    def node(self, digest: Digest) -> Node:
        return next(n for n in self.nodes if n.digest == digest)


@dataclass
class CopyResult:
    destination: list[Reference]
    images_lock: ImagesLock | None = None
    manifests_copied: int = 0
    manifests_skipped: int = 0
    blobs_copied: int = 0
    blobs_skipped: int = 0


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# CLOSURE
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
def build_closure(
    roots: list[Reference] | tuple[Reference, ...],
    registry: ImageReader,
    recursive: bool = True,
) -> Closure:
    """Walk roots and everything they reference, depth first.

    A digest seen once is never visited again, which handles both
    diamonds and cycles. Images of a nested bundle are only included
    when recursive.
    """
    nodes: dict[Digest, Node] = {}
    order: list[Node] = []
    visiting: set[Digest] = set()

    def visit(ref: Reference, expand: bool) -> Digest:
        if ref.digest is not None and (ref.digest in nodes or ref.digest in visiting):
            return ref.digest

        try:
            manifest = registry.get_manifest(ref.repository, ref.identifier)
        except NotFoundError as e:
            raise ConsistencyError(f"Referenced image '{ref}' not found: {e}") from e
        if ref.digest is not None and manifest.digest != ref.digest:
            raise ConsistencyError(
                f"Fetched manifest for '{ref}' has digest {manifest.digest}"
            )

        digest = manifest.digest
        if digest in nodes or digest in visiting:
            return digest
        visiting.add(digest)

        pinned = Reference(ref.repository, digest=digest)
        kind = classify(registry, ref.repository, manifest)
        node = Node(reference=pinned, manifest=manifest, kind=kind)

        if manifest.is_index:
            for child in manifest.manifests:
                child_ref = Reference(ref.repository, digest=child.digest)
                node.dependencies.append(visit(child_ref, expand=False))
        elif kind == Kind.BUNDLE and expand:
            node.images_lock = _bundle_images_lock(registry, pinned, manifest)
            if node.images_lock is not None:
                for image_ref in node.images_lock.references:
                    node.dependencies.append(visit(image_ref, expand=recursive))

        visiting.discard(digest)
        nodes[digest] = node
        order.append(node)
        return digest

    root_digests = [visit(ref, expand=True) for ref in roots]
    return Closure(nodes=order, roots=root_digests)


def _bundle_images_lock(
    registry: ImageReader, ref: Reference, manifest: Manifest,
) -> ImagesLock | None:
    for layer in manifest.layers:
        if not layer.is_distributable:
            continue
        data = registry.get_blob(ref.repository, layer.digest)
        if not layer.digest.matches(data):
            raise ConsistencyError(
                f"Layer {layer.digest} of '{ref}' does not match its digest"
            )
        lock = images_lock_from_layer(data)
        if lock is not None:
            return lock
    return None


def dependency_waves(closure: Closure) -> list[list[Node]]:
    """Group nodes so every node comes after all of its dependencies."""
    level: dict[Digest, int] = {}
    waves: list[list[Node]] = []
    for node in closure.nodes:
        # a dependency missing from level is a cycle edge; ignore it
        n = 1 + max((level.get(d, -1) for d in node.dependencies), default=-1)
        level[node.digest] = n
        while len(waves) <= n:
            waves.append([])
        waves[n].append(node)
    return waves


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# COPY
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
class _Copier:
    def __init__(
        self,
        source: ImageReader,
        destination: ImageWriter,
        repository: str,
        include_non_distributable: bool,
        cancel: threading.Event | None,
        out,
    ):
        self.source = source
        self.destination = destination
        self.repository = repository
        self.include_non_distributable = include_non_distributable
        self.cancel = cancel
        self.out = out
        self.result = CopyResult(destination=[])
        self._stats_lock = threading.Lock()

    def check_cancelled(self) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise CancelledError("Copy cancelled")

    def copy_wave(self, pool: ThreadPoolExecutor, wave: list[Node]) -> None:
        blobs: dict[Digest, tuple[Node, Descriptor]] = {}
        for node in wave:
            for blob in node.manifest.blobs(self.include_non_distributable):
                blobs.setdefault(blob.digest, (node, blob))

        futures = [
            pool.submit(self.copy_blob, node, blob) for node, blob in blobs.values()
        ]
        try:
            for future in as_completed(futures):
                future.result()
        except BaseException:
            for future in futures:
                future.cancel()
            raise

        for node in wave:
            self.copy_manifest(node)

    def copy_blob(self, node: Node, blob: Descriptor) -> None:
        self.check_cancelled()
        if self.destination.blob_exists(self.repository, blob.digest):
            with self._stats_lock:
                self.result.blobs_skipped += 1
            return

        data = self.source.get_blob(node.reference.repository, blob.digest)
        if not blob.digest.matches(data):
            raise ConsistencyError(
                f"Blob {blob.digest} of '{node.reference}' does not match its digest"
            )
        self.destination.put_blob(self.repository, blob.digest, data)
        self.out.writef("uploaded blob %s (%d bytes)", blob.digest, len(data))
        with self._stats_lock:
            self.result.blobs_copied += 1

    def copy_manifest(self, node: Node) -> None:
        self.check_cancelled()
        if self.destination.manifest_exists(self.repository, node.digest):
            self.result.manifests_skipped += 1
            return

        digest = self.destination.put_manifest(
            self.repository, node.manifest.raw, node.manifest.media_type, str(node.digest),
        )
        if digest != node.digest:
            raise ConsistencyError(
                f"Copy of '{node.reference}' landed as {digest}"
            )
        self.out.writef("copied %s '%s'", node.kind.value, node.reference)
        self.result.manifests_copied += 1


def copy(
    source: CopySource | Reference | str,
    destination_repository: str,
    registry: ImageReader,
    destination_registry: ImageWriter | None = None,
    recursive: bool = True,
    concurrency: int = DEFAULT_CONCURRENCY,
    include_non_distributable: bool = False,
    lock_output: str | Path | None = None,
    logger: Logger | None = None,
    cancel: threading.Event | None = None,
) -> CopyResult:
    """Copy source and its reference closure to destination_repository.

    Args:
        source: what to copy
        destination_repository: repository everything lands in
        registry: where the source lives
        destination_registry: where to write (defaults to registry)
        recursive: include the images of nested bundles
        concurrency: bounded number of parallel blob transfers
        include_non_distributable: also copy foreign layers
        lock_output: write a BundleLock (bundle source) or an
            ImagesLock (anything else) for the new location
        cancel: set to abort; no tag is written after an abort

    Returns:
        CopyResult with the destination references and counters
    """
    if not isinstance(source, CopySource):
        source = CopySource.from_reference(source)
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")

    repository = parse_repository(destination_repository)
    writer = destination_registry if destination_registry is not None else registry
    out = (logger or Logger.discard()).prefixed("copy | ")

    closure = build_closure(source.references, registry, recursive)
    if source.kind is not None:
        for digest in closure.roots:
            check_kind(source.kind, closure.node(digest).kind, action="copying")

    out.writef("exporting %d images...", len(closure.nodes))
    copier = _Copier(registry, writer, repository, include_non_distributable, cancel, out)
    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        for wave in dependency_waves(closure):
            copier.copy_wave(pool, wave)

    roots = [closure.node(d) for d in dict.fromkeys(closure.roots)]
    result = copier.result
    result.destination = [Reference(repository, digest=n.digest) for n in roots]

    # tagging is the last write
    copier.check_cancelled()
    if source.tag and len(roots) == 1:
        root = roots[0]
        writer.put_manifest(repository, root.manifest.raw, root.manifest.media_type, source.tag)
        result.destination = [Reference(repository, tag=source.tag, digest=root.digest)]
        out.writef("tagged '%s'", result.destination[0])

    if source.images_lock is not None:
        result.images_lock = source.images_lock.relocate(repository)
    elif len(roots) == 1 and roots[0].images_lock is not None:
        result.images_lock = roots[0].images_lock.relocate(repository)

    if lock_output:
        _write_lock_output(lock_output, source, roots, result)
        out.writef("lock written: %s", lock_output)

    out.writef("done: %d manifests copied, %d skipped; %d blobs copied, %d skipped",
               result.manifests_copied, result.manifests_skipped,
               result.blobs_copied, result.blobs_skipped)
    return result


def _write_lock_output(path, source: CopySource, roots: list[Node], result: CopyResult) -> None:
    if source.images_lock is None and len(roots) == 1 and roots[0].kind == Kind.BUNDLE:
        url = str(result.destination[0].digest_only())
        write_bundle_lock(BundleLock(url=url, tag=source.tag), path)
        return

    if result.images_lock is not None and source.images_lock is not None:
        write_images_lock(result.images_lock, path)
        return

    images = [ImageRef(image=str(ref.digest_only())) for ref in result.destination]
    write_images_lock(ImagesLock(images=images), path)
