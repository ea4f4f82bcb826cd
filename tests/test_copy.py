"""
tests/test_copy.py — Relocating bundles with everything they reference.

Fixture graph (all in one filesystem registry):

  app-bundle:v1 ──→ nginx:1
        │
        └──────→ nested-bundle:v1 ──→ redis:7
                         └──────────→ nginx:1   (diamond)
"""

import io
import os
import sys
import threading
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from imgpkg.bundle.contents import Contents
from imgpkg.bundle.copy import (
    CopySource, build_closure, copy, dependency_waves,
)
from imgpkg.bundle.lock import (
    ImageRef, ImagesLock, parse_bundle_lock, parse_images_lock,
    write_bundle_lock, write_images_lock, BundleLock,
)
from imgpkg.bundle.pull import Kind
from imgpkg.bundle.push import push
from imgpkg.errors import (
    CancelledError, ConsistencyError, KindMismatchError, RegistryError,
)
from imgpkg.logger import Logger
from imgpkg.oci.manifest import OCI_INDEX
from imgpkg.oci.reference import Reference
from imgpkg.oci.registry import LocalRegistry

DEST = "registry.corp/mirror/app"


@pytest.fixture(autouse=True)
def clean(tmp_path, monkeypatch):
    """Temporary ~/.imgpkg for each test."""
    monkeypatch.setattr("imgpkg.oci.config.IMGPKG_HOME", tmp_path / ".imgpkg")
    yield


@pytest.fixture
def registry(tmp_path):
    return LocalRegistry(tmp_path / "registry")


def _make_tree(root, files: dict[str, str]):
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root


def _images_yml(*refs) -> str:
    body = "".join(f"- image: {r}\n" for r in refs)
    return f"apiVersion: imgpkg.carvel.dev/v1alpha1\nkind: ImagesLock\nimages:\n{body}"


def _push_image(tmp_path, registry, ref: str, content: str) -> Reference:
    root = _make_tree(tmp_path / "trees" / ref.replace("/", "_"), {"data.txt": content})
    return push(Contents([root]), ref, registry, is_bundle=False)


def _push_bundle(tmp_path, registry, ref: str, images) -> Reference:
    root = _make_tree(tmp_path / "trees" / ref.replace("/", "_"), {
        "config.yml": f"bundle: {ref}\n",
        ".imgpkg/images.yml": _images_yml(*images),
    })
    return push(Contents([root]), ref, registry, is_bundle=True)


@pytest.fixture
def graph(tmp_path, registry):
    nginx = _push_image(tmp_path, registry, "registry.local/lib/nginx:1", "nginx")
    redis = _push_image(tmp_path, registry, "registry.local/lib/redis:7", "redis")
    nested = _push_bundle(tmp_path, registry, "registry.local/org/nested-bundle:v1",
                          [redis, nginx])
    app = _push_bundle(tmp_path, registry, "registry.local/org/app-bundle:v1",
                       [nginx, nested])
    return {"nginx": nginx, "redis": redis, "nested": nested, "app": app}


class RecordingRegistry:
    """Wraps a registry and records every write in order."""

    def __init__(self, inner, fail_blob_after=None):
        self.inner = inner
        self.writes = []
        self.fail_blob_after = fail_blob_after
        self._lock = threading.Lock()

    def get_manifest(self, repository, ref):
        return self.inner.get_manifest(repository, ref)

    def manifest_exists(self, repository, digest):
        return self.inner.manifest_exists(repository, digest)

    def get_blob(self, repository, digest):
        return self.inner.get_blob(repository, digest)

    def blob_exists(self, repository, digest):
        return self.inner.blob_exists(repository, digest)

    def put_blob(self, repository, digest, data):
        with self._lock:
            blobs = sum(1 for w in self.writes if w[0] == "blob")
            if self.fail_blob_after is not None and blobs >= self.fail_blob_after:
                raise RegistryError("upload refused")
            self.writes.append(("blob", str(digest)))
        self.inner.put_blob(repository, digest, data)

    def put_manifest(self, repository, raw, media_type, ref):
        digest = self.inner.put_manifest(repository, raw, media_type, ref)
        with self._lock:
            self.writes.append(("manifest", ref))
        return digest


# ─────────────────────────────────────────────
# CLOSURE
# ─────────────────────────────────────────────
class TestClosure:
    def test_dependency_order(self, registry, graph):
        closure = build_closure([Reference.parse("registry.local/org/app-bundle:v1")], registry)
        order = [n.digest for n in closure.nodes]

        assert len(order) == 4
        assert len(set(order)) == 4
        assert closure.roots == [graph["app"].digest]
        assert order[-1] == graph["app"].digest
        assert order.index(graph["redis"].digest) < order.index(graph["nested"].digest)
        assert order.index(graph["nested"].digest) < order.index(graph["app"].digest)

    def test_kinds_and_locks(self, registry, graph):
        closure = build_closure([graph["app"]], registry)
        app = closure.node(graph["app"].digest)
        assert app.kind == Kind.BUNDLE
        assert app.images_lock.references == [graph["nginx"], graph["nested"]]
        assert closure.node(graph["nginx"].digest).kind == Kind.IMAGE

    def test_not_recursive(self, registry, graph):
        closure = build_closure([graph["app"]], registry, recursive=False)
        digests = {n.digest for n in closure.nodes}
        assert digests == {graph["app"].digest, graph["nested"].digest, graph["nginx"].digest}

    def test_waves(self, registry, graph):
        waves = dependency_waves(build_closure([graph["app"]], registry))
        levels = [{n.digest for n in wave} for wave in waves]
        assert levels == [
            {graph["nginx"].digest, graph["redis"].digest},
            {graph["nested"].digest},
            {graph["app"].digest},
        ]

    def test_missing_reference(self, tmp_path, registry):
        ghost = "registry.local/lib/ghost@sha256:" + "0" * 64
        bundle = _push_bundle(tmp_path, registry, "registry.local/org/broken:v1", [ghost])
        with pytest.raises(ConsistencyError, match="not found"):
            build_closure([bundle], registry)

    def test_index_children_first(self, tmp_path, registry, graph):
        nginx = registry.get_manifest(graph["nginx"].repository, str(graph["nginx"].digest))
        raw = (
            f'{{"schemaVersion":2,"mediaType":"{OCI_INDEX}","manifests":['
            f'{{"mediaType":"{nginx.media_type}","digest":"{nginx.digest}",'
            f'"size":{len(nginx.raw)}}}]}}'
        ).encode()
        index_digest = registry.put_manifest("registry.local/lib/nginx", raw, OCI_INDEX, "multi")

        closure = build_closure([Reference.parse("registry.local/lib/nginx:multi")], registry)
        assert [n.digest for n in closure.nodes] == [nginx.digest, index_digest]
        assert closure.nodes[1].dependencies == [nginx.digest]


# ─────────────────────────────────────────────
# COPY
# ─────────────────────────────────────────────
class TestCopy:
    def test_copies_closure_with_same_digests(self, registry, graph):
        result = copy(CopySource.from_reference("registry.local/org/app-bundle:v1", Kind.BUNDLE),
                      DEST, registry)

        assert result.manifests_copied == 4
        assert result.manifests_skipped == 0
        for ref in graph.values():
            assert registry.manifest_exists(DEST, ref.digest)
            source = registry.get_manifest(ref.repository, str(ref.digest))
            assert registry.get_manifest(DEST, str(ref.digest)).raw == source.raw
        assert result.destination == [
            Reference(DEST, tag="v1", digest=graph["app"].digest),
        ]
        assert registry.get_manifest(DEST, "v1").digest == graph["app"].digest

    def test_separate_destination_registry(self, tmp_path, registry, graph):
        target = LocalRegistry(tmp_path / "target")
        copy(graph["app"], DEST, registry, destination_registry=target)
        for ref in graph.values():
            assert target.manifest_exists(DEST, ref.digest)
        # a digest source has no tag to carry over
        assert target.list_tags(DEST) == []

    def test_idempotent(self, registry, graph):
        source = CopySource.from_reference("registry.local/org/app-bundle:v1")
        copy(source, DEST, registry)
        again = copy(source, DEST, registry)

        assert again.manifests_copied == 0
        assert again.manifests_skipped == 4
        assert again.blobs_copied == 0
        assert registry.get_manifest(DEST, "v1").digest == graph["app"].digest

    def test_not_recursive(self, registry, graph):
        result = copy(graph["app"], DEST, registry, recursive=False)
        assert result.manifests_copied == 3
        assert not registry.manifest_exists(DEST, graph["redis"].digest)
        assert registry.manifest_exists(DEST, graph["nested"].digest)

    def test_write_order(self, registry, graph):
        recorder = RecordingRegistry(registry)
        copy(CopySource.from_reference("registry.local/org/app-bundle:v1"), DEST, recorder,
             concurrency=4)

        manifests = [ref for kind, ref in recorder.writes if kind == "manifest"]
        # dependencies before dependents, tag last
        assert manifests[-1] == "v1"
        order = manifests[:-1]
        assert order.index(str(graph["redis"].digest)) < order.index(str(graph["nested"].digest))
        assert order.index(str(graph["nginx"].digest)) < order.index(str(graph["nested"].digest))
        assert order.index(str(graph["nested"].digest)) < order.index(str(graph["app"].digest))

        # every node's blobs land before its manifest
        app = registry.get_manifest(DEST, str(graph["app"].digest))
        manifest_at = recorder.writes.index(("manifest", str(graph["app"].digest)))
        for blob in app.blobs():
            assert recorder.writes.index(("blob", str(blob.digest))) < manifest_at

    def test_failure_propagates_without_tag(self, registry, graph):
        recorder = RecordingRegistry(registry, fail_blob_after=2)
        with pytest.raises(RegistryError, match="upload refused"):
            copy(CopySource.from_reference("registry.local/org/app-bundle:v1"), DEST, recorder,
                 concurrency=1)
        assert registry.list_tags(DEST) == []

        # resumable: a clean run finishes the job
        result = copy(CopySource.from_reference("registry.local/org/app-bundle:v1"), DEST, registry)
        assert result.blobs_skipped == 2
        assert registry.get_manifest(DEST, "v1").digest == graph["app"].digest

    def test_cancelled(self, registry, graph):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(CancelledError):
            copy(CopySource.from_reference("registry.local/org/app-bundle:v1"), DEST, registry,
                 cancel=cancel)
        assert registry.list_tags(DEST) == []

    def test_kind_mismatch(self, registry, graph):
        with pytest.raises(KindMismatchError, match="when copying a image or index"):
            copy(CopySource.from_reference("registry.local/lib/nginx:1", Kind.BUNDLE),
                 DEST, registry)
        with pytest.raises(KindMismatchError, match="when copying a bundle"):
            copy(CopySource.from_reference("registry.local/org/app-bundle:v1", Kind.IMAGE),
                 DEST, registry)

    def test_relocated_images_lock(self, registry, graph):
        result = copy(graph["app"], DEST, registry)
        assert result.images_lock.references == [
            Reference(DEST, digest=graph["nginx"].digest),
            Reference(DEST, digest=graph["nested"].digest),
        ]

    def test_logs_with_prefix(self, registry, graph):
        buf = io.StringIO()
        copy(graph["app"], DEST, registry, logger=Logger(buf))
        lines = buf.getvalue().splitlines()
        assert lines
        assert all(line.startswith("copy | ") for line in lines)

    def test_invalid_concurrency(self, registry, graph):
        with pytest.raises(ValueError):
            copy(graph["app"], DEST, registry, concurrency=0)


# ─────────────────────────────────────────────
# LOCK SOURCES / OUTPUTS
# ─────────────────────────────────────────────
class TestCopyLocks:
    def test_bundle_lock_output(self, tmp_path, registry, graph):
        out = tmp_path / "relocated.lock.yml"
        copy(CopySource.from_reference("registry.local/org/app-bundle:v1"), DEST, registry,
             lock_output=out)

        lock = parse_bundle_lock(out)
        assert lock.url == f"{DEST}@{graph['app'].digest}"
        assert lock.tag == "v1"

    def test_from_bundle_lock(self, tmp_path, registry, graph):
        path = tmp_path / "bundle.lock.yml"
        write_bundle_lock(BundleLock(url=str(graph["app"]), tag="v1"), path)

        source = CopySource.from_lock(path)
        assert source.kind == Kind.BUNDLE
        result = copy(source, DEST, registry)
        assert result.manifests_copied == 4
        assert registry.get_manifest(DEST, "v1").digest == graph["app"].digest

    def test_from_images_lock(self, tmp_path, registry, graph):
        path = tmp_path / "images.yml"
        write_images_lock(ImagesLock(images=[
            ImageRef(str(graph["nginx"]), annotations={"kbld.carvel.dev/id": "nginx"}),
            ImageRef(str(graph["redis"])),
        ]), path)
        out = tmp_path / "relocated.yml"

        result = copy(CopySource.from_lock(path), DEST, registry, lock_output=out)

        assert result.manifests_copied == 2
        relocated = parse_images_lock(out)
        assert [i.image for i in relocated.images] == [
            f"{DEST}@{graph['nginx'].digest}",
            f"{DEST}@{graph['redis'].digest}",
        ]
        assert relocated.images[0].annotations == {"kbld.carvel.dev/id": "nginx"}
        assert registry.list_tags(DEST) == []

    def test_from_images_lock_shared_digest(self, tmp_path, registry):
        one = _push_image(tmp_path, registry, "registry.local/one/app:1", "same\n")
        two = _push_image(tmp_path, registry, "registry.local/two/app:1", "same\n")
        assert one.digest == two.digest

        path = tmp_path / "images.yml"
        write_images_lock(ImagesLock(images=[
            ImageRef(str(one), annotations={"kbld.carvel.dev/id": "one"}),
            ImageRef(str(two), annotations={"kbld.carvel.dev/id": "two"}),
        ]), path)
        out = tmp_path / "relocated.yml"

        copy(CopySource.from_lock(path), DEST, registry, lock_output=out)

        relocated = parse_images_lock(out)
        assert [i.image for i in relocated.images] == [f"{DEST}@{one.digest}"]
        assert relocated.images[0].annotations == {"kbld.carvel.dev/id": "one"}

    def test_image_lock_output(self, tmp_path, registry, graph):
        out = tmp_path / "image.yml"
        copy(CopySource.from_reference("registry.local/lib/redis:7", Kind.IMAGE), DEST, registry,
             lock_output=out)
        lock = parse_images_lock(out)
        assert lock.references == [Reference(DEST, digest=graph["redis"].digest)]
