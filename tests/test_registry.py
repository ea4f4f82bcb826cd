"""
tests/test_registry.py — Filesystem registry and the oras-py backend.
"""

import json
import os
import sys
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from imgpkg.errors import ConsistencyError, NotFoundError, RegistryError
from imgpkg.oci.config import RegistryOpts
from imgpkg.oci.manifest import OCI_CONFIG, OCI_MANIFEST
from imgpkg.oci.reference import Digest
from imgpkg.oci.registry import (
    ImageCopier, ImageReader, LocalRegistry, open_registry,
)

REPO = "registry.local/org/app"


def _manifest_for(config: bytes) -> bytes:
    return json.dumps({
        "schemaVersion": 2,
        "mediaType": OCI_MANIFEST,
        "config": {"mediaType": OCI_CONFIG, "digest": str(Digest.of(config)), "size": len(config)},
        "layers": [],
    }).encode()


# ─────────────────────────────────────────────
# LOCAL REGISTRY
# ─────────────────────────────────────────────
class TestLocalRegistry:
    def test_satisfies_protocols(self, tmp_path):
        reg = LocalRegistry(tmp_path)
        assert isinstance(reg, ImageReader)
        assert isinstance(reg, ImageCopier)

    def test_blob_round_trip(self, tmp_path):
        reg = LocalRegistry(tmp_path)
        d = Digest.of(b"data")
        assert not reg.blob_exists(REPO, d)
        reg.put_blob(REPO, d, b"data")
        assert reg.blob_exists(REPO, d)
        assert reg.get_blob(REPO, d) == b"data"

    def test_blob_digest_mismatch(self, tmp_path):
        reg = LocalRegistry(tmp_path)
        with pytest.raises(RegistryError, match="does not match"):
            reg.put_blob(REPO, Digest.of(b"data"), b"other")

    def test_missing_blob(self, tmp_path):
        with pytest.raises(NotFoundError):
            LocalRegistry(tmp_path).get_blob(REPO, Digest.of(b"x"))

    def test_manifest_requires_blobs(self, tmp_path):
        reg = LocalRegistry(tmp_path)
        with pytest.raises(RegistryError, match="blob unknown"):
            reg.put_manifest(REPO, _manifest_for(b"{}"), OCI_MANIFEST, "v1")

    def test_manifest_by_tag_and_digest(self, tmp_path):
        reg = LocalRegistry(tmp_path)
        config = b"{}"
        reg.put_blob(REPO, Digest.of(config), config)
        raw = _manifest_for(config)

        digest = reg.put_manifest(REPO, raw, OCI_MANIFEST, "v1")

        assert digest == Digest.of(raw)
        assert reg.get_manifest(REPO, "v1").raw == raw
        assert reg.get_manifest(REPO, str(digest)).raw == raw
        assert reg.manifest_exists(REPO, digest)
        assert reg.list_tags(REPO) == ["v1"]

    def test_manifest_digest_reference_must_match(self, tmp_path):
        reg = LocalRegistry(tmp_path)
        config = b"{}"
        reg.put_blob(REPO, Digest.of(config), config)
        with pytest.raises(RegistryError, match="does not match reference"):
            reg.put_manifest(REPO, _manifest_for(config), OCI_MANIFEST, str(Digest.of(b"x")))

    def test_tampered_manifest(self, tmp_path):
        reg = LocalRegistry(tmp_path)
        config = b"{}"
        reg.put_blob(REPO, Digest.of(config), config)
        digest = reg.put_manifest(REPO, _manifest_for(config), OCI_MANIFEST, "v1")
        (tmp_path / REPO / "manifests" / "sha256" / digest.hex).write_bytes(b"{}")
        with pytest.raises(ConsistencyError):
            reg.get_manifest(REPO, "v1")

    def test_unknown_tag(self, tmp_path):
        with pytest.raises(NotFoundError, match="Tag not found"):
            LocalRegistry(tmp_path).get_manifest(REPO, "nope")

    def test_no_tags(self, tmp_path):
        assert LocalRegistry(tmp_path).list_tags(REPO) == []

    @pytest.mark.parametrize("repository", ["../escape", "registry.local/../../escape", "/abs/app"])
    def test_repository_stays_under_root(self, tmp_path, repository):
        reg = LocalRegistry(tmp_path / "reg")
        with pytest.raises(RegistryError, match="Invalid repository path"):
            reg.put_blob(repository, Digest.of(b"x"), b"x")
        assert not (tmp_path / "escape").exists()

    def test_open_registry_local(self, tmp_path):
        reg = open_registry(RegistryOpts(local_root=str(tmp_path)))
        assert isinstance(reg, LocalRegistry)


# ─────────────────────────────────────────────
# ORAS BACKEND
# ─────────────────────────────────────────────
class FakeResponse:
    def __init__(self, status_code=200, content=b"", headers=None):
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}
        self.text = content.decode(errors="replace")


class FakeTransport:
    """Stands in for oras' do_request; answers by method + URL suffix."""

    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    def __call__(self, url, method="GET", data=None, headers=None, **kwargs):
        self.calls.append((method, url, data, headers))
        for (m, suffix), response in self.routes.items():
            if m == method and url.split("?")[0].endswith(suffix):
                return response
        return FakeResponse(404)


@pytest.fixture
def oras_registry(monkeypatch):
    from imgpkg.oci.remote import OrasRegistry
    return OrasRegistry(RegistryOpts(anon=True))


class TestOrasRegistry:
    def test_get_manifest_keeps_raw_bytes(self, oras_registry):
        # key order and spacing differ from what json.dumps would produce
        raw = b'{"schemaVersion": 2,  "layers": [], "mediaType": "%s"}' % OCI_MANIFEST.encode()
        transport = FakeTransport({
            ("GET", "/manifests/v1"): FakeResponse(200, raw, {"Content-Type": OCI_MANIFEST}),
        })
        oras_registry._remote.do_request = transport

        manifest = oras_registry.get_manifest(REPO, "v1")

        assert manifest.raw == raw
        assert manifest.digest == Digest.of(raw)
        method, url, _, headers = transport.calls[0]
        assert url.startswith("https://registry.local/")
        assert OCI_MANIFEST in headers["Accept"]

    def test_missing_manifest(self, oras_registry):
        oras_registry._remote.do_request = FakeTransport({})
        with pytest.raises(NotFoundError):
            oras_registry.get_manifest(REPO, "v1")
        assert not oras_registry.manifest_exists(REPO, Digest.of(b"x"))

    def test_server_error(self, oras_registry):
        oras_registry._remote.do_request = FakeTransport({
            ("GET", "/manifests/v1"): FakeResponse(500, b"boom"),
        })
        with pytest.raises(RegistryError, match="status 500"):
            oras_registry.get_manifest(REPO, "v1")

    def test_transport_exception_wrapped(self, oras_registry):
        def broken(*args, **kwargs):
            raise ConnectionError("refused")
        oras_registry._remote.do_request = broken
        with pytest.raises(RegistryError, match="refused"):
            oras_registry.blob_exists(REPO, Digest.of(b"x"))

    def test_put_blob_monolithic(self, oras_registry):
        d = Digest.of(b"data")
        transport = FakeTransport({
            ("POST", "/blobs/uploads/"): FakeResponse(
                202, headers={"Location": "/v2/org/app/blobs/uploads/abc?state=1"},
            ),
            ("PUT", "/blobs/uploads/abc"): FakeResponse(201),
        })
        oras_registry._remote.do_request = transport

        oras_registry.put_blob(REPO, d, b"data")

        method, url, data, _ = transport.calls[1]
        assert method == "PUT"
        assert url == f"https://registry.local/v2/org/app/blobs/uploads/abc?state=1&digest={d}"
        assert data == b"data"

    def test_put_manifest_returns_registry_digest(self, oras_registry):
        raw = b'{"schemaVersion":2}'
        transport = FakeTransport({
            ("PUT", "/manifests/v1"): FakeResponse(
                201, headers={"Docker-Content-Digest": str(Digest.of(raw))},
            ),
        })
        oras_registry._remote.do_request = transport

        assert oras_registry.put_manifest(REPO, raw, OCI_MANIFEST, "v1") == Digest.of(raw)
        assert transport.calls[0][3]["Content-Type"] == OCI_MANIFEST

    def test_token_header(self):
        from imgpkg.oci.remote import OrasRegistry
        reg = OrasRegistry(RegistryOpts(token="abc"))
        transport = FakeTransport({("HEAD", f"/blobs/{Digest.of(b'x')}"): FakeResponse(200)})
        reg._remote.do_request = transport

        assert reg.blob_exists(REPO, Digest.of(b"x"))
        assert transport.calls[0][3]["Authorization"] == "Bearer abc"


class TestTransportHelpers:
    def test_tls_verify(self, tmp_path):
        from imgpkg.oci.remote import _tls_verify
        assert _tls_verify(RegistryOpts()) is True
        assert _tls_verify(RegistryOpts(verify_certs=False)) is False

        ca = tmp_path / "ca.pem"
        ca.write_text("-----BEGIN CERTIFICATE-----\n")
        bundle = _tls_verify(RegistryOpts(ca_cert_paths=[str(ca)]))
        assert "BEGIN CERTIFICATE" in open(bundle).read()

    def test_docker_credentials_without_config(self, tmp_path, monkeypatch):
        from imgpkg.oci.remote import _docker_credentials
        monkeypatch.setenv("HOME", str(tmp_path))
        assert _docker_credentials("ghcr.io") is None
