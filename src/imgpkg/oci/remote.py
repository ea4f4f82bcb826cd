"""
imgpkg.oci.remote — Remote OCI registries via oras-py.

oras-py handles the token dance and the HTTP session. Manifests
are moved as raw bytes through the distribution API endpoints
instead of oras' dict-based helpers: re-serialising a manifest
would change its digest.

Auth, in order:
  1. --registry-token / IMGPKG_TOKEN (bearer)
  2. --registry-username + --registry-password
  3. Docker credential helpers (credsStore in ~/.docker/config.json)
  4. anonymous (always with --registry-anon)
"""

from __future__ import annotations

import json
import subprocess
import tempfile
import threading
from pathlib import Path
from urllib.parse import urljoin

import oras.client

from imgpkg.errors import NotFoundError, RegistryError
from imgpkg.oci.config import RegistryOpts
from imgpkg.oci.manifest import (
    DOCKER_MANIFEST, DOCKER_MANIFEST_LIST, OCI_INDEX, OCI_MANIFEST, Manifest,
)
from imgpkg.oci.reference import Digest

_MANIFEST_ACCEPT = ", ".join(
    [OCI_MANIFEST, OCI_INDEX, DOCKER_MANIFEST, DOCKER_MANIFEST_LIST]
)


class OrasRegistry:
    """Registry backend for anything reachable over HTTP(S)."""

    def __init__(self, opts: RegistryOpts):
        self.opts = opts
        self._client = oras.client.OrasClient(
            insecure=opts.insecure,
            tls_verify=_tls_verify(opts),
        )
        self._remote = self._client.remote
        self._headers: dict[str, str] = {}
        if opts.token and not opts.anon:
            self._headers["Authorization"] = f"Bearer {opts.token}"
        self._logged_in: set[str] = set()
        self._login_lock = threading.Lock()

    # ── manifests ──
    def get_manifest(self, repository: str, ref: str) -> Manifest:
        container = self._container(repository)
        url = self._url(container.manifest_url(ref))
        response = self._request(url, "GET", headers={"Accept": _MANIFEST_ACCEPT})
        if response.status_code == 404:
            raise NotFoundError(f"Manifest not found: {repository}:{ref}")
        _check(response, f"Fetching manifest {repository}:{ref}")
        return Manifest.from_bytes(
            response.content, response.headers.get("Content-Type"),
        )

    def manifest_exists(self, repository: str, digest: Digest) -> bool:
        container = self._container(repository)
        url = self._url(container.manifest_url(str(digest)))
        response = self._request(url, "HEAD", headers={"Accept": _MANIFEST_ACCEPT})
        if response.status_code == 404:
            return False
        _check(response, f"Checking manifest {repository}@{digest}")
        return True

    def put_manifest(
        self, repository: str, raw: bytes, media_type: str, ref: str,
    ) -> Digest:
        container = self._container(repository)
        url = self._url(container.manifest_url(ref))
        response = self._request(
            url, "PUT", data=raw, headers={"Content-Type": media_type},
        )
        _check(response, f"Writing manifest {repository}:{ref}")
        header = response.headers.get("Docker-Content-Digest")
        return Digest.parse(header) if header else Digest.of(raw)

    # ── blobs ──
    def get_blob(self, repository: str, digest: Digest) -> bytes:
        container = self._container(repository)
        url = self._url(container.get_blob_url(str(digest)))
        response = self._request(url, "GET")
        if response.status_code == 404:
            raise NotFoundError(f"Blob not found: {repository}@{digest}")
        _check(response, f"Fetching blob {repository}@{digest}")
        return response.content

    def put_blob(self, repository: str, digest: Digest, data: bytes) -> None:
        """Monolithic upload: POST for a session, PUT the bytes."""
        container = self._container(repository)
        start = self._url(container.upload_blob_url())
        response = self._request(start, "POST")
        _check(response, f"Starting blob upload to {repository}")

        location = response.headers.get("Location")
        if not location:
            raise RegistryError(f"Registry gave no upload location for {repository}")
        location = urljoin(start, location)
        sep = "&" if "?" in location else "?"

        response = self._request(
            f"{location}{sep}digest={digest}",
            "PUT",
            data=data,
            headers={
                "Content-Type": "application/octet-stream",
                "Content-Length": str(len(data)),
            },
        )
        _check(response, f"Uploading blob {repository}@{digest}")

    def blob_exists(self, repository: str, digest: Digest) -> bool:
        container = self._container(repository)
        url = self._url(container.get_blob_url(str(digest)))
        response = self._request(url, "HEAD")
        if response.status_code == 404:
            return False
        _check(response, f"Checking blob {repository}@{digest}")
        return True

    # ── tags ──
    def list_tags(self, repository: str) -> list[str]:
        container = self._container(repository)
        try:
            return list(self._remote.get_tags(container))
        except Exception as e:
            raise RegistryError(f"Listing tags of {repository} failed: {e}") from e

    # ── helpers ──
    def _container(self, repository: str):
        host = repository.split("/", 1)[0]
        self._ensure_login(host)
        return self._remote.get_container(repository)

    def _url(self, path: str) -> str:
        return f"{self._remote.prefix}://{path}"

    def _request(self, url: str, method: str, data=None, headers=None):
        merged = dict(self._headers)
        merged.update(headers or {})
        try:
            return self._remote.do_request(url, method, data=data, headers=merged)
        except Exception as e:
            raise RegistryError(f"{method} {url} failed: {e}") from e

    def _ensure_login(self, host: str) -> None:
        if self.opts.anon or self.opts.token:
            return
        with self._login_lock:
            if host in self._logged_in:
                return
            self._logged_in.add(host)

            username, password = self.opts.username, self.opts.password
            if not username:
                creds = _docker_credentials(host)
                if creds is None:
                    return
                username, password = creds
            try:
                self._client.login(
                    hostname=host, username=username, password=password,
                )
            except Exception as e:
                raise RegistryError(f"Login to {host} failed: {e}") from e


def _check(response, action: str) -> None:
    if response.status_code >= 400:
        raise RegistryError(
            f"{action}: status {response.status_code}: {response.text[:500]}"
        )


def _tls_verify(opts: RegistryOpts) -> bool | str:
    """requests takes either a bool or a CA bundle path."""
    if not opts.verify_certs:
        return False
    if not opts.ca_cert_paths:
        return True

    bundle = Path(tempfile.mkdtemp()) / "ca-bundle.pem"
    with open(bundle, "w") as out:
        for path in opts.ca_cert_paths:
            out.write(Path(path).read_text())
            out.write("\n")
    return str(bundle)


def _docker_credentials(host: str) -> tuple[str, str] | None:
    """Look up credentials for host in the Docker credential store.

    Docker Desktop stores credentials via helpers like
    docker-credential-osxkeychain (macOS) or
    docker-credential-secretservice (Linux).
    """
    docker_config = Path.home() / ".docker" / "config.json"
    if not docker_config.exists():
        return None

    with open(docker_config) as f:
        config = json.load(f)

    helper_name = config.get("credHelpers", {}).get(host) or config.get("credsStore")
    if not helper_name:
        return None  # inline auths are read by oras itself

    try:
        result = subprocess.run(
            [f"docker-credential-{helper_name}", "get"],
            input=host,
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (subprocess.TimeoutExpired, FileNotFoundError):
        return None
    if result.returncode != 0:
        return None

    try:
        creds = json.loads(result.stdout)
    except json.JSONDecodeError:
        return None
    username = creds.get("Username", "")
    secret = creds.get("Secret", "")
    if username and secret:
        return username, secret
    return None
