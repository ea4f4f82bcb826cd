"""
imgpkg.oci.reference — Registry references and digests.

    ghcr.io/org/app:v1              → tag reference
    ghcr.io/org/app@sha256:abc...   → digest reference
    nginx                           → index.docker.io/library/nginx:latest

Both types are immutable values. A Digest is never invented: it is
either computed from bytes (Digest.of) or read from a registry
response or a lock document (Digest.parse).
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, replace

from imgpkg.errors import InvalidReferenceError

DEFAULT_REGISTRY = "index.docker.io"
DEFAULT_TAG = "latest"

_DIGEST_PATTERNS = {
    "sha256": re.compile(r"^[a-f0-9]{64}$"),
    "sha512": re.compile(r"^[a-f0-9]{128}$"),
}
_PATH_COMPONENT = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG = re.compile(r"^[\w][\w.-]{0,127}$")
_HOST = re.compile(
    r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?)*"
    r"(?::[0-9]+)?$"
)


@dataclass(frozen=True)
class Digest:
    """Content fingerprint: algorithm + lowercase hex."""
    algorithm: str
    hex: str

    @classmethod
    def parse(cls, text: str) -> Digest:
        algorithm, sep, hexpart = str(text).strip().partition(":")
        pattern = _DIGEST_PATTERNS.get(algorithm)
        if not sep or pattern is None or not pattern.match(hexpart):
            raise InvalidReferenceError(f"Invalid digest: '{text}'")
        return cls(algorithm, hexpart)

    @classmethod
    def of(cls, data: bytes) -> Digest:
        return cls("sha256", hashlib.sha256(data).hexdigest())

    def matches(self, data: bytes) -> bool:
        return hashlib.new(self.algorithm, data).hexdigest() == self.hex

    def __str__(self) -> str:
        return f"{self.algorithm}:{self.hex}"


@dataclass(frozen=True)
class Reference:
    """A repository plus a tag and/or a digest.

    repository always includes the registry host, so two references
    compare equal only when they name the same place.
    """
    repository: str
    tag: str | None = None
    digest: Digest | None = None

    def __post_init__(self):
        if self.tag is None and self.digest is None:
            raise InvalidReferenceError(
                f"Reference to '{self.repository}' needs a tag or a digest"
            )

    @classmethod
    def parse(cls, text: str) -> Reference:
        text = text.strip()
        if not text:
            raise InvalidReferenceError("Empty reference")

        name, _, digest_str = text.partition("@")
        digest = Digest.parse(digest_str) if digest_str else None

        tag = None
        slash = name.rfind("/")
        colon = name.rfind(":")
        if colon > slash:
            name, tag = name[:colon], name[colon + 1:]
            if not _TAG.match(tag):
                raise InvalidReferenceError(f"Invalid tag '{tag}' in '{text}'")

        repository = parse_repository(name)
        if tag is None and digest is None:
            tag = DEFAULT_TAG
        return cls(repository, tag, digest)

    @property
    def registry(self) -> str:
        return self.repository.split("/", 1)[0]

    @property
    def path(self) -> str:
        return self.repository.split("/", 1)[1]

    @property
    def identifier(self) -> str:
        """What to ask the registry for: the digest when pinned."""
        if self.digest is not None:
            return str(self.digest)
        return self.tag

    def with_digest(self, digest: Digest) -> Reference:
        return replace(self, digest=digest)

    def with_tag(self, tag: str) -> Reference:
        return replace(self, tag=tag)

    def digest_only(self) -> Reference:
        return Reference(self.repository, digest=self.digest)

    def in_repository(self, repository: str) -> Reference:
        return replace(self, repository=parse_repository(repository))

    def __str__(self) -> str:
        s = self.repository
        if self.tag is not None:
            s += f":{self.tag}"
        if self.digest is not None:
            s += f"@{self.digest}"
        return s


def parse_repository(text: str) -> str:
    """Normalize a repository name (no tag, no digest).

    A first component with a dot, a port, or 'localhost' is a registry
    host; anything else lives on Docker Hub.
    """
    text = text.strip().rstrip("/")
    if not text:
        raise InvalidReferenceError("Empty repository name")

    parts = text.split("/")
    first = parts[0]
    if len(parts) > 1 and ("." in first or ":" in first or first == "localhost"):
        registry, path_parts = first, parts[1:]
    else:
        registry, path_parts = DEFAULT_REGISTRY, parts
    if not _HOST.match(registry):
        raise InvalidReferenceError(
            f"Invalid repository '{text}': bad registry host '{registry}'"
        )

    if registry == "docker.io":
        registry = DEFAULT_REGISTRY
    if registry == DEFAULT_REGISTRY and len(path_parts) == 1:
        path_parts = ["library", *path_parts]

    for part in path_parts:
        if not _PATH_COMPONENT.match(part):
            raise InvalidReferenceError(
                f"Invalid repository '{text}': bad path component '{part}'"
            )
    return f"{registry}/{'/'.join(path_parts)}"
