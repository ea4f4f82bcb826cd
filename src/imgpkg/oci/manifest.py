"""
imgpkg.oci.manifest — OCI manifests, indexes, and file images.

A pushed bundle or image looks like:

  manifest (application/vnd.oci.image.manifest.v1+json)
    ├── config:   application/vnd.oci.image.config.v1+json
    ├── layer[0]: application/vnd.oci.image.layer.v1.tar+gzip
    └── annotations: {"dev.carvel.imgpkg.bundle": "true"}   (bundles only)

Manifests always keep the exact bytes they were read from. The digest
is the digest of those bytes; the parsed dict is only for reading.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from imgpkg.errors import ConsistencyError
from imgpkg.oci.reference import Digest

OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"
DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"

OCI_CONFIG = "application/vnd.oci.image.config.v1+json"
OCI_LAYER_GZIP = "application/vnd.oci.image.layer.v1.tar+gzip"

MANIFEST_MEDIA_TYPES = (OCI_MANIFEST, DOCKER_MANIFEST)
INDEX_MEDIA_TYPES = (OCI_INDEX, DOCKER_MANIFEST_LIST)

NON_DISTRIBUTABLE_MEDIA_TYPES = frozenset({
    "application/vnd.oci.image.layer.nondistributable.v1.tar",
    "application/vnd.oci.image.layer.nondistributable.v1.tar+gzip",
    "application/vnd.oci.image.layer.nondistributable.v1.tar+zstd",
    "application/vnd.docker.image.rootfs.foreign.diff.tar.gzip",
})

BUNDLE_ANNOTATION = "dev.carvel.imgpkg.bundle"
LEGACY_BUNDLE_ANNOTATION = "io.k14s.imgpkg.bundle"
BUNDLE_KEYS = (BUNDLE_ANNOTATION, LEGACY_BUNDLE_ANNOTATION)


@dataclass(frozen=True)
class Descriptor:
    media_type: str
    digest: Digest
    size: int
    annotations: dict[str, str] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Descriptor:
        try:
            return cls(
                media_type=data.get("mediaType", ""),
                digest=Digest.parse(data["digest"]),
                size=int(data.get("size", 0)),
                annotations=data.get("annotations"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConsistencyError(f"Malformed descriptor {data!r}: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "mediaType": self.media_type,
            "digest": str(self.digest),
            "size": self.size,
        }
        if self.annotations:
            d["annotations"] = self.annotations
        return d

    @property
    def is_distributable(self) -> bool:
        return self.media_type not in NON_DISTRIBUTABLE_MEDIA_TYPES


@dataclass(frozen=True)
class Manifest:
    """An image manifest or an index, with its original bytes."""
    raw: bytes
    digest: Digest
    media_type: str
    data: dict[str, Any] = field(compare=False, repr=False)

    @classmethod
    def from_bytes(cls, raw: bytes, media_type: str | None = None) -> Manifest:
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ConsistencyError(f"Manifest is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ConsistencyError("Manifest must be a JSON object")

        mt = data.get("mediaType") or media_type
        if not mt:
            mt = OCI_INDEX if "manifests" in data else OCI_MANIFEST
        return cls(raw=raw, digest=Digest.of(raw), media_type=mt, data=data)

    @property
    def is_index(self) -> bool:
        return self.media_type in INDEX_MEDIA_TYPES

    @property
    def annotations(self) -> dict[str, str]:
        return self.data.get("annotations") or {}

    @property
    def is_bundle(self) -> bool:
        return any(self.annotations.get(k) == "true" for k in BUNDLE_KEYS)

    @property
    def config(self) -> Descriptor | None:
        cfg = self.data.get("config")
        return Descriptor.from_dict(cfg) if cfg else None

    @property
    def layers(self) -> list[Descriptor]:
        return [Descriptor.from_dict(d) for d in self.data.get("layers") or []]

    @property
    def manifests(self) -> list[Descriptor]:
        """Child manifests of an index."""
        return [Descriptor.from_dict(d) for d in self.data.get("manifests") or []]

    def blobs(self, include_non_distributable: bool = True) -> list[Descriptor]:
        """Config + layers this manifest needs in the same repository."""
        if self.is_index:
            return []
        blobs = [self.config] if self.config else []
        for layer in self.layers:
            if include_non_distributable or layer.is_distributable:
                blobs.append(layer)
        return blobs


@dataclass(frozen=True)
class Layer:
    """Compressed layer bytes plus the digest of the uncompressed tar."""
    data: bytes
    diff_id: Digest
    media_type: str = OCI_LAYER_GZIP

    @property
    def digest(self) -> Digest:
        return Digest.of(self.data)

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class Image:
    """A single-layer image ready to upload."""
    manifest: Manifest
    config: bytes
    layer: Layer

    def blobs(self) -> list[tuple[Digest, bytes]]:
        return [
            (Digest.of(self.config), self.config),
            (self.layer.digest, self.layer.data),
        ]


def config_marks_bundle(config: bytes) -> bool:
    """Check the image config labels for the bundle marker."""
    try:
        data = json.loads(config)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return False
    if not isinstance(data, dict) or not isinstance(data.get("config"), dict):
        return False
    labels = data["config"].get("Labels") or {}
    return isinstance(labels, dict) and any(labels.get(k) == "true" for k in BUNDLE_KEYS)


def build_image(layer: Layer, is_bundle: bool) -> Image:
    """Wrap a layer into a deterministic config + manifest.

    Same layer in, same bytes out: nothing here depends on time
    or on the machine doing the push.
    """
    labels = {BUNDLE_ANNOTATION: "true"} if is_bundle else {}
    config_data = {
        "architecture": "",
        "os": "",
        "config": {"Labels": labels} if labels else {},
        "rootfs": {"type": "layers", "diff_ids": [str(layer.diff_id)]},
    }
    config = _canonical_json(config_data)

    manifest_data: dict[str, Any] = {
        "schemaVersion": 2,
        "mediaType": OCI_MANIFEST,
        "config": Descriptor(
            OCI_CONFIG, Digest.of(config), len(config),
        ).to_dict(),
        "layers": [
            Descriptor(layer.media_type, layer.digest, layer.size).to_dict(),
        ],
    }
    if is_bundle:
        manifest_data["annotations"] = {BUNDLE_ANNOTATION: "true"}

    raw = _canonical_json(manifest_data)
    return Image(
        manifest=Manifest.from_bytes(raw),
        config=config,
        layer=layer,
    )


def _canonical_json(data: dict[str, Any]) -> bytes:
    return json.dumps(data, sort_keys=True, separators=(",", ":")).encode()
