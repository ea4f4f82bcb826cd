"""imgpkg.oci — References, manifests and registry access."""

from imgpkg.oci.config import (
    ImgpkgConfig, RegistryOpts, load_config, save_config, IMGPKG_HOME,
)
from imgpkg.oci.reference import Digest, Reference, parse_repository
from imgpkg.oci.manifest import (
    Descriptor, Manifest, Layer, Image, build_image,
    BUNDLE_ANNOTATION, LEGACY_BUNDLE_ANNOTATION,
)
from imgpkg.oci.registry import (
    ManifestReader, BlobReader, ManifestWriter, BlobWriter, TagLister,
    ImageReader, ImageWriter, ImageCopier,
    LocalRegistry, open_registry,
)

__all__ = [
    "ImgpkgConfig", "RegistryOpts", "load_config", "save_config", "IMGPKG_HOME",
    "Digest", "Reference", "parse_repository",
    "Descriptor", "Manifest", "Layer", "Image", "build_image",
    "BUNDLE_ANNOTATION", "LEGACY_BUNDLE_ANNOTATION",
    "ManifestReader", "BlobReader", "ManifestWriter", "BlobWriter", "TagLister",
    "ImageReader", "ImageWriter", "ImageCopier",
    "LocalRegistry", "open_registry",
]
