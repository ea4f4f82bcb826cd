"""imgpkg.bundle — Bundle contents, lock files, push, pull and copy."""

from imgpkg.bundle.lock import (
    ImagesLock, ImageRef, BundleLock,
    parse_images_lock, parse_bundle_lock, read_lock,
    write_images_lock, write_bundle_lock,
)
from imgpkg.bundle.contents import Contents, walk_tree, unpack_layer
from imgpkg.bundle.push import push
from imgpkg.bundle.pull import Kind, PullResult, pull, resolve_source
from imgpkg.bundle.copy import CopySource, CopyResult, build_closure, copy

__all__ = [
    "ImagesLock", "ImageRef", "BundleLock",
    "parse_images_lock", "parse_bundle_lock", "read_lock",
    "write_images_lock", "write_bundle_lock",
    "Contents", "walk_tree", "unpack_layer",
    "push",
    "Kind", "PullResult", "pull", "resolve_source",
    "CopySource", "CopyResult", "build_closure", "copy",
]
