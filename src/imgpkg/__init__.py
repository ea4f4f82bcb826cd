"""
imgpkg — Store directory trees as OCI artifacts.

Bundles are directory trees carrying a .imgpkg metadata directory
that pins every image they depend on. They can be pushed, pulled,
and relocated between registries without changing a single digest.
"""

from imgpkg.oci.reference import Digest, Reference
from imgpkg.bundle.contents import Contents
from imgpkg.bundle.lock import ImagesLock, ImageRef, BundleLock
from imgpkg.bundle.push import push
from imgpkg.bundle.pull import pull, Kind
from imgpkg.bundle.copy import copy, CopySource

__version__ = "0.7.0"

__all__ = [
    "Digest",
    "Reference",
    "Contents",
    "ImagesLock",
    "ImageRef",
    "BundleLock",
    "push",
    "pull",
    "Kind",
    "copy",
    "CopySource",
]
