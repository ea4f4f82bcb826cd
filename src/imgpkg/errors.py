"""
imgpkg.errors — Error types.

Everything raised by the library derives from ImgpkgError so the
CLI can report it as a single "Error: ..." line.

  ValidationError       bad input, detected before any network call
  KindMismatchError     bundle pulled as image or the other way round
  RegistryError         transport failure reported by the registry
  ConsistencyError      content does not match the digest that names it
  LockError             unreadable or invalid lock document
"""

from __future__ import annotations


class ImgpkgError(Exception):
    pass


class InvalidReferenceError(ImgpkgError):
    """Unparseable reference or digest."""
    pass


class ValidationError(ImgpkgError):
    """Input rejected before anything was uploaded."""
    pass


class DuplicatePathsError(ValidationError):
    """Two input roots place a file at the same relative path."""

    def __init__(self, paths: list[str]):
        self.paths = paths
        super().__init__(f"Found duplicate paths: {', '.join(paths)}")


class BundleValidationError(ValidationError):
    """Wrong count or placement of the .imgpkg directory."""
    pass


class KindMismatchError(ImgpkgError):
    """Artifact kind differs from the kind the caller asked for."""

    def __init__(self, message: str, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(message)


class RegistryError(ImgpkgError):
    pass


class NotFoundError(RegistryError):
    pass


class ConsistencyError(ImgpkgError):
    pass


class LockError(ImgpkgError):
    """Lock file error."""
    pass


class PushError(ImgpkgError):
    pass


class PullError(ImgpkgError):
    pass


class CancelledError(ImgpkgError):
    """The caller aborted the operation."""
    pass
