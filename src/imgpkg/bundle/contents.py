"""
imgpkg.bundle.contents — Turn input directories into one layer.

  imgpkg push -b ghcr.io/org/app-bundle -f config/ -f extra/

Every file of every input root lands in the layer at its
root-relative path:

  config/                        layer.tar.gz
  ├── .imgpkg/                   ├── .imgpkg/bundle.yml
  │   ├── bundle.yml      →      ├── .imgpkg/images.yml
  │   └── images.yml             ├── config.yml
  └── config.yml                 └── README.md
  extra/README.md

Rules checked before anything is uploaded:
  - no two roots may place a file at the same relative path
  - a bundle has exactly one .imgpkg dir, directly under a root
  - an image has no .imgpkg dir at all
  - symlinks stay inside the inputs (relative, no escaping "..")

The tar is deterministic (sorted entries, zeroed times and owners,
gzip mtime 0): the same inputs always give the same digest.
"""

from __future__ import annotations

import gzip
import io
import os
import posixpath
import stat
import tarfile
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from fnmatch import fnmatch
from pathlib import Path

from imgpkg.bundle.lock import (
    IMAGES_LOCK_FILE, IMGPKG_DIR, ImagesLock,
    images_lock_from_yaml, parse_images_lock,
)
from imgpkg.errors import (
    BundleValidationError, ConsistencyError, DuplicatePathsError, ValidationError,
)
from imgpkg.oci.manifest import Layer
from imgpkg.oci.reference import Digest

DEFAULT_EXCLUDED_PATHS = (".git",)

_GZIP_LEVEL = 6


@dataclass(frozen=True)
class Entry:
    """One filesystem entry found under an input root."""
    path: Path     # absolute
    rel: str       # root-relative, '/'-separated
    is_dir: bool


def walk_tree(
    root: str | Path,
    excluded: Iterable[str] = DEFAULT_EXCLUDED_PATHS,
) -> Iterator[Entry]:
    """Yield every entry under root, in a stable order.

    A root that is a plain file yields itself under its basename.
    Filesystem errors propagate to the caller on first occurrence.
    Symlinks are yielded as entries and never followed.
    """
    excluded = tuple(excluded)
    root = Path(os.path.abspath(root))
    if not os.path.lexists(root):
        raise ValidationError(f"Input path not found: {root}")

    if not root.is_dir():
        yield Entry(root, root.name, False)
        return

    def onerror(err: OSError) -> None:
        raise err

    for dirpath, dirnames, filenames in os.walk(root, onerror=onerror):
        base = Path(dirpath)
        rel_base = base.relative_to(root).as_posix()
        prefix = "" if rel_base == "." else rel_base + "/"

        dirnames.sort()
        kept = []
        for name in dirnames:
            rel = prefix + name
            if _is_excluded(rel, name, excluded):
                continue
            path = base / name
            if path.is_symlink():
                filenames.append(name)
                continue
            kept.append(name)
            yield Entry(path, rel, True)
        dirnames[:] = kept

        for name in sorted(filenames):
            rel = prefix + name
            if _is_excluded(rel, name, excluded):
                continue
            yield Entry(base / name, rel, False)


def _is_excluded(rel: str, name: str, patterns: tuple[str, ...]) -> bool:
    return any(fnmatch(rel, p) or fnmatch(name, p) for p in patterns)


def _check_symlink(entry: Entry) -> None:
    # a link must resolve inside the layer, or pull cannot extract it
    target = os.readlink(entry.path)
    resolved = posixpath.normpath(posixpath.join(posixpath.dirname(entry.rel), target))
    if os.path.isabs(target) or resolved == ".." or resolved.startswith("../"):
        raise ValidationError(
            f"Symlink '{entry.path}' points outside the input (target '{target}')"
        )


class Contents:
    """The set of input paths that make up one bundle or image."""

    def __init__(
        self,
        paths: Iterable[str | Path],
        excluded_paths: Iterable[str] = DEFAULT_EXCLUDED_PATHS,
    ):
        self.paths = [Path(p) for p in paths]
        self.excluded_paths = tuple(excluded_paths)
        if not self.paths:
            raise ValidationError("Expected at least one input path")

    def entries(self) -> Iterator[Entry]:
        for root in self.paths:
            yield from walk_tree(root, self.excluded_paths)

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # VALIDATION
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    def validate(self, is_bundle: bool) -> None:
        """Raise a ValidationError if the inputs cannot be packed."""
        files: dict[str, list[str]] = {}
        dirs: dict[str, list[str]] = {}
        imgpkg_dirs: list[Entry] = []

        for entry in self.entries():
            if entry.is_dir:
                dirs.setdefault(entry.rel, []).append(str(entry.path))
                if entry.path.name == IMGPKG_DIR:
                    if not is_bundle:
                        raise ValidationError(
                            f"Images cannot be pushed with a '{IMGPKG_DIR}' bundle "
                            f"directory (found at '{entry.path}'), consider using a bundle"
                        )
                    imgpkg_dirs.append(entry)
                continue
            if entry.path.is_symlink():
                _check_symlink(entry)
            files.setdefault(entry.rel, []).append(str(entry.path))

        # directories may be shared between roots, files may not
        repeated = []
        for rel, paths in files.items():
            if len(paths) > 1 or rel in dirs:
                repeated.extend(dirs.get(rel, []) + paths)
        if repeated:
            raise DuplicatePathsError(repeated)

        if is_bundle:
            self._validate_imgpkg_dirs(imgpkg_dirs)

    def presents_as_bundle(self) -> bool:
        """True when the inputs form a valid bundle.

        Only bundle-shape problems mean "no"; anything else (missing
        paths, unreadable dirs) still raises.
        """
        dirs = [e for e in self.entries() if e.is_dir and e.path.name == IMGPKG_DIR]
        try:
            self._validate_imgpkg_dirs(dirs)
        except BundleValidationError:
            return False
        return True

    def _validate_imgpkg_dirs(self, dirs: list[Entry]) -> None:
        if len(dirs) != 1:
            raise BundleValidationError(
                f"Expected one '{IMGPKG_DIR}' dir, got {len(dirs)}: "
                f"{', '.join(str(d.path) for d in dirs)}"
            )
        found = dirs[0]
        # rel == ".imgpkg" means a direct child of its input root
        if found.rel != IMGPKG_DIR:
            raise BundleValidationError(
                f"Expected '{IMGPKG_DIR}' directory, to be a direct child of one of: "
                f"{', '.join(str(p) for p in self.paths)}; was {found.path}"
            )

    def images_lock(self) -> ImagesLock | None:
        """The ImagesLock shipped in the bundle's .imgpkg dir, if any."""
        for root in self.paths:
            path = root / IMGPKG_DIR / IMAGES_LOCK_FILE
            if path.is_file():
                return parse_images_lock(path)
        return None

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # PACKING
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    def pack(self, is_bundle: bool) -> Layer:
        """Validate, then serialize all inputs into one gzip'd tar layer."""
        self.validate(is_bundle)

        entries: dict[str, Entry] = {}
        for entry in self.entries():
            # a directory may appear under several roots; keep one
            entries.setdefault(entry.rel, entry)

        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w", format=tarfile.PAX_FORMAT) as tar:
            for rel in sorted(entries):
                _add_entry(tar, entries[rel])
        tar_bytes = buf.getvalue()

        data = gzip.compress(tar_bytes, compresslevel=_GZIP_LEVEL, mtime=0)
        return Layer(data=data, diff_id=Digest.of(tar_bytes))


def _add_entry(tar: tarfile.TarFile, entry: Entry) -> None:
    info = tarfile.TarInfo(name=entry.rel)
    info.mtime = 0
    info.uid = info.gid = 0
    info.uname = info.gname = ""

    st = os.lstat(entry.path)
    if entry.is_dir:
        info.type = tarfile.DIRTYPE
        info.mode = 0o755
        tar.addfile(info)
    elif stat.S_ISLNK(st.st_mode):
        info.type = tarfile.SYMTYPE
        info.linkname = os.readlink(entry.path)
        info.mode = 0o777
        tar.addfile(info)
    else:
        info.type = tarfile.REGTYPE
        info.mode = 0o755 if st.st_mode & stat.S_IXUSR else 0o644
        info.size = st.st_size
        with open(entry.path, "rb") as f:
            tar.addfile(info, f)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# UNPACKING
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
def unpack_layer(data: bytes, dest_dir: str | Path) -> list[str]:
    """Extract a layer into dest_dir.

    Returns:
        Relative paths of the extracted files
    """
    dest_dir = Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)

    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as tar:
            files = [m.name for m in tar.getmembers() if not m.isdir()]
            tar.extractall(dest_dir, filter="data")
    except tarfile.TarError as e:
        raise ConsistencyError(f"Layer is not a valid tar archive: {e}") from e

    return sorted(_normalize_member(name) for name in files)


def images_lock_from_layer(data: bytes) -> ImagesLock | None:
    """Read .imgpkg/images.yml straight out of a bundle layer."""
    wanted = f"{IMGPKG_DIR}/{IMAGES_LOCK_FILE}"
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as tar:
            for member in tar:
                if member.isfile() and _normalize_member(member.name) == wanted:
                    f = tar.extractfile(member)
                    return images_lock_from_yaml(f.read(), source=wanted)
    except tarfile.TarError as e:
        raise ConsistencyError(f"Layer is not a valid tar archive: {e}") from e
    return None


def _normalize_member(name: str) -> str:
    return name[2:] if name.startswith("./") else name
