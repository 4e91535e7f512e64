"""
Archive builder.

Walks a directory tree and writes one zip archive containing the files
selected by a packaging format and a set of exclusion patterns.
"""

from __future__ import annotations

import fnmatch
import os
import zipfile
from pathlib import Path, PurePosixPath
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple, Union

from ..exceptions import ArchiveError, ValidationError
from ..models.models import ArchiveFormat, ArchiveReport, ArchiveRequest
from ..utils.logger_config import get_logger

logger = get_logger("archive")

COMPRESSION_PRESETS: Dict[str, int] = {
    "store": 0,
    "fastest": 1,
    "normal": 6,
    "best": 9,
}

DEFAULT_EXCLUSIONS: Tuple[str, ...] = (
    # version control
    ".git",
    ".hg",
    ".svn",
    ".bzr",
    # OS metadata
    ".DS_Store",
    "Thumbs.db",
    "desktop.ini",
    # dependencies and build output
    "node_modules",
    "target",
    "__pycache__",
    ".venv",
    "venv",
    "dist",
    "build",
    "*.egg-info",
    ".pytest_cache",
    ".mypy_cache",
    "*.pyc",
    # secrets
    ".env",
    ".env.*",
    # earlier archives
    "*.zip",
)

PY_SOURCE_SUFFIXES = frozenset({".py", ".pyi", ".pyx", ".pxd", ".ipynb"})

PY_MANIFEST_PATTERNS: Tuple[str, ...] = (
    "requirements*.txt",
    "pyproject.toml",
    "setup.py",
    "setup.cfg",
    "Pipfile",
    "Pipfile.lock",
    "poetry.lock",
    "environment.yml",
    "tox.ini",
    "MANIFEST.in",
)

PathLike = Union[str, os.PathLike]


def parse_compression_level(value: Union[int, str, None]) -> int:
    """
    Validate a compression level.

    Accepts an integer in [0, 9], its string form, or one of the named
    presets (store, fastest, normal, best).
    """
    if value is None:
        return COMPRESSION_PRESETS["normal"]
    if isinstance(value, bool):
        raise ValidationError(f"Invalid compression level: {value!r}")
    if isinstance(value, str):
        text = value.strip().lower()
        if text in COMPRESSION_PRESETS:
            return COMPRESSION_PRESETS[text]
        try:
            value = int(text)
        except ValueError:
            raise ValidationError(
                f"Invalid compression level '{value}' (expected 0-9 or one of: {', '.join(COMPRESSION_PRESETS)})"
            ) from None
    if not isinstance(value, int) or not 0 <= value <= 9:
        raise ValidationError(f"Compression level must be between 0 and 9, got {value!r}")
    return value


def parse_exclusions(patterns: Optional[Iterable[str]]) -> Tuple[str, ...]:
    """Normalise caller exclusion patterns; every entry must be a string"""
    result: List[str] = []
    for pattern in patterns or ():
        if not isinstance(pattern, str):
            raise ValidationError(f"Exclusion patterns must be strings, got {pattern!r}")
        pattern = pattern.strip().rstrip("/")
        if pattern:
            result.append(pattern)
    return tuple(result)


def find_repo_root(start: Optional[PathLike] = None) -> Optional[Path]:
    """Return the closest directory at or above ``start`` containing ``.git``"""
    current = Path(start or os.getcwd()).resolve()
    for candidate in (current, *current.parents):
        if (candidate / ".git").exists():
            return candidate
    return None


class ArchiveBuilder:
    """Selects files under a root directory and writes them to a zip archive"""

    def __init__(
        self,
        archive_format: Union[ArchiveFormat, str],
        exclusions: Iterable[str] = (),
        compression_level: Union[int, str, None] = 6,
    ):
        """
        Args:
            archive_format: Packaging policy, ``repo`` or ``py``
            exclusions: Extra glob patterns added to DEFAULT_EXCLUSIONS
            compression_level: 0 (store) to 9 (best), or a named preset

        Raises:
            ValidationError: For an unknown format, an out-of-range level or a
                non-string exclusion pattern.
                Nothing on disk is touched before these checks.
        """
        self.format = ArchiveFormat.parse(archive_format)
        self.compression_level = parse_compression_level(compression_level)
        self.exclusions: Tuple[str, ...] = DEFAULT_EXCLUSIONS + parse_exclusions(exclusions)

    @classmethod
    def from_request(cls, request: ArchiveRequest) -> "ArchiveBuilder":
        return cls(request.format, request.exclusions, request.compression_level)

    def is_excluded(self, relative_path: str) -> bool:
        """True when the path or any of its components matches an exclusion"""
        path = PurePosixPath(relative_path)
        full = path.as_posix()
        for pattern in self.exclusions:
            if "/" in pattern:
                if fnmatch.fnmatchcase(full, pattern) or fnmatch.fnmatchcase(full, pattern + "/*"):
                    return True
                continue
            if any(fnmatch.fnmatchcase(part, pattern) for part in path.parts):
                return True
        return False

    def matches_format(self, relative_path: str) -> bool:
        if self.format is ArchiveFormat.REPO:
            return True
        path = PurePosixPath(relative_path)
        if path.suffix.lower() in PY_SOURCE_SUFFIXES:
            return True
        return any(fnmatch.fnmatchcase(path.name, pattern) for pattern in PY_MANIFEST_PATTERNS)

    def includes(self, relative_path: str) -> bool:
        """Inclusion predicate for a file path relative to the archive root"""
        return not self.is_excluded(relative_path) and self.matches_format(relative_path)

    def iter_files(self, root: PathLike, skipped: Optional[List[Tuple[str, str]]] = None) -> Iterator[Tuple[Path, str]]:
        """
        Yield (absolute path, relative posix path) for every included file.

        Directory symlinks pointing outside the root are followed; links to a
        directory inside the root are not, since its files are archived under
        their real path. A directory that is already one of the current
        ancestors, keyed by (st_dev, st_ino), ends a link cycle with a warning.
        Entries that cannot be listed or stat'ed are appended to ``skipped``.
        """
        root_path = Path(root)
        self._check_root(root_path)
        if skipped is None:
            skipped = []

        root_real = root_path.resolve()
        root_stat = root_path.stat()
        stack: List[Tuple[Path, PurePosixPath, FrozenSet[Tuple[int, int]]]] = [
            (root_path, PurePosixPath(), frozenset({(root_stat.st_dev, root_stat.st_ino)}))
        ]

        while stack:
            directory, rel_dir, ancestors = stack.pop()
            try:
                with os.scandir(directory) as it:
                    entries = sorted(it, key=lambda e: e.name)
            except OSError as e:
                if directory == root_path:
                    raise ArchiveError(f"Cannot read root directory {root_path}: {e}", path=str(root_path)) from e
                logger.warning(f"Skipping unreadable directory {rel_dir}: {e}")
                skipped.append((rel_dir.as_posix(), str(e)))
                continue

            subdirs: List[Tuple[Path, PurePosixPath, FrozenSet[Tuple[int, int]]]] = []
            for entry in entries:
                rel = rel_dir / entry.name
                rel_text = rel.as_posix()
                if self.is_excluded(rel_text):
                    continue
                try:
                    is_dir = entry.is_dir(follow_symlinks=True)
                    is_file = not is_dir and entry.is_file(follow_symlinks=True)
                except OSError as e:
                    logger.warning(f"Skipping {rel_text}: {e}")
                    skipped.append((rel_text, str(e)))
                    continue

                if is_dir:
                    try:
                        st = entry.stat(follow_symlinks=True)
                        target = Path(entry.path).resolve() if entry.is_symlink() else None
                    except (OSError, RuntimeError) as e:
                        logger.warning(f"Skipping directory {rel_text}: {e}")
                        skipped.append((rel_text, str(e)))
                        continue
                    if target is not None and (target == root_real or root_real in target.parents):
                        logger.info(f"Not following {rel_text}: links to a directory inside the archive root")
                        continue
                    key = (st.st_dev, st.st_ino)
                    if key in ancestors:
                        logger.warning(f"Skipping {rel_text}: symlink cycle back to an enclosing directory")
                        continue
                    subdirs.append((Path(entry.path), rel, ancestors | {key}))
                elif is_file:
                    if self.matches_format(rel_text):
                        yield Path(entry.path), rel_text
                elif entry.is_symlink():
                    logger.warning(f"Skipping dangling symlink {rel_text}")
                    skipped.append((rel_text, "dangling symlink"))

            # Reverse so directories are processed in name order
            stack.extend(reversed(subdirs))

    def build(self, root: PathLike, destination: PathLike) -> ArchiveReport:
        """
        Write the archive for ``root`` to ``destination``.

        Returns:
            ArchiveReport listing archived and skipped files

        Raises:
            ArchiveError: If the root is missing or unreadable, or the
                destination cannot be written
        """
        root_path = Path(root)
        dest_path = Path(destination)
        self._check_root(root_path)

        report = ArchiveReport(path=str(dest_path))
        compression = zipfile.ZIP_STORED if self.compression_level == 0 else zipfile.ZIP_DEFLATED
        logger.info(
            f"Building {self.format.value} archive of {root_path} (compression level {self.compression_level})"
        )

        dest_resolved = dest_path.resolve()
        try:
            with zipfile.ZipFile(
                dest_path, "w", compression=compression, compresslevel=self.compression_level or None
            ) as zf:
                for abs_path, rel in self.iter_files(root_path, report.skipped):
                    if abs_path.resolve() == dest_resolved:
                        continue
                    try:
                        zf.write(abs_path, rel)
                    except OSError as e:
                        logger.warning(f"Skipping {rel}: {e}")
                        report.skipped.append((rel, str(e)))
                        continue
                    report.files.append(rel)
        except ArchiveError:
            self._discard(dest_path)
            raise
        except (OSError, zipfile.BadZipFile) as e:
            self._discard(dest_path)
            raise ArchiveError(f"Failed to write archive {dest_path}: {e}", path=str(dest_path)) from e

        report.size_bytes = dest_path.stat().st_size
        logger.info(
            f"Archived {report.file_count} files ({report.size_bytes} bytes), skipped {len(report.skipped)}"
        )
        return report

    @staticmethod
    def _check_root(root_path: Path) -> None:
        if not root_path.exists():
            raise ArchiveError(f"Directory not found: {root_path}", path=str(root_path))
        if not root_path.is_dir():
            raise ArchiveError(f"Not a directory: {root_path}", path=str(root_path))
        if not os.access(root_path, os.R_OK | os.X_OK):
            raise ArchiveError(f"Directory is not readable: {root_path}", path=str(root_path))

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove partial archive {path}: {e}")


def build_archive(
    root: PathLike,
    archive_format: Union[ArchiveFormat, str],
    destination: PathLike,
    exclusions: Iterable[str] = (),
    compression_level: Union[int, str, None] = 6,
) -> ArchiveReport:
    """Validate parameters, then build one archive"""
    builder = ArchiveBuilder(archive_format, exclusions, compression_level)
    return builder.build(root, destination)
