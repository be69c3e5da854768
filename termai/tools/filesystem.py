"""File-system collaborator used by the tool dispatcher."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from config.settings import settings

logger = logging.getLogger(__name__)


class FileSystemError(Exception):
    """A file operation failed (missing path, permission, outside root...)."""


@dataclass
class FileEntry:
    """A directory listing entry."""

    name: str
    is_directory: bool
    size: int = 0


class FileSystem(Protocol):
    """Operations the tool dispatcher needs from a file system."""

    def read(self, path: str) -> str: ...

    def write(self, path: str, content: str) -> None: ...

    def list(self, path: str) -> list[FileEntry]: ...

    def mkdir(self, path: str) -> None: ...


class LocalFileSystem:
    """
    File system rooted at a project directory.

    Relative paths resolve against the root, and any path that escapes the
    root is rejected.
    """

    def __init__(self, root: Path | None = None) -> None:
        """
        Initialize the file system.

        Args:
            root: Directory all paths are confined to (defaults to settings.project_root)
        """
        self._root = (root or settings.project_root).expanduser().resolve()

    @property
    def root(self) -> Path:
        return self._root

    def _resolve(self, path: str) -> Path:
        if not path or not path.strip():
            raise FileSystemError("Path is empty")

        target = Path(path.strip()).expanduser()
        if not target.is_absolute():
            target = self._root / target
        target = target.resolve()

        if target != self._root and self._root not in target.parents:
            raise FileSystemError(f"Path outside project root: {target}")
        return target

    def read(self, path: str) -> str:
        target = self._resolve(path)
        try:
            with target.open("r", encoding="utf-8") as handle:
                lines = handle.readlines()
        except FileNotFoundError:
            raise FileSystemError(f"File not found: {path}")
        except IsADirectoryError:
            raise FileSystemError(f"Is a directory: {path}")
        except PermissionError:
            raise FileSystemError(f"Permission denied: {path}")
        except UnicodeDecodeError:
            raise FileSystemError(f"Not a text file: {path}")
        except OSError as e:
            raise FileSystemError(f"Cannot read {path}: {e.strerror or e}") from e

        max_lines = settings.file_read_max_lines
        if len(lines) > max_lines:
            return "".join(lines[:max_lines]) + f"\n... ({len(lines) - max_lines} more lines)"
        return "".join(lines)

    def write(self, path: str, content: str) -> None:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("w", encoding="utf-8") as handle:
                handle.write(content)
        except PermissionError:
            raise FileSystemError(f"Permission denied: {path}")
        except IsADirectoryError:
            raise FileSystemError(f"Is a directory: {path}")
        except (FileExistsError, NotADirectoryError):
            raise FileSystemError(f"A parent of {path} is not a directory")
        except OSError as e:
            raise FileSystemError(f"Cannot write {path}: {e.strerror or e}") from e
        logger.info(f"Wrote {len(content)} chars to {target}")

    def list(self, path: str) -> list[FileEntry]:
        target = self._resolve(path)
        try:
            names = sorted(os.listdir(target))
        except FileNotFoundError:
            raise FileSystemError(f"Directory not found: {path}")
        except NotADirectoryError:
            raise FileSystemError(f"Not a directory: {path}")
        except PermissionError:
            raise FileSystemError(f"Permission denied: {path}")
        except OSError as e:
            raise FileSystemError(f"Cannot list {path}: {e.strerror or e}") from e

        entries = []
        for name in names:
            full_path = target / name
            try:
                if full_path.is_dir():
                    entries.append(FileEntry(name=name, is_directory=True))
                else:
                    size = full_path.stat().st_size if full_path.exists() else 0
                    entries.append(FileEntry(name=name, is_directory=False, size=size))
            except OSError as e:
                raise FileSystemError(f"Cannot stat {path}/{name}: {e.strerror or e}") from e
        return entries

    def mkdir(self, path: str) -> None:
        target = self._resolve(path)
        try:
            target.mkdir(parents=True, exist_ok=True)
        except FileExistsError:
            raise FileSystemError(f"A file already exists at: {path}")
        except NotADirectoryError:
            raise FileSystemError(f"A parent of {path} is not a directory")
        except PermissionError:
            raise FileSystemError(f"Permission denied: {path}")
        except OSError as e:
            raise FileSystemError(f"Cannot create {path}: {e.strerror or e}") from e
