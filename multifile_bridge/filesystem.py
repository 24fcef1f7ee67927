# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""In-memory virtual file tree for one project.

The tree answers filesystem-shaped queries (existence, listing, reading) the
same way a real filesystem would. File content may be ``None``, meaning the
file is known to exist but its content has not been loaded yet; reading such a
file reports it as not loaded so the caller can fetch it lazily.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from multifile_bridge import paths
from multifile_bridge.errors import NotFoundError, ParentMissingError

logger = logging.getLogger(__name__)


@dataclass
class Directory:
    """A node of the tree: files by leaf name, child directories by leaf name."""

    files: Dict[str, Optional[str]] = field(default_factory=dict)
    folders: Dict[str, "Directory"] = field(default_factory=dict)


@dataclass(frozen=True)
class FileReadResult:
    """Three-way result of reading a file.

    ``found`` is False when a parent or the file itself is missing.
    ``loaded`` is False when the file exists but holds the not-loaded sentinel.
    """

    found: bool
    loaded: bool = False
    content: Optional[str] = None

    @classmethod
    def not_found(cls) -> "FileReadResult":
        return cls(found=False)

    @classmethod
    def not_loaded(cls) -> "FileReadResult":
        return cls(found=True, loaded=False)

    @classmethod
    def with_content(cls, content: str) -> "FileReadResult":
        return cls(found=True, loaded=True, content=content)


class VirtualFileTree:
    """Hierarchical file store with per-file version tracking.

    Versions start at 0 and are bumped only when an existing file is
    overwritten; creating a file leaves it at 0. Engines compare versions to
    decide whether a cached snapshot is stale, so version 0 means "first seen".
    """

    def __init__(self, root: Optional[Directory] = None, uri_prefix: str = paths.URI_PREFIX):
        self.root = root if root is not None else Directory()
        self._uri_prefix = uri_prefix
        self._versions: Dict[str, int] = {}

    @classmethod
    def from_entries(
        cls,
        entries: Iterable[Tuple[str, Optional[str]]],
        uri_prefix: str = paths.URI_PREFIX,
    ) -> "VirtualFileTree":
        """Build a tree from ``(path, content)`` pairs; ``None`` content stays unloaded."""
        tree = cls(uri_prefix=uri_prefix)
        for path, content in entries:
            tree.write_file(path, content)
        return tree

    def _normalize(self, path: str) -> str:
        return paths.normalize_path(path, self._uri_prefix)

    def _walk(self, segments: List[str]) -> Optional[Directory]:
        """Resolve folder segments from the root; None on any missing segment."""
        node = self.root
        for segment in segments:
            child = node.folders.get(segment)
            if child is None:
                return None
            node = child
        return node

    def _parent_of(self, path: str) -> Tuple[Optional[Directory], str]:
        return self._walk(paths.split_segments(paths.dirname(path))), paths.basename(path)

    # Queries

    def exists(self, path: str) -> bool:
        """Check whether a file is registered at ``path``."""
        key = self._normalize(path)
        if not key:
            return False
        parent, name = self._parent_of(key)
        return parent is not None and name in parent.files

    def directory_exists(self, path: str) -> bool:
        """Check whether all folder segments of ``path`` resolve. The root always exists."""
        return self._walk(paths.split_segments(self._normalize(path))) is not None

    def read_file(self, path: str) -> FileReadResult:
        key = self._normalize(path)
        parent, name = self._parent_of(key)
        if parent is None or not key or name not in parent.files:
            return FileReadResult.not_found()
        content = parent.files[name]
        if content is None:
            return FileReadResult.not_loaded()
        return FileReadResult.with_content(content)

    def list_files(
        self,
        dir_path: str,
        extensions: Optional[Iterable[str]] = None,
        exclude: Optional[Iterable[str]] = None,
    ) -> List[str]:
        """List file names directly inside a directory.

        Args:
            dir_path: Directory to list (root for ``""`` or ``"."``)
            extensions: Extensions to keep, including the dot; None keeps all
            exclude: File names to leave out

        Returns:
            Leaf file names, non-recursive

        Raises:
            NotFoundError: If the directory does not exist
        """
        key = self._normalize(dir_path)
        node = self._walk(paths.split_segments(key))
        if node is None:
            raise NotFoundError(
                f"Could not read directory: {dir_path}. The directory does not exist.",
                path=key,
            )
        allowed = set(extensions) if extensions is not None else None
        excluded = set(exclude or ())
        return [
            name
            for name in node.files
            if (allowed is None or paths.extname(name) in allowed) and name not in excluded
        ]

    def list_subdirectories(self, dir_path: str) -> List[str]:
        key = self._normalize(dir_path)
        node = self._walk(paths.split_segments(key))
        if node is None:
            raise NotFoundError(
                f"Could not get directories inside: {dir_path}. The directory does not exist.",
                path=key,
            )
        return list(node.folders)

    def get_version(self, path: str) -> int:
        return self._versions.get(self._normalize(path), 0)

    def iter_files(self) -> Iterator[Tuple[str, Optional[str]]]:
        """Yield ``(path, content)`` for every file, depth first."""
        stack: List[Tuple[str, Directory]] = [("", self.root)]
        while stack:
            prefix, node = stack.pop()
            for name, content in node.files.items():
                yield paths.join_path(prefix, name), content
            for name, child in node.folders.items():
                stack.append((paths.join_path(prefix, name), child))

    # Mutations

    def mk_dir(self, path: str, recursive: bool = False) -> None:
        """Create a directory.

        Raises:
            ParentMissingError: If ``recursive`` is False and an intermediate
                directory is missing. Nothing is created in that case.
        """
        segments = paths.split_segments(self._normalize(path))
        if not segments:
            return
        if not recursive:
            parent = self._walk(segments[:-1])
            if parent is None:
                missing = self._first_missing(segments[:-1])
                raise ParentMissingError(self._normalize(path), missing)
            parent.folders.setdefault(segments[-1], Directory())
            return
        node = self.root
        for segment in segments:
            node = node.folders.setdefault(segment, Directory())

    def _first_missing(self, segments: List[str]) -> str:
        node = self.root
        for index, segment in enumerate(segments):
            if segment not in node.folders:
                return "/".join(segments[: index + 1])
            node = node.folders[segment]
        return ""

    def rm_dir(self, path: str) -> None:
        """Remove a directory and everything beneath it; no-op if absent."""
        key = self._normalize(path)
        segments = paths.split_segments(key)
        if not segments:
            return
        parent = self._walk(segments[:-1])
        if parent is None or segments[-1] not in parent.folders:
            logger.debug(f"rm_dir: {key} does not exist")
            return
        del parent.folders[segments[-1]]
        prefix = key + "/"
        for versioned in [p for p in self._versions if p.startswith(prefix)]:
            del self._versions[versioned]

    def write_file(self, path: str, content: Optional[str]) -> None:
        """Create or overwrite a file, creating missing parent directories.

        Overwriting an existing entry bumps its version; first creation does not.
        """
        key = self._normalize(path)
        if not key:
            raise NotFoundError("Cannot write a file at the root path", path=path)
        node = self.root
        for segment in paths.split_segments(paths.dirname(key)):
            node = node.folders.setdefault(segment, Directory())
        name = paths.basename(key)
        existed = name in node.files
        node.files[name] = content
        if existed:
            self._versions[key] = self._versions.get(key, 0) + 1

    def remove_file(self, path: str) -> None:
        """Delete a file and its version record.

        Raises:
            NotFoundError: If a parent directory or the file is missing
        """
        key = self._normalize(path)
        parent, name = self._parent_of(key)
        if parent is None or not key or name not in parent.files:
            raise NotFoundError(
                f"Could not remove file: {path}. The file does not exist.", path=key
            )
        del parent.files[name]
        self._versions.pop(key, None)
