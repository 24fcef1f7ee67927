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

"""Path helpers for the virtual file tree.

Paths arrive either as POSIX-style relative paths (``src/app.ts``), rooted
paths (``/src/app.ts``) or ``file:///`` URIs. All of them normalize to the same
root-relative key, which is what the tree, the version table and the
boundary messages use.
"""

import posixpath
from typing import List

URI_PREFIX = "file:///"

# dirname() of a top-level file; means "the root, no traversal"
ROOT = "."


def strip_uri_prefix(path: str, prefix: str = URI_PREFIX) -> str:
    """Remove a leading ``file:///`` prefix if present."""
    if path.startswith(prefix):
        return path[len(prefix) :]
    return path


def normalize_path(path: str, prefix: str = URI_PREFIX) -> str:
    """Normalize a path or URI to a root-relative POSIX key.

    Args:
        path: Path, rooted path or ``file:///`` URI
        prefix: URI prefix to strip

    Returns:
        Root-relative path without leading slash; ``""`` for the root
    """
    path = strip_uri_prefix(path, prefix).replace("\\", "/")
    if not path:
        return ""
    normalized = posixpath.normpath(path).lstrip("/")
    # normpath keeps leading ".." on relative paths; they cannot escape the root
    parts = [part for part in normalized.split("/") if part not in ("", ".", "..")]
    return "/".join(parts)


def dirname(path: str) -> str:
    """Directory part of a normalized path, ``"."`` for top-level entries."""
    head = posixpath.dirname(path)
    return head or ROOT


def basename(path: str) -> str:
    return posixpath.basename(path)


def extname(path: str) -> str:
    """Extension of the last segment including the dot, ``""`` if none.

    Leading dots do not start an extension (``.eslintrc`` has none).
    """
    return posixpath.splitext(basename(path))[1]


def split_segments(dir_path: str) -> List[str]:
    """Split a normalized directory path into folder segments.

    ``""`` and ``"."`` are the root and produce no segments.
    """
    if dir_path in ("", ROOT):
        return []
    return dir_path.split("/")


def join_path(*parts: str) -> str:
    return "/".join(part for part in parts if part and part != ROOT)
