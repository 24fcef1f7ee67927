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

"""Exception hierarchy for the multi-file bridge.

Structural errors (``NotFoundError``, ``ParentMissingError``, ``DisposedError``)
are usage errors and are raised before any state is touched.
``BackingStoreError`` wraps failures of the host-side file source.
"""

from typing import Any, Dict, Optional


class BridgeError(Exception):
    """Base class for all bridge errors.

    Attributes:
        error_code: Stable code for programmatic handling
        context: Extra information about the failure (paths, project ids)
    """

    def __init__(
        self,
        message: str,
        error_code: str = "BRIDGE_ERROR",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": str(self),
            "context": self.context,
        }


class NotFoundError(BridgeError):
    """A file, directory or project does not exist."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs: Any):
        context = kwargs.pop("context", None) or {}
        if path is not None:
            context["path"] = path
        super().__init__(message, error_code="NOT_FOUND", context=context)
        self.path = path


class ParentMissingError(BridgeError):
    """Non-recursive directory creation through a missing intermediate."""

    def __init__(self, path: str, missing: str):
        super().__init__(
            f"Could not create directory: {path}. The parent directory does not exist",
            error_code="PARENT_MISSING",
            context={"path": path, "missing": missing},
        )
        self.path = path
        self.missing = missing


class DisposedError(BridgeError):
    """Operation attempted on a disposed project."""

    def __init__(self, project_id: str):
        super().__init__(
            f"The project {project_id} was disposed.",
            error_code="DISPOSED",
            context={"project_id": project_id},
        )
        self.project_id = project_id


class BackingStoreError(BridgeError):
    """The backing store could not provide a file."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(
            message,
            error_code="BACKING_STORE_FAILURE",
            context={"path": path} if path is not None else None,
        )
        self.path = path
