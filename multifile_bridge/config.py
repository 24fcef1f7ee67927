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

"""Engine mode configuration and bridge settings.

Defines the analysis engine modes the bridge knows about and the tunables of
the serialization and validation layers. Settings can be loaded from YAML.
"""

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from multifile_bridge import paths

logger = logging.getLogger(__name__)


@dataclass
class EngineModeConfig:
    """Configuration for one analysis engine mode."""

    name: str  # Human-readable name
    mode_id: str  # Identifier used to select the engine
    file_extensions: List[str]  # Extensions routed to this engine


# Pre-configured engine modes
ENGINE_MODES: Dict[str, EngineModeConfig] = {
    "typescript": EngineModeConfig(
        name="TypeScript",
        mode_id="typescript",
        file_extensions=[".ts", ".tsx"],
    ),
    "javascript": EngineModeConfig(
        name="JavaScript",
        mode_id="javascript",
        file_extensions=[".js", ".jsx", ".mjs", ".cjs"],
    ),
}


def get_mode_for_file(
    file_path: str, modes: Optional[Dict[str, EngineModeConfig]] = None
) -> Optional[EngineModeConfig]:
    """Get the engine mode handling a file, by extension.

    Args:
        file_path: Path or URI of the file
        modes: Mode table to search (defaults to ENGINE_MODES)

    Returns:
        EngineModeConfig if a mode handles the extension
    """
    ext = paths.extname(paths.normalize_path(file_path)).lower()
    for config in (modes if modes is not None else ENGINE_MODES).values():
        if ext in config.file_extensions:
            return config
    return None


@dataclass
class BridgeSettings:
    """Tunables for the multi-file bridge."""

    uri_prefix: str = paths.URI_PREFIX
    validation_delay: float = 0.5  # Seconds to debounce re-validation
    queue_size: int = 0  # Max queued operations per engine, 0 = unbounded
    no_syntax_validation: bool = False
    no_semantic_validation: bool = False
    extra_lib_name: str = "extra-lib.d.ts"  # Pseudo-file exposing a project's extra lib
    skip_dirs: List[str] = field(default_factory=list)  # Extra dirs ignored on disk

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BridgeSettings":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown bridge settings: {sorted(unknown)}")
        return cls(**{key: value for key, value in data.items() if key in known})

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def load_settings(path: Union[str, Path]) -> BridgeSettings:
    """Load bridge settings from a YAML file.

    Args:
        path: Path to YAML file

    Expected format:
    ```yaml
    bridge:
      validation_delay: 0.25
      no_semantic_validation: true
      skip_dirs: [generated]
    ```

    Returns:
        Loaded settings, or defaults if the file cannot be read
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except Exception as e:
        logger.error(f"Failed to load bridge settings from {path}: {e}")
        return BridgeSettings()

    section = data.get("bridge", data) if isinstance(data, dict) else {}
    if not isinstance(section, dict):
        logger.error(f"Invalid bridge settings in {path}: expected a mapping")
        return BridgeSettings()
    return BridgeSettings.from_dict(section)


def export_settings(settings: BridgeSettings, path: Union[str, Path]) -> None:
    with open(path, "w") as f:
        yaml.dump({"bridge": settings.to_dict()}, f, default_flow_style=False)
