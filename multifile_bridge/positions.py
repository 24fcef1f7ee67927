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

"""Offset <-> line/column conversion over plain file content.

Lines are separated by ``\n`` only. Positions are 1-based. Offsets beyond the
end of the content clamp to the end; the clamping is one-directional, so the
two functions are only inverses for offsets inside the content.
"""

from typing import Optional

from multifile_bridge.types import Position, Range, TextSpan


def offset_to_position(content: Optional[str], offset: int) -> Position:
    """Convert a character offset to a 1-based position.

    Args:
        content: File content; empty or missing content maps everything to (1, 1)
        offset: 0-based character offset

    Returns:
        Position of the character at ``offset``
    """
    if not content:
        return Position(1, 1)
    offset = max(0, min(offset, len(content)))
    line = content.count("\n", 0, offset) + 1
    preceding_newline = content.rfind("\n", 0, offset)
    # rfind gives -1 with no preceding newline, so the column is offset + 1
    return Position(line, offset - preceding_newline)


def position_to_offset(content: Optional[str], position: Position) -> int:
    """Convert a 1-based position to a character offset.

    Lines past the last one clamp to the end of the content, as do columns
    past the end of the last line.
    """
    if not content:
        return 0
    lines = content.split("\n")
    if position.line > len(lines):
        return len(content)
    offset = 0
    for line in lines[: max(position.line, 1) - 1]:
        offset += len(line) + 1
    offset += max(position.column, 1) - 1
    return min(offset, len(content))


def span_to_range(content: Optional[str], span: TextSpan) -> Range:
    return Range(
        start=offset_to_position(content, span.start),
        end=offset_to_position(content, span.end),
    )
