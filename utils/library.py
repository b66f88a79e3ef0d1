# Copyright (C) 2026 grodz
#
# This file is part of Matinee.
#
# Matinee is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""Video library discovery."""

import os
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger


# Container formats the transport can play
VIDEO_EXTENSIONS = frozenset({'.mp4', '.mkv', '.avi', '.mov'})


def display_name_for(path: Path) -> str:
    """Filename without extension, spaces replaced by underscores."""
    return path.stem.replace(" ", "_")


@dataclass(frozen=True)
class MediaItem:
    """A playable video file. Identity is the path; the name is display-only."""
    display_name: str = field(compare=False)
    path: Path

    @classmethod
    def from_path(cls, path: Path) -> "MediaItem":
        return cls(display_name=display_name_for(path), path=path)


class MediaLibrary:
    """Recursive scan of the media folder.

    Directory structure is free-form:
        videos/
        ├── Intro Reel.mp4     -> "Intro_Reel"
        └── shows/
            ├── s01/
            │   └── ep1.mkv    -> "ep1"
            └── notes.txt      -> ignored

    Scanning behavior:
    - Every subdirectory is walked, at any depth
    - Files are kept when their extension (any case) is in VIDEO_EXTENSIONS
    - Symlinks are not followed
    - An unreadable directory raises; nothing is skipped silently

    The library is scanned once on startup and never changes afterwards.

    Attributes:
        media_path: Root directory to scan
        _items: Cached scan result (None until scan() is called)
    """

    def __init__(self, media_path: Path) -> None:
        self.media_path = media_path
        self._items: frozenset[MediaItem] | None = None

    def ensure_directory(self) -> None:
        """Create the media root if missing. Safe to call repeatedly."""
        self.media_path.mkdir(parents=True, exist_ok=True)

    def scan(self) -> frozenset[MediaItem]:
        """Scan the media root for videos and cache the result.

        Raises:
            OSError: If the root or any directory below it cannot be read
        """
        items = frozenset(MediaItem.from_path(path) for path in self._walk(self.media_path))
        self._items = items

        file_word = "video" if len(items) == 1 else "videos"
        logger.info(f"scanned {len(items)} {file_word} in {self.media_path}")
        return items

    def _walk(self, directory: Path):
        with os.scandir(directory) as entries:
            for entry in entries:
                if entry.is_dir(follow_symlinks=False):
                    yield from self._walk(Path(entry.path))
                elif entry.is_file(follow_symlinks=False):
                    if os.path.splitext(entry.name)[1].lower() in VIDEO_EXTENSIONS:
                        yield Path(entry.path)

    @property
    def items(self) -> frozenset[MediaItem]:
        """Cached scan result. Empty if scan() hasn't been called."""
        if self._items is None:
            return frozenset()
        return self._items

    def names(self) -> list[str]:
        """Display names, sorted case-insensitively for logging."""
        return sorted((item.display_name for item in self.items), key=str.casefold)

    def __len__(self) -> int:
        return len(self.items)
