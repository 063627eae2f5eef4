"""
Scanner - Directory traversal with exclusion rules.

Uses os.scandir (cached DirEntry stat) and yields files as they are found
so the orchestrator can start extracting before the walk finishes.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import AsyncGenerator

from .config import IndexerConfig, get_config
from .errors import handle_error


logger = logging.getLogger(__name__)


class Scanner:
    """
    Recursive file walker.

    Prunes hidden entries, excluded directory names and bundle-like
    directories (.app, .framework, ...). Symlinks are not followed.
    """

    def __init__(self, config: IndexerConfig | None = None):
        self.config = config or get_config()

    async def walk(self, root: Path) -> AsyncGenerator[Path, None]:
        root = Path(root)
        if not root.is_dir():
            logger.warning(f"Root directory not found: {root}")
            return

        async for path in self._scan_directory(root):
            yield path

    async def _scan_directory(self, directory: Path) -> AsyncGenerator[Path, None]:
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            handle_error(e, directory, "scan_directory")
            return

        subdirs = []
        for entry in entries:
            try:
                if entry.is_dir(follow_symlinks=False):
                    if not self.should_skip_dir(entry.name):
                        subdirs.append(Path(entry.path))
                elif entry.is_file(follow_symlinks=False):
                    if not self.should_skip_file(entry.name):
                        yield Path(entry.path)
            except OSError as e:
                handle_error(e, Path(entry.path), "scan_entry")

        # Give other tasks a turn between directories
        await asyncio.sleep(0)

        for subdir in subdirs:
            async for path in self._scan_directory(subdir):
                yield path

    def should_skip_dir(self, name: str) -> bool:
        if name.startswith("."):
            return True
        if name in self.config.excluded_dirs:
            return True
        return name.endswith(self.config.excluded_suffixes)

    def should_skip_file(self, name: str) -> bool:
        return name.startswith(".")

    def is_excluded(self, path: Path, root: Path | None = None) -> bool:
        """True when walk(root) would never yield path (hidden, or under a pruned directory)."""
        path = Path(path)
        if self.should_skip_file(path.name):
            return True
        parent = path.parent
        if root is not None:
            try:
                parent = parent.relative_to(root)
            except ValueError:
                pass
        return any(self.should_skip_dir(part) for part in parent.parts if part != parent.anchor)
