"""File discovery — walk base paths and apply include/exclude globs."""

from __future__ import annotations

import fnmatch
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from trove.config import IndexingConfig

logger = logging.getLogger(__name__)


def match_any(rel_path: str, patterns: tuple[str, ...]) -> bool:
    """Whether the POSIX relative path matches any glob.

    ``fnmatch`` lets ``*`` cross directory separators, so ``**/*.md`` also
    needs its leading ``**/`` dropped to match files at the root.
    """
    for pattern in patterns:
        if fnmatch.fnmatch(rel_path, pattern):
            return True
        if pattern.startswith("**/") and fnmatch.fnmatch(rel_path, pattern[3:]):
            return True
    return False


def discover_files(config: IndexingConfig) -> list[Path]:
    """Files under ``config.base_paths`` that pass the globs and size cap.

    Returns resolved, de-duplicated paths in sorted order.  A missing base
    path is skipped with a warning.
    """
    found: set[Path] = set()
    for base in config.base_paths:
        root = Path(base).resolve()
        if not root.exists():
            logger.warning("Base path %s does not exist; skipping", root)
            continue
        if root.is_file():
            found.add(root)
            continue

        for dirpath, dirnames, filenames in os.walk(root):
            current = Path(dirpath)
            # Prune excluded directories before descending into them.
            dirnames[:] = [
                d
                for d in dirnames
                if not match_any((current / d).relative_to(root).as_posix() + "/", config.exclude_patterns)
            ]
            for name in filenames:
                path = current / name
                rel = path.relative_to(root).as_posix()
                if match_any(rel, config.exclude_patterns):
                    continue
                if not match_any(rel, config.include_patterns):
                    continue
                try:
                    size = path.stat().st_size
                except OSError as exc:
                    logger.warning("Cannot stat %s: %s", path, exc)
                    continue
                if size > config.max_file_size:
                    logger.debug("Skipping %s (%d bytes exceeds limit)", path, size)
                    continue
                found.add(path)

    return sorted(found)
