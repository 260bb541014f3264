"""Log directory maintenance: purge, excerpt extraction, gzip compression."""

import fnmatch
import gzip
import logging
import os
import shutil
import time
from collections import deque

logger = logging.getLogger(__name__)

# Lines containing any of these markers are not worth mailing
NOISE_MARKERS = ('INFO', 'NOTICE')

ROTATABLE_PATTERNS = ('access.log*', 'error.log*', 'stderr.log*')


class LogStore:
    """Operates on the dated logs inside one web-server log directory."""

    def __init__(self, log_dir: str, excerpt_lines: int = 75):
        self.log_dir = log_dir
        self.excerpt_lines = excerpt_lines

    def _files(self):
        for root, _dirs, files in os.walk(self.log_dir):
            for name in files:
                yield os.path.join(root, name)

    # ── Purge ────────────────────────────────────────────────────────

    def purge_compressed(self, max_age_days: int = 1, now: float | None = None) -> list[str]:
        """Delete .gz files older than max_age_days. Returns removed paths."""
        cutoff = (now if now is not None else time.time()) - max_age_days * 86400
        removed = []
        for path in self._files():
            if not path.endswith('.gz'):
                continue
            try:
                if os.path.getmtime(path) < cutoff:
                    os.remove(path)
                    removed.append(path)
            except OSError as e:
                logger.warning("Failed to purge %s: %s", path, e)
        if removed:
            logger.info("Purged %d expired compressed logs", len(removed))
        return removed

    # ── Excerpts ─────────────────────────────────────────────────────

    def excerpt(self, path: str) -> str:
        """Last N lines of path that are not INFO/NOTICE noise."""
        tail = deque(maxlen=self.excerpt_lines)
        with open(path, 'r', encoding='utf-8', errors='replace') as f:
            for line in f:
                if not any(marker in line for marker in NOISE_MARKERS):
                    tail.append(line.rstrip('\n'))
        return "\n".join(tail)

    def latest_error_log(self) -> str | None:
        """Most recently modified uncompressed error.log* file."""
        candidates = []
        for path in self._files():
            name = os.path.basename(path)
            if fnmatch.fnmatch(name, 'error.log*') and not name.endswith('.gz'):
                try:
                    candidates.append((os.path.getmtime(path), path))
                except OSError:
                    continue
        if not candidates:
            return None
        return max(candidates)[1]

    def stderr_excerpt(self) -> str:
        path = os.path.join(self.log_dir, 'stderr.log')
        if not os.path.isfile(path):
            return "stderr.log not found."
        try:
            return self.excerpt(path)
        except OSError as e:
            logger.warning("Failed to read %s: %s", path, e)
            return f"stderr.log unreadable: {e}"

    def error_log_excerpt(self) -> str:
        path = self.latest_error_log()
        if path is None:
            return "No error.log found."
        try:
            return self.excerpt(path)
        except OSError as e:
            logger.warning("Failed to read %s: %s", path, e)
            return f"{os.path.basename(path)} unreadable: {e}"

    # ── Compression ──────────────────────────────────────────────────

    def compress_rotatable(self) -> list[str]:
        """gzip every uncompressed access/error/stderr log in place.

        Existing .gz targets are overwritten. Returns the created archives.
        """
        created = []
        for path in list(self._files()):
            name = os.path.basename(path)
            if name.endswith('.gz'):
                continue
            if not any(fnmatch.fnmatch(name, p) for p in ROTATABLE_PATTERNS):
                continue
            target = path + '.gz'
            try:
                with open(path, 'rb') as src, gzip.open(target, 'wb') as dst:
                    shutil.copyfileobj(src, dst)
                shutil.copystat(path, target)
                os.remove(path)
                created.append(target)
            except OSError as e:
                logger.error("Failed to compress %s: %s", path, e)
        logger.info("Compressed %d logs", len(created))
        return created
