"""Cross-invocation state: last observed size and the queued update alert.

Both files are read-then-overwritten without locking; only one agent
invocation is expected to run at a time.
"""

import json
import logging
import os
import tempfile

from logsentry.core.models import UpdateState

logger = logging.getLogger(__name__)


def atomic_write(path: str, text: str, mode: int | None = None):
    """Write text to path so it is either fully replaced or left untouched.

    The data is fsynced before the rename, so it is durable when this
    returns.
    """
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.tmp-')
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


class SizeHistoryStore:
    """Single-slot store for the last sampled directory size."""

    def __init__(self, path: str):
        self.path = path

    def load(self) -> int:
        """Previous size in bytes; 0 when absent or unreadable."""
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                value = int(f.read().strip())
        except FileNotFoundError:
            return 0
        except (OSError, ValueError) as e:
            logger.warning("Unreadable size record %s: %s", self.path, e)
            return 0
        if value < 0:
            logger.warning("Negative size record %d in %s, ignoring", value, self.path)
            return 0
        return value

    def save(self, size_bytes: int):
        atomic_write(self.path, f"{int(size_bytes)}\n")
        logger.debug("Saved size %d to %s", size_bytes, self.path)


class UpdateStateStore:
    """Persists the pending update alert across a self-replace.

    The alert is queued by the old process just before it execs the new
    executable, and consumed by the new process on its next daily run.
    """

    def __init__(self, path: str):
        self.path = path

    def load(self, running_version: str) -> UpdateState:
        return UpdateState(running_version=running_version,
                           pending_alert=self._read_pending())

    def _read_pending(self) -> str | None:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("Unreadable update state %s: %s", self.path, e)
            return None
        if isinstance(data, dict) and data.get('pending_alert'):
            return str(data['pending_alert'])
        return None

    def queue_alert(self, text: str):
        """Queue text after any alert still pending. Raises OSError."""
        earlier = self._read_pending()
        if earlier:
            text = f"{earlier}\n\n{text}"
        atomic_write(self.path, json.dumps({'pending_alert': text}, indent=2))
        logger.info("Queued update alert for next daily run")

    def consume(self, running_version: str) -> UpdateState:
        """Return the current state and clear the queued alert."""
        state = self.load(running_version)
        if os.path.exists(self.path):
            try:
                os.remove(self.path)
            except OSError as e:
                logger.warning("Failed to clear update state %s: %s", self.path, e)
        return state
