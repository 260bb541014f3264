"""Host sampling: directory size, partitions, identity, uptime.

Sampling failures are logged and degrade to zero/empty values; a
monitoring agent must not crash on a transient stat failure.
"""

import datetime
import http.client
import logging
import os
import socket
import stat
import time
from urllib.request import Request, urlopen
from urllib.error import URLError

import psutil

from logsentry.branding import AgentBranding
from logsentry.core.errors import ProbeError
from logsentry.core.growth import format_size
from logsentry.core.models import PartitionSample

logger = logging.getLogger(__name__)

PUBLIC_IP_URL = "http://checkip.amazonaws.com"


class SystemProbe:
    """Reads host state using psutil + os."""

    def __init__(self, public_ip_url: str = PUBLIC_IP_URL, timeout: int = 10):
        self.public_ip_url = public_ip_url
        self.timeout = timeout

    # ── Identity ─────────────────────────────────────────────────────

    def hostname(self) -> str:
        """Fully qualified host name, or '' if unknown."""
        try:
            return socket.getfqdn().strip()
        except OSError as e:
            logger.warning("Hostname lookup failed: %s", e)
            return ""

    def public_ip(self) -> str:
        """Public IP address as seen by an external echo service, or ''."""
        req = Request(self.public_ip_url, headers={'User-Agent': AgentBranding.user_agent()})
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                return resp.read().decode('ascii', errors='replace').strip()
        except (URLError, OSError, http.client.HTTPException, ValueError) as e:
            logger.warning("Public IP lookup failed: %s", e)
            return ""

    # ── Size ─────────────────────────────────────────────────────────

    @staticmethod
    def _walk_size(path: str) -> int:
        """Sum of what is readable under path, like `du`; unreadable parts are skipped."""
        if not os.path.isdir(path):
            raise ProbeError(f"Not a directory: {path}")
        total = os.lstat(path).st_size
        skipped = []

        def _skip(err):
            if os.path.abspath(err.filename or path) == os.path.abspath(path):
                raise err
            skipped.append(err.filename)
            logger.warning("Cannot read %s, excluded from size: %s", err.filename, err)

        for root, dirs, files in os.walk(path, onerror=_skip):
            for name in dirs + files:
                try:
                    total += os.lstat(os.path.join(root, name)).st_size
                except FileNotFoundError:
                    continue    # rotated away mid-walk
                except OSError as e:
                    skipped.append(os.path.join(root, name))
                    logger.warning("Cannot stat %s: %s", e.filename, e)
        if skipped:
            logger.warning("Size of %s is partial: %d entries skipped", path, len(skipped))
        return total

    def directory_size(self, path: str) -> int:
        """Apparent size in bytes of what is readable under path; 0 if path itself is not."""
        try:
            return self._walk_size(path)
        except (ProbeError, OSError) as e:
            logger.warning("Size sampling of %s failed: %s", path, e)
            return 0

    # ── Disk ─────────────────────────────────────────────────────────

    def partitions(self) -> list[PartitionSample]:
        """Usage of each mounted partition, in psutil's order."""
        samples = []
        try:
            parts = psutil.disk_partitions(all=False)
        except OSError as e:
            logger.warning("Partition listing failed: %s", e)
            return samples
        for part in parts:
            try:
                usage = psutil.disk_usage(part.mountpoint)
            except OSError as e:
                logger.debug("Skipping %s: %s", part.mountpoint, e)
                continue
            samples.append(PartitionSample(target=part.mountpoint, used_pct=usage.percent))
        return samples

    def disk_usage_report(self) -> str:
        """`df -h`-style table of all mounted partitions."""
        lines = [f"{'Filesystem':<24} {'Size':>7} {'Used':>7} {'Avail':>7} {'Use%':>5} Mounted on"]
        try:
            parts = psutil.disk_partitions(all=False)
        except OSError as e:
            logger.warning("Partition listing failed: %s", e)
            return "\n".join(lines)
        for part in parts:
            try:
                u = psutil.disk_usage(part.mountpoint)
            except OSError:
                continue
            lines.append(f"{part.device:<24} {format_size(u.total):>7} {format_size(u.used):>7} "
                         f"{format_size(u.free):>7} {u.percent:>4.0f}% {part.mountpoint}")
        return "\n".join(lines)

    def directory_listing(self, path: str) -> str:
        """`ls -al`-style listing of path."""
        try:
            names = sorted(os.listdir(path))
        except OSError as e:
            logger.warning("Listing of %s failed: %s", path, e)
            return f"Unable to list {path}: {e}"
        lines = [f"total {len(names)}"]
        for name in ['.', '..'] + names:
            try:
                st = os.lstat(os.path.join(path, name))
            except OSError:
                continue
            mtime = datetime.datetime.fromtimestamp(st.st_mtime).strftime('%b %d %H:%M')
            lines.append(f"{stat.filemode(st.st_mode)} {st.st_nlink:>3} {st.st_uid:>5} "
                         f"{st.st_gid:>5} {st.st_size:>12} {mtime} {name}")
        return "\n".join(lines)

    # ── Uptime ───────────────────────────────────────────────────────

    def uptime(self) -> str:
        """`uptime`-style one-line summary."""
        try:
            seconds = int(time.time() - psutil.boot_time())
        except (OSError, RuntimeError) as e:
            logger.warning("Uptime sampling failed: %s", e)
            return "unknown"
        days, rem = divmod(seconds, 86400)
        hours, rem = divmod(rem, 3600)
        minutes = rem // 60
        text = f"up {days} days, {hours}:{minutes:02d}"
        try:
            text += ", load average: " + ", ".join(f"{v:.2f}" for v in os.getloadavg())
        except OSError:
            pass
        try:
            text += f", {len(psutil.users())} users"
        except (OSError, RuntimeError):
            pass
        return text
