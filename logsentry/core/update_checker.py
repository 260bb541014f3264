"""Self-update system: fetch, validate, config-merge, backup, swap, relaunch.

The managed executable is the deployable launcher script. A candidate is
accepted only if it declares a parseable ``SCRIPT_VERSION`` near its top.
Operator settings (the ConfigBundle declarations) are always carried over
from the running instance, never taken from the candidate.

Architecture:
  SelfUpdater: explicit state machine, one method per phase, blocking
  module functions: pure text operations on executable sources
"""

import datetime
import glob
import hashlib
import http.client
import json
import logging
import os
import re
import shutil
import stat
import sys
from urllib.request import Request, urlopen
from urllib.error import URLError

from packaging.version import Version, InvalidVersion

from logsentry.branding import AgentBranding
from logsentry.config.settings import BUNDLE_DECLARATIONS, ConfigBundle
from logsentry.core.errors import (
    UpdateError, UpdateFetchError, UpdateValidationError, UpdateSwapError,
)
from logsentry.core.history import UpdateStateStore, atomic_write
from logsentry.core.models import UpdateOutcome, UpdatePhase

logger = logging.getLogger(__name__)

# The version declaration must appear within this many leading lines
VERSION_SCAN_LINES = 60

STABLE_BEGIN = "# --- BEGIN STABLE SECTION"
STABLE_END = "# --- END STABLE SECTION"

_VERSION_RE = re.compile(r'''^\s*SCRIPT_VERSION\s*=\s*["']([^"']*)["']''')


def _declaration_re(key: str) -> re.Pattern:
    return re.compile(r'^(?P<lead>[ \t]*' + re.escape(key) + r'[ \t]*=[ \t]*)'
                      r'"(?:[^"\\\n]|\\.)*"', re.MULTILINE)


# ── Text operations ──────────────────────────────────────────────────

def extract_version(text: str) -> str | None:
    """Return the declared SCRIPT_VERSION string, or None."""
    for line in text.splitlines()[:VERSION_SCAN_LINES]:
        m = _VERSION_RE.match(line)
        if m:
            return m.group(1).strip() or None
    return None


def stable_region(text: str) -> str:
    """Lines from the first BEGIN marker through the next END marker."""
    region = []
    inside = False
    for line in text.splitlines(keepends=True):
        if not inside and line.lstrip().startswith(STABLE_BEGIN):
            inside = True
        if inside:
            region.append(line)
            if line.lstrip().startswith(STABLE_END):
                break
    return "".join(region)


def stable_digest(text: str) -> str:
    return hashlib.sha256(stable_region(text).encode('utf-8')).hexdigest()


def read_declarations(text: str) -> dict[str, str]:
    """Read the ConfigBundle declarations present in an executable's source."""
    values = {}
    for key in BUNDLE_DECLARATIONS:
        m = _declaration_re(key).search(text)
        if m:
            literal = m.group(0)[len(m.group('lead')):]
            try:
                values[key] = json.loads(literal)
            except ValueError:
                values[key] = literal[1:-1]     # Python-only escape such as "\d"
    return values


def merge_config(text: str, bundle: ConfigBundle) -> str:
    """Rewrite the candidate's ConfigBundle declarations with the bundle's values.

    Only the first declaration of each key is touched; everything else in
    the candidate is left byte-for-byte intact. Raises
    UpdateValidationError if a declaration is missing.
    """
    present = read_declarations(text)
    missing = [key for key in BUNDLE_DECLARATIONS if key not in present]
    if missing:
        raise UpdateValidationError(
            f"UPDATE ALERT: Attempted update failed - remote script "
            f"missing {', '.join(missing)} declaration.")
    for key, value in bundle.declarations().items():
        literal = json.dumps(value, ensure_ascii=False)
        text = _declaration_re(key).sub(lambda m: m.group('lead') + literal, text, count=1)
    return text


def backup_path_for(executable: str, version: str, day: datetime.date) -> str:
    return f"{executable}_v{version}_{day.isoformat()}.bak"


def _http_get(url: str, timeout: int) -> bytes:
    req = Request(url, headers={'User-Agent': AgentBranding.user_agent()})
    with urlopen(req, timeout=timeout) as resp:
        return resp.read()


# ── State machine ────────────────────────────────────────────────────

class SelfUpdater:
    """Replaces the running executable with a newer remote version.

    All methods are synchronous. ``run()`` never raises for an update
    failure: the failure is returned as an UpdateOutcome carrying the
    operator-facing alert text, and the caller continues with the current
    version. On success ``run()`` does not return, because the process is
    replaced by the new executable.
    """

    def __init__(self, executable: str, running_version: str,
                 bundle: ConfigBundle, script_url: str, commit_url: str,
                 state_store: UpdateStateStore, argv: list[str] | None = None,
                 fetch_timeout: int = 30, max_backups: int = 1,
                 fetcher=None, execv=None, today=None):
        self.executable = os.path.abspath(executable)
        self.running_version = running_version
        self.bundle = bundle
        self.script_url = script_url
        self.commit_url = commit_url
        self.state_store = state_store
        self.argv = list(argv) if argv is not None else sys.argv[1:]
        self.fetch_timeout = fetch_timeout
        self.max_backups = max(1, max_backups)
        self._fetcher = fetcher or _http_get
        self._execv = execv or os.execv
        self._today = today or datetime.date.today
        self.phase = UpdatePhase.IDLE

    def _enter(self, phase: UpdatePhase):
        logger.debug("Self-update: %s -> %s", self.phase.value, phase.value)
        self.phase = phase

    # ── Run ──────────────────────────────────────────────────────────

    def run(self) -> UpdateOutcome:
        try:
            candidate = self.fetch()
            remote_version = self.validate(candidate)
            if remote_version is None:
                return self._same_version(candidate)
            merged = self.merge(candidate)
            backup = self.backup()
            alert = (f"UPDATE ALERT: Script updated from v{self.running_version} "
                     f"to v{remote_version}. Please see {self.commit_url} for details.")
            self.swap(merged, remote_version, backup)
        except UpdateError as e:
            logger.warning("Self-update stopped in %s: %s", self.phase.value, e)
            failed_in = self.phase
            self._enter(UpdatePhase.IDLE)
            return UpdateOutcome(phase=failed_in, alert_text=str(e))

        try:
            self.state_store.queue_alert(alert)
        except OSError as e:
            # The new executable is in place but would start without its alert
            logger.error("Failed to queue update alert, not relaunching: %s", e)
            return UpdateOutcome(
                phase=UpdatePhase.SWAPPING,
                alert_text=f"{alert} The update notice could not be saved ({e}); "
                           f"the new version takes effect on the next run.",
                remote_version=remote_version, backup_path=backup)

        return self.relaunch(remote_version, backup, alert)

    def _same_version(self, candidate: str) -> UpdateOutcome:
        try:
            with open(self.executable, 'r', encoding='utf-8') as f:
                running = f.read()
        except OSError as e:
            logger.warning("Cannot read running executable %s: %s", self.executable, e)
            self._enter(UpdatePhase.IDLE)
            return UpdateOutcome(phase=UpdatePhase.IDLE)

        alert = ""
        if stable_digest(running) != stable_digest(candidate):
            alert = (f"UPDATE ALERT: Scripts differ materially despite same version "
                     f"v{self.running_version}. Please see {self.commit_url} for details.")
            logger.warning("Remote script differs from v%s without a version bump",
                           self.running_version)
        else:
            logger.info("Already at latest version v%s", self.running_version)
        self._enter(UpdatePhase.IDLE)
        return UpdateOutcome(phase=UpdatePhase.IDLE, alert_text=alert,
                             remote_version=self.running_version)

    # ── Phases ───────────────────────────────────────────────────────

    def fetch(self) -> str:
        """Download the candidate. Raises UpdateFetchError."""
        self._enter(UpdatePhase.FETCHING)
        failed = ("UPDATE ALERT: Attempted update failed - unable to download script.")
        try:
            data = self._fetcher(self.script_url, self.fetch_timeout)
        except (URLError, OSError, http.client.HTTPException, ValueError) as e:
            logger.warning("Failed to fetch %s: %s", self.script_url, e)
            raise UpdateFetchError(failed) from e
        if not data:
            raise UpdateFetchError(failed)
        try:
            return data.decode('utf-8')
        except UnicodeDecodeError as e:
            raise UpdateValidationError(
                "UPDATE ALERT: Attempted update failed - remote script is not text.") from e

    def validate(self, candidate: str) -> str | None:
        """Return the candidate's version if it differs, None if it is the same."""
        self._enter(UpdatePhase.VALIDATING)
        remote = extract_version(candidate)
        if remote is None:
            raise UpdateValidationError(
                "UPDATE ALERT: Attempted update failed - remote script missing version.")
        try:
            same = Version(remote) == Version(self.running_version)
        except InvalidVersion as e:
            raise UpdateValidationError(
                f"UPDATE ALERT: Attempted update failed - unparseable version "
                f"'{remote}' (running v{self.running_version}).") from e
        if same:
            return None
        if Version(remote) < Version(self.running_version):
            logger.warning("Remote version v%s is older than running v%s",
                           remote, self.running_version)
        return remote

    def merge(self, candidate: str) -> str:
        self._enter(UpdatePhase.MERGING)
        return merge_config(candidate, self.bundle)

    def backup(self) -> str:
        """Copy the running executable aside and enforce retention."""
        self._enter(UpdatePhase.BACKING_UP)
        path = backup_path_for(self.executable, self.running_version, self._today())
        try:
            shutil.copy2(self.executable, path)
        except OSError as e:
            raise UpdateSwapError(
                f"UPDATE ALERT: Update aborted - could not back up "
                f"{self.executable}: {e}") from e
        logger.info("Backed up v%s to %s", self.running_version, path)
        self.prune_backups(keep=path)
        return path

    def prune_backups(self, keep: str):
        others = [p for p in glob.glob(glob.escape(self.executable) + '_v*.bak')
                  if p != keep]
        others.sort(key=os.path.getmtime, reverse=True)
        for old in others[self.max_backups - 1:]:
            try:
                os.remove(old)
                logger.info("Removed old backup %s", old)
            except OSError as e:
                logger.warning("Failed to remove old backup %s: %s", old, e)

    def swap(self, merged: str, remote_version: str, backup: str):
        """Atomically replace the executable, keeping it executable."""
        self._enter(UpdatePhase.SWAPPING)
        try:
            mode = stat.S_IMODE(os.stat(self.executable).st_mode)
            mode |= stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH
            atomic_write(self.executable, merged, mode=mode)
        except OSError as e:
            raise UpdateSwapError(
                f"UPDATE ALERT: Update to v{remote_version} failed while replacing "
                f"the script ({e}). Previous version is backed up at {backup}.") from e
        logger.info("Replaced %s with v%s", self.executable, remote_version)

    def relaunch(self, remote_version: str, backup: str, alert: str) -> UpdateOutcome:
        """Transfer control to the new executable with the same arguments."""
        self._enter(UpdatePhase.RELAUNCHED)
        args = [sys.executable, self.executable] + self.argv
        logger.info("Relaunching as v%s: %s", remote_version, ' '.join(args))
        for handler in logging.getLogger().handlers:
            handler.flush()
        try:
            self._execv(sys.executable, args)
        except OSError as e:
            # The queued alert stays; this run's daily report picks it up
            logger.error("Relaunch failed: %s", e)
            return UpdateOutcome(
                phase=UpdatePhase.SWAPPING,
                alert_text=f"UPDATE ALERT: Relaunch as v{remote_version} failed ({e}); "
                           f"the new version takes effect on the next run.",
                remote_version=remote_version, backup_path=backup)
        # Only reached when execv is replaced (tests)
        return UpdateOutcome(phase=UpdatePhase.RELAUNCHED, alert_text=alert,
                             remote_version=remote_version, backup_path=backup)
