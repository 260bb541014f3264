"""Per-invocation workflow for the ``check`` and ``daily`` modes.

Every run first resolves the host identity (fatal if impossible) and sweeps
partition usage. ``check`` then alerts on log directory growth; ``daily``
runs the self-updater, mails the full report and compresses the logs. The
size history is saved at the end of both modes, whatever happened before.
"""

import datetime
import logging

from logsentry.config.settings import AgentSettings, ConfigBundle, Thresholds
from logsentry.core import growth, partitions
from logsentry.core.errors import DispatchError, FatalIdentityError
from logsentry.core.history import SizeHistoryStore, UpdateStateStore
from logsentry.core.models import GrowthResult, Message

logger = logging.getLogger(__name__)

HUMAN_TIME = '%B %d, %Y %I:%M %p %Z'


def cap_lines(text: str, limit: int, label: str) -> tuple[str, str]:
    """Truncate text to limit lines. Returns (text, truncation note or '')."""
    lines = text.splitlines()
    if len(lines) <= limit:
        return text, ""
    note = f"({label} truncated to {limit} lines. Original lines: {len(lines)})"
    return "\n".join(lines[:limit]), note


class Orchestrator:
    """Wires probe, evaluators, stores, updater, log store and notifier."""

    def __init__(self, settings: AgentSettings, bundle: ConfigBundle,
                 thresholds: Thresholds, version: str,
                 probe, notifier, logstore,
                 size_store: SizeHistoryStore, state_store: UpdateStateStore,
                 updater=None, clock=None):
        self.settings = settings
        self.bundle = bundle
        self.thresholds = thresholds
        self.version = version
        self.probe = probe
        self.notifier = notifier
        self.logstore = logstore
        self.size_store = size_store
        self.state_store = state_store
        self.updater = updater
        self._clock = clock or (lambda: datetime.datetime.now().astimezone())
        self.host = ""
        self.disk_usage = ""
        self.disk_usage_note = ""
        self.uptime = ""

    # ── Entry ────────────────────────────────────────────────────────

    def run(self, mode: str) -> int:
        """Run one invocation. Returns the process exit status."""
        logger.info("Starting %s run (v%s)", mode or "no-mode", self.version)
        try:
            self.host = self.resolve_host()
        except FatalIdentityError as e:
            logger.error("%s", e)
            return 1

        self.disk_usage, self.disk_usage_note = cap_lines(
            self.probe.disk_usage_report(), self.settings.report_max_lines, "Disk Usage output")
        self.uptime = self.probe.uptime()
        self.sweep_partitions()

        if mode == 'check':
            self.check()
        elif mode == 'daily':
            self.daily()
        else:
            logger.info("Unknown mode %r: pre-checks only", mode)
        return 0

    # ── Pre-checks ───────────────────────────────────────────────────

    def resolve_host(self) -> str:
        name = self.probe.hostname()
        if name and '.' in name:
            return name

        logger.warning("Hostname %r is not fully qualified, trying public IP", name)
        ip = self.probe.public_ip()
        if ip:
            return ip
        if name:
            return name

        self.dispatch(Message(
            subject="FATAL ERROR - hostname detection failed",
            body="\n".join([
                "Fatal Error: Unable to detect server FQDN or public IP address.",
                "Script exiting without full hostname information.",
                f"Time: {self._now_human()}",
                f"Script Version: {self.version}",
            ]),
        ))
        raise FatalIdentityError("Unable to determine host identity")

    def sweep_partitions(self) -> list:
        full = partitions.evaluate(self.probe.partitions(), self.thresholds)
        if full:
            logger.warning("%d partitions over %g%% usage", len(full),
                           self.thresholds.partition_usage_pct)
            self.dispatch(Message(
                subject=f"Partition Usage Alert - {self.host}",
                body="\n".join([
                    f"The following partitions have exceeded "
                    f"{self.thresholds.partition_usage_pct:g}% usage:",
                    "",
                    partitions.format_partitions(full),
                    "",
                    self._disk_section("Full Disk Usage:"),
                    "",
                    "Server Uptime:",
                    self.uptime,
                    "",
                    f"Script Version: {self.version}",
                ]),
            ))
        return full

    # ── Modes ────────────────────────────────────────────────────────

    def check(self) -> GrowthResult:
        previous = self.size_store.load()
        current = self.probe.directory_size(self.bundle.log_dir)
        try:
            result = growth.evaluate(previous, current, self.thresholds)
            logger.info("Log dir %s: %d -> %d bytes (%s%%)", self.bundle.log_dir,
                        previous, current, growth.format_percent(result))
            if result.alert:
                self.dispatch(self._size_alert(previous, current, result))
        finally:
            self.size_store.save(current)
        return result

    def daily(self):
        notices = []
        update_notice = ""
        if self.updater is not None:
            try:
                update_notice = self.updater.run().alert_text
            except Exception as e:
                logger.exception("Self-update crashed")
                update_notice = (f"UPDATE ALERT: Attempted update failed unexpectedly "
                                 f"({type(e).__name__}: {e}).")

        # Read after the updater so an alert it queued without relaunching is included
        queued = self.state_store.consume(self.version).pending_alert
        if queued:
            notices.append(queued)
        if update_notice:
            notices.append(update_notice)

        previous = self.size_store.load()
        current = self.probe.directory_size(self.bundle.log_dir)
        result = growth.evaluate(previous, current, self.thresholds)
        try:
            self.logstore.purge_compressed(self.settings.gz_max_age_days)
            attachments = [
                ("stderr_excerpt.txt", self.logstore.stderr_excerpt()),
                ("errorlog_excerpt.txt", self.logstore.error_log_excerpt()),
            ]
            self.dispatch(self._daily_report(previous, current, result, notices, attachments))
        finally:
            try:
                self.logstore.compress_rotatable()
            finally:
                self.size_store.save(current)

    # ── Messages ─────────────────────────────────────────────────────

    def dispatch(self, message: Message) -> bool:
        """Send best-effort; a transport failure is logged, never raised."""
        try:
            self.notifier.send(message)
            return True
        except DispatchError as e:
            logger.error("%s", e)
            return False

    def _now_human(self) -> str:
        return self._clock().strftime(HUMAN_TIME)

    def _disk_section(self, title: str) -> str:
        parts = [title, self.disk_usage]
        if self.disk_usage_note:
            parts += ["", self.disk_usage_note]
        return "\n".join(parts)

    def _size_alert(self, previous: int, current: int, result: GrowthResult) -> Message:
        if result.percent_change is not None:
            headline = (f"Log size grew by {growth.format_percent(result)}% since last check!")
        else:
            headline = "Log size grew with no previous baseline!"
        return Message(
            subject=f"LSWS Log Size Alert - {self.host}",
            body="\n".join([
                headline,
                "",
                f"Previous Size: {growth.format_size(previous)}",
                f"Current Size: {growth.format_size(current)}",
                f"Difference: {growth.format_size(result.diff_bytes)}",
                "",
                self._disk_section("Disk Usage:"),
                "",
                "Server Uptime:",
                self.uptime,
                "",
                f"Script Version: {self.version}",
            ]),
        )

    def _daily_report(self, previous: int, current: int, result: GrowthResult,
                      notices: list[str], attachments) -> Message:
        now = self._clock()
        yesterday = now - datetime.timedelta(days=1)
        listing, listing_note = cap_lines(
            self.probe.directory_listing(self.bundle.log_dir),
            self.settings.report_max_lines, "Directory Listing")

        lines = []
        for notice in notices:
            lines += [notice, ""]
        lines += [
            "Log Directory Size Report:",
            f"Previous Size (as of {yesterday.strftime(HUMAN_TIME)}): "
            f"{growth.format_size(previous)}",
            f"Current Size (as of {now.strftime(HUMAN_TIME)}): {growth.format_size(current)}",
            f"Size Change: {growth.format_size(result.diff_bytes)} "
            f"({growth.format_percent(result)}%)",
        ]
        if result.alert:
            lines.append("Growth exceeds the alert thresholds.")
        lines += ["", f"Directory Listing of {self.bundle.log_dir}:", "", listing]
        if listing_note:
            lines += ["", listing_note]
        lines += [
            "",
            self._disk_section("Disk Usage:"),
            "",
            "Server Uptime:",
            self.uptime,
            "",
            f"Script Version: {self.version}",
        ]
        return Message(
            subject=f"{self.host} Daily LSWS Error Log Report - {now.strftime(HUMAN_TIME)}",
            body="\n".join(lines),
            attachments=list(attachments),
        )
