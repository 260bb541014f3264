"""Per-mode workflows with in-memory collaborators."""
import datetime
import json
import os
import shutil
import tempfile
import unittest

from logsentry.config.settings import AgentSettings, ConfigBundle, Thresholds, MIB
from logsentry.core.errors import DispatchError
from logsentry.core.history import SizeHistoryStore, UpdateStateStore
from logsentry.core.models import PartitionSample, UpdateOutcome, UpdatePhase
from logsentry.core.orchestrator import Orchestrator, cap_lines
from logsentry.core.update_checker import SelfUpdater


class FakeProbe:
    def __init__(self, hostname="web1.example.com", ip="", size=0, partitions=(),
                 listing="total 0", disk="Filesystem Size Used Avail Use% Mounted on"):
        self._hostname = hostname
        self._ip = ip
        self.size = size
        self._partitions = list(partitions)
        self.listing = listing
        self.disk = disk

    def hostname(self):
        return self._hostname

    def public_ip(self):
        return self._ip

    def directory_size(self, path):
        return self.size

    def partitions(self):
        return self._partitions

    def disk_usage_report(self):
        return self.disk

    def directory_listing(self, path):
        return self.listing

    def uptime(self):
        return "up 3 days, 4:05"


class FakeNotifier:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def send(self, message):
        self.sent.append(message)
        if self.fail:
            raise DispatchError("connection refused")


class FakeLogStore:
    def __init__(self):
        self.calls = []

    def purge_compressed(self, max_age_days=1):
        self.calls.append('purge')
        return []

    def stderr_excerpt(self):
        return "stderr tail"

    def error_log_excerpt(self):
        return "error tail"

    def compress_rotatable(self):
        self.calls.append('compress')
        return []


class FakeUpdater:
    def __init__(self, outcome=None, error=None, queue=None, state_store=None):
        self.outcome = outcome or UpdateOutcome(phase=UpdatePhase.IDLE)
        self.error = error
        self.queue = queue
        self.state_store = state_store
        self.runs = 0

    def run(self):
        self.runs += 1
        if self.queue:
            self.state_store.queue_alert(self.queue)
        if self.error is not None:
            raise self.error
        return self.outcome


class TestOrchestrator(unittest.TestCase):

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.settings = AgentSettings(work_dir=self.test_dir)
        self.size_store = SizeHistoryStore(self.settings.size_file)
        self.state_store = UpdateStateStore(self.settings.state_file)
        self.probe = FakeProbe()
        self.notifier = FakeNotifier()
        self.logstore = FakeLogStore()
        self.updater = None

    def tearDown(self):
        shutil.rmtree(self.test_dir)

    def make(self):
        return Orchestrator(
            settings=self.settings,
            bundle=ConfigBundle(log_dir="/srv/logs"),
            thresholds=Thresholds(),
            version="1.0",
            probe=self.probe,
            notifier=self.notifier,
            logstore=self.logstore,
            size_store=self.size_store,
            state_store=self.state_store,
            updater=self.updater,
            clock=lambda: datetime.datetime(2026, 10, 19, 6, 0, tzinfo=datetime.timezone.utc),
        )

    # ── Pre-checks ───────────────────────────────────────────────────

    def test_fatal_identity_alerts_and_exits_nonzero(self):
        self.probe = FakeProbe(hostname="", ip="")
        self.assertEqual(self.make().run('check'), 1)
        self.assertEqual(len(self.notifier.sent), 1)
        self.assertIn("FATAL", self.notifier.sent[0].subject)
        self.assertFalse(os.path.exists(self.settings.size_file))

    def test_unqualified_hostname_falls_back_to_public_ip(self):
        self.probe = FakeProbe(hostname="web1", ip="203.0.113.7",
                               partitions=[PartitionSample('/', 97.0)])
        orch = self.make()
        self.assertEqual(orch.run(''), 0)
        self.assertEqual(orch.host, "203.0.113.7")
        self.assertEqual(self.notifier.sent[0].subject, "Partition Usage Alert - 203.0.113.7")

    def test_partition_alert_lists_only_full_partitions(self):
        self.probe = FakeProbe(partitions=[PartitionSample('/', 95.0),
                                           PartitionSample('/boot', 90.0)])
        self.make().run('')
        self.assertEqual(len(self.notifier.sent), 1)
        body = self.notifier.sent[0].body
        self.assertIn("/ - 95%", body)
        self.assertNotIn("/boot", body)
        self.assertIn("up 3 days", body)

    def test_unknown_mode_only_runs_prechecks(self):
        self.assertEqual(self.make().run('weekly'), 0)
        self.assertEqual(self.notifier.sent, [])
        self.assertEqual(self.logstore.calls, [])
        self.assertFalse(os.path.exists(self.settings.size_file))

    # ── check ────────────────────────────────────────────────────────

    def test_check_alerts_on_growth_and_saves_history(self):
        self.size_store.save(800 * MIB)
        self.probe.size = 1100 * MIB
        self.assertEqual(self.make().run('check'), 0)
        self.assertEqual(len(self.notifier.sent), 1)
        msg = self.notifier.sent[0]
        self.assertEqual(msg.subject, "LSWS Log Size Alert - web1.example.com")
        self.assertIn("Log size grew by 37.50% since last check!", msg.body)
        self.assertIn("Difference: 300.0M", msg.body)
        self.assertEqual(self.size_store.load(), 1100 * MIB)

    def test_check_quiet_below_thresholds(self):
        self.probe.size = 50 * MIB
        self.make().run('check')
        self.assertEqual(self.notifier.sent, [])
        self.assertEqual(self.size_store.load(), 50 * MIB)

    def test_check_saves_history_even_when_dispatch_fails(self):
        self.notifier = FakeNotifier(fail=True)
        self.probe.size = 500 * MIB
        self.assertEqual(self.make().run('check'), 0)
        self.assertEqual(len(self.notifier.sent), 1)
        self.assertEqual(self.size_store.load(), 500 * MIB)

    # ── daily ────────────────────────────────────────────────────────

    def test_daily_report_and_rotation(self):
        self.size_store.save(100 * MIB)
        self.probe.size = 110 * MIB
        self.make().run('daily')

        self.assertEqual(self.logstore.calls, ['purge', 'compress'])
        self.assertEqual(len(self.notifier.sent), 1)
        report = self.notifier.sent[0]
        self.assertTrue(report.subject.startswith("web1.example.com Daily LSWS Error Log Report"))
        self.assertIn("Size Change: 10.0M (10.00%)", report.body)
        self.assertIn("Directory Listing of /srv/logs:", report.body)
        self.assertIn("Script Version: 1.0", report.body)
        self.assertEqual([name for name, _ in report.attachments],
                         ["stderr_excerpt.txt", "errorlog_excerpt.txt"])
        self.assertEqual(report.attachments[0][1], "stderr tail")
        self.assertEqual(self.size_store.load(), 110 * MIB)

    def test_daily_reports_percent_na_without_baseline(self):
        self.probe.size = 10 * MIB
        self.make().run('daily')
        self.assertIn("(N/A%)", self.notifier.sent[0].body)

    def test_daily_surfaces_and_clears_queued_update_alert(self):
        self.state_store.queue_alert("UPDATE ALERT: Script updated from v1.0 to v1.1.")
        self.make().run('daily')
        self.assertTrue(self.notifier.sent[0].body.startswith(
            "UPDATE ALERT: Script updated from v1.0 to v1.1."))
        self.assertIsNone(self.state_store.load("1.1").pending_alert)

        self.notifier.sent.clear()
        self.make().run('daily')
        self.assertNotIn("UPDATE ALERT", self.notifier.sent[0].body)

    def test_daily_includes_update_failure_warning(self):
        self.updater = FakeUpdater(UpdateOutcome(
            phase=UpdatePhase.FETCHING,
            alert_text="UPDATE ALERT: Attempted update failed - unable to download script."))
        self.make().run('daily')
        self.assertEqual(self.updater.runs, 1)
        self.assertIn("unable to download script", self.notifier.sent[0].body)
        self.assertEqual(self.logstore.calls, ['purge', 'compress'])

    def test_daily_survives_updater_crash(self):
        self.updater = FakeUpdater(error=RuntimeError("state machine bug"))
        self.probe.size = 64 * MIB
        self.assertEqual(self.make().run('daily'), 0)
        self.assertEqual(len(self.notifier.sent), 1)
        self.assertIn("failed unexpectedly (RuntimeError: state machine bug)",
                      self.notifier.sent[0].body)
        self.assertEqual(self.logstore.calls, ['purge', 'compress'])
        self.assertEqual(self.size_store.load(), 64 * MIB)

    def test_daily_keeps_earlier_queued_alert_when_updater_crashes(self):
        self.state_store.queue_alert("UPDATE ALERT: Script updated from v0.9 to v1.0.")
        self.updater = FakeUpdater(error=ValueError("bad header"))
        self.make().run('daily')
        body = self.notifier.sent[0].body
        self.assertTrue(body.startswith("UPDATE ALERT: Script updated from v0.9 to v1.0."))
        self.assertIn("failed unexpectedly (ValueError: bad header)", body)
        self.assertIsNone(self.state_store.load("1.0").pending_alert)

    def test_daily_reports_alerts_queued_before_failed_relaunch(self):
        self.state_store.queue_alert("UPDATE ALERT: Script updated from v0.9 to v1.0.")
        self.updater = FakeUpdater(
            outcome=UpdateOutcome(
                phase=UpdatePhase.SWAPPING,
                alert_text="UPDATE ALERT: Relaunch as v1.1 failed (exec format error); "
                           "the new version takes effect on the next run.",
                remote_version="1.1"),
            queue="UPDATE ALERT: Script updated from v1.0 to v1.1.",
            state_store=self.state_store)
        self.make().run('daily')
        body = self.notifier.sent[0].body
        first = body.index("from v0.9 to v1.0")
        second = body.index("from v1.0 to v1.1")
        third = body.index("Relaunch as v1.1 failed")
        self.assertLess(first, second)
        self.assertLess(second, third)
        self.assertIsNone(self.state_store.load("1.0").pending_alert)

    def test_daily_reports_update_when_notice_cannot_be_queued(self):
        bundle = ConfigBundle(log_dir="/srv/logs")
        exe = os.path.join(self.test_dir, 'monitor_logs.py')

        def script(version):
            lines = [f'SCRIPT_VERSION = "{version}"']
            lines += [f'{key} = {json.dumps(value)}'
                      for key, value in bundle.declarations().items()]
            return "\n".join(lines) + "\n"

        with open(exe, 'w', encoding='utf-8') as f:
            f.write(script("1.0"))
        os.mkdir(self.settings.state_file)
        exec_calls = []
        self.updater = SelfUpdater(
            executable=exe, running_version="1.0", bundle=bundle,
            script_url="https://example.com/monitor_logs.py",
            commit_url="https://example.com/log", state_store=self.state_store,
            argv=['daily'], fetcher=lambda url, timeout: script("1.1").encode(),
            execv=lambda path, args: exec_calls.append(args),
            today=lambda: datetime.date(2026, 10, 19))
        self.probe.size = 5 * MIB

        self.assertEqual(self.make().run('daily'), 0)
        self.assertEqual(exec_calls, [])
        body = self.notifier.sent[0].body
        self.assertIn("Script updated from v1.0 to v1.1", body)
        self.assertIn("could not be saved", body)
        self.assertEqual(self.logstore.calls, ['purge', 'compress'])
        self.assertEqual(self.size_store.load(), 5 * MIB)

    def test_check_does_not_run_updater(self):
        self.updater = FakeUpdater(UpdateOutcome(phase=UpdatePhase.IDLE))
        self.make().run('check')
        self.assertEqual(self.updater.runs, 0)

    def test_daily_compresses_and_saves_when_dispatch_fails(self):
        self.notifier = FakeNotifier(fail=True)
        self.probe.size = 42
        self.assertEqual(self.make().run('daily'), 0)
        self.assertEqual(self.logstore.calls, ['purge', 'compress'])
        self.assertEqual(self.size_store.load(), 42)

    def test_daily_truncates_long_listing(self):
        self.probe.listing = "\n".join(f"line {i}" for i in range(30))
        self.make().run('daily')
        body = self.notifier.sent[0].body
        self.assertIn("line 24", body)
        self.assertNotIn("line 25", body)
        self.assertIn("(Directory Listing truncated to 25 lines. Original lines: 30)", body)


class TestCapLines(unittest.TestCase):

    def test_short_text_untouched(self):
        self.assertEqual(cap_lines("a\nb", 25, "X"), ("a\nb", ""))

    def test_long_text_truncated_with_note(self):
        text, note = cap_lines("\n".join(str(i) for i in range(26)), 25, "Disk Usage output")
        self.assertEqual(len(text.splitlines()), 25)
        self.assertEqual(note, "(Disk Usage output truncated to 25 lines. Original lines: 26)")


if __name__ == '__main__':
    unittest.main()
