"""logsentry: entry point."""

import argparse
import logging
import os
import sys

from logsentry.branding import AgentBranding
from logsentry.config.settings import AgentSettings, ConfigBundle, Thresholds
from logsentry.core.history import SizeHistoryStore, UpdateStateStore
from logsentry.core.orchestrator import Orchestrator
from logsentry.core.update_checker import SelfUpdater
from logsentry.notify.mailer import SmtpNotifier
from logsentry.system.logstore import LogStore
from logsentry.system.probe import SystemProbe


def setup_logging(work_dir: str):
    """Configure logging to file and console."""
    log_dir = os.path.join(work_dir, 'logs')
    os.makedirs(log_dir, exist_ok=True)
    log_file = os.path.join(log_dir, 'logsentry.log')

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(),
        ],
    )


def parse_args(argv):
    parser = argparse.ArgumentParser(
        prog=AgentBranding.APP_NAME,
        description="Monitor, report on and compress a web-server log directory.",
    )
    parser.add_argument('mode', nargs='?', default='',
                        help="'check' (growth alert) or 'daily' (update, report, compress)")
    parser.add_argument('--settings', default=None,
                        help="path to settings JSON (default: $LOGSENTRY_SETTINGS or the work dir)")
    return parser.parse_args(argv)


def load_settings(path: str | None) -> AgentSettings:
    """Load settings, writing a defaults file for the operator on first run."""
    path = path or AgentSettings.default_path()
    settings = AgentSettings.load(path)
    if not os.path.isfile(path):
        settings.save(path)
    settings.ensure_dirs()
    return settings


def build_orchestrator(settings: AgentSettings, argv, version: str,
                       bundle: ConfigBundle, thresholds: Thresholds,
                       executable: str | None) -> Orchestrator:
    state_store = UpdateStateStore(settings.state_file)

    updater = None
    if executable:
        updater = SelfUpdater(
            executable=executable,
            running_version=version,
            bundle=bundle,
            script_url=settings.script_url,
            commit_url=settings.commit_url,
            state_store=state_store,
            argv=argv,
            fetch_timeout=settings.fetch_timeout,
            max_backups=settings.max_backups,
        )

    return Orchestrator(
        settings=settings,
        bundle=bundle,
        thresholds=thresholds,
        version=version,
        probe=SystemProbe(),
        notifier=SmtpNotifier(bundle, settings.smtp_server, settings.smtp_port,
                              settings.smtp_timeout),
        logstore=LogStore(bundle.log_dir, settings.excerpt_lines),
        size_store=SizeHistoryStore(settings.size_file),
        state_store=state_store,
        updater=updater,
    )


def main(argv=None, version: str | None = None, bundle: ConfigBundle | None = None,
         thresholds: Thresholds | None = None, executable: str | None = None) -> int:
    """Run one invocation.

    The deployable launcher passes its own declared version, ConfigBundle,
    thresholds and path; that path becomes the self-updated executable.
    Without a launcher, the bundle and thresholds come from the settings
    file and self-update is disabled.
    """
    if argv is None:
        argv = sys.argv[1:]
    args = parse_args(argv)

    settings = load_settings(args.settings)

    setup_logging(settings.work_dir)
    logger = logging.getLogger(__name__)

    version = version or AgentBranding.VERSION
    bundle = bundle or settings.bundle()
    thresholds = thresholds or settings.thresholds()
    if executable is None:
        logger.info("No managed executable, self-update disabled")

    orchestrator = build_orchestrator(settings, argv, version, bundle, thresholds, executable)
    return orchestrator.run(args.mode)


if __name__ == '__main__':
    sys.exit(main())
