"""Agent settings: persistence via JSON, plus the immutable per-run values."""

import json
import logging
import os
from dataclasses import dataclass, asdict, fields

logger = logging.getLogger(__name__)

MIB = 1024 * 1024
GIB = 1024 * MIB

DEFAULT_WORK_DIR = "/root/.lsws_log_work_dir"
DEFAULT_LOG_DIR = "/usr/local/lsws/logs"
DEFAULT_SCRIPT_URL = (
    "https://raw.githubusercontent.com/packetdog/ScriptsHackedTogetherWithAI/main/"
    "CyberPanel%20Server%20Management%20Scripts/monitor_logs.py"
)
DEFAULT_COMMIT_URL = (
    "https://github.com/packetdog/ScriptsHackedTogetherWithAI/blob/main/"
    "Cyberpanel%20Server%20Management%20Scripts/monitor_logs.py?tab=log"
)


@dataclass(frozen=True)
class Thresholds:
    """Alerting thresholds, fixed for the duration of one run."""
    min_relative_change_pct: float = 25.0
    min_absolute_diff_bytes: int = 100 * MIB
    big_dir_bytes: int = GIB
    partition_usage_pct: float = 90.0


@dataclass(frozen=True)
class ConfigBundle:
    """Operator-supplied settings that must survive a self-update unchanged."""
    from_name: str = "--EMAIL SENDER NAME--"
    email_from: str = "--ENTER SENDER EMAIL ADDRESS--"
    email_to: str = "--ENTER RECIPIENT EMAIL ADDRESS--"
    smtp_user: str = "--ENTER SMTP2GO AUTHORIZED SENDING USERNAME--"
    smtp_pass: str = "--ENTER SMTP2GO AUTHORIZED SENDING PASSWORD--"
    log_dir: str = DEFAULT_LOG_DIR

    def declarations(self) -> dict[str, str]:
        """Map executable declaration names to this bundle's values."""
        return {key: getattr(self, attr) for key, attr in BUNDLE_DECLARATIONS.items()}


# Declaration name in the executable -> ConfigBundle attribute
BUNDLE_DECLARATIONS: dict[str, str] = {
    'FROM_NAME': 'from_name',
    'EMAIL_FROM': 'email_from',
    'EMAIL_TO': 'email_to',
    'SMTP_USER': 'smtp_user',
    'SMTP_PASS': 'smtp_pass',
    'LOG_DIR': 'log_dir',
}


@dataclass
class AgentSettings:
    """Persistent runtime settings that are not part of the ConfigBundle."""
    # Paths
    work_dir: str = DEFAULT_WORK_DIR

    # Transport
    smtp_server: str = "mail.smtp2go.com"
    smtp_port: int = 2525
    smtp_timeout: int = 30

    # Self-update
    script_url: str = DEFAULT_SCRIPT_URL
    commit_url: str = DEFAULT_COMMIT_URL
    fetch_timeout: int = 30
    max_backups: int = 1

    # Thresholds
    min_relative_change_pct: float = 25.0
    min_absolute_diff_bytes: int = 100 * MIB
    big_dir_bytes: int = GIB
    partition_usage_pct: float = 90.0

    # Report
    report_max_lines: int = 25
    excerpt_lines: int = 75
    gz_max_age_days: int = 1

    # Fallback bundle when not launched from the deployable script
    from_name: str = ConfigBundle.from_name
    email_from: str = ConfigBundle.email_from
    email_to: str = ConfigBundle.email_to
    smtp_user: str = ConfigBundle.smtp_user
    smtp_pass: str = ConfigBundle.smtp_pass
    log_dir: str = DEFAULT_LOG_DIR

    @property
    def size_file(self) -> str:
        return os.path.join(self.work_dir, 'lsws_logs_size.txt')

    @property
    def state_file(self) -> str:
        return os.path.join(self.work_dir, 'update_state.json')

    def thresholds(self) -> Thresholds:
        return Thresholds(
            min_relative_change_pct=float(self.min_relative_change_pct),
            min_absolute_diff_bytes=int(self.min_absolute_diff_bytes),
            big_dir_bytes=int(self.big_dir_bytes),
            partition_usage_pct=float(self.partition_usage_pct),
        )

    def bundle(self) -> ConfigBundle:
        return ConfigBundle(**{f.name: getattr(self, f.name) for f in fields(ConfigBundle)})

    @staticmethod
    def default_path() -> str:
        return os.environ.get('LOGSENTRY_SETTINGS') or os.path.join(
            DEFAULT_WORK_DIR, 'settings.json')

    @staticmethod
    def load(path: str | None = None) -> 'AgentSettings':
        """Load settings from JSON. Returns defaults if file doesn't exist."""
        if path is None:
            path = AgentSettings.default_path()

        if not os.path.isfile(path):
            logger.info("No settings file at %s, using defaults", path)
            return AgentSettings()

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            settings = AgentSettings(**{k: v for k, v in data.items()
                                        if k in AgentSettings.__dataclass_fields__})
            logger.info("Loaded settings from %s", path)
            return settings
        except (OSError, ValueError, TypeError) as e:
            logger.warning("Failed to load settings: %s", e)
            return AgentSettings()

    def save(self, path: str | None = None):
        """Save settings to JSON."""
        if path is None:
            path = os.path.join(self.work_dir, 'settings.json')

        os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
        try:
            with open(path, 'w', encoding='utf-8') as f:
                json.dump(asdict(self), f, indent=2)
            logger.info("Saved settings to %s", path)
        except OSError as e:
            logger.warning("Failed to save settings: %s", e)

    def ensure_dirs(self):
        """Create the work directory if it doesn't exist."""
        os.makedirs(self.work_dir, exist_ok=True)
