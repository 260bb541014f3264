#!/usr/bin/env python3
"""Monitor and manage LiteSpeed Web Server logs under /usr/local/lsws/logs.

Deploy this file (e.g. as /root/monitor_logs.py) with the logsentry package
installed, fill in the operator settings below, and schedule it as root:

    0 */3 * * * /root/monitor_logs.py check
    0 6 * * * /root/monitor_logs.py daily

check  alerts when the log directory grows past the thresholds.
daily  self-updates this file, mails the size/error report with excerpts,
       then compresses the logs.

Self-update keeps the operator settings below; everything else in this
file is replaced by the published version.
"""
import os
import sys

SCRIPT_VERSION = "1.0"
SCRIPT_LAST_UPDATED = "2026-10-19"

# User adjustable settings
FROM_NAME = "--EMAIL SENDER NAME--"
EMAIL_FROM = "--ENTER SENDER EMAIL ADDRESS--"
EMAIL_TO = "--ENTER RECIPIENT EMAIL ADDRESS--"
SMTP_USER = "--ENTER SMTP2GO AUTHORIZED SENDING USERNAME--"
SMTP_PASS = "--ENTER SMTP2GO AUTHORIZED SENDING PASSWORD--"
LOG_DIR = "/usr/local/lsws/logs"

# --- BEGIN STABLE SECTION: growth rule ---
# Thresholds and the call that applies them; a change here must bump
# SCRIPT_VERSION.
MIN_RELATIVE_CHANGE_PCT = 25.0
MIN_ABSOLUTE_DIFF_BYTES = 100 * 1024 * 1024
BIG_DIR_BYTES = 1024 * 1024 * 1024
PARTITION_USAGE_PCT = 90.0


def run():
    from logsentry.config.settings import ConfigBundle, Thresholds
    from logsentry.main import main

    bundle = ConfigBundle(
        from_name=FROM_NAME,
        email_from=EMAIL_FROM,
        email_to=EMAIL_TO,
        smtp_user=SMTP_USER,
        smtp_pass=SMTP_PASS,
        log_dir=LOG_DIR,
    )
    thresholds = Thresholds(
        min_relative_change_pct=MIN_RELATIVE_CHANGE_PCT,
        min_absolute_diff_bytes=MIN_ABSOLUTE_DIFF_BYTES,
        big_dir_bytes=BIG_DIR_BYTES,
        partition_usage_pct=PARTITION_USAGE_PCT,
    )
    return main(sys.argv[1:], version=SCRIPT_VERSION, bundle=bundle,
                thresholds=thresholds, executable=os.path.abspath(__file__))
# --- END STABLE SECTION: growth rule ---


if __name__ == '__main__':
    sys.exit(run())
