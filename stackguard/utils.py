"""
Utility functions for the application.
"""
import os
import re
import time
import logging
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

LOG_FORMAT = '[%(levelname)s] %(asctime)s %(name)s: %(message)s'
LOG_FILE_NAME = 'stackguard.log'
LOG_DIR = '/var/log/stackguard'


# Central logging helpers
def setup_logging(log_dir=None, level_name=None):
    """Configure root logger from environment.

    - Uses LOG_LEVEL env var (e.g., DEBUG, INFO); defaults to INFO.
    - If no handlers exist, installs a StreamHandler and a TimedRotatingFileHandler
      writing daily log files into the log directory (``STACKGUARD_LOG_DIR`` or
      `LOG_DIR`).

    File logging is best-effort: when the directory cannot be created (e.g. an
    unprivileged user and the default /var/log path) only the stream handler is
    used and a warning is logged.
    """
    level_name = (level_name or os.environ.get('LOG_LEVEL', 'INFO')).upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()

    # Only configure handlers if none are present so tests or other
    # environments can configure logging differently
    if not root.handlers:
        sh = logging.StreamHandler()
        sh.setLevel(level)
        sh.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(sh)

        log_dir = log_dir or get_log_dir()
        try:
            os.makedirs(log_dir, exist_ok=True)
            from logging.handlers import TimedRotatingFileHandler
            fh = TimedRotatingFileHandler(
                filename=os.path.join(log_dir, LOG_FILE_NAME),
                when='midnight',
                backupCount=7,
                encoding='utf-8'
            )
            fh.setLevel(level)
            fh.setFormatter(logging.Formatter(LOG_FORMAT))
            root.addHandler(fh)
        except OSError as e:
            root.warning("Failed to configure file logging (LOG_DIR=%s): %s", log_dir, e)

    root.setLevel(level)


def get_logger(name=None):
    """Return a logger for the given name (or the module logger if none)."""
    return logging.getLogger(name if name else __name__)


def add_run_log_handler(run_name, log_dir=None, level=logging.INFO):
    """Attach a per-run log file to the root logger.

    - Log path: <LOG_DIR>/runs/{run_name}_{TIMESTAMP}.log
    - Returns the handler (pass it to `remove_run_log_handler` when the run ends),
      or None if the file could not be opened or is already attached.
    """
    safe_name = filename_safe(run_name)
    runs_dir = os.path.join(log_dir or get_log_dir(), 'runs')
    root = logging.getLogger()

    try:
        os.makedirs(runs_dir, exist_ok=True)
    except OSError as e:
        root.warning("Cannot create run log directory %s: %s", runs_dir, e)
        return None

    log_path = os.path.abspath(os.path.join(runs_dir, f"{safe_name}_{filename_timestamp()}.log"))
    for h in list(root.handlers):
        if getattr(h, 'baseFilename', None) == log_path:
            return None

    try:
        handler = logging.FileHandler(filename=log_path, encoding='utf-8')
    except OSError as e:
        root.warning("Cannot open run log %s: %s", log_path, e)
        return None
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    return handler


def remove_run_log_handler(handler):
    if handler is None:
        return
    logging.getLogger().removeHandler(handler)
    handler.close()


def local_now():
    """Get current datetime in the configured display timezone."""
    return datetime.now(timezone.utc).astimezone(get_display_timezone())


def get_display_timezone():
    """Get the configured display timezone."""
    tz_name = os.environ.get('TZ', 'UTC')
    try:
        return ZoneInfo(tz_name)
    except Exception:
        return ZoneInfo('UTC')


def format_duration(seconds):
    """Format duration in seconds to human readable string."""
    if seconds is None:
        return 'N/A'

    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"

    minutes = seconds // 60
    secs = seconds % 60

    if minutes < 60:
        return f"{minutes}m {secs}s"

    hours = minutes // 60
    mins = minutes % 60
    return f"{hours}h {mins}m"


def filename_timestamp(dt=None):
    """Return a timestamp string suitable for filenames (YYYYMMDD_HHMMSS, local tz)."""
    if dt is None:
        dt = local_now()
    try:
        return dt.strftime('%Y%m%d_%H%M%S')
    except (AttributeError, ValueError):
        return time.strftime('%Y%m%d_%H%M%S', time.localtime())


def filename_safe(name):
    """Return a filesystem-safe name derived from the provided string.

    Replaces any character not in [A-Za-z0-9_-] with underscore and collapses
    repeated underscores.
    """
    safe = re.sub(r'[^A-Za-z0-9_-]+', '_', str(name))
    safe = re.sub(r'_+', '_', safe).strip('_')
    return safe or 'unnamed'


def get_log_dir():
    """Return the log directory (``STACKGUARD_LOG_DIR`` or the fixed default)."""
    return os.environ.get('STACKGUARD_LOG_DIR') or LOG_DIR


def nonempty_lines(text):
    """Split command output into trimmed, non-empty lines (order preserved)."""
    if not text:
        return []
    return [line.strip() for line in str(text).splitlines() if line.strip()]
