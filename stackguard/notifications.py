"""
Notification system using Apprise.
"""
import socket
import time
from dataclasses import dataclass
from typing import List, Optional

from stackguard.utils import get_logger, format_duration

logger = get_logger(__name__)


@dataclass
class NotifyResult:
    success: bool
    detail: Optional[str] = None


def _make_apobj(urls: Optional[List[str]] = None):
    import apprise

    apobj = apprise.Apprise()
    added = 0
    for u in (urls or []):
        if apobj.add(u):
            added += 1
        else:
            logger.warning("Apprise rejected notification URL: %s", u.split('://', 1)[0] + '://...')
    return apobj, added


def _notify_with_retry(apobj, title: str, body: str) -> NotifyResult:
    try:
        ok = apobj.notify(title=title, body=body)
    except Exception as e:
        logger.warning("Notification attempt failed (%s); retrying once", e)
        time.sleep(0.5)
        try:
            ok = apobj.notify(title=title, body=body)
        except Exception as re:
            return NotifyResult(False, f"notify exception: {re}")
    if ok:
        return NotifyResult(True)
    return NotifyResult(False, 'apprise reported delivery failure')


def build_summary(stack_metrics, duration, dry_run=False):
    """Return ``(title, body)`` describing one backup cycle."""
    failed = [m for m in stack_metrics if m['status'] == 'failed']
    host = socket.gethostname()
    prefix = '[DRY RUN] ' if dry_run else ''
    if failed:
        title = f"{prefix}Backup failed on {host}: {len(failed)} of {len(stack_metrics)} stack(s)"
    else:
        title = f"{prefix}Backup succeeded on {host}: {len(stack_metrics)} stack(s)"

    lines = [f"Duration: {format_duration(duration)}", '']
    for m in stack_metrics:
        line = f"- {m['stack_name']}: {m['status']} (initially {m['initial_state']})"
        if m.get('error'):
            line += f" - {m['error']}"
        if m.get('recovered'):
            line += ' [force-started]'
        lines.append(line)
    return title, '\n'.join(lines)


def send_run_notification(config, stack_metrics, duration):
    """Send the cycle summary to the configured Apprise URLs.

    Failures are always reported; successes only when ``notify_on_success`` is
    set. Returns a NotifyResult, or None when nothing was sent.
    """
    if not config.apprise_urls:
        return None
    failed = any(m['status'] == 'failed' for m in stack_metrics)
    if not failed and not config.notify_on_success:
        return None

    title, body = build_summary(stack_metrics, duration, dry_run=config.dry_run)
    apobj, added = _make_apobj(config.apprise_urls)
    if added == 0:
        logger.warning("No valid Apprise URLs configured; notification not sent")
        return NotifyResult(False, 'no apprise URLs added')

    res = _notify_with_retry(apobj, title, body)
    if res.success:
        logger.info("Notification sent to %d target(s)", added)
    else:
        logger.warning("Failed to send notification: %s", res.detail)
    return res
