"""
Backup cycle execution with phased processing.

Phase 1 checks that docker compose is usable, phase 2 records the initial
state of every selected stack, phase 3 processes stacks sequentially
(stop -> backup -> start) and phase 4 logs a summary and sends notifications.
"""
import time

from stackguard import utils
from stackguard.command import run_command
from stackguard.errors import (
    BackupCommandError,
    ProbeError,
    StartFailure,
    StartTimeout,
    StopVerificationExhausted,
)
from stackguard.lifecycle import StackLifecycle, StackState, ensure_tools
from stackguard.notifications import send_run_notification
from stackguard.stacks import ensure_unique_names
from stackguard.utils import get_logger

logger = get_logger(__name__)


def render_backup_command(template, stack):
    """Substitute ``{name}`` and ``{path}`` in each argument of ``template``."""
    return [
        str(arg).replace('{name}', stack.name).replace('{path}', str(stack.path))
        for arg in template
    ]


class BackupRunner:
    """Runs one backup cycle over a list of stacks.

    Args:
        config: stackguard.config.Config
        stacks: stacks to process, in order; names must be unique
        lifecycle: coordinator to use (built from ``config`` if omitted)
        runner: command executor used for the backup command
        preflight: callable raising ToolUnavailable when docker is unusable
    """

    def __init__(self, config, stacks, lifecycle=None, runner=None, preflight=None):
        self.config = config
        self.stacks = ensure_unique_names(list(stacks))
        self.lifecycle = lifecycle or StackLifecycle(
            timeout=config.docker_timeout, dry_run=config.dry_run,
            output_logger=get_logger('stackguard.output'),
        )
        self._run = runner or run_command
        self._preflight = preflight or ensure_tools
        self.current_stack = None
        self.stack_metrics = []

    @property
    def failed(self):
        return [m for m in self.stack_metrics if m['status'] == 'failed']

    def run(self):
        """Execute the cycle and return the per-stack metrics.

        ToolUnavailable from the preflight propagates before any stack is
        touched. On KeyboardInterrupt the in-flight stack is force-started if it
        was running before the cycle, then the interrupt is re-raised.
        """
        start = time.monotonic()
        logger.info("Starting backup cycle for %d stack(s)%s",
                    len(self.stacks), ' [DRY RUN]' if self.config.dry_run else '')

        logger.info("### Phase 1: Pre-flight checks ###")
        self._preflight()

        logger.info("### Phase 2: Recording initial stack states ###")
        self._store_initial_states()

        logger.info("### Phase 3: Processing stacks sequentially (Stop -> Backup -> Start) ###")
        self.stack_metrics = []
        try:
            for index, stack in enumerate(self.stacks, start=1):
                logger.info("--- Processing %d of %d: %s ---", index, len(self.stacks), stack.name)
                self.stack_metrics.append(self._process_single_stack(stack))
        except KeyboardInterrupt:
            logger.warning("Backup cycle interrupted")
            self._recover_interrupted()
            raise

        duration = time.monotonic() - start
        self._finalize(duration)
        return self.stack_metrics

    def _store_initial_states(self):
        for stack in self.stacks:
            try:
                self.lifecycle.store(stack.name, stack)
            except ProbeError as e:
                logger.warning("Failed to get initial state for %s: %s", stack.name, e)
            logger.info("Stack %s: initially %s", stack.name, self.lifecycle.get_stored_state(stack.name).value)

    def _process_single_stack(self, stack):
        """Process a single stack: stop -> backup -> start."""
        started = time.monotonic()
        initial = self.lifecycle.get_stored_state(stack.name)
        # Left set if an interrupt escapes, so the stack can be recovered
        self.current_stack = stack
        metric = self._cycle_stack(stack, initial, started)
        self.current_stack = None
        return metric

    def _cycle_stack(self, stack, initial, started):
        name = stack.name
        try:
            self.lifecycle.smart_stop(name, stack)
        except StopVerificationExhausted as e:
            logger.error("Skipping backup of %s: %s", name, e)
            return self._metric(stack, 'failed', initial, started, error=str(e),
                                recovered=self._recover(stack, initial))

        try:
            self._run_backup(stack)
        except BackupCommandError as e:
            logger.error("Backup failed for %s: %s", name, e)
            return self._metric(stack, 'failed', initial, started, error=str(e),
                                recovered=self._recover(stack, initial))

        try:
            self.lifecycle.smart_start(name, stack)
        except (StartTimeout, StartFailure) as e:
            logger.error("Failed to restart %s: %s", name, e)
            return self._metric(stack, 'failed', initial, started, error=str(e),
                                recovered=self._recover(stack, initial))

        logger.info("Successfully processed: %s", name)
        return self._metric(stack, 'success', initial, started)

    def _run_backup(self, stack):
        argv = render_backup_command(self.config.backup_command, stack)
        if not argv:
            raise BackupCommandError("no backup command configured", stack=stack.name, phase='backup')

        if self.config.dry_run:
            logger.info("[DRY RUN] Would run backup in %s: %s", stack.path, ' '.join(argv))
            return

        logger.info("Running backup for %s: %s", stack.name, ' '.join(argv))
        result = self._run(
            argv[0], argv[1:], cwd=stack.path, timeout=self.config.backup_timeout,
            capture_output=False, capture_error=True,
            stream_output=True, stream_error=True,
            output_logger=get_logger('stackguard.output'),
        )
        if result.timed_out:
            raise BackupCommandError(f"backup command timed out after {self.config.backup_timeout}s",
                                     stack=stack.name, phase='backup')
        if not result.success:
            raise BackupCommandError(f"backup command failed: {result.stderr or result.error}",
                                     stack=stack.name, phase='backup')
        logger.info("Backup command finished for %s in %s", stack.name, utils.format_duration(result.duration))

    def _recover(self, stack, initial):
        """Force-start a stack that was running before the cycle. Returns True on success."""
        if initial is not StackState.RUNNING:
            return False
        logger.warning("Attempting recovery start of %s", stack.name)
        try:
            self.lifecycle.force_start(stack.name, stack)
        except (StartTimeout, StartFailure) as e:
            logger.error("Recovery start failed for %s: %s", stack.name, e)
            return False
        return True

    def _recover_interrupted(self):
        stack = self.current_stack
        if stack is None:
            return
        initial = self.lifecycle.get_stored_state(stack.name)
        if initial is StackState.RUNNING:
            logger.warning("Attempting to restart interrupted stack: %s", stack.name)
            self._recover(stack, initial)

    def _metric(self, stack, status, initial, started, error=None, recovered=False):
        return {
            'stack_name': stack.name,
            'status': status,
            'initial_state': initial.value,
            'error': error,
            'recovered': recovered,
            'duration_seconds': int(time.monotonic() - started),
        }

    def _finalize(self, duration):
        failed = self.failed
        logger.info("### Backup completed ###")
        logger.info("Duration: %s", utils.format_duration(duration))
        logger.info("Stacks processed: %d", len(self.stack_metrics))
        logger.info("Succeeded: %d", len(self.stack_metrics) - len(failed))
        logger.info("Failed: %d", len(failed))
        for m in failed:
            logger.warning("  - %s: %s", m['stack_name'], m['error'])

        try:
            send_run_notification(self.config, self.stack_metrics, duration)
        except Exception as e:
            logger.warning("Failed to send notification: %s", e)
