"""
Stack lifecycle coordination around a backup step.

The coordinator records every stack's state before the backup cycle starts and
only stops/restarts stacks that were running at that moment. All timing policy
(probe timeout, stop grace period, settle delay, verification polling) lives here.
"""
import threading
import time
from enum import Enum

from stackguard.command import run_command, command_exists, command_succeeds
from stackguard.errors import (
    ProbeError,
    StartFailure,
    StartTimeout,
    StopVerificationExhausted,
    ToolUnavailable,
)
from stackguard.stacks import Stack, find_compose_file
from stackguard.utils import get_logger, nonempty_lines

logger = get_logger(__name__)

DOCKER_BINARY = 'docker'

# Default grace period handed to `docker compose stop --timeout`
DEFAULT_TIMEOUT = 300
# Status/listing commands use a fixed bound, independent of DEFAULT_TIMEOUT
PROBE_TIMEOUT = 30
# Extra time on top of the grace period for compose's own overhead
COMMAND_BUFFER = 30
SETTLE_DELAY = 2
STOP_POLL_ATTEMPTS = 3
STOP_POLL_INTERVAL = 3


class StackState(str, Enum):
    RUNNING = 'running'
    STOPPED = 'stopped'
    NOT_FOUND = 'not_found'
    UNKNOWN = 'unknown'


class LifecycleOperation(Enum):
    """Mutating operations; they share one issue-and-interpret routine."""
    SMART_STOP = 'stop'
    SMART_START = 'restart'
    FORCE_START = 'force start'

    @property
    def gated(self):
        """Smart operations only act on stacks stored as running."""
        return self is not LifecycleOperation.FORCE_START

    @property
    def progress(self):
        return {
            LifecycleOperation.SMART_STOP: 'Stopping',
            LifecycleOperation.SMART_START: 'Restarting',
            LifecycleOperation.FORCE_START: 'Force starting',
        }[self]

    @property
    def compose_args(self):
        if self is LifecycleOperation.SMART_STOP:
            return ['stop']
        return ['start']


def verification_polls(attempts=STOP_POLL_ATTEMPTS, settle=SETTLE_DELAY,
                       interval=STOP_POLL_INTERVAL, sleep=time.sleep):
    """Yield poll numbers 1..attempts.

    Sleeps ``settle`` seconds before the first poll and ``interval`` seconds after
    every poll the caller continues past. A caller that stops iterating on success
    incurs no further delay.
    """
    sleep(settle)
    for attempt in range(1, attempts + 1):
        yield attempt
        sleep(interval)


class StackLifecycle:
    """Per-run coordinator for stopping and restarting compose stacks.

    Args:
        timeout: stop grace period in seconds; mutating commands are bounded by
            ``timeout + COMMAND_BUFFER``
        dry_run: log mutating operations instead of running them
        runner: command executor, defaults to ``run_command``
        sleep: delay function used by stop verification
        output_logger: logger receiving streamed compose output
    """

    def __init__(self, timeout=DEFAULT_TIMEOUT, dry_run=False, runner=None, sleep=None, output_logger=None):
        self.timeout = int(timeout)
        self.dry_run = dry_run
        self._run = runner or run_command
        self._sleep = sleep or time.sleep
        self._output_logger = output_logger
        self._states = {}
        self._lock = threading.Lock()

    @property
    def command_timeout(self):
        return self.timeout + COMMAND_BUFFER

    def _compose(self, stack, args, timeout, stream=False):
        if stream:
            return self._run(
                DOCKER_BINARY, ['compose'] + list(args), cwd=stack.path, timeout=timeout,
                capture_output=False, capture_error=True,
                stream_output=True, stream_error=True,
                output_logger=self._output_logger,
            )
        return self._run(
            DOCKER_BINARY, ['compose'] + list(args), cwd=stack.path, timeout=timeout,
            capture_output=True, capture_error=True,
        )

    # -- observation -------------------------------------------------------

    def check(self, stack):
        """Return the live state of ``stack``.

        Counts services reported by ``docker compose ps --services --filter
        status=running``. A directory without a compose file is NOT_FOUND.
        Raises ProbeError when the status command cannot be executed; the
        observed state is then UNKNOWN. Never touches the registry.
        """
        if not find_compose_file(stack.path):
            return StackState.NOT_FOUND

        result = self._compose(stack, ['ps', '--services', '--filter', 'status=running'], PROBE_TIMEOUT)
        if not result.success:
            detail = result.stderr or result.error
            raise ProbeError(f"status check failed: {detail}", stack=stack.name, phase='check')

        running = len(nonempty_lines(result.stdout))
        logger.debug("Stack %s has %d running service(s)", stack.name, running)
        return StackState.RUNNING if running > 0 else StackState.STOPPED

    def probe(self, stack):
        """Like check() but returns ``(state, error)`` instead of raising."""
        try:
            return self.check(stack), None
        except ProbeError as e:
            return StackState.UNKNOWN, e

    # -- registry ----------------------------------------------------------

    def store(self, name, stack):
        """Check ``stack`` and record the result as the initial state of ``name``.

        On probe failure UNKNOWN is recorded and the ProbeError re-raised.
        """
        try:
            state = self.check(stack)
        except ProbeError:
            with self._lock:
                self._states[name] = StackState.UNKNOWN
            raise
        with self._lock:
            self._states[name] = state
        return state

    def get_stored_state(self, name):
        with self._lock:
            return self._states.get(name, StackState.UNKNOWN)

    def snapshot(self):
        """Return a copy of the registry (name -> StackState)."""
        with self._lock:
            return dict(self._states)

    # -- mutation ----------------------------------------------------------

    def smart_stop(self, name, stack):
        """Stop ``stack`` if it was stored as running and verify it went down."""
        self._apply(LifecycleOperation.SMART_STOP, name, stack)

    def smart_start(self, name, stack):
        """Start ``stack`` again if it was stored as running."""
        self._apply(LifecycleOperation.SMART_START, name, stack)

    def force_start(self, name, stack):
        """Start ``stack`` regardless of the registry (recovery path)."""
        self._apply(LifecycleOperation.FORCE_START, name, stack)

    def _apply(self, operation, name, stack):
        if operation.gated:
            state = self.get_stored_state(name)
            if state is not StackState.RUNNING:
                logger.info("Skipping %s for stack (was %s): %s", operation.value, state.value, name)
                return

        logger.info("%s Docker stack: %s", operation.progress, name)
        if self.dry_run:
            logger.info("[DRY RUN] Would %s stack: %s", operation.value, name)
            return

        args = list(operation.compose_args)
        if operation is LifecycleOperation.SMART_STOP:
            args += ['--timeout', str(self.timeout)]
        result = self._compose(stack, args, self.command_timeout, stream=True)

        if operation is LifecycleOperation.SMART_STOP:
            # Not fatal: whether the containers went down is verified by polling
            if result.timed_out:
                logger.warning("Stop command timed out after %ss: %s", self.command_timeout, name)
            elif not result.success:
                logger.warning("Stop command returned error for %s: %s", name, result.stderr or result.error)
            self._verify_stopped(name, stack)
            return

        if result.timed_out:
            raise StartTimeout(f"start command timed out after {self.command_timeout}s",
                               stack=name, phase=operation.name.lower())
        if not result.success:
            raise StartFailure(f"failed to start stack: {result.stderr or result.error}",
                               stack=name, phase=operation.name.lower())
        logger.info("Successfully finished %s: %s", operation.value, name)

    def _verify_stopped(self, name, stack):
        for attempt in verification_polls(sleep=self._sleep):
            state, error = self.probe(stack)
            if error is not None:
                logger.warning("Status check during stop verification failed for %s: %s", name, error)
            if state is not StackState.RUNNING:
                logger.info("Successfully stopped stack: %s", name)
                return
            logger.info("Stack %s still running (attempt %d/%d)", name, attempt, STOP_POLL_ATTEMPTS)

        raise StopVerificationExhausted(
            f"failed to stop stack: containers still running after {STOP_POLL_ATTEMPTS} attempts",
            stack=name, phase='smart_stop')

    # -- introspection -----------------------------------------------------

    def list_services(self, stack):
        """Return the services declared in the stack's compose file."""
        return self._list(stack, ['config', '--services'])

    def list_containers(self, stack):
        """Return ``name: status`` lines for the stack's containers."""
        return self._list(stack, ['ps', '--format', '{{.Name}}: {{.Status}}'])

    def _list(self, stack, args):
        result = self._compose(stack, args, PROBE_TIMEOUT)
        if not result.success:
            raise ProbeError(f"'docker compose {' '.join(args)}' failed: {result.stderr or result.error}",
                             stack=stack.name, phase='list')
        return nonempty_lines(result.stdout)


def docker_available():
    """Return True if the docker binary is on PATH."""
    return command_exists(DOCKER_BINARY)


def compose_available():
    """Return True if `docker compose version` succeeds."""
    if not docker_available():
        return False
    return command_succeeds(DOCKER_BINARY, 'compose', 'version')


def daemon_available():
    """Return True if the Docker daemon answers a ping through the Docker SDK."""
    try:
        import docker as _docker
        client = _docker.from_env()
    except Exception as e:
        logger.debug("Docker SDK client could not be created: %s", e)
        return False
    try:
        return bool(client.ping())
    except Exception as e:
        logger.debug("Docker daemon ping failed: %s", e)
        return False
    finally:
        client.close()


def ensure_tools():
    """Raise ToolUnavailable unless docker and its compose plugin are usable."""
    if not docker_available():
        raise ToolUnavailable("docker binary not found on PATH", phase='preflight')
    if not compose_available():
        raise ToolUnavailable("docker compose is not available", phase='preflight')
    logger.info("Docker compose is available")


__all__ = [
    'Stack',
    'StackState',
    'StackLifecycle',
    'LifecycleOperation',
    'verification_polls',
    'docker_available',
    'compose_available',
    'daemon_available',
    'ensure_tools',
]
