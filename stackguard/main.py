"""CLI entrypoint.

Usage:
  stackguard [--config FILE] [--dry-run] run [STACK ...]
  stackguard status [STACK ...]
  stackguard services STACK
  stackguard containers STACK
  stackguard stop STACK
  stackguard force-start STACK
  stackguard health
  stackguard dirlist [--enable NAME] [--disable NAME] [--add PATH] [--remove PATH]

STACK is a directory name below the stacks directory or a path to a stack
directory. Without STACK arguments, `run` uses the enabled entries of the
configured dirlist, or every discovered stack when no dirlist is configured.
"""
import argparse
import shlex
import signal
import sys

from stackguard import utils
from stackguard.backup import BackupRunner
from stackguard.config import ConfigError, load_config
from stackguard.dirlist import Dirlist
from stackguard.errors import LifecycleError, ProbeError, ToolUnavailable
from stackguard.lifecycle import (
    StackLifecycle,
    compose_available,
    daemon_available,
    docker_available,
    ensure_tools,
)
from stackguard.lock import AlreadyRunning, PidFile
from stackguard.stacks import resolve_stacks
from stackguard.utils import get_logger

logger = get_logger(__name__)

EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_VALIDATION_ERROR = 2
EXIT_BACKUP_ERROR = 3
EXIT_DOCKER_ERROR = 4
EXIT_INTERRUPTED = 5


def parse_args(argv):
    parser = argparse.ArgumentParser(
        prog='stackguard',
        description='Stop docker compose stacks around a backup command and restart them afterwards.')
    parser.add_argument('--config', help='Path to the configuration file')
    parser.add_argument('--stacks-dir', help='Directory containing the stack directories')
    parser.add_argument('--timeout', type=int, help='Grace period for stopping containers (seconds)')
    parser.add_argument('--dry-run', action='store_true', help='Log stop/start/backup actions without running them')
    parser.add_argument('--log-level', help='Logging level (overrides LOG_LEVEL)')

    sub = parser.add_subparsers(dest='command', required=True)

    run = sub.add_parser('run', help='Run a full backup cycle')
    run.add_argument('stacks', nargs='*')
    run.add_argument('--backup-command', help='Backup command template ({name} and {path} are substituted)')
    run.add_argument('--backup-timeout', type=int, help='Timeout for the backup command (seconds)')

    status = sub.add_parser('status', help='Show the current state of stacks')
    status.add_argument('stacks', nargs='*')

    for name, help_text in (('services', 'List services declared by a stack'),
                            ('containers', 'List containers of a stack with their status'),
                            ('stop', 'Stop a stack if it is running and verify it stopped'),
                            ('force-start', 'Start a stack unconditionally')):
        p = sub.add_parser(name, help=help_text)
        p.add_argument('stack')

    sub.add_parser('health', help='Check that docker and docker compose are usable')

    dirlist = sub.add_parser('dirlist', help='Show or edit the persistent stack selection')
    dirlist.add_argument('--enable', action='append', default=[], metavar='NAME')
    dirlist.add_argument('--disable', action='append', default=[], metavar='NAME')
    dirlist.add_argument('--add', action='append', default=[], metavar='PATH', help='Add an external stack path')
    dirlist.add_argument('--remove', action='append', default=[], metavar='PATH', help='Remove an external stack path')
    return parser.parse_args(argv)


def build_config(args):
    cfg = load_config(args.config)
    if args.stacks_dir:
        cfg.apply('stacks_dir', args.stacks_dir)
    if args.timeout is not None:
        cfg.apply('docker_timeout', args.timeout)
    if args.dry_run:
        cfg.dry_run = True
    if getattr(args, 'backup_command', None):
        cfg.backup_command = shlex.split(args.backup_command)
    if getattr(args, 'backup_timeout', None) is not None:
        cfg.apply('backup_timeout', args.backup_timeout)
    return cfg


def _raise_interrupt(signum, frame):
    raise KeyboardInterrupt(f"received signal {signum}")


def cmd_run(cfg, args):
    if not cfg.backup_command:
        logger.error("No backup command configured (set [backup] command or --backup-command)")
        return EXIT_CONFIG_ERROR
    stacks = resolve_stacks(cfg.stacks_dir, args.stacks, dirlist_file=cfg.dirlist_file)
    if not stacks:
        logger.warning("No stacks found in %s", cfg.stacks_dir)
        return EXIT_SUCCESS

    handler = utils.add_run_log_handler('backup', log_dir=cfg.log_dir)
    previous = signal.signal(signal.SIGTERM, _raise_interrupt)
    try:
        with PidFile(cfg.log_dir):
            runner = BackupRunner(cfg, stacks)
            runner.run()
    finally:
        signal.signal(signal.SIGTERM, previous)
        utils.remove_run_log_handler(handler)

    if runner.failed:
        logger.error("Backup completed with %d failure(s)", len(runner.failed))
        return EXIT_BACKUP_ERROR
    logger.info("All backups completed successfully!")
    return EXIT_SUCCESS


def cmd_status(cfg, args):
    ensure_tools()
    lifecycle = StackLifecycle(timeout=cfg.docker_timeout, dry_run=cfg.dry_run)
    exit_code = EXIT_SUCCESS
    for stack in resolve_stacks(cfg.stacks_dir, args.stacks):
        state, error = lifecycle.probe(stack)
        print(f"{stack.name}\t{state.value}")
        if error is not None:
            logger.warning("%s", error)
            exit_code = EXIT_DOCKER_ERROR
    return exit_code


def cmd_single(cfg, args):
    [stack] = resolve_stacks(cfg.stacks_dir, [args.stack])
    ensure_tools()
    lifecycle = StackLifecycle(timeout=cfg.docker_timeout, dry_run=cfg.dry_run)
    if args.command == 'services':
        for line in lifecycle.list_services(stack):
            print(line)
    elif args.command == 'containers':
        for line in lifecycle.list_containers(stack):
            print(line)
    elif args.command == 'stop':
        lifecycle.store(stack.name, stack)
        lifecycle.smart_stop(stack.name, stack)
    elif args.command == 'force-start':
        lifecycle.force_start(stack.name, stack)
    return EXIT_SUCCESS


def cmd_health(cfg, args):
    checks = [
        ('Docker', docker_available()),
        ('Docker Compose', compose_available()),
        ('Docker daemon', daemon_available()),
        (f"Stacks directory ({cfg.stacks_dir})", cfg.stacks_dir.is_dir()),
    ]
    for label, ok in checks:
        print(f"{label}: {'OK' if ok else 'NOT AVAILABLE'}")
    return EXIT_SUCCESS if all(ok for _, ok in checks) else EXIT_DOCKER_ERROR


def cmd_dirlist(cfg, args):
    if not cfg.dirlist_file:
        logger.error("No dirlist configured (set [backup] dirlist or STACKGUARD_DIRLIST)")
        return EXIT_CONFIG_ERROR

    dl = Dirlist(cfg.dirlist_file, cfg.stacks_dir).refresh()
    for path in args.add:
        logger.info("Added external stack: %s", dl.add_external(path))
    for path in args.remove:
        dl.remove_external(path)
    for name in args.enable:
        dl.set_enabled(name, True)
    for name in args.disable:
        dl.set_enabled(name, False)
    if args.add or args.remove or args.enable or args.disable:
        dl.save()

    for identifier in sorted(dl.entries):
        print(f"{identifier}\t{'enabled' if dl.entries[identifier].enabled else 'disabled'}")
    return EXIT_SUCCESS


COMMANDS = {
    'run': cmd_run,
    'status': cmd_status,
    'services': cmd_single,
    'containers': cmd_single,
    'stop': cmd_single,
    'force-start': cmd_single,
    'health': cmd_health,
    'dirlist': cmd_dirlist,
}


def main(argv=None):
    args = parse_args(sys.argv[1:] if argv is None else argv)

    try:
        cfg = build_config(args)
    except ConfigError as e:
        utils.setup_logging(level_name=args.log_level)
        logger.error("%s", e)
        return EXIT_CONFIG_ERROR

    utils.setup_logging(log_dir=cfg.log_dir, level_name=args.log_level)

    try:
        return COMMANDS[args.command](cfg, args)
    except ValueError as e:
        logger.error("%s", e)
        return EXIT_VALIDATION_ERROR
    except AlreadyRunning as e:
        logger.error("%s", e)
        return EXIT_CONFIG_ERROR
    except (ToolUnavailable, ProbeError) as e:
        logger.error("%s", e)
        return EXIT_DOCKER_ERROR
    except LifecycleError as e:
        logger.error("%s", e)
        return EXIT_BACKUP_ERROR
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return EXIT_INTERRUPTED


if __name__ == '__main__':
    sys.exit(main())
