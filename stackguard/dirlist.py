"""
Persistent selection of which stacks take part in a backup run.

The dirlist is a plain ``identifier=true|false`` file. Identifiers are
directory names below the stacks directory, or absolute paths for stacks that
live elsewhere (external entries). Syncing adds newly discovered directories as
disabled and drops entries whose directory disappeared; external entries are
never touched by a sync.
"""
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path

from stackguard.stacks import Stack, find_compose_file
from stackguard.utils import get_logger

logger = get_logger(__name__)

HEADER = (
    "# Directory list for selective backup\n"
    "# true = backup enabled, false = skip backup\n"
)

_VALID_NAME = re.compile(r'^[A-Za-z0-9._-]+$')


def valid_dir_name(name):
    """Accept plain directory names; reject hidden names, dots-only names and separators."""
    if not name or not _VALID_NAME.match(name):
        return False
    return not name.startswith('.')


def valid_external_path(path):
    """An external entry must be absolute, exist, and contain a compose file."""
    p = Path(path)
    return p.is_absolute() and p.is_dir() and find_compose_file(p) is not None


def discover_directories(base_dir):
    """Return sorted names of valid child directory names of ``base_dir`` holding a compose file."""
    base = Path(base_dir)
    try:
        children = list(base.iterdir())
    except OSError as e:
        raise ValueError(f"Cannot discover directories in {base}: {e}") from e
    return sorted(
        d.name for d in children
        if d.is_dir() and valid_dir_name(d.name) and find_compose_file(d)
    )


@dataclass
class DirlistEntry:
    identifier: str
    enabled: bool = False

    @property
    def external(self):
        return self.identifier.startswith('/')


class Dirlist:
    """Load, sync and save the dirlist at ``path`` for stacks below ``base_dir``."""

    def __init__(self, path, base_dir):
        self.path = Path(path)
        self.base_dir = Path(base_dir)
        self.entries = {}

    def load(self):
        """Read the file; a missing file yields an empty list. Invalid lines are ignored."""
        self.entries = {}
        try:
            text = self.path.read_text(encoding='utf-8')
        except FileNotFoundError:
            return self

        for raw in text.splitlines():
            line = raw.strip()
            if not line or line.startswith('#') or '=' not in line:
                continue
            identifier, value = (part.strip() for part in line.split('=', 1))
            entry = DirlistEntry(identifier, value.lower() == 'true')
            if entry.external:
                if not valid_external_path(identifier):
                    logger.warning("Ignoring external dirlist entry without a compose file: %s", identifier)
                    continue
            elif not valid_dir_name(identifier):
                logger.warning("Ignoring invalid dirlist entry: %s", identifier)
                continue
            self.entries[identifier] = entry
        return self

    def sync(self):
        """Reconcile discovered entries with the stacks directory.

        Returns ``(added, removed)`` identifier lists. New directories start
        disabled.
        """
        discovered = set(discover_directories(self.base_dir))
        removed = sorted(i for i, e in self.entries.items() if not e.external and i not in discovered)
        added = sorted(discovered - set(self.entries))
        for identifier in removed:
            del self.entries[identifier]
        for identifier in added:
            self.entries[identifier] = DirlistEntry(identifier, enabled=False)
        return added, removed

    def save(self):
        """Write the file atomically (temp file + rename), mode 0600."""
        discovered = sorted(i for i, e in self.entries.items() if not e.external)
        external = sorted(i for i, e in self.entries.items() if e.external)

        lines = [HEADER]
        if discovered:
            lines.append("\n# Discovered directories (relative to the stacks directory)\n")
            lines.extend(f"{i}={str(self.entries[i].enabled).lower()}\n" for i in discovered)
        if external:
            lines.append("\n# External directories (absolute paths)\n")
            lines.extend(f"{i}={str(self.entries[i].enabled).lower()}\n" for i in external)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix='dirlist-', suffix='.tmp', dir=str(self.path.parent))
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.writelines(lines)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except OSError:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def refresh(self):
        """Load, sync, and save when the sync changed anything."""
        self.load()
        added, removed = self.sync()
        if added:
            logger.info("Added %d new directories (disabled by default): %s", len(added), ', '.join(added))
        if removed:
            logger.info("Removed %d non-existent directories: %s", len(removed), ', '.join(removed))
        if added or removed or not self.path.exists():
            self.save()
        total, enabled = len(self.entries), len(self.enabled())
        logger.info("Total directories: %d (enabled: %d, disabled: %d)", total, enabled, total - enabled)
        return self

    def enabled(self):
        return sorted(i for i, e in self.entries.items() if e.enabled)

    def set_enabled(self, identifier, enabled):
        if identifier not in self.entries:
            raise ValueError(f"Not in dirlist: {identifier}")
        self.entries[identifier].enabled = enabled

    def add_external(self, path):
        if Path(path).is_absolute():
            path = str(Path(path).resolve())
        if not valid_external_path(path):
            raise ValueError(f"Invalid external path (must be absolute, exist and contain a compose file): {path}")
        if path in self.entries:
            raise ValueError(f"Path already in dirlist: {path}")
        self.entries[path] = DirlistEntry(path, enabled=False)
        return path

    def remove_external(self, path):
        entry = self.entries.get(path)
        if entry is None:
            raise ValueError(f"Not in dirlist: {path}")
        if not entry.external:
            raise ValueError(f"Cannot remove discovered directory {path}; disable it instead")
        del self.entries[path]

    def full_path(self, identifier):
        entry = self.entries[identifier]
        return Path(identifier) if entry.external else self.base_dir / identifier

    def stacks(self):
        """Stacks for the enabled entries; external stacks are named by their path."""
        if not self.enabled():
            logger.warning("No directories enabled for backup. Edit %s to enable directories", self.path)
        return [Stack(name=i, path=self.full_path(i)) for i in self.enabled()]
