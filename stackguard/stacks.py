"""
Stack discovery and validation.
"""
from dataclasses import dataclass
from pathlib import Path

from stackguard.utils import get_logger

logger = get_logger(__name__)

COMPOSE_FILES = (
    'compose.yml',
    'compose.yaml',
    'docker-compose.yml',
    'docker-compose.yaml',
)


@dataclass(frozen=True)
class Stack:
    """A named, directory-scoped group of compose services."""
    name: str
    path: Path

    @classmethod
    def from_path(cls, path, name=None):
        path = Path(path)
        return cls(name=name or path.name, path=path)

    def __str__(self):
        return self.name


def find_compose_file(directory):
    """
    Find compose file in directory.
    Looks for: compose.yml, compose.yaml, docker-compose.yml, docker-compose.yaml
    Returns filename if found, None otherwise.
    """
    for filename in COMPOSE_FILES:
        if (Path(directory) / filename).is_file():
            return filename
    return None


def validate_stack(stack_path):
    """
    Validate that a stack directory exists and contains a compose file.
    Returns (valid: bool, error_message: str)
    """
    path = Path(stack_path)

    if not path.exists():
        return False, f"Stack directory does not exist: {stack_path}"

    if not path.is_dir():
        return False, f"Stack path is not a directory: {stack_path}"

    if not find_compose_file(path):
        return False, f"No compose file found in {stack_path}"

    return True, None


def discover_stacks(base_dir):
    """
    Discover stacks below ``base_dir``.

    If ``base_dir`` itself holds a compose file it is returned as the only stack;
    otherwise every direct child directory with a compose file is a stack.
    Hidden directories are skipped. Returns a list of Stack sorted by name.
    """
    base = Path(base_dir)
    if not base.is_dir():
        logger.warning("Stacks directory not found: %s", base)
        return []

    if find_compose_file(base):
        return [Stack.from_path(base)]

    stacks = []
    try:
        for stack_dir in base.iterdir():
            if not stack_dir.is_dir() or stack_dir.name.startswith('.'):
                continue
            if find_compose_file(stack_dir):
                stacks.append(Stack.from_path(stack_dir))
    except OSError as e:
        logger.warning("Cannot read stacks directory %s: %s", base, e)
        return []

    return sorted(stacks, key=lambda s: s.name)


def ensure_unique_names(stacks):
    """Raise ValueError if two stacks share a name.

    Names key the lifecycle registry, so two directories called ``web`` would
    share one recorded initial state.
    """
    seen = {}
    clashes = []
    for stack in stacks:
        other = seen.setdefault(stack.name, stack)
        if other is not stack:
            clashes.append(f"Duplicate stack name '{stack.name}': {other.path} and {stack.path}")
    if clashes:
        raise ValueError('; '.join(clashes))
    return stacks


def resolve_stacks(base_dir, names=None, dirlist_file=None):
    """Return the stacks to operate on.

    ``names`` entries may be stack names below ``base_dir`` or paths to stack
    directories. With no names, the enabled entries of the dirlist at
    ``dirlist_file`` are used when one is configured, otherwise all discovered
    stacks. Raises ValueError listing every entry that does not resolve to a
    valid stack, or when two stacks end up with the same name.
    """
    if not names:
        if dirlist_file:
            from stackguard.dirlist import Dirlist
            return ensure_unique_names(Dirlist(dirlist_file, base_dir).refresh().stacks())
        return discover_stacks(base_dir)

    stacks = []
    errors = []
    for entry in names:
        candidate = Path(entry)
        if not candidate.is_absolute() and len(candidate.parts) == 1 and entry not in ('.', '..'):
            candidate = Path(base_dir) / entry
        valid, error = validate_stack(candidate)
        if not valid:
            errors.append(error)
            continue
        stacks.append(Stack.from_path(candidate.resolve()))

    if errors:
        raise ValueError('; '.join(errors))
    return ensure_unique_names(stacks)
