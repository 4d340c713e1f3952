import pytest

from stackguard.command import CommandResult
from stackguard.stacks import Stack


def ok(stdout=''):
    return CommandResult(program='docker', args=[], exit_code=0, stdout=stdout)


def fail(stderr='boom', exit_code=1):
    return CommandResult(program='docker', args=[], exit_code=exit_code, stderr=stderr,
                         error=f"exit status {exit_code}")


def timed_out():
    return CommandResult(program='docker', args=[], exit_code=-1, timed_out=True,
                         error='command timed out')


def _verb(program, args):
    if program != 'docker':
        return 'backup'
    if args[1] == 'ps':
        return 'status' if '--services' in args else 'containers'
    return args[1]


class FakeRunner:
    """Stands in for run_command; answers by compose verb.

    ``responses`` maps a verb ('status', 'containers', 'stop', 'start',
    'config', 'backup') to a CommandResult or a list of them consumed in order
    (the last one repeats).
    """

    def __init__(self, **responses):
        self.responses = responses
        self.calls = []

    def __call__(self, program, args, cwd=None, timeout=None, **kwargs):
        verb = _verb(program, args)
        self.calls.append({'verb': verb, 'program': program, 'args': list(args),
                           'cwd': cwd, 'timeout': timeout, **kwargs})
        answer = self.responses.get(verb, ok())
        if isinstance(answer, list):
            return answer.pop(0) if len(answer) > 1 else answer[0]
        return answer

    def verbs(self):
        return [c['verb'] for c in self.calls]


class SleepRecorder:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def make_stack(tmp_path):
    def _make(name='web', compose_file='compose.yml'):
        d = tmp_path / name
        d.mkdir()
        if compose_file:
            (d / compose_file).write_text('services:\n  app:\n    image: nginx\n')
        return Stack(name=name, path=d)
    return _make


@pytest.fixture
def sleeper():
    return SleepRecorder()
