import os
import subprocess
import sys

import pytest

from stackguard.lock import AlreadyRunning, PidFile


def test_pid_file_written_and_removed(tmp_path):
    with PidFile(tmp_path) as pf:
        assert pf.path.read_text() == str(os.getpid())
    assert not pf.path.exists()


def test_stale_pid_file_is_replaced(tmp_path):
    # A PID from a process that has already exited
    proc = subprocess.Popen([sys.executable, '-c', 'pass'])
    proc.wait()
    (tmp_path / 'stackguard.pid').write_text(str(proc.pid))

    pf = PidFile(tmp_path).acquire()
    assert pf.path.read_text() == str(os.getpid())
    pf.release()


def test_live_pid_refuses(tmp_path):
    proc = subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(30)'])
    try:
        (tmp_path / 'stackguard.pid').write_text(str(proc.pid))
        with pytest.raises(AlreadyRunning):
            PidFile(tmp_path).acquire()
        # The other instance's file is left alone
        assert (tmp_path / 'stackguard.pid').read_text() == str(proc.pid)
    finally:
        proc.kill()
        proc.wait()


def test_garbage_pid_file_is_replaced(tmp_path):
    (tmp_path / 'stackguard.pid').write_text('not-a-pid')
    with PidFile(tmp_path) as pf:
        assert pf.path.read_text() == str(os.getpid())
