import os
import stat

import pytest

from stackguard.dirlist import Dirlist, discover_directories, valid_dir_name


def _stack_dir(path, compose=True):
    path.mkdir(parents=True)
    if compose:
        (path / 'compose.yml').write_text('services: {}\n')
    return path


@pytest.fixture
def base(tmp_path):
    base = tmp_path / 'stacks'
    _stack_dir(base / 'web')
    _stack_dir(base / 'db')
    _stack_dir(base / 'notes', compose=False)
    _stack_dir(base / '.hidden')
    return base


@pytest.mark.parametrize('name,valid', [
    ('web', True), ('my-app_2.0', True), ('', False), ('.hidden', False),
    ('..', False), ('has space', False), ('a/b', False),
])
def test_valid_dir_name(name, valid):
    assert valid_dir_name(name) is valid


def test_discover_directories(base):
    assert discover_directories(base) == ['db', 'web']


def test_discover_directories_missing_base(tmp_path):
    with pytest.raises(ValueError):
        discover_directories(tmp_path / 'missing')


def test_refresh_creates_file_with_new_entries_disabled(base, tmp_path):
    path = tmp_path / 'dirlist'
    dl = Dirlist(path, base).refresh()

    assert sorted(dl.entries) == ['db', 'web']
    assert dl.enabled() == []
    assert dl.stacks() == []
    text = path.read_text()
    assert 'db=false\n' in text and 'web=false\n' in text
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600


def test_sync_keeps_choices_and_drops_vanished_dirs(base, tmp_path):
    path = tmp_path / 'dirlist'
    path.write_text('# comment\nweb=true\ngone=true\nnot a line\n')
    _stack_dir(base / 'cache')

    dl = Dirlist(path, base).load()
    added, removed = dl.sync()

    assert added == ['cache', 'db']
    assert removed == ['gone']
    assert dl.enabled() == ['web']


def test_external_entries_survive_sync(base, tmp_path):
    external = _stack_dir(tmp_path / 'elsewhere' / 'web')
    path = tmp_path / 'dirlist'

    dl = Dirlist(path, base).refresh()
    assert dl.add_external(str(external)) == str(external)
    dl.set_enabled(str(external), True)
    dl.save()

    reloaded = Dirlist(path, base).refresh()
    assert reloaded.enabled() == [str(external)]
    [stack] = reloaded.stacks()
    assert stack.name == str(external)
    assert stack.path == external


def test_invalid_external_entries_are_dropped_on_load(base, tmp_path):
    path = tmp_path / 'dirlist'
    path.write_text(f"{tmp_path / 'nowhere'}=true\nweb=true\n")
    assert Dirlist(path, base).load().enabled() == ['web']


def test_add_external_validation(base, tmp_path):
    dl = Dirlist(tmp_path / 'dirlist', base).refresh()
    no_compose = _stack_dir(tmp_path / 'plain', compose=False)
    with pytest.raises(ValueError):
        dl.add_external(str(no_compose))
    with pytest.raises(ValueError):
        dl.add_external('relative/path')

    external = _stack_dir(tmp_path / 'ext')
    dl.add_external(str(external))
    with pytest.raises(ValueError):
        dl.add_external(str(external))


def test_remove_external_only(base, tmp_path):
    external = _stack_dir(tmp_path / 'ext')
    dl = Dirlist(tmp_path / 'dirlist', base).refresh()
    dl.add_external(str(external))

    with pytest.raises(ValueError):
        dl.remove_external('web')
    dl.remove_external(str(external))
    assert str(external) not in dl.entries


def test_set_enabled_unknown_entry(base, tmp_path):
    dl = Dirlist(tmp_path / 'dirlist', base).refresh()
    with pytest.raises(ValueError):
        dl.set_enabled('ghost', True)
