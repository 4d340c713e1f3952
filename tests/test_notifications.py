import apprise

from stackguard import notifications
from stackguard.config import Config
from stackguard.notifications import build_summary, send_run_notification


METRICS = [
    {'stack_name': 'web', 'status': 'success', 'initial_state': 'running', 'error': None, 'recovered': False},
    {'stack_name': 'db', 'status': 'failed', 'initial_state': 'running',
     'error': 'failed to stop stack: containers still running', 'recovered': True},
]


class FakeApprise:
    instances = []

    def __init__(self):
        self.urls = []
        self.sent = []
        self.result = True
        FakeApprise.instances.append(self)

    def add(self, url):
        if url.startswith('bogus'):
            return False
        self.urls.append(url)
        return True

    def notify(self, title, body):
        self.sent.append((title, body))
        return self.result


def _install_fake(monkeypatch):
    FakeApprise.instances = []
    monkeypatch.setattr(apprise, 'Apprise', FakeApprise)


def test_build_summary_lists_stacks():
    title, body = build_summary(METRICS, 75)
    assert 'failed' in title and '1 of 2' in title
    assert '- web: success (initially running)' in body
    assert 'containers still running' in body
    assert '[force-started]' in body
    assert 'Duration: 1m 15s' in body


def test_build_summary_dry_run_and_success():
    title, _ = build_summary(METRICS[:1], 3, dry_run=True)
    assert title.startswith('[DRY RUN] Backup succeeded')


def test_no_urls_sends_nothing(monkeypatch):
    _install_fake(monkeypatch)
    assert send_run_notification(Config(), METRICS, 10) is None
    assert FakeApprise.instances == []


def test_success_only_sent_when_enabled(monkeypatch):
    _install_fake(monkeypatch)
    cfg = Config(apprise_urls=['json://localhost'])
    assert send_run_notification(cfg, METRICS[:1], 10) is None

    cfg.notify_on_success = True
    res = send_run_notification(cfg, METRICS[:1], 10)
    assert res.success is True
    assert 'succeeded' in FakeApprise.instances[0].sent[0][0]


def test_failure_is_sent(monkeypatch):
    _install_fake(monkeypatch)
    cfg = Config(apprise_urls=['bogus://x', 'json://localhost'])
    res = send_run_notification(cfg, METRICS, 10)
    assert res.success is True
    apobj = FakeApprise.instances[0]
    assert apobj.urls == ['json://localhost']
    assert 'db' in apobj.sent[0][1]


def test_no_valid_urls(monkeypatch):
    _install_fake(monkeypatch)
    res = send_run_notification(Config(apprise_urls=['bogus://x']), METRICS, 10)
    assert res.success is False
    assert 'no apprise URLs' in res.detail


def test_notify_exception_is_retried_once(monkeypatch):
    _install_fake(monkeypatch)
    monkeypatch.setattr(notifications.time, 'sleep', lambda s: None)
    calls = []

    def flaky(self, title, body):
        calls.append(title)
        if len(calls) == 1:
            raise RuntimeError('connection reset')
        return True

    monkeypatch.setattr(FakeApprise, 'notify', flaky)
    res = send_run_notification(Config(apprise_urls=['json://localhost']), METRICS, 10)
    assert res.success is True
    assert len(calls) == 2
