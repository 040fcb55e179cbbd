import datetime
import json

import pytest

from conftest import FakeResponse, FakeSession, sign_in_body, usage_body
from plugins.eredes import api
from plugins.eredes.eredes import Eredes, LoadCurveGatherer
from plugins.eredes.exceptions import AuthError, ConfigError, FetchError
from plugins.eredes.parser import LoadCurveParser
from plugins.eredes.window import Window

NOW = datetime.datetime(2021, 1, 10, 12, 0, 0)


class StubAuth:
    def __init__(self, token='abc', error=None):
        self.token = token
        self.error = error
        self.calls = 0

    def sign_in(self):
        self.calls += 1
        if self.error:
            raise self.error
        return self.token


class StubFetcher:
    def __init__(self, payload=None, error=None):
        self.payload = payload
        self.error = error
        self.calls = []

    def fetch(self, window, token):
        self.calls.append((window, token))
        if self.error:
            raise self.error
        return self.payload


def gatherer(auth, fetcher, history=168):
    return LoadCurveGatherer(Window(datetime.timedelta(hours=history)), auth, fetcher, LoadCurveParser())


def test_cycle_emits_every_reading_in_order(acc, usage_payload):
    fetcher = StubFetcher(usage_payload)
    count = gatherer(StubAuth('tok'), fetcher).gather(acc, NOW)

    assert count == 3
    assert fetcher.calls == [(('2021-01-01 23:59:59', '2021-01-08 23:59:59'), 'tok')]
    assert [m[1]['value'] for m in acc.metrics] == ['0.120', '0.085', '0.301']
    name, fields, tags, timestamp = acc.metrics[0]
    assert name == 'eredes'
    assert tags == {}
    assert timestamp == datetime.datetime(2021, 1, 1, 0, 15)
    assert acc.errors == []


def test_auth_error_reported_without_fetch(acc):
    fetcher = StubFetcher(b'{}')
    gatherer(StubAuth(error=AuthError('received status code 401')), fetcher).gather(acc, NOW)

    assert fetcher.calls == []
    assert acc.metrics == []
    assert acc.errors == ['[signIn]: received status code 401']


def test_empty_token_skips_fetch(acc):
    fetcher = StubFetcher(b'{}')
    assert gatherer(StubAuth(''), fetcher).gather(acc, NOW) == 0
    assert fetcher.calls == []
    assert acc.errors == []


def test_fetch_error_reported(acc):
    gatherer(StubAuth(), StubFetcher(error=FetchError('timed out'))).gather(acc, NOW)
    assert acc.metrics == []
    assert acc.errors == ['[usage]: timed out']


def test_malformed_payload_emits_nothing(acc):
    gatherer(StubAuth(), StubFetcher(b'{"Body": {')).gather(acc, NOW)
    assert acc.metrics == []
    assert len(acc.errors) == 1
    assert acc.errors[0].startswith('[parse]: invalid JSON')


def test_bad_reading_discards_whole_batch(acc, readings):
    readings.append({'date': 'yesterday-ish', 'value': '1'})
    gatherer(StubAuth(), StubFetcher(json.dumps(usage_body(readings)).encode())).gather(acc, NOW)

    assert acc.metrics == []
    assert acc.errors[0].startswith('[parse]: invalid timestamp')


def test_every_cycle_signs_in_again(acc, usage_payload):
    auth = StubAuth()
    g = gatherer(auth, StubFetcher(usage_payload))
    g.gather(acc, NOW)
    g.gather(acc, NOW + datetime.timedelta(days=1))

    assert auth.calls == 2
    assert g.fetcher.calls[1][0] == ('2021-01-02 23:59:59', '2021-01-09 23:59:59')
    assert len(acc.metrics) == 6


def test_plugin_cycle_over_http(acc, config, usage_payload, monkeypatch):
    session = FakeSession(FakeResponse(body=sign_in_body('tok')), FakeResponse(body=usage_payload))
    monkeypatch.setattr(api.requests, 'Session', lambda: session)

    plugin = Eredes(dict(config, history_interval='168h', timeout=30, tags={'cpe': config['cpe']}))
    plugin.init()
    plugin.gatherer.gather(acc, NOW)

    sign_in, usage = session.calls
    assert sign_in['body'] == {'password': 's3cret', 'username': 'user@example.com'}
    assert usage['body']['cpe'] == 'PT0002000000000000AB'
    assert usage['body']['start_date'] == '2021-01-01 23:59:59'
    assert usage['headers']['Authorization'] == 'Bearer tok'
    assert usage['timeout'] == 30
    assert len(acc.metrics) == 3
    assert acc.metrics[0][2] == {'cpe': 'PT0002000000000000AB'}


def test_plugin_status_error_yields_no_metrics(acc, config, monkeypatch):
    session = FakeSession(FakeResponse(body=sign_in_body('tok')), FakeResponse(500, b'', 'Internal Server Error'))
    monkeypatch.setattr(api.requests, 'Session', lambda: session)

    plugin = Eredes(config)
    plugin.gather(acc)

    assert acc.metrics == []
    assert acc.errors == ['[usage]: received status code 500 (Internal Server Error), expected any value out of [200]']


def test_tests_only_mode_uses_fixed_token_and_skips_fetch(acc, monkeypatch):
    def no_network():
        raise AssertionError('no session expected')

    monkeypatch.setattr(api.requests, 'Session', no_network)

    plugin = Eredes({'run_tests_only': True})
    plugin.init()
    assert plugin.gatherer.auth.sign_in() == api.TEST_TOKEN
    assert isinstance(plugin.gatherer.fetcher, api.DryRunUsageFetcher)

    plugin.gather(acc)
    assert acc.metrics == []
    assert acc.errors == []


def test_missing_credentials(config):
    del config['password']
    with pytest.raises(ConfigError, match='password'):
        Eredes(config).init()


@pytest.mark.parametrize('key, value', [
    ('timeout', 'soon'),
    ('history_interval', '3 days'),
    ('timezone', 'Nowhere/Atlantis'),
    ('schedule_at', '6:00'),
    ('schedule_at', 6),
])
def test_invalid_config(config, key, value):
    config[key] = value
    with pytest.raises(ConfigError):
        Eredes(config).init()


def test_injected_parser_is_kept(config):
    custom = LoadCurveParser(measurement='custom')
    plugin = Eredes(config)
    plugin.set_parser(custom)
    plugin.init()
    assert plugin.gatherer.parser is custom

    other = LoadCurveParser(measurement='other')
    plugin.set_parser(other)
    assert plugin.gatherer.parser is other


def test_config_defaults(config):
    plugin = Eredes(config)
    assert plugin.name == 'eredes'
    assert plugin.config['success_status_codes'] == [200]
    assert plugin.config['timeout'] == '120s'
    assert plugin.config['usage_url'] == api.USAGE_URL


def test_daily_scheduler(config):
    sch = Eredes(config).scheduler()
    job, = sch.jobs
    assert job.at_time == datetime.time(6, 0)


def test_gather_reports_config_error(acc, config):
    del config['cpe']
    Eredes(config).gather(acc)
    assert acc.metrics == []
    assert acc.errors == ['[init]: missing configuration: cpe']


def test_bad_schedule_time_rejected_in_tests_only_mode():
    with pytest.raises(ConfigError, match="invalid schedule_at '6:00'"):
        Eredes({'run_tests_only': True, 'schedule_at': '6:00'}).init()
