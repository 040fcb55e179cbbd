import json

import pytest
import requests


class FakeResponse:
    def __init__(self, status_code=200, body=b'', reason='OK'):
        self.status_code = status_code
        self.reason = reason
        if isinstance(body, (dict, list)):
            body = json.dumps(body)
        if isinstance(body, str):
            body = body.encode('utf-8')
        self.content = body


class FakeSession:
    """requests.Session stand-in answering POSTs from a queue"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []
        self.verify = True
        self.cert = None

    def post(self, url, data=None, json=None, headers=None, timeout=None):
        self.calls.append({
            'url': url,
            'data': data,
            'body': json,
            'headers': headers,
            'timeout': timeout,
        })
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeAccumulator:
    def __init__(self):
        self.metrics = []
        self.errors = []

    def add_fields(self, name, fields, tags, timestamp):
        self.metrics.append((name, fields, tags, timestamp))

    def add_error(self, err):
        self.errors.append(err)


def usage_body(readings):
    return {
        'Body': {
            'Result': {
                'utilitiesDevices': [
                    {'meterLoadCurves': [{'loadCurves': readings}]},
                ],
            },
        },
    }


def sign_in_body(token='abc123'):
    return {'Body': {'Result': {'token': token}}}


@pytest.fixture
def readings():
    return [
        {'date': '2021-01-01 00:15:00', 'value': '0.120'},
        {'date': '2021-01-01 00:30:00', 'value': '0.085'},
        {'date': '2021-01-01 00:45:00', 'value': '0.301'},
    ]


@pytest.fixture
def usage_payload(readings):
    return json.dumps(usage_body(readings)).encode('utf-8')


@pytest.fixture
def acc():
    return FakeAccumulator()


@pytest.fixture
def config():
    return {
        'username': 'user@example.com',
        'password': 's3cret',
        'cpe': 'PT0002000000000000AB',
    }


@pytest.fixture
def timeout_error():
    return requests.Timeout('read timed out')
