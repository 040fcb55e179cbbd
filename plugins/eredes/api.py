import logging

import requests
from requests.structures import CaseInsensitiveDict

from plugins.eredes.exceptions import AuthError, FetchError
from plugins.eredes.parser import PathNotFound, loads, lookup


SIGN_IN_URL = 'https://online.e-redes.pt/listeners/api.php/ms/auth/auth/signin'
USAGE_URL = 'https://online.e-redes.pt/listeners/api.php/ms/reading/data-usage/sysgrid/get'

USER_AGENT = (
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_13_6) AppleWebKit/605.1.15 '
    '(KHTML, like Gecko) Version/13.1.2 Safari/605.1.15')

TEST_TOKEN = 'TOKEN1234567890'


class RequestFailed(Exception):
    pass


class ApiSession(object):
    """POSTs JSON bodies to E-Redes over a single reusable requests session
    """

    def __init__(
            self,
            headers=None,
            timeout=120,
            success_status_codes=(200,),
            insecure_skip_verify=False,
            tls_ca=None,
            tls_cert=None,
            tls_key=None,
            session=None):
        self.headers = CaseInsensitiveDict(headers or {})
        # sent as the Host header, overriding the one derived from the url
        self.host = self.headers.pop('host', None)
        self.timeout = timeout
        self.success_status_codes = list(success_status_codes)

        self.session = session if session is not None else requests.Session()
        if insecure_skip_verify:
            self.session.verify = False
        elif tls_ca:
            self.session.verify = tls_ca
        if tls_cert:
            self.session.cert = (tls_cert, tls_key) if tls_key else tls_cert

    def request_headers(self, token=''):
        headers = CaseInsensitiveDict(self.headers)
        if self.host:
            headers['Host'] = self.host
        if token:
            headers['Authorization'] = 'Bearer ' + token.strip('\n')
        headers['Content-Type'] = 'application/json'
        headers['User-Agent'] = USER_AGENT
        return headers

    def post(self, url, payload, token=''):
        try:
            r = self.session.post(
                url,
                json=payload,
                headers=self.request_headers(token),
                timeout=self.timeout)
        except requests.RequestException as ex:
            raise RequestFailed(str(ex))

        logging.debug(f'result: status={r.status_code}')
        if r.status_code not in self.success_status_codes:
            raise RequestFailed(
                f'received status code {r.status_code} ({r.reason}), '
                f'expected any value out of {self.success_status_codes}')

        return r.content


class SignIn(object):
    def __init__(self, api, username, password, url=SIGN_IN_URL):
        self.api = api
        self.username = username
        self.password = password
        self.url = url or SIGN_IN_URL

    def sign_in(self):
        logging.info('login')
        payload = {
            'password': self.password,
            'username': self.username,
        }
        try:
            response = self.api.post(self.url, payload)
        except RequestFailed as ex:
            logging.info('error login')
            raise AuthError(str(ex))

        try:
            token = lookup(loads(response), 'Body.Result.token')
        except PathNotFound:
            logging.warning('no token in sign in response')
            return ''
        except (UnicodeDecodeError, ValueError) as ex:
            raise AuthError(f'invalid sign in response: {ex}')

        logging.info('login successful')
        if token is None:
            return ''
        return str(token).strip('\n')


class FixedTokenSignIn(object):
    """Stands in for SignIn when running without network access
    """

    def __init__(self, token=TEST_TOKEN):
        self.token = token

    def sign_in(self):
        logging.info('using fixed token, skipping login')
        return self.token


class UsageFetcher(object):
    def __init__(self, api, cpe, url=USAGE_URL):
        self.api = api
        self.cpe = cpe
        self.url = url or USAGE_URL

    def payload(self, window):
        start, end = window
        return {
            'cpe': self.cpe,
            'request_type': '3',
            'start_date': start,
            'end_date': end,
            'wait': True,
            'formatted': False,
        }

    def fetch(self, window, token):
        logging.info('requesting usages')
        try:
            return self.api.post(self.url, self.payload(window), token)
        except RequestFailed as ex:
            raise FetchError(str(ex))


class DryRunUsageFetcher(UsageFetcher):
    """Logs the usage request instead of sending it, yielding no payload
    """

    def __init__(self, cpe='', url=USAGE_URL):
        super().__init__(None, cpe, url)

    def fetch(self, window, token):
        start, end = window
        logging.info(f'tests only, not requesting {self.url} from {start} to {end}')
        return None
