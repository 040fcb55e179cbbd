import datetime
import logging

import plugin
import schedule

from plugins.eredes.api import (
    SIGN_IN_URL, USAGE_URL, ApiSession, DryRunUsageFetcher, FixedTokenSignIn, SignIn, UsageFetcher)
from plugins.eredes.exceptions import AuthError, ConfigError, FetchError, ParseError
from plugins.eredes.parser import DEFAULT_QUERY, LoadCurveParser
from plugins.eredes.window import Window


class LoadCurveGatherer(object):
    """One E-Redes collection cycle: window, sign in, fetch, parse, emit

    Nothing is kept between cycles, every call signs in again and recomputes
    its window.
    """

    def __init__(self, window, auth, fetcher, parser):
        self.window = window
        self.auth = auth
        self.fetcher = fetcher
        self.parser = parser

    def emit(self, acc, reading):
        acc.add_fields(reading.name, reading.fields, reading.tags, reading.time)

    def gather(self, acc, now=None):
        logging.info('starting')
        window = self.window.compute(now)

        try:
            token = self.auth.sign_in()
        except AuthError as ex:
            acc.add_error(f'[signIn]: {ex}')
            return 0

        if not token:
            logging.warning('empty token, skipping usages')
            return 0

        try:
            payload = self.fetcher.fetch(window, token)
        except FetchError as ex:
            acc.add_error(f'[usage]: {ex}')
            return 0

        if payload is None:
            return 0

        try:
            readings = list(self.parser.parse(payload))
        except ParseError as ex:
            acc.add_error(f'[parse]: {ex}')
            return 0

        if not readings:
            logging.info('no metrics to add')
            return 0

        logging.info(f'adding {len(readings)} metrics')
        for reading in readings:
            self.emit(acc, reading)
        return len(readings)


class Eredes(plugin.Plugin):
    DEFAULT_CONFIG = {
        'sign_in_url': SIGN_IN_URL,
        'usage_url': USAGE_URL,
        'headers': {},
        'insecure_skip_verify': False,
        'tls_ca': None,
        'tls_cert': None,
        'tls_key': None,
        'timeout': '120s',
        'history_interval': '24h',
        'start_date': '',
        'success_status_codes': [200],
        'run_tests_only': False,
        'schedule_at': '06:00',
        'measurement': 'eredes',
        'json_query': DEFAULT_QUERY,
        'name_key': '',
        'time_key': 'date',
        'time_format': '%Y-%m-%d %H:%M:%S',
        'timezone': '',
        'fields': ['value'],
        'float_fields': [],
        'tag_keys': [],
        'tags': {},
    }

    def __init__(self, config=None):
        super().__init__(config)
        self.active = True
        self.name = 'eredes'
        self.version = '1.0'
        self.description = 'E-Redes Load Curve Collector'
        self.mqtt_topic = '/power/eredes'

        self.gatherer = None

    def scheduler(self):
        scheduler = schedule.Scheduler()
        scheduler.every().day.at(self.config['schedule_at']).do(self.run_threaded, self.job)
        return scheduler

    def set_parser(self, parser):
        super().set_parser(parser)
        if self.gatherer is not None:
            self.gatherer.parser = parser

    def build_parser(self):
        return LoadCurveParser(
            measurement=self.config['measurement'],
            query=self.config['json_query'],
            time_key=self.config['time_key'],
            time_format=self.config['time_format'],
            timezone=self.config['timezone'],
            fields=self.config['fields'],
            float_fields=self.config['float_fields'],
            tag_keys=self.config['tag_keys'],
            name_key=self.config['name_key'],
            tags=self.config['tags'])

    def init(self):
        try:
            self.scheduler()
        except (schedule.ScheduleValueError, TypeError) as ex:
            raise ConfigError(f"invalid schedule_at {self.config['schedule_at']!r}: {ex}")

        try:
            history_interval = plugin.duration_seconds(self.config['history_interval'])
            timeout = plugin.duration_seconds(self.config['timeout'])
        except ValueError as ex:
            raise ConfigError(str(ex))

        window = Window(datetime.timedelta(seconds=history_interval), self.config['start_date'])

        if self.config['run_tests_only']:
            auth = FixedTokenSignIn()
            fetcher = DryRunUsageFetcher(self.config.get('cpe', ''), self.config['usage_url'])
        else:
            missing = [k for k in ('username', 'password', 'cpe') if not self.config.get(k)]
            if missing:
                raise ConfigError('missing configuration: ' + ', '.join(missing))

            api = ApiSession(
                headers=self.config['headers'],
                timeout=timeout,
                success_status_codes=self.config['success_status_codes'],
                insecure_skip_verify=self.config['insecure_skip_verify'],
                tls_ca=self.config['tls_ca'],
                tls_cert=self.config['tls_cert'],
                tls_key=self.config['tls_key'])
            auth = SignIn(api, self.config['username'], self.config['password'], self.config['sign_in_url'])
            fetcher = UsageFetcher(api, self.config['cpe'], self.config['usage_url'])

        if self.parser is None:
            try:
                self.set_parser(self.build_parser())
            except ValueError as ex:
                raise ConfigError(str(ex))

        self.gatherer = LoadCurveGatherer(window, auth, fetcher, self.parser)

    def gather(self, acc):
        if self.gatherer is None:
            try:
                self.init()
            except ConfigError as ex:
                acc.add_error(f'[init]: {ex}')
                return
        self.gatherer.gather(acc)
