import collections
import datetime
import json
import logging

import dateutil.parser
import dateutil.tz

from plugins.eredes.exceptions import ParseError


DEFAULT_QUERY = 'Body.Result.utilitiesDevices.0.meterLoadCurves.0.loadCurves'

Reading = collections.namedtuple('Reading', ['name', 'fields', 'tags', 'time'])


class PathNotFound(KeyError):
    pass


def lookup(document, path):
    """Walk a dotted path such as 'Body.Result.token' through nested dicts
    and lists, numeric components indexing lists. Raises PathNotFound.
    """
    node = document
    for key in path.split('.') if path else []:
        if isinstance(node, dict):
            if key not in node:
                raise PathNotFound(path)
            node = node[key]
        elif isinstance(node, list):
            try:
                node = node[int(key)]
            except (ValueError, IndexError):
                raise PathNotFound(path)
        else:
            raise PathNotFound(path)
    return node


def loads(payload):
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode('utf-8')
    return json.loads(payload)


class LoadCurveParser(object):
    """Turns a usage response into Readings

    Each object of the list found at `query` becomes one Reading, in the order
    returned by the provider.
    """

    def __init__(
            self,
            measurement='eredes',
            query=DEFAULT_QUERY,
            time_key='date',
            time_format='%Y-%m-%d %H:%M:%S',
            timezone='',
            fields=('value',),
            float_fields=(),
            tag_keys=(),
            name_key='',
            tags=None):
        self.measurement = measurement
        self.query = query
        self.time_key = time_key
        self.time_format = time_format
        self.fields = list(fields)
        self.float_fields = list(float_fields)
        self.tag_keys = list(tag_keys)
        self.name_key = name_key
        self.tags = dict(tags or {})

        self.tz = None
        if timezone:
            self.tz = dateutil.tz.gettz(timezone)
            if self.tz is None:
                raise ValueError(f'unknown timezone: {timezone}')

    def parse_time(self, value):
        try:
            if self.time_format == 'unix':
                return datetime.datetime.fromtimestamp(float(value), tz=datetime.timezone.utc)
            if self.time_format == 'unix_ms':
                return datetime.datetime.fromtimestamp(float(value) / 1000, tz=datetime.timezone.utc)
            if self.time_format:
                dt = datetime.datetime.strptime(str(value), self.time_format)
            else:
                dt = dateutil.parser.parse(str(value))
        except (TypeError, ValueError, OverflowError, OSError) as ex:
            raise ParseError(f'invalid timestamp {value!r} in "{self.time_key}": {ex}')

        if dt.tzinfo is None and self.tz is not None:
            dt = dt.replace(tzinfo=self.tz)
        return dt

    def parse_element(self, element):
        if not isinstance(element, dict):
            raise ParseError(f'expected an object at "{self.query}", got {type(element).__name__}')

        if self.time_key not in element:
            raise ParseError(f'missing timestamp key "{self.time_key}"')
        time = self.parse_time(element[self.time_key])

        fields = {}
        for key in self.fields:
            if key in element:
                fields[key] = element[key]
        for key in self.float_fields:
            if key in element:
                try:
                    fields[key] = float(element[key])
                except (TypeError, ValueError):
                    raise ParseError(f'field "{key}" is not a number: {element[key]!r}')
        if not fields:
            raise ParseError(f'no fields found in {element}')

        tags = dict(self.tags)
        for key in self.tag_keys:
            if key in element and element[key] is not None:
                tags[key] = str(element[key])

        name = self.measurement
        if self.name_key and element.get(self.name_key):
            name = str(element[self.name_key])

        return Reading(name, fields, tags, time)

    def parse(self, payload):
        """Yield one Reading per load curve element

        The returned generator is single pass. Any failure raises ParseError,
        callers needing all-or-nothing should consume it fully before use.
        """
        try:
            document = loads(payload)
        except (UnicodeDecodeError, ValueError) as ex:
            raise ParseError(f'invalid JSON: {ex}')

        try:
            elements = lookup(document, self.query)
        except PathNotFound:
            raise ParseError(f'path "{self.query}" not found in response')

        if not isinstance(elements, list):
            raise ParseError(f'path "{self.query}" is not a list')

        logging.debug(f'{len(elements)} load curve elements found')
        return (self.parse_element(element) for element in elements)
