import copy
import inspect
import json
import logging
import os
import pkgutil
import re
import sys
import threading
import time

import paho.mqtt.client as mqtt


DURATION_UNITS = {
    's': 1,
    'm': 60,
    'h': 3600,
    'd': 86400,
}


def duration_seconds(value):
    """Convert a duration such as 120, '90s', '24h' or '1h30m' to seconds
    """
    if isinstance(value, bool):
        raise ValueError(f'invalid duration: {value!r}')
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip().lower()
    parts = re.findall(r'(\d+(?:\.\d+)?)([smhd])', text)
    if not parts or ''.join(n + u for n, u in parts) != text:
        raise ValueError(f'invalid duration: {value!r}')

    return float(sum(float(n) * DURATION_UNITS[u] for n, u in parts))


class Accumulator(object):
    """Receives the metrics and errors produced by a plugin cycle
    """

    def add_fields(self, name, fields, tags, timestamp):
        raise NotImplementedError

    def add_error(self, err):
        raise NotImplementedError


class MqttAccumulator(Accumulator):
    def __init__(self, mqtt_client, topic):
        self.mqtt_client = mqtt_client
        self.topic = topic
        self.errors = []

    def add_fields(self, name, fields, tags, timestamp):
        data = [
            {
                'timestamp': int(timestamp.timestamp()),
                'measurement': name,
                'tags': dict(tags),
                'fields': dict(fields),
            }
        ]
        logging.debug(json.dumps(data))
        self.mqtt_client.publish(self.topic, json.dumps(data))

    def add_error(self, err):
        logging.error(str(err))
        self.errors.append(err)


class LogAccumulator(Accumulator):
    def __init__(self):
        self.metrics = 0
        self.errors = []

    def add_fields(self, name, fields, tags, timestamp):
        self.metrics += 1
        logging.info(f'{name} {tags} {fields} {timestamp.isoformat()}')

    def add_error(self, err):
        logging.error(str(err))
        self.errors.append(err)


class Plugin(object):
    """Base class that each plugin must inherit from. within this class
    you must define the methods that all of your plugins must implement
    """

    DEFAULT_CONFIG = {}

    def __init__(self, config=None):
        self.active = False
        self.name = None
        self.version = None
        self.description = None
        self.mqtt_topic = None
        self.parser = None

        self._job_lock = threading.Lock()

        if config is None:
            self.config_load()
        else:
            self.config = self.config_merge(config)

    def config_file(self):
        dir = sys.modules[self.__class__.__module__].__file__
        return os.path.join(os.path.dirname(dir), 'config.json')

    def config_load(self):
        file = self.config_file()
        logging.debug(f'reading config from {file}')
        config = {}
        if os.path.exists(file):
            with open(file) as f:
                config = json.load(f)
        self.config = self.config_merge(config)

    def config_merge(self, config):
        merged = copy.deepcopy(self.DEFAULT_CONFIG)
        merged.update(config)
        return merged

    def init(self):
        """Called once by the host before the first job
        """
        pass

    def set_parser(self, parser):
        """Lets the host supply the extraction logic used by gather
        """
        self.parser = parser

    def run_threaded(self, job_func):
        if not self._job_lock.acquire(blocking=False):
            logging.warning(f'{self.name}: previous job still running, skipping')
            return

        def run():
            try:
                job_func()
            finally:
                self._job_lock.release()

        logging.debug('running on thread {}'.format(threading.current_thread()))
        job_thread = threading.Thread(target=run)
        job_thread.start()

    def scheduler(self, **options):
        """This method returns a scheduler, ready to be called
        """
        raise NotImplementedError

    def gather(self, acc):
        """Run one collection cycle, reporting metrics and errors to acc
        """
        raise NotImplementedError

    def job(self):
        """This method execute the job of the plugin
        """
        mqtt_client = self.get_mqtt_client(self.name)
        try:
            self.gather(MqttAccumulator(mqtt_client, self.mqtt_topic))
        finally:
            mqtt_client.disconnect()
            mqtt_client.loop_stop()

    def mqtt_on_connect(self, mqttc, obj, flags, reason_code, properties):
        logging.debug('reason code: ' + str(reason_code))

    def mqtt_on_publish(self, mqttc, obj, mid, reason_code, properties):
        logging.debug('mid: ' + str(mid))

    def mqtt_on_log(self, mqttc, obj, level, string):
        logging.debug(string)

    def get_mqtt_client(self, app_id):
        mqtt_client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=app_id)

        mqtt_client.on_connect = self.mqtt_on_connect
        mqtt_client.on_publish = self.mqtt_on_publish
        mqtt_client.on_log = self.mqtt_on_log

        mqtt_client.username_pw_set(os.getenv('COLLECTOR_MQTT_USER'), os.getenv('COLLECTOR_MQTT_PASS'))
        mqtt_client.connect(os.getenv('COLLECTOR_MQTT_HOST', 'localhost'), port=int(os.getenv('COLLECTOR_MQTT_PORT', 1883)))
        mqtt_client.loop_start()

        return mqtt_client


class PluginCollection(object):
    """Upon creation, this class will read the plugins package for modules
    that contain a class definition that is inheriting from the Plugin class
    """

    def __init__(self, plugin_package, filter_by_names=None):
        """Constructor that initiates the reading of all available plugins
        when an instance of the PluginCollection object is created
        """
        self.plugin_package = plugin_package

        self.plugins = []
        self.seen_paths = []
        logging.info('looking for plugins')
        self.walk(self.plugin_package)

        if not (filter_by_names is None):
            self.plugins = [p for p in self.plugins if p.name in filter_by_names]

    def list(self):
        """List plugins
        """
        logging.info('list of plugins:')
        for plugin in self.plugins:
            logging.info(f'  * {plugin.description} ({plugin.name}/{plugin.version})')

    def walk(self, package):
        """Recursively walk the supplied package to retrieve all plugins
        """
        imported_package = __import__(package, fromlist=['blah'])

        for _, pluginname, ispkg in pkgutil.iter_modules(imported_package.__path__, imported_package.__name__ + '.'):
            if not ispkg:
                plugin_module = __import__(pluginname, fromlist=['blah'])
                clsmembers = inspect.getmembers(plugin_module, inspect.isclass)
                for (_, c) in clsmembers:
                    # Only classes defined in this module, so imported plugins are not created twice
                    if issubclass(c, Plugin) and c is not Plugin and c.__module__ == plugin_module.__name__:
                        logging.debug(f'found plugin class: {c.__module__}.{c.__name__}')
                        self.plugins.append(c())

        all_current_paths = []
        if isinstance(imported_package.__path__, str):
            all_current_paths.append(imported_package.__path__)
        else:
            all_current_paths.extend([x for x in imported_package.__path__])

        for pkg_path in all_current_paths:
            if pkg_path not in self.seen_paths:
                self.seen_paths.append(pkg_path)

                child_pkgs = [
                    p for p in sorted(os.listdir(pkg_path))
                    if os.path.isdir(os.path.join(pkg_path, p)) and not p.startswith(('_', '.'))
                ]

                for child_pkg in child_pkgs:
                    self.walk(package + '.' + child_pkg)
    def active(self):
        return [p for p in self.plugins if p.active]

    def init(self):
        """Initialize every active plugin, disabling the ones that fail.
        Returns the plugins that were disabled.
        """
        disabled = []
        for plugin in self.active():
            try:
                plugin.init()
            except Exception as ex:
                logging.error(f'unable to initialize plugin {plugin.name}: {ex}')
                plugin.active = False
                disabled.append(plugin)
        return disabled

    def schedulers(self):
        """Build (plugin, scheduler) pairs for the active plugins, disabling the ones that fail
        """
        schedulers = []
        for plugin in self.active():
            try:
                schedulers.append((plugin, plugin.scheduler()))
            except Exception as ex:
                logging.error(f'unable to schedule plugin {plugin.name}: {ex}')
                plugin.active = False
        return schedulers

    def schedule(self):
        """Run the plugins forever, init() must have been called first
        """
        schedulers = self.schedulers()
        for plugin, sch in schedulers:
            logging.info(f'running plugin {plugin.name}/{plugin.version}, publishing to {plugin.mqtt_topic}')
            try:
                sch.run_all()
            except Exception as ex:
                logging.error(str(ex))

        logging.info('running at scheduled time')
        while True:
            for _, s in schedulers:
                try:
                    s.run_pending()
                except Exception as ex:
                    logging.error(str(ex))

            time.sleep(1)
