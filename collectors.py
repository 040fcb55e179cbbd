#!python3

import argparse
import logging
import sys

from plugin import PluginCollection


def main(argv=None):
    parser = argparse.ArgumentParser()
    parser.add_argument('-p', '--plugin', action='append', help='only run this plugin (repeatable)')
    args = parser.parse_args(argv)

    plugins = PluginCollection('plugins', filter_by_names=args.plugin)
    plugins.list()

    for plugin in plugins.init():
        logging.error(f'plugin {plugin.name}/{plugin.version} disabled')

    if not plugins.active():
        logging.error('no active plugin, exiting')
        return 1

    plugins.schedule()
    return 0


if __name__ == '__main__':
    logging.getLogger().setLevel(logging.ERROR)
    logging.basicConfig(format='%(asctime)s %(levelname)-8s [%(lineno)-3d]%(filename)-20s: %(message)s')

    sys.exit(main())
