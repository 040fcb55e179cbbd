#!python3

import argparse
import logging
import sys

from plugin import LogAccumulator, PluginCollection


def main(argv=None):
    parser = argparse.ArgumentParser()
    parser.add_argument('-p', '--plugin', required=True)
    parser.add_argument('-n', '--dry-run', action='store_true', help='log metrics instead of publishing them')
    args = parser.parse_args(argv)

    plugins = PluginCollection('plugins', filter_by_names=[args.plugin])
    if not plugins.plugins:
        logging.error(f'no plugin named {args.plugin}')
        return 1

    for plugin in plugins.plugins:
        logging.info(f'running plugin {plugin.name}/{plugin.version}')
        try:
            plugin.init()
        except Exception as ex:
            logging.error(f'unable to initialize plugin {plugin.name}: {ex}')
            return 1

        if args.dry_run:
            acc = LogAccumulator()
            plugin.gather(acc)
            logging.info(f'{acc.metrics} metrics, {len(acc.errors)} errors')
        else:
            plugin.job()

    return 0


if __name__ == '__main__':
    logging.getLogger().setLevel(logging.DEBUG)
    logging.basicConfig(format='%(asctime)s %(levelname)-8s [%(lineno)-3d]%(filename)-20s: %(message)s')

    sys.exit(main())
