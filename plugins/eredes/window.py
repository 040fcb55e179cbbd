import datetime
import logging


DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

ONE_DAY = datetime.timedelta(hours=24)


def end_of_previous_day(dt):
    """23:59:59 of the day before dt

    The provider treats the start of the window as exclusive, so the window
    boundaries sit on the last second of a day.
    """
    midnight = datetime.datetime.combine(dt.date(), datetime.time(), tzinfo=dt.tzinfo)
    return midnight - datetime.timedelta(seconds=1)


class Window(object):
    """Date range requested from E-Redes on each cycle

    E-Redes never has readings for today or yesterday, so the window always
    ends two calendar days before now.
    """

    def __init__(self, history_interval=ONE_DAY, start_date=''):
        if not isinstance(history_interval, datetime.timedelta):
            history_interval = datetime.timedelta(seconds=history_interval)
        self.history_interval = history_interval
        self.start_date = start_date or ''

    @property
    def effective_interval(self):
        return max(self.history_interval, ONE_DAY)

    def compute(self, now=None):
        if now is None:
            now = datetime.datetime.now()

        if self.start_date:
            start = self.start_date
        else:
            logging.info('no start date defined')
            if self.history_interval < ONE_DAY:
                logging.info('no history interval defined or < 24h, using 24h')
            start = end_of_previous_day(now - self.effective_interval - ONE_DAY).strftime(DATE_FORMAT)

        end = end_of_previous_day(now - ONE_DAY).strftime(DATE_FORMAT)

        logging.info(f'start date: {start} end date: {end}')
        return start, end
