import logging
import os
import sys
from typing import Optional

import colorlog

LOG_FORMAT = '%(asctime)s %(blue)s%(name)s%(reset)s %(log_color)s%(levelname)-8s%(reset)s %(message)s'

LOG_COLORS = {
    'DEBUG': 'cyan',
    'INFO': 'green',
    'WARNING': 'yellow',
    'ERROR': 'red',
    'CRITICAL': 'red,bg_white',
}

# Chain and HTTP libraries log every request at DEBUG/INFO
NOISY_LOGGERS = (
    'aiohttp.client',
    'urllib3',
    'web3.providers',
    'web3.manager',
    'web3.RequestManager',
)


class PaddedModuleFormatter(colorlog.ColoredFormatter):
    """Colored formatter that fits logger names into a fixed-width column,
    e.g. ``services.quotation_service`` -> ``...ces.quotation_service``."""

    def __init__(self, *args, module_width: int = 25, **kwargs):
        super().__init__(*args, **kwargs)
        self.module_width = module_width

    def format(self, record):
        name = record.name
        if len(name) > self.module_width:
            record.name = "..." + name[-(self.module_width - 3):]
        else:
            record.name = name.ljust(self.module_width)
        try:
            return super().format(record)
        finally:
            record.name = name


def setup_logging(level: Optional[str] = None):
    """Send all logs to stderr with colors and fixed-width module names.

    The level is taken from ``level``, then ``LOG_LEVEL``, then INFO. Colors
    are dropped when stderr is not a terminal so piped logs stay readable.
    """
    log_level = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()

    # stdout is reserved for the JSON response body
    handler = colorlog.StreamHandler(sys.stderr)
    handler.setFormatter(PaddedModuleFormatter(
        LOG_FORMAT,
        log_colors=LOG_COLORS,
        no_color=not sys.stderr.isatty(),
        module_width=25,
    ))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
