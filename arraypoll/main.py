#!/usr/bin/env python3

# -----------------------------------------------------------------------------
# Copyright (c) 2025 ArrayPoll contributors
# Licensed under the MIT License. See LICENSE in project root for details.
# -----------------------------------------------------------------------------

"""
Entry point for one ArrayPoll collection pass against one storage console.

- config: environment, .env and YAML file merged into a VendorConfig
- drivers: vendor backend that logs in, collects and normalizes
- writer: outputs the CanonicalResult as JSON
"""

import argparse
import logging
import logging.handlers
import os
import sys
from typing import List, Optional

from arraypoll.config import SUPPORTED_VENDORS, Settings
from arraypoll.drivers import driver_for
from arraypoll.errors import ConfigError, LoginError
from arraypoll.writer.json_writer import JsonWriter

FORMAT = '%(asctime)s - %(levelname)s - %(funcName)s - %(lineno)d - %(message)s'
DATEFMT = '%Y-%m-%dT%H:%M:%SZ'
LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_PARTIAL = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Collect health, capacity and performance data from one storage array")
    parser.add_argument('--vendor', required=True, choices=SUPPORTED_VENDORS,
        help='Storage console vendor to collect from.')
    parser.add_argument('--config', type=str, default=None,
        help='Path to YAML config file. Values override environment variables and .env.')
    parser.add_argument('--host', type=str, default=None,
        help='Console base URL, e.g. https://10.0.0.5. Overrides config file and environment.')
    parser.add_argument('--username', '-u', type=str, default=None,
        help='Console username. Overrides config file and environment.')
    parser.add_argument('--password', '-p', type=str, default=None,
        help='Console password. Overrides config file and environment.')
    parser.add_argument('--sessionDir', type=str, default=None,
        help='Directory holding cached session tokens (<vendor>.cookie). Default: cookie')
    parser.add_argument('--output', type=str, default=None,
        help='Write the JSON result to this file instead of stdout.')
    parser.add_argument('--logfile', type=str, default=None,
        help='Path to a rotating log file. If not provided, logs to console only.')
    parser.add_argument('--loglevel', type=str, choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], default='INFO',
        help='Log level for both console and file output. Default: INFO')
    return parser


def configure_logging(loglevel: str, logfile: Optional[str] = None) -> None:
    log_level = getattr(logging, loglevel.upper())
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    problem = None

    if logfile:
        logfile_dir = os.path.dirname(logfile) if os.path.dirname(logfile) else '.'
        if os.path.exists(logfile_dir) and os.access(logfile_dir, os.W_OK):
            try:
                handlers = [logging.handlers.RotatingFileHandler(
                    logfile, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT, encoding='utf-8')]
            except OSError as e:
                problem = f'Failed to configure file logging to {logfile}: {e}'
        else:
            problem = f'Logfile directory {logfile_dir} does not exist or is not writable'

    logging.basicConfig(level=log_level, format=FORMAT, datefmt=DATEFMT, handlers=handlers, force=True)
    if problem:
        logging.error(problem)
        logging.warning('Falling back to console logging only')
    elif logfile:
        logging.info('Logging to file: ' + logfile)

    # Never allow HTTP/WebSocket libraries to log below INFO: headers carry session cookies
    library_level = max(log_level, logging.INFO)
    for name in ("requests", "urllib3", "websockets"):
        logging.getLogger(name).setLevel(level=library_level)


def main(argv: Optional[List[str]] = None) -> int:
    CMD = build_parser().parse_args(argv)
    configure_logging(CMD.loglevel, CMD.logfile)
    LOG = logging.getLogger(__name__)

    try:
        settings = Settings(config_file=CMD.config)
        if CMD.sessionDir:
            settings.session_dir = CMD.sessionDir
        config = settings.vendor_config(CMD.vendor, host=CMD.host, username=CMD.username, password=CMD.password)
        driver = driver_for(CMD.vendor)(config)
    except ConfigError as e:
        LOG.error(f"Configuration error: {e}")
        return EXIT_FAILED

    try:
        result = driver.run()
    except LoginError as e:
        LOG.error(f"Login to {config.host} failed: {e}")
        return EXIT_FAILED

    writer = JsonWriter(CMD.output)
    try:
        if not writer.write(result):
            return EXIT_FAILED
    finally:
        writer.close()

    if result.succeeded:
        LOG.info(f"Collection from {config.host} completed")
        return EXIT_OK
    for failure in result.failures:
        LOG.warning(f"Failed step {failure.step}: {failure.error_type}: {failure.message}")
    return EXIT_PARTIAL


if __name__ == "__main__":
    sys.exit(main())
