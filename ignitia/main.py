import argparse
import logging
import sys
from typing import Any, Callable, Dict, Optional, TextIO

import requests

from ignitia.collect.session import CollectionSession
from ignitia.core.config import Config
from ignitia.core.errors import IgnitiaError
from ignitia.model.records import Data
from ignitia.persistence.base import DataReader, load
from ignitia.persistence.registry import BackendRegistry, default_registry

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'

logger = logging.getLogger("ignitia")


def setup_basic_logging():
    """Setup basic stdout logging before config is loaded"""
    root_logger = logging.getLogger()
    if not root_logger.handlers:  # Only add handler if none exists
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(handler)
        root_logger.setLevel(logging.INFO)


def setup_logging(settings: Dict[str, Any]) -> None:
    """Apply the configured level and optional log file"""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, str(settings.get("level", "INFO")).upper(), logging.INFO))

    log_file = settings.get("file")
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(file_handler)


def collect(
    config: Config,
    session_factory: Optional[Callable[[], requests.Session]] = None,
) -> Optional[Data]:
    """Run one collection cycle; None when the session failed."""
    portal = config.portal()
    if not portal.get("base_url"):
        logger.error("portal.base_url is not configured (set IGNITIA_BASE_URL)")
        return None

    session = CollectionSession.from_config(portal, config.logging_settings(), session_factory=session_factory)
    data = session.data()
    if session.error() is not None:
        logger.error(f"error refreshing: {session.error()}")
        return None
    return data


def print_due(data: Data, out: Optional[TextIO] = None) -> None:
    """Plain-text report of assignments that are due, per student and course."""
    out = out or sys.stdout
    for student in data.sorted_students():
        if not student.courses:
            continue

        out.write(f"\nStudent: {student.name}\n")
        for course in student.sorted_courses():
            if not course.assignments:
                continue

            out.write(f"\n  Course: {course.title}; {len(course.assignments)} assignments\n")
            for assignment in course.sorted_assignments():
                if assignment.is_due():
                    marker = "!" if assignment.is_overdue() else " "
                    out.write(f"   {marker}Assignment: {assignment}\n")


def main(
    argv=None,
    registry: Optional[BackendRegistry] = None,
    session_factory: Optional[Callable[[], requests.Session]] = None,
) -> int:
    setup_basic_logging()
    parser = argparse.ArgumentParser(description='Ignitia progress report')
    parser.add_argument('--config',
                        help='Path to config file (default: ~/.ignitia/config.yaml)')
    parser.add_argument('command', choices=['print', 'snapshot', 'history'],
                        help='print: due assignments; snapshot: collect and save; history: print stored snapshot')

    args = parser.parse_args(argv)
    config = Config(config_path=args.config)
    setup_logging(config.logging_settings())

    if args.command == 'print':
        data = collect(config, session_factory)
        if data is None:
            return 1
        print_due(data)
        return 0

    registry = registry or default_registry()
    backend = registry.open(config.storage_url())
    if backend is None:
        return 1
    if backend.error() is not None:
        logger.error(f"error opening storage: {backend.error()}")
        return 1

    if args.command == 'snapshot':
        data = collect(config, session_factory)
        if data is None:
            return 1
        try:
            backend.save(DataReader(data))
        except IgnitiaError as e:
            logger.error(f"error saving snapshot: {e}")
            return 1
        return 0

    data = load(backend)
    if backend.error() is not None:
        logger.error(f"error reading storage: {backend.error()}")
        return 1
    print_due(data)
    return 0


if __name__ == "__main__":
    sys.exit(main())
