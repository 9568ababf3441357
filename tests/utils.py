# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""
<Program Name>
  utils.py

<Purpose>
  Provide common utilities for regtuf tests
"""

import argparse
import logging
import os
import shutil
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from regtuf.config import RepositoryConfig
from regtuf.repository import MetadataManager

logger = logging.getLogger(__name__)

# May be used to reliably read other files in tests dir regardless of cwd
TESTS_DIR = os.path.dirname(os.path.realpath(__file__))

# DataSet is only here so type hints can be used.
DataSet = Dict[str, Any]


# Test runner decorator: Runs the test as a set of N SubTests,
# (where N is number of items in dataset), feeding the actual test
# function one test case at a time
def run_sub_tests_with_dataset(
    dataset: DataSet,
) -> Callable[[Callable], Callable]:
    """Decorator starting a unittest.TestCase.subtest() for each of the
    cases in dataset"""

    def real_decorator(
        function: Callable[[unittest.TestCase, Any], None],
    ) -> Callable[[unittest.TestCase], None]:
        def wrapper(test_cls: unittest.TestCase) -> None:
            for case, data in dataset.items():
                with test_cls.subTest(case=case):
                    # Save case name for future reference
                    test_cls.case_name = case.replace(" ", "_")
                    function(test_cls, data)

        return wrapper

    return real_decorator


class FakeClock:
    """Controllable replacement for the manager clock.

    Starts at ``start`` (default: a fixed UTC time) and only moves when
    ``advance()`` is called.
    """

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2030, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class TemporaryRepository:
    """Repository and keys directories inside a fresh temporary directory.

    Call ``cleanup()`` when done, typically from ``tearDown()``.
    """

    def __init__(self) -> None:
        self.temp_dir = tempfile.mkdtemp(dir=os.getcwd())
        self.repo_path = os.path.join(self.temp_dir, "repository")
        self.keys_path = os.path.join(self.temp_dir, "keys")

    def config(self, **kwargs: Any) -> RepositoryConfig:
        return RepositoryConfig(
            repo_path=self.repo_path, keys_path=self.keys_path, **kwargs
        )

    def manager(
        self, clock: Optional[FakeClock] = None, **kwargs: Any
    ) -> MetadataManager:
        return MetadataManager(self.config(**kwargs), clock=clock)

    def write_file(self, name: str, data: bytes) -> str:
        path = os.path.join(self.temp_dir, name)
        with open(path, "wb") as f:
            f.write(data)
        return path

    def cleanup(self) -> None:
        shutil.rmtree(self.temp_dir)


def configure_test_logging(argv: List[str]) -> None:
    """Configure logger level for a certain test file"""
    # parse arguments but only handle '-v': argv may contain
    # other things meant for unittest argument parser
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("-v", "--verbose", action="count", default=0)
    args, _ = parser.parse_known_args(argv)

    if args.verbose <= 1:
        # 0 and 1 both mean ERROR: this way '-v' makes unittest print test
        # names without increasing log level
        loglevel = logging.ERROR
    elif args.verbose == 2:
        loglevel = logging.WARNING
    elif args.verbose == 3:
        loglevel = logging.INFO
    else:
        loglevel = logging.DEBUG

    logging.basicConfig(level=loglevel)
