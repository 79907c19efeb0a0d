"""
SQL Logic Test Runner

Runs `.test` fixture files against several handlers of the same engine:
- mysql (MySQL wire protocol)
- http (JSON query API)
- clickhouse (ClickHouse HTTP protocol)
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Dict, Iterable, List, Optional, Tuple

from .config import Config
from .errors import ConfigError, ParseError
from .executor import TestExecutor
from .handlers import Handler, create_handler
from .parser import parse_file
from .report import Report, ReportWriter

logger = logging.getLogger(__name__)

FIXTURE_SUFFIX = ".test"


def discover_fixtures(root: str, file_filter: Optional[str] = None) -> List[Tuple[str, str]]:
    """Find fixture files under root as sorted (name, path) pairs

    The name is the path relative to root with forward slashes.
    """
    if os.path.isfile(root):
        return [(os.path.basename(root), root)]

    found = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for filename in sorted(filenames):
            if not filename.endswith(FIXTURE_SUFFIX):
                continue
            path = os.path.join(dirpath, filename)
            name = os.path.relpath(path, root).replace(os.sep, "/")
            if file_filter and file_filter not in name:
                continue
            found.append((name, path))
    return found


def _matches(name: str, entries: Iterable[str]) -> bool:
    base = name.rsplit("/", 1)[-1]
    candidates = {name, base}
    for candidate in list(candidates):
        if candidate.endswith(FIXTURE_SUFFIX):
            candidates.add(candidate[:-len(FIXTURE_SUFFIX)])
    return any(entry in candidates for entry in entries)


def load_skip_list(path: str) -> List[str]:
    """Read skip list entries, one per line; '#' starts a comment"""
    entries = []
    with open(path, 'r', encoding='utf-8') as f:
        for line in f:
            entry = line.split("#", 1)[0].strip()
            if entry:
                entries.append(entry)
    return entries


class SuiteRunner:
    """Discover, parse and execute fixture files"""

    def __init__(self, config: Config, suite_root: str, skip: Iterable[str] = (),
                 file_filter: Optional[str] = None):
        self.config = config
        self.suite_root = suite_root
        self.skip = list(config.skip_files) + list(skip)
        self.file_filter = file_filter
        self.handlers: Dict[str, Handler] = {}

    def is_skipped(self, name: str) -> bool:
        return _matches(name, self.skip)

    def setup(self):
        """Build one handler per configured backend"""
        timeout = self.config.test_settings.timeout_seconds
        self.handlers = {
            name: create_handler(backend, timeout)
            for name, backend in self.config.backends.items()
        }
        logger.info(f"Backends: {', '.join(self.handlers)}")

    async def run(self) -> Report:
        settings = self.config.test_settings
        report = Report(max_failures=settings.max_failures_reported)
        if not self.handlers:
            self.setup()
        executor = TestExecutor(
            self.handlers, report,
            timeout=settings.timeout_seconds,
            parallel_backends=settings.parallel_backends,
        )

        fixtures = discover_fixtures(self.suite_root, self.file_filter)
        logger.info(f"Found {len(fixtures)} fixture file(s) under {self.suite_root}")

        try:
            for name, path in fixtures:
                skipped = self.is_skipped(name)
                try:
                    suite = parse_file(path, name)
                except ParseError as e:
                    if skipped:
                        logger.info(f"Skipping {name} (unparseable, in skip list)")
                        continue
                    logger.error(f"✗ Parse error: {e}")
                    report.add_parse_error(name, e)
                    if settings.parse_error_policy == "abort":
                        logger.error("Aborting run on parse error")
                        break
                    continue

                if skipped:
                    logger.info(f"Skipping {name} (in skip list)")
                    for result in executor.skip_suite(suite, "file is in the skip list"):
                        await report.add(result)
                    continue

                logger.info(f"Running {name} ({len(suite.records)} records)")
                await executor.run_suite(suite)
        finally:
            await self.cleanup()

        return report

    async def cleanup(self):
        """Close every handler connection"""
        for name, handler in self.handlers.items():
            await handler.close()
            logger.debug(f"✓ {name} closed")


def check_fixtures(root: str, file_filter: Optional[str] = None) -> List[ParseError]:
    """Parse every fixture without executing anything"""
    errors = []
    for name, path in discover_fixtures(root, file_filter):
        try:
            suite = parse_file(path, name)
            logger.info(f"✓ {name}: {len(suite.records)} records")
        except ParseError as e:
            logger.error(f"✗ {e}")
            errors.append(e)
    return errors


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sqllogic", description="Run SQL logic test fixtures against several handlers")
    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="execute fixture files")
    run.add_argument("suite_root", help="fixture file or directory")
    run.add_argument("--config", default="config.json", help="backend configuration (JSON)")
    run.add_argument("--skip", action="append", default=[], metavar="NAME", help="skip a fixture file")
    run.add_argument("--skip-file", help="file listing fixtures to skip, one per line")
    run.add_argument("--file", dest="file_filter", help="only run fixtures whose name matches")
    run.add_argument("--backend", action="append", default=[], metavar="LABEL", help="only run these backends")
    run.add_argument("--timeout", type=float, help="per-record timeout in seconds")
    run.add_argument("--abort-on-parse-error", action="store_true", help="stop the run at the first parse error")
    run.add_argument("--sequential", action="store_true", help="run backends one after another")
    run.add_argument("--output-dir", help="also save JSON results and the report here")
    run.add_argument("-v", "--verbose", action="store_true")

    check = commands.add_parser("check", help="only parse fixture files")
    check.add_argument("suite_root", help="fixture file or directory")
    check.add_argument("--file", dest="file_filter", help="only check fixtures whose name matches")
    check.add_argument("-v", "--verbose", action="store_true")
    return parser


def _apply_overrides(config: Config, args: argparse.Namespace):
    if args.backend:
        config.select_backends(args.backend)
    if args.timeout is not None:
        if args.timeout <= 0:
            raise ConfigError("--timeout must be positive")
        config.test_settings.timeout_seconds = args.timeout
    if args.abort_on_parse_error:
        config.test_settings.parse_error_policy = "abort"
    if args.sequential:
        config.test_settings.parallel_backends = False


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point; returns the process exit code"""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    if args.command == "check":
        errors = check_fixtures(args.suite_root, args.file_filter)
        print(f"{len(errors)} parse error(s)")
        return 1 if errors else 0

    try:
        config = Config(args.config)
        _apply_overrides(config, args)
        skip = list(args.skip)
        if args.skip_file:
            skip.extend(load_skip_list(args.skip_file))
    except (ConfigError, OSError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    runner = SuiteRunner(config, args.suite_root, skip=skip, file_filter=args.file_filter)
    try:
        report = asyncio.run(runner.run())
    except KeyboardInterrupt:
        logger.warning("Interrupted, connections closed")
        return 130

    writer = ReportWriter(args.output_dir)
    text = writer.generate_report(report)
    print(text)
    if args.output_dir:
        writer.save_results(report)
        writer.save_report(text)

    return 0 if report.succeeded else 1


if __name__ == "__main__":
    sys.exit(main())
