"""Command-line interface for LeakFairy."""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from .analysis.leaks import analyze
from .config import HarnessConfig
from .core.connector import ChromeConnector
from .core.errors import LeakFairyError, LeaksDetectedError
from .heap.snapshot import HeapSnapshotCapturer
from .runner import LeakScenarioRunner, open_browser
from .scenario.registry import get_scenario, list_scenarios


def setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s"
    )


logger = logging.getLogger(__name__)


async def test_connection(host: str, port: int) -> int:
    """Test connection to Chrome and display version information."""
    connector = ChromeConnector(host=host, port=port)

    try:
        print(f"Connecting to Chrome at {host}:{port}...")
        await connector.connect()
        print("✓ Connected successfully")

        version_info = await connector.get_browser_version()
        print("\nChrome Browser Information:")
        print(f"  Browser: {version_info.get('product', 'Unknown')}")
        print(f"  Protocol Version: {version_info.get('protocolVersion', 'Unknown')}")
        print(f"  V8 Version: {version_info.get('jsVersion', 'Unknown')}")
        return 0

    except LeakFairyError as e:
        print(f"✗ Connection failed: {e}")
        print("\nTroubleshooting:")
        print("1. Make sure Chrome is running with debug port enabled:")
        print(f"   chrome --remote-debugging-port={port}")
        print("2. Try a different port with --port option")
        return 1

    finally:
        if connector.websocket:
            await connector.disconnect()


async def list_tabs(host: str, port: int) -> int:
    """List Chrome page targets in JSON format."""
    connector = ChromeConnector(host=host, port=port)

    try:
        await connector.connect()
        targets_response = await connector.get_targets()
        tabs_info = [
            {
                "targetId": target.get("targetId"),
                "title": target.get("title", ""),
                "url": target.get("url", ""),
            }
            for target in connector.filter_page_targets(targets_response)
        ]
        print(json.dumps(tabs_info, indent=2))
        return 0

    except LeakFairyError as e:
        print(f"Connection failed: {e}", file=sys.stderr)
        return 1

    finally:
        if connector.websocket:
            await connector.disconnect()


async def capture_snapshot(host: str, port: int, output_path: str,
                           target_id: Optional[str], config: HarnessConfig) -> int:
    """Capture one heap snapshot of an open tab (the first page when no target is given)."""
    connector = ChromeConnector(host=host, port=port)

    try:
        await connector.connect()
        if not target_id:
            pages = connector.filter_page_targets(await connector.get_targets())
            if not pages:
                print("No open page to snapshot", file=sys.stderr)
                return 1
            target_id = pages[0]["targetId"]
            print(f"Capturing {pages[0].get('url', '')} ({target_id[:8]})")

        capturer = HeapSnapshotCapturer(connector, target_id, config)
        path = await capturer.capture(Path(output_path).expanduser())
        print(f"✓ Heap snapshot written to {path}")
        return 0

    except LeakFairyError as e:
        print(f"Snapshot capture failed: {e}", file=sys.stderr)
        return 1

    finally:
        if connector.websocket:
            await connector.disconnect()


async def analyze_store(store_path: str, as_json: bool = False) -> int:
    """Analyze an existing snapshot store and print the leak report."""
    try:
        report = await asyncio.to_thread(analyze, Path(store_path).expanduser())
    except LeakFairyError as e:
        print(f"Analysis failed: {e}", file=sys.stderr)
        return 1

    if as_json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(f"Leaks: {len(report)}")
        for trace in report:
            print(f"  {trace}")
    return 0


def print_scenarios() -> int:
    for scenario in list_scenarios():
        print(f"{scenario.name:<20} {scenario.object_name}")
        if scenario.description:
            print(f"{'':<20} {scenario.description}")
    return 0


async def run_scenarios(names: List[str], config: HarnessConfig, host: Optional[str],
                        port: Optional[int], fixture: Optional[str] = None) -> int:
    """Run the selected scenarios against Chrome at host:port, or a launched one."""
    try:
        scenarios = [get_scenario(name) for name in names]
    except KeyError as e:
        print(e.args[0], file=sys.stderr)
        return 1
    if fixture:
        scenarios = [scenario.with_fixture(fixture) for scenario in scenarios]

    try:
        runner = LeakScenarioRunner(config)
        # Missing fixtures fail before Chrome is launched
        for scenario in scenarios:
            runner.fixture_for(scenario)
    except LeakFairyError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1

    try:
        async with open_browser(config, host=host, port=port) as handles:
            reports = await runner.run_all(handles, scenarios)
    except LeaksDetectedError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1
    except LeakFairyError as e:
        print(f"✗ Scenario run failed: {e}", file=sys.stderr)
        return 1

    for name, report in reports.items():
        print(f"{name}: {len(report)} leak(s)")
    return 0


def get_default_host() -> str:
    """Get default host from environment or use 127.0.0.1."""
    return os.environ.get("CHROME_DEBUG_HOST", "127.0.0.1")


def get_default_port() -> Optional[int]:
    """Get default port from environment; None means "launch Chrome" for scenario runs."""
    try:
        return int(os.environ["CHROME_DEBUG_PORT"])
    except (KeyError, ValueError):
        return None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="LeakFairy - navigation memory leak detection for web applications"
    )

    parser.add_argument(
        "--test-connection",
        action="store_true",
        help="Test connection to Chrome and display version information"
    )

    parser.add_argument(
        "--list-tabs",
        action="store_true",
        help="List open Chrome tabs in JSON format"
    )

    parser.add_argument(
        "--capture-snapshot",
        metavar="PATH",
        help="Force GC and write one heap snapshot of an open tab to PATH"
    )

    parser.add_argument(
        "--target-id",
        help="Target to snapshot with --capture-snapshot (default: first open page)"
    )

    parser.add_argument(
        "--analyze",
        metavar="STORE",
        help="Analyze the snapshot store at STORE (expects STORE/data/cur/s1.heapsnapshot ...)"
    )

    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the --analyze report as JSON"
    )

    parser.add_argument(
        "--list-scenarios",
        action="store_true",
        help="List registered leak scenarios"
    )

    parser.add_argument(
        "--scenario",
        action="append",
        default=[],
        metavar="NAME",
        help="Run the named scenario (repeatable)"
    )

    parser.add_argument(
        "--all",
        action="store_true",
        help="Run every registered scenario"
    )

    parser.add_argument(
        "--fixture",
        help="JSON export to import before navigating (default: LEAKFAIRY_FIXTURE_PATH)"
    )

    parser.add_argument(
        "--base-url",
        help="Base URL of the application under test (default: LEAKFAIRY_BASE_URL)"
    )

    parser.add_argument(
        "--data-dir",
        type=str,
        help="Directory for snapshot stores (default: ~/LeakFairyData)"
    )

    parser.add_argument(
        "--strict",
        action="store_true",
        default=None,
        help="Fail when a scenario reports any leak"
    )

    parser.add_argument(
        "--headed",
        action="store_true",
        help="Show the launched Chrome window"
    )

    parser.add_argument(
        "--host",
        default=get_default_host(),
        help="Chrome debug host (default: 127.0.0.1 or CHROME_DEBUG_HOST env)"
    )

    parser.add_argument(
        "--port",
        type=int,
        default=get_default_port(),
        help="Chrome debug port (default: CHROME_DEBUG_PORT env; scenario runs launch Chrome when unset)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    return parser


async def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = HarnessConfig(
            data_dir=args.data_dir,
            base_url=args.base_url,
            strict=args.strict,
            headless=False if args.headed else None,
        )
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    port = args.port if args.port is not None else 9222

    if args.test_connection:
        return await test_connection(args.host, port)
    elif args.list_tabs:
        return await list_tabs(args.host, port)
    elif args.capture_snapshot:
        return await capture_snapshot(args.host, port, args.capture_snapshot, args.target_id, config)
    elif args.analyze:
        return await analyze_store(args.analyze, as_json=args.json)
    elif args.list_scenarios:
        return print_scenarios()
    elif args.scenario or args.all:
        names = [s.name for s in list_scenarios()] if args.all else args.scenario
        return await run_scenarios(names, config, args.host, args.port, fixture=args.fixture)
    else:
        parser.print_help()
        return 0


def cli_entry_point():
    """Entry point for pip-installed command."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli_entry_point()
