#!/usr/bin/env python3
"""
Command Line Interface for the Prometheus datasource toolkit
"""

import argparse
import json
import logging
import sys

from .exceptions import PromDatasourceError
from .sdk import PrometheusDatasourceSDK


def main(argv=None):
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        description="Run PromQL queries through the datasource query pipeline and print the decoded frames"
    )
    parser.add_argument(
        "--version",
        action="version",
        version="prom-datasource-toolkit 1.0.0"
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level"
    )
    subparsers = parser.add_subparsers(dest="command")

    query_parser = subparsers.add_parser("query", help="Execute a PromQL query")
    query_parser.add_argument("--settings", default="settings.yaml", help="Path to datasource settings file")
    query_parser.add_argument("--expr", required=True, help="PromQL expression")
    query_parser.add_argument("--instant", action="store_true", help="Run an instant query")
    query_parser.add_argument("--duration-minutes", type=int, default=60, help="Length of the time range")
    query_parser.add_argument("--interval", default="", help="Minimum interval, e.g. 30s")
    query_parser.add_argument("--legend", default="", help="Legend template, e.g. '{{instance}}'")
    query_parser.add_argument("--max-data-points", type=int, default=0, help="Number of points to aim for")

    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.command != "query":
        parser.print_help()
        return

    try:
        sdk = PrometheusDatasourceSDK(args.settings)
        try:
            response = sdk.query(
                args.expr,
                duration_minutes=args.duration_minutes,
                instant=args.instant,
                interval=args.interval,
                legend_format=args.legend,
                max_data_points=args.max_data_points,
            )
        finally:
            sdk.close()
    except PromDatasourceError as e:
        print(f"❌ Query failed: {e}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(response.to_dict(), indent=2))


if __name__ == "__main__":
    main()
