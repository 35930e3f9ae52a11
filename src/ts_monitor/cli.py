#!/usr/bin/env python3
"""
Command Line Interface for TS Monitor
"""

import sys
import time
import logging
import argparse
import dataclasses
from pathlib import Path

from .config_utils import (
    MonitorConfig, load_config, parse_stream_uri, resolve_log_dir,
    DEFAULT_MULTICAST_URI,
)
from .aggregator import StatisticsSnapshot
from .session import StreamMonitor
from .stats_log import CsvStatsLogSink
from .transport import BindError

logger = logging.getLogger(__name__)


def configure_logging(level: int):
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter('%(levelname)s:%(name)s:%(message)s'))
        root_logger.addHandler(handler)
    else:
        for handler in root_logger.handlers:
            handler.setLevel(level)


def print_snapshot(snapshot: StatisticsSnapshot):
    print(f"Total TS Packets: {snapshot.total_packets} | "
          f"Lost TS Packets: {snapshot.lost_packets} | "
          f"Loss Rate: {snapshot.loss_rate_percent:.4f} % | "
          f"Throughput: {snapshot.throughput_mbps:.2f} Mbps",
          flush=True)


def build_config(args) -> MonitorConfig:
    """Merge config file and command line options"""
    if args.config:
        config = load_config(Path(args.config))
    else:
        config = MonitorConfig()

    overrides = {}
    if args.uri:
        overrides['address'], overrides['port'] = parse_stream_uri(args.uri)
    elif not args.config:
        overrides['address'], overrides['port'] = parse_stream_uri(DEFAULT_MULTICAST_URI)

    if args.interval_ms is not None:
        overrides['publish_interval_ms'] = args.interval_ms
    if args.timeout is not None:
        overrides['receive_timeout_sec'] = args.timeout if args.timeout > 0 else None
    if args.csv:
        overrides['csv_enabled'] = True
    if args.log_dir:
        overrides['log_dir'] = args.log_dir

    # replace() re-runs validation
    return dataclasses.replace(config, **overrides)


def run_monitor(args) -> int:
    try:
        config = build_config(args)
    except FileNotFoundError:
        print(f"❌ Configuration file not found: {args.config}")
        return 1
    except ValueError as e:
        print(f"❌ Invalid configuration: {e}")
        return 1

    if not args.debug:
        configure_logging(getattr(logging, config.log_level, logging.INFO))

    sink = None
    if config.csv_enabled:
        try:
            sink = CsvStatsLogSink(resolve_log_dir(config, development_mode=args.dev))
        except OSError as e:
            print(f"❌ Cannot open statistics log: {e}")
            return 1
        logger.info(f"Writing statistics to {sink.path}")

    logger.info(f"Monitoring {config.uri}")

    monitor = StreamMonitor(**config.session_options())
    try:
        handle = monitor.start(config.address, config.port,
                               consumer=None if args.quiet else print_snapshot,
                               log_sink=sink)
    except BindError as e:
        print(f"❌ {e}")
        if sink is not None:
            sink.close()
        return 1

    deadline = time.monotonic() + args.duration if args.duration else None
    try:
        while handle.is_running:
            if deadline is not None and time.monotonic() >= deadline:
                break
            handle.wait(0.2)
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping")
    finally:
        monitor.stop(handle)
        if sink is not None:
            sink.close()

    if handle.stopped_unexpectedly:
        print(f"❌ Monitoring stopped unexpectedly: {handle.error}")
        return 2

    final = handle.latest_snapshot()
    if final is not None:
        print(f"Final: {final.total_packets} packets, {final.lost_packets} lost "
              f"({final.loss_rate_percent:.4f} %)")
    return 0


def run_summary(args) -> int:
    from .report import load_stats_csv, summarize_stats, format_summary

    try:
        df = load_stats_csv(Path(args.csv_file))
    except FileNotFoundError:
        print(f"❌ File not found: {args.csv_file}")
        return 1
    except ValueError as e:
        print(f"❌ {e}")
        return 1

    print(format_summary(summarize_stats(df)))
    return 0


def run_plot(args) -> int:
    from .report import load_stats_csv, plot_stats

    csv_path = Path(args.csv_file)
    try:
        df = load_stats_csv(csv_path)
    except FileNotFoundError:
        print(f"❌ File not found: {args.csv_file}")
        return 1
    except ValueError as e:
        print(f"❌ {e}")
        return 1

    output = Path(args.output) if args.output else csv_path.with_suffix('.png')
    plot_stats(df, output, title=csv_path.name)
    print(f"✅ Plot written: {output}")
    return 0


def main(argv=None):
    """Main entry point for ts-monitor command"""
    configure_logging(logging.INFO)

    parser = argparse.ArgumentParser(
        description='MPEG-TS over UDP loss and throughput monitor',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Monitor command
    monitor_parser = subparsers.add_parser('monitor', help='Monitor a live stream')
    monitor_parser.add_argument('uri', nargs='?',
                                help=f'Stream URI (default {DEFAULT_MULTICAST_URI})')
    monitor_parser.add_argument('--config', '-c', help='Configuration file path')
    monitor_parser.add_argument('--csv', action='store_true', help='Write statistics CSV')
    monitor_parser.add_argument('--log-dir', help='Directory for statistics CSV')
    monitor_parser.add_argument('--dev', action='store_true', help='Use development paths')
    monitor_parser.add_argument('--duration', type=float, help='Stop after N seconds')
    monitor_parser.add_argument('--interval-ms', type=int, help='Publish interval (ms)')
    monitor_parser.add_argument('--timeout', type=float,
                                help='Warn when no data arrives for N seconds')
    monitor_parser.add_argument('--quiet', '-q', action='store_true',
                                help='Do not print snapshots')
    monitor_parser.add_argument('--debug', '-d', action='store_true', help='Enable DEBUG logging')

    # Summary command
    summary_parser = subparsers.add_parser('summary', help='Summarize a statistics CSV')
    summary_parser.add_argument('csv_file', help='udp_stats_*.csv file')

    # Plot command
    plot_parser = subparsers.add_parser('plot', help='Plot a statistics CSV')
    plot_parser.add_argument('csv_file', help='udp_stats_*.csv file')
    plot_parser.add_argument('--output', '-o', help='Output PNG (default: next to CSV)')

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if getattr(args, 'debug', False):
        configure_logging(logging.DEBUG)
        logging.info("DEBUG logging enabled")

    if args.command == 'monitor':
        sys.exit(run_monitor(args))
    elif args.command == 'summary':
        sys.exit(run_summary(args))
    elif args.command == 'plot':
        sys.exit(run_plot(args))


if __name__ == '__main__':
    main()
