#!/usr/bin/env python3
"""
Statistics CSV Report

Summarizes and plots a udp_stats_*.csv file written by CsvStatsLogSink.
"""

import logging
from pathlib import Path
from typing import Any, Dict

import pandas as pd
import matplotlib
matplotlib.use('Agg')  # Non-interactive backend
import matplotlib.pyplot as plt
import matplotlib.dates as mdates

from .stats_log import LOG_COLUMNS

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S.%f'


def load_stats_csv(csv_path: Path) -> pd.DataFrame:
    """
    Load a statistics CSV into a DataFrame.

    Columns: timestamp (datetime64), total_packets, lost_packets,
    loss_rate_pct, throughput_mbps

    Raises:
        ValueError: File does not have the statistics header
    """
    df = pd.read_csv(csv_path)
    if list(df.columns) != LOG_COLUMNS:
        raise ValueError(f"{csv_path} is not a statistics log (columns: {list(df.columns)})")

    df.columns = ['timestamp', 'total_packets', 'lost_packets',
                  'loss_rate_pct', 'throughput_mbps']
    df['timestamp'] = pd.to_datetime(df['timestamp'], format=TIMESTAMP_FORMAT)
    return df


def summarize_stats(df: pd.DataFrame) -> Dict[str, Any]:
    """Aggregate figures for a whole monitoring run"""
    if len(df) == 0:
        return {
            'records': 0,
            'duration_sec': 0.0,
            'total_packets': 0,
            'lost_packets': 0,
            'loss_rate_pct': 0.0,
            'throughput_mean_mbps': 0.0,
            'throughput_max_mbps': 0.0,
            'throughput_min_mbps': 0.0,
            'loss_windows': 0,
        }

    last = df.iloc[-1]
    duration = (df['timestamp'].iloc[-1] - df['timestamp'].iloc[0]).total_seconds()

    # Windows in which the cumulative lost count went up
    new_loss = df['lost_packets'].diff().fillna(df['lost_packets'].iloc[0])
    loss_windows = int((new_loss > 0).sum())

    return {
        'records': int(len(df)),
        'duration_sec': float(duration),
        'total_packets': int(last['total_packets']),
        'lost_packets': int(last['lost_packets']),
        'loss_rate_pct': float(last['loss_rate_pct']),
        'throughput_mean_mbps': float(df['throughput_mbps'].mean()),
        'throughput_max_mbps': float(df['throughput_mbps'].max()),
        'throughput_min_mbps': float(df['throughput_mbps'].min()),
        'loss_windows': loss_windows,
    }


def format_summary(summary: Dict[str, Any]) -> str:
    return f"""
TS MONITOR SUMMARY
==================
Records:          {summary['records']}
Duration:         {summary['duration_sec']:.1f} s

TS PACKETS
----------
Total:            {summary['total_packets']:,}
Lost (estimate):  {summary['lost_packets']:,}
Loss Rate:        {summary['loss_rate_pct']:.4f} %
Loss Windows:     {summary['loss_windows']}

THROUGHPUT
----------
Mean:             {summary['throughput_mean_mbps']:.2f} Mbps
Max:              {summary['throughput_max_mbps']:.2f} Mbps
Min:              {summary['throughput_min_mbps']:.2f} Mbps
"""


def plot_throughput(ax, df: pd.DataFrame):
    """Plot throughput per window"""
    ax.plot(df['timestamp'], df['throughput_mbps'],
            linewidth=0.8, color='blue', alpha=0.8)
    ax.set_ylabel('Throughput (Mbps)')
    ax.set_title('Throughput')
    ax.grid(True, alpha=0.3)
    ax.xaxis.set_major_formatter(mdates.DateFormatter('%H:%M:%S'))


def plot_loss_rate(ax, df: pd.DataFrame):
    """Plot cumulative loss rate, marking windows with new loss"""
    ax.plot(df['timestamp'], df['loss_rate_pct'],
            linewidth=0.8, color='purple', alpha=0.8)

    new_loss = df[df['lost_packets'].diff() > 0]
    if len(new_loss) > 0:
        ax.scatter(new_loss['timestamp'], new_loss['loss_rate_pct'],
                   s=10, color='red', alpha=0.6, label='New loss')
        ax.legend()

    ax.set_xlabel('Time')
    ax.set_ylabel('Loss Rate (%)')
    ax.set_title('Cumulative TS Packet Loss')
    ax.grid(True, alpha=0.3)
    ax.xaxis.set_major_formatter(mdates.DateFormatter('%H:%M:%S'))


def plot_stats(df: pd.DataFrame, output_png: Path, title: str = '') -> Path:
    """Write a two-panel throughput / loss figure"""
    fig, axes = plt.subplots(2, 1, figsize=(11, 8), sharex=True)
    if title:
        fig.suptitle(title, fontsize=14)

    plot_throughput(axes[0], df)
    plot_loss_rate(axes[1], df)

    plt.tight_layout()
    fig.savefig(output_png, dpi=100)
    plt.close(fig)

    logger.info(f"Plot written: {output_png}")
    return Path(output_png)
