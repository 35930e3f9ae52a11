"""
Configuration utilities

Loads the TOML configuration, parses stream URIs, and resolves the
statistics log directory with environment variable expansion and
development/production defaults.
"""

import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple
from urllib.parse import urlsplit

import toml

from .transport import DEFAULT_PORT, DEFAULT_MAX_DATAGRAM_SIZE
from .ts_packet import PACKET_SIZE

logger = logging.getLogger(__name__)

DEFAULT_MULTICAST_URI = "udp://224.1.1.1:1234"

# Default log directories
PRODUCTION_LOG_DIR = '/var/log/ts-monitor'
DEVELOPMENT_LOG_DIR = './logs'


def parse_stream_uri(uri: str) -> Tuple[str, int]:
    """
    Parse a stream URI into (address, port).

    Accepts udp://HOST:PORT, udp://@HOST:PORT and bare HOST:PORT.
    A missing host means 0.0.0.0, a missing port means DEFAULT_PORT.

    Raises:
        ValueError: Unsupported scheme or invalid port
    """
    if '://' not in uri:
        uri = f"udp://{uri}"

    parts = urlsplit(uri)
    if parts.scheme != 'udp':
        raise ValueError(f"Unsupported stream scheme '{parts.scheme}' in {uri}")

    netloc = parts.netloc
    if netloc.startswith('@'):
        netloc = netloc[1:]

    if ':' in netloc:
        host, port_str = netloc.rsplit(':', 1)
    else:
        host, port_str = netloc, ''

    if port_str:
        try:
            port = int(port_str)
        except ValueError:
            raise ValueError(f"Invalid port '{port_str}' in {uri}")
    else:
        port = DEFAULT_PORT

    if not 0 < port < 65536:
        raise ValueError(f"Port out of range in {uri}: {port}")

    return host or '0.0.0.0', port


@dataclass
class MonitorConfig:
    """Configuration for a monitoring run"""
    # Stream
    address: str = '224.1.1.1'
    port: int = DEFAULT_PORT

    # Analyzer
    publish_interval_ms: int = 100
    max_datagram_size: int = DEFAULT_MAX_DATAGRAM_SIZE
    receive_timeout_sec: Optional[float] = None    # None = block forever

    # Logging
    log_level: str = 'INFO'
    csv_enabled: bool = False
    log_dir: Optional[str] = None

    def __post_init__(self):
        if self.publish_interval_ms <= 0:
            raise ValueError("publish_interval_ms must be positive")
        if self.max_datagram_size < PACKET_SIZE:
            raise ValueError(f"max_datagram_size must be at least {PACKET_SIZE}")
        if not 0 < self.port < 65536:
            raise ValueError(f"port must be 1-65535, got {self.port}")
        if self.receive_timeout_sec is not None and self.receive_timeout_sec <= 0:
            self.receive_timeout_sec = None

    @property
    def publish_interval_sec(self) -> float:
        return self.publish_interval_ms / 1000.0

    @property
    def uri(self) -> str:
        return f"udp://{self.address}:{self.port}"

    def session_options(self) -> Dict:
        """Keyword arguments for StreamMonitor / SessionHandle"""
        return {
            'publish_interval_sec': self.publish_interval_sec,
            'max_datagram_size': self.max_datagram_size,
            'receive_timeout': self.receive_timeout_sec,
        }

    @classmethod
    def from_dict(cls, config: Dict) -> 'MonitorConfig':
        """Build from parsed TOML ([stream], [analyzer], [logging] tables)"""
        stream = config.get('stream', {})
        analyzer = config.get('analyzer', {})
        logging_config = config.get('logging', {})

        kwargs = {}
        if 'uri' in stream:
            kwargs['address'], kwargs['port'] = parse_stream_uri(stream['uri'])
        if 'address' in stream:
            kwargs['address'] = stream['address']
        if 'port' in stream:
            kwargs['port'] = int(stream['port'])

        if 'publish_interval_ms' in analyzer:
            kwargs['publish_interval_ms'] = int(analyzer['publish_interval_ms'])
        if 'max_datagram_size' in analyzer:
            kwargs['max_datagram_size'] = int(analyzer['max_datagram_size'])
        if analyzer.get('receive_timeout_sec'):
            kwargs['receive_timeout_sec'] = float(analyzer['receive_timeout_sec'])

        if 'level' in logging_config:
            kwargs['log_level'] = str(logging_config['level']).upper()
        if 'csv_enabled' in logging_config:
            kwargs['csv_enabled'] = bool(logging_config['csv_enabled'])
        if 'log_dir' in logging_config:
            kwargs['log_dir'] = logging_config['log_dir']

        return cls(**kwargs)


def load_config(config_file: Path) -> MonitorConfig:
    """
    Load configuration from a TOML file.

    Raises:
        FileNotFoundError: Config file missing
        toml.TomlDecodeError: Config file malformed
    """
    with open(config_file, 'r') as f:
        config = toml.load(f)

    logger.info(f"Loaded configuration from {config_file}")
    return MonitorConfig.from_dict(config)


def _is_production_environment() -> bool:
    """Check if we're running as a system service"""
    # Set by systemd
    if os.getenv('INVOCATION_ID'):
        return True
    if os.getenv('USER') == 'ts-monitor':
        return True
    return False


def resolve_log_dir(config: MonitorConfig, development_mode: bool = False) -> Path:
    """
    Resolve the directory for statistics CSV files.

    Priority: config.log_dir > production default > development default.
    Environment variables and ~ are expanded.
    """
    if config.log_dir:
        path_str = config.log_dir
    elif not development_mode and _is_production_environment():
        path_str = PRODUCTION_LOG_DIR
    else:
        path_str = DEVELOPMENT_LOG_DIR

    path_str = os.path.expandvars(path_str)
    path_str = os.path.expanduser(path_str)
    return Path(path_str)
