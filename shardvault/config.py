"""
Configuration Management

Handles loading configuration from environment variables and config files.
The same Config object drives both processes: the panel reads the PANEL_*
settings, a storage node reads the NODE_* settings.
"""

import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional
import json

from dotenv import load_dotenv

# 1 MB as the shard size setting understands it
MEGABYTE = 1000 * 1000


@dataclass
class Config:
    """
    ShardVault Configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (PANEL_* / NODE_*)
    2. Config file (config.json)
    3. Default values
    """
    # Panel network
    panel_host: str = '0.0.0.0'
    panel_port: int = 3000

    # Panel storage
    panel_data_dir: Path = field(default_factory=lambda: Path('./panel_data'))

    # Sharding
    max_size_mb: int = 8
    force_spreading: bool = True

    # Performance
    max_concurrent: int = 4

    # Timeouts (seconds)
    probe_timeout: float = 5.0
    transfer_timeout: float = 30.0

    # Panel API access
    api_token: str = ''
    api_permissions: str = '777'

    # Node process
    node_host: str = '0.0.0.0'
    node_port: int = 3001
    node_common_name: str = '127.0.0.1'
    node_data_dir: Path = field(default_factory=lambda: Path('./node_data'))

    # Logging
    log_level: str = 'INFO'

    @property
    def shard_size(self) -> int:
        """Maximum size of a single part in bytes."""
        return self.max_size_mb * MEGABYTE

    @property
    def database_path(self) -> Path:
        return self.panel_data_dir / 'shardvault.db'

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        config = cls()

        # Panel
        config.panel_host = os.getenv('PANEL_HOST', config.panel_host)
        config.panel_port = int(os.getenv('PANEL_PORT', config.panel_port))

        data_dir = os.getenv('PANEL_DATA_DIR')
        if data_dir:
            config.panel_data_dir = Path(data_dir)

        # Sharding
        config.max_size_mb = int(os.getenv('PANEL_MAX_SIZE', config.max_size_mb))
        # Spreading stays on unless explicitly disabled
        config.force_spreading = os.getenv('PANEL_FORCE_SPREADING', 'true').lower() != 'false'

        # Performance
        config.max_concurrent = int(os.getenv('PANEL_MAX_CONCURRENT', config.max_concurrent))

        # Timeouts
        config.probe_timeout = float(os.getenv('PANEL_PROBE_TIMEOUT', config.probe_timeout))
        config.transfer_timeout = float(os.getenv('PANEL_TRANSFER_TIMEOUT', config.transfer_timeout))

        # API access
        config.api_token = os.getenv('PANEL_API_TOKEN', config.api_token)
        config.api_permissions = os.getenv('PANEL_PERMISSIONS', config.api_permissions)

        # Node
        config.node_host = os.getenv('NODE_HOST', config.node_host)
        config.node_port = int(os.getenv('NODE_PORT', config.node_port))
        config.node_common_name = os.getenv('NODE_COMMONNAME', config.node_common_name)

        node_dir = os.getenv('NODE_DATA_DIR')
        if node_dir:
            config.node_data_dir = Path(node_dir)

        # Logging
        config.log_level = os.getenv('PANEL_LOG_LEVEL', config.log_level)

        return config

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        config = cls()

        # Panel
        config.panel_host = data.get('panel_host', config.panel_host)
        config.panel_port = data.get('panel_port', config.panel_port)
        if 'panel_data_dir' in data:
            config.panel_data_dir = Path(data['panel_data_dir'])

        # Sharding
        config.max_size_mb = data.get('max_size_mb', config.max_size_mb)
        config.force_spreading = data.get('force_spreading', config.force_spreading)

        # Performance
        config.max_concurrent = data.get('max_concurrent', config.max_concurrent)

        # Timeouts
        config.probe_timeout = data.get('probe_timeout', config.probe_timeout)
        config.transfer_timeout = data.get('transfer_timeout', config.transfer_timeout)

        # API access
        config.api_token = data.get('api_token', config.api_token)
        config.api_permissions = str(data.get('api_permissions', config.api_permissions))

        # Node
        config.node_host = data.get('node_host', config.node_host)
        config.node_port = data.get('node_port', config.node_port)
        config.node_common_name = data.get('node_common_name', config.node_common_name)
        if 'node_data_dir' in data:
            config.node_data_dir = Path(data['node_data_dir'])

        # Logging
        config.log_level = data.get('log_level', config.log_level)

        return config

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'panel_host': self.panel_host,
            'panel_port': self.panel_port,
            'panel_data_dir': str(self.panel_data_dir),
            'max_size_mb': self.max_size_mb,
            'force_spreading': self.force_spreading,
            'max_concurrent': self.max_concurrent,
            'probe_timeout': self.probe_timeout,
            'transfer_timeout': self.transfer_timeout,
            'api_token': self.api_token,
            'api_permissions': self.api_permissions,
            'node_host': self.node_host,
            'node_port': self.node_port,
            'node_common_name': self.node_common_name,
            'node_data_dir': str(self.node_data_dir),
            'log_level': self.log_level,
        }

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


# Environment variable behind each key
ENV_NAMES = {
    'panel_host': 'PANEL_HOST',
    'panel_port': 'PANEL_PORT',
    'panel_data_dir': 'PANEL_DATA_DIR',
    'max_size_mb': 'PANEL_MAX_SIZE',
    'force_spreading': 'PANEL_FORCE_SPREADING',
    'max_concurrent': 'PANEL_MAX_CONCURRENT',
    'probe_timeout': 'PANEL_PROBE_TIMEOUT',
    'transfer_timeout': 'PANEL_TRANSFER_TIMEOUT',
    'api_token': 'PANEL_API_TOKEN',
    'api_permissions': 'PANEL_PERMISSIONS',
    'node_host': 'NODE_HOST',
    'node_port': 'NODE_PORT',
    'node_common_name': 'NODE_COMMONNAME',
    'node_data_dir': 'NODE_DATA_DIR',
    'log_level': 'PANEL_LOG_LEVEL',
}


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.

    Environment variables override file settings whenever they are set,
    even to the default value.
    """
    # Start with defaults
    config = Config()

    # Load from file if provided
    if config_path and config_path.exists():
        config = Config.from_file(config_path)

    # Also pulls .env into os.environ
    env_config = Config.from_env()

    for key, env_name in ENV_NAMES.items():
        if os.environ.get(env_name):
            setattr(config, key, getattr(env_config, key))

    return config


# Example config file template
EXAMPLE_CONFIG = """
{
  "panel_host": "0.0.0.0",
  "panel_port": 3000,
  "panel_data_dir": "./panel_data",
  "max_size_mb": 8,
  "force_spreading": true,
  "max_concurrent": 4,
  "probe_timeout": 5.0,
  "transfer_timeout": 30.0,
  "api_token": "",
  "api_permissions": "777",
  "node_host": "0.0.0.0",
  "node_port": 3001,
  "node_common_name": "127.0.0.1",
  "node_data_dir": "./node_data",
  "log_level": "INFO"
}
"""
