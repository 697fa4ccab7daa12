"""
Configuration loading.

Settings come from config.yaml (default /app/config.yaml, or HEATPUMP_CONFIG),
with environment variables overriding individual values.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = '/app/config.yaml'


@dataclass
class Settings:
    modbus_host: str
    influxdb_token: str
    modbus_port: int = 502
    modbus_unit_id: int = 1
    modbus_timeout: float = 5.0
    influxdb_url: str = 'http://influxdb:8086'
    influxdb_org: str = 'heatpump'
    influxdb_bucket: str = 'heatpump'
    collection_interval: int = 60
    retention_days: int = 30
    ratio_register: Optional[int] = None
    adjustment_threshold: float = 25
    ratio_step: float = 5
    min_ratio: float = 10
    max_ratio: float = 50
    buffer_size: int = 5
    soft_start_hours: float = 12
    web_host: str = '0.0.0.0'
    web_port: int = 8050
    secret_key: str = 'heatpump-secret-key'
    users: List[Dict[str, str]] = field(default_factory=list)
    log_level: str = 'INFO'


def _read_yaml(path: str) -> Dict[str, Any]:
    try:
        if os.path.exists(path):
            with open(path, 'r') as f:
                config = yaml.safe_load(f) or {}
            logger.info(f"Loaded configuration from {path}")
            return config
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Could not read {path}: {e}")
        return {}
    logger.info(f"No configuration file at {path}, using environment variables")
    return {}


def _pick(config: Dict[str, Any], section: str, key: str, env: Optional[str], default=None):
    if env and os.getenv(env) not in (None, ''):
        return os.getenv(env)
    return (config.get(section) or {}).get(key, default)


def _number(value, cast, name: str):
    if value is None:
        return None
    try:
        return cast(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be a number, got {value!r}") from e


def load_settings(path: Optional[str] = None) -> Settings:
    """
    Build settings from config.yaml and the environment.

    Raises:
        ConfigError: If the ModBus host or InfluxDB token is missing, or a value is malformed
    """
    path = path or os.getenv('HEATPUMP_CONFIG', DEFAULT_CONFIG_PATH)
    config = _read_yaml(path)

    modbus_host = _pick(config, 'modbus', 'host', 'MODBUS_HOST')
    if not modbus_host:
        raise ConfigError("MODBUS_HOST must be provided in config.yaml or the environment")

    influxdb_token = _pick(config, 'influxdb', 'token', 'INFLUXDB_TOKEN')
    if not influxdb_token:
        raise ConfigError("INFLUXDB_TOKEN must be provided in config.yaml or the environment")

    return Settings(
        modbus_host=modbus_host,
        modbus_port=_number(_pick(config, 'modbus', 'port', 'MODBUS_PORT', 502), int, 'modbus.port'),
        modbus_unit_id=_number(_pick(config, 'modbus', 'unit_id', 'MODBUS_UNIT_ID', 1), int, 'modbus.unit_id'),
        modbus_timeout=_number(_pick(config, 'modbus', 'timeout', 'MODBUS_TIMEOUT', 5), float, 'modbus.timeout'),
        influxdb_url=_pick(config, 'influxdb', 'url', 'INFLUXDB_URL', 'http://influxdb:8086'),
        influxdb_token=influxdb_token,
        influxdb_org=_pick(config, 'influxdb', 'org', 'INFLUXDB_ORG', 'heatpump'),
        influxdb_bucket=_pick(config, 'influxdb', 'bucket', 'INFLUXDB_BUCKET', 'heatpump'),
        collection_interval=_number(
            _pick(config, 'collection', 'interval', 'COLLECTION_INTERVAL', 60), int, 'collection.interval'),
        retention_days=_number(
            _pick(config, 'collection', 'retention_days', 'RETENTION_DAYS', 30), int, 'collection.retention_days'),
        ratio_register=_number(
            _pick(config, 'automation', 'ratio_register', 'HEAT_EXCHANGER_RATIO_REGISTER'), int,
            'automation.ratio_register'),
        adjustment_threshold=_number(
            _pick(config, 'automation', 'threshold', None, 25), float, 'automation.threshold'),
        ratio_step=_number(_pick(config, 'automation', 'step', None, 5), float, 'automation.step'),
        min_ratio=_number(_pick(config, 'automation', 'min_ratio', None, 10), float, 'automation.min_ratio'),
        max_ratio=_number(_pick(config, 'automation', 'max_ratio', None, 50), float, 'automation.max_ratio'),
        buffer_size=_number(_pick(config, 'automation', 'buffer_size', None, 5), int, 'automation.buffer_size'),
        soft_start_hours=_number(_pick(config, 'soft_start', 'hours', None, 12), float, 'soft_start.hours'),
        web_host=_pick(config, 'web', 'host', None, '0.0.0.0'),
        web_port=_number(_pick(config, 'web', 'port', 'PORT', 8050), int, 'web.port'),
        secret_key=_pick(config, 'web', 'secret_key', 'SECRET_KEY', 'heatpump-secret-key'),
        users=list((config.get('web') or {}).get('users') or []),
        log_level=str(os.getenv('LOG_LEVEL') or config.get('log_level') or 'INFO').upper(),
    )
