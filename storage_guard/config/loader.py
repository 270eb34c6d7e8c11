"""
Configuration management and loading.

Handles storage defaults, pricing, upload timing and per-network contract
addresses.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from storage_guard.core.errors import InvalidNetwork
from storage_guard.core.metrics import StorageRequest
from storage_guard.core.pricing import PRICING_TABLE, PricingTable, StoragePricing
from storage_guard.core.units import gib_to_bytes


@dataclass(frozen=True)
class StorageConfig:
    """Default storage intent."""
    capacity_gib: int = 10
    persistence_days: int = 30
    min_days_threshold: int = 10
    with_cdn: bool = False

    def __post_init__(self):
        """Validate storage values are positive."""
        if self.capacity_gib <= 0:
            raise ValueError("capacity_gib must be > 0")
        if self.persistence_days <= 0:
            raise ValueError("persistence_days must be > 0")
        if self.min_days_threshold <= 0:
            raise ValueError("min_days_threshold must be > 0")


@dataclass(frozen=True)
class UploadConfig:
    """Upload orchestration settings.

    ``confirmation_grace_seconds`` is the fixed wait used when the provider
    never surfaces a root-registration transaction; the result of such an
    upload is marked unverified.
    """
    destination_creation_fee: int = 10 ** 17  # 0.1 USDFC
    confirmation_grace_seconds: float = 50.0
    confirmation_timeout_seconds: float = 300.0
    token: str = "USDFC"

    def __post_init__(self):
        """Validate upload timing values."""
        if self.destination_creation_fee < 0:
            raise ValueError("destination_creation_fee cannot be negative")
        if self.confirmation_grace_seconds < 0:
            raise ValueError("confirmation_grace_seconds cannot be negative")
        if self.confirmation_timeout_seconds <= 0:
            raise ValueError("confirmation_timeout_seconds must be > 0")
        if not self.token:
            raise ValueError("token cannot be empty")


@dataclass(frozen=True)
class NetworkConfig:
    """Contract addresses for one network."""
    payments_address: str
    storage_service_address: str

    def __post_init__(self):
        if not self.payments_address:
            raise ValueError("payments_address cannot be empty")
        if not self.storage_service_address:
            raise ValueError("storage_service_address cannot be empty")


@dataclass(frozen=True)
class GuardConfig:
    """Complete storage guard configuration."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    pricing: PricingTable = PRICING_TABLE
    upload: UploadConfig = field(default_factory=UploadConfig)
    networks: Dict[str, NetworkConfig] = field(default_factory=dict)

    def get_network(self, network: str) -> NetworkConfig:
        """Get contract addresses for a network.

        Raises:
            InvalidNetwork: If the network is not configured
        """
        if network not in self.networks:
            raise InvalidNetwork(network)
        return self.networks[network]

    def storage_request(self, capacity_bytes: Optional[int] = None) -> StorageRequest:
        """Build a storage request from the configured defaults."""
        if capacity_bytes is None:
            capacity_bytes = gib_to_bytes(self.storage.capacity_gib)
        return StorageRequest(
            capacity_bytes=capacity_bytes,
            persistence_days=self.storage.persistence_days,
            min_days_threshold=self.storage.min_days_threshold,
            use_cdn=self.storage.with_cdn,
        )


def default_config() -> GuardConfig:
    """Configuration with every default applied and no networks."""
    return GuardConfig()


def load_guard_config(path: str) -> GuardConfig:
    """Load and validate storage guard configuration from a YAML file.

    Every section is optional; missing sections keep their defaults.
    Unknown keys are rejected.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated GuardConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Storage guard config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return default_config()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'storage', 'pricing', 'upload', 'networks'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    storage = _parse_storage(_section(raw_config, 'storage'))
    pricing = _parse_pricing(_section(raw_config, 'pricing'))
    upload = _parse_upload(_section(raw_config, 'upload'))

    networks_data = _section(raw_config, 'networks')
    networks = {}
    for name, network_data in networks_data.items():
        if not isinstance(network_data, dict):
            raise ValueError(f"Network '{name}' must be a dictionary")
        networks[str(name)] = _parse_network(network_data, f"networks.{name}")

    return GuardConfig(
        storage=storage,
        pricing=pricing,
        upload=upload,
        networks=networks,
    )


def dump_default_config() -> str:
    """Render the default configuration as YAML."""
    defaults = default_config()
    data = {
        'storage': {
            'capacity_gib': defaults.storage.capacity_gib,
            'persistence_days': defaults.storage.persistence_days,
            'min_days_threshold': defaults.storage.min_days_threshold,
            'with_cdn': defaults.storage.with_cdn,
        },
        'pricing': {
            'per_tib_per_month': defaults.pricing.without_cdn.per_tib_per_month,
            'per_tib_per_month_cdn': defaults.pricing.with_cdn.per_tib_per_month,
        },
        'upload': {
            'destination_creation_fee': defaults.upload.destination_creation_fee,
            'confirmation_grace_seconds': defaults.upload.confirmation_grace_seconds,
            'confirmation_timeout_seconds': defaults.upload.confirmation_timeout_seconds,
            'token': defaults.upload.token,
        },
        'networks': {},
    }
    return yaml.safe_dump(data, sort_keys=False)


def _section(raw_config: Dict, name: str) -> Dict:
    data = raw_config.get(name)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    return data


def _check_keys(data: Dict, allowed_keys: set, path: str) -> None:
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _positive_int(data: Dict, key: str, path: str, default: int, allow_zero: bool = False) -> int:
    """Read an integer setting, rejecting bools and out-of-range values."""
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{key}' in {path} must be an integer")
    if value < 0 or (value == 0 and not allow_zero):
        bound = ">= 0" if allow_zero else "> 0"
        raise ValueError(f"'{key}' in {path} must be {bound}")
    return value


def _seconds(data: Dict, key: str, path: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' in {path} must be a number")
    if value < 0:
        raise ValueError(f"'{key}' in {path} must be >= 0")
    return float(value)


def _parse_storage(data: Dict) -> StorageConfig:
    """Parse and validate the storage section.

    Raises:
        ValueError: If configuration is invalid
    """
    _check_keys(data, {'capacity_gib', 'persistence_days', 'min_days_threshold', 'with_cdn'}, 'storage')
    defaults = StorageConfig()

    with_cdn = data.get('with_cdn', defaults.with_cdn)
    if not isinstance(with_cdn, bool):
        raise ValueError("'with_cdn' in storage must be a boolean")

    return StorageConfig(
        capacity_gib=_positive_int(data, 'capacity_gib', 'storage', defaults.capacity_gib),
        persistence_days=_positive_int(data, 'persistence_days', 'storage', defaults.persistence_days),
        min_days_threshold=_positive_int(data, 'min_days_threshold', 'storage', defaults.min_days_threshold),
        with_cdn=with_cdn,
    )


def _parse_pricing(data: Dict) -> PricingTable:
    _check_keys(data, {'per_tib_per_month', 'per_tib_per_month_cdn'}, 'pricing')
    return PricingTable(
        without_cdn=StoragePricing(
            per_tib_per_month=_positive_int(
                data, 'per_tib_per_month', 'pricing',
                PRICING_TABLE.without_cdn.per_tib_per_month,
            )
        ),
        with_cdn=StoragePricing(
            per_tib_per_month=_positive_int(
                data, 'per_tib_per_month_cdn', 'pricing',
                PRICING_TABLE.with_cdn.per_tib_per_month,
            )
        ),
    )


def _parse_upload(data: Dict) -> UploadConfig:
    _check_keys(
        data,
        {'destination_creation_fee', 'confirmation_grace_seconds', 'confirmation_timeout_seconds', 'token'},
        'upload',
    )
    defaults = UploadConfig()

    timeout = _seconds(data, 'confirmation_timeout_seconds', 'upload', defaults.confirmation_timeout_seconds)
    if timeout == 0:
        raise ValueError("'confirmation_timeout_seconds' in upload must be > 0")

    token = data.get('token', defaults.token)
    if not isinstance(token, str) or not token.strip():
        raise ValueError("'token' in upload must be a non-empty string")

    return UploadConfig(
        destination_creation_fee=_positive_int(
            data, 'destination_creation_fee', 'upload',
            defaults.destination_creation_fee, allow_zero=True,
        ),
        confirmation_grace_seconds=_seconds(
            data, 'confirmation_grace_seconds', 'upload', defaults.confirmation_grace_seconds
        ),
        confirmation_timeout_seconds=timeout,
        token=token,
    )


def _parse_network(data: Dict[str, Any], path: str) -> NetworkConfig:
    """Parse and validate network contract addresses.

    Raises:
        ValueError: If configuration is invalid
    """
    allowed_keys = {'payments_address', 'storage_service_address'}
    _check_keys(data, allowed_keys, path)

    addresses = {}
    for key in sorted(allowed_keys):
        if key not in data:
            raise ValueError(f"Missing required '{key}' in {path}")
        value = data[key]
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"'{key}' in {path} must be a non-empty string")
        addresses[key] = value

    return NetworkConfig(**addresses)
