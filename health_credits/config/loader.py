"""
Configuration management and loading.

Handles ledger settings: grants, recharge windows, storage and per-capability costs.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from health_credits.core.recharge import RechargePolicy
from health_credits.storage.db import DEFAULT_DB_PATH


@dataclass(frozen=True)
class GrantConfig:
    """Credit amounts handed out by the ledger itself."""
    starting_grant: int = 100
    recharge_amount: int = 100

    def __post_init__(self):
        """Validate grant values."""
        if self.starting_grant < 0:
            raise ValueError("starting_grant must be >= 0")
        if self.recharge_amount <= 0:
            raise ValueError("recharge_amount must be > 0")


@dataclass(frozen=True)
class RechargeWindowConfig:
    """Age-bracketed replenishment windows."""
    senior_age_threshold: int = 60
    senior_window_days: int = 180
    standard_window_days: int = 365

    def __post_init__(self):
        """Validate window values are positive."""
        if self.senior_age_threshold < 0:
            raise ValueError("senior_age_threshold must be >= 0")
        if self.senior_window_days <= 0:
            raise ValueError("senior_window_days must be > 0")
        if self.standard_window_days <= 0:
            raise ValueError("standard_window_days must be > 0")


@dataclass(frozen=True)
class StorageConfig:
    """Persistence settings for the reference SQLite store."""
    db_path: str = DEFAULT_DB_PATH
    busy_timeout_seconds: float = 5.0
    max_retries: int = 3

    def __post_init__(self):
        """Validate storage values."""
        if not self.db_path:
            raise ValueError("db_path cannot be empty")
        if self.busy_timeout_seconds <= 0:
            raise ValueError("busy_timeout_seconds must be > 0")
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")


@dataclass(frozen=True)
class CostConfig:
    """Credits charged per metered capability call."""
    default: int = 1
    capabilities: Dict[str, int] = field(default_factory=dict)

    def __post_init__(self):
        """Validate every cost is positive."""
        if self.default <= 0:
            raise ValueError("default cost must be > 0")
        for name, cost in self.capabilities.items():
            if cost <= 0:
                raise ValueError(f"cost for capability '{name}' must be > 0")

    def cost_for(self, capability: str) -> int:
        """Get the cost for a capability, using the default if not specified."""
        return self.capabilities.get(capability, self.default)


@dataclass(frozen=True)
class LedgerConfig:
    """Complete ledger configuration."""
    grants: GrantConfig = field(default_factory=GrantConfig)
    recharge: RechargeWindowConfig = field(default_factory=RechargeWindowConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    costs: CostConfig = field(default_factory=CostConfig)

    @classmethod
    def default(cls) -> "LedgerConfig":
        return cls()

    def recharge_policy(self) -> RechargePolicy:
        """Build the recharge policy these settings describe."""
        return RechargePolicy(
            recharge_amount=self.grants.recharge_amount,
            senior_age_threshold=self.recharge.senior_age_threshold,
            senior_window_days=self.recharge.senior_window_days,
            standard_window_days=self.recharge.standard_window_days
        )


_SECTION_KEYS = {
    'ledger': {'starting_grant', 'recharge_amount'},
    'recharge': {'senior_age_threshold', 'senior_window_days', 'standard_window_days'},
    'storage': {'db_path', 'busy_timeout_seconds', 'max_retries'},
    'costs': {'default', 'capabilities'},
}


def load_ledger_config(path: str) -> LedgerConfig:
    """Load and validate ledger configuration from YAML file.

    Strict validation ensures no silent misconfigurations that could hand
    out or charge the wrong number of credits. Every section is optional;
    omitted values keep their defaults.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated LedgerConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Ledger config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    unknown_keys = set(raw_config.keys()) - set(_SECTION_KEYS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    ledger_data = _section(raw_config, 'ledger')
    grants = GrantConfig(
        starting_grant=_int(ledger_data, 'starting_grant', 'ledger', 100),
        recharge_amount=_int(ledger_data, 'recharge_amount', 'ledger', 100)
    )

    recharge_data = _section(raw_config, 'recharge')
    recharge = RechargeWindowConfig(
        senior_age_threshold=_int(recharge_data, 'senior_age_threshold', 'recharge', 60),
        senior_window_days=_int(recharge_data, 'senior_window_days', 'recharge', 180),
        standard_window_days=_int(recharge_data, 'standard_window_days', 'recharge', 365)
    )

    storage_data = _section(raw_config, 'storage')
    db_path = storage_data.get('db_path', DEFAULT_DB_PATH)
    if not isinstance(db_path, str):
        raise ValueError("'db_path' in storage must be a string")
    timeout = storage_data.get('busy_timeout_seconds', 5.0)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
        raise ValueError("'busy_timeout_seconds' in storage must be a number")
    storage = StorageConfig(
        db_path=db_path,
        busy_timeout_seconds=float(timeout),
        max_retries=_int(storage_data, 'max_retries', 'storage', 3)
    )

    costs = _parse_costs(_section(raw_config, 'costs'))

    return LedgerConfig(
        grants=grants,
        recharge=recharge,
        storage=storage,
        costs=costs
    )


def _section(raw_config: Dict, name: str) -> Dict:
    """Fetch a top-level section and reject keys it doesn't define."""
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    unknown_keys = set(data.keys()) - _SECTION_KEYS[name]
    if unknown_keys:
        raise ValueError(f"Unknown {name} keys: {unknown_keys}")
    return data


def _int(data: Dict, key: str, path: str, default: int) -> int:
    value: Any = data.get(key, default)
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{key}' in {path} must be an integer")
    return value


def _parse_costs(data: Dict) -> CostConfig:
    """Parse and validate per-capability costs.

    Args:
        data: Costs section data

    Returns:
        Validated CostConfig

    Raises:
        ValueError: If a cost is missing, not an integer, or not positive
    """
    default = _int(data, 'default', 'costs', 1)

    capabilities_data: Optional[Dict] = data.get('capabilities') or {}
    if not isinstance(capabilities_data, dict):
        raise ValueError("'capabilities' in costs must be a dictionary")

    capabilities = {}
    for name, cost in capabilities_data.items():
        if isinstance(cost, bool) or not isinstance(cost, int):
            raise ValueError(f"Cost for capability '{name}' must be an integer")
        capabilities[str(name)] = cost

    return CostConfig(default=default, capabilities=capabilities)
