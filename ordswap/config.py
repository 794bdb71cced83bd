"""Shared configuration loader for ordswap.

Settings come from an optional YAML file (``~/.ordswap.yaml`` by default) and
environment variables; environment values win over the file and explicit
overrides win over both. The loaded :class:`TradeConfig` is read-only and is
passed to every component that needs it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import unquote, urlparse

import yaml

from .fees import TradeBudget
from .model import OutPoint


class ConfigurationError(RuntimeError):
    """Raised when configuration is invalid."""


DEFAULT_CONFIG_PATH = Path.home() / ".ordswap.yaml"
_CONFIG_PATH_OVERRIDE: Path | None = None

DEFAULT_NETWORK = "testnet"
NETWORK_DEFAULT_PORTS = {
    "mainnet": 8332,
    "testnet": 18332,
    "signet": 38332,
    "regtest": 18443,
}

# Role name -> environment variable prefix.
RPC_ROLES = {
    "node": "BITCOIN_RPC",
    "seller": "SELLER_RPC",
    "buyer": "BUYER_RPC",
}


@dataclass
class RPCConfig:
    """Connection details for one node/wallet JSON-RPC endpoint."""

    user: str
    password: str
    host: str = "127.0.0.1"
    port: int = NETWORK_DEFAULT_PORTS[DEFAULT_NETWORK]
    use_https: bool = False
    wallet: str | None = None

    @property
    def base_url(self) -> str:
        scheme = "https" if self.use_https else "http"
        return f"{scheme}://{self.host}:{self.port}"


@dataclass(frozen=True)
class TradeConfig:
    """Everything a trade run needs, established once at startup."""

    network: str
    seller_address: str
    buyer_address: str
    marketplace_address: str
    inscription: OutPoint
    oracle_url: str
    node_rpc: RPCConfig
    seller_rpc: RPCConfig
    buyer_rpc: RPCConfig
    budget: TradeBudget = field(default_factory=TradeBudget)
    min_confirmations: int = 1


def set_default_config_path(path: str | Path | None) -> None:
    """Remember a user-supplied config path for future loads."""

    global _CONFIG_PATH_OVERRIDE
    _CONFIG_PATH_OVERRIDE = Path(path).expanduser() if path else None


def _resolve_config_path(config_path: str | Path | None) -> tuple[Path, bool]:
    explicit = config_path is not None or _CONFIG_PATH_OVERRIDE is not None
    if config_path is not None:
        return Path(config_path).expanduser(), explicit
    return _CONFIG_PATH_OVERRIDE or DEFAULT_CONFIG_PATH, explicit


def _load_config_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigurationError(f"Config file not found: {path}")
        return {}

    try:
        loaded = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
        raise ConfigurationError(f"Invalid YAML in config file {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Expected {path} to contain a YAML mapping")
    return loaded


def _section(file_config: Mapping[str, Any], name: str, path: Path) -> dict[str, Any]:
    section = file_config.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Expected '{name}' to be a mapping in {path}")
    return section


def _coerce_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "y", "on"}:
            return True
        if normalized in {"0", "false", "no", "n", "off"}:
            return False
    return None


def _coerce_port(raw: Any, *, source: str) -> int | None:
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid port in {source}: {raw}") from exc


def _coerce_sats(raw: Any, *, source: str) -> int | None:
    if raw is None:
        return None
    if isinstance(raw, bool) or isinstance(raw, float):
        raise ConfigurationError(f"{source} must be an integer number of satoshis, got {raw!r}")
    try:
        value = int(str(raw).strip())
    except ValueError as exc:
        raise ConfigurationError(f"{source} must be an integer number of satoshis, got {raw!r}") from exc
    if value < 0:
        raise ConfigurationError(f"{source} must be non-negative, got {value}")
    return value


def _first_value(*values: Any, default: Any = None) -> Any:
    for value in values:
        if value is not None:
            return value
    return default


def _parse_endpoint(
    raw: str | None,
) -> tuple[str | None, int | None, bool | None, str | None]:
    """Split an RPC URL into host, port, https flag and ``/wallet/<name>`` path."""

    if not raw:
        return None, None, None, None
    parsed = urlparse(raw)
    if not parsed.scheme and not parsed.hostname:
        raise ConfigurationError(f"Invalid RPC endpoint URL: {raw}")
    host = parsed.hostname or None
    try:
        port = parsed.port
    except ValueError as exc:
        raise ConfigurationError(f"Invalid port in RPC endpoint URL: {raw}") from exc
    use_https = parsed.scheme.lower() == "https" if parsed.scheme else None
    wallet = None
    segments = [segment for segment in parsed.path.split("/") if segment]
    if len(segments) >= 2 and segments[0] == "wallet":
        wallet = unquote("/".join(segments[1:]))
    return host, port, use_https, wallet


def load_rpc_config(
    role: str = "node",
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
    network: str | None = None,
) -> RPCConfig:
    """Load RPC configuration for ``role`` (``node``, ``seller`` or ``buyer``)."""

    if role not in RPC_ROLES:
        raise ConfigurationError(f"Unknown RPC role {role!r}; expected one of {sorted(RPC_ROLES)}")
    prefix = RPC_ROLES[role]
    env_map = os.environ if env is None else env
    path, explicit_path = _resolve_config_path(config_path)

    file_config = _load_config_file(path, required=explicit_path)
    rpc_root = _section(file_config, "rpc", path)
    rpc_section = rpc_root.get(role) or {}
    if not isinstance(rpc_section, dict):
        raise ConfigurationError(f"Expected 'rpc.{role}' to be a mapping in {path}")

    override_map = dict(overrides or {})
    resolved_network = _first_value(
        network, env_map.get("ORDSWAP_NETWORK"), file_config.get("network"), DEFAULT_NETWORK
    )
    if resolved_network not in NETWORK_DEFAULT_PORTS:
        raise ConfigurationError(f"Unknown network {resolved_network!r}")

    env_user = env_map.get(f"{prefix}_USER")
    env_password = env_map.get(f"{prefix}_PASS") or env_map.get(f"{prefix}_PASSWORD")
    env_host = env_map.get(f"{prefix}_HOST")
    env_port = _coerce_port(env_map.get(f"{prefix}_PORT"), source="environment")
    env_wallet = env_map.get(f"{prefix}_WALLET")
    env_use_https = _coerce_bool(env_map.get(f"{prefix}_USE_HTTPS"))
    env_endpoint = env_map.get(f"{prefix}_URL") or env_map.get(f"{prefix}_ENDPOINT")

    endpoint_host, endpoint_port, endpoint_use_https, endpoint_wallet = _parse_endpoint(
        _first_value(override_map.get("endpoint"), env_endpoint, rpc_section.get("endpoint"))
    )

    resolved_user = _first_value(override_map.get("user"), env_user, rpc_section.get("user"))
    resolved_password = _first_value(
        override_map.get("password"), env_password, rpc_section.get("password")
    )
    if not resolved_user or not resolved_password:
        raise ConfigurationError(
            f"RPC credentials for the {role} endpoint must be provided via {prefix}_USER/{prefix}_PASS "
            "or the config file"
        )

    resolved_host = _first_value(
        override_map.get("host"), endpoint_host, env_host, rpc_section.get("host"), "127.0.0.1"
    )
    resolved_port = _first_value(
        _coerce_port(override_map.get("port"), source="overrides"),
        endpoint_port,
        env_port,
        _coerce_port(rpc_section.get("port"), source=f"{path} rpc.{role}.port"),
        NETWORK_DEFAULT_PORTS[resolved_network],
    )
    resolved_use_https = _first_value(
        _coerce_bool(override_map.get("use_https")),
        endpoint_use_https,
        env_use_https,
        _coerce_bool(rpc_section.get("use_https")),
        False,
    )
    resolved_wallet = _first_value(
        override_map.get("wallet"), endpoint_wallet, env_wallet, rpc_section.get("wallet")
    )

    return RPCConfig(
        user=str(resolved_user),
        password=str(resolved_password),
        host=resolved_host,
        port=resolved_port,
        use_https=bool(resolved_use_https),
        wallet=resolved_wallet,
    )


def load_budget(
    trade_section: Mapping[str, Any], env_map: Mapping[str, str], overrides: Mapping[str, Any]
) -> TradeBudget:
    defaults = TradeBudget()
    price = _first_value(
        _coerce_sats(overrides.get("price"), source="price override"),
        _coerce_sats(env_map.get("ORDSWAP_PRICE_SATS"), source="ORDSWAP_PRICE_SATS"),
        _coerce_sats(trade_section.get("price"), source="trade.price"),
        defaults.price,
    )
    marketplace_fee = _first_value(
        _coerce_sats(overrides.get("marketplace_fee"), source="marketplace_fee override"),
        _coerce_sats(env_map.get("ORDSWAP_MARKETPLACE_FEE_SATS"), source="ORDSWAP_MARKETPLACE_FEE_SATS"),
        _coerce_sats(trade_section.get("marketplace_fee"), source="trade.marketplace_fee"),
        defaults.marketplace_fee,
    )
    fee_rate = _first_value(
        _coerce_sats(overrides.get("fee_rate_sat_vb"), source="fee_rate_sat_vb override"),
        _coerce_sats(env_map.get("ORDSWAP_FEE_RATE_SATVB"), source="ORDSWAP_FEE_RATE_SATVB"),
        _coerce_sats(trade_section.get("fee_rate_sat_vb"), source="trade.fee_rate_sat_vb"),
        defaults.fee_rate_sat_vb,
    )
    separator_value = _first_value(
        _coerce_sats(trade_section.get("separator_value"), source="trade.separator_value"),
        defaults.separator_value,
    )
    change_allowance = _first_value(
        _coerce_sats(trade_section.get("change_allowance"), source="trade.change_allowance"),
        defaults.change_allowance,
    )
    creation_fee = _first_value(
        _coerce_sats(trade_section.get("separator_creation_fee"), source="trade.separator_creation_fee"),
        defaults.separator_creation_fee,
    )
    return TradeBudget(
        price=price,
        marketplace_fee=marketplace_fee,
        separator_value=separator_value,
        change_allowance=change_allowance,
        separator_creation_fee=creation_fee,
        fee_rate_sat_vb=fee_rate,
    )


def load_trade_config(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> TradeConfig:
    """Load the full trade configuration from environment variables and optional YAML."""

    env_map = os.environ if env is None else env
    path, explicit_path = _resolve_config_path(config_path)
    file_config = _load_config_file(path, required=explicit_path)
    trade_section = _section(file_config, "trade", path)
    override_map = dict(overrides or {})

    network = _first_value(
        override_map.get("network"),
        env_map.get("ORDSWAP_NETWORK"),
        file_config.get("network"),
        DEFAULT_NETWORK,
    )
    if network not in NETWORK_DEFAULT_PORTS:
        raise ConfigurationError(f"Unknown network {network!r}")

    def required(key: str, env_name: str) -> str:
        value = _first_value(override_map.get(key), env_map.get(env_name), trade_section.get(key))
        if not value:
            raise ConfigurationError(f"{key} must be provided via {env_name} or trade.{key} in {path}")
        return str(value).strip()

    seller_address = required("seller_address", "SELLER_ADDRESS")
    buyer_address = required("buyer_address", "BUYER_ADDRESS")
    marketplace_address = required("marketplace_address", "MARKET_PLACE_ADDRESS")
    oracle_url = required("oracle_url", "ORD_EXPLORER")
    raw_inscription = required("inscription", "SELLER_UTXO")
    try:
        inscription = OutPoint.parse(raw_inscription)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid inscription outpoint: {exc}") from exc

    min_conf = _first_value(
        override_map.get("min_confirmations"), trade_section.get("min_confirmations"), 1
    )
    try:
        min_confirmations = int(min_conf)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"min_confirmations must be an integer, got {min_conf!r}") from exc

    rpc_configs = {
        role: load_rpc_config(
            role,
            config_path=path if explicit_path else None,
            env=env_map,
            overrides=override_map.get(f"{role}_rpc"),
            network=network,
        )
        for role in RPC_ROLES
    }

    return TradeConfig(
        network=network,
        seller_address=seller_address,
        buyer_address=buyer_address,
        marketplace_address=marketplace_address,
        inscription=inscription,
        oracle_url=oracle_url,
        node_rpc=rpc_configs["node"],
        seller_rpc=rpc_configs["seller"],
        buyer_rpc=rpc_configs["buyer"],
        budget=load_budget(trade_section, env_map, override_map),
        min_confirmations=min_confirmations,
    )
