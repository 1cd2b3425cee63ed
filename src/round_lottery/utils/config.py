"""
Configuration Management
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from eth_account import Account
from web3 import Web3

from round_lottery.lottery.models import LotteryConfig
from round_lottery.utils.common import normalize_address
from round_lottery.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_FILE = Path("config") / "lottery.conf"

_ENV_SECTIONS = {
    "LOTTERY_": "lottery",
    "CHAIN_": "chain",
    "OPERATOR_": "operator",
    "SERVER_": "server",
    "APP_": "app",
}

CONTRACT_ADDRESS_SALT = "round-lottery/collection-account"


def load_config(config_file: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from a JSON file and environment variables"""
    config: Dict[str, Any] = {}

    path = Path(config_file or os.getenv("LOTTERY_CONFIG_FILE") or DEFAULT_CONFIG_FILE)
    if path.exists():
        with open(path, 'r', encoding='utf-8') as f:
            file_config = json.load(f)
        config.update(file_config)
        logger.info(f"Loaded configuration from {path}")
    else:
        logger.warning(f"Config file {path} not found. Will only use environment variables.")

    # Override with environment variables, defined in .env
    config = _apply_env_overrides(config)
    return config


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides to configuration"""
    for key, value in os.environ.items():
        # LOTTERY_TICKET_PRICE -> lottery.ticket_price
        for prefix, section in _ENV_SECTIONS.items():
            if key.startswith(prefix):
                if key == "LOTTERY_CONFIG_FILE":
                    break
                config.setdefault(section, {})[key[len(prefix):].lower()] = value
                break

    return config


def get_config_value(config: Dict[str, Any], key_path: str, default=None):
    """Get configuration value by dot-separated key path"""
    keys = key_path.split('.')
    value = config

    try:
        for key in keys:
            value = value[key]
        return value
    except (KeyError, TypeError):
        return default


def as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off", ""):
            return False
    if isinstance(value, int):
        return bool(value)
    raise ValueError(f"not a boolean: {value!r}")


def _as_int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


def resolve_admin(lottery_cfg: Dict[str, Any]) -> str:
    """Administrator address, from ``admin_address`` or ``admin_private_key``."""
    if lottery_cfg.get("admin_address"):
        return normalize_address(lottery_cfg["admin_address"])
    if lottery_cfg.get("admin_private_key"):
        return Account.from_key(lottery_cfg["admin_private_key"]).address
    raise ValueError("lottery.admin_address or lottery.admin_private_key must be configured")


def derive_contract_address(admin: str) -> str:
    digest = Web3.solidity_keccak(["address", "string"], [admin, CONTRACT_ADDRESS_SALT])
    return Web3.to_checksum_address(digest[-20:])


def build_lottery_config(config: Dict[str, Any]) -> LotteryConfig:
    lottery_cfg = config.get("lottery", {})
    admin = resolve_admin(lottery_cfg)
    contract_address = (
        normalize_address(lottery_cfg["contract_address"])
        if lottery_cfg.get("contract_address")
        else derive_contract_address(admin)
    )
    return LotteryConfig(
        admin=admin,
        contract_address=contract_address,
        ticket_price=_as_int(lottery_cfg.get("ticket_price", 10**16), "lottery.ticket_price"),
        round_duration=_as_int(lottery_cfg.get("round_duration", 300), "lottery.round_duration"),
        fee_bps=_as_int(lottery_cfg.get("fee_bps", 500), "lottery.fee_bps"),
        per_address_cap=_as_int(lottery_cfg.get("per_address_cap", 10), "lottery.per_address_cap"),
    )


def load_genesis(config: Dict[str, Any]) -> Dict[str, int]:
    """Initial balances for the local chain, keyed by checksum address."""
    raw = get_config_value(config, "chain.genesis", {}) or {}
    if isinstance(raw, str):
        raw = json.loads(raw)
    return {normalize_address(address): _as_int(amount, "chain.genesis") for address, amount in raw.items()}
