"""Vault pair configuration files.

A vault pair is described in a JSON file:

.. code-block:: json

    {
        "chain_id": 137,
        "platform": "quickswap",
        "want_symbol": "USDC-ETH",
        "vault_contract": "BeefyVaultV6",
        "strategy_contract": "StrategyCommonRewardPoolLP",
        "vault_args": ["$STRATEGY", "Moo Quick USDC-ETH", "mooQuickUSDC-ETH", 21600],
        "strategy_args": ["0x853Ee4b2A13f8a742d64C8F088bE7bA2131f670d", "$VAULT"],
        "withdrawal_fee": 10
    }

``$VAULT`` and ``$STRATEGY`` are replaced with the vault and strategy addresses.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from eth_vault_deploy.artifact import STRATEGY_ADDRESS, VAULT_ADDRESS, ArtifactSpec, ConfigurationError


#: Placeholder strings in configuration files
PLACEHOLDER_STRINGS = {
    "$VAULT": VAULT_ADDRESS,
    "$STRATEGY": STRATEGY_ADDRESS,
}

_REQUIRED_KEYS = (
    "chain_id",
    "platform",
    "want_symbol",
    "vault_contract",
    "strategy_contract",
    "vault_args",
    "strategy_args",
)


#: Not allowed in platform and want symbol
_FORBIDDEN_NAME_CHARS = ("/", "\\")


def _replace_placeholders(value: Any) -> Any:
    if isinstance(value, str) and value in PLACEHOLDER_STRINGS:
        return PLACEHOLDER_STRINGS[value]
    if isinstance(value, list):
        return [_replace_placeholders(v) for v in value]
    if isinstance(value, dict):
        return {k: _replace_placeholders(v) for k, v in value.items()}
    return value


@dataclass(slots=True)
class VaultPairConfig:
    """Deployment configuration of one vault and its strategy."""

    #: The chain this pair is deployed on
    chain_id: int

    #: Platform name, e.g. ``quickswap``
    platform: str

    #: Symbol of the deposited token, e.g. ``USDC-ETH``
    want_symbol: str

    #: Vault contract kind
    vault_contract: str

    #: Strategy contract kind
    strategy_contract: str

    #: Vault constructor arguments with placeholders
    vault_args: list

    #: Strategy constructor arguments with placeholders
    strategy_args: list

    #: Harvest call fee, if not the chain default
    call_fee: Optional[int] = None

    #: Withdrawal fee, if set after deployment
    withdrawal_fee: Optional[int] = None

    def get_vault_name(self) -> str:
        return f"{self.platform}-{self.want_symbol}-vault".lower()

    def get_strategy_name(self) -> str:
        return f"{self.platform}-{self.want_symbol}-strat".lower()

    @staticmethod
    def from_dict(data: dict) -> "VaultPairConfig":
        """Parse configuration.

        :raise ConfigurationError:
            If required keys are missing or names contain path separators
        """
        missing = [k for k in _REQUIRED_KEYS if data.get(k) is None]
        if missing:
            raise ConfigurationError(f"Vault pair configuration is missing keys: {', '.join(missing)}")

        config = VaultPairConfig(
            chain_id=int(data["chain_id"]),
            platform=data["platform"],
            want_symbol=data["want_symbol"],
            vault_contract=data["vault_contract"],
            strategy_contract=data["strategy_contract"],
            vault_args=_replace_placeholders(data["vault_args"]),
            strategy_args=_replace_placeholders(data["strategy_args"]),
            call_fee=data.get("call_fee"),
            withdrawal_fee=data.get("withdrawal_fee"),
        )

        # Logical names become record file names
        for key in ("platform", "want_symbol"):
            value = getattr(config, key)
            if not isinstance(value, str) or any(c in value for c in _FORBIDDEN_NAME_CHARS):
                raise ConfigurationError(f"{key} must be a string without path separators, got {value!r}")

        return config

    @staticmethod
    def load(path: Path) -> "VaultPairConfig":
        """Read configuration from a JSON file."""
        with open(path, "rt", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Could not parse {path}: {e}") from e
        return VaultPairConfig.from_dict(data)


def create_artifact_specs(config: VaultPairConfig) -> tuple[ArtifactSpec, ArtifactSpec]:
    """Turn configuration to vault and strategy specs.

    :return:
        Tuple (vault spec, strategy spec)
    """
    vault_spec = ArtifactSpec(
        logical_name=config.get_vault_name(),
        contract_kind=config.vault_contract,
        constructor_args=config.vault_args,
    )
    strategy_spec = ArtifactSpec(
        logical_name=config.get_strategy_name(),
        contract_kind=config.strategy_contract,
        constructor_args=config.strategy_args,
    )
    return vault_spec, strategy_spec
