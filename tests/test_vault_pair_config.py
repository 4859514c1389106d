"""Vault pair configuration files."""

import json
from pathlib import Path

import pytest

from eth_vault_deploy.artifact import STRATEGY_ADDRESS, VAULT_ADDRESS, ConfigurationError, validate_pair
from eth_vault_deploy.config import VaultPairConfig, create_artifact_specs


@pytest.fixture()
def config_data() -> dict:
    return {
        "chain_id": 137,
        "platform": "QuickSwap",
        "want_symbol": "USDC-ETH",
        "vault_contract": "BeefyVaultV6",
        "strategy_contract": "StrategyCommonRewardPoolLP",
        "vault_args": ["$STRATEGY", "Moo Quick USDC-ETH", "mooQuickUSDC-ETH", 21600],
        "strategy_args": [
            "0x853Ee4b2A13f8a742d64C8F088bE7bA2131f670d",
            "$VAULT",
            ["0x831753DD7087CaC61aB5644b308642cc1c33Dc13", "0x0d500B1d8E8eF31E21C99d1Db9A6444d3ADf1270"],
        ],
        "withdrawal_fee": 10,
    }


def test_load_config(config_data: dict, tmp_path: Path):
    path = tmp_path / "quick-usdc-eth.json"
    path.write_text(json.dumps(config_data))

    config = VaultPairConfig.load(path)
    assert config.chain_id == 137
    assert config.withdrawal_fee == 10
    assert config.call_fee is None
    assert config.vault_args[0] is STRATEGY_ADDRESS
    assert config.strategy_args[1] is VAULT_ADDRESS

    vault_spec, strategy_spec = create_artifact_specs(config)
    assert vault_spec.logical_name == "quickswap-usdc-eth-vault"
    assert strategy_spec.logical_name == "quickswap-usdc-eth-strat"
    assert vault_spec.contract_kind == "BeefyVaultV6"
    validate_pair(vault_spec, strategy_spec)


def test_missing_keys(config_data: dict):
    del config_data["strategy_contract"]
    with pytest.raises(ConfigurationError, match="strategy_contract"):
        VaultPairConfig.from_dict(config_data)


def test_broken_json(tmp_path: Path):
    path = tmp_path / "broken.json"
    path.write_text("{")
    with pytest.raises(ConfigurationError):
        VaultPairConfig.load(path)


@pytest.mark.parametrize("want_symbol", ["USDC/ETH", "USDC\\ETH"])
def test_path_separator_in_name(config_data: dict, want_symbol: str):
    """Logical names are used as record file names."""
    config_data["want_symbol"] = want_symbol
    with pytest.raises(ConfigurationError, match="want_symbol"):
        VaultPairConfig.from_dict(config_data)


def test_struct_args_placeholders(config_data: dict):
    config_data["strategy_args"] = [{"want": "0x853Ee4b2A13f8a742d64C8F088bE7bA2131f670d", "vault": "$VAULT"}]
    config = VaultPairConfig.from_dict(config_data)
    assert config.strategy_args[0]["vault"] is VAULT_ADDRESS
    validate_pair(*create_artifact_specs(config))
