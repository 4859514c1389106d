"""Deploy a vault and strategy pair, or reuse an existing deployment.

- Reads the pair configuration from a JSON file, see :py:mod:`eth_vault_deploy.config`
- Deployment records are written to ``$DEPLOYMENTS_PATH/<network>/``
- Running again with unchanged configuration does not send any transactions

To run:

.. code-block:: shell

    export PRIVATE_KEY=...
    export JSON_RPC_URL=...
    export CONFIG_FILE=deploy-configs/quickswap-usdc-eth.json
    LOG_LEVEL=info python scripts/deploy-vault-pair.py
"""

import os
from pathlib import Path

from eth_account import Account
from web3 import HTTPProvider, Web3

from eth_vault_deploy.abi import get_contract
from eth_vault_deploy.config import VaultPairConfig, create_artifact_specs
from eth_vault_deploy.deploy import Web3ContractDeployer
from eth_vault_deploy.nonce import NonceLease
from eth_vault_deploy.reconcile import DeploymentReconciler
from eth_vault_deploy.records import JSONDeploymentRecordStore
from eth_vault_deploy.settings import apply_strategy_settings
from eth_vault_deploy.utils import setup_console_logging


def main():
    PRIVATE_KEY = os.environ["PRIVATE_KEY"]
    JSON_RPC_URL = os.environ["JSON_RPC_URL"]
    CONFIG_FILE = Path(os.environ["CONFIG_FILE"])
    DEPLOYMENTS_PATH = Path(os.environ.get("DEPLOYMENTS_PATH", "deployments")).absolute()

    setup_console_logging(default_log_level="info")

    web3 = Web3(HTTPProvider(JSON_RPC_URL))
    chain_id = web3.eth.chain_id
    network = os.environ.get("NETWORK", str(chain_id))

    config = VaultPairConfig.load(CONFIG_FILE)
    assert config.chain_id == chain_id, f"Config {CONFIG_FILE} is for chain {config.chain_id}, RPC is chain {chain_id}"

    deployer = Account.from_key(PRIVATE_KEY)
    print(f"Deployer: {deployer.address}")

    vault_spec, strategy_spec = create_artifact_specs(config)

    store = JSONDeploymentRecordStore(DEPLOYMENTS_PATH, network)
    contract_deployer = Web3ContractDeployer(web3, deployer)
    reconciler = DeploymentReconciler(store, contract_deployer)

    lock_file = DEPLOYMENTS_PATH / f"{deployer.address.lower()}.lock"
    with NonceLease(web3, deployer.address, lock_file=lock_file) as lease:
        result = reconciler.reconcile(vault_spec, strategy_spec, lease)

        Strategy = get_contract(web3, contract_deployer.get_artifact_filename(config.strategy_contract))
        strategy = Strategy(address=result.strategy_address)
        changes = apply_strategy_settings(
            web3,
            strategy,
            deployer,
            call_fee=config.call_fee,
            withdrawal_fee=config.withdrawal_fee,
            lease=lease,
        )

    print(f"Vault pair {vault_spec.logical_name}:\n{result.pformat()}")
    for setter, tx_hash in changes.items():
        print(f"  {setter}: {tx_hash.hex()}")


if __name__ == "__main__":
    main()
