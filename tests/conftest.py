"""Local test chain fixtures.

- Every test gets a fresh EthereumTester chain with funded, unlocked accounts

"""

import pytest
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import EthereumTesterProvider, Web3

from eth_vault_deploy.artifact import STRATEGY_ADDRESS, VAULT_ADDRESS, ArtifactSpec


#: Polygon QuickSwap USDC-ETH LP token
WANT = Web3.to_checksum_address("0x853ee4b2a13f8a742d64c8f088be7ba2131f670d")


@pytest.fixture
def tester_provider():
    # https://web3py.readthedocs.io/en/stable/examples.html#contract-unit-tests-in-python
    return EthereumTesterProvider()


@pytest.fixture
def eth_tester(tester_provider):
    return tester_provider.ethereum_tester


@pytest.fixture
def web3(tester_provider):
    """Set up a local unit testing blockchain."""
    return Web3(tester_provider)


@pytest.fixture()
def deployer(web3) -> str:
    """Deploy account.

    Unlocked on the test chain.
    """
    return web3.eth.accounts[0]


@pytest.fixture()
def user_1(web3) -> str:
    """Some other account."""
    return web3.eth.accounts[1]


@pytest.fixture()
def local_deployer(web3, deployer) -> LocalAccount:
    """A private key deployer funded with 10 ETH."""
    account = Account.create()
    tx_hash = web3.eth.send_transaction({"from": deployer, "to": account.address, "value": 10 * 10**18})
    web3.eth.wait_for_transaction_receipt(tx_hash)
    return account


@pytest.fixture()
def vault_spec() -> ArtifactSpec:
    return ArtifactSpec(
        logical_name="test-usdc-eth-vault",
        contract_kind="VaultMock",
        constructor_args=[21600, STRATEGY_ADDRESS],
    )


@pytest.fixture()
def strategy_spec() -> ArtifactSpec:
    return ArtifactSpec(
        logical_name="test-usdc-eth-strat",
        contract_kind="StrategyMock",
        constructor_args=[WANT, VAULT_ADDRESS],
    )
