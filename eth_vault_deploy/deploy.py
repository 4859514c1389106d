"""Deploy compiled contracts.

- :py:func:`deploy_contract` is a generic helper to deploy any contract

- :py:class:`Web3ContractDeployer` is the chain submission collaborator
  used by :py:class:`eth_vault_deploy.reconcile.DeploymentReconciler`
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, NamedTuple, Optional, TypeAlias, Union

from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3
from web3.contract import Contract

from eth_vault_deploy.abi import get_abi_path, get_bytecode_by_filename, get_contract
from eth_vault_deploy.artifact import ResolvedArtifact
from eth_vault_deploy.tx import get_tx_broadcast_data


logger = logging.getLogger(__name__)


#: Manage internal registry of deployed contracts
#:
#: Lower case address -> Contract mapping.
ContractRegistry: TypeAlias = Dict[str, Contract]


class ContractDeploymentFailed(Exception):
    """Did not get successful tx receipt from a deployment."""

    def __init__(self, tx_hash, msg):
        super().__init__(msg)
        self.tx_hash = tx_hash


def deploy_contract(
    web3: Web3,
    contract: Union[str, Contract],
    deployer: str | LocalAccount,
    *constructor_args,
    nonce: Optional[int] = None,
    register_for_tracing=True,
    gas: int = None,
    confirm=True,
) -> Contract | HexBytes:
    """Deploys a new contract from ABI file.

    A generic helper function to deploy any contract.

    Example:

    .. code-block:: python

        vault = deploy_contract(web3, "VaultMock.json", deployer, 21600, strategy_address)
        print(f"Deployed vault at {vault.address}")

    :param web3:
        Web3 instance

    :param contract:
        Contract file path as string or contract proxy class

    :param deployer:
        Deployer account.

        Either an unlocked address or LocalAccount.

    :param constructor_args:
        Other arguments to pass to the contract's constructor

    :param nonce:
        Sign with this nonce.

        Only with LocalAccount. If not given, use the pending nonce of the account.

    :param register_for_tracing:
        Make the symbolic contract information available on web3 instance.

        See :py:func:`get_contract_registry`

    :param gas:
        Gas limit.

        If not set tries to estimate and probably may hit reverts when doing so.

    :param confirm:
        Wait for the deployment receipt.

    :raise ContractDeploymentFailed:
        In the case we could not deploy the contract.

    :return:
        Contract proxy instance or tx_hash if confirm=false.

    """
    if isinstance(contract, str):
        Contract = get_contract(web3, contract)
        contract_name = contract.replace(".json", "")
    else:
        Contract = contract
        contract_name = None

    if isinstance(deployer, LocalAccount):
        # Sign locally
        if nonce is None:
            nonce = web3.eth.get_transaction_count(deployer.address, "pending")
        tx_params = {
            "from": deployer.address,
            "nonce": nonce,
            "chainId": web3.eth.chain_id,
        }
        if gas:
            tx_params["gas"] = gas
        tx_data = Contract.constructor(*constructor_args).build_transaction(tx_params)

        signed_tx = deployer.sign_transaction(tx_data)
        raw_bytes = get_tx_broadcast_data(signed_tx)
        tx_hash = web3.eth.send_raw_transaction(raw_bytes)
    else:
        # Unlocked account on a test node, the node picks the nonce
        assert nonce is None, "Cannot force nonce for unlocked accounts"
        tx_params = {"from": deployer}
        if gas:
            tx_params["gas"] = gas
        tx_hash = Contract.constructor(*constructor_args).transact(tx_params)

    if not confirm:
        return tx_hash

    tx_receipt = web3.eth.wait_for_transaction_receipt(tx_hash)
    if tx_receipt["status"] != 1:
        raise ContractDeploymentFailed(tx_hash, f"Contract {contract_name} deployment failed with args {constructor_args}, tx hash is {tx_hash.hex()}")

    instance = Contract(address=tx_receipt["contractAddress"])
    instance.tx_hash = tx_hash

    if register_for_tracing:
        instance.name = contract_name
        register_contract(web3, tx_receipt["contractAddress"], instance)

    return instance


def get_or_create_contract_registry(web3: Web3) -> ContractRegistry:
    """Get a contract registry associated with a Web3 connection.

    - Assumes one web3 instance per deployment session

    :param web3:
        Web3 session

    :return:
        Mapping of address -> deployed contract instance
    """
    if not hasattr(web3, "contract_registry"):
        web3.contract_registry = {}

    return web3.contract_registry


def register_contract(web3, address: HexAddress, instance: Contract):
    """Register a deployed contract.

    See :py:func:`deploy_contract`.
    """
    assert type(address) == str, f"address is {type(address)}, expected str"
    registry = get_or_create_contract_registry(web3)
    registry[address.lower()] = instance


def get_registered_contract(web3, address: str) -> Contract:
    """Get a contract that was deployed with the registry.

    Example:

    .. code-block:: python

         contract = get_registered_contract(web3, vault_address)
         assert contract.name == "VaultMock"

    :param address:
        Contract address as a hex string

    :return:
        The known Contract instance at the registry or `None` if the contract was not registered/deployed through registry mechanism.
    """
    assert type(address) == str
    registry = get_or_create_contract_registry(web3)
    return registry.get(address.lower())


class DeployedContract(NamedTuple):
    """Result of a confirmed deployment."""

    address: HexAddress

    #: Hex string
    tx_hash: str


class ContractDeployer(ABC):
    """Submit contract creation transactions and wait for them.

    - Each call blocks until the deployment is confirmed
    - Chain errors are not retried
    """

    @property
    @abstractmethod
    def address(self) -> HexAddress:
        """The account deploying the contracts."""

    @abstractmethod
    def deploy(self, artifact: ResolvedArtifact, nonce: int) -> DeployedContract:
        """Deploy an artifact.

        :param artifact:
            Contract kind and fully resolved constructor arguments

        :param nonce:
            The nonce this deployment is expected to consume

        :return:
            Address of the new contract
        """

    @abstractmethod
    def get_bytecode(self, contract_kind: str) -> Optional[str]:
        """Creation bytecode for a contract kind, if known."""


class Web3ContractDeployer(ContractDeployer):
    """Deploy compiled artifacts with web3.py.

    ``contract_kind`` is resolved to a compiled artifact:

    - ``VaultMock`` -> bundled ``eth_vault_deploy/abi/VaultMock.json``

    - ``/path/to/out/Vault.sol/Vault.json`` -> Forge output on the disk
    """

    def __init__(
        self,
        web3: Web3,
        deployer: HexAddress | LocalAccount,
        gas: Optional[int] = None,
    ):
        """
        :param deployer:
            LocalAccount signs with the leased nonce.
            An unlocked address lets the node pick the nonce, only for test nodes.

        :param gas:
            Gas limit for each deployment, or estimate
        """
        self.web3 = web3
        if isinstance(deployer, LocalAccount):
            self.deployer = deployer
        else:
            self.deployer = Web3.to_checksum_address(deployer)
        self.gas = gas

    def __repr__(self):
        return f"<Web3ContractDeployer {self.address}>"

    @property
    def address(self) -> HexAddress:
        if isinstance(self.deployer, LocalAccount):
            return self.deployer.address
        return self.deployer

    @staticmethod
    def get_artifact_filename(contract_kind: str) -> str:
        """Map contract kind to the artifact file name."""
        if contract_kind.endswith(".json"):
            return contract_kind
        return f"{contract_kind}.json"

    def get_bytecode(self, contract_kind: str) -> Optional[str]:
        fname = self.get_artifact_filename(contract_kind)
        if not get_abi_path(fname).exists():
            return None
        return get_bytecode_by_filename(fname)

    def deploy(self, artifact: ResolvedArtifact, nonce: int) -> DeployedContract:
        fname = self.get_artifact_filename(artifact.contract_kind)
        Contract = get_contract(self.web3, fname, bytecode=artifact.bytecode)

        logger.info(
            "Deploying %s as %s from %s, nonce %d, args %s",
            artifact.logical_name,
            artifact.contract_kind,
            self.address,
            nonce,
            artifact.constructor_args,
        )

        instance = deploy_contract(
            self.web3,
            Contract,
            self.deployer,
            *artifact.constructor_args,
            nonce=nonce if isinstance(self.deployer, LocalAccount) else None,
            gas=self.gas,
            register_for_tracing=False,
        )
        instance.name = Path(fname).stem
        register_contract(self.web3, instance.address, instance)

        tx_hash = Web3.to_hex(instance.tx_hash)
        logger.info("Deployed %s at %s, tx %s", artifact.logical_name, instance.address, tx_hash)
        return DeployedContract(address=instance.address, tx_hash=tx_hash)
