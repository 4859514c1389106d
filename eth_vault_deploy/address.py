"""Predict addresses of contracts that have not been deployed yet.

A contract created with a plain ``CREATE`` transaction gets an address that depends only
on the creator address and the creator nonce:

.. code-block:: text

    address = keccak256(rlp([creator, nonce]))[12:]

This allows us to know the addresses of the next two contracts an account is going to deploy,
before sending any transaction. A vault and a strategy contract that need each other's address
in their constructors can then be deployed one after another.

Example:

.. code-block:: python

    from eth_vault_deploy.address import AddressPredictor, fetch_deployer_account

    account = fetch_deployer_account(web3, deployer.address)
    pair = AddressPredictor().predict(account)
    print(f"Vault will be at {pair.vault}, strategy at {pair.strategy}")

.. warning ::

    The prediction holds only as long as the account does not send any other transaction
    before the two deployments. See :py:class:`eth_vault_deploy.nonce.NonceLease`.

"""

import logging
from typing import NamedTuple

import rlp
from eth_typing import HexAddress
from eth_utils import keccak, to_canonical_address, to_checksum_address
from web3 import Web3


logger = logging.getLogger(__name__)


class DeployerAccount(NamedTuple):
    """An account address and its transaction counter.

    - A snapshot, becomes stale as soon as the account broadcasts anything
    """

    #: Deployer address
    address: HexAddress

    #: The nonce the next transaction from this account will use
    nonce: int


class PredictedAddressPair(NamedTuple):
    """Addresses of the next two contracts an account will create."""

    #: Contract created at the current nonce
    first: HexAddress

    #: Contract created at the current nonce + 1
    second: HexAddress

    @property
    def vault(self) -> HexAddress:
        """The vault is always deployed first."""
        return self.first

    @property
    def strategy(self) -> HexAddress:
        """The strategy is always deployed second."""
        return self.second


def predict_contract_address(creator: HexAddress | str, nonce: int) -> HexAddress:
    """Calculate the address of a contract created by ``creator`` at ``nonce``.

    Example:

    .. code-block:: python

        address = predict_contract_address("0x6ac7ea33f8831ea9dcc53393aaa88b25a785dbf0", 0)
        assert address.lower() == "0xcd234a471b72ba2f1ccf0a70fcaba648a5eecd8d"

    :param creator:
        The deployer address.

        Any case, checksum is not validated.

    :param nonce:
        Transaction count of the creator when the deployment transaction is sent.

    :return:
        Checksummed contract address

    :raise ValueError:
        If the creator is not a 20 bytes address or the nonce is negative
    """
    if type(nonce) != int or nonce < 0:
        raise ValueError(f"Nonce must be a non-negative integer, got {nonce}")

    # to_canonical_address() raises ValueError for anything that is not 20 bytes
    creator_bytes = to_canonical_address(creator)

    # rlp encodes int 0 as the empty string 0x80, not as 0x00
    encoded = rlp.encode([creator_bytes, nonce])
    return to_checksum_address(keccak(encoded)[-20:])


def fetch_deployer_account(web3: Web3, address: HexAddress | str) -> DeployerAccount:
    """Read the nonce of an account, including transactions still in the mempool.

    :param web3:
        Web3 connection

    :param address:
        Deployer address

    :return:
        Snapshot of the account nonce
    """
    address = Web3.to_checksum_address(address)
    nonce = web3.eth.get_transaction_count(address, "pending")
    return DeployerAccount(address, nonce)


class AddressPredictor:
    """Predict the addresses of the next two contracts deployed by an account.

    - Stateless: same ``(address, nonce)`` always gives the same pair

    - Does not touch the chain, see :py:func:`fetch_deployer_account` for reading the nonce
    """

    def __repr__(self):
        return "<AddressPredictor>"

    def predict(self, account: DeployerAccount) -> PredictedAddressPair:
        """Get the addresses for the nonces ``n`` and ``n + 1``.

        :param account:
            The deployer account and its current pending nonce

        :return:
            Addresses the first and the second deployment will get
        """
        assert isinstance(account, DeployerAccount), f"Expected DeployerAccount, got {type(account)}"
        pair = PredictedAddressPair(
            first=predict_contract_address(account.address, account.nonce),
            second=predict_contract_address(account.address, account.nonce + 1),
        )
        logger.info(
            "Predicted contract addresses for %s at nonce %d: %s, %s",
            account.address,
            account.nonce,
            pair.first,
            pair.second,
        )
        return pair
