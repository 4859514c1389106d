"""Compare deployed contract bytecode.

Check that a set of deployed contracts run the same code, e.g. that all vaults
of a platform were deployed from the same compiler output.

.. code-block:: python

    assert_same_bytecode(web3, [vault_1, vault_2, vault_3])

"""

import logging
from typing import Iterable

from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3

from eth_vault_deploy.records import normalise_bytecode


logger = logging.getLogger(__name__)


class BytecodeMismatch(Exception):
    """Deployed contracts do not share the same runtime code."""

    def __init__(self, msg: str, address: HexAddress):
        super().__init__(msg)
        self.address = address


def is_same_bytecode(a: str | bytes | None, b: str | bytes | None) -> bool:
    """Compare two bytecodes given as hex strings or bytes.

    Hex case and ``0x`` prefix are ignored.
    """
    return normalise_bytecode(a) == normalise_bytecode(b)


def fetch_deployed_bytecode(web3: Web3, address: HexAddress | str) -> HexBytes:
    """Get the runtime code of a contract.

    :raise ValueError:
        If there is no contract at the address
    """
    code = web3.eth.get_code(Web3.to_checksum_address(address))
    if len(code) == 0:
        raise ValueError(f"No contract deployed at {address}")
    return HexBytes(code)


def assert_same_bytecode(web3: Web3, addresses: Iterable[HexAddress | str]):
    """Check all contracts have the runtime code of the first contract.

    :raise BytecodeMismatch:
        For the first contract with different code
    """
    addresses = list(addresses)
    assert len(addresses) > 0, "No addresses given"

    reference = fetch_deployed_bytecode(web3, addresses[0])
    for address in addresses[1:]:
        code = fetch_deployed_bytecode(web3, address)
        if not is_same_bytecode(reference, code):
            raise BytecodeMismatch(f"Bytecode for contract {address} is different from {addresses[0]}", address)

    logger.info("All %d contracts have the same bytecode", len(addresses))
