"""ABI loading from the precompiled bundle.

Provides functions to load compiled contract artifacts and construct :py:class:`web3.contract.Contract` types.
The results are cached for the speedup.

Artifacts are solc or Forge output JSON files with ``abi`` and ``bytecode`` keys.
Bundled artifacts live in ``eth_vault_deploy/abi/``.
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Optional, Type

from web3 import Web3
from web3.contract.contract import Contract

# How big are our ABI and contract caches
_CACHE_SIZE = 512


#: Ethereum 0x0000000000000000000000000000000000000000 address as a string.
ZERO_ADDRESS_STR = "0x0000000000000000000000000000000000000000"


def get_abi_path(fname: str | Path) -> Path:
    """Resolve a bundled artifact name or an absolute path."""
    path = Path(fname)
    if path.is_absolute():
        return path
    here = Path(__file__).resolve().parent
    return here / "abi" / path


@lru_cache(maxsize=_CACHE_SIZE)
def get_abi_by_filename(fname: str | Path) -> dict:
    """Reads a embedded ABI file and returns it.

    Example::

        abi = get_abi_by_filename("VaultMock.json")

    You are most likely interested in the keys `abi` and `bytecode` of the JSON file.

    Any results are cached.

    :param fname:
        Bundled JSON file name, or an absolute path to a compiler artifact.

    :return:
        Full contract interface, including `bytecode`.
    """
    abi_path = get_abi_path(fname)
    with open(abi_path, "rt", encoding="utf-8") as f:
        abi = json.load(f)
    return abi


def get_bytecode_by_filename(fname: str | Path) -> str | None:
    """Get the creation bytecode of a compiled artifact.

    :return:
        Hex string or ``None`` for ABI-only files
    """
    contract_interface = get_abi_by_filename(fname)
    if type(contract_interface) == list:
        # Etherscan copy-pasted ABI
        return None

    bytecode = contract_interface.get("bytecode")
    if type(bytecode) == dict:
        # Sol 0.8 / Forge
        # Contains keys object, sourceMap, linkReferences
        bytecode = bytecode["object"]
    return bytecode


@lru_cache(maxsize=_CACHE_SIZE)
def get_contract(
    web3: Web3,
    fname: str | Path,
    bytecode: Optional[str] = None,
) -> Type[Contract]:
    """Get Contract proxy class from ABI JSON file.

    Any results are cached. Web3 connection is part of the cache key.

    Example:

    .. code-block:: python

        VaultMock = get_contract(web3, "VaultMock.json")

    :param web3:
        Web3 instance

    :param fname:
        Solidity compiler artifact.

    :param bytecode:
        Override bytecode payload for the contract

    :return:
        Contract proxy class
    """

    contract_interface = get_abi_by_filename(fname)

    if type(contract_interface) == list:
        abi = contract_interface
    else:
        abi = contract_interface["abi"]
        if bytecode is None:
            bytecode = get_bytecode_by_filename(fname)

    Contract = web3.eth.contract(abi=abi, bytecode=bytecode)
    return Contract
