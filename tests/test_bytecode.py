"""Deployed bytecode comparison."""

import pytest
from web3 import Web3

from eth_vault_deploy.abi import ZERO_ADDRESS_STR
from eth_vault_deploy.bytecode import BytecodeMismatch, assert_same_bytecode, fetch_deployed_bytecode, is_same_bytecode
from eth_vault_deploy.deploy import deploy_contract


#: Creation code for a contract whose runtime code is a single STOP opcode
STOP_CONTRACT_BYTECODE = "0x6001600c60003960016000f300"


def test_is_same_bytecode():
    assert is_same_bytecode("0xABCD", "abcd")
    assert is_same_bytecode(b"\xab\xcd", "0xabcd")
    assert not is_same_bytecode("0xabcd", "0xabce")


def test_same_bytecode(web3: Web3, deployer: str):
    vault_1 = deploy_contract(web3, "VaultMock.json", deployer, 1, ZERO_ADDRESS_STR)
    vault_2 = deploy_contract(web3, "VaultMock.json", deployer, 2, deployer)
    assert_same_bytecode(web3, [vault_1.address, vault_2.address])


def test_different_bytecode(web3: Web3, deployer: str):
    vault = deploy_contract(web3, "VaultMock.json", deployer, 1, ZERO_ADDRESS_STR)

    tx_hash = web3.eth.send_transaction({"from": deployer, "data": STOP_CONTRACT_BYTECODE})
    other = web3.eth.wait_for_transaction_receipt(tx_hash)["contractAddress"]
    assert fetch_deployed_bytecode(web3, other) == b"\x00"

    with pytest.raises(BytecodeMismatch) as exc_info:
        assert_same_bytecode(web3, [vault.address, other])

    assert exc_info.value.address == other


def test_no_contract(web3: Web3, deployer: str):
    with pytest.raises(ValueError):
        fetch_deployed_bytecode(web3, deployer)
