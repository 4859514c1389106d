"""Post-deployment strategy settings."""

from unittest.mock import MagicMock

import pytest
from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes

from eth_vault_deploy.nonce import NonceLease
from eth_vault_deploy.settings import CHAIN_CALL_FEES, ContractSettingFailed, apply_strategy_settings, ensure_contract_setting


SENDER = "0x6ac7Ea33F8831eA9dCC53393aAA88B25A785DBF0"


def _mock_strategy(values: dict) -> MagicMock:
    """Strategy contract with view functions returning the given values."""
    functions = {}
    for getter, value in values.items():
        getter_func = MagicMock()
        getter_func.return_value.call.return_value = value
        functions[getter] = getter_func

    for setter in ("setCallFee", "setWithdrawalFee"):
        setter_func = MagicMock()
        setter_func.return_value.transact.return_value = HexBytes("0x" + "11" * 32)
        functions[setter] = setter_func

    strategy = MagicMock()
    strategy.address = "0x343c43A37D37dfF08AE8C4A11544c718AbB4fCF8"
    strategy.functions.__getitem__.side_effect = lambda name: functions[name]
    return strategy


def _mock_web3(chain_id=137, status=1) -> MagicMock:
    web3 = MagicMock()
    web3.eth.chain_id = chain_id
    web3.eth.wait_for_transaction_receipt.return_value = {"status": status}
    return web3


def test_setting_already_correct():
    web3 = _mock_web3()
    strategy = _mock_strategy({"callFee": 11})
    assert ensure_contract_setting(web3, strategy, "callFee", "setCallFee", 11, SENDER) is None
    strategy.functions["setCallFee"].assert_not_called()


def test_setting_changed():
    web3 = _mock_web3()
    strategy = _mock_strategy({"callFee": 111})
    tx_hash = ensure_contract_setting(web3, strategy, "callFee", "setCallFee", 11, SENDER)
    assert tx_hash == HexBytes("0x" + "11" * 32)
    strategy.functions["setCallFee"].assert_called_once_with(11)
    strategy.functions["setCallFee"].return_value.transact.assert_called_once_with({"from": SENDER})


def test_setting_reverted():
    web3 = _mock_web3(status=0)
    strategy = _mock_strategy({"callFee": 111})
    with pytest.raises(ContractSettingFailed):
        ensure_contract_setting(web3, strategy, "callFee", "setCallFee", 11, SENDER)


def test_apply_chain_default_call_fee():
    web3 = _mock_web3(chain_id=56)
    strategy = _mock_strategy({"callFee": 11, "withdrawalFee": 10})
    changes = apply_strategy_settings(web3, strategy, SENDER, withdrawal_fee=10)
    assert list(changes.keys()) == ["setCallFee"]
    strategy.functions["setCallFee"].assert_called_once_with(CHAIN_CALL_FEES[56])
    strategy.functions["setWithdrawalFee"].assert_not_called()


def test_apply_unknown_chain():
    """Chains without a default call fee are left alone."""
    web3 = _mock_web3(chain_id=1)
    strategy = _mock_strategy({"callFee": 0})
    assert apply_strategy_settings(web3, strategy, SENDER) == {}
    strategy.functions["setCallFee"].assert_not_called()


def _mock_local_account() -> MagicMock:
    sender = MagicMock(spec=LocalAccount)
    sender.address = SENDER
    return sender


def test_setting_uses_lease_nonce():
    """Signed setter transactions take their nonce from the held lease."""
    web3 = _mock_web3()
    strategy = _mock_strategy({"callFee": 111})
    lease = MagicMock(spec=NonceLease)
    lease.allocate_nonce.return_value = 7

    ensure_contract_setting(web3, strategy, "callFee", "setCallFee", 11, _mock_local_account(), lease=lease)

    lease.allocate_nonce.assert_called_once_with()
    tx_params = strategy.functions["setCallFee"].return_value.build_transaction.call_args.args[0]
    assert tx_params["nonce"] == 7
    web3.eth.get_transaction_count.assert_not_called()


def test_unlocked_sender_keeps_lease_counter():
    web3 = _mock_web3(chain_id=56)
    strategy = _mock_strategy({"callFee": 11, "withdrawalFee": 0})
    lease = MagicMock(spec=NonceLease)

    changes = apply_strategy_settings(web3, strategy, SENDER, withdrawal_fee=10, lease=lease)

    assert list(changes.keys()) == ["setCallFee", "setWithdrawalFee"]
    assert lease.allocate_nonce.call_count == 2


def test_failed_broadcast_resets_lease():
    web3 = _mock_web3()
    web3.eth.send_raw_transaction.side_effect = ValueError("nonce too low")
    strategy = _mock_strategy({"callFee": 111})
    lease = MagicMock(spec=NonceLease)
    lease.allocate_nonce.return_value = 3

    with pytest.raises(ValueError):
        ensure_contract_setting(web3, strategy, "callFee", "setCallFee", 11, _mock_local_account(), lease=lease)

    lease.reset_nonce.assert_called_once_with()
    web3.eth.wait_for_transaction_receipt.assert_not_called()
