"""Bring deployed strategy settings to the desired values.

After :py:class:`eth_vault_deploy.reconcile.DeploymentReconciler` has deployed or reused a pair,
some strategy parameters are not constructor arguments and must be set with a transaction.
Each setting is read first and written only if it differs, so running this again is a no-op.
"""

import logging
from typing import Any, Optional

from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3
from web3.contract import Contract

from eth_vault_deploy.nonce import NonceLease
from eth_vault_deploy.tx import get_tx_broadcast_data


logger = logging.getLogger(__name__)


#: Harvest call fee per chain id
CHAIN_CALL_FEES: dict[int, int] = {
    # Avalanche
    43114: 11,
    # BNB Smart Chain
    56: 111,
    # Fantom
    250: 11,
    # Heco
    128: 11,
    # Polygon
    137: 11,
}


class ContractSettingFailed(Exception):
    """Setter transaction reverted."""

    def __init__(self, tx_hash: HexBytes, msg: str):
        super().__init__(msg)
        self.tx_hash = tx_hash


def ensure_contract_setting(
    web3: Web3,
    contract: Contract,
    getter: str,
    setter: str,
    desired: Any,
    sender: HexAddress | LocalAccount,
    lease: Optional[NonceLease] = None,
) -> Optional[HexBytes]:
    """Set a contract parameter if it is not already set.

    Example:

    .. code-block:: python

        tx_hash = ensure_contract_setting(web3, strategy, "callFee", "setCallFee", 11, deployer)

    :param getter:
        View function name returning the current value

    :param setter:
        Function name taking the new value

    :param sender:
        Owner of the contract.
        LocalAccount signs locally, an address must be unlocked on the node.

    :param lease:
        Held nonce lease of the sender.

        If given, the transaction nonce comes from the lease counter,
        otherwise from the pending transaction count.

    :raise ContractSettingFailed:
        If the transaction reverted

    :return:
        Transaction hash, or ``None`` if the value was already correct
    """
    current = contract.functions[getter]().call()
    if current == desired:
        logger.info("%s.%s already %s", contract.address, getter, desired)
        return None

    logger.info("Setting %s.%s: %s -> %s", contract.address, getter, current, desired)
    bound_func = contract.functions[setter](desired)

    try:
        if isinstance(sender, LocalAccount):
            if lease is not None:
                nonce = lease.allocate_nonce()
            else:
                nonce = web3.eth.get_transaction_count(sender.address, "pending")
            tx_params = {
                "from": sender.address,
                "nonce": nonce,
                "chainId": web3.eth.chain_id,
            }
            tx_data = bound_func.build_transaction(tx_params)
            signed_tx = sender.sign_transaction(tx_data)
            tx_hash = web3.eth.send_raw_transaction(get_tx_broadcast_data(signed_tx))
        else:
            # The node picks the nonce, keep the lease counter in step
            if lease is not None:
                lease.allocate_nonce()
            tx_hash = bound_func.transact({"from": sender})
    except Exception:
        if lease is not None:
            lease.reset_nonce()
        raise

    receipt = web3.eth.wait_for_transaction_receipt(tx_hash)
    if receipt["status"] != 1:
        raise ContractSettingFailed(tx_hash, f"{setter}({desired}) failed on {contract.address}, tx hash is {Web3.to_hex(tx_hash)}")

    return tx_hash


def apply_strategy_settings(
    web3: Web3,
    strategy: Contract,
    sender: HexAddress | LocalAccount,
    call_fee: Optional[int] = None,
    withdrawal_fee: Optional[int] = None,
    lease: Optional[NonceLease] = None,
) -> dict[str, HexBytes]:
    """Set call fee and withdrawal fee on a strategy.

    :param call_fee:
        If not given, use the chain default from :py:data:`CHAIN_CALL_FEES`.
        Chains without a default are left alone.

    :param withdrawal_fee:
        If not given, the withdrawal fee is not touched.

    :param lease:
        Held nonce lease of the sender, see :py:func:`ensure_contract_setting`

    :return:
        Setter name -> transaction hash, for settings that were changed
    """
    if call_fee is None:
        call_fee = CHAIN_CALL_FEES.get(web3.eth.chain_id)

    changes = {}

    if call_fee is not None:
        tx_hash = ensure_contract_setting(web3, strategy, "callFee", "setCallFee", call_fee, sender, lease=lease)
        if tx_hash is not None:
            changes["setCallFee"] = tx_hash

    if withdrawal_fee is not None:
        tx_hash = ensure_contract_setting(web3, strategy, "withdrawalFee", "setWithdrawalFee", withdrawal_fee, sender, lease=lease)
        if tx_hash is not None:
            changes["setWithdrawalFee"] = tx_hash

    return changes
