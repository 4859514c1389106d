"""Transaction helpers."""

from eth_account.datastructures import SignedTransaction
from hexbytes import HexBytes


def get_tx_broadcast_data(signed_tx: SignedTransaction) -> HexBytes:
    """Get raw transaction bytes of a signed transaction.

    Example:

    .. code-block:: python

        signed_tx = deployer.sign_transaction(tx_data)
        tx_hash = web3.eth.send_raw_transaction(get_tx_broadcast_data(signed_tx))

    :param signed_tx:
        Signed transaction object

    :return:
        Raw transaction bytes ready for broadcasting to the network
    """
    return signed_tx.raw_transaction
