"""eth_vault_deploy package root.

Deploy vault and strategy smart contract pairs that reference each other's addresses.

- :py:mod:`eth_vault_deploy.address` predicts addresses of not yet deployed contracts

- :py:mod:`eth_vault_deploy.reconcile` decides whether an existing pair can be reused or must be redeployed

"""

import sys


#: Minimum required Python version to run this package
MIN_PYTHON_VERSION = (3, 10)


def _check_python_version():
    """Try early abort if the Python version is too old."""

    # Use Python tuple comparison for version numbers
    # https://stackoverflow.com/a/1093331/315168
    if sys.version_info < MIN_PYTHON_VERSION:
        raise RuntimeError(f"eth-vault-deploy needs Python {MIN_PYTHON_VERSION[0]}.{MIN_PYTHON_VERSION[1]} or later")


_check_python_version()
