"""Exclusive nonce management for a deployer account.

Address prediction in :py:mod:`eth_vault_deploy.address` is only correct
if nothing else consumes the deployer nonces between the prediction and the deployments.
:py:class:`NonceLease` makes this an explicit resource the caller must hold.

Example:

.. code-block:: python

    with NonceLease(web3, deployer.address, lock_file=Path("/tmp/deployer.lock")) as lease:
        result = reconciler.reconcile(vault_spec, strategy_spec, lease)

.. note ::

    The lease cannot stop transactions signed outside this process with the same private key,
    e.g. a manual transfer from a browser wallet. Such transactions are detected
    afterwards with :py:meth:`NonceLease.verify_nonce` and raise :py:class:`NonceDriftError`.

"""

import logging
import threading
from pathlib import Path
from typing import Optional

from eth_typing import HexAddress
from filelock import FileLock
from web3 import Web3

from eth_vault_deploy.address import DeployerAccount


logger = logging.getLogger(__name__)


#: Per-address in-process locks.
#:
#: Checksummed address -> lock
_address_locks: dict[str, threading.Lock] = {}

_address_locks_guard = threading.Lock()

#: Addresses with an active lease in this process
_held_by_thread: dict[str, int] = {}


class NonceLeaseError(Exception):
    """The nonce lease was used incorrectly."""


class NonceDriftError(Exception):
    """The account nonce moved while we relied on it.

    Some transaction consumed a nonce after we predicted contract addresses from it.
    The predicted addresses are no longer valid and any contract deployed with them
    points to a wrong peer address.
    """

    def __init__(self, msg: str, expected_nonce: int | None = None, actual_nonce: int | None = None):
        super().__init__(msg)
        self.expected_nonce = expected_nonce
        self.actual_nonce = actual_nonce


def _get_address_lock(address: str) -> threading.Lock:
    with _address_locks_guard:
        if address not in _address_locks:
            _address_locks[address] = threading.Lock()
        return _address_locks[address]


class NonceLease:
    """Hold the right to send transactions from an account.

    - Single writer: only one lease per address can be active in a process,
      and with ``lock_file`` across processes on the same host

    - Maintains its own nonce counter like a hot wallet would,
      see :py:meth:`allocate_nonce`

    - Not re-entrant. Opening a second lease for the same address in the same thread
      raises :py:class:`NonceLeaseError` instead of deadlocking.
    """

    def __init__(
        self,
        web3: Web3,
        address: HexAddress | str,
        lock_file: Optional[Path] = None,
        timeout: float = 60,
    ):
        """
        :param web3:
            Web3 connection used to read the pending nonce

        :param address:
            Deployer address

        :param lock_file:
            Optional absolute path for an interprocess lock file

        :param timeout:
            Seconds to wait for the lock
        """
        self.web3 = web3
        self.address = Web3.to_checksum_address(address)
        self.lock_file = lock_file
        self.timeout = timeout
        self.current_nonce: Optional[int] = None
        self._held = False
        self._file_lock: Optional[FileLock] = None

    def __repr__(self):
        return f"<NonceLease {self.address} nonce:{self.current_nonce} held:{self._held}>"

    def __enter__(self) -> "NonceLease":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self):
        """Take the lease and sync the nonce from the chain.

        :raise NonceLeaseError:
            If this thread already holds a lease for the same address

        :raise filelock.Timeout:
            If another process holds the lock file

        Any error reading the nonce releases the lease before it is raised.
        """
        thread_id = threading.get_ident()
        if _held_by_thread.get(self.address) == thread_id:
            raise NonceLeaseError(f"Thread {thread_id} already holds a nonce lease for {self.address}")

        lock = _get_address_lock(self.address)
        if not lock.acquire(timeout=self.timeout):
            raise NonceLeaseError(f"Could not acquire nonce lease for {self.address} in {self.timeout} seconds")

        try:
            if self.lock_file is not None:
                assert isinstance(self.lock_file, Path), f"lock_file must be Path, got {type(self.lock_file)}"
                assert self.lock_file.is_absolute(), f"Did not get an absolute path: {self.lock_file}"
                self.lock_file.parent.mkdir(parents=True, exist_ok=True)
                self._file_lock = FileLock(self.lock_file, timeout=self.timeout)
                if self._file_lock.is_locked:
                    logger.info("Deployer %s lock file %s held by another process, waiting %f seconds", self.address, self.lock_file, self.timeout)
                self._file_lock.acquire()
        except Exception:
            lock.release()
            raise

        _held_by_thread[self.address] = thread_id
        self._held = True
        self.current_nonce = None
        try:
            self.sync_nonce()
        except Exception:
            # Not entered, __exit__ will not run
            self.release()
            raise
        logger.info("Acquired nonce lease for %s at nonce %d", self.address, self.current_nonce)

    def release(self):
        """Give up the lease."""
        if not self._held:
            return

        if self._file_lock is not None:
            self._file_lock.release()
            self._file_lock = None

        del _held_by_thread[self.address]
        _get_address_lock(self.address).release()
        self._held = False
        logger.info("Released nonce lease for %s at nonce %s", self.address, self.current_nonce)

    def _check_held(self):
        if not self._held:
            raise NonceLeaseError(f"Nonce lease for {self.address} is not held, use it as a context manager")

    def fetch_onchain_nonce(self) -> int:
        """Read the nonce including pending transactions."""
        return self.web3.eth.get_transaction_count(self.address, "pending")

    def sync_nonce(self):
        """Initialise the current nonce from the on-chain data."""
        self._check_held()
        new_nonce = self.fetch_onchain_nonce()
        if self.current_nonce is not None and new_nonce < self.current_nonce:
            # Node has not seen our last broadcast yet
            logger.warning(
                "Nonce sync failed, read onchain nonce %d that is older than our current nonce %d for %s",
                new_nonce,
                self.current_nonce,
                self.address,
            )
            return
        self.current_nonce = new_nonce

    def reset_nonce(self):
        """Forget the local counter and read the nonce again.

        After a failed transaction we do not know if the allocated nonce was consumed.
        """
        self._check_held()
        self.current_nonce = None
        self.sync_nonce()

    @property
    def account(self) -> DeployerAccount:
        """The deployer and the nonce the next transaction will use."""
        self._check_held()
        assert self.current_nonce is not None, f"Nonce is not yet synced from the blockchain: {self}"
        return DeployerAccount(self.address, self.current_nonce)

    def allocate_nonce(self) -> int:
        """Get the next free nonce and increase the counter."""
        self._check_held()
        assert self.current_nonce is not None, f"Nonce is not yet synced from the blockchain: {self}"
        nonce = self.current_nonce
        self.current_nonce += 1
        return nonce

    def verify_nonce(self, expected: int):
        """Check nobody else has used the account since we last looked.

        :param expected:
            The nonce the on-chain pending transaction count should be

        :raise NonceDriftError:
            The account has sent transactions we did not account for
        """
        self._check_held()
        actual = self.fetch_onchain_nonce()
        if actual != expected:
            raise NonceDriftError(
                f"Deployer {self.address} nonce is {actual}, expected {expected}. Another transaction was sent from this account while deploying.",
                expected_nonce=expected,
                actual_nonce=actual,
            )
