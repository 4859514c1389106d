"""Idempotent deployment of a vault and strategy pair.

The vault constructor takes the strategy address and the strategy constructor takes the vault address.
Neither can be deployed first without knowing the other's future address, so we
predict both addresses from the deployer nonce and deploy the vault at nonce ``n``
and the strategy at nonce ``n + 1``.

:py:meth:`DeploymentReconciler.reconcile` is safe to run repeatedly:

- If the deployment records show a pair matching the desired configuration, it is reused
  and nothing is sent to the chain

- If either record is missing, or the configuration or bytecode has drifted,
  both contracts are redeployed from freshly predicted addresses

Example:

.. code-block:: python

    store = JSONDeploymentRecordStore(Path("deployments").absolute(), "polygon")
    reconciler = DeploymentReconciler(store, Web3ContractDeployer(web3, deployer))

    with NonceLease(web3, deployer.address) as lease:
        result = reconciler.reconcile(vault_spec, strategy_spec, lease)

    print(result.pformat())

.. warning ::

    There is no rollback. If the strategy deployment fails after the vault was deployed,
    :py:class:`PartialDeploymentError` is raised and the next run redeploys both,
    orphaning the first vault.

"""

import logging
import time
import warnings
from dataclasses import asdict, dataclass
from pprint import pformat

from eth_typing import HexAddress

from eth_vault_deploy.address import AddressPredictor
from eth_vault_deploy.artifact import ArtifactSpec, ResolvedArtifact, validate_pair
from eth_vault_deploy.deploy import ContractDeployer, DeployedContract
from eth_vault_deploy.nonce import NonceDriftError, NonceLease, NonceLeaseError
from eth_vault_deploy.records import DeploymentRecord, DeploymentRecordStore, find_differences


logger = logging.getLogger(__name__)


class DriftWarning(UserWarning):
    """Existing deployment does not match the desired configuration or bytecode.

    Not fatal, the pair gets redeployed.
    """


class PartialDeploymentError(Exception):
    """The vault was deployed, but the strategy deployment failed.

    The vault is left orphaned. Run the reconciliation again to deploy a new pair.
    """

    def __init__(self, msg: str, vault_address: HexAddress):
        super().__init__(msg)
        self.vault_address = vault_address


@dataclass(slots=True, frozen=True)
class ReconciliationResult:
    """Outcome of a reconciliation."""

    vault_address: HexAddress

    strategy_address: HexAddress

    #: False if existing deployments were reused
    redeployed: bool

    def pformat(self) -> str:
        """Human readable output for logs and scripts."""
        return pformat(asdict(self))


class DeploymentReconciler:
    """Make sure a vault/strategy pair matching the configuration is deployed.

    - Single threaded, blocks on each chain round trip

    - No retries, chain errors propagate to the caller

    - The caller must hold a :py:class:`eth_vault_deploy.nonce.NonceLease` for the deployer
    """

    def __init__(
        self,
        store: DeploymentRecordStore,
        deployer: ContractDeployer,
        predictor: AddressPredictor | None = None,
    ):
        """
        :param store:
            Deployment records of the target network

        :param deployer:
            Chain submission

        :param predictor:
            Address predictor
        """
        self.store = store
        self.deployer = deployer
        self.predictor = predictor or AddressPredictor()

    def __repr__(self):
        return f"<DeploymentReconciler store:{self.store} deployer:{self.deployer}>"

    def resolve(self, spec: ArtifactSpec, vault: HexAddress, strategy: HexAddress) -> ResolvedArtifact:
        """Fill placeholders and the bytecode the deployer is going to use."""
        resolved = spec.resolve(vault=vault, strategy=strategy)
        if resolved.bytecode is None:
            bytecode = self.deployer.get_bytecode(spec.contract_kind)
            if bytecode is not None:
                resolved = ResolvedArtifact(
                    logical_name=resolved.logical_name,
                    contract_kind=resolved.contract_kind,
                    constructor_args=resolved.constructor_args,
                    bytecode=bytecode,
                )
        return resolved

    def check_existing(
        self,
        vault_spec: ArtifactSpec,
        strategy_spec: ArtifactSpec,
    ) -> ReconciliationResult | None:
        """See if the recorded pair satisfies the desired specs.

        :return:
            Result with ``redeployed=False`` if the pair can be reused, otherwise ``None``
        """
        vault_record = self.store.get(vault_spec.logical_name)
        strategy_record = self.store.get(strategy_spec.logical_name)

        if vault_record is None and strategy_record is None:
            logger.info("No existing deployments for %s and %s", vault_spec.logical_name, strategy_spec.logical_name)
            return None

        if vault_record is None or strategy_record is None:
            found = vault_record or strategy_record
            logger.warning(
                "Only %s is deployed at %s, partial deployment cannot be reused, deploying both again",
                found.logical_name,
                found.address,
            )
            return None

        # Bind the existing addresses into each other's placeholders
        resolved_vault = self.resolve(vault_spec, vault_record.address, strategy_record.address)
        resolved_strategy = self.resolve(strategy_spec, vault_record.address, strategy_record.address)

        differences = find_differences(vault_record, resolved_vault) + find_differences(strategy_record, resolved_strategy)
        if not differences:
            logger.info("Reusing %s at %s and %s at %s", vault_record.logical_name, vault_record.address, strategy_record.logical_name, strategy_record.address)
            return ReconciliationResult(
                vault_address=vault_record.address,
                strategy_address=strategy_record.address,
                redeployed=False,
            )

        msg = f"Config or bytecode for {vault_spec.logical_name} / {strategy_spec.logical_name} do not match deployment: {', '.join(differences)}"
        logger.warning(msg)
        warnings.warn(msg, DriftWarning, stacklevel=3)
        return None

    def reconcile(
        self,
        vault_spec: ArtifactSpec,
        strategy_spec: ArtifactSpec,
        lease: NonceLease,
    ) -> ReconciliationResult:
        """Reuse or redeploy the vault and strategy pair.

        :param vault_spec:
            Desired vault, constructor arguments contain ``STRATEGY_ADDRESS``

        :param strategy_spec:
            Desired strategy, constructor arguments contain ``VAULT_ADDRESS``

        :param lease:
            Held nonce lease of the deployer account

        :raise eth_vault_deploy.artifact.ConfigurationError:
            Specs are incomplete, nothing was sent

        :raise NonceDriftError:
            The deployer nonce moved under us and predicted addresses do not match

        :raise PartialDeploymentError:
            The vault was deployed but the strategy was not

        :return:
            Final addresses
        """
        validate_pair(vault_spec, strategy_spec)
        if not lease.held:
            raise NonceLeaseError(f"Deployer nonce lease must be held while reconciling: {lease}")

        existing = self.check_existing(vault_spec, strategy_spec)
        if existing is not None:
            return existing

        lease.sync_nonce()
        account = lease.account
        assert account.address == self.deployer.address, f"Lease is for {account.address}, deployer is {self.deployer.address}"

        predicted = self.predictor.predict(account)

        resolved_vault = self.resolve(vault_spec, predicted.vault, predicted.strategy)
        resolved_strategy = self.resolve(strategy_spec, predicted.vault, predicted.strategy)

        lease.verify_nonce(account.nonce)
        vault_nonce = lease.allocate_nonce()
        assert vault_nonce == account.nonce
        try:
            vault = self.deployer.deploy(resolved_vault, vault_nonce)
        except Exception:
            # Nothing deployed, the error goes to the caller as is
            lease.reset_nonce()
            raise

        self._check_prediction(resolved_vault, vault, predicted.vault, vault_nonce)

        strategy_nonce = lease.allocate_nonce()
        try:
            strategy = self.deployer.deploy(resolved_strategy, strategy_nonce)
        except Exception as e:
            logger.error(
                "Strategy %s deployment failed, vault %s at %s is orphaned",
                strategy_spec.logical_name,
                vault_spec.logical_name,
                vault.address,
            )
            lease.reset_nonce()
            raise PartialDeploymentError(
                f"Vault {vault_spec.logical_name} deployed at {vault.address} but strategy {strategy_spec.logical_name} deployment failed: {e}",
                vault_address=vault.address,
            ) from e

        self._check_prediction(resolved_strategy, strategy, predicted.strategy, strategy_nonce)

        now = int(time.time())
        self.store.put(self._make_record(resolved_vault, vault, now))
        self.store.put(self._make_record(resolved_strategy, strategy, now))

        logger.info("Deployed %s at %s and %s at %s", vault_spec.logical_name, vault.address, strategy_spec.logical_name, strategy.address)

        return ReconciliationResult(
            vault_address=vault.address,
            strategy_address=strategy.address,
            redeployed=True,
        )

    def _check_prediction(
        self,
        artifact: ResolvedArtifact,
        deployed: DeployedContract,
        predicted: HexAddress,
        nonce: int,
    ):
        # Compared case-sensitively, both sides are checksummed
        if deployed.address != predicted:
            raise NonceDriftError(
                f"{artifact.logical_name} was deployed at {deployed.address}, predicted {predicted} for nonce {nonce}. Its peer reference is wrong.",
                expected_nonce=nonce,
            )

    @staticmethod
    def _make_record(artifact: ResolvedArtifact, deployed: DeployedContract, deployed_at: int) -> DeploymentRecord:
        return DeploymentRecord(
            logical_name=artifact.logical_name,
            address=deployed.address,
            contract_kind=artifact.contract_kind,
            constructor_args=artifact.constructor_args,
            bytecode=artifact.bytecode,
            tx_hash=deployed.tx_hash,
            deployed_at=deployed_at,
        )
