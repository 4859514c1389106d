"""Desired state of deployable contracts.

An :py:class:`ArtifactSpec` tells what contract to deploy and with which constructor arguments.
Because the vault and the strategy need each other's address, their argument lists
contain :py:data:`VAULT_ADDRESS` and :py:data:`STRATEGY_ADDRESS` placeholders
that are filled in with :py:meth:`ArtifactSpec.resolve` just before the deployment.

Example:

.. code-block:: python

    vault_spec = ArtifactSpec(
        logical_name="quick-usdc-eth-vault",
        contract_kind="BeefyVaultV6",
        constructor_args=[STRATEGY_ADDRESS, "Moo Quick USDC-ETH", "mooQuickUSDC-ETH", 21600],
    )

    strategy_spec = ArtifactSpec(
        logical_name="quick-usdc-eth-strat",
        contract_kind="StrategyCommonRewardPoolLP",
        constructor_args=[want, reward_pool, VAULT_ADDRESS, router, keeper, strategist, fee_recipient, [QUICK, WMATIC]],
    )
"""

from dataclasses import dataclass, field
from typing import Any

from eth_typing import HexAddress


class ConfigurationError(Exception):
    """Artifact specification is incomplete.

    Raised before anything is sent to the chain.
    """


class Placeholder:
    """Stands for a contract address not known when the configuration is written."""

    def __init__(self, role: str):
        self.role = role

    def __repr__(self):
        return f"<{self.role} address>"

    def __reduce__(self):
        # Keep singletons singletons across copy and pickle
        return _get_placeholder, (self.role,)


#: Replaced with the vault address
VAULT_ADDRESS = Placeholder("vault")

#: Replaced with the strategy address
STRATEGY_ADDRESS = Placeholder("strategy")


def _get_placeholder(role: str) -> Placeholder:
    return {"vault": VAULT_ADDRESS, "strategy": STRATEGY_ADDRESS}[role]


def _substitute(value: Any, vault: HexAddress, strategy: HexAddress) -> Any:
    if value is VAULT_ADDRESS:
        return vault
    if value is STRATEGY_ADDRESS:
        return strategy
    if isinstance(value, (list, tuple)):
        # Tuples become lists so they compare equal to JSON stored records
        return [_substitute(v, vault, strategy) for v in value]
    if isinstance(value, dict):
        return {k: _substitute(v, vault, strategy) for k, v in value.items()}
    return value


def _contains(value: Any, placeholder: Placeholder) -> bool:
    if value is placeholder:
        return True
    if isinstance(value, (list, tuple)):
        return any(_contains(v, placeholder) for v in value)
    if isinstance(value, dict):
        return any(_contains(v, placeholder) for v in value.values())
    return False


@dataclass(slots=True, frozen=True)
class ResolvedArtifact:
    """Artifact with all placeholders replaced by concrete addresses."""

    logical_name: str
    contract_kind: str
    constructor_args: list
    bytecode: str | None = None


@dataclass(slots=True, frozen=True)
class ArtifactSpec:
    """What we want to be deployed under a logical name."""

    #: Idempotency key in the deployment record store, e.g. ``quickswap-usdc-eth-vault``
    logical_name: str

    #: Contract name, resolved to a compiled artifact by the deployer
    contract_kind: str

    #: Constructor arguments, in order, may contain placeholders
    constructor_args: list = field(default_factory=list)

    #: Creation bytecode, if known.
    #:
    #: When set, overrides the bytecode of the compiled artifact
    #: and is used for drift detection.
    bytecode: str | None = None

    def validate(self):
        """Check all required fields are present.

        :raise ConfigurationError:
            If a field is missing
        """
        if not self.logical_name or not isinstance(self.logical_name, str):
            raise ConfigurationError(f"logical_name missing: {self}")

        if not self.contract_kind or not isinstance(self.contract_kind, str):
            raise ConfigurationError(f"contract_kind missing for {self.logical_name}")

        if self.constructor_args is None:
            raise ConfigurationError(f"constructor_args missing for {self.logical_name}")

        if not isinstance(self.constructor_args, (list, tuple)):
            raise ConfigurationError(f"constructor_args must be a list for {self.logical_name}, got {type(self.constructor_args)}")

    def references(self, placeholder: Placeholder) -> bool:
        """Does the argument list contain the placeholder."""
        return _contains(self.constructor_args, placeholder)

    def resolve(self, vault: HexAddress, strategy: HexAddress) -> ResolvedArtifact:
        """Fill in placeholders.

        :param vault:
            The vault address, existing or predicted

        :param strategy:
            The strategy address, existing or predicted
        """
        return ResolvedArtifact(
            logical_name=self.logical_name,
            contract_kind=self.contract_kind,
            constructor_args=_substitute(self.constructor_args, vault, strategy),
            bytecode=self.bytecode,
        )


def validate_pair(vault_spec: ArtifactSpec, strategy_spec: ArtifactSpec):
    """Check a vault and a strategy spec can be deployed together.

    :raise ConfigurationError:
        If either spec is incomplete or they do not reference each other
    """
    for spec in (vault_spec, strategy_spec):
        if not isinstance(spec, ArtifactSpec):
            raise ConfigurationError(f"Expected ArtifactSpec, got {type(spec)}")
        spec.validate()

    if vault_spec.logical_name == strategy_spec.logical_name:
        raise ConfigurationError(f"Vault and strategy share the logical name {vault_spec.logical_name}")

    if not vault_spec.references(STRATEGY_ADDRESS):
        raise ConfigurationError(f"Vault {vault_spec.logical_name} constructor arguments do not contain STRATEGY_ADDRESS")

    if not strategy_spec.references(VAULT_ADDRESS):
        raise ConfigurationError(f"Strategy {strategy_spec.logical_name} constructor arguments do not contain VAULT_ADDRESS")
