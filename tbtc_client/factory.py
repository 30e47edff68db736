"""
Deposit creation and lookup.
"""

from typing import Optional

import structlog

from .bitcoin import BitcoinClient
from .config import REQUIRED_CONTRACTS, TBTCConfig
from .contracts import (
    ChainClient,
    ConstantsContract,
    DepositFactoryContract,
    DepositTokenContract,
    FeeRebateTokenContract,
    SystemContract,
    TokenContract,
    VendingMachineContract,
    transaction_hash,
)
from .deposit import Deposit
from .errors import ProtocolEventMissingError, ValidationError
from .lot_sizes import LotSizeRegistry
from .models import DepositCreation

logger = structlog.get_logger()


class DepositFactory:
    """
    Entry point for opening new deposits and attaching to existing ones.

    Usage:
        factory = await DepositFactory.with_config(config, chain, bitcoin)
        deposit = await factory.with_satoshi_lot_size(100000)
        deposit.auto_submit()
        print(await deposit.bitcoin_address())
    """

    constants: ConstantsContract
    system: SystemContract
    token: TokenContract
    deposit_token: DepositTokenContract
    fee_rebate_token: FeeRebateTokenContract
    deposit_factory: DepositFactoryContract
    vending_machine: VendingMachineContract

    def __init__(self, config: TBTCConfig, chain: ChainClient, bitcoin: BitcoinClient):
        self.config = config
        self.chain = chain
        self.bitcoin = bitcoin
        self.network_id: Optional[int] = None
        self.lot_sizes: Optional[LotSizeRegistry] = None

    @classmethod
    async def with_config(
        cls, config: TBTCConfig, chain: ChainClient, bitcoin: BitcoinClient
    ) -> "DepositFactory":
        """Build a factory with all contracts resolved for the chain's network."""
        factory = cls(config, chain, bitcoin)
        await factory.resolve_contracts()
        return factory

    async def resolve_contracts(self) -> None:
        """
        Bind every required contract at its deployed address.

        Raises:
            ConfigurationError: A contract has no deployment on this network
        """
        self.network_id = await self.chain.get_network_id()
        addresses = {
            name: self.config.deployment_address(name, self.network_id)
            for name in REQUIRED_CONTRACTS
        }

        self.constants = self.chain.contract("TBTCConstants", addresses["TBTCConstants"])
        self.system = self.chain.contract("TBTCSystem", addresses["TBTCSystem"])
        self.token = self.chain.contract("TBTCToken", addresses["TBTCToken"])
        self.deposit_token = self.chain.contract("TBTCDepositToken", addresses["TBTCDepositToken"])
        self.fee_rebate_token = self.chain.contract("FeeRebateToken", addresses["FeeRebateToken"])
        self.deposit_factory = self.chain.contract("DepositFactory", addresses["DepositFactory"])
        self.vending_machine = self.chain.contract("VendingMachine", addresses["VendingMachine"])
        self.lot_sizes = LotSizeRegistry(self.system)

        logger.debug("contracts_resolved", network_id=self.network_id, **addresses)

    async def available_satoshi_lot_sizes(self) -> list[int]:
        return await self.lot_sizes.available()

    async def with_satoshi_lot_size(self, lot_size: int) -> Deposit:
        """
        Open a new deposit of ``lot_size`` satoshis.

        Raises:
            ValidationError: The lot size is not currently allowed
        """
        await self.lot_sizes.validate(lot_size)
        return await Deposit.for_lot_size(self, lot_size)

    async def with_address(self, deposit_address: str) -> Deposit:
        """
        Attach to the existing deposit at ``deposit_address``.

        Raises:
            DepositNotFoundError: No Created event exists for the address
        """
        return await Deposit.for_address(self, deposit_address)

    async def create_new_deposit_contract(self, lot_size: int) -> DepositCreation:
        """Create a deposit contract and return its address and its keep's."""
        creation_cost = int(await self.system.create_new_deposit_fee_estimate())
        account = self.chain.default_account
        balance = int(await self.chain.get_balance(account))

        if creation_cost > balance:
            raise ValidationError(
                f"Insufficient balance {balance} to open deposit "
                f"(required: {creation_cost})."
            )

        receipt = await self.deposit_factory.create_deposit(lot_size, creation_cost)

        created = self.chain.read_event_from_transaction(receipt, self.system, "Created")
        if created is None:
            raise ProtocolEventMissingError("Created", transaction_hash(receipt))

        return DepositCreation(
            deposit_address=created["_depositContractAddress"],
            keep_address=created["_keepAddress"],
        )
