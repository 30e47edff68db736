"""
A single tBTC deposit: lifecycle watchers, minting and redemption.

The deposit contract owns the state; this class only waits for and reacts
to its transitions.
"""

import asyncio
from typing import TYPE_CHECKING, Any, Coroutine, Optional

import structlog

from . import address as btc_address
from .auto_submit import AutoSubmitPipeline
from .contracts import DepositContract, EventArgs, KeepContract, transaction_hash
from .errors import (
    DepositNotFoundError,
    OwnershipError,
    ProofError,
    ProtocolEventMissingError,
    StateError,
    ValidationError,
)
from .models import DepositState, FoundTransaction, FundingProof, PublicKeyPoint, RedemptionDetails
from .proof_builder import ProofBuilder
from .redemption import (
    Redemption,
    RedemptionCalculator,
    length_prefixed_script,
    output_value_bytes,
    redemption_details_from_event,
)

if TYPE_CHECKING:
    from .factory import DepositFactory

logger = structlog.get_logger()

# TBTC base units per whole token
TBTC_UNIT = 10**18


class Deposit:
    """
    Handle on one deposit contract and its backing keep.

    Two watchers start at construction and resolve at most once:
    the signer public key point and the transition to ACTIVE. The Bitcoin
    funding address is derived from the public key point the first time it
    is requested. Construct through ``for_lot_size`` or ``for_address``
    (or the factory), from inside a running event loop.
    """

    def __init__(self, factory: "DepositFactory", contract: DepositContract, keep: KeepContract):
        self.factory = factory
        self.chain = factory.chain
        self.bitcoin = factory.bitcoin
        self.contract = contract
        self.keep = keep
        self.address: str = contract.address

        self.proof_builder = ProofBuilder(self.bitcoin)
        self.redemption_calculator = RedemptionCalculator(contract)

        self._public_key_point = self._watch(self.find_or_wait_for_public_key_point(), "public-key")
        self._active = self._watch(self.wait_for_active_state(), "active")
        self._bitcoin_address: Optional[asyncio.Task[str]] = None
        self._auto_submit: Optional[AutoSubmitPipeline] = None

    @classmethod
    async def for_lot_size(cls, factory: "DepositFactory", lot_size: int) -> "Deposit":
        """Open a new deposit. The lot size must already be validated."""
        logger.info("creating_deposit", lot_size=lot_size)
        creation = await factory.create_new_deposit_contract(lot_size)

        logger.info(
            "deposit_created",
            deposit=creation.deposit_address,
            keep=creation.keep_address,
        )
        return cls(
            factory,
            factory.chain.contract("Deposit", creation.deposit_address),
            factory.chain.contract("BondedECDSAKeep", creation.keep_address),
        )

    @classmethod
    async def for_address(cls, factory: "DepositFactory", address: str) -> "Deposit":
        """Attach to an existing deposit, found through its Created event."""
        logger.debug("looking_up_deposit", deposit=address)
        created = await factory.chain.get_existing_event(
            factory.system, "Created", {"_depositContractAddress": address}
        )
        if created is None:
            raise DepositNotFoundError(address)

        keep_address = created["_keepAddress"]
        logger.debug("found_deposit_keep", deposit=address, keep=keep_address)
        return cls(
            factory,
            factory.chain.contract("Deposit", address),
            factory.chain.contract("BondedECDSAKeep", keep_address),
        )

    # ------------------------------------------------------------------
    # Watchers

    def _watch(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=f"deposit-{self.address}-{name}")
        task.add_done_callback(self._log_watcher_result)
        return task

    def _log_watcher_result(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "deposit_watcher_failed",
                deposit=self.address,
                watcher=task.get_name(),
                error=str(error),
            )

    async def public_key_point(self) -> PublicKeyPoint:
        """The signing group's public key point, once registered."""
        return await asyncio.shield(self._public_key_point)

    async def bitcoin_address(self) -> str:
        """The P2WPKH funding address, derived once from the public key point."""
        if self._bitcoin_address is None:
            self._bitcoin_address = self._watch(self._derive_bitcoin_address(), "bitcoin-address")
        return await asyncio.shield(self._bitcoin_address)

    async def wait_until_active(self) -> bool:
        """Resolve once the deposit has been funded and is ACTIVE."""
        return await asyncio.shield(self._active)

    async def _derive_bitcoin_address(self) -> str:
        point = await self.public_key_point()
        address = self.bitcoin.public_key_point_to_p2wpkh_address(
            point.x, point.y, self.factory.config.bitcoin_network
        )
        logger.info("deposit_bitcoin_address", deposit=self.address, address=address)
        return address

    async def find_or_wait_for_public_key_point(self) -> PublicKeyPoint:
        """
        Read the registered signer public key, registering it if needed.

        The keep does not push its key to the deposit; once the keep has
        published it, the deposit must be asked to retrieve it.
        """
        # Read before checking existing events so nothing mined in between is missed
        start_block = await self.chain.get_block_number()
        registered = await self.chain.get_existing_event(
            self.factory.system, "RegisteredPubkey", {"_depositContractAddress": self.address}
        )
        if registered is not None:
            logger.debug("found_registered_pubkey", deposit=self.address)
            return _public_key_point_from_event(registered)

        if await self.chain.get_existing_event(self.keep, "PublicKeyPublished") is None:
            logger.info("waiting_for_keep_pubkey", deposit=self.address, keep=self.keep.address)
            await self.chain.get_event(self.keep, "PublicKeyPublished", from_block=start_block)

        logger.info("retrieving_signer_pubkey", deposit=self.address)
        receipt = await self.contract.retrieve_signer_pubkey()

        registered = self.chain.read_event_from_transaction(
            receipt, self.factory.system, "RegisteredPubkey"
        )
        if registered is None:
            raise ProtocolEventMissingError("RegisteredPubkey", transaction_hash(receipt))
        return _public_key_point_from_event(registered)

    async def wait_for_active_state(self) -> bool:
        # Only the funding edge is watched. A deposit that returns to ACTIVE
        # from a courtesy call is not observed here.
        start_block = await self.chain.get_block_number()
        if await self.contract.in_active():
            return True

        logger.info("monitoring_for_active", deposit=self.address)
        await self.chain.get_event(
            self.factory.system,
            "Funded",
            {"_depositContractAddress": self.address},
            from_block=start_block,
        )
        logger.info("deposit_active", deposit=self.address)
        return True

    # ------------------------------------------------------------------
    # Accessors

    async def get_satoshi_lot_size(self) -> int:
        return int(await self.contract.lot_size_satoshis())

    async def get_current_state(self) -> DepositState:
        return DepositState(int(await self.contract.get_current_state()))

    async def get_owner(self) -> str:
        """Holder of the deposit's TDT."""
        return await self.factory.deposit_token.owner_of(self.address)

    async def get_fee_rebate_token_holder(self) -> str:
        return await self.factory.fee_rebate_token.owner_of(self.address)

    async def in_vending_machine(self) -> bool:
        return self._is_vending_machine(await self.get_owner())

    def _is_vending_machine(self, owner: str) -> bool:
        return owner.lower() == self.factory.vending_machine.address.lower()

    async def get_required_confirmations(self) -> int:
        """Confirmations a funding proof must carry."""
        return int(await self.factory.system.get_tx_proof_difficulty_factor())

    # ------------------------------------------------------------------
    # Qualification and minting

    def auto_submit(self) -> AutoSubmitPipeline:
        """
        Start automatic qualification of this deposit.

        Calling again returns the pipeline started by the first call.
        """
        if self._auto_submit is None:
            self._auto_submit = AutoSubmitPipeline(self).start()
        return self._auto_submit

    async def construct_funding_proof(
        self, transaction: FoundTransaction, confirmations: int
    ) -> FundingProof:
        return await self.proof_builder.construct_funding_proof(transaction, confirmations)

    async def mint_tbtc(self) -> int:
        """
        Trade the deposit's TDT to the vending machine for TBTC.

        Returns:
            Minted amount in TBTC base units
        """
        if not await self.contract.in_active():
            raise StateError("Can't mint TBTC with a deposit that isn't in ACTIVE state.")

        vending_machine = self.factory.vending_machine
        logger.info("approving_tdt_transfer", deposit=self.address)
        await self.factory.deposit_token.approve(vending_machine.address, self.address)

        logger.info("minting_tbtc", deposit=self.address)
        receipt = await vending_machine.tdt_to_tbtc(self.address)
        return self._minted_amount(receipt)

    async def qualify_and_mint_tbtc(self) -> int:
        """
        Prove funding and mint TBTC through the vending machine in one step.

        The funding transaction is looked up directly, not through the
        auto-submit pipeline, and must already be deep enough.

        Returns:
            Minted amount in whole TBTC
        """
        address = await self.bitcoin_address()
        expected_value = await self.get_satoshi_lot_size()

        transaction = await self.bitcoin.find_transaction(address, expected_value)
        if transaction is None:
            raise ProofError(f"Funding transaction not found for deposit {self.address}.")

        required = await self.get_required_confirmations()
        if not await self.bitcoin.check_for_confirmations(transaction, required):
            raise ProofError(
                f"Funding transaction did not have sufficient confirmations; "
                f"expected {required}."
            )

        proof = await self.construct_funding_proof(transaction, required)

        vending_machine = self.factory.vending_machine
        await self.factory.deposit_token.approve(vending_machine.address, self.address)

        logger.info(
            "qualifying_and_minting",
            deposit=self.address,
            txid=transaction.transaction_id,
            confirmations=required,
        )
        receipt = await vending_machine.unqualified_deposit_to_tbtc(self.address, *proof.as_args())
        return self._minted_amount(receipt) // TBTC_UNIT

    def _minted_amount(self, receipt: Any) -> int:
        transfer = self.chain.read_event_from_transaction(receipt, self.factory.token, "Transfer")
        if transfer is None:
            raise ProtocolEventMissingError("Transfer", transaction_hash(receipt))

        logger.info("tbtc_minted", deposit=self.address, value=int(transfer["value"]))
        return int(transfer["value"])

    # ------------------------------------------------------------------
    # Redemption

    async def get_redemption_cost(self) -> int:
        """TBTC, in base units, the default account needs to redeem this deposit."""
        return await self.redemption_calculator.cost(
            self.chain.default_account, await self.in_vending_machine()
        )

    async def get_latest_redemption_details(self) -> Optional[RedemptionDetails]:
        """
        Details of the latest redemption request, or None.

        An ACTIVE deposit has no redemption in progress. Fee bumps emit new
        events, so the most recent one wins.
        """
        if await self.contract.in_active():
            return None

        requested = await self.chain.get_existing_event(
            self.factory.system, "RedemptionRequested", {"_depositContractAddress": self.address}
        )
        if requested is None:
            return None
        return redemption_details_from_event(requested)

    async def get_current_redemption(self) -> Optional[Redemption]:
        details = await self.get_latest_redemption_details()
        if details is None:
            return None
        return Redemption(self, details)

    async def request_redemption(self, redeemer_address: str) -> RedemptionDetails:
        """
        Request redemption of the deposit's BTC to ``redeemer_address``.

        Only the deposit owner may redeem, unless the vending machine holds
        the deposit, in which case anyone with enough TBTC may.

        Raises:
            OwnershipError: Caller neither owns the deposit nor redeems
                through the vending machine
            ValidationError: Invalid redeemer address, insufficient TBTC
                balance, or a fee that consumes the whole UTXO
            ProtocolEventMissingError: No RedemptionRequested event emitted
        """
        account = self.chain.default_account
        owner = await self.get_owner()
        in_vending_machine = self._is_vending_machine(owner)

        if not in_vending_machine and owner.lower() != account.lower():
            raise OwnershipError(
                f"Redemption is currently only supported for deposits owned by "
                f"this account ({account}) or the tBTC Vending Machine "
                f"({self.factory.vending_machine.address}). This deposit is "
                f"owned by {owner}."
            )

        raw_script = self.bitcoin.output_script_from_address(redeemer_address)
        if raw_script is None:
            raise ValidationError(f"{redeemer_address} is not a valid Bitcoin address.")
        network = self.factory.config.bitcoin_network
        if not btc_address.address_matches_network(redeemer_address, network):
            raise ValidationError(f"{redeemer_address} is not a Bitcoin {network} address.")
        redeemer_output_script = length_prefixed_script(raw_script)

        cost = await self.redemption_calculator.cost(account, in_vending_machine)
        balance = int(await self.factory.token.balance_of(account))
        if cost > balance:
            raise ValidationError(
                f"Account {account} has insufficient balance to redeem: "
                f"requires {cost}, has {balance} available."
            )

        fee = await self.bitcoin.estimate_transaction_fee(self.factory.constants)
        utxo_size = await self.contract.utxo_size()
        value_bytes = output_value_bytes(utxo_size, fee)

        if in_vending_machine:
            vending_machine = self.factory.vending_machine
            logger.info("approving_redemption_cost", deposit=self.address, spender="vending_machine", cost=cost)
            await self.factory.token.approve(vending_machine.address, cost)

            logger.info("requesting_redemption", deposit=self.address, route="vending_machine")
            receipt = await vending_machine.tbtc_to_btc(
                self.address, value_bytes, redeemer_output_script, account
            )
        else:
            logger.info("approving_redemption_cost", deposit=self.address, spender="deposit", cost=cost)
            await self.factory.token.approve(self.address, cost)

            logger.info("requesting_redemption", deposit=self.address, route="deposit")
            receipt = await self.contract.request_redemption(value_bytes, redeemer_output_script)

        requested = self.chain.read_event_from_transaction(
            receipt, self.factory.system, "RedemptionRequested"
        )
        if requested is None:
            raise ProtocolEventMissingError("RedemptionRequested", transaction_hash(receipt))

        details = redemption_details_from_event(requested)
        logger.info(
            "redemption_requested",
            deposit=self.address,
            utxo_size=details.utxo_size,
            requested_fee=details.requested_fee,
        )
        return details

    def __repr__(self) -> str:
        return f"<Deposit {self.address}>"


def _public_key_point_from_event(args: EventArgs) -> PublicKeyPoint:
    return PublicKeyPoint(
        x=bytes(args["_signingGroupPubkeyX"]),
        y=bytes(args["_signingGroupPubkeyY"]),
    )
