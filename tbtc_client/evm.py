"""
EVM utilities for interacting with the tBTC contracts over web3.
"""

import asyncio
from typing import Any, Optional

import structlog
from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.logs import DISCARD
from web3.types import TxReceipt

from .abis import ABIS
from .contracts import ContractHandle, EventArgs, token_id
from .errors import ConfigurationError, TransactionFailedError

logger = structlog.get_logger()


class EthereumClient:
    """
    Async Ethereum client implementing the ``ChainClient`` interface.

    Transactions are signed locally with the configured private key. Sends
    from this client are serialized: nonces are assigned in order from a
    local counter seeded with the account's pending transaction count.
    """

    def __init__(
        self,
        rpc_url: str = "http://localhost:8545",
        private_key: str = "",
        event_poll_interval: float = 5.0,
        w3: Optional[AsyncWeb3] = None,
    ):
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self.account = Account.from_key(private_key) if private_key else None
        self.event_poll_interval = event_poll_interval
        self._send_lock = asyncio.Lock()
        self._next_nonce: Optional[int] = None

    @property
    def default_account(self) -> str:
        """Get account address."""
        if not self.account:
            raise ConfigurationError("No private key configured")
        return self.account.address

    async def get_network_id(self) -> int:
        return int(await self.w3.net.version)

    async def get_balance(self, address: str) -> int:
        return await self.w3.eth.get_balance(self.w3.to_checksum_address(address))

    async def get_block_number(self) -> int:
        return await self.w3.eth.block_number

    async def call(self, fn: Any) -> Any:
        """Run a read-only contract call from the default account."""
        if self.account:
            return await fn.call({"from": self.account.address})
        return await fn.call()

    async def send(self, fn: Any, value: int = 0) -> TxReceipt:
        """
        Estimate gas for, sign and send a contract call, then wait for its
        receipt.

        Only nonce assignment through broadcast holds the send lock; waiting
        for the receipt does not block other sends.
        """
        sender = self.default_account
        async with self._send_lock:
            gas = await fn.estimate_gas({"from": sender, "value": value})
            if self._next_nonce is None:
                self._next_nonce = await self.w3.eth.get_transaction_count(sender, "pending")
            nonce = self._next_nonce

            tx = await fn.build_transaction(
                {"from": sender, "value": value, "gas": gas, "nonce": nonce}
            )
            signed = self.account.sign_transaction(tx)
            try:
                tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
            except Exception:
                # Reseed from the node on the next send
                self._next_nonce = None
                raise
            self._next_nonce = nonce + 1

        logger.debug("transaction_sent", tx_hash=tx_hash.hex(), to=tx.get("to"), gas=gas, nonce=nonce)

        receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash)
        if receipt["status"] != 1:
            logger.error("transaction_reverted", tx_hash=tx_hash.hex())
            raise TransactionFailedError(tx_hash.hex())

        logger.debug("transaction_confirmed", tx_hash=tx_hash.hex(), gas_used=receipt["gasUsed"])
        return receipt

    def contract(self, name: str, address: str) -> Any:
        """Bind the contract role ``name`` at ``address``."""
        try:
            role = CONTRACT_ROLES[name]
        except KeyError:
            raise ConfigurationError(f"Unknown contract {name}")
        return role(self, name, address)

    def _web3_contract(self, contract: ContractHandle) -> Any:
        if isinstance(contract, BoundContract):
            return contract.contract
        raise TypeError(f"{contract!r} is not bound through this client")

    async def get_existing_event(
        self, contract: ContractHandle, event_name: str, filters: Optional[EventArgs] = None
    ) -> Optional[EventArgs]:
        event = self._web3_contract(contract).events[event_name]
        logs = await event.get_logs(argument_filters=filters or None, from_block=0)
        if not logs:
            return None
        return dict(logs[-1]["args"])

    async def get_event(
        self,
        contract: ContractHandle,
        event_name: str,
        filters: Optional[EventArgs] = None,
        from_block: Optional[int] = None,
    ) -> EventArgs:
        event = self._web3_contract(contract).events[event_name]
        if from_block is None:
            from_block = await self.get_block_number()

        while True:
            logs = await event.get_logs(argument_filters=filters or None, from_block=from_block)
            if logs:
                return dict(logs[0]["args"])
            await asyncio.sleep(self.event_poll_interval)

    def read_event_from_transaction(
        self, receipt: TxReceipt, contract: ContractHandle, event_name: str
    ) -> Optional[EventArgs]:
        event = self._web3_contract(contract).events[event_name]()
        for log in event.process_receipt(receipt, errors=DISCARD):
            if log["address"].lower() == contract.address.lower():
                return dict(log["args"])
        return None


class BoundContract:
    """A web3 contract bound to one of the tBTC contract roles."""

    def __init__(self, client: EthereumClient, name: str, address: str):
        self.client = client
        self.name = name
        self.contract = client.w3.eth.contract(
            address=client.w3.to_checksum_address(address),
            abi=ABIS[name],
        )

    @property
    def address(self) -> str:
        return self.contract.address

    def _checksum(self, address: str) -> str:
        return self.client.w3.to_checksum_address(address)

    def __repr__(self) -> str:
        return f"<{self.name} at {self.address}>"


class SystemContract(BoundContract):
    async def get_allowed_lot_sizes(self) -> list[int]:
        return list(await self.client.call(self.contract.functions.getAllowedLotSizes()))

    async def is_allowed_lot_size(self, lot_size: int) -> bool:
        return await self.client.call(self.contract.functions.isAllowedLotSize(lot_size))

    async def create_new_deposit_fee_estimate(self) -> int:
        return await self.client.call(self.contract.functions.createNewDepositFeeEstimate())

    async def get_tx_proof_difficulty_factor(self) -> int:
        return await self.client.call(self.contract.functions.getTxProofDifficultyFactor())


class ConstantsContract(BoundContract):
    async def get_minimum_redemption_fee(self) -> int:
        return await self.client.call(self.contract.functions.getMinimumRedemptionFee())


class DepositFactoryContract(BoundContract):
    async def create_deposit(self, lot_size: int, value: int) -> TxReceipt:
        return await self.client.send(self.contract.functions.createDeposit(lot_size), value=value)


class DepositContract(BoundContract):
    async def get_current_state(self) -> int:
        return await self.client.call(self.contract.functions.getCurrentState())

    async def in_active(self) -> bool:
        return await self.client.call(self.contract.functions.inActive())

    async def lot_size_satoshis(self) -> int:
        return await self.client.call(self.contract.functions.lotSizeSatoshis())

    async def utxo_size(self) -> int:
        return await self.client.call(self.contract.functions.utxoSize())

    async def get_redemption_tbtc_requirement(self, redeemer: str) -> int:
        return await self.client.call(
            self.contract.functions.getRedemptionTbtcRequirement(self._checksum(redeemer))
        )

    async def get_owner_redemption_tbtc_requirement(self, redeemer: str) -> int:
        return await self.client.call(
            self.contract.functions.getOwnerRedemptionTbtcRequirement(self._checksum(redeemer))
        )

    async def retrieve_signer_pubkey(self) -> TxReceipt:
        return await self.client.send(self.contract.functions.retrieveSignerPubkey())

    async def provide_btc_funding_proof(self, *proof_args: Any) -> TxReceipt:
        return await self.client.send(self.contract.functions.provideBTCFundingProof(*proof_args))

    async def request_redemption(
        self, output_value_bytes: bytes, redeemer_output_script: bytes
    ) -> TxReceipt:
        return await self.client.send(
            self.contract.functions.requestRedemption(output_value_bytes, redeemer_output_script)
        )


class KeepContract(BoundContract):
    pass


class TokenContract(BoundContract):
    async def balance_of(self, account: str) -> int:
        return await self.client.call(self.contract.functions.balanceOf(self._checksum(account)))

    async def approve(self, spender: str, amount: int) -> TxReceipt:
        return await self.client.send(
            self.contract.functions.approve(self._checksum(spender), amount)
        )


class DepositTokenContract(BoundContract):
    async def owner_of(self, deposit_address: str) -> str:
        return await self.client.call(self.contract.functions.ownerOf(token_id(deposit_address)))

    async def approve(self, to: str, deposit_address: str) -> TxReceipt:
        return await self.client.send(
            self.contract.functions.approve(self._checksum(to), token_id(deposit_address))
        )


class FeeRebateTokenContract(BoundContract):
    async def owner_of(self, deposit_address: str) -> str:
        return await self.client.call(self.contract.functions.ownerOf(token_id(deposit_address)))


class VendingMachineContract(BoundContract):
    async def tdt_to_tbtc(self, deposit_address: str) -> TxReceipt:
        return await self.client.send(self.contract.functions.tdtToTbtc(token_id(deposit_address)))

    async def tbtc_to_btc(
        self,
        deposit_address: str,
        output_value_bytes: bytes,
        redeemer_output_script: bytes,
        final_recipient: str,
    ) -> TxReceipt:
        return await self.client.send(
            self.contract.functions.tbtcToBtc(
                self._checksum(deposit_address),
                output_value_bytes,
                redeemer_output_script,
                self._checksum(final_recipient),
            )
        )

    async def unqualified_deposit_to_tbtc(
        self, deposit_address: str, *proof_args: Any
    ) -> TxReceipt:
        return await self.client.send(
            self.contract.functions.unqualifiedDepositToTbtc(
                self._checksum(deposit_address), *proof_args
            )
        )


CONTRACT_ROLES: dict[str, type[BoundContract]] = {
    "TBTCSystem": SystemContract,
    "TBTCConstants": ConstantsContract,
    "DepositFactory": DepositFactoryContract,
    "Deposit": DepositContract,
    "BondedECDSAKeep": KeepContract,
    "TBTCToken": TokenContract,
    "TBTCDepositToken": DepositTokenContract,
    "FeeRebateToken": FeeRebateTokenContract,
    "VendingMachine": VendingMachineContract,
}
