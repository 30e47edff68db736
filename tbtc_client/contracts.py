"""
Typed interfaces for the Ethereum side of the bridge.

One protocol per contract role, plus the chain client that binds them and
provides event primitives. ``evm.EthereumClient`` implements these over
web3; tests use in-memory fakes.
"""

from typing import Any, Optional, Protocol

from web3.types import TxReceipt

EventArgs = dict[str, Any]


class ContractHandle(Protocol):
    """Anything bound to a deployed contract address."""

    @property
    def address(self) -> str: ...


class SystemContract(ContractHandle, Protocol):
    """TBTCSystem: lot sizes, proof difficulty, creation fees, and events."""

    async def get_allowed_lot_sizes(self) -> list[int]: ...

    async def is_allowed_lot_size(self, lot_size: int) -> bool: ...

    async def create_new_deposit_fee_estimate(self) -> int: ...

    async def get_tx_proof_difficulty_factor(self) -> int: ...


class ConstantsContract(ContractHandle, Protocol):
    """TBTCConstants."""

    async def get_minimum_redemption_fee(self) -> int: ...


class DepositFactoryContract(ContractHandle, Protocol):
    async def create_deposit(self, lot_size: int, value: int) -> TxReceipt: ...


class DepositContract(ContractHandle, Protocol):
    """A single deposit's contract."""

    async def get_current_state(self) -> int: ...

    async def in_active(self) -> bool: ...

    async def lot_size_satoshis(self) -> int: ...

    async def utxo_size(self) -> int: ...

    async def get_redemption_tbtc_requirement(self, redeemer: str) -> int: ...

    async def get_owner_redemption_tbtc_requirement(self, redeemer: str) -> int: ...

    async def retrieve_signer_pubkey(self) -> TxReceipt: ...

    async def provide_btc_funding_proof(self, *proof_args: Any) -> TxReceipt: ...

    async def request_redemption(
        self, output_value_bytes: bytes, redeemer_output_script: bytes
    ) -> TxReceipt: ...


class KeepContract(ContractHandle, Protocol):
    """Backing keep; only observed for PublicKeyPublished."""


class TokenContract(ContractHandle, Protocol):
    """TBTC ERC-20 token."""

    async def balance_of(self, account: str) -> int: ...

    async def approve(self, spender: str, amount: int) -> TxReceipt: ...


class DepositTokenContract(ContractHandle, Protocol):
    """TBTC deposit token (ERC-721, token id = deposit address)."""

    async def owner_of(self, deposit_address: str) -> str: ...

    async def approve(self, to: str, deposit_address: str) -> TxReceipt: ...


class FeeRebateTokenContract(ContractHandle, Protocol):
    async def owner_of(self, deposit_address: str) -> str: ...


class VendingMachineContract(ContractHandle, Protocol):
    async def tdt_to_tbtc(self, deposit_address: str) -> TxReceipt: ...

    async def tbtc_to_btc(
        self,
        deposit_address: str,
        output_value_bytes: bytes,
        redeemer_output_script: bytes,
        final_recipient: str,
    ) -> TxReceipt: ...

    async def unqualified_deposit_to_tbtc(
        self, deposit_address: str, *proof_args: Any
    ) -> TxReceipt: ...


class ChainClient(Protocol):
    """Ethereum chain access: account, contract binding and events."""

    @property
    def default_account(self) -> str: ...

    async def get_network_id(self) -> int: ...

    async def get_balance(self, address: str) -> int: ...

    async def get_block_number(self) -> int: ...

    def contract(self, name: str, address: str) -> Any:
        """Bind the contract role ``name`` (an artifact name) at ``address``."""
        ...

    async def get_event(
        self,
        contract: ContractHandle,
        event_name: str,
        filters: Optional[EventArgs] = None,
        from_block: Optional[int] = None,
    ) -> EventArgs:
        """
        Wait for a matching event at or after ``from_block`` and return its args.

        Without ``from_block`` the search starts at the current block.
        """
        ...

    async def get_existing_event(
        self, contract: ContractHandle, event_name: str, filters: Optional[EventArgs] = None
    ) -> Optional[EventArgs]:
        """Return the args of the latest matching past event, if any."""
        ...

    def read_event_from_transaction(
        self, receipt: TxReceipt, contract: ContractHandle, event_name: str
    ) -> Optional[EventArgs]:
        """Return the args of the first matching event in a receipt, if any."""
        ...


def token_id(deposit_address: str) -> int:
    """ERC-721 token id for a deposit: its address as an integer."""
    return int(deposit_address, 16)


def transaction_hash(receipt: TxReceipt) -> str:
    """Hex hash of the transaction a receipt belongs to, for error messages."""
    tx_hash = receipt.get("transactionHash")
    if isinstance(tx_hash, bytes):
        return "0x" + tx_hash.hex().removeprefix("0x")
    return str(tx_hash or "")
