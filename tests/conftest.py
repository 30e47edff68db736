"""
In-memory fakes for the Ethereum and Bitcoin sides of a deposit.

Fake contracts emit their events into the fake chain's log the way a real
chain would, and record every state-changing call in ``chain.sent``.
"""

import asyncio
from typing import Any, Optional

import pytest

from tbtc_client import address as btc_address
from tbtc_client.config import REQUIRED_CONTRACTS, Settings, TBTCConfig
from tbtc_client.factory import DepositFactory
from tbtc_client.models import (
    DepositState,
    FoundTransaction,
    ParsedTransaction,
    SPVProofBundle,
)

NETWORK_ID = 3
ACCOUNT = "0x" + "aa" * 20
OTHER_ACCOUNT = "0x" + "bb" * 20
ZERO_ADDRESS = "0x" + "00" * 20

# secp256k1 generator point; its P2WPKH address is a BIP-173 test vector
G_X = bytes.fromhex("79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798")
G_Y = bytes.fromhex("483ada7726a3c4655da4fbfc0e1108a8fd17b448a68554199c47d08ffb10d4b8")
G_TESTNET_ADDRESS = "tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx"

CONTRACT_ADDRESSES = {
    name: "0x" + f"{i + 1:02x}" * 20 for i, name in enumerate(REQUIRED_CONTRACTS)
}

POLL = 0.001


def _matches(args: dict[str, Any], filters: Optional[dict[str, Any]]) -> bool:
    for key, value in (filters or {}).items():
        actual = args.get(key)
        if isinstance(value, str) and isinstance(actual, str):
            if value.lower() != actual.lower():
                return False
        elif actual != value:
            return False
    return True


class FakeChain:
    """Event log, balances and contract registry of a fake Ethereum chain."""

    def __init__(self) -> None:
        self.default_account = ACCOUNT
        self.network_id = NETWORK_ID
        self.balances: dict[str, int] = {ACCOUNT.lower(): 10**18}
        self.events: list[tuple[str, str, dict[str, Any]]] = []
        self.contracts: dict[str, Any] = {}
        self.sent: list[tuple[str, str, tuple]] = []
        self.tx_count = 0
        self.pubkey = (G_X, G_Y)

    async def get_network_id(self) -> int:
        return self.network_id

    async def get_balance(self, address: str) -> int:
        return self.balances.get(address.lower(), 0)

    async def get_block_number(self) -> int:
        # One event per block
        return len(self.events)

    def contract(self, name: str, address: str) -> Any:
        key = address.lower()
        if key not in self.contracts:
            if name == "Deposit":
                self.contracts[key] = FakeDeposit(self, address)
            elif name == "BondedECDSAKeep":
                self.contracts[key] = FakeKeep(address)
            else:
                raise KeyError(f"No fake {name} at {address}")
        return self.contracts[key]

    def register(self, contract: Any) -> Any:
        self.contracts[contract.address.lower()] = contract
        return contract

    def emit(self, address: str, name: str, args: dict[str, Any]) -> None:
        self.events.append((address.lower(), name, args))

    def receipt(self, sender: str, method: str, args: tuple, events: list) -> dict:
        """Record a sent transaction and emit its events."""
        self.tx_count += 1
        self.sent.append((sender.lower(), method, args))
        for address, name, event_args in events:
            self.emit(address, name, event_args)
        return {
            "transactionHash": bytes([self.tx_count]) * 32,
            "status": 1,
            "events": [(address.lower(), name, event_args) for address, name, event_args in events],
        }

    def _find(self, address: str, name: str, filters: Optional[dict], start: int = 0) -> list:
        return [
            args
            for event_address, event_name, args in self.events[start:]
            if event_address == address.lower() and event_name == name and _matches(args, filters)
        ]

    async def get_existing_event(self, contract: Any, event_name: str, filters: Optional[dict] = None):
        found = self._find(contract.address, event_name, filters)
        return found[-1] if found else None

    async def get_event(
        self,
        contract: Any,
        event_name: str,
        filters: Optional[dict] = None,
        from_block: Optional[int] = None,
    ):
        start = len(self.events) if from_block is None else from_block
        while True:
            found = self._find(contract.address, event_name, filters, start)
            if found:
                return found[0]
            await asyncio.sleep(POLL)

    def read_event_from_transaction(self, receipt: dict, contract: Any, event_name: str):
        for address, name, args in receipt["events"]:
            if address == contract.address.lower() and name == event_name:
                return args
        return None


class FakeContract:
    def __init__(self, address: str):
        self.address = address


class FakeKeep(FakeContract):
    pass


class FakeSystem(FakeContract):
    def __init__(self, address: str):
        super().__init__(address)
        self.allowed_lot_sizes = [100000, 1000000, 10000000]
        self.fee_estimate = 10**16
        self.difficulty_factor = 6

    async def get_allowed_lot_sizes(self) -> list[int]:
        return list(self.allowed_lot_sizes)

    async def is_allowed_lot_size(self, lot_size: int) -> bool:
        return lot_size in self.allowed_lot_sizes

    async def create_new_deposit_fee_estimate(self) -> int:
        return self.fee_estimate

    async def get_tx_proof_difficulty_factor(self) -> int:
        return self.difficulty_factor


class FakeConstants(FakeContract):
    def __init__(self, address: str):
        super().__init__(address)
        self.minimum_redemption_fee = 2000

    async def get_minimum_redemption_fee(self) -> int:
        return self.minimum_redemption_fee


class FakeDeposit(FakeContract):
    def __init__(self, chain: FakeChain, address: str, lot_size: int = 100000):
        super().__init__(address)
        self.chain = chain
        self.state = DepositState.AWAITING_SIGNER_SETUP
        self.lot_size = lot_size
        self.utxo_size_value = lot_size
        self.redemption_requirement = lot_size * 10**10
        self.owner_redemption_requirement = 5 * 10**14
        self.emit_registered_pubkey = True
        self.emit_redemption_requested = True

    @property
    def system_address(self) -> str:
        return CONTRACT_ADDRESSES["TBTCSystem"]

    async def get_current_state(self) -> int:
        return int(self.state)

    async def in_active(self) -> bool:
        return self.state == DepositState.ACTIVE

    async def lot_size_satoshis(self) -> int:
        return self.lot_size

    async def utxo_size(self) -> int:
        return self.utxo_size_value

    async def get_redemption_tbtc_requirement(self, redeemer: str) -> int:
        return self.redemption_requirement

    async def get_owner_redemption_tbtc_requirement(self, redeemer: str) -> int:
        return self.owner_redemption_requirement

    async def retrieve_signer_pubkey(self) -> dict:
        events = []
        if self.emit_registered_pubkey:
            x, y = self.chain.pubkey
            events.append(
                (
                    self.system_address,
                    "RegisteredPubkey",
                    {
                        "_depositContractAddress": self.address,
                        "_signingGroupPubkeyX": x,
                        "_signingGroupPubkeyY": y,
                    },
                )
            )
            self.state = DepositState.AWAITING_BTC_FUNDING_PROOF
        return self.chain.receipt(self.address, "retrieveSignerPubkey", (), events)

    async def provide_btc_funding_proof(self, *proof_args: Any) -> dict:
        self.state = DepositState.ACTIVE
        return self.chain.receipt(
            self.address,
            "provideBTCFundingProof",
            proof_args,
            [(self.system_address, "Funded", {"_depositContractAddress": self.address})],
        )

    def redemption_events(self, output_value_bytes: bytes, script: bytes) -> list:
        if not self.emit_redemption_requested:
            return []
        output_value = int.from_bytes(output_value_bytes, "little")
        return [
            (
                self.system_address,
                "RedemptionRequested",
                {
                    "_depositContractAddress": self.address,
                    "_requester": self.chain.default_account,
                    "_digest": b"\x22" * 32,
                    "_utxoSize": self.utxo_size_value,
                    "_redeemerOutputScript": script,
                    "_requestedFee": self.utxo_size_value - output_value,
                    "_outpoint": b"\x11" * 36,
                },
            )
        ]

    async def request_redemption(self, output_value_bytes: bytes, redeemer_output_script: bytes) -> dict:
        self.state = DepositState.AWAITING_WITHDRAWAL_SIGNATURE
        return self.chain.receipt(
            self.address,
            "requestRedemption",
            (output_value_bytes, redeemer_output_script),
            self.redemption_events(output_value_bytes, redeemer_output_script),
        )


class FakeDepositFactoryContract(FakeContract):
    def __init__(self, chain: FakeChain, address: str):
        super().__init__(address)
        self.chain = chain
        self.created = 0
        self.emit_created = True

    async def create_deposit(self, lot_size: int, value: int) -> dict:
        self.created += 1
        deposit_address = "0x" + f"{0xd0 + self.created:02x}" * 20
        keep_address = "0x" + f"{0xe0 + self.created:02x}" * 20
        self.chain.register(FakeDeposit(self.chain, deposit_address, lot_size))
        self.chain.register(FakeKeep(keep_address))

        events = []
        if self.emit_created:
            events.append(
                (
                    CONTRACT_ADDRESSES["TBTCSystem"],
                    "Created",
                    {
                        "_depositContractAddress": deposit_address,
                        "_keepAddress": keep_address,
                        "_timestamp": 1_700_000_000,
                    },
                )
            )
        return self.chain.receipt(self.address, "createDeposit", (lot_size, value), events)


class FakeToken(FakeContract):
    def __init__(self, chain: FakeChain, address: str):
        super().__init__(address)
        self.chain = chain
        self.balances: dict[str, int] = {}

    async def balance_of(self, account: str) -> int:
        return self.balances.get(account.lower(), 0)

    async def approve(self, spender: str, amount: int) -> dict:
        return self.chain.receipt(self.address, "approve", (spender, amount), [])


class FakeDepositToken(FakeContract):
    def __init__(self, chain: FakeChain, address: str):
        super().__init__(address)
        self.chain = chain
        self.owners: dict[str, str] = {}

    async def owner_of(self, deposit_address: str) -> str:
        return self.owners.get(deposit_address.lower(), ZERO_ADDRESS)

    async def approve(self, to: str, deposit_address: str) -> dict:
        return self.chain.receipt(self.address, "approve", (to, deposit_address), [])


class FakeFeeRebateToken(FakeContract):
    def __init__(self, address: str):
        super().__init__(address)
        self.owners: dict[str, str] = {}

    async def owner_of(self, deposit_address: str) -> str:
        return self.owners.get(deposit_address.lower(), ZERO_ADDRESS)


class FakeVendingMachine(FakeContract):
    def __init__(self, chain: FakeChain, address: str):
        super().__init__(address)
        self.chain = chain
        self.emit_transfer = True

    @property
    def deposit_token(self) -> FakeDepositToken:
        return self.chain.contracts[CONTRACT_ADDRESSES["TBTCDepositToken"].lower()]

    def _mint_events(self, deposit_address: str) -> list:
        if not self.emit_transfer:
            return []
        deposit = self.chain.contracts[deposit_address.lower()]
        return [
            (
                CONTRACT_ADDRESSES["TBTCToken"],
                "Transfer",
                {
                    "from": ZERO_ADDRESS,
                    "to": self.chain.default_account,
                    "value": deposit.lot_size * 10**10,
                },
            )
        ]

    async def tdt_to_tbtc(self, deposit_address: str) -> dict:
        self.deposit_token.owners[deposit_address.lower()] = self.address
        return self.chain.receipt(
            self.address, "tdtToTbtc", (deposit_address,), self._mint_events(deposit_address)
        )

    async def tbtc_to_btc(
        self,
        deposit_address: str,
        output_value_bytes: bytes,
        redeemer_output_script: bytes,
        final_recipient: str,
    ) -> dict:
        deposit = self.chain.contracts[deposit_address.lower()]
        deposit.state = DepositState.AWAITING_WITHDRAWAL_SIGNATURE
        return self.chain.receipt(
            self.address,
            "tbtcToBtc",
            (deposit_address, output_value_bytes, redeemer_output_script, final_recipient),
            deposit.redemption_events(output_value_bytes, redeemer_output_script),
        )

    async def unqualified_deposit_to_tbtc(self, deposit_address: str, *proof_args: Any) -> dict:
        deposit = self.chain.contracts[deposit_address.lower()]
        deposit.state = DepositState.ACTIVE
        self.deposit_token.owners[deposit_address.lower()] = self.address
        return self.chain.receipt(
            self.address,
            "unqualifiedDepositToTbtc",
            (deposit_address, *proof_args),
            self._mint_events(deposit_address),
        )


def make_spv_bundle(block_index: int = 3) -> SPVProofBundle:
    return SPVProofBundle(
        parsed_transaction=ParsedTransaction(
            version="01000000",
            tx_in_vector="01" + "ab" * 36 + "00" + "ffffffff",
            tx_out_vector="01" + "a086010000000000" + "16" + "0014" + "11" * 20,
            locktime="00000000",
        ),
        merkle_proof="cd" * 64,
        chain_headers="ef" * 80 * 6,
        tx_in_block_index=block_index,
    )


class FakeBitcoin:
    """Bitcoin client backed by dictionaries; waits poll them."""

    def __init__(self) -> None:
        self.transactions: dict[str, list[FoundTransaction]] = {}
        self.confirmations: dict[str, int] = {}
        self.calls: list[tuple] = []
        self.spv_bundle = make_spv_bundle()
        self.spv_error: Optional[Exception] = None

    def fund(self, address: str, value: int, txid: str = "f0" * 32, position: int = 0) -> FoundTransaction:
        transaction = FoundTransaction(transaction_id=txid, output_position=position, value=value)
        self.transactions.setdefault(address, []).append(transaction)
        self.confirmations.setdefault(txid, 0)
        return transaction

    async def find_transaction(self, address: str, expected_value: int) -> Optional[FoundTransaction]:
        self.calls.append(("find_transaction", address, expected_value))
        for transaction in self.transactions.get(address, []):
            if transaction.value == expected_value:
                return transaction
        return None

    async def find_or_wait_for(self, address: str, expected_value: int) -> FoundTransaction:
        self.calls.append(("find_or_wait_for", address, expected_value))
        while True:
            for transaction in self.transactions.get(address, []):
                if transaction.value == expected_value:
                    return transaction
            await asyncio.sleep(POLL)

    async def check_for_confirmations(self, transaction: FoundTransaction, confirmations: int) -> bool:
        self.calls.append(("check_for_confirmations", transaction.transaction_id, confirmations))
        return self.confirmations.get(transaction.transaction_id, 0) >= confirmations

    async def wait_for_confirmations(self, transaction: FoundTransaction, confirmations: int) -> None:
        self.calls.append(("wait_for_confirmations", transaction.transaction_id, confirmations))
        while self.confirmations.get(transaction.transaction_id, 0) < confirmations:
            await asyncio.sleep(POLL)

    async def estimate_transaction_fee(self, constants: Any) -> int:
        return await constants.get_minimum_redemption_fee()

    async def get_spv_proof(self, transaction_id: str, confirmations: int) -> SPVProofBundle:
        self.calls.append(("get_spv_proof", transaction_id, confirmations))
        if self.spv_error is not None:
            raise self.spv_error
        return self.spv_bundle

    def output_script_from_address(self, address: str) -> Optional[bytes]:
        return btc_address.output_script_from_address(address)

    def public_key_point_to_p2wpkh_address(self, x: bytes, y: bytes, network: str) -> str:
        return btc_address.public_key_point_to_p2wpkh_address(x, y, network)


class TBTCEnv:
    """Both fake chains plus the contracts a factory resolves."""

    def __init__(self) -> None:
        self.chain = FakeChain()
        self.bitcoin = FakeBitcoin()

        self.constants = self.chain.register(FakeConstants(CONTRACT_ADDRESSES["TBTCConstants"]))
        self.system = self.chain.register(FakeSystem(CONTRACT_ADDRESSES["TBTCSystem"]))
        self.token = self.chain.register(FakeToken(self.chain, CONTRACT_ADDRESSES["TBTCToken"]))
        self.deposit_token = self.chain.register(
            FakeDepositToken(self.chain, CONTRACT_ADDRESSES["TBTCDepositToken"])
        )
        self.fee_rebate_token = self.chain.register(
            FakeFeeRebateToken(CONTRACT_ADDRESSES["FeeRebateToken"])
        )
        self.deposit_factory = self.chain.register(
            FakeDepositFactoryContract(self.chain, CONTRACT_ADDRESSES["DepositFactory"])
        )
        self.vending_machine = self.chain.register(
            FakeVendingMachine(self.chain, CONTRACT_ADDRESSES["VendingMachine"])
        )

        self.config = TBTCConfig(
            settings=Settings(_env_file=None, bitcoin_network="testnet"),
            deployments={
                name: {"networks": {str(NETWORK_ID): {"address": address}}}
                for name, address in CONTRACT_ADDRESSES.items()
            },
        )

    async def factory(self) -> DepositFactory:
        return await DepositFactory.with_config(self.config, self.chain, self.bitcoin)

    def add_deposit(
        self,
        address: str = "0x" + "cc" * 20,
        state: DepositState = DepositState.ACTIVE,
        lot_size: int = 100000,
        owner: str = ACCOUNT,
        registered_pubkey: bool = True,
    ) -> FakeDeposit:
        """Put an existing deposit on chain, with its Created event."""
        keep_address = "0x" + "ee" * 20
        deposit = self.chain.register(FakeDeposit(self.chain, address, lot_size))
        deposit.state = state
        self.chain.register(FakeKeep(keep_address))
        self.deposit_token.owners[address.lower()] = owner

        system = CONTRACT_ADDRESSES["TBTCSystem"]
        self.chain.emit(
            system,
            "Created",
            {"_depositContractAddress": address, "_keepAddress": keep_address, "_timestamp": 1},
        )
        if registered_pubkey:
            self.chain.emit(
                system,
                "RegisteredPubkey",
                {
                    "_depositContractAddress": address,
                    "_signingGroupPubkeyX": G_X,
                    "_signingGroupPubkeyY": G_Y,
                },
            )
        return deposit

    def sent_methods(self) -> list[str]:
        return [method for _, method, _ in self.chain.sent]


@pytest.fixture
def env() -> TBTCEnv:
    """Fresh fake chains for each test."""
    return TBTCEnv()
