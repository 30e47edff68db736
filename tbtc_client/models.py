"""
Data model for tBTC deposits.

Deposit state is owned by the on-chain contract; these types only describe
what the client observes and what it submits.
"""

from dataclasses import dataclass
from enum import IntEnum

from eth_abi import encode


class DepositState(IntEnum):
    """Deposit contract states, numbered as the contract numbers them."""

    # Not initialized.
    START = 0

    # Funding flow.
    AWAITING_SIGNER_SETUP = 1
    AWAITING_BTC_FUNDING_PROOF = 2

    # Failed setup.
    FRAUD_AWAITING_BTC_FUNDING_PROOF = 3
    FAILED_SETUP = 4

    # Active/qualified, pre- or at-term.
    ACTIVE = 5

    # Redemption flow.
    AWAITING_WITHDRAWAL_SIGNATURE = 6
    AWAITING_WITHDRAWAL_PROOF = 7
    REDEEMED = 8

    # Signer liquidation flow.
    COURTESY_CALL = 9
    FRAUD_LIQUIDATION_IN_PROGRESS = 10
    LIQUIDATION_IN_PROGRESS = 11
    LIQUIDATED = 12

    def is_funding_path(self) -> bool:
        """True for states on the happy funding path up to ACTIVE."""
        return self in (
            DepositState.START,
            DepositState.AWAITING_SIGNER_SETUP,
            DepositState.AWAITING_BTC_FUNDING_PROOF,
            DepositState.ACTIVE,
        )


@dataclass(frozen=True)
class PublicKeyPoint:
    """Signing group public key, as published by the keep."""

    x: bytes  # 32 bytes, big-endian
    y: bytes  # 32 bytes, big-endian

    def to_dict(self) -> dict:
        return {"x": "0x" + self.x.hex(), "y": "0x" + self.y.hex()}


@dataclass(frozen=True)
class DepositCreation:
    """Addresses extracted from a deposit's Created event."""

    deposit_address: str
    keep_address: str


@dataclass(frozen=True)
class FoundTransaction:
    """A Bitcoin transaction paying the expected amount to a deposit address."""

    transaction_id: str  # display format (reversed hex)
    output_position: int
    value: int  # satoshis


@dataclass(frozen=True)
class ParsedTransaction:
    """Witness-stripped transaction fields, as hex strings."""

    version: str
    tx_in_vector: str
    tx_out_vector: str
    locktime: str


@dataclass(frozen=True)
class SPVProofBundle:
    """SPV proof material for one transaction at a given confirmation depth."""

    parsed_transaction: ParsedTransaction
    merkle_proof: str  # concatenated sibling hashes, internal byte order, hex
    chain_headers: str  # concatenated 80-byte headers, hex
    tx_in_block_index: int


# Argument types of Deposit.provideBTCFundingProof, in order.
FUNDING_PROOF_ABI_TYPES = [
    "bytes4",
    "bytes",
    "bytes",
    "bytes4",
    "uint8",
    "bytes",
    "uint256",
    "bytes",
]


@dataclass(frozen=True)
class FundingProof:
    """
    Funding proof arguments for the on-chain verifier.

    Field order is part of the contract interface:
        version, txInVector, txOutVector, locktime, outputPosition,
        merkleProof, txInBlockIndex, chainHeaders
    """

    version: bytes
    tx_in_vector: bytes
    tx_out_vector: bytes
    locktime: bytes
    output_position: int
    merkle_proof: bytes
    tx_in_block_index: int
    chain_headers: bytes

    def as_args(self) -> tuple:
        """Positional arguments for provideBTCFundingProof and friends."""
        return (
            self.version,
            self.tx_in_vector,
            self.tx_out_vector,
            self.locktime,
            self.output_position,
            self.merkle_proof,
            self.tx_in_block_index,
            self.chain_headers,
        )

    def encode(self) -> bytes:
        """ABI-encode the proof arguments (without a function selector)."""
        return encode(FUNDING_PROOF_ABI_TYPES, list(self.as_args()))

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "version": self.version.hex(),
            "txInVector": self.tx_in_vector.hex(),
            "txOutVector": self.tx_out_vector.hex(),
            "locktime": self.locktime.hex(),
            "outputPosition": self.output_position,
            "merkleProof": self.merkle_proof.hex(),
            "txInBlockIndex": self.tx_in_block_index,
            "chainHeaders": self.chain_headers.hex(),
        }


@dataclass(frozen=True)
class RedemptionDetails:
    """
    Details of a redemption request, taken from a RedemptionRequested event.

    A fee bump emits a new event; callers refetch instead of mutating.
    """

    utxo_size: int
    redeemer_output_script: bytes
    requested_fee: int
    outpoint: bytes
    digest: bytes

    def to_dict(self) -> dict:
        return {
            "utxoSize": self.utxo_size,
            "redeemerOutputScript": self.redeemer_output_script.hex(),
            "requestedFee": self.requested_fee,
            "outpoint": self.outpoint.hex(),
            "digest": self.digest.hex(),
        }
