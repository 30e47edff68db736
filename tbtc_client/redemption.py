"""
Redemption cost and request details.
"""

from typing import TYPE_CHECKING, Optional

import structlog

from .contracts import DepositContract, EventArgs
from .errors import ValidationError
from .models import RedemptionDetails

if TYPE_CHECKING:
    from .deposit import Deposit

logger = structlog.get_logger()

# Satoshis to TBTC base units (18 decimals vs 8)
SATOSHI_MULTIPLIER = 10**10

# requestRedemption takes the output value as bytes8
OUTPUT_VALUE_SIZE = 8


class RedemptionCalculator:
    """Computes the TBTC needed to redeem a deposit."""

    def __init__(self, contract: DepositContract):
        self.contract = contract

    async def cost(self, redeemer: str, in_vending_machine: bool) -> int:
        """
        TBTC cost for ``redeemer`` to redeem the deposit.

        A deposit held by the vending machine must first be bought back for
        its full lot size, on top of what the previous owner is owed.
        Otherwise the deposit contract's own requirement applies.
        """
        if in_vending_machine:
            owner_requirement = await self.contract.get_owner_redemption_tbtc_requirement(redeemer)
            lot_size = await self.contract.lot_size_satoshis()
            return int(lot_size) * SATOSHI_MULTIPLIER + int(owner_requirement)

        return int(await self.contract.get_redemption_tbtc_requirement(redeemer))


def output_value_bytes(utxo_size: int, transaction_fee: int) -> bytes:
    """
    Encode the redeemer's payout (UTXO size less fee) as 8 little-endian bytes.

    Raises:
        ValidationError: If the fee leaves nothing to pay out
    """
    output_value = int(utxo_size) - int(transaction_fee)
    if output_value <= 0:
        raise ValidationError(
            f"Transaction fee {transaction_fee} leaves no output value from UTXO "
            f"of {utxo_size} satoshis."
        )
    return output_value.to_bytes(OUTPUT_VALUE_SIZE, "little")


def length_prefixed_script(script: bytes) -> bytes:
    """Prefix an output script with its length, as the deposit contract expects."""
    if len(script) > 0xFC:
        raise ValidationError(f"Output script too long: {len(script)} bytes")
    return bytes([len(script)]) + script


def redemption_details_from_event(args: EventArgs) -> RedemptionDetails:
    """Extract redemption details from RedemptionRequested event args."""
    return RedemptionDetails(
        utxo_size=int(args["_utxoSize"]),
        redeemer_output_script=bytes(args["_redeemerOutputScript"]),
        requested_fee=int(args["_requestedFee"]),
        outpoint=bytes(args["_outpoint"]),
        digest=bytes(args["_digest"]),
    )


class Redemption:
    """
    Handle on a deposit's in-progress redemption.

    ``details`` is a snapshot; fee bumps emit new RedemptionRequested events,
    so call ``refresh()`` to pick up the latest one.
    """

    def __init__(self, deposit: "Deposit", details: RedemptionDetails):
        self.deposit = deposit
        self.details = details

    async def refresh(self) -> Optional[RedemptionDetails]:
        """
        Refetch the latest redemption details.

        Returns None once the deposit is back in ACTIVE or no request exists;
        the previous snapshot is kept in that case.
        """
        latest = await self.deposit.get_latest_redemption_details()
        if latest is not None:
            if latest != self.details:
                logger.info(
                    "redemption_details_updated",
                    deposit=self.deposit.address,
                    requested_fee=latest.requested_fee,
                )
            self.details = latest
        return latest

    def __repr__(self) -> str:
        return f"<Redemption of {self.deposit.address} fee={self.details.requested_fee}>"
