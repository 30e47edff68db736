"""
Funding proof construction.

Turns a located funding transaction into the arguments accepted by
``Deposit.provideBTCFundingProof`` and ``VendingMachine.unqualifiedDepositToTbtc``.
"""

import structlog

from .bitcoin import BitcoinClient
from .models import FoundTransaction, FundingProof

logger = structlog.get_logger()


class ProofBuilder:
    """
    Builds funding proofs from SPV proof material.

    Usage:
        builder = ProofBuilder(bitcoin_client)
        proof = await builder.construct_funding_proof(transaction, 6)
        await deposit_contract.provide_btc_funding_proof(*proof.as_args())
    """

    def __init__(self, bitcoin: BitcoinClient):
        self.bitcoin = bitcoin

    async def construct_funding_proof(
        self, transaction: FoundTransaction, confirmations: int
    ) -> FundingProof:
        """
        Build the funding proof for ``transaction`` at ``confirmations`` depth.

        The output position comes from the located transaction; everything
        else comes from the SPV proof bundle. Hex fields are decoded to bytes,
        positions stay integers.
        """
        bundle = await self.bitcoin.get_spv_proof(transaction.transaction_id, confirmations)
        parsed = bundle.parsed_transaction

        logger.debug(
            "funding_proof_built",
            txid=transaction.transaction_id,
            confirmations=confirmations,
            tx_in_block_index=bundle.tx_in_block_index,
        )

        return FundingProof(
            version=bytes.fromhex(parsed.version),
            tx_in_vector=bytes.fromhex(parsed.tx_in_vector),
            tx_out_vector=bytes.fromhex(parsed.tx_out_vector),
            locktime=bytes.fromhex(parsed.locktime),
            output_position=int(transaction.output_position),
            merkle_proof=bytes.fromhex(bundle.merkle_proof),
            tx_in_block_index=int(bundle.tx_in_block_index),
            chain_headers=bytes.fromhex(bundle.chain_headers),
        )
