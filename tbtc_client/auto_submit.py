"""
Automatic qualification of a deposit.

Once started, the pipeline finds the funding transaction for the deposit's
Bitcoin address, waits for the required confirmations, then submits the
funding proof, moving the deposit to ACTIVE without further caller action.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

import structlog
from web3.types import TxReceipt

from .models import FoundTransaction

if TYPE_CHECKING:
    from .deposit import Deposit

logger = structlog.get_logger()


class PipelineStage(Enum):
    """Where an auto-submit pipeline currently is."""

    LOCATING_FUNDING = "locating_funding"
    WAITING_CONFIRMATIONS = "waiting_confirmations"
    SUBMITTING_PROOF = "submitting_proof"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class FundingConfirmations:
    """A funding transaction that has reached the required depth."""

    transaction: FoundTransaction
    required_confirmations: int


class AutoSubmitPipeline:
    """
    Three strictly sequential stages driven by a single task.

    Each stage resolves its own future:
        funding_transaction -> funding_confirmations -> proof_transaction

    A failing stage records ``failure``, moves to FAILED and rejects its
    future along with every later one. Nothing is retried; a caller wanting
    another attempt starts a new pipeline.
    """

    def __init__(self, deposit: "Deposit"):
        self.deposit = deposit
        self.stage = PipelineStage.LOCATING_FUNDING
        self.failed_stage: Optional[PipelineStage] = None
        self.failure: Optional[BaseException] = None

        loop = asyncio.get_running_loop()
        self.funding_transaction: asyncio.Future[FoundTransaction] = loop.create_future()
        self.funding_confirmations: asyncio.Future[FundingConfirmations] = loop.create_future()
        self.proof_transaction: asyncio.Future[TxReceipt] = loop.create_future()
        self._task: Optional[asyncio.Task] = None

    @property
    def futures(self) -> tuple[asyncio.Future, ...]:
        return (self.funding_transaction, self.funding_confirmations, self.proof_transaction)

    def start(self) -> "AutoSubmitPipeline":
        """Start the scheduler task. Starting twice is a no-op."""
        if self._task is None:
            self._task = asyncio.create_task(
                self.run(), name=f"auto-submit-{self.deposit.address}"
            )
        return self

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    async def wait(self) -> TxReceipt:
        """Wait for the proof transaction without cancelling the pipeline."""
        return await asyncio.shield(self.proof_transaction)

    async def locate_funding(self) -> FoundTransaction:
        """Find, or wait for, a transaction paying exactly the lot size."""
        address = await self.deposit.bitcoin_address()
        expected_value = await self.deposit.get_satoshi_lot_size()

        logger.info(
            "monitoring_funding_address",
            deposit=self.deposit.address,
            address=address,
            value=expected_value,
        )
        return await self.deposit.bitcoin.find_or_wait_for(address, expected_value)

    async def await_confirmations(self, transaction: FoundTransaction) -> FundingConfirmations:
        """Wait until ``transaction`` is as deep as proofs must be."""
        required = await self.deposit.get_required_confirmations()

        logger.info(
            "waiting_for_funding_confirmations",
            deposit=self.deposit.address,
            txid=transaction.transaction_id,
            required=required,
        )
        await self.deposit.bitcoin.wait_for_confirmations(transaction, required)
        return FundingConfirmations(transaction=transaction, required_confirmations=required)

    async def submit_proof(self, confirmed: FundingConfirmations) -> TxReceipt:
        """Build the funding proof and submit it to the deposit."""
        logger.info(
            "submitting_funding_proof",
            deposit=self.deposit.address,
            txid=confirmed.transaction.transaction_id,
        )
        proof = await self.deposit.construct_funding_proof(
            confirmed.transaction, confirmed.required_confirmations
        )
        return await self.deposit.contract.provide_btc_funding_proof(*proof.as_args())

    async def run(self) -> None:
        """Run all stages in order, resolving each stage's future as it completes."""
        try:
            self.stage = PipelineStage.LOCATING_FUNDING
            transaction = await self.locate_funding()
            self.funding_transaction.set_result(transaction)

            self.stage = PipelineStage.WAITING_CONFIRMATIONS
            confirmed = await self.await_confirmations(transaction)
            self.funding_confirmations.set_result(confirmed)

            self.stage = PipelineStage.SUBMITTING_PROOF
            receipt = await self.submit_proof(confirmed)
            self.proof_transaction.set_result(receipt)

            self.stage = PipelineStage.DONE
            logger.info("auto_submit_done", deposit=self.deposit.address)
        except asyncio.CancelledError:
            for future in self.futures:
                if not future.done():
                    future.cancel()
            raise
        except Exception as e:
            self._fail(e)

    def _fail(self, error: BaseException) -> None:
        self.failed_stage = self.stage
        self.failure = error
        self.stage = PipelineStage.FAILED

        logger.error(
            "auto_submit_failed",
            deposit=self.deposit.address,
            stage=self.failed_stage.value,
            error=str(error),
        )
        for future in self.futures:
            if not future.done():
                future.set_exception(error)
                # Already logged above; don't warn again if nobody awaits it.
                future.add_done_callback(_retrieve_exception)

    def __repr__(self) -> str:
        return f"<AutoSubmitPipeline {self.deposit.address} {self.stage.value}>"


def _retrieve_exception(future: asyncio.Future[Any]) -> None:
    if not future.cancelled():
        future.exception()
