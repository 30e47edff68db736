"""
tBTC client

Manages tBTC deposits from the client side: opening a deposit, watching it
get a signer key and funding, proving the Bitcoin funding transaction,
minting TBTC and redeeming back to Bitcoin.

Usage:
    # List allowed lot sizes
    tbtc-client lot-sizes

    # Open a deposit, qualify it automatically and mint
    tbtc-client deposit 100000 --mint

    # Redeem a deposit to a Bitcoin address
    tbtc-client redeem 0x... tb1q...
"""

__version__ = "0.1.0"

from .auto_submit import AutoSubmitPipeline, PipelineStage
from .bitcoin import EsploraBitcoinClient
from .config import Settings, TBTCConfig
from .deposit import Deposit
from .errors import (
    ConfigurationError,
    DepositNotFoundError,
    OwnershipError,
    ProofError,
    ProtocolEventMissingError,
    StateError,
    TBTCError,
    ValidationError,
)
from .evm import EthereumClient
from .factory import DepositFactory
from .models import DepositState, FundingProof, PublicKeyPoint, RedemptionDetails
from .redemption import Redemption

__all__ = [
    "__version__",
    "AutoSubmitPipeline",
    "PipelineStage",
    "EsploraBitcoinClient",
    "Settings",
    "TBTCConfig",
    "Deposit",
    "DepositFactory",
    "EthereumClient",
    "DepositState",
    "FundingProof",
    "PublicKeyPoint",
    "RedemptionDetails",
    "Redemption",
    "TBTCError",
    "ConfigurationError",
    "ValidationError",
    "DepositNotFoundError",
    "StateError",
    "ProofError",
    "ProtocolEventMissingError",
    "OwnershipError",
]
