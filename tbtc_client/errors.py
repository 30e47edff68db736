"""Error types for the tBTC client."""


class TBTCError(Exception):
    """Base exception for all tBTC client errors."""
    pass


class ConfigurationError(TBTCError):
    """Required configuration or contract deployment info is missing."""
    pass


class ValidationError(TBTCError):
    """A lot size, address or balance failed validation."""
    pass


class DepositNotFoundError(ValidationError):
    """No creation event exists for the requested deposit address."""

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Could not find creation event for deposit at address {address}.")


class StateError(TBTCError):
    """Operation attempted while the deposit is in the wrong state."""
    pass


class ProofError(TBTCError):
    """Funding transaction missing or insufficiently confirmed."""
    pass


class ProtocolEventMissingError(TBTCError):
    """An expected event is absent from an otherwise successful transaction."""

    def __init__(self, event_name: str, transaction_hash: str = ""):
        self.event_name = event_name
        self.transaction_hash = transaction_hash
        super().__init__(
            f"Transaction {transaction_hash or '<unknown>'} failed to include "
            f"{event_name} event."
        )


class OwnershipError(TBTCError):
    """Caller is not authorized to act on the deposit."""
    pass


class BitcoinClientError(TBTCError):
    """Error from the Bitcoin data source."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"Bitcoin API error {status_code}: {message}")


class TransactionFailedError(TBTCError):
    """An Ethereum transaction was mined but reverted."""

    def __init__(self, transaction_hash: str):
        self.transaction_hash = transaction_hash
        super().__init__(f"Transaction {transaction_hash} reverted")
