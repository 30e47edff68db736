"""
Bitcoin side of the deposit lifecycle.

Defines the interface the orchestrator consumes from a Bitcoin data source,
the transaction parsing needed for funding proofs, and an esplora
(mempool.space / blockstream.info) backed implementation.
"""

import asyncio
import hashlib
from typing import Any, Optional, Protocol, Tuple

import httpx
import structlog

from . import address as btc_address
from .config import BitcoinServerProfile
from .errors import BitcoinClientError, ConfigurationError, ProofError
from .models import FoundTransaction, ParsedTransaction, SPVProofBundle

logger = structlog.get_logger()

# esplora returns address history in pages of 25
ESPLORA_PAGE_SIZE = 25


def sha256d(data: bytes) -> bytes:
    """Double SHA256 hash (Bitcoin standard)."""
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def hex_le_to_bytes(hex_str: str) -> bytes:
    """Convert little-endian display hex to internal byte order."""
    return bytes.fromhex(hex_str)[::-1]


HEADER_SIZE = 80


def header_merkle_root(header: bytes) -> bytes:
    """Merkle root of an 80-byte block header, in internal byte order."""
    if len(header) != HEADER_SIZE:
        raise ProofError(f"Block header must be {HEADER_SIZE} bytes, got {len(header)}")
    return header[36:68]


def verify_merkle_proof(
    txid: bytes, merkle_root: bytes, proof: list[bytes], tx_index: int
) -> bool:
    """Verify a Merkle inclusion proof (all hashes in internal byte order)."""
    current = txid
    index = tx_index

    for sibling in proof:
        if index & 1 == 0:
            current = sha256d(current + sibling)
        else:
            current = sha256d(sibling + current)
        index //= 2

    return current == merkle_root


# VarInt prefix byte -> width of the integer that follows it
VARINT_WIDTHS = {0xFD: 2, 0xFE: 4, 0xFF: 8}


def parse_varint(data: bytes, offset: int = 0) -> Tuple[int, int]:
    """Read a CompactSize integer at ``offset``; returns (value, next offset)."""
    prefix = data[offset]
    width = VARINT_WIDTHS.get(prefix)
    if width is None:
        return prefix, offset + 1

    start = offset + 1
    return int.from_bytes(data[start:start + width], "little"), start + width


def _skip_items(raw_tx: bytes, offset: int, fixed_size: int, trailing: int = 0) -> Tuple[int, int]:
    """
    Skip a count-prefixed vector whose items are a fixed-size prefix, a
    length-prefixed script and a fixed-size trailer. Returns (count, end).
    """
    count, offset = parse_varint(raw_tx, offset)
    for _ in range(count):
        script_length, offset = parse_varint(raw_tx, offset + fixed_size)
        offset += script_length + trailing
    return count, offset


def parse_transaction(raw_tx: bytes) -> ParsedTransaction:
    """
    Split a raw transaction into version, input vector, output vector and
    locktime. Witness data is dropped.
    """
    if len(raw_tx) < 10:
        raise ValueError(f"Transaction too short: {len(raw_tx)} bytes")

    # Segwit serialization puts a 0x00 marker and 0x01 flag after the version
    has_witness = raw_tx[4:6] == b"\x00\x01"
    vin_start = 6 if has_witness else 4

    # Inputs: outpoint (36), script, sequence (4)
    input_count, vout_start = _skip_items(raw_tx, vin_start, 36, 4)
    # Outputs: value (8), script
    _, vout_end = _skip_items(raw_tx, vout_start, 8)

    offset = vout_end
    if has_witness:
        for _ in range(input_count):
            stack_items, offset = parse_varint(raw_tx, offset)
            for _ in range(stack_items):
                item_length, offset = parse_varint(raw_tx, offset)
                offset += item_length

    if offset + 4 != len(raw_tx):
        raise ValueError(
            f"Unexpected transaction length: parsed {offset + 4}, got {len(raw_tx)}"
        )

    return ParsedTransaction(
        version=raw_tx[:4].hex(),
        tx_in_vector=raw_tx[vin_start:vout_start].hex(),
        tx_out_vector=raw_tx[vout_start:vout_end].hex(),
        locktime=raw_tx[offset:].hex(),
    )


def compute_txid(parsed: ParsedTransaction) -> str:
    """Display-format txid of a parsed (witness-stripped) transaction."""
    stripped = bytes.fromhex(
        parsed.version + parsed.tx_in_vector + parsed.tx_out_vector + parsed.locktime
    )
    return sha256d(stripped)[::-1].hex()


class ConstantsSource(Protocol):
    """System parameters needed for fee estimation."""

    async def get_minimum_redemption_fee(self) -> int: ...


class BitcoinClient(Protocol):
    """Bitcoin chain operations consumed by the deposit orchestrator."""

    async def find_transaction(
        self, address: str, expected_value: int
    ) -> Optional[FoundTransaction]: ...

    async def find_or_wait_for(self, address: str, expected_value: int) -> FoundTransaction: ...

    async def wait_for_confirmations(
        self, transaction: FoundTransaction, confirmations: int
    ) -> None: ...

    async def check_for_confirmations(
        self, transaction: FoundTransaction, confirmations: int
    ) -> bool: ...

    async def estimate_transaction_fee(self, constants: ConstantsSource) -> int: ...

    async def get_spv_proof(self, transaction_id: str, confirmations: int) -> SPVProofBundle: ...

    def output_script_from_address(self, address: str) -> Optional[bytes]: ...

    def public_key_point_to_p2wpkh_address(self, x: bytes, y: bytes, network: str) -> str: ...


class EsploraBitcoinClient:
    """
    Async client for esplora-compatible Bitcoin APIs.

    Waits are implemented by polling at ``poll_interval`` seconds.
    """

    def __init__(
        self,
        base_url: str = "https://blockstream.info/testnet/api",
        poll_interval: float = 30.0,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval
        self.client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_profile(
        cls, profile: BitcoinServerProfile, poll_interval: float = 30.0
    ) -> "EsploraBitcoinClient":
        """Build a client from a server profile (ssl -> https, tcp -> http)."""
        if profile.protocol == "wss":
            raise ConfigurationError(
                f"Profile {profile.server}:{profile.port} uses wss, which the "
                f"esplora client does not support"
            )
        scheme = "https" if profile.protocol == "ssl" else "http"
        return cls(f"{scheme}://{profile.server}:{profile.port}", poll_interval=poll_interval)

    async def close(self) -> None:
        await self.client.aclose()

    async def _get(self, path: str) -> httpx.Response:
        response = await self.client.get(f"{self.base_url}{path}")
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise BitcoinClientError(e.response.status_code, e.response.text) from e
        return response

    async def _get_json(self, path: str) -> Any:
        return (await self._get(path)).json()

    async def _get_text(self, path: str) -> str:
        return (await self._get(path)).text.strip()

    async def get_tip_height(self) -> int:
        return int(await self._get_text("/blocks/tip/height"))

    async def get_address_txs(self, address: str) -> list[dict]:
        """
        Get transactions for an address, following chain pagination.

        esplora returns mempool transactions first, then confirmed ones in
        pages; `/txs/chain/<last_seen_txid>` continues the history.
        """
        base = f"/address/{address}/txs"
        txs: list[dict] = []
        cursor_txid: Optional[str] = None
        seen_cursors: set[str] = set()

        while True:
            if cursor_txid is None:
                path = base
            else:
                if cursor_txid in seen_cursors:
                    logger.warning("address_txs_cursor_loop", address=address, cursor_txid=cursor_txid)
                    break
                seen_cursors.add(cursor_txid)
                path = f"{base}/chain/{cursor_txid}"

            page = await self._get_json(path)
            if not page:
                break

            txs.extend(page)

            confirmed = [tx for tx in page if tx.get("status", {}).get("confirmed")]
            if len(confirmed) < ESPLORA_PAGE_SIZE:
                break

            cursor_txid = confirmed[-1].get("txid")
            if not cursor_txid:
                break

        return txs

    async def find_transaction(
        self, address: str, expected_value: int
    ) -> Optional[FoundTransaction]:
        """Find an output paying exactly ``expected_value`` sats to ``address``."""
        for tx in await self.get_address_txs(address):
            for position, output in enumerate(tx.get("vout", [])):
                if output.get("scriptpubkey_address") != address:
                    continue
                if int(output.get("value", -1)) != int(expected_value):
                    continue
                return FoundTransaction(
                    transaction_id=tx["txid"],
                    output_position=position,
                    value=int(output["value"]),
                )
        return None

    async def find_or_wait_for(self, address: str, expected_value: int) -> FoundTransaction:
        """Find a matching transaction, polling until one appears."""
        while True:
            found = await self.find_transaction(address, expected_value)
            if found is not None:
                logger.info(
                    "funding_transaction_found",
                    address=address,
                    txid=found.transaction_id,
                    vout=found.output_position,
                )
                return found
            logger.debug("waiting_for_funding_transaction", address=address, value=expected_value)
            await asyncio.sleep(self.poll_interval)

    async def get_confirmations(self, transaction_id: str) -> int:
        status = await self._get_json(f"/tx/{transaction_id}/status")
        if not status.get("confirmed"):
            return 0
        tip = await self.get_tip_height()
        return tip - int(status["block_height"]) + 1

    async def check_for_confirmations(
        self, transaction: FoundTransaction, confirmations: int
    ) -> bool:
        return await self.get_confirmations(transaction.transaction_id) >= confirmations

    async def wait_for_confirmations(
        self, transaction: FoundTransaction, confirmations: int
    ) -> None:
        while True:
            current = await self.get_confirmations(transaction.transaction_id)
            if current >= confirmations:
                return
            logger.debug(
                "waiting_for_confirmations",
                txid=transaction.transaction_id,
                confirmations=current,
                required=confirmations,
            )
            await asyncio.sleep(self.poll_interval)

    async def estimate_transaction_fee(self, constants: ConstantsSource) -> int:
        """Fee for the redemption transaction: the system's minimum redemption fee."""
        return await constants.get_minimum_redemption_fee()

    async def get_headers(self, start_height: int, count: int) -> list[bytes]:
        headers = []
        for height in range(start_height, start_height + count):
            block_hash = await self._get_text(f"/block-height/{height}")
            header_hex = await self._get_text(f"/block/{block_hash}/header")
            headers.append(bytes.fromhex(header_hex))
        return headers

    async def get_spv_proof(self, transaction_id: str, confirmations: int) -> SPVProofBundle:
        """
        Build SPV proof material for a transaction.

        Headers run from the transaction's block through ``confirmations``
        blocks; the merkle proof is checked against the first header.
        """
        raw_tx = bytes.fromhex(await self._get_text(f"/tx/{transaction_id}/hex"))
        parsed = parse_transaction(raw_tx)
        if compute_txid(parsed) != transaction_id.lower():
            raise ProofError(
                f"TXID mismatch: computed {compute_txid(parsed)}, expected {transaction_id}"
            )

        merkle = await self._get_json(f"/tx/{transaction_id}/merkle-proof")
        block_height = int(merkle["block_height"])
        position = int(merkle["pos"])
        siblings = [hex_le_to_bytes(h) for h in merkle["merkle"]]

        tip = await self.get_tip_height()
        available = tip - block_height + 1
        if available < confirmations:
            raise ProofError(
                f"Insufficient confirmations for {transaction_id}: "
                f"{available} < {confirmations}"
            )

        headers = await self.get_headers(block_height, confirmations)
        merkle_root = header_merkle_root(headers[0])
        if not verify_merkle_proof(hex_le_to_bytes(transaction_id), merkle_root, siblings, position):
            raise ProofError(f"Merkle proof for {transaction_id} does not match block header")

        return SPVProofBundle(
            parsed_transaction=parsed,
            merkle_proof=b"".join(siblings).hex(),
            chain_headers=b"".join(headers).hex(),
            tx_in_block_index=position,
        )

    def output_script_from_address(self, address: str) -> Optional[bytes]:
        return btc_address.output_script_from_address(address)

    def public_key_point_to_p2wpkh_address(self, x: bytes, y: bytes, network: str) -> str:
        return btc_address.public_key_point_to_p2wpkh_address(x, y, network)
