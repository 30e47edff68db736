"""
Bitcoin address handling for deposits.

Funding addresses are P2WPKH, derived from the signing group's public key
point. Redeemer addresses may be any standard type:
- segwit v0 (bech32): bc1q.../tb1q.../bcrt1q...
- P2PKH / P2SH (base58check): 1.../3... on mainnet, m.../n.../2... on testnet
"""

import hashlib
from typing import Iterable, Optional, Tuple

from coincurve import PublicKey

BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
BECH32_GENERATOR = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)
BECH32_CHECKSUM_LENGTH = 6

# Human-readable parts per network tier
BECH32_HRP = {
    "main": "bc",
    "testnet": "tb",
    "regtest": "bcrt",
}

BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"

# Base58Check version bytes, mainnet then testnet
P2PKH_VERSIONS = (0x00, 0x6F)
P2SH_VERSIONS = (0x05, 0xC4)


def bech32_polymod(values: Iterable[int]) -> int:
    """BCH checksum over 5-bit values."""
    checksum = 1
    for value in values:
        top = checksum >> 25
        checksum = (checksum & 0x1FFFFFF) << 5 ^ value
        for bit, generator in enumerate(BECH32_GENERATOR):
            if top >> bit & 1:
                checksum ^= generator
    return checksum


def bech32_hrp_expand(hrp: str) -> list[int]:
    high = [ord(char) >> 5 for char in hrp]
    low = [ord(char) & 0x1F for char in hrp]
    return high + [0] + low


def bech32_verify_checksum(hrp: str, data: list[int]) -> bool:
    return bech32_polymod(bech32_hrp_expand(hrp) + data) == 1


def bech32_create_checksum(hrp: str, data: list[int]) -> list[int]:
    """Compute the six checksum characters for hrp and data."""
    polymod = bech32_polymod(bech32_hrp_expand(hrp) + data + [0] * BECH32_CHECKSUM_LENGTH) ^ 1
    return [
        polymod >> 5 * (BECH32_CHECKSUM_LENGTH - 1 - i) & 0x1F
        for i in range(BECH32_CHECKSUM_LENGTH)
    ]


def convert_bits(data: Iterable[int], from_bits: int, to_bits: int, pad: bool) -> Optional[list[int]]:
    """
    Regroup a sequence of ``from_bits``-wide integers into ``to_bits``-wide ones.

    Returns None if an input is out of range or, without padding, if
    leftover bits are non-zero.
    """
    buffer = 0
    buffered = 0
    out_mask = (1 << to_bits) - 1
    out: list[int] = []

    for value in data:
        if value < 0 or value >> from_bits:
            return None
        buffer = (buffer << from_bits | value) & ((1 << (from_bits + to_bits - 1)) - 1)
        buffered += from_bits
        while buffered >= to_bits:
            buffered -= to_bits
            out.append(buffer >> buffered & out_mask)

    if pad:
        if buffered:
            out.append(buffer << (to_bits - buffered) & out_mask)
    elif buffered >= from_bits or buffer << (to_bits - buffered) & out_mask:
        return None
    return out


def bech32_decode(address: str) -> Optional[Tuple[str, bytes]]:
    """
    Decode a version 0 segwit address.

    Returns:
        (hrp, data) where data is the witness version byte followed by
        the witness program, or None if invalid
    """
    if address != address.lower() and address != address.upper():
        return None

    hrp, separator, encoded = address.lower().rpartition("1")
    if not separator or not hrp or len(encoded) < BECH32_CHECKSUM_LENGTH + 1:
        return None
    if any(char not in BECH32_CHARSET for char in encoded):
        return None

    values = [BECH32_CHARSET.find(char) for char in encoded]
    if not bech32_verify_checksum(hrp, values):
        return None

    witness_version, five_bit = values[0], values[1:-BECH32_CHECKSUM_LENGTH]
    program = convert_bits(five_bit, 5, 8, False)

    # Only version 0 programs are bech32 (not bech32m) encoded
    if program is None or witness_version != 0 or len(program) not in (20, 32):
        return None
    return hrp, bytes([witness_version, *program])


def bech32_encode_segwit(hrp: str, witness_version: int, program: bytes) -> str:
    """Encode a witness program as a bech32 address."""
    five_bit = convert_bits(program, 8, 5, True)
    if five_bit is None:
        raise ValueError("Witness program could not be converted")
    data = [witness_version, *five_bit]
    encoded = "".join(BECH32_CHARSET[value] for value in data + bech32_create_checksum(hrp, data))
    return f"{hrp}1{encoded}"


def base58_decode(encoded: str) -> Optional[bytes]:
    """Decode a Base58 string, or return None on a character outside the alphabet."""
    if any(char not in BASE58_ALPHABET for char in encoded):
        return None

    number = 0
    for char in encoded:
        number = number * 58 + BASE58_ALPHABET.find(char)

    body = number.to_bytes((number.bit_length() + 7) // 8, "big")
    # Each leading '1' stands for a zero byte
    zeros = len(encoded) - len(encoded.lstrip("1"))
    return bytes(zeros) + body


def base58check_decode(encoded: str) -> Optional[Tuple[int, bytes]]:
    """
    Decode a Base58Check string.

    Returns:
        (version, payload) or None if invalid
    """
    raw = base58_decode(encoded)
    if raw is None or len(raw) < 5:
        return None

    versioned, checksum = raw[:-4], raw[-4:]
    if hashlib.sha256(hashlib.sha256(versioned).digest()).digest()[:4] != checksum:
        return None
    return versioned[0], versioned[1:]


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))."""
    return hashlib.new("ripemd160", hashlib.sha256(data).digest()).digest()


def output_script_from_address(address: str) -> Optional[bytes]:
    """
    Build the scriptPubKey paying to a Bitcoin address.

    Returns:
        The raw output script, or None if the address is invalid or of an
        unsupported type
    """
    segwit_prefixes = tuple(f"{hrp}1" for hrp in BECH32_HRP.values())
    if address.lower().startswith(segwit_prefixes):
        decoded = bech32_decode(address)
        if decoded is None or decoded[0] not in BECH32_HRP.values():
            return None

        program = decoded[1][1:]
        # OP_0 <push program>
        return bytes([0x00, len(program)]) + program

    decoded_base58 = base58check_decode(address)
    if decoded_base58 is None:
        return None

    version, key_hash = decoded_base58
    if len(key_hash) != 20:
        return None

    if version in P2PKH_VERSIONS:
        # OP_DUP OP_HASH160 <20 bytes> OP_EQUALVERIFY OP_CHECKSIG
        return b"\x76\xa9\x14" + key_hash + b"\x88\xac"
    if version in P2SH_VERSIONS:
        # OP_HASH160 <20 bytes> OP_EQUAL
        return b"\xa9\x14" + key_hash + b"\x87"
    return None


def compressed_public_key(x: bytes, y: bytes) -> bytes:
    """
    Compress a secp256k1 point given as 32-byte big-endian coordinates.

    Raises ValueError if the point is not on the curve.
    """
    point = PublicKey.from_point(int.from_bytes(x, "big"), int.from_bytes(y, "big"))
    return point.format(compressed=True)


def public_key_point_to_p2wpkh_address(x: bytes, y: bytes, network: str) -> str:
    """Derive the P2WPKH address for a public key point on a network tier."""
    try:
        hrp = BECH32_HRP[network]
    except KeyError:
        raise ValueError(f"Unknown Bitcoin network {network}")

    return bech32_encode_segwit(hrp, 0, hash160(compressed_public_key(x, y)))


def address_matches_network(address: str, network: str) -> bool:
    """
    Whether ``address`` belongs to the network tier ``network``.

    Regtest shares testnet's base58 version bytes, so legacy addresses of
    either tier match both.
    """
    if network not in BECH32_HRP:
        raise ValueError(f"Unknown Bitcoin network {network}")

    decoded = bech32_decode(address)
    if decoded is not None:
        return decoded[0] == BECH32_HRP[network]

    decoded_base58 = base58check_decode(address)
    if decoded_base58 is None:
        return False

    version = decoded_base58[0]
    # Mainnet versions are first in each pair
    mainnet = version in (P2PKH_VERSIONS[0], P2SH_VERSIONS[0])
    return mainnet == (network == "main")
