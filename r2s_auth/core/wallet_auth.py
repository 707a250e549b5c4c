"""
EVM Wallet Authentication Utilities

This module handles the wallet-specific cryptographic operations for sign-in.
Wallets sign the challenge message with ``personal_sign`` (EIP-191), so the
backend recovers the signer from the signature instead of receiving a public key.

Authentication Flow:
1. Backend generates a random nonce -> generate_nonce()
2. Frontend signs the challenge message with the wallet (personal_sign)
3. Frontend sends: address, message, signature
4. Backend verifies: verify_signature()
   - Hashes the message with the EIP-191 personal-message prefix
   - Recovers the secp256k1 public key from the (r, s, v) signature
   - Derives the address and compares it with the claimed address

The signature verification uses:
- eth-keys for secp256k1 public key recovery
- eth-utils for keccak-256 and address helpers
"""

import binascii
import secrets

from eth_keys import keys
from eth_keys.exceptions import BadSignature
from eth_keys.exceptions import ValidationError as KeyValidationError
from eth_utils import is_hex_address, keccak, to_normalized_address

from r2s_auth.core.errors import InvalidSignature


NONCE_NUM_BYTES = 16  # 16 bytes = 32 hex characters
SIGNATURE_LENGTH = 65  # r (32) + s (32) + v (1)
PERSONAL_MESSAGE_PREFIX = b"\x19Ethereum Signed Message:\n"


def generate_nonce(num_bytes: int = NONCE_NUM_BYTES) -> str:
    """
    Generate a cryptographically secure random nonce for wallet authentication.

    Returns:
        Hex-encoded random string, 32 characters for the default size
    """
    if num_bytes <= 0:
        num_bytes = NONCE_NUM_BYTES
    return secrets.token_hex(num_bytes)


def is_valid_address(address: str) -> bool:
    """True for a 20-byte hex address, with or without ``0x``, any letter case."""
    if not isinstance(address, str):
        return False
    return is_hex_address(address.strip())


def normalize_address(address: str) -> str:
    """Canonical storage form: ``0x`` prefixed lower-case hex."""
    return to_normalized_address(address.strip())


def personal_message_hash(message: str) -> bytes:
    """keccak256("\\x19Ethereum Signed Message:\\n" + len(message) + message)"""
    message_bytes = message.encode("utf-8")
    return keccak(PERSONAL_MESSAGE_PREFIX + str(len(message_bytes)).encode() + message_bytes)


def _decode_signature(signature: str) -> bytes:
    """
    Helper: Decode a hex signature (``0x`` optional) and normalise v to 0/1.

    Wallets emit v as 27/28; eth-keys expects the raw recovery id.
    """
    value = (signature or "").strip()
    if value[:2] in ("0x", "0X"):
        value = value[2:]
    try:
        raw = binascii.unhexlify(value.encode())
    except (binascii.Error, ValueError):
        raise InvalidSignature("Signature must be hex encoded")

    if len(raw) != SIGNATURE_LENGTH:
        raise InvalidSignature("Invalid signature length")

    v = raw[64]
    if v in (27, 28):
        v -= 27
    if v not in (0, 1):
        raise InvalidSignature("Invalid signature recovery id")
    return raw[:64] + bytes([v])


def recover_address(message: str, signature: str) -> str:
    """
    Recover the signer address of ``message``.

    Returns:
        Normalized (lower-case) address of the signer

    Raises:
        InvalidSignature: malformed encoding, wrong length or recovery failure
    """
    signature_bytes = _decode_signature(signature)
    message_hash = personal_message_hash(message)
    try:
        sig = keys.Signature(signature_bytes=signature_bytes)
        public_key = sig.recover_public_key_from_msg_hash(message_hash)
    except (BadSignature, KeyValidationError, ValueError):
        raise InvalidSignature("Failed to recover public key")
    return to_normalized_address(public_key.to_checksum_address())


def verify_signature(message: str, signature: str, claimed_address: str) -> bool:
    """
    Verify that ``signature`` over ``message`` was produced by ``claimed_address``.

    Args:
        message: The exact plaintext the wallet signed
        signature: 65-byte (r, s, v) signature, hex encoded
        claimed_address: Address the caller says signed the message

    Returns:
        True if the recovered address equals the claimed address (case-insensitive),
        False otherwise. The caller reports False as an invalid signature.

    Raises:
        InvalidSignature: when the signature cannot be decoded or recovered
    """
    recovered = recover_address(message, signature)
    if not is_valid_address(claimed_address):
        return False
    return recovered == normalize_address(claimed_address)
