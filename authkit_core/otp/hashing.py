"""
OTP Hashing Utilities
=====================
Secure code generation and salted hashing for one-time codes.
"""

import secrets
import hashlib
import hmac


def generate_code(length: int = 6) -> str:
    """
    Generate a numeric one-time code.

    Drawn uniformly from ``[10^(length-1), 10^length - 1]`` with a CSPRNG, so
    the code never has a leading zero and always has exactly ``length`` digits.

    Args:
        length: Number of digits

    Returns:
        Code string
    """
    if length < 1:
        raise ValueError("Code length must be at least 1")

    low = 10 ** (length - 1)
    high = 10 ** length - 1
    return str(low + secrets.randbelow(high - low + 1))


def generate_salt() -> str:
    """Generate a random salt for code hashing."""
    return secrets.token_hex(16)


def hash_code(code: str, salt: str) -> str:
    """
    Hash a code with salt using SHA-256.

    Args:
        code: Plain code
        salt: Per-challenge salt

    Returns:
        Hex digest
    """
    return hashlib.sha256(f"{salt}:{code}".encode()).hexdigest()


def verify_code_hash(code: str, salt: str, stored_hash: str) -> bool:
    """
    Verify a code against its stored hash.

    Uses constant-time comparison to prevent timing attacks.
    """
    return hmac.compare_digest(hash_code(code, salt), stored_hash)
