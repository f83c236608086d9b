"""
Password hashing (salted PBKDF2-SHA256) and random token utilities
"""
import hashlib
import secrets
import hmac

PBKDF2_ITERATIONS = 260000
HASH_SCHEME = "pbkdf2_sha256"


def generate_token(length: int = 32) -> str:
    """
    Generate a cryptographically secure random token.

    Args:
        length: Number of bytes (will be hex encoded, so output is 2x length)

    Returns:
        Hex-encoded random token
    """
    return secrets.token_hex(length)


def hash_password(password: str, salt: str = None, iterations: int = PBKDF2_ITERATIONS) -> str:
    """
    Hash a password as "pbkdf2_sha256$<iterations>$<salt>$<hex digest>".

    Args:
        password: Plain text password
        salt: Optional salt (random when omitted)
        iterations: PBKDF2 work factor

    Returns:
        Encoded password hash
    """
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), iterations).hex()
    return f"{HASH_SCHEME}${iterations}${salt}${digest}"


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify a password against its stored hash using constant-time comparison.

    Returns:
        True if password matches hash, False otherwise
    """
    try:
        scheme, iterations, salt, _ = password_hash.split("$", 3)
        iterations = int(iterations)
    except (AttributeError, ValueError):
        return False

    if scheme != HASH_SCHEME:
        return False

    computed_hash = hash_password(password, salt=salt, iterations=iterations)
    return hmac.compare_digest(computed_hash, password_hash)
