"""
ID Generator Utility

Generates prefixed alphanumeric IDs for runs and checkpoint rows.
Uses cryptographically secure random generation.
"""

import secrets
import string


def generate_id(prefix: str, length: int = 10) -> str:
    """
    Generate a prefixed alphanumeric ID.

    Args:
        prefix: The prefix for the ID (e.g., "THR_", "CKP_")
        length: Length of the random part (default 10)

    Returns:
        A string like "THR_7xK9mN2pQ4"
    """
    chars = string.ascii_letters + string.digits
    random_part = ''.join(secrets.choice(chars) for _ in range(length))
    return f"{prefix}{random_part}"


def generate_thread_id() -> str:
    return generate_id("THR_")


def generate_checkpoint_id() -> str:
    return generate_id("CKP_", 14)
