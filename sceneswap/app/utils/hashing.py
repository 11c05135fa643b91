"""
One-way digests for ledger keys.

The quota store must never hold personal data. Identities (e-mail
addresses) are reduced to a SHA-256 hex digest before any key is built.

IMPORTANT DESIGN RULE:
- Normalization (trim, lower-case) happens at token issuance, not here.
- This module hashes the identity string exactly as received.
"""

import hashlib


def identity_digest(identity: str) -> str:
    """
    Compute the deterministic digest of an identity.

    Returns:
        Lower-case SHA-256 hex digest of the UTF-8 encoded identity.
    """
    if not isinstance(identity, str):
        raise TypeError(
            "identity_digest expects a string identity, "
            f"got {type(identity).__name__}"
        )
    if not identity:
        raise ValueError("identity must not be empty")

    return hashlib.sha256(identity.encode("utf-8")).hexdigest()


def quota_key(identity: str, prefix: str = "free_count:") -> str:
    """Build the ledger key for an identity, e.g. ``free_count:3b7c...``."""
    return f"{prefix}{identity_digest(identity)}"
