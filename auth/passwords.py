"""
auth/passwords.py -- Password hashing, verification and policy.

bcrypt directly (no passlib wrapper). The work factor is fixed per
PasswordHasher instance and comes from configuration (BCRYPT_ROUNDS); tests
use the minimum of 4 rounds to stay fast.

bcrypt only looks at the first 72 bytes of its input, and bcrypt 5 rejects
longer input outright. The policy therefore caps passwords at 72 UTF-8 bytes
instead of letting two different long passwords share a hash.

Plaintext passwords are never logged by anything in this module.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import re

import bcrypt

from auth.errors import ValidationError

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_BYTES = 72

_LOWER = re.compile(r"[a-z]")
_UPPER = re.compile(r"[A-Z]")
_DIGIT = re.compile(r"\d")
_SYMBOL = re.compile(r"[^A-Za-z0-9]")


def validate_password(plain: str) -> None:
    """Raise ValidationError unless the password satisfies the policy.

    Policy: 8 characters to 72 UTF-8 bytes, with at least one lower-case
    letter, one upper-case letter, one digit and one symbol.
    """
    if len(plain) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.")
    if len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError(f"Password must not exceed {MAX_PASSWORD_BYTES} bytes.")
    missing = [
        label
        for label, pattern in (
            ("a lowercase letter", _LOWER),
            ("an uppercase letter", _UPPER),
            ("a number", _DIGIT),
            ("a special character", _SYMBOL),
        )
        if not pattern.search(plain)
    ]
    if missing:
        raise ValidationError("Password must contain " + ", ".join(missing) + ".")


class PasswordHasher:
    """Salted bcrypt hashing at a fixed work factor.

    dummy_hash is computed once per instance, at the same work factor, so
    that a login for an unknown account can still spend one full bcrypt
    check and take as long as a login with a wrong password.
    """

    def __init__(self, rounds: int = 12) -> None:
        if not 4 <= rounds <= 31:
            raise ValueError("bcrypt rounds must be between 4 and 31")
        self.rounds = rounds
        self.dummy_hash = self.hash("authgate-timing-equalizer")

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash (salt included) of the plaintext password."""
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if plain matches hashed. bcrypt compares in constant time.

        Input bcrypt refuses (over-long passwords, malformed hashes) is a
        mismatch, not an error.
        """
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            return False

    def burn(self, plain: str) -> None:
        """Spend one verification against the dummy hash and discard the result."""
        self.verify(plain, self.dummy_hash)
