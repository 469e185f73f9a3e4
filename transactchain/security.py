"""
Credential Hashing

Credentials and deletion secrets are never stored verbatim. Each is hashed
with scrypt under its own random salt and stored as "scrypt$<n>$<salt>$<hash>";
verification recomputes the hash and compares in constant time.
"""

import hashlib
import hmac
import secrets
from typing import Optional


class SecretHasher:
    """Salted scrypt hashing with constant-time verification"""

    SCHEME = "scrypt"

    def __init__(self, n: int = 16384, r: int = 8, p: int = 1):
        self.n = n
        self.r = r
        self.p = p

    def _generate_salt(self) -> str:
        """Generate random salt for hashing"""
        return secrets.token_hex(16)

    def _derive(self, secret: str, salt: str, n: int) -> str:
        return hashlib.scrypt(
            secret.encode(),
            salt=salt.encode(),
            n=n, r=self.r, p=self.p
        ).hex()

    def hash(self, secret: str) -> str:
        salt = self._generate_salt()
        return f"{self.SCHEME}${self.n}${salt}${self._derive(secret, salt, self.n)}"

    def verify(self, secret: Optional[str], stored: Optional[str]) -> bool:
        """True only if both values are present and the secret matches"""
        if not secret or not stored:
            return False

        try:
            scheme, n, salt, expected = stored.split("$")
            n = int(n)
        except ValueError:
            return False
        if scheme != self.SCHEME:
            return False

        actual = self._derive(secret, salt, n)
        return hmac.compare_digest(actual, expected)
