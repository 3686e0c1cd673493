import binascii
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError
from passlib.crypto.digest import pbkdf2_hmac
from passlib.utils import consteq

from config import Settings
from errors import (
    InvalidSignature,
    MalformedCredential,
    MalformedToken,
    RandomnessUnavailable,
    TokenExpired,
)
from identifiers import INT64_MIN, UINT64_LIMIT

logger = logging.getLogger(__name__)

SALT_BYTES = 16
_DUMMY_SALT = bytes(SALT_BYTES)


# ----------------------------------------------------------------------------
# Password hashing
# ----------------------------------------------------------------------------
class CredentialHasher:
    """Salted PBKDF2-HMAC-SHA256; digest and salt are stored hex-encoded."""

    digest_name = "sha256"

    def __init__(self, rounds: int = 100_000):
        self.rounds = rounds

    @classmethod
    def from_settings(cls, settings: Settings) -> "CredentialHasher":
        return cls(rounds=settings.password_hash_rounds)

    def _derive(self, password: str, salt: bytes) -> bytes:
        return pbkdf2_hmac(self.digest_name, password.encode("utf-8"), salt, self.rounds)

    def hash(self, password: str) -> Tuple[str, str]:
        try:
            salt = secrets.token_bytes(SALT_BYTES)
        except (OSError, NotImplementedError) as exc:
            raise RandomnessUnavailable() from exc
        return self._derive(password, salt).hex(), salt.hex()

    def verify(self, password: str, digest_hex: str, salt_hex: str) -> bool:
        try:
            expected = bytes.fromhex(digest_hex)
            salt = bytes.fromhex(salt_hex)
        except (TypeError, ValueError, binascii.Error) as exc:
            raise MalformedCredential() from exc
        return consteq(self._derive(password, salt), expected)

    def verify_missing(self, password: str) -> bool:
        """Same KDF work as ``verify`` for a login that has no stored credential."""
        self._derive(password, _DUMMY_SALT)
        return False


# ----------------------------------------------------------------------------
# Bearer tokens
# ----------------------------------------------------------------------------
class TokenService:
    def __init__(self, secret: str, algorithm: str = "HS256", expires_minutes: int = 60 * 24):
        self._secret = secret
        self.algorithm = algorithm
        self.expires_delta = timedelta(minutes=expires_minutes)

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenService":
        return cls(
            settings.secret_key,
            algorithm=settings.algorithm,
            expires_minutes=settings.access_token_expire_minutes,
        )

    def __repr__(self):
        return f"TokenService(algorithm={self.algorithm!r})"

    def issue(self, subject_id: int, now: Optional[datetime] = None) -> str:
        issued_at = now or datetime.now(timezone.utc)
        to_encode = {
            "sub": str(subject_id),
            "iat": issued_at,
            "exp": issued_at + self.expires_delta,
        }
        return jwt.encode(to_encode, self._secret, algorithm=self.algorithm)

    def verify(self, token: str) -> int:
        try:
            header = jwt.get_unverified_header(token)
            jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise MalformedToken() from exc

        # rejects "none" and any algorithm other than the configured one
        if header.get("alg") != self.algorithm:
            raise InvalidSignature()

        try:
            payload = jwt.decode(token, self._secret, algorithms=[self.algorithm])
        except ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except JWTClaimsError as exc:
            raise MalformedToken() from exc
        except JWTError as exc:
            raise InvalidSignature() from exc

        subject = payload.get("sub")
        if "exp" not in payload or subject is None:
            raise MalformedToken()
        try:
            subject_id = int(subject)
        except (TypeError, ValueError) as exc:
            raise MalformedToken() from exc
        if not INT64_MIN <= subject_id < UINT64_LIMIT:
            raise MalformedToken()
        return subject_id
