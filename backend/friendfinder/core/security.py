from __future__ import annotations

import datetime as dt
import json
from dataclasses import dataclass

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import VerifyMismatchError

from friendfinder.core.settings import Settings


ACCESS_TTL_SECONDS = 60 * 60
MIN_PASSWORD_LENGTH = 8

_ALGORITHM = "HS256"

_pwd_hasher = PasswordHasher(time_cost=2, memory_cost=65536, parallelism=4)


def hash_password(password: str) -> str:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError("password_too_short")
    return _pwd_hasher.hash(password)


def verify_password(password: str, hashed_password: str) -> bool:
    try:
        return _pwd_hasher.verify(hashed_password, password)
    except VerifyMismatchError:
        return False


@dataclass(frozen=True, slots=True)
class Keyring:
    """HS256 secrets by key id; tokens are signed with `current_kid`.

    Older kids stay in the map so tokens issued before a rotation still verify.
    """

    secrets: dict[str, str]
    current_kid: str

    @classmethod
    def from_settings(cls, settings: Settings) -> "Keyring":
        if not settings.jwt_signing_keys_json:
            raise RuntimeError("FRIENDFINDER_JWT_SIGNING_KEYS_JSON is required")
        raw = json.loads(settings.jwt_signing_keys_json)
        if not isinstance(raw, dict):
            raise ValueError("FRIENDFINDER_JWT_SIGNING_KEYS_JSON must be a JSON object")
        secrets = {
            kid: secret
            for kid, secret in raw.items()
            if isinstance(kid, str) and isinstance(secret, str) and secret
        }
        if settings.jwt_kid_current not in secrets:
            raise RuntimeError("FRIENDFINDER_JWT_KID_CURRENT not found in signing key map")
        return cls(secrets=secrets, current_kid=settings.jwt_kid_current)

    def sign(self, claims: dict[str, object]) -> str:
        return jwt.encode(
            claims,
            self.secrets[self.current_kid],
            algorithm=_ALGORITHM,
            headers={"kid": self.current_kid},
        )

    def secret_for(self, token: str) -> str:
        kid = jwt.get_unverified_header(token).get("kid")
        if not isinstance(kid, str) or kid not in self.secrets:
            raise jwt.InvalidTokenError("unknown kid")
        return self.secrets[kid]


def issue_access_token(*, user_id: str, settings: Settings) -> tuple[str, int]:
    keyring = Keyring.from_settings(settings)
    now = dt.datetime.now(dt.timezone.utc)
    token = keyring.sign(
        {
            "sub": user_id,
            "typ": "access",
            "iat": int(now.timestamp()),
            "exp": int((now + dt.timedelta(seconds=ACCESS_TTL_SECONDS)).timestamp()),
        }
    )
    return token, ACCESS_TTL_SECONDS


def access_token_subject(*, token: str, settings: Settings) -> str:
    """Verify an access token and return its user id.

    Raises `jwt.ExpiredSignatureError` or `jwt.InvalidTokenError`.
    """

    keyring = Keyring.from_settings(settings)
    payload = jwt.decode(
        token,
        keyring.secret_for(token),
        algorithms=[_ALGORITHM],
        options={"require": ["exp", "iat", "sub"]},
    )
    if payload.get("typ") != "access":
        raise jwt.InvalidTokenError("wrong token type")
    sub = payload["sub"]
    if not isinstance(sub, str) or not sub:
        raise jwt.InvalidTokenError("invalid subject")
    return sub
