from __future__ import annotations

from dataclasses import dataclass
import os
import time
from typing import Optional
import uuid

import jwt

TOKEN_AUDIENCE = "authenticated"


def _jwt_secret() -> str:
    return os.getenv("JWT_SECRET", "changeme")


def _token_ttl_s() -> int:
    return int(os.getenv("VERIFY_TOKEN_TTL_S", "3600"))


def mint_token(
    sub: str,
    org_id: Optional[str] = None,
    secret: Optional[str] = None,
    role: str = "authenticated",
) -> str:
    now = int(time.time())
    claims = {
        "sub": sub,
        "role": role,
        "aud": TOKEN_AUDIENCE,
        "iat": now,
        "exp": now + _token_ttl_s(),
    }
    if org_id is not None:
        claims["org_id"] = org_id
    return jwt.encode(claims, secret or _jwt_secret(), algorithm="HS256")


def read_token(token: str, secret: Optional[str] = None) -> dict:
    return jwt.decode(token, secret or _jwt_secret(), algorithms=["HS256"], audience=TOKEN_AUDIENCE)


@dataclass(frozen=True)
class ProbeIdentity:
    sub: str
    org_id: str
    token: str


def probe_identities(secret: Optional[str] = None) -> tuple[ProbeIdentity, ProbeIdentity]:
    """Two callers that share nothing: different user ids and different orgs."""
    identities = []
    for _ in range(2):
        sub = str(uuid.uuid4())
        org_id = str(uuid.uuid4())
        identities.append(ProbeIdentity(sub, org_id, mint_token(sub, org_id=org_id, secret=secret)))
    return identities[0], identities[1]
