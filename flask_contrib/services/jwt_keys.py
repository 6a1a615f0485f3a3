# SPDX-License-Identifier: Apache-2.0

"""
Signing key helpers for the JWT middleware.

Provides key getters (static secret, PEM public key, JWKS endpoint), RSA
key pair generation for development and a token signing helper.
"""

import os
import jwt
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
import logging

logger = logging.getLogger(__name__)

# (token header, unverified claims) -> verification key
KeyGetter = Callable[[Dict[str, Any], Dict[str, Any]], Any]


def generate_dev_key_pair() -> Tuple[str, str]:
    """Generate an RSA key pair (PEM private, PEM public) for development use."""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048
    )

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    ).decode('utf-8')

    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    ).decode('utf-8')

    return private_pem, public_pem


def static_key(key: Any) -> KeyGetter:
    """Key getter always returning the same secret or public key."""
    def getter(header: Dict[str, Any], claims: Dict[str, Any]) -> Any:
        return key
    return getter


def key_from_env(variable: str = 'JWT_SECRET') -> KeyGetter:
    """
    Key getter reading the key from an environment variable.

    Raises:
        RuntimeError: If the variable is not set
    """
    key = os.getenv(variable)
    if not key:
        raise RuntimeError(f"{variable} is not set")
    return static_key(key)


def jwks_key(jwks_url: str, cache_keys: bool = True) -> KeyGetter:
    """
    Key getter resolving the signing key by ``kid`` from a JWKS endpoint.

    Args:
        jwks_url: URL of the JSON Web Key Set
        cache_keys: Whether PyJWKClient should cache fetched keys
    """
    client = jwt.PyJWKClient(jwks_url, cache_keys=cache_keys)

    def getter(header: Dict[str, Any], claims: Dict[str, Any]) -> Any:
        kid = header.get('kid')
        if not kid:
            raise jwt.InvalidTokenError("Token header has no kid")
        return client.get_signing_key(kid).key

    return getter


def sign_token(
    claims: Dict[str, Any],
    key: Any,
    algorithm: str = 'HS256',
    expires_in: Optional[timedelta] = None,
    headers: Optional[Dict[str, Any]] = None
) -> str:
    """
    Sign a JWT.

    Args:
        claims: Token payload
        key: Secret (HMAC) or private key (RSA/EC)
        algorithm: Signing algorithm
        expires_in: Adds ``iat`` and ``exp`` claims when given
        headers: Extra JOSE headers (e.g. ``kid``)

    Returns:
        Encoded token
    """
    payload = dict(claims)
    if expires_in is not None:
        now = datetime.now(timezone.utc)
        payload.setdefault('iat', now)
        payload['exp'] = now + expires_in

    return jwt.encode(payload, key, algorithm=algorithm, headers=headers)
