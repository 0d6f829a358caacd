"""
Key-pair JWT issuing for the Snowflake SQL API.

The issuer claim embeds the SHA-256 fingerprint of the user's public key:

    iss = <ACCOUNT>.<USER>.SHA256:<base64 sha256 of DER public key>
    sub = <ACCOUNT>.<USER>
"""

import base64
import datetime
import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import jwt
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat, load_pem_private_key

from .exceptions import InvalidCredentialError

TOKEN_LIFETIME = datetime.timedelta(minutes=59)

PrivateKey = Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey]


def load_private_key(pem_data: Union[str, bytes], passphrase: Optional[str] = None) -> PrivateKey:
    if isinstance(pem_data, str):
        pem_data = pem_data.encode("utf-8")
    passphrase_bytes = passphrase.encode("utf-8") if passphrase else None
    try:
        private_key = load_pem_private_key(pem_data, passphrase_bytes)
    except (ValueError, TypeError) as err:
        raise InvalidCredentialError(f"Could not load private key: {err}") from err

    if not isinstance(private_key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise InvalidCredentialError(f"Unsupported private key type: {type(private_key).__name__}")
    return private_key


def read_private_key(path: Union[str, Path], passphrase: Optional[str] = None) -> PrivateKey:
    path = Path(path)
    if not path.exists():
        raise InvalidCredentialError(f"Private key file not found: {path}")
    return load_private_key(path.read_bytes(), passphrase)


def public_key_fingerprint(private_key: PrivateKey) -> str:
    public_key_raw = private_key.public_key().public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)
    sha256_hash = hashlib.sha256(public_key_raw).digest()
    return base64.b64encode(sha256_hash).decode("utf-8")


def _strip_fingerprint_prefix(fingerprint: str) -> str:
    if fingerprint.upper().startswith("SHA256:"):
        return fingerprint[len("SHA256:") :]
    return fingerprint


@dataclass(frozen=True)
class Credential:
    account_identifier: str
    user_identifier: str
    private_key: PrivateKey
    public_key_fingerprint: Optional[str] = None

    def __post_init__(self):
        if not self.account_identifier:
            raise InvalidCredentialError("account identifier is required")
        if not self.user_identifier:
            raise InvalidCredentialError("user identifier is required")
        if self.public_key_fingerprint:
            fingerprint = _strip_fingerprint_prefix(self.public_key_fingerprint)
        else:
            fingerprint = public_key_fingerprint(self.private_key)
        object.__setattr__(self, "public_key_fingerprint", fingerprint)

    @property
    def qualified_username(self) -> str:
        return f"{self.account_identifier.upper()}.{self.user_identifier.upper()}"

    @property
    def issuer(self) -> str:
        return f"{self.qualified_username}.SHA256:{self.public_key_fingerprint}"

    @property
    def subject(self) -> str:
        return self.qualified_username


def issue_token(
    credential: Credential,
    now: Optional[datetime.datetime] = None,
    lifetime: datetime.timedelta = TOKEN_LIFETIME,
) -> str:
    if not isinstance(credential.private_key, rsa.RSAPrivateKey):
        raise InvalidCredentialError("Only RSA private keys can sign Snowflake key-pair tokens")

    now = now or datetime.datetime.now(datetime.timezone.utc)
    payload = {
        "iss": credential.issuer,
        "sub": credential.subject,
        "iat": now,
        "exp": now + lifetime,
    }
    token = jwt.encode(payload, credential.private_key, algorithm="RS256")
    if isinstance(token, bytes):
        token = token.decode("utf-8")
    return token
