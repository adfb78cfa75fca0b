# soc_agent/security/signing.py
"""
Event Signing - RSA-SHA256 signatures over serialized events
"""

import base64
import json
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from soc_agent.core.exceptions import ConfigError


def canonical_json(payload: Dict[str, Any]) -> bytes:
    """Stable serialization used as the signed message"""
    return json.dumps(payload, sort_keys=True, separators=(',', ':'), default=str).encode('utf-8')


class EventSigner:
    """Signs event payloads with a PEM private key"""

    def __init__(self, private_key: rsa.RSAPrivateKey):
        self.private_key = private_key

    @classmethod
    def from_file(cls, key_path: str, password: Optional[bytes] = None) -> 'EventSigner':
        try:
            with open(key_path, 'rb') as f:
                key = serialization.load_pem_private_key(f.read(), password=password)
        except (OSError, ValueError, TypeError) as e:
            raise ConfigError(f"Cannot load private key {key_path}: {e}") from e
        if not isinstance(key, rsa.RSAPrivateKey):
            raise ConfigError(f"Private key {key_path} is not an RSA key")
        return cls(key)

    def sign(self, payload: Dict[str, Any]) -> str:
        """Base64 RSA PKCS#1 v1.5 / SHA-256 signature of ``payload``"""
        signature = self.private_key.sign(canonical_json(payload), padding.PKCS1v15(), hashes.SHA256())
        return base64.b64encode(signature).decode('ascii')


def verify_signature(payload: Dict[str, Any], signature: str, public_key: rsa.RSAPublicKey) -> bool:
    """Check a signature produced by EventSigner"""
    try:
        public_key.verify(base64.b64decode(signature), canonical_json(payload),
                          padding.PKCS1v15(), hashes.SHA256())
        return True
    except (InvalidSignature, ValueError):
        return False


def generate_key_pair(key_size: int = 2048) -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=key_size)


def private_key_to_pem(private_key: rsa.RSAPrivateKey) -> bytes:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
