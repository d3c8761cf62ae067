"""Detached signature verification over the exact manifest bytes.

Signatures are produced out of band (e.g. ``openssl dgst -sha256 -sign``).
Verification is done in-process with ``cryptography``; no external binaries.
"""

from __future__ import annotations

import logging
from pathlib import Path

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa

from .errors import SignatureInvalid

logger = logging.getLogger(__name__)


def load_public_key(public_key_pem: bytes):
    try:
        return serialization.load_pem_public_key(public_key_pem)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise SignatureInvalid(f"Could not load public key: {e}") from e


def verify_manifest_signature(manifest_bytes: bytes, signature: bytes, public_key_pem: bytes) -> None:
    if not signature:
        raise SignatureInvalid("Signature is empty")

    pub = load_public_key(public_key_pem)
    try:
        if isinstance(pub, rsa.RSAPublicKey):
            pub.verify(signature, manifest_bytes, padding.PKCS1v15(), hashes.SHA256())
        elif isinstance(pub, ec.EllipticCurvePublicKey):
            pub.verify(signature, manifest_bytes, ec.ECDSA(hashes.SHA256()))
        elif isinstance(pub, ed25519.Ed25519PublicKey):
            pub.verify(signature, manifest_bytes)
        else:
            raise SignatureInvalid(f"Unsupported signing key type: {type(pub).__name__}")
    except InvalidSignature as e:
        raise SignatureInvalid("Manifest signature verification failed") from e
    logger.info("Manifest signature is valid (%s)", type(pub).__name__)


def verify_signature_files(manifest_bytes: bytes, signature_path: str | Path, public_key_path: str | Path) -> None:
    try:
        signature = Path(signature_path).read_bytes()
    except OSError as e:
        raise SignatureInvalid(f"Could not read signature file {signature_path}: {e}") from e
    try:
        public_key_pem = Path(public_key_path).read_bytes()
    except OSError as e:
        raise SignatureInvalid(f"Could not read public key file {public_key_path}: {e}") from e
    verify_manifest_signature(manifest_bytes, signature, public_key_pem)
