"""
Encryption and display helpers for provider API keys.

Keys are encrypted with AES-256-GCM. The AES key is the SHA-256 digest of
a master secret (MEMOAI_MASTER_KEY), and each stored value is
base64(nonce || ciphertext || tag) with a fresh 12-byte nonce.
"""

import base64
import binascii
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import InvalidAPIKeyFormatError, InvalidCiphertextError, KeyTooShortError
from .types import ProviderType

MIN_MASTER_KEY_LENGTH = 16
NONCE_SIZE = 12


class KeyCrypto:
    """
    Encrypts and decrypts API keys under one master secret.

    Raises:
        KeyTooShortError: If the master secret is shorter than 16 bytes
    """

    def __init__(self, master_key: str):
        encoded = master_key.encode("utf-8")
        if len(encoded) < MIN_MASTER_KEY_LENGTH:
            raise KeyTooShortError()
        self._aead = AESGCM(hashlib.sha256(encoded).digest())

    def encrypt(self, plaintext: str) -> str:
        """Encrypt to a base64 blob. The empty string encrypts to ""."""
        if not plaintext:
            return ""
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a blob produced by encrypt(). "" decrypts to "".

        Raises:
            InvalidCiphertextError: If the blob is not base64, is truncated,
                was tampered with, or was sealed under a different key
        """
        if not ciphertext:
            return ""
        try:
            data = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidCiphertextError(f"failed to decode ciphertext: {e}") from e

        if len(data) < NONCE_SIZE:
            raise InvalidCiphertextError()

        nonce, sealed = data[:NONCE_SIZE], data[NONCE_SIZE:]
        try:
            plaintext = self._aead.decrypt(nonce, sealed, None)
        except InvalidTag as e:
            raise InvalidCiphertextError("failed to decrypt: authentication failed") from e
        return plaintext.decode("utf-8")


def mask_api_key(api_key: str) -> str:
    """Hide all but the last four characters: "sk-abc123xyz" -> "********3xyz"."""
    if not api_key:
        return ""
    if len(api_key) <= 4:
        return "*" * len(api_key)
    return "*" * (len(api_key) - 4) + api_key[-4:]


def validate_api_key_format(provider_type, api_key: str) -> None:
    """
    Sanity-check an API key before storing it.

    Raises:
        InvalidAPIKeyFormatError: If the key is empty or obviously malformed
    """
    if not api_key:
        raise InvalidAPIKeyFormatError("API key cannot be empty")

    try:
        provider_type = ProviderType(provider_type)
    except ValueError:
        provider_type = None

    if provider_type is ProviderType.OPENAI:
        if not api_key.startswith("sk-"):
            raise InvalidAPIKeyFormatError("OpenAI API key should start with 'sk-'")
        if len(api_key) < 20:
            raise InvalidAPIKeyFormatError("OpenAI API key appears too short")
    elif provider_type is ProviderType.ANTHROPIC:
        if not api_key.startswith("sk-ant-"):
            raise InvalidAPIKeyFormatError("Anthropic API key should start with 'sk-ant-'")
    elif provider_type is ProviderType.GEMINI:
        if len(api_key) < 20:
            raise InvalidAPIKeyFormatError("Google API key appears too short")
    elif provider_type is ProviderType.OLLAMA:
        return
    elif len(api_key) < 10:
        raise InvalidAPIKeyFormatError("API key appears too short")


def generate_key_id(api_key: str) -> str:
    """Short stable identifier: first 8 hex chars of the key's SHA-256."""
    if not api_key:
        return ""
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:8]
