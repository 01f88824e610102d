# backend/app/security/crypt.py
"""
Envelope encryption for TOTP secrets at rest.

Each message gets its own key, derived from the long-lived master key:
    key      = HKDF(PBKDF2(master_key, salt, iterations), info=context)
    auth_key = HKDF(key, info=authorization_key_info)

Stored layout:
    salt (key size) || HMAC tag || IV (16 bytes) || AES-CBC ciphertext

The context is the user id, so a ciphertext copied into another user's
row fails authentication instead of decrypting.
"""
import os
from typing import Literal, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from backend.app.core.errors import DecryptionError, InvalidConfigurationError

CryptCipher = Literal["AES-128-CBC", "AES-192-CBC", "AES-256-CBC"]
KdfAlgorithm = Literal["sha256", "sha384", "sha512"]

# Key size in bytes per cipher
KEY_SIZES = {
    "AES-128-CBC": 16,
    "AES-192-CBC": 24,
    "AES-256-CBC": 32,
}

KDF_ALGORITHMS = {
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
}

# AES block size
BLOCK_SIZE = 16

DEFAULT_ITERATIONS = 100_000
DEFAULT_AUTHORIZATION_KEY_INFO = "TotpAuthorizationKey"


class Crypt:
    """
    Symmetric authenticated encryption keyed by (master key, context).

    Usage:
        crypt = Crypt("AES-256-CBC", iterations=100_000)
        blob = crypt.encrypt_by_key(secret, master_key, info=str(user_id))
        secret = crypt.decrypt_by_key(blob, master_key, info=str(user_id))
    """

    def __init__(
        self,
        cipher: str = "AES-128-CBC",
        iterations: int = DEFAULT_ITERATIONS,
        kdf_algorithm: str = "sha256",
        authorization_key_info: str = DEFAULT_AUTHORIZATION_KEY_INFO,
    ):
        if cipher not in KEY_SIZES:
            raise InvalidConfigurationError(f"Unsupported cipher '{cipher}'")
        if kdf_algorithm not in KDF_ALGORITHMS:
            raise InvalidConfigurationError(f"Unsupported KDF algorithm '{kdf_algorithm}'")
        if iterations <= 0:
            raise InvalidConfigurationError(f"iterations must be positive, got {iterations}")
        if not authorization_key_info:
            raise InvalidConfigurationError("authorization_key_info must not be empty")

        self.cipher = cipher
        self.iterations = iterations
        self.kdf_algorithm = kdf_algorithm
        self.authorization_key_info = authorization_key_info
        self.key_size = KEY_SIZES[cipher]

    def derive_key(self, master_key: Union[str, bytes], salt: bytes, info: str) -> bytes:
        """Stretch the master key with `salt`, then bind it to `info`."""
        stretched = PBKDF2HMAC(
            algorithm=self._hash(),
            length=self.key_size,
            salt=salt,
            iterations=self.iterations,
        ).derive(_to_bytes(master_key))

        return HKDF(
            algorithm=self._hash(),
            length=self.key_size,
            salt=None,
            info=info.encode("utf-8"),
        ).derive(stretched)

    def encrypt_by_key(self, data: Union[str, bytes], master_key: Union[str, bytes], info: str) -> bytes:
        salt = os.urandom(self.key_size)
        key = self.derive_key(master_key, salt, info)
        iv = os.urandom(BLOCK_SIZE)

        padder = padding.PKCS7(BLOCK_SIZE * 8).padder()
        padded = padder.update(_to_bytes(data)) + padder.finalize()

        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        tag = self._sign(key, salt + iv + ciphertext)

        return salt + tag + iv + ciphertext

    def decrypt_by_key(self, data: bytes, master_key: Union[str, bytes], info: str) -> bytes:
        """
        Authenticate and decrypt data produced by encrypt_by_key.

        Raises:
            DecryptionError: truncated data, wrong key/context or tampering
        """
        tag_size = self._hash().digest_size
        header = self.key_size + tag_size + BLOCK_SIZE
        data = bytes(data)

        if len(data) <= header or (len(data) - header) % BLOCK_SIZE:
            raise DecryptionError("Ciphertext is truncated or malformed")

        salt = data[:self.key_size]
        tag = data[self.key_size:self.key_size + tag_size]
        iv = data[self.key_size + tag_size:header]
        ciphertext = data[header:]

        key = self.derive_key(master_key, salt, info)

        verifier = hmac.HMAC(self._auth_key(key), self._hash())
        verifier.update(salt + iv + ciphertext)
        try:
            verifier.verify(tag)
        except InvalidSignature as exc:
            raise DecryptionError("Ciphertext authentication failed") from exc

        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()

        unpadder = padding.PKCS7(BLOCK_SIZE * 8).unpadder()
        try:
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError as exc:
            raise DecryptionError("Invalid padding") from exc

    def _sign(self, key: bytes, message: bytes) -> bytes:
        signer = hmac.HMAC(self._auth_key(key), self._hash())
        signer.update(message)
        return signer.finalize()

    def _auth_key(self, key: bytes) -> bytes:
        return HKDF(
            algorithm=self._hash(),
            length=self.key_size,
            salt=None,
            info=self.authorization_key_info.encode("utf-8"),
        ).derive(key)

    def _hash(self) -> hashes.HashAlgorithm:
        return KDF_ALGORITHMS[self.kdf_algorithm]()


def _to_bytes(value: Union[str, bytes]) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value
