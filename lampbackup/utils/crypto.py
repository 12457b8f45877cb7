"""
Archive encryption compatible with ``openssl enc -aes256 -md sha1``.

Encrypted archives can be restored without this package:

    openssl enc -aes256 -in [encrypted backup] -out decrypted_backup.tgz \\
        -pass pass:[password] -d -md sha1

Format: ``Salted__`` + 8-byte salt + AES-256-CBC ciphertext (PKCS7 padded),
key and IV derived with OpenSSL's EVP_BytesToKey using SHA-1, one round.
"""

import hashlib
import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

MAGIC = b'Salted__'
SALT_SIZE = 8
KEY_SIZE = 32
IV_SIZE = 16
CHUNK_SIZE = 1024 * 1024


class EncryptionError(Exception):
    """Raised when an archive cannot be encrypted or decrypted."""
    pass


def derive_key_and_iv(password: bytes, salt: bytes) -> tuple:
    """OpenSSL EVP_BytesToKey with SHA-1 and a single iteration."""
    derived = b''
    block = b''
    while len(derived) < KEY_SIZE + IV_SIZE:
        block = hashlib.sha1(block + password + salt).digest()
        derived += block
    return derived[:KEY_SIZE], derived[KEY_SIZE:KEY_SIZE + IV_SIZE]


class ArchiveCipher:
    """Encrypts and decrypts backup archives with a password."""

    def __init__(self, password: str):
        if not password:
            raise EncryptionError("Encryption password can not be empty")
        self._password = password.encode()

    def encrypt_file(self, source_path: str, dest_path: str) -> str:
        """
        Encrypt a file.

        Args:
            source_path: Plain archive
            dest_path: Where to write the encrypted archive

        Returns:
            dest_path

        Raises:
            EncryptionError: If the file cannot be read or written
        """
        salt = os.urandom(SALT_SIZE)
        key, iv = derive_key_and_iv(self._password, salt)
        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        padder = padding.PKCS7(algorithms.AES.block_size).padder()

        try:
            with open(source_path, 'rb') as src, open(dest_path, 'wb') as dst:
                dst.write(MAGIC + salt)
                while True:
                    chunk = src.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    dst.write(encryptor.update(padder.update(chunk)))
                dst.write(encryptor.update(padder.finalize()) + encryptor.finalize())
        except OSError as e:
            self._remove_partial(dest_path)
            raise EncryptionError(f"Failed to encrypt {source_path}: {e}")

        return dest_path

    def decrypt_file(self, source_path: str, dest_path: str) -> str:
        """
        Decrypt a file produced by encrypt_file() or by openssl.

        Raises:
            EncryptionError: On a wrong password, corrupt input or I/O failure
        """
        try:
            with open(source_path, 'rb') as src, open(dest_path, 'wb') as dst:
                header = src.read(len(MAGIC) + SALT_SIZE)
                if len(header) != len(MAGIC) + SALT_SIZE or not header.startswith(MAGIC):
                    raise EncryptionError(f"Not an encrypted backup archive: {source_path}")

                key, iv = derive_key_and_iv(self._password, header[len(MAGIC):])
                decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
                unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()

                while True:
                    chunk = src.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    dst.write(unpadder.update(decryptor.update(chunk)))
                dst.write(unpadder.update(decryptor.finalize()) + unpadder.finalize())
        except EncryptionError:
            self._remove_partial(dest_path)
            raise
        except ValueError as e:
            # Bad padding: wrong password or truncated file
            self._remove_partial(dest_path)
            raise EncryptionError(f"Failed to decrypt {source_path} (wrong password?): {e}")
        except OSError as e:
            self._remove_partial(dest_path)
            raise EncryptionError(f"Failed to decrypt {source_path}: {e}")

        return dest_path

    @staticmethod
    def _remove_partial(path: str):
        if os.path.exists(path):
            try:
                os.remove(path)
            except OSError:
                pass
