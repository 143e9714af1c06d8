"""Secret decryption for configuration values.

Configuration values that start with a marker prefix (default "enc://")
are Fernet tokens; everything else is used as-is. The config loader runs
secrets such as the Redis password through decrypt_if_marked() before
they reach the rate limiter.
"""

import base64
from urllib.parse import quote, unquote, urlsplit, urlunsplit

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from quotagate.app.exceptions import InvalidConfigurationError

DEFAULT_SECRET_PREFIX = "enc://"


def _derive_dev_key() -> bytes:
    """Deterministic key for local development only."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=b"quotagate_fixed_salt_dev_only",
        iterations=100000,
    )
    return base64.urlsafe_b64encode(kdf.derive(b"dev_key"))


class SecretDecryptor:
    """Decrypts marked configuration values.

    Args:
        key: Fernet key (urlsafe base64, 32 bytes). Empty uses a dev-only derived key.
        prefix: Marker identifying encrypted values
    """

    def __init__(self, key: str | bytes = "", prefix: str = DEFAULT_SECRET_PREFIX) -> None:
        if not key:
            # WARNING: In production, always set SECRET_ENCRYPTION_KEY
            key = _derive_dev_key()
        self._cipher = Fernet(key.encode() if isinstance(key, str) else key)
        self.prefix = prefix or DEFAULT_SECRET_PREFIX

    def is_marked(self, value: str) -> bool:
        return value.startswith(self.prefix)

    def decrypt_if_marked(self, value: str) -> str:
        """Return the plaintext of a marked value, or the value unchanged.

        Raises:
            InvalidConfigurationError: Empty ciphertext or a token that does not decrypt
        """
        if not self.is_marked(value):
            return value
        token = value[len(self.prefix):]
        if not token:
            raise InvalidConfigurationError("Empty ciphertext after secret prefix")
        try:
            return self._cipher.decrypt(token.encode()).decode()
        except InvalidToken as e:
            raise InvalidConfigurationError("Failed to decrypt configuration secret") from e

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a value for a config file, returning it with the prefix."""
        return self.prefix + self._cipher.encrypt(plaintext.encode()).decode()


def decrypt_redis_url(url: str, decryptor: SecretDecryptor) -> str:
    """Decrypt a marked password embedded in a Redis URL.

    redis://:enc%3A%2F%2F<token>@host:6379/0 becomes redis://:<password>@host:6379/0.
    URLs without a marked password are returned unchanged.
    """
    parts = urlsplit(url)
    if parts.password is None:
        return url
    password = unquote(parts.password)
    if not decryptor.is_marked(password):
        return url
    plaintext = decryptor.decrypt_if_marked(password)

    userinfo = quote(unquote(parts.username), safe="") if parts.username else ""
    userinfo += ":" + quote(plaintext, safe="")
    # parts.hostname drops IPv6 brackets
    host = parts.netloc.rpartition("@")[2]
    return urlunsplit((parts.scheme, f"{userinfo}@{host}", parts.path, parts.query, parts.fragment))


def generate_encryption_key() -> str:
    """Generate a new encryption key for .env file.

    Run: python -c "from quotagate.app.core.security import generate_encryption_key; print(generate_encryption_key())"
    """
    return Fernet.generate_key().decode()
