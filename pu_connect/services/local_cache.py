"""
Encrypted Local Cache Service.

Process-local key-value persistence that survives restarts, stored in
the SQLite ``local_cache`` table.  Its one real tenant is the serialized
snapshot of the last-known profile, read at boot so the UI can render a
name and role before Supabase answers.

Security model
--------------
- The encryption key is derived at runtime from machine identity
  (hostname + OS username) via PBKDF2-HMAC-SHA256 with a per-machine
  random salt.  The key is **never** persisted to disk.
- Values are encrypted with AES-256-GCM, so tampering or a changed
  machine identity makes a value undecryptable rather than wrong.
- Anything that fails to decrypt or parse is evicted and reported as a
  cache miss.

Storage layout (one row per key)::

    local_cache
    ├── key               TEXT PRIMARY KEY
    ├── encrypted_payload BLOB
    ├── nonce             BLOB
    ├── tag               BLOB
    └── updated_at        TIMESTAMP
"""

from __future__ import annotations

import getpass
import os
import platform
import socket
import stat
import threading
from pathlib import Path
from typing import Optional, Union

from Crypto.Cipher import AES
from Crypto.Hash import SHA256
from Crypto.Protocol.KDF import PBKDF2
from pydantic import ValidationError

from pu_connect.database import DatabaseManager
from pu_connect.logger import StructuredLogger
from pu_connect.models.enums import ProfileOrigin
from pu_connect.models.profile import Profile


class LocalCacheService:
    """Encrypted key-value cache plus profile-snapshot helpers.

    ``get`` / ``set`` / ``remove`` are synchronous and never raise:
    the cache is an optimisation, so every failure is logged and
    degrades to a miss (``get``) or a no-op (``set``/``remove``).

    Parameters
    ----------
    db:
        An initialised ``DatabaseManager`` providing the SQLite connection.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    profile_key:
        Key under which the profile snapshot is stored.
    salt_path:
        Location of the per-machine random salt file.
    kdf_iterations:
        PBKDF2 iteration count.
    """

    _KEY_LENGTH: int = 32  # 256 bits
    _SALT_LENGTH: int = 32

    def __init__(
        self,
        db: DatabaseManager,
        logger: StructuredLogger,
        profile_key: str = "pentvars_profile",
        salt_path: Union[Path, str, None] = None,
        kdf_iterations: int = 600_000,
    ) -> None:
        self._db: DatabaseManager = db
        self._logger: StructuredLogger = logger
        self._profile_key: str = profile_key
        self._salt_path: Path = (
            Path(salt_path) if salt_path is not None
            else Path.home() / ".pu_connect_cache_salt"
        )
        self._kdf_iterations: int = kdf_iterations
        self._key: Optional[bytes] = None
        self._key_lock: threading.Lock = threading.Lock()

    # ------------------------------------------------------------------
    # Key-value API
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[bytes]:
        """Return the decrypted value stored under *key*, or ``None``.

        A row that cannot be decrypted is removed before returning
        ``None``.
        """
        try:
            row = self._db.sqlite.execute(
                "SELECT encrypted_payload, nonce, tag FROM local_cache WHERE key = ?",
                (key,),
            ).fetchone()
        except Exception as exc:
            self._logger.warning("Failed to read cache entry '%s': %s", key, exc)
            return None

        if row is None:
            return None

        try:
            cipher = AES.new(self._derive_key(), AES.MODE_GCM, nonce=row["nonce"])
            return cipher.decrypt_and_verify(row["encrypted_payload"], row["tag"])
        except (ValueError, KeyError) as exc:
            self._logger.warning(
                "Cache entry '%s' is corrupt or was written under another "
                "machine identity; evicting: %s",
                key,
                exc,
            )
        except Exception as exc:
            self._logger.warning(
                "Unexpected error decrypting cache entry '%s'; evicting: %s", key, exc,
            )
        self.remove(key)
        return None

    def set(self, key: str, value: bytes) -> bool:
        """Encrypt and store *value* under *key*.

        Returns ``True`` when the value was written.
        """
        try:
            cipher = AES.new(self._derive_key(), AES.MODE_GCM)
            ciphertext, tag = cipher.encrypt_and_digest(value)
            nonce: bytes = cipher.nonce
        except Exception as exc:
            self._logger.warning("Failed to encrypt cache entry '%s': %s", key, exc)
            return False

        try:
            with self._db.write_lock:
                self._db.sqlite.execute(
                    """
                    INSERT INTO local_cache (key, encrypted_payload, nonce, tag)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        encrypted_payload = excluded.encrypted_payload,
                        nonce             = excluded.nonce,
                        tag               = excluded.tag,
                        updated_at        = CURRENT_TIMESTAMP
                    """,
                    (key, ciphertext, nonce, tag),
                )
                self._db.sqlite.commit()
            return True
        except Exception as exc:
            self._logger.warning("Failed to write cache entry '%s': %s", key, exc)
            return False

    def remove(self, key: str) -> None:
        """Delete *key*.  Safe to call when it does not exist."""
        try:
            with self._db.write_lock:
                self._db.sqlite.execute("DELETE FROM local_cache WHERE key = ?", (key,))
                self._db.sqlite.commit()
        except Exception as exc:
            self._logger.error("Failed to remove cache entry '%s': %s", key, exc)

    # ------------------------------------------------------------------
    # Profile snapshot
    # ------------------------------------------------------------------

    def load_profile(self) -> Optional[Profile]:
        """Return the cached profile snapshot, marked ``ProfileOrigin.CACHED``.

        Unparseable snapshots are evicted and reported as a miss.
        """
        raw = self.get(self._profile_key)
        if raw is None:
            self._logger.debug("No cached profile snapshot.")
            return None

        try:
            profile = Profile.model_validate_json(raw)
        except (ValidationError, ValueError) as exc:
            self._logger.warning("Cached profile snapshot is malformed; evicting: %s", exc)
            self.remove(self._profile_key)
            return None

        return profile.model_copy(update={"origin": ProfileOrigin.CACHED})

    def store_profile(self, profile: Profile) -> bool:
        """Persist *profile* as the current snapshot."""
        stored = self.set(self._profile_key, profile.model_dump_json().encode("utf-8"))
        if stored:
            self._logger.debug("Profile snapshot cached for %s.", profile.id)
        return stored

    def evict_profile(self) -> None:
        """Remove the profile snapshot."""
        self.remove(self._profile_key)
        self._logger.info("Cached profile snapshot cleared.")

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _derive_key(self) -> bytes:
        """Derive (once) the AES-256 key from machine identity and salt.

        The key is deterministic for a given (hostname, OS username,
        salt) triple.  If the machine identity changes, earlier entries
        become undecryptable and are evicted on read.

        Raises
        ------
        OSError
            If the salt file cannot be created or read.
        """
        with self._key_lock:
            if self._key is None:
                password: str = f"{socket.gethostname()}:{getpass.getuser()}"
                self._key = PBKDF2(
                    password=password,
                    salt=self._get_or_create_salt(),
                    dkLen=self._KEY_LENGTH,
                    count=self._kdf_iterations,
                    hmac_hash_module=SHA256,
                )
            return self._key

    def _get_or_create_salt(self) -> bytes:
        """Return the per-machine random salt, creating it on first run.

        Raises
        ------
        OSError
            If the salt file cannot be read or written.
        """
        if self._salt_path.exists():
            data: bytes = self._salt_path.read_bytes()
            if len(data) == self._SALT_LENGTH:
                return data
            self._logger.warning(
                "Salt file has unexpected length (%d); regenerating.", len(data),
            )
        salt: bytes = os.urandom(self._SALT_LENGTH)
        self._salt_path.parent.mkdir(parents=True, exist_ok=True)
        self._salt_path.write_bytes(salt)

        # Owner-only permissions; NTFS ACLs are left to the installer.
        if platform.system() != "Windows":
            self._salt_path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0o600

        self._logger.info("Per-machine cache salt created at %s.", self._salt_path)
        return salt
