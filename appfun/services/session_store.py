"""
Persisted Session Store.

Encrypts the current ``SessionRecord`` and keeps it in ``LocalStorage``
under a single fixed key so that a restart (or another process on the
same machine) can restore the session without a provider round-trip.

Security model
--------------
- The encryption key is derived at runtime from machine identity
  (hostname + OS username) via PBKDF2-HMAC-SHA256 with a per-install
  random salt file.  The key is never written to disk.
- The envelope is encrypted with AES-256-GCM, giving confidentiality
  and integrity.  A tampered or foreign envelope fails to decrypt and
  is treated as absent.

Stored value layout (JSON, under ``AUTH_STORAGE_KEY``)::

    {"v": 1, "nonce": <b64>, "tag": <b64>, "ciphertext": <b64>}

where the plaintext is a ``StoredAuthData`` envelope.
"""

from __future__ import annotations

import base64
import getpass
import json
import os
import socket
import stat
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from Crypto.Cipher import AES
from Crypto.Hash import SHA256
from Crypto.Protocol.KDF import PBKDF2
from pydantic import ValidationError

from appfun.logger import StructuredLogger
from appfun.models.session import SessionRecord, StoredAuthData
from appfun.services.local_storage import LocalStorage

_ENVELOPE_VERSION: int = 1


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class SessionStore:
    """Load / save / clear the single persisted session record.

    No public method raises.  Storage, crypto and serialization failures
    are logged and surface as ``None`` (load), ``False`` (save) or a
    no-op (clear).

    Parameters
    ----------
    storage:
        The ``LocalStorage`` backing store.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    storage_key:
        Key the envelope is stored under.
    salt_path:
        Location of the per-install random salt file.
    kdf_iterations:
        PBKDF2 iteration count.
    clock:
        Returns the current UTC time; injectable for tests.
    """

    _KEY_LENGTH: int = 32  # 256 bits

    def __init__(
        self,
        storage: LocalStorage,
        logger: StructuredLogger,
        storage_key: str = "supabase_auth_data",
        salt_path: Optional[Path] = None,
        kdf_iterations: int = 600_000,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._storage: LocalStorage = storage
        self._logger: StructuredLogger = logger
        self._storage_key: str = storage_key
        self._salt_path: Path = salt_path or (Path.home() / ".appfun_session_salt")
        self._kdf_iterations: int = kdf_iterations
        self._clock: Callable[[], datetime] = clock

        self._key: Optional[bytes] = None
        self._key_lock: threading.Lock = threading.Lock()

    @property
    def storage_key(self) -> str:
        return self._storage_key

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def load(self) -> Optional[SessionRecord]:
        """Restore the persisted record, or ``None``.

        Records that cannot be decrypted, fail the shape check (missing
        id or email) or whose ``expires_at`` has passed are cleared.
        """
        raw: Optional[str] = self._storage.get(self._storage_key)
        if raw is None:
            return None

        try:
            plaintext: bytes = self._decrypt(raw)
        except OSError as exc:
            # Salt unavailable: the record may still be fine, keep it.
            self._logger.warning("Session key unavailable, cannot load session: %s", exc)
            return None
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            self._logger.warning(
                "Stored session could not be decrypted (corrupted data or "
                "machine identity changed): %s",
                exc,
            )
            self.clear()
            return None

        try:
            stored = StoredAuthData.model_validate_json(plaintext)
        except ValidationError as exc:
            self._logger.warning("Stored session payload is malformed: %s", exc)
            self.clear()
            return None

        record: SessionRecord = stored.user
        if record.id in (None, "") or not record.email:
            self._logger.warning("Stored session is missing id or email; discarding.")
            self.clear()
            return None

        if self._clock() >= stored.expires_at:
            self._logger.info(
                "Stored session for %s expired at %s; discarding.",
                record.email,
                stored.expires_at.isoformat(),
            )
            self.clear()
            return None

        return record

    def save(self, record: SessionRecord) -> bool:
        """Encrypt and persist *record*.  Returns ``True`` on success."""
        stored = StoredAuthData(
            user=record,
            login_time=record.login_time,
            expires_at=record.expires_at,
            session_id=uuid.uuid4().hex,
        )
        try:
            value: str = self._encrypt(stored.model_dump_json().encode("utf-8"))
        except Exception as exc:
            self._logger.warning("Failed to encrypt session payload: %s", exc)
            return False

        if not self._storage.set(self._storage_key, value):
            return False
        self._logger.debug("Session persisted for %s.", record.email)
        return True

    def clear(self) -> None:
        """Remove the persisted record.  Safe when nothing is stored."""
        if self._storage.remove(self._storage_key):
            self._logger.debug("Persisted session cleared.")

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _encrypt(self, plaintext: bytes) -> str:
        cipher = AES.new(self._derive_key(), AES.MODE_GCM)
        ciphertext, tag = cipher.encrypt_and_digest(plaintext)
        return json.dumps({
            "v": _ENVELOPE_VERSION,
            "nonce": base64.b64encode(cipher.nonce).decode("ascii"),
            "tag": base64.b64encode(tag).decode("ascii"),
            "ciphertext": base64.b64encode(ciphertext).decode("ascii"),
        })

    def _decrypt(self, value: str) -> bytes:
        """Decrypt a stored value.

        Raises
        ------
        ValueError / KeyError / TypeError / AttributeError
            On malformed JSON, wrong version, or a failed GCM tag check.
        OSError
            If the salt file cannot be read or created.
        """
        envelope = json.loads(value)
        if envelope.get("v") != _ENVELOPE_VERSION:
            raise ValueError(f"unsupported envelope version {envelope.get('v')!r}")
        nonce: bytes = base64.b64decode(envelope["nonce"])
        tag: bytes = base64.b64decode(envelope["tag"])
        ciphertext: bytes = base64.b64decode(envelope["ciphertext"])
        cipher = AES.new(self._derive_key(), AES.MODE_GCM, nonce=nonce)
        return cipher.decrypt_and_verify(ciphertext, tag)

    def _derive_key(self) -> bytes:
        """Derive (once) a 256-bit AES key from machine identity.

        The key is deterministic for a given (hostname, OS username,
        salt) triple.  A copied database is useless on another machine
        or under another OS account.

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
        """Return the per-install random salt, creating it on first run."""
        if self._salt_path.exists():
            data: bytes = self._salt_path.read_bytes()
            if len(data) == 32:
                return data
            self._logger.warning(
                "Salt file has unexpected length (%d); regenerating.", len(data),
            )
        salt: bytes = os.urandom(32)
        self._salt_path.parent.mkdir(parents=True, exist_ok=True)
        self._salt_path.write_bytes(salt)
        if os.name != "nt":
            self._salt_path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0o600
        self._logger.info("Session salt created at %s.", self._salt_path)
        return salt
