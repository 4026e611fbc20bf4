"""
Credential Store for the WhatsApp session

Owns the persistent authentication directory. The transport keeps whatever
it needs (browser profile, tokens) inside session_dir; the store itself only
manages a small JSON record so restarts can tell a linked device from a
fresh one.
"""

import json
import shutil
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from loguru import logger

_RECORD_FILE = "credentials.json"


class CredentialStore:
    """
    Persistent auth material for a single WhatsApp client id.

    The directory is created on construction and reused across restarts.
    """

    def __init__(self, auth_dir: str | Path = "whatsapp_auth", client_id: str = "pandas-session"):
        self.auth_dir = Path(auth_dir)
        self.client_id = client_id
        self._lock = threading.Lock()
        self.session_dir.mkdir(parents=True, exist_ok=True)

    @property
    def session_dir(self) -> Path:
        """Directory handed to the transport as its data path."""
        return self.auth_dir / f"session-{self.client_id}"

    @property
    def record_path(self) -> Path:
        return self.session_dir / _RECORD_FILE

    def load(self) -> dict[str, Any] | None:
        """Load the stored credential record, or None if there is none."""
        with self._lock:
            if not self.record_path.exists():
                return None
            try:
                with open(self.record_path, encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.error(f"Failed to load credentials from {self.record_path}: {e}")
                return None
            logger.info("Loaded stored credentials for client {}", self.client_id)
            return data

    def save(self, data: dict[str, Any]) -> None:
        """Persist a credential record, stamping it with updated_at."""
        with self._lock:
            record = dict(data)
            record.setdefault("client_id", self.client_id)
            record["updated_at"] = datetime.now(UTC).isoformat()
            self.session_dir.mkdir(parents=True, exist_ok=True)
            tmp = self.record_path.with_suffix(".tmp")
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(record, f, indent=2)
            tmp.replace(self.record_path)
            logger.debug("Saved credentials for client {}", self.client_id)

    def has_credentials(self) -> bool:
        return self.record_path.exists()

    def clear(self) -> None:
        """Wipe everything the transport stored so the next start pairs again."""
        with self._lock:
            if self.session_dir.exists():
                shutil.rmtree(self.session_dir)
            self.session_dir.mkdir(parents=True, exist_ok=True)
            logger.info("Cleared credentials for client {}", self.client_id)
