"""
File persistence for chat sessions and settings.

Following PROJECT_RULES.md:
- Single responsibility: File persistence only
- No caching or state management here
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import ValidationError

from common.logging import get_logger
from common.models import AppSettings, ChatSession

logger = get_logger(__name__)


class PersistenceStore(ABC):
    """Keyed save/load for sessions and settings."""

    @abstractmethod
    def save_session(self, session: ChatSession) -> bool: ...

    @abstractmethod
    def load_session(self, session_id: str) -> Optional[ChatSession]: ...

    @abstractmethod
    def load_all_sessions(self) -> List[ChatSession]: ...

    @abstractmethod
    def delete_session(self, session_id: str) -> bool: ...

    @abstractmethod
    def save_settings(self, settings: AppSettings) -> bool: ...

    @abstractmethod
    def load_settings(self) -> Optional[AppSettings]: ...


class YamlStore(PersistenceStore):
    """
    One YAML file per session under ``<root>/sessions`` plus ``<root>/settings.yaml``.

    Writes are not atomic.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.sessions_dir = self.root / "sessions"
        self.settings_path = self.root / "settings.yaml"
        self.sessions_dir.mkdir(parents=True, exist_ok=True)

    def _session_path(self, session_id: str) -> Path:
        if not session_id or Path(session_id).name != session_id:
            raise ValueError(f"Invalid session id: {session_id!r}")
        return self.sessions_dir / f"{session_id}.yaml"

    def _write(self, path: Path, data: dict) -> bool:
        try:
            with open(path, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, default_flow_style=False, indent=2, sort_keys=False)
        except OSError as e:
            logger.error(event="store_write_failed", path=str(path), error=str(e))
            return False

        logger.debug(event="store_written", path=str(path))
        return True

    def _read(self, path: Path) -> Optional[dict]:
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(event="store_read_failed", path=str(path), error=str(e))
            return None

    def save_session(self, session: ChatSession) -> bool:
        return self._write(self._session_path(session.id), session.model_dump(mode="json"))

    def load_session(self, session_id: str) -> Optional[ChatSession]:
        data = self._read(self._session_path(session_id))
        if data is None:
            return None
        try:
            return ChatSession.model_validate(data)
        except ValidationError as e:
            logger.error(event="session_invalid", session_id=session_id, error=str(e))
            return None

    def load_all_sessions(self) -> List[ChatSession]:
        sessions = []
        for path in sorted(self.sessions_dir.glob("*.yaml")):
            session = self.load_session(path.stem)
            if session is not None:
                sessions.append(session)
        return sessions

    def delete_session(self, session_id: str) -> bool:
        path = self._session_path(session_id)
        if not path.exists():
            return False
        path.unlink()
        logger.info(event="session_deleted", session_id=session_id)
        return True

    def save_settings(self, settings: AppSettings) -> bool:
        return self._write(self.settings_path, settings.model_dump(mode="json"))

    def load_settings(self) -> Optional[AppSettings]:
        data = self._read(self.settings_path)
        if data is None:
            return None
        try:
            return AppSettings.model_validate(data)
        except ValidationError as e:
            logger.error(event="settings_invalid", error=str(e))
            return None
