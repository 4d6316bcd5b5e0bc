"""Conversation store: one JSON document per conversation id."""

from __future__ import annotations

import os
import re
import tempfile
from datetime import timedelta
from pathlib import Path

from pydantic import ValidationError

from devtrack.ai.messages import utc_now
from devtrack.log import get_logger
from devtrack.storage.models import Conversation, ConversationSummary

logger = get_logger(__name__)

_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")


class ConversationStore:
    """Whole-document JSON persistence for conversations.

    Every save rewrites the full document through a temp file and an atomic
    rename, so a reader never sees a half-written conversation.
    """

    def __init__(self, directory: str | Path):
        self._dir = Path(directory)

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, conversation_id: str) -> Path:
        if not _ID_PATTERN.match(conversation_id) or ".." in conversation_id:
            raise ValueError(f"Invalid conversation id: {conversation_id!r}")
        return self._dir / f"{conversation_id}.json"

    def create(self, title: str | None = None) -> Conversation:
        """Build a new, unsaved conversation."""
        convo = Conversation()
        if title:
            convo.title = title
        return convo

    def exists(self, conversation_id: str) -> bool:
        return self._path(conversation_id).is_file()

    def load(self, conversation_id: str) -> Conversation | None:
        path = self._path(conversation_id)
        if not path.is_file():
            return None
        try:
            return Conversation.model_validate_json(path.read_bytes())
        except (OSError, UnicodeDecodeError, ValidationError) as e:
            logger.warning("conversation_load_failed", conversation_id=conversation_id, error=str(e))
            return None

    def save(self, convo: Conversation) -> None:
        """Overwrite the stored document; ``updated`` always moves forward."""
        now = utc_now()
        if now <= convo.updated:
            now = convo.updated + timedelta(microseconds=1)
        convo.updated = now

        path = self._path(convo.id)
        self._dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=f".{convo.id}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(convo.model_dump_json(indent=2))
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("conversation_saved", conversation_id=convo.id, messages=len(convo.messages))

    def delete(self, conversation_id: str) -> bool:
        path = self._path(conversation_id)
        if not path.is_file():
            return False
        path.unlink()
        logger.info("conversation_deleted", conversation_id=conversation_id)
        return True

    def list_conversations(self) -> list[ConversationSummary]:
        """Summaries of all stored conversations, most recently updated first."""
        if not self._dir.is_dir():
            return []
        summaries: list[ConversationSummary] = []
        for file in self._dir.glob("*.json"):
            try:
                convo = Conversation.model_validate_json(file.read_bytes())
            except (OSError, UnicodeDecodeError, ValidationError) as e:
                logger.warning("conversation_list_skip", file=file.name, error=str(e))
                continue
            summaries.append(ConversationSummary(id=convo.id, title=convo.title, updated=convo.updated))
        return sorted(summaries, key=lambda s: s.updated, reverse=True)
