import logging
import sqlite3
from pathlib import Path
from typing import Optional

from mlarchive.services.conversation import Conversation, DiagnosticsSink
from mlarchive.services.mbox import format_message, parse_archive
from mlarchive.services.message_parser import Message

logger = logging.getLogger(__name__)


class ArchiveStore:
    """A local mbox archive plus an index of the message ids already in it."""

    def __init__(self, archive_path: Path, index_path: Path) -> None:
        self.archive_path = archive_path
        self.index_path = index_path
        self.archive_path.parent.mkdir(parents=True, exist_ok=True)
        self.index_path.parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.index_path)

    def init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS archived_messages (
                    message_id TEXT PRIMARY KEY,
                    in_reply_to TEXT,
                    archived_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.commit()

    def is_archived(self, message_id: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM archived_messages WHERE message_id = ?",
                (message_id,),
            ).fetchone()
            return row is not None

    def count(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(1) FROM archived_messages").fetchone()
            if not row:
                return 0
            return int(row[0])

    def append(self, message: Message) -> bool:
        """Append ``message`` to the archive unless its id is already there."""
        if self.is_archived(message.id):
            logger.info(
                "Message already archived",
                extra={"event": "archive_append_skipped", "message_id": message.id},
            )
            return False

        fragment = format_message(message)
        with self.archive_path.open("a", encoding="utf-8", newline="") as handle:
            handle.write(fragment)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO archived_messages(message_id, in_reply_to)
                VALUES (?, ?)
                """,
                (message.id, message.in_reply_to),
            )
            conn.commit()

        logger.info(
            "Appended message to archive",
            extra={
                "event": "archive_message_appended",
                "message_id": message.id,
                "in_reply_to": message.in_reply_to,
            },
        )
        return True

    def read_text(self) -> str:
        if not self.archive_path.exists():
            return ""
        with self.archive_path.open(encoding="utf-8", newline="") as handle:
            return handle.read()

    def conversations(
        self,
        *,
        diagnostics: Optional[DiagnosticsSink] = None,
        resolve_out_of_order: bool = False,
    ) -> list[Conversation]:
        return parse_archive(
            self.read_text(),
            diagnostics=diagnostics,
            resolve_out_of_order=resolve_out_of_order,
        )
