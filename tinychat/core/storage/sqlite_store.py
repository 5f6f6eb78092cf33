"""
SQLite chat store implementation.

One aiosqlite connection in autocommit mode; multi-statement operations
run inside explicit transactions guarded by an asyncio lock.
"""

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from tinychat.core.storage.base import ChatStorage, EmbeddingKind
from tinychat.models.chat import Chat, Folder
from tinychat.models.memory import (
    Memory,
    MemoryCategory,
    MemoryStability,
    PendingChat,
    PendingEmbeddings,
    Summary,
)
from tinychat.models.message import (
    Author,
    Message,
    ModelConfig,
    ResponseMetadata,
    coerce_metadata,
    data_adapter,
    metadata_adapter,
)
from tinychat.utils.exceptions import StoreError, ValidationError
from tinychat.utils.logger import get_logger

logger = get_logger(__name__)

_EMBEDDING_TABLES = {"messages", "summaries", "memories"}

_MESSAGE_COLUMNS = (
    "id, chat_id, folder_id, user_id, author, config, data, metadata, previous_id, created_at"
)


def _ts(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteChatStorage(ChatStorage):
    """
    SQLite-based storage for folders, chats, message chains and memories.

    Features:
    - Partial unique index on ``messages.previous_id`` (one successor per message)
    - Folder → chat → message/memory/summary cascades via foreign keys
    - Embeddings stored as JSON arrays
    - Re-entrant transactions serialized by an asyncio lock
    """

    def __init__(self, db_path: str = "data/tinychat.db"):
        """
        Initialize SQLite chat store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self.connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._in_transaction: ContextVar[bool] = ContextVar(
            f"tinychat_tx_{id(self)}", default=False
        )

        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    async def connect(self) -> None:
        """Establish connection to SQLite."""
        if self.connection is None:
            self.connection = await aiosqlite.connect(self.db_path, isolation_level=None)
            self.connection.row_factory = aiosqlite.Row
            await self.connection.execute("PRAGMA foreign_keys = ON")
            if self.db_path != ":memory:":
                await self.connection.execute("PRAGMA journal_mode = WAL")

    async def initialize(self) -> None:
        """Initialize database schema."""
        await self.connect()

        await self.connection.executescript(
            """
            CREATE TABLE IF NOT EXISTS folders (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                title TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS chats (
                id TEXT PRIMARY KEY,
                folder_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                title TEXT,
                temporary INTEGER NOT NULL DEFAULT 0,
                incognito INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                FOREIGN KEY (folder_id) REFERENCES folders(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                chat_id TEXT NOT NULL,
                folder_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                author TEXT NOT NULL,
                config TEXT NOT NULL,
                data TEXT NOT NULL DEFAULT '[]',
                metadata TEXT,
                previous_id TEXT,
                embedding TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY (chat_id) REFERENCES chats(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS memories (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                folder_id TEXT NOT NULL,
                chat_id TEXT NOT NULL,
                config TEXT NOT NULL,
                fact TEXT NOT NULL,
                category TEXT NOT NULL,
                stability TEXT NOT NULL,
                evidence TEXT NOT NULL DEFAULT '[]',
                confidence REAL NOT NULL,
                embedding TEXT,
                latest INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                FOREIGN KEY (chat_id) REFERENCES chats(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS summaries (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                folder_id TEXT NOT NULL,
                chat_id TEXT NOT NULL,
                config TEXT NOT NULL,
                content TEXT NOT NULL,
                embedding TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY (chat_id) REFERENCES chats(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS pairings (
                id TEXT PRIMARY KEY,
                user_id TEXT,
                expires_at TEXT NOT NULL
            );

            CREATE UNIQUE INDEX IF NOT EXISTS idx_messages_previous
                ON messages(previous_id) WHERE previous_id IS NOT NULL;
            CREATE INDEX IF NOT EXISTS idx_messages_chat ON messages(chat_id);
            CREATE INDEX IF NOT EXISTS idx_chats_folder ON chats(folder_id);
            CREATE INDEX IF NOT EXISTS idx_chats_user ON chats(user_id);
            CREATE INDEX IF NOT EXISTS idx_memories_user ON memories(user_id, latest);
            CREATE INDEX IF NOT EXISTS idx_memories_chat ON memories(chat_id);
            CREATE INDEX IF NOT EXISTS idx_summaries_chat ON summaries(chat_id);
            """
        )
        logger.info(f"SQLite chat store ready at {self.db_path}")

    async def close(self) -> None:
        """Close the connection."""
        if self.connection is not None:
            await self.connection.close()
            self.connection = None

    # ═══════════════════════════════════════════════════════════
    # TRANSACTIONS
    # ═══════════════════════════════════════════════════════════

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._in_transaction.get():
            yield
            return

        await self.connect()
        async with self._lock:
            token = self._in_transaction.set(True)
            try:
                await self.connection.execute("BEGIN IMMEDIATE")
                try:
                    yield
                except BaseException:
                    await self.connection.execute("ROLLBACK")
                    raise
                await self.connection.execute("COMMIT")
            finally:
                self._in_transaction.reset(token)

    @asynccontextmanager
    async def _guard(self) -> AsyncIterator[aiosqlite.Connection]:
        """Serialize a single statement against running transactions."""
        await self.connect()
        try:
            if self._in_transaction.get():
                yield self.connection
            else:
                async with self._lock:
                    yield self.connection
        except aiosqlite.Error as e:
            raise StoreError(f"SQLite operation failed: {e}", {"db_path": self.db_path}) from e

    async def _execute(self, query: str, params: tuple | list = ()) -> int:
        async with self._guard() as conn:
            cursor = await conn.execute(query, params)
            return cursor.rowcount

    async def _fetchall(self, query: str, params: tuple | list = ()) -> list[aiosqlite.Row]:
        async with self._guard() as conn:
            cursor = await conn.execute(query, params)
            return list(await cursor.fetchall())

    async def _fetchone(self, query: str, params: tuple | list = ()) -> aiosqlite.Row | None:
        async with self._guard() as conn:
            cursor = await conn.execute(query, params)
            return await cursor.fetchone()

    # ═══════════════════════════════════════════════════════════
    # FOLDERS & CHATS
    # ═══════════════════════════════════════════════════════════

    async def add_folder(self, folder: Folder) -> None:
        await self._execute(
            "INSERT INTO folders (id, user_id, title, created_at) VALUES (?, ?, ?, ?)",
            (folder.id, folder.user_id, folder.title, _ts(folder.created_at)),
        )

    async def get_folder(self, folder_id: str, user_id: str | None = None) -> Folder | None:
        query = "SELECT * FROM folders WHERE id = ?"
        params: list[Any] = [folder_id]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)

        row = await self._fetchone(query, params)
        return self._row_to_folder(row) if row else None

    async def update_folder_title(self, folder_id: str, title: str | None) -> None:
        await self._execute("UPDATE folders SET title = ? WHERE id = ?", (title, folder_id))

    async def delete_folder(self, folder_id: str) -> None:
        await self._execute("DELETE FROM folders WHERE id = ?", (folder_id,))

    async def count_folder_chats(self, folder_id: str) -> int:
        row = await self._fetchone("SELECT COUNT(*) FROM chats WHERE folder_id = ?", (folder_id,))
        return row[0] if row else 0

    async def list_folders(self, user_id: str) -> list[Folder]:
        rows = await self._fetchall(
            """
            SELECT c.*, (
                SELECT MAX(m.created_at) FROM messages m WHERE m.chat_id = c.id
            ) AS last_activity
            FROM chats c
            WHERE c.user_id = ? AND c.temporary = 0
            """,
            (user_id,),
        )
        if not rows:
            return []

        chats_by_folder: dict[str, list[Chat]] = {}
        for row in rows:
            chat = self._row_to_chat(row)
            chats_by_folder.setdefault(chat.folder_id, []).append(chat)

        placeholders = ",".join("?" * len(chats_by_folder))
        folder_rows = await self._fetchall(
            f"SELECT * FROM folders WHERE id IN ({placeholders})", list(chats_by_folder)
        )

        folders = []
        for row in folder_rows:
            folder = self._row_to_folder(row)
            folder.chats = chats_by_folder[folder.id]
            folders.append(folder)
        return folders

    async def add_chat(self, chat: Chat) -> None:
        await self._execute(
            """
            INSERT INTO chats (id, folder_id, user_id, title, temporary, incognito, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                chat.id,
                chat.folder_id,
                chat.user_id,
                chat.title,
                int(chat.temporary),
                int(chat.incognito),
                _ts(chat.created_at),
            ),
        )

    async def get_chat(self, chat_id: str, user_id: str | None = None) -> Chat | None:
        query = "SELECT * FROM chats WHERE id = ?"
        params: list[Any] = [chat_id]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)

        row = await self._fetchone(query, params)
        return self._row_to_chat(row) if row else None

    async def update_chat_title(self, chat_id: str, title: str | None) -> None:
        await self._execute("UPDATE chats SET title = ? WHERE id = ?", (title, chat_id))

    async def delete_chat(self, chat_id: str) -> None:
        await self._execute("DELETE FROM chats WHERE id = ?", (chat_id,))

    async def list_updated_chats(self, user_id: str) -> list[PendingChat]:
        rows = await self._fetchall(
            """
            SELECT c.id,
                   MAX(m.created_at) AS last_message_at,
                   (SELECT MAX(mem.created_at) FROM memories mem WHERE mem.chat_id = c.id)
                       AS last_memory_at
            FROM chats c
            JOIN messages m ON m.chat_id = c.id
            WHERE c.user_id = ? AND c.temporary = 0 AND c.incognito = 0
            GROUP BY c.id
            HAVING last_memory_at IS NULL OR last_message_at > last_memory_at
            """,
            (user_id,),
        )
        return [
            PendingChat(
                id=row["id"],
                last_message_at=_parse_ts(row["last_message_at"]),
                last_memory_at=_parse_ts(row["last_memory_at"]),
            )
            for row in rows
        ]

    # ═══════════════════════════════════════════════════════════
    # MESSAGES
    # ═══════════════════════════════════════════════════════════

    async def add_message(self, message: Message) -> None:
        await self._execute(
            f"INSERT INTO messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            self._message_params(message),
        )

    async def add_messages(self, messages: list[Message]) -> None:
        if not messages:
            return
        async with self._guard() as conn:
            await conn.executemany(
                f"INSERT INTO messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [self._message_params(message) for message in messages],
            )

    async def get_message(
        self, message_id: str, user_id: str | None = None, include_metadata: bool = True
    ) -> Message | None:
        query = f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ?"
        params: list[Any] = [message_id]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)

        row = await self._fetchone(query, params)
        return self._row_to_message(row, include_metadata) if row else None

    async def list_chat_messages(
        self, chat_id: str, user_id: str | None = None, include_metadata: bool = False
    ) -> list[Message]:
        query = f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE chat_id = ?"
        params: list[Any] = [chat_id]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)

        rows = await self._fetchall(query, params)
        return [self._row_to_message(row, include_metadata) for row in rows]

    async def count_chat_messages(self, chat_id: str) -> int:
        row = await self._fetchone("SELECT COUNT(*) FROM messages WHERE chat_id = ?", (chat_id,))
        return row[0] if row else 0

    async def find_successor(self, message_id: str) -> Message | None:
        row = await self._fetchone(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE previous_id = ?", (message_id,)
        )
        return self._row_to_message(row, include_metadata=False) if row else None

    async def find_tails(self, chat_id: str) -> list[Message]:
        rows = await self._fetchall(
            f"""
            SELECT {_MESSAGE_COLUMNS} FROM messages m
            WHERE m.chat_id = ?
              AND NOT EXISTS (SELECT 1 FROM messages n WHERE n.previous_id = m.id)
            """,
            (chat_id,),
        )
        return [self._row_to_message(row, include_metadata=False) for row in rows]

    async def update_message(self, message: Message) -> None:
        await self._execute(
            """
            UPDATE messages
            SET author = ?, config = ?, data = ?, metadata = ?, created_at = ?
            WHERE id = ?
            """,
            (
                message.author.value,
                message.config.model_dump_json(),
                data_adapter.dump_json(message.data).decode(),
                message.metadata.model_dump_json() if message.metadata else None,
                _ts(message.created_at),
                message.id,
            ),
        )

    async def set_previous(self, message_id: str, previous_id: str | None) -> None:
        await self._execute(
            "UPDATE messages SET previous_id = ? WHERE id = ?", (previous_id, message_id)
        )

    async def delete_messages(self, message_ids: list[str]) -> None:
        if not message_ids:
            return
        placeholders = ",".join("?" * len(message_ids))
        await self._execute(f"DELETE FROM messages WHERE id IN ({placeholders})", message_ids)

    async def list_metadata(
        self, message_ids: list[str], user_id: str | None = None
    ) -> dict[str, ResponseMetadata | None]:
        if not message_ids:
            return {}

        placeholders = ",".join("?" * len(message_ids))
        query = f"SELECT id, metadata FROM messages WHERE id IN ({placeholders})"
        params: list[Any] = list(message_ids)
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)

        rows = await self._fetchall(query, params)
        return {row["id"]: self._parse_metadata(row["metadata"]) for row in rows}

    # ═══════════════════════════════════════════════════════════
    # MEMORIES, SUMMARIES & EMBEDDINGS
    # ═══════════════════════════════════════════════════════════

    async def add_memories(self, memories: list[Memory]) -> None:
        if not memories:
            return
        async with self._guard() as conn:
            await conn.executemany(
                """
                INSERT INTO memories (
                    id, user_id, folder_id, chat_id, config, fact, category, stability,
                    evidence, confidence, embedding, latest, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        memory.id,
                        memory.user_id,
                        memory.folder_id,
                        memory.chat_id,
                        memory.config.model_dump_json(),
                        memory.fact,
                        memory.category.value,
                        memory.stability.value,
                        json.dumps(memory.evidence),
                        memory.confidence,
                        json.dumps(memory.embedding) if memory.embedding else None,
                        int(memory.latest),
                        _ts(memory.created_at),
                    )
                    for memory in memories
                ],
            )

    async def supersede_chat_memories(self, chat_id: str) -> int:
        return await self._execute(
            "UPDATE memories SET latest = 0 WHERE chat_id = ? AND latest = 1", (chat_id,)
        )

    async def list_memories(
        self, user_id: str, latest_only: bool = True, embedded_only: bool = False
    ) -> list[Memory]:
        query = "SELECT * FROM memories WHERE user_id = ?"
        if latest_only:
            query += " AND latest = 1"
        if embedded_only:
            query += " AND embedding IS NOT NULL"
        query += " ORDER BY created_at"

        rows = await self._fetchall(query, (user_id,))
        return [self._row_to_memory(row) for row in rows]

    async def add_summary(self, summary: Summary) -> None:
        await self._execute(
            """
            INSERT INTO summaries (
                id, user_id, folder_id, chat_id, config, content, embedding, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                summary.id,
                summary.user_id,
                summary.folder_id,
                summary.chat_id,
                summary.config.model_dump_json(),
                summary.content,
                json.dumps(summary.embedding) if summary.embedding else None,
                _ts(summary.created_at),
            ),
        )

    async def list_summaries(self, chat_id: str) -> list[Summary]:
        rows = await self._fetchall(
            "SELECT * FROM summaries WHERE chat_id = ? ORDER BY created_at", (chat_id,)
        )
        return [self._row_to_summary(row) for row in rows]

    async def list_missing_embeddings(self, user_id: str) -> PendingEmbeddings:
        message_rows = await self._fetchall(
            f"""
            SELECT {_MESSAGE_COLUMNS} FROM messages
            WHERE user_id = ? AND embedding IS NULL
              AND NOT EXISTS (
                  SELECT 1 FROM chats WHERE chats.id = messages.chat_id AND chats.temporary = 1
              )
            """,
            (user_id,),
        )
        summary_rows = await self._fetchall(
            "SELECT * FROM summaries WHERE user_id = ? AND embedding IS NULL", (user_id,)
        )
        memory_rows = await self._fetchall(
            "SELECT * FROM memories WHERE user_id = ? AND embedding IS NULL", (user_id,)
        )

        return PendingEmbeddings(
            messages=[self._row_to_message(row, include_metadata=False) for row in message_rows],
            summaries=[self._row_to_summary(row) for row in summary_rows],
            memories=[self._row_to_memory(row) for row in memory_rows],
        )

    async def save_embeddings(
        self, kind: EmbeddingKind, embeddings: dict[str, list[float]], user_id: str
    ) -> int:
        if kind not in _EMBEDDING_TABLES:
            raise ValidationError(f"Unknown embedding kind: {kind}", {"kind": kind})
        if not embeddings:
            return 0

        updated = 0
        async with self.transaction():
            for row_id, values in embeddings.items():
                updated += await self._execute(
                    f"UPDATE {kind} SET embedding = ? WHERE id = ? AND user_id = ?",
                    (json.dumps(values), row_id, user_id),
                )
        return updated

    async def reset_embeddings(self, user_id: str) -> None:
        async with self.transaction():
            for table in ("messages", "summaries", "memories"):
                await self._execute(
                    f"UPDATE {table} SET embedding = NULL WHERE user_id = ?", (user_id,)
                )

    # ═══════════════════════════════════════════════════════════
    # PAIRINGS
    # ═══════════════════════════════════════════════════════════

    async def add_pairing(self, pairing_id: str, expires_at: datetime) -> None:
        await self._execute(
            "INSERT INTO pairings (id, user_id, expires_at) VALUES (?, NULL, ?)",
            (pairing_id, _ts(expires_at)),
        )

    async def get_pairing(self, pairing_id: str) -> tuple[str | None, datetime] | None:
        row = await self._fetchone(
            "SELECT user_id, expires_at FROM pairings WHERE id = ?", (pairing_id,)
        )
        if not row:
            return None
        return row["user_id"], _parse_ts(row["expires_at"])

    async def set_pairing_user(self, pairing_id: str, user_id: str) -> None:
        await self._execute("UPDATE pairings SET user_id = ? WHERE id = ?", (user_id, pairing_id))

    async def delete_pairing(self, pairing_id: str) -> None:
        await self._execute("DELETE FROM pairings WHERE id = ?", (pairing_id,))

    async def delete_expired_pairings(self, now: datetime) -> int:
        return await self._execute("DELETE FROM pairings WHERE expires_at <= ?", (_ts(now),))

    # ═══════════════════════════════════════════════════════════
    # HELPER METHODS
    # ═══════════════════════════════════════════════════════════

    @staticmethod
    def _message_params(message: Message) -> tuple:
        return (
            message.id,
            message.chat_id,
            message.folder_id,
            message.user_id,
            message.author.value,
            message.config.model_dump_json(),
            data_adapter.dump_json(message.data).decode(),
            message.metadata.model_dump_json() if message.metadata else None,
            message.previous_id,
            _ts(message.created_at),
        )

    @staticmethod
    def _parse_metadata(raw: str | None) -> ResponseMetadata | None:
        if not raw:
            return None
        return metadata_adapter.validate_python(coerce_metadata(json.loads(raw)))

    def _row_to_message(self, row: aiosqlite.Row, include_metadata: bool) -> Message:
        """Convert database row to Message object."""
        return Message(
            id=row["id"],
            chat_id=row["chat_id"],
            folder_id=row["folder_id"],
            user_id=row["user_id"],
            author=Author(row["author"]),
            config=ModelConfig.model_validate_json(row["config"]),
            data=data_adapter.validate_json(row["data"]),
            metadata=self._parse_metadata(row["metadata"]) if include_metadata else None,
            previous_id=row["previous_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def _row_to_chat(self, row: aiosqlite.Row) -> Chat:
        """Convert database row to Chat object."""
        return Chat(
            id=row["id"],
            folder_id=row["folder_id"],
            user_id=row["user_id"],
            title=row["title"],
            temporary=bool(row["temporary"]),
            incognito=bool(row["incognito"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            last_activity=_parse_ts(row["last_activity"]) if "last_activity" in row.keys() else None,
        )

    def _row_to_folder(self, row: aiosqlite.Row) -> Folder:
        return Folder(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def _row_to_memory(self, row: aiosqlite.Row) -> Memory:
        """Convert database row to Memory object."""
        return Memory(
            id=row["id"],
            user_id=row["user_id"],
            folder_id=row["folder_id"],
            chat_id=row["chat_id"],
            config=ModelConfig.model_validate_json(row["config"]),
            fact=row["fact"],
            category=MemoryCategory(row["category"]),
            stability=MemoryStability(row["stability"]),
            evidence=json.loads(row["evidence"]) if row["evidence"] else [],
            confidence=row["confidence"],
            embedding=json.loads(row["embedding"]) if row["embedding"] else None,
            latest=bool(row["latest"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def _row_to_summary(self, row: aiosqlite.Row) -> Summary:
        return Summary(
            id=row["id"],
            user_id=row["user_id"],
            folder_id=row["folder_id"],
            chat_id=row["chat_id"],
            config=ModelConfig.model_validate_json(row["config"]),
            content=row["content"],
            embedding=json.loads(row["embedding"]) if row["embedding"] else None,
            created_at=datetime.fromisoformat(row["created_at"]),
        )
