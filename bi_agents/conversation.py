"""Chat persistence around an orchestration run.

The store itself is an external collaborator (a hosted database in
production); this module only defines the narrow interface it needs and
an in-memory implementation for tests and the CLI.

Only creating the chat is fatal. Once the chat exists, persistence
failures are logged and the agent results are still returned.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence

from pydantic import BaseModel, Field

from bi_agents.core.cancellation import CancellationToken
from bi_agents.core.errors import ChatCreationError
from bi_agents.core.orchestrator import AgentOrchestrator
from bi_agents.models import Agent, AgentCallResult, FileSummary

logger = logging.getLogger(__name__)

CHATS = "chats"
MESSAGES = "messages"

TITLE_MAX_CHARS = 50


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ConversationStore(Protocol):
    """Generic record store keyed by opaque ids."""

    async def insert(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]: ...

    async def select(
        self, collection: str, filters: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]: ...

    async def update(
        self, collection: str, record_id: str, changes: Dict[str, Any]
    ) -> Dict[str, Any]: ...

    async def delete(self, collection: str, record_id: str) -> bool: ...


class InMemoryConversationStore:
    """Dict-backed ConversationStore."""

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}

    async def insert(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        stored = dict(record)
        stored.setdefault("id", str(uuid.uuid4()))
        stored.setdefault("created_at", _now_iso())
        self._collections.setdefault(collection, {})[stored["id"]] = stored
        return dict(stored)

    async def select(
        self, collection: str, filters: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        filters = filters or {}
        rows = self._collections.get(collection, {}).values()
        matching = [
            dict(row)
            for row in rows
            if all(row.get(k) == v for k, v in filters.items())
        ]
        return sorted(matching, key=lambda row: row.get("created_at", ""))

    async def update(
        self, collection: str, record_id: str, changes: Dict[str, Any]
    ) -> Dict[str, Any]:
        try:
            row = self._collections[collection][record_id]
        except KeyError:
            raise KeyError(f"{collection}/{record_id} not found") from None
        row.update(changes)
        return dict(row)

    async def delete(self, collection: str, record_id: str) -> bool:
        return self._collections.get(collection, {}).pop(record_id, None) is not None


class ConversationTurn(BaseModel):
    """One user message and the agent results it produced."""

    chat_id: str
    user_message_id: Optional[str] = None
    assistant_message_id: Optional[str] = None
    results: List[AgentCallResult] = Field(default_factory=list)
    cancelled: bool = False


class ConversationService:
    """Creates chats, runs the orchestrator and records the exchange."""

    def __init__(
        self,
        store: ConversationStore,
        orchestrator: AgentOrchestrator,
        user_id: str,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.user_id = user_id

    async def create_chat(self, title: str = "New Chat") -> Dict[str, Any]:
        try:
            chat = await self.store.insert(
                CHATS,
                {"user_id": self.user_id, "title": title, "updated_at": _now_iso()},
            )
        except Exception as e:
            raise ChatCreationError(f"Could not create chat: {e}") from e
        logger.info(f"Created chat {chat['id']} for user {self.user_id}")
        return chat

    async def submit_message(
        self,
        prompt: str,
        agents: Sequence[Agent],
        files: Sequence[FileSummary] = (),
        chat_id: Optional[str] = None,
        token: Optional[CancellationToken] = None,
        parallel: bool = False,
    ) -> ConversationTurn:
        """Persist ``prompt``, run the agents and persist their results.

        Raises:
            ChatCreationError: A new chat was needed and could not be created
        """
        if chat_id is None:
            title = prompt if len(prompt) <= TITLE_MAX_CHARS else prompt[:TITLE_MAX_CHARS] + "..."
            chat_id = (await self.create_chat(title))["id"]

        turn = ConversationTurn(chat_id=chat_id)
        try:
            user_message = await self.store.insert(
                MESSAGES,
                {
                    "chat_id": chat_id,
                    "role": "user",
                    "content": prompt,
                    "files": [f.name for f in files],
                    "metadata": {"user_id": self.user_id},
                },
            )
            turn.user_message_id = user_message["id"]
        except Exception as e:
            logger.warning(f"Failed to save user message in chat {chat_id}: {e}")

        token = token or CancellationToken()
        run = self.orchestrator.run_agents_parallel if parallel else self.orchestrator.run_agents
        turn.results = await run(prompt, agents, files, token)

        if token.cancelled:
            logger.info(f"Run in chat {chat_id} was stopped, not saving results")
            turn.cancelled = True
            return turn

        try:
            assistant_message = await self.store.insert(
                MESSAGES,
                {
                    "chat_id": chat_id,
                    "role": "assistant",
                    "content": "Agent responses generated",
                    "agent_responses": [r.model_dump(mode="json") for r in turn.results],
                },
            )
            turn.assistant_message_id = assistant_message["id"]
            await self.store.update(CHATS, chat_id, {"updated_at": _now_iso()})
        except Exception as e:
            logger.warning(f"Failed to save agent responses in chat {chat_id}: {e}")

        return turn

    async def get_history(self, chat_id: str) -> List[Dict[str, Any]]:
        """Messages of a chat, oldest first. Empty on store failure."""
        try:
            return await self.store.select(MESSAGES, {"chat_id": chat_id})
        except Exception as e:
            logger.warning(f"Failed to load history for chat {chat_id}: {e}")
            return []

    async def delete_chat(self, chat_id: str) -> bool:
        for message in await self.store.select(MESSAGES, {"chat_id": chat_id}):
            await self.store.delete(MESSAGES, message["id"])
        return await self.store.delete(CHATS, chat_id)
