# session_store.py
from datetime import datetime, timezone
from typing import Optional

from pymongo import ReturnDocument
from pymongo.errors import AutoReconnect, ConnectionFailure, PyMongoError

from app.models.conversation import Conversation, Turn, UserInfo
from app.services.mongo_service import MongoConnectionManager
from app.utils.errors import PersistenceError
from app.utils.logger import get_logger

logger = get_logger("session_store")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationStore:
    """Conversations collection, one document per session id."""

    def __init__(self, connection: MongoConnectionManager):
        self.connection = connection

    async def _collection(self):
        return await self.connection.get_collection()

    def _fail(self, action: str, session_id: str, error: PyMongoError) -> PersistenceError:
        if isinstance(error, (ConnectionFailure, AutoReconnect)):
            self.connection.invalidate()
        logger.error(f"❌ MongoDB error while {action} session {session_id}: {error}")
        return PersistenceError(detail=str(error))

    async def load_conversation(self, session_id: str) -> Optional[Conversation]:
        collection = await self._collection()
        try:
            doc = await collection.find_one({"sessionId": session_id})
        except PyMongoError as e:
            raise self._fail("loading", session_id, e) from e
        return Conversation.model_validate(doc) if doc else None

    async def create_conversation(self, session_id: str, user_info: UserInfo,
                                  system_prompt: str) -> Conversation:
        """
        Insert the session document unless it already exists.

        `userInfo` and the system turn are only written on insert, so a second
        form submission for the same session never changes them.
        """
        now = utcnow()
        system_turn = Turn(role="user", parts=[{"text": system_prompt}])
        collection = await self._collection()
        try:
            doc = await collection.find_one_and_update(
                {"sessionId": session_id},
                {"$setOnInsert": {
                    "sessionId": session_id,
                    "userInfo": user_info.model_dump(),
                    "history": [system_turn.to_document()],
                    "createdAt": now,
                    "updatedAt": now,
                }},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            raise self._fail("creating", session_id, e) from e
        logger.info(f"🆕 Conversation ready for session {session_id}")
        return Conversation.model_validate(doc)

    async def get_or_create(self, session_id: str, user_info: UserInfo,
                            system_prompt_factory) -> Conversation:
        conversation = await self.load_conversation(session_id)
        if conversation is None:
            conversation = await self.create_conversation(
                session_id, user_info, system_prompt_factory(user_info.model_dump())
            )
        return conversation

    async def append_turns(self, session_id: str, *turns: Turn) -> None:
        """Atomically push turns onto the history and bump updatedAt."""
        collection = await self._collection()
        try:
            result = await collection.update_one(
                {"sessionId": session_id},
                {
                    "$push": {"history": {"$each": [turn.to_document() for turn in turns]}},
                    "$set": {"updatedAt": utcnow()},
                },
            )
        except PyMongoError as e:
            raise self._fail("updating", session_id, e) from e
        if result.matched_count == 0:
            raise PersistenceError(detail=f"Conversation {session_id} disappeared before save")
        logger.debug(f"💾 Appended {len(turns)} turns to session {session_id}")
