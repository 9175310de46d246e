"""Collection access for documents and chat history"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models.document import DocumentRecord, OCRStatus
from ..models.response import ChatSession, Source, StoredChatMessage
from ..utils.helpers import generate_message_id

logger = logging.getLogger(__name__)


def _without_mongo_id(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    doc = dict(doc)
    doc.pop("_id", None)
    return doc


class DocumentRepository:
    """Read and update document records in the ``documents`` collection"""

    def __init__(self, database):
        self.collection = database.documents

    async def get(self, document_id: str) -> Optional[DocumentRecord]:
        doc = _without_mongo_id(await self.collection.find_one({"id": document_id}))
        return DocumentRecord(**doc) if doc else None

    async def update(self, document_id: str, **fields) -> None:
        fields["updated_at"] = datetime.utcnow()
        await self.collection.update_one({"id": document_id}, {"$set": fields})

    async def set_status(self, document_id: str, status: OCRStatus, **fields) -> None:
        await self.update(document_id, ocr_status=status.value, **fields)

    async def ensure(self, document_id: str, file_path: str, apartment_id: Optional[str] = None) -> DocumentRecord:
        """Insert a pending record for a document announced by the upload webhook"""
        existing = await self.get(document_id)
        if existing is not None:
            return existing
        record = DocumentRecord(id=document_id, file_path=file_path, apartment_id=apartment_id,
                                file_name=file_path.rsplit("/", 1)[-1])
        await self.collection.insert_one(record.model_dump(mode="json"))
        return record

    async def list_completed(self, apartment_id: str) -> List[DocumentRecord]:
        cursor = self.collection.find(
            {"apartment_id": apartment_id, "ocr_status": OCRStatus.COMPLETED.value}
        ).sort("file_name", 1)
        return [DocumentRecord(**_without_mongo_id(doc)) async for doc in cursor]


class ChatRepository:
    """Chat sessions, apartments and persisted turns"""

    def __init__(self, database):
        self.sessions = database.chat_sessions
        self.messages = database.chat_messages
        self.apartments = database.apartments

    async def get_session(self, session_id: str) -> Optional[ChatSession]:
        doc = _without_mongo_id(await self.sessions.find_one({"id": session_id}))
        return ChatSession(**doc) if doc else None

    async def get_apartment_name(self, apartment_id: str) -> str:
        doc = await self.apartments.find_one({"id": apartment_id})
        return (doc or {}).get("name", "")

    async def add_message(
        self,
        session_id: str,
        role: str,
        content: str,
        sources: Optional[List[Source]] = None,
    ) -> StoredChatMessage:
        message = StoredChatMessage(
            id=generate_message_id(),
            session_id=session_id,
            role=role,
            content=content,
            sources=sources or [],
        )
        await self.messages.insert_one(message.model_dump(mode="json"))
        await self.sessions.update_one(
            {"id": session_id},
            {"$set": {"updated_at": datetime.utcnow()}},
        )
        return message

    async def list_messages(self, session_id: str) -> List[StoredChatMessage]:
        cursor = self.messages.find({"session_id": session_id}).sort("created_at", 1)
        return [StoredChatMessage(**_without_mongo_id(doc)) async for doc in cursor]
