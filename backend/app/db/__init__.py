"""Database module initialization"""
from .mongodb import MongoDB, get_db
from .repositories import DocumentRepository, ChatRepository

__all__ = ["MongoDB", "get_db", "DocumentRepository", "ChatRepository"]
