"""Storage backends for tasks and completion records."""

from quest_server.storage.base import QuestStorage
from quest_server.storage.memory import InMemoryQuestStorage
from quest_server.storage.postgres import PostgresQuestStorage

__all__ = [
    "InMemoryQuestStorage",
    "PostgresQuestStorage",
    "QuestStorage",
]
