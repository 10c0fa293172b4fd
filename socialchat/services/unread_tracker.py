from typing import Dict

from socialchat.core.logger import get_logger
from socialchat.repositories.conversation_repository import ConversationRepository
from socialchat.repositories.message_repository import MessageRepository


logger = get_logger(__name__)


class UnreadTracker:
    """
    Per-participant unread counters.

    A send increments every other participant's counter; a history fetch
    zeroes the reader's. `recount` rebuilds counters from read receipts when
    a send's propagation step is known to have failed.
    """

    def __init__(self, conversation_repo: ConversationRepository, message_repo: MessageRepository) -> None:
        self._conversation_repo = conversation_repo
        self._message_repo = message_repo

    async def on_message(self, conversation_id: str, sender_id: str) -> Dict[str, int]:
        return await self._conversation_repo.increment_unread(conversation_id, exclude_user=sender_id)

    async def on_read(self, conversation_id: str, reader_id: str) -> int:
        marked = await self._message_repo.mark_read_by_others(conversation_id, reader_id)
        await self._conversation_repo.reset_unread(conversation_id, reader_id)
        return marked

    async def recount(self, conversation_id: str) -> Dict[str, int]:
        convo = await self._conversation_repo.find_by_id(conversation_id)
        counts = {
            participant: await self._message_repo.count_unread_for(conversation_id, participant)
            for participant in convo.get("participants", [])
        }
        await self._conversation_repo.set_unread_counts(conversation_id, counts)
        logger.info(f"Recounted unread counters for conversation {conversation_id}: {counts}")
        return counts
