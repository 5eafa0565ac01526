"""One-to-one chat: conversations, messages, read receipts and typing state."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from signal_client.context import ClientContext
from signal_client.core.clock import EPOCH, ensure_aware, utcnow
from signal_client.core.errors import EmptyContentError, InvalidChatError, StoreError
from signal_client.realtime.reconciler import LiveCollection, Reconciler
from signal_client.realtime.subscription import Subscription
from signal_client.schemas.chat import Chat, Message, MessageStatus
from signal_client.schemas.collections import CHATS, MESSAGES
from signal_client.services.base import Service
from signal_client.storage.blobs import Upload, safe_filename
from signal_client.store.base import SERVER_TIMESTAMP, Change, Increment, Query

logger = logging.getLogger(__name__)

MEDIA_FOLDER = "chats"
ATTACHMENT_PLACEHOLDER = "Photo Attachment"


def _timestamp(value: datetime | None) -> float:
    return ensure_aware(value).timestamp() if value else EPOCH.timestamp()


class ChatService(Service):
    """Chat mutations shared by the inbox and the room."""

    async def get(self, chat_id: str) -> Chat | None:
        try:
            document = await self.store.get(CHATS, chat_id)
        except StoreError as exc:
            logger.warning("Failed to load chat %s: %s", chat_id, exc)
            return None
        return Chat.from_document(document) if document is not None else None

    async def find_chat(self, partner_id: str) -> Chat | None:
        """The existing chat between the viewer and ``partner_id``, if any."""
        uid = self.viewer().uid
        page = await self.store.query(
            Query(CHATS).where("participants", "array-contains", uid)
        )
        for document in page.documents:
            chat = Chat.from_document(document)
            if partner_id in chat.participants:
                return chat
        return None

    async def start_chat(self, partner_id: str) -> str | None:
        """Return the chat with ``partner_id``, creating it on first contact.

        Raises:
            InvalidChatError: If ``partner_id`` is empty or the viewer.
        """
        uid = self.viewer().uid
        if not partner_id or partner_id == uid:
            raise InvalidChatError("A chat needs two distinct participants")
        try:
            existing = await self.find_chat(partner_id)
            if existing is not None:
                return existing.id
            return await self.store.create(
                CHATS,
                {
                    "participants": [uid, partner_id],
                    "lastMessage": "",
                    "lastMessageAt": SERVER_TIMESTAMP,
                    "unreadCount": {uid: 0, partner_id: 0},
                    "typingStatus": {uid: False, partner_id: False},
                    "createdAt": SERVER_TIMESTAMP,
                },
            )
        except StoreError as exc:
            logger.error("Failed to start chat with %s: %s", partner_id, exc)
            return None

    async def send_message(
        self, chat_id: str, content: str = "", media: Upload | None = None
    ) -> str | None:
        """Send a message and bump the partner's unread counter.

        The counter is adjusted with a backend increment, so concurrent
        senders never lose updates.

        Raises:
            EmptyContentError: If there is neither text nor media.
        """
        content = content.strip()
        if not content and media is None:
            raise EmptyContentError("A message needs content or media")
        uid = self.viewer().uid
        chat = await self.get(chat_id)
        if chat is None or uid not in chat.participants:
            logger.warning("Cannot send to chat %s", chat_id)
            return None
        partner_id = chat.partner_of(uid)

        try:
            media_url = ""
            if media is not None:
                millis = int(utcnow().timestamp() * 1000)
                media_url = await self.context.blobs.put(
                    f"{MEDIA_FOLDER}/{chat_id}/{millis}_{safe_filename(media.filename)}",
                    media.data,
                    media.content_type,
                )
            message_id = await self.store.create(
                MESSAGES,
                {
                    "chatId": chat_id,
                    "senderId": uid,
                    "content": content or ATTACHMENT_PLACEHOLDER,
                    "mediaURL": media_url,
                    "status": MessageStatus.SENT.value,
                    "createdAt": SERVER_TIMESTAMP,
                },
            )
            fields: dict[str, object] = {
                "lastMessage": content or ATTACHMENT_PLACEHOLDER,
                "lastMessageAt": SERVER_TIMESTAMP,
                f"typingStatus.{uid}": False,
            }
            if partner_id and partner_id != uid:
                fields[f"unreadCount.{partner_id}"] = Increment(1)
            await self.store.update(CHATS, chat_id, fields)
        except StoreError as exc:
            logger.error("Failed to send message to %s: %s", chat_id, exc)
            return None
        return message_id

    async def mark_read(self, chat_id: str, messages: list[Message]) -> int:
        """Mark the partner's unread messages read and reset the viewer's counter.

        Both writes go in one atomic batch. Returns the number of messages
        marked; 0 when nothing was pending or the batch failed.
        """
        uid = self.viewer().uid
        pending = [
            message
            for message in messages
            if message.sender_id != uid and message.status != MessageStatus.READ
        ]
        if not pending:
            return 0
        batch = self.store.batch()
        for message in pending:
            batch.update(MESSAGES, message.id, {"status": MessageStatus.READ.value})
        batch.update(CHATS, chat_id, {f"unreadCount.{uid}": 0})
        try:
            await self.store.commit(batch)
        except StoreError as exc:
            logger.error("Failed to mark chat %s read: %s", chat_id, exc)
            return 0
        return len(pending)

    async def set_typing(self, chat_id: str, typing: bool) -> bool:
        uid = self.viewer().uid
        try:
            await self.store.update(CHATS, chat_id, {f"typingStatus.{uid}": typing})
        except StoreError as exc:
            logger.warning("Failed to update typing state in %s: %s", chat_id, exc)
            return False
        return True


class ChatInbox:
    """Live list of the viewer's chats, most recent activity first."""

    def __init__(self, context: ClientContext) -> None:
        self.context = context
        self.service = ChatService(context)
        self._reconciler: Reconciler[Chat] | None = None

    @property
    def last_error(self) -> BaseException | None:
        return self._reconciler.error if self._reconciler is not None else None

    async def start(self) -> bool:
        uid = self.context.require_viewer().uid
        self._reconciler = Reconciler(
            self.context,
            Query(CHATS).where("participants", "array-contains", uid),
            Chat.from_document,
            name="chats",
        )
        try:
            await self._reconciler.start()
        except StoreError as exc:
            logger.warning("Chat list subscription failed to open: %s", exc)
            return False
        return True

    def chats(self) -> list[Chat]:
        if self._reconciler is None:
            return []
        return sorted(
            self._reconciler.items(),
            key=lambda chat: _timestamp(chat.last_message_at),
            reverse=True,
        )

    @property
    def unread_total(self) -> int:
        uid = self.context.viewer_id
        if uid is None:
            return 0
        return sum(chat.unread_for(uid) for chat in self.chats())

    async def start_chat(self, partner_id: str) -> str | None:
        return await self.service.start_chat(partner_id)

    async def flush(self) -> None:
        if self._reconciler is not None:
            await self._reconciler.flush()

    def stop(self) -> None:
        if self._reconciler is not None:
            self._reconciler.stop()


class ChatRoom:
    """An open conversation.

    While open, every snapshot marks the partner's messages read and resets
    the viewer's unread counter. Typing state clears itself after the
    configured timeout.
    """

    def __init__(self, context: ClientContext, chat_id: str) -> None:
        self.context = context
        self.chat_id = chat_id
        self.service = ChatService(context)
        self.messages: LiveCollection[Message] = LiveCollection(Message.from_document)
        self._chat: Reconciler[Chat] = Reconciler(
            context, Query.document(CHATS, chat_id), Chat.from_document, name=f"chat:{chat_id}"
        )
        self._subscription: Subscription | None = None
        self._typing_task: asyncio.Task[None] | None = None

    @property
    def chat(self) -> Chat | None:
        return self._chat.collection.get(self.chat_id)

    @property
    def last_error(self) -> BaseException | None:
        if self._subscription is not None and self._subscription.error is not None:
            return self._subscription.error
        return self._chat.error

    @property
    def partner_typing(self) -> bool:
        chat = self.chat
        uid = self.context.viewer_id
        if chat is None or uid is None:
            return False
        partner = chat.partner_of(uid)
        return partner is not None and chat.is_typing(partner)

    async def start(self) -> bool:
        self.context.require_viewer()
        query = (
            Query(MESSAGES)
            .where("chatId", "==", self.chat_id)
            .order("createdAt", descending=True)
            .take(self.context.settings.message_window)
        )
        try:
            await self._chat.start()
            self._subscription = await self.context.subscribe(
                query, self._handle, name=f"messages:{self.chat_id}"
            )
        except StoreError as exc:
            logger.warning("Chat room %s failed to open: %s", self.chat_id, exc)
            return False
        return True

    async def _handle(self, changes: list[Change]) -> None:
        self.messages.apply_batch(changes)
        await self.service.mark_read(self.chat_id, self.messages.items())

    def items(self) -> list[Message]:
        """Messages in the window, oldest first."""
        return sorted(self.messages.items(), key=lambda message: _timestamp(message.created_at))

    async def send(self, content: str = "", media: Upload | None = None) -> str | None:
        message_id = await self.service.send_message(self.chat_id, content, media)
        if message_id is not None:
            self._cancel_typing_timer()
        return message_id

    async def typing(self) -> None:
        """Report the viewer as typing; the flag clears after the timeout."""
        self._cancel_typing_timer()
        await self.service.set_typing(self.chat_id, True)
        self._typing_task = asyncio.create_task(self._clear_typing_later())

    async def _clear_typing_later(self) -> None:
        await asyncio.sleep(self.context.settings.typing_timeout_seconds)
        await self.service.set_typing(self.chat_id, False)

    def _cancel_typing_timer(self) -> None:
        if self._typing_task is not None and not self._typing_task.done():
            self._typing_task.cancel()
        self._typing_task = None

    async def clear_typing(self) -> None:
        self._cancel_typing_timer()
        await self.service.set_typing(self.chat_id, False)

    async def flush(self) -> None:
        await self._chat.flush()
        if self._subscription is not None:
            await self._subscription.flush()

    def stop(self) -> None:
        self._cancel_typing_timer()
        self._chat.stop()
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
