"""Ordering, merging and last-message rules for message threads.

Every function here is pure: it takes message lists and returns new ones, so
the store can apply the same rules after appends, page merges and deletes.
"""

from collections.abc import Iterable

from estate_messaging.schemas import Conversation, Message, MessageSearchFilters


def sort_messages(messages: Iterable[Message]) -> list[Message]:
    """Sort messages by ``(created_at, id)`` ascending."""
    return sorted(messages, key=lambda m: m.sort_key)


def merge_messages(existing: Iterable[Message], incoming: Iterable[Message]) -> list[Message]:
    """Merge ``incoming`` into ``existing`` and return the ordered thread.

    Duplicates are resolved in favour of ``incoming``: an incoming record
    replaces any existing entry with the same ``id`` or the same ``client_id``,
    which is how a server-confirmed message takes over its optimistic
    placeholder. The result does not depend on the order in which pages
    arrive.
    """
    incoming = list(incoming)
    incoming_ids = {m.id for m in incoming}
    incoming_client_ids = {m.client_id for m in incoming if m.client_id}

    by_id: dict[str, Message] = {}
    replaced: dict[str, Message] = {}
    for message in existing:
        if message.id in incoming_ids:
            replaced[message.id] = message
            continue
        if message.client_id and message.client_id in incoming_client_ids:
            continue
        by_id[message.id] = message
    for message in incoming:
        previous = replaced.get(message.id)
        by_id[message.id] = _carry_over(previous, message) if previous else message

    return sort_messages(by_id.values())


def _carry_over(previous: Message, current: Message) -> Message:
    """Keep read receipts and deletion known locally when a record is refreshed.

    Both only ever move forward, so an older server copy must not undo them.
    """
    update = {}
    read_by = {**current.read_by}
    for reader, read_at in previous.read_by.items():
        if reader not in read_by or read_at < read_by[reader]:
            read_by[reader] = read_at
    if read_by != current.read_by:
        update["read_by"] = read_by
    if previous.is_deleted and not current.is_deleted:
        update.update(
            is_deleted=True,
            deleted_at=previous.deleted_at,
            content=previous.content,
        )
    return current.model_copy(update=update) if update else current


def resolve_last_message(
    messages: Iterable[Message], current: Message | None = None
) -> Message | None:
    """Pick the message a conversation should show as its latest.

    The newest non-deleted message wins; when every known message is deleted
    the newest deleted one (a tombstone) is used. ``current`` is the
    conversation's present pointer and only counts when the thread does not
    already hold a record with its id.
    """
    candidates = merge_messages([current] if current else [], messages)
    if not candidates:
        return None
    for message in reversed(candidates):
        if not message.is_deleted:
            return message
    return candidates[-1]


def reconcile_last_message(conversation: Conversation, messages: list[Message]) -> Conversation:
    """Return ``conversation`` with ``last_message`` consistent with ``messages``."""
    last = resolve_last_message(messages, conversation.last_message)
    if last == conversation.last_message:
        return conversation
    return conversation.model_copy(update={"last_message": last})


def filter_messages(messages: Iterable[Message], filters: MessageSearchFilters) -> list[Message]:
    """Apply search filters to a thread, oldest first."""
    result = []
    query = filters.query.lower() if filters.query else None
    for message in messages:
        if query and (message.is_deleted or query not in message.content.lower()):
            continue
        if filters.start_date and message.created_at < filters.start_date:
            continue
        if filters.end_date and message.created_at > filters.end_date:
            continue
        if filters.message_types and message.type not in filters.message_types:
            continue
        result.append(message)
    return sort_messages(result)


def page_bounds(total: int, page: int, limit: int) -> tuple[int, int]:
    """Slice bounds of ``page`` in an oldest-first thread of ``total`` messages.

    Page 1 holds the newest ``limit`` messages, page 2 the block before it.
    """
    end = max(total - (page - 1) * limit, 0)
    start = max(end - limit, 0)
    return start, end
