"""Messaging exceptions."""


class MessagingError(Exception):
    """Base exception for the messaging core."""

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class BackendError(MessagingError):
    """Exception raised when the persistence backend fails or rejects a call."""

    def __init__(self, detail: str, status_code: int | None = None):
        super().__init__(f"Backend error: {detail}")
        self.status_code = status_code


class NotFoundError(BackendError):
    """Exception raised when a resource is not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(f"{resource} with id '{identifier}' not found", status_code=404)
        self.resource = resource
        self.identifier = identifier


class FetchFailure(MessagingError):
    """Exception raised when conversations or messages cannot be loaded."""


class SendFailure(MessagingError):
    """Exception raised when a message could not be sent."""

    def __init__(self, detail: str, client_id: str | None = None):
        super().__init__(detail)
        self.client_id = client_id


class ConversationBlockedError(SendFailure):
    """Exception raised when sending to a conversation that accepts no messages."""

    def __init__(self, conversation_id: str):
        super().__init__(
            f"Conversation '{conversation_id}' is blocked and accepts no new messages"
        )
        self.conversation_id = conversation_id


class CreateConversationFailure(MessagingError):
    """Exception raised when a conversation could not be created."""


class DeleteFailure(MessagingError):
    """Exception raised when a message could not be deleted."""


class ArchiveFailure(MessagingError):
    """Exception raised when a conversation could not be archived."""
