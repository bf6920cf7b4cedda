"""Exceptions that stop an export."""


class BackupError(Exception):
    """Base class for errors that stop an export"""


class InputError(BackupError):
    """The input backup or the output folder cannot be used"""


class ConversationError(BackupError):
    """A chat could not be read while running in strict mode"""

    def __init__(self, chat_id: int, cause: Exception):
        super().__init__(f"Could not build conversation for chat {chat_id}: {cause}")
        self.chat_id = chat_id
