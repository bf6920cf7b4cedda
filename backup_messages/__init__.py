"""Export the messages and contacts of an iTunes iPhone backup to HTML and JSON."""

from .errors import BackupError, ConversationError, InputError
from .export import export_backup

__version__ = "1.0.0"

__all__ = ["BackupError", "ConversationError", "InputError", "export_backup", "__version__"]
