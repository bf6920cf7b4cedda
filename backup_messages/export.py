"""
End-to-end export of an iTunes backup: path checks, database access and the
handles -> contacts -> conversations -> pages pipeline.
"""

from __future__ import annotations
import logging
import sqlite3
from contextlib import closing
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

from .contacts import bind_contacts, load_contact_lookup, load_handles
from .conversations import BuildReport, ConversationBuilder
from .errors import BackupError, InputError
from .render import (
    Renderer,
    assign_human_names,
    copy_stylesheet,
    merge_threads,
    sort_conversations,
    write_json_exports,
)
from .utils import CONTACTS_DB_NAME, MESSAGES_DB_NAME

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackupPaths:
    backup_dir: Path
    messages_db: Path
    contacts_db: Path
    output_dir: Path

    @property
    def attachments_dir(self) -> Path:
        return self.output_dir / "attachments"

    @property
    def conversations_dir(self) -> Path:
        return self.output_dir / "conversations"


def validate_paths(input_dir, output_dir) -> BackupPaths:
    """Check the backup folder and the output folder before anything is written"""
    backup_dir = Path(input_dir).expanduser().resolve()
    if not backup_dir.exists():
        raise InputError("Input directory does not exist or cannot be read.")
    if not backup_dir.is_dir():
        raise InputError("Input must be a directory.")

    messages_db = backup_dir / MESSAGES_DB_NAME
    if not messages_db.is_file():
        raise InputError("Input directory does not contain a readable messages file.")
    contacts_db = backup_dir / CONTACTS_DB_NAME
    if not contacts_db.is_file():
        raise InputError("Input directory does not contain a readable contacts file.")

    out = Path(output_dir).expanduser().resolve()
    if out.exists():
        if not out.is_dir():
            raise InputError("Output path is not a directory.")
        if any(out.iterdir()):
            raise InputError("Output directory is not empty.")

    return BackupPaths(backup_dir, messages_db, contacts_db, out)


def decode_text(raw: bytes) -> str:
    """Text columns with invalid UTF-8 are kept, bad bytes become U+FFFD"""
    return raw.decode("utf-8", errors="replace")


def open_database(path: Path, label: str) -> sqlite3.Connection:
    """Open a backup database read-only, failing early if it is not SQLite"""
    try:
        conn = sqlite3.connect(f"{Path(path).as_uri()}?mode=ro", uri=True)
        conn.row_factory = sqlite3.Row
        conn.text_factory = decode_text
        conn.execute("SELECT name FROM sqlite_master LIMIT 1").fetchall()
    except sqlite3.Error as e:
        raise InputError(f"Unable to open {label} database '{path}': {e}") from e
    return conn


def prepare_output(paths: BackupPaths) -> None:
    paths.output_dir.mkdir(parents=True, exist_ok=True)
    paths.attachments_dir.mkdir()
    paths.conversations_dir.mkdir()


def export_backup(input_dir, output_dir, *, strict: bool = False,
                  show_progress: bool = True) -> Tuple[BackupPaths, BuildReport]:
    """Export every conversation of the backup in input_dir into output_dir"""
    paths = validate_paths(input_dir, output_dir)
    logger.info("Reading backup %s", paths.backup_dir)
    messages_conn = open_database(paths.messages_db, "messages")
    try:
        contacts_conn = open_database(paths.contacts_db, "contacts")
    except InputError:
        messages_conn.close()
        raise

    with closing(messages_conn), closing(contacts_conn):
        try:
            handles = load_handles(messages_conn)
            lookup = load_contact_lookup(contacts_conn)
        except sqlite3.Error as e:
            raise BackupError(f"Unable to read handles or contacts: {e}") from e
        contacts = bind_contacts(handles, lookup)

        prepare_output(paths)
        copy_stylesheet(paths.output_dir)

        builder = ConversationBuilder(messages_conn, paths.backup_dir, paths.attachments_dir, strict=strict)
        report = builder.build_all(show_progress=show_progress)

    conversations = sort_conversations(report.conversations)
    assign_human_names(conversations, contacts)
    merge_threads(conversations)

    write_json_exports(paths.output_dir, conversations, contacts)
    Renderer(paths.output_dir).render(conversations, contacts)
    logger.info("Exported %d conversations to %s", len(conversations), paths.output_dir)
    return paths, report
