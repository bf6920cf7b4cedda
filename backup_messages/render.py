"""
Thread merging and output rendering.

Conversations get a human readable name from the bound contacts; threads that
end up with the same name (an SMS thread and an iMessage thread with the same
person, for example) are merged before the HTML pages and JSON exports are
written.
"""

from __future__ import annotations
import json
import logging
import shutil
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .models import UNKNOWN_HANDLE, ContactRecord, Conversation, Message, body_to_dict

logger = logging.getLogger(__name__)

PACKAGE_DIR = Path(__file__).resolve().parent
TEMPLATES_DIR = PACKAGE_DIR / "templates"
STYLESHEET = PACKAGE_DIR / "static" / "style.css"

TIMESTAMP_FORMAT = "%m/%d/%Y %I:%M %p"
UNKNOWN_SENDER_NAME = "Unknown"


def contact_display_name(contacts: Mapping[int, ContactRecord], handle) -> str:
    """Contact name, else the normalized identifier, else the raw handle id"""
    if handle == UNKNOWN_HANDLE:
        return UNKNOWN_SENDER_NAME
    contact = contacts.get(handle)
    if contact is None:
        return str(handle)
    return contact.display_name


def human_name(conversation: Conversation, contacts: Mapping[int, ContactRecord]) -> str:
    if conversation.is_group:
        if conversation.group_name:
            return conversation.group_name
        return " and ".join(contact_display_name(contacts, m) for m in conversation.members)
    return contact_display_name(contacts, conversation.contact_key)


def assign_human_names(conversations: Iterable[Conversation], contacts: Mapping[int, ContactRecord]) -> None:
    for conversation in conversations:
        conversation.human_name = human_name(conversation, contacts)


def merge_threads(conversations: List[Conversation]) -> List[Conversation]:
    """Fold conversations sharing a human name into the first one seen.

    Pairwise scan over the (small) list of conversations; the list is
    modified in place and also returned.
    """
    i = 0
    while i < len(conversations):
        current = conversations[i]
        j = 0
        while j < len(conversations):
            other = conversations[j]
            if (other.human_name and other.human_name == current.human_name
                    and other.chat_id != current.chat_id):
                logger.info("Same person %r between %d and %d", other.human_name,
                            current.chat_id, other.chat_id)
                current.messages = current.messages + other.messages
                current.sort_messages()
                current.merged_chat_ids.append(other.chat_id)
                current.merged_chat_ids.extend(other.merged_chat_ids)
                del conversations[j]
                if j < i:
                    i -= 1
                continue
            j += 1
        i += 1
    return conversations


def contact_key_order(conversation: Conversation):
    """Numbers sort before strings, the way the original document store ordered mixed keys"""
    key = conversation.contact_key
    if isinstance(key, str):
        return (1, 0, key)
    return (0, key, "")


def sort_conversations(conversations: List[Conversation]) -> List[Conversation]:
    conversations.sort(key=contact_key_order)
    return conversations


def status_change(message: Message, sender_name: str, contacts: Mapping[int, ContactRecord]) -> Dict[str, Any]:
    """Pieces of a group membership / name change sentence"""
    body = body_to_dict(message.body)
    view = {"type": body["type"], "person": sender_name}
    if "other_handle" in body:
        view["other"] = contact_display_name(contacts, body["other_handle"])
    if "group_name" in body:
        view["group_name"] = body["group_name"] or ""
    return view


def message_view(message: Message, contacts: Mapping[int, ContactRecord]) -> Dict[str, Any]:
    sender_name = "You" if message.is_from_me else contact_display_name(contacts, message.sender)
    view = {
        "rowid": message.rowid,
        "from_me": message.is_from_me,
        "sender": sender_name,
        "protocol": message.protocol,
        "timestamp": message.timestamp.strftime(TIMESTAMP_FORMAT) if message.timestamp else "",
        "readable": message.is_readable,
        "attachments": [a.to_dict() for a in message.attachments],
    }
    if message.is_readable:
        view["content"] = message.body.content
    else:
        view["status"] = status_change(message, sender_name, contacts)
    return view


def conversation_view(conversation: Conversation, contacts: Mapping[int, ContactRecord]) -> Dict[str, Any]:
    return {
        "contact_id": str(conversation.contact_key),
        "human_name": conversation.human_name or str(conversation.contact_key),
        "group_message": conversation.is_group,
        "message_count": len(conversation.messages),
        "messages": [message_view(m, contacts) for m in conversation.messages],
    }


class Renderer:
    """Writes index.html and one page per conversation through the packaged templates"""

    def __init__(self, output_dir, templates_dir=TEMPLATES_DIR):
        self.output_dir = Path(output_dir)
        self.conversations_dir = self.output_dir / "conversations"
        self.env = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            autoescape=select_autoescape(["html"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def render_index(self, conversations: List[Conversation]) -> str:
        template = self.env.get_template("index.html")
        return template.render(conversations=[
            {
                "contact_id": str(c.contact_key),
                "human_name": c.human_name or str(c.contact_key),
                "group_message": c.is_group,
                "message_count": len(c.messages),
            }
            for c in conversations
        ])

    def render_conversation(self, conversation: Conversation, contacts: Mapping[int, ContactRecord]) -> str:
        template = self.env.get_template("conversation.html")
        return template.render(conversation=conversation_view(conversation, contacts))

    def render(self, conversations: List[Conversation], contacts: Mapping[int, ContactRecord]) -> List[Path]:
        self.conversations_dir.mkdir(parents=True, exist_ok=True)
        written = []

        index_path = self.output_dir / "index.html"
        index_path.write_text(self.render_index(conversations), encoding="utf-8")
        written.append(index_path)

        for conversation in conversations:
            page = self.conversations_dir / f"{conversation.contact_key}.html"
            page.write_text(self.render_conversation(conversation, contacts), encoding="utf-8")
            written.append(page)
        logger.info("Wrote %d HTML pages", len(written))
        return written


def timestamp_order(conversation: Conversation):
    first = conversation.first_timestamp
    return (first is not None, first.timestamp() if first else 0.0)


def write_json_exports(output_dir, conversations: List[Conversation],
                       contacts: Mapping[int, ContactRecord]) -> None:
    """messages.json ordered by first message time, contacts.json keyed by handle id"""
    output_dir = Path(output_dir)
    ordered = sorted(conversations, key=timestamp_order)
    with (output_dir / "messages.json").open("w", encoding="utf-8") as f:
        json.dump([c.to_dict() for c in ordered], f, indent="\t", ensure_ascii=False)

    indexed = {str(handle): contacts[handle].to_dict() for handle in sorted(contacts)}
    with (output_dir / "contacts.json").open("w", encoding="utf-8") as f:
        json.dump(indexed, f, indent="\t", ensure_ascii=False)


def copy_stylesheet(output_dir) -> Path:
    target = Path(output_dir) / "style.css"
    shutil.copyfile(STYLESHEET, target)
    return target
