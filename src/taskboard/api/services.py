"""Mention synchronization, todo detail assembly and demo data seeding."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..mentions import parse_mentions, resolve_mentions
from .models import DetailedTodo, TodoEntity, UserEntity
from .repositories import Repository

logger = logging.getLogger(__name__)

DEMO_USERS = (
    ("Sushant Verma", "sushant", "sushant.verma@example.com"),
    ("Akshita Kapoor", "akshita", "akshita.kapoor@example.com"),
    ("Mohan Sharma", "mohan", "mohan.sharma@example.com"),
    ("Gurupreet Kaur", "gurupreet", "gurupreet.kaur@example.com"),
    ("Puneet Malhotra", "puneet", "puneet.malhotra@example.com"),
)
DEMO_TAGS = ("Work", "Personal", "Urgent", "Later", "Ideas", "Meeting")
DEMO_PASSWORD = "Password123"


def public_user(user: Optional[UserEntity]) -> Optional[Dict[str, Any]]:
    """Drop the password hash from a user record."""
    if user is None:
        return None
    return {"id": user["id"], "name": user["name"], "username": user["username"], "email": user["email"]}


# PUBLIC_INTERFACE
class MentionSynchronizer:
    """
    Keeps a todo's Mention set equal to the users resolvable from its
    description at the time of the last save.

    The user lookup runs first; the stored set is only touched once it has
    succeeded, and then replaced in a single repository call. A failing lookup
    therefore leaves the previous mentions in place.
    """

    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    def resolve(self, description: Optional[str]) -> List[UserEntity]:
        return resolve_mentions(parse_mentions(description), self._repo)

    def apply(self, todo_id: str, users: List[UserEntity]) -> None:
        self._repo.replace_mentions(todo_id, [u["id"] for u in users])
        logger.debug("Todo %s now mentions %d user(s)", todo_id, len(users))

    def sync(self, todo_id: str, description: Optional[str]) -> List[UserEntity]:
        users = self.resolve(description)
        self.apply(todo_id, users)
        return users


# PUBLIC_INTERFACE
def detail_todo(repo: Repository, todo: TodoEntity) -> DetailedTodo:
    """
    Resolve a todo's relations: tags in order, notes newest first with their
    author, and mentions with the mentioned user.
    """
    users: Dict[str, Optional[Dict[str, Any]]] = {}

    def user_for(user_id: str) -> Optional[Dict[str, Any]]:
        if user_id not in users:
            users[user_id] = public_user(repo.get_user(user_id))
        return users[user_id]

    notes = [dict(note, user=user_for(note["user_id"])) for note in repo.list_notes(todo["id"])]
    mentions = []
    for mention in repo.list_mentions(todo["id"]):
        user = user_for(mention["user_id"])
        if user is not None:
            mentions.append(dict(mention, user=user))

    return {
        "id": todo["id"],
        "title": todo["title"],
        "description": todo["description"],
        "priority": todo["priority"],
        "user_id": todo["user_id"],
        "created_at": todo["created_at"],
        "updated_at": todo["updated_at"],
        "tags": repo.get_tags(todo["tag_ids"]),
        "notes": notes,
        "mentions": mentions,
    }


def seed_demo_data(repo: Repository, password_hash: str) -> None:
    """Create the demo users and the shared tag vocabulary if they are missing."""
    for name, username, email in DEMO_USERS:
        if repo.get_user_by_login(email) is None:
            repo.create_user(name=name, username=username, email=email, password_hash=password_hash)
    repo.ensure_tags(DEMO_TAGS)
    logger.info("Seeded %d demo users and %d tags", len(DEMO_USERS), len(DEMO_TAGS))
