"""
Mention parsing and resolution.

The same functions run on the server, where resolved users are persisted as
Mention records, and in the client engine, where they drive optimistic
mentions and inline suggestions. Both sides must see identical tokens for
identical text, so nothing here depends on the call site.
"""
from __future__ import annotations

import re
from typing import (
    Any,
    Iterable,
    Iterator,
    List,
    Mapping,
    NamedTuple,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    Union,
)

# ASCII word characters only, so "user@x" and "@bob," split the same way everywhere.
MENTION_PATTERN = re.compile(r"@(\w+)", re.ASCII)

DEFAULT_SUGGESTION_LIMIT = 5

UserLike = Mapping[str, Any]


class MentionToken(NamedTuple):
    """A single `@name` occurrence: its start offset and raw text including the `@`."""

    start: int
    text: str

    @property
    def name(self) -> str:
        return self.text[1:]


class MentionTokens:
    """
    Lazy, restartable view over the mention tokens of a text.

    Each iteration rescans the text from the start, so the object can be
    iterated any number of times and always yields the same sequence.
    """

    __slots__ = ("_text",)

    def __init__(self, text: Optional[str]) -> None:
        self._text = text or ""

    def __iter__(self) -> Iterator[MentionToken]:
        for match in MENTION_PATTERN.finditer(self._text):
            yield MentionToken(match.start(), match.group(0))

    def __repr__(self) -> str:
        return f"MentionTokens({list(self)!r})"


class UserDirectory(Protocol):
    """Anything that can look users up by exact, case-insensitive username or name."""

    def find_users_by_names(self, names: Sequence[str]) -> List[Any]:
        ...


# PUBLIC_INTERFACE
def parse_mentions(text: Optional[str]) -> MentionTokens:
    """
    Return the mention tokens found in `text`, scanning left to right.

    A token is a maximal run of word characters immediately preceded by `@`.
    A lone `@` yields nothing and tokens never overlap.
    """
    return MentionTokens(text)


# PUBLIC_INTERFACE
def candidate_names(tokens: Iterable[MentionToken]) -> List[str]:
    """
    Strip the leading `@` and drop case-insensitive duplicates, keeping the
    first spelling seen.
    """
    seen = set()
    names: List[str] = []
    for token in tokens:
        folded = token.name.casefold()
        if folded in seen:
            continue
        seen.add(folded)
        names.append(token.name)
    return names


# PUBLIC_INTERFACE
def match_users(users: Iterable[UserLike], names: Iterable[str]) -> List[UserLike]:
    """
    Return every user whose username or name equals one of `names`
    (case-insensitive, exact). Users come back once each, in directory order.
    """
    wanted = {n.casefold() for n in names}
    if not wanted:
        return []
    matched: List[UserLike] = []
    seen_ids = set()
    for user in users:
        username = (user.get("username") or "").casefold()
        name = (user.get("name") or "").casefold()
        if username not in wanted and name not in wanted:
            continue
        if user["id"] in seen_ids:
            continue
        seen_ids.add(user["id"])
        matched.append(user)
    return matched


# PUBLIC_INTERFACE
def resolve_mentions(
    source: Union[str, None, Iterable[MentionToken]],
    directory: UserDirectory,
) -> List[Any]:
    """
    Resolve the mentions in `source` (text or already parsed tokens) against
    `directory`. Tokens that match nobody are dropped silently.
    """
    tokens = parse_mentions(source) if source is None or isinstance(source, str) else source
    names = candidate_names(tokens)
    if not names:
        return []
    return directory.find_users_by_names(names)


class StaticDirectory:
    """In-memory user directory over an already fetched user list."""

    def __init__(self, users: Iterable[UserLike]) -> None:
        self._users = list(users)

    def find_users_by_names(self, names: Sequence[str]) -> List[UserLike]:
        return match_users(self._users, names)


# PUBLIC_INTERFACE
def active_mention_query(text: str, cursor: Optional[int] = None) -> Optional[str]:
    """
    Return the partial name being typed at `cursor`, or None when the cursor
    is not inside a mention.

    The query is everything between the last `@` before the cursor and the
    cursor itself; any whitespace in between closes the mention.
    """
    if cursor is None:
        cursor = len(text)
    before = text[:cursor]
    at = before.rfind("@")
    if at == -1:
        return None
    query = before[at + 1:]
    if any(ch.isspace() for ch in query):
        return None
    return query


# PUBLIC_INTERFACE
def suggest_users(
    users: Iterable[UserLike],
    query: str,
    limit: int = DEFAULT_SUGGESTION_LIMIT,
) -> List[UserLike]:
    """Users whose username or name contains `query`, case-insensitive, capped at `limit`."""
    q = query.casefold()
    out: List[UserLike] = []
    for user in users:
        if len(out) >= limit:
            break
        username = (user.get("username") or "").casefold()
        name = (user.get("name") or "").casefold()
        if q in username or q in name:
            out.append(user)
    return out


# PUBLIC_INTERFACE
def insert_mention(text: str, cursor: int, username: str) -> Tuple[str, int]:
    """
    Replace the partial mention ending at `cursor` with `@username ` and
    return the new text together with the cursor position after the insert.
    """
    before, after = text[:cursor], text[cursor:]
    at = before.rfind("@")
    if at == -1:
        at = len(before)
    inserted = f"@{username} "
    new_before = before[:at] + inserted
    return new_before + after, len(new_before)
