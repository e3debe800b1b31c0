import pytest

from taskboard.mentions import (
    StaticDirectory,
    active_mention_query,
    candidate_names,
    insert_mention,
    match_users,
    parse_mentions,
    resolve_mentions,
    suggest_users,
)

USERS = [
    {"id": "1", "name": "Bob Jones", "username": "bob"},
    {"id": "2", "name": "Carol", "username": "cwhite"},
    {"id": "3", "name": "bob", "username": "robert"},
    {"id": "4", "name": "Dana", "username": None},
]


class TestParse:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("ping @bob and @carol", ["@bob", "@carol"]),
            ("email me at user@x", ["@x"]),
            ("@bob, @carol.", ["@bob", "@carol"]),
            ("a lone @ sign", []),
            ("@@bob", ["@bob"]),
            ("", []),
            (None, []),
        ],
    )
    def test_tokens(self, text, expected):
        assert [t.text for t in parse_mentions(text)] == expected

    def test_offsets_and_restartable(self):
        tokens = parse_mentions("hi @bob and @bob")
        assert [t.start for t in tokens] == [3, 12]
        # iterating again yields the same sequence
        assert [t.name for t in tokens] == ["bob", "bob"]

    def test_candidate_names_dedupe_case_insensitive(self):
        assert candidate_names(parse_mentions("@Bob @bob @carol @BOB")) == ["Bob", "carol"]


class TestResolve:
    def test_unknown_names_are_dropped(self):
        found = resolve_mentions("ping @bob and @cwhite, not @unknown", StaticDirectory(USERS))
        assert [u["id"] for u in found] == ["1", "2", "3"]

    def test_username_or_name_case_insensitive(self):
        assert [u["id"] for u in match_users(USERS, ["CAROL"])] == ["2"]
        assert [u["id"] for u in match_users(USERS, ["Robert"])] == ["3"]

    def test_each_user_once_in_directory_order(self):
        assert [u["id"] for u in match_users(USERS, ["robert", "bob"])] == ["1", "3"]

    def test_no_tokens_skips_lookup(self):
        class Exploding:
            def find_users_by_names(self, names):
                raise AssertionError("should not be called")

        assert resolve_mentions("no mentions here", Exploding()) == []

    def test_accepts_parsed_tokens(self):
        tokens = parse_mentions("@dana")
        assert [u["id"] for u in resolve_mentions(tokens, StaticDirectory(USERS))] == ["4"]


class TestTypingHelpers:
    def test_active_query(self):
        assert active_mention_query("hello @bo") == "bo"
        assert active_mention_query("hello @") == ""
        assert active_mention_query("hello @bob there") is None
        assert active_mention_query("no mention") is None
        assert active_mention_query("@ca and more", cursor=3) == "ca"

    def test_suggest_users(self):
        assert [u["id"] for u in suggest_users(USERS, "BO")] == ["1", "3"]
        assert [u["id"] for u in suggest_users(USERS, "", limit=2)] == ["1", "2"]

    def test_insert_mention(self):
        text, cursor = insert_mention("hey @bo how are you", 7, "bob")
        assert text == "hey @bob  how are you"
        assert cursor == 9
