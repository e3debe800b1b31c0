import json
from datetime import date, datetime

from fastapi.testclient import TestClient

from taskboard.api.export import CSV_COLUMNS, export_filename, todos_to_csv, todos_to_json
from taskboard.api.main import app
from taskboard.api.models import Priority

client = TestClient(app)


def detailed_todo(**overrides):
    todo = {
        "id": "t1",
        "title": 'Say "hi"',
        "description": "line, with comma",
        "priority": Priority.HIGH,
        "user_id": "u1",
        "created_at": datetime(2025, 1, 25, 10, 15, 30),
        "updated_at": datetime(2025, 1, 25, 10, 15, 30),
        "tags": [{"id": "g1", "name": "Work"}, {"id": "g2", "name": "Urgent"}],
        "mentions": [
            {"todo_id": "t1", "user_id": "u2", "user": {"id": "u2", "name": "Bob Jones", "username": "bob", "email": "b@x.io"}},
        ],
        "notes": [
            {"id": "n2", "content": "newer", "todo_id": "t1", "user_id": "u1", "created_at": datetime(2025, 1, 26)},
            {"id": "n1", "content": "older", "todo_id": "t1", "user_id": "u1", "created_at": datetime(2025, 1, 25)},
        ],
    }
    todo.update(overrides)
    return todo


class TestCsv:
    def test_header_and_row_quoting(self):
        text = todos_to_csv([detailed_todo()])
        header, row = text.split("\n")
        assert header == ",".join(CSV_COLUMNS)
        assert row == (
            '"t1","Say ""hi""","line, with comma","HIGH","2025-01-25T10:15:30",'
            '"Work, Urgent","Bob Jones","newer; older"'
        )

    def test_no_trailing_newline(self):
        text = todos_to_csv([detailed_todo(), detailed_todo(id="t2")])
        assert not text.endswith("\n")
        assert len(text.split("\n")) == 3

    def test_empty_export_is_header_only(self):
        assert todos_to_csv([]) == "id,title,description,priority,createdAt,tags,mentions,notes"


class TestJson:
    def test_relations_inlined(self):
        payload = json.loads(todos_to_json([detailed_todo()]))
        assert payload[0]["priority"] == "HIGH"
        assert payload[0]["tags"][1]["name"] == "Urgent"
        assert payload[0]["mentions"][0]["user"]["username"] == "bob"
        assert payload[0]["created_at"] == "2025-01-25T10:15:30"


def test_export_filename():
    assert export_filename("u1", "csv", date(2025, 3, 1)) == "todos-u1-2025-03-01.csv"


class TestExportEndpoint:
    def seed(self, auth):
        for title in ("first", "second"):
            res = client.post("/api/v1/todos/", json={"title": title, "description": "@bob", "tags": ["Work"]}, headers=auth)
            assert res.status_code == 201

    def test_export_json(self, users, alice_auth):
        self.seed(alice_auth)
        res = client.get("/api/v1/export/?format=json", headers=alice_auth)
        assert res.status_code == 200
        assert res.headers["content-type"].startswith("application/json")
        disposition = res.headers["content-disposition"]
        assert disposition.startswith(f'attachment; filename="todos-{users["alice"]["id"]}-')
        assert disposition.endswith('.json"')
        # newest first
        assert [t["title"] for t in res.json()] == ["second", "first"]

    def test_export_csv(self, alice_auth):
        self.seed(alice_auth)
        res = client.get("/api/v1/export/?format=csv", headers=alice_auth)
        assert res.status_code == 200
        assert res.headers["content-type"].startswith("text/csv")
        lines = res.text.split("\n")
        assert lines[0] == ",".join(CSV_COLUMNS)
        assert len(lines) == 3
        assert lines[1].startswith('"') and '"second"' in lines[1]
        assert '"Bob Jones"' in lines[1]

    def test_export_other_user(self, users, alice_auth, bob_auth):
        self.seed(bob_auth)
        res = client.get(f"/api/v1/export/?format=json&user_id={users['bob']['id']}", headers=alice_auth)
        assert len(res.json()) == 2

    def test_unsupported_format(self, alice_auth):
        res = client.get("/api/v1/export/?format=xml", headers=alice_auth)
        assert res.status_code == 400

    def test_export_reads_all_todos_in_one_query(self, repo, alice_auth, monkeypatch):
        for i in range(12):
            client.post("/api/v1/todos/", json={"title": f"Task {i}"}, headers=alice_auth)

        queries = []
        list_todos = repo.list_todos

        def spy(query=None):
            queries.append(query)
            return list_todos(query)

        monkeypatch.setattr(repo, "list_todos", spy)
        res = client.get("/api/v1/export/?format=json", headers=alice_auth)
        assert len(res.json()) == 12
        assert len(queries) == 1
        assert queries[0].limit is None
