from datetime import datetime


def parse_ts(value: str) -> datetime:
    # Pydantic writes UTC as a trailing Z, which fromisoformat only accepts on 3.11+
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def create_todo_payload(
    title="Test Task",
    description="Do something",
    priority=5,
    status=None,
    due_date=None,
    tags=None,
):
    payload = {
        "title": title,
        "description": description,
        "priority": priority,
    }
    if status is not None:
        payload["status"] = status
    if due_date is not None:
        payload["due_date"] = due_date
    if tags is not None:
        payload["tags"] = tags
    return payload


def assert_todo_shape(todo: dict):
    # Basic structure validation
    for key in ["id", "title", "status", "priority", "archived", "created_at", "updated_at", "tags"]:
        assert key in todo
    # Optional fields
    assert "description" in todo
    assert "due_date" in todo
    assert isinstance(todo["id"], int)
    assert isinstance(todo["title"], str)
    assert isinstance(todo["archived"], bool)
    assert 1 <= todo["priority"] <= 10
    assert todo["status"] in ("todo", "in_progress", "done")
    # FastAPI/Pydantic returns strings for datetime fields
    parse_ts(todo["created_at"])
    parse_ts(todo["updated_at"])
    if todo["due_date"] is not None:
        parse_ts(todo["due_date"])


class TestHealth:
    def test_health_check(self, client):
        res = client.get("/")
        assert res.status_code == 200
        data = res.json()
        assert data["message"] == "Healthy"
        assert data["backend"] in ("memory", "sqlite")


class TestTodosCRUD:
    def test_create_todo_minimal(self, client):
        res = client.post("/api/v1/todos/", json={"title": "Buy milk"})
        assert res.status_code == 201
        todo = res.json()
        assert_todo_shape(todo)
        assert todo["title"] == "Buy milk"
        assert todo["description"] is None
        assert todo["priority"] == 5
        assert todo["status"] == "todo"
        assert todo["archived"] is False
        assert todo["tags"] == []

    def test_create_todo_with_due_date_date_string(self, client):
        payload = create_todo_payload(title="Pay bills", description="Electricity", due_date="2099-12-25")
        res = client.post("/api/v1/todos/", json=payload)
        assert res.status_code == 201
        todo = res.json()
        assert_todo_shape(todo)
        # Due date should be promoted to midnight
        assert todo["due_date"].startswith("2099-12-25")

    def test_create_todo_with_tags_creates_and_reuses(self, client):
        first = client.post("/api/v1/todos/", json=create_todo_payload(title="A", tags=["work", " urgent ", ""]))
        assert first.status_code == 201
        assert [t["name"] for t in first.json()["tags"]] == ["urgent", "work"]

        second = client.post("/api/v1/todos/", json=create_todo_payload(title="B", tags=["work"]))
        work_ids = {t["id"] for t in first.json()["tags"] if t["name"] == "work"}
        assert {t["id"] for t in second.json()["tags"]} == work_ids

        tags = client.get("/api/v1/tags/").json()
        assert [t["name"] for t in tags] == ["urgent", "work"]

    def test_get_todo_and_not_found(self, client):
        res_create = client.post("/api/v1/todos/", json=create_todo_payload(title="Read book"))
        assert res_create.status_code == 201
        tid = res_create.json()["id"]

        res_get = client.get(f"/api/v1/todos/{tid}")
        assert res_get.status_code == 200
        fetched = res_get.json()
        assert fetched["id"] == tid
        assert fetched["title"] == "Read book"

        res_404 = client.get("/api/v1/todos/999999")
        assert res_404.status_code == 404
        assert res_404.json()["detail"] == "Todo not found"

    def test_put_replace_todo(self, client):
        res_create = client.post(
            "/api/v1/todos/", json=create_todo_payload(title="Initial", description="A", tags=["home"])
        )
        assert res_create.status_code == 201
        tid = res_create.json()["id"]

        # Replace with PUT (uses TodoCreate schema)
        new_payload = create_todo_payload(
            title="Replaced", description=None, priority=8, status="done", due_date="2100-01-01"
        )
        res_put = client.put(f"/api/v1/todos/{tid}", json=new_payload)
        assert res_put.status_code == 200
        updated = res_put.json()
        assert updated["id"] == tid
        assert updated["title"] == "Replaced"
        assert updated["description"] is None
        assert updated["status"] == "done"
        assert updated["priority"] == 8
        assert updated["tags"] == []
        assert updated["due_date"].startswith("2100-01-01")

        res_put_nf = client.put("/api/v1/todos/424242", json=new_payload)
        assert res_put_nf.status_code == 404
        assert res_put_nf.json()["detail"] == "Todo not found"

    def test_patch_partial_update(self, client, clock):
        res_create = client.post("/api/v1/todos/", json=create_todo_payload(title="Partial", description="X"))
        assert res_create.status_code == 201
        created = res_create.json()
        tid = created["id"]

        clock.advance(minutes=5)
        res_patch = client.patch(f"/api/v1/todos/{tid}", json={"title": "Partial Updated", "status": "in_progress"})
        assert res_patch.status_code == 200
        patched = res_patch.json()
        assert patched["id"] == tid
        assert patched["title"] == "Partial Updated"
        assert patched["status"] == "in_progress"
        # description and creation time remain unchanged
        assert patched["description"] == "X"
        assert patched["created_at"] == created["created_at"]
        assert patched["updated_at"] != created["updated_at"]

        res_patch_nf = client.patch("/api/v1/todos/123456", json={"title": "Nope"})
        assert res_patch_nf.status_code == 404
        assert res_patch_nf.json()["detail"] == "Todo not found"

    def test_patch_explicit_null_clears_description(self, client):
        tid = client.post("/api/v1/todos/", json=create_todo_payload(title="Clear me", description="X")).json()["id"]
        res = client.patch(f"/api/v1/todos/{tid}", json={"description": None})
        assert res.status_code == 200
        assert res.json()["description"] is None

    def test_delete_todo(self, client):
        res_create = client.post("/api/v1/todos/", json=create_todo_payload(title="ToDelete"))
        tid = res_create.json()["id"]

        res_del = client.delete(f"/api/v1/todos/{tid}")
        assert res_del.status_code == 204
        assert res_del.text == ""

        res_get = client.get(f"/api/v1/todos/{tid}")
        assert res_get.status_code == 404
        res_del_again = client.delete(f"/api/v1/todos/{tid}")
        assert res_del_again.status_code == 404
        assert res_del_again.json()["detail"] == "Todo not found"

    def test_bulk_create(self, client):
        payload = {
            "todos": [
                create_todo_payload(title="Call dentist", priority=9, tags=["personal"]),
                create_todo_payload(title="Buy bread", priority=9, tags=["shopping"]),
            ]
        }
        res = client.post("/api/v1/todos/bulk", json=payload)
        assert res.status_code == 201
        created = res.json()
        assert [t["title"] for t in created] == ["Call dentist", "Buy bread"]
        assert client.get("/api/v1/todos/").json()["total"] == 2

    def test_bulk_create_rejects_empty(self, client):
        res = client.post("/api/v1/todos/bulk", json={"todos": []})
        assert res.status_code == 422


class TestArchive:
    def test_archive_and_unarchive(self, client):
        keep = client.post("/api/v1/todos/", json=create_todo_payload(title="Keep")).json()
        old = client.post("/api/v1/todos/", json=create_todo_payload(title="Old")).json()

        res = client.post(f"/api/v1/todos/{old['id']}/archive")
        assert res.status_code == 200
        assert res.json()["archived"] is True

        active = client.get("/api/v1/todos/").json()["items"]
        archived = client.get("/api/v1/todos/?archived=true").json()["items"]
        assert [t["id"] for t in active] == [keep["id"]]
        assert [t["id"] for t in archived] == [old["id"]]

        res = client.post(f"/api/v1/todos/{old['id']}/unarchive")
        assert res.status_code == 200
        assert res.json()["archived"] is False
        assert client.get("/api/v1/todos/?archived=true").json()["total"] == 0

    def test_archive_not_found(self, client):
        assert client.post("/api/v1/todos/9999/archive").status_code == 404
        assert client.post("/api/v1/todos/9999/unarchive").status_code == 404


class TestRankedListing:
    def test_default_listing_is_ranked_with_scores(self, client, clock):
        low = client.post("/api/v1/todos/", json=create_todo_payload(title="low", priority=1)).json()
        clock.advance(hours=1)
        high = client.post("/api/v1/todos/", json=create_todo_payload(title="high", priority=10)).json()
        mid = client.post("/api/v1/todos/", json=create_todo_payload(title="mid", priority=6)).json()

        res = client.get("/api/v1/todos/")
        assert res.status_code == 200
        items = res.json()["items"]
        assert [t["id"] for t in items] == [high["id"], mid["id"], low["id"]]
        scores = [t["score"] for t in items]
        assert scores == sorted(scores, reverse=True)

    def test_older_item_wins_same_priority(self, client, clock):
        older = client.post("/api/v1/todos/", json=create_todo_payload(title="older", priority=5)).json()
        clock.advance(hours=99)
        newer = client.post("/api/v1/todos/", json=create_todo_payload(title="newer", priority=5)).json()
        clock.advance(hours=1)
        items = client.get("/api/v1/todos/").json()["items"]
        assert [t["id"] for t in items] == [older["id"], newer["id"]]

    def test_ranking_is_stable_across_calls(self, client):
        for i in range(6):
            client.post("/api/v1/todos/", json=create_todo_payload(title=f"same {i}", priority=4))
        first = [t["id"] for t in client.get("/api/v1/todos/").json()["items"]]
        second = [t["id"] for t in client.get("/api/v1/todos/").json()["items"]]
        assert first == second == sorted(first)

    def test_order_asc_reverses_ranking(self, client):
        client.post("/api/v1/todos/", json=create_todo_payload(title="low", priority=1))
        client.post("/api/v1/todos/", json=create_todo_payload(title="high", priority=10))
        items = client.get("/api/v1/todos/?order=asc").json()["items"]
        assert [t["title"] for t in items] == ["low", "high"]

    def test_ranking_applies_before_pagination(self, client):
        for p in [3, 9, 1, 7, 5]:
            client.post("/api/v1/todos/", json=create_todo_payload(title=f"p{p}", priority=p))
        page = client.get("/api/v1/todos/?limit=2&offset=1").json()
        assert page["total"] == 5
        assert [t["priority"] for t in page["items"]] == [7, 5]


class TestListPaginationFilteringSorting:
    def seed_todos(self, client, clock, count=10):
        created_ids = []
        for i in range(count):
            payload = create_todo_payload(
                title=f"Task {i}",
                description=f"Desc {i}",
                status="done" if i % 2 == 0 else "todo",
                due_date=f"2099-01-{i + 1:02d}",
            )
            res = client.post("/api/v1/todos/", json=payload)
            assert res.status_code == 201
            created_ids.append(res.json()["id"])
            clock.advance(minutes=1)
        return created_ids

    def test_list_basic_pagination(self, client, clock):
        self.seed_todos(client, clock, 7)
        res1 = client.get("/api/v1/todos/?limit=3&offset=0")
        assert res1.status_code == 200
        page1 = res1.json()
        assert page1["limit"] == 3
        assert page1["offset"] == 0
        assert page1["total"] == 7
        assert len(page1["items"]) == 3

        page3 = client.get("/api/v1/todos/?limit=3&offset=6").json()
        assert page3["offset"] == 6
        assert len(page3["items"]) == 1

    def test_list_filter_status(self, client, clock):
        self.seed_todos(client, clock, 6)
        done = client.get("/api/v1/todos/?status=done&limit=100").json()
        assert done["total"] == 3
        assert all(item["status"] == "done" for item in done["items"])
        assert client.get("/api/v1/todos/?status=bogus").status_code == 422

    def test_list_filter_tag(self, client):
        tagged = client.post("/api/v1/todos/", json=create_todo_payload(title="tagged", tags=["work"])).json()
        client.post("/api/v1/todos/", json=create_todo_payload(title="untagged"))
        tag_id = tagged["tags"][0]["id"]
        items = client.get(f"/api/v1/todos/?tag_id={tag_id}").json()["items"]
        assert [t["id"] for t in items] == [tagged["id"]]

    def test_list_search_q_matches_title_and_description(self, client, clock):
        self.seed_todos(client, clock, 5)
        data_title = client.get("/api/v1/todos/?q=task 1&limit=100").json()
        assert [item["title"] for item in data_title["items"]] == ["Task 1"]

        data_desc = client.get("/api/v1/todos/?q=Desc 2&limit=100").json()
        assert any("Desc 2" in (item["description"] or "") for item in data_desc["items"])

    def test_list_sort_and_order(self, client, clock):
        self.seed_todos(client, clock, 5)
        res_desc = client.get("/api/v1/todos/?sort=-created_at&limit=5")
        assert res_desc.status_code == 200
        items = res_desc.json()["items"]
        created_ts = [parse_ts(t["created_at"]) for t in items]
        assert created_ts == sorted(created_ts, reverse=True)
        assert all(t["score"] is None for t in items)

        items_asc = client.get("/api/v1/todos/?sort=created_at&limit=5").json()["items"]
        created_ts_asc = [parse_ts(t["created_at"]) for t in items_asc]
        assert created_ts_asc == sorted(created_ts_asc)

        items_order_desc = client.get("/api/v1/todos/?sort=created_at&order=desc&limit=5").json()["items"]
        created_ts_desc = [parse_ts(t["created_at"]) for t in items_order_desc]
        assert created_ts_desc == sorted(created_ts_desc, reverse=True)

    def test_sort_by_priority(self, client):
        for p in [4, 9, 2]:
            client.post("/api/v1/todos/", json=create_todo_payload(title=f"p{p}", priority=p))
        items = client.get("/api/v1/todos/?sort=-priority").json()["items"]
        assert [t["priority"] for t in items] == [9, 4, 2]

    def test_unknown_sort_falls_back_to_score(self, client):
        client.post("/api/v1/todos/", json=create_todo_payload(title="a", priority=2))
        items = client.get("/api/v1/todos/?sort=title").json()["items"]
        assert items[0]["score"] is not None

    def test_list_invalid_order_param(self, client):
        res = client.get("/api/v1/todos/?order=invalid")
        assert res.status_code == 400
        assert res.json()["detail"] == "order must be 'asc' or 'desc'"


class TestValidationErrors:
    def test_create_validation_error_title_empty(self, client):
        res = client.post("/api/v1/todos/", json={"title": "  ", "description": "x"})
        assert res.status_code == 422
        body = res.json()
        assert body.get("error") == "ValidationError"
        assert body.get("message") == "Request validation failed"
        assert isinstance(body.get("detail"), list)

    def test_create_priority_out_of_range(self, client):
        res = client.post("/api/v1/todos/", json={"title": "too urgent", "priority": 11})
        assert res.status_code == 422

    def test_patch_validation_error_bad_due_date(self, client):
        tid = client.post("/api/v1/todos/", json=create_todo_payload(title="Due date bad")).json()["id"]
        res_patch = client.patch(f"/api/v1/todos/{tid}", json={"due_date": "not-a-date"})
        assert res_patch.status_code == 422
        body = res_patch.json()
        assert body.get("error") == "ValidationError"
        assert isinstance(body.get("detail"), list)


class TestBasicAuth:
    def test_requires_credentials_when_enabled(self, client, monkeypatch):
        monkeypatch.setenv("ENABLE_BASIC_AUTH", "true")
        monkeypatch.setenv("BASIC_AUTH_USERNAME", "alice")
        monkeypatch.setenv("BASIC_AUTH_PASSWORD", "s3cret")

        assert client.get("/api/v1/todos/").status_code == 401
        assert client.get("/api/v1/todos/", auth=("alice", "wrong")).status_code == 401
        res = client.post("/api/v1/todos/", json={"title": "mine"}, auth=("alice", "s3cret"))
        assert res.status_code == 201
        assert client.get("/api/v1/todos/", auth=("alice", "s3cret")).json()["total"] == 1

    def test_data_is_scoped_per_user(self, client, monkeypatch):
        client.post("/api/v1/todos/", json={"title": "local user todo"})
        monkeypatch.setenv("ENABLE_BASIC_AUTH", "true")
        monkeypatch.setenv("BASIC_AUTH_USERNAME", "alice")
        monkeypatch.setenv("BASIC_AUTH_PASSWORD", "s3cret")
        assert client.get("/api/v1/todos/", auth=("alice", "s3cret")).json()["total"] == 0
