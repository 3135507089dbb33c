import threading
import time
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from pagecrafter import llm_client
from pagecrafter import main as main_mod
from pagecrafter.main import app
from pagecrafter.projects import FileProjectStore, ProjectNotFound, RedisProjectStore, new_project
from pagecrafter.ratelimit import MemoryRateLimiter

client = TestClient(app)


@pytest.fixture
def store(tmp_path):
    return FileProjectStore(tmp_path / "projects")


def test_file_store_roundtrip(store):
    p = new_project("Landing", "for the bakery")
    store.put(p)
    assert store.get(p["id"]) == p
    assert [x["id"] for x in store.list()] == [p["id"]]
    assert store.delete(p["id"]) is True
    assert store.get(p["id"]) is None
    assert store.delete(p["id"]) is False


def test_file_store_rejects_path_like_ids(store):
    assert store.get("../etc/passwd") is None
    with pytest.raises(ValueError):
        store.put({"id": "../x"})


def test_record_exchange_appends_messages(store):
    p = new_project("Docs")
    store.put(p)
    store.record_exchange(p["id"], "write a resume", "Here it is.", document={"title": "CV", "sections": []})
    saved = store.get(p["id"])
    assert saved["messages"] == [
        {"role": "user", "content": "write a resume"},
        {"role": "assistant", "content": "Here it is."},
    ]
    assert saved["lastDocument"]["title"] == "CV"

    with pytest.raises(ProjectNotFound):
        store.record_exchange("missing", "a", "b")


def test_redis_store_uses_prefixed_keys():
    fake = MagicMock()
    fake.get.return_value = '{"id": "abc", "name": "n"}'
    fake.delete.return_value = 1
    store = RedisProjectStore("redis://unused", client=fake)
    store.put({"id": "abc", "name": "n"})
    key, raw = fake.set.call_args[0]
    assert key == "pc:project:abc"
    assert '"name":"n"' in raw
    assert store.get("abc") == {"id": "abc", "name": "n"}
    assert store.delete("abc") is True


def test_project_endpoints_and_history(monkeypatch, store):
    monkeypatch.setattr(main_mod, "_store", store)
    monkeypatch.setattr(main_mod, "_limiter", MemoryRateLimiter(window_seconds=60, max_requests=100))
    monkeypatch.setattr(
        llm_client,
        "stream_text",
        lambda prompt: iter(['RESPONSE: Made it.\nJSON_START {"html": "<b>x</b>", "css": "", "js": ""} JSON_END']),
    )

    r = client.post("/api/projects", json={"name": "Shop", "description": "store front"})
    assert r.status_code == 201
    pid = r.json()["id"]

    r = client.post("/api/generate", json={"prompt": "a shop", "projectId": pid})
    assert r.status_code == 200

    project = client.get(f"/api/projects/{pid}").json()
    assert project["lastGeneratedCode"]["html"] == "<b>x</b>"
    assert project["messages"][-1] == {"role": "assistant", "content": "Made it."}
    assert [p["id"] for p in client.get("/api/projects").json()["projects"]] == [pid]

    assert client.delete(f"/api/projects/{pid}").status_code == 200
    assert client.get(f"/api/projects/{pid}").status_code == 404


def test_generate_with_unknown_project_is_404(monkeypatch, store):
    monkeypatch.setattr(main_mod, "_store", store)
    monkeypatch.setattr(main_mod, "_limiter", MemoryRateLimiter(window_seconds=60, max_requests=100))

    def never_called(prompt):
        raise AssertionError("should not stream for an unknown project")

    monkeypatch.setattr(llm_client, "stream_text", never_called)
    r = client.post("/api/generate-pdf", json={"prompt": "x", "projectId": "nope"})
    assert r.status_code == 404


def test_concurrent_exchanges_on_one_project_are_not_lost(tmp_path):
    class SlowReadStore(FileProjectStore):
        def get(self, project_id):
            project = super().get(project_id)
            time.sleep(0.05)
            return project

    store = SlowReadStore(tmp_path / "projects")
    p = new_project("Shared")
    store.put(p)

    threads = [
        threading.Thread(target=store.record_exchange, args=(p["id"], f"prompt {i}", f"reply {i}"))
        for i in range(2)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    messages = store.get(p["id"])["messages"]
    assert len(messages) == 4
    assert {m["content"] for m in messages if m["role"] == "user"} == {"prompt 0", "prompt 1"}


def test_redis_record_exchange_runs_in_a_watched_transaction():
    fake = MagicMock()
    pipe = MagicMock()
    pipe.get.return_value = '{"id": "abc", "messages": [{"role": "user", "content": "old"}]}'
    fake.transaction.side_effect = lambda func, *keys, **kw: func(pipe)
    store = RedisProjectStore("redis://unused", client=fake)

    project = store.record_exchange("abc", "new", "ok", code={"html": "", "css": "", "js": ""})

    args, kwargs = fake.transaction.call_args
    assert args[1] == "pc:project:abc"
    assert kwargs == {"value_from_callable": True}
    pipe.multi.assert_called_once()
    key, raw = pipe.set.call_args[0]
    assert key == "pc:project:abc"
    assert len(project["messages"]) == 3
    assert '"lastGeneratedCode"' in raw
    fake.set.assert_not_called()


def test_redis_record_exchange_unknown_project():
    fake = MagicMock()
    pipe = MagicMock()
    pipe.get.return_value = None
    fake.transaction.side_effect = lambda func, *keys, **kw: func(pipe)
    store = RedisProjectStore("redis://unused", client=fake)
    with pytest.raises(ProjectNotFound):
        store.record_exchange("gone", "a", "b")
    pipe.set.assert_not_called()
