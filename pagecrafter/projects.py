"""Project history: chat messages and the last artifact, keyed by project id."""
from __future__ import annotations

import json
import logging
import os
import re
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import redis

log = logging.getLogger(__name__)

PROJECTS_DIR = Path(os.getenv("PROJECTS_DIR", "cache/projects"))
_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class ProjectNotFound(KeyError):
    pass


def new_project(name: str, description: str = "") -> Dict[str, Any]:
    return {
        "id": uuid.uuid4().hex,
        "name": name,
        "description": description,
        "createdAt": datetime.now(timezone.utc).isoformat(),
        "messages": [],
    }


class ProjectStore:
    def __init__(self) -> None:
        # Serializes read-modify-write of a project within this process.
        self._lock = threading.RLock()

    def get(self, project_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def put(self, project: Dict[str, Any]) -> None:
        raise NotImplementedError

    def delete(self, project_id: str) -> bool:
        raise NotImplementedError

    def list(self) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def require(self, project_id: str) -> Dict[str, Any]:
        project = self.get(project_id)
        if project is None:
            raise ProjectNotFound(project_id)
        return project

    def record_exchange(
        self,
        project_id: str,
        prompt: str,
        response_text: str,
        *,
        code: Optional[Dict[str, Any]] = None,
        document: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        with self._lock:
            project = _with_exchange(self.require(project_id), prompt, response_text, code, document)
            self.put(project)
        return project


def _with_exchange(
    project: Dict[str, Any],
    prompt: str,
    response_text: str,
    code: Optional[Dict[str, Any]],
    document: Optional[Dict[str, Any]],
) -> Dict[str, Any]:
    messages = list(project.get("messages") or [])
    messages.append({"role": "user", "content": prompt})
    messages.append({"role": "assistant", "content": response_text})
    project = dict(project, messages=messages)
    if code is not None:
        project["lastGeneratedCode"] = code
    if document is not None:
        project["lastDocument"] = document
    return project


class FileProjectStore(ProjectStore):
    """One JSON file per project under `root`."""

    def __init__(self, root: Optional[Path] = None) -> None:
        super().__init__()
        self.root = Path(root or PROJECTS_DIR)

    def _path(self, project_id: str) -> Optional[Path]:
        if not _ID_RE.match(project_id or ""):
            return None
        return self.root / f"{project_id}.json"

    def get(self, project_id: str) -> Optional[Dict[str, Any]]:
        path = self._path(project_id)
        if path is None or not path.exists():
            return None
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)

    def put(self, project: Dict[str, Any]) -> None:
        path = self._path(str(project.get("id") or ""))
        if path is None:
            raise ValueError(f"invalid project id: {project.get('id')!r}")
        self.root.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        with self._lock:
            with tmp.open("w", encoding="utf-8") as f:
                json.dump(project, f, ensure_ascii=False, separators=(",", ":"))
            tmp.replace(path)

    def delete(self, project_id: str) -> bool:
        path = self._path(project_id)
        if path is None:
            return False
        with self._lock:
            if not path.exists():
                return False
            path.unlink()
        return True

    def list(self) -> List[Dict[str, Any]]:
        if not self.root.exists():
            return []
        projects = []
        for path in self.root.glob("*.json"):
            try:
                with path.open("r", encoding="utf-8") as f:
                    projects.append(json.load(f))
            except ValueError:
                log.warning("projects: skipping unreadable file %s", path)
        projects.sort(key=lambda p: p.get("createdAt") or "", reverse=True)
        return projects


class RedisProjectStore(ProjectStore):
    def __init__(self, redis_url: str, client: Optional["redis.Redis"] = None, prefix: str = "pc:project:") -> None:
        super().__init__()
        self._redis = client or redis.from_url(redis_url, decode_responses=True)
        self.prefix = prefix

    def get(self, project_id: str) -> Optional[Dict[str, Any]]:
        raw = self._redis.get(self.prefix + project_id)
        return json.loads(raw) if raw else None

    def put(self, project: Dict[str, Any]) -> None:
        raw = json.dumps(project, separators=(",", ":"), ensure_ascii=False)
        self._redis.set(self.prefix + str(project["id"]), raw)

    def delete(self, project_id: str) -> bool:
        return bool(self._redis.delete(self.prefix + project_id))

    def record_exchange(
        self,
        project_id: str,
        prompt: str,
        response_text: str,
        *,
        code: Optional[Dict[str, Any]] = None,
        document: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        key = self.prefix + project_id

        # WATCH/MULTI: retried by redis-py when another writer touches the key first.
        def append(pipe: "redis.client.Pipeline") -> Dict[str, Any]:
            raw = pipe.get(key)
            if not raw:
                raise ProjectNotFound(project_id)
            project = _with_exchange(json.loads(raw), prompt, response_text, code, document)
            pipe.multi()
            pipe.set(key, json.dumps(project, separators=(",", ":"), ensure_ascii=False))
            return project

        return self._redis.transaction(append, key, value_from_callable=True)

    def list(self) -> List[Dict[str, Any]]:
        projects = []
        for key in self._redis.scan_iter(match=self.prefix + "*"):
            raw = self._redis.get(key)
            if raw:
                projects.append(json.loads(raw))
        projects.sort(key=lambda p: p.get("createdAt") or "", reverse=True)
        return projects


def build_store(redis_url: Optional[str] = None) -> ProjectStore:
    url = (redis_url if redis_url is not None else os.getenv("REDIS_URL", "")).strip()
    if url:
        return RedisProjectStore(url)
    return FileProjectStore()
