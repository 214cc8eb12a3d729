"""Shared fixtures: an in-memory Rally backend served through httpx.MockTransport.

FakeRally records every request (for call-count assertions) and keeps
relationship inverses consistent the way Rally does, using the inverse table
from rally_core.relationships.
"""
import json
import re
from typing import Optional

import httpx
import pytest

from rally_core.client import RallyClient
from rally_core.config import Settings
from rally_core.relationships import RELATIONSHIPS
from rally_core.stories import StoryAdapter

BASE_URL = "https://rally.test/slm/webservice/v2.0"
BASE_PATH = "/slm/webservice/v2.0"

# Write collection -> collection written on the target
INVERSE_COLLECTIONS = {
    spec.collection: RELATIONSHIPS[spec.inverse].collection for spec in RELATIONSHIPS.values()
}
MULTI_COLLECTIONS = [name for name in INVERSE_COLLECTIONS if name != "Parent"]
# Collections rendered when an artifact is read (Blockers reads back as Blocker, Duplicated is not returned)
READ_FIELDS = {
    "Predecessors": "Predecessors",
    "Successors": "Successors",
    "Children": "Children",
    "Blocked": "Blocked",
    "Blockers": "Blocker",
    "Duplicates": "Duplicates",
}


def make_settings(**overrides) -> Settings:
    values = {
        "rally_api_key": "test-api-key",
        "rally_workspace": "Alpha",
        "rally_base_url": BASE_URL,
    }
    values.update(overrides)
    return Settings(**values)


def workspace(object_id: int, name: str) -> dict:
    return {"ObjectID": object_id, "Name": name, "_ref": f"{BASE_URL}/workspace/{object_id}"}


def _ref_id(ref: str) -> str:
    return ref.rstrip("/").rsplit("/", 1)[-1]


class FakeRally:
    """Minimal stand-in for the Rally Web Services API."""

    def __init__(self, workspaces: Optional[list[dict]] = None):
        self.workspaces = [workspace(1, "Alpha")] if workspaces is None else workspaces
        self.workspace_errors: list[str] = []
        self.stories: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.status_overrides: dict[str, int] = {}
        self.network_failure = False
        self._next_id = 1000

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, method: Optional[str] = None, path: Optional[str] = None) -> list[httpx.Request]:
        return [
            r for r in self.requests
            if (method is None or r.method == method)
            and (path is None or r.url.path == BASE_PATH + path)
        ]

    @staticmethod
    def body(request: httpx.Request) -> dict:
        return json.loads(request.content)

    # ------------------------------------------------------------------
    # Story store
    # ------------------------------------------------------------------

    def add_story(self, name: str, formatted_id: Optional[str] = None, **fields) -> dict:
        object_id = self._next_id
        self._next_id += 1
        story = {
            "ObjectID": object_id,
            "FormattedID": formatted_id or f"US{object_id}",
            "Name": name,
            "Parent": None,
            **{collection: [] for collection in MULTI_COLLECTIONS},
        }
        story.update(fields)
        self.stories[str(object_id)] = story
        return story

    def find(self, artifact_id: str) -> Optional[dict]:
        if artifact_id in self.stories:
            return self.stories[artifact_id]
        return next((s for s in self.stories.values() if s["FormattedID"] == artifact_id), None)

    def render(self, story: dict) -> dict:
        view = {k: v for k, v in story.items() if k not in INVERSE_COLLECTIONS}
        view["_ref"] = f"{BASE_URL}/HierarchicalRequirement/{story['ObjectID']}"
        for collection, field in READ_FIELDS.items():
            members = [self.stories[key] for key in story[collection]]
            view[field] = {
                "Count": len(members),
                "_tagsNameArray": [{"Name": m["Name"], "_ref": f"/hierarchicalrequirement/{m['ObjectID']}"} for m in members],
            }
        parent = self.stories.get(story["Parent"]) if story["Parent"] else None
        view["Parent"] = {
            "_ref": f"{BASE_URL}/HierarchicalRequirement/{parent['ObjectID']}",
            "_refObjectName": parent["Name"],
        } if parent else None
        return view

    def _link(self, story: dict, collection: str, target: dict, add: bool) -> None:
        key, target_key = str(story["ObjectID"]), str(target["ObjectID"])
        if collection == "Parent":
            if story["Parent"]:
                old = self.stories[story["Parent"]]
                if key in old["Children"]:
                    old["Children"].remove(key)
            story["Parent"] = target_key if add else None
            if add:
                target["Children"].append(key)
            return

        members = story[collection]
        if add and target_key not in members:
            members.append(target_key)
        elif not add and target_key in members:
            members.remove(target_key)

        inverse = INVERSE_COLLECTIONS[collection]
        if inverse == "Parent":
            if add:
                target["Parent"] = key
            elif target["Parent"] == key:
                target["Parent"] = None
        elif add and key not in target[inverse]:
            target[inverse].append(key)
        elif not add and key in target[inverse]:
            target[inverse].remove(key)

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.network_failure:
            raise httpx.ConnectError("Connection refused", request=request)

        path = request.url.path[len(BASE_PATH):]
        for prefix, status in self.status_overrides.items():
            if path.startswith(prefix):
                return httpx.Response(status, json={"message": "forced failure"})

        if path == "/subscription":
            return httpx.Response(200, json={"Subscription": {"Name": "Test Subscription"}})
        if path == "/workspace":
            return self._query_workspaces(request)
        if path == "/HierarchicalRequirement/create" and request.method == "POST":
            return self._create(request)
        if path == "/HierarchicalRequirement" and request.method == "GET":
            return self._list(request)

        match = re.fullmatch(r"/HierarchicalRequirement/([^/]+)", path)
        if match:
            story = self.find(match.group(1))
            if story is None:
                return self._operation(errors=[f"Cannot find object to read: {match.group(1)}"])
            if request.method == "GET":
                return httpx.Response(200, json={"HierarchicalRequirement": self.render(story)})
            if request.method == "POST":
                return self._update(story, self.body(request)["HierarchicalRequirement"])
            if request.method == "DELETE":
                del self.stories[str(story["ObjectID"])]
                return self._operation()
        return httpx.Response(404, json={"message": f"Unknown path {path}"})

    def _operation(self, errors: Optional[list[str]] = None, obj: Optional[dict] = None) -> httpx.Response:
        result = {"Errors": errors or [], "Warnings": []}
        if obj is not None:
            result["Object"] = obj
        return httpx.Response(200, json={"OperationResult": result})

    def _query_workspaces(self, request: httpx.Request) -> httpx.Response:
        query = request.url.params.get("query")
        results = self.workspaces
        if query:
            by_id = re.fullmatch(r"\(ObjectID = (\d+)\)", query)
            by_name = re.fullmatch(r'\(Name = "(.*)"\)', query)
            if by_id:
                results = [w for w in results if str(w.get("ObjectID")) == by_id.group(1)]
            elif by_name:
                results = [w for w in results if w.get("Name") == by_name.group(1)]
        return httpx.Response(200, json={"QueryResult": {
            "Results": results,
            "TotalResultCount": len(results),
            "Errors": self.workspace_errors,
            "Warnings": [],
        }})

    def _create(self, request: httpx.Request) -> httpx.Response:
        fields = dict(self.body(request)["HierarchicalRequirement"])
        story = self.add_story(fields.pop("Name"), **fields)
        return httpx.Response(200, json={"CreateResult": {
            "Object": self.render(story),
            "Errors": [],
            "Warnings": [],
        }})

    def _list(self, request: httpx.Request) -> httpx.Response:
        page_size = int(request.url.params.get("pageSize", 20))
        stories = list(self.stories.values())
        results = [self.render(s) for s in stories[:page_size]]
        return httpx.Response(200, json={"QueryResult": {
            "Results": results,
            "TotalResultCount": len(stories),
            "PageSize": page_size,
            "StartIndex": 1,
            "Errors": [],
            "Warnings": [],
        }})

    def _update(self, story: dict, changes: dict) -> httpx.Response:
        for field, value in changes.items():
            if field == "Parent" and value is None:
                if story["Parent"]:
                    self._link(story, "Parent", self.stories[story["Parent"]], add=False)
            elif field in INVERSE_COLLECTIONS:
                target = self.find(_ref_id(value["_ref"]))
                if target is None:
                    return self._operation(errors=[f"Could not read: {value['_ref']}"])
                self._link(story, field, target, add=value.get("_type", "add") == "add")
            else:
                story[field] = value
        return self._operation(obj=self.render(story))


@pytest.fixture
def fake_rally() -> FakeRally:
    return FakeRally()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def client(settings, fake_rally) -> RallyClient:
    return RallyClient(settings, transport=fake_rally.transport)


@pytest.fixture
def adapter(client) -> StoryAdapter:
    return StoryAdapter(client)


@pytest.fixture
def linked_stories(fake_rally):
    """Two stories, US1 and US2, with no relationships."""
    return fake_rally.add_story("Login page", "US1"), fake_rally.add_story("Password reset", "US2")
