"""
Test configuration for the media API and derivative cache.

Fixtures:
- make_image: build real image bytes with Pillow
- FakeOriginalStore: in-memory OriginalStore with call counters and a gate
  for holding fetches open (concurrency tests)
- FakePocketBase: storage service double plugged into httpx.MockTransport
- client: FastAPI TestClient wired to the fake storage service
"""

import asyncio
import json
import re
import sys
import uuid
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import httpx
import pytest
from PIL import Image

# Add backend directory to the Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from derivative_cache import NotFoundError, ResourceMeta
from media_api.services import build_services
from media_api.storage_client import PocketBaseClient

STORAGE_URL = "http://pocketbase.test"
USERS_COLLECTION_ID = "_pb_users_auth_"
IMAGES_COLLECTION_ID = "pbc_images"


# ============================================
# Image helpers
# ============================================

def make_image(
    width: int,
    height: int,
    color: Tuple[int, ...] = (200, 40, 40),
    fmt: str = "PNG",
    mode: str = "RGB",
) -> bytes:
    """Encode a solid-colour image."""
    img = Image.new(mode, (width, height), color)
    buffer = BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


def decode(data: bytes) -> Image.Image:
    img = Image.open(BytesIO(data))
    img.load()
    return img


# ============================================
# Fake OriginalStore
# ============================================

class FakeOriginalStore:
    """
    OriginalStore double.

    originals maps resource id -> bytes; ids present with None have a record
    but no original image.
    """

    def __init__(self, originals: Optional[Dict[str, Optional[bytes]]] = None):
        self.originals: Dict[str, Optional[bytes]] = dict(originals or {})
        self.meta_calls = 0
        self.fetch_calls = 0
        self.gate: Optional[asyncio.Event] = None
        self.fail_next: Optional[Exception] = None

    async def get_resource_meta(self, resource_id: str) -> ResourceMeta:
        self.meta_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if resource_id not in self.originals:
            raise NotFoundError(f"Resource '{resource_id}' not found", resource_id=resource_id)
        return ResourceMeta(
            resource_id=resource_id,
            has_original=self.originals[resource_id] is not None,
            filename=f"{resource_id}.png",
        )

    async def fetch_original(self, resource_id: str, meta: Optional[ResourceMeta] = None) -> bytes:
        self.fetch_calls += 1
        if self.fail_next is not None:
            error, self.fail_next = self.fail_next, None
            raise error
        return self.originals[resource_id]


@pytest.fixture
def fake_store():
    return FakeOriginalStore({
        "u1": make_image(1000, 1000),
        "u2": None,
        "u3": make_image(640, 480, color=(20, 120, 220)),
        "user1": make_image(300, 300),
        "user12": make_image(300, 300, color=(0, 0, 0)),
    })


# ============================================
# Fake storage service
# ============================================

def parse_multipart(request: httpx.Request) -> Tuple[Dict[str, str], Dict[str, Tuple[str, bytes]]]:
    """Split an httpx multipart body into form fields and files."""
    boundary = request.headers["content-type"].split("boundary=")[1].encode()
    fields: Dict[str, str] = {}
    files: Dict[str, Tuple[str, bytes]] = {}

    for part in request.content.split(b"--" + boundary):
        if not part.strip() or part.startswith(b"--"):
            continue
        header, _, payload = part.lstrip(b"\r\n").partition(b"\r\n\r\n")
        payload = payload[:-2]  # trailing CRLF before the next boundary
        header_text = header.decode()
        name = re.search(r'name="([^"]+)"', header_text).group(1)
        filename = re.search(r'filename="([^"]+)"', header_text)
        if filename:
            files[name] = (filename.group(1), payload)
        else:
            fields[name] = payload.decode()

    return fields, files


class FakePocketBase:
    """
    Minimal PocketBase double served through httpx.MockTransport.

    Supports record get/create/update, file download, auth-refresh and health.
    """

    def __init__(self):
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {"users": {}, "images": {}}
        self.collection_ids = {"users": USERS_COLLECTION_ID, "images": IMAGES_COLLECTION_ID}
        self.file_fields = {"users": "avatar", "images": "image"}
        self.files: Dict[Tuple[str, str, str], bytes] = {}
        self.tokens: Dict[str, str] = {}
        self.healthy = True
        self.file_status: Optional[int] = None
        self.requests = []

    # ---- seeding ----

    def add_user(self, user_id: str, avatar: Optional[bytes] = None, admin: Any = False, token: Optional[str] = None):
        record = {
            "id": user_id,
            "collectionId": USERS_COLLECTION_ID,
            "collectionName": "users",
            "username": f"name_{user_id}",
            "email": f"{user_id}@example.com",
            "created": "2024-01-01 00:00:00.000Z",
            "admin": admin,
            "avatar": "",
        }
        self.collections["users"][user_id] = record
        if avatar is not None:
            self._store_file("users", user_id, f"avatar_{user_id}.png", avatar)
        if token:
            self.tokens[token] = user_id
        return record

    def add_image(self, image_id: str, owner: str, data: Optional[bytes] = None):
        record = {
            "id": image_id,
            "collectionId": IMAGES_COLLECTION_ID,
            "collectionName": "images",
            "owner": owner,
            "image": "",
        }
        self.collections["images"][image_id] = record
        if data is not None:
            self._store_file("images", image_id, f"image_{image_id}.png", data)
        return record

    def stored_file(self, collection: str, record_id: str) -> Optional[bytes]:
        record = self.collections[collection][record_id]
        filename = record.get(self.file_fields[collection])
        if not filename:
            return None
        return self.files.get((self.collection_ids[collection], record_id, filename))

    def _store_file(self, collection: str, record_id: str, filename: str, data: bytes):
        self.collections[collection][record_id][self.file_fields[collection]] = filename
        self.files[(self.collection_ids[collection], record_id, filename)] = data

    # ---- transport ----

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, request.url.path))
        path = request.url.path

        if path == "/api/health":
            if not self.healthy:
                return httpx.Response(500, json={"message": "unhealthy"})
            return httpx.Response(200, json={"code": 200, "message": "API is healthy."})

        match = re.fullmatch(r"/api/collections/([^/]+)/auth-refresh", path)
        if match and request.method == "POST":
            user_id = self.tokens.get(request.headers.get("authorization", ""))
            if user_id is None:
                return httpx.Response(401, json={"message": "The request requires valid record authorization token."})
            return httpx.Response(200, json={"token": "refreshed", "record": self.collections["users"][user_id]})

        match = re.fullmatch(r"/api/files/([^/]+)/([^/]+)/([^/]+)", path)
        if match:
            if self.file_status is not None:
                return httpx.Response(self.file_status)
            data = self.files.get(match.groups())
            if data is None:
                return httpx.Response(404, json={"message": "File not found."})
            return httpx.Response(200, content=data, headers={"content-type": "image/png"})

        match = re.fullmatch(r"/api/collections/([^/]+)/records(?:/([^/]+))?", path)
        if match:
            collection, record_id = match.groups()
            records = self.collections.get(collection)
            if records is None:
                return httpx.Response(404, json={"message": "Missing collection."})
            if request.method == "POST" and record_id is None:
                return self._create(collection, request)
            if record_id not in records:
                return httpx.Response(404, json={"message": "The requested resource wasn't found."})
            if request.method == "GET":
                return httpx.Response(200, json=self._select(records[record_id], request))
            if request.method == "PATCH":
                return self._update(collection, record_id, request)

        return httpx.Response(404, json={"message": "Not found."})

    def _select(self, record: Dict[str, Any], request: httpx.Request) -> Dict[str, Any]:
        fields = request.url.params.get("fields")
        if not fields:
            return dict(record)
        wanted = fields.split(",")
        return {k: v for k, v in record.items() if k in wanted}

    def _create(self, collection: str, request: httpx.Request) -> httpx.Response:
        fields, files = parse_multipart(request)
        record_id = uuid.uuid4().hex[:15]
        self.collections[collection][record_id] = {
            "id": record_id,
            "collectionId": self.collection_ids[collection],
            "collectionName": collection,
            self.file_fields[collection]: "",
            **fields,
        }
        for _, (filename, data) in files.items():
            self._store_file(collection, record_id, filename, data)
        return httpx.Response(200, json=self.collections[collection][record_id])

    def _update(self, collection: str, record_id: str, request: httpx.Request) -> httpx.Response:
        record = self.collections[collection][record_id]
        if request.headers.get("content-type", "").startswith("multipart/form-data"):
            fields, files = parse_multipart(request)
            record.update(fields)
            for _, (filename, data) in files.items():
                self._store_file(collection, record_id, filename, data)
        else:
            for key, value in json.loads(request.content or b"{}").items():
                record[key] = "" if value is None else value
        return httpx.Response(200, json=record)


@pytest.fixture
def fake_pb():
    pb = FakePocketBase()
    pb.add_user("u1", avatar=make_image(1000, 1000), token="tok-u1")
    pb.add_user("u2", token="tok-u2")
    pb.add_user("admin", admin=True, token="tok-admin")
    pb.add_user("fakeadmin", admin="true", token="tok-fakeadmin")
    pb.add_image("img1", owner="u1", data=make_image(1200, 600, color=(10, 200, 10)))
    return pb


@pytest.fixture
def storage_client(fake_pb):
    http_client = httpx.AsyncClient(
        base_url=STORAGE_URL,
        transport=httpx.MockTransport(fake_pb.handler),
    )
    return PocketBaseClient(STORAGE_URL, http_client=http_client)


@pytest.fixture
def services(storage_client):
    return build_services(storage_client)


@pytest.fixture
def client(services):
    from fastapi.testclient import TestClient
    from media_api.app import create_app

    return TestClient(create_app(services))


def auth(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
