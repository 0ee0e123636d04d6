from __future__ import annotations

import httpx
import jwt
import pytest

from mediavault.api.v1.deps import get_engine
from mediavault.core.config import settings
from mediavault.main import app


def _headers(user_id: str, roles: list[str] | None = None) -> dict[str, str]:
    token = jwt.encode(
        {"sub": user_id, "roles": roles or []},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def client(engine):
    app.dependency_overrides[get_engine] = lambda: engine
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()


async def test_health(client) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


async def test_upload_and_fetch(client, buckets) -> None:
    response = await client.post(
        f"{settings.api_prefix}/files",
        files={"file": ("hello.txt", b"hello world", "text/plain")},
        headers=_headers("u1"),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["duplicate"] is False
    file_id = body["file"]["id"]

    again = await client.post(
        f"{settings.api_prefix}/files",
        files={"file": ("hello.txt", b"hello world", "text/plain")},
        headers=_headers("u1"),
    )
    assert again.json()["duplicate"] is True
    assert again.json()["file"]["id"] == file_id

    content = await client.get(f"{settings.api_prefix}/files/{file_id}/content", headers=_headers("u1"))
    assert content.content == b"hello world"

    other = await client.get(f"{settings.api_prefix}/files/{file_id}", headers=_headers("u2"))
    assert other.status_code == 404

    instances = await client.get(f"{settings.api_prefix}/files/{file_id}/instances", headers=_headers("u1"))
    assert [i["variant_name"] for i in instances.json()] == ["original"]


async def test_signed_route_serves_bytes(client, engine, buckets) -> None:
    file = (await engine.store_file(b"signed bytes", "u1", "s.txt")).value
    url = (await engine.get_public_url(file.id)).value

    response = await client.get(url)
    assert response.status_code == 200
    assert response.content == b"signed bytes"

    bad = await client.get(f"/file/{file.id}/original/zzzz")
    assert bad.status_code == 404


async def test_upload_without_buckets_is_503(client) -> None:
    response = await client.post(
        f"{settings.api_prefix}/files",
        files={"file": ("a.txt", b"abc", "text/plain")},
        headers=_headers("u1"),
    )
    assert response.status_code == 503
    assert response.json()["detail"]["code"] == "no_buckets_configured"


async def test_admin_endpoints_require_role(client, tmp_path) -> None:
    payload = {"name": "disk", "provider": "local", "endpoint": str(tmp_path / "disk")}

    denied = await client.post(f"{settings.api_prefix}/buckets", json=payload, headers=_headers("u1"))
    assert denied.status_code == 403

    created = await client.post(
        f"{settings.api_prefix}/buckets", json=payload, headers=_headers("root", ["admin"])
    )
    assert created.status_code == 200
    bucket = created.json()
    assert bucket["has_credentials"] is False

    tested = await client.post(
        f"{settings.api_prefix}/buckets/{bucket['id']}/test", headers=_headers("root", ["admin"])
    )
    assert tested.json()["ok"] is True

    invalid = await client.post(
        f"{settings.api_prefix}/buckets",
        json={"name": "bad", "provider": "ftp"},
        headers=_headers("root", ["admin"]),
    )
    assert invalid.status_code == 400


async def test_dimension_reset_and_orphans(client, buckets) -> None:
    admin = _headers("root", ["admin"])
    reset = await client.post(f"{settings.api_prefix}/dimensions/reset", headers=admin)
    assert len(reset.json()) == 8

    await client.post(
        f"{settings.api_prefix}/files",
        files={"file": ("a.txt", b"abc", "text/plain")},
        headers=_headers("u1"),
    )
    count = await client.get(f"{settings.api_prefix}/orphans/count", headers=admin)
    assert count.json() == {"count": 1}

    queued = await client.post(f"{settings.api_prefix}/orphans/cleanup", json={}, headers=admin)
    assert queued.json() == {"queued": 1}
