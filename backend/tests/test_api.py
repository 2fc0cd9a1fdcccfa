"""End-to-end tests for the files and settings API."""
import io
import zipfile

import pytest

from conftest import headers_for, make_token

ALICE = headers_for("alice")
BOB = headers_for("bob")
BOSS = headers_for("boss", "super_admin")
ROOT = headers_for("root", "admin")

TEN_BYTES = b"0123456789"


async def upload(client, filename="a.txt", data=TEN_BYTES, headers=None, is_public=True,
                 mime="text/plain"):
    return await client.post(
        "/api/files/upload",
        params={"is_public": str(is_public).lower()},
        files={"file": (filename, data, mime)},
        headers=headers or {},
    )


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/api/health")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_anonymous_upload_dedup_and_export_scenario(client, set_policy):
    # Anonymous upload is off by default
    response = await upload(client, "ten.txt")
    assert response.status_code == 401
    assert response.json()["error"] == "authentication_required"

    await set_policy(anonymous_upload=True, anonymous_download=True)

    first = await upload(client, "ten.txt")
    second = await upload(client, "ten-again.txt")
    assert first.status_code == 201, first.text
    assert second.status_code == 201, second.text
    first, second = first.json(), second.json()
    assert first["contentId"] == second["contentId"]
    assert first["id"] != second["id"]
    assert first["sizeBytes"] == second["sizeBytes"] == 10
    assert first["ownerId"] is None

    # Owned copy of the same bytes, made private by its owner
    owned = (await upload(client, "mine.txt", headers=ALICE)).json()
    toggled = await client.post(f"/api/files/{owned['id']}/toggle-visibility", headers=ALICE)
    assert toggled.status_code == 200
    assert toggled.json()["visibility"] == "private"

    response = await client.get("/api/files/export")
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/zip"
    with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
        assert sorted(zf.namelist()) == ["json/ten-again.txt", "json/ten.txt"]
        assert zf.read("json/ten.txt") == TEN_BYTES


@pytest.mark.asyncio
async def test_export_requires_login_when_anonymous_download_disabled(client):
    response = await client.get("/api/files/export")
    assert response.status_code == 401
    response = await client.get("/api/files/export", headers=ALICE)
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_export_tag_filter_and_routing(client):
    marked = (await upload(client, "marked.js", b"// m", headers=ALICE)).json()
    await upload(client, "plain.js", b"// p", headers=ALICE)
    await upload(client, "hipy.py", b"print()", headers=ALICE)

    await client.put(f"/api/files/{marked['id']}/tags", json={"tags": ["dr2"]}, headers=ALICE)

    response = await client.get("/api/files/export", headers=ALICE)
    with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
        assert sorted(zf.namelist()) == [
            "spider/js/plain.js", "spider/js_dr2/marked.js", "spider/py/hipy.py",
        ]

    response = await client.get("/api/files/export", params={"tag": "dr2"}, headers=ALICE)
    with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
        assert zf.namelist() == ["spider/js_dr2/marked.js"]


@pytest.mark.asyncio
async def test_upload_rejections(client, set_policy):
    response = await upload(client, "data.csv", headers=ALICE)
    assert response.status_code == 400
    assert response.json()["error"] == "unsupported_type"

    await set_policy(max_file_size=9)
    response = await upload(client, "big.txt", TEN_BYTES, headers=ALICE)
    assert response.status_code == 413
    assert response.json()["error"] == "payload_too_large"

    listing = await client.get("/api/files/list", headers=BOSS)
    assert listing.json()["total"] == 0


@pytest.mark.asyncio
async def test_anonymous_private_upload_rejected(client, set_policy):
    await set_policy(anonymous_upload=True)
    response = await upload(client, "secret.txt", is_public=False)
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_policy_changes_apply_without_restart(client, set_policy):
    await set_policy(allowed_extensions=".txt")
    assert (await upload(client, "a.json", headers=ALICE)).status_code == 400
    await set_policy(allowed_extensions=".txt,.json")
    assert (await upload(client, "a.json", headers=ALICE)).status_code == 201


@pytest.mark.asyncio
async def test_private_file_matrix(client):
    record = (await upload(client, "private.txt", b"alice only", headers=ALICE, is_public=False)).json()
    record_id, content_id = record["id"], record["contentId"]
    assert record["visibility"] == "private"

    # Listing
    assert (await client.get("/api/files/list", headers=BOB)).json()["total"] == 0
    assert (await client.get("/api/files/list", headers=ROOT)).json()["total"] == 0
    assert (await client.get("/api/files/list", headers=ALICE)).json()["total"] == 1
    assert (await client.get("/api/files/list", headers=BOSS)).json()["total"] == 1

    # Metadata and download
    assert (await client.get(f"/api/files/{record_id}", headers=BOB)).status_code == 403
    assert (await client.get(f"/api/files/download/{content_id}", headers=BOB)).status_code == 403
    for headers in (ALICE, BOSS):
        assert (await client.get(f"/api/files/{record_id}", headers=headers)).status_code == 200
        response = await client.get(f"/api/files/download/{content_id}", headers=headers)
        assert response.status_code == 200
        assert response.content == b"alice only"

    # Mutations
    assert (await client.put(f"/api/files/{record_id}/tags", json={"tags": ["ds"]}, headers=BOB)).status_code == 403
    assert (await client.post(f"/api/files/{record_id}/toggle-visibility", headers=BOB)).status_code == 403
    assert (await client.delete(f"/api/files/{record_id}", headers=BOB)).status_code == 403
    assert (await client.delete(f"/api/files/{record_id}")).status_code == 401

    response = await client.put(f"/api/files/{record_id}/tags", json={"tags": ["ds"]}, headers=BOSS)
    assert response.status_code == 200
    assert response.json()["tags"] == ["ds"]
    response = await client.delete(f"/api/files/{record_id}", headers=ALICE)
    assert response.json() == {"deleted": True, "id": record_id}
    assert (await client.get(f"/api/files/{record_id}", headers=ALICE)).status_code == 404


@pytest.mark.asyncio
async def test_download_anonymous_gates(client, set_policy):
    content_id = (await upload(client, "pub.py", b"print('hi')", headers=ALICE)).json()["contentId"]

    assert (await client.get(f"/api/files/download/{content_id}")).status_code == 401
    assert (await client.get(f"/api/files/download/{content_id}", params={"preview": "true"})).status_code == 401

    await set_policy(anonymous_preview=True)
    response = await client.get(f"/api/files/download/{content_id}", params={"preview": "true"})
    assert response.status_code == 200
    assert response.headers["content-type"] == "text/plain; charset=utf-8"
    assert response.headers["content-disposition"] == "inline; filename*=UTF-8''pub.py"
    assert (await client.get(f"/api/files/download/{content_id}")).status_code == 401

    await set_policy(anonymous_download=True)
    response = await client.get(f"/api/files/download/{content_id}")
    assert response.status_code == 200
    assert response.headers["content-disposition"] == "attachment; filename*=UTF-8''pub.py"
    assert response.content == b"print('hi')"


@pytest.mark.asyncio
async def test_download_unknown_content(client):
    response = await client.get("/api/files/download/" + "0" * 64, headers=ALICE)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_shared_content_readable_through_public_copy(client):
    await upload(client, "private-copy.txt", b"shared", headers=ALICE, is_public=False)
    public = (await upload(client, "public-copy.txt", b"shared", headers=BOB)).json()

    response = await client.get(f"/api/files/download/{public['contentId']}", headers=headers_for("carol"))
    assert response.status_code == 200
    assert "public-copy.txt" in response.headers["content-disposition"]


@pytest.mark.asyncio
async def test_retag_with_invalid_tag_keeps_existing_tags(client, set_policy):
    record_id = (await upload(client, "a.txt", headers=ALICE)).json()["id"]
    await client.put(f"/api/files/{record_id}/tags", json={"tags": ["ds", "cat"]}, headers=ALICE)

    response = await client.put(f"/api/files/{record_id}/tags", json={"tags": ["ds", "bogus"]}, headers=ALICE)
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_tag"
    assert "bogus" in response.json()["detail"]

    record = (await client.get(f"/api/files/{record_id}", headers=ALICE)).json()
    assert record["tags"] == ["ds", "cat"]


@pytest.mark.asyncio
async def test_stale_tags_survive_vocabulary_shrink(client, set_policy):
    record_id = (await upload(client, "a.txt", headers=ALICE)).json()["id"]
    await client.put(f"/api/files/{record_id}/tags", json={"tags": ["cat"]}, headers=ALICE)

    await set_policy(allowed_tags="ds")
    record = (await client.get(f"/api/files/{record_id}", headers=ALICE)).json()
    assert record["tags"] == ["cat"]

    # Re-submitting the stale tag is now rejected
    response = await client.put(f"/api/files/{record_id}/tags", json={"tags": ["cat"]}, headers=ALICE)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_ownerless_record_cannot_be_made_private(client, set_policy):
    await set_policy(anonymous_upload=True)
    record_id = (await upload(client, "anon.txt")).json()["id"]
    response = await client.post(f"/api/files/{record_id}/toggle-visibility", headers=BOSS)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_list_pagination_and_search(client):
    for i in range(5):
        await upload(client, f"report-{i}.txt", f"r{i}".encode(), headers=ALICE)
    await upload(client, "other.txt", b"o", headers=ALICE)

    body = (await client.get("/api/files/list", params={"limit": 2, "search": "report"})).json()
    assert body["total"] == 5
    assert body["totalPages"] == 3
    assert [f["filename"] for f in body["files"]] == ["report-4.txt", "report-3.txt"]

    body = (await client.get("/api/files/list", params={"limit": 2, "page": 3, "search": "report"})).json()
    assert [f["filename"] for f in body["files"]] == ["report-0.txt"]


@pytest.mark.asyncio
async def test_unknown_role_is_treated_as_anonymous(client):
    await upload(client, "private.txt", headers=ALICE, is_public=False)
    body = (await client.get("/api/files/list", headers=headers_for("alice", "wizard"))).json()
    assert body["total"] == 0


class TestAdminSettings:
    @pytest.mark.asyncio
    async def test_requires_admin(self, client):
        assert (await client.get("/api/admin/settings")).status_code == 401
        assert (await client.get("/api/admin/settings", headers=ALICE)).status_code == 403
        assert (await client.get("/api/admin/settings", headers=ROOT)).status_code == 200
        assert (await client.get("/api/admin/settings", headers=BOSS)).status_code == 200

    @pytest.mark.asyncio
    async def test_update(self, client):
        response = await client.put(
            "/api/admin/settings",
            json={"anonymousUpload": True, "allowedTags": "ds,new"},
            headers=ROOT,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["anonymousUpload"] is True
        assert body["allowedTags"] == ["ds", "new"]

        assert (await upload(client, "anon.txt")).status_code == 201

    @pytest.mark.asyncio
    async def test_empty_or_invalid_update(self, client):
        assert (await client.put("/api/admin/settings", json={}, headers=ROOT)).status_code == 400
        response = await client.put("/api/admin/settings", json={"maxFileSize": "big"}, headers=ROOT)
        assert response.status_code == 422


@pytest.mark.asyncio
async def test_identity_headers_grant_nothing(client):
    record = (await upload(client, "private.txt", b"alice only", headers=ALICE, is_public=False)).json()
    forged = {"X-User-Id": "mallory", "X-User-Role": "super_admin"}

    assert (await client.get("/api/files/list", headers=forged)).json()["total"] == 0
    assert (await client.get(f"/api/files/download/{record['contentId']}", headers=forged)).status_code == 401
    assert (await client.delete(f"/api/files/{record['id']}", headers=forged)).status_code == 401
    assert (await client.get(f"/api/files/{record['id']}", headers=ALICE)).status_code == 200


@pytest.mark.asyncio
async def test_forged_token_is_anonymous(client):
    record = (await upload(client, "private.txt", b"alice only", headers=ALICE, is_public=False)).json()
    forged = {"Authorization": f"Bearer {make_token('mallory', 'super_admin', secret='x' * 40)}"}

    assert (await client.get("/api/files/list", headers=forged)).json()["total"] == 0
    assert (await client.delete(f"/api/files/{record['id']}", headers=forged)).status_code == 401


@pytest.mark.asyncio
async def test_download_link_with_query_token(client):
    record = (await upload(client, "private.py", b"print('mine')", headers=ALICE, is_public=False)).json()
    url = f"/api/files/download/{record['contentId']}"

    response = await client.get(url, params={"preview": "true", "token": make_token("alice")})
    assert response.status_code == 200
    assert response.content == b"print('mine')"

    response = await client.get(url, params={"token": make_token("bob")})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_list_limit_above_maximum_is_capped(client):
    await upload(client, "a.txt", headers=ALICE)
    response = await client.get("/api/files/list", params={"limit": 500, "page": 0})
    assert response.status_code == 200
    body = response.json()
    assert body["limit"] == 100
    assert body["page"] == 1
    assert body["total"] == 1
