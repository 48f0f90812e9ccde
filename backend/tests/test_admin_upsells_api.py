import uuid
from typing import Dict

from fastapi.testclient import TestClient

from app.core.security import create_session_token

SHOP = "merchant.myshopify.com"


def auth_headers(shop: str = SHOP, **claims) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_session_token(shop, **claims)}"}


def test_requires_session_token(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    assert client.get("/api/admin/upsells").status_code == 401
    res = client.get("/api/admin/upsells", headers={"Authorization": "Bearer not-a-token"})
    assert res.status_code == 401
    assert res.json()["detail"] == "Invalid session token"


def test_rejects_token_with_wrong_audience(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    res = client.get("/api/admin/upsells", headers=auth_headers(aud="someone-else"))
    assert res.status_code == 401


def test_rejects_token_with_mismatched_issuer(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    res = client.get("/api/admin/upsells", headers=auth_headers(iss="https://evil.myshopify.com/admin"))
    assert res.status_code == 401
    assert res.json()["detail"] == "Invalid session token payload"


def test_block_crud_flow(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    headers = auth_headers()

    created = client.post(
        "/api/admin/upsells",
        json={
            "name": "Summer",
            "collectionHandle": "summer",
            "productHandles": ["hat", "towel"],
            "title": "Complete the look",
            "showCount": 3,
            "properties": '{"_source": "upsell"}',
        },
        headers=headers,
    )
    assert created.status_code == 201, created.text
    block = created.json()
    assert block["shop"] == SHOP
    assert block["placement"] == "checkout"
    assert block["productHandles"] == "hat,towel"
    assert block["active"] is True
    block_id = block["id"]

    served = client.get("/api/upsells", params={"shop": SHOP}).json()
    assert served["upsellBlockId"] == block_id
    assert served["productHandles"] == ["hat", "towel"]

    listed = client.get("/api/admin/upsells", headers=headers)
    assert listed.status_code == 200
    assert [item["id"] for item in listed.json()] == [block_id]

    patched = client.patch(f"/api/admin/upsells/{block_id}", json={"title": "Updated", "active": False}, headers=headers)
    assert patched.status_code == 200, patched.text
    assert patched.json()["title"] == "Updated"
    assert client.get("/api/upsells", params={"shop": SHOP}).json()["upsellBlockId"] is None

    fetched = client.get(f"/api/admin/upsells/{block_id}", headers=headers)
    assert fetched.json()["active"] is False

    deleted = client.delete(f"/api/admin/upsells/{block_id}", headers=headers)
    assert deleted.status_code == 204
    assert client.get(f"/api/admin/upsells/{block_id}", headers=headers).status_code == 404


def test_other_shops_blocks_are_invisible(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    block_id = client.post("/api/admin/upsells", json={"name": "Mine"}, headers=auth_headers()).json()["id"]
    intruder = auth_headers("intruder.myshopify.com")

    assert client.get("/api/admin/upsells", headers=intruder).json() == []
    assert client.get(f"/api/admin/upsells/{block_id}", headers=intruder).status_code == 404
    assert client.patch(f"/api/admin/upsells/{block_id}", json={"title": "x"}, headers=intruder).status_code == 404
    assert client.delete(f"/api/admin/upsells/{block_id}", headers=intruder).status_code == 404
    assert client.get(f"/api/admin/upsells/{block_id}", headers=auth_headers()).status_code == 200


def test_invalid_properties_are_rejected(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    res = client.post("/api/admin/upsells", json={"properties": "[1, 2]"}, headers=auth_headers())
    assert res.status_code == 422
    assert res.json()["code"] == "validation_error"


def test_unknown_block_is_404(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    res = client.get(f"/api/admin/upsells/{uuid.uuid4()}", headers=auth_headers())
    assert res.status_code == 404
    assert res.json() == {"detail": "Upsell block not found", "code": None}
