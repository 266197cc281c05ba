import io
import uuid

import mongomock
from bson import ObjectId
from fastapi import UploadFile
from fastapi.testclient import TestClient

from database import Reference, Store, collect_ids, serialize_doc
from main import create_app
from media import MediaIntake


def connected_store():
    store = Store(url="mongodb://localhost:27017", name=f"gateway_{uuid.uuid4().hex[:8]}", client_factory=mongomock.MongoClient)
    store.connect()
    return store


def test_serialize_doc_exposes_string_id():
    oid = ObjectId()
    assert serialize_doc({"_id": oid, "name": "x"}) == {"id": str(oid), "name": "x"}
    assert serialize_doc(None) is None


def test_collect_ids_follows_nested_paths():
    docs = [
        {"user": "u1", "products": [{"product": "p1"}, {"product": "p2"}]},
        {"user": "u2", "products": [{"product": "p1"}]},
    ]
    assert collect_ids(docs, Reference("products.product", "product")) == ["p1", "p2", "p1"]
    assert collect_ids(docs, Reference("user", "user")) == ["u1", "u2"]


def test_gateway_crud_cycle():
    store = connected_store()
    products = store["product"]
    created = products.insert({"description": "Kettle", "pricing": 30.0})
    assert products.get_by_id(created["id"])["description"] == "Kettle"

    updated = products.update_by_id(created["id"], {"pricing": 25.0})
    assert updated == {"id": created["id"], "description": "Kettle", "pricing": 25.0}
    assert products.update_by_id(created["id"], {}) == updated

    assert products.delete_by_id(created["id"]) is True
    assert products.delete_by_id(created["id"]) is False
    assert products.get_by_id(created["id"]) is None


def test_gateway_treats_malformed_ids_as_missing():
    store = connected_store()
    assert store["user"].get_by_id("123") is None
    assert store["user"].update_by_id("123", {"username": "x"}) is None
    assert store["user"].delete_by_id("123") is False
    assert store["user"].missing_ids(["123"]) == ["123"]


def test_expand_replaces_ids_in_one_pass():
    store = connected_store()
    user = store["user"].insert({"email": "e@x.com", "password": "p"})
    product = store["product"].insert({"description": "Pen"})
    gone = str(ObjectId())
    order = store["order"].insert({
        "user": user["id"],
        "products": [{"product": product["id"], "quantity": 1}, {"product": gone, "quantity": 2}],
    })

    expanded = store["order"].get_by_id(
        order["id"], expand=[Reference("user", "user"), Reference("products.product", "product")]
    )
    assert expanded["user"] == user
    assert expanded["products"][0] == {"product": product, "quantity": 1}
    assert expanded["products"][1] == {"product": None, "quantity": 2}
    # stored document is untouched
    assert store["order"].get_by_id(order["id"])["user"] == user["id"]


def test_unreachable_database_does_not_block_startup(tmp_path):
    store = Store(url="mongodb://127.0.0.1:1", name="nowhere", timeout_ms=50)
    app = create_app(store=store, media=MediaIntake(str(tmp_path / "uploads")))
    with TestClient(app) as client:
        assert store.connected is False
        assert client.get("/").status_code == 200
        response = client.get("/products")
        assert response.status_code == 503
        assert response.json() == {"detail": "Database unavailable"}


def test_diagnostics_route(client, user):
    body = client.get("/test").json()
    assert body["database"] == "✅ Connected"
    assert "user" in body["collections"]


def test_media_keeps_only_extension(media):
    media.prepare()
    upload = UploadFile(file=io.BytesIO(b"data"), filename="../../etc/evil.PNG")
    path = media.save(upload)
    assert path.startswith("/uploads/")
    assert path.endswith(".png")
    assert "evil" not in path
    assert media.save(None) is None
    assert media.save_many(None) == []


def test_upload_directory_created_on_startup(store, tmp_path):
    media = MediaIntake(str(tmp_path / "late"))
    app = create_app(store=store, media=media)
    assert not (tmp_path / "late").exists()
    with TestClient(app):
        assert (tmp_path / "late").is_dir()
