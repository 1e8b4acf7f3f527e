from fastapi.testclient import TestClient

from main import app


def test_lifespan_creates_indexes(db):
    for name in db.list_collection_names():
        db.drop_collection(name)

    with TestClient(app) as client:
        assert client.get("/").json() == {"app": app.title, "status": "ok"}

    assert "participantKey_1" in db["conversation"].index_information()
    assert "orderId_1" in db["order"].index_information()
