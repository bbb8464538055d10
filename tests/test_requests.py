import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError, PyMongoError

from models.exchange_models import DecisionStatus
from routes.exchange_routes import apply_decision


@pytest.fixture
def users(make_user):
    return make_user("Alice"), make_user("Bob"), make_user("Carol")


@pytest.fixture
def listing(users, post_book):
    alice, _, _ = users
    return post_book(alice)


def send_request(client, user, book_id, message="I'd love to swap for this"):
    return client.post("/api/requests", json={"book_id": book_id, "message": message}, headers=user["headers"])


def decide(client, user, request_id, status):
    return client.put(f"/api/requests/{request_id}", json={"status": status}, headers=user["headers"])


def test_create_request(client, users, listing):
    _, bob, _ = users
    response = send_request(client, bob, listing["id"])
    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Request sent successfully"
    request = body["request"]
    assert request["status"] == "pending"
    assert request["book"]["id"] == listing["id"]
    assert request["book"]["owner"]["name"] == "Alice"
    assert request["requester"] == {"id": str(bob["_id"]), "name": "Bob", "email": "bob@example.com"}


def test_create_request_validation(client, users):
    _, bob, _ = users
    response = send_request(client, bob, "not-an-id", message="   ")
    assert response.status_code == 400
    errors = {error["field"]: error["message"] for error in response.json()["errors"]}
    assert errors["book_id"] == "Valid book ID is required"
    assert "message" in errors


def test_request_for_missing_book(client, users):
    _, bob, _ = users
    response = send_request(client, bob, str(ObjectId()))
    assert response.status_code == 400
    assert response.json()["detail"] == "Book not available"


def test_cannot_request_own_book(client, db, users, listing):
    alice, _, _ = users
    response = send_request(client, alice, listing["id"])
    assert response.status_code == 400
    assert response.json()["detail"] == "Cannot request your own book"
    assert asyncio.run(db.requests.count_documents({})) == 0


def test_cannot_request_own_book_even_when_unavailable(client, db, users, listing):
    alice, _, _ = users
    asyncio.run(db.books.update_one({"_id": ObjectId(listing["id"])}, {"$set": {"status": "unavailable"}}))
    response = send_request(client, alice, listing["id"])
    assert response.status_code == 400
    assert response.json()["detail"] == "Cannot request your own book"


def test_duplicate_request_rejected(client, users, listing):
    _, bob, _ = users
    assert send_request(client, bob, listing["id"]).status_code == 201
    response = send_request(client, bob, listing["id"], message="again")
    assert response.status_code == 400
    assert response.json()["detail"] == "Request already exists"


def test_declined_request_still_blocks_a_new_one(client, users, listing):
    alice, bob, _ = users
    request_id = send_request(client, bob, listing["id"]).json()["request"]["id"]
    assert decide(client, alice, request_id, "declined").status_code == 200

    response = send_request(client, bob, listing["id"])
    assert response.status_code == 400
    assert response.json()["detail"] == "Request already exists"


def test_accept_marks_listing_unavailable(client, users, listing):
    alice, bob, carol = users
    request_id = send_request(client, bob, listing["id"]).json()["request"]["id"]

    response = decide(client, alice, request_id, "accepted")
    assert response.status_code == 200
    assert response.json()["message"] == "Request updated successfully"
    assert response.json()["request"]["status"] == "accepted"

    assert client.get(f"/api/books/{listing['id']}").json()["status"] == "unavailable"
    assert client.get("/api/books").json() == []
    assert client.get("/api/books/search", params={"title": "dune"}).json() == []

    # bob's second attempt is a duplicate, carol's finds nothing left to request
    assert send_request(client, bob, listing["id"]).status_code == 400
    carol_response = send_request(client, carol, listing["id"])
    assert carol_response.status_code == 400
    assert carol_response.json()["detail"] == "Book not available"


def test_decline_leaves_listing_available(client, users, listing):
    alice, bob, _ = users
    request_id = send_request(client, bob, listing["id"]).json()["request"]["id"]
    response = decide(client, alice, request_id, "declined")
    assert response.status_code == 200
    assert response.json()["request"]["status"] == "declined"
    assert client.get(f"/api/books/{listing['id']}").json()["status"] == "available"


@pytest.mark.parametrize("first, second", [("accepted", "declined"), ("declined", "accepted"), ("declined", "declined")])
def test_second_decision_fails(client, users, listing, first, second):
    alice, bob, _ = users
    request_id = send_request(client, bob, listing["id"]).json()["request"]["id"]
    assert decide(client, alice, request_id, first).status_code == 200

    response = decide(client, alice, request_id, second)
    assert response.status_code == 400
    assert response.json()["detail"] == "Request has already been processed"


def test_only_owner_can_decide(client, users, listing):
    _, bob, carol = users
    request_id = send_request(client, bob, listing["id"]).json()["request"]["id"]
    assert decide(client, bob, request_id, "accepted").status_code == 403
    assert decide(client, carol, request_id, "accepted").status_code == 403


def test_decision_status_must_be_accepted_or_declined(client, users, listing):
    alice, bob, _ = users
    request_id = send_request(client, bob, listing["id"]).json()["request"]["id"]
    response = decide(client, alice, request_id, "pending")
    assert response.status_code == 400
    assert response.json()["errors"][0]["field"] == "status"


def test_decide_missing_request(client, users):
    alice, _, _ = users
    assert decide(client, alice, str(ObjectId()), "accepted").status_code == 404


def test_get_request_visible_to_both_parties_only(client, users, listing):
    alice, bob, carol = users
    request_id = send_request(client, bob, listing["id"]).json()["request"]["id"]

    for user in (alice, bob):
        response = client.get(f"/api/requests/{request_id}", headers=user["headers"])
        assert response.status_code == 200
        assert response.json()["book"]["owner"]["email"] == "alice@example.com"

    assert client.get(f"/api/requests/{request_id}", headers=carol["headers"]).status_code == 403
    assert client.get(f"/api/requests/{ObjectId()}", headers=alice["headers"]).status_code == 404


def test_received_and_sent_lists(client, users, post_book):
    alice, bob, carol = users
    dune = post_book(alice, title="Dune")
    emma = post_book(alice, title="Emma")
    bobs_book = post_book(bob, title="Ulysses")
    first = send_request(client, bob, dune["id"]).json()["request"]["id"]
    second = send_request(client, carol, emma["id"]).json()["request"]["id"]
    send_request(client, carol, bobs_book["id"])

    received = client.get("/api/requests/received", headers=alice["headers"]).json()
    assert [r["id"] for r in received] == [second, first]
    assert received[0]["requester"]["email"] == "carol@example.com"

    sent = client.get("/api/requests/sent", headers=carol["headers"]).json()
    assert [r["book"]["title"] for r in sent] == ["Ulysses", "Emma"]
    assert sent[1]["book"]["owner"]["email"] == "alice@example.com"

    assert client.get("/api/requests/sent", headers=alice["headers"]).json() == []
    assert client.get("/api/requests/received").status_code == 401


def test_requester_cancels_pending_request(client, db, users, listing):
    alice, bob, _ = users
    request_id = send_request(client, bob, listing["id"]).json()["request"]["id"]

    assert client.delete(f"/api/requests/{request_id}", headers=alice["headers"]).status_code == 404
    response = client.delete(f"/api/requests/{request_id}", headers=bob["headers"])
    assert response.status_code == 200
    assert response.json()["message"] == "Request cancelled successfully"
    assert asyncio.run(db.requests.count_documents({})) == 0


def test_processed_request_cannot_be_cancelled(client, users, listing):
    alice, bob, _ = users
    request_id = send_request(client, bob, listing["id"]).json()["request"]["id"]
    decide(client, alice, request_id, "declined")

    for user in (alice, bob):
        response = client.delete(f"/api/requests/{request_id}", headers=user["headers"])
        assert response.status_code == 404
        assert response.json()["detail"] == "Request not found or cannot be deleted"


def test_request_survives_listing_deletion(client, users, listing):
    alice, bob, _ = users
    request_id = send_request(client, bob, listing["id"]).json()["request"]["id"]
    assert client.delete(f"/api/books/{listing['id']}", headers=alice["headers"]).status_code == 200

    response = client.get(f"/api/requests/{request_id}", headers=bob["headers"])
    assert response.status_code == 200
    assert response.json()["book"] is None
    assert client.get(f"/api/requests/{request_id}", headers=alice["headers"]).status_code == 403


def _mock_db(find_one_and_update_result):
    db = MagicMock()
    db.requests.find_one_and_update = AsyncMock(return_value=find_one_and_update_result)
    db.requests.update_one = AsyncMock()
    db.books.update_one = AsyncMock()
    return db


@pytest.mark.asyncio
async def test_apply_decision_returns_none_when_no_longer_pending():
    request = {"_id": ObjectId(), "book": ObjectId(), "status": "pending"}
    db = _mock_db(None)
    assert await apply_decision(db, request, DecisionStatus.ACCEPTED) is None
    db.books.update_one.assert_not_awaited()


@pytest.mark.asyncio
async def test_apply_decision_reverts_request_when_listing_update_fails():
    request = {"_id": ObjectId(), "book": ObjectId(), "status": "pending", "updated_at": None}
    db = _mock_db({**request, "status": "accepted"})
    db.books.update_one.side_effect = PyMongoError("connection lost")

    with pytest.raises(PyMongoError):
        await apply_decision(db, request, DecisionStatus.ACCEPTED)

    db.requests.update_one.assert_awaited_once()
    query, update = db.requests.update_one.await_args.args
    assert query == {"_id": request["_id"]}
    assert update["$set"]["status"] == "pending"


@pytest.mark.asyncio
async def test_apply_decision_decline_does_not_touch_listing():
    request = {"_id": ObjectId(), "book": ObjectId(), "status": "pending"}
    db = _mock_db({**request, "status": "declined"})
    updated = await apply_decision(db, request, DecisionStatus.DECLINED)
    assert updated["status"] == "declined"
    db.books.update_one.assert_not_awaited()


def test_unique_index_blocks_a_second_request_for_the_pair(db, users, listing):
    _, bob, _ = users
    doc = {"book": ObjectId(listing["id"]), "requester": bob["_id"], "message": "hi", "status": "pending"}
    asyncio.run(db.requests.insert_one(dict(doc)))
    with pytest.raises(DuplicateKeyError):
        asyncio.run(db.requests.insert_one(dict(doc)))


def test_request_raced_past_lookup_is_still_rejected(client, db, users, listing, patch_collection):
    _, bob, _ = users
    assert send_request(client, bob, listing["id"]).status_code == 201

    # the duplicate lookup misses, as when two creations interleave
    patch_collection("requests", find_one=AsyncMock(return_value=None))
    response = send_request(client, bob, listing["id"], message="again")
    assert response.status_code == 400
    assert response.json()["detail"] == "Request already exists"
    assert asyncio.run(db.requests.count_documents({})) == 1


def test_malformed_request_ids_are_404(client, users):
    alice, _, _ = users
    headers = alice["headers"]
    assert client.get("/api/requests/not-an-id", headers=headers).status_code == 404
    assert client.put("/api/requests/not-an-id", json={"status": "accepted"}, headers=headers).status_code == 404
    assert client.delete("/api/requests/not-an-id", headers=headers).status_code == 404
