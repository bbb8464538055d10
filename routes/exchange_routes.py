import logging
from fastapi import APIRouter, Depends, HTTPException
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError
from bson import ObjectId
from datetime import datetime
from models.exchange_models import ExchangeRequest, ExchangeResponse, ExchangeStatus, DecisionStatus
from models.post_book_model import BookStatus
from auth import CurrentUser, get_current_user
from dataBase import get_db, NEWEST_FIRST
from serializers import serialize_request
from utils import parse_object_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/requests", tags=["requests"])


async def apply_decision(db, request, status: DecisionStatus):
    """Move a pending request to accepted/declined.

    The pending check and the status write are a single conditional update,
    so at most one decision wins. Accepting also marks the book unavailable;
    if that write fails the request is put back to pending before the error
    propagates. Returns None when the request was no longer pending.
    """
    now = datetime.utcnow()
    updated = await db.requests.find_one_and_update(
        {"_id": request["_id"], "status": ExchangeStatus.PENDING.value},
        {"$set": {"status": status.value, "updated_at": now}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        return None

    if status == DecisionStatus.ACCEPTED:
        try:
            await db.books.update_one(
                {"_id": request["book"]},
                {"$set": {"status": BookStatus.UNAVAILABLE.value, "updated_at": now}},
            )
        except Exception:
            logger.error("Marking book %s unavailable failed, reverting request %s", request["book"], request["_id"])
            await db.requests.update_one(
                {"_id": request["_id"]},
                {"$set": {"status": ExchangeStatus.PENDING.value, "updated_at": request.get("updated_at")}},
            )
            raise
    return updated


@router.post("", status_code=201)
async def request_exchange(
    exchange: ExchangeRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db=Depends(get_db),
):
    try:
        requester_id = ObjectId(current_user.id)
        book_id = ObjectId(exchange.book_id)

        book = await db.books.find_one({"_id": book_id})
        if not book:
            raise HTTPException(status_code=400, detail="Book not available")
        if book["owner"] == requester_id:
            raise HTTPException(status_code=400, detail="Cannot request your own book")
        if book.get("status") != BookStatus.AVAILABLE.value:
            raise HTTPException(status_code=400, detail="Book not available")

        # any earlier request blocks a new one, even a declined one
        existing_request = await db.requests.find_one({"book": book_id, "requester": requester_id})
        if existing_request:
            raise HTTPException(status_code=400, detail="Request already exists")

        now = datetime.utcnow()
        request_dict = {
            "book": book_id,
            "requester": requester_id,
            "message": exchange.message,
            "status": ExchangeStatus.PENDING.value,
            "created_at": now,
            "updated_at": now,
        }
        try:
            result = await db.requests.insert_one(request_dict)
        except DuplicateKeyError:
            raise HTTPException(status_code=400, detail="Request already exists")

        request_dict["_id"] = result.inserted_id
        logger.info("User %s requested book %s", current_user.id, exchange.book_id)
        return {
            "message": "Request sent successfully",
            "request": await serialize_request(db, request_dict),
        }
    except HTTPException:
        raise
    except Exception:
        logger.exception("Error creating request")
        raise HTTPException(status_code=500, detail="Server error")


@router.get("/received")
async def get_received_requests(current_user: CurrentUser = Depends(get_current_user), db=Depends(get_db)):
    try:
        book_ids = []
        async for book in db.books.find({"owner": ObjectId(current_user.id)}, {"_id": 1}):
            book_ids.append(book["_id"])

        requests = []
        async for request in db.requests.find({"book": {"$in": book_ids}}).sort(NEWEST_FIRST):
            requests.append(await serialize_request(db, request))
        return requests
    except Exception:
        logger.exception("Error fetching received requests")
        raise HTTPException(status_code=500, detail="Server error")


@router.get("/sent")
async def get_sent_requests(current_user: CurrentUser = Depends(get_current_user), db=Depends(get_db)):
    try:
        requests = []
        cursor = db.requests.find({"requester": ObjectId(current_user.id)}).sort(NEWEST_FIRST)
        async for request in cursor:
            requests.append(await serialize_request(db, request, owner_email=True))
        return requests
    except Exception:
        logger.exception("Error fetching sent requests")
        raise HTTPException(status_code=500, detail="Server error")


@router.get("/{request_id}")
async def get_request(
    request_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db=Depends(get_db),
):
    try:
        request = await db.requests.find_one({"_id": parse_object_id(request_id, "Request not found")})
        if not request:
            raise HTTPException(status_code=404, detail="Request not found")

        caller_id = ObjectId(current_user.id)
        book = await db.books.find_one({"_id": request["book"]})
        is_owner = book is not None and book["owner"] == caller_id
        is_requester = request["requester"] == caller_id
        if not is_owner and not is_requester:
            raise HTTPException(status_code=403, detail="Not authorized")

        return await serialize_request(db, request, owner_email=True)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Error fetching request %s", request_id)
        raise HTTPException(status_code=500, detail="Server error")


@router.put("/{request_id}")
async def respond_to_request(
    request_id: str,
    response: ExchangeResponse,
    current_user: CurrentUser = Depends(get_current_user),
    db=Depends(get_db),
):
    try:
        request = await db.requests.find_one({"_id": parse_object_id(request_id, "Request not found")})
        if not request:
            raise HTTPException(status_code=404, detail="Request not found")

        book = await db.books.find_one({"_id": request["book"]})
        if book is None or book["owner"] != ObjectId(current_user.id):
            raise HTTPException(status_code=403, detail="Not authorized")

        if request["status"] != ExchangeStatus.PENDING.value:
            raise HTTPException(status_code=400, detail="Request has already been processed")

        updated_request = await apply_decision(db, request, response.status)
        if updated_request is None:
            raise HTTPException(status_code=400, detail="Request has already been processed")

        logger.info("User %s %s request %s", current_user.id, response.status.value, request_id)
        return {
            "message": "Request updated successfully",
            "request": await serialize_request(db, updated_request, owner_email=True),
        }
    except HTTPException:
        raise
    except Exception:
        logger.exception("Error updating request %s", request_id)
        raise HTTPException(status_code=500, detail="Server error")


@router.delete("/{request_id}")
async def cancel_request(
    request_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db=Depends(get_db),
):
    try:
        # only the requester, only while pending; everything else is a 404
        request = await db.requests.find_one_and_delete({
            "_id": parse_object_id(request_id, "Request not found or cannot be deleted"),
            "requester": ObjectId(current_user.id),
            "status": ExchangeStatus.PENDING.value,
        })
        if not request:
            raise HTTPException(status_code=404, detail="Request not found or cannot be deleted")

        logger.info("User %s cancelled request %s", current_user.id, request_id)
        return {"message": "Request cancelled successfully"}
    except HTTPException:
        raise
    except Exception:
        logger.exception("Error deleting request %s", request_id)
        raise HTTPException(status_code=500, detail="Server error")
