from typing import Optional
from bson import ObjectId


def _id(value) -> Optional[str]:
    return str(value) if value is not None else None


async def user_summary(db, user_id: ObjectId, with_email: bool = False) -> Optional[dict]:
    """Limited public view of a user, inlined into listings and requests."""
    user = await db.users.find_one({"_id": user_id})
    if not user:
        return None
    summary = {"id": str(user["_id"]), "name": user.get("name")}
    if with_email:
        summary["email"] = user.get("email")
    return summary


def serialize_user(user) -> dict:
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "created_at": user.get("created_at"),
    }


#get books serialization method
async def serialize_book(db, book, owner_email: bool = False, viewer_id: Optional[str] = None) -> dict:
    data = {
        "id": str(book["_id"]),
        "title": book.get("title"),
        "author": book.get("author"),
        "condition": book.get("condition"),
        "description": book.get("description"),
        "image_path": book.get("image_path"),
        "owner": await user_summary(db, book.get("owner"), with_email=owner_email),
        "status": book.get("status"),
        "created_at": book.get("created_at"),
        "updated_at": book.get("updated_at"),
    }
    if viewer_id is not None:
        data["is_owner"] = _id(book.get("owner")) == viewer_id
    return data


async def serialize_request(db, request, owner_email: bool = False, requester_email: bool = True) -> dict:
    book = await db.books.find_one({"_id": request["book"]})
    return {
        "id": str(request["_id"]),
        "book": await serialize_book(db, book, owner_email=owner_email) if book else None,
        "requester": await user_summary(db, request["requester"], with_email=requester_email),
        "message": request.get("message"),
        "status": request.get("status"),
        "created_at": request.get("created_at"),
        "updated_at": request.get("updated_at"),
    }
