import logging
import re
from fastapi import APIRouter, Depends, Form, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from pymongo import ReturnDocument
from typing import Optional
from bson import ObjectId
from datetime import datetime
from models.post_book_model import PostBookModel, BookCondition, BookStatus
from models.update_book_model import UpdateBookModel
from auth import CurrentUser, get_current_user, get_optional_user
from dataBase import get_db, NEWEST_FIRST
from serializers import serialize_book
from uploads import book_uploader
from utils import parse_object_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/books", tags=["books"])


def build_search_query(
    title: Optional[str] = None,
    author: Optional[str] = None,
    condition: Optional[BookCondition] = None,
) -> dict:
    """Available listings, narrowed by case-insensitive substrings and exact condition."""
    query = {"status": BookStatus.AVAILABLE.value}
    if title:
        query["title"] = {"$regex": re.escape(title), "$options": "i"}
    if author:
        query["author"] = {"$regex": re.escape(author), "$options": "i"}
    if condition:
        query["condition"] = BookCondition(condition).value
    return query


async def find_books(db, query: dict, viewer: Optional[CurrentUser] = None) -> list:
    books = []
    async for book in db.books.find(query).sort(NEWEST_FIRST):
        books.append(await serialize_book(db, book, viewer_id=viewer.id if viewer else None))
    return books


@router.get("")
async def get_all_books(
    viewer: Optional[CurrentUser] = Depends(get_optional_user),
    db=Depends(get_db),
):
    try:
        return await find_books(db, build_search_query(), viewer)
    except Exception:
        logger.exception("Error fetching books")
        raise HTTPException(status_code=500, detail="Server error")


@router.get("/search")
async def search_books(
    title: Optional[str] = None,
    author: Optional[str] = None,
    condition: Optional[BookCondition] = None,
    viewer: Optional[CurrentUser] = Depends(get_optional_user),
    db=Depends(get_db),
):
    try:
        return await find_books(db, build_search_query(title, author, condition), viewer)
    except Exception:
        logger.exception("Error searching books")
        raise HTTPException(status_code=500, detail="Server error")


@router.get("/my/books")
async def get_user_books(current_user: CurrentUser = Depends(get_current_user), db=Depends(get_db)):
    try:
        return await find_books(db, {"owner": ObjectId(current_user.id)}, current_user)
    except Exception:
        logger.exception("Error fetching user books")
        raise HTTPException(status_code=500, detail="Server error")


@router.get("/{book_id}")
async def get_book_details(
    book_id: str,
    viewer: Optional[CurrentUser] = Depends(get_optional_user),
    db=Depends(get_db),
):
    try:
        book = await db.books.find_one({"_id": parse_object_id(book_id, "Book not found")})
        if not book:
            raise HTTPException(status_code=404, detail="Book not found")
        return await serialize_book(db, book, owner_email=True, viewer_id=viewer.id if viewer else None)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Error fetching book %s", book_id)
        raise HTTPException(status_code=500, detail="Server error")


@router.post("", status_code=201)
async def add_new_book(
    request: Request,
    title: Optional[str] = Form(None),
    author: Optional[str] = Form(None),
    condition: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    current_user: CurrentUser = Depends(get_current_user),
    db=Depends(get_db),
):
    try:
        try:
            book = PostBookModel(title=title, author=author, condition=condition, description=description)
        except ValidationError as e:
            raise RequestValidationError(e.errors())

        now = datetime.utcnow()
        book_data = book.dict()
        book_data["condition"] = book.condition.value
        book_data["image_path"] = await book_uploader.save_single(request)
        book_data["owner"] = ObjectId(current_user.id)
        book_data["status"] = BookStatus.AVAILABLE.value
        book_data["created_at"] = now
        book_data["updated_at"] = now

        try:
            result = await db.books.insert_one(book_data)
        except Exception:
            await book_uploader.remove(book_data["image_path"])
            raise
        book_data["_id"] = result.inserted_id
        logger.info("User %s posted book %s", current_user.id, result.inserted_id)
        return {
            "message": "Book posted successfully",
            "book": await serialize_book(db, book_data),
        }
    except (HTTPException, RequestValidationError):
        raise
    except Exception:
        logger.exception("Error posting book")
        raise HTTPException(status_code=500, detail="Server error")


@router.put("/{book_id}")
async def update_book(
    book_id: str,
    request: Request,
    title: Optional[str] = Form(None),
    author: Optional[str] = Form(None),
    condition: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    current_user: CurrentUser = Depends(get_current_user),
    db=Depends(get_db),
):
    try:
        # "not yours" and "does not exist" both come back as 404
        owned = {"_id": parse_object_id(book_id, "Book not found"), "owner": ObjectId(current_user.id)}
        existing = await db.books.find_one(owned)
        if not existing:
            raise HTTPException(status_code=404, detail="Book not found")

        provided = {
            k: v for k, v in
            {"title": title, "author": author, "condition": condition, "description": description}.items()
            if v is not None
        }
        try:
            updated_data = UpdateBookModel(**provided)
        except ValidationError as e:
            raise RequestValidationError(e.errors())

        update_fields = updated_data.dict(exclude_none=True)
        if "condition" in update_fields:
            update_fields["condition"] = updated_data.condition.value

        image_path = await book_uploader.save_single(request)
        if image_path:
            update_fields["image_path"] = image_path

        if not update_fields:
            raise HTTPException(status_code=400, detail="No fields provided for update")

        update_fields["updated_at"] = datetime.utcnow()
        updated_book = await db.books.find_one_and_update(
            owned,
            {"$set": update_fields},
            return_document=ReturnDocument.AFTER,
        )
        if not updated_book:
            await book_uploader.remove(image_path)
            raise HTTPException(status_code=404, detail="Book not found")

        if image_path:
            await book_uploader.remove(existing.get("image_path"))

        logger.info("User %s updated book %s", current_user.id, book_id)
        return {
            "message": "Book updated successfully",
            "book": await serialize_book(db, updated_book),
        }
    except (HTTPException, RequestValidationError):
        raise
    except Exception:
        logger.exception("Error updating book %s", book_id)
        raise HTTPException(status_code=500, detail="Server error")


@router.delete("/{book_id}")
async def delete_book(
    book_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db=Depends(get_db),
):
    try:
        book = await db.books.find_one_and_delete({
            "_id": parse_object_id(book_id, "Book not found"),
            "owner": ObjectId(current_user.id),
        })
        if not book:
            raise HTTPException(status_code=404, detail="Book not found")

        await book_uploader.remove(book.get("image_path"))
        logger.info("User %s deleted book %s", current_user.id, book_id)
        return {"message": "Book deleted successfully"}
    except HTTPException:
        raise
    except Exception:
        logger.exception("Error deleting book %s", book_id)
        raise HTTPException(status_code=500, detail="Server error")
