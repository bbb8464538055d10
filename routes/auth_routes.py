import logging
from fastapi import APIRouter, Depends, HTTPException
from datetime import datetime
from pymongo.errors import DuplicateKeyError
from models.user_models import RegisterUser, LoginUser, UserProfile
from auth import CurrentUser, get_current_user
from dataBase import get_db
from serializers import serialize_user
from utils import hash_password, verify_password, create_access_token, parse_object_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def issue_token(user) -> str:
    return create_access_token({
        "user_id": str(user["_id"]),
        "email": user["email"],
        "name": user["name"],
    })


@router.post("/register", status_code=201)
async def register_user(user: RegisterUser, db=Depends(get_db)):
    try:
        email = user.email.lower()
        existing_user = await db.users.find_one({"email": email})
        if existing_user:
            raise HTTPException(status_code=400, detail="Email already exists")

        user_dict = {
            "name": user.name,
            "email": email,
            "password": hash_password(user.password),
            "created_at": datetime.utcnow(),
        }
        try:
            result = await db.users.insert_one(user_dict)
        except DuplicateKeyError:
            raise HTTPException(status_code=400, detail="Email already exists")

        user_dict["_id"] = result.inserted_id
        logger.info("Registered user %s", result.inserted_id)
        return {
            "message": "User registered successfully",
            "access_token": issue_token(user_dict),
            "token_type": "bearer",
            "user": serialize_user(user_dict),
        }
    except HTTPException:
        raise
    except Exception:
        logger.exception("Error registering user")
        raise HTTPException(status_code=500, detail="Server error")


@router.post("/login")
async def login_user(user: LoginUser, db=Depends(get_db)):
    try:
        existing_user = await db.users.find_one({"email": user.email.lower()})
        # unknown email and wrong password look the same to the caller
        if not existing_user or not verify_password(user.password, existing_user["password"]):
            raise HTTPException(
                status_code=401,
                detail="Invalid credentials",
                headers={"WWW-Authenticate": "Bearer"},
            )

        return {
            "message": "Login successful",
            "access_token": issue_token(existing_user),
            "token_type": "bearer",
            "user": serialize_user(existing_user),
        }
    except HTTPException:
        raise
    except Exception:
        logger.exception("Error logging in")
        raise HTTPException(status_code=500, detail="Server error")


@router.get("/profile", response_model=UserProfile)
async def get_profile(current_user: CurrentUser = Depends(get_current_user), db=Depends(get_db)):
    try:
        user = await db.users.find_one({"_id": parse_object_id(current_user.id, "User not found")})
        if not user:
            raise HTTPException(status_code=404, detail="User not found")
        return serialize_user(user)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Error fetching profile")
        raise HTTPException(status_code=500, detail="Server error")
