# auth.py

from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from hcs_booking.config import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES
from hcs_booking.data_models import Actor, CUSTOMER, HCS_ADMIN, ROLES
from hcs_booking.database import database
from hcs_booking.exceptions import ConflictError, NotFoundError, ValidationError
from hcs_booking.logging_config import bind_actor
from hcs_booking.models import users, healthcare_centers

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")


# Pydantic Models
class User(BaseModel):
    id: int
    name: str
    email: str
    role: str = CUSTOMER
    phone: Optional[str] = None
    address: Optional[str] = None
    center_id: Optional[int] = None


class Token(BaseModel):
    access_token: str
    token_type: str


class UserCreate(BaseModel):
    name: str
    email: str
    password: str
    phone: Optional[str] = None
    address: Optional[str] = None
    role: str = CUSTOMER


async def get_user(email: str):
    query = users.select().where(users.c.email == email.lower())
    return await database.fetch_one(query)


async def get_user_by_id(user_id: int):
    user = await database.fetch_one(users.select().where(users.c.id == user_id))
    if user is None:
        raise NotFoundError("User", user_id)
    return user


async def administered_center_id(user_id: int) -> Optional[int]:
    """The id of the center this user administers, if any."""
    query = healthcare_centers.select().where(healthcare_centers.c.admin_id == user_id)
    center = await database.fetch_one(query)
    return center["id"] if center else None


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


async def authenticate_user(email: str, password: str):
    user_record = await get_user(email)
    if not user_record or not verify_password(password, user_record["hashed_password"]):
        return None
    return user_record


async def create_user(user: UserCreate) -> int:
    """Insert a user with a hashed password and return its id."""
    if user.role not in ROLES:
        raise ValidationError(f"Invalid role: {user.role}", {"field": "role", "allowed": list(ROLES)})
    if len(user.password) < 6:
        raise ValidationError("Password must be at least 6 characters", {"field": "password"})
    if await get_user(user.email):
        raise ConflictError("Email already registered.", {"field": "email"})

    query = users.insert().values(
        name=user.name,
        email=user.email.lower(),
        hashed_password=pwd_context.hash(user.password),
        role=user.role,
        phone=user.phone,
        address=user.address,
        created_at=datetime.now(),
    )
    return await database.execute(query)


async def update_phone(user_id: int, phone: str) -> None:
    await database.execute(users.update().where(users.c.id == user_id).values(phone=phone))


async def to_user(user_record) -> User:
    center_id = None
    if user_record["role"] == HCS_ADMIN:
        center_id = await administered_center_id(user_record["id"])
    return User(
        id=user_record["id"],
        name=user_record["name"],
        email=user_record["email"],
        role=user_record["role"],
        phone=user_record["phone"],
        address=user_record["address"],
        center_id=center_id,
    )


# Decode the token and fetch the user it names
async def _decode_token_and_get_user(token: str) -> User:
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        email: str = payload.get("sub")
        if email is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    user = await get_user(email=email)
    if user is None:
        raise credentials_exception

    return await to_user(user)


async def get_current_active_user(token: str = Depends(oauth2_scheme)) -> User:
    return await _decode_token_and_get_user(token)


async def get_current_actor(current_user: User = Depends(get_current_active_user)) -> Actor:
    bind_actor(current_user.id, current_user.role)
    return Actor(id=current_user.id, role=current_user.role, center_id=current_user.center_id)
