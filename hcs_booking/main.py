# main.py
import json
from datetime import timedelta
from typing import List, Optional

import fastapi
from fastapi import Depends, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel

from hcs_booking import assignments, bookings, catalog, centers
from hcs_booking.admission import check_all_availability, check_availability
from hcs_booking.auth import (
    User,
    Token,
    UserCreate,
    authenticate_user,
    create_access_token,
    create_user,
    get_current_active_user,
    get_current_actor,
    get_user,
    get_user_by_id,
    pwd_context,
    to_user,
    _decode_token_and_get_user,
)
from hcs_booking.config import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    ADMIN_EMAIL,
    ADMIN_NAME,
    ADMIN_PASSWORD,
    DEFAULT_PAGE_SIZE,
    FRONTEND_URL,
    LOG_LEVEL,
)
from hcs_booking.data_models import Actor, CUSTOMER, SUPERADMIN
from hcs_booking.database import database, engine, metadata
from hcs_booking.exceptions import (
    AuthorizationError,
    CapacityExceededError,
    ConflictError,
    HCSBookingError,
    NotFoundError,
    TestNotOfferedError,
    ValidationError,
)
from hcs_booking.logging_config import bind_request, get_logger, setup_structured_logging
from hcs_booking.models import users
from hcs_booking.policy import authorize

logger = get_logger(__name__)

# FastAPI Setup
app = fastapi.FastAPI(title="HCS Booking")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_logging_context(request: Request, call_next):
    request_id = bind_request(request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# Error envelope
def _error_status(exc: HCSBookingError) -> int:
    # TestNotOfferedError is also a ConflictError but renders as a bad request
    if isinstance(exc, (TestNotOfferedError, ValidationError, CapacityExceededError)):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, AuthorizationError):
        return status.HTTP_403_FORBIDDEN
    if isinstance(exc, ConflictError):
        return status.HTTP_409_CONFLICT
    return status.HTTP_400_BAD_REQUEST


def _error_body(message: str, code: str, details=None) -> dict:
    return {"success": False, "message": message, "code": code, "details": details or {}}


@app.exception_handler(HCSBookingError)
async def domain_error_handler(request: Request, exc: HCSBookingError):
    status_code = _error_status(exc)
    logger.info("request_rejected", path=request.url.path, code=exc.code, status=status_code, message=exc.message)
    return JSONResponse(status_code=status_code, content=_error_body(exc.message, exc.code, exc.details))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_body("Invalid request", "VALIDATION_ERROR", {"errors": errors}),
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error", path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body("Internal server error", "INTERNAL_ERROR"),
    )


# Live change feed
class ConnectionManager:
    def __init__(self):
        self.active_connections: List[fastapi.WebSocket] = []

    async def connect(self, websocket: fastapi.WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)

    def disconnect(self, websocket: fastapi.WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)

    async def broadcast(self, message: str):
        for connection in list(self.active_connections):
            try:
                await connection.send_text(message)
            except (RuntimeError, fastapi.WebSocketDisconnect):
                logger.warning("websocket_send_failed")
                self.disconnect(connection)


manager = ConnectionManager()


async def notify(kind: str, **data):
    await manager.broadcast(json.dumps({"type": kind, **data}))


# Request models
class UserRegister(BaseModel):
    name: str
    email: str
    password: str
    phone: Optional[str] = None
    address: Optional[str] = None


class CenterCreate(BaseModel):
    name: str
    address: str
    contact: str
    email: str
    admin_id: Optional[int] = None
    available_slots_per_day: Optional[int] = None


class CenterUpdate(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    contact: Optional[str] = None
    email: Optional[str] = None
    admin_id: Optional[int] = None
    available_slots_per_day: Optional[int] = None


class TestSlot(BaseModel):
    test_id: int
    slots_per_day: int


class TestSlotsUpdate(BaseModel):
    test_slots: List[TestSlot]


class TestCreate(BaseModel):
    title: str
    description: str
    type: str
    price: float
    duration: int


class TestUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    price: Optional[float] = None
    duration: Optional[int] = None


class AssignmentRequestCreate(BaseModel):
    price: float
    center_id: Optional[int] = None
    notes: Optional[str] = None


class AssignmentReview(BaseModel):
    status: str
    notes: Optional[str] = None


class AssignTest(BaseModel):
    center_id: int
    price: float
    slots: Optional[int] = None


class BookingCreate(BaseModel):
    test_id: int
    center_id: int
    scheduled_at: str
    phone: Optional[str] = None


class BookingUpdate(BaseModel):
    status: Optional[str] = None
    scheduled_at: Optional[str] = None
    notes: Optional[str] = None


class BookingStatus(BaseModel):
    status: str


# Auth and users
@app.post("/token", response_model=Token)
async def login_for_access_token(form_data: OAuth2PasswordRequestForm = Depends()):
    user_record = await authenticate_user(form_data.username, form_data.password)
    if not user_record:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token_expires = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    access_token = create_access_token(
        data={"sub": user_record["email"]}, expires_delta=access_token_expires
    )
    return {"access_token": access_token, "token_type": "bearer"}


@app.post("/register", status_code=status.HTTP_201_CREATED)
async def register_user(user: UserRegister):
    """Public registration always creates a Customer."""
    user_id = await create_user(UserCreate(**user.dict(), role=CUSTOMER))
    logger.info("user_registered", user_id=user_id)
    return {"success": True, "data": await to_user(await get_user_by_id(user_id))}


@app.post("/api/users/admin-create", status_code=status.HTTP_201_CREATED)
async def admin_create_user(user: UserCreate, actor: Actor = Depends(get_current_actor)):
    authorize(actor, "user.create")
    user_id = await create_user(user)
    logger.info("user_created", user_id=user_id, role=user.role, by=actor.id)
    await notify("users_updated")
    return {"success": True, "data": await to_user(await get_user_by_id(user_id))}


@app.get("/api/users/me", response_model=User)
async def read_users_me(current_user: User = Depends(get_current_active_user)):
    """
    Get the current authenticated user's profile data.
    """
    return current_user


# Healthcare centers
@app.get("/api/hcs")
async def list_centers(page: int = 1, limit: int = DEFAULT_PAGE_SIZE):
    return {"success": True, **await centers.list_centers(page, limit)}


@app.get("/api/hcs/my-hcs")
async def my_center(actor: Actor = Depends(get_current_actor)):
    return {"success": True, "data": await centers.get_my_center(actor)}


@app.get("/api/hcs/availability")
async def all_availability(date: Optional[str] = None, test: Optional[int] = None):
    availability = await check_all_availability(date, test)
    return {"success": True, "data": availability.as_dict()}


@app.get("/api/hcs/{center_id}/availability")
async def center_availability(center_id: int, date: Optional[str] = None, test: Optional[int] = None):
    availability = await check_availability(center_id, date, test)
    return {"success": True, "data": availability.as_dict()}


@app.get("/api/hcs/{center_id}")
async def get_center(center_id: int):
    return {"success": True, "data": await centers.get_center(center_id)}


@app.post("/api/hcs", status_code=status.HTTP_201_CREATED)
async def create_center(center: CenterCreate, actor: Actor = Depends(get_current_actor)):
    created = await centers.create_center(actor, center.dict())
    await notify("centers_updated", center_id=created["id"])
    return {"success": True, "data": created}


@app.put("/api/hcs/{center_id}")
async def update_center(center_id: int, center: CenterUpdate, actor: Actor = Depends(get_current_actor)):
    updated = await centers.update_center(actor, center_id, center.dict(exclude_unset=True))
    await notify("centers_updated", center_id=center_id)
    await notify("availability_updated", center_id=center_id)
    return {"success": True, "data": updated}


@app.delete("/api/hcs/{center_id}")
async def delete_center(center_id: int, actor: Actor = Depends(get_current_actor)):
    await centers.delete_center(actor, center_id)
    await notify("centers_updated", center_id=center_id)
    await notify("bookings_updated")
    return {"success": True, "message": "Healthcare center deleted successfully"}


@app.put("/api/hcs/{center_id}/test-slots")
async def update_test_slots(center_id: int, body: TestSlotsUpdate, actor: Actor = Depends(get_current_actor)):
    entries = [entry.dict() for entry in body.test_slots]
    updated = await centers.update_test_slots(actor, center_id, entries)
    await notify("availability_updated", center_id=center_id)
    return {"success": True, "data": updated}


# Tests and assignments
@app.get("/api/tests")
async def list_tests(
    type: Optional[str] = None,
    hcs: Optional[int] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    sort_by: str = Query("created_at", alias="sortBy"),
    order: str = "desc",
):
    result = await catalog.list_tests(type, hcs, search, page, limit, sort_by, order)
    return {"success": True, **result}


@app.get("/api/tests/types")
async def list_test_types():
    return {"success": True, "data": await catalog.list_test_types()}


@app.get("/api/tests/assignment-requests")
async def list_assignment_requests(
    status: Optional[str] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    actor: Actor = Depends(get_current_actor),
):
    return {"success": True, **await assignments.list_assignment_requests(actor, status, page, limit)}


@app.put("/api/tests/assignment-requests/{request_id}")
async def review_assignment_request(
    request_id: int,
    review: AssignmentReview,
    actor: Actor = Depends(get_current_actor),
):
    reviewed = await assignments.review_assignment(actor, request_id, review.status, review.notes)
    await notify("tests_updated", test_id=reviewed["test_id"])
    return {
        "success": True,
        "message": f"Test assignment request {reviewed['status']} successfully",
        "data": reviewed,
    }


@app.get("/api/tests/not-assigned")
async def tests_not_assigned(
    type: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    sort_by: str = Query("created_at", alias="sortBy"),
    order: str = "desc",
    hcs: Optional[int] = None,
    actor: Actor = Depends(get_current_actor),
):
    result = await catalog.unassigned_tests(actor, hcs, type, search, page, limit, sort_by, order)
    return {"success": True, **result}


@app.get("/api/tests/{test_id}")
async def get_test(test_id: int):
    return {"success": True, "data": await catalog.get_test(test_id)}


@app.post("/api/tests", status_code=status.HTTP_201_CREATED)
async def create_test(test: TestCreate, actor: Actor = Depends(get_current_actor)):
    created = await catalog.create_test(actor, test.dict())
    await notify("tests_updated", test_id=created["id"])
    return {"success": True, "data": created}


@app.put("/api/tests/{test_id}")
async def update_test(test_id: int, test: TestUpdate, actor: Actor = Depends(get_current_actor)):
    updated = await catalog.update_test(actor, test_id, test.dict(exclude_unset=True))
    await notify("tests_updated", test_id=test_id)
    return {"success": True, "data": updated}


@app.delete("/api/tests/{test_id}")
async def delete_test(test_id: int, actor: Actor = Depends(get_current_actor)):
    await catalog.delete_test(actor, test_id)
    await notify("tests_updated", test_id=test_id)
    return {"success": True, "message": "Test deleted successfully"}


@app.post("/api/tests/{test_id}/request-assignment", status_code=status.HTTP_201_CREATED)
async def request_assignment(
    test_id: int,
    body: AssignmentRequestCreate,
    actor: Actor = Depends(get_current_actor),
):
    request = await assignments.request_assignment(actor, test_id, body.center_id, body.price, body.notes)
    return {
        "success": True,
        "message": "Test assignment request submitted successfully",
        "data": request,
    }


@app.post("/api/tests/{test_id}/assign-hcs")
async def assign_test(test_id: int, body: AssignTest, actor: Actor = Depends(get_current_actor)):
    result = await assignments.assign_test_to_center(actor, test_id, body.center_id, body.price, body.slots)
    await notify("tests_updated", test_id=test_id)
    await notify("availability_updated", center_id=body.center_id)
    return {"success": True, "message": "Test assigned to HCS successfully", "data": result}


@app.delete("/api/tests/{test_id}/remove-hcs/{center_id}")
async def remove_test(test_id: int, center_id: int, actor: Actor = Depends(get_current_actor)):
    test = await assignments.remove_test_from_center(actor, test_id, center_id)
    await notify("tests_updated", test_id=test_id)
    return {"success": True, "message": "Test removed from HCS successfully", "data": test}


# Bookings
@app.get("/api/bookings")
async def list_bookings(
    status: Optional[str] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    sort_by: str = Query("created_at", alias="sortBy"),
    order: str = "desc",
    actor: Actor = Depends(get_current_actor),
):
    return {"success": True, **await bookings.list_bookings(actor, status, page, limit, sort_by, order)}


@app.get("/api/bookings/{booking_id}")
async def get_booking(booking_id: int, actor: Actor = Depends(get_current_actor)):
    return {"success": True, "data": await bookings.get_booking(booking_id, actor)}


@app.post("/api/bookings", status_code=status.HTTP_201_CREATED)
async def create_booking(body: BookingCreate, actor: Actor = Depends(get_current_actor)):
    booking = await bookings.create_booking(actor, body.test_id, body.center_id, body.scheduled_at, body.phone)
    await notify("bookings_updated", booking_id=booking["id"])
    await notify("availability_updated", center_id=booking["center_id"])
    return {"success": True, "data": booking}


@app.put("/api/bookings/{booking_id}")
async def update_booking(booking_id: int, body: BookingUpdate, actor: Actor = Depends(get_current_actor)):
    booking = await bookings.update_booking(booking_id, actor, body.dict(exclude_unset=True))
    await notify("bookings_updated", booking_id=booking_id)
    await notify("availability_updated", center_id=booking["center_id"])
    return {"success": True, "data": booking}


@app.put("/api/bookings/{booking_id}/status")
async def update_booking_status(booking_id: int, body: BookingStatus, actor: Actor = Depends(get_current_actor)):
    booking = await bookings.transition_booking(booking_id, actor, body.status)
    await notify("bookings_updated", booking_id=booking_id)
    await notify("availability_updated", center_id=booking["center_id"])
    return {"success": True, "data": booking}


@app.put("/api/bookings/{booking_id}/cancel")
async def cancel_booking(booking_id: int, actor: Actor = Depends(get_current_actor)):
    booking = await bookings.cancel_booking(booking_id, actor)
    await notify("bookings_updated", booking_id=booking_id)
    await notify("availability_updated", center_id=booking["center_id"])
    return {"success": True, "data": booking}


@app.get("/api/health")
async def health():
    return {"success": True, "status": "ok"}


@app.websocket("/ws")
async def websocket_endpoint(websocket: fastapi.WebSocket, token: str = Query(None)):
    """
    Authenticated change feed. Clients re-fetch whatever a pushed event names.
    """
    if token is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    try:
        current_user = await _decode_token_and_get_user(token)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await manager.connect(websocket)
    await websocket.send_text(json.dumps({
        "type": "auth_success",
        "data": {"id": current_user.id, "name": current_user.name, "role": current_user.role},
    }))

    try:
        while True:
            # Inbound messages are only keepalives
            await websocket.receive_text()
    except fastapi.WebSocketDisconnect:
        manager.disconnect(websocket)


async def seed_superadmin():
    async with database.transaction():
        if not await get_user(ADMIN_EMAIL):
            admin_user = {
                "name": ADMIN_NAME,
                "email": ADMIN_EMAIL.lower(),
                "hashed_password": pwd_context.hash(ADMIN_PASSWORD),
                "role": SUPERADMIN,
            }
            await database.execute(query=users.insert(), values=admin_user)
            logger.info("superadmin_seeded", email=ADMIN_EMAIL)


@app.on_event("startup")
async def startup():
    setup_structured_logging(LOG_LEVEL)
    await database.connect()
    # Create tables if they don't exist
    metadata.create_all(bind=engine)
    await seed_superadmin()


@app.on_event("shutdown")
async def shutdown():
    await database.disconnect()
