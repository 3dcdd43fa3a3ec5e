from structlog.contextvars import clear_contextvars, get_contextvars

from hcs_booking.logging_config import bind_actor, bind_request


def test_bind_request_starts_a_fresh_context():
    bind_actor(7, "Customer")

    request_id = bind_request("GET", "/api/bookings")

    assert get_contextvars() == {"request_id": request_id, "method": "GET", "path": "/api/bookings"}
    clear_contextvars()


def test_bind_actor_adds_to_request_context():
    bind_request("POST", "/api/bookings")
    bind_actor(3, "HCS Admin")

    context = get_contextvars()
    assert context["actor_id"] == 3
    assert context["role"] == "HCS Admin"
    assert context["path"] == "/api/bookings"
    clear_contextvars()
