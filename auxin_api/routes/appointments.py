import logging

from fastapi import APIRouter, Depends, Request

from auxin_api.middleware.auth_middleware import get_services, require_user
from auxin_api.models.appointment import BookAppointmentRequest

logger = logging.getLogger("uvicorn.error")

router = APIRouter()


@router.get("/available")
async def available_slots(request: Request, date: str = None):
    services = get_services(request)
    availability = await services.booking.compute_availability(date)
    return {"success": True, **availability}


@router.post("/book", status_code=201)
async def book_appointment(body: BookAppointmentRequest, request: Request,
                           user: dict = Depends(require_user)):
    services = get_services(request)
    appointment = await services.booking.book_slot(
        user_id=str(user["_id"]),
        auth_email=user["email"],
        user_email=body.userEmail,
        user_name=body.userName,
        date_value=body.date,
        time_value=body.time,
    )
    return {
        "success": True,
        "message": "Appointment booked successfully",
        "appointment": appointment,
    }


@router.get("/my-appointments")
async def my_appointments(request: Request, status: str = None, page: str = "1", limit: str = "50",
                          user: dict = Depends(require_user)):
    services = get_services(request)
    result = await services.booking.list_for_user(str(user["_id"]), status=status, page=page, limit=limit)
    return {"success": True, **result}


@router.put("/{appointment_id}/cancel")
async def cancel_appointment(appointment_id: str, request: Request,
                             user: dict = Depends(require_user)):
    services = get_services(request)
    appointment = await services.booking.cancel(appointment_id, str(user["_id"]))
    return {
        "success": True,
        "message": "Appointment cancelled successfully",
        "appointment": appointment,
    }


# TODO: gate behind an admin role once users carry one; any signed-in user can list today.
@router.get("/admin/all")
async def all_appointments(request: Request, date: str = None, status: str = None,
                           page: str = "1", limit: str = "100",
                           user: dict = Depends(require_user)):
    services = get_services(request)
    logger.info("User %s listed all appointments", user["_id"])
    result = await services.booking.list_all(date_value=date, status=status, page=page, limit=limit)
    return {"success": True, **result}
