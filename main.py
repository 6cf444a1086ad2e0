import logging
from typing import Callable, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import get_settings
from database import get_db, init_db, session_scope
from errors import Forbidden, InvalidInput, ServiceError, Unauthorized
from models import LoginLog, Transaction, TransactionType, User, UserStatus
from notifications import Notifier, get_notifier
from periods import resolve_period
from schemas import (
    AdminResetPasswordIn,
    ForgotPasswordIn,
    LoginAttemptOut,
    LoginIn,
    PasswordChangeIn,
    RegisterIn,
    ResetPasswordIn,
    TransactionIn,
    TransactionPatch,
    UserStatusIn,
    UserUpdateIn,
)
from security import TokenExpired, TokenInvalid, read_access_token
from seed import seed_defaults
from services import (
    AccessService,
    AdminTransactionFilters,
    AuthService,
    Caller,
    Page,
    TransactionFilters,
    UserService,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Personal Finance Tracker API",
    description="Users, categorized transactions, login auditing and admin reports.",
)


@app.on_event("startup")
def startup_event():
    init_db()
    with session_scope() as session:
        seed_defaults(session)
    logger.info("startup: schema ready, defaults seeded")


@app.exception_handler(ServiceError)
def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.message},
    )


@app.exception_handler(RequestValidationError)
def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        message = str(errors[0].get("msg", message)).removeprefix("Value error, ")
    return JSONResponse(status_code=400, content={"success": False, "message": message})


def _extract_token(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization")
    if auth:
        parts = auth.split(" ", 1)
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1].strip()
    return None


def get_caller(request: Request, db: Session = Depends(get_db)) -> Caller:
    token = _extract_token(request)
    if not token:
        raise Unauthorized("You are not logged in! Please log in to get access.")
    try:
        payload = read_access_token(token)
    except (TokenExpired, TokenInvalid) as exc:
        raise Unauthorized("Invalid token. Please log in again.") from exc

    user = db.get(User, payload["uid"])
    if not user or user.is_deleted:
        raise Unauthorized("Invalid token. Please log in again.")
    if user.status == UserStatus.deactivated:
        raise Forbidden("Your account has been deactivated. Please contact admin.")
    return Caller(user_id=user.id, role=user.role)


def get_admin(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.is_admin:
        raise Forbidden("Access denied. Admin privileges required.")
    return caller


def _int_param(request: Request, name: str, default: Optional[int]) -> Optional[int]:
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise InvalidInput(f"{name} must be an integer") from exc


def filters_from_request(request: Request, *, admin: bool = False) -> TransactionFilters:
    params = request.query_params
    type_param = params.get("type")
    txn_type = None
    if type_param:
        try:
            txn_type = TransactionType(type_param)
        except ValueError as exc:
            raise InvalidInput("Type must be either 'income' or 'expense'.") from exc
    period = resolve_period(params.get("startDate"), params.get("endDate"))
    common = dict(
        type=txn_type,
        category=params.get("category"),
        start_date=period.start,
        end_date=period.end,
        search=params.get("search"),
        page=_int_param(request, "page", 1),
        page_size=_int_param(request, "limit", None),
    )
    if admin:
        return AdminTransactionFilters(username=params.get("username"), **common)
    return TransactionFilters(**common)


def user_out(user: User) -> dict[str, object]:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "sex": user.sex.value if user.sex else None,
        "date_of_birth": user.date_of_birth,
        "role": user.role.value,
        "status": user.status.value,
        "created_at": user.created_at,
    }


def transaction_out(txn: Transaction, *, include_user: bool = False) -> dict[str, object]:
    data: dict[str, object] = {
        "id": txn.id,
        "user_id": txn.user_id,
        "amount": txn.amount,
        "type": txn.type.value,
        "description": txn.description,
        "date": txn.date.isoformat(),
        "category_id": txn.category_id,
        "category": {"id": txn.category.id, "name": txn.category.name},
        "created_at": txn.created_at,
        "updated_at": txn.updated_at,
    }
    if include_user:
        data["user"] = {
            "id": txn.user.id,
            "username": txn.user.username,
            "email": txn.user.email,
        }
    return data


def page_out(page: Page, serialize: Callable[[object], dict]) -> dict[str, object]:
    return {
        "success": True,
        "data": [serialize(item) for item in page.items],
        "pagination": {
            "totalItems": page.total_items,
            "totalPages": page.total_pages,
            "currentPage": page.page,
            "pageSize": page.page_size,
        },
    }


def _attempt_out(entry: Optional[LoginLog]) -> Optional[dict]:
    if entry is None:
        return None
    return LoginAttemptOut.model_validate(entry).model_dump(mode="json")


@app.post("/api/users/register", status_code=201)
def register_user(payload: RegisterIn, db: Session = Depends(get_db)):
    user = UserService(db).register(payload)
    return {
        "success": True,
        "message": "User created successfully",
        "user": user_out(user),
    }


@app.post("/api/users/login")
def login(payload: LoginIn, request: Request, db: Session = Depends(get_db)):
    result = AuthService(db).login(
        payload.identifier,
        payload.password,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return {"success": True, "token": result.token, "user": user_out(result.user)}


@app.post("/api/users/forgot-password")
def forgot_password(
    payload: ForgotPasswordIn,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    UserService(db).request_password_reset(str(payload.email), notifier)
    return {"success": True, "message": "Reset email sent successfully"}


@app.post("/api/users/reset-password")
def reset_password(payload: ResetPasswordIn, db: Session = Depends(get_db)):
    UserService(db).reset_password(payload.token, payload.newPassword)
    return {"success": True, "message": "Password reset successfully"}


@app.get("/api/users")
def list_users(
    request: Request,
    db: Session = Depends(get_db),
    admin: Caller = Depends(get_admin),
):
    page = UserService(db).list_users(
        search=request.query_params.get("search"),
        page=_int_param(request, "page", 1),
        page_size=_int_param(request, "limit", None),
    )
    return page_out(page, user_out)


@app.post("/api/users/reset-password-admin")
def admin_reset_password(
    payload: AdminResetPasswordIn,
    db: Session = Depends(get_db),
    admin: Caller = Depends(get_admin),
):
    user = UserService(db).admin_reset_password(payload.userId, payload.defaultPassword)
    return {
        "success": True,
        "message": f"Password for user {user.username} has been reset successfully.",
    }


@app.patch("/api/users/status")
def update_user_status(
    payload: UserStatusIn,
    db: Session = Depends(get_db),
    admin: Caller = Depends(get_admin),
):
    UserService(db).set_status(admin.user_id, payload.userId, payload.status)
    return {
        "success": True,
        "message": f"User status updated to {payload.status.value} successfully.",
    }


@app.get("/api/users/profile")
def get_profile(db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    user = UserService(db).get(caller.user_id)
    return {
        "success": True,
        "message": "User profile retrieved successfully",
        "user": user_out(user),
    }


@app.get("/api/users/profile/login-info")
def get_login_info(
    db: Session = Depends(get_db), caller: Caller = Depends(get_caller)
):
    info = UserService(db).login_info(caller.user_id)
    return {
        "success": True,
        "message": "Login information retrieved successfully",
        "login_info": {
            "success_count": info.success_count,
            "failed_count": info.failed_count,
            "last_successful_login": _attempt_out(info.last_successful_login),
            "last_failed_login": _attempt_out(info.last_failed_login),
        },
    }


@app.patch("/api/users/update-info")
def update_user(
    payload: UserUpdateIn,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    user = UserService(db).update_profile(caller.user_id, payload)
    return {
        "success": True,
        "message": "User updated successfully",
        "user": user_out(user),
    }


@app.patch("/api/users/update-password")
def update_password(
    payload: PasswordChangeIn,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    UserService(db).change_password(caller.user_id, payload)
    return {"success": True, "message": "Password updated successfully"}


@app.delete("/api/users")
def delete_account(db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    UserService(db).delete_account(caller.user_id)
    return {"success": True, "message": "Account deleted successfully"}


@app.get("/api/users/{user_id}")
def get_user(
    user_id: int, db: Session = Depends(get_db), caller: Caller = Depends(get_caller)
):
    user = AccessService(db, caller).view_user(user_id)
    return {
        "success": True,
        "message": "User details retrieved successfully",
        "user": user_out(user),
    }


@app.post("/api/transactions", status_code=201)
def create_transaction(
    payload: TransactionIn,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    txn = AccessService(db, caller).create_transaction(payload)
    return {
        "success": True,
        "message": "Transaction created successfully",
        "data": transaction_out(txn),
    }


@app.get("/api/transactions")
def list_transactions(
    request: Request,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    page = AccessService(db, caller).list_transactions(filters_from_request(request))
    return page_out(page, transaction_out)


@app.get("/api/transactions/categories")
def list_categories(
    db: Session = Depends(get_db), caller: Caller = Depends(get_caller)
):
    categories = AccessService(db, caller).list_categories()
    return {
        "success": True,
        "data": [
            {"id": c.id, "name": c.name, "user_id": c.user_id} for c in categories
        ],
    }


@app.get("/api/transactions/summary")
def transaction_summary(
    request: Request,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    period = resolve_period(
        request.query_params.get("startDate"), request.query_params.get("endDate")
    )
    return {"success": True, "data": AccessService(db, caller).summary(period)}


@app.get("/api/transactions/admin/all")
def list_all_transactions(
    request: Request,
    db: Session = Depends(get_db),
    admin: Caller = Depends(get_admin),
):
    filters = filters_from_request(request, admin=True)
    page = AccessService(db, admin).list_all_transactions(filters)
    return page_out(page, lambda txn: transaction_out(txn, include_user=True))


@app.get("/api/transactions/{transaction_id}")
def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    txn = AccessService(db, caller).get_transaction(transaction_id)
    return {"success": True, "data": transaction_out(txn)}


@app.patch("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int,
    payload: TransactionPatch,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    txn = AccessService(db, caller).update_transaction(transaction_id, payload)
    return {
        "success": True,
        "message": "Transaction updated successfully",
        "data": transaction_out(txn),
    }


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    AccessService(db, caller).delete_transaction(transaction_id)
    return {"success": True, "message": "Transaction deleted successfully"}


@app.get("/api/admin/overview-report")
def admin_overview_report(
    request: Request,
    db: Session = Depends(get_db),
    admin: Caller = Depends(get_admin),
):
    period = resolve_period(
        request.query_params.get("startDate"),
        request.query_params.get("endDate"),
        require_bounds=True,
    )
    report = AccessService(db, admin).overview(period)
    return {
        "success": True,
        "message": "Admin overview report generated successfully",
        "data": report,
    }


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
