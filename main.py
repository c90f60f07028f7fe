import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal, init_db
from errors import DependencyFailure, ServiceError, Unauthorized, ValidationError
from formats import cents_to_amount, format_date, format_time, format_timestamp
from formats import parse_amount, parse_expense_date
from models import Category, Expense, User
from periods import parse_year_month
from schemas import CategoryIn, ExpenseIn, LoginIn, PasswordChangeIn, ProfileIn
from schemas import RegisterIn
from services import (
    CategoryService,
    ExpenseFilters,
    ExpenseService,
    SessionService,
    SummaryPage,
    SummaryService,
    UserService,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    init_db()
    yield


app = FastAPI(title="Expense Tracker", lifespan=lifespan)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@app.exception_handler(ServiceError)
async def service_error_handler(_request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(_request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request body"
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    return JSONResponse(status_code=400, content=ValidationError(message).to_dict())


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception(f"database_error: path={request.url.path}", exc_info=exc)
    failure = DependencyFailure()
    return JSONResponse(status_code=failure.status_code, content=failure.to_dict())


def bearer_token(request: Request) -> str:
    header = request.headers.get("Authorization")
    if not header:
        raise Unauthorized("unauthorized")
    scheme, _, token = header.partition(" ")
    token = token.strip()
    if scheme != "Bearer" or not token:
        raise Unauthorized("invalid_token")
    return token


def current_user_id(
    token: str = Depends(bearer_token), db: Session = Depends(get_db)
) -> int:
    return SessionService(db).authenticate(token)


def _int_param(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def filters_from_request(request: Request) -> ExpenseFilters:
    params = request.query_params
    category_id = None
    if params.get("category_id"):
        try:
            category_id = int(params["category_id"])
        except ValueError as exc:
            raise ValidationError("Invalid category_id") from exc
    start_date = (
        parse_expense_date(params["start_date"]) if params.get("start_date") else None
    )
    end_date = parse_expense_date(params["end_date"]) if params.get("end_date") else None
    min_amount = None
    if params.get("min_amount"):
        min_amount = parse_amount(params["min_amount"], field="min_amount")
        if min_amount < 0:
            raise ValidationError("min_amount cannot be negative")
    max_amount = None
    if params.get("max_amount"):
        max_amount = parse_amount(params["max_amount"], field="max_amount")
        if max_amount < 0:
            raise ValidationError("max_amount cannot be negative")
    return ExpenseFilters(
        category_id=category_id,
        start_date=start_date,
        end_date=end_date,
        min_amount_cents=min_amount,
        max_amount_cents=max_amount,
    )


def user_payload(user: User) -> dict[str, object]:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "profile_image": user.profile_image,
        "is_active": user.is_active,
        "created_at": format_timestamp(user.created_at),
        "updated_at": format_timestamp(user.updated_at),
    }


def category_payload(category: Category) -> dict[str, object]:
    return {
        "id": category.id,
        "name": category.name,
        "is_default": category.is_default,
        "user_id": category.user_id,
        "created_at": format_timestamp(category.created_at),
    }


def expense_payload(expense: Expense) -> dict[str, object]:
    return {
        "id": expense.id,
        "user_id": expense.user_id,
        "title": expense.title,
        "description": expense.description,
        "amount": cents_to_amount(expense.amount_cents),
        "expense_date": format_date(expense.expense_date),
        "expense_time": format_time(expense.expense_time),
        "categories": [
            {"id": c.id, "name": c.name, "is_default": c.is_default}
            for c in expense.categories
        ],
        "created_at": format_timestamp(expense.created_at),
        "updated_at": format_timestamp(expense.updated_at),
    }


def page_payload(result: SummaryPage) -> dict[str, object]:
    return {
        "data": result.items,
        "page": result.page,
        "limit": result.limit,
        "total": result.total,
        "total_pages": result.total_pages,
    }


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/api/register", status_code=201)
def register(payload: RegisterIn, db: Session = Depends(get_db)):
    user = UserService(db).register(payload)
    return {"message": "User registered successfully", "user": user_payload(user)}


@app.post("/api/login")
def login(payload: LoginIn, db: Session = Depends(get_db)):
    token, _ = SessionService(db).login(payload)
    return {"message": "Login successful", "token": token}


@app.post("/api/logout")
def logout(
    token: str = Depends(bearer_token),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    SessionService(db).logout(token)
    return {"message": "Logged out successfully"}


@app.get("/api/profile")
def get_profile(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    user = UserService(db).get_profile(user_id)
    return {"message": "Profile retrieved successfully", "profile": user_payload(user)}


@app.put("/api/profile")
def update_profile(
    payload: ProfileIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    user = UserService(db).update_profile(user_id, payload)
    return {"message": "Profile updated successfully", "profile": user_payload(user)}


@app.put("/api/profile/password")
def change_password(
    payload: PasswordChangeIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    UserService(db).change_password(user_id, payload)
    return {"message": "Password changed successfully"}


@app.delete("/api/profile")
def deactivate_profile(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    UserService(db).deactivate(user_id)
    return {"message": "Account deactivated"}


@app.get("/api/categories")
def list_categories(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    categories = CategoryService(db, user_id).list_visible()
    return {
        "message": "Categories retrieved successfully",
        "categories": [category_payload(c) for c in categories],
    }


@app.post("/api/categories", status_code=201)
def create_category(
    payload: CategoryIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    category = CategoryService(db, user_id).create(payload)
    return {
        "message": "Category created successfully",
        "category": category_payload(category),
    }


@app.put("/api/categories/{category_id}")
def rename_category(
    category_id: int,
    payload: CategoryIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    category = CategoryService(db, user_id).rename(category_id, payload)
    return {
        "message": "Category updated successfully",
        "category": category_payload(category),
    }


@app.delete("/api/categories/{category_id}")
def delete_category(
    category_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    CategoryService(db, user_id).delete(category_id)
    return {"message": "Category deleted successfully"}


@app.get("/api/expenses")
def list_expenses(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    filters = filters_from_request(request)
    expenses = ExpenseService(db, user_id).list_filtered(filters)
    return {
        "message": "Expenses retrieved successfully",
        "count": len(expenses),
        "expenses": [expense_payload(e) for e in expenses],
    }


@app.post("/api/expenses", status_code=201)
def create_expense(
    payload: ExpenseIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    expense = ExpenseService(db, user_id).create(payload)
    return {"message": "Expense created successfully", "expense": expense_payload(expense)}


@app.get("/api/expenses/{expense_id}")
def get_expense(
    expense_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    expense = ExpenseService(db, user_id).get(expense_id)
    return {"message": "Expense retrieved successfully", "expense": expense_payload(expense)}


@app.put("/api/expenses/{expense_id}")
def update_expense(
    expense_id: int,
    payload: ExpenseIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    expense = ExpenseService(db, user_id).update(expense_id, payload)
    return {"message": "Expense updated successfully", "expense": expense_payload(expense)}


@app.delete("/api/expenses/{expense_id}")
def delete_expense(
    expense_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    ExpenseService(db, user_id).delete(expense_id)
    return {"message": "Expense deleted successfully"}


@app.get("/api/dashboard")
def dashboard(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    return SummaryService(db, user_id).dashboard()


@app.get("/api/summary/monthly")
def monthly_summary(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    params = request.query_params
    result = SummaryService(db, user_id).monthly_summary_paged(
        _int_param(params.get("page")), _int_param(params.get("limit"))
    )
    return page_payload(result)


@app.get("/api/summary/weekly")
def weekly_summary(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    params = request.query_params
    month = parse_year_month(params.get("month"))
    result = SummaryService(db, user_id).weekly_summary_paged(
        month, _int_param(params.get("page")), _int_param(params.get("limit"))
    )
    return page_payload(result)


@app.get("/api/summary/daily")
def daily_summary(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    params = request.query_params
    result = SummaryService(db, user_id).daily_summary_paged(
        _int_param(params.get("page")), _int_param(params.get("limit"))
    )
    return page_payload(result)


def main():
    import uvicorn

    settings = get_settings()
    uvicorn.run("main:app", host=settings.host, port=settings.port, reload=False)


if __name__ == "__main__":
    main()
