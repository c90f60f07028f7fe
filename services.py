from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import case, delete, desc, extract, func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from config import get_settings
from errors import Conflict, Forbidden, NotFound, Unauthorized, ValidationError
from formats import cents_to_amount, format_date, format_time, parse_amount
from formats import parse_expense_date, parse_expense_time
from models import (
    AuthSession,
    Category,
    Expense,
    LoginHistory,
    User,
    expense_categories,
    utcnow,
)
from periods import PageRequest, local_today, month_end, month_start, page_request
from periods import week_start
from schemas import CategoryIn, ExpenseIn, LoginIn, PasswordChangeIn, ProfileIn
from schemas import RegisterIn
from security import hash_password, sign_token, verify_password, verify_token

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = (
    "Food",
    "Transportation",
    "Entertainment",
    "Shopping",
    "Bills",
    "Fuel",
    "School Fees",
    "Medical",
    "Rent",
    "Utilities",
    "Insurance",
    "Clothing",
    "Travel",
    "Gym",
    "Books",
    "Electronics",
    "Home Maintenance",
    "Pet Care",
    "Gifts",
    "Charity",
)

MIN_PASSWORD_LENGTH = 8
DAILY_PAGE_SIZE = 10
WEEKLY_PAGE_SIZE = 10
MONTHLY_PAGE_SIZE = 12


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _clean_name(name: Optional[str], label: str) -> str:
    clean = (name or "").strip()
    if not clean:
        raise ValidationError(f"{label} is required")
    if len(clean) < 2 or len(clean) > 255:
        raise ValidationError(f"{label} must be between 2 and 255 characters")
    return clean


def _check_new_password(password: Optional[str]) -> None:
    if not password or not password.strip():
        raise ValidationError("Password is required")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
        )


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def register(self, data: RegisterIn) -> User:
        name = _clean_name(data.name, "Name")
        email = normalize_email(data.email)
        if not email:
            raise ValidationError("Email is required")
        if "@" not in email or "." not in email:
            raise ValidationError("Invalid email format")
        _check_new_password(data.password)

        existing = self.session.scalar(select(User.id).where(User.email == email))
        if existing is not None:
            raise Conflict("Email already exists")

        user = User(name=name, email=email, password_hash=hash_password(data.password))
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise Conflict("Email already exists") from exc
        self.session.refresh(user)
        logger.info(f"user_registered: user_id={user.id}")
        return user

    def verify_credentials(self, email: str, password: str) -> User:
        user = self.session.scalar(
            select(User).where(
                User.email == normalize_email(email), User.is_active.is_(True)
            )
        )
        if not user or not verify_password(password or "", user.password_hash):
            raise Unauthorized("invalid_credentials")
        return user

    def get_profile(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user or not user.is_active:
            raise NotFound("User not found")
        return user

    def update_profile(self, user_id: int, data: ProfileIn) -> User:
        name = _clean_name(data.name, "Name")
        user = self.get_profile(user_id)
        user.name = name
        user.profile_image = data.profile_image
        self.session.commit()
        self.session.refresh(user)
        return user

    def change_password(self, user_id: int, data: PasswordChangeIn) -> None:
        _check_new_password(data.new_password)
        user = self.get_profile(user_id)
        if not verify_password(data.current_password or "", user.password_hash):
            raise ValidationError("Current password is incorrect")
        user.password_hash = hash_password(data.new_password)
        self.session.commit()
        logger.info(f"password_changed: user_id={user_id}")

    def deactivate(self, user_id: int) -> None:
        user = self.get_profile(user_id)
        user.is_active = False
        user.deactivated_at = utcnow()
        SessionService(self.session).revoke_all(user_id)
        logger.info(f"user_deactivated: user_id={user_id}")


class SessionService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.settings = get_settings()

    def login(self, data: LoginIn) -> tuple[str, AuthSession]:
        user = UserService(self.session).verify_credentials(data.email, data.password)
        token = sign_token(user.id)
        now = utcnow()
        auth_session = AuthSession(
            user_id=user.id,
            token=token,
            created_at=now,
            expires_at=now + timedelta(hours=self.settings.session_ttl_hours),
            is_active=True,
        )
        self.session.add(auth_session)
        self.session.commit()
        self.session.refresh(auth_session)
        self._record_login(user.id)
        logger.info(f"login: user_id={user.id} session_id={auth_session.id}")
        return token, auth_session

    def _record_login(self, user_id: int) -> None:
        try:
            self.session.add(LoginHistory(user_id=user_id, login_at=utcnow()))
            self.session.commit()
        except SQLAlchemyError:
            # login history never blocks a successful login
            self.session.rollback()
            logger.warning(f"login_history_failed: user_id={user_id}", exc_info=True)

    def authenticate(self, token: str) -> int:
        claims = verify_token(token)
        user_id = self.session.scalar(
            select(AuthSession.user_id)
            .join(User, User.id == AuthSession.user_id)
            .where(
                AuthSession.token == token,
                AuthSession.is_active.is_(True),
                AuthSession.expires_at > utcnow(),
                User.is_active.is_(True),
            )
        )
        if user_id is None or user_id != claims["u"]:
            raise Unauthorized("session_expired")
        return user_id

    def logout(self, token: str) -> None:
        result = self.session.execute(
            update(AuthSession)
            .where(AuthSession.token == token, AuthSession.is_active.is_(True))
            .values(is_active=False)
        )
        self.session.commit()
        logger.info(f"session_revoked: count={result.rowcount}")

    def revoke_all(self, user_id: int) -> int:
        result = self.session.execute(
            update(AuthSession)
            .where(AuthSession.user_id == user_id, AuthSession.is_active.is_(True))
            .values(is_active=False)
        )
        self.session.commit()
        logger.info(f"session_revoked: user_id={user_id} count={result.rowcount}")
        return result.rowcount


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id

    def _visible(self):
        return or_(Category.is_default.is_(True), Category.user_id == self.user_id)

    def list_visible(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(self._visible())
            .order_by(Category.is_default.desc(), Category.name)
        )
        return self.session.scalars(stmt).all()

    def _name_taken(self, name: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(Category.id).where(
            self._visible(), func.lower(Category.name) == name.lower()
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        return self.session.scalar(stmt.limit(1)) is not None

    def _get_mutable(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or (
            not category.is_default and category.user_id != self.user_id
        ):
            raise NotFound("Category not found")
        if category.is_default:
            raise Forbidden("Default categories cannot be modified")
        return category

    def create(self, data: CategoryIn) -> Category:
        name = _clean_name(data.name, "Category name")
        if data.is_default:
            raise Forbidden("Default categories are managed by the system")
        if self._name_taken(name):
            raise Conflict("Category already exists")
        category = Category(name=name, user_id=self.user_id, is_default=False)
        self.session.add(category)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise Conflict("Category already exists") from exc
        self.session.refresh(category)
        return category

    def rename(self, category_id: int, data: CategoryIn) -> Category:
        name = _clean_name(data.name, "Category name")
        if data.is_default:
            raise Forbidden("Default categories are managed by the system")
        category = self._get_mutable(category_id)
        if self._name_taken(name, exclude_id=category.id):
            raise Conflict("Category already exists")
        category.name = name
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise Conflict("Category already exists") from exc
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        category = self._get_mutable(category_id)
        # link rows go with the category, the expenses stay
        self.session.delete(category)
        self.session.commit()

    def seed_defaults(self) -> int:
        existing = {
            name.lower()
            for name in self.session.scalars(
                select(Category.name).where(Category.is_default.is_(True))
            )
        }
        created = 0
        for name in DEFAULT_CATEGORIES:
            if name.lower() in existing:
                continue
            self.session.add(Category(name=name, user_id=None, is_default=True))
            created += 1
        self.session.commit()
        if created:
            logger.info(f"default_categories_seeded: count={created}")
        return created


@dataclass(frozen=True)
class ExpenseFilters:
    category_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    min_amount_cents: Optional[int] = None
    max_amount_cents: Optional[int] = None

    def validate(self) -> None:
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValidationError("start_date cannot be after end_date")
        if (
            self.min_amount_cents is not None
            and self.max_amount_cents is not None
            and self.min_amount_cents > self.max_amount_cents
        ):
            raise ValidationError("min_amount cannot be greater than max_amount")

    def apply(self, stmt):
        if self.category_id is not None:
            stmt = stmt.join(
                expense_categories, expense_categories.c.expense_id == Expense.id
            ).where(expense_categories.c.category_id == self.category_id)
        if self.start_date is not None:
            stmt = stmt.where(Expense.expense_date >= self.start_date)
        if self.end_date is not None:
            stmt = stmt.where(Expense.expense_date <= self.end_date)
        if self.min_amount_cents is not None:
            stmt = stmt.where(Expense.amount_cents >= self.min_amount_cents)
        if self.max_amount_cents is not None:
            stmt = stmt.where(Expense.amount_cents <= self.max_amount_cents)
        return stmt


class ExpenseService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _validated(self, data: ExpenseIn) -> tuple[dict[str, object], list[int]]:
        title = (data.title or "").strip()
        if not title:
            raise ValidationError("Title is required")
        amount_cents = parse_amount(data.amount)
        if amount_cents <= 0:
            raise ValidationError("Amount must be greater than 0")
        if not data.categories:
            raise ValidationError("At least one category is required")
        expense_date = parse_expense_date(data.expense_date)
        expense_time = parse_expense_time(data.expense_time)
        description = (data.description or "").strip() or None
        fields = {
            "title": title,
            "description": description,
            "amount_cents": amount_cents,
            "expense_date": expense_date,
            "expense_time": expense_time,
        }
        return fields, list(dict.fromkeys(data.categories))

    def _resolve_categories(self, category_ids: list[int]) -> list[Category]:
        visible = CategoryService(self.session, self.user_id)._visible()
        found = self.session.scalars(
            select(Category).where(Category.id.in_(category_ids), visible)
        ).all()
        if len(found) != len(category_ids):
            known = {c.id for c in found}
            missing = ", ".join(str(cid) for cid in category_ids if cid not in known)
            raise ValidationError(f"Unknown category id(s): {missing}")
        return list(found)

    def exists_for_user(self, expense_id: int) -> bool:
        stmt = select(Expense.id).where(
            Expense.id == expense_id, Expense.user_id == self.user_id
        )
        return self.session.scalar(stmt) is not None

    def get(self, expense_id: int) -> Expense:
        stmt = (
            select(Expense)
            .options(selectinload(Expense.categories))
            .where(Expense.id == expense_id, Expense.user_id == self.user_id)
            .execution_options(populate_existing=True)
        )
        expense = self.session.scalar(stmt)
        if not expense:
            raise NotFound("Expense not found")
        return expense

    def create(self, data: ExpenseIn) -> Expense:
        fields, category_ids = self._validated(data)
        categories = self._resolve_categories(category_ids)
        expense = Expense(user_id=self.user_id, **fields)
        expense.categories = categories
        self.session.add(expense)
        self.session.commit()
        logger.info(
            f"expense_created: user_id={self.user_id} expense_id={expense.id} "
            f"categories={len(categories)}"
        )
        return self.get(expense.id)

    def update(self, expense_id: int, data: ExpenseIn) -> Expense:
        fields, category_ids = self._validated(data)
        if not self.exists_for_user(expense_id):
            raise NotFound("Expense not found")
        categories = self._resolve_categories(category_ids)

        self.session.execute(
            update(Expense)
            .where(Expense.id == expense_id, Expense.user_id == self.user_id)
            .values(**fields)
        )
        self.session.execute(
            delete(expense_categories).where(
                expense_categories.c.expense_id == expense_id
            )
        )
        self.session.execute(
            insert(expense_categories),
            [{"expense_id": expense_id, "category_id": c.id} for c in categories],
        )
        self.session.commit()
        return self.get(expense_id)

    def delete(self, expense_id: int) -> None:
        expense = self.session.scalar(
            select(Expense).where(
                Expense.id == expense_id, Expense.user_id == self.user_id
            )
        )
        if not expense:
            raise NotFound("Expense not found")
        self.session.delete(expense)
        self.session.commit()
        logger.info(f"expense_deleted: user_id={self.user_id} expense_id={expense_id}")

    def list_filtered(self, filters: ExpenseFilters) -> list[Expense]:
        filters.validate()
        stmt = (
            select(Expense)
            .options(selectinload(Expense.categories))
            .where(Expense.user_id == self.user_id)
            .order_by(Expense.created_at.desc(), Expense.id.desc())
        )
        stmt = filters.apply(stmt)
        return self.session.scalars(stmt).unique().all()


@dataclass
class SummaryPage:
    items: list[dict[str, object]]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return PageRequest(self.page, self.limit).total_pages(self.total)


class SummaryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _monthly_totals(self):
        year = extract("year", Expense.expense_date).label("year")
        month = extract("month", Expense.expense_date).label("month")
        return (
            select(
                year,
                month,
                func.count(Expense.id).label("count"),
                func.coalesce(func.sum(Expense.amount_cents), 0).label("total"),
            )
            .where(Expense.user_id == self.user_id)
            .group_by("year", "month")
        )

    @staticmethod
    def _month_item(row) -> dict[str, object]:
        first = date(int(row.year), int(row.month), 1)
        return {
            "month": first.strftime("%b %Y"),
            "year_month": first.strftime("%Y-%m"),
            "count": int(row.count),
            "total": cents_to_amount(int(row.total or 0)),
        }

    def _daily_totals(self, start: date, end: date) -> dict[date, tuple[int, int]]:
        stmt = (
            select(
                Expense.expense_date.label("day"),
                func.count(Expense.id).label("count"),
                func.coalesce(func.sum(Expense.amount_cents), 0).label("total"),
            )
            .where(
                Expense.user_id == self.user_id,
                Expense.expense_date.between(start, end),
            )
            .group_by(Expense.expense_date)
        )
        return {
            row.day: (int(row.count), int(row.total or 0))
            for row in self.session.execute(stmt)
        }

    def dashboard(self, today: Optional[date] = None) -> dict[str, object]:
        today = today or local_today()
        this_month = Expense.expense_date.between(month_start(today), month_end(today))
        first_of_week = week_start(today)
        this_week = Expense.expense_date.between(
            first_of_week, first_of_week + timedelta(days=6)
        )
        is_today = Expense.expense_date == today

        def bucket(condition, name: str):
            return (
                func.count(case((condition, 1))).label(f"{name}_count"),
                func.coalesce(
                    func.sum(case((condition, Expense.amount_cents), else_=0)), 0
                ).label(f"{name}_total"),
            )

        stmt = select(
            func.count(Expense.id).label("all_count"),
            func.coalesce(func.sum(Expense.amount_cents), 0).label("all_total"),
            *bucket(this_month, "month"),
            *bucket(this_week, "week"),
            *bucket(is_today, "today"),
        ).where(Expense.user_id == self.user_id)
        row = self.session.execute(stmt).one()

        summary = {
            "total_expenses": int(row.all_count or 0),
            "total_amount": cents_to_amount(int(row.all_total or 0)),
            "current_month_count": int(row.month_count or 0),
            "current_month_amount": cents_to_amount(int(row.month_total or 0)),
            "current_week_count": int(row.week_count or 0),
            "current_week_amount": cents_to_amount(int(row.week_total or 0)),
            "today_count": int(row.today_count or 0),
            "today_amount": cents_to_amount(int(row.today_total or 0)),
        }

        monthly = [
            self._month_item(r)
            for r in self.session.execute(
                self._monthly_totals().order_by(desc("year"), desc("month"))
            )
        ]

        window_start = first_of_week - timedelta(weeks=3)
        daily = self._daily_totals(window_start, first_of_week + timedelta(days=6))

        weekly_trend: list[dict[str, object]] = []
        for weeks_back in range(3, -1, -1):
            start = first_of_week - timedelta(weeks=weeks_back)
            days = [start + timedelta(days=offset) for offset in range(7)]
            count = sum(daily.get(d, (0, 0))[0] for d in days)
            total = sum(daily.get(d, (0, 0))[1] for d in days)
            weekly_trend.append(
                {
                    "week_start": format_date(start),
                    "week_end": format_date(days[-1]),
                    "count": count,
                    "total": cents_to_amount(total),
                }
            )

        daily_trend: list[dict[str, object]] = []
        for days_back in range(6, -1, -1):
            day = today - timedelta(days=days_back)
            count, total = daily.get(day, (0, 0))
            daily_trend.append(
                {"date": format_date(day), "count": count, "total": cents_to_amount(total)}
            )

        recent_stmt = (
            select(
                Expense.title,
                Expense.amount_cents,
                Expense.expense_date,
                Expense.expense_time,
            )
            .where(Expense.user_id == self.user_id)
            .order_by(Expense.created_at.desc(), Expense.id.desc())
            .limit(5)
        )
        recent = [
            {
                "title": r.title,
                "amount": cents_to_amount(r.amount_cents),
                "expense_date": format_date(r.expense_date),
                "expense_time": format_time(r.expense_time),
            }
            for r in self.session.execute(recent_stmt)
        ]

        return {
            "summary": summary,
            "monthly_summary": monthly,
            "weekly_trend": weekly_trend,
            "daily_trend": daily_trend,
            "recent_expenses": recent,
        }

    def monthly_summary_paged(
        self, page: Optional[int] = None, page_size: Optional[int] = None
    ) -> SummaryPage:
        request = page_request(page, page_size, default_limit=MONTHLY_PAGE_SIZE)
        base = self._monthly_totals()
        total = int(
            self.session.scalar(select(func.count()).select_from(base.subquery())) or 0
        )
        stmt = (
            base.order_by(desc("year"), desc("month"))
            .offset(request.offset)
            .limit(request.limit)
        )
        items = [self._month_item(r) for r in self.session.execute(stmt)]
        return SummaryPage(items, total, request.page, request.limit)

    def weekly_summary_paged(
        self,
        month: date,
        page: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> SummaryPage:
        request = page_request(page, page_size, default_limit=WEEKLY_PAGE_SIZE)
        daily = self._daily_totals(month_start(month), month_end(month))

        buckets: dict[tuple[int, int], dict[str, object]] = {}
        for day in sorted(daily):
            count, total = daily[day]
            iso = day.isocalendar()
            key = (iso[0], iso[1])
            bucket = buckets.setdefault(
                key, {"first": day, "last": day, "count": 0, "total": 0}
            )
            bucket["last"] = day
            bucket["count"] += count
            bucket["total"] += total

        ordered = sorted(buckets.items(), reverse=True)
        window = ordered[request.offset : request.offset + request.limit]
        items = [
            {
                "year": year,
                "week": week,
                "label": f"{year}-W{week:02d}",
                "start_date": format_date(b["first"]),
                "end_date": format_date(b["last"]),
                "count": b["count"],
                "total": cents_to_amount(b["total"]),
            }
            for (year, week), b in window
        ]
        return SummaryPage(items, len(ordered), request.page, request.limit)

    def daily_summary_paged(
        self, page: Optional[int] = None, page_size: Optional[int] = None
    ) -> SummaryPage:
        request = page_request(page, page_size, default_limit=DAILY_PAGE_SIZE)
        total = int(
            self.session.scalar(
                select(func.count(func.distinct(Expense.expense_date))).where(
                    Expense.user_id == self.user_id
                )
            )
            or 0
        )
        stmt = (
            select(
                Expense.expense_date.label("day"),
                func.count(Expense.id).label("count"),
                func.coalesce(func.sum(Expense.amount_cents), 0).label("total"),
            )
            .where(Expense.user_id == self.user_id)
            .group_by(Expense.expense_date)
            .order_by(Expense.expense_date.desc())
            .offset(request.offset)
            .limit(request.limit)
        )
        items = [
            {
                "date": format_date(r.day),
                "count": int(r.count),
                "total": cents_to_amount(int(r.total or 0)),
            }
            for r in self.session.execute(stmt)
        ]
        return SummaryPage(items, total, request.page, request.limit)
