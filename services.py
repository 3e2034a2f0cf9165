from __future__ import annotations

import logging
import secrets
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

import bcrypt
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import write_lock
from defaults import DEFAULT_CATEGORIES, category_field
from errors import (
    AuthenticationError,
    CategoryInUseError,
    ConflictError,
    NotFoundError,
    ProtectedCategoryError,
    StorageFailure,
    ValidationError,
)
from models import Category, Expense, PartitionCounter, User, UserSession, utcnow
from reports import Report, build_report
from schemas import CategoryIn, CategoryUpdate, ExpenseIn, ExpenseUpdate


logger = logging.getLogger(__name__)

_PARTITIONED = {"categories": Category, "expenses": Expense}


def commit_or_fail(session: Session, action: str) -> None:
    try:
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error(f"storage_failure: action={action} error={exc}")
        raise StorageFailure(f"Failed to {action}") from exc


def _counter(session: Session, user_id: int, collection: str) -> PartitionCounter:
    counter = session.get(PartitionCounter, (user_id, collection))
    if counter is None:
        model = _PARTITIONED[collection]
        highest = session.execute(
            select(func.max(model.id)).where(model.user_id == user_id)
        ).scalar_one()
        counter = PartitionCounter(
            user_id=user_id, collection=collection, last_id=int(highest or 0)
        )
        session.add(counter)
        session.flush()
    return counter


def allocate_id(session: Session, user_id: int, collection: str) -> int:
    """Next id in the user's partition. Caller must hold the collection lock."""
    counter = _counter(session, user_id, collection)
    counter.last_id += 1
    return counter.last_id


def reserve_ids(session: Session, user_id: int, collection: str, through: int) -> None:
    """Make sure ids up to ``through`` are never handed out by ``allocate_id``."""
    counter = _counter(session, user_id, collection)
    if counter.last_id < through:
        counter.last_id = through


# Largest value a SQLite INTEGER column holds.
MAX_AMOUNT_CENTS = 2**63 - 1


def to_cents(amount: Optional[Decimal]) -> int:
    if amount is None:
        raise ValidationError("Valid amount is required")
    try:
        value = Decimal(amount)
        cents = int((value * 100).quantize(Decimal("1"), ROUND_HALF_UP))
    except (InvalidOperation, ValueError, OverflowError) as exc:
        raise ValidationError("Valid amount is required") from exc
    if value <= 0 or cents > MAX_AMOUNT_CENTS:
        raise ValidationError("Valid amount is required")
    if cents == 0:
        raise ValidationError("Amount must be at least 0.01")
    return cents


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _query(self):
        return (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.is_default.desc(), Category.name, Category.id)
        )

    def list_all(self) -> list[Category]:
        categories = self.session.scalars(self._query()).all()
        if not categories:
            # Another reader may have seeded while this one waited for the lock.
            self.ensure_defaults()
            categories = self.session.scalars(self._query()).all()
        return list(categories)

    def category_map(self) -> dict[int, Category]:
        return {category.id: category for category in self.list_all()}

    def ensure_defaults(self) -> bool:
        """Seed the starter categories if the user has none. Returns True if seeded."""
        with write_lock("categories"):
            existing = self.session.execute(
                select(func.count(Category.row_id)).where(
                    Category.user_id == self.user_id
                )
            ).scalar_one()
            if existing:
                return False
            now = utcnow()
            for template in DEFAULT_CATEGORIES:
                self.session.add(
                    Category(
                        id=allocate_id(self.session, self.user_id, "categories"),
                        user_id=self.user_id,
                        name=template["name"],
                        color=template["color"],
                        icon=template["icon"],
                        is_default=True,
                        created_at=now,
                    )
                )
            commit_or_fail(self.session, "seed default categories")
        logger.info(f"default_categories_seeded: user_id={self.user_id}")
        return True

    def find(self, category_id: int) -> Optional[Category]:
        return self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id, Category.id == category_id
            )
        )

    def get(self, category_id: int) -> Category:
        category = self.find(category_id)
        if category is None:
            raise NotFoundError("Category not found")
        return category

    def _clean_name(self, name: Optional[str]) -> str:
        clean_name = (name or "").strip()
        if not clean_name:
            raise ValidationError("Category name is required")
        return clean_name

    def _ensure_unique_name(self, name: str, exclude_id: Optional[int] = None) -> None:
        rows = self.session.execute(
            select(Category.id, Category.name).where(Category.user_id == self.user_id)
        ).all()
        wanted = name.lower()
        for row in rows:
            if row.id != exclude_id and row.name.lower() == wanted:
                raise ConflictError("Category name already exists")

    def create(self, data: CategoryIn) -> Category:
        clean_name = self._clean_name(data.name)
        with write_lock("categories"):
            self.ensure_defaults()
            self._ensure_unique_name(clean_name)
            category = Category(
                id=allocate_id(self.session, self.user_id, "categories"),
                user_id=self.user_id,
                name=clean_name,
                color=category_field("color", data.color),
                icon=category_field("icon", data.icon),
                is_default=False,
                created_at=utcnow(),
            )
            self.session.add(category)
            commit_or_fail(self.session, "create category")
        logger.info(f"category_created: user_id={self.user_id} id={category.id}")
        return category

    def update(self, category_id: int, data: CategoryUpdate) -> Category:
        sent = data.model_fields_set
        with write_lock("categories"):
            category = self.get(category_id)
            if "name" in sent:
                clean_name = self._clean_name(data.name)
                self._ensure_unique_name(clean_name, exclude_id=category.id)
                category.name = clean_name
            if "color" in sent:
                category.color = category_field("color", data.color)
            if "icon" in sent:
                category.icon = category_field("icon", data.icon)
            commit_or_fail(self.session, "update category")
        logger.info(f"category_updated: user_id={self.user_id} id={category_id}")
        return category

    def delete(self, category_id: int) -> None:
        with write_lock("categories", "expenses"):
            category = self.get(category_id)
            if category.is_default:
                raise ProtectedCategoryError("Cannot delete default category")
            in_use = self.session.execute(
                select(func.count(Expense.row_id)).where(
                    Expense.user_id == self.user_id,
                    Expense.category_id == category_id,
                )
            ).scalar_one()
            if in_use:
                raise CategoryInUseError(
                    "Cannot delete category with existing expenses"
                )
            self.session.delete(category)
            commit_or_fail(self.session, "delete category")
        logger.info(f"category_deleted: user_id={self.user_id} id={category_id}")


class ExpenseService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list(
        self, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[Expense]:
        stmt = (
            select(Expense)
            .where(Expense.user_id == self.user_id)
            .order_by(
                Expense.date.desc(), Expense.created_at.desc(), Expense.id.desc()
            )
        )
        if start is not None:
            stmt = stmt.where(Expense.date >= start)
        if end is not None:
            stmt = stmt.where(Expense.date <= end)
        return list(self.session.scalars(stmt).all())

    def find(self, expense_id: int) -> Optional[Expense]:
        return self.session.scalar(
            select(Expense).where(
                Expense.user_id == self.user_id, Expense.id == expense_id
            )
        )

    def get(self, expense_id: int) -> Expense:
        expense = self.find(expense_id)
        if expense is None:
            raise NotFoundError("Expense not found")
        return expense

    def _resolve_category(self, category_id: Optional[int]) -> Category:
        if not category_id:
            raise ValidationError("Category is required")
        category = CategoryService(self.session, self.user_id).find(category_id)
        if category is None:
            raise ValidationError("Invalid category")
        return category

    def create(self, data: ExpenseIn) -> Expense:
        amount_cents = to_cents(data.amount)
        if data.date is None:
            raise ValidationError("Date is required")
        with write_lock("categories", "expenses"):
            self._resolve_category(data.category_id)
            now = utcnow()
            expense = Expense(
                id=allocate_id(self.session, self.user_id, "expenses"),
                user_id=self.user_id,
                amount_cents=amount_cents,
                date=data.date,
                category_id=data.category_id,
                note=data.note or None,
                created_at=now,
                updated_at=now,
            )
            self.session.add(expense)
            commit_or_fail(self.session, "create expense")
        logger.info(f"expense_created: user_id={self.user_id} id={expense.id}")
        return expense

    def update(self, expense_id: int, data: ExpenseUpdate) -> Expense:
        sent = data.model_fields_set
        with write_lock("categories", "expenses"):
            expense = self.get(expense_id)
            amount_cents = (
                to_cents(data.amount) if "amount" in sent else expense.amount_cents
            )
            if "date" in sent and data.date is None:
                raise ValidationError("Date is required")
            category_id = (
                data.category_id if "category_id" in sent else expense.category_id
            )
            self._resolve_category(category_id)

            expense.amount_cents = amount_cents
            if "date" in sent:
                expense.date = data.date
            expense.category_id = category_id
            if "note" in sent:
                expense.note = data.note or None
            expense.updated_at = utcnow()
            commit_or_fail(self.session, "update expense")
        logger.info(f"expense_updated: user_id={self.user_id} id={expense_id}")
        return expense

    def delete(self, expense_id: int) -> None:
        with write_lock("expenses"):
            expense = self.get(expense_id)
            self.session.delete(expense)
            commit_or_fail(self.session, "delete expense")
        logger.info(f"expense_deleted: user_id={self.user_id} id={expense_id}")


class ReportService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def generate(self, start: date, end: date) -> Report:
        expenses = ExpenseService(self.session, self.user_id).list(start, end)
        categories = CategoryService(self.session, self.user_id).category_map()
        return build_report(expenses, categories, start, end)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)

    def find_by_username(self, username: str) -> Optional[User]:
        return self.session.scalar(
            select(User).where(func.lower(User.username) == username.lower())
        )

    def create(
        self, username: str, password: str, *, seed_defaults: bool = True
    ) -> User:
        if len(username) < 3:
            raise ValidationError("Username must be at least 3 characters")
        if len(password) < 3:
            raise ValidationError("Password must be at least 3 characters")
        with write_lock("users"):
            if self.find_by_username(username):
                raise ConflictError("Username already exists")
            user = User(
                username=username,
                password_hash=hash_password(password),
                created_at=utcnow(),
            )
            self.session.add(user)
            commit_or_fail(self.session, "create user")
        logger.info(f"user_created: user_id={user.id}")
        if seed_defaults:
            CategoryService(self.session, user.id).ensure_defaults()
        return user

    def verify(self, username: str, password: str) -> Optional[User]:
        user = self.find_by_username(username)
        if user is None or not verify_password(password, user.password_hash):
            return None
        return user

    def authenticate(self, username: str, password: str) -> User:
        user = self.verify(username, password)
        if user is None:
            raise AuthenticationError("Invalid username or password")
        return user


class SessionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, user_id: int) -> str:
        token = secrets.token_hex(32)
        self.session.add(UserSession(token=token, user_id=user_id, created_at=utcnow()))
        commit_or_fail(self.session, "create session")
        logger.info(f"session_created: user_id={user_id}")
        return token

    def resolve(self, token: str) -> Optional[int]:
        record = self.session.get(UserSession, token)
        return record.user_id if record else None

    def delete(self, token: str) -> None:
        record = self.session.get(UserSession, token)
        if record is None:
            return
        self.session.delete(record)
        commit_or_fail(self.session, "delete session")
        logger.info(f"session_deleted: user_id={record.user_id}")
