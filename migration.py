from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from database import write_lock
from errors import AuthenticationError
from models import Category, Expense, User
from services import (
    CategoryService,
    UserService,
    allocate_id,
    commit_or_fail,
    reserve_ids,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MigrationResult:
    categories: int = 0
    expenses: int = 0
    renumbered_categories: int = 0
    renumbered_expenses: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.categories or self.expenses)


class OwnerlessMigrationService:
    """Assign legacy records that have no owner to a single user.

    Ids are kept where they are free in the target user's partition. A
    colliding id is replaced by a fresh one, and migrated expenses that
    pointed at a renumbered ownerless category follow it.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def migrate_ownerless(self, user_id: int) -> MigrationResult:
        with write_lock("categories", "expenses"):
            categories = self.session.scalars(
                select(Category)
                .where(Category.user_id.is_(None))
                .order_by(Category.id, Category.row_id)
            ).all()
            expenses = self.session.scalars(
                select(Expense)
                .where(Expense.user_id.is_(None))
                .order_by(Expense.id, Expense.row_id)
            ).all()
            if not categories and not expenses:
                return MigrationResult()

            category_remap, renumbered_categories = self._adopt(
                categories, Category, user_id, "categories"
            )
            _, renumbered_expenses = self._adopt(expenses, Expense, user_id, "expenses")
            for expense in expenses:
                if expense.category_id in category_remap:
                    expense.category_id = category_remap[expense.category_id]

            commit_or_fail(self.session, "migrate ownerless records")

        result = MigrationResult(
            categories=len(categories),
            expenses=len(expenses),
            renumbered_categories=renumbered_categories,
            renumbered_expenses=renumbered_expenses,
        )
        logger.info(
            f"ownerless_migrated: user_id={user_id} categories={result.categories} "
            f"expenses={result.expenses} renumbered_categories={renumbered_categories} "
            f"renumbered_expenses={renumbered_expenses}"
        )
        return result

    def _adopt(self, records, model, user_id: int, collection: str):
        taken = set(
            self.session.scalars(select(model.id).where(model.user_id == user_id)).all()
        )
        if records:
            # Fresh ids must not land on an ownerless id that is kept later.
            reserve_ids(self.session, user_id, collection, max(r.id for r in records))
        remap: dict[int, int] = {}
        kept: set[int] = set()
        renumbered = 0
        for record in records:
            old_id = record.id
            if old_id in taken:
                new_id = allocate_id(self.session, user_id, collection)
                if old_id in kept:
                    # Expenses keep pointing at the record that kept this id.
                    logger.warning(
                        f"ownerless_duplicate_id: collection={collection} "
                        f"id={old_id} renumbered_to={new_id}"
                    )
                else:
                    remap.setdefault(old_id, new_id)
                record.id = new_id
                renumbered += 1
            else:
                kept.add(old_id)
            taken.add(record.id)
            record.user_id = user_id
        return remap, renumbered


def bootstrap_legacy_owner(
    session: Session, username: str, password: str
) -> tuple[User, MigrationResult]:
    """Create (or verify) the legacy owner, hand it all ownerless data, seed defaults."""
    users = UserService(session)
    user = users.find_by_username(username)
    if user is None:
        user = users.create(username, password, seed_defaults=False)
    elif users.verify(username, password) is None:
        raise AuthenticationError("Invalid username or password")

    result = OwnerlessMigrationService(session).migrate_ownerless(user.id)
    CategoryService(session, user.id).ensure_defaults()
    return user, result
