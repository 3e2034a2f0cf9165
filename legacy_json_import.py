"""Import and export of the legacy JSON document layout.

The legacy store kept two arrays, ``categories.json`` and ``expenses.json``,
each record carrying a ``user_id`` owner field. Records without an owner are
imported as ownerless and wait for :mod:`migration` to assign them.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from database import write_lock
from defaults import category_field
from errors import StorageFailure, ValidationError
from models import Category, Expense, utcnow
from schemas import LegacyCategoryRow, LegacyExpenseRow
from services import commit_or_fail, reserve_ids, to_cents


logger = logging.getLogger(__name__)

CATEGORIES_DOCUMENT = "categories.json"
EXPENSES_DOCUMENT = "expenses.json"


@dataclass(frozen=True)
class LegacyDocumentsPreview:
    categories_count: int
    expenses_count: int
    ownerless_categories: int
    ownerless_expenses: int
    already_present: int
    min_expense_date: Optional[date]
    max_expense_date: Optional[date]
    warnings: list[str]


@dataclass(frozen=True)
class _ParsedDocuments:
    categories: list[LegacyCategoryRow]
    expenses: list[LegacyExpenseRow]
    errors: list[str]


def _parse_legacy_timestamp(value: Optional[str]) -> datetime:
    if not value:
        return utcnow()
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValueError(f"Invalid legacy timestamp: {value}") from exc
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _format_timestamp(value: datetime) -> str:
    return value.isoformat(timespec="milliseconds") + "Z"


def _read_document(path: Path) -> list[dict]:
    if not path.exists():
        return []
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValidationError(f"{path.name} is not valid JSON: {exc}") from exc
    if not isinstance(data, list):
        raise ValidationError(f"{path.name} must contain a JSON array")
    return data


def _owner(raw: dict) -> dict:
    # Legacy ownerless records have no user_id, or a falsy one.
    if not raw.get("user_id"):
        raw = {**raw, "user_id": None}
    return raw


def _parse_documents(directory: Path) -> _ParsedDocuments:
    errors: list[str] = []
    categories: list[LegacyCategoryRow] = []
    expenses: list[LegacyExpenseRow] = []

    for idx, raw in enumerate(_read_document(directory / CATEGORIES_DOCUMENT)):
        try:
            row = LegacyCategoryRow.model_validate(_owner(raw))
            if not row.name.strip():
                raise ValueError("empty name")
            _parse_legacy_timestamp(row.created_at)
        except (PydanticValidationError, ValueError, TypeError, AttributeError) as exc:
            errors.append(f"categories[{idx}]: {exc}")
            continue
        categories.append(row)

    for idx, raw in enumerate(_read_document(directory / EXPENSES_DOCUMENT)):
        try:
            row = LegacyExpenseRow.model_validate(_owner(raw))
            to_cents(row.amount)
            _parse_legacy_timestamp(row.created_at)
            _parse_legacy_timestamp(row.updated_at)
        except (PydanticValidationError, ValueError, TypeError, AttributeError) as exc:
            errors.append(f"expenses[{idx}]: {exc}")
            continue
        expenses.append(row)

    return _ParsedDocuments(categories=categories, expenses=expenses, errors=errors)


class LegacyJSONImportService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _existing_keys(self, model) -> set[tuple[Optional[int], int]]:
        rows = self.session.execute(select(model.user_id, model.id)).all()
        return {(row.user_id, row.id) for row in rows}

    def preview(self, directory: Path) -> LegacyDocumentsPreview:
        if not directory.is_dir():
            raise ValidationError("Legacy data directory not found")
        parsed = _parse_documents(directory)

        existing_categories = self._existing_keys(Category)
        existing_expenses = self._existing_keys(Expense)
        already_present = sum(
            1 for row in parsed.categories if (row.user_id, row.id) in existing_categories
        ) + sum(
            1 for row in parsed.expenses if (row.user_id, row.id) in existing_expenses
        )

        dates = [row.date for row in parsed.expenses]
        return LegacyDocumentsPreview(
            categories_count=len(parsed.categories),
            expenses_count=len(parsed.expenses),
            ownerless_categories=sum(1 for r in parsed.categories if r.user_id is None),
            ownerless_expenses=sum(1 for r in parsed.expenses if r.user_id is None),
            already_present=already_present,
            min_expense_date=min(dates) if dates else None,
            max_expense_date=max(dates) if dates else None,
            warnings=parsed.errors,
        )

    def commit(self, directory: Path) -> dict[str, int]:
        if not directory.is_dir():
            raise ValidationError("Legacy data directory not found")
        parsed = _parse_documents(directory)
        if parsed.errors:
            raise ValidationError("; ".join(parsed.errors))

        inserted_categories = 0
        inserted_expenses = 0
        skipped = 0
        highest: dict[tuple[int, str], int] = {}

        with write_lock("categories", "expenses"):
            seen = self._existing_keys(Category)
            for row in parsed.categories:
                key = (row.user_id, row.id)
                if key in seen:
                    skipped += 1
                    continue
                seen.add(key)
                self.session.add(
                    Category(
                        id=row.id,
                        user_id=row.user_id,
                        name=row.name.strip(),
                        color=category_field("color", row.color),
                        icon=category_field("icon", row.icon),
                        is_default=row.is_default,
                        created_at=_parse_legacy_timestamp(row.created_at),
                    )
                )
                inserted_categories += 1
                if row.user_id is not None:
                    slot = (row.user_id, "categories")
                    highest[slot] = max(highest.get(slot, 0), row.id)

            seen = self._existing_keys(Expense)
            for row in parsed.expenses:
                key = (row.user_id, row.id)
                if key in seen:
                    skipped += 1
                    continue
                seen.add(key)
                created_at = _parse_legacy_timestamp(row.created_at)
                self.session.add(
                    Expense(
                        id=row.id,
                        user_id=row.user_id,
                        amount_cents=to_cents(row.amount),
                        date=row.date,
                        category_id=row.category_id,
                        note=row.note or None,
                        created_at=created_at,
                        updated_at=(
                            _parse_legacy_timestamp(row.updated_at)
                            if row.updated_at
                            else created_at
                        ),
                    )
                )
                inserted_expenses += 1
                if row.user_id is not None:
                    slot = (row.user_id, "expenses")
                    highest[slot] = max(highest.get(slot, 0), row.id)

            self.session.flush()
            for (user_id, collection), through in highest.items():
                reserve_ids(self.session, user_id, collection, through)
            commit_or_fail(self.session, "import legacy documents")

        logger.info(
            f"legacy_import: categories={inserted_categories} "
            f"expenses={inserted_expenses} skipped={skipped}"
        )
        return {
            "inserted_categories": inserted_categories,
            "inserted_expenses": inserted_expenses,
            "skipped_existing": skipped,
        }


def _legacy_category(category: Category) -> dict[str, object]:
    data: dict[str, object] = {
        "id": category.id,
        "name": category.name,
        "color": category.color,
        "icon": category.icon,
        "is_default": 1 if category.is_default else 0,
        "created_at": _format_timestamp(category.created_at),
    }
    if category.user_id is not None:
        data["user_id"] = category.user_id
    return data


def _legacy_expense(expense: Expense) -> dict[str, object]:
    data: dict[str, object] = {
        "id": expense.id,
        "amount": float(expense.amount),
        "date": expense.date.isoformat(),
        "category_id": expense.category_id,
        "created_at": _format_timestamp(expense.created_at),
        "updated_at": _format_timestamp(expense.updated_at),
    }
    if expense.note:
        data["note"] = expense.note
    if expense.user_id is not None:
        data["user_id"] = expense.user_id
    return data


def write_document_atomic(path: Path, records: Iterable[dict[str, object]]) -> None:
    """Replace ``path`` in one step so readers see the old or the new array."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(list(records), handle, indent=2, ensure_ascii=False)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except OSError as exc:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        logger.error(f"storage_failure: action=write {path.name} error={exc}")
        raise StorageFailure(f"Failed to write {path.name}") from exc


def export_legacy_documents(session: Session, directory: Path) -> dict[str, int]:
    categories = session.scalars(select(Category).order_by(Category.row_id)).all()
    expenses = session.scalars(select(Expense).order_by(Expense.row_id)).all()
    write_document_atomic(
        directory / CATEGORIES_DOCUMENT, (_legacy_category(c) for c in categories)
    )
    write_document_atomic(
        directory / EXPENSES_DOCUMENT, (_legacy_expense(e) for e in expenses)
    )
    logger.info(
        f"legacy_export: categories={len(categories)} expenses={len(expenses)}"
    )
    return {"categories": len(categories), "expenses": len(expenses)}
