import json
from datetime import date, datetime

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from errors import StorageFailure, ValidationError
from legacy_json_import import (
    CATEGORIES_DOCUMENT,
    EXPENSES_DOCUMENT,
    LegacyJSONImportService,
    export_legacy_documents,
    write_document_atomic,
)
from models import Category, Expense
from schemas import CategoryIn
from services import CategoryService, ExpenseService


CATEGORIES = [
    {
        "id": 1,
        "name": "Food",
        "color": "#FFD6CC",
        "icon": "🍔",
        "is_default": 1,
        "created_at": "2023-05-01T10:00:00.000Z",
    },
    {
        "id": 5,
        "user_id": 3,
        "name": "Books",
        "color": "#B3E5FC",
        "icon": "📚",
        "is_default": 0,
        "created_at": "2023-05-02T08:30:00.250Z",
    },
]

EXPENSES = [
    {
        "id": 1,
        "amount": 12.5,
        "date": "2023-05-03",
        "category_id": 1,
        "note": "Lunch",
        "created_at": "2023-05-03T12:00:00.000Z",
        "updated_at": "2023-05-03T12:00:00.000Z",
    },
    {
        "id": 4,
        "user_id": 3,
        "amount": 30,
        "date": "2023-05-10",
        "category_id": 5,
        "created_at": "2023-05-10T09:00:00.000Z",
    },
]


def _engine():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return engine


def _write_legacy(directory, categories=CATEGORIES, expenses=EXPENSES):
    (directory / CATEGORIES_DOCUMENT).write_text(json.dumps(categories), encoding="utf-8")
    (directory / EXPENSES_DOCUMENT).write_text(json.dumps(expenses), encoding="utf-8")


def test_preview_counts_rows_and_ownerless_records(tmp_path):
    _write_legacy(tmp_path)
    engine = _engine()
    with Session(engine) as session:
        preview = LegacyJSONImportService(session).preview(tmp_path)
    assert preview.categories_count == 2
    assert preview.expenses_count == 2
    assert preview.ownerless_categories == 1
    assert preview.ownerless_expenses == 1
    assert preview.already_present == 0
    assert preview.min_expense_date == date(2023, 5, 3)
    assert preview.max_expense_date == date(2023, 5, 10)
    assert preview.warnings == []


def test_commit_imports_rows_and_skips_existing(tmp_path):
    _write_legacy(tmp_path)
    engine = _engine()
    with Session(engine) as session:
        service = LegacyJSONImportService(session)
        result = service.commit(tmp_path)
        assert result == {
            "inserted_categories": 2,
            "inserted_expenses": 2,
            "skipped_existing": 0,
        }

        ownerless = session.scalars(
            select(Expense).where(Expense.user_id.is_(None))
        ).one()
        assert ownerless.amount_cents == 1250
        assert ownerless.created_at == datetime(2023, 5, 3, 12, 0, 0)

        books = CategoryService(session, user_id=3).get(5)
        assert books.is_default is False
        assert books.created_at == datetime(2023, 5, 2, 8, 30, 0, 250000)
        expense = ExpenseService(session, user_id=3).get(4)
        assert expense.updated_at == expense.created_at

        # Ids allocated after the import continue past the imported ones.
        assert CategoryService(session, user_id=3).create(CategoryIn(name="Games")).id == 6

        again = service.commit(tmp_path)
        assert again["skipped_existing"] == 4
        assert again["inserted_categories"] == 0
        assert service.preview(tmp_path).already_present == 4


def test_invalid_rows_are_reported_and_block_commit(tmp_path):
    bad_expenses = EXPENSES + [{"id": 9, "amount": -2, "date": "2023-05-11", "category_id": 1}]
    _write_legacy(tmp_path, expenses=bad_expenses)
    engine = _engine()
    with Session(engine) as session:
        service = LegacyJSONImportService(session)
        preview = service.preview(tmp_path)
        assert preview.expenses_count == 2
        assert len(preview.warnings) == 1
        assert preview.warnings[0].startswith("expenses[2]")

        with pytest.raises(ValidationError, match="expenses\\[2\\]"):
            service.commit(tmp_path)
        assert session.scalars(select(Category)).all() == []


def test_non_array_document_is_rejected(tmp_path):
    (tmp_path / CATEGORIES_DOCUMENT).write_text('{"id": 1}', encoding="utf-8")
    engine = _engine()
    with Session(engine) as session:
        with pytest.raises(ValidationError, match="JSON array"):
            LegacyJSONImportService(session).preview(tmp_path)
        with pytest.raises(ValidationError, match="not found"):
            LegacyJSONImportService(session).preview(tmp_path / "missing")


def test_export_round_trips_through_import(tmp_path):
    source = tmp_path / "source"
    source.mkdir()
    _write_legacy(source)
    exported = tmp_path / "exported"

    engine = _engine()
    with Session(engine) as session:
        LegacyJSONImportService(session).commit(source)
        counts = export_legacy_documents(session, exported)
    assert counts == {"categories": 2, "expenses": 2}
    assert sorted(p.name for p in exported.iterdir()) == [
        CATEGORIES_DOCUMENT,
        EXPENSES_DOCUMENT,
    ]

    categories = json.loads((exported / CATEGORIES_DOCUMENT).read_text(encoding="utf-8"))
    assert categories[0] == CATEGORIES[0]
    assert categories[1]["user_id"] == 3
    assert categories[1]["created_at"] == "2023-05-02T08:30:00.250Z"

    expenses = json.loads((exported / EXPENSES_DOCUMENT).read_text(encoding="utf-8"))
    assert "user_id" not in expenses[0]
    assert expenses[0]["amount"] == 12.5
    assert expenses[1]["updated_at"] == "2023-05-10T09:00:00.000Z"

    other = _engine()
    with Session(other) as session:
        result = LegacyJSONImportService(session).commit(exported)
        assert result["inserted_categories"] == 2
        assert result["inserted_expenses"] == 2
        assert ExpenseService(session, user_id=3).get(4).amount_cents == 3000


def test_atomic_write_replaces_document(tmp_path):
    target = tmp_path / CATEGORIES_DOCUMENT
    write_document_atomic(target, [{"id": 1}])
    write_document_atomic(target, [{"id": 2}])
    assert json.loads(target.read_text(encoding="utf-8")) == [{"id": 2}]
    assert [p.name for p in tmp_path.iterdir()] == [CATEGORIES_DOCUMENT]


def test_atomic_write_failure_keeps_previous_document(tmp_path, monkeypatch):
    target = tmp_path / EXPENSES_DOCUMENT
    write_document_atomic(target, [{"id": 1}])

    def broken_replace(src, dst):
        raise OSError("read-only file system")

    monkeypatch.setattr("legacy_json_import.os.replace", broken_replace)
    with pytest.raises(StorageFailure):
        write_document_atomic(target, [{"id": 2}])
    assert json.loads(target.read_text(encoding="utf-8")) == [{"id": 1}]
    assert [p.name for p in tmp_path.iterdir()] == [EXPENSES_DOCUMENT]
