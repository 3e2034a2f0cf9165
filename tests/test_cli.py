import json

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import main
from database import Base
from legacy_json_import import CATEGORIES_DOCUMENT, EXPENSES_DOCUMENT


def _patch_database(monkeypatch, tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'cli.db'}")
    Base.metadata.create_all(engine)
    monkeypatch.setattr(main, "SessionLocal", sessionmaker(bind=engine))
    monkeypatch.setattr(main, "init_db", lambda: None)


def test_import_then_export_legacy_documents(monkeypatch, tmp_path, capsys):
    _patch_database(monkeypatch, tmp_path)
    source = tmp_path / "legacy"
    source.mkdir()
    (source / CATEGORIES_DOCUMENT).write_text(
        json.dumps([{"id": 1, "name": "Food", "is_default": 1}]), encoding="utf-8"
    )
    (source / EXPENSES_DOCUMENT).write_text(
        json.dumps([{"id": 1, "amount": 4.2, "date": "2024-01-01", "category_id": 1}]),
        encoding="utf-8",
    )

    assert main._run_cli(["preview-legacy", str(source)]) == 0
    preview = json.loads(capsys.readouterr().out)
    assert preview["ownerless_expenses"] == 1
    assert preview["min_expense_date"] == "2024-01-01"

    assert main._run_cli(["import-legacy", str(source)]) == 0
    assert json.loads(capsys.readouterr().out)["inserted_expenses"] == 1

    target = tmp_path / "export"
    assert main._run_cli(["export-legacy", str(target)]) == 0
    assert json.loads(capsys.readouterr().out) == {"categories": 1, "expenses": 1}
    exported = json.loads((target / EXPENSES_DOCUMENT).read_text(encoding="utf-8"))
    assert exported[0]["amount"] == 4.2


def test_import_of_missing_directory_fails(monkeypatch, tmp_path):
    _patch_database(monkeypatch, tmp_path)
    assert main._run_cli(["import-legacy", str(tmp_path / "nope")]) == 1
