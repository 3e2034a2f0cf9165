import argparse
import json
import logging
from dataclasses import asdict
from datetime import date
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal, init_db
from errors import (
    AuthenticationError,
    CategoryInUseError,
    ConflictError,
    LedgerError,
    NotFoundError,
    ProtectedCategoryError,
    StorageFailure,
    ValidationError,
)
from legacy_json_import import LegacyJSONImportService, export_legacy_documents
from migration import OwnerlessMigrationService, bootstrap_legacy_owner
from models import User
from periods import resolve_period
from schemas import CategoryIn, CategoryUpdate, CredentialsIn, ExpenseIn, ExpenseUpdate
from services import (
    CategoryService,
    ExpenseService,
    ReportService,
    SessionService,
    UserService,
)
from session_tokens import SESSION_COOKIE_NAME, sign_session_token, unsign_session_token


logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Expense Ledger")

ERROR_STATUS: tuple[tuple[type[LedgerError], int], ...] = (
    (ValidationError, 400),
    (ProtectedCategoryError, 400),
    (CategoryInUseError, 400),
    (AuthenticationError, 401),
    (NotFoundError, 404),
    (ConflictError, 409),
    (StorageFailure, 500),
)


def http_error(exc: LedgerError) -> HTTPException:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@app.on_event("startup")
def startup_event():
    init_db()
    logger.info("startup: schema ready")


def _session_token(request: Request) -> Optional[str]:
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie:
        return None
    return unsign_session_token(cookie)


def current_user(request: Request, db: Session = Depends(get_db)) -> User:
    token = _session_token(request)
    user_id = SessionService(db).resolve(token) if token else None
    user = UserService(db).get(user_id) if user_id is not None else None
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


def current_user_id(user: User = Depends(current_user)) -> int:
    return user.id


def _user_payload(user: User) -> dict[str, object]:
    return {"id": user.id, "username": user.username}


def _signed_in(db: Session, user: User, status_code: int = 200) -> JSONResponse:
    token = SessionService(db).create(user.id)
    settings = get_settings()
    response = JSONResponse(
        {"success": True, "user": _user_payload(user)}, status_code=status_code
    )
    response.set_cookie(
        SESSION_COOKIE_NAME,
        sign_session_token(token),
        max_age=settings.session_max_age_secs,
        httponly=True,
        samesite="lax",
        path="/",
    )
    return response


@app.post("/api/auth/signup")
def signup(data: CredentialsIn, db: Session = Depends(get_db)):
    try:
        user = UserService(db).create(data.username, data.password)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return _signed_in(db, user, status_code=201)


@app.post("/api/auth/login")
def login(data: CredentialsIn, db: Session = Depends(get_db)):
    users = UserService(db)
    user = users.verify(data.username, data.password)
    settings = get_settings()
    if (
        user is None
        and settings.legacy_owner_configured
        and data.username.lower() == settings.legacy_owner_username.lower()
        and data.password == settings.legacy_owner_password
        and users.find_by_username(data.username) is None
    ):
        try:
            user, _ = bootstrap_legacy_owner(
                db, settings.legacy_owner_username, settings.legacy_owner_password
            )
        except LedgerError as exc:
            raise http_error(exc) from exc
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid username or password")
    return _signed_in(db, user)


@app.post("/api/auth/logout")
def logout(request: Request, db: Session = Depends(get_db)):
    token = _session_token(request)
    if token:
        try:
            SessionService(db).delete(token)
        except LedgerError as exc:
            raise http_error(exc) from exc
    response = JSONResponse({"success": True})
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    return response


@app.get("/api/auth/me")
def me(user: User = Depends(current_user)):
    return {"user": _user_payload(user)}


@app.post("/api/auth/migrate")
def migrate_legacy_owner(db: Session = Depends(get_db)):
    settings = get_settings()
    if not settings.legacy_owner_configured:
        raise HTTPException(status_code=404, detail="Legacy owner is not configured")
    try:
        user, result = bootstrap_legacy_owner(
            db, settings.legacy_owner_username, settings.legacy_owner_password
        )
    except LedgerError as exc:
        raise http_error(exc) from exc
    return {
        "success": True,
        "message": "User created and data migrated successfully",
        "user": _user_payload(user),
        "migrated": {"categories": result.categories, "expenses": result.expenses},
    }


@app.post("/api/auth/migrate-data")
def migrate_data(data: CredentialsIn, db: Session = Depends(get_db)):
    try:
        user = UserService(db).authenticate(data.username, data.password)
        result = OwnerlessMigrationService(db).migrate_ownerless(user.id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return {
        "success": True,
        "message": "Data migrated successfully",
        "migrated": {"categories": result.categories, "expenses": result.expenses},
    }


@app.get("/api/categories")
def list_categories(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    try:
        categories = CategoryService(db, user_id).list_all()
    except LedgerError as exc:
        raise http_error(exc) from exc
    return [category.as_dict() for category in categories]


@app.post("/api/categories", status_code=201)
def create_category(
    data: CategoryIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        category = CategoryService(db, user_id).create(data)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return category.as_dict()


@app.put("/api/categories/{category_id}")
def update_category(
    category_id: int,
    data: CategoryUpdate,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        category = CategoryService(db, user_id).update(category_id, data)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return category.as_dict()


@app.delete("/api/categories/{category_id}")
def delete_category(
    category_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        CategoryService(db, user_id).delete(category_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return {"success": True}


@app.get("/api/expenses")
def list_expenses(
    start: Optional[date] = Query(default=None, alias="startDate"),
    end: Optional[date] = Query(default=None, alias="endDate"),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        categories = CategoryService(db, user_id).category_map()
        expenses = ExpenseService(db, user_id).list(start, end)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return [
        expense.as_dict(categories.get(expense.category_id)) for expense in expenses
    ]


@app.post("/api/expenses", status_code=201)
def create_expense(
    data: ExpenseIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        expense = ExpenseService(db, user_id).create(data)
        category = CategoryService(db, user_id).get(expense.category_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return expense.as_dict(category)


@app.get("/api/expenses/{expense_id}")
def get_expense(
    expense_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        expense = ExpenseService(db, user_id).get(expense_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return expense.as_dict(CategoryService(db, user_id).find(expense.category_id))


@app.put("/api/expenses/{expense_id}")
def update_expense(
    expense_id: int,
    data: ExpenseUpdate,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        expense = ExpenseService(db, user_id).update(expense_id, data)
        category = CategoryService(db, user_id).get(expense.category_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return expense.as_dict(category)


@app.delete("/api/expenses/{expense_id}")
def delete_expense(
    expense_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        ExpenseService(db, user_id).delete(expense_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return {"success": True}


@app.get("/api/reports")
def report(
    start: Optional[str] = Query(default=None, alias="startDate"),
    end: Optional[str] = Query(default=None, alias="endDate"),
    period: Optional[str] = None,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    if not period and not (start and end):
        raise HTTPException(
            status_code=400, detail="Start date and end date are required"
        )
    try:
        resolved = resolve_period(period, start, end)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        result = ReportService(db, user_id).generate(resolved.start, resolved.end)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return result.as_dict()


def _run_cli(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="expense-ledger")
    commands = parser.add_subparsers(dest="command")
    serve = commands.add_parser("serve", help="run the HTTP API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)
    preview = commands.add_parser("preview-legacy", help="inspect legacy JSON documents")
    preview.add_argument("directory", type=Path)
    load = commands.add_parser("import-legacy", help="import legacy JSON documents")
    load.add_argument("directory", type=Path)
    dump = commands.add_parser("export-legacy", help="write legacy JSON documents")
    dump.add_argument("directory", type=Path)
    args = parser.parse_args(argv)

    if args.command in (None, "serve"):
        import uvicorn

        uvicorn.run(
            "main:app",
            host=getattr(args, "host", "0.0.0.0"),
            port=getattr(args, "port", 8000),
            reload=False,
        )
        return 0

    init_db()
    with SessionLocal() as db:
        try:
            if args.command == "preview-legacy":
                result = asdict(LegacyJSONImportService(db).preview(args.directory))
            elif args.command == "import-legacy":
                result = LegacyJSONImportService(db).commit(args.directory)
            else:
                result = export_legacy_documents(db, args.directory)
        except LedgerError as exc:
            logger.error(f"cli_failed: command={args.command} error={exc}")
            return 1
    print(json.dumps(result, indent=2, default=str))
    return 0


def main():
    raise SystemExit(_run_cli())


if __name__ == "__main__":
    main()
