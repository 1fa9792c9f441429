import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates

from config import Settings, get_settings
from filters import basic_filters
from formatting import (
    format_currency,
    format_transaction_date,
    is_over_a_month_old,
    signed_currency,
)
from grouping import display_category
from ledger_view import (
    EVENT_CLOSED,
    EVENT_SEARCH_SETTLED,
    LedgerSource,
    LedgerView,
    ViewClosedError,
)
from navigation import ALL_CATEGORIES, category_link, recipient_link
from periods import PERIOD_LABELS
from scheduler import SchedulerManager
from schemas import TransactionRecord
from services import LedgerService, LedgerUnavailableError, ViewRegistry
from tokens import (
    generate_csrf_token,
    issue_view_token,
    read_view_token,
    validate_csrf_token,
)

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent

templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))
templates.env.filters["currency"] = format_currency
templates.env.filters["signed_currency"] = signed_currency
templates.env.filters["txn_date"] = format_transaction_date
templates.env.filters["display_category"] = display_category
templates.env.globals["is_over_a_month_old"] = is_over_a_month_old
templates.env.globals["category_link"] = category_link
templates.env.globals["recipient_link"] = recipient_link
templates.env.globals["PERIOD_LABELS"] = PERIOD_LABELS
templates.env.globals["ALL_CATEGORIES"] = ALL_CATEGORIES

router = APIRouter()


def render(
    request: Request,
    template: str,
    context: dict[str, object],
    *,
    status_code: int = 200,
    headers: Optional[dict[str, str]] = None,
) -> HTMLResponse:
    settings: Settings = request.app.state.settings
    ctx: dict[str, object] = {
        "csrf_token": generate_csrf_token(secret=settings.csrf_secret)
    }
    ctx.update(context)
    return templates.TemplateResponse(
        request, template, ctx, status_code=status_code, headers=headers
    )


def registry_from(request: Request) -> ViewRegistry:
    return request.app.state.registry


def view_from_token(request: Request, token: str) -> LedgerView:
    settings: Settings = request.app.state.settings
    view_id = read_view_token(token, secret=settings.csrf_secret)
    view = registry_from(request).get(view_id) if view_id else None
    if view is None:
        raise HTTPException(status_code=404, detail="Ledger view expired")
    return view


def check_csrf(request: Request, token: str) -> None:
    settings: Settings = request.app.state.settings
    if not validate_csrf_token(token, secret=settings.csrf_secret):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")


async def checked_form(request: Request):
    form = await request.form()
    token = request.headers.get("X-CSRF-Token") or form.get("csrf_token", "")
    check_csrf(request, str(token))
    return form


def render_results(
    request: Request, token: str, view: LedgerView, before_location: str
) -> HTMLResponse:
    try:
        snapshot = view.snapshot()
    except ViewClosedError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    headers: dict[str, str] = {}
    if view.navigation.location != before_location:
        # htmx swaps the address without adding a history entry.
        headers["HX-Replace-Url"] = view.navigation.location
    return render(
        request,
        "components/ledger_results.html",
        {"view": snapshot, "token": token, "basic_filters": basic_filters()},
        headers=headers,
    )


def record_payload(record: TransactionRecord) -> dict[str, object]:
    return {
        "id": record.id,
        "date": record.date,
        "description": record.description,
        "amount": str(record.amount) if record.amount is not None else None,
        "category": record.category,
        "avatar": record.avatar_ref,
        "recurring": record.recurring,
        "is_paid": record.is_paid,
        "is_overdue": record.is_overdue,
        "due_day": record.due_day,
    }


@router.get("/")
def index():
    return RedirectResponse(url="/transactions", status_code=303)


@router.get("/transactions", response_class=HTMLResponse)
async def transactions_page(request: Request):
    registry = registry_from(request)
    try:
        records = await run_in_threadpool(registry.source.load)
    except LedgerUnavailableError:
        return render(request, "unavailable.html", {}, status_code=503)
    view_id, view = registry.open(request.query_params, records=records)
    settings: Settings = request.app.state.settings
    token = issue_view_token(view_id, secret=settings.csrf_secret)
    return render(
        request,
        "transactions.html",
        {
            "view": view.snapshot(),
            "token": token,
            "basic_filters": basic_filters(),
        },
    )


@router.post("/transactions/views/{token}/search", response_class=HTMLResponse)
async def view_search(token: str, request: Request):
    form = await checked_form(request)
    view = view_from_token(request, token)
    before = view.navigation.location
    settings: Settings = request.app.state.settings

    settled = asyncio.get_running_loop().create_future()

    def _on_event(event: str) -> None:
        if event in (EVENT_SEARCH_SETTLED, EVENT_CLOSED) and not settled.done():
            settled.set_result(True)

    unsubscribe = view.subscribe(_on_event)
    try:
        view.set_search_term(str(form.get("search", "")))
        if view.search_pending:
            try:
                await asyncio.wait_for(
                    settled, timeout=settings.search_debounce_secs * 10 + 1
                )
            except asyncio.TimeoutError:
                return Response(status_code=204)
    finally:
        unsubscribe()
    return render_results(request, token, view, before)


@router.post("/transactions/views/{token}/clear-search", response_class=HTMLResponse)
async def view_clear_search(token: str, request: Request):
    await checked_form(request)
    view = view_from_token(request, token)
    before = view.navigation.location
    view.clear_search()
    return render_results(request, token, view, before)


@router.post("/transactions/views/{token}/category", response_class=HTMLResponse)
async def view_category(token: str, request: Request):
    form = await checked_form(request)
    view = view_from_token(request, token)
    before = view.navigation.location
    view.set_category(str(form.get("category", ALL_CATEGORIES)))
    return render_results(request, token, view, before)


@router.post("/transactions/views/{token}/sort", response_class=HTMLResponse)
async def view_sort(token: str, request: Request):
    form = await checked_form(request)
    view = view_from_token(request, token)
    before = view.navigation.location
    try:
        view.set_sort_key(str(form.get("sort", "")))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return render_results(request, token, view, before)


@router.post("/transactions/views/{token}/group", response_class=HTMLResponse)
async def view_group(token: str, request: Request):
    form = await checked_form(request)
    view = view_from_token(request, token)
    before = view.navigation.location
    group = str(form.get("group", "")) or None
    try:
        view.set_group_key(group)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return render_results(request, token, view, before)


@router.post("/transactions/views/{token}/period", response_class=HTMLResponse)
async def view_period(token: str, request: Request):
    form = await checked_form(request)
    view = view_from_token(request, token)
    before = view.navigation.location
    try:
        view.set_period(
            form.get("period") or None,
            form.get("start") or None,
            form.get("end") or None,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return render_results(request, token, view, before)


@router.post("/transactions/views/{token}/more", response_class=HTMLResponse)
async def view_load_more(token: str, request: Request):
    await checked_form(request)
    view = view_from_token(request, token)
    before = view.navigation.location
    view.load_more()
    return render_results(request, token, view, before)


@router.post("/transactions/views/{token}/filters", response_class=HTMLResponse)
async def view_add_filter(token: str, request: Request):
    form = await checked_form(request)
    view = view_from_token(request, token)
    before = view.navigation.location
    strategy = basic_filters().get(str(form.get("name", "")))
    if strategy is None:
        raise HTTPException(status_code=400, detail="Unknown filter")
    view.add_filter(strategy)
    return render_results(request, token, view, before)


@router.post(
    "/transactions/views/{token}/filters/clear", response_class=HTMLResponse
)
async def view_clear_filters(token: str, request: Request):
    await checked_form(request)
    view = view_from_token(request, token)
    before = view.navigation.location
    view.clear_filters()
    return render_results(request, token, view, before)


@router.post(
    "/transactions/views/{token}/filters/{name:path}/delete",
    response_class=HTMLResponse,
)
async def view_remove_filter(token: str, name: str, request: Request):
    await checked_form(request)
    view = view_from_token(request, token)
    before = view.navigation.location
    if not view.remove_filter(name):
        raise HTTPException(status_code=404, detail="Filter not active")
    return render_results(request, token, view, before)


@router.post("/transactions/views/{token}/refresh", response_class=HTMLResponse)
async def view_refresh(token: str, request: Request):
    await checked_form(request)
    view = view_from_token(request, token)
    before = view.navigation.location
    source = registry_from(request).source
    await run_in_threadpool(source.refresh)
    try:
        records = await run_in_threadpool(source.load)
    except LedgerUnavailableError:
        return render(
            request, "components/unavailable.html", {}, status_code=503
        )
    view.replace_ledger(records)
    return render_results(request, token, view, before)


@router.delete("/transactions/views/{token}")
async def view_close(token: str, request: Request):
    check_csrf(request, request.headers.get("X-CSRF-Token", ""))
    settings: Settings = request.app.state.settings
    view_id = read_view_token(token, secret=settings.csrf_secret)
    if not view_id or not registry_from(request).close(view_id):
        raise HTTPException(status_code=404, detail="Ledger view expired")
    return Response(status_code=204)


@router.get("/api/transactions")
async def api_transactions(request: Request):
    registry = registry_from(request)
    try:
        records = await run_in_threadpool(registry.source.load)
    except LedgerUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    view_id, view = registry.open(request.query_params, records=records)
    try:
        pages = int(request.query_params.get("pages", "1"))
        for _ in range(max(pages, 1) - 1):
            if not view.load_more():
                break
        snapshot = view.snapshot()
    finally:
        registry.close(view_id)

    grouped = None
    if snapshot.grouped_records is not None:
        grouped = {
            label: [record.id for record in group]
            for label, group in snapshot.grouped_records.items()
        }
    return {
        "items": [record_payload(record) for record in snapshot.visible_records],
        "total": snapshot.total_filtered_count,
        "has_more": snapshot.has_more,
        "groups": grouped,
        "categories": snapshot.available_categories,
        "sort_options": [option.model_dump() for option in snapshot.available_sort_options],
        "group_options": [
            option.model_dump() for option in snapshot.available_group_options
        ],
        "query": snapshot.query_string,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    manager: SchedulerManager = app.state.scheduler_manager
    manager.start(app.state.registry)
    try:
        yield
    finally:
        manager.stop()


def create_app(
    settings: Optional[Settings] = None, source: Optional[LedgerSource] = None
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)
    if source is None:
        source = LedgerService(
            fallback_path=settings.fallback_data_path,
            ttl_secs=settings.cache_ttl_secs,
        )
    manager = SchedulerManager(settings)
    registry = ViewRegistry(
        source,
        manager.timers,
        page_size=settings.page_size,
        debounce_delay=settings.search_debounce_secs,
        max_views=settings.max_views,
    )

    app = FastAPI(title="Ledger", lifespan=lifespan)
    app.state.settings = settings
    app.state.registry = registry
    app.state.scheduler_manager = manager
    app.mount("/static", StaticFiles(directory=str(BASE_DIR / "static")), name="static")
    app.include_router(router)
    return app


app = create_app()


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
