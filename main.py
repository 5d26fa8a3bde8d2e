import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from csrf import generate_csrf_token, validate_csrf_token
from csv_utils import export_movements, parse_amount, parse_date
from database import get_db, init_db
from models import EXPENSE_TYPE_LABELS, ExpenseType
from periods import MAX_YEAR, MIN_YEAR, MonthBucket, resolve_month
from reports import filter_clients
from schemas import ClientIn, ExpenseIn, ServiceIn, ServiceUpdateIn
from services import (
    ClientDeletionError,
    ClientService,
    ExpenseService,
    MetricsService,
    ServiceRecordService,
)


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Servicios Integrales")
app.mount("/static", StaticFiles(directory="static"), name="static")
templates = Jinja2Templates(directory="templates")

MONTH_NAMES = [
    "Enero",
    "Febrero",
    "Marzo",
    "Abril",
    "Mayo",
    "Junio",
    "Julio",
    "Agosto",
    "Septiembre",
    "Octubre",
    "Noviembre",
    "Diciembre",
]
WEEKDAY_NAMES = ["Dom", "Lun", "Mar", "Mié", "Jue", "Vie", "Sáb"]


def format_currency(cents: int, include_cents: bool = False) -> str:
    # 1234567 cents -> "12.345,67"; separators follow the Spanish convention.
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    if include_cents:
        text = f"{cents / 100:,.2f}"
    else:
        text = f"{cents // 100:,}"
    return sign + text.replace(",", "_").replace(".", ",").replace("_", ".")


def month_label(bucket: MonthBucket) -> str:
    return f"{MONTH_NAMES[bucket.month - 1]} {bucket.year}"


templates.env.filters["currency"] = format_currency
templates.env.filters["month_label"] = month_label
templates.env.globals["csrf_token"] = generate_csrf_token
templates.env.globals["weekday_names"] = WEEKDAY_NAMES
templates.env.globals["expense_types"] = EXPENSE_TYPE_LABELS


def get_user_id() -> int:
    """Id of the signed-in user; authentication happens upstream."""
    return get_settings().user_id


@app.on_event("startup")
def startup_event():
    init_db()


def render(request: Request, template: str, context: dict[str, object]) -> HTMLResponse:
    return templates.TemplateResponse(request, template, context)


def month_from_request(request: Request) -> MonthBucket:
    try:
        return resolve_month(
            request.query_params.get("year"), request.query_params.get("month")
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def int_param(request: Request, name: str) -> Optional[int]:
    raw = request.query_params.get(name)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {name}") from exc


def check_csrf(form, user_id: int) -> None:
    if not validate_csrf_token(form.get("csrf_token", ""), user_id):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")


def done(request: Request, route: str, trigger: str, **params) -> Response:
    headers = {"HX-Trigger": trigger}
    if request.headers.get("HX-Request"):
        return Response(status_code=204, headers=headers)
    return RedirectResponse(
        url=request.app.url_path_for(route, **params), status_code=303, headers=headers
    )


def service_payload_from_form(form) -> ServiceIn:
    new_client = None
    client_id = None
    if form.get("client_mode", "new") == "existing":
        client_id = int(form["client_id"])
    else:
        new_client = ClientIn(name=form["client_name"], phone=form.get("phone") or None)
    return ServiceIn(
        client_id=client_id,
        new_client=new_client,
        description=form["description"],
        amount_cents=parse_amount(form["amount"]),
        service_date=parse_date(form["service_date"]),
        location=form["location"],
        is_paid=form.get("is_paid") == "on",
        notes=form.get("notes") or None,
    )


@app.get("/")
def index(request: Request):
    return RedirectResponse(url=request.app.url_path_for("services_page"))


@app.get("/services", response_class=HTMLResponse)
def services_page(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    clients = ClientService(db, user_id).list_all()
    return render(
        request,
        "services.html",
        {
            "clients": clients,
            "user_id": user_id,
            "created": request.query_params.get("created") == "1",
            "today": date.today(),
        },
    )


@app.post("/services")
async def create_service(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    form = await request.form()
    check_csrf(form, user_id)
    try:
        data = service_payload_from_form(form)
    except (KeyError, ValueError, ValidationError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        ServiceRecordService(db, user_id).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Error creating service")
        raise HTTPException(
            status_code=500, detail="Error al registrar el servicio"
        ) from exc
    headers = {"HX-Trigger": "services-changed"}
    if request.headers.get("HX-Request"):
        return Response(status_code=204, headers=headers)
    return RedirectResponse(
        url=request.app.url_path_for("services_page") + "?created=1",
        status_code=303,
        headers=headers,
    )


@app.post("/services/{service_id}/edit")
async def edit_service(
    service_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    form = await request.form()
    check_csrf(form, user_id)
    try:
        data = ServiceUpdateIn(
            notes=form.get("notes", ""), is_paid=form.get("is_paid") == "on"
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        record = ServiceRecordService(db, user_id).update(service_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Error updating service")
        raise HTTPException(
            status_code=500, detail="Error al guardar la nota"
        ) from exc
    return done(
        request, "client_detail", "services-changed", client_id=record.client_id
    )


@app.get("/clients", response_class=HTMLResponse)
def clients_page(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    rollup = MetricsService(db, user_id).client_rollup()
    query = request.query_params.get("q", "")
    return render(
        request,
        "clients.html",
        {
            "rollup": rollup,
            "clients": filter_clients(rollup.clients, query),
            "query": query,
            "user_id": user_id,
        },
    )


@app.get("/clients/{client_id}", response_class=HTMLResponse)
def client_detail(
    client_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    try:
        client = ClientService(db, user_id).get(client_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    summary = MetricsService(db, user_id).client_rollup().get(client_id)
    return render(
        request,
        "client_detail.html",
        {"client": client, "summary": summary, "user_id": user_id},
    )


@app.post("/clients/{client_id}/delete")
async def delete_client(
    client_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    form = await request.form()
    check_csrf(form, user_id)
    try:
        ClientService(db, user_id).delete(client_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ClientDeletionError as exc:
        raise HTTPException(
            status_code=500, detail="Error al eliminar el cliente"
        ) from exc
    return done(request, "clients_page", "clients-changed")


@app.get("/calendar", response_class=HTMLResponse)
def calendar_page(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    month = month_from_request(request)
    cursor = int_param(request, "cursor")
    move = int_param(request, "move") or 0
    jump = request.query_params.get("jump")
    if jump not in (None, "", "first", "next"):
        raise HTTPException(status_code=400, detail="Invalid jump")
    if not MIN_YEAR <= month.shift(move).year <= MAX_YEAR:
        raise HTTPException(
            status_code=400,
            detail=f"Year must be between {MIN_YEAR} and {MAX_YEAR}",
        )
    view = MetricsService(db, user_id).calendar(month, cursor, move=move, jump=jump)
    return render(request, "calendar.html", view)


@app.get("/finances", response_class=HTMLResponse)
def finances_page(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    month = month_from_request(request)
    summary, movements = MetricsService(db, user_id).month_finances(month)
    return render(
        request,
        "finances.html",
        {
            "month": month,
            "previous_month": month.shift(-1),
            "next_month": month.shift(1),
            "summary": summary,
            "movements": movements,
            "min_year": MIN_YEAR,
            "max_year": MAX_YEAR,
            "user_id": user_id,
            "today": date.today(),
        },
    )


@app.get("/finances/export.csv")
def export_finances(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    month = month_from_request(request)
    _, movements = MetricsService(db, user_id).month_finances(month)
    return Response(
        content=export_movements(movements),
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="movimientos-{month.slug}.csv"'
        },
    )


@app.post("/expenses")
async def create_expense(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    form = await request.form()
    check_csrf(form, user_id)
    try:
        data = ExpenseIn(
            type=ExpenseType(form["type"]),
            amount_cents=parse_amount(form["amount"]),
            details=form["details"],
            expense_date=parse_date(form["expense_date"]),
        )
    except (KeyError, ValueError, ValidationError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        ExpenseService(db, user_id).create(data)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Error creating expense")
        raise HTTPException(
            status_code=500, detail="Error al registrar el egreso"
        ) from exc
    bucket = MonthBucket.of(data.expense_date)
    headers = {"HX-Trigger": "expenses-changed"}
    if request.headers.get("HX-Request"):
        return Response(status_code=204, headers=headers)
    return RedirectResponse(
        url=request.app.url_path_for("finances_page")
        + f"?year={bucket.year}&month={bucket.month}",
        status_code=303,
        headers=headers,
    )


@app.post("/expenses/{expense_id}/delete")
async def delete_expense(
    expense_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    form = await request.form()
    check_csrf(form, user_id)
    try:
        ExpenseService(db, user_id).delete(expense_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Error deleting expense")
        raise HTTPException(
            status_code=500, detail="Error al eliminar el egreso"
        ) from exc
    return done(request, "finances_page", "expenses-changed")
