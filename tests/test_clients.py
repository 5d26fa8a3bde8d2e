from datetime import date

import pytest
from sqlalchemy import create_engine, func, select, text
from sqlalchemy.orm import sessionmaker

from database import Base
from models import Client, ServiceRecord
from schemas import ClientIn, ServiceIn
from services import ClientDeletionError, ClientService, MetricsService, ServiceRecordService


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def add_service(session, client_id: int, amount_cents: int, day: date, user_id: int = 1):
    return ServiceRecordService(session, user_id).create(
        ServiceIn(
            client_id=client_id,
            description="Mantenimiento",
            amount_cents=amount_cents,
            service_date=day,
            location="Chía",
        )
    )


def count(session, model, **filters) -> int:
    stmt = select(func.count()).select_from(model)
    for name, value in filters.items():
        stmt = stmt.where(getattr(model, name) == value)
    return session.execute(stmt).scalar_one()


def test_service_with_new_client_creates_both() -> None:
    session = make_session()

    record = ServiceRecordService(session, 1).create(
        ServiceIn(
            new_client=ClientIn(name="  Marta Ruiz ", phone="311 555 0101"),
            description="Poda de jardín",
            amount_cents=8_000_000,
            service_date=date(2024, 4, 12),
            location="Cajicá",
        )
    )

    client = ClientService(session, 1).get(record.client_id)
    assert client.name == "Marta Ruiz"
    assert client.phone == "311 555 0101"
    assert record.is_paid is False
    assert record.notes is None


def test_service_needs_exactly_one_client_source() -> None:
    with pytest.raises(ValueError):
        ServiceIn(
            description="x",
            amount_cents=1,
            service_date=date(2024, 1, 1),
            location="y",
        )
    with pytest.raises(ValueError):
        ServiceIn(
            client_id=1,
            new_client=ClientIn(name="Otro"),
            description="x",
            amount_cents=1,
            service_date=date(2024, 1, 1),
            location="y",
        )


def test_negative_amounts_are_rejected() -> None:
    with pytest.raises(ValueError):
        ServiceIn(
            client_id=1,
            description="x",
            amount_cents=-1,
            service_date=date(2024, 1, 1),
            location="y",
        )


def test_delete_client_removes_its_services_and_nothing_else() -> None:
    session = make_session()
    clients = ClientService(session, 1)
    keep_id = clients.create(ClientIn(name="Conservar"))
    drop_id = clients.create(ClientIn(name="Eliminar"))
    for day in (date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1)):
        add_service(session, drop_id, 1_000, day)
    add_service(session, keep_id, 2_000, date(2024, 1, 5))

    removed = clients.delete(drop_id)

    assert removed == 3
    assert count(session, ServiceRecord, client_id=drop_id) == 0
    assert count(session, ServiceRecord) == 1
    assert count(session, Client) == 1
    assert session.get(Client, keep_id) is not None


def test_failed_service_removal_keeps_the_client() -> None:
    session = make_session()
    clients = ClientService(session, 1)
    client_id = clients.create(ClientIn(name="Bloqueado"))
    add_service(session, client_id, 1_000, date(2024, 1, 1))
    add_service(session, client_id, 1_500, date(2024, 1, 2))
    session.execute(
        text(
            "CREATE TRIGGER block_service_delete BEFORE DELETE ON services "
            "BEGIN SELECT RAISE(ABORT, 'services are locked'); END;"
        )
    )
    session.commit()

    with pytest.raises(ClientDeletionError):
        clients.delete(client_id)

    assert count(session, Client, id=client_id) == 1
    assert count(session, ServiceRecord, client_id=client_id) == 2


def test_clients_are_scoped_to_their_user() -> None:
    session = make_session()
    mine = ClientService(session, 1).create(ClientIn(name="Mío"))
    theirs = ClientService(session, 2).create(ClientIn(name="Ajeno"))
    add_service(session, theirs, 500, date(2024, 1, 1), user_id=2)

    assert [c.name for c in ClientService(session, 1).list_all()] == ["Mío"]
    with pytest.raises(ValueError):
        ClientService(session, 1).get(theirs)
    with pytest.raises(ValueError):
        ClientService(session, 1).delete(theirs)
    with pytest.raises(ValueError):
        add_service(session, theirs, 500, date(2024, 1, 1), user_id=1)
    assert MetricsService(session, 1).client_rollup().total_services == 0
    assert count(session, ServiceRecord, client_id=theirs) == 1
    assert mine != theirs


def test_client_rollup_reflects_a_rename_on_next_fetch() -> None:
    session = make_session()
    clients = ClientService(session, 1)
    client_id = clients.create(ClientIn(name="Nombre Viejo", phone="123"))
    add_service(session, client_id, 3_000, date(2024, 1, 1))
    add_service(session, client_id, 4_500, date(2024, 1, 8))

    before = MetricsService(session, 1).client_rollup()
    clients.get(client_id).name = "Nombre Nuevo"
    session.commit()
    after = MetricsService(session, 1).client_rollup()

    assert before.get(client_id).name == "Nombre Viejo"
    assert after.get(client_id).name == "Nombre Nuevo"
    assert after.get(client_id).phone == "123"
    assert after.total_services == 2
    assert after.total_amount_cents == 7_500
