from __future__ import annotations

import sys
from datetime import datetime
from itertools import count
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from mortuorio import create_app
from mortuorio.core.clock import FixedClock
from mortuorio.core.config import Config
from mortuorio.core.extensions import db
from mortuorio.core.identity import Actor
from mortuorio.core.models import Bandeja, Rol, User, seed_demo_data
from mortuorio.core.storage import StoredDocument
from mortuorio.mortuary import services

START = datetime(2026, 3, 10, 8, 0)

DEMO_LOGINS = {
    Rol.ADMIN: ("admin@sgm.local", "admin123"),
    Rol.ENFERMERIA: ("enfermeria@sgm.local", "enfermeria123"),
    Rol.MEDICO: ("medico@sgm.local", "medico123"),
    Rol.AMBULANCIA: ("ambulancia@sgm.local", "ambulancia123"),
    Rol.VIGILANTE: ("vigilante@sgm.local", "vigilante123"),
    Rol.SUPERVISOR_VIGILANCIA: ("supervisor@sgm.local", "supervisor123"),
    Rol.ADMISION: ("admision@sgm.local", "admision123"),
    Rol.JEFE_GUARDIA: ("jefeguardia@sgm.local", "jefeguardia123"),
    Rol.CAJA: ("caja@sgm.local", "caja123"),
    Rol.SERVICIO_SOCIAL: ("social@sgm.local", "social123"),
    Rol.BANCO_SANGRE: ("banco@sgm.local", "banco123"),
}


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SECRET_KEY = "test-secret"
    LOG_LEVEL = "WARNING"


@pytest.fixture
def clock():
    return FixedClock(START)


@pytest.fixture
def app(clock, tmp_path):
    app = create_app(TestConfig, clock=clock)
    app.config["DOCUMENT_STORAGE_DIR"] = str(tmp_path / "documentos")
    with app.app_context():
        db.create_all()
        seed_demo_data(db.session)
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login_as(client):
    def _login(role: Rol):
        email, password = DEMO_LOGINS[role]
        return client.post("/auth/login", json={"email": email, "password": password})

    return _login


@pytest.fixture
def actor(app):
    def _actor(role: Rol) -> Actor:
        user = User.query.filter_by(role=role).first()
        return Actor.from_user(user)

    return _actor


@pytest.fixture
def tray(app):
    def _tray(codigo: str = "B-01") -> Bandeja:
        return Bandeja.query.filter_by(codigo=codigo).first()

    return _tray


@pytest.fixture
def stored_doc():
    def _doc(name: str = "documento.pdf") -> StoredDocument:
        return StoredDocument(reference=f"expedientes/1/{name}", filename=name, size=1024)

    return _doc


_hc_numbers = count(100001)


def case_payload(**overrides) -> dict[str, str]:
    number = next(_hc_numbers)
    payload = {
        "hc": f"HC{number}",
        "tipo": "INTERNO",
        "tipo_documento": "DNI",
        "numero_documento": f"4{number:07d}",
        "apellido_paterno": "Quispe",
        "apellido_materno": "Huaman",
        "nombres": "Rosa Elena",
        "fecha_nacimiento": "1950-04-02",
        "servicio_fallecimiento": "Medicina Interna",
        "numero_cama": "12-B",
        "fecha_hora_fallecimiento": "2026-03-10T06:30:00",
        "medico_certifica_nombre": "Dr. Carlos Rojas",
        "medico_cmp": "45821",
        "diagnostico_final": "Insuficiencia respiratoria aguda",
        "numero_certificado_defuncion": f"CD-{number}",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def new_case(actor):
    def _new_case(**overrides):
        return services.create_expediente(case_payload(**overrides), actor(Rol.ENFERMERIA))

    return _new_case


@pytest.fixture
def verified_case(new_case, actor):
    """Case checked in at the mortuary door, waiting for a tray."""

    def _verified(**overrides):
        expediente = new_case(**overrides)
        services.generate_wristband(expediente.id, actor(Rol.ENFERMERIA))
        services.accept_custody(expediente.id, actor(Rol.AMBULANCIA))
        services.verify_storage_entry(
            expediente.id,
            {
                "codigo_brazalete": expediente.codigo,
                "hc": expediente.hc,
                "numero_documento": expediente.numero_documento,
            },
            actor(Rol.VIGILANTE),
        )
        return expediente

    return _verified


@pytest.fixture
def stored_case(verified_case, actor, tray):
    def _stored(codigo: str = "B-01", **overrides):
        expediente = verified_case(**overrides)
        services.advance_to_storage(expediente.id, tray(codigo).id, actor(Rol.VIGILANTE))
        return expediente

    return _stored


@pytest.fixture
def clear_debts(actor):
    def _clear(expediente_id: int) -> None:
        services.mark_no_debt(expediente_id, actor(Rol.CAJA))
        services.mark_blood_no_debt(expediente_id, actor(Rol.BANCO_SANGRE))

    return _clear


@pytest.fixture
def signed_family_acta(actor, stored_doc):
    def _signed(expediente_id: int):
        acta = services.create_retrieval_authorization(
            expediente_id,
            {
                "tipo_retiro": "FAMILIAR",
                "familiar_nombre": "Juan Quispe Huaman",
                "familiar_numero_documento": "40112233",
                "parentesco": "Hijo",
                "familiar_telefono": "987654321",
            },
            actor(Rol.ADMISION),
        )
        return services.mark_fully_signed(acta.id, stored_doc("acta-firmada.pdf"), actor(Rol.ADMISION))

    return _signed
