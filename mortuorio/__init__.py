from __future__ import annotations

import logging

import click
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from mortuorio.core.auth import auth_bp
from mortuorio.core.clock import SystemClock
from mortuorio.core.config import Config
from mortuorio.core.errors import MortuaryError
from mortuorio.core.extensions import db, login_manager, migrate
from mortuorio.core.identity import load_actor_context
from mortuorio.core.models import User, seed_demo_data
from mortuorio.mortuary import mortuary_bp

logger = logging.getLogger(__name__)


def create_app(config_object: type[Config] | None = None, clock=None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_object or Config)
    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app.extensions["clock"] = clock or SystemClock()

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    app.before_request(load_actor_context)

    app.register_blueprint(auth_bp)
    app.register_blueprint(mortuary_bp)

    register_cli(app)
    register_error_handlers(app)
    return app


def _error_response(code: str, message: str, status: int):
    return jsonify({"ok": False, "error": {"code": code, "message": message}}), status


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(MortuaryError)
    def mortuary_error(exc: MortuaryError):
        db.session.rollback()
        if exc.status_code >= 500:
            logger.error("%s: %s", exc.code, exc.message)
        else:
            logger.info("Operacion rechazada %s: %s", exc.code, exc.message)
        return _error_response(exc.code, exc.message, exc.status_code)

    @app.errorhandler(HTTPException)
    def http_error(exc: HTTPException):
        return _error_response(exc.name.upper().replace(" ", "_"), exc.description or exc.name, exc.code or 500)


@login_manager.unauthorized_handler
def unauthorized():
    return _error_response("NO_AUTENTICADO", "Debe iniciar sesion", 401)


def register_cli(app: Flask) -> None:
    @app.cli.command("init-db")
    def init_db() -> None:
        """Create all tables."""
        db.create_all()
        click.echo("Database initialised.")

    @app.cli.command("seed-demo")
    @click.option("--reset", is_flag=True, help="Delete existing data before seed.")
    def seed_demo(reset: bool) -> None:
        """Seed demo users and trays."""
        if reset:
            db.drop_all()
            db.create_all()
        if not User.query.first():
            seed_demo_data(db.session)
            click.echo("Demo data seeded.")
        else:
            click.echo("Seed skipped: existing users found.")

    @app.cli.command("alerts")
    @click.option("--escalate", is_flag=True, help="Notify supervisors of overdue correction requests.")
    def alerts(escalate: bool) -> None:
        """Print trays, legal files and corrections past their time limits."""
        from mortuorio.mortuary.services import (
            escalate_overdue_corrections,
            legal_files_past_deadline,
            occupancy_alert,
            overdue_correction_requests,
        )

        for bandeja in occupancy_alert():
            click.echo(
                f"[BANDEJA {bandeja.nivel_alerta().value}] {bandeja.codigo} "
                f"expediente={bandeja.expediente.codigo if bandeja.expediente else '-'} "
                f"desde={bandeja.fecha_asignacion:%Y-%m-%d %H:%M}"
            )
        for legal in legal_files_past_deadline():
            pending = ", ".join(sorted(t.value for t in legal.tipos_documentos_pendientes()))
            click.echo(f"[LEGAL] {legal.expediente.codigo} vencido {legal.deadline_48h():%Y-%m-%d %H:%M} faltan={pending}")
        overdue = escalate_overdue_corrections() if escalate else overdue_correction_requests()
        for solicitud in overdue:
            click.echo(
                f"[CORRECCION] {solicitud.expediente.codigo} servicio={solicitud.servicio_origen} "
                f"solicitada={solicitud.fecha_solicitud:%Y-%m-%d %H:%M}"
            )


@login_manager.user_loader
def load_user(user_id: str) -> User | None:
    return db.session.get(User, int(user_id))
