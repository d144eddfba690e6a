from __future__ import annotations

from flask import Response, jsonify, request
from flask_login import login_required

from mortuorio.core import errors, storage
from mortuorio.core.identity import current_actor
from mortuorio.core.models import Rol
from mortuorio.core.permissions import require_role
from mortuorio.core.utils import parse_bool
from mortuorio.mortuary import mortuary_bp, serializers
from mortuorio.mortuary import services


def _payload() -> dict[str, str]:
    data = request.get_json(silent=True)
    if data is None:
        data = {k: v for k, v in request.form.items()}
    return {key: "" if value is None else str(value) for key, value in data.items()}


def _ok(data, status: int = 200):
    return jsonify({"ok": True, "data": data}), status


# --- Expedientes ---------------------------------------------------------------


@mortuary_bp.get("/expedientes")
@login_required
def expediente_list():
    filters = {
        "estado": request.args.get("estado", "").strip(),
        "tipo": request.args.get("tipo", "").strip(),
        "q": request.args.get("q", "").strip(),
    }
    rows = services.list_expedientes(filters)
    return _ok([serializers.expediente_summary(row) for row in rows])


@mortuary_bp.post("/expedientes")
@login_required
def expediente_create():
    expediente = services.create_expediente(_payload(), current_actor())
    return _ok(serializers.expediente_summary(expediente), 201)


@mortuary_bp.get("/expedientes/<int:expediente_id>")
@login_required
def expediente_detail(expediente_id: int):
    expediente = services.get_expediente(expediente_id)
    return _ok(serializers.expediente_detail(expediente, services.permitted_triggers(expediente)))


@mortuary_bp.get("/expedientes/<int:expediente_id>/eventos")
@login_required
def expediente_events(expediente_id: int):
    expediente = services.get_expediente(expediente_id)
    return _ok([serializers.evento(row) for row in expediente.eventos])


@mortuary_bp.delete("/expedientes/<int:expediente_id>")
@login_required
@require_role(Rol.ADMIN)
def expediente_delete(expediente_id: int):
    services.soft_delete_expediente(expediente_id, _payload().get("motivo", ""), current_actor())
    return _ok({"id": expediente_id, "eliminado": True})


@mortuary_bp.post("/expedientes/<int:expediente_id>/brazalete")
@login_required
def expediente_wristband(expediente_id: int):
    expediente = services.generate_wristband(expediente_id, current_actor())
    return _ok(serializers.expediente_summary(expediente))


@mortuary_bp.post("/expedientes/<int:expediente_id>/custodia")
@login_required
def expediente_custody(expediente_id: int):
    expediente = services.accept_custody(expediente_id, current_actor(), _payload().get("observaciones", ""))
    return _ok(serializers.expediente_summary(expediente))


@mortuary_bp.post("/expedientes/<int:expediente_id>/verificacion")
@login_required
def expediente_verify(expediente_id: int):
    expediente, verificacion, solicitud = services.verify_storage_entry(expediente_id, _payload(), current_actor())
    return _ok(
        {
            "expediente": serializers.expediente_summary(expediente),
            "verificacion": serializers.verificacion(verificacion),
            "solicitud_correccion": serializers.solicitud_correccion(solicitud) if solicitud else None,
        }
    )


@mortuary_bp.post("/expedientes/<int:expediente_id>/correcciones")
@login_required
def expediente_request_correction(expediente_id: int):
    solicitud = services.request_correction(expediente_id, _payload(), current_actor())
    return _ok(serializers.solicitud_correccion(solicitud), 201)


@mortuary_bp.post("/correcciones/<int:solicitud_id>/resolver")
@login_required
def correction_resolve(solicitud_id: int):
    solicitud = services.resolve_correction(solicitud_id, _payload(), current_actor())
    return _ok(serializers.solicitud_correccion(solicitud))


@mortuary_bp.get("/correcciones/vencidas")
@login_required
def correction_overdue():
    rows = services.overdue_correction_requests()
    return _ok([serializers.solicitud_correccion(row) for row in rows])


# --- Bandejas ----------------------------------------------------------------


@mortuary_bp.get("/bandejas")
@login_required
def bandeja_list():
    return _ok([serializers.bandeja(row) for row in services.list_bandejas()])


@mortuary_bp.get("/bandejas/estadisticas")
@login_required
def bandeja_stats():
    stats = services.bandeja_statistics()
    return _ok(
        {
            "total": stats.total,
            "disponibles": stats.disponibles,
            "ocupadas": stats.ocupadas,
            "mantenimiento": stats.mantenimiento,
            "fuera_de_servicio": stats.fuera_de_servicio,
            "porcentaje_ocupacion": stats.porcentaje_ocupacion,
        }
    )


@mortuary_bp.get("/bandejas/alertas")
@login_required
def bandeja_alerts():
    hours = request.args.get("horas", type=int)
    return _ok([serializers.bandeja(row) for row in services.occupancy_alert(hours)])


@mortuary_bp.post("/expedientes/<int:expediente_id>/bandeja")
@login_required
def expediente_assign_tray(expediente_id: int):
    payload = _payload()
    bandeja_id = payload.get("bandeja_id", "")
    if not bandeja_id.isdigit():
        raise errors.MissingField("Falta el campo obligatorio: bandeja_id")
    expediente = services.advance_to_storage(expediente_id, int(bandeja_id), current_actor())
    return _ok(serializers.expediente_summary(expediente))


@mortuary_bp.post("/bandejas/<int:bandeja_id>/liberar")
@login_required
def bandeja_release(bandeja_id: int):
    bandeja = services.release_slot(bandeja_id, current_actor(), _payload().get("motivo", ""))
    return _ok(serializers.bandeja(bandeja))


@mortuary_bp.post("/bandejas/<int:bandeja_id>/mantenimiento")
@login_required
def bandeja_maintenance(bandeja_id: int):
    bandeja = services.enter_maintenance(bandeja_id, _payload().get("motivo", ""), current_actor())
    return _ok(serializers.bandeja(bandeja))


@mortuary_bp.post("/bandejas/<int:bandeja_id>/mantenimiento/finalizar")
@login_required
def bandeja_maintenance_end(bandeja_id: int):
    bandeja = services.exit_maintenance(bandeja_id, current_actor())
    return _ok(serializers.bandeja(bandeja))


@mortuary_bp.post("/bandejas/<int:bandeja_id>/fuera-de-servicio")
@login_required
def bandeja_out_of_service(bandeja_id: int):
    bandeja = services.mark_out_of_service(bandeja_id, _payload().get("motivo", ""), current_actor())
    return _ok(serializers.bandeja(bandeja))


# --- Deudas ------------------------------------------------------------------


@mortuary_bp.post("/expedientes/<int:expediente_id>/deuda-economica")
@login_required
def financial_debt_register(expediente_id: int):
    deuda = services.register_financial_debt(expediente_id, _payload().get("monto"), current_actor())
    return _ok(serializers.deuda_economica(deuda), 201)


@mortuary_bp.post("/expedientes/<int:expediente_id>/deuda-economica/pagos")
@login_required
def financial_debt_payment(expediente_id: int):
    payload = _payload()
    deuda = services.record_payment(
        expediente_id, payload.get("numero_boleta", ""), payload.get("monto"), current_actor()
    )
    return _ok(serializers.deuda_economica(deuda))


@mortuary_bp.post("/expedientes/<int:expediente_id>/deuda-economica/exoneracion")
@login_required
def financial_debt_waiver(expediente_id: int):
    payload = _payload()
    deuda = services.apply_waiver(
        expediente_id, payload.get("monto"), payload.get("justificacion", ""), current_actor()
    )
    return _ok(serializers.deuda_economica(deuda))


@mortuary_bp.post("/expedientes/<int:expediente_id>/deuda-economica/sin-deuda")
@login_required
def financial_debt_none(expediente_id: int):
    deuda = services.mark_no_debt(expediente_id, current_actor())
    return _ok(serializers.deuda_economica(deuda))


@mortuary_bp.post("/expedientes/<int:expediente_id>/deuda-sangre")
@login_required
def blood_debt_register(expediente_id: int):
    payload = _payload()
    deuda = services.register_blood_debt(
        expediente_id, payload.get("cantidad_unidades"), payload.get("tipo_sangre"), current_actor()
    )
    return _ok(serializers.deuda_sangre(deuda), 201)


@mortuary_bp.post("/expedientes/<int:expediente_id>/deuda-sangre/liquidar")
@login_required
def blood_debt_settle(expediente_id: int):
    payload = _payload()
    deuda = services.settle_blood_debt(
        expediente_id,
        payload.get("familiar_nombre", ""),
        payload.get("familiar_documento", ""),
        current_actor(),
    )
    return _ok(serializers.deuda_sangre(deuda))


@mortuary_bp.post("/expedientes/<int:expediente_id>/deuda-sangre/sin-deuda")
@login_required
def blood_debt_none(expediente_id: int):
    deuda = services.mark_blood_no_debt(expediente_id, current_actor())
    return _ok(serializers.deuda_sangre(deuda))


@mortuary_bp.post("/expedientes/<int:expediente_id>/deuda-sangre/anular")
@login_required
def blood_debt_override(expediente_id: int):
    deuda = services.override_blood_debt(expediente_id, current_actor(), _payload().get("justificacion", ""))
    return _ok(serializers.deuda_sangre(deuda))


@mortuary_bp.get("/expedientes/<int:expediente_id>/semaforo")
@login_required
def debt_traffic_light(expediente_id: int):
    return _ok(services.debt_traffic_light(expediente_id))


# --- Expediente legal --------------------------------------------------------


@mortuary_bp.post("/expedientes/<int:expediente_id>/expediente-legal")
@login_required
def legal_file_create(expediente_id: int):
    legal = services.create_legal_file(expediente_id, current_actor(), _payload().get("observaciones", ""))
    return _ok(serializers.expediente_legal(legal), 201)


@mortuary_bp.get("/expedientes-legales/vencidos")
@login_required
def legal_file_overdue():
    return _ok([serializers.expediente_legal(row) for row in services.legal_files_past_deadline()])


@mortuary_bp.post("/expedientes-legales/<int:legal_id>/documentos")
@login_required
def legal_file_document(legal_id: int):
    legal = services.get_legal_file(legal_id)
    tipo = (request.form.get("tipo") or "").strip().upper()
    stored = storage.store_upload(legal.expediente_id, tipo or "OTROS", request.files.get("archivo"))
    documento = services.attach_legal_document(legal_id, tipo, stored, current_actor())
    return _ok(serializers.documento_legal(documento), 201)


@mortuary_bp.post("/expedientes-legales/<int:legal_id>/autoridades")
@login_required
def legal_file_authority(legal_id: int):
    autoridad = services.register_authority(legal_id, _payload(), current_actor())
    return _ok(serializers.autoridad(autoridad), 201)


@mortuary_bp.post("/expedientes-legales/<int:legal_id>/enviar")
@login_required
def legal_file_submit(legal_id: int):
    legal = services.submit_for_review(legal_id, current_actor())
    return _ok(serializers.expediente_legal(legal))


@mortuary_bp.post("/expedientes-legales/<int:legal_id>/validacion")
@login_required
def legal_file_review(legal_id: int):
    payload = _payload()
    legal = services.review_by_admissions(
        legal_id, parse_bool(payload.get("aprobado")), current_actor(), payload.get("observaciones")
    )
    return _ok(serializers.expediente_legal(legal))


@mortuary_bp.post("/expedientes-legales/<int:legal_id>/autorizacion")
@login_required
def legal_file_authorize(legal_id: int):
    legal = services.authorize_by_shift_supervisor(legal_id, current_actor(), _payload().get("observaciones"))
    return _ok(serializers.expediente_legal(legal))


# --- Acta de retiro ----------------------------------------------------------


@mortuary_bp.post("/expedientes/<int:expediente_id>/acta-retiro")
@login_required
def acta_create(expediente_id: int):
    acta = services.create_retrieval_authorization(expediente_id, _payload(), current_actor())
    return _ok(serializers.acta_retiro(acta), 201)


@mortuary_bp.get("/actas-retiro/<int:acta_id>/bloqueos")
@login_required
def acta_blocking_reasons(acta_id: int):
    return _ok([serializers.bloqueo(reason) for reason in services.retrieval_blocking_reasons(acta_id)])


@mortuary_bp.post("/actas-retiro/<int:acta_id>/firmada")
@login_required
def acta_signed_upload(acta_id: int):
    acta = services.get_acta(acta_id)
    stored = storage.store_upload(acta.expediente_id, "ACTA_RETIRO", request.files.get("archivo"))
    acta = services.mark_fully_signed(acta_id, stored, current_actor())
    return _ok(serializers.acta_retiro(acta))


# --- Retiro y salida ---------------------------------------------------------


@mortuary_bp.post("/expedientes/<int:expediente_id>/autorizar-retiro")
@login_required
def expediente_authorize_release(expediente_id: int):
    expediente = services.authorize_release(expediente_id, current_actor())
    return _ok(serializers.expediente_summary(expediente))


@mortuary_bp.post("/expedientes/<int:expediente_id>/salida")
@login_required
def expediente_exit(expediente_id: int):
    salida = services.record_exit(expediente_id, _payload(), current_actor())
    return _ok(serializers.salida(salida), 201)


@mortuary_bp.post("/salidas/<int:salida_id>/incidente")
@login_required
def exit_incident(salida_id: int):
    salida = services.register_incident(salida_id, _payload().get("detalle_incidente", ""), current_actor())
    return _ok(serializers.salida(salida))


@mortuary_bp.get("/documentos/<path:reference>")
@login_required
def document_download(reference: str):
    data = storage.retrieve(reference)
    return Response(
        data,
        mimetype="application/octet-stream",
        headers={"Content-Disposition": f"attachment; filename={reference.rsplit('/', 1)[-1]}"},
    )
