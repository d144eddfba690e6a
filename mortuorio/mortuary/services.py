from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app
from sqlalchemy import func
from sqlalchemy.orm import joinedload

from mortuorio.core import clock, errors
from mortuorio.core.extensions import db
from mortuorio.core.identity import Actor
from mortuorio.core.models import (
    FAMILY_FIELDS,
    AccionBandeja,
    ActaRetiro,
    AutoridadExterna,
    Bandeja,
    BandejaEstado,
    BlockingReason,
    CustodiaTransferencia,
    DeudaEconomica,
    DeudaSangre,
    DocumentoLegal,
    EstadoActaRetiro,
    EstadoDeuda,
    EstadoExpediente,
    EstadoExpedienteLegal,
    EventoExpediente,
    Expediente,
    ExpedienteLegal,
    MovimientoBandeja,
    PagoDeudaEconomica,
    REQUIRED_LEGAL_DOCUMENTS,
    Rol,
    SalidaMortuorio,
    SolicitudCorreccion,
    TipoAutoridad,
    TipoDocumentoIdentidad,
    TipoDocumentoLegal,
    TipoExpediente,
    TipoRetiro,
    TriggerExpediente,
    VerificacionMortuorio,
)
from mortuorio.core.permissions import ensure_role
from mortuorio.core.storage import StoredDocument
from mortuorio.core.utils import parse_bool, parse_date, parse_datetime, parse_decimal, parse_int, required

logger = logging.getLogger(__name__)

CLINICAL_ROLES = (Rol.ENFERMERIA, Rol.MEDICO)
SECURITY_ROLES = (Rol.VIGILANTE, Rol.SUPERVISOR_VIGILANCIA)
RELEASE_ROLES = (Rol.ADMISION, Rol.JEFE_GUARDIA)

CASE_TRANSITIONS: dict[EstadoExpediente, dict[TriggerExpediente, EstadoExpediente]] = {
    EstadoExpediente.EN_PISO: {
        TriggerExpediente.GENERAR_BRAZALETE: EstadoExpediente.PENDIENTE_RECOJO,
    },
    EstadoExpediente.PENDIENTE_RECOJO: {
        TriggerExpediente.ACEPTAR_CUSTODIA: EstadoExpediente.EN_TRASLADO,
    },
    EstadoExpediente.EN_TRASLADO: {
        TriggerExpediente.VERIFICAR_INGRESO: EstadoExpediente.PENDIENTE_ASIGNACION_BANDEJA,
        TriggerExpediente.RECHAZAR_VERIFICACION: EstadoExpediente.VERIFICACION_RECHAZADA,
    },
    EstadoExpediente.VERIFICACION_RECHAZADA: {
        TriggerExpediente.CORREGIR_DATOS: EstadoExpediente.EN_TRASLADO,
    },
    EstadoExpediente.PENDIENTE_ASIGNACION_BANDEJA: {
        TriggerExpediente.ASIGNAR_BANDEJA: EstadoExpediente.EN_BANDEJA,
    },
    EstadoExpediente.EN_BANDEJA: {
        TriggerExpediente.LIBERAR_BANDEJA: EstadoExpediente.PENDIENTE_ASIGNACION_BANDEJA,
        TriggerExpediente.AUTORIZAR_RETIRO: EstadoExpediente.PENDIENTE_RETIRO,
    },
    EstadoExpediente.PENDIENTE_RETIRO: {
        TriggerExpediente.REGISTRAR_SALIDA: EstadoExpediente.RETIRADO,
    },
    EstadoExpediente.RETIRADO: {},
}

EDITABLE_IDENTITY_FIELDS = ("hc", "numero_documento", "apellido_paterno", "apellido_materno", "nombres")


@dataclass
class TrayStatistics:
    total: int
    disponibles: int
    ocupadas: int
    mantenimiento: int
    fuera_de_servicio: int

    @property
    def porcentaje_ocupacion(self) -> float:
        usable = self.total - self.fuera_de_servicio
        if usable <= 0:
            return 0.0
        return round(self.ocupadas * 100 / usable, 1)


def _setting(key: str, default: int) -> int:
    return int(current_app.config.get(key, default))


# --- Lookups -----------------------------------------------------------------


def get_expediente(expediente_id: int) -> Expediente:
    expediente = (
        Expediente.query.options(
            joinedload(Expediente.deuda_economica),
            joinedload(Expediente.deuda_sangre),
            joinedload(Expediente.expediente_legal),
            joinedload(Expediente.acta_retiro),
        )
        .filter_by(id=expediente_id, eliminado=False)
        .first()
    )
    if not expediente:
        raise errors.NotFound("Expediente no encontrado")
    return expediente


def get_bandeja(bandeja_id: int) -> Bandeja:
    bandeja = Bandeja.query.filter_by(id=bandeja_id, eliminado=False).first()
    if not bandeja:
        raise errors.NotFound("Bandeja no encontrada")
    return bandeja


def get_legal_file(legal_id: int) -> ExpedienteLegal:
    legal = ExpedienteLegal.query.filter_by(id=legal_id).first()
    if not legal:
        raise errors.NotFound("Expediente legal no encontrado")
    return legal


def get_acta(acta_id: int) -> ActaRetiro:
    acta = ActaRetiro.query.filter_by(id=acta_id).first()
    if not acta:
        raise errors.NotFound("Acta de retiro no encontrada")
    return acta


def get_salida(salida_id: int) -> SalidaMortuorio:
    salida = SalidaMortuorio.query.filter_by(id=salida_id).first()
    if not salida:
        raise errors.NotFound("Registro de salida no encontrado")
    return salida


def list_expedientes(filters: dict[str, str]) -> list[Expediente]:
    query = Expediente.query.filter_by(eliminado=False).order_by(Expediente.created_at.desc(), Expediente.id.desc())
    estado_raw = (filters.get("estado") or "").strip().upper()
    if estado_raw:
        try:
            query = query.filter(Expediente.estado == EstadoExpediente[estado_raw])
        except KeyError:
            return []
    tipo_raw = (filters.get("tipo") or "").strip().upper()
    if tipo_raw:
        try:
            query = query.filter(Expediente.tipo == TipoExpediente[tipo_raw])
        except KeyError:
            return []
    text = (filters.get("q") or "").strip()
    if text:
        like = f"%{text}%"
        query = query.filter(
            db.or_(
                Expediente.codigo.ilike(like),
                Expediente.hc.ilike(like),
                Expediente.numero_documento.ilike(like),
                Expediente.apellido_paterno.ilike(like),
                Expediente.nombres.ilike(like),
            )
        )
    return query.all()


# --- Audit helpers -----------------------------------------------------------


def _log_event(
    expediente: Expediente,
    event_type: str,
    detail: str,
    actor: Actor | None,
    previous: EstadoExpediente | None = None,
) -> None:
    db.session.add(
        EventoExpediente(
            expediente_id=expediente.id,
            tipo=event_type,
            estado_anterior=previous.value if previous else None,
            estado_nuevo=expediente.estado.value if previous else None,
            detalle=detail,
            fecha=clock.now(),
            user_id=actor.id if actor else None,
        )
    )


def _log_tray_movement(
    bandeja: Bandeja,
    action: AccionBandeja,
    detail: str,
    actor: Actor | None,
    expediente_id: int | None = None,
) -> None:
    db.session.add(
        MovimientoBandeja(
            bandeja_id=bandeja.id,
            expediente_id=expediente_id,
            accion=action,
            detalle=detail,
            fecha=clock.now(),
            user_id=actor.id if actor else None,
        )
    )


def permitted_triggers(expediente: Expediente) -> list[TriggerExpediente]:
    return list(CASE_TRANSITIONS.get(expediente.estado, {}).keys())


def _fire(expediente: Expediente, trigger: TriggerExpediente, actor: Actor | None, detail: str = "") -> None:
    target = CASE_TRANSITIONS.get(expediente.estado, {}).get(trigger)
    if target is None:
        raise errors.InvalidTransition(
            f"Transicion invalida: {trigger.value} no se permite desde {expediente.estado.value}"
        )
    previous = expediente.estado
    expediente.estado = target
    expediente.updated_at = clock.now()
    db.session.add(expediente)
    _log_event(expediente, trigger.value, detail or f"{previous.value} -> {target.value}", actor, previous)
    logger.info("Expediente %s: %s -> %s (%s)", expediente.codigo, previous.value, target.value, trigger.value)


def _ensure_active(expediente: Expediente) -> None:
    if expediente.estado == EstadoExpediente.RETIRADO:
        raise errors.InvalidTransition(f"El expediente {expediente.codigo} ya fue retirado")


def check_consistency(expediente_id: int) -> list[str]:
    return get_expediente(expediente_id).consistency_violations()


# --- Case declaration ----------------------------------------------------------


def _next_expediente_code(year: int) -> str:
    value_prefix = f"SGM-{year}-"
    count = (
        db.session.query(func.count(Expediente.id))
        .filter(Expediente.codigo.like(f"{value_prefix}%"))
        .scalar()
    )
    return f"{value_prefix}{count + 1:04d}"


def _parse_enum(enum_cls, raw: str | None, label: str, default=None):
    value = (raw or "").strip().upper()
    if not value:
        if default is None:
            raise errors.MissingField(f"Falta el campo obligatorio: {label}")
        return default
    try:
        return enum_cls[value]
    except KeyError as exc:
        raise errors.InvalidValue(f"{label} invalido: {raw}") from exc


def create_expediente(payload: dict[str, str], actor: Actor) -> Expediente:
    ensure_role(actor, *CLINICAL_ROLES)
    hc = required(payload, "hc", "historia clinica")
    if Expediente.query.filter_by(hc=hc).first():
        raise errors.DuplicateRecord(f"Ya existe un expediente con la historia clinica {hc}")

    tipo_documento = _parse_enum(
        TipoDocumentoIdentidad, payload.get("tipo_documento"), "Tipo de documento", TipoDocumentoIdentidad.DNI
    )
    numero_documento = (payload.get("numero_documento") or "").strip()
    if tipo_documento not in {TipoDocumentoIdentidad.NN, TipoDocumentoIdentidad.SIN_DOCUMENTO} and not numero_documento:
        raise errors.MissingField("Falta el numero de documento de identidad")

    now = clock.now()
    fallecimiento = parse_datetime(payload.get("fecha_hora_fallecimiento"), "fecha y hora de fallecimiento")
    if fallecimiento > now:
        raise errors.InvalidValue("La fecha de fallecimiento no puede ser futura")
    nacimiento = parse_date(payload.get("fecha_nacimiento"), "fecha de nacimiento")
    if nacimiento and fallecimiento.date() < nacimiento:
        raise errors.InvalidValue("La fecha de fallecimiento no puede ser anterior a la fecha de nacimiento")

    certificado = (payload.get("numero_certificado_defuncion") or "").strip() or None
    if certificado and Expediente.query.filter_by(numero_certificado_defuncion=certificado).first():
        raise errors.DuplicateRecord(f"El certificado de defuncion {certificado} ya esta registrado")

    expediente = Expediente(
        codigo=_next_expediente_code(now.year),
        tipo=_parse_enum(TipoExpediente, payload.get("tipo"), "Tipo de expediente", TipoExpediente.INTERNO),
        hc=hc,
        tipo_documento=tipo_documento,
        numero_documento=numero_documento,
        apellido_paterno=required(payload, "apellido_paterno", "apellido paterno"),
        apellido_materno=(payload.get("apellido_materno") or "").strip(),
        nombres=required(payload, "nombres"),
        fecha_nacimiento=nacimiento,
        servicio_fallecimiento=required(payload, "servicio_fallecimiento", "servicio de fallecimiento"),
        numero_cama=(payload.get("numero_cama") or "").strip(),
        fecha_hora_fallecimiento=fallecimiento,
        medico_certifica_nombre=required(payload, "medico_certifica_nombre", "medico que certifica"),
        medico_cmp=(payload.get("medico_cmp") or "").strip(),
        diagnostico_final=(payload.get("diagnostico_final") or "").strip(),
        numero_certificado_defuncion=certificado,
        estado=EstadoExpediente.EN_PISO,
        usuario_creador_id=actor.id,
        created_at=now,
    )
    db.session.add(expediente)
    db.session.flush()
    _log_event(expediente, "CREACION", f"Expediente {expediente.codigo} registrado en {expediente.servicio_fallecimiento}", actor)
    db.session.commit()
    logger.info("Expediente %s creado (%s)", expediente.codigo, expediente.tipo.value)
    return expediente


def generate_wristband(expediente_id: int, actor: Actor) -> Expediente:
    ensure_role(actor, Rol.ENFERMERIA)
    expediente = get_expediente(expediente_id)
    _fire(expediente, TriggerExpediente.GENERAR_BRAZALETE, actor, f"Brazalete {expediente.codigo} generado")
    expediente.brazalete_generado_at = clock.now()
    db.session.commit()
    return expediente


def accept_custody(expediente_id: int, actor: Actor, observaciones: str = "") -> Expediente:
    ensure_role(actor, Rol.AMBULANCIA)
    expediente = get_expediente(expediente_id)
    _fire(expediente, TriggerExpediente.ACEPTAR_CUSTODIA, actor, "Custodia aceptada para traslado al mortuorio")
    db.session.add(
        CustodiaTransferencia(
            expediente_id=expediente.id,
            usuario_origen_id=expediente.usuario_creador_id,
            usuario_destino_id=actor.id,
            fecha=clock.now(),
            observaciones=(observaciones or "").strip(),
        )
    )
    db.session.commit()
    return expediente


# --- Verification and correction tickets ---------------------------------------


def _open_correction(
    expediente: Expediente,
    datos_incorrectos: str,
    descripcion: str,
    actor: Actor,
) -> SolicitudCorreccion:
    solicitud = SolicitudCorreccion(
        expediente_id=expediente.id,
        usuario_solicita_id=actor.id,
        usuario_responsable_id=expediente.usuario_creador_id,
        servicio_origen=expediente.servicio_fallecimiento,
        datos_incorrectos=datos_incorrectos,
        descripcion_problema=descripcion,
        fecha_solicitud=clock.now(),
    )
    db.session.add(solicitud)
    _log_event(expediente, "SOLICITUD_CORRECCION", f"{datos_incorrectos}: {descripcion}", actor)
    return solicitud


def verify_storage_entry(expediente_id: int, payload: dict[str, str], actor: Actor):
    """Check the wristband against the case before the body enters storage.

    Returns ``(expediente, verificacion, solicitud)``; ``solicitud`` is only
    set when a mismatch rejected the entry and opened a correction ticket.
    """
    ensure_role(actor, *SECURITY_ROLES)
    expediente = get_expediente(expediente_id)
    if expediente.estado != EstadoExpediente.EN_TRASLADO:
        raise errors.InvalidTransition(
            f"Solo se verifica el ingreso de expedientes EN_TRASLADO. Estado actual: {expediente.estado.value}"
        )
    undocumented = expediente.tipo_documento in {TipoDocumentoIdentidad.NN, TipoDocumentoIdentidad.SIN_DOCUMENTO}
    verificacion = VerificacionMortuorio(
        expediente_id=expediente.id,
        vigilante_id=actor.id,
        fecha=clock.now(),
        codigo_coincide=(payload.get("codigo_brazalete") or "").strip().upper() == expediente.codigo.upper(),
        hc_coincide=(payload.get("hc") or "").strip() == expediente.hc,
        documento_coincide=undocumented
        or (payload.get("numero_documento") or "").strip() == expediente.numero_documento,
        observaciones=(payload.get("observaciones") or "").strip(),
        aprobada=False,
    )
    verificacion.aprobada = not verificacion.discrepancias
    db.session.add(verificacion)

    solicitud = None
    if verificacion.aprobada:
        _fire(expediente, TriggerExpediente.VERIFICAR_INGRESO, actor, "Ingreso verificado por vigilancia")
        expediente.fecha_ingreso_mortuorio = verificacion.fecha
    else:
        discrepancias = ", ".join(verificacion.discrepancias)
        _fire(expediente, TriggerExpediente.RECHAZAR_VERIFICACION, actor, f"Discrepancias: {discrepancias}")
        solicitud = _open_correction(
            expediente,
            discrepancias,
            verificacion.observaciones or "Los datos del brazalete no coinciden con el expediente",
            actor,
        )
        logger.warning("Verificacion rechazada para %s: %s", expediente.codigo, discrepancias)
    db.session.commit()
    return expediente, verificacion, solicitud


def request_correction(expediente_id: int, payload: dict[str, str], actor: Actor) -> SolicitudCorreccion:
    ensure_role(actor, *SECURITY_ROLES)
    expediente = get_expediente(expediente_id)
    datos = required(payload, "datos_incorrectos", "datos incorrectos")
    descripcion = required(payload, "descripcion_problema", "descripcion del problema")
    if expediente.estado == EstadoExpediente.EN_TRASLADO:
        _fire(expediente, TriggerExpediente.RECHAZAR_VERIFICACION, actor, f"Correccion solicitada: {datos}")
    elif expediente.estado != EstadoExpediente.VERIFICACION_RECHAZADA:
        raise errors.InvalidTransition(
            f"No se puede solicitar correccion en estado {expediente.estado.value}"
        )
    solicitud = _open_correction(expediente, datos, descripcion, actor)
    db.session.commit()
    logger.warning("Solicitud de correccion abierta para %s: %s", expediente.codigo, datos)
    return solicitud


def resolve_correction(solicitud_id: int, payload: dict[str, str], actor: Actor) -> SolicitudCorreccion:
    ensure_role(actor, *CLINICAL_ROLES)
    solicitud = SolicitudCorreccion.query.filter_by(id=solicitud_id).first()
    if not solicitud:
        raise errors.NotFound("Solicitud de correccion no encontrada")
    expediente = get_expediente(solicitud.expediente_id)

    new_hc = (payload.get("hc") or "").strip()
    if new_hc and new_hc != expediente.hc:
        if Expediente.query.filter(Expediente.hc == new_hc, Expediente.id != expediente.id).first():
            raise errors.DuplicateRecord(f"Ya existe un expediente con la historia clinica {new_hc}")
    solicitud.resolver(payload.get("descripcion_resolucion") or "", parse_bool(payload.get("brazalete_reimpreso")))

    changed = []
    for field in EDITABLE_IDENTITY_FIELDS:
        value = (payload.get(field) or "").strip()
        if value and value != getattr(expediente, field):
            setattr(expediente, field, value)
            changed.append(field)
    if changed:
        _log_event(expediente, "DATOS_CORREGIDOS", f"Campos corregidos: {', '.join(changed)}", actor)

    pending = [s for s in expediente.solicitudes_correccion if not s.resuelta and s.id != solicitud.id]
    if expediente.estado == EstadoExpediente.VERIFICACION_RECHAZADA and not pending:
        _fire(expediente, TriggerExpediente.CORREGIR_DATOS, actor, "Datos corregidos, vuelve a verificacion")
    if solicitud.brazalete_reimpreso:
        expediente.brazalete_generado_at = clock.now()
    db.session.commit()
    return solicitud


def overdue_correction_requests(hours: int | None = None) -> list[SolicitudCorreccion]:
    limit = hours if hours is not None else _setting("CORRECTION_ESCALATION_HOURS", 2)
    cutoff = clock.now() - timedelta(hours=limit)
    return (
        SolicitudCorreccion.query.filter(
            SolicitudCorreccion.resuelta.is_(False),
            SolicitudCorreccion.fecha_solicitud <= cutoff,
        )
        .order_by(SolicitudCorreccion.fecha_solicitud.asc())
        .all()
    )


def escalate_overdue_corrections() -> list[SolicitudCorreccion]:
    escalated = []
    for solicitud in overdue_correction_requests():
        if solicitud.notificar_supervisora():
            expediente = solicitud.expediente
            _log_event(expediente, "ESCALAMIENTO_SUPERVISORA", f"Solicitud {solicitud.id} sin resolver", None)
            logger.warning(
                "Solicitud %s del expediente %s escalada a supervisora de %s",
                solicitud.id,
                expediente.codigo,
                solicitud.servicio_origen,
            )
            escalated.append(solicitud)
    db.session.commit()
    return escalated


# --- Trays -------------------------------------------------------------------


def list_bandejas() -> list[Bandeja]:
    return Bandeja.query.filter_by(eliminado=False).order_by(Bandeja.codigo.asc()).all()


def advance_to_storage(expediente_id: int, bandeja_id: int, actor: Actor) -> Expediente:
    ensure_role(actor, *SECURITY_ROLES)
    expediente = get_expediente(expediente_id)
    if expediente.estado != EstadoExpediente.PENDIENTE_ASIGNACION_BANDEJA:
        raise errors.InvalidTransition(
            f"El expediente debe estar PENDIENTE_ASIGNACION_BANDEJA. Estado actual: {expediente.estado.value}"
        )
    if expediente.bandeja_actual_id is not None:
        raise errors.InconsistentCaseState(f"El expediente {expediente.codigo} ya ocupa una bandeja")

    now = clock.now()
    updated = (
        Bandeja.query.filter(
            Bandeja.id == bandeja_id,
            Bandeja.estado == BandejaEstado.DISPONIBLE,
            Bandeja.eliminado.is_(False),
        ).update(
            {
                Bandeja.estado: BandejaEstado.OCUPADA,
                Bandeja.expediente_id: expediente.id,
                Bandeja.usuario_asigna_id: actor.id,
                Bandeja.fecha_asignacion: now,
                Bandeja.updated_at: now,
            },
            synchronize_session="fetch",
        )
    )
    if updated != 1:
        db.session.rollback()
        get_bandeja(bandeja_id)
        raise errors.SlotNotAvailable("La bandeja no esta disponible")

    bandeja = get_bandeja(bandeja_id)
    expediente.bandeja_actual_id = bandeja.id
    _log_tray_movement(bandeja, AccionBandeja.ASIGNACION, f"Asignada a {expediente.codigo}", actor, expediente.id)
    _fire(expediente, TriggerExpediente.ASIGNAR_BANDEJA, actor, f"Bandeja {bandeja.codigo} asignada")
    db.session.commit()
    return expediente


def assign_slot(bandeja_id: int, expediente_id: int, actor: Actor) -> Bandeja:
    advance_to_storage(expediente_id, bandeja_id, actor)
    return get_bandeja(bandeja_id)


def release_slot(bandeja_id: int, actor: Actor, motivo: str = "") -> Bandeja:
    ensure_role(actor, *SECURITY_ROLES)
    bandeja = get_bandeja(bandeja_id)
    if not bandeja.esta_ocupada():
        raise errors.SlotNotOccupied(f"La bandeja {bandeja.codigo} no esta ocupada")
    expediente = bandeja.expediente
    if expediente is not None and expediente.estado != EstadoExpediente.EN_BANDEJA:
        raise errors.InvalidTransition(
            f"El expediente {expediente.codigo} en estado {expediente.estado.value} solo sale de la bandeja con la salida"
        )
    if not (motivo or "").strip():
        raise errors.MissingJustification("Debe indicar el motivo de la liberacion manual")
    expediente_id = bandeja.expediente_id
    bandeja.liberar(actor.id)
    bandeja.observaciones = motivo.strip()
    _log_tray_movement(bandeja, AccionBandeja.LIBERACION_MANUAL, motivo.strip(), actor, expediente_id)
    if expediente is not None:
        expediente.bandeja_actual_id = None
        _fire(expediente, TriggerExpediente.LIBERAR_BANDEJA, actor, f"Bandeja {bandeja.codigo} liberada: {motivo.strip()}")
    db.session.commit()
    logger.warning("Bandeja %s liberada manualmente: %s", bandeja.codigo, motivo.strip())
    return bandeja


def enter_maintenance(bandeja_id: int, motivo: str, actor: Actor) -> Bandeja:
    ensure_role(actor, Rol.SUPERVISOR_VIGILANCIA)
    bandeja = get_bandeja(bandeja_id)
    bandeja.iniciar_mantenimiento(motivo)
    _log_tray_movement(bandeja, AccionBandeja.INICIO_MANTENIMIENTO, bandeja.observaciones or "", actor)
    db.session.commit()
    logger.info("Bandeja %s en mantenimiento", bandeja.codigo)
    return bandeja


def exit_maintenance(bandeja_id: int, actor: Actor) -> Bandeja:
    ensure_role(actor, Rol.SUPERVISOR_VIGILANCIA)
    bandeja = get_bandeja(bandeja_id)
    bandeja.finalizar_mantenimiento()
    _log_tray_movement(bandeja, AccionBandeja.FIN_MANTENIMIENTO, "Mantenimiento finalizado", actor)
    db.session.commit()
    return bandeja


def mark_out_of_service(bandeja_id: int, motivo: str, actor: Actor) -> Bandeja:
    ensure_role(actor, Rol.SUPERVISOR_VIGILANCIA)
    bandeja = get_bandeja(bandeja_id)
    bandeja.marcar_fuera_de_servicio(motivo)
    _log_tray_movement(bandeja, AccionBandeja.FUERA_DE_SERVICIO, bandeja.observaciones or "", actor)
    db.session.commit()
    logger.warning("Bandeja %s fuera de servicio: %s", bandeja.codigo, bandeja.observaciones)
    return bandeja


def occupancy_alert(threshold_hours: int | None = None) -> list[Bandeja]:
    hours = threshold_hours if threshold_hours is not None else _setting("OCCUPANCY_ALERT_HOURS", 24)
    cutoff = clock.now() - timedelta(hours=hours)
    return (
        Bandeja.query.filter(
            Bandeja.estado == BandejaEstado.OCUPADA,
            Bandeja.eliminado.is_(False),
            Bandeja.fecha_asignacion <= cutoff,
        )
        .order_by(Bandeja.fecha_asignacion.asc())
        .all()
    )


def bandeja_statistics() -> TrayStatistics:
    counts = dict(
        db.session.query(Bandeja.estado, func.count(Bandeja.id))
        .filter(Bandeja.eliminado.is_(False))
        .group_by(Bandeja.estado)
        .all()
    )
    return TrayStatistics(
        total=sum(counts.values()),
        disponibles=counts.get(BandejaEstado.DISPONIBLE, 0),
        ocupadas=counts.get(BandejaEstado.OCUPADA, 0),
        mantenimiento=counts.get(BandejaEstado.MANTENIMIENTO, 0),
        fuera_de_servicio=counts.get(BandejaEstado.FUERA_DE_SERVICIO, 0),
    )


# --- Debts -------------------------------------------------------------------


def _financial_debt(expediente_id: int) -> DeudaEconomica:
    deuda = DeudaEconomica.query.filter_by(expediente_id=expediente_id).first()
    if not deuda:
        raise errors.NotFound("No existe deuda economica para este expediente")
    return deuda


def _blood_debt(expediente_id: int) -> DeudaSangre:
    deuda = DeudaSangre.query.filter_by(expediente_id=expediente_id).first()
    if not deuda:
        raise errors.NotFound("No existe deuda de sangre para este expediente")
    return deuda


def register_financial_debt(expediente_id: int, amount, actor: Actor) -> DeudaEconomica:
    ensure_role(actor, Rol.CAJA)
    expediente = get_expediente(expediente_id)
    _ensure_active(expediente)
    if expediente.deuda_economica is not None:
        raise errors.DuplicateRecord(f"El expediente {expediente.codigo} ya tiene deuda economica registrada")
    monto = parse_decimal(amount, "monto de deuda")
    if monto <= 0:
        raise errors.InvalidAmount("El monto de la deuda debe ser mayor a cero")
    deuda = DeudaEconomica(
        expediente_id=expediente.id,
        monto_deuda=monto,
        estado=EstadoDeuda.PENDIENTE,
        usuario_registro_id=actor.id,
        fecha_registro=clock.now(),
    )
    db.session.add(deuda)
    _log_event(expediente, "DEUDA_ECONOMICA_REGISTRADA", f"Monto {monto}", actor)
    db.session.commit()
    return deuda


def record_payment(expediente_id: int, receipt_number: str, amount, actor: Actor) -> DeudaEconomica:
    ensure_role(actor, Rol.CAJA)
    deuda = _financial_debt(expediente_id)
    boleta = (receipt_number or "").strip()
    if not boleta:
        raise errors.MissingField("Falta el numero de boleta")
    if PagoDeudaEconomica.query.filter_by(numero_boleta=boleta).first():
        raise errors.DuplicateRecord(f"La boleta {boleta} ya fue registrada")
    monto = parse_decimal(amount, "monto pagado")
    deuda.registrar_pago(monto, actor.id)
    db.session.add(
        PagoDeudaEconomica(deuda_id=deuda.id, numero_boleta=boleta, monto=monto, user_id=actor.id, fecha=clock.now())
    )
    _log_event(deuda.expediente, "PAGO_REGISTRADO", f"Boleta {boleta} por {monto}", actor)
    db.session.commit()
    logger.info("Pago %s registrado para %s; estado %s", boleta, deuda.expediente.codigo, deuda.estado.value)
    return deuda


def apply_waiver(expediente_id: int, amount, justification: str, actor: Actor) -> DeudaEconomica:
    ensure_role(actor, Rol.SERVICIO_SOCIAL)
    deuda = _financial_debt(expediente_id)
    monto = parse_decimal(amount, "monto exonerado")
    deuda.aplicar_exoneracion(monto, justification, actor.id)
    _log_event(deuda.expediente, "EXONERACION", f"{deuda.tipo_exoneracion.value} por {monto}", actor)
    db.session.commit()
    logger.info("Exoneracion %s aplicada a %s", deuda.tipo_exoneracion.value, deuda.expediente.codigo)
    return deuda


def mark_no_debt(expediente_id: int, actor: Actor) -> DeudaEconomica:
    ensure_role(actor, Rol.CAJA)
    expediente = get_expediente(expediente_id)
    _ensure_active(expediente)
    deuda = expediente.deuda_economica
    if deuda is None:
        deuda = DeudaEconomica(expediente_id=expediente.id, usuario_registro_id=actor.id, fecha_registro=clock.now())
        db.session.add(deuda)
    deuda.marcar_sin_deuda(actor.id)
    _log_event(expediente, "SIN_DEUDA_ECONOMICA", "Expediente sin deuda economica", actor)
    db.session.commit()
    return deuda


def register_blood_debt(expediente_id: int, units, blood_type: str | None, actor: Actor) -> DeudaSangre:
    ensure_role(actor, Rol.BANCO_SANGRE)
    expediente = get_expediente(expediente_id)
    _ensure_active(expediente)
    if expediente.deuda_sangre is not None:
        raise errors.DuplicateRecord(f"El expediente {expediente.codigo} ya tiene deuda de sangre registrada")
    unidades = parse_int(units, "unidades de sangre")
    if unidades < 0:
        raise errors.InvalidAmount("La cantidad de unidades no puede ser negativa")
    deuda = DeudaSangre(
        expediente_id=expediente.id,
        cantidad_unidades=unidades,
        tipo_sangre=(blood_type or "").strip().upper() or None,
        estado=EstadoDeuda.PENDIENTE if unidades > 0 else EstadoDeuda.SIN_DEUDA,
        usuario_registro_id=actor.id,
        fecha_registro=clock.now(),
    )
    db.session.add(deuda)
    _log_event(expediente, "DEUDA_SANGRE_REGISTRADA", f"{unidades} unidades {deuda.tipo_sangre or ''}".strip(), actor)
    db.session.commit()
    return deuda


def settle_blood_debt(expediente_id: int, family_name: str, family_document: str, actor: Actor) -> DeudaSangre:
    ensure_role(actor, Rol.BANCO_SANGRE)
    deuda = _blood_debt(expediente_id)
    deuda.liquidar(family_name, family_document, actor.id)
    _log_event(deuda.expediente, "DEUDA_SANGRE_LIQUIDADA", f"Compromiso firmado por {deuda.familiar_compromiso_nombre}", actor)
    db.session.commit()
    return deuda


def mark_blood_no_debt(expediente_id: int, actor: Actor) -> DeudaSangre:
    ensure_role(actor, Rol.BANCO_SANGRE)
    expediente = get_expediente(expediente_id)
    _ensure_active(expediente)
    deuda = expediente.deuda_sangre
    if deuda is None:
        deuda = DeudaSangre(expediente_id=expediente.id, usuario_registro_id=actor.id, fecha_registro=clock.now())
        db.session.add(deuda)
    deuda.marcar_sin_deuda(actor.id)
    _log_event(expediente, "SIN_DEUDA_SANGRE", "Expediente sin deuda de sangre", actor)
    db.session.commit()
    return deuda


def override_blood_debt(expediente_id: int, actor: Actor, justification: str) -> DeudaSangre:
    ensure_role(actor, Rol.MEDICO)
    deuda = _blood_debt(expediente_id)
    deuda.anular_por_medico(actor.id, justification)
    _log_event(deuda.expediente, "DEUDA_SANGRE_ANULADA", deuda.justificacion_anulacion or "", actor)
    db.session.commit()
    logger.warning("Deuda de sangre de %s anulada por medico %s", deuda.expediente.codigo, actor.id)
    return deuda


def debt_traffic_light(expediente_id: int) -> dict[str, object]:
    expediente = get_expediente(expediente_id)
    economica = expediente.deuda_economica
    sangre = expediente.deuda_sangre
    blocks_financial = economica.blocks_release() if economica else False
    blocks_blood = sangre.blocks_release() if sangre else False
    instrucciones = []
    if blocks_financial:
        instrucciones.append("Dirigirse a Caja o Servicio Social")
    if blocks_blood:
        instrucciones.append("Dirigirse a Banco de Sangre")
    return {
        "expediente": expediente.codigo,
        "economica": "DEBE" if blocks_financial else "NO DEBE",
        "sangre": "DEBE" if blocks_blood else "NO DEBE",
        "bloquea_retiro": blocks_financial or blocks_blood,
        "instruccion": "; ".join(instrucciones) or "Sin deudas pendientes",
    }


# --- Legal case file ---------------------------------------------------------


def create_legal_file(expediente_id: int, actor: Actor, observaciones: str = "") -> ExpedienteLegal:
    ensure_role(actor, *SECURITY_ROLES)
    expediente = get_expediente(expediente_id)
    _ensure_active(expediente)
    if not expediente.es_externo:
        raise errors.InvalidValue("Solo los expedientes EXTERNO requieren expediente legal")
    if expediente.expediente_legal is not None:
        raise errors.DuplicateRecord(f"El expediente {expediente.codigo} ya tiene expediente legal")
    legal = ExpedienteLegal(
        expediente_id=expediente.id,
        observaciones=(observaciones or "").strip(),
        usuario_registro_id=actor.id,
        created_at=clock.now(),
    )
    db.session.add(legal)
    _log_event(expediente, "EXPEDIENTE_LEGAL_CREADO", "Expediente legal en registro", actor)
    db.session.commit()
    return legal


def attach_legal_document(legal_id: int, tipo_raw: str, stored: StoredDocument, actor: Actor) -> DocumentoLegal:
    ensure_role(actor, *SECURITY_ROLES, Rol.ADMISION)
    legal = get_legal_file(legal_id)
    if not legal.admite_cambios:
        raise errors.InvalidTransition(
            f"No se pueden adjuntar documentos en estado {legal.estado.value}"
        )
    tipo = _parse_enum(TipoDocumentoLegal, tipo_raw, "Tipo de documento legal")
    if tipo in REQUIRED_LEGAL_DOCUMENTS and any(doc.tipo == tipo for doc in legal.documentos):
        raise errors.DuplicateRecord(f"El documento {tipo.value} ya fue adjuntado")
    documento = DocumentoLegal(
        expediente_legal_id=legal.id,
        tipo=tipo,
        referencia=stored.reference,
        nombre_archivo=stored.filename,
        tamano_bytes=stored.size,
        usuario_sube_id=actor.id,
        fecha_subida=clock.now(),
    )
    legal.documentos.append(documento)
    db.session.add(documento)
    _log_event(legal.expediente, "DOCUMENTO_LEGAL_ADJUNTO", f"{tipo.value}: {stored.filename}", actor)
    db.session.commit()
    return documento


def register_authority(legal_id: int, payload: dict[str, str], actor: Actor) -> AutoridadExterna:
    ensure_role(actor, *SECURITY_ROLES)
    legal = get_legal_file(legal_id)
    if legal.autorizado:
        raise errors.InvalidTransition("El expediente legal ya fue autorizado")
    autoridad = AutoridadExterna(
        expediente_legal_id=legal.id,
        tipo=_parse_enum(TipoAutoridad, payload.get("tipo"), "Tipo de autoridad"),
        nombre_completo=required(payload, "nombre_completo", "nombre de la autoridad"),
        numero_documento=required(payload, "numero_documento", "documento de la autoridad"),
        institucion=(payload.get("institucion") or "").strip(),
        cargo=(payload.get("cargo") or "").strip(),
        codigo_especial=(payload.get("codigo_especial") or "").strip(),
        placa_vehiculo=(payload.get("placa_vehiculo") or "").strip().upper(),
        fecha_llegada=clock.now(),
        usuario_registro_id=actor.id,
    )
    legal.autoridades.append(autoridad)
    db.session.add(autoridad)
    _log_event(legal.expediente, "AUTORIDAD_REGISTRADA", f"{autoridad.tipo.value}: {autoridad.nombre_completo}", actor)
    db.session.commit()
    return autoridad


def submit_for_review(legal_id: int, actor: Actor) -> ExpedienteLegal:
    ensure_role(actor, *SECURITY_ROLES)
    legal = get_legal_file(legal_id)
    legal.submit_for_review()
    _log_event(legal.expediente, "EXPEDIENTE_LEGAL_ENVIADO", "Enviado a validacion de Admision", actor)
    db.session.commit()
    return legal


def review_by_admissions(legal_id: int, approved: bool, actor: Actor, notes: str | None = None) -> ExpedienteLegal:
    ensure_role(actor, Rol.ADMISION)
    legal = get_legal_file(legal_id)
    legal.review_by_admissions(approved, actor.id, notes)
    _log_event(legal.expediente, f"EXPEDIENTE_LEGAL_{legal.estado.value}", notes or "", actor)
    db.session.commit()
    if not approved:
        logger.warning("Expediente legal %s rechazado por Admision: %s", legal.id, notes)
    return legal


def authorize_by_shift_supervisor(legal_id: int, actor: Actor, notes: str | None = None) -> ExpedienteLegal:
    ensure_role(actor, Rol.JEFE_GUARDIA)
    legal = get_legal_file(legal_id)
    legal.authorize_by_shift_supervisor(actor.id, notes)
    _log_event(legal.expediente, "EXPEDIENTE_LEGAL_AUTORIZADO", notes or "Autorizado por Jefe de Guardia", actor)
    db.session.commit()
    logger.info("Expediente legal %s autorizado", legal.id)
    return legal


def legal_files_past_deadline(hours: int | None = None) -> list[ExpedienteLegal]:
    limit = hours if hours is not None else _setting("LEGAL_DOCUMENTS_DEADLINE_HOURS", 48)
    now = clock.now()
    candidates = (
        ExpedienteLegal.query.filter(
            ExpedienteLegal.estado != EstadoExpedienteLegal.AUTORIZADO_JEFE_GUARDIA,
            ExpedienteLegal.created_at <= now - timedelta(hours=limit),
        )
        .order_by(ExpedienteLegal.created_at.asc())
        .all()
    )
    return [legal for legal in candidates if legal.deadline_48h(limit) is not None]


# --- Retrieval authorization ---------------------------------------------------


def create_retrieval_authorization(expediente_id: int, payload: dict[str, str], actor: Actor) -> ActaRetiro:
    ensure_role(actor, Rol.ADMISION)
    expediente = get_expediente(expediente_id)
    _ensure_active(expediente)
    if expediente.acta_retiro is not None:
        raise errors.DuplicateRecord(f"El expediente {expediente.codigo} ya tiene acta de retiro")
    tipo_retiro = _parse_enum(TipoRetiro, payload.get("tipo_retiro"), "Tipo de retiro")
    if not expediente.es_externo and tipo_retiro != TipoRetiro.FAMILIAR:
        raise errors.InconsistentReferenceKind(
            "Un expediente INTERNO solo admite acta de retiro FAMILIAR; el retiro por autoridad requiere expediente legal"
        )
    acta = ActaRetiro(
        expediente_id=expediente.id,
        tipo_retiro=tipo_retiro,
        numero_certificado_defuncion=(
            (payload.get("numero_certificado_defuncion") or "").strip() or expediente.numero_certificado_defuncion
        ),
        usuario_registro_id=actor.id,
        created_at=clock.now(),
    )
    for field in FAMILY_FIELDS + (
        "familiar_telefono",
        "numero_oficio",
        "institucion",
        "autoridad_nombre",
        "autoridad_numero_documento",
        "autoridad_placa_vehiculo",
    ):
        value = (payload.get(field) or "").strip()
        setattr(acta, field, value or None)
    acta.tipo_autoridad = (payload.get("tipo_autoridad") or "").strip() or None
    acta.validate_kind_fields()
    db.session.add(acta)
    _log_event(expediente, "ACTA_RETIRO_CREADA", f"Acta {acta.tipo_retiro.value}", actor)
    db.session.commit()
    return acta


def retrieval_blocking_reasons(acta_id: int) -> list[BlockingReason]:
    return get_acta(acta_id).validate_ready_for_document_generation()


def mark_fully_signed(acta_id: int, stored: StoredDocument, actor: Actor) -> ActaRetiro:
    ensure_role(actor, Rol.ADMISION)
    acta = get_acta(acta_id)
    reasons = acta.validate_ready_for_document_generation()
    if reasons:
        raise errors.RetrievalAuthorizationIncomplete("; ".join(reason.message for reason in reasons))
    acta.mark_fully_signed(actor.id, stored.reference, stored.filename, stored.size)
    _log_event(acta.expediente, "ACTA_RETIRO_FIRMADA", f"Documento firmado {stored.filename}", actor)
    db.session.commit()
    return acta


# --- Release and exit --------------------------------------------------------


def _ensure_release_conditions(expediente: Expediente) -> None:
    if expediente.debts_block_release():
        pending = []
        if expediente.deuda_economica and expediente.deuda_economica.blocks_release():
            pending.append(f"economica ({expediente.deuda_economica.monto_pendiente})")
        if expediente.deuda_sangre and expediente.deuda_sangre.blocks_release():
            pending.append(f"sangre ({expediente.deuda_sangre.cantidad_unidades} unidades)")
        raise errors.DebtsOutstanding(f"Deudas pendientes: {', '.join(pending)}")
    if expediente.es_externo:
        legal = expediente.expediente_legal
        if legal is None or not legal.autorizado:
            raise errors.LegalAuthorizationIncomplete()
    else:
        acta = expediente.acta_retiro
        if acta is None or acta.estado != EstadoActaRetiro.FIRMADA or not acta.is_complete():
            raise errors.RetrievalAuthorizationIncomplete()
        if acta.tipo_retiro != TipoRetiro.FAMILIAR:
            raise errors.InconsistentReferenceKind(
                f"El acta {acta.tipo_retiro.value} no corresponde a un expediente INTERNO"
            )


def authorize_release(expediente_id: int, actor: Actor) -> Expediente:
    ensure_role(actor, *RELEASE_ROLES)
    expediente = get_expediente(expediente_id)
    if expediente.estado != EstadoExpediente.EN_BANDEJA:
        raise errors.InvalidTransition(
            f"Solo se autoriza el retiro de expedientes EN_BANDEJA. Estado actual: {expediente.estado.value}"
        )
    _ensure_release_conditions(expediente)
    _fire(expediente, TriggerExpediente.AUTORIZAR_RETIRO, actor, "Retiro autorizado")
    db.session.commit()
    return expediente


def record_exit(expediente_id: int, payload: dict[str, str], actor: Actor) -> SalidaMortuorio:
    ensure_role(actor, *SECURITY_ROLES)
    expediente = get_expediente(expediente_id)
    if expediente.estado != EstadoExpediente.PENDIENTE_RETIRO:
        raise errors.InvalidTransition(
            f"Solo se registra la salida de expedientes PENDIENTE_RETIRO. Estado actual: {expediente.estado.value}"
        )
    _ensure_release_conditions(expediente)

    if expediente.es_externo:
        tipo_salida = TipoRetiro.AUTORIDAD_LEGAL
        acta, legal = None, expediente.expediente_legal
    else:
        acta, legal = expediente.acta_retiro, None
        tipo_salida = acta.tipo_retiro

    salida = SalidaMortuorio(
        expediente_id=expediente.id,
        tipo_salida=tipo_salida,
        acta_retiro_id=acta.id if acta else None,
        expediente_legal_id=legal.id if legal else None,
        registrado_por_id=actor.id,
        fecha_hora_salida=clock.now(),
        responsable_nombre=(payload.get("responsable_nombre") or "").strip(),
        responsable_documento=(payload.get("responsable_documento") or "").strip(),
        funeraria_nombre=(payload.get("funeraria_nombre") or "").strip() or None,
        conductor_nombre=(payload.get("conductor_nombre") or "").strip() or None,
        conductor_documento=(payload.get("conductor_documento") or "").strip() or None,
        placa_vehiculo=(payload.get("placa_vehiculo") or "").strip().upper() or None,
        destino=(payload.get("destino") or "").strip(),
        observaciones=(payload.get("observaciones") or "").strip(),
    )
    salida.validate_reference_consistency()
    missing = salida.validate_documentation(expediente.acta_retiro, expediente.expediente_legal)
    if missing:
        raise errors.IncompleteExitData("; ".join(missing))
    if salida.placa_vehiculo is None:
        salida.placa_vehiculo = salida.placa_efectiva(expediente.acta_retiro, expediente.expediente_legal)
    incidente = (payload.get("detalle_incidente") or "").strip()
    if incidente:
        salida.register_incident(incidente)

    bandeja = expediente.bandeja_actual
    entry = expediente.fecha_ingreso_mortuorio or (bandeja.fecha_asignacion if bandeja else None)
    if entry is not None:
        salida.compute_elapsed_storage_time(entry)
    if bandeja is not None:
        salida.bandeja_liberada_id = bandeja.id
        bandeja.liberar(actor.id)
        _log_tray_movement(bandeja, AccionBandeja.LIBERACION, f"Salida de {expediente.codigo}", actor, expediente.id)
    expediente.bandeja_actual_id = None
    db.session.add(salida)
    _fire(expediente, TriggerExpediente.REGISTRAR_SALIDA, actor, f"Salida {tipo_salida.value}")
    db.session.commit()
    if salida.exceeded_limit():
        logger.warning(
            "Expediente %s retirado tras %s minutos en el mortuorio", expediente.codigo, salida.tiempo_permanencia_minutos
        )
    return salida


def register_incident(salida_id: int, description: str, actor: Actor) -> SalidaMortuorio:
    ensure_role(actor, *SECURITY_ROLES)
    salida = get_salida(salida_id)
    salida.register_incident(description)
    _log_event(salida.expediente, "INCIDENTE_SALIDA", salida.detalle_incidente or "", actor)
    db.session.commit()
    logger.warning("Incidente registrado en salida %s: %s", salida.id, salida.detalle_incidente)
    return salida


def soft_delete_expediente(expediente_id: int, motivo: str, actor: Actor) -> Expediente:
    ensure_role(actor)
    expediente = get_expediente(expediente_id)
    if not (motivo or "").strip():
        raise errors.MissingJustification("Debe indicar el motivo de la eliminacion")
    if expediente.bandeja_actual_id is not None:
        raise errors.SlotOccupied("No se puede eliminar un expediente que ocupa una bandeja")
    expediente.eliminado = True
    expediente.motivo_eliminacion = motivo.strip()
    expediente.eliminado_at = clock.now()
    _log_event(expediente, "ELIMINACION", motivo.strip(), actor)
    db.session.commit()
    logger.warning("Expediente %s eliminado logicamente: %s", expediente.codigo, motivo.strip())
    return expediente

