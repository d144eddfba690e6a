from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum

from flask import current_app, has_app_context
from flask_login import UserMixin
from sqlalchemy import CheckConstraint, Enum as SAEnum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates
from werkzeug.security import generate_password_hash

from mortuorio.core import errors
from mortuorio.core.clock import now as clock_now
from mortuorio.core.extensions import db

ZERO = Decimal("0.00")
CENT = Decimal("0.01")

STORAGE_LIMIT_HOURS = 48
YELLOW_ALERT_HOURS = 24
RED_ALERT_HOURS = 48
LEGAL_DOCUMENTS_DEADLINE_HOURS = 48
CORRECTION_ALERT_HOURS = 2
MIN_OVERRIDE_JUSTIFICATION = 20


def utcnow() -> datetime:
    return clock_now()


def tray_alert_thresholds() -> tuple[int, int]:
    if not has_app_context():
        return YELLOW_ALERT_HOURS, RED_ALERT_HOURS
    return (
        int(current_app.config.get("OCCUPANCY_ALERT_HOURS", YELLOW_ALERT_HOURS)),
        int(current_app.config.get("OCCUPANCY_CRITICAL_HOURS", RED_ALERT_HOURS)),
    )


def _money(value: Decimal | int | str | None) -> Decimal:
    return Decimal(value or 0).quantize(CENT)


def _blank(value: str | None) -> bool:
    return not (value or "").strip()


class Rol(str, Enum):
    ADMIN = "ADMIN"
    ENFERMERIA = "ENFERMERIA"
    MEDICO = "MEDICO"
    AMBULANCIA = "AMBULANCIA"
    VIGILANTE = "VIGILANTE"
    SUPERVISOR_VIGILANCIA = "SUPERVISOR_VIGILANCIA"
    ADMISION = "ADMISION"
    JEFE_GUARDIA = "JEFE_GUARDIA"
    CAJA = "CAJA"
    SERVICIO_SOCIAL = "SERVICIO_SOCIAL"
    BANCO_SANGRE = "BANCO_SANGRE"


class TipoExpediente(str, Enum):
    INTERNO = "INTERNO"
    EXTERNO = "EXTERNO"


class TipoDocumentoIdentidad(str, Enum):
    DNI = "DNI"
    PASAPORTE = "PASAPORTE"
    CARNE_EXTRANJERIA = "CARNE_EXTRANJERIA"
    SIN_DOCUMENTO = "SIN_DOCUMENTO"
    NN = "NN"


class EstadoExpediente(str, Enum):
    EN_PISO = "EN_PISO"
    PENDIENTE_RECOJO = "PENDIENTE_RECOJO"
    EN_TRASLADO = "EN_TRASLADO"
    VERIFICACION_RECHAZADA = "VERIFICACION_RECHAZADA"
    PENDIENTE_ASIGNACION_BANDEJA = "PENDIENTE_ASIGNACION_BANDEJA"
    EN_BANDEJA = "EN_BANDEJA"
    PENDIENTE_RETIRO = "PENDIENTE_RETIRO"
    RETIRADO = "RETIRADO"


class TriggerExpediente(str, Enum):
    GENERAR_BRAZALETE = "GENERAR_BRAZALETE"
    ACEPTAR_CUSTODIA = "ACEPTAR_CUSTODIA"
    VERIFICAR_INGRESO = "VERIFICAR_INGRESO"
    RECHAZAR_VERIFICACION = "RECHAZAR_VERIFICACION"
    CORREGIR_DATOS = "CORREGIR_DATOS"
    ASIGNAR_BANDEJA = "ASIGNAR_BANDEJA"
    LIBERAR_BANDEJA = "LIBERAR_BANDEJA"
    AUTORIZAR_RETIRO = "AUTORIZAR_RETIRO"
    REGISTRAR_SALIDA = "REGISTRAR_SALIDA"


class BandejaEstado(str, Enum):
    DISPONIBLE = "DISPONIBLE"
    OCUPADA = "OCUPADA"
    MANTENIMIENTO = "MANTENIMIENTO"
    FUERA_DE_SERVICIO = "FUERA_DE_SERVICIO"


class AccionBandeja(str, Enum):
    ASIGNACION = "ASIGNACION"
    LIBERACION = "LIBERACION"
    LIBERACION_MANUAL = "LIBERACION_MANUAL"
    INICIO_MANTENIMIENTO = "INICIO_MANTENIMIENTO"
    FIN_MANTENIMIENTO = "FIN_MANTENIMIENTO"
    FUERA_DE_SERVICIO = "FUERA_DE_SERVICIO"


class NivelAlerta(str, Enum):
    NINGUNA = "NINGUNA"
    AMARILLA = "AMARILLA"
    ROJA = "ROJA"


class EstadoDeuda(str, Enum):
    SIN_DEUDA = "SIN_DEUDA"
    PENDIENTE = "PENDIENTE"
    LIQUIDADO = "LIQUIDADO"
    EXONERADO = "EXONERADO"


class TipoExoneracion(str, Enum):
    SIN_EXONERACION = "SIN_EXONERACION"
    PARCIAL = "PARCIAL"
    TOTAL = "TOTAL"


class EstadoExpedienteLegal(str, Enum):
    EN_REGISTRO = "EN_REGISTRO"
    PENDIENTE_VALIDACION_ADMISION = "PENDIENTE_VALIDACION_ADMISION"
    VALIDADO_ADMISION = "VALIDADO_ADMISION"
    RECHAZADO_ADMISION = "RECHAZADO_ADMISION"
    AUTORIZADO_JEFE_GUARDIA = "AUTORIZADO_JEFE_GUARDIA"


class TipoDocumentoLegal(str, Enum):
    EPICRISIS = "EPICRISIS"
    OFICIO_POLICIAL = "OFICIO_POLICIAL"
    ACTA_LEVANTAMIENTO = "ACTA_LEVANTAMIENTO"
    CERTIFICADO_DEFUNCION = "CERTIFICADO_DEFUNCION"
    OTROS = "OTROS"


REQUIRED_LEGAL_DOCUMENTS = (
    TipoDocumentoLegal.EPICRISIS,
    TipoDocumentoLegal.OFICIO_POLICIAL,
    TipoDocumentoLegal.ACTA_LEVANTAMIENTO,
)


class TipoAutoridad(str, Enum):
    POLICIA = "POLICIA"
    FISCAL = "FISCAL"
    MEDICO_LEGISTA = "MEDICO_LEGISTA"


class TipoRetiro(str, Enum):
    FAMILIAR = "FAMILIAR"
    AUTORIDAD_LEGAL = "AUTORIDAD_LEGAL"


class EstadoActaRetiro(str, Enum):
    BORRADOR = "BORRADOR"
    FIRMADA = "FIRMADA"
    ANULADA = "ANULADA"


LEGAL_FILE_TRANSITIONS: dict[EstadoExpedienteLegal, set[EstadoExpedienteLegal]] = {
    EstadoExpedienteLegal.EN_REGISTRO: {EstadoExpedienteLegal.PENDIENTE_VALIDACION_ADMISION},
    EstadoExpedienteLegal.PENDIENTE_VALIDACION_ADMISION: {
        EstadoExpedienteLegal.VALIDADO_ADMISION,
        EstadoExpedienteLegal.RECHAZADO_ADMISION,
    },
    EstadoExpedienteLegal.RECHAZADO_ADMISION: {
        EstadoExpedienteLegal.PENDIENTE_VALIDACION_ADMISION,
        EstadoExpedienteLegal.VALIDADO_ADMISION,
        EstadoExpedienteLegal.RECHAZADO_ADMISION,
    },
    EstadoExpedienteLegal.VALIDADO_ADMISION: {EstadoExpedienteLegal.AUTORIZADO_JEFE_GUARDIA},
    EstadoExpedienteLegal.AUTORIZADO_JEFE_GUARDIA: set(),
}


@dataclass(frozen=True)
class BlockingReason:
    code: str
    message: str


class User(UserMixin, db.Model):
    __tablename__ = "user_account"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(db.String(255), unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(db.String(120), nullable=False)
    password_hash: Mapped[str] = mapped_column(db.String(255), nullable=False)
    role: Mapped[Rol] = mapped_column(SAEnum(Rol, name="rol"), nullable=False)
    servicio: Mapped[str] = mapped_column(db.String(80), nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class Expediente(db.Model):
    __tablename__ = "expediente"
    __table_args__ = (
        Index("ix_expediente_estado_created", "estado", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    codigo: Mapped[str] = mapped_column(db.String(20), unique=True, nullable=False)
    tipo: Mapped[TipoExpediente] = mapped_column(
        SAEnum(TipoExpediente, name="tipo_expediente"),
        nullable=False,
        default=TipoExpediente.INTERNO,
    )
    hc: Mapped[str] = mapped_column(db.String(20), unique=True, nullable=False)
    tipo_documento: Mapped[TipoDocumentoIdentidad] = mapped_column(
        SAEnum(TipoDocumentoIdentidad, name="tipo_documento_identidad"),
        nullable=False,
        default=TipoDocumentoIdentidad.DNI,
    )
    numero_documento: Mapped[str] = mapped_column(db.String(20), nullable=False, default="")
    apellido_paterno: Mapped[str] = mapped_column(db.String(60), nullable=False)
    apellido_materno: Mapped[str] = mapped_column(db.String(60), nullable=False, default="")
    nombres: Mapped[str] = mapped_column(db.String(120), nullable=False)
    fecha_nacimiento: Mapped[date | None] = mapped_column(nullable=True)
    servicio_fallecimiento: Mapped[str] = mapped_column(db.String(80), nullable=False)
    numero_cama: Mapped[str] = mapped_column(db.String(20), nullable=False, default="")
    fecha_hora_fallecimiento: Mapped[datetime] = mapped_column(nullable=False)
    medico_certifica_nombre: Mapped[str] = mapped_column(db.String(120), nullable=False)
    medico_cmp: Mapped[str] = mapped_column(db.String(20), nullable=False, default="")
    diagnostico_final: Mapped[str] = mapped_column(db.String(500), nullable=False, default="")
    numero_certificado_defuncion: Mapped[str | None] = mapped_column(db.String(30), unique=True, nullable=True)
    estado: Mapped[EstadoExpediente] = mapped_column(
        SAEnum(EstadoExpediente, name="estado_expediente"),
        nullable=False,
        default=EstadoExpediente.EN_PISO,
    )
    bandeja_actual_id: Mapped[int | None] = mapped_column(
        ForeignKey("bandeja.id", use_alter=True, name="fk_expediente_bandeja_actual"),
        nullable=True,
    )
    brazalete_generado_at: Mapped[datetime | None] = mapped_column(nullable=True)
    fecha_ingreso_mortuorio: Mapped[datetime | None] = mapped_column(nullable=True)
    usuario_creador_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    eliminado: Mapped[bool] = mapped_column(nullable=False, default=False)
    motivo_eliminacion: Mapped[str | None] = mapped_column(db.String(500), nullable=True)
    eliminado_at: Mapped[datetime | None] = mapped_column(nullable=True)

    usuario_creador = relationship("User", foreign_keys=[usuario_creador_id])
    bandeja_actual = relationship("Bandeja", foreign_keys=[bandeja_actual_id], post_update=True)
    deuda_economica = relationship("DeudaEconomica", back_populates="expediente", uselist=False)
    deuda_sangre = relationship("DeudaSangre", back_populates="expediente", uselist=False)
    expediente_legal = relationship("ExpedienteLegal", back_populates="expediente", uselist=False)
    acta_retiro = relationship("ActaRetiro", back_populates="expediente", uselist=False)
    salida = relationship("SalidaMortuorio", back_populates="expediente", uselist=False)
    eventos = relationship(
        "EventoExpediente",
        back_populates="expediente",
        order_by="EventoExpediente.id",
        cascade="all, delete-orphan",
    )
    solicitudes_correccion = relationship("SolicitudCorreccion", back_populates="expediente")
    custodias = relationship("CustodiaTransferencia", back_populates="expediente")
    verificaciones = relationship("VerificacionMortuorio", back_populates="expediente")

    @property
    def nombre_completo(self) -> str:
        apellidos = f"{self.apellido_paterno} {self.apellido_materno}".strip()
        return f"{apellidos}, {self.nombres}"

    @property
    def es_externo(self) -> bool:
        return self.tipo == TipoExpediente.EXTERNO

    def debts_block_release(self) -> bool:
        financial = self.deuda_economica.blocks_release() if self.deuda_economica else False
        blood = self.deuda_sangre.blocks_release() if self.deuda_sangre else False
        return financial or blood

    def consistency_violations(self) -> list[str]:
        issues: list[str] = []
        in_tray = {EstadoExpediente.EN_BANDEJA, EstadoExpediente.PENDIENTE_RETIRO}
        if self.estado in in_tray and self.bandeja_actual_id is None:
            issues.append(f"Estado {self.estado.value} sin bandeja asignada")
        if self.estado not in in_tray and self.bandeja_actual_id is not None:
            issues.append(f"Estado {self.estado.value} con bandeja asignada")
        if self.estado == EstadoExpediente.RETIRADO and self.salida is None:
            issues.append("Expediente retirado sin registro de salida")
        if self.estado != EstadoExpediente.RETIRADO and self.salida is not None:
            issues.append("Registro de salida en expediente no retirado")
        if self.expediente_legal is not None and not self.es_externo:
            issues.append("Expediente legal asociado a un caso interno")
        return issues

    def assert_consistent(self) -> None:
        issues = self.consistency_violations()
        if issues:
            raise errors.InconsistentCaseState(f"Expediente {self.codigo}: {'; '.join(issues)}")


class EventoExpediente(db.Model):
    __tablename__ = "evento_expediente"
    __table_args__ = (Index("ix_evento_expediente_fecha", "expediente_id", "fecha"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    expediente_id: Mapped[int] = mapped_column(ForeignKey("expediente.id"), nullable=False)
    tipo: Mapped[str] = mapped_column(db.String(40), nullable=False)
    estado_anterior: Mapped[str | None] = mapped_column(db.String(40), nullable=True)
    estado_nuevo: Mapped[str | None] = mapped_column(db.String(40), nullable=True)
    detalle: Mapped[str] = mapped_column(db.String(500), nullable=False, default="")
    fecha: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)

    expediente = relationship("Expediente", back_populates="eventos")
    user = relationship("User")


class CustodiaTransferencia(db.Model):
    __tablename__ = "custodia_transferencia"

    id: Mapped[int] = mapped_column(primary_key=True)
    expediente_id: Mapped[int] = mapped_column(ForeignKey("expediente.id"), nullable=False, index=True)
    usuario_origen_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)
    usuario_destino_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)
    fecha: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    observaciones: Mapped[str] = mapped_column(db.String(500), nullable=False, default="")

    expediente = relationship("Expediente", back_populates="custodias")


class VerificacionMortuorio(db.Model):
    __tablename__ = "verificacion_mortuorio"

    id: Mapped[int] = mapped_column(primary_key=True)
    expediente_id: Mapped[int] = mapped_column(ForeignKey("expediente.id"), nullable=False, index=True)
    vigilante_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)
    fecha: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    aprobada: Mapped[bool] = mapped_column(nullable=False)
    codigo_coincide: Mapped[bool] = mapped_column(nullable=False, default=True)
    hc_coincide: Mapped[bool] = mapped_column(nullable=False, default=True)
    documento_coincide: Mapped[bool] = mapped_column(nullable=False, default=True)
    observaciones: Mapped[str] = mapped_column(db.String(500), nullable=False, default="")

    expediente = relationship("Expediente", back_populates="verificaciones")

    @property
    def discrepancias(self) -> list[str]:
        labels = []
        if not self.codigo_coincide:
            labels.append("codigo de brazalete")
        if not self.hc_coincide:
            labels.append("historia clinica")
        if not self.documento_coincide:
            labels.append("documento de identidad")
        return labels


class SolicitudCorreccion(db.Model):
    __tablename__ = "solicitud_correccion"
    __table_args__ = (Index("ix_solicitud_correccion_resuelta", "resuelta", "fecha_solicitud"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    expediente_id: Mapped[int] = mapped_column(ForeignKey("expediente.id"), nullable=False, index=True)
    usuario_solicita_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)
    usuario_responsable_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)
    servicio_origen: Mapped[str] = mapped_column(db.String(80), nullable=False)
    datos_incorrectos: Mapped[str] = mapped_column(db.String(500), nullable=False)
    descripcion_problema: Mapped[str] = mapped_column(db.String(1000), nullable=False)
    fecha_solicitud: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    resuelta: Mapped[bool] = mapped_column(nullable=False, default=False)
    fecha_resolucion: Mapped[datetime | None] = mapped_column(nullable=True)
    descripcion_resolucion: Mapped[str | None] = mapped_column(db.String(1000), nullable=True)
    brazalete_reimpreso: Mapped[bool] = mapped_column(nullable=False, default=False)
    notificado_supervisora: Mapped[bool] = mapped_column(nullable=False, default=False)
    fecha_notificacion_supervisora: Mapped[datetime | None] = mapped_column(nullable=True)

    expediente = relationship("Expediente", back_populates="solicitudes_correccion")
    usuario_responsable = relationship("User", foreign_keys=[usuario_responsable_id])

    def tiempo_transcurrido(self, at: datetime | None = None) -> timedelta:
        end = self.fecha_resolucion if self.resuelta else (at or utcnow())
        return end - self.fecha_solicitud

    def supera_tiempo_alerta(self, at: datetime | None = None, hours: int = CORRECTION_ALERT_HOURS) -> bool:
        return not self.resuelta and self.tiempo_transcurrido(at) >= timedelta(hours=hours)

    def resolver(self, descripcion: str, brazalete_reimpreso: bool) -> None:
        if self.resuelta:
            raise errors.InvalidTransition("Esta solicitud ya fue resuelta")
        if _blank(descripcion):
            raise errors.MissingField("Debe describir la resolucion")
        self.resuelta = True
        self.fecha_resolucion = utcnow()
        self.descripcion_resolucion = descripcion.strip()
        self.brazalete_reimpreso = brazalete_reimpreso

    def notificar_supervisora(self) -> bool:
        if self.notificado_supervisora:
            return False
        self.notificado_supervisora = True
        self.fecha_notificacion_supervisora = utcnow()
        return True


class Bandeja(db.Model):
    __tablename__ = "bandeja"

    id: Mapped[int] = mapped_column(primary_key=True)
    codigo: Mapped[str] = mapped_column(db.String(10), unique=True, nullable=False)
    estado: Mapped[BandejaEstado] = mapped_column(
        SAEnum(BandejaEstado, name="bandeja_estado"),
        nullable=False,
        default=BandejaEstado.DISPONIBLE,
    )
    expediente_id: Mapped[int | None] = mapped_column(ForeignKey("expediente.id"), unique=True, nullable=True)
    usuario_asigna_id: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)
    fecha_asignacion: Mapped[datetime | None] = mapped_column(nullable=True)
    usuario_libera_id: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)
    fecha_liberacion: Mapped[datetime | None] = mapped_column(nullable=True)
    observaciones: Mapped[str | None] = mapped_column(db.String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    eliminado: Mapped[bool] = mapped_column(nullable=False, default=False)

    expediente = relationship("Expediente", foreign_keys=[expediente_id])
    movimientos = relationship("MovimientoBandeja", back_populates="bandeja", order_by="MovimientoBandeja.id")

    def esta_disponible(self) -> bool:
        return self.estado == BandejaEstado.DISPONIBLE and not self.eliminado

    def esta_ocupada(self) -> bool:
        return self.estado == BandejaEstado.OCUPADA and self.expediente_id is not None

    def tiempo_ocupada(self, at: datetime | None = None) -> timedelta | None:
        if not self.esta_ocupada() or self.fecha_asignacion is None:
            return None
        return (at or utcnow()) - self.fecha_asignacion

    def nivel_alerta(
        self,
        at: datetime | None = None,
        alert_hours: int | None = None,
        critical_hours: int | None = None,
    ) -> NivelAlerta:
        elapsed = self.tiempo_ocupada(at)
        if elapsed is None:
            return NivelAlerta.NINGUNA
        default_alert, default_critical = tray_alert_thresholds()
        if elapsed >= timedelta(hours=critical_hours if critical_hours is not None else default_critical):
            return NivelAlerta.ROJA
        if elapsed >= timedelta(hours=alert_hours if alert_hours is not None else default_alert):
            return NivelAlerta.AMARILLA
        return NivelAlerta.NINGUNA

    def liberar(self, usuario_id: int) -> None:
        if not self.esta_ocupada():
            raise errors.SlotNotOccupied(f"La bandeja {self.codigo} no esta ocupada")
        self.estado = BandejaEstado.DISPONIBLE
        self.expediente_id = None
        self.usuario_libera_id = usuario_id
        self.fecha_liberacion = utcnow()
        self.updated_at = self.fecha_liberacion

    def iniciar_mantenimiento(self, motivo: str) -> None:
        if self.esta_ocupada():
            raise errors.SlotOccupied(
                f"No se puede iniciar mantenimiento: la bandeja {self.codigo} esta ocupada"
            )
        if _blank(motivo):
            raise errors.MissingJustification("Debe indicar el motivo del mantenimiento")
        if self.estado == BandejaEstado.MANTENIMIENTO:
            raise errors.InvalidTransition(f"La bandeja {self.codigo} ya esta en mantenimiento")
        self.estado = BandejaEstado.MANTENIMIENTO
        self.observaciones = motivo.strip()
        self.updated_at = utcnow()

    def finalizar_mantenimiento(self) -> None:
        if self.estado != BandejaEstado.MANTENIMIENTO:
            raise errors.InvalidTransition(
                f"La bandeja {self.codigo} no esta en mantenimiento. Estado actual: {self.estado.value}"
            )
        moment = utcnow()
        self.estado = BandejaEstado.DISPONIBLE
        self.observaciones = f"Mantenimiento finalizado el {moment:%d/%m/%Y %H:%M}. Motivo previo: {self.observaciones}"
        self.updated_at = moment

    def marcar_fuera_de_servicio(self, motivo: str) -> None:
        if self.esta_ocupada():
            raise errors.SlotOccupied(
                f"No se puede marcar fuera de servicio: la bandeja {self.codigo} esta ocupada"
            )
        if _blank(motivo):
            raise errors.MissingJustification("Debe indicar el motivo de fuera de servicio")
        self.estado = BandejaEstado.FUERA_DE_SERVICIO
        self.observaciones = motivo.strip()
        self.updated_at = utcnow()


class MovimientoBandeja(db.Model):
    __tablename__ = "movimiento_bandeja"

    id: Mapped[int] = mapped_column(primary_key=True)
    bandeja_id: Mapped[int] = mapped_column(ForeignKey("bandeja.id"), nullable=False, index=True)
    expediente_id: Mapped[int | None] = mapped_column(ForeignKey("expediente.id"), nullable=True)
    accion: Mapped[AccionBandeja] = mapped_column(SAEnum(AccionBandeja, name="accion_bandeja"), nullable=False)
    fecha: Mapped[datetime] = mapped_column(default=utcnow, nullable=False, index=True)
    detalle: Mapped[str] = mapped_column(db.String(500), nullable=False, default="")
    user_id: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)

    bandeja = relationship("Bandeja", back_populates="movimientos")


class DeudaEconomica(db.Model):
    __tablename__ = "deuda_economica"
    __table_args__ = (
        CheckConstraint("monto_deuda >= 0", name="ck_deuda_economica_monto"),
        CheckConstraint("monto_exonerado >= 0 AND monto_pagado >= 0", name="ck_deuda_economica_abonos"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    expediente_id: Mapped[int] = mapped_column(ForeignKey("expediente.id"), unique=True, nullable=False)
    monto_deuda: Mapped[Decimal] = mapped_column(db.Numeric(10, 2), nullable=False, default=ZERO)
    monto_exonerado: Mapped[Decimal] = mapped_column(db.Numeric(10, 2), nullable=False, default=ZERO)
    monto_pagado: Mapped[Decimal] = mapped_column(db.Numeric(10, 2), nullable=False, default=ZERO)
    estado: Mapped[EstadoDeuda] = mapped_column(
        SAEnum(EstadoDeuda, name="estado_deuda"),
        nullable=False,
        default=EstadoDeuda.PENDIENTE,
    )
    tipo_exoneracion: Mapped[TipoExoneracion] = mapped_column(
        SAEnum(TipoExoneracion, name="tipo_exoneracion"),
        nullable=False,
        default=TipoExoneracion.SIN_EXONERACION,
    )
    observaciones_exoneracion: Mapped[str | None] = mapped_column(db.String(1000), nullable=True)
    asistenta_social_id: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)
    fecha_exoneracion: Mapped[datetime | None] = mapped_column(nullable=True)
    usuario_registro_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)
    fecha_registro: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    usuario_actualizacion_id: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)
    fecha_actualizacion: Mapped[datetime | None] = mapped_column(nullable=True)

    expediente = relationship("Expediente", back_populates="deuda_economica")
    pagos = relationship("PagoDeudaEconomica", back_populates="deuda", order_by="PagoDeudaEconomica.id")

    @property
    def monto_pendiente(self) -> Decimal:
        return _money(self.monto_deuda) - _money(self.monto_exonerado) - _money(self.monto_pagado)

    def blocks_release(self) -> bool:
        return self.estado == EstadoDeuda.PENDIENTE and self.monto_pendiente > ZERO

    def semaforo(self) -> str:
        return "DEBE" if self.blocks_release() else "NO DEBE"

    def _recompute_estado(self) -> None:
        if self.monto_pendiente > ZERO:
            self.estado = EstadoDeuda.PENDIENTE
        elif _money(self.monto_pagado) > ZERO:
            self.estado = EstadoDeuda.LIQUIDADO
        else:
            self.estado = EstadoDeuda.EXONERADO

    def _touch(self, usuario_id: int) -> None:
        self.usuario_actualizacion_id = usuario_id
        self.fecha_actualizacion = utcnow()

    def registrar_pago(self, monto: Decimal, usuario_id: int) -> None:
        amount = _money(monto)
        if self.estado in {EstadoDeuda.LIQUIDADO, EstadoDeuda.EXONERADO}:
            raise errors.AlreadySettled(f"La deuda ya esta {self.estado.value}")
        if self.estado != EstadoDeuda.PENDIENTE:
            raise errors.DebtNotPending("El expediente esta marcado sin deuda economica")
        if amount <= ZERO:
            raise errors.InvalidAmount("El monto pagado debe ser mayor a cero")
        if amount > self.monto_pendiente:
            raise errors.InvalidAmount(
                f"El monto pagado ({amount}) supera el saldo pendiente ({self.monto_pendiente})"
            )
        self.monto_pagado = _money(self.monto_pagado) + amount
        self._recompute_estado()
        self._touch(usuario_id)

    def aplicar_exoneracion(self, monto: Decimal, justificacion: str, usuario_id: int) -> None:
        amount = _money(monto)
        if amount <= ZERO:
            raise errors.InvalidAmount("El monto de exoneracion debe ser mayor a cero")
        if _blank(justificacion):
            raise errors.MissingJustification("Debe justificar la exoneracion")
        if self.estado == EstadoDeuda.LIQUIDADO:
            raise errors.AlreadySettled("No se puede exonerar una deuda liquidada")
        if self.estado != EstadoDeuda.PENDIENTE:
            raise errors.DebtNotPending(f"No se puede exonerar una deuda en estado {self.estado.value}")
        if amount > self.monto_pendiente:
            raise errors.InvalidAmount(
                f"El monto de exoneracion ({amount}) supera el saldo pendiente ({self.monto_pendiente})"
            )
        self.monto_exonerado = _money(self.monto_exonerado) + amount
        self.tipo_exoneracion = (
            TipoExoneracion.TOTAL if self.monto_exonerado >= _money(self.monto_deuda) else TipoExoneracion.PARCIAL
        )
        self.observaciones_exoneracion = justificacion.strip()
        self.asistenta_social_id = usuario_id
        self.fecha_exoneracion = utcnow()
        self._recompute_estado()
        self._touch(usuario_id)

    def marcar_sin_deuda(self, usuario_id: int) -> None:
        self.monto_deuda = ZERO
        self.monto_exonerado = ZERO
        self.monto_pagado = ZERO
        self.tipo_exoneracion = TipoExoneracion.SIN_EXONERACION
        self.estado = EstadoDeuda.SIN_DEUDA
        self._touch(usuario_id)


class PagoDeudaEconomica(db.Model):
    __tablename__ = "pago_deuda_economica"

    id: Mapped[int] = mapped_column(primary_key=True)
    deuda_id: Mapped[int] = mapped_column(ForeignKey("deuda_economica.id"), nullable=False, index=True)
    numero_boleta: Mapped[str] = mapped_column(db.String(40), unique=True, nullable=False)
    monto: Mapped[Decimal] = mapped_column(db.Numeric(10, 2), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)
    fecha: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    deuda = relationship("DeudaEconomica", back_populates="pagos")


class DeudaSangre(db.Model):
    __tablename__ = "deuda_sangre"

    id: Mapped[int] = mapped_column(primary_key=True)
    expediente_id: Mapped[int] = mapped_column(ForeignKey("expediente.id"), unique=True, nullable=False)
    cantidad_unidades: Mapped[int] = mapped_column(nullable=False, default=0)
    tipo_sangre: Mapped[str | None] = mapped_column(db.String(5), nullable=True)
    estado: Mapped[EstadoDeuda] = mapped_column(
        SAEnum(EstadoDeuda, name="estado_deuda"),
        nullable=False,
        default=EstadoDeuda.PENDIENTE,
    )
    familiar_compromiso_nombre: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    familiar_compromiso_documento: Mapped[str | None] = mapped_column(db.String(20), nullable=True)
    fecha_liquidacion: Mapped[datetime | None] = mapped_column(nullable=True)
    anulada_por_medico: Mapped[bool] = mapped_column(nullable=False, default=False)
    medico_anula_id: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)
    justificacion_anulacion: Mapped[str | None] = mapped_column(db.String(1000), nullable=True)
    fecha_anulacion: Mapped[datetime | None] = mapped_column(nullable=True)
    usuario_registro_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)
    fecha_registro: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    usuario_actualizacion_id: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)
    fecha_actualizacion: Mapped[datetime | None] = mapped_column(nullable=True)

    expediente = relationship("Expediente", back_populates="deuda_sangre")

    def blocks_release(self) -> bool:
        return self.estado == EstadoDeuda.PENDIENTE

    def semaforo(self) -> str:
        return "DEBE" if self.blocks_release() else "NO DEBE"

    def _touch(self, usuario_id: int) -> None:
        self.usuario_actualizacion_id = usuario_id
        self.fecha_actualizacion = utcnow()

    def liquidar(self, familiar_nombre: str, familiar_documento: str, usuario_id: int) -> None:
        if self.estado != EstadoDeuda.PENDIENTE:
            raise errors.DebtNotPending(
                f"Solo se pueden liquidar deudas pendientes. Estado actual: {self.estado.value}"
            )
        if _blank(familiar_nombre) or _blank(familiar_documento):
            raise errors.MissingField("El compromiso requiere nombre y documento del familiar")
        self.familiar_compromiso_nombre = familiar_nombre.strip()
        self.familiar_compromiso_documento = familiar_documento.strip()
        self.fecha_liquidacion = utcnow()
        self.estado = EstadoDeuda.LIQUIDADO
        self._touch(usuario_id)

    def anular_por_medico(self, medico_id: int, justificacion: str) -> None:
        text = (justificacion or "").strip()
        if len(text) < MIN_OVERRIDE_JUSTIFICATION:
            raise errors.JustificationTooShort(
                f"La justificacion debe tener al menos {MIN_OVERRIDE_JUSTIFICATION} caracteres"
            )
        if self.estado != EstadoDeuda.PENDIENTE:
            raise errors.DebtNotPending(
                f"Solo se pueden anular deudas pendientes. Estado actual: {self.estado.value}"
            )
        self.anulada_por_medico = True
        self.medico_anula_id = medico_id
        self.justificacion_anulacion = text
        self.fecha_anulacion = utcnow()
        self.estado = EstadoDeuda.EXONERADO
        self._touch(medico_id)

    def marcar_sin_deuda(self, usuario_id: int) -> None:
        self.cantidad_unidades = 0
        self.estado = EstadoDeuda.SIN_DEUDA
        self._touch(usuario_id)


class ExpedienteLegal(db.Model):
    __tablename__ = "expediente_legal"

    id: Mapped[int] = mapped_column(primary_key=True)
    expediente_id: Mapped[int] = mapped_column(ForeignKey("expediente.id"), unique=True, nullable=False)
    estado: Mapped[EstadoExpedienteLegal] = mapped_column(
        SAEnum(EstadoExpedienteLegal, name="estado_expediente_legal"),
        nullable=False,
        default=EstadoExpedienteLegal.EN_REGISTRO,
    )
    observaciones: Mapped[str] = mapped_column(db.String(1000), nullable=False, default="")
    usuario_registro_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    fecha_envio_admision: Mapped[datetime | None] = mapped_column(nullable=True)
    usuario_admision_id: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)
    fecha_validacion_admision: Mapped[datetime | None] = mapped_column(nullable=True)
    observaciones_admision: Mapped[str | None] = mapped_column(db.String(1000), nullable=True)
    usuario_jefe_guardia_id: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)
    fecha_autorizacion: Mapped[datetime | None] = mapped_column(nullable=True)
    observaciones_jefe_guardia: Mapped[str | None] = mapped_column(db.String(1000), nullable=True)

    expediente = relationship("Expediente", back_populates="expediente_legal")
    documentos = relationship("DocumentoLegal", back_populates="expediente_legal", order_by="DocumentoLegal.id")
    autoridades = relationship("AutoridadExterna", back_populates="expediente_legal", order_by="AutoridadExterna.id")

    def tipos_documentos_pendientes(self) -> set[TipoDocumentoLegal]:
        attached = {doc.tipo for doc in self.documentos}
        return set(REQUIRED_LEGAL_DOCUMENTS) - attached

    @property
    def documentos_completos(self) -> bool:
        return not self.tipos_documentos_pendientes()

    @property
    def autorizado(self) -> bool:
        return self.estado == EstadoExpedienteLegal.AUTORIZADO_JEFE_GUARDIA

    @property
    def admite_cambios(self) -> bool:
        return self.estado in {EstadoExpedienteLegal.EN_REGISTRO, EstadoExpedienteLegal.RECHAZADO_ADMISION}

    def deadline_48h(self, hours: int = LEGAL_DOCUMENTS_DEADLINE_HOURS) -> datetime | None:
        if self.documentos_completos or self.autorizado:
            return None
        return self.created_at + timedelta(hours=hours)

    def _transition(self, target: EstadoExpedienteLegal) -> None:
        if target not in LEGAL_FILE_TRANSITIONS.get(self.estado, set()):
            raise errors.InvalidTransition(
                f"Transicion invalida del expediente legal: {self.estado.value} -> {target.value}"
            )
        self.estado = target

    def submit_for_review(self) -> None:
        if not self.admite_cambios:
            raise errors.InvalidTransition(
                f"El expediente legal no se puede enviar a Admision desde {self.estado.value}"
            )
        pending = self.tipos_documentos_pendientes()
        if pending:
            names = ", ".join(sorted(t.value for t in pending))
            raise errors.IncompleteDocuments(f"Faltan documentos obligatorios: {names}")
        self._transition(EstadoExpedienteLegal.PENDIENTE_VALIDACION_ADMISION)
        self.fecha_envio_admision = utcnow()

    def review_by_admissions(self, approved: bool, usuario_id: int, notes: str | None) -> None:
        if self.estado not in {
            EstadoExpedienteLegal.PENDIENTE_VALIDACION_ADMISION,
            EstadoExpedienteLegal.RECHAZADO_ADMISION,
        }:
            raise errors.InvalidTransition(
                f"El expediente legal no esta pendiente de validacion. Estado actual: {self.estado.value}"
            )
        if not approved and _blank(notes):
            raise errors.MissingJustification("Debe indicar el motivo del rechazo")
        self._transition(
            EstadoExpedienteLegal.VALIDADO_ADMISION if approved else EstadoExpedienteLegal.RECHAZADO_ADMISION
        )
        self.usuario_admision_id = usuario_id
        self.fecha_validacion_admision = utcnow()
        self.observaciones_admision = (notes or "").strip() or None

    def authorize_by_shift_supervisor(self, usuario_id: int, notes: str | None) -> None:
        if self.estado != EstadoExpedienteLegal.VALIDADO_ADMISION:
            raise errors.NotYetValidated(
                f"El expediente legal no esta validado por Admision. Estado actual: {self.estado.value}"
            )
        self._transition(EstadoExpedienteLegal.AUTORIZADO_JEFE_GUARDIA)
        self.usuario_jefe_guardia_id = usuario_id
        self.fecha_autorizacion = utcnow()
        self.observaciones_jefe_guardia = (notes or "").strip() or None


class DocumentoLegal(db.Model):
    __tablename__ = "documento_legal"

    id: Mapped[int] = mapped_column(primary_key=True)
    expediente_legal_id: Mapped[int] = mapped_column(ForeignKey("expediente_legal.id"), nullable=False, index=True)
    tipo: Mapped[TipoDocumentoLegal] = mapped_column(
        SAEnum(TipoDocumentoLegal, name="tipo_documento_legal"),
        nullable=False,
    )
    referencia: Mapped[str] = mapped_column(db.String(255), nullable=False)
    nombre_archivo: Mapped[str] = mapped_column(db.String(255), nullable=False)
    tamano_bytes: Mapped[int] = mapped_column(nullable=False, default=0)
    usuario_sube_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)
    fecha_subida: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    expediente_legal = relationship("ExpedienteLegal", back_populates="documentos")


class AutoridadExterna(db.Model):
    __tablename__ = "autoridad_externa"

    id: Mapped[int] = mapped_column(primary_key=True)
    expediente_legal_id: Mapped[int] = mapped_column(ForeignKey("expediente_legal.id"), nullable=False, index=True)
    tipo: Mapped[TipoAutoridad] = mapped_column(SAEnum(TipoAutoridad, name="tipo_autoridad"), nullable=False)
    nombre_completo: Mapped[str] = mapped_column(db.String(120), nullable=False)
    numero_documento: Mapped[str] = mapped_column(db.String(20), nullable=False)
    institucion: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    cargo: Mapped[str] = mapped_column(db.String(80), nullable=False, default="")
    codigo_especial: Mapped[str] = mapped_column(db.String(30), nullable=False, default="")
    placa_vehiculo: Mapped[str] = mapped_column(db.String(15), nullable=False, default="")
    fecha_llegada: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    usuario_registro_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)

    expediente_legal = relationship("ExpedienteLegal", back_populates="autoridades")


FAMILY_FIELDS = ("familiar_nombre", "familiar_numero_documento", "parentesco")
AUTHORITY_FIELDS = ("numero_oficio", "tipo_autoridad", "institucion", "autoridad_nombre", "autoridad_numero_documento")


class ActaRetiro(db.Model):
    __tablename__ = "acta_retiro"

    id: Mapped[int] = mapped_column(primary_key=True)
    expediente_id: Mapped[int] = mapped_column(ForeignKey("expediente.id"), unique=True, nullable=False)
    tipo_retiro: Mapped[TipoRetiro] = mapped_column(SAEnum(TipoRetiro, name="tipo_retiro"), nullable=False)
    estado: Mapped[EstadoActaRetiro] = mapped_column(
        SAEnum(EstadoActaRetiro, name="estado_acta_retiro"),
        nullable=False,
        default=EstadoActaRetiro.BORRADOR,
    )
    numero_certificado_defuncion: Mapped[str | None] = mapped_column(db.String(30), nullable=True)

    familiar_nombre: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    familiar_numero_documento: Mapped[str | None] = mapped_column(db.String(20), nullable=True)
    parentesco: Mapped[str | None] = mapped_column(db.String(40), nullable=True)
    familiar_telefono: Mapped[str | None] = mapped_column(db.String(20), nullable=True)

    numero_oficio: Mapped[str | None] = mapped_column(db.String(40), nullable=True)
    tipo_autoridad: Mapped[TipoAutoridad | None] = mapped_column(
        SAEnum(TipoAutoridad, name="tipo_autoridad"),
        nullable=True,
    )
    institucion: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    autoridad_nombre: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    autoridad_numero_documento: Mapped[str | None] = mapped_column(db.String(20), nullable=True)
    autoridad_placa_vehiculo: Mapped[str | None] = mapped_column(db.String(15), nullable=True)

    firmado_responsable: Mapped[bool] = mapped_column(nullable=False, default=False)
    fecha_firma_responsable: Mapped[datetime | None] = mapped_column(nullable=True)
    firmado_admision: Mapped[bool] = mapped_column(nullable=False, default=False)
    fecha_firma_admision: Mapped[datetime | None] = mapped_column(nullable=True)
    firmado_supervisor_vigilancia: Mapped[bool] = mapped_column(nullable=False, default=False)
    fecha_firma_supervisor_vigilancia: Mapped[datetime | None] = mapped_column(nullable=True)

    documento_firmado_referencia: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    documento_firmado_nombre: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    documento_firmado_tamano: Mapped[int | None] = mapped_column(nullable=True)
    usuario_sube_firmado_id: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)
    fecha_subida_firmado: Mapped[datetime | None] = mapped_column(nullable=True)

    usuario_registro_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    expediente = relationship("Expediente", back_populates="acta_retiro")

    @validates("tipo_autoridad")
    def _validate_tipo_autoridad(self, _key, value):
        if value is None or isinstance(value, TipoAutoridad):
            return value
        try:
            return TipoAutoridad[str(value).strip().upper()]
        except KeyError as exc:
            raise errors.InvalidValue(f"Tipo de autoridad invalido: {value}") from exc

    @property
    def es_familiar(self) -> bool:
        return self.tipo_retiro == TipoRetiro.FAMILIAR

    @property
    def firmada_completa(self) -> bool:
        return self.firmado_responsable and self.firmado_admision and self.firmado_supervisor_vigilancia

    def campos_de_otro_tipo(self) -> list[str]:
        foreign = AUTHORITY_FIELDS + ("autoridad_placa_vehiculo",) if self.es_familiar else FAMILY_FIELDS + ("familiar_telefono",)
        return [name for name in foreign if getattr(self, name) not in (None, "")]

    def campos_faltantes(self) -> list[str]:
        if self.es_familiar:
            required = ("parentesco", "familiar_nombre", "familiar_numero_documento", "numero_certificado_defuncion")
        else:
            required = ("numero_oficio", "tipo_autoridad", "institucion")
        return [name for name in required if getattr(self, name) in (None, "")]

    def is_complete(self) -> bool:
        return not self.campos_faltantes()

    def validate_kind_fields(self) -> None:
        foreign = self.campos_de_otro_tipo()
        if foreign:
            raise errors.InconsistentRetrieverFields(
                f"Un acta {self.tipo_retiro.value} no admite los campos: {', '.join(foreign)}"
            )

    def validate_ready_for_document_generation(self) -> list[BlockingReason]:
        reasons: list[BlockingReason] = []
        if self.estado == EstadoActaRetiro.ANULADA:
            reasons.append(BlockingReason("ACTA_ANULADA", "El acta de retiro esta anulada"))
        for name in self.campos_de_otro_tipo():
            reasons.append(
                BlockingReason("CAMPO_DE_OTRO_TIPO", f"El campo {name} no corresponde a un retiro {self.tipo_retiro.value}")
            )
        missing = self.campos_faltantes()
        if missing:
            reasons.append(BlockingReason("ACTA_INCOMPLETA", "El acta de retiro no esta completa"))
        for name in missing:
            reasons.append(BlockingReason("CAMPO_OBLIGATORIO", f"Falta el campo {name}"))
        return reasons

    def mark_fully_signed(self, usuario_id: int, referencia: str, nombre_archivo: str, tamano: int) -> None:
        if self.estado == EstadoActaRetiro.ANULADA:
            raise errors.InvalidTransition("El acta de retiro esta anulada")
        moment = utcnow()
        self.firmado_responsable = True
        self.fecha_firma_responsable = moment
        self.firmado_admision = True
        self.fecha_firma_admision = moment
        self.firmado_supervisor_vigilancia = True
        self.fecha_firma_supervisor_vigilancia = moment
        self.documento_firmado_referencia = referencia
        self.documento_firmado_nombre = nombre_archivo
        self.documento_firmado_tamano = tamano
        self.usuario_sube_firmado_id = usuario_id
        self.fecha_subida_firmado = moment
        self.estado = EstadoActaRetiro.FIRMADA


class SalidaMortuorio(db.Model):
    __tablename__ = "salida_mortuorio"
    __table_args__ = (
        CheckConstraint(
            "(acta_retiro_id IS NULL AND expediente_legal_id IS NOT NULL)"
            " OR (acta_retiro_id IS NOT NULL AND expediente_legal_id IS NULL)",
            name="ck_salida_una_referencia",
        ),
        Index("ix_salida_fecha", "fecha_hora_salida"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    expediente_id: Mapped[int] = mapped_column(ForeignKey("expediente.id"), unique=True, nullable=False)
    tipo_salida: Mapped[TipoRetiro] = mapped_column(SAEnum(TipoRetiro, name="tipo_retiro"), nullable=False)
    acta_retiro_id: Mapped[int | None] = mapped_column(ForeignKey("acta_retiro.id"), nullable=True)
    expediente_legal_id: Mapped[int | None] = mapped_column(ForeignKey("expediente_legal.id"), nullable=True)
    bandeja_liberada_id: Mapped[int | None] = mapped_column(ForeignKey("bandeja.id"), nullable=True)
    registrado_por_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)
    fecha_hora_salida: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    responsable_nombre: Mapped[str] = mapped_column(db.String(120), nullable=False)
    responsable_documento: Mapped[str] = mapped_column(db.String(20), nullable=False)
    funeraria_nombre: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    conductor_nombre: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    conductor_documento: Mapped[str | None] = mapped_column(db.String(20), nullable=True)
    placa_vehiculo: Mapped[str | None] = mapped_column(db.String(15), nullable=True)
    destino: Mapped[str] = mapped_column(db.String(255), nullable=False, default="")
    observaciones: Mapped[str] = mapped_column(db.String(1000), nullable=False, default="")
    incidente_registrado: Mapped[bool] = mapped_column(nullable=False, default=False)
    detalle_incidente: Mapped[str | None] = mapped_column(db.String(1000), nullable=True)
    tiempo_permanencia_minutos: Mapped[int | None] = mapped_column(nullable=True)

    expediente = relationship("Expediente", back_populates="salida")
    acta_retiro = relationship("ActaRetiro")
    expediente_legal = relationship("ExpedienteLegal")

    def validate_reference_consistency(self) -> None:
        has_acta = self.acta_retiro_id is not None or self.acta_retiro is not None
        has_legal = self.expediente_legal_id is not None or self.expediente_legal is not None
        if self.tipo_salida == TipoRetiro.FAMILIAR and not (has_acta and not has_legal):
            raise errors.InconsistentReferenceKind(
                "Una salida FAMILIAR debe referenciar un acta de retiro y ningun expediente legal"
            )
        if self.tipo_salida == TipoRetiro.AUTORIDAD_LEGAL and not (has_legal and not has_acta):
            raise errors.InconsistentReferenceKind(
                "Una salida AUTORIDAD_LEGAL debe referenciar un expediente legal y ninguna acta de retiro"
            )

    def placa_efectiva(
        self,
        acta: ActaRetiro | None = None,
        legal: ExpedienteLegal | None = None,
    ) -> str | None:
        """Plate of the vehicle that takes the body.

        Authority exits may leave it blank and reuse the plate written in the
        acta or the one recorded when the authority arrived.
        """
        if not _blank(self.placa_vehiculo):
            return self.placa_vehiculo
        if self.tipo_salida != TipoRetiro.AUTORIDAD_LEGAL:
            return None
        if acta is None and self.expediente is not None:
            acta = self.expediente.acta_retiro
        if acta is not None and not _blank(acta.autoridad_placa_vehiculo):
            return acta.autoridad_placa_vehiculo
        legal = legal or self.expediente_legal
        if legal is not None:
            return next((a.placa_vehiculo for a in legal.autoridades if not _blank(a.placa_vehiculo)), None)
        return None

    def validate_documentation(
        self,
        acta: ActaRetiro | None = None,
        legal: ExpedienteLegal | None = None,
    ) -> list[str]:
        missing: list[str] = []
        if _blank(self.responsable_nombre) or _blank(self.responsable_documento):
            missing.append("Faltan los datos del responsable del retiro")
        if self.tipo_salida == TipoRetiro.FAMILIAR:
            if _blank(self.funeraria_nombre) or _blank(self.conductor_nombre) or _blank(self.conductor_documento):
                missing.append("Faltan datos completos de la funeraria")
            if _blank(self.placa_vehiculo):
                missing.append("Falta placa del vehiculo funerario")
        elif self.placa_efectiva(acta, legal) is None:
            missing.append("Falta placa del vehiculo oficial")
        return missing

    def register_incident(self, descripcion: str) -> None:
        if _blank(descripcion):
            raise errors.MissingDescription("Debe proporcionar detalles del incidente")
        self.incidente_registrado = True
        self.detalle_incidente = descripcion.strip()

    def compute_elapsed_storage_time(self, entry: datetime) -> timedelta:
        elapsed = self.fecha_hora_salida - entry
        self.tiempo_permanencia_minutos = int(elapsed.total_seconds() // 60)
        return elapsed

    def exceeded_limit(self) -> bool:
        if self.tiempo_permanencia_minutos is None:
            return False
        return self.tiempo_permanencia_minutos > STORAGE_LIMIT_HOURS * 60


def seed_demo_data(session) -> None:
    users = [
        ("admin@sgm.local", "Admin Mortuorio", "admin123", Rol.ADMIN, "Sistemas"),
        ("enfermeria@sgm.local", "Enfermera Piso 4", "enfermeria123", Rol.ENFERMERIA, "Medicina Interna"),
        ("medico@sgm.local", "Medico de Guardia", "medico123", Rol.MEDICO, "Emergencia"),
        ("ambulancia@sgm.local", "Tecnico Ambulancia", "ambulancia123", Rol.AMBULANCIA, "Transporte"),
        ("vigilante@sgm.local", "Vigilante Mortuorio", "vigilante123", Rol.VIGILANTE, "Vigilancia"),
        ("supervisor@sgm.local", "Supervisor Vigilancia", "supervisor123", Rol.SUPERVISOR_VIGILANCIA, "Vigilancia"),
        ("admision@sgm.local", "Admision Guardia", "admision123", Rol.ADMISION, "Admision"),
        ("jefeguardia@sgm.local", "Jefe de Guardia", "jefeguardia123", Rol.JEFE_GUARDIA, "Emergencia"),
        ("caja@sgm.local", "Cajero Central", "caja123", Rol.CAJA, "Caja"),
        ("social@sgm.local", "Asistenta Social", "social123", Rol.SERVICIO_SOCIAL, "Servicio Social"),
        ("banco@sgm.local", "Banco de Sangre", "banco123", Rol.BANCO_SANGRE, "Banco de Sangre"),
    ]
    session.add_all(
        [
            User(
                email=email,
                full_name=name,
                password_hash=generate_password_hash(password),
                role=role,
                servicio=servicio,
            )
            for email, name, password, role, servicio in users
        ]
    )
    session.add_all([Bandeja(codigo=f"B-{number:02d}") for number in range(1, 9)])
    session.commit()
