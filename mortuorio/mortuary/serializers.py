from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from mortuorio.core.models import (
    ActaRetiro,
    AutoridadExterna,
    Bandeja,
    BlockingReason,
    DeudaEconomica,
    DeudaSangre,
    DocumentoLegal,
    EventoExpediente,
    Expediente,
    ExpedienteLegal,
    SalidaMortuorio,
    SolicitudCorreccion,
    VerificacionMortuorio,
)
from mortuorio.core.utils import money


def _value(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    return value


def _pick(obj, *fields: str) -> dict[str, object]:
    return {field: _value(getattr(obj, field)) for field in fields}


def expediente_summary(expediente: Expediente) -> dict[str, object]:
    data = _pick(
        expediente,
        "id",
        "codigo",
        "tipo",
        "hc",
        "estado",
        "servicio_fallecimiento",
        "fecha_hora_fallecimiento",
        "created_at",
    )
    data["nombre_completo"] = expediente.nombre_completo
    data["bandeja"] = expediente.bandeja_actual.codigo if expediente.bandeja_actual else None
    return data


def expediente_detail(expediente: Expediente, triggers) -> dict[str, object]:
    data = expediente_summary(expediente)
    data.update(
        _pick(
            expediente,
            "tipo_documento",
            "numero_documento",
            "apellido_paterno",
            "apellido_materno",
            "nombres",
            "fecha_nacimiento",
            "numero_cama",
            "medico_certifica_nombre",
            "medico_cmp",
            "diagnostico_final",
            "numero_certificado_defuncion",
            "brazalete_generado_at",
            "fecha_ingreso_mortuorio",
            "updated_at",
        )
    )
    data["acciones_permitidas"] = [trigger.value for trigger in triggers]
    data["inconsistencias"] = expediente.consistency_violations()
    data["deuda_economica"] = deuda_economica(expediente.deuda_economica) if expediente.deuda_economica else None
    data["deuda_sangre"] = deuda_sangre(expediente.deuda_sangre) if expediente.deuda_sangre else None
    data["expediente_legal"] = expediente_legal(expediente.expediente_legal) if expediente.expediente_legal else None
    data["acta_retiro"] = acta_retiro(expediente.acta_retiro) if expediente.acta_retiro else None
    data["salida"] = salida(expediente.salida) if expediente.salida else None
    return data


def evento(row: EventoExpediente) -> dict[str, object]:
    return _pick(row, "id", "tipo", "estado_anterior", "estado_nuevo", "detalle", "fecha", "user_id")


def verificacion(row: VerificacionMortuorio) -> dict[str, object]:
    data = _pick(row, "id", "aprobada", "codigo_coincide", "hc_coincide", "documento_coincide", "fecha")
    data["discrepancias"] = row.discrepancias
    return data


def solicitud_correccion(row: SolicitudCorreccion) -> dict[str, object]:
    data = _pick(
        row,
        "id",
        "expediente_id",
        "servicio_origen",
        "datos_incorrectos",
        "descripcion_problema",
        "fecha_solicitud",
        "resuelta",
        "fecha_resolucion",
        "descripcion_resolucion",
        "brazalete_reimpreso",
        "notificado_supervisora",
    )
    data["minutos_transcurridos"] = int(row.tiempo_transcurrido().total_seconds() // 60)
    return data


def bandeja(row: Bandeja) -> dict[str, object]:
    data = _pick(row, "id", "codigo", "estado", "expediente_id", "fecha_asignacion", "fecha_liberacion", "observaciones")
    data["expediente"] = row.expediente.codigo if row.expediente else None
    data["nivel_alerta"] = row.nivel_alerta().value
    elapsed = row.tiempo_ocupada()
    data["horas_ocupada"] = round(elapsed.total_seconds() / 3600, 1) if elapsed is not None else None
    return data


def deuda_economica(row: DeudaEconomica) -> dict[str, object]:
    data = _pick(
        row,
        "id",
        "estado",
        "monto_deuda",
        "monto_exonerado",
        "monto_pagado",
        "tipo_exoneracion",
        "observaciones_exoneracion",
        "fecha_exoneracion",
    )
    data["monto_pendiente"] = _value(row.monto_pendiente)
    data["monto_pendiente_texto"] = money(row.monto_pendiente)
    data["semaforo"] = row.semaforo()
    data["pagos"] = [_pick(pago, "numero_boleta", "monto", "fecha") for pago in row.pagos]
    return data


def deuda_sangre(row: DeudaSangre) -> dict[str, object]:
    data = _pick(
        row,
        "id",
        "estado",
        "cantidad_unidades",
        "tipo_sangre",
        "familiar_compromiso_nombre",
        "fecha_liquidacion",
        "anulada_por_medico",
        "justificacion_anulacion",
    )
    data["semaforo"] = row.semaforo()
    return data


def documento_legal(row: DocumentoLegal) -> dict[str, object]:
    return _pick(row, "id", "tipo", "referencia", "nombre_archivo", "tamano_bytes", "fecha_subida")


def autoridad(row: AutoridadExterna) -> dict[str, object]:
    return _pick(row, "id", "tipo", "nombre_completo", "numero_documento", "institucion", "placa_vehiculo", "fecha_llegada")


def expediente_legal(row: ExpedienteLegal) -> dict[str, object]:
    data = _pick(
        row,
        "id",
        "expediente_id",
        "estado",
        "created_at",
        "fecha_validacion_admision",
        "observaciones_admision",
        "fecha_autorizacion",
    )
    data["documentos_pendientes"] = sorted(tipo.value for tipo in row.tipos_documentos_pendientes())
    data["fecha_limite"] = _value(row.deadline_48h())
    data["documentos"] = [documento_legal(doc) for doc in row.documentos]
    data["autoridades"] = [autoridad(item) for item in row.autoridades]
    return data


def bloqueo(reason: BlockingReason) -> dict[str, str]:
    return {"code": reason.code, "message": reason.message}


def acta_retiro(row: ActaRetiro) -> dict[str, object]:
    data = _pick(
        row,
        "id",
        "expediente_id",
        "tipo_retiro",
        "estado",
        "numero_certificado_defuncion",
        "familiar_nombre",
        "familiar_numero_documento",
        "parentesco",
        "numero_oficio",
        "tipo_autoridad",
        "institucion",
        "autoridad_nombre",
        "firmado_responsable",
        "firmado_admision",
        "firmado_supervisor_vigilancia",
        "documento_firmado_nombre",
        "fecha_subida_firmado",
    )
    data["completa"] = row.is_complete()
    return data


def salida(row: SalidaMortuorio) -> dict[str, object]:
    data = _pick(
        row,
        "id",
        "expediente_id",
        "tipo_salida",
        "acta_retiro_id",
        "expediente_legal_id",
        "fecha_hora_salida",
        "responsable_nombre",
        "funeraria_nombre",
        "placa_vehiculo",
        "destino",
        "incidente_registrado",
        "detalle_incidente",
        "tiempo_permanencia_minutos",
    )
    data["excedio_limite"] = row.exceeded_limit()
    return data
