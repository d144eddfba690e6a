"""
Errores de dominio del mortuorio.

Taxonomia cerrada: cada clase tiene un codigo estable, un estado HTTP y un
mensaje por defecto para el usuario. Todas heredan de ValueError para que
las vistas puedan seguir capturando ``ValueError``.
"""
from __future__ import annotations


class MortuaryError(ValueError):
    code = "ERROR_MORTUORIO"
    status_code = 409
    default_message = "Operacion no permitida"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class NotFound(MortuaryError):
    code = "NO_ENCONTRADO"
    status_code = 404
    default_message = "Registro no encontrado"


class Forbidden(MortuaryError):
    code = "ROL_NO_AUTORIZADO"
    status_code = 403
    default_message = "El rol del usuario no permite esta accion"


class MissingField(MortuaryError):
    code = "CAMPO_OBLIGATORIO"
    status_code = 422
    default_message = "Falta un campo obligatorio"


class InvalidValue(MortuaryError):
    code = "VALOR_INVALIDO"
    status_code = 422
    default_message = "Valor invalido"


class DuplicateRecord(MortuaryError):
    code = "REGISTRO_DUPLICADO"
    default_message = "El registro ya existe"


class InvalidTransition(MortuaryError):
    code = "TRANSICION_INVALIDA"
    default_message = "El expediente no esta en el estado requerido"


class InconsistentCaseState(MortuaryError):
    code = "ESTADO_INCONSISTENTE"
    status_code = 500
    default_message = "El estado del expediente no coincide con sus registros asociados"


# Bandejas
class SlotNotAvailable(MortuaryError):
    code = "BANDEJA_NO_DISPONIBLE"
    default_message = "La bandeja no esta disponible"


class SlotNotOccupied(MortuaryError):
    code = "BANDEJA_NO_OCUPADA"
    default_message = "La bandeja no esta ocupada"


class SlotOccupied(MortuaryError):
    code = "BANDEJA_OCUPADA"
    default_message = "La bandeja esta ocupada"


# Deudas
class InvalidAmount(MortuaryError):
    code = "MONTO_INVALIDO"
    status_code = 422
    default_message = "Monto invalido"


class MissingJustification(MortuaryError):
    code = "JUSTIFICACION_OBLIGATORIA"
    status_code = 422
    default_message = "Debe indicar una justificacion"


class JustificationTooShort(MortuaryError):
    code = "JUSTIFICACION_CORTA"
    status_code = 422
    default_message = "La justificacion debe tener al menos 20 caracteres"


class AlreadySettled(MortuaryError):
    code = "DEUDA_YA_LIQUIDADA"
    default_message = "La deuda ya esta liquidada"


class DebtNotPending(MortuaryError):
    code = "DEUDA_NO_PENDIENTE"
    default_message = "La deuda no esta pendiente"


class DebtsOutstanding(MortuaryError):
    code = "DEUDAS_PENDIENTES"
    default_message = "Existen deudas pendientes que bloquean el retiro"


# Expediente legal
class IncompleteDocuments(MortuaryError):
    code = "DOCUMENTOS_INCOMPLETOS"
    default_message = "Faltan documentos obligatorios"


class NotYetValidated(MortuaryError):
    code = "NO_VALIDADO_ADMISION"
    default_message = "El expediente legal no esta validado por Admision"


class LegalAuthorizationIncomplete(MortuaryError):
    code = "AUTORIZACION_LEGAL_INCOMPLETA"
    default_message = "El expediente legal no esta autorizado por el Jefe de Guardia"


# Acta de retiro
class RetrievalAuthorizationIncomplete(MortuaryError):
    code = "ACTA_RETIRO_INCOMPLETA"
    default_message = "El acta de retiro no esta firmada"


class InconsistentRetrieverFields(MortuaryError):
    code = "CAMPOS_RETIRO_INCONSISTENTES"
    status_code = 422
    default_message = "El acta contiene datos del otro tipo de retiro"


# Salida
class InconsistentReferenceKind(MortuaryError):
    code = "REFERENCIA_SALIDA_INCONSISTENTE"
    default_message = "La salida no referencia el documento correspondiente a su tipo"


class MissingDescription(MortuaryError):
    code = "DESCRIPCION_OBLIGATORIA"
    status_code = 422
    default_message = "Debe describir el incidente"


class IncompleteExitData(MortuaryError):
    code = "DATOS_SALIDA_INCOMPLETOS"
    status_code = 422
    default_message = "Faltan datos para registrar la salida"
