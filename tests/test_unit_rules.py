from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from mortuorio.core import errors
from mortuorio.core.models import (
    ActaRetiro,
    AutoridadExterna,
    Bandeja,
    BandejaEstado,
    DeudaEconomica,
    DeudaSangre,
    DocumentoLegal,
    EstadoActaRetiro,
    EstadoDeuda,
    EstadoExpedienteLegal,
    ExpedienteLegal,
    NivelAlerta,
    SalidaMortuorio,
    SolicitudCorreccion,
    TipoAutoridad,
    TipoDocumentoLegal,
    TipoExoneracion,
    TipoRetiro,
)
from mortuorio.core.utils import parse_decimal

T0 = datetime(2026, 3, 10, 8, 0)


def _financial(amount: str) -> DeudaEconomica:
    return DeudaEconomica(
        monto_deuda=Decimal(amount),
        monto_exonerado=Decimal("0"),
        monto_pagado=Decimal("0"),
        estado=EstadoDeuda.PENDIENTE,
        tipo_exoneracion=TipoExoneracion.SIN_EXONERACION,
    )


def _blood(units: int = 3) -> DeudaSangre:
    return DeudaSangre(cantidad_unidades=units, tipo_sangre="O+", estado=EstadoDeuda.PENDIENTE)


def _legal(estado: EstadoExpedienteLegal, with_documents: bool = False) -> ExpedienteLegal:
    legal = ExpedienteLegal(estado=estado, created_at=T0)
    if with_documents:
        for tipo in (TipoDocumentoLegal.EPICRISIS, TipoDocumentoLegal.OFICIO_POLICIAL, TipoDocumentoLegal.ACTA_LEVANTAMIENTO):
            legal.documentos.append(DocumentoLegal(tipo=tipo, referencia=f"ref/{tipo.value}", nombre_archivo="x.pdf"))
    return legal


def test_waiver_then_payment_settles_debt():
    deuda = _financial("1000")
    deuda.aplicar_exoneracion(Decimal("700"), "Familia en situacion de pobreza extrema", 1)
    deuda.registrar_pago(Decimal("300"), 2)

    assert deuda.monto_pendiente == Decimal("0.00")
    assert deuda.estado == EstadoDeuda.LIQUIDADO
    assert deuda.tipo_exoneracion == TipoExoneracion.PARCIAL
    assert deuda.blocks_release() is False
    assert deuda.semaforo() == "NO DEBE"


def test_payment_and_waiver_commute_on_pending_amount():
    first = _financial("1000")
    first.registrar_pago(Decimal("250"), 1)
    first.aplicar_exoneracion(Decimal("400"), "Evaluacion socioeconomica", 1)

    second = _financial("1000")
    second.aplicar_exoneracion(Decimal("400"), "Evaluacion socioeconomica", 1)
    second.registrar_pago(Decimal("250"), 1)

    assert first.monto_pendiente == second.monto_pendiente == Decimal("350.00")
    assert first.estado == second.estado == EstadoDeuda.PENDIENTE


def test_full_waiver_without_payment_is_exonerated():
    deuda = _financial("500")
    deuda.aplicar_exoneracion(Decimal("500"), "Indigente sin familiares", 1)

    assert deuda.estado == EstadoDeuda.EXONERADO
    assert deuda.tipo_exoneracion == TipoExoneracion.TOTAL


def test_financial_debt_rejects_bad_amounts_and_blank_justification():
    deuda = _financial("200")
    with pytest.raises(errors.InvalidAmount):
        deuda.registrar_pago(Decimal("0"), 1)
    with pytest.raises(errors.InvalidAmount):
        deuda.registrar_pago(Decimal("200.01"), 1)
    with pytest.raises(errors.InvalidAmount):
        deuda.aplicar_exoneracion(Decimal("-5"), "motivo", 1)
    with pytest.raises(errors.MissingJustification):
        deuda.aplicar_exoneracion(Decimal("50"), "   ", 1)
    assert deuda.monto_pendiente == Decimal("200.00")


def test_settled_debt_rejects_further_payments_and_waivers():
    deuda = _financial("100")
    deuda.registrar_pago(Decimal("100"), 1)
    with pytest.raises(errors.AlreadySettled):
        deuda.registrar_pago(Decimal("1"), 1)
    with pytest.raises(errors.AlreadySettled):
        deuda.aplicar_exoneracion(Decimal("1"), "motivo", 1)


def test_no_debt_zeroes_amounts():
    deuda = _financial("100")
    deuda.registrar_pago(Decimal("40"), 1)
    deuda.marcar_sin_deuda(1)

    assert deuda.estado == EstadoDeuda.SIN_DEUDA
    assert deuda.monto_pendiente == Decimal("0.00")
    with pytest.raises(errors.DebtNotPending):
        deuda.registrar_pago(Decimal("1"), 1)


def test_blood_override_with_twenty_characters_succeeds():
    deuda = _blood(3)
    justification = "x" * 20

    deuda.anular_por_medico(7, justification)

    assert deuda.estado == EstadoDeuda.EXONERADO
    assert deuda.anulada_por_medico is True
    assert deuda.medico_anula_id == 7
    assert deuda.blocks_release() is False


def test_blood_override_with_nineteen_characters_fails():
    deuda = _blood(3)

    with pytest.raises(errors.JustificationTooShort):
        deuda.anular_por_medico(7, "x" * 19)

    assert deuda.estado == EstadoDeuda.PENDIENTE
    assert deuda.blocks_release() is True


def test_blood_override_requires_pending_debt():
    deuda = _blood(2)
    deuda.liquidar("Ana Torres", "44556677", 3)
    with pytest.raises(errors.DebtNotPending):
        deuda.anular_por_medico(7, "Paciente recibio transfusion de emergencia")


def test_blood_settlement_requires_family_data():
    deuda = _blood(2)
    with pytest.raises(errors.MissingField):
        deuda.liquidar("Ana Torres", "", 3)
    deuda.liquidar("Ana Torres", "44556677", 3)
    assert deuda.estado == EstadoDeuda.LIQUIDADO
    assert deuda.semaforo() == "NO DEBE"


@pytest.mark.parametrize("estado", list(EstadoExpedienteLegal))
def test_shift_supervisor_authorizes_only_validated_files(estado):
    legal = _legal(estado, with_documents=True)
    if estado == EstadoExpedienteLegal.VALIDADO_ADMISION:
        legal.authorize_by_shift_supervisor(5, "Conforme")
        assert legal.estado == EstadoExpedienteLegal.AUTORIZADO_JEFE_GUARDIA
        assert legal.autorizado
    else:
        with pytest.raises(errors.NotYetValidated):
            legal.authorize_by_shift_supervisor(5, None)
        assert legal.estado == estado


def test_legal_file_submission_requires_all_documents():
    legal = _legal(EstadoExpedienteLegal.EN_REGISTRO)
    legal.documentos.append(
        DocumentoLegal(tipo=TipoDocumentoLegal.EPICRISIS, referencia="ref/epi", nombre_archivo="epi.pdf")
    )

    with pytest.raises(errors.IncompleteDocuments):
        legal.submit_for_review()
    assert legal.tipos_documentos_pendientes() == {
        TipoDocumentoLegal.OFICIO_POLICIAL,
        TipoDocumentoLegal.ACTA_LEVANTAMIENTO,
    }


def test_legal_file_rejection_loop():
    legal = _legal(EstadoExpedienteLegal.EN_REGISTRO, with_documents=True)
    legal.submit_for_review()
    with pytest.raises(errors.MissingJustification):
        legal.review_by_admissions(False, 4, "")
    legal.review_by_admissions(False, 4, "Oficio policial ilegible")
    assert legal.estado == EstadoExpedienteLegal.RECHAZADO_ADMISION

    legal.submit_for_review()
    assert legal.estado == EstadoExpedienteLegal.PENDIENTE_VALIDACION_ADMISION
    legal.review_by_admissions(True, 4, None)
    assert legal.estado == EstadoExpedienteLegal.VALIDADO_ADMISION


def test_legal_deadline_disappears_once_documents_complete():
    incomplete = _legal(EstadoExpedienteLegal.EN_REGISTRO)
    assert incomplete.deadline_48h() == T0 + timedelta(hours=48)

    complete = _legal(EstadoExpedienteLegal.EN_REGISTRO, with_documents=True)
    assert complete.deadline_48h() is None


def test_tray_alert_levels():
    bandeja = Bandeja(codigo="B-09", estado=BandejaEstado.OCUPADA, expediente_id=1, fecha_asignacion=T0)

    assert bandeja.nivel_alerta(T0 + timedelta(hours=23, minutes=59)) == NivelAlerta.NINGUNA
    assert bandeja.nivel_alerta(T0 + timedelta(hours=24)) == NivelAlerta.AMARILLA
    assert bandeja.nivel_alerta(T0 + timedelta(hours=48)) == NivelAlerta.ROJA


def test_tray_alert_levels_accept_custom_thresholds():
    bandeja = Bandeja(codigo="B-09", estado=BandejaEstado.OCUPADA, expediente_id=1, fecha_asignacion=T0)

    assert bandeja.nivel_alerta(T0 + timedelta(hours=6), alert_hours=6, critical_hours=12) == NivelAlerta.AMARILLA
    assert bandeja.nivel_alerta(T0 + timedelta(hours=12), alert_hours=6, critical_hours=12) == NivelAlerta.ROJA


def test_tray_maintenance_rules():
    occupied = Bandeja(codigo="B-10", estado=BandejaEstado.OCUPADA, expediente_id=1, fecha_asignacion=T0)
    with pytest.raises(errors.SlotOccupied):
        occupied.iniciar_mantenimiento("Limpieza profunda")

    free = Bandeja(codigo="B-11", estado=BandejaEstado.DISPONIBLE)
    with pytest.raises(errors.MissingJustification):
        free.iniciar_mantenimiento("  ")
    with pytest.raises(errors.InvalidTransition):
        free.finalizar_mantenimiento()

    free.iniciar_mantenimiento("Falla en refrigeracion")
    assert free.estado == BandejaEstado.MANTENIMIENTO
    free.finalizar_mantenimiento()
    assert free.estado == BandejaEstado.DISPONIBLE
    assert "Falla en refrigeracion" in free.observaciones


def test_release_of_free_tray_fails():
    bandeja = Bandeja(codigo="B-12", estado=BandejaEstado.DISPONIBLE)
    with pytest.raises(errors.SlotNotOccupied):
        bandeja.liberar(1)


def test_family_acta_completeness_and_foreign_fields():
    acta = ActaRetiro(
        tipo_retiro=TipoRetiro.FAMILIAR,
        estado=EstadoActaRetiro.BORRADOR,
        familiar_nombre="Juan Perez",
        familiar_numero_documento="40112233",
        parentesco="Hijo",
    )
    assert not acta.is_complete()
    codes = [reason.code for reason in acta.validate_ready_for_document_generation()]
    assert "ACTA_INCOMPLETA" in codes

    acta.numero_certificado_defuncion = "CD-1"
    assert acta.is_complete()
    assert acta.validate_ready_for_document_generation() == []

    acta.numero_oficio = "OF-123"
    with pytest.raises(errors.InconsistentRetrieverFields):
        acta.validate_kind_fields()


def test_authority_acta_requires_referral_data():
    acta = ActaRetiro(
        tipo_retiro=TipoRetiro.AUTORIDAD_LEGAL,
        estado=EstadoActaRetiro.BORRADOR,
        numero_oficio="OF-2026-88",
        institucion="Comisaria Sectorial",
    )
    assert acta.campos_faltantes() == ["tipo_autoridad"]
    acta.tipo_autoridad = "fiscal"
    assert acta.tipo_autoridad == TipoAutoridad.FISCAL
    assert acta.is_complete()


def test_acta_signature_sets_all_flags():
    acta = ActaRetiro(tipo_retiro=TipoRetiro.FAMILIAR, estado=EstadoActaRetiro.BORRADOR)
    acta.mark_fully_signed(3, "expedientes/1/acta.pdf", "acta.pdf", 2048)

    assert acta.estado == EstadoActaRetiro.FIRMADA
    assert acta.firmada_completa
    assert acta.fecha_firma_responsable == acta.fecha_firma_admision == acta.fecha_firma_supervisor_vigilancia


def test_exit_reference_must_match_kind():
    family = SalidaMortuorio(tipo_salida=TipoRetiro.FAMILIAR, acta_retiro_id=None, expediente_legal_id=4)
    with pytest.raises(errors.InconsistentReferenceKind):
        family.validate_reference_consistency()

    authority = SalidaMortuorio(tipo_salida=TipoRetiro.AUTORIDAD_LEGAL, acta_retiro_id=2, expediente_legal_id=None)
    with pytest.raises(errors.InconsistentReferenceKind):
        authority.validate_reference_consistency()

    SalidaMortuorio(tipo_salida=TipoRetiro.FAMILIAR, acta_retiro_id=2).validate_reference_consistency()
    SalidaMortuorio(tipo_salida=TipoRetiro.AUTORIDAD_LEGAL, expediente_legal_id=4).validate_reference_consistency()


def test_exit_documentation_and_plate_fallback():
    family = SalidaMortuorio(
        tipo_salida=TipoRetiro.FAMILIAR,
        responsable_nombre="Juan Perez",
        responsable_documento="40112233",
        funeraria_nombre="Funeraria La Paz",
    )
    missing = family.validate_documentation()
    assert "Faltan datos completos de la funeraria" in missing
    assert "Falta placa del vehiculo funerario" in missing

    authority = SalidaMortuorio(
        tipo_salida=TipoRetiro.AUTORIDAD_LEGAL,
        responsable_nombre="SO3 Luis Vega",
        responsable_documento="70001122",
    )
    legal = ExpedienteLegal(estado=EstadoExpedienteLegal.AUTORIZADO_JEFE_GUARDIA, created_at=T0)
    assert authority.validate_documentation(None, legal) == ["Falta placa del vehiculo oficial"]

    legal.autoridades.append(
        AutoridadExterna(tipo=TipoAutoridad.POLICIA, nombre_completo="SO3 Luis Vega", numero_documento="70001122", placa_vehiculo="EPA-123")
    )
    assert authority.validate_documentation(None, legal) == []
    assert authority.placa_efectiva(None, legal) == "EPA-123"

    acta = ActaRetiro(tipo_retiro=TipoRetiro.AUTORIDAD_LEGAL, autoridad_placa_vehiculo="PNP-900")
    assert authority.placa_efectiva(acta, legal) == "PNP-900"


def test_exit_elapsed_time_and_limit():
    salida = SalidaMortuorio(tipo_salida=TipoRetiro.FAMILIAR, fecha_hora_salida=T0 + timedelta(hours=48))
    salida.compute_elapsed_storage_time(T0)
    assert salida.tiempo_permanencia_minutos == 48 * 60
    assert salida.exceeded_limit() is False

    salida.fecha_hora_salida = T0 + timedelta(hours=48, minutes=1)
    salida.compute_elapsed_storage_time(T0)
    assert salida.exceeded_limit() is True

    with pytest.raises(errors.MissingDescription):
        salida.register_incident("")
    salida.register_incident("Familiares discutieron en la puerta")
    assert salida.incidente_registrado is True


def test_correction_ticket_alert_and_single_notification(app, clock):
    solicitud = SolicitudCorreccion(resuelta=False, notificado_supervisora=False, fecha_solicitud=T0)

    assert solicitud.supera_tiempo_alerta(T0 + timedelta(hours=1, minutes=59)) is False
    assert solicitud.supera_tiempo_alerta(T0 + timedelta(hours=2)) is True
    assert solicitud.notificar_supervisora() is True
    assert solicitud.notificar_supervisora() is False

    clock.advance(hours=3)
    solicitud.resolver("Se corrigio la historia clinica", brazalete_reimpreso=True)
    assert solicitud.resuelta
    assert solicitud.fecha_resolucion == T0 + timedelta(hours=3)
    with pytest.raises(errors.InvalidTransition):
        solicitud.resolver("otra vez", brazalete_reimpreso=False)


@pytest.mark.parametrize("raw", ["NaN", "nan", "Infinity", "-Infinity", "sNaN", "abc"])
def test_parse_decimal_rejects_non_finite_values(raw):
    with pytest.raises(errors.InvalidValue):
        parse_decimal(raw, "monto")


def test_parse_decimal_normalizes_comma_and_cents():
    assert parse_decimal("1250,5") == Decimal("1250.50")
    with pytest.raises(errors.MissingField):
        parse_decimal("  ")
