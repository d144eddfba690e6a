from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from mortuorio.core import errors
from mortuorio.core.extensions import db
from mortuorio.core.models import (
    AccionBandeja,
    ActaRetiro,
    BandejaEstado,
    CustodiaTransferencia,
    EstadoDeuda,
    EstadoExpediente,
    EstadoExpedienteLegal,
    EventoExpediente,
    MovimientoBandeja,
    NivelAlerta,
    Rol,
    TipoAutoridad,
    TipoRetiro,
    TriggerExpediente,
)
from mortuorio.mortuary import services

from conftest import START, case_payload

FAMILY_EXIT = {
    "responsable_nombre": "Juan Quispe Huaman",
    "responsable_documento": "40112233",
    "funeraria_nombre": "Funeraria Santa Rosa",
    "conductor_nombre": "Pedro Ramos",
    "conductor_documento": "41234567",
    "placa_vehiculo": "abc-123",
    "destino": "Cementerio El Angel",
}


def _legal_ready(expediente_id: int, actor, stored_doc):
    legal = services.create_legal_file(expediente_id, actor(Rol.VIGILANTE), "Muerte violenta")
    for tipo in ("EPICRISIS", "OFICIO_POLICIAL", "ACTA_LEVANTAMIENTO"):
        services.attach_legal_document(legal.id, tipo, stored_doc(f"{tipo.lower()}.pdf"), actor(Rol.VIGILANTE))
    services.submit_for_review(legal.id, actor(Rol.VIGILANTE))
    services.review_by_admissions(legal.id, True, actor(Rol.ADMISION), None)
    return legal


def test_create_expediente_assigns_code_and_audit(app, new_case):
    with app.app_context():
        expediente = new_case()

        assert expediente.codigo == "SGM-2026-0001"
        assert expediente.estado == EstadoExpediente.EN_PISO
        assert new_case().codigo == "SGM-2026-0002"
        event = EventoExpediente.query.filter_by(expediente_id=expediente.id).one()
        assert event.tipo == "CREACION"


def test_create_expediente_validations(app, actor, new_case):
    with app.app_context():
        nurse = actor(Rol.ENFERMERIA)
        first = new_case()
        with pytest.raises(errors.DuplicateRecord):
            services.create_expediente(case_payload(hc=first.hc), nurse)
        with pytest.raises(errors.DuplicateRecord):
            services.create_expediente(
                case_payload(numero_certificado_defuncion=first.numero_certificado_defuncion), nurse
            )
        with pytest.raises(errors.InvalidValue):
            services.create_expediente(case_payload(fecha_hora_fallecimiento="2026-03-10T09:00:00"), nurse)
        with pytest.raises(errors.InvalidValue):
            services.create_expediente(
                case_payload(fecha_nacimiento="2026-03-11", fecha_hora_fallecimiento="2026-03-10T07:00:00"), nurse
            )
        with pytest.raises(errors.MissingField):
            services.create_expediente(case_payload(nombres=""), nurse)
        with pytest.raises(errors.Forbidden):
            services.create_expediente(case_payload(), actor(Rol.CAJA))


def test_nn_case_needs_no_document_number(app, actor):
    with app.app_context():
        expediente = services.create_expediente(
            case_payload(tipo_documento="NN", numero_documento="", apellido_paterno="NN", nombres="NN"),
            actor(Rol.MEDICO),
        )
        assert expediente.numero_documento == ""


def test_happy_path_internal_case(app, actor, stored_case, clear_debts, signed_family_acta, clock, tray):
    with app.app_context():
        expediente = stored_case("B-02")
        assert expediente.estado == EstadoExpediente.EN_BANDEJA
        assert expediente.bandeja_actual.codigo == "B-02"
        assert CustodiaTransferencia.query.filter_by(expediente_id=expediente.id).count() == 1

        clear_debts(expediente.id)
        signed_family_acta(expediente.id)
        services.authorize_release(expediente.id, actor(Rol.ADMISION))
        assert expediente.estado == EstadoExpediente.PENDIENTE_RETIRO

        clock.advance(hours=30)
        salida = services.record_exit(expediente.id, FAMILY_EXIT, actor(Rol.VIGILANTE))

        assert salida.tipo_salida == TipoRetiro.FAMILIAR
        assert salida.acta_retiro_id == expediente.acta_retiro.id
        assert salida.expediente_legal_id is None
        assert salida.placa_vehiculo == "ABC-123"
        assert salida.tiempo_permanencia_minutos == 30 * 60
        assert salida.exceeded_limit() is False
        assert expediente.estado == EstadoExpediente.RETIRADO
        assert expediente.bandeja_actual_id is None
        assert tray("B-02").estado == BandejaEstado.DISPONIBLE
        assert expediente.consistency_violations() == []
        assert services.permitted_triggers(expediente) == []


def test_record_exit_from_storage_fails_state_precondition(app, actor, stored_case, clear_debts):
    with app.app_context():
        expediente = stored_case()
        clear_debts(expediente.id)
        with pytest.raises(errors.InvalidTransition):
            services.record_exit(expediente.id, FAMILY_EXIT, actor(Rol.VIGILANTE))
        assert expediente.estado == EstadoExpediente.EN_BANDEJA


def test_second_assignment_of_same_tray_fails(app, actor, verified_case, tray):
    with app.app_context():
        first = verified_case()
        second = verified_case()
        bandeja_id = tray("B-03").id

        services.advance_to_storage(first.id, bandeja_id, actor(Rol.VIGILANTE))
        with pytest.raises(errors.SlotNotAvailable):
            services.assign_slot(bandeja_id, second.id, actor(Rol.VIGILANTE))

        assert tray("B-03").expediente_id == first.id
        assert services.get_expediente(second.id).estado == EstadoExpediente.PENDIENTE_ASIGNACION_BANDEJA
        occupied = MovimientoBandeja.query.filter_by(bandeja_id=bandeja_id, accion=AccionBandeja.ASIGNACION).count()
        assert occupied == 1


def test_tray_in_maintenance_cannot_be_assigned(app, actor, verified_case, tray):
    with app.app_context():
        expediente = verified_case()
        bandeja = tray("B-04")
        services.enter_maintenance(bandeja.id, "Cambio de compresor", actor(Rol.SUPERVISOR_VIGILANCIA))
        with pytest.raises(errors.SlotNotAvailable):
            services.advance_to_storage(expediente.id, bandeja.id, actor(Rol.VIGILANTE))
        with pytest.raises(errors.Forbidden):
            services.exit_maintenance(bandeja.id, actor(Rol.VIGILANTE))
        services.exit_maintenance(bandeja.id, actor(Rol.SUPERVISOR_VIGILANCIA))
        services.advance_to_storage(expediente.id, bandeja.id, actor(Rol.VIGILANTE))
        assert tray("B-04").estado == BandejaEstado.OCUPADA


@pytest.mark.parametrize(
    "financial,blood",
    [
        ("pending", "pending"),
        ("pending", "clear"),
        ("clear", "pending"),
    ],
)
def test_authorize_release_blocked_by_any_debt(app, actor, stored_case, signed_family_acta, financial, blood):
    with app.app_context():
        expediente = stored_case()
        signed_family_acta(expediente.id)
        if financial == "pending":
            services.register_financial_debt(expediente.id, "850.00", actor(Rol.CAJA))
        else:
            services.mark_no_debt(expediente.id, actor(Rol.CAJA))
        if blood == "pending":
            services.register_blood_debt(expediente.id, "2", "A+", actor(Rol.BANCO_SANGRE))
        else:
            services.mark_blood_no_debt(expediente.id, actor(Rol.BANCO_SANGRE))

        with pytest.raises(errors.DebtsOutstanding):
            services.authorize_release(expediente.id, actor(Rol.ADMISION))
        assert services.debt_traffic_light(expediente.id)["bloquea_retiro"] is True


def test_debts_cleared_through_payment_waiver_and_override(app, actor, stored_case, signed_family_acta):
    with app.app_context():
        expediente = stored_case()
        signed_family_acta(expediente.id)
        services.register_financial_debt(expediente.id, "1000", actor(Rol.CAJA))
        services.register_blood_debt(expediente.id, 3, "O+", actor(Rol.BANCO_SANGRE))

        services.apply_waiver(expediente.id, "700", "Familia en situacion de pobreza", actor(Rol.SERVICIO_SOCIAL))
        deuda = services.record_payment(expediente.id, "B001-000123", "300", actor(Rol.CAJA))
        assert deuda.estado == EstadoDeuda.LIQUIDADO
        assert deuda.monto_pendiente == Decimal("0.00")

        with pytest.raises(errors.Forbidden):
            services.override_blood_debt(expediente.id, actor(Rol.ENFERMERIA), "x" * 25)
        with pytest.raises(errors.JustificationTooShort):
            services.override_blood_debt(expediente.id, actor(Rol.MEDICO), "x" * 19)
        sangre = services.override_blood_debt(expediente.id, actor(Rol.MEDICO), "y" * 20)
        assert sangre.estado == EstadoDeuda.EXONERADO

        light = services.debt_traffic_light(expediente.id)
        assert light["economica"] == "NO DEBE"
        assert light["sangre"] == "NO DEBE"
        services.authorize_release(expediente.id, actor(Rol.JEFE_GUARDIA))
        assert expediente.estado == EstadoExpediente.PENDIENTE_RETIRO


def test_payment_receipt_rules(app, actor, stored_case):
    with app.app_context():
        expediente = stored_case()
        cashier = actor(Rol.CAJA)
        services.register_financial_debt(expediente.id, "500", cashier)
        with pytest.raises(errors.DuplicateRecord):
            services.register_financial_debt(expediente.id, "500", cashier)
        with pytest.raises(errors.MissingField):
            services.record_payment(expediente.id, " ", "100", cashier)
        services.record_payment(expediente.id, "B001-1", "100", cashier)
        with pytest.raises(errors.DuplicateRecord):
            services.record_payment(expediente.id, "B001-1", "100", cashier)
        with pytest.raises(errors.InvalidAmount):
            services.record_payment(expediente.id, "B001-2", "400.01", cashier)
        assert services.get_expediente(expediente.id).deuda_economica.monto_pendiente == Decimal("400.00")


def test_internal_case_needs_signed_acta(app, actor, stored_case, clear_debts):
    with app.app_context():
        expediente = stored_case()
        clear_debts(expediente.id)
        with pytest.raises(errors.RetrievalAuthorizationIncomplete):
            services.authorize_release(expediente.id, actor(Rol.ADMISION))

        acta = services.create_retrieval_authorization(
            expediente.id,
            {"tipo_retiro": "FAMILIAR", "familiar_nombre": "Ana", "familiar_numero_documento": "1", "parentesco": "Hija"},
            actor(Rol.ADMISION),
        )
        with pytest.raises(errors.RetrievalAuthorizationIncomplete):
            services.authorize_release(expediente.id, actor(Rol.ADMISION))
        assert acta.is_complete()


def test_acta_rejects_fields_of_other_kind(app, actor, stored_case):
    with app.app_context():
        expediente = stored_case()
        with pytest.raises(errors.InconsistentRetrieverFields):
            services.create_retrieval_authorization(
                expediente.id,
                {
                    "tipo_retiro": "FAMILIAR",
                    "familiar_nombre": "Ana",
                    "familiar_numero_documento": "1",
                    "parentesco": "Hija",
                    "numero_oficio": "OF-1",
                },
                actor(Rol.ADMISION),
            )


def test_external_case_with_authorized_legal_file(app, actor, stored_case, clear_debts, stored_doc, clock):
    with app.app_context():
        expediente = stored_case(tipo="EXTERNO")
        clear_debts(expediente.id)
        legal = _legal_ready(expediente.id, actor, stored_doc)
        assert legal.estado == EstadoExpedienteLegal.VALIDADO_ADMISION

        with pytest.raises(errors.LegalAuthorizationIncomplete):
            services.authorize_release(expediente.id, actor(Rol.ADMISION))

        services.authorize_by_shift_supervisor(legal.id, actor(Rol.JEFE_GUARDIA), "Conforme")
        assert legal.estado == EstadoExpedienteLegal.AUTORIZADO_JEFE_GUARDIA
        services.authorize_release(expediente.id, actor(Rol.ADMISION))

        clock.advance(hours=50)
        with pytest.raises(errors.IncompleteExitData):
            services.record_exit(
                expediente.id,
                {"responsable_nombre": "SO2 Mario Vega", "responsable_documento": "70112233"},
                actor(Rol.VIGILANTE),
            )


def test_external_exit_uses_legal_file_and_authority_plate(app, actor, stored_case, clear_debts, stored_doc, clock):
    with app.app_context():
        expediente = stored_case(tipo="EXTERNO")
        clear_debts(expediente.id)
        legal = _legal_ready(expediente.id, actor, stored_doc)
        services.register_authority(
            legal.id,
            {
                "tipo": "POLICIA",
                "nombre_completo": "SO2 Mario Vega",
                "numero_documento": "70112233",
                "institucion": "Comisaria Cercado",
                "placa_vehiculo": "epa-456",
            },
            actor(Rol.VIGILANTE),
        )
        services.authorize_by_shift_supervisor(legal.id, actor(Rol.JEFE_GUARDIA), None)
        services.authorize_release(expediente.id, actor(Rol.ADMISION))

        clock.advance(hours=50)
        salida = services.record_exit(
            expediente.id,
            {"responsable_nombre": "SO2 Mario Vega", "responsable_documento": "70112233", "destino": "Morgue Central"},
            actor(Rol.SUPERVISOR_VIGILANCIA),
        )

        assert salida.tipo_salida == TipoRetiro.AUTORIDAD_LEGAL
        assert salida.expediente_legal_id == legal.id
        assert salida.acta_retiro_id is None
        assert salida.placa_vehiculo == "EPA-456"
        assert salida.exceeded_limit() is True

        services.register_incident(salida.id, "Demora en la llegada del fiscal", actor(Rol.VIGILANTE))
        assert salida.incidente_registrado is True


def test_legal_file_only_for_external_cases(app, actor, stored_case, stored_doc):
    with app.app_context():
        expediente = stored_case()
        with pytest.raises(errors.InvalidValue):
            services.create_legal_file(expediente.id, actor(Rol.VIGILANTE))

        external = stored_case("B-05", tipo="EXTERNO")
        legal = services.create_legal_file(external.id, actor(Rol.VIGILANTE))
        with pytest.raises(errors.DuplicateRecord):
            services.create_legal_file(external.id, actor(Rol.VIGILANTE))
        services.attach_legal_document(legal.id, "EPICRISIS", stored_doc("epi.pdf"), actor(Rol.VIGILANTE))
        with pytest.raises(errors.DuplicateRecord):
            services.attach_legal_document(legal.id, "EPICRISIS", stored_doc("epi2.pdf"), actor(Rol.VIGILANTE))
        with pytest.raises(errors.IncompleteDocuments):
            services.submit_for_review(legal.id, actor(Rol.VIGILANTE))


def test_verification_mismatch_opens_correction_ticket(app, actor, new_case, clock):
    with app.app_context():
        expediente = new_case()
        services.generate_wristband(expediente.id, actor(Rol.ENFERMERIA))
        services.accept_custody(expediente.id, actor(Rol.AMBULANCIA))

        _, verificacion, solicitud = services.verify_storage_entry(
            expediente.id,
            {"codigo_brazalete": expediente.codigo, "hc": "HC-ERRADA", "numero_documento": expediente.numero_documento},
            actor(Rol.VIGILANTE),
        )

        assert verificacion.aprobada is False
        assert verificacion.discrepancias == ["historia clinica"]
        assert expediente.estado == EstadoExpediente.VERIFICACION_RECHAZADA
        assert solicitud.usuario_responsable_id == expediente.usuario_creador_id
        assert solicitud.servicio_origen == expediente.servicio_fallecimiento

        clock.advance(hours=2, minutes=5)
        assert [s.id for s in services.overdue_correction_requests()] == [solicitud.id]
        assert [s.id for s in services.escalate_overdue_corrections()] == [solicitud.id]
        assert services.escalate_overdue_corrections() == []

        services.resolve_correction(
            solicitud.id,
            {"descripcion_resolucion": "Brazalete reimpreso con la HC correcta", "brazalete_reimpreso": "true"},
            actor(Rol.ENFERMERIA),
        )
        assert expediente.estado == EstadoExpediente.EN_TRASLADO
        assert services.overdue_correction_requests() == []


def test_request_correction_from_transit_and_rejected_states(app, actor, new_case):
    with app.app_context():
        expediente = new_case()
        with pytest.raises(errors.InvalidTransition):
            services.request_correction(
                expediente.id, {"datos_incorrectos": "nombre", "descripcion_problema": "Apellido mal escrito"}, actor(Rol.VIGILANTE)
            )
        services.generate_wristband(expediente.id, actor(Rol.ENFERMERIA))
        services.accept_custody(expediente.id, actor(Rol.AMBULANCIA))

        first = services.request_correction(
            expediente.id, {"datos_incorrectos": "nombre", "descripcion_problema": "Apellido mal escrito"}, actor(Rol.VIGILANTE)
        )
        second = services.request_correction(
            expediente.id, {"datos_incorrectos": "documento", "descripcion_problema": "DNI incompleto"}, actor(Rol.VIGILANTE)
        )
        assert expediente.estado == EstadoExpediente.VERIFICACION_RECHAZADA

        services.resolve_correction(
            first.id, {"descripcion_resolucion": "Apellido corregido", "apellido_paterno": "Quispe"}, actor(Rol.MEDICO)
        )
        assert expediente.estado == EstadoExpediente.VERIFICACION_RECHAZADA
        services.resolve_correction(second.id, {"descripcion_resolucion": "DNI completado"}, actor(Rol.MEDICO))
        assert expediente.estado == EstadoExpediente.EN_TRASLADO


def test_manual_release_returns_case_to_assignment(app, actor, stored_case, tray, clear_debts, signed_family_acta):
    with app.app_context():
        expediente = stored_case("B-06")
        bandeja = tray("B-06")
        with pytest.raises(errors.MissingJustification):
            services.release_slot(bandeja.id, actor(Rol.VIGILANTE), "")
        services.release_slot(bandeja.id, actor(Rol.VIGILANTE), "Reubicacion por falla de refrigeracion")

        assert expediente.estado == EstadoExpediente.PENDIENTE_ASIGNACION_BANDEJA
        assert expediente.bandeja_actual_id is None
        assert tray("B-06").estado == BandejaEstado.DISPONIBLE
        assert TriggerExpediente.ASIGNAR_BANDEJA in services.permitted_triggers(expediente)

        services.advance_to_storage(expediente.id, tray("B-07").id, actor(Rol.VIGILANTE))
        clear_debts(expediente.id)
        signed_family_acta(expediente.id)
        services.authorize_release(expediente.id, actor(Rol.ADMISION))
        with pytest.raises(errors.InvalidTransition):
            services.release_slot(tray("B-07").id, actor(Rol.VIGILANTE), "Intento manual")


def test_alert_queries(app, actor, stored_case, clock, tray):
    with app.app_context():
        stored_case("B-01")
        clock.advance(hours=12)
        stored_case("B-02")
        clock.advance(hours=13)

        alerts = services.occupancy_alert()
        assert [b.codigo for b in alerts] == ["B-01"]
        assert [b.codigo for b in services.occupancy_alert(threshold_hours=12)] == ["B-01", "B-02"]

        stats = services.bandeja_statistics()
        assert stats.total == 8
        assert stats.ocupadas == 2
        assert stats.porcentaje_ocupacion == 25.0


def test_legal_files_past_deadline(app, actor, stored_case, stored_doc, clock):
    with app.app_context():
        expediente = stored_case(tipo="EXTERNO")
        legal = services.create_legal_file(expediente.id, actor(Rol.VIGILANTE))
        clock.advance(hours=47)
        assert services.legal_files_past_deadline() == []
        clock.advance(hours=2)
        assert [row.id for row in services.legal_files_past_deadline()] == [legal.id]

        for tipo in ("EPICRISIS", "OFICIO_POLICIAL", "ACTA_LEVANTAMIENTO"):
            services.attach_legal_document(legal.id, tipo, stored_doc(f"{tipo}.pdf"), actor(Rol.VIGILANTE))
        assert services.legal_files_past_deadline() == []


def test_soft_delete_is_admin_only_and_keeps_row(app, actor, new_case):
    with app.app_context():
        expediente = new_case()
        with pytest.raises(errors.Forbidden):
            services.soft_delete_expediente(expediente.id, "Duplicado", actor(Rol.ENFERMERIA))
        services.soft_delete_expediente(expediente.id, "Registro duplicado", actor(Rol.ADMIN))

        with pytest.raises(errors.NotFound):
            services.get_expediente(expediente.id)
        assert db.session.get(type(expediente), expediente.id).eliminado is True


def test_consistency_detects_tray_mismatch(app, stored_case):
    with app.app_context():
        expediente = stored_case()
        assert services.check_consistency(expediente.id) == []

        expediente.bandeja_actual_id = None
        with pytest.raises(errors.InconsistentCaseState):
            expediente.assert_consistent()
        db.session.rollback()


def test_timestamps_follow_injected_clock(app, actor, new_case, clock):
    with app.app_context():
        expediente = new_case()
        assert expediente.created_at == START

        clock.advance(minutes=15)
        services.generate_wristband(expediente.id, actor(Rol.ENFERMERIA))

        assert expediente.brazalete_generado_at == START + timedelta(minutes=15)
        event = EventoExpediente.query.filter_by(expediente_id=expediente.id, tipo="GENERAR_BRAZALETE").one()
        assert event.fecha == START + timedelta(minutes=15)
        assert event.estado_anterior == "EN_PISO"
        assert event.estado_nuevo == "PENDIENTE_RECOJO"


def test_internal_case_rejects_authority_acta(app, actor, stored_case, clear_debts):
    with app.app_context():
        expediente = stored_case()
        clear_debts(expediente.id)
        with pytest.raises(errors.InconsistentReferenceKind):
            services.create_retrieval_authorization(
                expediente.id,
                {
                    "tipo_retiro": "AUTORIDAD_LEGAL",
                    "numero_oficio": "OF-2026-114",
                    "tipo_autoridad": "FISCAL",
                    "institucion": "Fiscalia Provincial Penal",
                },
                actor(Rol.ADMISION),
            )

        assert expediente.acta_retiro is None
        assert expediente.estado == EstadoExpediente.EN_BANDEJA


def test_release_refuses_internal_case_holding_authority_acta(
    app, actor, stored_case, clear_debts, stored_doc, tray
):
    with app.app_context():
        expediente = stored_case("B-03")
        clear_debts(expediente.id)
        acta = ActaRetiro(
            expediente_id=expediente.id,
            tipo_retiro=TipoRetiro.AUTORIDAD_LEGAL,
            numero_oficio="OF-2026-115",
            tipo_autoridad=TipoAutoridad.FISCAL,
            institucion="Fiscalia Provincial Penal",
            usuario_registro_id=actor(Rol.ADMISION).id,
        )
        db.session.add(acta)
        db.session.commit()
        document = stored_doc("acta-autoridad.pdf")
        acta.mark_fully_signed(actor(Rol.ADMISION).id, document.reference, document.filename, document.size)
        db.session.commit()

        with pytest.raises(errors.InconsistentReferenceKind):
            services.authorize_release(expediente.id, actor(Rol.ADMISION))

        assert expediente.estado == EstadoExpediente.EN_BANDEJA
        services.release_slot(tray("B-03").id, actor(Rol.VIGILANTE), "Reasignacion por acta inconsistente")
        assert expediente.estado == EstadoExpediente.PENDIENTE_ASIGNACION_BANDEJA


@pytest.mark.parametrize("amount", ["NaN", "Infinity"])
def test_non_finite_amounts_are_rejected(app, actor, stored_case, amount):
    with app.app_context():
        expediente = stored_case()
        with pytest.raises(errors.InvalidValue):
            services.register_financial_debt(expediente.id, amount, actor(Rol.CAJA))

        services.register_financial_debt(expediente.id, "500", actor(Rol.CAJA))
        with pytest.raises(errors.InvalidValue):
            services.record_payment(expediente.id, "B001-900", amount, actor(Rol.CAJA))
        with pytest.raises(errors.InvalidValue):
            services.apply_waiver(expediente.id, amount, "Evaluacion socioeconomica", actor(Rol.SERVICIO_SOCIAL))
        assert expediente.deuda_economica.monto_pendiente == Decimal("500.00")


def test_tray_alert_levels_follow_configured_thresholds(app, stored_case, clock, tray):
    app.config["OCCUPANCY_ALERT_HOURS"] = 6
    app.config["OCCUPANCY_CRITICAL_HOURS"] = 12
    with app.app_context():
        stored_case("B-04")
        clock.advance(hours=7)

        assert [b.codigo for b in services.occupancy_alert()] == ["B-04"]
        assert tray("B-04").nivel_alerta() == NivelAlerta.AMARILLA

        clock.advance(hours=5)
        assert tray("B-04").nivel_alerta() == NivelAlerta.ROJA
