from datetime import timedelta

import pytest

from errors import DuplicateCpf, MemberNotFound, ValidationError
from models import Dependent, MemberInput, PlanDetails, PlanType
from service import add_dependent, remove_dependent


def _input(cpf="123.456.789-00", name="Maria Souza", **kwargs):
    return MemberInput(primary_member_name=name, cpf=cpf, **kwargs)


class TestCreateMember:
    def test_defaults_on_creation(self, service, now):
        member = service.create_member(_input())
        assert member.id
        assert member.is_active is True
        assert member.payment_status == "em_dia"
        assert member.plan_start_date == now
        assert member.created_at == now
        assert (member.plan_end_date - member.plan_start_date).total_seconds() == 365 * 86400

    def test_persisted_document_matches(self, service, repository):
        created = service.create_member(
            _input(plan_details=PlanDetails(type=PlanType.DESCONTO_COMPLETO, number_of_lives=4))
        )
        stored = repository.get(created.id)
        assert stored.cpf == "123.456.789-00"
        assert stored.plan_details.type == "desconto_completo"
        assert stored.plan_details.name == "Cartão Desconto - Consultas e Exames"
        assert stored.plan_details.number_of_lives == 4
        assert stored.plan_end_date == created.plan_end_date

    def test_duplicate_cpf_rejected_without_write(self, service, repository):
        service.create_member(_input())
        with pytest.raises(DuplicateCpf):
            service.create_member(_input(name="Outra Pessoa"))
        assert len(repository.list_all()) == 1

    def test_cpf_is_trimmed_before_duplicate_check(self, service):
        service.create_member(_input(cpf="999"))
        with pytest.raises(DuplicateCpf):
            service.create_member(_input(cpf="  999 "))

    @pytest.mark.parametrize("name, cpf", [("", "123"), ("Maria", ""), ("   ", "123"), ("Maria", "  ")])
    def test_name_and_cpf_required(self, service, repository, name, cpf):
        with pytest.raises(ValidationError):
            service.create_member(_input(name=name, cpf=cpf))
        assert repository.list_all() == []

    @pytest.mark.parametrize("lives", [0, 7, -1])
    def test_lives_out_of_range(self, service, lives):
        with pytest.raises(ValidationError) as exc_info:
            service.create_member(_input(plan_details=PlanDetails(number_of_lives=lives)))
        assert any("vidas" in e for e in exc_info.value.errors)

    def test_unknown_plan_type_rejected(self, service):
        with pytest.raises(ValidationError):
            service.create_member(_input(plan_details=PlanDetails(type="premium")))

    def test_plan_details_as_dict_rejected(self, service, repository):
        with pytest.raises(ValidationError):
            service.create_member(_input(plan_details={"type": "consulta", "numberOfLives": 1}))
        assert repository.list_all() == []

    def test_dependents_are_stored_in_order(self, service, repository):
        deps = (Dependent("Ana", "filha"), Dependent("Bia", "filha"))
        created = service.create_member(_input(dependents=deps))
        assert repository.get(created.id).dependents == deps


class TestUpdateMember:
    def test_partial_update(self, service):
        created = service.create_member(_input(email="old@example.com"))
        updated = service.update_member(created.id, {"email": "new@example.com"})
        assert updated.email == "new@example.com"
        assert updated.primary_member_name == "Maria Souza"

    def test_plan_change_does_not_recompute_end_date(self, service):
        created = service.create_member(_input())
        updated = service.update_member(
            created.id, {"plan_details": PlanDetails(type="desconto_consulta", number_of_lives=2)}
        )
        assert updated.plan_details.name == "Cartão Desconto - Só Consultas"
        assert updated.plan_end_date == created.plan_end_date

    def test_end_date_only_changes_when_explicitly_patched(self, service, now):
        created = service.create_member(_input())
        new_end = now + timedelta(days=10)
        updated = service.update_member(created.id, {"plan_end_date": new_end})
        assert updated.plan_end_date == new_end

    def test_id_is_not_editable(self, service):
        created = service.create_member(_input())
        with pytest.raises(ValidationError):
            service.update_member(created.id, {"id": "other"})

    def test_unknown_field_rejected(self, service):
        created = service.create_member(_input())
        with pytest.raises(ValidationError):
            service.update_member(created.id, {"nickname": "Mari"})

    def test_blank_name_rejected(self, service):
        created = service.create_member(_input())
        with pytest.raises(ValidationError):
            service.update_member(created.id, {"primary_member_name": " "})

    def test_lives_out_of_range_rejected(self, service):
        created = service.create_member(_input())
        with pytest.raises(ValidationError):
            service.update_member(created.id, {"plan_details": PlanDetails(number_of_lives=9)})

    def test_invalid_payment_status_rejected(self, service):
        created = service.create_member(_input())
        with pytest.raises(ValidationError):
            service.update_member(created.id, {"payment_status": "pago"})

    def test_unknown_member(self, service):
        with pytest.raises(MemberNotFound):
            service.update_member("missing", {"email": "x@example.com"})

    def test_cpf_change_allowed_when_free(self, service, repository):
        created = service.create_member(_input(cpf="111"))
        updated = service.update_member(created.id, {"cpf": "222"})
        assert updated.cpf == "222"
        assert repository.find_by_field("cpf", "111") == []

    def test_cpf_change_to_taken_value_rejected(self, service):
        service.create_member(_input(cpf="111"))
        other = service.create_member(_input(cpf="222", name="João"))
        with pytest.raises(DuplicateCpf):
            service.update_member(other.id, {"cpf": "111"})

    def test_keeping_own_cpf_is_not_duplicate(self, service):
        created = service.create_member(_input(cpf="111"))
        updated = service.update_member(created.id, {"cpf": "111", "phone": "555"})
        assert updated.phone == "555"

    def test_bad_end_date_rejected_before_write(self, service, repository):
        created = service.create_member(_input())
        with pytest.raises(ValidationError) as exc_info:
            service.update_member(created.id, {"plan_end_date": "not-a-date"})
        assert any("plan_end_date" in e for e in exc_info.value.errors)
        members = repository.list_all()
        assert members[0].plan_end_date == created.plan_end_date

    def test_plan_details_as_dict_rejected(self, service, repository):
        created = service.create_member(_input())
        with pytest.raises(ValidationError):
            service.update_member(created.id, {"plan_details": {"type": "consulta", "numberOfLives": 2}})
        assert repository.get(created.id).plan_details == created.plan_details

    def test_non_bool_active_flag_rejected(self, service, repository):
        created = service.create_member(_input())
        with pytest.raises(ValidationError):
            service.update_member(created.id, {"is_active": "yes"})
        assert repository.get(created.id).is_active is True

    def test_dependents_as_dicts_rejected(self, service, repository):
        created = service.create_member(_input())
        with pytest.raises(ValidationError):
            service.update_member(created.id, {"dependents": [{"name": "Ana", "relationship": "irmã"}]})
        assert repository.get(created.id).dependents == ()

    def test_dependents_as_list_accepted(self, service):
        created = service.create_member(_input())
        updated = service.update_member(created.id, {"dependents": [Dependent("Ana", "irmã")]})
        assert updated.dependents == (Dependent("Ana", "irmã"),)

    def test_last_writer_wins(self, service):
        created = service.create_member(_input())
        service.update_member(created.id, {"phone": "first"})
        service.update_member(created.id, {"phone": "second"})
        assert service.get_member(created.id).phone == "second"


class TestTogglePaymentStatus:
    def test_flips_status(self, service):
        created = service.create_member(_input())
        toggled = service.toggle_payment_status(created.id)
        assert toggled.payment_status == "em_debito"
        assert service.get_member(created.id).payment_status == "em_debito"

    def test_twice_restores_original(self, service):
        created = service.create_member(_input())
        service.toggle_payment_status(created.id)
        again = service.toggle_payment_status(created.id)
        assert again.payment_status == created.payment_status

    def test_unknown_member(self, service):
        with pytest.raises(MemberNotFound):
            service.toggle_payment_status("missing")


class TestDependents:
    def test_blank_fields_are_ignored(self):
        draft = _input()
        assert add_dependent(draft, "", "irmão").dependents == ()
        assert add_dependent(draft, "Ana", "").dependents == ()
        assert add_dependent(draft, "   ", "irmã").dependents == ()

    def test_append(self):
        draft = add_dependent(_input(), "Ana", "irmã")
        assert draft.dependents == (Dependent(name="Ana", relationship="irmã"),)

    def test_values_are_stored_as_typed(self):
        draft = add_dependent(_input(), " Ana ", "irmã ")
        assert draft.dependents[0] == Dependent(" Ana ", "irmã ")

    def test_duplicates_allowed(self):
        draft = add_dependent(add_dependent(_input(), "Ana", "irmã"), "Ana", "irmã")
        assert len(draft.dependents) == 2

    def test_remove_by_position(self):
        draft = _input(dependents=(Dependent("A", "x"), Dependent("B", "y"), Dependent("C", "z")))
        assert remove_dependent(draft, 1).dependents == (Dependent("A", "x"), Dependent("C", "z"))

    @pytest.mark.parametrize("index", [3, 10, -1])
    def test_remove_out_of_range_is_noop(self, index):
        draft = _input(dependents=(Dependent("A", "x"), Dependent("B", "y"), Dependent("C", "z")))
        assert remove_dependent(draft, index) is draft

    def test_removal_needs_persisting(self, service):
        created = service.create_member(_input(dependents=(Dependent("A", "x"), Dependent("B", "y"))))
        edited = remove_dependent(created, 0)
        assert len(service.get_member(created.id).dependents) == 2

        service.update_member(created.id, {"dependents": edited.dependents})
        assert service.get_member(created.id).dependents == (Dependent("B", "y"),)
