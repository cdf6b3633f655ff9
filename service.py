"""
service.py
Membership rules: create/update members, payment toggle, dependents and the
dashboard aggregates.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, TypeVar

from db import MemberRepository, MemberSubscription
from errors import DuplicateCpf, MemberNotFound, ValidationError
from models import (
    DOCUMENT_KEYS,
    PLAN_DURATION,
    Dependent,
    Member,
    MemberInput,
    PaymentStatus,
    PlanType,
    fields_to_document,
)
from utils import now_utc, validate_field_types, validate_member_inputs

logger = logging.getLogger(__name__)

EXPIRING_WINDOW = timedelta(days=30)

Draft = TypeVar("Draft", Member, MemberInput)


class MembershipService:
    def __init__(
        self,
        repository: MemberRepository,
        clock: Callable[[], datetime] = now_utc,
        poll_interval: float = 1.0,
    ):
        self.repository = repository
        self.clock = clock
        self.poll_interval = poll_interval

    def list_members(self) -> MemberSubscription:
        return self.repository.subscribe_all(self.poll_interval)

    def get_member(self, member_id: str) -> Member:
        member = self.repository.get(member_id)
        if member is None:
            raise MemberNotFound(member_id)
        return member

    def create_member(self, data: MemberInput) -> Member:
        errors = validate_field_types(
            {
                "primary_member_name": data.primary_member_name,
                "cpf": data.cpf,
                "email": data.email,
                "phone": data.phone,
                "address": data.address,
                "plan_details": data.plan_details,
                "dependents": data.dependents,
            }
        )
        if errors:
            raise ValidationError(errors)

        errors = validate_member_inputs(
            primary_member_name=data.primary_member_name,
            cpf=data.cpf,
            plan_details=data.plan_details,
        )
        if errors:
            raise ValidationError(errors)

        cpf = data.cpf.strip()
        # Check-then-insert is not atomic; two sessions can both pass this check
        if self.repository.find_by_field("cpf", cpf):
            logger.warning("Rejected new member: CPF %s already registered", cpf)
            raise DuplicateCpf(cpf)

        now = self.clock()
        member = Member(
            id="",
            primary_member_name=data.primary_member_name.strip(),
            cpf=cpf,
            email=data.email or None,
            phone=data.phone or None,
            address=data.address or None,
            plan_details=data.plan_details,
            dependents=tuple(data.dependents),
            plan_start_date=now,
            plan_end_date=now + PLAN_DURATION,
            payment_status=PaymentStatus.EM_DIA.value,
            is_active=True,
            created_at=now,
        )
        member_id = self.repository.insert(member.to_document())
        logger.info("Created member %s (%s)", member_id, member.plan_details.type)
        return dataclasses.replace(member, id=member_id)

    def update_member(self, member_id: str, changes: dict[str, Any]) -> Member:
        """
        Apply a partial update. Any Member attribute except id may change.
        plan_end_date is never recomputed here, and there is no version check.
        """
        unknown = sorted(set(changes) - set(DOCUMENT_KEYS))
        if unknown:
            raise ValidationError([f"Campo não editável: {name}" for name in unknown])

        changes = dict(changes)
        for key in ("primary_member_name", "cpf"):
            if key in changes and changes[key] is None:
                changes[key] = ""

        # Nothing reaches the store unless it reads back as a Member
        errors = validate_field_types(changes)
        if errors:
            raise ValidationError(errors)

        errors = validate_member_inputs(
            primary_member_name=changes.get("primary_member_name"),
            cpf=changes.get("cpf"),
            plan_details=changes.get("plan_details"),
            payment_status=_enum_value(changes.get("payment_status")),
            require_identity=False,
        )
        if errors:
            raise ValidationError(errors)

        if "primary_member_name" in changes:
            changes["primary_member_name"] = changes["primary_member_name"].strip()
        if "cpf" in changes:
            changes["cpf"] = changes["cpf"].strip()
            holders = self.repository.find_by_field("cpf", changes["cpf"])
            if any(m.id != member_id for m in holders):
                raise DuplicateCpf(changes["cpf"])

        self.repository.patch(member_id, fields_to_document(changes))
        logger.info("Updated member %s: %s", member_id, ", ".join(sorted(changes)))
        return self.get_member(member_id)

    def toggle_payment_status(self, member_id: str) -> Member:
        # Read then write; a concurrent edit in between is lost
        member = self.get_member(member_id)
        if member.payment_status == PaymentStatus.EM_DIA.value:
            new_status = PaymentStatus.EM_DEBITO.value
        else:
            new_status = PaymentStatus.EM_DIA.value
        self.repository.patch(member_id, {"paymentStatus": new_status})
        logger.info("Payment status of %s -> %s", member_id, new_status)
        return dataclasses.replace(member, payment_status=new_status)


def add_dependent(member: Draft, name: str, relationship: str) -> Draft:
    """Append a dependent; blank name or relationship is silently ignored."""
    name = name or ""
    relationship = relationship or ""
    if not name.strip() or not relationship.strip():
        return member
    return dataclasses.replace(
        member, dependents=(*member.dependents, Dependent(name=name, relationship=relationship))
    )


def remove_dependent(member: Draft, index: int) -> Draft:
    """
    Drop the dependent at index. Out-of-range indexes (negatives included)
    leave the member unchanged. The result still has to be persisted.
    """
    if not 0 <= index < len(member.dependents):
        return member
    deps = member.dependents
    return dataclasses.replace(member, dependents=deps[:index] + deps[index + 1:])


@dataclass(frozen=True)
class DashboardStats:
    active_members: int = 0
    total_lives: int = 0
    new_this_month: int = 0
    expiring_soon: int = 0
    defaulting: int = 0
    plan_distribution: dict[str, int] = field(
        default_factory=lambda: {t.value: 0 for t in PlanType}
    )


def compute_dashboard_stats(members: Iterable[Member], now: datetime | None = None) -> DashboardStats:
    """
    Single pass over the current snapshot. Plan types outside the three known
    tiers are not counted in plan_distribution.
    """
    now = _as_utc(now or now_utc())
    expiring_limit = now + EXPIRING_WINDOW

    active = lives = new_this_month = expiring = defaulting = 0
    distribution = {t.value: 0 for t in PlanType}

    for m in members:
        end = _as_utc(m.plan_end_date) if m.plan_end_date else None
        if m.is_active and end and end > now:
            active += 1
            lives += m.plan_details.number_of_lives or 1
            if m.plan_details.type in distribution:
                distribution[m.plan_details.type] += 1
            if end <= expiring_limit:
                expiring += 1

        if m.payment_status == PaymentStatus.EM_DEBITO.value:
            defaulting += 1

        if m.plan_start_date:
            start = _as_utc(m.plan_start_date).astimezone(now.tzinfo)
            if (start.year, start.month) == (now.year, now.month):
                new_this_month += 1

    return DashboardStats(
        active_members=active,
        total_lives=lives,
        new_this_month=new_this_month,
        expiring_soon=expiring,
        defaulting=defaulting,
        plan_distribution=distribution,
    )


def _as_utc(ts: datetime) -> datetime:
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts


def _enum_value(value):
    return getattr(value, "value", value)
