"""
utils.py
Validation, clock, exports, sample data.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable

import pandas as pd

from errors import DuplicateCpf
from models import (
    MAX_LIVES,
    MIN_LIVES,
    PAYMENT_LABELS,
    PLAN_NAMES,
    Dependent,
    Member,
    MemberInput,
    PaymentStatus,
    PlanDetails,
    PlanType,
)

MEMBER_COLUMNS = [
    "id", "primary_member_name", "cpf", "email", "phone", "address", "plan_type", "plan_name",
    "number_of_lives", "dependents", "plan_start_date", "plan_end_date", "payment_status", "is_active",
]


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def format_date(ts: datetime | None) -> str:
    return ts.date().isoformat() if ts else ""


def validate_member_inputs(
    primary_member_name: str | None = None,
    cpf: str | None = None,
    plan_details: PlanDetails | None = None,
    payment_status: str | None = None,
    require_identity: bool = True,
) -> list[str]:
    """
    Returns the list of problems with the given fields. Fields passed as None
    are skipped unless require_identity demands name and CPF.
    """
    errors: list[str] = []
    if require_identity or primary_member_name is not None:
        if not (primary_member_name or "").strip():
            errors.append("Nome é obrigatório.")
    if require_identity or cpf is not None:
        if not (cpf or "").strip():
            errors.append("CPF é obrigatório.")
    if plan_details is not None:
        plan_type = getattr(plan_details.type, "value", plan_details.type)
        if plan_type not in PLAN_NAMES:
            errors.append(f"Tipo de plano inválido: {plan_type!r}.")
        lives = plan_details.number_of_lives
        if not isinstance(lives, int) or isinstance(lives, bool) or not MIN_LIVES <= lives <= MAX_LIVES:
            errors.append(f"Número de vidas deve estar entre {MIN_LIVES} e {MAX_LIVES}.")
    if payment_status is not None and payment_status not in PAYMENT_LABELS:
        errors.append(f"Status de pagamento inválido: {payment_status!r}.")
    return errors


TIMESTAMP_FIELDS = ("plan_start_date", "plan_end_date", "created_at")
TEXT_FIELDS = ("primary_member_name", "cpf")
OPTIONAL_TEXT_FIELDS = ("email", "phone", "address")


def validate_field_types(values: dict) -> list[str]:
    """
    Type check Member attribute values before they reach the store. Anything
    that would not read back as a Member is reported here.
    """
    errors: list[str] = []
    for key in TIMESTAMP_FIELDS:
        if key in values and not isinstance(values[key], datetime):
            errors.append(f"{key} deve ser uma data/hora.")
    for key in TEXT_FIELDS:
        if key in values and not isinstance(values[key], str):
            errors.append(f"{key} deve ser texto.")
    for key in OPTIONAL_TEXT_FIELDS:
        if key in values and values[key] is not None and not isinstance(values[key], str):
            errors.append(f"{key} deve ser texto.")
    if "is_active" in values and not isinstance(values["is_active"], bool):
        errors.append("is_active deve ser verdadeiro ou falso.")
    if "plan_details" in values and not isinstance(values["plan_details"], PlanDetails):
        errors.append("plan_details deve ser um PlanDetails.")
    if "dependents" in values:
        deps = values["dependents"]
        if not isinstance(deps, (list, tuple)) or not all(isinstance(d, Dependent) for d in deps):
            errors.append("dependents deve ser uma sequência de Dependent.")
    return errors


def members_frame(members: Iterable[Member]) -> pd.DataFrame:
    rows = [
        {
            "id": m.id,
            "primary_member_name": m.primary_member_name,
            "cpf": m.cpf,
            "email": m.email,
            "phone": m.phone,
            "address": m.address,
            "plan_type": m.plan_details.type,
            "plan_name": m.plan_details.name,
            "number_of_lives": m.plan_details.number_of_lives,
            "dependents": "; ".join(f"{d.name} ({d.relationship})" for d in m.dependents),
            "plan_start_date": format_date(m.plan_start_date),
            "plan_end_date": format_date(m.plan_end_date),
            "payment_status": PAYMENT_LABELS.get(m.payment_status, m.payment_status),
            "is_active": m.is_active,
        }
        for m in members
    ]
    if not rows:
        return pd.DataFrame(columns=MEMBER_COLUMNS)
    return pd.DataFrame(rows, columns=MEMBER_COLUMNS)


def members_to_csv_bytes(members: Iterable[Member]) -> bytes:
    return members_frame(members).to_csv(index=False).encode("utf-8")


def expiring_members(members: Iterable[Member], now: datetime, days: int = 30) -> list[Member]:
    limit = now + timedelta(days=days)
    rows = [
        m for m in members
        if m.is_active and m.plan_end_date and now < m.plan_end_date <= limit
    ]
    return sorted(rows, key=lambda m: m.plan_end_date)


def delinquent_members(members: Iterable[Member]) -> list[Member]:
    return [m for m in members if m.payment_status == PaymentStatus.EM_DEBITO.value]


def plan_summary(members: Iterable[Member]) -> pd.DataFrame:
    """Members and covered lives per plan type."""
    df = members_frame(members)
    if df.empty:
        return pd.DataFrame(columns=["plan_name", "members", "lives"])
    summary = (
        df.groupby("plan_name", as_index=False)
        .agg(members=("id", "count"), lives=("number_of_lives", "sum"))
        .sort_values("plan_name")
    )
    return summary.reset_index(drop=True)


SAMPLE_MEMBERS = [
    MemberInput(
        primary_member_name="Maria Oliveira",
        cpf="111.222.333-44",
        email="maria@example.com",
        phone="(11) 90000-0001",
        address="Rua das Flores, 10",
        plan_details=PlanDetails(type=PlanType.CONSULTA.value, number_of_lives=1),
    ),
    MemberInput(
        primary_member_name="João Santos",
        cpf="222.333.444-55",
        phone="(11) 90000-0002",
        plan_details=PlanDetails(type=PlanType.DESCONTO_CONSULTA.value, number_of_lives=3),
        dependents=(
            Dependent(name="Ana Santos", relationship="filha"),
            Dependent(name="Carla Santos", relationship="esposa"),
        ),
    ),
    MemberInput(
        primary_member_name="Pedro Lima",
        cpf="333.444.555-66",
        email="pedro@example.com",
        plan_details=PlanDetails(type=PlanType.DESCONTO_COMPLETO.value, number_of_lives=2),
        dependents=(Dependent(name="Lucas Lima", relationship="filho"),),
    ),
]

SAMPLE_DELINQUENT_CPF = "222.333.444-55"


def insert_sample_data(service) -> list[Member]:
    """
    Insert the sample members through the service. CPFs that already exist
    are skipped, so running it twice adds nothing the second time.
    """
    created = []
    for sample in SAMPLE_MEMBERS:
        try:
            created.append(service.create_member(sample))
        except DuplicateCpf:
            continue
    # One member delinquent so the dashboard has something to show
    created = [
        service.toggle_payment_status(m.id) if m.cpf == SAMPLE_DELINQUENT_CPF else m
        for m in created
    ]
    return created
