"""
models.py
Domain types for members, plans and dependents, plus the document mapping
used by the member repository.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any


class PlanType(str, Enum):
    CONSULTA = "consulta"
    DESCONTO_CONSULTA = "desconto_consulta"
    DESCONTO_COMPLETO = "desconto_completo"


class PaymentStatus(str, Enum):
    EM_DIA = "em_dia"
    EM_DEBITO = "em_debito"


PLAN_NAMES = {
    PlanType.CONSULTA.value: "Cartão Consulta",
    PlanType.DESCONTO_CONSULTA.value: "Cartão Desconto - Só Consultas",
    PlanType.DESCONTO_COMPLETO.value: "Cartão Desconto - Consultas e Exames",
}
UNKNOWN_PLAN_NAME = "Plano Desconhecido"

PAYMENT_LABELS = {
    PaymentStatus.EM_DIA.value: "Em dia",
    PaymentStatus.EM_DEBITO.value: "Em débito",
}

# Plan validity is a fixed 365 * 86400 seconds, not a calendar year
PLAN_DURATION = timedelta(days=365)
MIN_LIVES = 1
MAX_LIVES = 6


def derive_plan_name(plan_type) -> str:
    value = plan_type.value if isinstance(plan_type, Enum) else plan_type
    return PLAN_NAMES.get(value, UNKNOWN_PLAN_NAME)


@dataclass(frozen=True)
class Dependent:
    name: str
    relationship: str


@dataclass(frozen=True)
class PlanDetails:
    type: str = PlanType.CONSULTA.value
    number_of_lives: int = 1

    @property
    def name(self) -> str:
        # Derived on read, never stored
        return derive_plan_name(self.type)


@dataclass(frozen=True)
class MemberInput:
    """Admin form data for a member that does not exist yet."""

    primary_member_name: str = ""
    cpf: str = ""
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    plan_details: PlanDetails = field(default_factory=PlanDetails)
    dependents: tuple[Dependent, ...] = ()


@dataclass(frozen=True)
class Member:
    id: str
    primary_member_name: str
    cpf: str
    plan_details: PlanDetails
    plan_start_date: datetime | None
    plan_end_date: datetime | None
    payment_status: str
    is_active: bool
    created_at: datetime | None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    dependents: tuple[Dependent, ...] = ()

    def to_document(self) -> dict[str, Any]:
        return fields_to_document(
            {
                "primary_member_name": self.primary_member_name,
                "cpf": self.cpf,
                "email": self.email,
                "phone": self.phone,
                "address": self.address,
                "plan_details": self.plan_details,
                "dependents": self.dependents,
                "plan_start_date": self.plan_start_date,
                "plan_end_date": self.plan_end_date,
                "payment_status": self.payment_status,
                "is_active": self.is_active,
                "created_at": self.created_at,
            }
        )

    @classmethod
    def from_document(cls, member_id: str, doc: dict[str, Any]) -> "Member":
        plan = doc.get("planDetails") or {}
        return cls(
            id=member_id,
            primary_member_name=doc.get("primaryMemberName", ""),
            cpf=doc.get("cpf", ""),
            email=doc.get("email"),
            phone=doc.get("phone"),
            address=doc.get("address"),
            plan_details=PlanDetails(
                type=plan.get("type", ""),
                number_of_lives=int(plan.get("numberOfLives") or 1),
            ),
            dependents=tuple(
                Dependent(name=d.get("name", ""), relationship=d.get("relationship", ""))
                for d in doc.get("dependents") or []
            ),
            plan_start_date=_parse_ts(doc.get("planStartDate")),
            plan_end_date=_parse_ts(doc.get("planEndDate")),
            payment_status=doc.get("paymentStatus", PaymentStatus.EM_DIA.value),
            is_active=bool(doc.get("isActive", False)),
            created_at=_parse_ts(doc.get("createdAt")),
        )


# Member attribute -> stored document key
DOCUMENT_KEYS = {
    "primary_member_name": "primaryMemberName",
    "cpf": "cpf",
    "email": "email",
    "phone": "phone",
    "address": "address",
    "plan_details": "planDetails",
    "dependents": "dependents",
    "plan_start_date": "planStartDate",
    "plan_end_date": "planEndDate",
    "payment_status": "paymentStatus",
    "is_active": "isActive",
    "created_at": "createdAt",
}


def fields_to_document(values: dict[str, Any]) -> dict[str, Any]:
    """
    Convert a mapping of Member attribute names to stored document keys and
    JSON-friendly values. Unknown attribute names raise KeyError.
    """
    doc: dict[str, Any] = {}
    for attr, value in values.items():
        key = DOCUMENT_KEYS[attr]
        if isinstance(value, PlanDetails):
            value = {"type": _enum_value(value.type), "numberOfLives": int(value.number_of_lives)}
        elif attr == "dependents":
            value = [{"name": d.name, "relationship": d.relationship} for d in value]
        elif isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, Enum):
            value = value.value
        doc[key] = value
    return doc


def _enum_value(value):
    return value.value if isinstance(value, Enum) else value


def _parse_ts(value) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(str(value))
    # Stored timestamps are UTC; tolerate naive values written by hand
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts
