"""
errors.py
Error taxonomy for membership operations.
"""

from __future__ import annotations


class MembershipError(Exception):
    """Base class for every error surfaced to the presentation layer."""


class ValidationError(MembershipError):
    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class DuplicateCpf(MembershipError):
    def __init__(self, cpf: str):
        self.cpf = cpf
        super().__init__(f"Já existe um associado com o CPF {cpf}.")


class MemberNotFound(MembershipError):
    def __init__(self, member_id: str):
        self.member_id = member_id
        super().__init__(f"Associado {member_id} não encontrado.")


class RepositoryUnavailable(MembershipError):
    """The document store could not complete a read or write."""


class LookupFailed(MembershipError):
    """Associate lookup failed for a reason other than 'no match'."""
