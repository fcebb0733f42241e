# =============================================================================
# prestatario/domain/models.py
# Typed Views over Cached and Remote Records
# =============================================================================
"""
Records travel through the app as the plain dicts Supabase returns. These
dataclasses are typed views over those dicts for code that wants them.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class LoanStatus(Enum):
    """Loan status values stored in the `status` column."""
    ACTIVE = "active"
    RETURNED = "returned"
    OVERDUE = "overdue"


class OperationKind(Enum):
    """Writes that can be queued while offline."""
    CREATE_LOAN = "CREATE_LOAN"
    ADD_PAYMENT = "ADD_PAYMENT"
    UPDATE_PROFILE = "UPDATE_PROFILE"


def _as_float(value: Any) -> float:
    # Postgres numeric columns can come back as strings
    if value is None or value == "":
        return 0.0
    return float(value)


@dataclass
class Contact:
    id: str
    user_id: str
    name: str
    phone: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> Contact:
        return cls(
            id=record["id"],
            user_id=record.get("user_id", ""),
            name=record.get("name", ""),
            phone=record.get("phone"),
            notes=record.get("notes"),
            created_at=record.get("created_at"),
            updated_at=record.get("updated_at"),
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "phone": self.phone,
            "notes": self.notes,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class Loan:
    """A loan made to a borrower, with its running total of repayments."""
    id: str
    user_id: str
    borrower_name: str
    amount: float
    loan_date: str
    total_paid: float = 0.0
    status: LoanStatus = LoanStatus.ACTIVE
    contact_id: Optional[str] = None
    description: Optional[str] = None
    due_date: Optional[str] = None
    returned_date: Optional[str] = None
    interest_rate: Optional[float] = None
    installments: Optional[int] = None
    tags: List[str] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    contact: Optional[Contact] = None

    @property
    def remaining(self) -> float:
        return self.amount - self.total_paid

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> Loan:
        contact = record.get("contact")
        return cls(
            id=record["id"],
            user_id=record.get("user_id", ""),
            borrower_name=record.get("borrower_name", ""),
            amount=_as_float(record.get("amount")),
            loan_date=record.get("loan_date", ""),
            total_paid=_as_float(record.get("total_paid")),
            status=LoanStatus(record.get("status") or LoanStatus.ACTIVE.value),
            contact_id=record.get("contact_id"),
            description=record.get("description"),
            due_date=record.get("due_date"),
            returned_date=record.get("returned_date"),
            interest_rate=record.get("interest_rate"),
            installments=record.get("installments"),
            tags=list(record.get("tags") or []),
            created_at=record.get("created_at"),
            updated_at=record.get("updated_at"),
            contact=Contact.from_record(contact) if contact else None,
        )

    def to_record(self) -> Dict[str, Any]:
        record = {
            "id": self.id,
            "user_id": self.user_id,
            "contact_id": self.contact_id,
            "borrower_name": self.borrower_name,
            "amount": self.amount,
            "total_paid": self.total_paid,
            "description": self.description,
            "loan_date": self.loan_date,
            "due_date": self.due_date,
            "returned_date": self.returned_date,
            "status": self.status.value,
            "interest_rate": self.interest_rate,
            "installments": self.installments,
            "tags": list(self.tags),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if self.contact is not None:
            record["contact"] = self.contact.to_record()
        return record


@dataclass
class Payment:
    id: str
    loan_id: str
    user_id: str
    amount: float
    payment_date: str
    notes: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> Payment:
        return cls(
            id=record["id"],
            loan_id=record["loan_id"],
            user_id=record.get("user_id", ""),
            amount=_as_float(record.get("amount")),
            payment_date=record.get("payment_date", ""),
            notes=record.get("notes"),
            created_at=record.get("created_at"),
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "loan_id": self.loan_id,
            "user_id": self.user_id,
            "amount": self.amount,
            "payment_date": self.payment_date,
            "notes": self.notes,
            "created_at": self.created_at,
        }


@dataclass
class Profile:
    id: str
    currency: str = "DOP"
    email: Optional[str] = None
    full_name: Optional[str] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> Profile:
        return cls(
            id=record["id"],
            currency=record.get("currency") or "DOP",
            email=record.get("email"),
            full_name=record.get("full_name"),
        )


@dataclass
class QueuedOperation:
    """A write captured while offline, waiting to be replayed."""
    id: int
    kind: OperationKind
    payload: Dict[str, Any]
    created_at: str
    attempts: int = 0
    last_error: Optional[str] = None
