"""Promo codes.

A promo code is consumed at most once. Its type decides which part of a
quote it discounts and which quotes it may be applied to.
"""

import logging
import secrets
import string
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


class PromoType(str, Enum):
    """Promo code effects."""

    FREE_SHIFT_POSTING = "free_shift_posting"  # waives the service fee on a shift
    FREE_JOB_POSTING = "free_job_posting"  # waives the whole posting charge
    FEE_DISCOUNT_10 = "fee_discount_10"  # 10% off the service fee


class QuoteKind(str, Enum):
    """What a quote is for."""

    SHIFT = "shift"
    JOB_POSTING = "job_posting"


# Which quote kinds each promo type may be applied to
PROMO_APPLICABILITY: Dict[PromoType, frozenset] = {
    PromoType.FREE_SHIFT_POSTING: frozenset({QuoteKind.SHIFT}),
    PromoType.FREE_JOB_POSTING: frozenset({QuoteKind.SHIFT, QuoteKind.JOB_POSTING}),
    PromoType.FEE_DISCOUNT_10: frozenset({QuoteKind.SHIFT}),
}


def normalize_code(code: str) -> str:
    return code.strip().upper()


@dataclass
class PromoCode:
    """A single-use promotional code."""

    code: str
    type: str
    description: str = ""
    used: bool = False
    used_at: Optional[datetime] = None
    used_by: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.code or not self.code.strip():
            raise ValueError("Promo code cannot be empty")
        self.code = normalize_code(self.code)

        if isinstance(self.type, PromoType):
            self.type = self.type.value
        valid = [t.value for t in PromoType]
        if self.type not in valid:
            raise ValueError(f"Invalid promo type: {self.type}. Must be one of {valid}")

    @property
    def promo_type(self) -> PromoType:
        return PromoType(self.type)

    def applies_to(self, kind: QuoteKind) -> bool:
        return kind in PROMO_APPLICABILITY[self.promo_type]

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "type": self.type,
            "description": self.description,
            "used": self.used,
            "used_at": self.used_at.isoformat() if self.used_at else None,
            "used_by": self.used_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PromoCode":
        def parse(value):
            if not value:
                return None
            return datetime.fromisoformat(value.replace("Z", "+00:00"))

        return cls(
            code=data["code"],
            type=data["type"],
            description=data.get("description", ""),
            used=bool(data.get("used", False)),
            used_at=parse(data.get("used_at")),
            used_by=data.get("used_by"),
            created_at=parse(data.get("created_at")),
        )


class PromoCodeStorage(Protocol):
    """Protocol for promo-code registries."""

    def get_code(self, code: str) -> Optional[PromoCode]:
        """Get a promo code (case-insensitive)."""
        ...

    def save_code(self, promo: PromoCode) -> str:
        """Save a promo code. Returns the normalized code."""
        ...

    def mark_used(self, code: str, used_by: Optional[str] = None) -> bool:
        """Atomically mark a code used. Returns False if it was already used."""
        ...

    def release(self, code: str) -> bool:
        """Return a used code to the unused pool. Returns False if it was not used."""
        ...


class InMemoryPromoCodeStorage:
    """In-memory promo-code registry for testing and local development."""

    def __init__(self, codes: Optional[List[PromoCode]] = None):
        self._codes: Dict[str, PromoCode] = {}
        self._lock = threading.Lock()
        for promo in codes or []:
            self.save_code(promo)

    def get_code(self, code: str) -> Optional[PromoCode]:
        promo = self._codes.get(normalize_code(code))
        return replace(promo) if promo else None

    def save_code(self, promo: PromoCode) -> str:
        if promo.created_at is None:
            promo.created_at = datetime.now(timezone.utc)
        self._codes[promo.code] = replace(promo)
        return promo.code

    def mark_used(self, code: str, used_by: Optional[str] = None) -> bool:
        with self._lock:
            promo = self._codes.get(normalize_code(code))
            if promo is None or promo.used:
                return False
            promo.used = True
            promo.used_at = datetime.now(timezone.utc)
            promo.used_by = used_by
            return True

    def release(self, code: str) -> bool:
        with self._lock:
            promo = self._codes.get(normalize_code(code))
            if promo is None or not promo.used:
                return False
            promo.used = False
            promo.used_at = None
            promo.used_by = None
            return True


_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_promo_codes(
    storage: PromoCodeStorage,
    count: int,
    promo_type: PromoType,
    description: str = "",
    length: int = 8,
    prefix: str = "",
) -> List[PromoCode]:
    """Generate and save ``count`` fresh promo codes of one type."""
    if count <= 0:
        raise ValueError("count must be positive")

    created: List[PromoCode] = []
    while len(created) < count:
        code = prefix + "".join(secrets.choice(_CODE_ALPHABET) for _ in range(length))
        if storage.get_code(code) is not None:
            continue
        promo = PromoCode(code=code, type=promo_type, description=description)
        storage.save_code(promo)
        created.append(promo)

    logger.info("Generated %d %s promo codes", count, PromoType(promo_type).value)
    return created
