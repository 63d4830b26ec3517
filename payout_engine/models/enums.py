# payout_engine/models/enums.py
from __future__ import annotations
from enum import Enum


class ConnectStatus(str, Enum):
    not_connected = "not_connected"
    pending = "pending"
    connected = "connected"
    restricted = "restricted"


class AssignmentStatus(str, Enum):
    # assignment-local cache; the ledger is truth
    pending = "pending"
    on_hold = "on_hold"
    paid = "paid"
    failed = "failed"


class LedgerStatus(str, Enum):
    pending = "pending"
    paid = "paid"
    failed = "failed"


class SubjectPayoutStatus(str, Enum):
    # denormalized, for display only
    pending = "pending"
    blocked = "blocked"
    failed = "failed"
    paid = "paid"


class PayoutVariantName(str, Enum):
    chef = "chef"
    farmer = "farmer"
    ingredient = "ingredient"
    cooperative = "cooperative"


class SubjectType(str, Enum):
    booking = "booking"
    cooperative_period = "cooperative_period"


class PayeeKind(str, Enum):
    chef = "chef"
    farmer = "farmer"


class FulfillmentStatus(str, Enum):
    ordered = "ordered"
    confirmed = "confirmed"
    delivered = "delivered"
    paid = "paid"
    cancelled = "cancelled"


class MemberStatus(str, Enum):
    active = "active"
    inactive = "inactive"


class PeriodType(str, Enum):
    monthly = "monthly"
    quarterly = "quarterly"
    annual = "annual"
