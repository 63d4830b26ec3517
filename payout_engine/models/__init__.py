# Import every model so Base.metadata is complete for create_all / alembic.
from payout_engine.models.booking import Booking  # noqa: F401
from payout_engine.models.payee import Chef, Farmer  # noqa: F401
from payout_engine.models.cooperative import (  # noqa: F401
    CooperativeMember,
    CooperativePeriod,
    CooperativePayout,
)
from payout_engine.models.assignments import BookingChef, BookingFarmer, BookingIngredient  # noqa: F401
from payout_engine.models.payout_ledger import PayoutLedgerEntry  # noqa: F401
from payout_engine.models.margin_guardrail import MarginGuardrailConfig  # noqa: F401
from payout_engine.models.audit_log import AuditLog  # noqa: F401
