from fastapi import APIRouter

from payout_engine.api.v1.health import router as health_router
from payout_engine.api.v1.payouts import router as payouts_router
from payout_engine.api.v1.bookings import router as bookings_router
from payout_engine.api.v1.cooperative import router as cooperative_router
from payout_engine.api.v1.accounts import router as accounts_router
from payout_engine.api.v1.guardrails import router as guardrails_router


v1_router = APIRouter()

# ------------------------------------------------------------------
# SYSTEM
# ------------------------------------------------------------------
v1_router.include_router(health_router, tags=["health"])

# ------------------------------------------------------------------
# PAYOUTS (ledger is the source of truth)
# ------------------------------------------------------------------
v1_router.include_router(payouts_router, tags=["payouts"])
v1_router.include_router(bookings_router, tags=["holds"])
v1_router.include_router(cooperative_router, tags=["cooperative"])

# ------------------------------------------------------------------
# ADMIN
# ------------------------------------------------------------------
v1_router.include_router(accounts_router, tags=["accounts"])
v1_router.include_router(guardrails_router, tags=["guardrails"])
