"""Payment gateway callback that triggers on-chain donations."""

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from chainsync.api.common import envelope, get_services, read_json

router = APIRouter(prefix="/api/payments", tags=["payments"])

OUTCOME_MESSAGES = {
    "completed": "Donation completed",
    "duplicate": "Order already settled",
    "ignored": "Transaction not settled",
}


@router.post("/qris/notification", summary="QRIS settlement notification")
async def qris_notification(request: Request):
    """Mint, approve and donate for a settled QRIS payment.

    Re-delivered notifications for an order that already produced a donation
    are answered from the store without touching the chain.
    """
    payload = await read_json(request)
    outcome = await run_in_threadpool(get_services(request).settlement.handle_notification, payload)
    return envelope(
        OUTCOME_MESSAGES[outcome.status],
        outcome.to_dict(),
        success=outcome.status != "ignored",
    )
