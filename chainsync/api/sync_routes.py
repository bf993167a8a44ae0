"""Webhook receiver: the indexer pushes entity changes here.

Entity and batch endpoints require the ``X-Sync-Api-Key`` header. Status,
force and clear take no credential and must only be reachable from a trusted
network.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from starlette.concurrency import run_in_threadpool

from chainsync.api.common import envelope, get_services, read_json, require_sync_api_key
from chainsync.db.session import get_session
from chainsync.log import get_logger
from chainsync.sync.schema import DonationRecord, parse_record
from chainsync.sync.status import status_report
from chainsync.sync.store import clear_cache
from chainsync.sync.upsert import WriteOutcome

logger = get_logger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])

authorized = [Depends(require_sync_api_key)]


@router.post("/campaign", dependencies=authorized, summary="Sync one campaign")
async def sync_campaign(request: Request):
    payload = await read_json(request)
    outcome = await run_in_threadpool(get_services(request).engine.upsert_campaign, payload)
    return envelope("Campaign synced", {"outcome": outcome.value})


@router.post("/campaign-balance", dependencies=authorized, summary="Update a campaign balance")
async def sync_campaign_balance(request: Request):
    payload = await read_json(request)
    await run_in_threadpool(get_services(request).engine.update_campaign_balance, payload)
    return envelope("Campaign balance updated")


@router.post("/donation", dependencies=authorized, summary="Sync one donation")
async def sync_donation(request: Request, background_tasks: BackgroundTasks):
    """Store a donation; a newly stored one may earn the donor a badge."""
    services = get_services(request)
    payload = await read_json(request)
    record = parse_record(DonationRecord, payload, "donation")

    outcome = await run_in_threadpool(services.engine.insert_donation, record)

    if outcome == WriteOutcome.INSERTED and services.badge_minter is not None:
        background_tasks.add_task(
            services.badge_minter.check_and_mint, record.donor, record.campaign_id, record.amount
        )

    message = "Donation synced" if outcome == WriteOutcome.INSERTED else "Donation already synced"
    return envelope(message, {"outcome": outcome.value})


@router.post("/withdrawal", dependencies=authorized, summary="Sync one withdrawal")
async def sync_withdrawal(request: Request):
    payload = await read_json(request)
    outcome = await run_in_threadpool(get_services(request).engine.insert_withdrawal, payload)
    return envelope("Withdrawal synced", {"outcome": outcome.value})


@router.post("/badge", dependencies=authorized, summary="Sync one badge")
async def sync_badge(request: Request):
    payload = await read_json(request)
    outcome = await run_in_threadpool(get_services(request).engine.upsert_badge, payload)
    return envelope("Badge synced", {"outcome": outcome.value})


@router.post("/batch", dependencies=authorized, summary="Sync a batch of entities")
async def sync_batch(request: Request):
    """All-or-nothing write of campaigns, donations, withdrawals and badges."""
    payload = await read_json(request)
    result = await run_in_threadpool(get_services(request).engine.sync_batch, payload)
    return envelope("Batch sync completed", result.to_dict())


@router.get("/status", summary="Sync status and table counts")
async def sync_status(request: Request):
    stale_after = get_services(request).config.sync_stale_after_seconds

    def build_report():
        with get_session() as session:
            return status_report(session, stale_after)

    return envelope("Sync status", await run_in_threadpool(build_report))


@router.post("/force", summary="Run a full sync from the indexer now")
async def force_sync(request: Request):
    result = await run_in_threadpool(get_services(request).poller.run_once)
    if result.skipped:
        return envelope("Sync already in progress, skipped", result.to_dict())
    message = "Force sync completed" if result.ok else "Force sync completed with errors"
    return envelope(message, result.to_dict(), success=result.ok)


@router.post("/clear", summary="Delete all cached blockchain data")
async def clear_all(request: Request):
    def clear():
        with get_session() as session:
            return clear_cache(session)

    deleted = await run_in_threadpool(clear)
    logger.warning(f"Cache cleared via API from {request.client.host if request.client else 'unknown'}")
    return envelope("Blockchain cache cleared", {"deleted": deleted})
