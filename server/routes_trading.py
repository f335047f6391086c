"""
Trading routes: account snapshot, manual and scheduled auto-trade runs,
portfolio reset and run status.
"""
import hmac
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from tradedesk.models import RunStatus, RunSummary
from tradedesk.single_flight import RunInProgressError

RUN_STATUS_CODES = {
    RunStatus.COMPLETED: 200,
    RunStatus.NO_CANDIDATES: 200,
    RunStatus.MAX_POSITIONS: 200,
    RunStatus.DISABLED: 403,
    RunStatus.BUSY: 409,
    RunStatus.ACCOUNT_UNAVAILABLE: 500,
    RunStatus.SCAN_FAILED: 502,
}


class RunRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    force_refresh: bool = Field(default=False, alias="forceRefresh")


class Unauthorized(Exception):
    pass


def _secrets_match(given: Optional[str], expected: Optional[str]) -> bool:
    if not given or not expected:
        return False
    return hmac.compare_digest(given.encode(), expected.encode())


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization[len("Bearer "):].strip()


def run_response(summary: RunSummary, market_closed_code: int) -> JSONResponse:
    if summary.status == RunStatus.MARKET_CLOSED:
        code = market_closed_code
    else:
        code = RUN_STATUS_CODES.get(summary.status, 500)
    return JSONResponse(status_code=code, content=summary.to_dict())


def error_response(status_code: int, error: str, details: Any = None) -> JSONResponse:
    content: Dict[str, Any] = {"error": error}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def make_router(controller, server_cfg: Dict[str, Any]):
    router = APIRouter()

    cron_secret = server_cfg.get("cron_secret") or None
    access_key = server_cfg.get("access_key") or None
    if not cron_secret and not access_key:
        logger.warning("No cron_secret or access_key configured - trading endpoints are unprotected")

    def require_cron(authorization: Optional[str] = Header(default=None)) -> None:
        if cron_secret and not _secrets_match(_bearer(authorization), cron_secret):
            raise Unauthorized()

    def require_operator(
        authorization: Optional[str] = Header(default=None),
        x_access_key: Optional[str] = Header(default=None),
    ) -> None:
        if not cron_secret and not access_key:
            return
        if _secrets_match(x_access_key, access_key):
            return
        if _secrets_match(_bearer(authorization), cron_secret):
            return
        raise Unauthorized()

    @router.get("/api/auto-trade", dependencies=[Depends(require_operator)])
    async def snapshot():
        try:
            data = await controller.snapshot()
        except Exception as e:
            logger.exception(e)
            return error_response(500, "Failed to get auto-trade status", str(e))
        if data.get("account") is None:
            return error_response(500, "Failed to connect to brokerage account")
        return data

    @router.post("/api/auto-trade", dependencies=[Depends(require_operator)])
    async def manual_run(body: Optional[RunRequest] = None):
        force_refresh = body.force_refresh if body is not None else False
        try:
            summary = await controller.run_cycle(trigger="manual", force_refresh=force_refresh)
        except Exception as e:
            logger.exception(e)
            return error_response(500, "Auto-trade failed", str(e))
        return run_response(summary, market_closed_code=400)

    @router.get("/api/cron/auto-trade", dependencies=[Depends(require_cron)])
    async def cron_run():
        try:
            summary = await controller.run_cycle(trigger="cron")
        except Exception as e:
            logger.exception(e)
            return error_response(500, "Auto-trade failed", str(e))
        return run_response(summary, market_closed_code=200)

    @router.post("/api/admin/reset-portfolio", dependencies=[Depends(require_operator)])
    async def reset_portfolio():
        try:
            summary = await controller.reset_portfolio()
        except RunInProgressError as e:
            return error_response(409, "Run in progress", str(e))
        except Exception as e:
            logger.exception(e)
            return error_response(500, "Failed to reset portfolio", str(e))
        return summary.to_dict()

    @router.get("/api/auto-trade/status", dependencies=[Depends(require_operator)])
    async def status():
        return controller.status()

    return router
