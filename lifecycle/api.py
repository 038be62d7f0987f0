import time
from typing import Any, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import TypeAdapter
from pydantic import ValidationError as SchemaError

from common.auth import ActorContext, Permission
from common.config import settings
from common.errors import ERRORS_BY_KIND
from common.logging import configure_logging, get_logger, set_request_id
from common.result import Result

from .models import (
    ApproveResellerRequest,
    ChargeRequest,
    NumberLimitRequest,
    ReasonRequest,
    RechargeRequest,
    ResellerCreate,
    SetActiveRequest,
    ValidityUpdateRequest,
)
from .service import LifecycleService

configure_logging(json_logs=settings.json_logs, log_level=settings.log_level)
logger = get_logger(__name__)

app = FastAPI(
    title="Reseller Back Office API",
    description="Reseller lifecycle, prepaid wallet ledger and validity windows",
    version="1.0.0",
    debug=settings.debug,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

lifecycle_service = LifecycleService()

_permissions_adapter = TypeAdapter(dict[str, Permission])


def get_service() -> LifecycleService:
    return lifecycle_service


def get_actor(
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_super_admin: bool = Header(default=False),
    x_actor_permissions: Optional[str] = Header(default=None),
) -> ActorContext:
    """Build the acting identity from headers set by the identity layer."""
    if not x_actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing actor identity")
    try:
        permissions = _permissions_adapter.validate_json(x_actor_permissions) if x_actor_permissions else {}
        return ActorContext(actor_id=x_actor_id, is_super_admin=x_actor_super_admin, permissions=permissions)
    except SchemaError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed actor context")


def respond(result: Result, success_status: int = status.HTTP_200_OK) -> JSONResponse:
    code = success_status if result.success else ERRORS_BY_KIND[result.error].status_code
    return JSONResponse(status_code=code, content=result.model_dump(mode="json"))


@app.middleware("http")
async def log_requests(request: Request, call_next: Any) -> Any:
    request_id = set_request_id(request.headers.get("X-Request-ID"))
    if request.url.path == "/health":
        return await call_next(request)

    start_time = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "request_completed",
        method=request.method,
        path=request.url.path,
        status=response.status_code,
        elapsed_ms=round((time.perf_counter() - start_time) * 1000, 2),
    )
    response.headers["X-Request-ID"] = request_id
    return response


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "reseller-backoffice", "env": settings.env}


@app.post("/resellers", tags=["Resellers"])
def register_reseller(request: ResellerCreate, ctx: ActorContext = Depends(get_actor),
                      service: LifecycleService = Depends(get_service)) -> JSONResponse:
    return respond(service.register_reseller(ctx, request), status.HTTP_201_CREATED)


@app.get("/resellers/{reseller_id}", tags=["Resellers"])
def get_reseller(reseller_id: str, ctx: ActorContext = Depends(get_actor),
                 service: LifecycleService = Depends(get_service)) -> JSONResponse:
    return respond(service.get_reseller(ctx, reseller_id))


@app.post("/resellers/{reseller_id}/approve", tags=["Lifecycle"])
def approve_reseller(reseller_id: str, request: ApproveResellerRequest,
                     ctx: ActorContext = Depends(get_actor),
                     service: LifecycleService = Depends(get_service)) -> JSONResponse:
    return respond(service.approve(ctx, reseller_id, request))


@app.post("/resellers/{reseller_id}/reject", tags=["Lifecycle"])
def reject_reseller(reseller_id: str, request: ReasonRequest, ctx: ActorContext = Depends(get_actor),
                    service: LifecycleService = Depends(get_service)) -> JSONResponse:
    return respond(service.reject(ctx, reseller_id, request.reason))


@app.post("/resellers/{reseller_id}/suspend", tags=["Lifecycle"])
def suspend_reseller(reseller_id: str, request: ReasonRequest, ctx: ActorContext = Depends(get_actor),
                     service: LifecycleService = Depends(get_service)) -> JSONResponse:
    return respond(service.suspend(ctx, reseller_id, request.reason))


@app.post("/resellers/{reseller_id}/reactivate", tags=["Lifecycle"])
def reactivate_reseller(reseller_id: str, ctx: ActorContext = Depends(get_actor),
                        service: LifecycleService = Depends(get_service)) -> JSONResponse:
    return respond(service.reactivate(ctx, reseller_id))


@app.post("/resellers/{reseller_id}/status", tags=["Lifecycle"])
def set_reseller_status(reseller_id: str, request: SetActiveRequest, ctx: ActorContext = Depends(get_actor),
                        service: LifecycleService = Depends(get_service)) -> JSONResponse:
    return respond(service.set_active(ctx, reseller_id, request.active))


@app.post("/resellers/{reseller_id}/wallet/recharge", tags=["Wallet"])
def recharge_wallet(reseller_id: str, request: RechargeRequest, ctx: ActorContext = Depends(get_actor),
                    service: LifecycleService = Depends(get_service)) -> JSONResponse:
    return respond(service.recharge(ctx, reseller_id, request))


@app.post("/resellers/{reseller_id}/wallet/charge", tags=["Wallet"])
def charge_wallet(reseller_id: str, request: ChargeRequest, ctx: ActorContext = Depends(get_actor),
                  service: LifecycleService = Depends(get_service)) -> JSONResponse:
    return respond(service.charge(ctx, reseller_id, request))


@app.get("/resellers/{reseller_id}/wallet", tags=["Wallet"])
def get_wallet(reseller_id: str, ctx: ActorContext = Depends(get_actor),
               service: LifecycleService = Depends(get_service)) -> JSONResponse:
    return respond(service.get_wallet(ctx, reseller_id))


@app.get("/resellers/{reseller_id}/wallet/transactions", tags=["Wallet"])
def get_wallet_transactions(reseller_id: str, limit: int = Query(default=50, ge=1),
                            offset: int = Query(default=0, ge=0),
                            ctx: ActorContext = Depends(get_actor),
                            service: LifecycleService = Depends(get_service)) -> JSONResponse:
    return respond(service.get_transactions(ctx, reseller_id, limit, offset))


@app.get("/resellers/{reseller_id}/validity", tags=["Validity"])
def get_validity(reseller_id: str, ctx: ActorContext = Depends(get_actor),
                 service: LifecycleService = Depends(get_service)) -> JSONResponse:
    return respond(service.get_validity(ctx, reseller_id))


@app.put("/resellers/{reseller_id}/validity", tags=["Validity"])
def update_validity(reseller_id: str, request: ValidityUpdateRequest, ctx: ActorContext = Depends(get_actor),
                    service: LifecycleService = Depends(get_service)) -> JSONResponse:
    return respond(service.update_validity(ctx, reseller_id, request.validity_date))


@app.get("/resellers/{reseller_id}/validity/history", tags=["Validity"])
def get_validity_history(reseller_id: str, limit: int = Query(default=50, ge=1),
                         ctx: ActorContext = Depends(get_actor),
                         service: LifecycleService = Depends(get_service)) -> JSONResponse:
    return respond(service.get_validity_history(ctx, reseller_id, limit))


@app.put("/resellers/{reseller_id}/number-limit", tags=["Number Limits"])
def set_number_limit(reseller_id: str, request: NumberLimitRequest, ctx: ActorContext = Depends(get_actor),
                     service: LifecycleService = Depends(get_service)) -> JSONResponse:
    return respond(service.set_number_limit(ctx, reseller_id, request.max_virtual_numbers))


@app.get("/resellers/{reseller_id}/number-limit", tags=["Number Limits"])
def get_number_limit(reseller_id: str, ctx: ActorContext = Depends(get_actor),
                     service: LifecycleService = Depends(get_service)) -> JSONResponse:
    return respond(service.get_number_limit(ctx, reseller_id))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
