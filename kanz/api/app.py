"""FastAPI surface for the execution lifecycle.

Every route authenticates the bearer token first; execution-scoped routes then
resolve the execution for that user only. Core errors are rendered as
``{"error", "code", ...details}`` with the status code the error carries.
"""

from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kanz.api.schemas import (
    CreateExecutionRequest,
    CreateExecutionResponse,
    EvmTxRequest,
    FailureRequest,
    SignedSwapRequest,
    SwapTxRequest,
    SwapTxResponse,
    SyncRequest,
    SyncResponse,
)
from kanz.config import KanzConfig, load_config
from kanz.core.auth import AuthGate, Identity, PrivyTokenVerifier
from kanz.core.custody import AuthorizationKeySigner
from kanz.core.errors import KanzError
from kanz.core.executions import ExecutionService
from kanz.core.store import open_store
from kanz.core.utils import get_logger, utc_now_iso

LOGGER = get_logger("kanz.api")


def _parse_origins(value: str) -> List[str]:
    v = (value or "*").strip()
    if v == "*":
        return ["*"]
    return [p.strip() for p in v.split(",") if p.strip()]


def build_auth_gate(config: KanzConfig) -> AuthGate:
    secrets = config.secrets
    if not (secrets.privy_app_id and secrets.privy_verification_key):
        LOGGER.warning("PRIVY_APP_ID / PRIVY_VERIFICATION_KEY not set; all requests will be rejected")
        return AuthGate(None)
    return AuthGate(
        PrivyTokenVerifier(app_id=secrets.privy_app_id, verification_key=secrets.privy_verification_key)
    )


def build_service(config: KanzConfig) -> ExecutionService:
    key = config.secrets.privy_authorization_key
    return ExecutionService(
        config=config,
        store=open_store(config.secrets.store_path),
        signer=AuthorizationKeySigner(key) if key else None,
    )


def create_app(
    config: Optional[KanzConfig] = None,
    *,
    service: Optional[ExecutionService] = None,
    auth: Optional[AuthGate] = None,
) -> FastAPI:
    if config is None:
        # Uvicorn does not load `.env` unless passed `--env-file`; do it here without overriding real env.
        from dotenv import load_dotenv

        load_dotenv(override=False)
        config = load_config()

    service = service or build_service(config)
    auth = auth or build_auth_gate(config)

    app = FastAPI(title="Kanz Orchestrator API", version="0.1.0")
    app.state.service = service
    app.state.auth = auth

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_parse_origins(os.getenv("KANZ_ALLOWED_ORIGINS", "*")),
        allow_credentials=False,  # bearer tokens only
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(KanzError)
    async def _kanz_error(_request: Request, exc: KanzError) -> JSONResponse:
        if exc.status_code >= 500:
            LOGGER.warning("Request failed: %s", exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def _validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        field = ".".join(str(p) for p in errors[0].get("loc", ())[1:]) if errors else ""
        body: Dict[str, Any] = {"error": "Invalid request body", "code": "invalid_input"}
        if field:
            body["field"] = field
        return JSONResponse(status_code=400, content=body)

    @app.on_event("shutdown")
    def _shutdown() -> None:
        service.store.close()

    def identity(authorization: Optional[str] = Header(None)) -> Identity:
        return auth.authenticate(authorization)

    @app.get("/healthz")
    def healthz() -> Dict[str, Any]:
        return {
            "ok": True,
            "time": utc_now_iso(),
            "store": type(service.store).__name__,
            "auth_configured": auth.verifier is not None,
            "jupiter_configured": service.jupiter.is_configured,
            "custody_configured": service.custody.is_configured,
        }

    @app.post("/auth/sync", response_model=SyncResponse)
    def auth_sync(req: SyncRequest, who: Identity = Depends(identity)) -> Dict[str, Any]:
        return service.sync_user(who.user_id, req.linkedAccounts).to_dict()

    @app.post("/executions", response_model=CreateExecutionResponse)
    def create_execution(req: CreateExecutionRequest, who: Identity = Depends(identity)) -> CreateExecutionResponse:
        result = service.create(
            who.user_id,
            amount_usdc=req.amount_usdc,
            source_chain=req.source_chain,
            idempotency_key=req.idempotency_key,
        )
        return CreateExecutionResponse(
            execution_id=result.execution.id,
            status=result.execution.status.value,
            is_duplicate=result.is_duplicate,
        )

    @app.get("/executions/{execution_id}")
    def get_execution(execution_id: str, who: Identity = Depends(identity)) -> Dict[str, Any]:
        return service.get(who.user_id, execution_id).to_snapshot()

    @app.get("/executions/{execution_id}/bridge-payload")
    def bridge_payload(
        execution_id: str,
        bridge_provider: Optional[str] = Query(None),
        who: Identity = Depends(identity),
    ) -> Dict[str, Any]:
        return service.bridge_payload(who.user_id, execution_id, bridge_provider).to_dict()

    @app.patch("/executions/{execution_id}/evm-tx")
    def report_evm_tx(execution_id: str, req: EvmTxRequest, who: Identity = Depends(identity)) -> Dict[str, Any]:
        execution = service.report_evm_tx(who.user_id, execution_id, req.evm_tx_hash)
        return {"ok": True, "status": execution.status.value}

    @app.get("/executions/{execution_id}/swap-payload")
    def swap_payload(execution_id: str, who: Identity = Depends(identity)) -> Dict[str, Any]:
        return service.swap_payload(who.user_id, execution_id).to_dict()

    @app.post("/executions/{execution_id}/swap-tx", response_model=SwapTxResponse)
    def report_swap_tx(execution_id: str, req: SwapTxRequest, who: Identity = Depends(identity)) -> SwapTxResponse:
        execution = service.report_swap_tx(who.user_id, execution_id, req.swap_tx_hash)
        return SwapTxResponse(swap_tx_hash=str(execution.swap_tx_hash))

    @app.post("/executions/{execution_id}/swap-sign-and-send", response_model=SwapTxResponse)
    def swap_sign_and_send(execution_id: str, who: Identity = Depends(identity)) -> SwapTxResponse:
        execution = service.sign_and_send_swap(who.user_id, execution_id, who.token)
        return SwapTxResponse(swap_tx_hash=str(execution.swap_tx_hash))

    @app.get("/executions/{execution_id}/swap-signature-payload")
    def swap_signature_payload(execution_id: str, who: Identity = Depends(identity)) -> Dict[str, Any]:
        return service.swap_signature_challenge(who.user_id, execution_id).to_dict()

    @app.post("/executions/{execution_id}/swap-sign-and-send-with-signature", response_model=SwapTxResponse)
    def swap_sign_and_send_with_signature(
        execution_id: str,
        req: SignedSwapRequest,
        who: Identity = Depends(identity),
    ) -> SwapTxResponse:
        execution = service.sign_and_send_swap_with_signature(
            who.user_id,
            execution_id,
            req.signature,
            req.serialized_tx,
        )
        return SwapTxResponse(swap_tx_hash=str(execution.swap_tx_hash))

    @app.post("/executions/{execution_id}/fail")
    def report_failure(execution_id: str, req: FailureRequest, who: Identity = Depends(identity)) -> Dict[str, Any]:
        execution = service.report_failure(who.user_id, execution_id, req.error_code, req.error_message)
        return execution.to_snapshot()

    return app


__all__ = ["build_auth_gate", "build_service", "create_app"]
