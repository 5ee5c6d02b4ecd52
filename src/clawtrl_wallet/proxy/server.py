"""FastAPI signing proxy for the agent wallet."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional, Union

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from clawtrl_wallet.context import ProxyContext
from clawtrl_wallet.errors import ProxyError
from clawtrl_wallet.signing import sign_request

logger = logging.getLogger("clawtrl_wallet.proxy")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


# ------------------------------------------------------------------
# Request bodies
# ------------------------------------------------------------------


class TransferBody(BaseModel):
    to: Optional[str] = None
    amount: Optional[Union[str, int, float]] = None
    token: Optional[str] = None


class SignBody(BaseModel):
    url: str
    method: Optional[str] = None
    body: Optional[str] = None


class FetchBody(BaseModel):
    url: str
    method: Optional[str] = None
    headers: Optional[dict[str, str]] = None
    body: Optional[str] = None


def get_context(request: Request) -> ProxyContext:
    return request.app.state.context


# ------------------------------------------------------------------
# API routes
# ------------------------------------------------------------------

router = APIRouter()


@router.get("/health")
async def health(ctx: ProxyContext = Depends(get_context)):
    return {
        "status": "ok",
        "address": ctx.account.address,
        "chain": ctx.chain.name,
        "chainId": ctx.chain.chain_id,
    }


@router.get("/identity")
async def identity(ctx: ProxyContext = Depends(get_context)):
    return {
        "address": ctx.account.address,
        "chain": ctx.chain.name,
        "chainId": ctx.chain.chain_id,
    }


@router.get("/balance")
def balance(ctx: ProxyContext = Depends(get_context)):
    return ctx.wallet.get_balances()


@router.post("/transfer")
def transfer(body: TransferBody, ctx: ProxyContext = Depends(get_context)):
    result = ctx.wallet.transfer(body.to, body.amount, body.token)
    return result.to_dict()


@router.post("/sign")
def sign(body: SignBody, ctx: ProxyContext = Depends(get_context)):
    try:
        headers = sign_request(
            ctx.account, ctx.chain.chain_id, body.url, body.method or "GET", body.body or ""
        )
    except Exception as exc:
        logger.error(f"/sign error: {exc}")
        raise ProxyError(str(exc)) from exc
    return {"headers": headers}


@router.post("/fetch")
async def fetch(body: FetchBody, ctx: ProxyContext = Depends(get_context)):
    try:
        result = await ctx.fetcher.fetch(body.url, body.method, body.headers, body.body)
    except ProxyError:
        raise
    except Exception as exc:
        logger.error(f"/fetch error: {exc!r}")
        raise ProxyError(str(exc) or exc.__class__.__name__) from exc
    return result.to_dict()


# ------------------------------------------------------------------
# Error handling
# ------------------------------------------------------------------


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def _proxy_error_handler(request: Request, exc: ProxyError) -> JSONResponse:
    return _error(exc.status_code, str(exc))


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        problems.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return _error(400, "; ".join(problems) or "invalid request")


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Routing is exact on path and method; anything else is simply unknown.
    if exc.status_code in (404, 405):
        return _error(404, "not found")
    return _error(exc.status_code, str(exc.detail))


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return _error(500, str(exc) or exc.__class__.__name__)


# ------------------------------------------------------------------
# App factory
# ------------------------------------------------------------------


def create_app(context: ProxyContext) -> FastAPI:
    """Build the proxy app around an already-initialised context."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"Clawtrl signing proxy ready | wallet: {context.account.address} "
            f"| chain: {context.chain.name}"
        )
        yield
        await context.aclose()

    app = FastAPI(
        title="Clawtrl Signing Proxy",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        redirect_slashes=False,
        lifespan=lifespan,
    )
    app.state.context = context
    app.include_router(router)

    app.add_exception_handler(ProxyError, _proxy_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

    @app.middleware("http")
    async def cors(request: Request, call_next):
        if request.method == "OPTIONS":
            response = Response(status_code=204)
        else:
            response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response

    return app


# ------------------------------------------------------------------
# Runner
# ------------------------------------------------------------------


def run_server(
    context: ProxyContext,
    host: str = "127.0.0.1",
    port: int = 8128,
    log_level: str = "info",
) -> None:
    uvicorn.run(create_app(context), host=host, port=port, log_level=log_level)
