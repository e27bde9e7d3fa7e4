# checkout/http_problem_handlers.py
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from checkout.api.problem import ProblemDetail, make_problem
from checkout.services.checkout_errors import (
    AddressTooShort,
    BackendError,
    CheckoutValidationError,
    CouponRejected,
    LookupFailed,
    MinimumOrderNotMet,
)

logger = logging.getLogger("checkout")


def _new_trace_id() -> str:
    return f"t_{uuid.uuid4().hex[:12]}"


def _ctx(req: Request) -> Dict[str, Any]:
    return {"path": getattr(req.url, "path", ""), "method": req.method}


def _problem_from_http_exc(req: Request, exc: HTTPException) -> Dict[str, Any]:
    """
    把 HTTPException.detail 统一翻译成 Problem 形状：
    - {"error_code","message",...}：已是 Problem，补齐 http_status / trace_id / context
    - str / 其它：兜底为 state
    """
    status_code = int(exc.status_code)
    trace_id = _new_trace_id()
    ctx = _ctx(req)
    d = exc.detail

    if isinstance(d, dict) and "error_code" in d and "message" in d:
        out = dict(d)
        out.setdefault("http_status", status_code)
        out.setdefault("trace_id", trace_id)
        if isinstance(out.get("context"), dict):
            merged = dict(ctx)
            merged.update(out["context"])
            out["context"] = merged
        else:
            out["context"] = ctx
        return out

    msg = str(d) if d is not None else "Request rejected"
    return make_problem(
        status_code=status_code,
        error_code="http_error",
        message=msg,
        context=ctx,
        details=[{"type": "state", "reason": msg}],
        trace_id=trace_id,
    )


def _validation_code(exc: CheckoutValidationError) -> str:
    if isinstance(exc, CouponRejected):
        return "coupon_rejected"
    if isinstance(exc, AddressTooShort):
        return "address_too_short"
    if isinstance(exc, MinimumOrderNotMet):
        return "minimum_order_not_met"
    return "checkout_validation_error"


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(Exception)
    async def _unhandled_exc(req: Request, exc: Exception):
        trace_id = _new_trace_id()
        logger.exception("UNHANDLED_EXC[%s]: %s", trace_id, exc)
        content = make_problem(
            status_code=500,
            error_code="internal_error",
            message="Internal error, please retry later",
            context=_ctx(req),
            trace_id=trace_id,
        )
        return JSONResponse(status_code=500, content=content)

    @app.exception_handler(RequestValidationError)
    async def _validation_exc(req: Request, exc: RequestValidationError):
        details: List[Dict[str, Any]] = []
        for i, e in enumerate(exc.errors()):
            if not isinstance(e, dict):
                continue
            loc = ".".join(str(p) for p in e.get("loc") or ())
            details.append(
                {
                    "type": "validation",
                    "path": loc or f"validation[{i}]",
                    "reason": str(e.get("msg") or e.get("type") or "invalid"),
                }
            )

        content = make_problem(
            status_code=422,
            error_code="request_validation_error",
            message="Invalid request",
            context=_ctx(req),
            details=details,
            trace_id=_new_trace_id(),
        )
        return JSONResponse(status_code=422, content=content)

    @app.exception_handler(CheckoutValidationError)
    async def _checkout_validation_exc(req: Request, exc: CheckoutValidationError):
        details: List[ProblemDetail] = []
        if isinstance(exc, MinimumOrderNotMet):
            details.append(
                {
                    "type": "minimum_order",
                    "min_amount": str(exc.min_amount),
                    "item_total": str(exc.item_total),
                }
            )
        content = make_problem(
            status_code=422,
            error_code=_validation_code(exc),
            message=str(exc),
            context=_ctx(req),
            details=details,
            trace_id=_new_trace_id(),
        )
        return JSONResponse(status_code=422, content=content)

    @app.exception_handler(LookupFailed)
    async def _lookup_exc(req: Request, exc: LookupFailed):
        details: List[ProblemDetail] = []
        if isinstance(exc, BackendError):
            details.append({"type": "lookup", "upstream_status": exc.status_code, "reason": exc.message})
        logger.warning("upstream lookup failed path=%s: %s", req.url.path, exc)
        content = make_problem(
            status_code=502,
            error_code="upstream_lookup_failed",
            message=str(exc),
            context=_ctx(req),
            details=details,
            trace_id=_new_trace_id(),
        )
        return JSONResponse(status_code=502, content=content)

    @app.exception_handler(HTTPException)
    async def _http_exc(req: Request, exc: HTTPException):
        content = _problem_from_http_exc(req, exc)
        return JSONResponse(status_code=int(exc.status_code), content=content)
