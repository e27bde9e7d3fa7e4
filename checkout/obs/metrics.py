# checkout/obs/metrics.py
import os
import time

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
    multiprocess,
)
from starlette.middleware.base import BaseHTTPMiddleware

http_requests_total = Counter("http_requests_total", "HTTP requests", ["method", "path", "code"])
http_request_duration = Histogram(
    "http_request_duration_seconds", "HTTP request duration seconds", ["method", "path"]
)

# 查询类失败（配送 / 区域 / 钱包 / 积分 / 时段）：降级，不阻断结算
checkout_lookup_failures_total = Counter(
    "checkout_lookup_failures_total", "Checkout lookup failures (degraded)", ["lookup"]
)
# 过期响应被丢弃（切换日期 / 门店 / 重复申请优惠券）
checkout_stale_responses_total = Counter(
    "checkout_stale_responses_total", "Discarded stale async responses", ["source"]
)
checkout_submissions_total = Counter(
    "checkout_submissions_total", "Order submissions", ["result"]
)
# 订单已创建但支付环节降级（网关不可用 / 用户取消）
checkout_payment_degraded_total = Counter(
    "checkout_payment_degraded_total", "Payment leg degraded after order creation", ["reason"]
)
checkout_best_effort_failures_total = Counter(
    "checkout_best_effort_failures_total", "Swallowed best-effort task failures", ["task"]
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        http_requests_total.labels(
            request.method, request.url.path, str(response.status_code)
        ).inc()
        http_request_duration.labels(request.method, request.url.path).observe(elapsed)
        return response


router = APIRouter()


@router.get("/metrics")
def metrics() -> Response:
    """
    单进程直接导出默认 REGISTRY；
    设置了 PROMETHEUS_MULTIPROC_DIR 时用临时 CollectorRegistry 合并各进程分片。
    """
    if os.environ.get("PROMETHEUS_MULTIPROC_DIR"):
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)
        payload = generate_latest(registry)
    else:
        payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)
