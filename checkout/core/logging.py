# checkout/core/logging.py
import json as _json
import logging
import sys

# 结算各环节的 logger 都挂在 "checkout" 下
CHECKOUT_LOGGER = "checkout"

_TEXT_FMT = "%(asctime)s %(levelname)s %(name)s %(message)s"


class JsonLineFormatter(logging.Formatter):
    """一行一个 JSON 对象，方便日志平台按 logger / level 过滤"""

    def format(self, record: logging.LogRecord) -> str:
        out = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            out["exc"] = self.formatException(record.exc_info)
        return _json.dumps(out, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", json: bool = False) -> None:
    """
    进程级日志初始化（main 启动时调用一次）：
    - 根 logger 单一 stdout handler，重复调用不会叠加输出
    - json=True 时输出 JSON 行（CHECKOUT_JSON_LOG）
    - httpx / httpcore 每个请求都打日志，只在 DEBUG 时放开
    """
    lvl = level.upper()
    root = logging.getLogger()
    root.setLevel(lvl)

    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonLineFormatter() if json else logging.Formatter(_TEXT_FMT))
    root.addHandler(handler)

    logging.getLogger(CHECKOUT_LOGGER).setLevel(lvl)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    noisy = logging.INFO if lvl == "DEBUG" else logging.WARNING
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(noisy)
