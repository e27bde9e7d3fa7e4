# checkout/core/config.py
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """
    结算编排全局配置（环境变量前缀 CHECKOUT_，也可从 .env 读取）
    """

    # 运行环境
    ENV: str = Field(default="dev")
    DEBUG: bool = Field(default=True)

    # 日志
    LOG_LEVEL: str = Field(default="INFO")
    JSON_LOG: bool = Field(default=False)

    # 后端 API（下单 / 配送 / 优惠券 / 钱包 / 积分 都走这里）
    API_BASE_URL: str = Field(
        default="http://localhost:3001",
        description="后端根地址，例如：https://api.example.com",
    )
    API_TIMEOUT_SECONDS: float = Field(default=10.0)

    # 计价
    CURRENCY: str = Field(default="INR")

    # 预约配送：今天 + 未来 7 天
    SLOT_WINDOW_DAYS: int = Field(default=8)

    # 手填地址最短长度（去掉首尾空白后）
    MIN_ADDRESS_LENGTH: int = Field(default=10)

    # 支付网关托管页上展示的商户名
    GATEWAY_DISPLAY_NAME: str = Field(default="Martly")

    model_config = SettingsConfigDict(env_prefix="CHECKOUT_", env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> AppSettings:
    """全局单例设置入口。"""
    return AppSettings()
