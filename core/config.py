"""
配置文件 - 项目配置管理
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, field_validator
from typing import Optional
from pydantic import model_validator


class RedisSettings(BaseModel):
    url: Optional[str] = None
    max_connections: int = 10
    default_ttl: int = 300
    namespace: str = "storefront-orders"


class DatabaseSettings(BaseModel):
    url: str = "sqlite+aiosqlite:///./orders.db"
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 20


class OrderSettings(BaseModel):
    # 下单后允许支付的时长
    payment_window_hours: int = 24
    expiry_sweep_interval_seconds: int = 300
    expiry_sweep_batch_size: int = 500
    # CAS 冲突后重读重算的次数上限
    cas_max_attempts: int = 3
    # 不经过支付网关的支付方式，状态查询时不调用网关
    manual_payment_methods: list[str] = Field(default=["manual_transfer", "cod"])
    # 单个订单事件广播的超时上限
    event_publish_timeout_seconds: float = 2.0


class CelerySettings(BaseModel):
    broker_url: Optional[str] = None
    result_backend: Optional[str] = None
    # None 表示按 ENVIRONMENT 自动判断（开发/测试环境同步执行）
    always_eager: Optional[bool] = None


class Settings(BaseSettings):
    """项目配置"""

    # 基础配置
    PROJECT_NAME: str = Field(default="Storefront Orders")
    VERSION: str = Field(default="1.0.0")
    DEBUG: bool = Field(default=True)
    ENVIRONMENT: str = Field(default="development")

    # 分组配置：嵌套模型，环境变量形如 DATABASE__URL / ORDERS__CAS_MAX_ATTEMPTS
    redis: RedisSettings = Field(default_factory=RedisSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    orders: OrderSettings = Field(default_factory=OrderSettings)
    celery: CelerySettings = Field(default_factory=CelerySettings)

    # 安全配置（只校验 Token，不负责签发）
    SECRET_KEY: Optional[str] = Field(
        default=None,
        description="JWT签名密钥，所有环境必须设置"
    )
    ALGORITHM: str = "HS256"
    # JWT 中表示管理员的 role 取值
    ADMIN_ROLES: list[str] = Field(default=["admin"])

    # CORS配置
    CORS_ORIGINS: list = Field(default=["http://localhost:3000", "http://localhost:8000"])

    # 反向代理地址（IP 或 CIDR）。只有来自这些地址的请求才采信 X-Forwarded-For / X-Real-IP，
    # 支付回调的限流与 IP 白名单都基于解析出的来源地址
    TRUSTED_PROXIES: list[str] = Field(default_factory=list)

    # 日志/请求体记录配置
    LOG_REQUEST_BODY_ENABLE_BY_DEFAULT: bool = True
    LOG_REQUEST_BODY_MAX_BYTES: int = 2048

    # pydantic-settings v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )

    @model_validator(mode="after")
    def _validate_secret_key(self):
        if not self.SECRET_KEY:
            raise ValueError(
                "SECRET_KEY 未配置。请在环境变量或 .env 中设置 SECRET_KEY"
            )
        return self

    @field_validator("CORS_ORIGINS", "ADMIN_ROLES", "TRUSTED_PROXIES", mode="before")
    @classmethod
    def _parse_list(cls, v):
        """允许 JSON 字符串或逗号分隔字符串两种格式。"""
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            s = v.strip()
            if s.startswith("[") and s.endswith("]"):
                import json
                try:
                    arr = json.loads(s)
                    if isinstance(arr, list):
                        return arr
                except ValueError:
                    pass
            if "," in s:
                return [item.strip() for item in s.split(",") if item.strip()]
            return [s]
        return v


settings = Settings()
