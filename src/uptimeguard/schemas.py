import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything in the core is UTC-aware."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# --- Enums ---

class MonitorType(str, Enum):
    HTTP = "HTTP"
    TCP = "TCP"
    UDP = "UDP"
    DNS = "DNS"
    PING = "PING"
    HEARTBEAT = "HEARTBEAT"
    KEYWORD = "KEYWORD"


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"
    PATCH = "PATCH"


class HeartbeatStatus(str, Enum):
    UP = "UP"
    DOWN = "DOWN"
    PENDING = "PENDING"
    MAINTENANCE = "MAINTENANCE"


class MonitorState(str, Enum):
    UP = "UP"
    DOWN = "DOWN"
    MAINTENANCE = "MAINTENANCE"


class IncidentEvent(str, Enum):
    OPENED = "opened"
    REMINDER = "reminder"
    CLOSED = "closed"


class NotificationType(str, Enum):
    PUSH = "PUSH"
    EMAIL = "EMAIL"
    WEBHOOK = "WEBHOOK"
    TELEGRAM = "TELEGRAM"
    DISCORD = "DISCORD"
    SLACK = "SLACK"
    SMS = "SMS"
    CALL = "CALL"


class AuthType(str, Enum):
    BASIC = "BASIC"
    BEARER = "BEARER"
    NTLM = "NTLM"


class StatsPeriod(str, Enum):
    DAY = "DAY"
    WEEK = "WEEK"
    MONTH = "MONTH"
    QUARTER = "QUARTER"
    YEAR = "YEAR"
    ALL = "ALL"

    @property
    def lookback(self) -> Optional[timedelta]:
        return _PERIOD_LOOKBACK[self]


_PERIOD_LOOKBACK = {
    StatsPeriod.DAY: timedelta(hours=24),
    StatsPeriod.WEEK: timedelta(days=7),
    StatsPeriod.MONTH: timedelta(days=30),
    StatsPeriod.QUARTER: timedelta(days=90),
    StatsPeriod.YEAR: timedelta(days=365),
    StatsPeriod.ALL: None,
}


# --- Monitor configuration ---

class AuthConfig(BaseModel):
    type: AuthType
    username: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None


class ProxyConfig(BaseModel):
    host: str
    port: int
    auth: Optional[AuthConfig] = None

    @property
    def url(self) -> str:
        credentials = ""
        if self.auth and self.auth.username:
            credentials = f"{self.auth.username}:{self.auth.password or ''}@"
        return f"http://{credentials}{self.host}:{self.port}"


class AdvancedSettings(BaseModel):
    follow_redirects: bool = True
    accept_invalid_certs: bool = False
    headers: dict[str, str] = Field(default_factory=dict)
    body: Optional[str] = None
    auth: Optional[AuthConfig] = None
    proxy: Optional[ProxyConfig] = None
    dns_record_type: str = "A"

    @field_validator("dns_record_type")
    @classmethod
    def record_type_upper(cls, v: str) -> str:
        return v.strip().upper() or "A"


class NotificationChannel(BaseModel):
    id: str = Field(default_factory=_new_id)
    type: NotificationType
    name: str
    config: dict[str, str] = Field(default_factory=dict)
    enabled: bool = True


class Monitor(BaseModel):
    id: str = Field(default_factory=_new_id)
    name: str
    url: str
    type: MonitorType = MonitorType.HTTP
    interval: int = 60  # seconds
    timeout: int = 30  # seconds
    method: HttpMethod = HttpMethod.GET
    expected_status_code: int = 200
    expected_string: Optional[str] = None
    ssl_check: bool = True
    ssl_expiry_warning_days: int = 30
    retries: int = 0
    retry_interval: int = 30  # seconds
    tags: list[str] = Field(default_factory=list)
    notifications: list[NotificationChannel] = Field(default_factory=list)
    is_active: bool = True
    advanced_settings: AdvancedSettings = Field(default_factory=AdvancedSettings)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = {"from_attributes": True}

    @field_validator("interval", "timeout")
    @classmethod
    def positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Must be greater than 0")
        return v

    @field_validator("retries", "retry_interval")
    @classmethod
    def not_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Must not be negative")
        return v

    @field_validator("created_at", "updated_at")
    @classmethod
    def aware(cls, v: datetime) -> datetime:
        return as_utc(v)


# --- Check results ---

class SslInfo(BaseModel):
    valid_from: datetime
    valid_to: datetime
    issuer: str
    days_remaining: int


class Heartbeat(BaseModel):
    id: str = Field(default_factory=_new_id)
    monitor_id: str
    status: HeartbeatStatus
    response_time: Optional[int] = None  # milliseconds
    status_code: Optional[int] = None
    message: Optional[str] = None
    ssl_info: Optional[SslInfo] = None
    created_at: datetime = Field(default_factory=_utcnow)

    model_config = {"from_attributes": True}

    @field_validator("created_at")
    @classmethod
    def aware(cls, v: datetime) -> datetime:
        return as_utc(v)


class Incident(BaseModel):
    id: str = Field(default_factory=_new_id)
    monitor_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    resolved: bool = False
    acknowledged: bool = False
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    notifications_sent: list[datetime] = Field(default_factory=list)

    model_config = {"from_attributes": True}

    @field_validator("start_time", "end_time", "acknowledged_at")
    @classmethod
    def aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v) if v is not None else None

    @field_validator("notifications_sent")
    @classmethod
    def aware_list(cls, v: list[datetime]) -> list[datetime]:
        return [as_utc(t) for t in v]

    @model_validator(mode="after")
    def end_after_start(self) -> "Incident":
        if self.end_time is not None and self.end_time < self.start_time:
            raise ValueError("Incident end_time must not precede start_time")
        return self

    @property
    def is_open(self) -> bool:
        return self.end_time is None


class UptimeStats(BaseModel):
    monitor_id: str
    period: StatsPeriod
    uptime_percentage: float
    total_checks: int
    successful_checks: int
    failed_checks: int
    avg_response_time: float
    incidents: list[Incident] = Field(default_factory=list)
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("created_at")
    @classmethod
    def aware(cls, v: datetime) -> datetime:
        return as_utc(v)


# --- API Schemas ---

class MonitorCreate(BaseModel):
    name: str
    url: str
    type: MonitorType = MonitorType.HTTP
    interval: int = 60
    timeout: int = 30
    method: HttpMethod = HttpMethod.GET
    expected_status_code: int = 200
    expected_string: Optional[str] = None
    ssl_check: bool = True
    ssl_expiry_warning_days: int = 30
    retries: int = 0
    retry_interval: int = 30
    tags: list[str] = Field(default_factory=list)
    notifications: list[NotificationChannel] = Field(default_factory=list)
    is_active: bool = True
    advanced_settings: AdvancedSettings = Field(default_factory=AdvancedSettings)

    @field_validator("name")
    @classmethod
    def name_valid(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Monitor name is required")
        if len(v) > 255:
            raise ValueError("Monitor name must be at most 255 characters")
        return v

    @field_validator("url")
    @classmethod
    def url_valid(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Target address is required")
        if len(v) > 2048:
            raise ValueError("Target address must be at most 2048 characters")
        return v

    @field_validator("interval")
    @classmethod
    def interval_valid(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Check interval must be at least 1 second")
        if v > 86400:
            raise ValueError("Check interval must be at most 86400 seconds")
        return v

    @field_validator("timeout")
    @classmethod
    def timeout_valid(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Timeout must be at least 1 second")
        if v > 120:
            raise ValueError("Timeout must be at most 120 seconds")
        return v

    @field_validator("expected_status_code")
    @classmethod
    def status_code_valid(cls, v: int) -> int:
        if v < 100 or v > 599:
            raise ValueError("Expected status code must be between 100 and 599")
        return v

    @field_validator("retries", "retry_interval")
    @classmethod
    def retry_valid(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Retry settings must not be negative")
        return v

    @model_validator(mode="after")
    def keyword_needs_string(self) -> "MonitorCreate":
        if self.type == MonitorType.KEYWORD and not self.expected_string:
            raise ValueError("Keyword monitors require expected_string")
        return self


class MonitorUpdate(BaseModel):
    name: Optional[str] = None
    url: Optional[str] = None
    interval: Optional[int] = None
    timeout: Optional[int] = None
    method: Optional[HttpMethod] = None
    expected_status_code: Optional[int] = None
    expected_string: Optional[str] = None
    ssl_check: Optional[bool] = None
    ssl_expiry_warning_days: Optional[int] = None
    retries: Optional[int] = None
    retry_interval: Optional[int] = None
    tags: Optional[list[str]] = None
    notifications: Optional[list[NotificationChannel]] = None
    is_active: Optional[bool] = None
    advanced_settings: Optional[AdvancedSettings] = None

    @field_validator("name")
    @classmethod
    def name_valid(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            v = v.strip()
            if not v:
                raise ValueError("Monitor name cannot be empty")
            if len(v) > 255:
                raise ValueError("Monitor name must be at most 255 characters")
        return v

    @field_validator("interval", "timeout")
    @classmethod
    def positive(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError("Must be at least 1 second")
        return v

    @field_validator("retries", "retry_interval")
    @classmethod
    def retry_valid(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("Retry settings must not be negative")
        return v


class AcknowledgeRequest(BaseModel):
    actor: str

    @field_validator("actor")
    @classmethod
    def actor_valid(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Acknowledging actor is required")
        return v
