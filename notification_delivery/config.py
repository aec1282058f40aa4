"""Environment-variable configuration.

Settings are read once by the process entrypoint and passed down as plain
values; nothing below the scripts reads `os.environ` directly.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from .domain.retry import DEFAULT_BASE_DELAY_SECONDS, DEFAULT_MAX_ATTEMPTS, RetryPolicy

EMAIL_BACKENDS = ("console", "smtp", "mailgun")
PUSH_BACKENDS = ("console", "disabled")


@dataclass(frozen=True)
class KafkaSettings:
    bootstrap_servers: tuple[str, ...]
    topic: str
    dlq_topic: str
    group_id: str
    auto_offset_reset: str
    poll_timeout_seconds: float
    max_records_per_poll: int
    producer_acks: str
    send_timeout_seconds: float


@dataclass(frozen=True)
class EmailSettings:
    backend: str
    from_email: str
    smtp_host: str
    smtp_port: int
    smtp_starttls: bool
    username: str
    password: str
    timeout_seconds: float
    mailgun_api_key: str | None
    mailgun_domain: str | None
    mailgun_api_base_url: str


@dataclass(frozen=True)
class LogSettings:
    service_name: str
    environment: str
    version: str
    level: str


@dataclass(frozen=True)
class Settings:
    kafka: KafkaSettings
    email: EmailSettings
    log: LogSettings
    retry_max_attempts: int
    retry_base_delay_seconds: float
    rpc_host: str
    rpc_port: int
    push_backend: str

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        topic = _get(env, "KAFKA_TOPIC_NOTIFICATIONS_FALLBACK", "notification-fallback")

        email_backend = _get(env, "EMAIL_BACKEND", "console").lower()
        if email_backend not in EMAIL_BACKENDS:
            raise RuntimeError(
                f"EMAIL_BACKEND must be one of {', '.join(EMAIL_BACKENDS)}: {email_backend!r}"
            )
        push_backend = _get(env, "PUSH_BACKEND", "console").lower()
        if push_backend not in PUSH_BACKENDS:
            raise RuntimeError(
                f"PUSH_BACKEND must be one of {', '.join(PUSH_BACKENDS)}: {push_backend!r}"
            )

        poll_timeout = _env_float(env, "KAFKA_POLL_TIMEOUT_SECONDS", 1.0)
        if poll_timeout <= 0:
            raise RuntimeError("KAFKA_POLL_TIMEOUT_SECONDS must be > 0")

        kafka = KafkaSettings(
            bootstrap_servers=_bootstrap_servers(env),
            topic=topic,
            dlq_topic=_get(env, "KAFKA_TOPIC_NOTIFICATIONS_FALLBACK_DLQ", f"{topic}.dlq"),
            group_id=_get(env, "KAFKA_GROUP_ID", "notification-fallback-worker"),
            auto_offset_reset=_get(env, "KAFKA_AUTO_OFFSET_RESET", "earliest"),
            poll_timeout_seconds=poll_timeout,
            max_records_per_poll=_env_int(env, "KAFKA_MAX_RECORDS_PER_POLL", 50),
            producer_acks=_get(env, "KAFKA_PRODUCER_ACKS", "all"),
            send_timeout_seconds=_env_float(env, "KAFKA_SEND_TIMEOUT_SECONDS", 10.0),
        )
        email = EmailSettings(
            backend=email_backend,
            from_email=_get(env, "EMAIL_FROM", "no-reply@example.com"),
            smtp_host=_get(env, "EMAIL_SMTP_HOST", "localhost"),
            smtp_port=_env_int(env, "EMAIL_SMTP_PORT", 587),
            smtp_starttls=_env_bool(env, "EMAIL_SMTP_STARTTLS", default=True),
            username=_get(env, "EMAIL_USERNAME", ""),
            password=_get(env, "EMAIL_PASSWORD", ""),
            timeout_seconds=_env_float(env, "EMAIL_TIMEOUT_SECONDS", 10.0),
            mailgun_api_key=_optional(env, "MAILGUN_API_KEY"),
            mailgun_domain=_optional(env, "MAILGUN_DOMAIN"),
            mailgun_api_base_url=_get(env, "MAILGUN_API_BASE_URL", "https://api.mailgun.net"),
        )
        if email.backend == "mailgun":
            _required_env(env, "MAILGUN_API_KEY")
            _required_env(env, "MAILGUN_DOMAIN")

        log = LogSettings(
            service_name=_get(env, "SERVICE_NAME", "notification-service"),
            environment=_get(env, "ENVIRONMENT", "dev"),
            version=_get(env, "VERSION", "1.0.0"),
            level=_get(env, "LOG_LEVEL", "INFO").upper(),
        )
        settings = cls(
            kafka=kafka,
            email=email,
            log=log,
            retry_max_attempts=_env_int(env, "RETRY_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
            retry_base_delay_seconds=_env_float(
                env, "RETRY_BASE_DELAY_SECONDS", DEFAULT_BASE_DELAY_SECONDS
            ),
            rpc_host=_get(env, "RPC_HOST", "0.0.0.0"),
            rpc_port=_env_int(env, "RPC_PORT", 50051),
            push_backend=push_backend,
        )
        # Fail at startup, not on the first poison message.
        try:
            settings.retry_policy()
        except ValueError as exc:
            raise RuntimeError(f"Invalid retry settings: {exc}") from exc
        return settings

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            base_delay=self.retry_base_delay_seconds,
        )


def load_env_file(path: Path) -> None:
    """Load KEY=VALUE lines into `os.environ` without overriding real env vars."""
    if not path.exists():
        return

    for line in path.read_text(encoding="utf-8").splitlines():
        text = line.strip()
        if not text or text.startswith("#") or "=" not in text:
            continue
        key, value = text.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key:
            continue
        if value.startswith(("'", '"')) and value.endswith(("'", '"')) and len(value) >= 2:
            value = value[1:-1]
        os.environ.setdefault(key, value)


def _get(env: Mapping[str, str], name: str, default: str) -> str:
    value = env.get(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _optional(env: Mapping[str, str], name: str) -> str | None:
    value = env.get(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _required_env(env: Mapping[str, str], name: str) -> str:
    value = env.get(name)
    if value is None or not value.strip():
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value.strip()


def _bootstrap_servers(env: Mapping[str, str]) -> tuple[str, ...]:
    raw = _required_env(env, "KAFKA_BOOTSTRAP_SERVERS")
    servers = tuple(item.strip() for item in raw.split(",") if item.strip())
    if not servers:
        raise RuntimeError("KAFKA_BOOTSTRAP_SERVERS must include at least one host:port")
    return servers


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise RuntimeError(f"Invalid boolean value for {name}: {raw!r}")


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        raise RuntimeError(f"Invalid integer value for {name}: {raw!r}") from None


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        raise RuntimeError(f"Invalid number value for {name}: {raw!r}") from None
