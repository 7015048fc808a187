from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Invalid integer for {name}: {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"Invalid float for {name}: {raw!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class CompletionSettings:
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    model: str = "gpt-4o-mini"
    max_tokens: int = 200
    timeout_seconds: float = 20.0


@dataclass(frozen=True)
class StoreSettings:
    backend: str = "memory"
    session_dir: str = "tmp/sessions"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None


@dataclass(frozen=True)
class LeadSyncSettings:
    url: Optional[str] = None
    api_key: Optional[str] = None
    timeout_seconds: float = 10.0
    max_attempts: int = 3
    backoff_seconds: float = 0.5
    mode: str = "background"
    company_id: str = ""
    source: str = "website-chat"
    message: str = "Interested via website chat"


@dataclass(frozen=True)
class Settings:
    completion: CompletionSettings = field(default_factory=CompletionSettings)
    store: StoreSettings = field(default_factory=StoreSettings)
    lead_sync: LeadSyncSettings = field(default_factory=LeadSyncSettings)
    lead_policy: str = "phone|email"
    completion_policy: str = "tour_date+tour_time+first_name+phone+email"
    collect_move_in: bool = False
    max_sentences: int = 3
    operator_config_path: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        sync_mode = os.getenv("LEAD_SYNC_MODE", "background").strip().lower()
        if sync_mode not in {"background", "inline"}:
            raise ValueError(f"Invalid LEAD_SYNC_MODE: {sync_mode!r}")
        backend = os.getenv("SESSION_BACKEND", "memory").strip().lower()
        if backend not in {"memory", "file", "supabase"}:
            raise ValueError(f"Invalid SESSION_BACKEND: {backend!r}")

        return cls(
            completion=CompletionSettings(
                api_key=os.getenv("OPENAI_API_KEY") or None,
                base_url=os.getenv("OPENAI_BASE_URL") or None,
                model=os.getenv("COMPLETION_MODEL", "gpt-4o-mini"),
                max_tokens=_env_int("COMPLETION_MAX_TOKENS", 200),
                timeout_seconds=_env_float("COMPLETION_TIMEOUT_SECONDS", 20.0),
            ),
            store=StoreSettings(
                backend=backend,
                session_dir=os.getenv("SESSION_DIR", "tmp/sessions"),
                supabase_url=os.getenv("SUPABASE_URL") or None,
                supabase_key=os.getenv("SUPABASE_SERVICE_KEY") or None,
            ),
            lead_sync=LeadSyncSettings(
                url=os.getenv("LEAD_SYNC_URL") or None,
                api_key=os.getenv("LEAD_SYNC_API_KEY") or None,
                timeout_seconds=_env_float("LEAD_SYNC_TIMEOUT_SECONDS", 10.0),
                max_attempts=max(1, _env_int("LEAD_SYNC_MAX_ATTEMPTS", 3)),
                backoff_seconds=_env_float("LEAD_SYNC_BACKOFF_SECONDS", 0.5),
                mode=sync_mode,
                company_id=os.getenv("COMPANY_ID", ""),
                source=os.getenv("LEAD_SOURCE", "website-chat"),
            ),
            lead_policy=os.getenv("LEAD_POLICY", "phone|email"),
            completion_policy=os.getenv(
                "COMPLETION_POLICY", "tour_date+tour_time+first_name+phone+email"
            ),
            collect_move_in=_env_bool("COLLECT_MOVE_IN", False),
            max_sentences=_env_int("MAX_SENTENCES", 3),
            operator_config_path=os.getenv("OPERATOR_CONFIG_PATH") or None,
        )
