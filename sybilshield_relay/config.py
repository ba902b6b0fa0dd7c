from __future__ import annotations

"""
Configuration loader for the SybilShield relay.

- Reads environment variables (optionally from `.env`) via pydantic-settings.
- Exposes a cached `load_config()` accessor and helper builders that turn the
  flat settings into the security layer's CORS and rate-limit configs.
- Capability selection (ledger backend, provider backend, signature mode)
  happens here once; nothing downstream branches on "demo mode".

Environment variables (high-level):
    APP_ENV                  development | production | test
    LEDGER_BACKEND           aleo | memory
    PROVIDER_BACKEND         live | static
    SIGNATURE_MODE           accept_all | ed25519
    ISSUER_PRIVATE_KEY       secret; required for the aleo backend in production
    RATE_DEFAULT / RATE_VERIFY / RATE_ISSUANCE   "Nr/s|m|h" budgets
    CORS_ALLOW_ORIGINS       csv or JSON list

Notes
-----
- Lists accept comma-separated strings or JSON arrays.
"""

import json
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _parse_list(val: Optional[str | List[str]], *, default: List[str]) -> List[str]:
    if val is None:
        return list(default)
    if isinstance(val, list):
        return [str(x) for x in val]
    s = val.strip()
    if not s:
        return []
    if s.startswith("[") and s.endswith("]"):
        try:
            return [str(x) for x in json.loads(s)]
        except ValueError:
            pass
    return [x.strip() for x in s.split(",") if x.strip()]


class Settings(BaseSettings):
    # Core
    app_env: Literal["development", "production", "test"] = "development"
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"

    # Ledger
    ledger_backend: Literal["aleo", "memory"] = "memory"
    ledger_url: str = "https://api.explorer.provable.com/v1"
    ledger_network: str = "testnet"
    program_id: str = "sybilshield_aio_v2.aleo"
    issuer_address: str = ""
    issuer_private_key: str = Field(default="", repr=False)
    ledger_priority_fee: int = Field(10_000, ge=0)
    ledger_submit_timeout_s: float = Field(180.0, gt=0)
    ledger_read_timeout_s: float = Field(10.0, gt=0)
    snarkos_bin: str = "snarkos"
    seconds_per_block: float = Field(1.0, gt=0)

    # Identity providers
    provider_backend: Literal["live", "static"] = "static"
    poh_subgraph_url: str = "https://api.thegraph.com/subgraphs/name/kleros/proof-of-humanity-mainnet"
    worldcoin_api_url: str = "https://developer.worldcoin.org/api/v2"
    worldcoin_app_id: str = ""
    worldcoin_api_key: str = Field(default="", repr=False)
    brightid_api_url: str = "https://app.brightid.org/node/v6"
    brightid_context: str = "sybilshield"
    provider_timeout_s: float = Field(10.0, gt=0)

    # Signatures
    signature_mode: Literal["accept_all", "ed25519"] = "accept_all"
    signature_max_skew_s: int = Field(300, ge=0)

    # Validity windows
    badge_validity_s: int = Field(31_536_000, gt=0)
    badge_min_validity_s: int = Field(86_400, gt=0)
    badge_max_validity_s: int = Field(63_072_000, gt=0)
    verification_validity_s: int = Field(31_536_000, gt=0)

    # Admission control
    rate_limits_enabled: bool = True
    rate_default: str = "10r/m"
    rate_default_burst: int = Field(10, ge=1)
    rate_verify: str = "3r/m"
    rate_verify_burst: int = Field(3, ge=1)
    rate_issuance: str = "5r/h"
    rate_issuance_burst: int = Field(5, ge=1)

    # CORS
    cors_allow_origins: List[str] | str = Field(default_factory=lambda: ["http://localhost:3000"])
    cors_allow_credentials: bool = False

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", case_sensitive=False, extra="ignore")

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _coerce_origins(cls, v):
        return _parse_list(v, default=["http://localhost:3000"])

    @field_validator("rate_default", "rate_verify", "rate_issuance")
    @classmethod
    def _check_rate(cls, v: str) -> str:
        from .security.rate_limit import parse_rate

        parse_rate(v)
        return v

    # --- derived ---------------------------------------------------------

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    def clamped_badge_validity_s(self) -> int:
        return max(self.badge_min_validity_s, min(self.badge_validity_s, self.badge_max_validity_s))

    def production_problems(self) -> List[str]:
        """Reasons the service must refuse to start in production; empty when fine."""
        if not self.is_production:
            return []
        problems: List[str] = []
        if self.signature_mode == "accept_all":
            problems.append("SIGNATURE_MODE=accept_all is not allowed in production")
        if self.provider_backend == "static":
            problems.append("PROVIDER_BACKEND=static is not allowed in production")
        if self.ledger_backend == "memory":
            problems.append("LEDGER_BACKEND=memory is not allowed in production")
        if self.ledger_backend == "aleo" and not self.issuer_private_key:
            problems.append("ISSUER_PRIVATE_KEY is required for the aleo ledger backend")
        return problems

    # --- helper builders -------------------------------------------------

    def to_cors_config(self):
        from .security.cors import CORSConfig

        return CORSConfig.from_origins(
            list(self.cors_allow_origins), allow_credentials=self.cors_allow_credentials
        )

    def to_rate_config(self):
        from .security.rate_limit import RateConfig, rule_from

        return RateConfig(
            enabled=self.rate_limits_enabled,
            default_rule=rule_from(self.rate_default, self.rate_default_burst, name="default"),
            named_rules={
                "verify": rule_from(self.rate_verify, self.rate_verify_burst, name="verify"),
                "issuance": rule_from(self.rate_issuance, self.rate_issuance_burst, name="issuance"),
            },
        )


@lru_cache(maxsize=1)
def load_config() -> Settings:
    """Return the cached settings instance built from the environment."""
    return Settings()


__all__ = ["Settings", "load_config"]
