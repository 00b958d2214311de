"""
Operation polling configuration.

Defines the staged backoff policy and the poll worker's attempt ceiling
and base interval.
"""

from typing import Optional
from pydantic import BaseModel, Field, model_validator

from app.core.config import Settings, get_settings


class BackoffStage(BaseModel):
    """From `from_attempt` onwards the delay is `multiplier` x base interval."""

    from_attempt: int = Field(ge=1, description="First attempt this stage applies to")
    multiplier: int = Field(ge=1, description="Multiplier over the base interval")


class BackoffPolicy(BaseModel):
    """
    Staged (not exponential) escalation of the poll delay.

    Attempts before the first stage use the base interval unchanged.
    """

    stages: list[BackoffStage] = Field(
        default_factory=lambda: [
            BackoffStage(from_attempt=6, multiplier=2),
            BackoffStage(from_attempt=12, multiplier=3),
        ],
        description="Stages ordered by from_attempt",
    )

    @model_validator(mode="after")
    def _check_monotonic(self) -> "BackoffPolicy":
        previous_attempt, previous_multiplier = 0, 1
        for stage in self.stages:
            if stage.from_attempt <= previous_attempt:
                raise ValueError("backoff stages must have increasing from_attempt")
            if stage.multiplier < previous_multiplier:
                raise ValueError("backoff stage multipliers must not decrease")
            previous_attempt, previous_multiplier = stage.from_attempt, stage.multiplier
        return self

    def multiplier_for(self, attempt: int) -> int:
        multiplier = 1
        for stage in self.stages:
            if attempt >= stage.from_attempt:
                multiplier = stage.multiplier
        return multiplier


class PollerConfig(BaseModel):
    """Poll worker configuration."""

    max_attempts: int = Field(
        default=40, ge=1, description="Non-terminal checks before giving up"
    )
    base_interval_ms: int = Field(
        default=5000, gt=0, description="Base delay between checks in milliseconds"
    )
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "PollerConfig":
        settings = settings or get_settings()
        return cls(
            max_attempts=settings.POLL_MAX_ATTEMPTS,
            base_interval_ms=settings.POLL_BASE_INTERVAL_MS,
        )


DEFAULT_BACKOFF_POLICY = BackoffPolicy()


def get_poller_config() -> PollerConfig:
    """Get poller configuration from application settings."""
    return PollerConfig.from_settings()
