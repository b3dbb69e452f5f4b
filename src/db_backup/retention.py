from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from .config import RetentionSettings

LOG = logging.getLogger(__name__)


class ForgetsSnapshots(Protocol):
    def forget(self, daily: int, weekly: int, monthly: int, yearly: int, prune: bool) -> None:
        ...


@dataclass(frozen=True)
class RetentionPolicy:
    daily: int
    weekly: int
    monthly: int
    yearly: int
    prune: bool

    @classmethod
    def from_settings(cls, settings: RetentionSettings) -> "RetentionPolicy":
        return cls(
            daily=settings.daily,
            weekly=settings.weekly,
            monthly=settings.monthly,
            yearly=settings.yearly,
            prune=settings.prune,
        )


def enforce_retention(client: ForgetsSnapshots, policy: RetentionPolicy, prune: Optional[bool] = None) -> None:
    """Apply the tiered keep policy; ``prune`` overrides the configured flag."""
    do_prune = policy.prune if prune is None else prune
    LOG.info(
        "Applying retention: daily=%s weekly=%s monthly=%s yearly=%s prune=%s",
        policy.daily,
        policy.weekly,
        policy.monthly,
        policy.yearly,
        do_prune,
    )
    client.forget(policy.daily, policy.weekly, policy.monthly, policy.yearly, do_prune)
