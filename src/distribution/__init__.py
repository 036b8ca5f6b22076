"""Digest distribution channels and operational notifications."""

from src.distribution.channels import (
    CircuitBreaker,
    CircuitState,
    DistributionChannel,
    SlackDigestChannel,
    TwitterDigestChannel,
)
from src.distribution.notifier import (
    LogOpsNotifier,
    NotificationOutcome,
    OpsNotifier,
    SlackOpsNotifier,
    send_bounded,
)
from src.distribution.schemas import DigestView, DistributionResult

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "DigestView",
    "DistributionChannel",
    "DistributionResult",
    "LogOpsNotifier",
    "NotificationOutcome",
    "OpsNotifier",
    "SlackDigestChannel",
    "SlackOpsNotifier",
    "TwitterDigestChannel",
    "send_bounded",
]
