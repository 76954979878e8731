"""
KV-Cluster Configuration Settings

This module contains the configuration constants used by the cluster
client. Every value can be overridden through the environment.
"""

import os
from dataclasses import dataclass, field
from typing import List


def _split_nodes(raw: str) -> List[str]:
    return [node.strip() for node in raw.split(",") if node.strip()]


@dataclass
class Settings:
    """Cluster client configuration settings."""

    # Retry settings
    RETRY_BUDGET: int = int(os.environ.get("KV_CLUSTER_RETRY_BUDGET", "16"))
    RETRY_BACKOFF: float = float(os.environ.get("KV_CLUSTER_RETRY_BACKOFF", "0.1"))  # Seconds
    BOOTSTRAP_ATTEMPTS: int = int(os.environ.get("KV_CLUSTER_BOOTSTRAP_ATTEMPTS", "2"))

    # Connection settings
    CONNECT_TIMEOUT: float = float(os.environ.get("KV_CLUSTER_CONNECT_TIMEOUT", "5.0"))
    SOCKET_TIMEOUT: float = float(os.environ.get("KV_CLUSTER_SOCKET_TIMEOUT", "5.0"))
    DEFAULT_PORT: int = 6379

    # Bootstrap nodes used by the command line client
    NODES: List[str] = field(
        default_factory=lambda: _split_nodes(
            os.environ.get("KV_CLUSTER_NODES", "redis://127.0.0.1:7000")
        )
    )

    # Logging settings
    DEBUG: bool = os.environ.get("KV_CLUSTER_DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.environ.get("KV_CLUSTER_LOG_LEVEL", "INFO")


# Global settings instance
settings = Settings()
