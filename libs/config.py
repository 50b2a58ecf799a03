"""
Configuration module for loading environment variables
"""

import os
from typing import List, Optional

from common.constants import (
    FANOUT_POLICIES,
    FANOUT_POLICY_UNION,
    SERVICE_REMINDER_LEAD_HOURS,
    UPCOMING_SERVICES_DEFAULT_DAYS,
)


class Config:
    """Application configuration"""

    # Store Configuration
    STORE_BACKEND: str = os.getenv("STORE_BACKEND", "memory").lower()
    DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL")

    # Real-time Configuration
    ALERT_FANOUT_POLICY: str = os.getenv("ALERT_FANOUT_POLICY", FANOUT_POLICY_UNION).lower()
    SERVICE_REMINDER_LEAD_HOURS: int = SERVICE_REMINDER_LEAD_HOURS
    UPCOMING_SERVICES_DEFAULT_DAYS: int = UPCOMING_SERVICES_DEFAULT_DAYS

    # Service Configuration
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    CORS_ALLOW_ORIGINS: List[str] = [
        origin.strip()
        for origin in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",")
        if origin.strip()
    ]

    @classmethod
    def validate_fanout_policy(cls) -> str:
        """Return the configured fan-out policy, rejecting unknown values"""
        if cls.ALERT_FANOUT_POLICY not in FANOUT_POLICIES:
            raise ValueError(
                f"ALERT_FANOUT_POLICY must be one of {sorted(FANOUT_POLICIES)}, "
                f"got '{cls.ALERT_FANOUT_POLICY}'"
            )
        return cls.ALERT_FANOUT_POLICY

    @classmethod
    def uses_sql_store(cls) -> bool:
        """Check if the SQL-backed store is selected"""
        return cls.STORE_BACKEND == "sql"


config = Config()
