from __future__ import annotations

import os


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///mortuorio.db",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    DOCUMENT_STORAGE_DIR = os.getenv("DOCUMENT_STORAGE_DIR", "")
    MAX_CONTENT_LENGTH = 10 * 1024 * 1024

    OCCUPANCY_ALERT_HOURS = int(os.getenv("OCCUPANCY_ALERT_HOURS", "24"))
    OCCUPANCY_CRITICAL_HOURS = int(os.getenv("OCCUPANCY_CRITICAL_HOURS", "48"))
    LEGAL_DOCUMENTS_DEADLINE_HOURS = int(os.getenv("LEGAL_DOCUMENTS_DEADLINE_HOURS", "48"))
    CORRECTION_ESCALATION_HOURS = int(os.getenv("CORRECTION_ESCALATION_HOURS", "2"))
