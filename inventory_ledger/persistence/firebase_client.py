from __future__ import annotations

"""
Firebase Admin / Firestore client bootstrap for ledger jobs.

Local runs must point at the Firestore emulator (FIRESTORE_EMULATOR_HOST)
unless ALLOW_PROD_FIRESTORE=1 is set; the backfill writes real entries and a
stray local run against production is not recoverable.
"""

import os
import threading
from typing import Optional

import firebase_admin
import google.auth
from firebase_admin import credentials, firestore
from google.auth.exceptions import DefaultCredentialsError

from inventory_ledger.common.config import get_settings
from inventory_ledger.errors import Unavailable

_CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
_init_lock = threading.Lock()


def is_local_execution() -> bool:
    """ENV=local, or no managed runtime markers (Cloud Run service/job)."""
    if get_settings().ENV.strip().lower() == "local":
        return True
    return not any((os.getenv(k) or "").strip() for k in ("K_SERVICE", "CLOUD_RUN_JOB"))


def require_firestore_emulator_or_allow_prod(*, caller: str) -> None:
    if not is_local_execution():
        return
    if (os.getenv("FIRESTORE_EMULATOR_HOST") or "").strip():
        return
    if (os.getenv("ALLOW_PROD_FIRESTORE") or "").strip() == "1":
        return
    raise Unavailable(
        f"refusing production Firestore from local execution (caller={caller}); "
        "set FIRESTORE_EMULATOR_HOST (e.g. 127.0.0.1:8080) or ALLOW_PROD_FIRESTORE=1"
    )


def _resolve_project_id(explicit: Optional[str]) -> Optional[str]:
    if explicit:
        return explicit
    configured = get_settings().FIREBASE_PROJECT_ID
    if configured:
        return configured
    try:
        _, adc_project = google.auth.default(scopes=[_CLOUD_PLATFORM_SCOPE])
    except DefaultCredentialsError:
        return None
    return adc_project


def init_firebase_admin(*, project_id: Optional[str] = None) -> None:
    """Initialize the default Firebase app once (ADC credentials)."""
    require_firestore_emulator_or_allow_prod(caller="inventory_ledger.persistence.firebase_client")

    if firebase_admin._apps:
        return
    with _init_lock:
        if firebase_admin._apps:
            return
        try:
            cred = credentials.ApplicationDefault()
        except Exception as e:
            raise Unavailable(
                "Application Default Credentials not found; run `gcloud auth application-default login`"
            ) from e

        resolved = _resolve_project_id(project_id)
        if not resolved:
            raise Unavailable("Firebase project id could not be resolved; set FIREBASE_PROJECT_ID")
        firebase_admin.initialize_app(cred, {"projectId": resolved})


def get_firestore_client(*, project_id: Optional[str] = None):
    init_firebase_admin(project_id=project_id)
    return firestore.client()
