import os
from typing import Any, Dict, Optional

import firebase_admin
from firebase_admin import auth, credentials, firestore
from fastapi import Header, HTTPException, status

from spendflow.config import FIREBASE_CREDENTIALS_PATH, FIREBASE_PROJECT_ID, PROJECT_ROOT, logger

_firebase_app: Optional[firebase_admin.App] = None
_db: Optional[firestore.Client] = None


def _resolve_credentials_path(credentials_path: str) -> str:
    if os.path.isabs(credentials_path):
        return credentials_path

    possible_paths = [
        os.path.join(str(PROJECT_ROOT), credentials_path),
        os.path.join(str(PROJECT_ROOT), os.path.basename(credentials_path)),
        credentials_path,
    ]
    for path in possible_paths:
        if os.path.exists(path):
            logger.debug("Found Firebase credentials at: %s", path)
            return os.path.abspath(path)

    raise FileNotFoundError(
        f"Firebase credentials file not found. Tried: {', '.join(possible_paths)}. "
        f"Set FIREBASE_CREDENTIALS_PATH to an absolute path or ensure the file exists."
    )


def _init_firebase() -> None:
    global _firebase_app, _db
    if _firebase_app is not None and _db is not None:
        return
    if not FIREBASE_PROJECT_ID or not FIREBASE_CREDENTIALS_PATH:
        raise RuntimeError("FIREBASE_PROJECT_ID and FIREBASE_CREDENTIALS_PATH must be configured")

    credentials_path = _resolve_credentials_path(FIREBASE_CREDENTIALS_PATH)
    if not os.path.exists(credentials_path):
        raise FileNotFoundError(f"Firebase credentials file not found at: {credentials_path}")

    cred = credentials.Certificate(credentials_path)
    _firebase_app = firebase_admin.initialize_app(cred, {"projectId": FIREBASE_PROJECT_ID})
    _db = firestore.client()
    logger.info("Firebase initialized for project %s", FIREBASE_PROJECT_ID)


def get_firestore_client() -> firestore.Client:
    if _db is None:
        _init_firebase()
    assert _db is not None
    return _db


def verify_id_token(id_token: str) -> Dict[str, Any]:
    _init_firebase()
    try:
        return auth.verify_id_token(id_token, clock_skew_seconds=60)
    except Exception as exc:
        logger.warning("Failed to verify Firebase ID token: %s", exc)
        raise


async def get_current_user(authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
    """Resolve the caller identity from a Firebase ID token bearer header."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing Authorization header")
    token = authorization.split(" ", 1)[1]
    try:
        decoded = verify_id_token(token)
    except Exception:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    uid = decoded.get("uid")
    if not uid:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    return {"uid": uid, "email": decoded.get("email")}
