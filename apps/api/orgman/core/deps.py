"""FastAPI dependencies."""

from typing import Generator

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from orgman.core.config import settings
from orgman.core.kv_store import KeyValueStore, get_kv_store
from orgman.db.session import SessionLocal
from orgman.services.bulk_upload_service import BulkUploadService, build_bulk_upload_service
from orgman.services.membership_api import HttpMembershipApi, MembershipApi
from orgman.services.pending_intent_service import PendingIntentStore
from orgman.services.roster_service import RosterService, build_roster_service


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_store() -> KeyValueStore:
    return get_kv_store()


def get_membership_api() -> Generator[MembershipApi, None, None]:
    api = HttpMembershipApi(settings)
    try:
        yield api
    finally:
        api.close()


def get_roster_service(api: MembershipApi = Depends(get_membership_api)) -> RosterService:
    return build_roster_service(api=api, cfg=settings)


def get_bulk_upload_service(
    db: Session = Depends(get_db),
    api: MembershipApi = Depends(get_membership_api),
    store: KeyValueStore = Depends(get_store),
) -> BulkUploadService:
    return build_bulk_upload_service(db, api=api, cfg=settings, store=store)


def get_pending_intent_store(store: KeyValueStore = Depends(get_store)) -> PendingIntentStore:
    return PendingIntentStore(store, ttl_seconds=settings.PENDING_INTENT_TTL_SECONDS)


def verify_internal_secret(x_internal_secret: str = Header(...)) -> None:
    """Verify the internal secret header."""
    expected = settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if x_internal_secret != expected:
        raise HTTPException(status_code=403, detail="Invalid internal secret")
