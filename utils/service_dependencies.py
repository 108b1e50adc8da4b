"""FastAPI dependencies that build the request-scoped services"""

from fastapi import Depends
from sqlalchemy.orm import Session

from backends.auth_provider import LocalAuthProvider
from backends.object_storage import LocalObjectStorage, get_object_storage
from db import get_db
from services.accounts import AccountService
from services.catalog import CatalogService
from services.chapter_order import ChapterOrderManager
from services.media import MediaCoordinator
from utils.auth_dependencies import get_auth_provider


def get_media_coordinator(
    db: Session = Depends(get_db), storage: LocalObjectStorage = Depends(get_object_storage)
) -> MediaCoordinator:
    return MediaCoordinator(db, storage)


def get_catalog_service(
    db: Session = Depends(get_db), media: MediaCoordinator = Depends(get_media_coordinator)
) -> CatalogService:
    return CatalogService(db, media)


def get_chapter_order_manager(db: Session = Depends(get_db)) -> ChapterOrderManager:
    return ChapterOrderManager(db)


def get_account_service(
    db: Session = Depends(get_db), provider: LocalAuthProvider = Depends(get_auth_provider)
) -> AccountService:
    return AccountService(db, provider)
