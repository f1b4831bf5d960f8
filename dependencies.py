# dependencies.py
from typing import AsyncIterator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from settings import Settings
from services.couriers import BaseCourierService
from services.locks import OrderLocks
from services.shopify_service import ShopifyService
from services.sync_service import SyncService


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    async with request.app.state.session_factory() as session:
        yield session


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_shopify(request: Request) -> ShopifyService:
    return request.app.state.shopify


def get_carrier(request: Request) -> BaseCourierService:
    return request.app.state.carrier


def get_locks(request: Request) -> OrderLocks:
    return request.app.state.locks


def get_sync_service(
    db: AsyncSession = Depends(get_db),
    shopify: ShopifyService = Depends(get_shopify),
    carrier: BaseCourierService = Depends(get_carrier),
    settings: Settings = Depends(get_settings),
    locks: OrderLocks = Depends(get_locks),
) -> SyncService:
    """One engine per request, sharing the app-wide clients, settings and locks."""
    return SyncService(db, shopify, carrier, settings, locks)
