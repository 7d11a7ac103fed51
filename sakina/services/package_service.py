import json
import logging
from datetime import datetime
from typing import List
import redis
from sqlalchemy.orm import Session
from sakina.config import settings
from sakina.exceptions import NotFoundError, ConflictError
from sakina.models.package import Package, PackageType, PeriodType
from sakina.schemas.subscription import PackageCreate, PackageUpdate, PackageResponse
from sakina.utils.redis_client import get_redis

logger = logging.getLogger(__name__)

PACKAGES_CACHE_KEY = "subscription:packages:active"


def calculate_end_date(package: Package, start: datetime, periods: int = 1) -> datetime:
    """End of ``periods`` package periods starting at ``start`` (calendar months/years)"""
    return package.add_period(start, periods)


class PackageService:

    @staticmethod
    def list_active_packages(db: Session) -> List[dict]:
        """Active packages ordered by display_order, served from Redis when possible"""
        client = get_redis()
        if client is not None:
            try:
                cached = client.get(PACKAGES_CACHE_KEY)
                if cached:
                    return json.loads(cached)
            except (redis.RedisError, ValueError) as e:
                logger.warning(f"⚠️ Package cache read failed: {e}")

        packages = db.query(Package).filter(
            Package.is_active == True
        ).order_by(Package.display_order, Package.id).all()

        data = [PackageResponse.model_validate(p).model_dump(mode="json") for p in packages]

        if client is not None:
            try:
                client.setex(PACKAGES_CACHE_KEY, settings.PACKAGES_CACHE_TTL, json.dumps(data))
            except redis.RedisError as e:
                logger.warning(f"⚠️ Package cache write failed: {e}")

        return data

    @staticmethod
    def get_active_package(db: Session, package_id: int) -> Package:
        package = db.query(Package).filter(
            Package.id == package_id,
            Package.is_active == True
        ).first()
        if not package:
            raise NotFoundError("Package not found or inactive")
        return package

    @staticmethod
    def get_package(db: Session, package_id: int) -> Package:
        package = db.query(Package).filter(Package.id == package_id).first()
        if not package:
            raise NotFoundError("Package not found")
        return package

    @staticmethod
    def invalidate_cache():
        client = get_redis()
        if client is None:
            return
        try:
            client.delete(PACKAGES_CACHE_KEY)
            logger.debug("Package cache invalidated")
        except redis.RedisError as e:
            logger.warning(f"⚠️ Package cache invalidation failed: {e}")

    # ============================================
    # ADMIN
    # ============================================

    @staticmethod
    def list_all_packages(db: Session) -> List[Package]:
        return db.query(Package).order_by(Package.display_order, Package.id).all()

    @staticmethod
    def create_package(db: Session, data: PackageCreate) -> Package:
        if db.query(Package).filter(Package.type == PackageType(data.type)).first():
            raise ConflictError(f"A {data.type} package already exists")

        values = data.model_dump()
        values["type"] = PackageType(values["type"])
        values["period_type"] = PeriodType(values["period_type"])
        package = Package(**values)
        db.add(package)
        db.commit()
        db.refresh(package)

        PackageService.invalidate_cache()
        logger.info(f"📦 Package created: {package.type.value} (ID: {package.id})")
        return package

    @staticmethod
    def update_package(db: Session, package_id: int, data: PackageUpdate) -> Package:
        package = PackageService.get_package(db, package_id)

        for field, value in data.model_dump(exclude_unset=True).items():
            if field == "period_type" and value is not None:
                value = PeriodType(value)
            setattr(package, field, value)

        db.commit()
        db.refresh(package)

        PackageService.invalidate_cache()
        logger.info(f"📦 Package updated: {package.id}")
        return package

    @staticmethod
    def deactivate_package(db: Session, package_id: int) -> Package:
        """Packages are referenced by subscriptions and payments, so never deleted"""
        package = PackageService.get_package(db, package_id)
        package.is_active = False
        db.commit()

        PackageService.invalidate_cache()
        logger.info(f"📦 Package deactivated: {package.id}")
        return package
