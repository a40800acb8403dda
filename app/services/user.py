# app/services/user.py

import logging
import math
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.exceptions import ConflictError, NotFoundError
from app.models.purchase import PurchasedBundle, PurchasedCourse
from app.models.user import User
from app.services.audit_log import AuditActor, AuditLogService

logger = logging.getLogger(__name__)


class UserService:
    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: int) -> Optional[User]:
        """
        Retrieves a single user by their ID.
        """
        return self.db.query(User).filter(User.id == user_id).first()

    def get_user_or_404(self, user_id: int) -> User:
        user = self.get_user(user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def get_profile(self, user: User) -> Dict[str, Any]:
        course_ids = [
            row[0]
            for row in self.db.query(PurchasedCourse.course_id)
            .filter(PurchasedCourse.user_id == user.id)
            .order_by(PurchasedCourse.course_id)
            .all()
        ]
        bundle_ids = [
            row[0]
            for row in self.db.query(PurchasedBundle.bundle_id)
            .filter(PurchasedBundle.user_id == user.id)
            .order_by(PurchasedBundle.bundle_id)
            .all()
        ]
        return {
            "id": user.id,
            "email": user.email,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "full_name": user.full_name,
            "role": user.role,
            "is_active": user.is_active,
            "created_at": user.created_at,
            "purchased_course_ids": course_ids,
            "purchased_bundle_ids": bundle_ids,
        }

    def list_users(
        self,
        page: int = 1,
        size: int = 20,
        search: Optional[str] = None,
        role: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> Tuple[List[User], dict]:
        query = self.db.query(User)

        if search and search.strip():
            pattern = f"%{search.strip().lower()}%"
            query = query.filter(
                or_(
                    User.email.ilike(pattern),
                    User.first_name.ilike(pattern),
                    User.last_name.ilike(pattern),
                )
            )
        if role:
            query = query.filter(User.role == role)
        if is_active is not None:
            query = query.filter(User.is_active.is_(is_active))

        total = query.count()
        offset = (page - 1) * size
        users = query.order_by(User.created_at.desc(), User.id.desc()).offset(offset).limit(size).all()

        pagination = {
            "total": total,
            "page": page,
            "size": size,
            "total_pages": math.ceil(total / size) if size > 0 else 0,
        }
        return users, pagination

    def set_active(
        self,
        user_id: int,
        is_active: bool,
        reason: Optional[str] = None,
        actor: Optional[AuditActor] = None,
    ) -> User:
        """Activate or deactivate an account. Admins cannot deactivate themselves."""
        user = self.get_user_or_404(user_id)

        if actor is not None and actor.user_id == user.id and not is_active:
            raise ConflictError("You cannot deactivate your own account", 400)

        previous = user.is_active
        user.is_active = is_active

        AuditLogService(self.db).record(
            "user_status_updated",
            "user",
            user.id,
            user.full_name or user.email,
            actor,
            details={"from": previous, "to": is_active, "reason": reason},
        )
        self.db.commit()
        self.db.refresh(user)

        logger.info(
            f"✅ User {user.email} {'activated' if is_active else 'deactivated'}"
        )
        return user
