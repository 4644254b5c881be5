import logging
from typing import Dict, Optional, Tuple

import statsd
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session

from chatlog.db import upsert_insert
from chatlog.errors import ConflictError, InternalError, ValidationError
from chatlog.models import UserProfile

logger = logging.getLogger(__name__)


class ProfileDirectory:
    def __init__(self, pg_engine, metrics: statsd.StatsClient):
        self.pg_engine = pg_engine
        self.metrics = metrics
        self.insert = upsert_insert(pg_engine)

    def register_user(self, email: str, user_name: str, license_number: Optional[str] = "") -> Tuple[bool, Dict]:
        if not email or not user_name:
            raise ValidationError("Email and user_name are required")
        license_number = license_number or ""
        table = UserProfile.__table__

        try:
            with Session(self.pg_engine) as session:
                connection = session.connection()
                # a concurrent first registration waits on the row and then falls through to the update
                inserted = connection.execute(
                    self.insert(table)
                    .values(email=email, user_name=user_name, license_number=license_number)
                    .on_conflict_do_nothing(index_elements=[table.c.email])
                    .returning(table.c.email)
                ).first()
                created = inserted is not None
                if not created:
                    connection.execute(
                        update(table)
                        .where(table.c.email == email)
                        .values(user_name=user_name, license_number=license_number)
                    )
                session.commit()

                result = session.get(UserProfile, email).model_dump()
        except IntegrityError as e:
            # uniqueness violation on anything other than the email key
            logger.warning("Conflict registering %s: %s", email, e)
            raise ConflictError("User with this information already exists")
        except SQLAlchemyError as e:
            logger.exception("Error in user registration/update for %s", email)
            raise InternalError("Error in user registration/update", details=str(e))

        self.metrics.incr("user.registered" if created else "user.updated")
        return created, result

    def get_user(self, email: Optional[str]) -> Optional[Dict]:
        # no email means no profile on file
        if not email:
            return None
        try:
            with Session(self.pg_engine) as session:
                profile = session.get(UserProfile, email)
                return profile.model_dump() if profile is not None else None
        except SQLAlchemyError as e:
            logger.exception("Error checking user info for %s", email)
            raise InternalError("Error checking user info", details=str(e))

    def check_license(self, email: Optional[str]) -> str:
        user = self.get_user(email)
        if user is None:
            return ""
        return user.get("license_number") or ""
