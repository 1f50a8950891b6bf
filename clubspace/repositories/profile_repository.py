# clubspace/repositories/profile_repository.py
from typing import List, Sequence, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.profile import Profile
from .base_repository import BaseRepository


class ProfileRepository(BaseRepository[Profile]):
    def __init__(self, db: Session):
        super().__init__(db, Profile)

    def get_many(self, ids: Sequence[str]) -> List[Profile]:
        if not ids:
            return []
        try:
            return cast(
                List[Profile],
                self.db.query(Profile).filter(Profile.id.in_(list(set(ids)))).all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error fetching profiles: {str(e)}")
            raise RepositoryException(f"Failed to fetch profiles: {str(e)}") from e
