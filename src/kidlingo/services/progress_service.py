"""Progress service for lesson results and resumable attempt snapshots."""
import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func
from sqlalchemy.orm import Session, contains_eager

from kidlingo.config import settings
from kidlingo.models.models import LessonProgress, LessonResult
from kidlingo.models.player_models import Snapshot
from kidlingo.services.lesson_player import round_percentage

logger = logging.getLogger(__name__)


class ProgressService:
    """Service for storing lesson progress and results.

    A ``user_id`` of ``None`` stands for a guest; nothing is stored for guests.
    """

    def __init__(self, db: Session):
        """Initialize the service with a database session."""
        self.db = db

    def _get_progress(self, user_id: int, lesson_id: str) -> Optional[LessonProgress]:
        return (
            self.db.query(LessonProgress)
            .filter(
                and_(
                    LessonProgress.user_id == user_id,
                    LessonProgress.lesson_id == lesson_id,
                )
            )
            .first()
        )

    def load_snapshot(self, user_id: Optional[int], lesson_id: str) -> Optional[Snapshot]:
        """Get the saved snapshot of an unfinished lesson."""
        if user_id is None:
            return None
        progress = self._get_progress(user_id, lesson_id)
        if not progress:
            return None
        try:
            return Snapshot.from_dict(json.loads(progress.snapshot))
        except (ValueError, TypeError) as e:
            logger.warning(f"Ignoring unreadable snapshot of lesson {lesson_id} for user {user_id}: {e}")
            return None

    def save_snapshot(self, user_id: Optional[int], lesson_id: str, snapshot: Snapshot) -> None:
        """Save the snapshot of an unfinished lesson, replacing any previous one."""
        if user_id is None:
            logger.debug(f"Not saving snapshot of lesson {lesson_id} for a guest")
            return
        data = json.dumps(snapshot.to_dict())
        progress = self._get_progress(user_id, lesson_id)
        if progress:
            progress.snapshot = data
        else:
            self.db.add(LessonProgress(user_id=user_id, lesson_id=lesson_id, snapshot=data))
        self.db.commit()
        logger.debug(f"Saved snapshot of lesson {lesson_id} for user {user_id}")

    def clear_snapshot(self, user_id: Optional[int], lesson_id: str) -> None:
        """Delete the saved snapshot of a lesson."""
        if user_id is None:
            return
        (
            self.db.query(LessonProgress)
            .filter(
                and_(
                    LessonProgress.user_id == user_id,
                    LessonProgress.lesson_id == lesson_id,
                )
            )
            .delete()
        )
        self.db.commit()

    def record_result(
        self, user_id: Optional[int], lesson_id: str, score: int, total: int, elapsed_seconds: int
    ) -> Optional[LessonResult]:
        """Store the result of a completed lesson."""
        if user_id is None:
            logger.debug(f"Not recording result of lesson {lesson_id} for a guest")
            return None
        percentage = round_percentage(score, total) if total > 0 else 0
        result = LessonResult(
            user_id=user_id,
            lesson_id=lesson_id,
            score=score,
            total_questions=total,
            percentage=percentage,
            time_spent_seconds=elapsed_seconds or 0,
        )
        self.db.add(result)
        self.db.commit()
        self.db.refresh(result)
        logger.info(f"User {user_id} completed lesson {lesson_id}: {score}/{total} ({percentage}%)")
        return result

    def get_user_results(self, user_id: int, limit: Optional[int] = None) -> List[LessonResult]:
        """Get the user's lesson results, newest first."""
        query = (
            self.db.query(LessonResult)
            .filter(LessonResult.user_id == user_id)
            .order_by(LessonResult.created_at.desc(), LessonResult.id.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def get_all_results(self, limit: Optional[int] = None) -> List[LessonResult]:
        """Get the results of every learner, newest first, with the learner loaded."""
        query = (
            self.db.query(LessonResult)
            .join(LessonResult.user)
            .options(contains_eager(LessonResult.user))
            .order_by(LessonResult.created_at.desc(), LessonResult.id.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def get_user_statistics(self, user_id: int, total_lessons: int) -> Dict[str, Any]:
        """Get summary statistics of the user's lesson results."""
        completed_lessons = (
            self.db.query(func.count(func.distinct(LessonResult.lesson_id)))
            .filter(LessonResult.user_id == user_id)
            .scalar()
        )
        average_score = (
            self.db.query(func.avg(LessonResult.percentage))
            .filter(LessonResult.user_id == user_id)
            .scalar()
        )
        total_time = (
            self.db.query(func.sum(LessonResult.time_spent_seconds))
            .filter(LessonResult.user_id == user_id)
            .scalar()
        )
        best_scores = (
            self.db.query(
                LessonResult.lesson_id,
                func.max(LessonResult.percentage),
                func.count(LessonResult.id),
            )
            .filter(LessonResult.user_id == user_id)
            .group_by(LessonResult.lesson_id)
            .order_by(LessonResult.lesson_id)
            .all()
        )

        return {
            "total_lessons": total_lessons,
            "completed_lessons": completed_lessons or 0,
            "average_score": round(average_score) if average_score else 0,
            "total_time_seconds": total_time or 0,
            "recent_results": self.get_user_results(user_id, limit=settings.lessons.recent_results_limit),
            "best_scores": [
                {"lesson_id": lesson_id, "best_score": best, "attempts": attempts}
                for lesson_id, best, attempts in best_scores
            ],
        }
