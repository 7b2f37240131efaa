"""
Health scorer - recomputes a professional's health score and auto-badges
from abuse events, reviews, chat response latency and job counts.
"""

import asyncio
import math
from collections.abc import Iterable

from cleanmatch.features.health.domain.models import (
    AUTO_BADGES,
    ChatMessage,
    HealthMetrics,
    HealthResult,
)
from cleanmatch.features.health.repository import health_repository
from cleanmatch.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_RESPONSE_MINUTES = 24 * 60
RESPONSE_ZERO_AT_MINUTES = 120

WEIGHTS = {
    "no_show": 0.30,
    "cancel": 0.15,
    "response": 0.15,
    "in_app": 0.15,
    "rating": 0.20,
    "count": 0.05,
}

TOP_RATED_MIN_AVG = 4.8
TOP_RATED_MIN_COUNT = 20
FAST_RESPONDER_MAX_MINS = 15
RELIABLE_MAX_NO_SHOW = 0.02

NO_SHOW = "no_show"
LATE_CANCEL = "late_cancel"
OFF_PLATFORM = ("off_platform", "contact_drop")


class HealthScorer:
    def __init__(self, repository=None):
        self.repository = repository or health_repository

    # ---- pure computations -------------------------------------------

    @staticmethod
    def response_times(messages: Iterable[ChatMessage], pro_id: str) -> list[float]:
        """
        Minutes between each pro reply and the latest preceding message from
        someone else. Messages must be in chronological order.
        """
        times: list[float] = []
        last_other: ChatMessage | None = None

        for message in messages:
            if message.sender_id != pro_id:
                last_other = message
                continue
            if last_other is None:
                continue

            minutes = (message.sent_at - last_other.sent_at).total_seconds() / 60
            if 0 < minutes < MAX_RESPONSE_MINUTES:
                times.append(minutes)
            last_other = None

        return times

    @staticmethod
    def compute_metrics(
        event_types: list[str],
        rating_avg: float,
        rating_count: int,
        response_times: list[float],
        total_jobs: int,
    ) -> HealthMetrics:
        no_shows = sum(1 for t in event_types if t == NO_SHOW)
        late_cancels = sum(1 for t in event_types if t == LATE_CANCEL)
        off_platform = sum(1 for t in event_types if t in OFF_PLATFORM)

        if total_jobs > 0:
            no_show_rate = no_shows / total_jobs
            cancel_rate = late_cancels / total_jobs
            in_app_ratio = max(0.0, 1 - off_platform / total_jobs)
        else:
            # New professionals are not penalized
            no_show_rate = cancel_rate = 0.0
            in_app_ratio = 1.0

        return HealthMetrics(
            no_show_rate=no_show_rate,
            cancel_rate=cancel_rate,
            avg_response_mins=sum(response_times) / len(response_times) if response_times else 0.0,
            in_app_ratio=in_app_ratio,
            rating_avg=rating_avg,
            rating_count=rating_count,
        )

    @staticmethod
    def score(metrics: HealthMetrics) -> int:
        components = {
            "no_show": 100 * (1 - metrics.no_show_rate),
            "cancel": 100 * (1 - metrics.cancel_rate),
            "response": 100 * (1 - metrics.avg_response_mins / RESPONSE_ZERO_AT_MINUTES),
            "in_app": min(100.0, 100 * metrics.in_app_ratio),
            "rating": metrics.rating_avg * 20,
            "count": min(100.0, 5 * math.log(1 + metrics.rating_count)),
        }
        return round(sum(WEIGHTS[name] * max(0.0, value) for name, value in components.items()))

    @staticmethod
    def auto_badges(metrics: HealthMetrics) -> list[str]:
        badges = []
        if metrics.rating_avg >= TOP_RATED_MIN_AVG and metrics.rating_count >= TOP_RATED_MIN_COUNT:
            badges.append("top_rated")
        if metrics.avg_response_mins <= FAST_RESPONDER_MAX_MINS:
            badges.append("fast_responder")
        if metrics.no_show_rate <= RELIABLE_MAX_NO_SHOW:
            badges.append("reliable")
        return badges

    @staticmethod
    def merge_badges(current: list[str], auto: list[str]) -> list[str]:
        """Keep manual badges verbatim, replace the auto-computed ones."""
        manual = [badge for badge in current if badge not in AUTO_BADGES]
        return manual + list(auto)

    # ---- data gathering ----------------------------------------------

    async def _response_times(self, pro_id: str) -> list[float]:
        chat_ids = await self.repository.recent_chat_ids(pro_id)
        histories = await asyncio.gather(
            *(self.repository.recent_messages(chat_id) for chat_id in chat_ids)
        )
        times: list[float] = []
        for messages in histories:
            times.extend(self.response_times(messages, pro_id))
        return times

    async def calculate(self, pro_id: str) -> HealthResult:
        event_types, (rating_avg, rating_count), response_times, total_jobs = await asyncio.gather(
            self.repository.abuse_event_types(pro_id),
            self.repository.review_stats(pro_id),
            self._response_times(pro_id),
            self.repository.job_count(pro_id),
        )

        metrics = self.compute_metrics(
            event_types, rating_avg, rating_count, response_times, total_jobs
        )
        result = HealthResult(
            score=self.score(metrics), metrics=metrics, badges=self.auto_badges(metrics)
        )

        logger.info(
            "Health score calculated",
            pro_id=pro_id,
            score=result.score,
            badges=result.badges,
            total_jobs=total_jobs,
        )
        return result


health_scorer = HealthScorer()
