"""
Candidate discovery repository - reads matchable professional profiles.
"""

from cleanmatch.db.helpers import fetch_all, with_db_retry
from cleanmatch.errors import RecordDecodeError
from cleanmatch.features.matching.domain.models import ProCandidate
from cleanmatch.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

PRO_PROFILE_COLUMNS = """
    id, lat, lng, radius_km, services, hourly_rate, rating, response_rate,
    profile_completeness, health, soft_banned, hard_banned, flag_notes, badges
"""


class CandidateRepository:
    @staticmethod
    @with_db_retry()
    async def active_pros_offering(services: list[str]) -> list[ProCandidate]:
        """
        Active professionals offering any of ``services``.

        Rows that cannot be decoded are skipped with a warning; query errors
        propagate as ``DatabaseError``.
        """
        rows = await fetch_all(
            f"""
            SELECT {PRO_PROFILE_COLUMNS}
            FROM pro_profiles
            WHERE is_active = true
              AND services && %s::text[]
            ORDER BY id
            """,
            (list(services),),
        )

        candidates: list[ProCandidate] = []
        for row in rows:
            try:
                candidates.append(ProCandidate.from_row(row))
            except RecordDecodeError as e:
                logger.warning(
                    "Skipping undecodable professional profile",
                    pro_id=e.record_id,
                    error=str(e),
                )
        return candidates
