"""
Candidate discovery - which professionals may receive a lead for a job.
"""

from cleanmatch.features.matching.domain.models import Job, ProCandidate
from cleanmatch.features.matching.geo import haversine_km
from cleanmatch.infrastructure.observability.logging import get_logger

from .repository import CandidateRepository

logger = get_logger(__name__)


class CandidateDiscoveryService:
    def __init__(self, repository=None):
        self.repository = repository or CandidateRepository()

    async def find_candidates(self, job: Job) -> list[ProCandidate]:
        """
        Active, not hard-banned professionals offering a requested service
        whose own service radius covers the job location.

        The returned candidates carry ``distance_km``. Repository failures
        propagate so the caller never sees a partial list.
        """
        pros = await self.repository.active_pros_offering(job.services)

        candidates: list[ProCandidate] = []
        hard_banned = 0
        out_of_range = 0

        for pro in pros:
            if pro.flags.hard_banned:
                hard_banned += 1
                continue

            distance = haversine_km(pro.location, job.location)
            if distance > pro.radius_km:
                out_of_range += 1
                continue

            pro.distance_km = distance
            candidates.append(pro)

        logger.info(
            "Candidates discovered",
            job_id=job.id,
            queried=len(pros),
            candidates=len(candidates),
            hard_banned=hard_banned,
            out_of_range=out_of_range,
        )
        return candidates


candidate_discovery_service = CandidateDiscoveryService()
