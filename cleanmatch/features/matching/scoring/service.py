"""
Lead scoring service - turns discovered candidates into ranked leads.

Scoring is a pure function of (job, candidate, eta); only the ETA lookup
touches the network. Candidates are scored concurrently and ranked with a
stable sort so exact ties keep discovery order.
"""

import asyncio
from collections.abc import Iterable

from cleanmatch.features.matching.domain.models import (
    BanFlags,
    Job,
    ProCandidate,
    ScoredLead,
)
from cleanmatch.features.matching.eta.service import EtaUnavailableError
from cleanmatch.features.matching.eta.service import eta_resolver as default_eta_resolver
from cleanmatch.features.matching.geo import haversine_km
from cleanmatch.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

WEIGHT_DISTANCE = 0.25
WEIGHT_PRICE = 0.20
WEIGHT_RATING = 0.20
WEIGHT_RESPONSE = 0.15
WEIGHT_COMPLETENESS = 0.10
WEIGHT_HEALTH = 0.10

DISTANCE_PENALTY_PER_KM = 5
NEUTRAL_HEALTH_SCORE = 50
SOFT_BAN_FACTOR = 0.5
FALLBACK_MINUTES_PER_KM = 2

# (minimum budget / estimated cost ratio, score), checked top down
PRICE_BANDS = (
    (1.2, 100),
    (1.0, 90),
    (0.9, 70),
    (0.8, 50),
    (0.7, 30),
)
PRICE_FLOOR = 10

BADGE_BONUSES = {
    "verified": 5,
    "topRated": 10,
    "fastResponder": 5,
    "reliable": 8,
    "premium": 15,
}

REASON_VERY_NEAR = "very_near"
REASON_BUDGET_FITS = "budget_fits"
REASON_TOP_RATED = "top_rated"
REASON_VERIFIED = "verified"
REASON_SOFT_BAN = "soft_ban_penalty"


class LeadScoringService:
    def __init__(self, eta_resolver=None):
        self.eta_resolver = eta_resolver or default_eta_resolver

    @staticmethod
    def price_score(budget: float, hourly_rate: float, duration_hours: float) -> int:
        estimated_cost = hourly_rate * duration_hours
        if estimated_cost <= 0:
            # Nothing to pay for: any positive budget fits
            return PRICE_BANDS[0][1] if budget > 0 else PRICE_FLOOR

        ratio = budget / estimated_cost
        for threshold, score in PRICE_BANDS:
            if ratio >= threshold:
                return score
        return PRICE_FLOOR

    @staticmethod
    def badge_bonus(badges: Iterable[str]) -> int:
        return sum(BADGE_BONUSES.get(badge, 0) for badge in set(badges))

    @staticmethod
    def apply_ban_penalty(score: int, flags: BanFlags) -> tuple[int, bool]:
        """Halve a soft-banned score. Hard bans never get this far."""
        if flags.soft_banned:
            return round(score * SOFT_BAN_FACTOR), True
        return score, False

    @staticmethod
    def reasons_for(
        distance_km: float, price_score: int, candidate: ProCandidate, penalized: bool
    ) -> list[str]:
        reasons = []
        if distance_km <= 5:
            reasons.append(REASON_VERY_NEAR)
        if price_score >= 80:
            reasons.append(REASON_BUDGET_FITS)
        if candidate.rating >= 4.5:
            reasons.append(REASON_TOP_RATED)
        if "verified" in candidate.badges:
            reasons.append(REASON_VERIFIED)
        if penalized:
            reasons.append(REASON_SOFT_BAN)
        return reasons

    def raw_score(self, job: Job, candidate: ProCandidate, distance_km: float) -> tuple[int, int]:
        """Weighted score plus badge bonus, before ban penalty and clamping."""
        distance_score = max(0.0, 100 - DISTANCE_PENALTY_PER_KM * distance_km)
        price = self.price_score(job.budget, candidate.hourly_rate, job.duration_hours)
        rating_score = candidate.rating / 5 * 100
        response_score = candidate.response_rate * 100
        completeness_score = candidate.profile_completeness * 100
        health_score = (
            candidate.health.score if candidate.health is not None else NEUTRAL_HEALTH_SCORE
        )

        weighted = round(
            WEIGHT_DISTANCE * distance_score
            + WEIGHT_PRICE * price
            + WEIGHT_RATING * rating_score
            + WEIGHT_RESPONSE * response_score
            + WEIGHT_COMPLETENESS * completeness_score
            + WEIGHT_HEALTH * health_score
        )
        return weighted + self.badge_bonus(candidate.badges), price

    def score_candidate(
        self, job: Job, candidate: ProCandidate, eta_minutes: int, distance_km: float | None = None
    ) -> ScoredLead:
        if distance_km is None:
            distance_km = (
                candidate.distance_km
                if candidate.distance_km is not None
                else haversine_km(candidate.location, job.location)
            )

        score, price = self.raw_score(job, candidate, distance_km)
        score, penalized = self.apply_ban_penalty(score, candidate.flags)
        score = max(0, min(100, score))

        return ScoredLead(
            candidate=candidate,
            score=score,
            distance_km=distance_km,
            eta_minutes=eta_minutes,
            price_match=price / 100,
            reasons=self.reasons_for(distance_km, price, candidate, penalized),
        )

    async def estimate_eta(self, job: Job, candidate: ProCandidate, distance_km: float) -> int:
        try:
            result = await self.eta_resolver.resolve(candidate.location, job.location, strict=True)
            return result.minutes
        except EtaUnavailableError as e:
            minutes = round(distance_km * FALLBACK_MINUTES_PER_KM)
            logger.warning(
                "Using fallback ETA",
                pro_id=candidate.pro_id,
                distance_km=round(distance_km, 1),
                eta_minutes=minutes,
                error=str(e),
            )
            return minutes

    async def _score_one(self, job: Job, candidate: ProCandidate) -> ScoredLead:
        distance_km = (
            candidate.distance_km
            if candidate.distance_km is not None
            else haversine_km(candidate.location, job.location)
        )
        eta_minutes = await self.estimate_eta(job, candidate, distance_km)
        return self.score_candidate(job, candidate, eta_minutes, distance_km)

    async def score_candidates(self, job: Job, candidates: list[ProCandidate]) -> list[ScoredLead]:
        """
        Score every candidate concurrently.

        A candidate whose scoring fails is logged and dropped; input order is
        preserved for the remaining ones.
        """
        results = await asyncio.gather(
            *(self._score_one(job, candidate) for candidate in candidates),
            return_exceptions=True,
        )

        scored: list[ScoredLead] = []
        for candidate, result in zip(candidates, results, strict=True):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.error(
                    "Failed to score candidate",
                    job_id=job.id,
                    pro_id=candidate.pro_id,
                    error=str(result),
                    error_type=type(result).__name__,
                )
                continue
            scored.append(result)

        if scored:
            logger.info(
                "Candidates scored",
                job_id=job.id,
                scored=len(scored),
                avg_score=round(sum(s.score for s in scored) / len(scored)),
            )
        return scored

    @staticmethod
    def rank(scored: list[ScoredLead], limit: int | None = None) -> list[ScoredLead]:
        """Descending by score; ties keep input order."""
        ranked = sorted(scored, key=lambda lead: lead.score, reverse=True)
        return ranked[:limit] if limit is not None else ranked


lead_scoring_service = LeadScoringService()
