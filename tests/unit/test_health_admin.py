import pytest

from cleanmatch.auth.verify import Actor
from cleanmatch.errors import InvalidArgumentError, NotFoundError, PermissionDeniedError
from cleanmatch.features.health.domain.models import HealthMetrics, HealthResult, ProHealthProfile
from cleanmatch.features.health.services.admin_service import HealthAdminService
from tests.conftest import FIXED_NOW, TransactionalFake


class FakeHealthRepository(TransactionalFake):
    def __init__(self, profiles=()):
        super().__init__()
        self.profiles = {profile.pro_id: profile for profile in profiles}
        self.saved_health: dict[str, dict] = {}
        self.marked: dict[str, str] = {}

    async def get_profile(self, pro_id, *, connection=None, lock=False):
        profile = self.profiles.get(pro_id)
        if profile is None:
            return None
        return ProHealthProfile(
            pro_id=profile.pro_id,
            badges=list(profile.badges),
            health=profile.health,
            soft_banned=profile.soft_banned,
            hard_banned=profile.hard_banned,
            flag_notes=profile.flag_notes,
        )

    async def update_flags(self, conn, profile):
        self.profiles[profile.pro_id] = profile

    async def save_badges(self, conn, pro_id, badges):
        self.profiles[pro_id].badges = badges

    async def save_health(self, pro_id, health, badges, *, connection=None):
        self.saved_health[pro_id] = health
        self.profiles[pro_id].badges = badges
        self.profiles[pro_id].health = health
        self.marked.pop(pro_id, None)

    async def mark_for_recalculation(self, pro_id, reason):
        if pro_id not in self.profiles:
            raise RuntimeError("no such profile")
        self.marked[pro_id] = reason

    async def pros_for_nightly(self, limit):
        return [await self.get_profile(pro_id) for pro_id in list(self.profiles)[:limit]]


class FakeScorer:
    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)

    async def calculate(self, pro_id):
        if pro_id in self.fail_for:
            raise RuntimeError("scoring failed")
        return HealthResult(score=88, metrics=HealthMetrics(), badges=["fast_responder"])

    @staticmethod
    def merge_badges(current, auto):
        return [badge for badge in current if badge not in ("fast_responder",)] + auto


def _profile(pro_id="pro-1", badges=None):
    return ProHealthProfile(pro_id=pro_id, badges=badges or ["verified"], health=None)


def _service(repository, audit_log, scorer=None):
    return HealthAdminService(
        repository=repository,
        scorer=scorer or FakeScorer(),
        audit_log=audit_log,
        clock=lambda: FIXED_NOW,
    )


@pytest.mark.asyncio
async def test_set_flags_merges_and_logs(admin, audit_log):
    repository = FakeHealthRepository([_profile()])

    result = await _service(repository, audit_log).set_flags(
        admin, {"pro_id": "pro-1", "soft_banned": True, "notes": "late twice"}
    )

    assert result["flags"] == {"soft_banned": True, "hard_banned": False, "notes": "late twice"}
    assert repository.profiles["pro-1"].soft_banned is True
    entry = audit_log.entries[0]
    assert entry["action"] == "set_flags"
    assert entry["before"]["soft_banned"] is False
    assert entry["after"]["soft_banned"] is True
    assert repository.commits == 1


@pytest.mark.asyncio
async def test_admin_by_email_allow_list(audit_log):
    ops = Actor(uid="ops-1", email="OPS@cleanmatch.test")
    repository = FakeHealthRepository([_profile()])

    await _service(repository, audit_log).set_flags(ops, {"pro_id": "pro-1", "hard_banned": True})

    assert repository.profiles["pro-1"].hard_banned is True


@pytest.mark.asyncio
async def test_non_admin_is_rejected(customer, audit_log):
    repository = FakeHealthRepository([_profile()])

    with pytest.raises(PermissionDeniedError):
        await _service(repository, audit_log).set_flags(
            customer, {"pro_id": "pro-1", "soft_banned": True}
        )
    assert audit_log.entries == []


@pytest.mark.asyncio
async def test_invalid_request_is_rejected(admin, audit_log):
    with pytest.raises(InvalidArgumentError):
        await _service(FakeHealthRepository(), audit_log).add_badge(admin, {"pro_id": "pro-1"})


@pytest.mark.asyncio
async def test_unknown_professional(admin, audit_log):
    with pytest.raises(NotFoundError):
        await _service(FakeHealthRepository(), audit_log).add_badge(
            admin, {"pro_id": "missing", "badge": "premium"}
        )


@pytest.mark.asyncio
async def test_add_and_remove_badge(admin, audit_log):
    repository = FakeHealthRepository([_profile()])
    service = _service(repository, audit_log)

    added = await service.add_badge(admin, {"pro_id": "pro-1", "badge": "premium"})
    again = await service.add_badge(admin, {"pro_id": "pro-1", "badge": "premium"})
    removed = await service.remove_badge(admin, {"pro_id": "pro-1", "badge": "verified"})

    assert added["badges"] == ["verified", "premium"]
    assert again["badges"] == ["verified", "premium"]
    assert removed["badges"] == ["premium"]
    assert [entry["action"] for entry in audit_log.entries] == [
        "add_badge",
        "add_badge",
        "remove_badge",
    ]


@pytest.mark.asyncio
async def test_recalculate_persists_health_and_merged_badges(admin, audit_log):
    repository = FakeHealthRepository([_profile(badges=["verified", "fast_responder"])])

    result = await _service(repository, audit_log).recalculate(admin, {"pro_id": "pro-1"})

    assert result == {"success": True, "score": 88, "badges": ["verified", "fast_responder"]}
    assert repository.saved_health["pro-1"]["score"] == 88
    assert repository.saved_health["pro-1"]["updated_at"] == FIXED_NOW.isoformat()
    assert audit_log.entries[0]["action"] == "recalculate_health"


@pytest.mark.asyncio
async def test_nightly_run_isolates_failures(audit_log):
    repository = FakeHealthRepository([_profile("pro-1"), _profile("pro-2"), _profile("pro-3")])
    service = _service(repository, audit_log, scorer=FakeScorer(fail_for={"pro-2"}))

    result = await service.recalculate_nightly()

    assert result.processed == 2
    assert result.failed == 1
    assert set(repository.saved_health) == {"pro-1", "pro-3"}


@pytest.mark.asyncio
async def test_nightly_run_keeps_badges_added_during_the_batch(admin, audit_log):
    repository = FakeHealthRepository([_profile()])
    service = _service(repository, audit_log)

    class BadgeAddingScorer(FakeScorer):
        async def calculate(self, pro_id):
            await service.add_badge(admin, {"pro_id": pro_id, "badge": "premium"})
            return await super().calculate(pro_id)

    service.scorer = BadgeAddingScorer()
    result = await service.recalculate_nightly()

    assert result.processed == 1
    assert repository.profiles["pro-1"].badges == ["verified", "premium", "fast_responder"]
    assert repository.commits == 2


@pytest.mark.asyncio
async def test_nightly_run_respects_limit(audit_log):
    repository = FakeHealthRepository([_profile(f"pro-{i}") for i in range(5)])

    result = await _service(repository, audit_log).recalculate_nightly(limit=3)

    assert result.processed == 3


@pytest.mark.asyncio
async def test_mark_for_recalculation_never_raises(audit_log):
    repository = FakeHealthRepository([_profile()])
    service = _service(repository, audit_log)

    assert await service.mark_for_recalculation("pro-1", "review_created") is True
    assert await service.mark_for_recalculation("missing", "review_created") is False
    assert repository.marked == {"pro-1": "review_created"}
