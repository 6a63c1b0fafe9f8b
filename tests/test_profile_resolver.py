"""Tests for ProfileResolver: fetch, self-heal, synthesis, convergence."""

from __future__ import annotations

import threading

from pu_connect.models.enums import ProfileOrigin, UserRole
from pu_connect.services.profile_resolver import ProfileResolver

from .conftest import AMA_ID, make_identity, make_profile


class TestPersistedProfile:
    def test_existing_row_is_returned_unmodified(self, resolver, repo):
        stored = make_profile(role=UserRole.NEWS_PUBLISHER)
        repo.rows[AMA_ID] = stored

        profile = resolver.resolve(AMA_ID, make_identity(full_name="Someone Else"))

        assert profile == stored
        assert profile.origin == ProfileOrigin.PERSISTED
        assert repo.insert_calls == []


class TestMissingRow:
    def test_creates_exactly_one_buyer_row(self, resolver, repo):
        identity = make_identity(student_id="PU/2023/0417", phone="0241234567")

        profile = resolver.resolve(AMA_ID, identity)

        assert profile.origin == ProfileOrigin.CREATED
        assert profile.role == UserRole.BUYER
        assert profile.is_active
        assert profile.student_id == "PU/2023/0417"
        assert list(repo.rows) == [AMA_ID]

    def test_identity_fetched_from_auth_when_no_hint(self, resolver, repo, auth):
        auth.restore(make_identity())

        profile = resolver.resolve(AMA_ID)

        assert profile.full_name == "Ama Mensah"
        assert AMA_ID in repo.rows

    def test_duplicate_insert_converges_on_existing_row(self, resolver, repo):
        repo.race_on_insert = True

        profile = resolver.resolve(AMA_ID, make_identity())

        assert profile.full_name == "Written Elsewhere"
        assert len(repo.rows) == 1

    def test_failed_insert_falls_back_to_synthesized(self, resolver, repo):
        repo.fail_inserts = True

        profile = resolver.resolve(AMA_ID, make_identity())

        assert profile.origin == ProfileOrigin.SYNTHESIZED
        assert not profile.is_persisted
        assert repo.rows == {}

    def test_concurrent_resolves_create_one_row(self, resolver, repo):
        barrier = threading.Barrier(2, timeout=5)
        calls = []

        def _both_miss_first(profile_id: str) -> None:
            calls.append(profile_id)
            if len(calls) <= 2:
                barrier.wait()

        repo.before_get = _both_miss_first
        identity = make_identity()
        results = []

        def _resolve() -> None:
            results.append(resolver.resolve(AMA_ID, identity))

        threads = [threading.Thread(target=_resolve) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert len(results) == 2
        assert all(p is not None and p.id == AMA_ID for p in results)
        assert all(p.is_persisted for p in results)
        assert len(repo.insert_calls) == 2
        assert len(repo.rows) == 1


class TestStoreUnavailable:
    def test_synthesizes_buyer_named_user(self, resolver, repo):
        repo.unavailable = True

        profile = resolver.resolve(AMA_ID, make_identity(full_name=None))

        assert profile is not None
        assert profile.origin == ProfileOrigin.SYNTHESIZED
        assert profile.full_name == "User"
        assert profile.role == UserRole.BUYER
        assert profile.is_active and profile.is_online
        assert profile.email == "ama.mensah@pentvars.edu.gh"
        assert profile.student_id == ""

    def test_no_identity_anywhere_returns_none(self, resolver, repo):
        repo.unavailable = True

        assert resolver.resolve(AMA_ID) is None

    def test_unexpected_exception_degrades(self, resolver, repo):
        def _explode(_profile_id: str) -> None:
            raise KeyError("unexpected")

        repo.before_get = _explode

        profile = resolver.resolve(AMA_ID, make_identity())

        assert profile.origin == ProfileOrigin.SYNTHESIZED


class TestSeedProfile:
    def test_seed_uses_metadata_and_buyer_role(self):
        seed = ProfileResolver.seed_profile(
            make_identity(full_name="Ada", department="CS", faculty="Eng"),
        )

        assert seed.full_name == "Ada"
        assert seed.department == "CS"
        assert seed.role == UserRole.BUYER
        assert seed.created_at is not None
