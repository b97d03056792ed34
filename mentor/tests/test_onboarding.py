from __future__ import annotations

from dataclasses import dataclass

import pytest
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from mentor.errors import InvalidTransition, MissingRequiredField, UnknownEntity
from mentor.gamification import mentee_badges
from mentor.models import Mentee, OnboardingProgress
from mentor.onboarding import (
    DEFAULT_STEPS, StepStatus, complete_step, completion_percent, get_or_create_progress,
    next_step, skip_step, step_status, step_statuses,
)

DIAGNOSIS = {
    "experience": "Básico",
    "goal": "Fazer a primeira venda",
    "available_hours": "5-10h",
    "budget": "R$500-2000",
}


@dataclass
class Step:
    id: str
    order: int
    is_required: bool = True


# ---------------------------------------------------------------------------
# Status derivation
# ---------------------------------------------------------------------------


class TestStepStatuses:
    steps = [Step("a", 1), Step("b", 2), Step("c", 3, is_required=False), Step("d", 4)]

    def test_fresh_catalog(self):
        statuses = step_statuses(self.steps, set(), set())
        assert statuses == {
            "a": StepStatus.AVAILABLE, "b": StepStatus.LOCKED,
            "c": StepStatus.LOCKED, "d": StepStatus.LOCKED,
        }

    def test_pending_required_step_locks_everything_after_it(self):
        statuses = step_statuses(self.steps, {"a"}, set())
        assert statuses["b"] == StepStatus.AVAILABLE
        assert statuses["c"] == StepStatus.LOCKED
        assert statuses["d"] == StepStatus.LOCKED

    def test_skipped_required_step_keeps_later_steps_locked(self):
        statuses = step_statuses(self.steps, {"a"}, {"b"})
        assert statuses["b"] == StepStatus.SKIPPED
        assert statuses["c"] == StepStatus.LOCKED
        assert statuses["d"] == StepStatus.LOCKED

    def test_optional_step_does_not_gate(self):
        statuses = step_statuses(self.steps, {"a", "b"}, {"c"})
        assert statuses["c"] == StepStatus.SKIPPED
        assert statuses["d"] == StepStatus.AVAILABLE

    def test_catalog_order_wins_over_input_order(self):
        shuffled = list(reversed(self.steps))
        assert step_statuses(shuffled, {"a"}, set()) == step_statuses(self.steps, {"a"}, set())

    def test_three_step_scenario(self):
        steps = [Step("s1", 1), Step("s2", 2), Step("s3", 3)]
        assert step_status("s3", steps, {"s1"}, {"s2"}) == StepStatus.LOCKED
        assert step_status("s3", steps, {"s1", "s2"}, {"s2"}) == StepStatus.AVAILABLE
        assert step_status("s2", steps, {"s1", "s2"}, {"s2"}) == StepStatus.DONE

    def test_unknown_step(self):
        with pytest.raises(UnknownEntity):
            step_status("zz", self.steps, set(), set())

    def test_next_step_skips_done_and_skipped(self):
        assert next_step(self.steps, {"a"}, set()).id == "b"
        assert next_step(self.steps, {"a", "b"}, {"c"}).id == "d"
        assert next_step(self.steps, {"a", "b", "d"}, {"c"}) is None

    def test_completion_percent_counts_required_steps(self):
        assert completion_percent(self.steps, set()) == 0
        assert completion_percent(self.steps, {"a", "c"}) == 33
        assert completion_percent(self.steps, {"a", "b", "d"}) == 100
        assert completion_percent([Step("x", 1, is_required=False)], set()) == 100


# ---------------------------------------------------------------------------
# Store-backed operations
# ---------------------------------------------------------------------------


def _complete_all(session: Session, mentee_id: str, upto: int | None = None) -> list:
    results = []
    for spec in DEFAULT_STEPS[:upto]:
        form = DIAGNOSIS if spec["id"] == "ob2" else None
        results.append(complete_step(session, mentee_id, spec["id"], form))
    return results


class TestProgressRecord:
    def test_created_on_first_access(self, catalog_session: Session, mentee: Mentee):
        progress = get_or_create_progress(catalog_session, mentee.id)
        assert progress.completed_step_ids == set()
        assert progress.started_at is not None
        assert get_or_create_progress(catalog_session, mentee.id) is progress

    def test_unknown_mentee(self, catalog_session: Session):
        with pytest.raises(UnknownEntity):
            get_or_create_progress(catalog_session, "ghost")


class TestCompleteStep:
    def test_awards_step_xp(self, catalog_session: Session, mentee: Mentee):
        result = complete_step(catalog_session, mentee.id, "ob1")
        assert result.xp_awarded == 50
        assert result.xp.new_xp == 50

        progress = catalog_session.get(OnboardingProgress, mentee.id)
        assert progress.completed_step_ids == {"ob1"}
        assert progress.xp_earned == 50

    def test_locked_step_refused(self, catalog_session: Session, mentee: Mentee):
        with pytest.raises(InvalidTransition):
            complete_step(catalog_session, mentee.id, "ob3")

    def test_completed_step_refused(self, catalog_session: Session, mentee: Mentee):
        complete_step(catalog_session, mentee.id, "ob1")
        with pytest.raises(InvalidTransition):
            complete_step(catalog_session, mentee.id, "ob1")

    def test_unknown_step(self, catalog_session: Session, mentee: Mentee):
        with pytest.raises(UnknownEntity):
            complete_step(catalog_session, mentee.id, "ob99")

    def test_form_requires_answers(self, catalog_session: Session, mentee: Mentee):
        complete_step(catalog_session, mentee.id, "ob1")
        with pytest.raises(MissingRequiredField) as exc_info:
            complete_step(catalog_session, mentee.id, "ob2", {"experience": "Básico"})
        assert exc_info.value.field == "goal"

        progress = catalog_session.get(OnboardingProgress, mentee.id)
        assert "ob2" not in progress.completed_step_ids

    def test_form_answers_stored_and_badge_unlocked(self, catalog_session: Session, mentee: Mentee):
        complete_step(catalog_session, mentee.id, "ob1")
        result = complete_step(catalog_session, mentee.id, "ob2", DIAGNOSIS)
        assert result.badges_unlocked == ["diagnosed"]

        progress = catalog_session.get(OnboardingProgress, mentee.id)
        assert progress.step_data["ob2"]["goal"] == "Fazer a primeira venda"

    def test_finishing_checklist_advances_stage_once(self, catalog_session: Session, mentee: Mentee):
        mentee.stage_progress = 40
        results = _complete_all(catalog_session, mentee.id)

        assert [r.stage_advanced for r in results] == [False, False, False, False, True]
        assert results[-1].new_stage == "MINING"
        assert mentee.current_stage == "MINING"
        assert mentee.stage_progress == 0
        assert catalog_session.get(OnboardingProgress, mentee.id).completed_at is not None

    def test_n_minus_one_does_not_advance(self, catalog_session: Session, mentee: Mentee):
        results = _complete_all(catalog_session, mentee.id, upto=len(DEFAULT_STEPS) - 1)
        assert not any(r.stage_advanced for r in results)
        assert mentee.current_stage == "ONBOARDING"
        assert catalog_session.get(OnboardingProgress, mentee.id).completed_at is None

    def test_completion_badges_and_xp(self, catalog_session: Session, mentee: Mentee):
        results = _complete_all(catalog_session, mentee.id)
        assert "onboarding_complete" in results[-1].badges_unlocked
        assert "early_bird" in results[-1].badges_unlocked

        catalog_session.refresh(mentee)
        assert mentee.xp == sum(s["xp_reward"] for s in DEFAULT_STEPS)
        assert set(mentee_badges(catalog_session, mentee.id)) == {
            "diagnosed", "first_call", "explorer", "onboarding_complete", "early_bird",
        }

    def test_no_stage_change_outside_onboarding(self, catalog_session: Session, mentee: Mentee):
        mentee.current_stage = "TRAFFIC"
        results = _complete_all(catalog_session, mentee.id)
        assert not any(r.stage_advanced for r in results)
        assert mentee.current_stage == "TRAFFIC"


class TestSkipStep:
    def test_required_step_cannot_be_skipped(self, catalog_session: Session, mentee: Mentee):
        with pytest.raises(InvalidTransition):
            skip_step(catalog_session, mentee.id, "ob1")

    def test_locked_step_cannot_be_skipped(self, catalog_session: Session, mentee: Mentee):
        with pytest.raises(InvalidTransition):
            skip_step(catalog_session, mentee.id, "ob5")

    def test_skip_optional_then_complete_later(self, catalog_session: Session, mentee: Mentee):
        _complete_all(catalog_session, mentee.id, upto=4)
        assert skip_step(catalog_session, mentee.id, "ob5") == StepStatus.SKIPPED
        assert skip_step(catalog_session, mentee.id, "ob5") == StepStatus.SKIPPED
        assert mentee.current_stage == "ONBOARDING"

        result = complete_step(catalog_session, mentee.id, "ob5")
        assert result.stage_advanced is True
        assert mentee.current_stage == "MINING"


class TestConcurrentProgress:
    @pytest.fixture()
    def committed_mentee(self, catalog_session: Session) -> str:
        catalog_session.add(Mentee(id="m7", name="Duda"))
        catalog_session.commit()
        return "m7"

    def test_stale_progress_write_rejected(self, session_factory, committed_mentee):
        with session_factory() as a, session_factory() as b:
            get_or_create_progress(a, committed_mentee)
            a.commit()

            complete_step(b, committed_mentee, "ob1")
            b.commit()

            # a still holds the version it read before b's write
            with pytest.raises(StaleDataError):
                complete_step(a, committed_mentee, "ob1")
            a.rollback()

        with session_factory() as check:
            progress = check.get(OnboardingProgress, committed_mentee)
            assert progress.completed_step_ids == {"ob1"}
            assert progress.xp_earned == 50
            assert check.get(Mentee, committed_mentee).xp == 50

    def test_fresh_read_after_conflict_sees_other_write(self, session_factory, committed_mentee):
        with session_factory() as a, session_factory() as b:
            get_or_create_progress(a, committed_mentee)
            a.commit()
            complete_step(b, committed_mentee, "ob1")
            b.commit()

            a.expire_all()
            with pytest.raises(InvalidTransition):
                complete_step(a, committed_mentee, "ob1")
