import pytest

from orchestrator.budget import DeadlineBudget
from orchestrator.errors import DeadlineExceeded
from tests.fakes import FakeClock


def test_remaining_counts_down_and_clamps_at_zero():
    clock = FakeClock()
    budget = DeadlineBudget(10, clock=clock)
    assert budget.remaining() == 10
    clock.advance(4)
    assert budget.elapsed() == 4
    assert budget.remaining() == 6
    clock.advance(20)
    assert budget.remaining() == 0
    assert budget.expired()


def test_require_raises_with_phase_and_message():
    clock = FakeClock()
    budget = DeadlineBudget(10, clock=clock)
    budget.require(5, "synthesizing")
    clock.advance(6)
    with pytest.raises(DeadlineExceeded) as exc:
        budget.require(5, "synthesizing", "Request took too long gathering data. Please try again.")
    assert exc.value.phase == "synthesizing"
    assert "took too long" in exc.value.message


def test_default_deadline_message_is_user_facing():
    budget = DeadlineBudget(0, clock=FakeClock())
    with pytest.raises(DeadlineExceeded) as exc:
        budget.require(1, "eliciting_tools")
    assert exc.value.message == "Request took too long. Please try again."


def test_child_never_outlives_parent():
    clock = FakeClock()
    parent = DeadlineBudget(10, clock=clock)
    clock.advance(7)
    child = parent.child(30)
    assert child.horizon == pytest.approx(3)
    clock.advance(3)
    assert child.expired()
    assert parent.expired()


def test_child_shorter_than_parent_expires_first():
    clock = FakeClock()
    parent = DeadlineBudget(55, clock=clock)
    child = parent.child(5)
    clock.advance(5)
    assert child.expired()
    assert parent.remaining() == 50


def test_negative_child_is_already_expired():
    budget = DeadlineBudget(10, clock=FakeClock())
    assert budget.child(-3).expired()
