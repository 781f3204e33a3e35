from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from models import Notification, User
from schemas import SavingGoalIn
from services import NotFoundError, NotificationService, SavingGoalService


def test_contribution_is_additive_and_may_exceed_target() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = User(email="goals@example.com", password_hash="x")
        session.add(user)
        session.commit()

        goals = SavingGoalService(session, user.id)
        goal = goals.create(SavingGoalIn(title="Bike", target_amount=Decimal("100")))
        assert goal.current_amount == Decimal("0")

        goals.contribute(goal.id, Decimal("60"))
        goal = goals.contribute(goal.id, Decimal("70.50"))

        assert goal.current_amount == Decimal("130.50")
        assert goals.progress(goal) == pytest.approx(130.5)


def test_contribution_must_be_positive() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = User(email="goals@example.com", password_hash="x")
        session.add(user)
        session.commit()

        goals = SavingGoalService(session, user.id)
        goal = goals.create(SavingGoalIn(title="Bike", target_amount=Decimal("100")))

        for amount in (Decimal("0"), Decimal("-5")):
            with pytest.raises(ValueError, match="greater than zero"):
                goals.contribute(goal.id, amount)
        assert goals.get(goal.id).current_amount == Decimal("0")


def test_goal_thresholds_emit_notifications_once() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = User(email="goals@example.com", password_hash="x")
        session.add(user)
        session.commit()

        goals = SavingGoalService(session, user.id)
        trip = goals.create(SavingGoalIn(title="Trip", target_amount=Decimal("1000")))
        goals.create(SavingGoalIn(title="Laptop", target_amount=Decimal("1000")))
        goals.contribute(trip.id, Decimal("800"))

        goals.list_with_notifications()
        goals.list_with_notifications()

        keys = [n.unique_key for n in session.scalars(select(Notification)).all()]
        assert keys == [f"savings-{trip.id}-75"]

        goals.contribute(trip.id, Decimal("200"))
        goals.list_with_notifications()

        stored = session.scalars(select(Notification).order_by(Notification.id)).all()
        assert [n.unique_key for n in stored] == [
            f"savings-{trip.id}-75",
            f"savings-{trip.id}-100",
        ]
        assert stored[0].message == "You're 80% of the way to your goal: Trip."
        assert stored[1].message == "You've reached your saving goal: Trip!"


def test_emit_is_idempotent_per_user_and_key() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice = User(email="alice@example.com", password_hash="x")
        bob = User(email="bob@example.com", password_hash="x")
        session.add_all([alice, bob])
        session.commit()

        first = NotificationService(session, alice.id).emit("hello", "event-1")
        second = NotificationService(session, alice.id).emit("hello again", "event-1")
        NotificationService(session, bob.id).emit("hello", "event-1")

        assert first.id == second.id
        assert second.message == "hello"
        assert len(NotificationService(session, alice.id).list_all()) == 1
        assert len(session.scalars(select(Notification)).all()) == 2


def test_goal_and_notification_ownership() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice = User(email="alice@example.com", password_hash="x")
        bob = User(email="bob@example.com", password_hash="x")
        session.add_all([alice, bob])
        session.commit()

        goal = SavingGoalService(session, alice.id).create(
            SavingGoalIn(title="House", target_amount=Decimal("50000"))
        )
        note = NotificationService(session, alice.id).create("Remember rent")

        with pytest.raises(NotFoundError):
            SavingGoalService(session, bob.id).contribute(goal.id, Decimal("10"))
        with pytest.raises(NotFoundError):
            SavingGoalService(session, bob.id).delete(goal.id)
        with pytest.raises(NotFoundError):
            NotificationService(session, bob.id).mark_read(note.id)

        NotificationService(session, alice.id).mark_read(note.id)
        assert NotificationService(session, alice.id).list_all()[0].is_read is True


def test_emit_losing_a_race_returns_the_stored_notification(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = User(email="race@example.com", password_hash="x")
        session.add(user)
        session.commit()

        service = NotificationService(session, user.id)
        stored = service.emit("first", "savings-1-100")

        lookups: list[str] = []
        real_lookup = service._by_key

        def miss_once(key: str):
            # the other request commits between our lookup and our insert
            lookups.append(key)
            return None if len(lookups) == 1 else real_lookup(key)

        monkeypatch.setattr(service, "_by_key", miss_once)
        returned = service.emit("second", "savings-1-100")

        assert lookups == ["savings-1-100", "savings-1-100"]
        assert returned.id == stored.id
        assert returned.message == "first"
        assert [n.message for n in service.list_all()] == ["first"]
        service.create("still usable")
        assert len(service.list_all()) == 2
