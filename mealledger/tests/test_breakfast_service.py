from datetime import date

import pytest

from ..core.exceptions import PermissionDeniedError, PolicyError, ValidationError
from ..models.breakfast import BreakfastCreate, BreakfastUpdate, ParticipantCost
from ..services.breakfast_service import split_cost

DAY = date(2024, 3, 14)


def create_breakfast(services, actors, total=1000, names=("user", "other", "manager"), d=DAY):
    return services.breakfasts.create(actors["manager"], BreakfastCreate(
        date=d, total_cost_cents=total,
        participant_ids=[actors[n].user_id for n in names]))


class TestSplitCost:
    """早餐分摊"""

    def test_remainder_goes_to_first_participants(self):
        assert split_cost(1000, [7, 8, 9]) == [(7, 334), (8, 333), (9, 333)]
        assert split_cost(1001, [1, 2, 3]) == [(1, 334), (2, 334), (3, 333)]

    def test_exact_split_and_zero_total(self):
        assert split_cost(900, [1, 2, 3]) == [(1, 300), (2, 300), (3, 300)]
        assert split_cost(0, [1, 2]) == [(1, 0), (2, 0)]

    def test_requires_participants(self):
        with pytest.raises(ValidationError):
            split_cost(100, [])


class TestBreakfastService:
    """早餐事件登记与扣费"""

    def test_create_stores_shares(self, services, actors):
        breakfast = create_breakfast(services, actors)
        shares = {p.user_id: p.cost_cents for p in breakfast.participants}
        assert sum(shares.values()) == 1000
        assert shares[actors["user"].user_id] == 334
        assert not any(p.deducted for p in breakfast.participants)

    def test_one_breakfast_per_day(self, services, actors):
        create_breakfast(services, actors)
        with pytest.raises(PolicyError) as exc:
            create_breakfast(services, actors, total=500)
        assert exc.value.reason == "breakfast_exists"

    def test_create_requires_manager(self, services, actors):
        with pytest.raises(PermissionDeniedError):
            services.breakfasts.create(actors["user"], BreakfastCreate(
                date=DAY, total_cost_cents=100, participant_ids=[actors["user"].user_id]))

    def test_deduct_charges_breakfast_balance_once(self, services, actors):
        breakfast = create_breakfast(services, actors)
        uid = actors["user"].user_id
        report = services.breakfasts.deduct(actors["manager"], breakfast.breakfast_id)
        assert sorted(report.deducted) == sorted(p.user_id for p in breakfast.participants)
        assert services.ledger.get_balance(uid, "breakfast").amount_cents == -334

        again = services.breakfasts.deduct(actors["manager"], breakfast.breakfast_id)
        assert again.deducted == []
        assert len(again.already_deducted) == 3
        assert services.ledger.get_balance(uid, "breakfast").amount_cents == -334

    def test_frozen_participant_fails_alone(self, services, actors):
        breakfast = create_breakfast(services, actors)
        uid = actors["user"].user_id
        services.ledger.freeze(actors["admin"], uid, "breakfast", "dispute")
        report = services.breakfasts.deduct(actors["manager"], breakfast.breakfast_id)
        assert [f.user_id for f in report.failed] == [uid]
        assert len(report.deducted) == 2

        services.ledger.unfreeze(actors["admin"], uid, "breakfast")
        retry = services.breakfasts.deduct(actors["manager"], breakfast.breakfast_id)
        assert retry.deducted == [uid]
        assert len(retry.already_deducted) == 2

    def test_delete_only_before_deduction(self, services, actors):
        first = create_breakfast(services, actors)
        services.breakfasts.deduct(actors["manager"], first.breakfast_id)
        with pytest.raises(PolicyError) as exc:
            services.breakfasts.delete(actors["manager"], first.breakfast_id)
        assert exc.value.reason == "already_deducted"

        second = create_breakfast(services, actors, d=date(2024, 3, 15))
        services.breakfasts.delete(actors["manager"], second.breakfast_id)
        assert services.breakfasts.list_breakfasts(date(2024, 3, 1), date(2024, 3, 31)) == [
            services.breakfasts.get(first.breakfast_id)]

    def test_user_cost_in_range(self, services, actors):
        create_breakfast(services, actors)
        create_breakfast(services, actors, total=600, names=("user", "admin"), d=date(2024, 3, 20))
        create_breakfast(services, actors, total=600, names=("user",), d=date(2024, 4, 2))
        count, total = services.breakfasts.user_cost(actors["user"].user_id,
                                                     date(2024, 3, 1), date(2024, 3, 31))
        assert (count, total) == (2, 334 + 300)


class TestBreakfastCorrections:
    """早餐修改与冲正"""

    def test_update_resplits_before_deduction(self, services, actors):
        breakfast = create_breakfast(services, actors)
        updated = services.breakfasts.update(actors["manager"], breakfast.breakfast_id,
                                             BreakfastUpdate(total_cost_cents=900))
        assert updated.total_cost_cents == 900
        assert [p.cost_cents for p in updated.participants] == [300, 300, 300]

        uid, other = actors["user"].user_id, actors["other"].user_id
        updated = services.breakfasts.update(actors["manager"], breakfast.breakfast_id, BreakfastUpdate(
            participant_costs=[ParticipantCost(user_id=uid, cost_cents=500),
                               ParticipantCost(user_id=other, cost_cents=150)]))
        assert updated.total_cost_cents == 650
        assert {p.user_id: p.cost_cents for p in updated.participants} == {uid: 500, other: 150}
        actions = [e.action for e in services.breakfasts.audit.for_entity("breakfast", breakfast.breakfast_id)]
        assert actions == ["create", "update", "update"]

    def test_update_blocked_after_deduction(self, services, actors):
        breakfast = create_breakfast(services, actors)
        services.breakfasts.deduct(actors["manager"], breakfast.breakfast_id)
        with pytest.raises(PolicyError) as exc:
            services.breakfasts.update(actors["manager"], breakfast.breakfast_id,
                                       BreakfastUpdate(total_cost_cents=10))
        assert exc.value.reason == "already_deducted"

    def test_reverse_refunds_and_stops_billing(self, services, actors):
        uid = actors["user"].user_id
        services.ledger.deposit(actors["manager"], uid, "breakfast", 1000)
        breakfast = create_breakfast(services, actors, total=300, names=("user",))
        services.breakfasts.deduct(actors["manager"], breakfast.breakfast_id)
        assert services.ledger.get_balance(uid, "breakfast").amount_cents == 700

        report = services.breakfasts.reverse(actors["manager"], breakfast.breakfast_id, "wrong day")
        assert [(r.user_id, r.amount_cents) for r in report.refunds] == [(uid, 300)]
        assert services.ledger.get_balance(uid, "breakfast").amount_cents == 1000
        assert services.ledger.get_transaction(report.refunds[0].transaction_id).type.value == "refund"
        assert services.breakfasts.user_cost(uid, date(2024, 3, 1), date(2024, 3, 31)) == (0, 0)
        assert services.breakfasts.get(breakfast.breakfast_id).is_reversed is True

        with pytest.raises(PolicyError) as exc:
            services.breakfasts.reverse(actors["manager"], breakfast.breakfast_id, "again")
        assert exc.value.reason == "already_reversed"
        with pytest.raises(PolicyError):
            services.breakfasts.deduct(actors["manager"], breakfast.breakfast_id)

    def test_reverse_skips_deductions_already_reversed_in_ledger(self, services, actors):
        uid = actors["user"].user_id
        services.ledger.deposit(actors["manager"], uid, "breakfast", 1000)
        breakfast = create_breakfast(services, actors, total=300, names=("user",))
        services.breakfasts.deduct(actors["manager"], breakfast.breakfast_id)
        txn_id = services.breakfasts.get(breakfast.breakfast_id).participants[0].transaction_id
        services.ledger.reverse_transaction(actors["manager"], txn_id, "manual fix")

        report = services.breakfasts.reverse(actors["manager"], breakfast.breakfast_id, "wrong day")
        assert report.refunds == []
        assert report.already_refunded == [uid]
        assert services.ledger.get_balance(uid, "breakfast").amount_cents == 1000
        assert services.breakfasts.user_cost(uid, date(2024, 3, 1), date(2024, 3, 31)) == (0, 0)

    def test_reverse_is_all_or_nothing(self, services, actors):
        breakfast = create_breakfast(services, actors, total=600, names=("user", "other"))
        services.breakfasts.deduct(actors["manager"], breakfast.breakfast_id)
        services.ledger.freeze(actors["admin"], actors["other"].user_id, "breakfast", "dispute")
        with pytest.raises(PolicyError) as exc:
            services.breakfasts.reverse(actors["manager"], breakfast.breakfast_id, "wrong day")
        assert exc.value.reason == "balance_frozen"
        assert services.breakfasts.get(breakfast.breakfast_id).is_reversed is False
        assert services.ledger.get_balance(actors["user"].user_id, "breakfast").amount_cents == -300

    def test_reverse_needs_reason_and_deduction(self, services, actors):
        breakfast = create_breakfast(services, actors)
        with pytest.raises(ValidationError):
            services.breakfasts.reverse(actors["manager"], breakfast.breakfast_id, "  ")
        with pytest.raises(PolicyError) as exc:
            services.breakfasts.reverse(actors["manager"], breakfast.breakfast_id, "wrong day")
        assert exc.value.reason == "not_deducted"
