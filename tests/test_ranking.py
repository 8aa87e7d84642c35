"""Tests for victim priority ranking."""

from lifebeacon.ranking import priority_score, rank_victims
from lifebeacon.schemas import VictimRecord


def victim(idx, status, battery):
    return VictimRecord(id=idx, name=f"V{idx}", lat=0.0, lng=0.0, status=status, battery_pct=battery)


class TestPriorityRanking:
    """Test cases for priority_score / rank_victims."""

    def test_scores(self):
        assert priority_score(victim(1, "trapped", 10)) == 15
        assert priority_score(victim(2, "trapped", 90)) == 10
        assert priority_score(victim(3, "injured", 50)) == 7
        assert priority_score(victim(4, "safe", 29)) == 8
        assert priority_score(victim(5, "safe", 30)) == 3

    def test_documented_order(self):
        victims = [victim(1, "trapped", 10), victim(2, "injured", 50), victim(3, "trapped", 90)]
        ranked = rank_victims(victims)
        assert [v.id for v in ranked] == [1, 3, 2]

    def test_ties_keep_input_order(self):
        victims = [victim(1, "injured", 80), victim(2, "trapped", 90), victim(3, "injured", 60), victim(4, "injured", 99)]
        ranked = rank_victims(victims)
        assert [v.id for v in ranked] == [2, 1, 3, 4]

    def test_input_not_modified(self):
        victims = [victim(1, "safe", 90), victim(2, "trapped", 90)]
        rank_victims(victims)
        assert [v.id for v in victims] == [1, 2]

    def test_empty(self):
        assert rank_victims([]) == []
