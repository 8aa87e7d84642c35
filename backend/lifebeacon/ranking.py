# backend/lifebeacon/ranking.py
from typing import List

from .schemas import VictimRecord

STATUS_WEIGHT = {
    "trapped": 10,
    "injured": 7,
    "safe": 3,
}
LOW_BATTERY_PCT = 30
LOW_BATTERY_BONUS = 5


def priority_score(victim: VictimRecord) -> int:
    score = STATUS_WEIGHT.get(victim.status, 0)
    if victim.battery_pct < LOW_BATTERY_PCT:
        score += LOW_BATTERY_BONUS
    return score


def rank_victims(victims: List[VictimRecord]) -> List[VictimRecord]:
    """
    Sắp xếp giảm dần theo điểm ưu tiên.
    sorted() ổn định kể cả khi reverse=True: nạn nhân cùng điểm giữ thứ tự đầu vào.
    Không sửa list đầu vào.
    """
    return sorted(victims, key=priority_score, reverse=True)
