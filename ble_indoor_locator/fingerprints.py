from __future__ import annotations

import math
from typing import Iterator, List, Mapping, Sequence

from .models import BeaconIdentity, Fingerprint, Position


def rank_beacons(smoothed: Mapping[BeaconIdentity, float], top_k: int) -> tuple[BeaconIdentity, ...]:
    """按平滑 RSSI 从强到弱取前 top_k 个信标（同值保持原顺序）"""
    ordered = sorted(smoothed.items(), key=lambda kv: kv[1], reverse=True)
    return tuple(identity for identity, _ in ordered[:top_k])


def build_fingerprint(
    position: Position,
    smoothed: Mapping[BeaconIdentity, float],
    top_k: int,
    captured_at: int,
) -> Fingerprint:
    # 平均值基于全部平滑值，而非仅前 top_k 个
    average = sum(smoothed.values()) / len(smoothed) if smoothed else 0.0
    return Fingerprint(
        position=position,
        smoothed_rssi=dict(smoothed),
        ranked_beacon_ids=rank_beacons(smoothed, top_k),
        average_rssi=average,
        captured_at=captured_at,
    )


def rssi_similarity(a: Mapping[BeaconIdentity, float], b: Mapping[BeaconIdentity, float]) -> float:
    """1 / (1 + RMS)，RMS 只在两者共有的信标上计算；无共有信标时为 0"""
    common = a.keys() & b.keys()
    if not common:
        return 0.0
    mean_sq = sum((a[k] - b[k]) ** 2 for k in common) / len(common)
    return 1.0 / (1.0 + math.sqrt(mean_sq))


def beacon_overlap(a: Sequence[BeaconIdentity], b: Sequence[BeaconIdentity], top_k: int) -> float:
    return len(set(a) & set(b)) / top_k


def match_weight(stored: Fingerprint, current: Fingerprint, top_k: int) -> float:
    return rssi_similarity(stored.smoothed_rssi, current.smoothed_rssi) * beacon_overlap(
        stored.ranked_beacon_ids, current.ranked_beacon_ids, top_k
    )


class FingerprintDatabase:
    """有容量上限的指纹库，超出后按采集时间淘汰最旧的记录"""

    def __init__(self, capacity: int = 1000):
        self.capacity = capacity
        self._items: List[Fingerprint] = []

    def add(self, fingerprint: Fingerprint) -> List[Fingerprint]:
        """追加指纹，返回被淘汰的记录"""
        self._items.append(fingerprint)
        if len(self._items) <= self.capacity:
            return []
        # 稳定排序：同一时间戳下先写入的先淘汰
        self._items.sort(key=lambda fp: fp.captured_at)
        overflow = len(self._items) - self.capacity
        evicted = self._items[:overflow]
        del self._items[:overflow]
        return evicted

    def snapshot(self) -> List[Fingerprint]:
        return list(self._items)

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Fingerprint]:
        return iter(list(self._items))

    def __getitem__(self, index: int) -> Fingerprint:
        return self._items[index]
