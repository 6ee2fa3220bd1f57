from __future__ import annotations

from typing import Dict, Iterable, Mapping

from .models import BeaconIdentity, BeaconObservation


class RssiSmoother:
    """
    按信标身份做 RSSI 指数平滑：
        smoothed = alpha * rssi + (1 - alpha) * previous
    首次出现的信标以当前 RSSI 作为 previous。
    """

    def __init__(self, alpha: float = 0.5):
        self.alpha = alpha
        self._state: Dict[BeaconIdentity, float] = {}

    def peek(self, observations: Iterable[BeaconObservation]) -> Dict[BeaconIdentity, float]:
        """计算平滑值但不修改状态"""
        result: Dict[BeaconIdentity, float] = {}
        for obs in observations:
            current = float(obs.rssi)
            previous = self._state.get(obs.identity, current)
            result[obs.identity] = self.alpha * current + (1 - self.alpha) * previous
        return result

    def commit(self, smoothed: Mapping[BeaconIdentity, float]) -> None:
        """
        写回平滑值，并丢弃本次未出现的信标。
        观测集合来自缓存快照，缺席即已过期，平滑状态随之淘汰。
        """
        self._state = dict(smoothed)

    def clear(self) -> None:
        self._state.clear()

    def __len__(self) -> int:
        return len(self._state)
