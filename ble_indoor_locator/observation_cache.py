from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List, Optional

from .beacon_store import BeaconRegistry
from .models import BeaconIdentity, BeaconObservation, BeaconSighting, now_ms


logger = logging.getLogger(__name__)


class ObservationCache:
    """
    缓存最近扫描到的已登记信标：
    - ingest: 与信标表关联，未登记的读数直接丢弃，按身份覆盖写入
    - 每批写入后清理超过 ttl_ms 未再次出现的信标
    - snapshot: 按首次写入顺序返回当前有效集合
    """

    def __init__(
        self,
        registry: BeaconRegistry,
        ttl_ms: int = 10_000,
        clock: Callable[[], int] = now_ms,
    ):
        self.registry = registry
        self.ttl_ms = ttl_ms
        self._clock = clock
        self._entries: Dict[BeaconIdentity, BeaconObservation] = {}

    def ingest(self, sightings: Iterable[BeaconSighting], now: Optional[int] = None) -> int:
        """写入一批读数，返回成功关联的数量"""
        now = self._clock() if now is None else now
        joined = 0
        for sighting in sightings:
            beacon = self.registry.lookup(sighting.identity)
            if beacon is None:
                logger.debug("忽略未登记信标: %s", sighting.identity)
                continue
            self._entries[sighting.identity] = BeaconObservation(
                identity=sighting.identity,
                rssi=sighting.rssi,
                reported_distance=sighting.reported_distance,
                latitude=beacon.latitude,
                longitude=beacon.longitude,
                observed_at=now,
            )
            joined += 1
        self.evict_expired(now)
        return joined

    def evict_expired(self, now: Optional[int] = None) -> List[BeaconIdentity]:
        now = self._clock() if now is None else now
        expired = [
            identity
            for identity, obs in self._entries.items()
            if now - obs.observed_at > self.ttl_ms
        ]
        for identity in expired:
            del self._entries[identity]
        if expired:
            logger.debug("清理过期信标 %s 个", len(expired))
        return expired

    def snapshot(self) -> List[BeaconObservation]:
        return list(self._entries.values())

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, identity: BeaconIdentity) -> bool:
        return identity in self._entries
