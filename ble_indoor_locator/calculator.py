from __future__ import annotations

import logging
import math
import threading
from abc import ABC, abstractmethod
from typing import Callable, Iterable, List, Optional, Sequence

import numpy as np

from .affinity import ClusterResult, affinity_propagation
from .config_manager import EngineSettings
from .filters import RssiSmoother
from .fingerprints import FingerprintDatabase, build_fingerprint, match_weight
from .models import (
    BeaconObservation,
    EstimatorType,
    Fingerprint,
    Position,
    is_valid_coordinate,
    now_ms,
)


logger = logging.getLogger(__name__)


class PositionEstimator(ABC):
    """由一组信标观测计算位置；数据不足或几何无效时返回 None"""

    estimator_type: EstimatorType

    def __init__(self, settings: Optional[EngineSettings] = None, clock: Callable[[], int] = now_ms):
        self.settings = settings or EngineSettings()
        self._clock = clock

    @abstractmethod
    def estimate(self, observations: Iterable[BeaconObservation]) -> Optional[Position]:
        ...


class WeightedCentroidEstimator(PositionEstimator):
    """基于距离倒数平方权重的质心算法"""

    estimator_type = EstimatorType.WEIGHTED_CENTROID

    def valid_distance(self, obs: BeaconObservation) -> Optional[float]:
        """信标坐标合法且距离落在有效区间内时返回距离，否则 None（不做截断）"""
        if not is_valid_coordinate(obs.latitude, obs.longitude):
            return None
        d = float(obs.reported_distance)
        if not math.isfinite(d) or not self.settings.min_distance <= d <= self.settings.max_distance:
            return None
        return d

    @staticmethod
    def weight(distance: float) -> float:
        # 加 0.1 避免距离趋近 0 时权重发散
        return 1.0 / (distance**2 + 0.1)

    def accuracy(self, distances: Sequence[float]) -> float:
        """参与计算的距离的标准差，截断到有效距离区间"""
        if len(distances) < 2:
            return self.settings.default_accuracy
        std = float(np.std(distances))
        return min(max(std, self.settings.min_distance), self.settings.max_distance)

    def estimate(self, observations: Iterable[BeaconObservation]) -> Optional[Position]:
        payloads: List[tuple[BeaconObservation, float]] = []
        for obs in observations:
            d = self.valid_distance(obs)
            if d is None:
                logger.debug("无效信标 %s: 坐标(%s, %s) 距离 %s", obs.identity, obs.latitude, obs.longitude, obs.reported_distance)
                continue
            payloads.append((obs, d))

        if len(payloads) < self.settings.min_beacons:
            logger.debug("有效信标不足: %s < %s", len(payloads), self.settings.min_beacons)
            return None

        total_weight = 0.0
        weighted_lat = 0.0
        weighted_lon = 0.0
        for obs, d in payloads:
            w = self.weight(d)
            weighted_lat += obs.latitude * w
            weighted_lon += obs.longitude * w
            total_weight += w

        if total_weight <= 0.0:
            logger.debug("权重和非正: %s", total_weight)
            return None

        lat = weighted_lat / total_weight
        lon = weighted_lon / total_weight
        if not is_valid_coordinate(lat, lon):
            logger.debug("质心坐标无效: (%s, %s)", lat, lon)
            return None

        return Position(
            latitude=lat,
            longitude=lon,
            accuracy=self.accuracy([d for _, d in payloads]),
            computed_at=self._clock(),
        )


class FingerprintRefinedEstimator(PositionEstimator):
    """
    加权质心作为初值，再用历史指纹修正：
    1. RSSI 指数平滑，生成当前指纹
    2. 加权质心定位，失败直接返回 None
    3. 指纹不足 top_k 条时只入库，返回初值
    4. 对历史指纹位置做 affinity propagation 聚类，取离初值最近的簇
    5. 按 RSSI 相似度 × 前 K 信标重合度加权平均簇内指纹位置
    6. 当前指纹入库，超出容量淘汰最旧的

    平滑状态与指纹库只在一次 estimate 成功结束时统一提交，
    并由锁保证同一时刻只有一个计算在进行。
    """

    estimator_type = EstimatorType.FINGERPRINT_REFINED

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        clock: Callable[[], int] = now_ms,
        bootstrap: Optional[PositionEstimator] = None,
    ):
        super().__init__(settings, clock)
        self.bootstrap = bootstrap or WeightedCentroidEstimator(self.settings, clock)
        self.smoother = RssiSmoother(self.settings.smoothing_alpha)
        self.database = FingerprintDatabase(self.settings.fingerprint_capacity)
        self.last_clusters: Optional[ClusterResult] = None
        self._lock = threading.Lock()

    @property
    def is_warm(self) -> bool:
        return len(self.database) >= self.settings.top_k

    def estimate(self, observations: Iterable[BeaconObservation]) -> Optional[Position]:
        with self._lock:
            return self._estimate(list(observations))

    def reset(self) -> None:
        """清空指纹库与平滑状态"""
        with self._lock:
            self.database.clear()
            self.smoother.clear()
            self.last_clusters = None

    def _estimate(self, observations: List[BeaconObservation]) -> Optional[Position]:
        smoothed = self.smoother.peek(observations)
        basic = self.bootstrap.estimate(observations)
        if basic is None:
            self.smoother.commit(smoothed)
            return None

        current = build_fingerprint(basic, smoothed, self.settings.top_k, self._clock())
        if not self.is_warm:
            self.smoother.commit(smoothed)
            self.database.add(current)
            return basic

        position = self._refine(basic, current)
        self.smoother.commit(smoothed)
        evicted = self.database.add(current)
        if evicted:
            logger.debug("指纹库已满，淘汰 %s 条", len(evicted))
        return position

    def _refine(self, basic: Position, current: Fingerprint) -> Position:
        stored = self.database.snapshot()
        points = np.array([[fp.position.latitude, fp.position.longitude] for fp in stored], dtype=float)
        clusters = affinity_propagation(
            points,
            damping=self.settings.damping,
            max_iterations=self.settings.max_iterations,
            epsilon=self.settings.convergence_epsilon,
        )
        self.last_clusters = clusters
        logger.debug(
            "聚类完成: %s 个指纹, %s 个簇, 迭代 %s 次, 收敛=%s",
            len(stored),
            len(clusters.exemplars),
            clusters.iterations,
            clusters.converged,
        )
        if not clusters.exemplars:
            return basic

        # 簇编号即 exemplars 中的下标
        nearest = min(
            range(len(clusters.exemplars)),
            key=lambda c: basic.distance_to(stored[clusters.exemplars[c]].position),
        )

        weighted: List[tuple[Fingerprint, float]] = []
        for index in clusters.members(nearest):
            fp = stored[index]
            w = match_weight(fp, current, self.settings.top_k)
            if w > 0.0:
                weighted.append((fp, w))
        if not weighted:
            return basic

        total = sum(w for _, w in weighted)
        lat = sum(fp.position.latitude * w for fp, w in weighted) / total
        lon = sum(fp.position.longitude * w for fp, w in weighted) / total
        if not is_valid_coordinate(lat, lon):
            logger.debug("修正后坐标无效: (%s, %s)，使用初值", lat, lon)
            return basic

        fingerprint_accuracy = sum(fp.position.accuracy for fp, _ in weighted) / len(weighted)
        return Position(
            latitude=lat,
            longitude=lon,
            accuracy=(basic.accuracy + fingerprint_accuracy) / 2,
            computed_at=basic.computed_at,
        )


def create_estimator(
    estimator_type: EstimatorType = EstimatorType.WEIGHTED_CENTROID,
    settings: Optional[EngineSettings] = None,
    clock: Callable[[], int] = now_ms,
) -> PositionEstimator:
    match estimator_type:
        case EstimatorType.WEIGHTED_CENTROID:
            return WeightedCentroidEstimator(settings, clock)
        case EstimatorType.FINGERPRINT_REFINED:
            return FingerprintRefinedEstimator(settings, clock)
        case _:
            raise ValueError(f"未知定位算法: {estimator_type}")
