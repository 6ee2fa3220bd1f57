from __future__ import annotations

import math
import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple


def now_ms() -> int:
    """当前时间戳（毫秒）"""
    return int(time.time() * 1000)


def is_valid_coordinate(latitude: float, longitude: float) -> bool:
    """经纬度合法性：范围内、有限值、且不是 (0,0) 哨兵值"""
    return (
        math.isfinite(latitude)
        and math.isfinite(longitude)
        and -90.0 <= latitude <= 90.0
        and -180.0 <= longitude <= 180.0
        and (latitude != 0.0 or longitude != 0.0)
    )


@dataclass(frozen=True)
class BeaconIdentity:
    uuid: str
    major: str
    minor: str

    @classmethod
    def of(cls, uuid: str, major: Any, minor: Any) -> "BeaconIdentity":
        # uuid 不区分大小写，major/minor 统一为去空白的字符串
        return cls(uuid=str(uuid).strip().lower(), major=str(major).strip(), minor=str(minor).strip())

    @property
    def key(self) -> str:
        return f"{self.uuid}:{self.major}:{self.minor}"

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class BeaconSighting:
    """单次扫描周期内平台上报的信标读数"""

    identity: BeaconIdentity
    rssi: int
    reported_distance: float


@dataclass(frozen=True)
class RegisteredBeacon:
    identity: BeaconIdentity
    latitude: float
    longitude: float
    is_active: bool = True


@dataclass(frozen=True)
class BeaconObservation:
    identity: BeaconIdentity
    rssi: int
    reported_distance: float
    latitude: float
    longitude: float
    observed_at: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uuid": self.identity.uuid,
            "major": self.identity.major,
            "minor": self.identity.minor,
            "rssi": self.rssi,
            "distance": self.reported_distance,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "observed_at": self.observed_at,
        }


@dataclass(frozen=True)
class Position:
    latitude: float
    longitude: float
    accuracy: float
    computed_at: int = field(default_factory=now_ms)

    def __post_init__(self):
        if not is_valid_coordinate(self.latitude, self.longitude):
            raise ValueError(f"无效坐标: ({self.latitude}, {self.longitude})")
        if not math.isfinite(self.accuracy) or self.accuracy < 0:
            raise ValueError(f"无效精度: {self.accuracy}")

    def distance_to(self, other: "Position") -> float:
        """坐标空间中的欧氏距离（度），与指纹聚类使用同一度量"""
        return math.hypot(self.latitude - other.latitude, self.longitude - other.longitude)


@dataclass(frozen=True)
class Fingerprint:
    """
    指纹：某次成功定位时的平滑 RSSI 快照
    """

    position: Position
    smoothed_rssi: Mapping[BeaconIdentity, float]
    ranked_beacon_ids: Tuple[BeaconIdentity, ...]
    average_rssi: float
    captured_at: int = field(default_factory=now_ms)


class EstimatorType(Enum):
    WEIGHTED_CENTROID = "weighted_centroid"
    FINGERPRINT_REFINED = "fingerprint_refined"


class LocationUpdateStatus(Enum):
    SUCCESS = "success"
    NO_FIX = "no_fix"
    ERROR = "error"


@dataclass(frozen=True)
class LocationUpdate:
    """
    每个扫描周期对外发布一次的定位结果
    """

    position: Optional[Position]
    nearby_beacons: Tuple[BeaconObservation, ...] = ()
    error: Optional[str] = None

    @property
    def status(self) -> LocationUpdateStatus:
        if self.error is not None:
            return LocationUpdateStatus.ERROR
        if self.position is None:
            return LocationUpdateStatus.NO_FIX
        return LocationUpdateStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "status": self.status.value,
            "beacon_count": len(self.nearby_beacons),
            "beacons": [b.to_dict() for b in self.nearby_beacons],
        }
        if self.position is not None:
            d.update(asdict(self.position))
        if self.error is not None:
            d["error"] = self.error
        return d


@dataclass(frozen=True)
class SightingRecord:
    """
    MQTT 下行的蓝牙扫描记录
    格式：uuid,major,minor,rssi,distance;uuid,major,minor,rssi,distance;...;设备ID
    """

    device_id: str
    sightings: List[BeaconSighting]

    def __len__(self) -> int:
        return len(self.sightings)

    def __iter__(self) -> Iterator[BeaconSighting]:
        return iter(self.sightings)

    @property
    def is_empty(self):
        return len(self) == 0

    @classmethod
    def parse(cls, data_str: str) -> Optional["SightingRecord"]:
        parts = data_str.strip().split(";")
        if not parts or len(parts) < 2:
            return None
        device_id = parts[-1].strip()
        if not device_id:
            return None
        sightings: List[BeaconSighting] = []
        for item in parts[:-1]:
            fields = item.split(",")
            if len(fields) != 5:
                continue
            uuid, major, minor, rssi_str, distance_str = fields
            try:
                rssi = int(rssi_str)
                distance = float(distance_str)
            except ValueError:
                continue
            sightings.append(
                BeaconSighting(
                    identity=BeaconIdentity.of(uuid, major, minor),
                    rssi=rssi,
                    reported_distance=distance,
                )
            )
        return cls(device_id=device_id, sightings=sightings)
