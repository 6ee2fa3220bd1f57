from __future__ import annotations

import logging
import os
from typing import Dict, Iterable, Optional

import pandas as pd

from .models import BeaconIdentity, RegisteredBeacon
from .config_manager import ConfigManager


logger = logging.getLogger(__name__)

_KEY_COLUMNS = ["uuid", "major", "minor"]
_TRUE_STRINGS = {"1", "1.0", "true", "yes", "y", "t"}


def _parse_active(value) -> bool:
    # 空值视为启用
    if pd.isna(value):
        return True
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_STRINGS


class BeaconRegistry:
    """已登记信标的只读快照（pandas 管理，CSV 加载）"""

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        self._config = config_manager
        self._df = pd.DataFrame(columns=_KEY_COLUMNS + ["latitude", "longitude", "is_active"])
        self._index: Dict[BeaconIdentity, RegisteredBeacon] = {}

    # ---- Utils ----
    @staticmethod
    def _normalize_df(df: pd.DataFrame) -> pd.DataFrame:
        missing = [c for c in _KEY_COLUMNS + ["latitude", "longitude"] if c not in df.columns]
        if missing:
            raise KeyError(f"信标表缺少列: {', '.join(missing)}")
        df = df.copy()
        for col in _KEY_COLUMNS:
            df[col] = df[col].astype(str).str.strip()
        df["uuid"] = df["uuid"].str.lower()
        for col in ["latitude", "longitude"]:
            df[col] = pd.to_numeric(df[col], errors="coerce")
        # 坐标无法解析的行直接丢弃，不能参与定位
        dropped = int(df[["latitude", "longitude"]].isna().any(axis=1).sum())
        if dropped:
            logger.warning("信标表中 %s 行坐标无效，已忽略", dropped)
        df = df.dropna(subset=["latitude", "longitude"])
        if "is_active" not in df.columns:
            df["is_active"] = True
        else:
            df["is_active"] = df["is_active"].map(_parse_active)
        df = df[_KEY_COLUMNS + ["latitude", "longitude", "is_active"]]
        df = df.drop_duplicates(subset=_KEY_COLUMNS, keep="last")
        df = df.astype({"latitude": "float64", "longitude": "float64", "is_active": "bool"})
        return df.reset_index(drop=True)

    def _rebuild_index(self) -> None:
        index: Dict[BeaconIdentity, RegisteredBeacon] = {}
        for row in self._df.itertuples(index=False):
            if not row.is_active:
                continue
            identity = BeaconIdentity.of(row.uuid, row.major, row.minor)
            index[identity] = RegisteredBeacon(
                identity=identity,
                latitude=float(row.latitude),
                longitude=float(row.longitude),
                is_active=True,
            )
        self._index = index

    # ---- Load ----
    def load(self, registry_path: Optional[str] = None) -> "BeaconRegistry":
        if registry_path is None:
            if self._config is None:
                raise ValueError("未提供信标表路径")
            registry_path = self._config.get_beacon_registry_path()
        if not os.path.exists(registry_path):
            raise FileNotFoundError(f"信标表不存在: {registry_path}")
        df = pd.read_csv(registry_path, dtype={"uuid": str, "major": str, "minor": str})
        self._df = self._normalize_df(df)
        self._rebuild_index()
        logger.info("已加载信标表 %s，有效信标 %s 个", registry_path, len(self._index))
        return self

    @classmethod
    def from_beacons(cls, beacons: Iterable[RegisteredBeacon]) -> "BeaconRegistry":
        rows = [
            {
                "uuid": b.identity.uuid,
                "major": b.identity.major,
                "minor": b.identity.minor,
                "latitude": b.latitude,
                "longitude": b.longitude,
                "is_active": b.is_active,
            }
            for b in beacons
        ]
        registry = cls()
        if rows:
            registry._df = cls._normalize_df(pd.DataFrame(rows))
        registry._rebuild_index()
        return registry

    # ---- Accessors ----
    def __len__(self) -> int:
        return len(self._index)

    def lookup(self, identity: BeaconIdentity) -> Optional[RegisteredBeacon]:
        return self._index.get(identity)
