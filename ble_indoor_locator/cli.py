from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from dataclasses import replace
from typing import List

import pandas as pd

from .beacon_store import BeaconRegistry
from .calculator import create_estimator
from .config_manager import ConfigManager, EngineSettings
from .models import BeaconIdentity, BeaconSighting, EstimatorType, LocationUpdate
from .mqtt_processor import MQTTDataProcessor
from .observation_cache import ObservationCache
from .session import LocationSession


logger = logging.getLogger(__name__)

_REPLAY_COLUMNS = ["cycle", "uuid", "major", "minor", "rssi", "distance"]


def setup_logging(level: str | int = logging.INFO) -> None:
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def replay_sightings(
    df: pd.DataFrame,
    registry: BeaconRegistry,
    settings: EngineSettings,
    start_ms: int = 0,
) -> List[LocationUpdate]:
    """按 cycle 分组回放扫描记录，时钟按 cycle_period 模拟推进"""
    missing = [c for c in _REPLAY_COLUMNS if c not in df.columns]
    if missing:
        raise KeyError(f"回放文件缺少列: {', '.join(missing)}")

    clock_ms = [start_ms]

    def clock() -> int:
        return clock_ms[0]

    session = LocationSession(
        cache=ObservationCache(registry, ttl_ms=settings.observation_ttl_ms, clock=clock),
        estimator=create_estimator(settings.estimator, settings, clock),
        cycle_period=settings.cycle_period,
    )
    updates: List[LocationUpdate] = []
    session.start()
    period_ms = int(settings.cycle_period * 1000)
    for cycle, group in df.groupby("cycle", sort=True):
        clock_ms[0] = start_ms + int(cycle) * period_ms
        sightings = [
            BeaconSighting(
                identity=BeaconIdentity.of(row.uuid, row.major, row.minor),
                rssi=int(row.rssi),
                reported_distance=float(row.distance),
            )
            for row in group.itertuples(index=False)
        ]
        updates.append(session.process_cycle(sightings))
    session.stop()
    return updates


def run_mqtt(args):
    config = ConfigManager(args.config)
    setup_logging(config.get_log_level())
    if args.estimator:
        config.set_estimator(EstimatorType(args.estimator))
    processor = MQTTDataProcessor(config)

    t = threading.Thread(target=processor.start_mqtt_client, daemon=True)
    t.start()

    # graceful shutdown
    def handle_sigint(sig, frame):
        processor.stop_mqtt_client()
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_sigint)
    signal.signal(signal.SIGTERM, handle_sigint)

    t.join()


def run_replay(args):
    config = ConfigManager(args.config)
    setup_logging(config.get_log_level())
    settings = config.get_engine_settings()
    if args.estimator:
        settings = replace(settings, estimator=EstimatorType(args.estimator))
    registry = BeaconRegistry(config).load(args.registry)
    df = pd.read_csv(args.sightings, dtype={"uuid": str, "major": str, "minor": str})
    updates = replay_sightings(df, registry, settings)
    for update in updates:
        print(json.dumps(update.to_dict(), ensure_ascii=False))
    logger.info("回放完成: %s 个周期, 定位成功 %s 次", len(updates), sum(u.position is not None for u in updates))


def main(argv=None):
    parser = argparse.ArgumentParser(prog="ble-indoor-locator", description="BLE Indoor Locator CLI")
    parser.add_argument("--config", default=None, help="配置文件路径，默认读取 ./config/config.yaml 或环境变量 BLE_LOCATOR_CONFIG")
    parser.add_argument(
        "--estimator",
        choices=[e.value for e in EstimatorType],
        default=None,
        help="定位算法，默认取配置文件",
    )
    sub = parser.add_subparsers(dest="cmd")

    p_run = sub.add_parser("run", help="运行 MQTT 服务端监听")
    p_run.set_defaults(func=run_mqtt)

    p_replay = sub.add_parser("replay", help="回放 CSV 扫描记录并逐周期输出定位结果")
    p_replay.add_argument("sightings", help="扫描记录 CSV（列: cycle,uuid,major,minor,rssi,distance）")
    p_replay.add_argument("--registry", default=None, help="信标表 CSV，默认取配置文件")
    p_replay.set_defaults(func=run_replay)

    args = parser.parse_args(argv)
    # 无子命令/无参数时默认启动服务器
    if not hasattr(args, "func"):
        return run_mqtt(args)
    return args.func(args)


if __name__ == "__main__":
    main()
