from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable, List, Optional

from .calculator import PositionEstimator
from .models import BeaconSighting, LocationUpdate, Position
from .observation_cache import ObservationCache


logger = logging.getLogger(__name__)

LocationObserver = Callable[[LocationUpdate], None]
SightingSource = Callable[[], Iterable[BeaconSighting]]


class _ObserverChannel:
    """
    单个订阅者的投递线程。
    只保留最新一条待投递的更新，订阅者处理慢时中间的更新被覆盖，
    发布方永远不会因订阅者而阻塞。
    """

    def __init__(self, observer: LocationObserver):
        self.observer = observer
        self._cond = threading.Condition()
        self._pending: Optional[LocationUpdate] = None
        self._closed = False
        self._thread = threading.Thread(target=self._run, name="location-observer", daemon=True)
        self._thread.start()

    def offer(self, update: LocationUpdate) -> None:
        with self._cond:
            if self._closed:
                return
            self._pending = update
            self._cond.notify()

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._pending = None
            self._cond.notify()

    def _run(self) -> None:
        while True:
            with self._cond:
                while self._pending is None and not self._closed:
                    self._cond.wait()
                if self._closed:
                    return
                update, self._pending = self._pending, None
            try:
                self.observer(update)
            except Exception as e:
                logger.exception("定位更新回调出错: %s", e)


class LocationSession:
    """
    将观测缓存与定位算法串成连续的定位更新流。

    扫描周期可以由外部驱动（每次扫描回调 process_cycle），
    也可以传入 sighting_source，由会话自己的后台线程按 cycle_period 拉取。
    单个周期的计算异常只会体现在该次更新的 error 上，不会终止会话。
    """

    def __init__(
        self,
        cache: ObservationCache,
        estimator: PositionEstimator,
        sighting_source: Optional[SightingSource] = None,
        cycle_period: float = 1.1,
    ):
        self.cache = cache
        self.estimator = estimator
        self.sighting_source = sighting_source
        self.cycle_period = cycle_period

        self._lock = threading.Lock()
        self._observers_lock = threading.Lock()
        self._observers: List[_ObserverChannel] = []
        self._running = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_position: Optional[Position] = None
        self._latest = LocationUpdate(position=None)

    # ---------- Observers ----------
    def subscribe(self, observer: LocationObserver) -> Callable[[], None]:
        """订阅定位更新；回调在独立线程中执行，只保证收到最新值"""
        channel = _ObserverChannel(observer)
        with self._observers_lock:
            self._observers.append(channel)

        def unsubscribe():
            with self._observers_lock:
                if channel in self._observers:
                    self._observers.remove(channel)
            channel.close()

        return unsubscribe

    @property
    def latest_update(self) -> LocationUpdate:
        return self._latest

    @property
    def last_known_position(self) -> Optional[Position]:
        return self._last_position

    @property
    def is_running(self) -> bool:
        return self._running

    def _publish(self, update: LocationUpdate) -> None:
        # 调用方持有 _lock，保证发布顺序与周期顺序一致
        self._latest = update
        with self._observers_lock:
            channels = list(self._observers)
        for channel in channels:
            channel.offer(update)

    # ---------- Lifecycle ----------
    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._stop_event.clear()
        if self.sighting_source is not None:
            self._thread = threading.Thread(target=self._run, name="location-session", daemon=True)
            self._thread.start()
        logger.info("定位会话已启动")

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        self._thread = None
        # 等待进行中的周期结束后再清空缓存
        with self._lock:
            self.cache.clear()
            self._publish(LocationUpdate(position=None))
        logger.info("定位会话已停止")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                sightings = list(self.sighting_source())
            except Exception as e:
                logger.exception("获取扫描数据出错: %s", e)
                sightings = []
            self.process_cycle(sightings)
            self._stop_event.wait(self.cycle_period)

    # ---------- Core processing ----------
    def process_cycle(self, sightings: Iterable[BeaconSighting]) -> Optional[LocationUpdate]:
        """处理一个扫描周期；会话未启动时忽略并返回 None"""
        with self._lock:
            if not self._running:
                logger.debug("会话未启动，忽略扫描数据")
                return None
            self.cache.ingest(sightings)
            snapshot = tuple(self.cache.snapshot())
            try:
                position = self.estimator.estimate(snapshot)
            except Exception as e:
                logger.exception("位置计算出错: %s", e)
                update = LocationUpdate(
                    position=self._last_position,
                    nearby_beacons=snapshot,
                    error=f"位置计算出错: {e}",
                )
            else:
                if position is not None:
                    self._last_position = position
                update = LocationUpdate(position=position, nearby_beacons=snapshot)
            self._publish(update)
        return update
