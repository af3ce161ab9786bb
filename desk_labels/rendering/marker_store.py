"""
标记存储 - 按轨迹 id 创建/更新/隐藏/销毁标记

渲染端的内存参考实现：消费 TrackStabilizer 每周期的 CycleResult。
标记超过 auto_hide_delay 秒未更新时自动隐藏。
"""
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

import numpy as np

from ..core.config_loader import RenderingSettings
from ..core.logger import logger
from ..tracking.stabilizer import CycleResult, TrackSnapshot


class MarkerSink(Protocol):
    """周期结果消费者协议"""

    def apply(self, result: CycleResult, now: Optional[float] = None) -> None:
        ...


@dataclass
class Marker:
    """单个标记的显示状态"""
    track_id: str
    position: np.ndarray
    rotation: np.ndarray
    scale: np.ndarray
    text: str
    active: bool
    last_update_time: float

    def update(self, snapshot: TrackSnapshot, now: float):
        self.position = snapshot.position
        self.rotation = snapshot.rotation
        self.scale = snapshot.scale
        self.text = snapshot.display_text
        self.last_update_time = now
        self.active = True


class MarkerStore:
    """
    标记存储

    使用方法：
        store = MarkerStore(RenderingSettings())
        store.apply(stabilizer.update(detections, camera_position))
        for marker in store.active_markers():
            draw(marker)
    """

    def __init__(self, settings: Optional[RenderingSettings] = None):
        self.settings = settings if settings is not None else RenderingSettings()
        self._markers: Dict[str, Marker] = {}

    def apply(self, result: CycleResult, now: Optional[float] = None) -> None:
        """
        应用一个周期的结果

        Args:
            result: TrackStabilizer 输出
            now: 当前时间（秒），默认 time.monotonic()
        """
        now = time.monotonic() if now is None else now

        if not result.skipped:
            for snapshot in result.visible:
                marker = self._markers.get(snapshot.track_id)
                if marker is None:
                    self._markers[snapshot.track_id] = Marker(
                        track_id=snapshot.track_id,
                        position=snapshot.position,
                        rotation=snapshot.rotation,
                        scale=snapshot.scale,
                        text=snapshot.display_text,
                        active=True,
                        last_update_time=now,
                    )
                    logger.debug(f"创建标记 {snapshot.track_id} '{snapshot.display_text}'")
                else:
                    marker.update(snapshot, now)

            for track_id in result.hidden:
                marker = self._markers.get(track_id)
                if marker is not None:
                    marker.active = False

            for track_id in result.removed:
                if self._markers.pop(track_id, None) is not None:
                    logger.debug(f"销毁标记 {track_id}")

        self.tick(now)

    def tick(self, now: Optional[float] = None) -> None:
        """自动隐藏长时间未更新的标记"""
        if self.settings.disable_auto_hide:
            return
        now = time.monotonic() if now is None else now
        for marker in self._markers.values():
            if marker.active and now - marker.last_update_time > self.settings.auto_hide_delay:
                marker.active = False

    def remove(self, track_ids: List[str]) -> None:
        for track_id in track_ids:
            self._markers.pop(track_id, None)

    def clear(self) -> None:
        """销毁全部标记"""
        self._markers.clear()

    def get(self, track_id: str) -> Optional[Marker]:
        return self._markers.get(track_id)

    def active_markers(self) -> List[Marker]:
        return [m for m in self._markers.values() if m.active]

    def __len__(self) -> int:
        return len(self._markers)
