"""
Track - 单个被跟踪物体的状态

状态机：
    Unconfirmed --(命中 >= stability_frame_count)--> Stable
    Stable --(连续高置信度命中 >= lock_frame_count)--> Locked
    任意状态 --(连续丢失 >= removal_frame_count)--> Removed（由稳定器删除）

Locked 只冻结显示文本；位姿在删除前一直更新。
"""
from dataclasses import dataclass
from enum import Enum

import numpy as np

from ..detection.data_types import RawDetection
from ..geometry.resolver import WorldPose


class TrackState(Enum):
    UNCONFIRMED = "unconfirmed"
    STABLE = "stable"
    LOCKED = "locked"


@dataclass
class Track:
    """跟踪的物体"""
    track_id: str

    # 类别（创建后不再改变）
    class_id: int
    label: str

    # 最新解析位姿
    last_position: np.ndarray
    last_rotation: np.ndarray
    last_scale: np.ndarray

    # 世界锁定锚点
    anchor_position: np.ndarray
    anchor_scale: np.ndarray
    has_anchor: bool = False

    # 命中/丢失计数
    consecutive_detections: int = 1
    consecutive_misses: int = 0
    consecutive_high_confidence_frames: int = 0

    # 置信度
    avg_confidence: float = 0.0
    last_confidence: float = 0.0

    # 标签锁定
    is_locked: bool = False
    locked_label_text: str = ""

    @classmethod
    def create(
        cls,
        track_id: str,
        detection: RawDetection,
        pose: WorldPose,
        lock_confidence_threshold: float,
    ) -> "Track":
        """由未匹配的检测创建新轨迹"""
        confidence = float(detection.confidence)
        return cls(
            track_id=track_id,
            class_id=detection.class_id,
            label=detection.label,
            last_position=pose.position.copy(),
            last_rotation=pose.rotation.copy(),
            last_scale=pose.scale.copy(),
            anchor_position=pose.position.copy(),
            anchor_scale=pose.scale.copy(),
            consecutive_high_confidence_frames=1 if confidence >= lock_confidence_threshold else 0,
            avg_confidence=confidence,
            last_confidence=confidence,
            locked_label_text=detection.label,
        )

    def hit(
        self,
        pose: WorldPose,
        confidence: float,
        lock_confidence_threshold: float,
        lock_frame_count: int,
        stability_frame_count: int,
    ) -> bool:
        """
        匹配成功时更新

        Returns:
            本次更新是否刚刚锁定
        """
        self.last_position = pose.position.copy()
        self.last_rotation = pose.rotation.copy()
        self.last_scale = pose.scale.copy()
        self.last_confidence = confidence
        self.avg_confidence = (
            (self.avg_confidence * self.consecutive_detections + confidence)
            / (self.consecutive_detections + 1)
        )
        self.consecutive_detections += 1
        self.consecutive_misses = 0

        # 首次达到稳定时设置锚点（只设置一次）
        if not self.has_anchor and self.consecutive_detections >= stability_frame_count:
            self.anchor_position = pose.position.copy()
            self.anchor_scale = pose.scale.copy()
            self.has_anchor = True

        if self.is_locked:
            return False

        if confidence >= lock_confidence_threshold:
            self.consecutive_high_confidence_frames += 1
            if self.consecutive_high_confidence_frames >= lock_frame_count:
                self.is_locked = True
                self.locked_label_text = self.label
                return True
        else:
            self.consecutive_high_confidence_frames = 0
        return False

    def miss(self):
        """预先记一次丢失（本周期匹配成功时由 hit 清零）"""
        self.consecutive_misses += 1

    def settle_miss(self):
        """匹配结束后仍处于丢失状态时，中断未锁定轨迹的高置信度连续计数"""
        if self.consecutive_misses > 0 and not self.is_locked:
            self.consecutive_high_confidence_frames = 0

    def is_visible(self, stability_frame_count: int) -> bool:
        return self.consecutive_detections >= stability_frame_count

    def should_remove(self, removal_frame_count: int) -> bool:
        return self.consecutive_misses >= removal_frame_count

    def state(self, stability_frame_count: int) -> TrackState:
        if self.is_locked:
            return TrackState.LOCKED
        if self.is_visible(stability_frame_count):
            return TrackState.STABLE
        return TrackState.UNCONFIRMED

    @property
    def display_text(self) -> str:
        return self.locked_label_text if self.is_locked else self.label
