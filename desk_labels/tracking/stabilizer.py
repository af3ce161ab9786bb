"""
TrackStabilizer - 检测结果稳定器

特性：
- 每周期调用一次，输入该周期完整的检测列表（可以为空）
- 位置 + 类别贪婪匹配（first_fit：按创建顺序取第一个满足条件的轨迹）
- 连续命中达到阈值才显示，连续丢失达到阈值才删除（抑制闪烁）
- 连续高置信度命中后锁定显示文本
- 锚点滞后：移动不超过阈值时显示旧锚点位置（抑制抖动）
- 不做 I/O，不阻塞，不向外抛异常
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from scipy.spatial import distance

from ..core.config_loader import StabilizerSettings
from ..core.logger import logger
from ..detection.data_types import RawDetection
from ..geometry.resolver import GeometryResolver, WorldPose
from ..geometry.transforms import billboard_rotation
from .track import Track


@dataclass
class TrackSnapshot:
    """单个可见轨迹的显示快照"""
    track_id: str
    position: np.ndarray
    rotation: np.ndarray
    scale: np.ndarray
    display_text: str


@dataclass
class CycleResult:
    """
    一个周期的输出

    visible: 可见轨迹快照（按创建顺序）
    hidden: 存活但尚未稳定的轨迹 id（渲染端应隐藏）
    removed: 本周期删除的轨迹 id（渲染端应销毁对应标记）
    skipped: 本周期因依赖缺失被跳过
    """
    cycle: int
    visible: List[TrackSnapshot] = field(default_factory=list)
    hidden: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    skipped: bool = False


class TrackStabilizer:
    """
    检测稳定器

    使用方法：
        stabilizer = TrackStabilizer(StabilizerSettings(), resolver)

        # 每周期调用
        result = stabilizer.update(detections, camera_position)
        for snapshot in result.visible:
            draw(snapshot.track_id, snapshot.position, snapshot.display_text)
    """

    def __init__(
        self,
        settings: Optional[StabilizerSettings] = None,
        resolver: Optional[GeometryResolver] = None,
    ):
        """
        Args:
            settings: 跟踪参数（构建时已校验）
            resolver: 几何解析器（2D 检测 -> 世界位姿）
        """
        self.settings = settings if settings is not None else StabilizerSettings()
        self.resolver = resolver

        self._label_filters = frozenset(self.settings.label_filters)

        # 轨迹存储（插入顺序即创建顺序）
        self._tracks: Dict[str, Track] = {}
        self._created_count = 0
        self._cycle = 0

    # ------------------------------------------------------------------
    # 每周期入口
    # ------------------------------------------------------------------

    def update(
        self,
        detections: Optional[Sequence[RawDetection]],
        camera_position: Optional[Sequence[float]] = None,
    ) -> CycleResult:
        """
        处理一个周期

        Args:
            detections: 本周期的全部检测（None 或空列表表示无检测）
            camera_position: 相机世界坐标（用于朝向计算；None 时沿用解析出的朝向）

        Returns:
            CycleResult
        """
        self._cycle += 1
        detections = list(detections or [])

        if detections and self.resolver is None:
            logger.warning("TrackStabilizer: 缺少几何解析器，跳过本周期")
            return CycleResult(cycle=self._cycle, skipped=True)

        # 1. 预先记丢失
        for track in self._tracks.values():
            track.miss()

        # 2. 过滤 + 几何解析
        candidates = self._resolve_candidates(detections)

        # 3. 匹配 / 更新 / 创建
        if self.settings.match_strategy == "nearest":
            self._associate_nearest(candidates)
        else:
            self._associate_first_fit(candidates)

        for track in self._tracks.values():
            track.settle_miss()

        # 4. 删除 + 可见性 + 锚点滞后
        return self._emit(camera_position)

    # ------------------------------------------------------------------
    # 过滤与解析
    # ------------------------------------------------------------------

    def _passes_filters(self, detection: RawDetection) -> bool:
        if self._label_filters and detection.label not in self._label_filters:
            return False
        return detection.confidence >= self.settings.min_confidence

    def _resolve(self, detection: RawDetection) -> Optional[WorldPose]:
        """解析失败（未命中或解析器异常）时返回 None"""
        try:
            return self.resolver.resolve(detection)
        except Exception as e:
            logger.warning(f"几何解析失败 ({detection.label}): {e}，跳过该检测")
            return None

    def _resolve_candidates(
        self,
        detections: Iterable[RawDetection],
    ) -> List[Tuple[RawDetection, WorldPose]]:
        candidates = []
        for detection in detections:
            if not self._passes_filters(detection):
                continue
            pose = self._resolve(detection)
            if pose is None:
                continue
            candidates.append((detection, pose))
        return candidates

    # ------------------------------------------------------------------
    # 匹配
    # ------------------------------------------------------------------

    def _associate_first_fit(self, candidates: List[Tuple[RawDetection, WorldPose]]):
        """按轨迹创建顺序取第一个距离和类别都满足的轨迹"""
        claimed = set()
        threshold = self.settings.position_match_threshold

        for detection, pose in candidates:
            matched_id = None
            for track_id, track in self._tracks.items():
                if track_id in claimed or track.class_id != detection.class_id:
                    continue
                if distance.euclidean(track.last_position, pose.position) < threshold:
                    matched_id = track_id
                    break

            if matched_id is not None:
                self._update_track(matched_id, detection, pose)
                claimed.add(matched_id)
            else:
                claimed.add(self._create_track(detection, pose))

    def _associate_nearest(self, candidates: List[Tuple[RawDetection, WorldPose]]):
        """所有候选对按距离升序贪婪提交，与遍历顺序无关"""
        threshold = self.settings.position_match_threshold
        pairs = []
        for det_idx, (detection, pose) in enumerate(candidates):
            for track_id, track in self._tracks.items():
                if track.class_id != detection.class_id:
                    continue
                dist = distance.euclidean(track.last_position, pose.position)
                if dist < threshold:
                    pairs.append((dist, det_idx, track_id))

        pairs.sort(key=lambda p: p[0])
        used_dets = set()
        used_tracks = set()
        for dist, det_idx, track_id in pairs:
            if det_idx in used_dets or track_id in used_tracks:
                continue
            detection, pose = candidates[det_idx]
            self._update_track(track_id, detection, pose)
            used_dets.add(det_idx)
            used_tracks.add(track_id)

        for det_idx, (detection, pose) in enumerate(candidates):
            if det_idx not in used_dets:
                self._create_track(detection, pose)

    def _update_track(self, track_id: str, detection: RawDetection, pose: WorldPose):
        """更新已有轨迹"""
        track = self._tracks[track_id]
        just_locked = track.hit(
            pose,
            float(detection.confidence),
            self.settings.lock_confidence_threshold,
            self.settings.lock_frame_count,
            self.settings.stability_frame_count,
        )
        if just_locked:
            logger.info(
                f"轨迹 {track_id} 已锁定标签 '{track.locked_label_text}' "
                f"(平均置信度 {track.avg_confidence:.2f})"
            )

    def _create_track(self, detection: RawDetection, pose: WorldPose) -> str:
        """创建新轨迹，返回 id"""
        track_id = f"{detection.label}_{detection.class_id}_{self._created_count}"
        self._created_count += 1

        self._tracks[track_id] = Track.create(
            track_id, detection, pose, self.settings.lock_confidence_threshold
        )
        logger.debug(f"新轨迹 {track_id} (置信度 {detection.confidence:.2f})")
        return track_id

    # ------------------------------------------------------------------
    # 输出
    # ------------------------------------------------------------------

    def _display_pose(self, track: Track) -> Tuple[np.ndarray, np.ndarray]:
        """
        锚点滞后：移动超过阈值时锚点跳到当前位置，否则显示旧锚点

        Returns:
            (position, scale)
        """
        if not track.has_anchor:
            return track.last_position, track.last_scale

        drift = distance.euclidean(track.last_position, track.anchor_position)
        if drift > self.settings.movement_update_threshold:
            track.anchor_position = track.last_position.copy()
            track.anchor_scale = track.last_scale.copy()
        return track.anchor_position, track.anchor_scale

    def _emit(self, camera_position: Optional[Sequence[float]]) -> CycleResult:
        result = CycleResult(cycle=self._cycle)

        for track_id, track in self._tracks.items():
            if track.should_remove(self.settings.removal_frame_count):
                result.removed.append(track_id)
                continue

            if not track.is_visible(self.settings.stability_frame_count):
                result.hidden.append(track_id)
                continue

            position, scale = self._display_pose(track)
            if camera_position is not None:
                rotation = billboard_rotation(position, camera_position)
            else:
                rotation = track.last_rotation

            result.visible.append(TrackSnapshot(
                track_id=track_id,
                position=position.copy(),
                rotation=np.array(rotation, dtype=float),
                scale=scale.copy(),
                display_text=track.display_text,
            ))

        for track_id in result.removed:
            del self._tracks[track_id]
            logger.debug(f"删除丢失的轨迹 {track_id}")

        return result

    # ------------------------------------------------------------------
    # 访问接口
    # ------------------------------------------------------------------

    def get_track(self, track_id: str) -> Optional[Track]:
        """根据 ID 获取轨迹"""
        return self._tracks.get(track_id)

    def get_all_tracks(self) -> List[Track]:
        """获取所有轨迹（创建顺序）"""
        return list(self._tracks.values())

    @property
    def track_ids(self) -> List[str]:
        return list(self._tracks.keys())

    @property
    def cycle(self) -> int:
        return self._cycle

    def __len__(self) -> int:
        return len(self._tracks)

    def reset(self) -> List[str]:
        """
        丢弃全部轨迹（id 计数继续递增，不复用）

        Returns:
            被丢弃的轨迹 id
        """
        discarded = list(self._tracks.keys())
        self._tracks.clear()
        if discarded:
            logger.info(f"TrackStabilizer: 已重置，丢弃 {len(discarded)} 条轨迹")
        return discarded
