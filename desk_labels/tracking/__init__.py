"""
跟踪模块 - 检测稳定、标签锁定、世界锁定

使用方法：
    from desk_labels.tracking import TrackStabilizer

    stabilizer = TrackStabilizer(settings, resolver)

    # 在主循环中
    result = stabilizer.update(detections, camera_position)
    for snapshot in result.visible:
        print(snapshot.track_id, snapshot.display_text)
"""

from .stabilizer import CycleResult, TrackSnapshot, TrackStabilizer
from .track import Track, TrackState

__all__ = [
    'CycleResult',
    'Track',
    'TrackSnapshot',
    'TrackStabilizer',
    'TrackState',
]
