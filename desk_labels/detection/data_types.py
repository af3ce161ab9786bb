"""
检测数据结构
"""
from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class RawDetection:
    """
    单帧原始检测（每个周期产生，立即被跟踪器消费）

    坐标为归一化图像空间（0..1，不裁剪，可能越界）。
    """
    center: Tuple[float, float]
    size: Tuple[float, float]
    class_id: int
    confidence: float
    label: str

    def to_xyxy(self) -> Tuple[float, float, float, float]:
        """返回归一化角点 (x1, y1, x2, y2)"""
        cx, cy = self.center
        w, h = self.size
        return (cx - w / 2, cy - h / 2, cx + w / 2, cy + h / 2)
