"""
类别目录 - 类别 id 到标签名的映射

目录是构造时注入的不可变值，越界的 id 返回 "unknown"。
"""
from pathlib import Path
from typing import Iterable, Iterator, Optional, Sequence, Tuple

from ..core.constants import Constants
from ..core.logger import logger


# YOLO COCO-80 标签（与模型导出的枚举顺序一致）
COCO_LABELS: Tuple[str, ...] = (
    "person", "bicycle", "car", "motorbike", "aeroplane", "bus", "train", "truck",
    "boat", "traffic_light", "fire_hydrant", "stop_sign", "parking_meter", "bench",
    "bird", "cat", "dog", "horse", "sheep", "cow", "elephant", "bear", "zebra",
    "giraffe", "backpack", "umbrella", "handbag", "tie", "suitcase", "frisbee",
    "skis", "snowboard", "sports_ball", "kite", "baseball_bat", "baseball_glove",
    "skateboard", "surfboard", "tennis_racket", "bottle", "wine_glass", "cup",
    "fork", "knife", "spoon", "bowl", "banana", "apple", "sandwich", "orange",
    "broccoli", "carrot", "hot_dog", "pizza", "donut", "cake", "chair", "sofa",
    "pottedplant", "bed", "diningtable", "toilet", "tvmonitor", "laptop", "mouse",
    "remote", "keyboard", "cell_phone", "microwave", "oven", "toaster", "sink",
    "refrigerator", "book", "clock", "vase", "scissors", "teddy_bear", "hair_drier",
    "toothbrush",
)

# 桌面常见物体（未配置自定义过滤时的默认白名单）
DEFAULT_DESK_OBJECTS: Tuple[str, ...] = (
    "laptop", "keyboard", "mouse", "cell_phone", "remote", "cup", "bottle", "bowl",
    "book", "clock", "vase", "pottedplant", "wine_glass", "fork", "knife", "spoon",
    "banana", "apple", "orange", "sandwich", "pizza", "donut", "cake", "scissors",
)


class ClassCatalog:
    """有序类别名列表"""

    def __init__(self, labels: Iterable[str] = COCO_LABELS):
        self._labels: Tuple[str, ...] = tuple(str(label) for label in labels)

    @classmethod
    def from_file(cls, path: Path) -> "ClassCatalog":
        """
        从换行分隔的标签文件加载（兼容 \\r\\n，忽略空行）

        Args:
            path: 标签文件路径

        Returns:
            ClassCatalog 实例
        """
        text = Path(path).read_text(encoding="utf-8")
        labels = [line.strip() for line in text.replace("\r", "\n").split("\n")]
        labels = [label for label in labels if label]
        logger.info(f"从 {path} 加载 {len(labels)} 个类别标签")
        return cls(labels)

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "ClassCatalog":
        """有文件时从文件加载，否则使用 COCO-80"""
        if path is None:
            return cls()
        return cls.from_file(path)

    def label_for(self, class_id: int) -> str:
        """类别 id -> 标签名，越界返回 unknown"""
        if 0 <= class_id < len(self._labels):
            return self._labels[class_id]
        return Constants.UNKNOWN_LABEL

    def index_of(self, label: str) -> Optional[int]:
        try:
            return self._labels.index(label)
        except ValueError:
            return None

    @property
    def labels(self) -> Sequence[str]:
        return self._labels

    def __len__(self) -> int:
        return len(self._labels)

    def __iter__(self) -> Iterator[str]:
        return iter(self._labels)

    def __getitem__(self, class_id: int) -> str:
        return self.label_for(class_id)

    def __repr__(self) -> str:
        return f"ClassCatalog(size={len(self._labels)})"
