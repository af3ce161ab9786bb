"""
YOLO 检测输出解码
不依赖推理框架，直接解析原始输出 tensor（box 坐标 + 每类分数）

主要特性:
- 仅根据 shape 自动判断布局（通道优先 vs 检测优先、有无 batch 维）
- 支持 (1, C, N)、(1, N, C)、(C, N)、(N, C) 四种格式，C = 4 + num_classes
- 展平 host buffer + shape 描述符输入（decode_flat），支持单个 -1 动态维度
- 可选的同类 NMS（OpenCV NMSBoxesBatched）
- 输入不合法时软失败：返回空列表并记录 warning，不抛异常
- 详细的调试日志（通过环境变量 DESK_LABELS_DEBUG_DECODE=1 启用）
"""
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
import cv2

from ..core.config_loader import ConfigError, DecoderSettings
from ..core.constants import Constants
from ..core.logger import debug_enabled, logger
from .class_catalog import ClassCatalog
from .data_types import RawDetection


DEBUG_FLAG = 'DESK_LABELS_DEBUG_DECODE'


@dataclass(frozen=True)
class TensorLayout:
    """由 shape 推断出的输出布局"""
    has_batch: bool
    channel_first: bool
    num_detections: int
    channels: int

    @property
    def name(self) -> str:
        dims = ["C", "N"] if self.channel_first else ["N", "C"]
        if self.has_batch:
            dims.insert(0, "1")
        return "[" + ",".join(dims) + "]"


def detect_layout(shape: Sequence[int], channels: int) -> Optional[TensorLayout]:
    """
    根据 shape 判断输出布局

    规则:
    - rank 3: batch 维必须为 1；先看 shape[1]（通道优先），再看 shape[2]（检测优先）
    - rank 2: 先看 shape[0]（通道优先），再看 shape[1]（检测优先）
    - 两个轴都不等于 channels 或 rank 不是 2/3 时返回 None

    Args:
        shape: tensor shape
        channels: 期望的通道数 C = 4 + num_classes

    Returns:
        TensorLayout 或 None
    """
    shape = tuple(int(d) for d in shape)

    if len(shape) == 3:
        if shape[0] != 1:
            return None
        if shape[1] == channels:
            return TensorLayout(True, True, shape[2], channels)
        if shape[2] == channels:
            return TensorLayout(True, False, shape[1], channels)
        return None

    if len(shape) == 2:
        if shape[0] == channels:
            return TensorLayout(False, True, shape[1], channels)
        if shape[1] == channels:
            return TensorLayout(False, False, shape[0], channels)
        return None

    return None


def xywh2xyxy(boxes: np.ndarray) -> np.ndarray:
    """
    转换边界框格式 (center_x, center_y, width, height) -> (x1, y1, x2, y2)

    Args:
        boxes: (N, 4) 数组，格式 [cx, cy, w, h]

    Returns:
        (N, 4) 数组，格式 [x1, y1, x2, y2]
    """
    x = boxes[:, 0]
    y = boxes[:, 1]
    w = boxes[:, 2]
    h = boxes[:, 3]

    return np.stack([x - w / 2, y - h / 2, x + w / 2, y + h / 2], axis=1)


def class_aware_nms(
    detections: Sequence[RawDetection],
    iou_threshold: float,
    max_detections: int,
    scale: float = float(Constants.MODEL_INPUT_SIZE),
) -> List[RawDetection]:
    """
    同类非极大值抑制（不同类别之间互不抑制）

    Args:
        detections: 解码后的检测
        iou_threshold: IoU 阈值
        max_detections: 最多保留数量
        scale: 归一化坐标还原到像素空间的比例（NMS 在像素空间计算）

    Returns:
        按置信度降序排列的保留检测
    """
    if not detections:
        return []

    # cv2.dnn.NMSBoxesBatched 需要 (x, y, w, h) 格式
    boxes_xywh = []
    for det in detections:
        x1, y1, _, _ = det.to_xyxy()
        boxes_xywh.append([x1 * scale, y1 * scale, det.size[0] * scale, det.size[1] * scale])

    indices = cv2.dnn.NMSBoxesBatched(
        bboxes=boxes_xywh,
        scores=[float(det.confidence) for det in detections],
        class_ids=[int(det.class_id) for det in detections],
        score_threshold=0.0,  # 已在解码时筛选
        nms_threshold=float(iou_threshold),
    )

    if len(indices) == 0:
        return []

    keep = np.asarray(indices).flatten().tolist()
    # OpenCV 返回的索引已按分数降序，这里再稳定排序一次保证顺序确定
    keep.sort(key=lambda i: -detections[i].confidence)
    return [detections[i] for i in keep[:max_detections]]


class YoloDecoder:
    """
    YOLO 原始输出解码器（无状态，每周期最多调用一次）

    使用方法:
        decoder = YoloDecoder(ClassCatalog(), input_size=640)
        detections = decoder.decode(output_tensor, confidence_threshold=0.25)
    """

    def __init__(
        self,
        catalog: Optional[ClassCatalog] = None,
        input_size: int = Constants.MODEL_INPUT_SIZE,
        num_classes: Optional[int] = None,
        confidence_threshold: float = Constants.CONFIDENCE_THRESHOLD,
        nms_enabled: bool = False,
        iou_threshold: float = Constants.NMS_IOU_THRESHOLD,
        max_detections: int = Constants.MAX_DETECTIONS,
        allowed_labels: Iterable[str] = (),
    ):
        """
        Args:
            catalog: 类别目录（默认 COCO-80）
            input_size: 模型输入分辨率 S（正方形）
            num_classes: 类别数（默认等于目录大小）
            confidence_threshold: 默认置信度阈值（包含等于）
            nms_enabled: 是否在解码后执行同类 NMS
            iou_threshold: NMS IoU 阈值
            max_detections: NMS 后最多保留数量
            allowed_labels: 标签白名单（为空时不过滤）
        """
        self.catalog = catalog if catalog is not None else ClassCatalog()
        self.num_classes = int(num_classes) if num_classes is not None else len(self.catalog)
        if self.num_classes < 1:
            raise ConfigError(f"num_classes 必须 >= 1，当前: {self.num_classes}")
        if input_size < 1:
            raise ConfigError(f"input_size 必须 >= 1，当前: {input_size}")

        self.input_size = float(input_size)
        self.channels = Constants.BOX_CHANNELS + self.num_classes
        self.confidence_threshold = float(confidence_threshold)
        self.nms_enabled = bool(nms_enabled)
        self.iou_threshold = float(iou_threshold)
        self.max_detections = int(max_detections)
        self.allowed_labels = frozenset(allowed_labels)

        if len(self.catalog) != self.num_classes:
            logger.warning(
                f"类别目录大小 ({len(self.catalog)}) 与 num_classes ({self.num_classes}) 不一致，"
                f"越界类别将显示为 '{Constants.UNKNOWN_LABEL}'"
            )

        logger.info(
            f"YOLO 解码器初始化完成: 输入尺寸={int(self.input_size)}, "
            f"类别数={self.num_classes}, 通道数={self.channels}, "
            f"置信度阈值={self.confidence_threshold}, NMS={'开启' if self.nms_enabled else '关闭'}"
        )

    @classmethod
    def from_settings(
        cls,
        settings: DecoderSettings,
        catalog: Optional[ClassCatalog] = None,
    ) -> "YoloDecoder":
        """由 DecoderSettings 构建（目录缺省时按 labels_file 加载）"""
        if catalog is None:
            catalog = ClassCatalog.load(settings.labels_file)
        return cls(
            catalog=catalog,
            input_size=settings.input_size,
            num_classes=settings.num_classes,
            confidence_threshold=settings.confidence_threshold,
            nms_enabled=settings.nms_enabled,
            iou_threshold=settings.iou_threshold,
            max_detections=settings.max_detections,
            allowed_labels=settings.allowed_labels,
        )

    def _to_slot_major(self, tensor: np.ndarray, layout: TensorLayout) -> np.ndarray:
        """统一转换为 (N, C)：每行一个检测槽位"""
        preds = tensor[0] if layout.has_batch else tensor
        if layout.channel_first:
            preds = preds.T
        return preds

    def decode(
        self,
        tensor: np.ndarray,
        confidence_threshold: Optional[float] = None,
    ) -> List[RawDetection]:
        """
        解码一帧原始输出

        Args:
            tensor: 原始输出 tensor（rank 2 或 3）
            confidence_threshold: 置信度阈值（None 时使用构造参数）

        Returns:
            RawDetection 列表（槽位顺序；启用 NMS 时按置信度降序）
        """
        threshold = self.confidence_threshold if confidence_threshold is None else float(confidence_threshold)

        if tensor is None:
            logger.warning("解码输入为空，跳过本帧")
            return []

        try:
            tensor = np.asarray(tensor)
        except (ValueError, TypeError) as e:
            logger.warning(f"解码输入无法转换为数组: {e}")
            return []

        if not np.issubdtype(tensor.dtype, np.number):
            logger.warning(f"解码输入不是数值 tensor: dtype={tensor.dtype}")
            return []
        if not np.issubdtype(tensor.dtype, np.floating):
            tensor = tensor.astype(np.float32)

        layout = detect_layout(tensor.shape, self.channels)
        if layout is None:
            logger.warning(
                f"不支持的输出 shape={tuple(tensor.shape)}（rank={tensor.ndim}），"
                f"期望某一维等于 {self.channels}，跳过本帧"
            )
            return []

        preds = self._to_slot_major(tensor, layout)
        if preds.shape[0] == 0:
            return []

        boxes_xywh = preds[:, :Constants.BOX_CHANNELS]
        scores = preds[:, Constants.BOX_CHANNELS:Constants.BOX_CHANNELS + self.num_classes]

        # argmax 取第一个最大值，分数相同时类别 id 小者优先
        best_class = np.argmax(scores, axis=1)
        best_score = scores[np.arange(scores.shape[0]), best_class]

        # 没有正分数的槽位：类别 0，分数 0
        no_positive = best_score <= 0
        best_class = np.where(no_positive, 0, best_class)
        best_score = np.where(no_positive, 0, best_score)

        # 阈值按 tensor 精度比较，避免 float32 分数与 float64 阈值相等时被误判
        mask = best_score >= np.asarray(threshold, dtype=best_score.dtype)
        num_kept = int(mask.sum())

        if debug_enabled(DEBUG_FLAG):
            max_score = float(best_score.max()) if best_score.size else 0.0
            logger.debug(
                f"[Decode] shape={tuple(tensor.shape)}, layout={layout.name}, "
                f"slots={layout.num_detections}, kept={num_kept}, "
                f"max_score={max_score:.3f}, threshold={threshold:.2f}"
            )

        if num_kept == 0:
            return []

        boxes_xyxy = xywh2xyxy(boxes_xywh[mask].astype(np.float64)) / self.input_size
        kept_class = best_class[mask]
        kept_score = best_score[mask]

        detections: List[RawDetection] = []
        for box, class_id, score in zip(boxes_xyxy, kept_class, kept_score):
            x1, y1, x2, y2 = (float(v) for v in box)
            label = self.catalog.label_for(int(class_id))
            if self.allowed_labels and label not in self.allowed_labels:
                continue

            detections.append(RawDetection(
                center=((x1 + x2) * 0.5, (y1 + y2) * 0.5),
                size=(x2 - x1, y2 - y1),
                class_id=int(class_id),
                confidence=float(score),
                label=label,
            ))

        if self.nms_enabled:
            before = len(detections)
            detections = class_aware_nms(
                detections, self.iou_threshold, self.max_detections, scale=self.input_size
            )
            logger.debug(f"NMS 保留: {len(detections)} / {before} 个检测")

        return detections

    def decode_flat(
        self,
        buffer: np.ndarray,
        shape: Tuple[int, ...],
        confidence_threshold: Optional[float] = None,
    ) -> List[RawDetection]:
        """
        解码展平的 host buffer

        Args:
            buffer: 1D 展平输出
            shape: shape 描述符（允许一个 -1 动态维度）
            confidence_threshold: 置信度阈值

        Returns:
            RawDetection 列表；元素数与 shape 不匹配时返回空列表
        """
        if buffer is None:
            logger.warning("解码输入为空，跳过本帧")
            return []

        flat = np.asarray(buffer).ravel()
        try:
            tensor = flat.reshape(tuple(int(d) for d in shape))
        except (ValueError, TypeError) as e:
            logger.warning(
                f"无法按 shape={tuple(shape)} reshape 输出（元素数={flat.size}）: {e}"
            )
            return []

        return self.decode(tensor, confidence_threshold)

    def get_info(self) -> dict:
        """返回解码器配置信息"""
        return {
            "input_size": int(self.input_size),
            "num_classes": self.num_classes,
            "channels": self.channels,
            "confidence_threshold": self.confidence_threshold,
            "nms_enabled": self.nms_enabled,
            "iou_threshold": self.iou_threshold,
            "max_detections": self.max_detections,
        }
