"""
检测模块 - 原始输出解码 + 类别目录
"""
from .class_catalog import COCO_LABELS, DEFAULT_DESK_OBJECTS, ClassCatalog
from .data_types import RawDetection
from .yolo_decoder import TensorLayout, YoloDecoder, class_aware_nms, detect_layout

__all__ = [
    'COCO_LABELS',
    'DEFAULT_DESK_OBJECTS',
    'ClassCatalog',
    'RawDetection',
    'TensorLayout',
    'YoloDecoder',
    'class_aware_nms',
    'detect_layout',
]
