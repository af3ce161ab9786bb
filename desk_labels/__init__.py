"""
desk_labels - 检测解码与世界锁定标签稳定

核心流程：
    原始输出 tensor -> YoloDecoder -> RawDetection 列表
    -> TrackStabilizer（匹配 + 生命周期 + 标签锁定 + 锚点滞后）
    -> CycleResult -> MarkerSink
"""

__version__ = "1.0.0"
