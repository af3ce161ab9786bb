"""
渲染模块 - 标记存储（CycleResult 消费者）
"""
from .marker_store import Marker, MarkerSink, MarkerStore

__all__ = [
    'Marker',
    'MarkerSink',
    'MarkerStore',
]
