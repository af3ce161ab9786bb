"""
检测流水线
统一管理 tensor 交接、解码、稳定化和标记输出

职责:
- TensorMailbox: 推理端发布完整的输出 tensor（只保留最新一个），主循环取走
- DetectionPipeline: 每取到一个完整 tensor 执行一个周期（解码 -> 稳定化 -> 标记）
- stop(): 协作式取消，丢弃未处理 tensor 和全部轨迹
"""
import threading
import time
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from .core.config_loader import (
    DecoderSettings,
    RenderingSettings,
    StabilizerSettings,
    SystemConfig,
    get_config,
)
from .core.logger import logger
from .detection.class_catalog import ClassCatalog
from .detection.yolo_decoder import YoloDecoder
from .geometry.resolver import GeometryResolver
from .monitoring.cycle_monitor import CycleMonitor
from .rendering.marker_store import MarkerSink, MarkerStore
from .tracking.stabilizer import CycleResult, TrackStabilizer


@dataclass
class PublishedTensor:
    """推理端发布的一个完整输出"""
    sequence: int
    tensor: np.ndarray
    shape: Optional[Tuple[int, ...]]
    published_at: float


class TensorMailbox:
    """
    单槽 tensor 邮箱（最新值覆盖旧值）

    推理端可能跨多个周期分片执行，只有完整输出才会 publish；
    消费端每个周期最多 take 一次。
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._pending: Optional[PublishedTensor] = None
        self._sequence = 0

    def publish(self, tensor: np.ndarray, shape: Optional[Sequence[int]] = None) -> bool:
        """
        发布完整输出

        Args:
            tensor: 输出 tensor，或配合 shape 使用的展平 buffer
            shape: 展平 buffer 的 shape 描述符

        Returns:
            是否覆盖了一个尚未处理的旧 tensor
        """
        with self._lock:
            self._sequence += 1
            dropped = self._pending is not None
            self._pending = PublishedTensor(
                sequence=self._sequence,
                tensor=tensor,
                shape=tuple(shape) if shape is not None else None,
                published_at=time.monotonic(),
            )
        return dropped

    def take(self) -> Optional[PublishedTensor]:
        """取走最新输出（没有时返回 None）"""
        with self._lock:
            pending, self._pending = self._pending, None
        return pending

    def clear(self) -> bool:
        """丢弃未处理输出，返回是否有被丢弃的 tensor"""
        with self._lock:
            dropped = self._pending is not None
            self._pending = None
        return dropped

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return self._pending is not None


class DetectionPipeline:
    """
    检测流水线

    使用方法:
        pipeline = DetectionPipeline.from_config(resolver=resolver)

        # 推理端（完成一次推理后）
        pipeline.publish(output_tensor)

        # 主循环（每帧）
        result = pipeline.run_cycle(camera_position)
    """

    def __init__(
        self,
        decoder: YoloDecoder,
        stabilizer: TrackStabilizer,
        sink: Optional[MarkerSink] = None,
        monitor: Optional[CycleMonitor] = None,
    ):
        """
        Args:
            decoder: YOLO 输出解码器
            stabilizer: 检测稳定器
            sink: 周期结果消费者（默认内存 MarkerStore）
            monitor: 周期监控器
        """
        self.decoder = decoder
        self.stabilizer = stabilizer
        self.sink = sink if sink is not None else MarkerStore()
        self.monitor = monitor if monitor is not None else CycleMonitor()
        self.mailbox = TensorMailbox()
        self._running = True

    @classmethod
    def from_config(
        cls,
        config: Optional[SystemConfig] = None,
        resolver: Optional[GeometryResolver] = None,
        sink: Optional[MarkerSink] = None,
        catalog: Optional[ClassCatalog] = None,
    ) -> "DetectionPipeline":
        """
        由配置构建完整流水线（越界配置在这里抛出 ConfigError）

        Args:
            config: 系统配置（默认 get_config()）
            resolver: 几何解析器
            sink: 周期结果消费者（默认按 rendering 配置创建 MarkerStore）
            catalog: 类别目录（默认按 detection.labels_file 加载）
        """
        config = config if config is not None else get_config()

        decoder = YoloDecoder.from_settings(DecoderSettings.from_config(config), catalog)
        stabilizer = TrackStabilizer(StabilizerSettings.from_config(config), resolver)
        if sink is None:
            sink = MarkerStore(RenderingSettings.from_config(config))

        logger.info("DetectionPipeline 初始化完成")
        return cls(decoder, stabilizer, sink)

    def start(self):
        """恢复处理（stop 之后）"""
        self._running = True

    def publish(self, tensor: np.ndarray, shape: Optional[Sequence[int]] = None):
        """推理端发布完整输出"""
        if not self._running:
            return
        if self.mailbox.publish(tensor, shape):
            self.monitor.record_drop()

    def process(
        self,
        tensor: np.ndarray,
        camera_position: Optional[Sequence[float]] = None,
        shape: Optional[Sequence[int]] = None,
        now: Optional[float] = None,
    ) -> CycleResult:
        """
        对一个完整 tensor 执行一个周期

        Args:
            tensor: 输出 tensor（或展平 buffer）
            camera_position: 相机世界坐标
            shape: 展平 buffer 的 shape 描述符
            now: 当前时间（秒），传给标记消费者
        """
        start = time.perf_counter()

        if shape is not None:
            detections = self.decoder.decode_flat(tensor, tuple(shape))
        else:
            detections = self.decoder.decode(tensor)

        result = self.stabilizer.update(detections, camera_position)
        self.sink.apply(result, now)

        self.monitor.record((time.perf_counter() - start) * 1000.0)
        return result

    def run_cycle(
        self,
        camera_position: Optional[Sequence[float]] = None,
        now: Optional[float] = None,
    ) -> Optional[CycleResult]:
        """
        取走邮箱中的完整输出并处理；没有新输出时不执行周期

        Returns:
            CycleResult；没有新输出或已停止时返回 None
        """
        if not self._running:
            return None

        published = self.mailbox.take()
        if published is None:
            return None

        return self.process(published.tensor, camera_position, published.shape, now)

    def stop(self, now: Optional[float] = None) -> CycleResult:
        """
        协作式停止：丢弃未处理输出，整体丢弃轨迹（不做部分提交）

        Returns:
            列出全部被丢弃轨迹的 CycleResult（已交给标记消费者）
        """
        self._running = False
        if self.mailbox.clear():
            logger.info("DetectionPipeline: 停止时丢弃了一个未处理的输出")

        removed = self.stabilizer.reset()
        result = CycleResult(cycle=self.stabilizer.cycle, removed=removed)
        self.sink.apply(result, now)
        logger.info(f"DetectionPipeline 已停止: {self.monitor}")
        return result

    @property
    def running(self) -> bool:
        return self._running
