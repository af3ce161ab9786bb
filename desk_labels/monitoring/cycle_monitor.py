"""
周期监控模块
===========

统计处理周期的频率（EMA 平滑）和核心处理耗时。
"""
import time
from typing import Optional

from ..core.logger import logger


class CycleMonitor:
    """
    周期监控器

    职责:
    - 计算周期频率（每个完整检测集调用一次 record）
    - 记录解码 + 稳定化耗时
    - 每 log_every 个周期输出一次统计日志

    使用示例:
        monitor = CycleMonitor(smoothing=0.9)

        start = time.perf_counter()
        ...  # decode + stabilize
        monitor.record((time.perf_counter() - start) * 1000.0)
    """

    def __init__(self, smoothing: float = 0.9, log_every: int = 100):
        """
        Args:
            smoothing: EMA 平滑系数（0.0-1.0），越大越平滑
            log_every: 每多少个周期输出一次统计（<= 0 关闭）
        """
        self.smoothing = max(0.0, min(1.0, smoothing))
        self.log_every = log_every

        self.last_cycle_time: Optional[float] = None
        self.rate_hz: float = 0.0
        self.cycle_count: int = 0
        self.last_latency_ms: float = 0.0
        self.total_latency_ms: float = 0.0
        self.dropped_tensors: int = 0

    def record(self, latency_ms: float = 0.0, timestamp: Optional[float] = None):
        """
        记录一个完成的周期

        Args:
            latency_ms: 本周期核心处理耗时（毫秒）
            timestamp: 周期时间戳（秒），默认 time.monotonic()
        """
        current_time = timestamp if timestamp is not None else time.monotonic()

        if self.last_cycle_time is not None:
            elapsed = current_time - self.last_cycle_time
            if elapsed > 0:
                current_rate = 1.0 / elapsed
                if self.rate_hz == 0.0:
                    self.rate_hz = current_rate
                else:
                    self.rate_hz = self.smoothing * self.rate_hz + (1 - self.smoothing) * current_rate

        self.last_cycle_time = current_time
        self.cycle_count += 1
        self.last_latency_ms = latency_ms
        self.total_latency_ms += latency_ms

        if self.log_every > 0 and self.cycle_count % self.log_every == 0:
            logger.info(
                f"周期统计: {self.rate_hz:.1f} Hz, 平均处理耗时 {self.avg_latency_ms:.2f} ms, "
                f"丢弃 tensor {self.dropped_tensors} 个 (前 {self.cycle_count} 个周期)"
            )

    def record_drop(self, count: int = 1):
        """记录被新 tensor 覆盖而未处理的 tensor"""
        self.dropped_tensors += count

    @property
    def avg_latency_ms(self) -> float:
        return self.total_latency_ms / self.cycle_count if self.cycle_count else 0.0

    def reset(self):
        """重置所有统计"""
        self.last_cycle_time = None
        self.rate_hz = 0.0
        self.cycle_count = 0
        self.last_latency_ms = 0.0
        self.total_latency_ms = 0.0
        self.dropped_tensors = 0

    def get_stats(self) -> dict:
        return {
            'rate_hz': self.rate_hz,
            'cycle_count': self.cycle_count,
            'last_latency_ms': self.last_latency_ms,
            'avg_latency_ms': self.avg_latency_ms,
            'dropped_tensors': self.dropped_tensors,
        }

    def __repr__(self) -> str:
        return f"CycleMonitor(rate={self.rate_hz:.2f}Hz, cycles={self.cycle_count})"
