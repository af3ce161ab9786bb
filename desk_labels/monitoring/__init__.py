"""
监控模块
"""
from .cycle_monitor import CycleMonitor

__all__ = ['CycleMonitor']
