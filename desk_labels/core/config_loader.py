"""
统一配置加载器 - 使用 dataclass 实现轻量级配置管理
=====================================================

此模块负责：
1. 从 system_config.json 读取配置，缺失的段落和字段用缺省值补齐
2. 提供字典/属性两种风格的配置访问接口
3. 将原始配置转换为经过校验的强类型设置（DecoderSettings / StabilizerSettings）
4. 越界配置在构建设置时即报错（ConfigError），运行期逐帧不再校验

配置文件位置：
- 环境变量: DESK_LABELS_CONFIG=path/to/config.json
- 当前目录: ./system_config.json
- 项目根目录: system_config.json 或 config/system_config.json
- 参数指定: load_config(config_path="path/to/config.json")

使用示例：
```python
from desk_labels.core.config_loader import get_config, StabilizerSettings

config = get_config()  # 单例模式
print(config.detection.confidence_threshold)
settings = StabilizerSettings.from_config(config)
```
"""
from __future__ import annotations

import copy
import json
import math
import numbers
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .constants import Constants


class ConfigError(ValueError):
    """配置值越界或不一致"""


# ============================================================================
# 缺省配置
# ============================================================================

DEFAULT_CONFIG: Dict[str, Dict[str, Any]] = {
    "detection": {
        "input_size": Constants.MODEL_INPUT_SIZE,
        "num_classes": Constants.NUM_CLASSES,
        "confidence_threshold": Constants.CONFIDENCE_THRESHOLD,
        "nms_enabled": False,
        "iou_threshold": Constants.NMS_IOU_THRESHOLD,
        "max_detections": Constants.MAX_DETECTIONS,
        "labels_file": None,
        "allowed_labels": [],
    },
    "tracking": {
        "position_match_threshold": Constants.POSITION_MATCH_THRESHOLD,
        "stability_frame_count": Constants.STABILITY_FRAME_COUNT,
        "removal_frame_count": Constants.REMOVAL_FRAME_COUNT,
        "lock_confidence_threshold": Constants.LOCK_CONFIDENCE_THRESHOLD,
        "lock_frame_count": Constants.LOCK_FRAME_COUNT,
        "movement_update_threshold": Constants.MOVEMENT_UPDATE_THRESHOLD,
        "min_confidence": Constants.MIN_CONFIDENCE,
        "use_desk_object_filter": True,
        "label_filters": [],
        "match_strategy": "first_fit",
    },
    "rendering": {
        "auto_hide_delay": Constants.MARKER_AUTO_HIDE_DELAY,
    },
    "logging": {
        "level": "INFO",
        "enable_console": True,
        "enable_file": False,
        "file_rotation": "daily",
        "max_size_mb": 100,
    },
    "paths": {
        "logs_dir": "logs",
    },
}


# ============================================================================
# 简化配置类（不依赖 Pydantic）
# ============================================================================

class DictConfig:
    """字典风格的配置基类"""

    def __init__(self, **kwargs):
        for key, value in kwargs.items():
            if isinstance(value, dict):
                # 递归转换嵌套字典
                setattr(self, key, DictConfig(**value))
            elif isinstance(value, list) and value and isinstance(value[0], dict):
                setattr(self, key, [DictConfig(**item) if isinstance(item, dict) else item for item in value])
            else:
                setattr(self, key, value)

    def get(self, key: str, default=None):
        """字典风格的 get 方法"""
        return getattr(self, key, default)

    def __getitem__(self, key: str):
        """支持 config["key"] 语法"""
        return getattr(self, key)

    def __contains__(self, key: str) -> bool:
        return hasattr(self, key)

    def __repr__(self):
        attrs = {k: v for k, v in self.__dict__.items() if not k.startswith("_")}
        return f"{self.__class__.__name__}({attrs})"


class SystemConfig(DictConfig):
    """
    系统配置（顶层）

    属性:
        detection: 解码配置
        tracking: 跟踪/锁定/世界锁定配置
        rendering: 标记显示配置
        logging: 日志配置
        paths: 路径配置
    """

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._config_path: Optional[Path] = None

    def set_config_path(self, path: Path) -> None:
        """设置配置文件路径（用于相对路径解析）"""
        self._config_path = path

    def resolve_path(self, path_str: Optional[str]) -> Optional[Path]:
        """解析相对/绝对路径（相对路径基于配置文件所在目录）"""
        if not path_str:
            return None

        candidate = Path(path_str)
        if not candidate.is_absolute() and self._config_path is not None:
            candidate = self._config_path.parent / candidate

        return candidate if candidate.exists() else None


# ============================================================================
# 配置加载器（单例模式）
# ============================================================================

_config_instance: Optional[SystemConfig] = None


def _merge_defaults(raw_data: Dict[str, Any]) -> Dict[str, Any]:
    """补齐缺失的段落和字段（不覆盖已有值）"""
    merged = dict(raw_data)
    for section, defaults in DEFAULT_CONFIG.items():
        current = merged.get(section)
        if not isinstance(current, dict):
            merged[section] = copy.deepcopy(defaults)
            continue
        filled = copy.deepcopy(defaults)
        filled.update(current)
        merged[section] = filled
    return merged


def find_config_file() -> Optional[Path]:
    """
    按优先级查找配置文件

    Returns:
        找到的配置文件路径；都不存在时返回 None
    """
    config_env = os.getenv("DESK_LABELS_CONFIG")
    if config_env:
        return Path(config_env)

    root_dir = Path(__file__).parent.parent.parent
    candidates = [
        Path.cwd() / "system_config.json",
        root_dir / "system_config.json",
        root_dir / "config" / "system_config.json",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def default_config() -> SystemConfig:
    """不读文件，仅由缺省值构建配置"""
    return SystemConfig(**_merge_defaults({}))


def load_config(config_path: Optional[str | Path] = None) -> SystemConfig:
    """
    Load configuration from JSON file

    Args:
        config_path: Configuration file path (default: auto-detect via find_config_file)

    Returns:
        SystemConfig: Configuration object with defaults filled in

    Raises:
        FileNotFoundError: Configuration file does not exist
        ValueError: Configuration file format error
    """
    if config_path is None:
        config_path = find_config_file()
        if config_path is None:
            raise FileNotFoundError("Configuration file not found: system_config.json")
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with config_path.open("r", encoding="utf-8") as f:
            raw_data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Configuration file JSON parsing failed: {e}") from e

    if not isinstance(raw_data, dict):
        raise ValueError(f"Configuration root must be a JSON object: {config_path}")

    config = SystemConfig(**_merge_defaults(raw_data))
    config.set_config_path(config_path)
    return config


def get_config(config_path: Optional[str | Path] = None, reload: bool = False) -> SystemConfig:
    """
    获取配置单例（懒加载）

    找不到配置文件时退回缺省配置。

    Args:
        config_path: 配置文件路径（仅首次加载时有效）
        reload: 是否强制重新加载配置

    Returns:
        SystemConfig: 配置单例
    """
    global _config_instance

    if _config_instance is None or reload:
        if config_path is None and find_config_file() is None:
            _config_instance = default_config()
        else:
            _config_instance = load_config(config_path)

    return _config_instance


# ============================================================================
# 环境变量覆盖支持
# ============================================================================

def apply_env_overrides(config: SystemConfig) -> SystemConfig:
    """
    应用环境变量覆盖（优先级：ENV > system_config.json > 默认值）

    支持的环境变量：
    - DESK_LABELS_LOG_LEVEL: 日志级别
    - DESK_LABELS_CONFIDENCE: 解码置信度阈值
    - DESK_LABELS_NMS: 是否启用 NMS（'1' / '0'）
    """
    if log_level := os.getenv("DESK_LABELS_LOG_LEVEL"):
        config.logging.level = log_level.upper()

    if confidence := os.getenv("DESK_LABELS_CONFIDENCE"):
        try:
            config.detection.confidence_threshold = float(confidence)
        except ValueError:
            pass

    if nms := os.getenv("DESK_LABELS_NMS"):
        config.detection.nms_enabled = nms == "1"

    return config


# ============================================================================
# 强类型设置
# ============================================================================

def _as_float(name: str, value: Any) -> float:
    """数值校验：拒绝 None、字符串、bool 和 NaN/inf"""
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise ConfigError(f"{name} 必须是数值，当前: {value!r}")
    if not math.isfinite(value):
        raise ConfigError(f"{name} 必须是有限数值，当前: {value}")
    return float(value)


def _require_unit_interval(name: str, value: float) -> None:
    if not 0.0 <= _as_float(name, value) <= 1.0:
        raise ConfigError(f"{name} 必须在 [0, 1] 范围内，当前: {value}")


def _require_positive_int(name: str, value: int) -> None:
    _as_float(name, value)
    if int(value) != value or value < 1:
        raise ConfigError(f"{name} 必须是 >= 1 的整数，当前: {value}")


def _require_non_negative(name: str, value: float) -> None:
    if _as_float(name, value) < 0.0:
        raise ConfigError(f"{name} 不能为负数，当前: {value}")


@dataclass
class DecoderSettings:
    """检测解码设置"""
    input_size: int = Constants.MODEL_INPUT_SIZE
    num_classes: int = Constants.NUM_CLASSES
    confidence_threshold: float = Constants.CONFIDENCE_THRESHOLD
    nms_enabled: bool = False
    iou_threshold: float = Constants.NMS_IOU_THRESHOLD
    max_detections: int = Constants.MAX_DETECTIONS
    labels_file: Optional[Path] = None
    allowed_labels: Tuple[str, ...] = ()

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        _require_positive_int("detection.input_size", self.input_size)
        _require_positive_int("detection.num_classes", self.num_classes)
        _require_unit_interval("detection.confidence_threshold", self.confidence_threshold)
        _require_unit_interval("detection.iou_threshold", self.iou_threshold)
        _require_positive_int("detection.max_detections", self.max_detections)

    @property
    def channels(self) -> int:
        """每个检测槽位的通道数 C = 4 + N_CLASSES"""
        return Constants.BOX_CHANNELS + self.num_classes

    @classmethod
    def from_config(cls, config: DictConfig) -> "DecoderSettings":
        section = config.detection
        labels_file = section.get("labels_file")
        resolved = None
        if labels_file:
            if isinstance(config, SystemConfig):
                resolved = config.resolve_path(labels_file)
            else:
                resolved = Path(labels_file) if Path(labels_file).exists() else None
            if resolved is None:
                raise ConfigError(f"detection.labels_file 不存在: {labels_file}")

        return cls(
            input_size=section.input_size,
            num_classes=section.num_classes,
            confidence_threshold=_as_float("detection.confidence_threshold", section.confidence_threshold),
            nms_enabled=bool(section.nms_enabled),
            iou_threshold=_as_float("detection.iou_threshold", section.iou_threshold),
            max_detections=section.max_detections,
            labels_file=resolved,
            allowed_labels=tuple(section.get("allowed_labels") or ()),
        )


MATCH_STRATEGIES = ("first_fit", "nearest")


@dataclass
class StabilizerSettings:
    """跟踪稳定器设置"""
    position_match_threshold: float = Constants.POSITION_MATCH_THRESHOLD
    stability_frame_count: int = Constants.STABILITY_FRAME_COUNT
    removal_frame_count: int = Constants.REMOVAL_FRAME_COUNT
    lock_confidence_threshold: float = Constants.LOCK_CONFIDENCE_THRESHOLD
    lock_frame_count: int = Constants.LOCK_FRAME_COUNT
    movement_update_threshold: float = Constants.MOVEMENT_UPDATE_THRESHOLD
    min_confidence: float = 0.0
    label_filters: Tuple[str, ...] = ()
    match_strategy: str = "first_fit"

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        _require_non_negative("tracking.position_match_threshold", self.position_match_threshold)
        _require_positive_int("tracking.stability_frame_count", self.stability_frame_count)
        _require_positive_int("tracking.removal_frame_count", self.removal_frame_count)
        _require_unit_interval("tracking.lock_confidence_threshold", self.lock_confidence_threshold)
        _require_positive_int("tracking.lock_frame_count", self.lock_frame_count)
        _require_non_negative("tracking.movement_update_threshold", self.movement_update_threshold)
        _require_unit_interval("tracking.min_confidence", self.min_confidence)
        if self.match_strategy not in MATCH_STRATEGIES:
            raise ConfigError(
                f"tracking.match_strategy 必须是 {MATCH_STRATEGIES} 之一，当前: {self.match_strategy}"
            )

    @classmethod
    def from_config(cls, config: DictConfig) -> "StabilizerSettings":
        # 延迟导入避免循环依赖
        from desk_labels.detection.class_catalog import DEFAULT_DESK_OBJECTS

        section = config.tracking
        filters: List[str] = list(section.get("label_filters") or [])
        if not filters and section.get("use_desk_object_filter", False):
            filters = list(DEFAULT_DESK_OBJECTS)

        return cls(
            position_match_threshold=_as_float("tracking.position_match_threshold", section.position_match_threshold),
            stability_frame_count=section.stability_frame_count,
            removal_frame_count=section.removal_frame_count,
            lock_confidence_threshold=_as_float("tracking.lock_confidence_threshold", section.lock_confidence_threshold),
            lock_frame_count=section.lock_frame_count,
            movement_update_threshold=_as_float("tracking.movement_update_threshold", section.movement_update_threshold),
            min_confidence=_as_float("tracking.min_confidence", section.min_confidence),
            label_filters=tuple(filters),
            match_strategy=section.get("match_strategy", "first_fit"),
        )


@dataclass
class RenderingSettings:
    """标记显示设置"""
    auto_hide_delay: float = Constants.MARKER_AUTO_HIDE_DELAY
    disable_auto_hide: bool = False

    def __post_init__(self):
        _require_non_negative("rendering.auto_hide_delay", self.auto_hide_delay)

    @classmethod
    def from_config(cls, config: DictConfig) -> "RenderingSettings":
        section = config.rendering
        return cls(
            auto_hide_delay=_as_float("rendering.auto_hide_delay", section.auto_hide_delay),
            disable_auto_hide=bool(section.get("disable_auto_hide", False)),
        )
