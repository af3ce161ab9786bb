"""
日志配置模块

日志参数来自 SystemConfig 的 logging / paths 段：
- 导入时用 get_config() 的配置创建默认 logger
- 加载了指定配置文件后，调用 configure_logging(config) 重新应用
"""
import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from .config_loader import DictConfig, SystemConfig, default_config, get_config

LOGGER_NAME = 'DeskLabels'
LEVEL_ENV = 'DESK_LABELS_LOG_LEVEL'

_FORMATTER = logging.Formatter(
    '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)


def _parse_level(value, default: int = logging.INFO) -> int:
    if isinstance(value, int):
        return value
    return getattr(logging, str(value).upper(), default)


def _resolve_level(level: Optional[int], section: DictConfig) -> int:
    """优先级：环境变量 > 参数 > 配置 > INFO"""
    env_level = os.getenv(LEVEL_ENV)
    if env_level:
        return _parse_level(env_level)
    if level is not None:
        return _parse_level(level)
    return _parse_level(section.get('level', 'INFO'))


def _file_handler(name: str, log_dir: Path, rotation: str, max_size_mb: int) -> logging.Handler:
    """daily: 按日期命名；其他: 按大小轮转（保留 5 个备份）"""
    log_dir.mkdir(parents=True, exist_ok=True)
    if rotation == 'daily':
        log_file = log_dir / f'{name}_{datetime.now().strftime("%Y%m%d")}.log'
        return logging.FileHandler(log_file, encoding='utf-8')
    return RotatingFileHandler(
        log_dir / f'{name}.log',
        maxBytes=int(max_size_mb) * 1024 * 1024,
        backupCount=5,
        encoding='utf-8'
    )


def _load_default_config() -> SystemConfig:
    try:
        return get_config()
    except (OSError, ValueError) as e:
        # 配置加载失败时使用默认值（不影响日志系统启动）
        print(f"Warning: 无法加载 system_config.json，使用默认日志配置: {e}")
        return default_config()


def setup_logger(
    name: str = LOGGER_NAME,
    level: Optional[int] = None,
    config: Optional[SystemConfig] = None,
    reconfigure: bool = False,
) -> logging.Logger:
    """
    按配置创建 logger

    Args:
        name: 日志名称
        level: 日志级别（覆盖配置，低于环境变量 DESK_LABELS_LOG_LEVEL）
        config: 系统配置（None 时使用 get_config()）
        reconfigure: 已有 handler 时是否移除后重建

    Returns:
        logger: 配置好的日志对象
    """
    config = config if config is not None else _load_default_config()
    section = config.logging
    resolved_level = _resolve_level(level, section)

    logger = logging.getLogger(name)
    logger.setLevel(resolved_level)

    if logger.handlers:
        if not reconfigure:
            return logger
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()

    handlers = []
    if section.get('enable_console', True):
        handlers.append(logging.StreamHandler())
    if section.get('enable_file', False):
        log_dir = Path(config.paths.get('logs_dir', 'logs'))
        handlers.append(_file_handler(
            name,
            log_dir,
            section.get('file_rotation', 'daily'),
            section.get('max_size_mb', 100),
        ))

    for handler in handlers:
        handler.setLevel(resolved_level)
        handler.setFormatter(_FORMATTER)
        logger.addHandler(handler)

    return logger


def configure_logging(config: SystemConfig) -> logging.Logger:
    """用指定配置重建默认 logger 的 handler"""
    return setup_logger(config=config, reconfigure=True)


def debug_enabled(flag: str) -> bool:
    """检查调试开关环境变量（例如 DESK_LABELS_DEBUG_DECODE=1）"""
    return os.getenv(flag, '0') == '1'


logger = setup_logger()
