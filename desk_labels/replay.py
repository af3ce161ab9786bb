#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
离线回放脚本

将保存的模型输出（.npy）逐个送入检测流水线，打印每个周期的可见标签。
几何解析使用恒定深度平面（所有检测位于相机前方 depth_m 米处）。

用法:
    python -m desk_labels.replay outputs/ --depth-m 0.8 --fps 30
"""
import argparse
import sys
from pathlib import Path
from typing import List

import numpy as np

from .core.config_loader import ConfigError, apply_env_overrides, get_config, load_config
from .core.logger import configure_logging, logger
from .geometry.resolver import CameraIntrinsics, CameraPose, PinholeDepthResolver
from .pipeline import DetectionPipeline


def collect_tensor_files(paths: List[str]) -> List[Path]:
    """展开文件/目录参数，按文件名排序"""
    files: List[Path] = []
    for item in paths:
        path = Path(item)
        if path.is_dir():
            files.extend(sorted(path.glob("*.npy")))
        elif path.suffix == ".npy" and path.exists():
            files.append(path)
        else:
            logger.warning(f"忽略无效输入: {path}")
    return files


def build_resolver(width: int, height: int, depth_m: float) -> PinholeDepthResolver:
    """恒定深度平面解析器（焦距取图像宽度）"""
    intrinsics = CameraIntrinsics(
        fx=float(width), fy=float(width),
        cx=(width - 1) / 2.0, cy=(height - 1) / 2.0,
        width=width, height=height,
    )
    resolver = PinholeDepthResolver(intrinsics)
    depth_frame = np.full((height, width), depth_m / resolver.depth_scale, dtype=np.float32)
    resolver.update_frame(depth_frame, CameraPose())
    return resolver


def replay(args: argparse.Namespace) -> bool:
    """
    执行回放

    Returns:
        bool: 是否成功
    """
    if args.fps <= 0 or args.depth_m <= 0:
        logger.error("--fps 和 --depth-m 必须为正数")
        return False

    files = collect_tensor_files(args.inputs)
    if not files:
        logger.error("没有找到可回放的 .npy 文件")
        return False

    try:
        config = load_config(args.config) if args.config else get_config()
        config = apply_env_overrides(config)
        configure_logging(config)
        resolver = build_resolver(args.width, args.height, args.depth_m)
        pipeline = DetectionPipeline.from_config(config, resolver=resolver)
    except (ConfigError, FileNotFoundError, ValueError) as e:
        logger.error(f"初始化失败: {e}")
        return False

    frame_interval = 1.0 / args.fps
    camera_position = resolver.camera_position

    for index, tensor_file in enumerate(files):
        try:
            tensor = np.load(tensor_file)
        except (OSError, ValueError, EOFError) as e:
            logger.warning(f"无法读取 {tensor_file.name}，跳过: {e}")
            continue

        pipeline.publish(tensor)
        result = pipeline.run_cycle(camera_position, now=index * frame_interval)
        if result is None:
            continue

        labels = ", ".join(
            f"{s.display_text}@({s.position[0]:.2f}, {s.position[1]:.2f}, {s.position[2]:.2f})"
            for s in result.visible
        )
        logger.info(f"[{tensor_file.name}] 周期 {result.cycle}: {labels or '无可见标签'}")
        if result.removed:
            logger.info(f"  删除: {', '.join(result.removed)}")

    pipeline.stop(now=len(files) * frame_interval)
    logger.info(f"回放完成: {pipeline.monitor.get_stats()}")
    return True


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="回放保存的 YOLO 输出 tensor")
    parser.add_argument("inputs", nargs="+", help=".npy 文件或包含 .npy 的目录")
    parser.add_argument("--config", default=None, help="system_config.json 路径")
    parser.add_argument("--depth-m", type=float, default=0.8, help="恒定深度（米）")
    parser.add_argument("--width", type=int, default=640, help="相机图像宽度")
    parser.add_argument("--height", type=int, default=480, help="相机图像高度")
    parser.add_argument("--fps", type=float, default=30.0, help="回放帧率")
    return parser.parse_args(argv)


def main(argv=None):
    """命令行入口"""
    success = replay(parse_args(argv))
    return 0 if success else 1


if __name__ == "__main__":
    sys.exit(main())
