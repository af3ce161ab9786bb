"""
几何解析 - 2D 归一化检测框 -> 3D 世界位姿

跟踪器只消费解析结果（WorldPose），不关心其来源。
GeometryResolver 是协议；PinholeDepthResolver 是基于深度图 + 相机内参的参考实现：
- 中心点邻域中值采样深度（抗噪声），无效深度视为“射线未命中”，返回 None
- 角点射线按中心点距离取点，计算标记宽高
- 由深度邻域估计表面法线，标记朝向与法线相反
"""
from dataclasses import dataclass, field
from typing import Optional, Protocol, Sequence, Tuple

import numpy as np

from ..core.logger import logger
from ..detection.data_types import RawDetection
from .transforms import IDENTITY_QUATERNION, MIN_SQR_DISTANCE, look_rotation


@dataclass
class WorldPose:
    """世界坐标系下的位姿（位置 / 四元数 xyzw / 缩放）"""
    position: np.ndarray
    rotation: np.ndarray = field(default_factory=lambda: IDENTITY_QUATERNION.copy())
    scale: np.ndarray = field(default_factory=lambda: np.ones(3))

    def __post_init__(self):
        self.position = np.asarray(self.position, dtype=float).reshape(3)
        self.rotation = np.asarray(self.rotation, dtype=float).reshape(4)
        self.scale = np.asarray(self.scale, dtype=float).reshape(3)


class GeometryResolver(Protocol):
    """外部几何解析协议：未命中返回 None（跳过该检测，不是错误）"""

    def resolve(self, detection: RawDetection) -> Optional[WorldPose]:
        ...


@dataclass
class CameraIntrinsics:
    """针孔相机内参（像素）"""
    fx: float
    fy: float
    cx: float
    cy: float
    width: int
    height: int

    @classmethod
    def from_matrix(cls, camera_matrix: np.ndarray, width: int, height: int) -> "CameraIntrinsics":
        """从 3x3 内参矩阵构建"""
        K = np.asarray(camera_matrix, dtype=float)
        return cls(fx=K[0, 0], fy=K[1, 1], cx=K[0, 2], cy=K[1, 2], width=width, height=height)


@dataclass
class CameraPose:
    """相机在世界坐标系中的位姿（rotation 将相机坐标系向量转到世界坐标系）"""
    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))

    def __post_init__(self):
        self.position = np.asarray(self.position, dtype=float).reshape(3)
        self.rotation = np.asarray(self.rotation, dtype=float).reshape(3, 3)

    def to_world(self, point_cam: np.ndarray) -> np.ndarray:
        return self.rotation @ np.asarray(point_cam, dtype=float) + self.position


class PinholeDepthResolver:
    """
    基于深度图的几何解析器

    使用方法：
        resolver = PinholeDepthResolver(intrinsics)

        # 每帧调用
        resolver.update_frame(depth_frame, camera_pose)
        pose = resolver.resolve(detection)
    """

    def __init__(
        self,
        intrinsics: CameraIntrinsics,
        depth_scale: float = 0.001,
        depth_range_m: Tuple[float, float] = (0.1, 5.0),
        neighbor_size: int = 5,
        normal_offset_px: int = 4,
        world_up: Sequence[float] = (0.0, 1.0, 0.0),
    ):
        """
        Args:
            intrinsics: 相机内参
            depth_scale: 深度图单位到米的换算（默认毫米 -> 米）
            depth_range_m: 有效深度范围（米）
            neighbor_size: 深度邻域采样窗口大小（像素）
            normal_offset_px: 法线估计的像素偏移
            world_up: 世界坐标系向上方向
        """
        self.intrinsics = intrinsics
        self.depth_scale = float(depth_scale)
        self.depth_range_m = depth_range_m
        self.neighbor_size = max(1, int(neighbor_size))
        self.normal_offset_px = max(1, int(normal_offset_px))
        self.world_up = np.asarray(world_up, dtype=float)

        self._depth_frame: Optional[np.ndarray] = None
        self._camera_pose = CameraPose()

    def update_frame(self, depth_frame: Optional[np.ndarray], camera_pose: Optional[CameraPose] = None):
        """更新当前深度帧和相机位姿"""
        self._depth_frame = depth_frame
        if camera_pose is not None:
            self._camera_pose = camera_pose

    @property
    def camera_position(self) -> np.ndarray:
        return self._camera_pose.position

    def _to_pixel(self, u: float, v: float) -> Tuple[float, float]:
        """归一化坐标 -> 传感器像素坐标（先裁剪到 [0, 1]）"""
        u = min(max(u, 0.0), 1.0)
        v = min(max(v, 0.0), 1.0)
        return u * (self.intrinsics.width - 1), v * (self.intrinsics.height - 1)

    def _ray_direction(self, px: float, py: float) -> np.ndarray:
        """相机坐标系下的单位射线方向（OpenCV 约定：x 右，y 下，z 前）"""
        ray = np.array([
            (px - self.intrinsics.cx) / self.intrinsics.fx,
            (py - self.intrinsics.cy) / self.intrinsics.fy,
            1.0,
        ])
        return ray / np.linalg.norm(ray)

    def _sample_depth_m(self, px: float, py: float) -> Optional[float]:
        """邻域中值采样深度（米），无有效值时返回 None"""
        depth = self._depth_frame
        h, w = depth.shape[:2]
        ix, iy = int(round(px)), int(round(py))
        if ix < 0 or iy < 0 or ix >= w or iy >= h:
            return None

        half = self.neighbor_size // 2
        region = depth[max(0, iy - half):iy + half + 1, max(0, ix - half):ix + half + 1]
        values = region.astype(float).ravel() * self.depth_scale

        min_d, max_d = self.depth_range_m
        valid = values[(values > min_d) & (values < max_d)]
        if valid.size == 0:
            return None
        return float(np.median(valid))

    def _back_project(self, px: float, py: float, z_m: float) -> np.ndarray:
        """像素 + 深度 -> 相机坐标系 3D 点"""
        x = (px - self.intrinsics.cx) * z_m / self.intrinsics.fx
        y = (py - self.intrinsics.cy) * z_m / self.intrinsics.fy
        return np.array([x, y, z_m])

    def _estimate_normal_cam(self, px: float, py: float, center_cam: np.ndarray) -> np.ndarray:
        """由深度邻域估计表面法线（朝向相机）；失败时退回视线反方向"""
        fallback = -center_cam / max(float(np.linalg.norm(center_cam)), 1e-8)
        k = self.normal_offset_px

        samples = []
        for dx, dy in ((k, 0), (-k, 0), (0, k), (0, -k)):
            z = self._sample_depth_m(px + dx, py + dy)
            if z is None:
                return fallback
            samples.append(self._back_project(px + dx, py + dy, z))

        normal = np.cross(samples[0] - samples[1], samples[2] - samples[3])
        length = float(np.linalg.norm(normal))
        if length < 1e-8:
            return fallback
        normal /= length
        # 法线指向相机
        if float(np.dot(normal, center_cam)) > 0:
            normal = -normal
        return normal

    def resolve(self, detection: RawDetection) -> Optional[WorldPose]:
        """
        解析检测的世界位姿

        Args:
            detection: 归一化检测框

        Returns:
            WorldPose；无深度帧或中心深度无效时返回 None
        """
        if self._depth_frame is None:
            logger.debug("几何解析: 无深度帧，跳过")
            return None

        px, py = self._to_pixel(*detection.center)
        z_m = self._sample_depth_m(px, py)
        if z_m is None:
            return None

        center_cam = self._back_project(px, py, z_m)
        distance_m = float(np.linalg.norm(center_cam))

        # 角点射线在中心点距离处取点，得到标记宽高
        x1, y1, x2, y2 = detection.to_xyxy()
        tl = self._ray_direction(*self._to_pixel(x1, y1)) * distance_m
        tr = self._ray_direction(*self._to_pixel(x2, y1)) * distance_m
        bl = self._ray_direction(*self._to_pixel(x1, y2)) * distance_m
        scale = np.array([np.linalg.norm(tr - tl), np.linalg.norm(bl - tl), 1.0])

        normal_world = self._camera_pose.rotation @ self._estimate_normal_cam(px, py, center_cam)
        if float(np.dot(normal_world, normal_world)) > MIN_SQR_DISTANCE:
            rotation = look_rotation(-normal_world, self.world_up)
        else:
            rotation = IDENTITY_QUATERNION.copy()

        return WorldPose(
            position=self._camera_pose.to_world(center_cam),
            rotation=rotation,
            scale=scale,
        )
