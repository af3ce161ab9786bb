"""
几何模块 - 世界位姿、几何解析协议、朝向计算
"""
from .resolver import CameraIntrinsics, CameraPose, GeometryResolver, PinholeDepthResolver, WorldPose
from .transforms import IDENTITY_QUATERNION, billboard_rotation, look_rotation, rotate_vector

__all__ = [
    'CameraIntrinsics',
    'CameraPose',
    'GeometryResolver',
    'PinholeDepthResolver',
    'WorldPose',
    'IDENTITY_QUATERNION',
    'billboard_rotation',
    'look_rotation',
    'rotate_vector',
]
