"""
Rotation helpers for world-anchored markers.

Quaternions are stored as numpy arrays in (x, y, z, w) order, the
convention used by ``scipy.spatial.transform.Rotation``. Look rotations
follow the usual "forward = +Z, up = +Y" marker convention.
"""
from typing import Sequence

import numpy as np
from scipy.spatial.transform import Rotation


EPS = 1e-8
MIN_SQR_DISTANCE = 1e-4

IDENTITY_QUATERNION = np.array([0.0, 0.0, 0.0, 1.0])
WORLD_UP = np.array([0.0, 1.0, 0.0])


def _norm(vec: np.ndarray) -> np.ndarray:
    """Return a unit vector (avoiding division by zero)."""
    vec = np.asarray(vec, dtype=float)
    length = float(np.linalg.norm(vec))
    return vec / (length if length > EPS else EPS)


def look_rotation(forward: Sequence[float], up: Sequence[float] = WORLD_UP) -> np.ndarray:
    """
    Quaternion whose +Z axis points along ``forward`` and whose +Y axis is
    as close to ``up`` as possible.

    Returns the identity for a zero-length forward vector. When forward is
    parallel to up, the world X axis is used as the fallback up hint.
    """
    forward = np.asarray(forward, dtype=float)
    if float(np.linalg.norm(forward)) < EPS:
        return IDENTITY_QUATERNION.copy()

    z_axis = _norm(forward)
    up = np.asarray(up, dtype=float)
    x_axis = np.cross(up, z_axis)
    if float(np.linalg.norm(x_axis)) < EPS:
        x_axis = np.cross(np.array([1.0, 0.0, 0.0]), z_axis)
    x_axis = _norm(x_axis)
    y_axis = np.cross(z_axis, x_axis)

    R = np.column_stack([x_axis, y_axis, z_axis])
    return Rotation.from_matrix(R).as_quat()


def billboard_rotation(marker_position: Sequence[float], camera_position: Sequence[float]) -> np.ndarray:
    """
    Rotation that makes a label at ``marker_position`` readable from the camera.

    The view direction is negated so the label's front face (its -Z side)
    faces the viewer. Identity when the camera sits on the marker.
    """
    direction = np.asarray(camera_position, dtype=float) - np.asarray(marker_position, dtype=float)
    if float(np.dot(direction, direction)) <= MIN_SQR_DISTANCE:
        return IDENTITY_QUATERNION.copy()
    return look_rotation(-_norm(direction))


def rotate_vector(quaternion: Sequence[float], vec: Sequence[float]) -> np.ndarray:
    """Apply an (x, y, z, w) quaternion to a 3-vector."""
    return Rotation.from_quat(np.asarray(quaternion, dtype=float)).apply(np.asarray(vec, dtype=float))
