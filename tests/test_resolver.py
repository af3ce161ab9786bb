"""Depth-based geometry resolution."""

from __future__ import annotations

import numpy as np
import pytest

from conftest import make_detection
from desk_labels.geometry.resolver import (
    CameraIntrinsics,
    CameraPose,
    PinholeDepthResolver,
    WorldPose,
)

WIDTH, HEIGHT = 640, 480


def make_resolver(depth_mm=1000.0):
    intrinsics = CameraIntrinsics(
        fx=500.0, fy=500.0, cx=(WIDTH - 1) / 2.0, cy=(HEIGHT - 1) / 2.0, width=WIDTH, height=HEIGHT
    )
    resolver = PinholeDepthResolver(intrinsics)
    resolver.update_frame(np.full((HEIGHT, WIDTH), depth_mm, dtype=np.uint16))
    return resolver


def test_intrinsics_from_matrix():
    K = np.array([[600.0, 0.0, 320.0], [0.0, 610.0, 240.0], [0.0, 0.0, 1.0]])
    intrinsics = CameraIntrinsics.from_matrix(K, WIDTH, HEIGHT)
    assert (intrinsics.fx, intrinsics.fy, intrinsics.cx, intrinsics.cy) == (600.0, 610.0, 320.0, 240.0)


def test_world_pose_coerces_arrays():
    pose = WorldPose(position=[1, 2, 3])
    assert pose.position.dtype == float
    np.testing.assert_allclose(pose.rotation, [0.0, 0.0, 0.0, 1.0])
    np.testing.assert_allclose(pose.scale, [1.0, 1.0, 1.0])


def test_center_on_flat_plane():
    pose = make_resolver().resolve(make_detection(size=(0.2, 0.1)))

    np.testing.assert_allclose(pose.position, [0.0, 0.0, 1.0], atol=1e-9)
    assert pose.scale[0] > pose.scale[1] > 0.0
    assert pose.scale[0] == pytest.approx(0.2 * 639 / 500.0, rel=0.02)
    # a plane facing the camera gives the identity orientation
    np.testing.assert_allclose(pose.rotation, [0.0, 0.0, 0.0, 1.0], atol=1e-6)


def test_camera_pose_is_applied():
    resolver = make_resolver()
    resolver.update_frame(resolver._depth_frame, CameraPose(position=(1.0, 2.0, 3.0)))

    pose = resolver.resolve(make_detection())

    np.testing.assert_allclose(pose.position, [1.0, 2.0, 4.0], atol=1e-9)
    np.testing.assert_allclose(resolver.camera_position, [1.0, 2.0, 3.0])


def test_invalid_depth_is_a_miss():
    assert make_resolver(depth_mm=0).resolve(make_detection()) is None
    assert make_resolver(depth_mm=9000).resolve(make_detection()) is None


def test_no_depth_frame_is_a_miss():
    resolver = make_resolver()
    resolver.update_frame(None)
    assert resolver.resolve(make_detection()) is None


def test_holes_use_neighbourhood_median():
    resolver = make_resolver()
    depth = np.full((HEIGHT, WIDTH), 800, dtype=np.uint16)
    depth[240, 320] = 0
    resolver.update_frame(depth)

    pose = resolver.resolve(make_detection())
    assert pose.position[2] == pytest.approx(0.8)
