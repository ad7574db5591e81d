from __future__ import annotations

import asyncio

import numpy as np
import pytest

from conftest import make_pose, solid_frame
from postureai.logic.geometry import MEDIAPIPE_TO_COCO
from postureai.pose.base import EstimationFailure, ThreadedPoseEstimator
from postureai.utils.structures import BodyPart


class BlockingEstimator:
    def __init__(self, error=None):
        self.error = error
        self.closed = False
        self.shapes = []

    def estimate(self, frame):
        self.shapes.append(frame.shape)
        if self.error is not None:
            raise self.error
        return [make_pose()]

    def close(self):
        self.closed = True


def test_threaded_estimator_returns_poses():
    inner = BlockingEstimator()
    estimator = ThreadedPoseEstimator(inner)
    poses = asyncio.run(estimator.estimate(solid_frame(0)))
    estimator.close()
    assert poses == [make_pose()]
    assert inner.shapes == [(480, 640, 3)]
    assert inner.closed


def test_threaded_estimator_wraps_errors():
    estimator = ThreadedPoseEstimator(BlockingEstimator(error=ValueError("bad input")))
    with pytest.raises(EstimationFailure, match="bad input"):
        asyncio.run(estimator.estimate(solid_frame(0)))
    estimator.close()


def test_closed_estimator_refuses_work():
    estimator = ThreadedPoseEstimator(BlockingEstimator())
    estimator.close()
    estimator.close()
    with pytest.raises(EstimationFailure):
        asyncio.run(estimator.estimate(solid_frame(0)))


def test_landmark_mapping_covers_rule_joints():
    mapped = set(MEDIAPIPE_TO_COCO)
    for part in (
        BodyPart.NOSE,
        BodyPart.LEFT_SHOULDER,
        BodyPart.RIGHT_SHOULDER,
        BodyPart.LEFT_HIP,
        BodyPart.RIGHT_HIP,
        BodyPart.LEFT_KNEE,
        BodyPart.RIGHT_KNEE,
        BodyPart.LEFT_ANKLE,
        BodyPart.RIGHT_ANKLE,
    ):
        assert part in mapped
    assert len(np.unique(list(MEDIAPIPE_TO_COCO.values()))) == len(MEDIAPIPE_TO_COCO)
