from __future__ import annotations

import numpy as np

from conftest import make_pose, solid_frame
from postureai.logic.rules import SLOUCHING, PostureClassifier
from postureai.ui.overlay import PostureOverlay
from postureai.utils.structures import AnalysisResult


def test_without_a_result_the_frame_is_unchanged():
    frame = solid_frame(40)
    drawn = PostureOverlay().draw(frame, None, None)
    assert drawn is not frame
    assert np.array_equal(drawn, frame)


def test_good_posture_skeleton_is_green():
    frame = solid_frame(0)
    result = PostureClassifier().classify([make_pose()])
    drawn = PostureOverlay().draw(frame, make_pose(), result)
    blue, green, red = drawn[400, 210]
    assert green > red
    assert green > 100
    # input frame untouched
    assert not frame.any()


def test_poor_posture_skeleton_is_red():
    result = AnalysisResult.from_issues([SLOUCHING], 0.9, 0.0)
    drawn = PostureOverlay().draw(solid_frame(0), make_pose(), result)
    blue, green, red = drawn[400, 210]
    assert red > green


def test_low_score_joints_are_not_drawn():
    pose = make_pose(left_knee=(400, 300, 0.1))
    result = PostureClassifier().classify([pose])
    drawn = PostureOverlay(min_score=0.3).draw(solid_frame(0), pose, result)
    assert not drawn[295:306, 395:406].any()


def test_skeleton_can_be_hidden():
    result = PostureClassifier().classify([make_pose()])
    drawn = PostureOverlay().draw(solid_frame(0), make_pose(), result, show_skeleton=False)
    assert not drawn[400, 210].any()
