import cv2
import numpy as np
import pytest

from tracker.botsort.gmc import GMC


def texture(height=240, width=320, seed=0):
    rng = np.random.default_rng(seed)
    img = (rng.random((height, width)) * 255).astype(np.uint8)
    img = cv2.GaussianBlur(img, (7, 7), 2)
    return cv2.cvtColor(img, cv2.COLOR_GRAY2BGR)


def test_unknown_method():
    with pytest.raises(ValueError):
        GMC('orb')


@pytest.mark.parametrize("method", ['none', 'ecc', 'sparseOptFlow'])
def test_identity_without_history(method):
    gmc = GMC(method)
    np.testing.assert_allclose(gmc.estimate_warp(None), np.eye(2, 3))
    np.testing.assert_allclose(gmc.estimate_warp(texture()), np.eye(2, 3))


def test_sparse_optflow_recovers_translation():
    gmc = GMC('sparseOptFlow', downscale=1)
    frame = texture()
    shifted = np.roll(frame, shift=(3, 5), axis=(0, 1))

    gmc.estimate_warp(frame)
    warp = gmc.estimate_warp(shifted)
    assert warp.shape == (2, 3)
    np.testing.assert_allclose(warp[:, :2], np.eye(2), atol=0.02)
    np.testing.assert_allclose(warp[:, 2], [5., 3.], atol=1.)


def test_downscale_rescales_translation():
    gmc = GMC('sparseOptFlow', downscale=2)
    frame = texture(480, 640)
    shifted = np.roll(frame, shift=(6, 10), axis=(0, 1))

    gmc.estimate_warp(frame)
    warp = gmc.estimate_warp(shifted)
    np.testing.assert_allclose(warp[:, 2], [10., 6.], atol=2.)


def test_ecc_static_scene():
    gmc = GMC('ecc', downscale=1)
    frame = texture()
    gmc.estimate_warp(frame)
    warp = gmc.estimate_warp(frame.copy())
    np.testing.assert_allclose(warp, np.eye(2, 3), atol=0.05)


def test_resolution_change_restarts():
    gmc = GMC('sparseOptFlow', downscale=1)
    gmc.estimate_warp(texture())
    np.testing.assert_allclose(gmc.estimate_warp(texture(120, 160, seed=1)), np.eye(2, 3))


def test_reset_forgets_previous_frame():
    gmc = GMC('sparseOptFlow', downscale=1)
    frame = texture()
    gmc.estimate_warp(frame)
    gmc.reset()
    np.testing.assert_allclose(gmc.estimate_warp(np.roll(frame, 4, axis=1)), np.eye(2, 3))
