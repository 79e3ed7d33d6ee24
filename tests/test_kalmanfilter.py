import logging

import numpy as np
import pytest

from tracker.botsort.kalmanfilter import KalmanFilter, _cho_factor, chi2inv95


@pytest.fixture
def kf():
    return KalmanFilter()


def test_initiate_zero_velocity(kf):
    mean, cov = kf.initiate(np.array([50., 60., 0.5, 100.]))
    assert mean.shape == (8,)
    assert cov.shape == (8, 8)
    np.testing.assert_allclose(mean[4:], 0.)
    # noise scales with the height
    assert cov[0, 0] == pytest.approx((2 * 100. / 20) ** 2)


def test_predict_moves_by_velocity(kf):
    mean, cov = kf.initiate(np.array([50., 60., 0.5, 100.]))
    mean[4] = 3.
    predicted, predicted_cov = kf.predict(mean, cov)
    assert predicted[0] == pytest.approx(53.)
    assert predicted_cov[0, 0] > cov[0, 0]


def test_update_shrinks_uncertainty(kf):
    mean, cov = kf.initiate(np.array([50., 60., 0.5, 100.]))
    mean, cov = kf.predict(mean, cov)
    new_mean, new_cov = kf.update(mean, cov, np.array([52., 61., 0.5, 101.]))
    assert np.trace(new_cov) < np.trace(cov)
    assert 50. < new_mean[0] < 52.
    np.testing.assert_allclose(new_cov, new_cov.T)


def test_multi_predict_matches_predict(kf):
    means, covs = [], []
    for xyah in ([10., 20., 0.4, 50.], [200., 100., 1.2, 80.]):
        mean, cov = kf.initiate(np.array(xyah))
        mean[4:] = [1., -2., 0.01, 0.5]
        means.append(mean)
        covs.append(cov)

    multi_mean, multi_cov = kf.multi_predict(np.asarray(means), np.asarray(covs))
    for i in range(2):
        mean, cov = kf.predict(means[i], covs[i])
        np.testing.assert_allclose(multi_mean[i], mean)
        np.testing.assert_allclose(multi_cov[i], cov)


def test_multi_predict_empty(kf):
    mean, cov = kf.multi_predict(np.zeros((0, 8)), np.zeros((0, 8, 8)))
    assert mean.shape == (0, 8)
    assert cov.shape == (0, 8, 8)


def test_gating_distance(kf):
    mean, cov = kf.initiate(np.array([50., 60., 0.5, 100.]))
    measurements = np.array([[50., 60., 0.5, 100.], [400., 400., 0.5, 100.]])
    dist = kf.gating_distance(mean, cov, measurements)
    assert dist[0] == pytest.approx(0.)
    assert dist[1] > chi2inv95[4]

    pos_only = kf.gating_distance(mean, cov, measurements, only_position=True)
    assert pos_only.shape == (2,)
    assert pos_only[1] > chi2inv95[2]


def test_singular_covariance_is_regularised(caplog):
    with caplog.at_level(logging.WARNING, logger="tracker.botsort.kalmanfilter"):
        factor, lower = _cho_factor(np.zeros((4, 4)))
    assert lower
    assert np.all(np.isfinite(factor))
    assert "regularised" in caplog.text


def test_update_with_predicted_measurement(kf):
    mean, cov = kf.initiate(np.array([50., 60., 0.5, 100.]))
    mean[4:6] = [2., -1.]
    mean, cov = kf.predict(mean, cov)
    projected, _ = kf.project(mean, cov)
    new_mean, new_cov = kf.update(mean, cov, projected)
    np.testing.assert_allclose(new_mean, mean)
    assert np.trace(new_cov) <= np.trace(cov)
