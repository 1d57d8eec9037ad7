import numpy as np
import pytest

from rating_predictor.exceptions import InsufficientDataError, InvalidParameterError
from rating_predictor.models.factor_model import LatentFactorEstimator
from rating_predictor.models.residual_matrix import ResidualMatrix


def make_matrix(values):
    values = np.asarray(values, dtype='float64')
    n_users, n_items = values.shape
    return ResidualMatrix(values=values, observed=values != 0,
                          user_ids=np.arange(100, 100 + n_users), item_ids=np.arange(200, 200 + n_items))


@pytest.fixture
def random_matrix():
    rng = np.random.default_rng(42)
    return make_matrix(rng.normal(size=(12, 6)))


@pytest.mark.parametrize("center", [True, False])
def test_reconstruction_error_decreases_to_zero(random_matrix, center):
    model = LatentFactorEstimator(center=center).fit(random_matrix)
    errors = [model.reconstruction_error(random_matrix, k) for k in range(1, model.rank + 1)]

    assert all(later <= earlier + 1e-10 for earlier, later in zip(errors, errors[1:]))
    assert errors[-1] == pytest.approx(0.0, abs=1e-9)


def test_reconstruction_is_sum_of_rank_one_terms(random_matrix):
    model = LatentFactorEstimator().fit(random_matrix)
    expected = model.offsets.copy()
    for j in range(3):
        expected = expected + np.outer(model.scores[:, j], model.loadings[:, j])
    np.testing.assert_allclose(LatentFactorEstimator().reconstruct(model, 3), expected)


def test_offsets_are_column_means_only_when_centered(random_matrix):
    centered = LatentFactorEstimator(center=True).fit(random_matrix)
    np.testing.assert_allclose(centered.offsets, random_matrix.values.mean(axis=0))

    raw = LatentFactorEstimator(center=False).fit(random_matrix)
    np.testing.assert_array_equal(raw.offsets, np.zeros(random_matrix.shape[1]))
    np.testing.assert_allclose(LatentFactorEstimator(center=False).reconstruct(raw, 2),
                               raw.scores[:, :2] @ raw.loadings[:, :2].T)
    np.testing.assert_allclose(raw.interaction_table(2).values, raw.reconstruct(2))


def test_factors_are_uncorrelated_and_ordered(random_matrix):
    model = LatentFactorEstimator(center=True).fit(random_matrix)

    corr = np.corrcoef(model.scores, rowvar=False)
    np.testing.assert_allclose(corr, np.eye(model.rank), atol=1e-8)
    np.testing.assert_allclose(model.loadings.T @ model.loadings, np.eye(model.rank), atol=1e-10)

    assert np.all(np.diff(model.variance_explained) <= 1e-12)
    assert model.variance_explained.sum() == pytest.approx(1.0)
    assert model.cumulative_variance()[-1] == pytest.approx(1.0)


def test_fit_is_deterministic(random_matrix):
    first = LatentFactorEstimator().fit(random_matrix)
    second = LatentFactorEstimator().fit(random_matrix)
    np.testing.assert_array_equal(first.scores, second.scores)
    np.testing.assert_array_equal(first.loadings, second.loadings)


def test_zero_rows_and_columns_are_tolerated():
    values = np.zeros((5, 4))
    values[1, 2] = 1.5
    values[3, 0] = -0.5
    model = LatentFactorEstimator().fit(make_matrix(values))
    assert model.rank == 4
    assert model.reconstruction_error(values, model.rank) == pytest.approx(0.0, abs=1e-10)


def test_all_zero_matrix_has_no_variance():
    model = LatentFactorEstimator().fit(make_matrix(np.zeros((4, 3))))
    np.testing.assert_array_equal(model.variance_explained, np.zeros(3))
    assert model.rank_for_variance(0.9) == 1
    np.testing.assert_array_equal(model.reconstruct(2), np.zeros((4, 3)))


def test_rank_larger_than_matrix_fails(random_matrix):
    with pytest.raises(InsufficientDataError):
        LatentFactorEstimator().fit(random_matrix, rank=6)
    with pytest.raises(InsufficientDataError):
        LatentFactorEstimator().fit(make_matrix(np.ones((1, 5))))


def test_bad_rank_requests(random_matrix):
    model = LatentFactorEstimator().fit(random_matrix, rank=5)
    with pytest.raises(InvalidParameterError):
        model.reconstruct(0)
    with pytest.raises(InsufficientDataError):
        model.reconstruct(model.rank + 1)
    with pytest.raises(InvalidParameterError):
        LatentFactorEstimator().fit(random_matrix, rank=-1)


def test_rank_for_variance(random_matrix):
    model = LatentFactorEstimator().fit(random_matrix)
    cumulative = model.cumulative_variance()
    k = model.rank_for_variance(0.8)
    assert cumulative[k - 1] >= 0.8
    assert k == 1 or cumulative[k - 2] < 0.8
    assert model.rank_for_variance(1.0) <= model.rank
    with pytest.raises(InvalidParameterError):
        model.rank_for_variance(0.0)


def test_interaction_table_lookup(random_matrix):
    model = LatentFactorEstimator().fit(random_matrix)
    table = model.interaction_table(2)
    reconstruction = model.reconstruct(2)

    assert table.get(100, 200) == pytest.approx(reconstruction[0, 0])
    assert table.get(105, 203) == pytest.approx(reconstruction[5, 3])
    assert table.get(999, 200) == 0.0
    assert table.get(100, 999) == 0.0
    np.testing.assert_allclose(table.lookup([100, 999, 101], [201, 201, 999]),
                               [reconstruction[0, 1], 0.0, 0.0])
