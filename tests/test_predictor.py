import numpy as np
import pandas as pd
import pytest

from rating_predictor.data.rating_store import RatingStore
from rating_predictor.models.effects import EffectTable
from rating_predictor.models.predictor import BiasFactorModel, Predictor


@pytest.fixture(scope="module")
def fitted_model(synthetic_split):
    train, test = synthetic_split
    return BiasFactorModel(lambda1=2.0, lambda2=2.0, rank=2, item_min_count=5,
                           user_min_count=5).fit(train, support=test)


def test_prediction_is_sum_of_terms(fitted_model, synthetic_split):
    _, test = synthetic_split
    user_id, item_id = test.pairs()[0]
    expected = (fitted_model.mu + fitted_model.item_effects.get(item_id)
                + fitted_model.user_effects.get(user_id)
                + fitted_model.predictor.interaction.get(user_id, item_id))
    assert fitted_model.predict(user_id, item_id) == pytest.approx(expected)


def test_cold_start_user_falls_back_to_item_effect(fitted_model):
    item_id = 3
    expected = fitted_model.mu + fitted_model.item_effects.get(item_id)
    assert fitted_model.predict(10_000, item_id) == expected


def test_cold_start_user_and_item_fall_back_to_mean(fitted_model):
    assert fitted_model.predict(10_000, 20_000) == fitted_model.mu


def test_pair_outside_densified_matrix_has_no_interaction(synthetic_split):
    train, _ = synthetic_split
    # user 999 has too few ratings for the residual matrix but still gets a user effect
    sparse_user = pd.DataFrame({'user_id': [999, 999, 999], 'item_id': [0, 1, 2], 'rating': [5.0, 5.0, 4.5]})
    store = RatingStore.load(pd.concat([train.frame, sparse_user], ignore_index=True))
    model = BiasFactorModel(lambda1=1.0, lambda2=1.0, rank=1, item_min_count=5,
                            user_min_count=5).fit(store)

    assert 999 not in model.residual_matrix.user_ids
    assert 999 in model.user_effects
    expected = model.mu + model.item_effects.get(1) + model.user_effects.get(999)
    assert model.predict(999, 1) == expected


def test_predict_many_matches_predict(fitted_model, synthetic_split):
    _, test = synthetic_split
    pairs = test.pairs()[:20] + [(10_000, 3), (10_000, 20_000)]
    batch = fitted_model.predict_many(pairs)
    single = [fitted_model.predict(u, i) for u, i in pairs]
    np.testing.assert_allclose(batch, single)

    frame = pd.DataFrame(pairs, columns=['user_id', 'item_id'])
    np.testing.assert_allclose(fitted_model.predict_many(frame), single)


def test_predict_many_of_nothing(fitted_model):
    assert len(fitted_model.predict_many([])) == 0


def test_variants(fitted_model):
    variants = fitted_model.variants()
    assert list(variants) == ['just_the_average', 'item_effect', 'item_user_effect', 'item_user_interaction']
    assert variants['just_the_average'].predict(1, 1) == fitted_model.mu
    assert variants['item_effect'].predict(1, 1) == fitted_model.mu + fitted_model.item_effects.get(1)


def test_bias_only_model_has_no_interaction(synthetic_split):
    train, _ = synthetic_split
    model = BiasFactorModel(lambda1=1.0, lambda2=1.0).fit(train)
    assert model.factor_model is None
    assert 'item_user_interaction' not in model.variants()


def test_item_only_model(synthetic_split, tmp_path):
    train, test = synthetic_split
    model = BiasFactorModel(lambda1=1.0, lambda2=None).fit(train)

    assert model.user_effects is None
    assert model.name == 'item_effect'
    assert list(model.variants()) == ['just_the_average', 'item_effect']
    assert model.predict(10_000, 3) == model.mu + model.item_effects.get(3)
    np.testing.assert_allclose(model.predict_many(test), model.variants()['item_effect'].predict_many(test))

    assert model.save(str(tmp_path / 'item_only'))
    loaded = BiasFactorModel().load(str(tmp_path / 'item_only'))
    assert loaded.lambda2 is None and loaded.user_effects is None
    np.testing.assert_allclose(loaded.predict_many(test), model.predict_many(test))


def test_rating_range_clips():
    items = EffectTable(pd.Series({1: 3.0, 2: -5.0}), pd.Series({1: 10, 2: 10}), lam=0.0)
    predictor = Predictor(3.0, items, rating_range=(1.0, 5.0))
    assert predictor.predict(0, 1) == 5.0
    assert predictor.predict(0, 2) == 1.0
    np.testing.assert_array_equal(predictor.predict_many([(0, 1), (0, 2), (0, 3)]), [5.0, 1.0, 3.0])


def test_unfitted_model_raises():
    with pytest.raises(RuntimeError):
        BiasFactorModel().predict(1, 1)


def test_save_and_load(fitted_model, synthetic_split, tmp_path):
    _, test = synthetic_split
    assert fitted_model.save(str(tmp_path / 'model'))

    loaded = BiasFactorModel().load(str(tmp_path / 'model'))
    assert loaded.rank == 2
    assert loaded.lambda1 == 2.0
    np.testing.assert_allclose(loaded.predict_many(test), fitted_model.predict_many(test))
