import numpy as np
import pandas as pd
import pytest

from rating_predictor.data.rating_store import RatingStore

N_USERS = 60
N_ITEMS = 40


@pytest.fixture(scope="session")
def synthetic_frame():
    """Ratings with known structure: mu + b_i + b_u + rank-2 interaction + small noise"""
    rng = np.random.default_rng(0)
    item_bias = rng.normal(0.0, 0.5, N_ITEMS)
    user_bias = rng.normal(0.0, 0.3, N_USERS)
    p = rng.normal(0.0, 0.7, (N_USERS, 2))
    q = rng.normal(0.0, 0.7, (N_ITEMS, 2))

    rows = []
    for u in range(N_USERS):
        for i in range(N_ITEMS):
            if rng.random() < 0.6:
                rating = 3.5 + item_bias[i] + user_bias[u] + p[u] @ q[i] + rng.normal(0.0, 0.1)
                rows.append((u, i, rating))
    return pd.DataFrame(rows, columns=['user_id', 'item_id', 'rating'])


@pytest.fixture(scope="session")
def synthetic_store(synthetic_frame):
    return RatingStore.load(synthetic_frame)


@pytest.fixture(scope="session")
def synthetic_split(synthetic_store):
    return synthetic_store.split(seed=1, test_fraction=0.1)


@pytest.fixture
def small_store():
    # item 10: ratings 5, 4, 3 ; item 20: 1, 2 ; item 30: 4.5
    return RatingStore.load([
        (1, 10, 5.0),
        (2, 10, 4.0),
        (3, 10, 3.0),
        (1, 20, 1.0),
        (2, 20, 2.0),
        (3, 30, 4.5),
    ])
