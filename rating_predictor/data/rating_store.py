#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
rating_predictor/data/rating_store.py - Immutable store of rating observations
Author: YourName
Date: 2025-05-12
Description: Holds the tidy (user, item, rating) table and splits it into train/test partitions
"""

import logging
from typing import Iterator, NamedTuple, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.model_selection import train_test_split

from rating_predictor.exceptions import (EmptyInputError, InsufficientDataError,
                                         InvalidParameterError)

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ['user_id', 'item_id', 'rating']

# Common spellings of the id columns in public rating dumps (MovieLens, Netflix, ...)
COLUMN_ALIASES = {
    'userId': 'user_id',
    'user': 'user_id',
    'movieId': 'item_id',
    'movie_id': 'item_id',
    'itemId': 'item_id',
    'item': 'item_id',
}


class Observation(NamedTuple):
    user_id: int
    item_id: int
    rating: float
    timestamp: Optional[int] = None


class RatingStore:
    """Ordered, read-only collection of rating observations"""

    def __init__(self, df):
        """Wrap an already normalized DataFrame. Use RatingStore.load() to build one.

        Args:
            df (DataFrame): Frame with user_id, item_id, rating (and optionally timestamp)
        """
        self._df = df.reset_index(drop=True)

    @classmethod
    def load(cls, observations):
        """Build a store from observations

        Args:
            observations: DataFrame, or iterable of Observation / (user, item, rating[, timestamp]) tuples

        Returns:
            RatingStore: New store
        """
        if isinstance(observations, pd.DataFrame):
            df = observations.rename(columns=COLUMN_ALIASES).copy()
        else:
            records = [tuple(obs) for obs in observations]
            if not records:
                raise EmptyInputError("No observations to load")
            width = max(len(record) for record in records)
            columns = REQUIRED_COLUMNS + (['timestamp'] if width > 3 else [])
            records = [record + (None,) * (len(columns) - len(record)) for record in records]
            df = pd.DataFrame.from_records(records, columns=columns)

        missing_cols = [col for col in REQUIRED_COLUMNS if col not in df.columns]
        if missing_cols:
            raise InvalidParameterError(f"Ratings table missing required columns: {missing_cols}")

        columns = REQUIRED_COLUMNS + (['timestamp'] if 'timestamp' in df.columns else [])
        df = df[columns]

        n_missing = int(df['rating'].isna().sum())
        if n_missing:
            logger.warning(f"Dropping {n_missing} observations without a rating")
            df = df.dropna(subset=['rating'])

        if len(df) == 0:
            raise EmptyInputError("No observations to load")

        df = df.astype({'user_id': 'int64', 'item_id': 'int64', 'rating': 'float64'})

        duplicated = df.duplicated(subset=['user_id', 'item_id'], keep='last')
        if duplicated.any():
            logger.warning(f"Found {int(duplicated.sum())} repeated (user, item) ratings, keeping the last one")
            df = df[~duplicated]

        logger.info(f"Loaded {len(df)} observations "
                    f"({df['user_id'].nunique()} users, {df['item_id'].nunique()} items)")
        return cls(df)

    @classmethod
    def from_csv(cls, path, **read_csv_kwargs):
        """Read a ratings CSV with pandas and load it

        Args:
            path (str): CSV file path
            **read_csv_kwargs: Passed through to pandas.read_csv

        Returns:
            RatingStore: New store
        """
        logger.info(f"Reading ratings from {path}")
        return cls.load(pd.read_csv(path, **read_csv_kwargs))

    def split(self, seed=1, test_fraction=0.1, move_unseen_to_train=False) -> Tuple["RatingStore", "RatingStore"]:
        """Split into disjoint train/test partitions

        The test partition holds round(N * test_fraction) rows drawn uniformly
        without replacement; the same seed and input order give the same split.

        Args:
            seed (int): Random seed of the row sample
            test_fraction (float): Share of rows for the test partition, in (0, 1)
            move_unseen_to_train (bool): Move test rows whose user or item never
                appears in train back into train

        Returns:
            tuple: (train, test) stores
        """
        if not 0 < test_fraction < 1:
            raise InvalidParameterError(f"test_fraction must be in (0, 1), got {test_fraction}")

        n = len(self._df)
        n_test = int(np.floor(n * test_fraction + 0.5))
        if n_test == 0 or n_test >= n:
            raise InsufficientDataError(
                f"Cannot split {n} observations with test_fraction={test_fraction}")

        train_idx, test_idx = train_test_split(
            np.arange(n), test_size=n_test, random_state=seed, shuffle=True
        )
        train_df = self._df.iloc[np.sort(train_idx)]
        test_df = self._df.iloc[np.sort(test_idx)]

        if move_unseen_to_train:
            unseen = (~test_df['user_id'].isin(train_df['user_id'])
                      | ~test_df['item_id'].isin(train_df['item_id']))
            if unseen.any():
                logger.info(f"Moving {int(unseen.sum())} test rows with unseen users/items back to train")
                train_df = self._df.loc[np.sort(np.concatenate([train_df.index, test_df.index[unseen]]))]
                test_df = test_df[~unseen]

        logger.info(f"Split data, train: {len(train_df)} rows, test: {len(test_df)} rows")
        return RatingStore(train_df), RatingStore(test_df)

    @property
    def frame(self):
        """Copy of the underlying table"""
        return self._df.copy()

    @property
    def ratings(self):
        return self._df['rating'].to_numpy(copy=True)

    @property
    def user_ids(self):
        return self._df['user_id'].to_numpy(copy=True)

    @property
    def item_ids(self):
        return self._df['item_id'].to_numpy(copy=True)

    def pairs(self):
        """(user_id, item_id) pairs in store order"""
        return list(zip(self._df['user_id'].tolist(), self._df['item_id'].tolist()))

    def user_counts(self):
        """Number of ratings per user"""
        return self._df.groupby('user_id').size()

    def item_counts(self):
        """Number of ratings per item"""
        return self._df.groupby('item_id').size()

    def summary(self):
        """Size and sparsity statistics of the store"""
        n_users = self._df['user_id'].nunique()
        n_items = self._df['item_id'].nunique()
        return {
            'n_ratings': len(self._df),
            'n_users': n_users,
            'n_items': n_items,
            'density': len(self._df) / (n_users * n_items) if n_users and n_items else 0.0,
            'mean_rating': float(self._df['rating'].mean()) if len(self._df) else float('nan'),
            'std_rating': float(self._df['rating'].std()) if len(self._df) > 1 else float('nan'),
        }

    def __len__(self):
        return len(self._df)

    def __iter__(self) -> Iterator[Observation]:
        has_timestamp = 'timestamp' in self._df.columns
        for row in self._df.itertuples(index=False):
            yield Observation(row.user_id, row.item_id, row.rating,
                              row.timestamp if has_timestamp else None)

    def __repr__(self):
        return f"RatingStore(n_ratings={len(self._df)})"
