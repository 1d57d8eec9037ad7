#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
rating_predictor/models/residual_matrix.py - Densified residual matrix
Author: YourName
Date: 2025-05-12
Description: Projects well-supported observations into a dense user x item matrix of residuals
"""

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
from scipy.sparse import coo_matrix

from rating_predictor.exceptions import InsufficientDataError, InvalidParameterError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResidualMatrix:
    """Dense residuals over a densified subset of users (rows) and items (columns)

    Unobserved cells hold 0, the "no detectable interaction" value.
    """
    values: np.ndarray
    observed: np.ndarray
    user_ids: np.ndarray
    item_ids: np.ndarray

    def __post_init__(self):
        for array in (self.values, self.observed, self.user_ids, self.item_ids):
            array.setflags(write=False)

    @property
    def shape(self):
        return self.values.shape

    @property
    def n_observed(self):
        return int(self.observed.sum())

    @property
    def density(self):
        size = self.values.size
        return self.n_observed / size if size else 0.0

    def require_rank(self, k):
        """Raise InsufficientDataError unless a rank-k fit leaves at least one spare row and column"""
        n_users, n_items = self.shape
        if n_users < k + 1 or n_items < k + 1:
            raise InsufficientDataError(
                f"Rank {k} needs at least {k + 1} users and items, "
                f"densified matrix is {n_users} x {n_items}")

    def as_frame(self):
        """Residuals as a DataFrame indexed by user_id with item_id columns, NaN where unobserved"""
        values = np.where(self.observed, self.values, np.nan)
        frame = pd.DataFrame(values, index=self.user_ids, columns=self.item_ids)
        frame.index.name = 'user_id'
        frame.columns.name = 'item_id'
        return frame


class ResidualMatrixBuilder:
    """Builds the zero-filled residual matrix fed to the latent factor estimator"""

    def __init__(self, item_min_count=50, user_min_count=50):
        """
        Args:
            item_min_count (int): Keep items with at least this many training ratings
            user_min_count (int): Keep users with at least this many training ratings
        """
        if item_min_count < 0 or user_min_count < 0:
            raise InvalidParameterError(
                f"Minimum counts must be non-negative, got item={item_min_count}, user={user_min_count}")
        self.item_min_count = item_min_count
        self.user_min_count = user_min_count

    def select(self, train, support=None):
        """Pick the densified users and items

        Counts are taken over the whole training set; support (usually the
        evaluation set) then restricts the selection to ids it contains.

        Returns:
            tuple: (user_ids, item_ids) as sorted arrays
        """
        item_counts = train.item_counts()
        user_counts = train.user_counts()
        items = item_counts.index[item_counts >= self.item_min_count]
        users = user_counts.index[user_counts >= self.user_min_count]

        if support is not None:
            items = items[items.isin(support.item_ids)]
            users = users[users.isin(support.user_ids)]

        return np.sort(users.to_numpy()), np.sort(items.to_numpy())

    def build(self, train, mu, item_effects=None, user_effects=None, support=None):
        """Assemble residuals r - mu - b_i - b_u for the densified subset

        Args:
            train (RatingStore): Training observations
            mu (float): Global mean
            item_effects (EffectTable): Item effects, None for none
            user_effects (EffectTable): User effects, None for none
            support (RatingStore): Optional evaluation set the rows/columns must appear in

        Returns:
            ResidualMatrix: Dense residuals, missing cells filled with 0
        """
        users, items = self.select(train, support)
        if len(users) == 0 or len(items) == 0:
            raise InsufficientDataError(
                f"No users/items left after thresholds (user_min_count={self.user_min_count}, "
                f"item_min_count={self.item_min_count}): {len(users)} users, {len(items)} items")

        df = train.frame
        df = df[df['user_id'].isin(users) & df['item_id'].isin(items)]

        residuals = df['rating'].to_numpy() - mu
        if item_effects is not None:
            residuals = residuals - item_effects.lookup(df['item_id'].to_numpy())
        if user_effects is not None:
            residuals = residuals - user_effects.lookup(df['user_id'].to_numpy())

        rows = pd.Index(users).get_indexer(df['user_id'])
        cols = pd.Index(items).get_indexer(df['item_id'])
        shape = (len(users), len(items))

        values = coo_matrix((residuals, (rows, cols)), shape=shape).toarray()
        observed = np.zeros(shape, dtype=bool)
        observed[rows, cols] = True

        matrix = ResidualMatrix(values=values, observed=observed, user_ids=users, item_ids=items)
        logger.info(f"Residual matrix: {shape[0]} users x {shape[1]} items, "
                    f"{matrix.n_observed} observed cells (density {matrix.density:.4f})")
        return matrix
