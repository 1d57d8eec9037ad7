#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
rating_predictor/models/effects.py - Regularized additive effects
Author: YourName
Date: 2025-05-12
Description: Global mean, shrunken item effects and shrunken user effects (net of item effects)

The penalized least squares objective

    sum (r - mu - b_i)^2 + lambda * sum b_i^2

decomposes per item, so every effect has the closed form

    b_i = sum(r - mu) / (n_i + lambda)

Items (users) with few ratings are pulled toward 0 more than items with many.
"""

import logging

import numpy as np
import pandas as pd

from rating_predictor.exceptions import EmptyInputError, InvalidParameterError

logger = logging.getLogger(__name__)


def _check_lambda(name, value):
    if value is None or np.isnan(value) or value < 0:
        raise InvalidParameterError(f"{name} must be a non-negative number, got {value}")


def _effect_sums(ids, residuals):
    """Sufficient statistics (sum of residuals, count) per entity"""
    grouped = pd.DataFrame({'id': ids, 'residual': residuals}).groupby('id', sort=True)['residual']
    sums = pd.DataFrame({'sum': grouped.sum(), 'n': grouped.size()})
    sums.index.name = 'id'
    return sums


class EffectTable:
    """Read-only mapping entity_id -> (effect, n) with a default of 0 for unknown ids"""

    default = 0.0

    def __init__(self, effects, counts, lam, kind='item'):
        """
        Args:
            effects (Series): Effect per entity id
            counts (Series): Number of training ratings per entity id
            lam (float): Regularization strength the effects were shrunk with
            kind (str): 'item' or 'user'
        """
        self._effects = effects.astype('float64').copy()
        self._counts = counts.astype('int64').copy()
        self._lookup = self._effects.to_dict()
        self.lam = float(lam)
        self.kind = kind

    @classmethod
    def from_sums(cls, sums, lam, kind='item'):
        """Shrink precomputed (sum, n) statistics with strength lam"""
        _check_lambda('lambda', lam)
        effects = sums['sum'] / (sums['n'] + lam)
        return cls(effects, sums['n'], lam, kind)

    def get(self, entity_id, default=None):
        return self._lookup.get(entity_id, self.default if default is None else default)

    def count(self, entity_id):
        """Training ratings behind the effect of entity_id (0 if unknown)"""
        return int(self._counts.get(entity_id, 0))

    def lookup(self, ids):
        """Vectorized get() for a sequence of ids, unknown ids map to 0"""
        return pd.Series(ids).map(self._lookup).fillna(self.default).to_numpy(dtype='float64')

    def as_frame(self):
        """Copy of the table as a DataFrame with columns effect and n"""
        return pd.DataFrame({'effect': self._effects, 'n': self._counts})

    def top(self, n=10, min_count=0, ascending=False):
        """Entities with the largest (or smallest) effects and their support

        Args:
            n (int): Number of rows
            min_count (int): Ignore entities with fewer training ratings
            ascending (bool): Smallest effects first

        Returns:
            DataFrame: effect and n, sorted
        """
        frame = self.as_frame()
        frame = frame[frame['n'] >= min_count]
        return frame.sort_values('effect', ascending=ascending, kind='mergesort').head(n)

    @property
    def ids(self):
        return self._effects.index.to_numpy(copy=True)

    def __contains__(self, entity_id):
        return entity_id in self._lookup

    def __len__(self):
        return len(self._lookup)

    def __iter__(self):
        return iter(self._lookup)

    def __repr__(self):
        return f"EffectTable(kind={self.kind!r}, lam={self.lam}, n_entities={len(self)})"


def global_mean(train):
    """Arithmetic mean of all training ratings"""
    if len(train) == 0:
        raise EmptyInputError("Cannot estimate the global mean of an empty training set")
    return float(np.mean(train.ratings))


def item_effect_sums(train, mu):
    """Per-item (sum(r - mu), n_i), reusable across a lambda grid"""
    return _effect_sums(train.item_ids, train.ratings - mu)


def user_effect_sums(train, mu, item_effects):
    """Per-user (sum(r - mu - b_i), n_u), reusable across a lambda grid"""
    residuals = train.ratings - mu - item_effects.lookup(train.item_ids)
    return _effect_sums(train.user_ids, residuals)


def item_effects(train, mu, lambda1):
    """Regularized item effects b_i = sum(r - mu) / (n_i + lambda1)

    Args:
        train (RatingStore): Training observations
        mu (float): Global mean
        lambda1 (float): Item regularization strength, >= 0

    Returns:
        EffectTable: Item effects
    """
    _check_lambda('lambda1', lambda1)
    if len(train) == 0:
        raise EmptyInputError("Cannot estimate item effects from an empty training set")
    return EffectTable.from_sums(item_effect_sums(train, mu), lambda1, kind='item')


def user_effects(train, mu, item_effects, lambda2):
    """Regularized user effects on the residual left by the item effects

    b_u = sum(r - mu - b_i) / (n_u + lambda2); an item missing from
    item_effects contributes b_i = 0.

    Args:
        train (RatingStore): Training observations
        mu (float): Global mean
        item_effects (EffectTable): Item effects the users are estimated net of
        lambda2 (float): User regularization strength, >= 0

    Returns:
        EffectTable: User effects
    """
    _check_lambda('lambda2', lambda2)
    if len(train) == 0:
        raise EmptyInputError("Cannot estimate user effects from an empty training set")
    return EffectTable.from_sums(user_effect_sums(train, mu, item_effects), lambda2, kind='user')


class EffectEstimator:
    """Estimates mu, item effects and user effects in that order

    lambda2=None leaves the user effects out (item-only model).
    """

    def __init__(self, lambda1=0.0, lambda2=0.0):
        _check_lambda('lambda1', lambda1)
        if lambda2 is not None:
            _check_lambda('lambda2', lambda2)
        self.lambda1 = lambda1
        self.lambda2 = lambda2

    def fit(self, train):
        """Estimate all additive effects

        Returns:
            tuple: (mu, item EffectTable, user EffectTable or None)
        """
        mu = global_mean(train)
        items = item_effects(train, mu, self.lambda1)
        if self.lambda2 is None:
            logger.info(f"Estimated effects: mu={mu:.4f}, {len(items)} items (lambda1={self.lambda1}), no user effects")
            return mu, items, None
        users = user_effects(train, mu, items, self.lambda2)
        logger.info(f"Estimated effects: mu={mu:.4f}, {len(items)} items (lambda1={self.lambda1}), "
                    f"{len(users)} users (lambda2={self.lambda2})")
        return mu, items, users
