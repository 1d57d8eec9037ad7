#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
rating_predictor/models/factor_model.py - Latent factor (PCA) model of the residuals
Author: YourName
Date: 2025-05-12
Description: Decomposes the residual matrix into orthogonal factor pairs and rebuilds rank-k interactions
"""

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
from scipy import linalg
from sklearn.utils.extmath import svd_flip

from rating_predictor.exceptions import InsufficientDataError, InvalidParameterError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InteractionTable:
    """Rank-k interaction estimates b_ui over the densified users and items"""
    values: np.ndarray
    user_ids: np.ndarray
    item_ids: np.ndarray
    rank: int

    def __post_init__(self):
        self.values.setflags(write=False)

    def get(self, user_id, item_id):
        """b_ui for one pair, 0.0 when the pair is outside the densified matrix"""
        return float(self.lookup([user_id], [item_id])[0])

    def lookup(self, user_ids, item_ids):
        """Vectorized get() over aligned sequences of user and item ids"""
        rows = pd.Index(self.user_ids).get_indexer(np.asarray(user_ids))
        cols = pd.Index(self.item_ids).get_indexer(np.asarray(item_ids))
        supported = (rows >= 0) & (cols >= 0)
        result = np.zeros(len(rows), dtype='float64')
        result[supported] = self.values[rows[supported], cols[supported]]
        return result


@dataclass(frozen=True)
class FactorModel:
    """Principal components of a residual matrix

    scores (P, users x r) and loadings (Q, items x r) satisfy
    offsets + P @ Q.T == residual matrix at full rank r. Factors are ordered
    by descending explained variance.
    """
    scores: np.ndarray
    loadings: np.ndarray
    singular_values: np.ndarray
    variance_explained: np.ndarray
    offsets: np.ndarray
    user_ids: np.ndarray
    item_ids: np.ndarray

    def __post_init__(self):
        for array in (self.scores, self.loadings, self.singular_values,
                      self.variance_explained, self.offsets):
            array.setflags(write=False)

    @property
    def rank(self):
        return len(self.singular_values)

    def cumulative_variance(self):
        return np.cumsum(self.variance_explained)

    def rank_for_variance(self, threshold=0.9):
        """Smallest k whose factors explain at least `threshold` of the variance

        Args:
            threshold (float): Fraction in (0, 1]

        Returns:
            int: Rank, 1 when the matrix carries no variance at all
        """
        if not 0 < threshold <= 1:
            raise InvalidParameterError(f"Variance threshold must be in (0, 1], got {threshold}")
        cumulative = self.cumulative_variance()
        if cumulative[-1] <= 0:
            return 1
        # Tolerance keeps threshold=1.0 reachable despite rounding in the cumulative sum
        return int(np.searchsorted(cumulative, threshold - 1e-12) + 1)

    def reconstruct(self, k):
        """Rank-k reconstruction offsets + P[:, :k] @ Q[:, :k].T

        Args:
            k (int): Number of leading factors, 1 <= k <= rank

        Returns:
            ndarray: users x items matrix
        """
        if k is None or k <= 0:
            raise InvalidParameterError(f"Rank must be a positive integer, got {k}")
        if k > self.rank:
            raise InsufficientDataError(f"Requested rank {k} exceeds the {self.rank} available factors")
        return self.offsets + self.scores[:, :k] @ self.loadings[:, :k].T

    def reconstruction_error(self, matrix, k):
        """Frobenius norm of matrix - reconstruct(k)"""
        values = matrix.values if hasattr(matrix, 'values') else np.asarray(matrix)
        return float(np.linalg.norm(values - self.reconstruct(k)))

    def interaction_table(self, k):
        """Interaction term b_ui = offsets + first k factors, see reconstruct()"""
        return InteractionTable(values=self.reconstruct(k), user_ids=self.user_ids,
                                item_ids=self.item_ids, rank=k)


class LatentFactorEstimator:
    """PCA of the zero-imputed residual matrix through a deterministic thin SVD"""

    def __init__(self, center=True):
        """
        Args:
            center (bool): Subtract column means before decomposing (as PCA does);
                the means are kept as offsets and added back on reconstruction
        """
        self.center = center

    def fit(self, residual_matrix, rank=None):
        """Decompose the residual matrix

        Args:
            residual_matrix (ResidualMatrix): Zero-filled residuals
            rank (int): Rank the caller intends to use; checked against the matrix size

        Returns:
            FactorModel: Scores, loadings and explained variance
        """
        n_users, n_items = residual_matrix.shape
        if n_users < 2 or n_items < 2:
            raise InsufficientDataError(
                f"Need at least 2 users and 2 items to factorize, got {n_users} x {n_items}")
        if rank is not None:
            if rank <= 0:
                raise InvalidParameterError(f"Rank must be a positive integer, got {rank}")
            residual_matrix.require_rank(rank)

        matrix = np.array(residual_matrix.values, dtype='float64')
        if self.center:
            offsets = matrix.mean(axis=0)
            matrix -= offsets
        else:
            offsets = np.zeros(n_items, dtype='float64')

        try:
            u, sigma, vt = linalg.svd(matrix, full_matrices=False, lapack_driver='gesdd')
        except linalg.LinAlgError as e:
            logger.warning(f"gesdd did not converge ({str(e)}), retrying with gesvd")
            u, sigma, vt = linalg.svd(matrix, full_matrices=False, lapack_driver='gesvd')

        # LAPACK already returns singular values in descending order; only the signs are arbitrary
        u, vt = svd_flip(u, vt)

        power = sigma ** 2
        total = power.sum()
        if total > 0:
            variance_explained = power / total
        else:
            variance_explained = np.zeros_like(power)

        model = FactorModel(
            scores=u * sigma,
            loadings=vt.T.copy(),
            singular_values=sigma,
            variance_explained=variance_explained,
            offsets=offsets,
            user_ids=np.array(residual_matrix.user_ids),
            item_ids=np.array(residual_matrix.item_ids),
        )

        top = ', '.join(f"{v:.3f}" for v in variance_explained[:5])
        logger.info(f"Factorized {n_users} x {n_items} residual matrix into {model.rank} factors "
                    f"(leading variance fractions: {top})")
        return model

    def reconstruct(self, model, k):
        """Rank-k interaction matrix: the column offsets (zero when center=False)
        plus the sum of the first k rank-1 terms P[:, i] Q[:, i]^T
        """
        return model.reconstruct(k)
