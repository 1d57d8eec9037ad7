#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
rating_predictor/models/predictor.py - Bias + latent factor rating predictor
Author: YourName
Date: 2025-05-12
Description: Combines global mean, item effect, user effect and interaction term into a prediction
"""

import logging
import os
import pickle

import numpy as np
import pandas as pd

from rating_predictor.models.base_model import BaseRatingModel
from rating_predictor.models.effects import EffectEstimator
from rating_predictor.models.factor_model import LatentFactorEstimator
from rating_predictor.models.residual_matrix import ResidualMatrixBuilder

logger = logging.getLogger(__name__)

MODEL_FILE = 'bias_factor_model.pkl'


def split_pairs(pairs):
    """Turn a batch of prediction requests into aligned user and item id arrays

    Args:
        pairs: RatingStore, DataFrame with user_id/item_id columns, or iterable of (user_id, item_id)

    Returns:
        tuple: (user_ids, item_ids) numpy arrays
    """
    if hasattr(pairs, 'user_ids') and hasattr(pairs, 'item_ids'):
        return np.asarray(pairs.user_ids), np.asarray(pairs.item_ids)
    if isinstance(pairs, pd.DataFrame):
        return pairs['user_id'].to_numpy(), pairs['item_id'].to_numpy()
    pairs = list(pairs)
    if not pairs:
        return np.array([], dtype='int64'), np.array([], dtype='int64')
    users, items = zip(*pairs)
    return np.asarray(users), np.asarray(items)


class Predictor:
    """mu + b_i + b_u + b_ui, each missing term falling back to 0"""

    def __init__(self, mu, item_effects=None, user_effects=None, interaction=None,
                 rating_range=None, name=None):
        """
        Args:
            mu (float): Global mean
            item_effects (EffectTable): Item effects, None to leave them out
            user_effects (EffectTable): User effects, None to leave them out
            interaction (InteractionTable): Latent interaction term, None to leave it out
            rating_range (tuple): Optional (low, high) clip of the predictions
            name (str): Label used in reports
        """
        self.mu = float(mu)
        self.item_effects = item_effects
        self.user_effects = user_effects
        self.interaction = interaction
        self.rating_range = rating_range
        self.name = name or 'predictor'

    def predict(self, user_id, item_id):
        prediction = self.mu
        if self.item_effects is not None:
            prediction += self.item_effects.get(item_id)
        if self.user_effects is not None:
            prediction += self.user_effects.get(user_id)
        if self.interaction is not None:
            prediction += self.interaction.get(user_id, item_id)
        if self.rating_range is not None:
            prediction = min(max(prediction, self.rating_range[0]), self.rating_range[1])
        return float(prediction)

    def predict_many(self, pairs):
        """Predictions aligned with the request order"""
        users, items = split_pairs(pairs)
        predictions = np.full(len(users), self.mu, dtype='float64')
        if self.item_effects is not None:
            predictions += self.item_effects.lookup(items)
        if self.user_effects is not None:
            predictions += self.user_effects.lookup(users)
        if self.interaction is not None:
            predictions += self.interaction.lookup(users, items)
        if self.rating_range is not None:
            predictions = np.clip(predictions, self.rating_range[0], self.rating_range[1])
        return predictions

    def __repr__(self):
        terms = ['mu']
        if self.item_effects is not None:
            terms.append('b_i')
        if self.user_effects is not None:
            terms.append('b_u')
        if self.interaction is not None:
            terms.append(f'b_ui(k={self.interaction.rank})')
        return f"Predictor({self.name!r}: {' + '.join(terms)})"


class BiasFactorModel(BaseRatingModel):
    """Regularized bias model with an optional low-rank interaction term"""

    def __init__(self, lambda1=0.0, lambda2=0.0, rank=None, item_min_count=50, user_min_count=50,
                 center=True, rating_range=None):
        """Initialize model

        Args:
            lambda1 (float): Item effect regularization strength
            lambda2 (float): User effect regularization strength, None for the item-only model
            rank (int): Number of latent factors, None for the bias-only model
            item_min_count (int): Minimum training ratings of an item in the residual matrix
            user_min_count (int): Minimum training ratings of a user in the residual matrix
            center (bool): Column-center the residual matrix before the decomposition
            rating_range (tuple): Optional (low, high) clip of the predictions
        """
        self.lambda1 = lambda1
        self.lambda2 = lambda2
        self.rank = rank
        self.item_min_count = item_min_count
        self.user_min_count = user_min_count
        self.center = center
        self.rating_range = rating_range

        self.mu = None
        self.item_effects = None
        self.user_effects = None
        self.residual_matrix = None
        self.factor_model = None
        self.predictor = None

    def fit(self, train, support=None):
        """Fit effects and, when a rank is set, the latent factors

        Args:
            train (RatingStore): Training observations
            support (RatingStore): Evaluation set the residual matrix is restricted to

        Returns:
            self: Fitted model
        """
        logger.info(f"Training bias model (lambda1={self.lambda1}, lambda2={self.lambda2}, rank={self.rank})...")

        self.mu, self.item_effects, self.user_effects = EffectEstimator(self.lambda1, self.lambda2).fit(train)

        interaction = None
        if self.rank is not None:
            builder = ResidualMatrixBuilder(item_min_count=self.item_min_count,
                                            user_min_count=self.user_min_count)
            self.residual_matrix = builder.build(train, self.mu, self.item_effects, self.user_effects,
                                                 support=support)
            self.factor_model = LatentFactorEstimator(center=self.center).fit(self.residual_matrix,
                                                                                rank=self.rank)
            interaction = self.factor_model.interaction_table(self.rank)

        self.predictor = Predictor(self.mu, self.item_effects, self.user_effects, interaction,
                                   rating_range=self.rating_range, name=self.name)
        return self

    @property
    def name(self):
        if self.rank is None:
            return 'item_effect' if self.lambda2 is None else 'item_user_effect'
        return 'item_user_interaction'

    @property
    def fitted(self):
        return self.predictor is not None

    def variants(self):
        """Nested predictors sharing this model's fitted tables

        Returns:
            dict: method name -> Predictor, from the global mean up to the full model
        """
        self._check_fitted()
        models = {
            'just_the_average': Predictor(self.mu, rating_range=self.rating_range,
                                          name='just_the_average'),
            'item_effect': Predictor(self.mu, self.item_effects, rating_range=self.rating_range,
                                     name='item_effect'),
        }
        if self.user_effects is not None:
            models['item_user_effect'] = Predictor(self.mu, self.item_effects, self.user_effects,
                                                   rating_range=self.rating_range, name='item_user_effect')
        if self.predictor.interaction is not None:
            models['item_user_interaction'] = self.predictor
        return models

    def predict(self, user_id, item_id):
        """Predict rating for a user-item pair

        Args:
            user_id: User ID
            item_id: Item ID

        Returns:
            float: Predicted rating
        """
        self._check_fitted()
        return self.predictor.predict(user_id, item_id)

    def predict_many(self, pairs):
        self._check_fitted()
        return self.predictor.predict_many(pairs)

    def get_params(self):
        return {
            'lambda1': self.lambda1,
            'lambda2': self.lambda2,
            'rank': self.rank,
            'item_min_count': self.item_min_count,
            'user_min_count': self.user_min_count,
            'center': self.center,
            'rating_range': self.rating_range,
        }

    def save(self, path):
        """Save model to disk

        Args:
            path (str): Directory path

        Returns:
            bool: Success
        """
        logger.info(f"Saving bias factor model to {path}")
        self._check_fitted()

        os.makedirs(path, exist_ok=True)

        model_data = {
            'params': self.get_params(),
            'mu': self.mu,
            'item_effects': self.item_effects,
            'user_effects': self.user_effects,
            'factor_model': self.factor_model,
        }

        try:
            with open(os.path.join(path, MODEL_FILE), 'wb') as f:
                pickle.dump(model_data, f)
            logger.info("Bias factor model saved successfully")
            return True
        except (OSError, pickle.PicklingError) as e:
            logger.error(f"Error saving bias factor model: {str(e)}")
            return False

    def load(self, path):
        """Load model from disk

        Args:
            path (str): Directory path

        Returns:
            self: Loaded model
        """
        logger.info(f"Loading bias factor model from {path}")

        with open(os.path.join(path, MODEL_FILE), 'rb') as f:
            model_data = pickle.load(f)

        for key, value in model_data['params'].items():
            setattr(self, key, value)
        self.mu = model_data['mu']
        self.item_effects = model_data['item_effects']
        self.user_effects = model_data['user_effects']
        self.factor_model = model_data['factor_model']
        self.residual_matrix = None

        interaction = None
        if self.factor_model is not None and self.rank is not None:
            interaction = self.factor_model.interaction_table(self.rank)
        self.predictor = Predictor(self.mu, self.item_effects, self.user_effects, interaction,
                                   rating_range=self.rating_range, name=self.name)

        logger.info("Bias factor model loaded successfully")
        return self

    def _check_fitted(self):
        if self.predictor is None:
            raise RuntimeError("Model not trained yet, call fit() first")
