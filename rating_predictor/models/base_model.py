#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
rating_predictor/models/base_model.py - Base model class for rating predictors
Author: YourName
Date: 2025-05-12
Description: Defines the abstract contract shared by the fitted rating models
"""

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class BaseRatingModel(ABC):
    """Abstract base class for all rating prediction models"""

    @abstractmethod
    def fit(self, train):
        """Train the model on a RatingStore"""
        pass

    @abstractmethod
    def predict(self, user_id, item_id):
        """Predict rating for a user-item pair"""
        pass

    def predict_many(self, pairs):
        """Predict ratings for a batch of (user_id, item_id) pairs"""
        return [self.predict(user_id, item_id) for user_id, item_id in pairs]

    @abstractmethod
    def save(self, path):
        """Save model to disk"""
        pass

    @abstractmethod
    def load(self, path):
        """Load model from disk"""
        pass
