#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
rating_predictor - Regularized bias + low-rank factorization rating predictor
Author: YourName
Date: 2025-05-12
Description: Predicts missing entries of a sparse user-by-item rating matrix
"""

from rating_predictor.exceptions import (DimensionMismatchError, EmptyInputError,
                                         InsufficientDataError, InvalidParameterError,
                                         RatingPredictorError)
from rating_predictor.data.rating_store import Observation, RatingStore
from rating_predictor.models.effects import (EffectTable, global_mean, item_effects,
                                             user_effects)
from rating_predictor.models.residual_matrix import ResidualMatrix, ResidualMatrixBuilder
from rating_predictor.models.factor_model import (FactorModel, InteractionTable,
                                                  LatentFactorEstimator)
from rating_predictor.models.predictor import BiasFactorModel, Predictor
from rating_predictor.evaluation.evaluator import RatingEvaluator, SearchResult, rmse

__version__ = "0.1.0"

__all__ = [
    'RatingPredictorError', 'EmptyInputError', 'InvalidParameterError',
    'InsufficientDataError', 'DimensionMismatchError',
    'Observation', 'RatingStore',
    'EffectTable', 'global_mean', 'item_effects', 'user_effects',
    'ResidualMatrix', 'ResidualMatrixBuilder',
    'FactorModel', 'InteractionTable', 'LatentFactorEstimator',
    'BiasFactorModel', 'Predictor',
    'RatingEvaluator', 'SearchResult', 'rmse',
]
