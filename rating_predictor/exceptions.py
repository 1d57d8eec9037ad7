#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
rating_predictor/exceptions.py - Error taxonomy for the rating predictor
Author: YourName
Date: 2025-05-12
Description: Exceptions raised by the estimators, the matrix builder and the evaluator
"""


class RatingPredictorError(ValueError):
    """Base class for all rating predictor errors"""
    pass


class EmptyInputError(RatingPredictorError):
    """No observations to estimate from"""
    pass


class InvalidParameterError(RatingPredictorError):
    """Negative regularization strength, non-positive rank, bad test fraction, ..."""
    pass


class InsufficientDataError(RatingPredictorError):
    """Densified matrix is too small for the requested rank"""
    pass


class DimensionMismatchError(RatingPredictorError):
    """Predictions and truth have different lengths"""
    pass
