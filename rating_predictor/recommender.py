#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
rating_predictor/recommender.py - Rating prediction pipeline
Author: YourName
Date: 2025-05-12
Description: Main class tying together loading, splitting, tuning, fitting, evaluation and persistence
"""

import copy
import json
import logging
import os
import traceback

import numpy as np

from rating_predictor.data.rating_store import RatingStore
from rating_predictor.evaluation.evaluator import (STRATEGIES, CandidateResult, RatingEvaluator,
                                                  SearchResult)
from rating_predictor.exceptions import InvalidParameterError, RatingPredictorError
from rating_predictor.models.predictor import BiasFactorModel

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    'test_fraction': 0.1,
    'split_seed': 1,
    'move_unseen_to_train': False,
    'lambda1_grid': [x * 0.25 for x in range(41)],
    'lambda2_grid': [x * 0.25 for x in range(41)],
    'rank_grid': [1, 2, 3, 4, 5, 10],
    'item_min_count': 50,
    'user_min_count': 50,
    'search_strategy': 'staged',
    'n_jobs': 1,
    'time_budget': None,
    'center_factors': True,
    'rating_range': None,
}


def validate_config(config):
    """Check the configuration surface, raising InvalidParameterError on the first bad value"""
    unknown = sorted(set(config) - set(DEFAULT_CONFIG))
    if unknown:
        logger.warning(f"Ignoring unknown configuration keys: {unknown}")

    if not 0 < config['test_fraction'] < 1:
        raise InvalidParameterError(f"test_fraction must be in (0, 1), got {config['test_fraction']}")
    for key in ('lambda1_grid', 'lambda2_grid'):
        if any(value < 0 for value in config[key]):
            raise InvalidParameterError(f"{key} must hold non-negative numbers, got {config[key]}")
    if any(int(k) != k or k <= 0 for k in config['rank_grid']):
        raise InvalidParameterError(f"rank_grid must hold positive integers, got {config['rank_grid']}")
    for key in ('item_min_count', 'user_min_count'):
        if config[key] < 0:
            raise InvalidParameterError(f"{key} must be non-negative, got {config[key]}")
    if config['search_strategy'] not in STRATEGIES:
        raise InvalidParameterError(
            f"search_strategy must be one of {STRATEGIES}, got {config['search_strategy']!r}")
    rating_range = config['rating_range']
    if rating_range is not None and (len(rating_range) != 2 or rating_range[0] > rating_range[1]):
        raise InvalidParameterError(f"rating_range must be [low, high], got {rating_range}")


class RatingRecommender:
    """Batch fit / batch predict pipeline for the bias + latent factor model"""

    def __init__(self, data_path=None, config=None):
        """Initialize pipeline

        Args:
            data_path (str): Ratings CSV path
            config (dict): Configuration parameters overriding DEFAULT_CONFIG
        """
        self.config = copy.deepcopy(DEFAULT_CONFIG)
        if config:
            self.config.update(config)
        validate_config(self.config)

        self.data_path = data_path
        self.evaluator = RatingEvaluator(n_jobs=self.config['n_jobs'])

        self.store = None
        self.train = None
        self.test = None
        self.model = None
        self.search_result = None
        self.rmse_results = None

    def load_data(self, data=None):
        """Load ratings and split them into train/test

        Args:
            data: Optional DataFrame or RatingStore; read from data_path otherwise

        Returns:
            bool: Success
        """
        try:
            if isinstance(data, RatingStore):
                self.store = data
            elif data is not None:
                self.store = RatingStore.load(data)
            else:
                logger.info(f"Loading data from {self.data_path}")
                self.store = RatingStore.from_csv(self.data_path)
        except (OSError, ValueError) as e:
            logger.error(f"Error loading data: {str(e)}")
            logger.error(traceback.format_exc())
            return False

        summary = self.store.summary()
        logger.info(f"Data: {summary['n_ratings']} ratings, {summary['n_users']} users, "
                    f"{summary['n_items']} items, density {summary['density']:.5f}")

        self.train, self.test = self.store.split(
            seed=self.config['split_seed'],
            test_fraction=self.config['test_fraction'],
            move_unseen_to_train=self.config['move_unseen_to_train'],
        )
        return True

    def tune(self, should_stop=None):
        """Select lambda1, lambda2 and rank on the held-out split

        Returns:
            SearchResult: Best configuration and the scored candidates
        """
        self._check_data()
        logger.info("Tuning hyperparameters...")
        try:
            self.search_result = self.evaluator.grid_search(
                self.train, self.test,
                lambda1_grid=self.config['lambda1_grid'],
                lambda2_grid=self.config['lambda2_grid'],
                rank_grid=self.config['rank_grid'],
                strategy=self.config['search_strategy'],
                item_min_count=self.config['item_min_count'],
                user_min_count=self.config['user_min_count'],
                center=self.config['center_factors'],
                should_stop=should_stop,
                time_budget=self.config['time_budget'],
            )
        except RatingPredictorError as e:
            logger.error(f"Error tuning hyperparameters: {str(e)}")
            raise
        return self.search_result

    def train_models(self, params=None):
        """Fit the final model

        Args:
            params (dict): lambda1, lambda2 and rank; defaults to the tuned values,
                or the first value of each grid when nothing was tuned. lambda2=None
                fits the item-only model, rank=None the bias-only model

        Returns:
            BiasFactorModel: Fitted model
        """
        self._check_data()
        if params is None:
            if self.search_result is not None and self.search_result.best_params is not None:
                params = self.search_result.best_params
            else:
                logger.warning("No tuned parameters available, using the first value of each grid")
                params = {
                    'lambda1': self.config['lambda1_grid'][0],
                    'lambda2': self.config['lambda2_grid'][0],
                    'rank': self.config['rank_grid'][0] if self.config['rank_grid'] else None,
                }

        rating_range = self.config['rating_range']
        self.model = BiasFactorModel(
            lambda1=params['lambda1'],
            lambda2=params.get('lambda2'),
            rank=params.get('rank'),
            item_min_count=self.config['item_min_count'],
            user_min_count=self.config['user_min_count'],
            center=self.config['center_factors'],
            rating_range=tuple(rating_range) if rating_range is not None else None,
        )
        self.model.fit(self.train, support=self.test)
        return self.model

    def evaluate(self):
        """RMSE of every model variant on the test split

        Returns:
            dict: method name -> RMSE
        """
        self._check_data()
        if self.model is None:
            raise RuntimeError("No model trained yet, call train_models() first")

        logger.info("Evaluating model variants...")
        unregularized = BiasFactorModel(0.0, 0.0).fit(self.train).variants()
        models = {
            'just_the_average': unregularized['just_the_average'],
            'item_effect': unregularized['item_effect'],
            'item_user_effect': unregularized['item_user_effect'],
        }
        for name, predictor in self.model.variants().items():
            if name != 'just_the_average':
                models[f'regularized_{name}'] = predictor

        self.rmse_results = self.evaluator.compare(models, self.test)
        return self.rmse_results

    def predict(self, pairs):
        """Predicted ratings for a batch of (user_id, item_id) pairs"""
        if self.model is None:
            raise RuntimeError("No model trained yet, call train_models() first")
        return self.model.predict_many(pairs)

    def largest_errors(self, n=10):
        """Test observations with the largest absolute prediction error"""
        self._check_data()
        return self.evaluator.largest_errors(self.model, self.test, n)

    def run(self, should_stop=None):
        """Load, tune, fit and evaluate in one go"""
        if not self.load_data():
            return None
        self.tune(should_stop=should_stop)
        self.train_models()
        return self.evaluate()

    def save_model(self, path=None):
        """Save configuration, search results and the fitted model

        Args:
            path (str): Directory path

        Returns:
            bool: Success
        """
        if path is None:
            path = 'rating_predictor_model'

        logger.info(f"Saving model to {path}...")

        try:
            os.makedirs(path, exist_ok=True)

            with open(os.path.join(path, 'config.json'), 'w') as f:
                json.dump(self.config, f, indent=2)

            if self.search_result is not None:
                with open(os.path.join(path, 'search_result.json'), 'w') as f:
                    json.dump(self.search_result.to_dict(), f, indent=2)

            if self.rmse_results:
                with open(os.path.join(path, 'rmse_results.json'), 'w') as f:
                    json.dump({name: float(value) for name, value in self.rmse_results.items()}, f, indent=2)

            if self.model is not None and not self.model.save(os.path.join(path, 'model')):
                return False

            logger.info("Model saved successfully")
            return True
        except OSError as e:
            logger.error(f"Error saving model: {str(e)}")
            logger.error(traceback.format_exc())
            return False

    def load_model(self, path=None):
        """Load configuration and fitted model saved by save_model()

        Args:
            path (str): Directory path

        Returns:
            bool: Success
        """
        if path is None:
            path = 'rating_predictor_model'

        logger.info(f"Loading model from {path}...")

        try:
            with open(os.path.join(path, 'config.json'), 'r') as f:
                self.config = copy.deepcopy(DEFAULT_CONFIG)
                self.config.update(json.load(f))
            validate_config(self.config)
            self.evaluator = RatingEvaluator(n_jobs=self.config['n_jobs'])

            self.model = BiasFactorModel().load(os.path.join(path, 'model'))

            search_path = os.path.join(path, 'search_result.json')
            if os.path.exists(search_path):
                with open(search_path, 'r') as f:
                    self.search_result = _search_result_from_dict(json.load(f))

            rmse_path = os.path.join(path, 'rmse_results.json')
            if os.path.exists(rmse_path):
                with open(rmse_path, 'r') as f:
                    self.rmse_results = json.load(f)

            logger.info("Model loaded successfully")
            return True
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading model: {str(e)}")
            logger.error(traceback.format_exc())
            return False

    def _check_data(self):
        if self.train is None or self.test is None:
            raise RuntimeError("No data loaded, call load_data() first")


def _search_result_from_dict(data):
    history = tuple(CandidateResult(**candidate) for candidate in data.get('history', []))
    best_rmse = data.get('best_rmse')
    return SearchResult(
        best_params=data.get('best_params'),
        best_rmse=float(best_rmse) if best_rmse is not None else np.inf,
        strategy=data.get('strategy', 'staged'),
        history=history,
        interrupted=data.get('interrupted', False),
    )
