#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
rating_predictor/evaluation/evaluator.py - Model evaluation and hyperparameter search
Author: YourName
Date: 2025-05-12
Description: RMSE, model comparison reports and grid search over lambda1, lambda2 and rank
"""

import itertools
import logging
import math
import os
import time
from dataclasses import asdict, dataclass, field
from typing import Optional, Tuple

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from tqdm import tqdm

from rating_predictor.exceptions import (DimensionMismatchError, EmptyInputError,
                                         InvalidParameterError)
from rating_predictor.models.effects import (EffectTable, global_mean, item_effect_sums,
                                             user_effect_sums)
from rating_predictor.models.factor_model import LatentFactorEstimator
from rating_predictor.models.predictor import Predictor
from rating_predictor.models.residual_matrix import ResidualMatrixBuilder

logger = logging.getLogger(__name__)

STRATEGIES = ('staged', 'joint')


def rmse(predictions, truth):
    """Root mean squared error

    Args:
        predictions: Sequence of predicted ratings
        truth: Sequence of true ratings, same length

    Returns:
        float: sqrt(mean((predictions - truth)^2))
    """
    predictions = np.asarray(predictions, dtype='float64')
    truth = np.asarray(truth, dtype='float64')
    if predictions.shape != truth.shape:
        raise DimensionMismatchError(
            f"Predictions and truth differ in length: {predictions.shape} vs {truth.shape}")
    if predictions.size == 0:
        raise EmptyInputError("Cannot compute RMSE of empty sequences")
    return float(np.sqrt(np.mean((predictions - truth) ** 2)))


@dataclass(frozen=True)
class CandidateResult:
    stage: str
    params: dict
    rmse: float


@dataclass(frozen=True)
class SearchResult:
    """Outcome of a grid search; best_params is None if nothing was evaluated"""
    best_params: Optional[dict]
    best_rmse: float
    strategy: str
    history: Tuple[CandidateResult, ...] = field(default_factory=tuple)
    interrupted: bool = False

    def stage_best(self, stage):
        """Best candidate of one stage, None if the stage never ran"""
        candidates = [c for c in self.history if c.stage == stage]
        if not candidates:
            return None
        return min(candidates, key=lambda c: c.rmse)

    def history_frame(self):
        """All evaluated candidates as a DataFrame"""
        rows = [dict(stage=c.stage, rmse=c.rmse, **c.params) for c in self.history]
        return pd.DataFrame(rows)

    def to_dict(self):
        return {
            'best_params': self.best_params,
            'best_rmse': self.best_rmse,
            'strategy': self.strategy,
            'interrupted': self.interrupted,
            'history': [asdict(c) for c in self.history],
        }


def _check_grid(name, grid, positive_int=False):
    if grid is None or len(grid) == 0:
        raise EmptyInputError(f"{name} is empty")
    for value in grid:
        if positive_int:
            if int(value) != value or value <= 0:
                raise InvalidParameterError(f"{name} must hold positive integers, got {value}")
        elif value is None or np.isnan(value) or value < 0:
            raise InvalidParameterError(f"{name} must hold non-negative numbers, got {value}")


def _score_bias(mu, items, users, test, params):
    predictor = Predictor(mu, items, users)
    return [(params, rmse(predictor.predict_many(test), test.ratings))]


def _score_ranks(mu, items, users, factor_model, ranks, test, base_params):
    results = []
    for k in ranks:
        predictor = Predictor(mu, items, users, factor_model.interaction_table(k))
        results.append((dict(base_params, rank=k), rmse(predictor.predict_many(test), test.ratings)))
    return results


def _score_joint(mu, item_sums, lambda1, lambda2, train, test, ranks, builder, center):
    items = EffectTable.from_sums(item_sums, lambda1, kind='item')
    users = EffectTable.from_sums(user_effect_sums(train, mu, items), lambda2, kind='user')
    base_params = {'lambda1': lambda1, 'lambda2': lambda2}
    if not ranks:
        return _score_bias(mu, items, users, test, dict(base_params, rank=None))
    matrix = builder.build(train, mu, items, users, support=test)
    factor_model = LatentFactorEstimator(center=center).fit(matrix, rank=max(ranks))
    return _score_ranks(mu, items, users, factor_model, ranks, test, base_params)


class RatingEvaluator:
    """Evaluator for rating prediction models"""

    def __init__(self, n_jobs=1, prefer='threads', batch_size=None, show_progress=True):
        """Initialize evaluator

        Args:
            n_jobs (int): joblib workers for grid search candidates (-1 for all cores)
            prefer (str): joblib backend preference, 'threads' or 'processes'
            batch_size (int): Candidates evaluated between two cancellation checks
            show_progress (bool): Show a tqdm progress bar during grid search
        """
        self.n_jobs = n_jobs
        self.prefer = prefer
        self.batch_size = batch_size
        self.show_progress = show_progress
        self.results = None

    def evaluate(self, model, test):
        """RMSE of a model (anything with predict_many) on a RatingStore"""
        return rmse(model.predict_many(test), test.ratings)

    def compare(self, models, test):
        """Evaluate several models on the same test set

        Args:
            models (dict): method name -> model
            test (RatingStore): Held-out observations

        Returns:
            dict: method name -> RMSE
        """
        results = {}
        for name, model in models.items():
            results[name] = self.evaluate(model, test)

        logger.info("Evaluation results:")
        for name, value in results.items():
            logger.info(f"  {name}: RMSE = {value:.5f}")

        self.results = results
        return results

    def largest_errors(self, model, test, n=10):
        """Test observations the model misses by the most

        Returns:
            DataFrame: user_id, item_id, rating, prediction, residual sorted by |residual|
        """
        frame = test.frame[['user_id', 'item_id', 'rating']].copy()
        frame['prediction'] = model.predict_many(test)
        frame['residual'] = frame['rating'] - frame['prediction']
        order = frame['residual'].abs().sort_values(ascending=False, kind='mergesort').index
        return frame.loc[order].head(n).reset_index(drop=True)

    def grid_search(self, train, test, lambda1_grid, lambda2_grid, rank_grid=None, strategy='staged',
                    item_min_count=50, user_min_count=50, center=True, should_stop=None,
                    time_budget=None):
        """Select lambda1, lambda2 and rank by test RMSE

        'staged' picks lambda1 with the item-only model, then lambda2 with the
        item + user model, then the rank with the full model. 'joint' scores
        every combination. An empty rank_grid searches the bias model only.

        Args:
            train (RatingStore): Training observations
            test (RatingStore): Held-out observations used for selection
            lambda1_grid (list): Item regularization strengths
            lambda2_grid (list): User regularization strengths
            rank_grid (list): Numbers of latent factors
            strategy (str): 'staged' or 'joint'
            item_min_count (int): Item threshold of the residual matrix
            user_min_count (int): User threshold of the residual matrix
            center (bool): Column-center the residual matrix
            should_stop (callable): Polled between candidate batches, True stops the search
            time_budget (float): Seconds after which no new batch is started

        Returns:
            SearchResult: Best parameters and the evaluated candidates
        """
        if strategy not in STRATEGIES:
            raise InvalidParameterError(f"Unknown search strategy {strategy!r}, expected one of {STRATEGIES}")
        _check_grid('lambda1_grid', lambda1_grid)
        _check_grid('lambda2_grid', lambda2_grid)
        ranks = []
        if rank_grid is not None and len(rank_grid) > 0:
            _check_grid('rank_grid', rank_grid, positive_int=True)
            ranks = sorted(set(int(k) for k in rank_grid))
        if len(test) == 0:
            raise EmptyInputError("Cannot select hyperparameters on an empty test set")

        builder = ResidualMatrixBuilder(item_min_count=item_min_count, user_min_count=user_min_count)
        state = _SearchState(should_stop, time_budget)
        mu = global_mean(train)
        item_sums = item_effect_sums(train, mu)

        logger.info(f"Starting {strategy} grid search: {len(lambda1_grid)} lambda1 x "
                    f"{len(lambda2_grid)} lambda2 x {len(ranks)} rank values")

        if strategy == 'staged':
            self._staged_search(train, test, mu, item_sums, lambda1_grid, lambda2_grid, ranks,
                                builder, center, state)
        else:
            tasks = [
                delayed(_score_joint)(mu, item_sums, l1, l2, train, test, ranks, builder, center)
                for l1, l2 in itertools.product(lambda1_grid, lambda2_grid)
            ]
            self._run_stage('joint', tasks, state)

        result = state.result(strategy)
        if result.best_params is not None:
            logger.info(f"Best configuration: {result.best_params} with RMSE {result.best_rmse:.5f}")
        if result.interrupted:
            logger.warning(f"Grid search interrupted after {len(result.history)} candidates")
        return result

    def _staged_search(self, train, test, mu, item_sums, lambda1_grid, lambda2_grid, ranks,
                       builder, center, state):
        # Stage 1: item-only model
        tasks = [
            delayed(_score_bias)(mu, EffectTable.from_sums(item_sums, l1, kind='item'), None, test,
                                 {'lambda1': l1, 'lambda2': None, 'rank': None})
            for l1 in lambda1_grid
        ]
        best = self._run_stage('lambda1', tasks, state)
        if best is None or state.stopped:
            return
        lambda1 = best.params['lambda1']
        items = EffectTable.from_sums(item_sums, lambda1, kind='item')

        # Stage 2: item + user model, lambda1 fixed
        user_sums = user_effect_sums(train, mu, items)
        tasks = [
            delayed(_score_bias)(mu, items, EffectTable.from_sums(user_sums, l2, kind='user'), test,
                                 {'lambda1': lambda1, 'lambda2': l2, 'rank': None})
            for l2 in lambda2_grid
        ]
        best = self._run_stage('lambda2', tasks, state)
        if best is None or state.stopped or not ranks:
            return
        lambda2 = best.params['lambda2']
        users = EffectTable.from_sums(user_sums, lambda2, kind='user')

        # Stage 3: full model; one decomposition serves every rank
        matrix = builder.build(train, mu, items, users, support=test)
        factor_model = LatentFactorEstimator(center=center).fit(matrix, rank=max(ranks))
        base_params = {'lambda1': lambda1, 'lambda2': lambda2}
        tasks = [
            delayed(_score_ranks)(mu, items, users, factor_model, [k], test, base_params)
            for k in ranks
        ]
        self._run_stage('rank', tasks, state)

    def _run_stage(self, stage, tasks, state):
        """Evaluate candidate tasks in parallel batches, checking for cancellation between batches

        Returns:
            CandidateResult: Best candidate of the stage, None if none finished
        """
        batch_size = self.batch_size or self._default_batch_size()
        parallel = Parallel(n_jobs=self.n_jobs, prefer=self.prefer)

        with tqdm(total=len(tasks), desc=f"Grid search ({stage})", disable=not self.show_progress) as progress:
            for start in range(0, len(tasks), batch_size):
                if state.should_halt():
                    break
                batch = tasks[start:start + batch_size]
                try:
                    batch_results = parallel(batch)
                except KeyboardInterrupt:
                    logger.warning(f"Grid search cancelled during stage {stage}")
                    state.stopped = True
                    break
                for scored in batch_results:
                    for params, value in scored:
                        state.record(CandidateResult(stage=stage, params=params, rmse=value))
                progress.update(len(batch))

        best = state.stage_best(stage)
        if best is not None:
            logger.info(f"Stage {stage}: best {best.params} RMSE = {best.rmse:.5f}")
        return best

    def _default_batch_size(self):
        if self.n_jobs is None or self.n_jobs == 1:
            return 1
        if self.n_jobs < 0:
            return max(1, (os.cpu_count() or 1) + 1 + self.n_jobs)
        return self.n_jobs


class _SearchState:
    """Best-so-far bookkeeping local to one grid_search call"""

    def __init__(self, should_stop=None, time_budget=None):
        self.should_stop = should_stop
        self.deadline = time.monotonic() + time_budget if time_budget is not None else None
        self.history = []
        self.stopped = False

    def should_halt(self):
        if self.stopped:
            return True
        if self.should_stop is not None and self.should_stop():
            logger.info("Grid search stop requested")
            self.stopped = True
        elif self.deadline is not None and time.monotonic() >= self.deadline:
            logger.info("Grid search time budget exhausted")
            self.stopped = True
        return self.stopped

    def record(self, candidate):
        self.history.append(candidate)

    def stage_best(self, stage):
        candidates = [c for c in self.history if c.stage == stage]
        return min(candidates, key=lambda c: c.rmse) if candidates else None

    def result(self, strategy):
        if not self.history:
            return SearchResult(best_params=None, best_rmse=math.inf, strategy=strategy,
                                history=(), interrupted=self.stopped)
        best = min(self.history, key=lambda c: c.rmse)
        return SearchResult(best_params=dict(best.params), best_rmse=best.rmse, strategy=strategy,
                            history=tuple(self.history), interrupted=self.stopped)
