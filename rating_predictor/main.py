#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
rating_predictor/main.py - Main entry point for the rating predictor
Author: YourName
Date: 2025-05-12
Description: Command-line interface to tune, train, evaluate and query the rating predictor
"""

import argparse
import json
import logging
import os

import pandas as pd

from rating_predictor.data.rating_store import COLUMN_ALIASES
from rating_predictor.recommender import RatingRecommender


def setup_logging(level=logging.INFO):
    """Set up logging configuration"""
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def print_report(rmse_results):
    print("\nRMSE by method:")
    width = max(len(name) for name in rmse_results)
    for name, value in rmse_results.items():
        print(f"  {name:<{width}}  {value:.5f}")


def main(argv=None):
    """Main entry point"""
    # Parse command-line arguments
    parser = argparse.ArgumentParser(description='Regularized bias + latent factor rating predictor')
    parser.add_argument('--data', type=str, default=None, help='Ratings CSV path')
    parser.add_argument('--model', type=str, default=None, help='Saved model path')
    parser.add_argument('--save-model', type=str, default='rating_predictor_model', help='Model save path')
    parser.add_argument('--mode', type=str, default='train',
                        choices=['train', 'tune', 'evaluate', 'predict'],
                        help='Operation mode')
    parser.add_argument('--config', type=str, default=None, help='Configuration file path')
    parser.add_argument('--queries', type=str, default=None,
                        help='CSV of user_id,item_id pairs to predict (predict mode)')
    parser.add_argument('--output', type=str, default='predictions.csv', help='Predictions output path')
    parser.add_argument('--top-errors', type=int, default=0,
                        help='Show the N largest test errors after evaluation')
    parser.add_argument('--verbose', action='store_true', help='Debug logging')

    args = parser.parse_args(argv)

    # Set up logging
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    # Load configuration if provided
    config = {}
    if args.config and os.path.exists(args.config):
        with open(args.config, 'r') as f:
            config = json.load(f)

    recommender = RatingRecommender(args.data, config)

    # Execute based on mode
    if args.mode == 'train':
        if not args.data:
            logging.error("Training requires data file path")
            return 1
        results = recommender.run()
        if results is None:
            return 1
        print_report(results)
        if args.top_errors:
            print(recommender.largest_errors(args.top_errors).to_string(index=False))
        recommender.save_model(args.save_model)

    elif args.mode == 'tune':
        if not args.data:
            logging.error("Tuning requires data file path")
            return 1
        if not recommender.load_data():
            return 1
        result = recommender.tune()
        print("\nSearch result:")
        print(f"  strategy: {result.strategy}")
        print(f"  best parameters: {result.best_params}")
        print(f"  best RMSE: {result.best_rmse:.5f}")
        if result.interrupted:
            print("  (interrupted, best-so-far result)")

    elif args.mode == 'evaluate':
        if not args.model or not args.data:
            logging.error("Evaluation requires model path and data file path")
            return 1
        if not recommender.load_model(args.model):
            return 1
        if not recommender.load_data():
            return 1
        print_report(recommender.evaluate())
        if args.top_errors:
            print(recommender.largest_errors(args.top_errors).to_string(index=False))

    elif args.mode == 'predict':
        if not args.model or not args.queries:
            logging.error("Prediction requires model path and queries file")
            return 1
        if not recommender.load_model(args.model):
            return 1
        queries = pd.read_csv(args.queries).rename(columns=COLUMN_ALIASES)
        missing_cols = [col for col in ('user_id', 'item_id') if col not in queries.columns]
        if missing_cols:
            logging.error(f"Queries file missing required columns: {missing_cols}")
            return 1
        queries['prediction'] = recommender.predict(queries[['user_id', 'item_id']])
        queries.to_csv(args.output, index=False)
        logging.info(f"Wrote {len(queries)} predictions to {args.output}")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
