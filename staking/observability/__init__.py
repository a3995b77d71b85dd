# MIT License
# Copyright (c) 2025 Hashborn

"""
Observability Module

Provides metrics and monitoring for the staking pool.
"""

from .metrics import metrics_registry, update_metrics, export_metrics

__all__ = ['metrics_registry', 'update_metrics', 'export_metrics']
