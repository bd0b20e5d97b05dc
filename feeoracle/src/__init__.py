"""
Fee Oracle - Multi-Source Fee Aggregation Module

This module aggregates trading fee observations from CEX and DEX sources:
- Observation / FeeSymbol: Validated fee reports and symbol handling
- OutlierDetector: Z-score + IQR outlier filtering
- ConsensusValidator: Weighted-median consensus and deviation grading
- AnomalyDetector: Comparison against each symbol's historical baseline
- DataQualityValidator: Composite confidence and quality metrics
- AggregationEngine: Periodic per-symbol orchestration
- FeedPublisher: Feed updates for on-chain submission
- sources / storage: Observation source and persistence collaborators
"""

from .AggregatedRecord import AggregatedRecord, DataQualityMetrics
from .AggregationEngine import (
    AGGREGATED_EVENT,
    AggregationEngine,
    AggregationResult,
    PipelineState,
    SymbolStats,
)
from .AnomalyDetector import AnomalyDetectionResult, AnomalyDetector
from .config import AggregationConfig, PenaltyFactors
from .ConsensusValidator import ConsensusValidator, CrossValidationResult
from .DataQualityValidator import DataQualityValidator, ValidationReport
from .EngineContext import EngineContext
from .FeedPublisher import NUM_DECIMALS, FeedPublisher, FeedUpdate
from .FeeSymbol import FeeSymbol
from .Observation import ExchangeKind, Observation
from .OutlierDetector import OutlierDetectionResult, OutlierDetector
from .SourceWeights import DEFAULT_SOURCE_WEIGHTS, SourceWeightModel

__all__ = [
    "AGGREGATED_EVENT",
    "AggregatedRecord",
    "AggregationConfig",
    "AggregationEngine",
    "AggregationResult",
    "AnomalyDetectionResult",
    "AnomalyDetector",
    "ConsensusValidator",
    "CrossValidationResult",
    "DEFAULT_SOURCE_WEIGHTS",
    "DataQualityMetrics",
    "DataQualityValidator",
    "EngineContext",
    "ExchangeKind",
    "FeeSymbol",
    "FeedPublisher",
    "FeedUpdate",
    "NUM_DECIMALS",
    "Observation",
    "OutlierDetectionResult",
    "OutlierDetector",
    "PenaltyFactors",
    "PipelineState",
    "SourceWeightModel",
    "SymbolStats",
    "ValidationReport",
]
