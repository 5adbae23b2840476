"""Heuristic and AI-assisted task classification."""

from timeq.classification.ai_classifier import AIClassifier, TaskAssignment, extract_json_array
from timeq.classification.classifier import TaskClassifier
from timeq.classification.heuristics import HeuristicTaskClassifier, load_rules

__all__ = [
    "AIClassifier",
    "HeuristicTaskClassifier",
    "TaskAssignment",
    "TaskClassifier",
    "extract_json_array",
    "load_rules",
]
