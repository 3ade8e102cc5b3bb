"""
Customer Segmentation Services

Rule-based audience segmentation: rule trees, predicate compilation,
evaluation, materialization and rule authoring helpers.
"""

from app.services.segments.fields import FIELD_DEFINITIONS, FieldDefinition, FieldType
from app.services.segments.rule_tree import Condition, RuleGroup, RuleNode, parse_rule_tree
from app.services.segments.predicate_builder import build_condition
from app.services.segments.rule_evaluator import RuleEvaluator, RuleExplanation, evaluate
from app.services.segments.materializer import SegmentMaterializer, SegmentPreview
from app.services.segments.rule_parser import parse_rule_expression
from app.services.segments.rule_translator import SegmentRuleTranslator

__all__ = [
    "FIELD_DEFINITIONS",
    "FieldDefinition",
    "FieldType",
    "Condition",
    "RuleGroup",
    "RuleNode",
    "parse_rule_tree",
    "build_condition",
    "RuleEvaluator",
    "RuleExplanation",
    "evaluate",
    "SegmentMaterializer",
    "SegmentPreview",
    "parse_rule_expression",
    "SegmentRuleTranslator",
]
