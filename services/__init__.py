"""
BidVet - Services Package

Document processing, storage and the bid comparison pipeline.
"""

from services.document_processor import (
    DocumentProcessor,
    ExtractedText,
    get_processor,
    detect_format,
    extract_document_text,
    OCR_AVAILABLE
)
from services.storage import DocumentStore, get_store
from services.text_extraction import extract_project_text
from services.item_extractor import extract_items_for_document
from services.matcher import build_scope_buckets, summarize
from services.analyzer import start_analysis, analyze_project
from services.metrics import PipelineMetrics
from services.leveling import get_leveling, set_leveling, clear_leveling
from services.edit_ledger import edit_item, revert_item, get_item_history
from services.calibration import get_confidence_thresholds, calibrate_all
from services.breakdown import (
    generate_breakdown_options,
    clear_breakdown_options,
    get_breakdown,
    select_breakdown,
    list_templates,
    create_template,
    delete_template
)
from services.export import export_comparison_csv

__all__ = [
    # Documents
    "DocumentProcessor",
    "ExtractedText",
    "get_processor",
    "detect_format",
    "extract_document_text",
    "OCR_AVAILABLE",
    "DocumentStore",
    "get_store",
    # Pipeline
    "extract_project_text",
    "extract_items_for_document",
    "build_scope_buckets",
    "summarize",
    "start_analysis",
    "analyze_project",
    "PipelineMetrics",
    # Leveling
    "get_leveling",
    "set_leveling",
    "clear_leveling",
    # Ledger
    "edit_item",
    "revert_item",
    "get_item_history",
    # Calibration
    "get_confidence_thresholds",
    "calibrate_all",
    # Breakdowns
    "generate_breakdown_options",
    "clear_breakdown_options",
    "get_breakdown",
    "select_breakdown",
    "list_templates",
    "create_template",
    "delete_template",
    # Export
    "export_comparison_csv",
]
