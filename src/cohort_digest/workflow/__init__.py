"""Digest pipeline using LangGraph."""

from cohort_digest.workflow.state import DigestPipelineState
from cohort_digest.workflow.nodes import (
    PipelineServices,
    build_services,
    enrich_event,
    get_default_services,
)
from cohort_digest.workflow.graph import (
    create_digest_graph,
    compile_digest_workflow,
    run_pipeline,
)

__all__ = [
    # State
    "DigestPipelineState",
    # Services
    "PipelineServices",
    "build_services",
    "get_default_services",
    "enrich_event",
    # Graph
    "create_digest_graph",
    "compile_digest_workflow",
    "run_pipeline",
]
