"""
Orchestrator Package.

Wires the pipeline components together and owns the process
lifecycle.

Modules:
- pipeline: PipelineConfig, Pipeline, build_pipeline
- cli: Command-line interface
"""

from .pipeline import Pipeline, PipelineConfig, build_pipeline


__all__ = [
    "Pipeline",
    "PipelineConfig",
    "build_pipeline",
]
