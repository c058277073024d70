"""Application Layer.

Application services that orchestrate domain logic across bounded contexts.
No I/O: inputs arrive as validated value objects and sampler callables.
"""

from application.pipeline import GeolocationPipeline, PipelineResult

__all__ = ["GeolocationPipeline", "PipelineResult"]
