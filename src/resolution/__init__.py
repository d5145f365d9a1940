from .pipeline import ResolutionPipeline, build_pipeline
from .types import BotConfig, ResolutionResult, ResponseSource

__all__ = ["ResolutionPipeline", "build_pipeline", "BotConfig", "ResolutionResult", "ResponseSource"]
