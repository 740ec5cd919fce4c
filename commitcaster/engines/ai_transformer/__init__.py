"""AI transformer engine — diff analysis and changelog rendering."""

from commitcaster.engines.ai_transformer.transformer import AITransformer

__all__ = ["AITransformer"]
