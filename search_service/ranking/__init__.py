from .fusion import WeightedScoreFusion, apply_rerank, fuse_hybrid

__all__ = ["WeightedScoreFusion", "apply_rerank", "fuse_hybrid"]
