"""
HardenPipe - build, harden, publish and deploy container images
"""

__version__ = "0.1.0"

from .core import HardenPipeline
from .errors import PipelineError

__all__ = ["HardenPipeline", "PipelineError"]
