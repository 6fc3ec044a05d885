"""Build a docker image and publish its tags to a container registry."""

__version__ = "0.1.0"

from .config import load_config
from .models import PluginConfig
from .pipeline import BuildPipeline, build_plan

__all__ = ["BuildPipeline", "PluginConfig", "build_plan", "load_config", "__version__"]
