"""Channel registration models and loader exports."""

from .loader import ChannelLoadError, ChannelRegistry, load_channels
from .models import ChannelConfig

__all__ = ["ChannelConfig", "ChannelLoadError", "ChannelRegistry", "load_channels"]
