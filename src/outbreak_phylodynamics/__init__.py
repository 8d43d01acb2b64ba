from .version_info import VERSION as __version__
