from .templates import TemplatesRepository
from .generations import GenerationsRepository
from . import models

__all__ = ["TemplatesRepository", "GenerationsRepository", "models"]
