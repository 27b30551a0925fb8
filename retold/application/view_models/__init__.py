from .engine import ViewModelEngine, ViewModelSession
from .view_model import ViewModel

__all__ = ["ViewModel", "ViewModelEngine", "ViewModelSession"]
