"""Local display of remote video."""

from momo.render.renderer import DispatchFunction, Renderer

__all__ = ["DispatchFunction", "Renderer"]
