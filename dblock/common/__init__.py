from .context import Context, background

__all__ = ["Context", "background"]
