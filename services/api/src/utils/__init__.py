from . import env, log

__all__ = ["env", "log"]
