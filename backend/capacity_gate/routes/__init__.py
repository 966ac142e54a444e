from capacity_gate.routes import admission, scaling

__all__ = ["admission", "scaling"]
