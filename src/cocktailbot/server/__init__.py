from .simulator_server import build_context, run_simulator_server

__all__ = ["build_context", "run_simulator_server"]
