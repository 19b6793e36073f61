"""Room-level orchestration: coordinator and transcript sessions."""
