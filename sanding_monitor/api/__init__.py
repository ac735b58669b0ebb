"""
API orchestration boundary for the sanding monitor.

Design intent:
- Expose thin, typed endpoints for notes, correlation and video generation.
- Keep failure modes predictable: remote failures map to 502/504, bad input to 400.
"""
