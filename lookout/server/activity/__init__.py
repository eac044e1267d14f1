"""Read-side views over a session's event history.

- **tree**: Activity tree reconstruction (flat history -> hierarchy)
- **formatting**: Renderer-agnostic lines and display directives
- **export**: Session export (json / text / tree)
"""
